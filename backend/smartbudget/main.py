import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from smartbudget.core.config import Settings, settings as default_settings
from smartbudget.core.logging import RequestLogMiddleware, configure_logging
from smartbudget.core.rate_limit import RateLimiter
from smartbudget.core.responses import install_exception_handlers
from smartbudget.db.memory import MemoryStore
from smartbudget.db.pool import create_db_pool
from smartbudget.db.postgres import PostgresStore
from smartbudget.db.store import Store
from smartbudget.routers.categories import router as categories_router
from smartbudget.routers.meta import router as meta_router
from smartbudget.routers.stats import router as stats_router
from smartbudget.routers.transactions import router as transactions_router
from smartbudget.services.auth import ApiKeyVerifier, IdentityVerifier

logger = logging.getLogger(__name__)


def build_store(settings: Settings) -> Store | None:
    if settings.store_backend == "memory":
        logger.warning("using in-process store; data is lost on restart")
        return MemoryStore()
    if not settings.database_url:
        logger.warning("DATABASE_URL not set; feature routes will answer 503")
        return None
    return PostgresStore(create_db_pool(settings))


def create_app(
    settings: Settings | None = None,
    store: Store | None = None,
    identity: IdentityVerifier | None = None,
    rate_limiter: RateLimiter | None = None,
) -> FastAPI:
    """Assemble the API.

    ``store`` and ``identity`` are injected by tests; when omitted they are
    built from ``settings``. The app only opens and closes a store it built.
    """
    settings = settings or default_settings
    owns_store = store is None
    if store is None:
        store = build_store(settings)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        if owns_store and isinstance(store, PostgresStore):
            await store.open()
        try:
            yield
        finally:
            if owns_store and store is not None:
                await store.close()

    app = FastAPI(title="SmartBudget API", lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store
    app.state.identity = identity or ApiKeyVerifier(store)
    app.state.rate_limiter = rate_limiter or RateLimiter(
        redis_url=settings.redis_url,
        key_prefix=settings.redis_prefix,
    )

    app.add_middleware(RequestLogMiddleware)
    install_exception_handlers(app)

    app.include_router(meta_router)
    app.include_router(transactions_router)
    app.include_router(categories_router)
    app.include_router(stats_router)
    return app


configure_logging(default_settings.log_level, default_settings.log_json)
app = create_app()
