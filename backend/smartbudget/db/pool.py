from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from smartbudget.core.config import Settings


def create_db_pool(settings: Settings) -> AsyncConnectionPool:
    if not settings.database_url:
        raise RuntimeError("DATABASE_URL is required for the postgres store")
    return AsyncConnectionPool(
        settings.database_url,
        min_size=settings.db_pool_min,
        max_size=settings.db_pool_max,
        timeout=settings.db_pool_timeout,
        max_waiting=settings.db_pool_max_waiting,
        open=False,
        kwargs={"row_factory": dict_row},
    )
