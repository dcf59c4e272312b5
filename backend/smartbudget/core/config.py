import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    database_url: str | None
    store_backend: str
    redis_url: str | None
    redis_prefix: str
    db_pool_min: int
    db_pool_max: int
    db_pool_timeout: float
    db_pool_max_waiting: int
    api_rate_limit: int
    api_rate_window: int
    log_level: str
    log_json: bool
    host: str
    port: int


def env_bool(name: str, default: str = "false") -> bool:
    return (os.getenv(name) or default).strip().lower() in ("1", "true", "yes", "on")


def load_settings() -> Settings:
    store_backend = (os.getenv("STORE_BACKEND") or "postgres").strip().lower()
    if store_backend not in ("postgres", "memory"):
        raise RuntimeError("STORE_BACKEND must be postgres or memory")

    db_pool_min = max(1, int(os.getenv("DB_POOL_MIN", "1")))
    db_pool_max = max(db_pool_min, int(os.getenv("DB_POOL_MAX", "10")))

    return Settings(
        database_url=(os.getenv("DATABASE_URL") or "").strip() or None,
        store_backend=store_backend,
        redis_url=(os.getenv("REDIS_URL") or "").strip() or None,
        redis_prefix=(os.getenv("REDIS_PREFIX") or "smartbudget").strip() or "smartbudget",
        db_pool_min=db_pool_min,
        db_pool_max=db_pool_max,
        db_pool_timeout=float(os.getenv("DB_POOL_TIMEOUT", "30")),
        db_pool_max_waiting=int(os.getenv("DB_POOL_MAX_WAITING", "100")),
        api_rate_limit=int(os.getenv("API_RATE_LIMIT", "120")),
        api_rate_window=int(os.getenv("API_RATE_WINDOW", "60")),
        log_level=(os.getenv("LOG_LEVEL") or "INFO").strip().upper() or "INFO",
        log_json=env_bool("LOG_JSON", "true"),
        host=(os.getenv("HOST") or "0.0.0.0").strip() or "0.0.0.0",
        port=int(os.getenv("PORT", "3000")),
    )


settings = load_settings()
