import logging
import os
from dataclasses import dataclass


def _get_required_env(name: str) -> str:
    value = os.getenv(name)
    if not value:
        raise RuntimeError(f"Environment variable {name} must be set")
    return value


def _get_bool_env(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


STORE_BACKENDS = ("sql", "json")
LOG_HANDLER_NAME = "tmwatch"


@dataclass(frozen=True)
class Settings:
    store_backend: str
    database_url: str | None
    data_dir: str
    jwt_secret: str
    jwt_algorithm: str
    redis_url: str | None
    catalog_cache_ttl: int
    rabbitmq_url: str | None
    outbox_poll_interval: float
    seed_products: bool
    log_level: str


def load_settings() -> Settings:
    backend = os.getenv("STORE_BACKEND", "sql").lower()
    if backend not in STORE_BACKENDS:
        raise RuntimeError(
            f"STORE_BACKEND must be one of {', '.join(STORE_BACKENDS)}, got {backend!r}"
        )

    return Settings(
        store_backend=backend,
        database_url=_get_required_env("DATABASE_URL") if backend == "sql" else None,
        data_dir=os.getenv("DATA_DIR", "./data"),
        jwt_secret=_get_required_env("JWT_SECRET"),
        jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256"),
        redis_url=os.getenv("REDIS_URL") or None,
        catalog_cache_ttl=int(os.getenv("CATALOG_CACHE_TTL", "60")),
        rabbitmq_url=os.getenv("RABBITMQ_URL") or None,
        outbox_poll_interval=float(os.getenv("OUTBOX_POLL_INTERVAL", "5")),
        seed_products=_get_bool_env("SEED_PRODUCTS"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )


def configure_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    if not any(h.get_name() == LOG_HANDLER_NAME for h in root.handlers):
        handler = logging.StreamHandler()
        handler.set_name(LOG_HANDLER_NAME)
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s")
        )
        root.addHandler(handler)
    root.setLevel(level)
