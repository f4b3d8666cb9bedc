from .config import Settings
from .repository import OrderStore


def build_store(settings: Settings) -> OrderStore:
    if settings.store_backend == "json":
        from .json_store import JsonOrderStore

        return JsonOrderStore(settings.data_dir)

    from .sql_store import SqlOrderStore

    return SqlOrderStore(settings.database_url)
