from fastapi import Request

from smartbudget.core.errors import StoreUnavailable
from smartbudget.db.store import Store


def get_store(req: Request) -> Store:
    store = req.app.state.store
    if store is None:
        raise StoreUnavailable("no store configured")
    return store
