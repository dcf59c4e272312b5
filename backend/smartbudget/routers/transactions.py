from fastapi import APIRouter, Depends, Query

from smartbudget.core.responses import success
from smartbudget.db.store import Store
from smartbudget.models.api import TransactionBody
from smartbudget.routers.deps import get_store
from smartbudget.services.auth import Identity, require_user
from smartbudget.services.documents import serialize_document
from smartbudget.services.listing import TransactionFilters, list_transactions
from smartbudget.services.transactions import (
    create_transaction,
    delete_transaction,
    get_transaction,
    patch_transaction,
)

router = APIRouter(prefix="/transactions")


@router.post("")
async def create_tx(
    payload: TransactionBody,
    user: Identity = Depends(require_user),
    store: Store = Depends(get_store),
):
    doc = await create_transaction(store, user.uid, payload.model_dump(exclude_unset=True))
    return success(serialize_document(doc), status_code=201)


@router.get("")
async def list_tx(
    limit: str | None = None,
    page_token: str | None = Query(default=None, alias="pageToken"),
    month: str | None = None,
    currency: str | None = None,
    type: str | None = None,
    category_id: str | None = Query(default=None, alias="categoryId"),
    user: Identity = Depends(require_user),
    store: Store = Depends(get_store),
):
    filters = TransactionFilters(month=month, currency=currency, type=type, category_id=category_id)
    page = await list_transactions(store, user.uid, filters, limit, page_token)
    return success(page.to_payload())


@router.get("/{transaction_id}")
async def get_tx(
    transaction_id: str,
    user: Identity = Depends(require_user),
    store: Store = Depends(get_store),
):
    return success(serialize_document(await get_transaction(store, user.uid, transaction_id)))


@router.patch("/{transaction_id}")
async def patch_tx(
    transaction_id: str,
    payload: TransactionBody,
    user: Identity = Depends(require_user),
    store: Store = Depends(get_store),
):
    doc = await patch_transaction(store, user.uid, transaction_id, payload.model_dump(exclude_unset=True))
    return success(serialize_document(doc))


@router.delete("/{transaction_id}")
async def delete_tx(
    transaction_id: str,
    user: Identity = Depends(require_user),
    store: Store = Depends(get_store),
):
    return success({"id": await delete_transaction(store, user.uid, transaction_id)})
