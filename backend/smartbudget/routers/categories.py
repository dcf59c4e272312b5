from fastapi import APIRouter, Depends, Query

from smartbudget.core.responses import success
from smartbudget.db.store import Store
from smartbudget.models.api import CategoryBody
from smartbudget.routers.deps import get_store
from smartbudget.services.auth import Identity, require_user
from smartbudget.services.categories import create_category, delete_category, get_category, patch_category
from smartbudget.services.documents import serialize_document
from smartbudget.services.listing import list_categories

router = APIRouter(prefix="/categories")


@router.post("")
async def create_cat(
    payload: CategoryBody,
    user: Identity = Depends(require_user),
    store: Store = Depends(get_store),
):
    doc = await create_category(store, user.uid, payload.model_dump(exclude_unset=True))
    return success(serialize_document(doc), status_code=201)


@router.get("")
async def list_cat(
    limit: str | None = None,
    page_token: str | None = Query(default=None, alias="pageToken"),
    user: Identity = Depends(require_user),
    store: Store = Depends(get_store),
):
    page = await list_categories(store, user.uid, limit, page_token)
    return success(page.to_payload())


@router.get("/{category_id}")
async def get_cat(
    category_id: str,
    user: Identity = Depends(require_user),
    store: Store = Depends(get_store),
):
    return success(serialize_document(await get_category(store, user.uid, category_id)))


@router.patch("/{category_id}")
async def patch_cat(
    category_id: str,
    payload: CategoryBody,
    user: Identity = Depends(require_user),
    store: Store = Depends(get_store),
):
    doc = await patch_category(store, user.uid, category_id, payload.model_dump(exclude_unset=True))
    return success(serialize_document(doc))


@router.delete("/{category_id}")
async def delete_cat(
    category_id: str,
    user: Identity = Depends(require_user),
    store: Store = Depends(get_store),
):
    return success({"id": await delete_category(store, user.uid, category_id)})
