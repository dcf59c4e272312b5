from fastapi import APIRouter, Depends

from smartbudget.core.responses import success
from smartbudget.db.store import Store
from smartbudget.routers.deps import get_store
from smartbudget.services.auth import Identity, require_user
from smartbudget.services.stats import stats_by_category, stats_summary, stats_trend

router = APIRouter(prefix="/stats")


@router.get("/summary")
async def summary(
    month: str | None = None,
    currency: str | None = None,
    user: Identity = Depends(require_user),
    store: Store = Depends(get_store),
):
    return success(await stats_summary(store, user.uid, month, currency))


@router.get("/by-category")
async def by_category(
    month: str | None = None,
    currency: str | None = None,
    type: str | None = None,
    user: Identity = Depends(require_user),
    store: Store = Depends(get_store),
):
    return success(await stats_by_category(store, user.uid, month, currency, type))


@router.get("/trend")
async def trend(
    month: str | None = None,
    currency: str | None = None,
    granularity: str | None = None,
    user: Identity = Depends(require_user),
    store: Store = Depends(get_store),
):
    return success(await stats_trend(store, user.uid, month, currency, granularity))
