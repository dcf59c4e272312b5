from fastapi import APIRouter, Depends, Request

from smartbudget.core.responses import success
from smartbudget.models.api import HealthResponse, MeResponse
from smartbudget.services.auth import Identity, require_user

router = APIRouter()


@router.get("/")
def root():
    return success({"message": "SmartBudget API is running"})


@router.get("/health")
def health(req: Request):
    state = req.app.state
    payload = HealthResponse(
        storeReady=state.store is not None,
        identityReady=state.identity.ready,
        rateLimitShared=state.rate_limiter.shared,
    )
    return success(payload.model_dump())


@router.get("/me")
async def me(user: Identity = Depends(require_user)):
    return success(MeResponse(uid=user.uid, email=user.email).model_dump())
