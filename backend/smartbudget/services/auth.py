import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Protocol

from fastapi import Request
from starlette.concurrency import run_in_threadpool

from smartbudget.core.errors import ApiError, IdentityUnavailable, InvalidCredential, StoreUnavailable
from smartbudget.db.store import API_KEYS, Query, Store

logger = logging.getLogger(__name__)

KEY_PREFIX = "sbk_"


@dataclass(frozen=True)
class Identity:
    uid: str
    email: str | None = None


class IdentityVerifier(Protocol):
    @property
    def ready(self) -> bool: ...

    async def verify(self, token: str) -> Identity: ...


def hash_api_key(plain: str) -> str:
    return hashlib.sha256(plain.encode("utf-8")).hexdigest()


def _new_api_key() -> tuple[str, str]:
    plain = f"{KEY_PREFIX}{secrets.token_urlsafe(32)}"
    return plain, hash_api_key(plain)


def mask_api_key(plain: str) -> str:
    visible = max(6, len(plain) // 2)
    if visible >= len(plain):
        visible = max(1, len(plain) - 1)
    return plain[:visible] + ("*" * (len(plain) - visible))


async def issue_api_key(store: Store, uid: str, email: str | None = None, label: str = "default") -> str:
    """Create a key for ``uid`` and return it in plain text (shown once).

    Single-key policy: any active key of the same user is revoked first.
    """
    keys = store.collection(API_KEYS)
    now = datetime.now(timezone.utc)
    active = await keys.find(Query().where("uid", "==", uid).where("revokedAt", "==", None))
    for row in active:
        await keys.update(row["id"], {"revokedAt": now})

    plain, key_hash = _new_api_key()
    await keys.add(
        {
            "uid": uid,
            "email": email,
            "keyHash": key_hash,
            "keyPrefix": plain[:12],
            "keyMasked": mask_api_key(plain),
            "label": label,
            "lastUsedAt": None,
            "revokedAt": None,
        }
    )
    return plain


class ApiKeyVerifier:
    """Resolves bearer API keys stored hashed in the ``api_keys`` collection."""

    def __init__(self, store: Store | None) -> None:
        self._store = store

    @property
    def ready(self) -> bool:
        return self._store is not None

    async def verify(self, token: str) -> Identity:
        if self._store is None:
            raise IdentityUnavailable("api key store is not configured")
        keys = self._store.collection(API_KEYS)
        rows = await keys.find(
            Query().where("keyHash", "==", hash_api_key(token)).where("revokedAt", "==", None).take(1)
        )
        if not rows:
            raise InvalidCredential("unknown or revoked api key")
        row = rows[0]
        await keys.update(row["id"], {"lastUsedAt": datetime.now(timezone.utc)})
        return Identity(uid=row["uid"], email=row.get("email"))


def get_client_ip(req: Request) -> str:
    forwarded = req.headers.get("x-forwarded-for", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = req.headers.get("x-real-ip", "")
    if real_ip:
        return real_ip.strip()
    if req.client:
        return req.client.host
    return "unknown"


def parse_bearer_token(req: Request) -> str:
    header = req.headers.get("authorization", "")
    parts = header.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1].strip():
        raise ApiError(401, "missing_token", "Authorization: Bearer <api key> is required.")
    return parts[1].strip()


def enforce_api_rate_limit(req: Request, token: str) -> None:
    limiter = req.app.state.rate_limiter
    settings = req.app.state.settings
    key_hash = hash_api_key(token)[:24]
    for key in (f"api:key:{key_hash}", f"api:ip:{get_client_ip(req)}"):
        decision = limiter.hit(key, settings.api_rate_limit, settings.api_rate_window)
        if decision.exceeded:
            raise ApiError(
                429,
                "rate_limited",
                "Rate limit exceeded.",
                {"retryAfter": decision.retry_after},
                headers={"Retry-After": str(decision.retry_after)},
            )


async def require_user(req: Request) -> Identity:
    token = parse_bearer_token(req)
    verifier: IdentityVerifier = req.app.state.identity
    if not verifier.ready:
        if req.app.state.store is None:
            raise StoreUnavailable("no store configured")
        raise ApiError(503, "auth_unavailable", "The identity service is not configured on the server.")
    # The limiter may make blocking redis round-trips.
    await run_in_threadpool(enforce_api_rate_limit, req, token)
    try:
        return await verifier.verify(token)
    except IdentityUnavailable as exc:
        logger.warning("identity service unavailable: %s", exc)
        raise ApiError(503, "auth_unavailable", "The identity service is not configured on the server.") from exc
    except InvalidCredential:
        raise ApiError(401, "invalid_token", "The bearer credential is invalid or revoked.") from None
