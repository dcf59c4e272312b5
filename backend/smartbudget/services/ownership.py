from dataclasses import dataclass
from typing import Any

from smartbudget.db.store import CATEGORIES, Collection, Store


@dataclass(frozen=True)
class OwnershipResult:
    valid: bool
    category_id: str | None = None


async def resolve_owned_document(collection: Collection, uid: str, doc_id: Any) -> dict[str, Any] | None:
    """Return the document when it exists and belongs to ``uid``, else ``None``."""
    if not isinstance(doc_id, str) or not doc_id.strip():
        return None
    doc = await collection.get(doc_id.strip())
    if doc is None or doc.get("uid") != uid:
        return None
    return doc


async def validate_category_ownership(store: Store, uid: str, category_id: Any) -> OwnershipResult:
    if category_id is None:
        return OwnershipResult(valid=True, category_id=None)
    category = await resolve_owned_document(store.collection(CATEGORIES), uid, category_id)
    if category is None:
        return OwnershipResult(valid=False)
    return OwnershipResult(valid=True, category_id=category["id"])
