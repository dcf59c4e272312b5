from typing import Any

from smartbudget.core.errors import bad_request, forbidden, not_found
from smartbudget.db.store import CATEGORIES, Store
from smartbudget.services.validators import CATEGORY_NAME_MAX, CATEGORY_NAME_MIN, normalize_category_name

PATCHABLE_FIELDS = ("name", "icon", "color")


def _name(value: Any) -> str:
    name = normalize_category_name(value)
    if name is None:
        raise bad_request(
            "invalid_name",
            f"name must be {CATEGORY_NAME_MIN}-{CATEGORY_NAME_MAX} characters.",
            {"min": CATEGORY_NAME_MIN, "max": CATEGORY_NAME_MAX},
        )
    return name


def _display_hint(field_name: str, value: Any) -> str | None:
    if value is None or isinstance(value, str):
        return value
    raise bad_request(f"invalid_{field_name}", f"{field_name} must be a string or null.")


async def load_owned_category(store: Store, uid: str, category_id: str) -> dict[str, Any]:
    doc = await store.collection(CATEGORIES).get(category_id)
    if doc is None:
        raise not_found("Category not found.")
    if doc.get("uid") != uid:
        raise forbidden()
    return doc


async def create_category(store: Store, uid: str, body: dict[str, Any]) -> dict[str, Any]:
    doc = {
        "uid": uid,
        "name": _name(body.get("name")),
        "icon": _display_hint("icon", body.get("icon")),
        "color": _display_hint("color", body.get("color")),
    }
    return await store.collection(CATEGORIES).add(doc)


async def get_category(store: Store, uid: str, category_id: str) -> dict[str, Any]:
    return await load_owned_category(store, uid, category_id)


async def patch_category(store: Store, uid: str, category_id: str, body: dict[str, Any]) -> dict[str, Any]:
    await load_owned_category(store, uid, category_id)

    fields = {k: body[k] for k in PATCHABLE_FIELDS if k in body}
    if not fields:
        raise bad_request("empty_patch", "Provide at least one field to update.", {"allowed": list(PATCHABLE_FIELDS)})

    patch: dict[str, Any] = {}
    if "name" in fields:
        patch["name"] = _name(fields["name"])
    for hint in ("icon", "color"):
        if hint in fields:
            patch[hint] = _display_hint(hint, fields[hint])

    updated = await store.collection(CATEGORIES).update(category_id, patch)
    if updated is None:
        raise not_found("Category not found.")
    return updated


async def delete_category(store: Store, uid: str, category_id: str) -> str:
    # Transactions keep their categoryId; stats report it as an unknown category.
    await load_owned_category(store, uid, category_id)
    if not await store.collection(CATEGORIES).delete(category_id):
        raise not_found("Category not found.")
    return category_id
