from datetime import datetime, timezone
from typing import Any

from smartbudget.core.errors import bad_request, forbidden, not_found
from smartbudget.db.store import TRANSACTIONS, Store
from smartbudget.services.ownership import validate_category_ownership
from smartbudget.services.validators import (
    ALLOWED_CURRENCIES,
    ALLOWED_TYPES,
    is_valid_currency,
    is_valid_type,
    parse_amount,
    parse_strict_iso_date,
)

PATCHABLE_FIELDS = ("type", "amount", "currency", "categoryId", "note", "date")


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _type(value: Any) -> str:
    if not is_valid_type(value):
        raise bad_request("invalid_type", "type must be income or expense.", {"expected": list(ALLOWED_TYPES)})
    return value


def _amount(value: Any) -> float:
    amount = parse_amount(value)
    if amount is None:
        raise bad_request("invalid_amount", "amount must be a positive finite number.")
    return amount


def _currency(value: Any) -> str:
    if not is_valid_currency(value):
        raise bad_request(
            "invalid_currency",
            "Currency must be one of the supported values.",
            {"expected": list(ALLOWED_CURRENCIES)},
        )
    return value


def _date(value: Any) -> datetime:
    parsed = parse_strict_iso_date(value)
    if parsed is None:
        raise bad_request(
            "invalid_date",
            "date must be a full ISO-8601 datetime with timezone.",
            {"example": "2026-02-24T12:30:45.123Z"},
        )
    return parsed


def _note(value: Any) -> str:
    return "" if value is None else str(value)


async def _category(store: Store, uid: str, value: Any) -> str | None:
    result = await validate_category_ownership(store, uid, value)
    if not result.valid:
        raise bad_request("invalid_category", "categoryId must reference one of your categories.")
    return result.category_id


async def load_owned_transaction(store: Store, uid: str, tx_id: str) -> dict[str, Any]:
    doc = await store.collection(TRANSACTIONS).get(tx_id)
    if doc is None:
        raise not_found("Transaction not found.")
    if doc.get("uid") != uid:
        raise forbidden()
    return doc


async def create_transaction(store: Store, uid: str, body: dict[str, Any]) -> dict[str, Any]:
    tx_type = _type(body.get("type"))
    amount = _amount(body.get("amount"))
    currency = _currency(body.get("currency"))
    # Any falsy date (missing, null, "") means now.
    date = _date(body["date"]) if body.get("date") else now_utc()
    category_id = await _category(store, uid, body.get("categoryId"))

    doc = {
        "uid": uid,
        "type": tx_type,
        "amount": amount,
        "currency": currency,
        "categoryId": category_id,
        "note": _note(body.get("note")),
        "date": date,
    }
    return await store.collection(TRANSACTIONS).add(doc)


async def get_transaction(store: Store, uid: str, tx_id: str) -> dict[str, Any]:
    return await load_owned_transaction(store, uid, tx_id)


async def patch_transaction(store: Store, uid: str, tx_id: str, body: dict[str, Any]) -> dict[str, Any]:
    """Apply a partial update.

    Read-then-write without a version check: two concurrent patches to the
    same transaction resolve last-write-wins.
    """
    await load_owned_transaction(store, uid, tx_id)

    fields = {k: body[k] for k in PATCHABLE_FIELDS if k in body}
    if not fields:
        raise bad_request("empty_patch", "Provide at least one field to update.", {"allowed": list(PATCHABLE_FIELDS)})

    patch: dict[str, Any] = {}
    if "type" in fields:
        patch["type"] = _type(fields["type"])
    if "amount" in fields:
        patch["amount"] = _amount(fields["amount"])
    if "currency" in fields:
        patch["currency"] = _currency(fields["currency"])
    if "note" in fields:
        patch["note"] = _note(fields["note"])
    if "date" in fields:
        patch["date"] = _date(fields["date"])
    if "categoryId" in fields:
        patch["categoryId"] = await _category(store, uid, fields["categoryId"])

    updated = await store.collection(TRANSACTIONS).update(tx_id, patch)
    if updated is None:
        raise not_found("Transaction not found.")
    return updated


async def delete_transaction(store: Store, uid: str, tx_id: str) -> str:
    await load_owned_transaction(store, uid, tx_id)
    if not await store.collection(TRANSACTIONS).delete(tx_id):
        raise not_found("Transaction not found.")
    return tx_id
