import asyncio
import math
from datetime import datetime, timedelta, timezone
from typing import Any

from smartbudget.core.errors import bad_request
from smartbudget.db.store import CATEGORIES, TRANSACTIONS, Query, Store
from smartbudget.services.validators import (
    ALLOWED_CURRENCIES,
    ALLOWED_GRANULARITIES,
    ALLOWED_TYPES,
    get_month_range,
    is_valid_currency,
    is_valid_granularity,
    is_valid_month,
    is_valid_type,
)

UNCATEGORIZED_KEY = "__none__"
UNCATEGORIZED_NAME = "Uncategorized"
UNKNOWN_CATEGORY_NAME = "Unknown category"
FALLBACK_CATEGORY_NAME = "Category"


def coerce_amount(value: Any) -> float:
    # Corrupt stored amounts count as zero instead of failing the whole view.
    if isinstance(value, bool) or value is None:
        return 0.0
    try:
        amount = float(value)
    except (TypeError, ValueError):
        return 0.0
    return amount if math.isfinite(amount) else 0.0


def as_number(value: float) -> int | float:
    return int(value) if float(value).is_integer() else value


def parse_stored_date(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
        if parsed.tzinfo is None:
            return parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)
    return None


def day_key(value: datetime) -> str:
    return value.astimezone(timezone.utc).date().isoformat()


def week_start_key(value: datetime) -> str:
    day = value.astimezone(timezone.utc).date()
    return (day - timedelta(days=day.weekday())).isoformat()


def require_month(month: Any) -> str:
    if not month or not is_valid_month(month):
        raise bad_request(
            "invalid_month",
            "month is required and must use YYYY-MM format.",
            {"example": "2026-02"},
        )
    return month


def check_optional_currency(currency: Any) -> str | None:
    if currency in (None, ""):
        return None
    if not is_valid_currency(currency):
        raise bad_request(
            "invalid_currency",
            "Currency must be one of the supported values.",
            {"expected": list(ALLOWED_CURRENCIES)},
        )
    return currency


async def fetch_monthly_transactions(store: Store, uid: str, month: str, **equals: Any) -> list[dict[str, Any]]:
    start, end = get_month_range(month)
    query = Query().where("uid", "==", uid).where("date", ">=", start).where("date", "<", end)
    for field_name, value in equals.items():
        query = query.where(field_name, "==", value)
    return await store.collection(TRANSACTIONS).find(query.order("date", descending=True))


def compute_summary(transactions: list[dict[str, Any]]) -> dict[str, Any]:
    total_expense = 0.0
    total_income = 0.0
    for tx in transactions:
        amount = coerce_amount(tx.get("amount"))
        if tx.get("type") == "expense":
            total_expense += amount
        elif tx.get("type") == "income":
            total_income += amount
    return {
        "totalExpense": as_number(total_expense),
        "totalIncome": as_number(total_income),
        "balance": as_number(total_income - total_expense),
        "transactionCount": len(transactions),
    }


def group_by_category(transactions: list[dict[str, Any]]) -> dict[str, float]:
    grouped: dict[str, float] = {}
    for tx in transactions:
        key = tx.get("categoryId") or UNCATEGORIZED_KEY
        grouped[key] = grouped.get(key, 0.0) + coerce_amount(tx.get("amount"))
    return grouped


async def resolve_category_names(store: Store, uid: str, category_ids: list[str]) -> dict[str, str]:
    """Look up display names concurrently, keeping only categories owned by ``uid``.

    At most ``store.max_concurrency`` lookups are in flight at once.
    """
    if not category_ids:
        return {}
    collection = store.collection(CATEGORIES)
    gate = asyncio.Semaphore(max(1, store.max_concurrency))

    async def lookup(cid: str) -> dict[str, Any] | None:
        async with gate:
            return await collection.get(cid)

    docs = await asyncio.gather(*(lookup(cid) for cid in category_ids))
    names: dict[str, str] = {}
    for cid, doc in zip(category_ids, docs):
        if doc is None or doc.get("uid") != uid:
            continue
        names[cid] = doc.get("name") or FALLBACK_CATEGORY_NAME
    return names


def build_category_items(grouped: dict[str, float], names: dict[str, str]) -> list[dict[str, Any]]:
    items = []
    for key, total in grouped.items():
        if key == UNCATEGORIZED_KEY:
            items.append({"categoryId": None, "categoryName": UNCATEGORIZED_NAME, "total": as_number(total)})
        else:
            items.append(
                {
                    "categoryId": key,
                    "categoryName": names.get(key, UNKNOWN_CATEGORY_NAME),
                    "total": as_number(total),
                }
            )
    # sorted() is stable, so equal totals keep first-seen order
    return sorted(items, key=lambda item: item["total"], reverse=True)


def build_trend_series(transactions: list[dict[str, Any]], granularity: str) -> list[dict[str, Any]]:
    bucket = week_start_key if granularity == "week" else day_key
    grouped: dict[str, dict[str, float]] = {}
    for tx in transactions:
        tx_date = parse_stored_date(tx.get("date"))
        if tx_date is None:
            continue
        totals = grouped.setdefault(bucket(tx_date), {"totalExpense": 0.0, "totalIncome": 0.0})
        amount = coerce_amount(tx.get("amount"))
        if tx.get("type") == "expense":
            totals["totalExpense"] += amount
        elif tx.get("type") == "income":
            totals["totalIncome"] += amount

    return [
        {
            "date": key,
            "totalExpense": as_number(grouped[key]["totalExpense"]),
            "totalIncome": as_number(grouped[key]["totalIncome"]),
        }
        for key in sorted(grouped)
    ]


async def stats_summary(store: Store, uid: str, month: Any, currency: Any = None) -> dict[str, Any]:
    month = require_month(month)
    currency = check_optional_currency(currency)
    filters = {"currency": currency} if currency else {}
    transactions = await fetch_monthly_transactions(store, uid, month, **filters)
    return {"month": month, "currency": currency, **compute_summary(transactions)}


async def stats_by_category(
    store: Store,
    uid: str,
    month: Any,
    currency: Any,
    tx_type: Any = None,
) -> dict[str, Any]:
    month = require_month(month)
    if not currency or not is_valid_currency(currency):
        raise bad_request(
            "invalid_currency",
            "currency is required and must be a supported value.",
            {"expected": list(ALLOWED_CURRENCIES)},
        )
    tx_type = tx_type or "expense"
    if not is_valid_type(tx_type):
        raise bad_request(
            "invalid_type",
            "Transaction type must be one of the supported values.",
            {"expected": list(ALLOWED_TYPES)},
        )

    transactions = await fetch_monthly_transactions(store, uid, month, currency=currency, type=tx_type)
    grouped = group_by_category(transactions)
    names = await resolve_category_names(store, uid, [k for k in grouped if k != UNCATEGORIZED_KEY])
    return {
        "month": month,
        "currency": currency,
        "type": tx_type,
        "items": build_category_items(grouped, names),
    }


async def stats_trend(
    store: Store,
    uid: str,
    month: Any,
    currency: Any = None,
    granularity: Any = None,
) -> dict[str, Any]:
    month = require_month(month)
    currency = check_optional_currency(currency)
    granularity = granularity or "day"
    if not is_valid_granularity(granularity):
        raise bad_request(
            "invalid_granularity",
            "granularity must be either day or week.",
            {"expected": list(ALLOWED_GRANULARITIES)},
        )

    filters = {"currency": currency} if currency else {}
    transactions = await fetch_monthly_transactions(store, uid, month, **filters)
    return {
        "month": month,
        "currency": currency,
        "granularity": granularity,
        "items": build_trend_series(transactions, granularity),
    }
