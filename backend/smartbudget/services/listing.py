from dataclasses import dataclass
from typing import Any

from smartbudget.core.errors import bad_request
from smartbudget.db.store import CATEGORIES, TRANSACTIONS, Collection, Query, Store
from smartbudget.services.documents import serialize_document
from smartbudget.services.ownership import resolve_owned_document
from smartbudget.services.pagination import cursor_token, read_cursor_id
from smartbudget.services.validators import (
    ALLOWED_CURRENCIES,
    ALLOWED_TYPES,
    MAX_PAGE_LIMIT,
    get_month_range,
    is_valid_currency,
    is_valid_month,
    is_valid_type,
    parse_limit,
)


@dataclass(frozen=True)
class TransactionFilters:
    month: str | None = None
    currency: str | None = None
    type: str | None = None
    category_id: str | None = None


@dataclass
class Page:
    items: list[dict[str, Any]]
    limit: int
    has_more: bool
    next_page_token: str | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "items": [serialize_document(item) for item in self.items],
            "pageInfo": {
                "limit": self.limit,
                "hasMore": self.has_more,
                "nextPageToken": self.next_page_token,
            },
        }


def require_limit(value: Any) -> int:
    limit = parse_limit(value)
    if limit is None:
        raise bad_request(
            "invalid_limit",
            "limit must be an integer greater than or equal to 1.",
            {"max": MAX_PAGE_LIMIT},
        )
    return limit


def check_transaction_filters(filters: TransactionFilters) -> None:
    if filters.currency is not None and not is_valid_currency(filters.currency):
        raise bad_request(
            "invalid_currency",
            "Currency must be one of the supported values.",
            {"expected": list(ALLOWED_CURRENCIES)},
        )
    if filters.type is not None and not is_valid_type(filters.type):
        raise bad_request(
            "invalid_type",
            "Transaction type must be one of the supported values.",
            {"expected": list(ALLOWED_TYPES)},
        )
    if filters.month is not None and not is_valid_month(filters.month):
        raise bad_request("invalid_month", "month must use YYYY-MM format.", {"example": "2026-02"})
    if filters.category_id is not None and not filters.category_id.strip():
        raise bad_request("invalid_category", "categoryId filter must not be blank.")


async def paginate(
    collection: Collection,
    uid: str,
    query: Query,
    limit: int,
    page_token: str | None,
) -> Page:
    """Run ``query`` for one page.

    ``query`` must already carry the uid filter and the sort order. One extra
    document is fetched to learn whether another page exists. A page token is
    honoured only when it points at a document that still exists and belongs
    to ``uid``.
    """
    if page_token:
        cursor_id = read_cursor_id(page_token)
        anchor = await resolve_owned_document(collection, uid, cursor_id) if cursor_id else None
        if anchor is None:
            raise bad_request("invalid_page_token", "pageToken is malformed, expired or not yours.")
        query = query.after(anchor)

    docs = await collection.find(query.take(limit + 1))
    has_more = len(docs) > limit
    items = docs[:limit]
    next_token = cursor_token(items[-1]["id"]) if has_more and items else None
    return Page(items=items, limit=limit, has_more=has_more, next_page_token=next_token)


async def list_transactions(
    store: Store,
    uid: str,
    filters: TransactionFilters,
    limit: Any = None,
    page_token: str | None = None,
) -> Page:
    check_transaction_filters(filters)
    page_limit = require_limit(limit)

    query = Query().where("uid", "==", uid)
    if filters.currency:
        query = query.where("currency", "==", filters.currency)
    if filters.type:
        query = query.where("type", "==", filters.type)
    if filters.category_id:
        query = query.where("categoryId", "==", filters.category_id.strip())
    if filters.month:
        start, end = get_month_range(filters.month)
        query = query.where("date", ">=", start).where("date", "<", end)
    query = query.order("date", descending=True)

    return await paginate(store.collection(TRANSACTIONS), uid, query, page_limit, page_token)


async def list_categories(store: Store, uid: str, limit: Any = None, page_token: str | None = None) -> Page:
    page_limit = require_limit(limit)
    query = Query().where("uid", "==", uid).order("name")
    return await paginate(store.collection(CATEGORIES), uid, query, page_limit, page_token)
