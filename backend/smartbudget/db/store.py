"""Document store contract shared by every backend.

Documents are plain dicts carrying their ``id``. Collections support the
subset of operations the API needs: insert with a generated id, get by id,
equality and range filters, single-field ordering with the id as tie-breaker,
limit, start-strictly-after-a-document cursoring, partial update with a
server-assigned ``updatedAt`` and delete.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Protocol

TRANSACTIONS = "transactions"
CATEGORIES = "categories"
API_KEYS = "api_keys"

FILTER_OPS = ("==", ">=", "<")


@dataclass(frozen=True)
class Filter:
    field: str
    op: str
    value: Any


@dataclass(frozen=True)
class Query:
    filters: tuple[Filter, ...] = ()
    order_by: str | None = None
    descending: bool = False
    limit: int | None = None
    start_after: dict[str, Any] | None = field(default=None, compare=False)

    def where(self, field_name: str, op: str, value: Any) -> "Query":
        if op not in FILTER_OPS:
            raise ValueError(f"unsupported filter operator {op!r}")
        return replace(self, filters=self.filters + (Filter(field_name, op, value),))

    def order(self, field_name: str, descending: bool = False) -> "Query":
        return replace(self, order_by=field_name, descending=descending)

    def take(self, limit: int) -> "Query":
        return replace(self, limit=limit)

    def after(self, document: dict[str, Any]) -> "Query":
        if self.order_by is None:
            raise ValueError("start_after requires an order_by field")
        return replace(self, start_after=document)


class Collection(Protocol):
    name: str

    async def add(self, data: dict[str, Any]) -> dict[str, Any]: ...

    async def get(self, doc_id: str) -> dict[str, Any] | None: ...

    async def find(self, query: Query) -> list[dict[str, Any]]: ...

    async def update(self, doc_id: str, patch: dict[str, Any]) -> dict[str, Any] | None: ...

    async def delete(self, doc_id: str) -> bool: ...


class Store(Protocol):
    # Upper bound on concurrent calls a single request should issue.
    @property
    def max_concurrency(self) -> int: ...

    def collection(self, name: str) -> Collection: ...

    async def close(self) -> None: ...
