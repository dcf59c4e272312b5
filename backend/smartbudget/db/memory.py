import asyncio
import uuid
from datetime import datetime, timezone
from typing import Any

from smartbudget.db.store import Filter, Query


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _matches(doc: dict[str, Any], flt: Filter) -> bool:
    value = doc.get(flt.field)
    if flt.op == "==":
        return value == flt.value
    if value is None:
        return False
    if flt.op == ">=":
        return value >= flt.value
    return value < flt.value


class MemoryCollection:
    """Process-local collection. Every call yields to the event loop once so
    concurrent handlers interleave the way they do against a real store."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._docs: dict[str, dict[str, Any]] = {}

    async def add(self, data: dict[str, Any]) -> dict[str, Any]:
        await asyncio.sleep(0)
        now = _utcnow()
        doc_id = uuid.uuid4().hex
        doc = {**data, "id": doc_id, "createdAt": now, "updatedAt": now}
        self._docs[doc_id] = doc
        return dict(doc)

    async def get(self, doc_id: str) -> dict[str, Any] | None:
        await asyncio.sleep(0)
        doc = self._docs.get(doc_id)
        return dict(doc) if doc is not None else None

    async def find(self, query: Query) -> list[dict[str, Any]]:
        await asyncio.sleep(0)
        docs = [d for d in self._docs.values() if all(_matches(d, f) for f in query.filters)]
        if query.order_by is not None:
            order_field = query.order_by
            docs.sort(key=lambda d: (d.get(order_field), d["id"]), reverse=query.descending)
            if query.start_after is not None:
                anchor = (query.start_after.get(order_field), query.start_after["id"])
                if query.descending:
                    docs = [d for d in docs if (d.get(order_field), d["id"]) < anchor]
                else:
                    docs = [d for d in docs if (d.get(order_field), d["id"]) > anchor]
        if query.limit is not None:
            docs = docs[: query.limit]
        return [dict(d) for d in docs]

    async def update(self, doc_id: str, patch: dict[str, Any]) -> dict[str, Any] | None:
        await asyncio.sleep(0)
        doc = self._docs.get(doc_id)
        if doc is None:
            return None
        fields = {k: v for k, v in patch.items() if k not in ("id", "createdAt", "updatedAt")}
        doc.update(fields)
        doc["updatedAt"] = max(_utcnow(), doc["updatedAt"])
        return dict(doc)

    async def delete(self, doc_id: str) -> bool:
        await asyncio.sleep(0)
        return self._docs.pop(doc_id, None) is not None


class MemoryStore:
    max_concurrency = 8

    def __init__(self) -> None:
        self._collections: dict[str, MemoryCollection] = {}

    def collection(self, name: str) -> MemoryCollection:
        if name not in self._collections:
            self._collections[name] = MemoryCollection(name)
        return self._collections[name]

    async def close(self) -> None:
        return None
