from dataclasses import dataclass
from typing import Any

from psycopg import sql
from psycopg_pool import AsyncConnectionPool

from smartbudget.db.store import API_KEYS, CATEGORIES, TRANSACTIONS, Query

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS categories (
    id          text PRIMARY KEY DEFAULT gen_random_uuid()::text,
    uid         text NOT NULL,
    name        text NOT NULL,
    icon        text,
    color       text,
    created_at  timestamptz NOT NULL DEFAULT now(),
    updated_at  timestamptz NOT NULL DEFAULT now()
);
CREATE INDEX IF NOT EXISTS categories_uid_name_idx
    ON categories (uid, (name COLLATE "C"), id);

CREATE TABLE IF NOT EXISTS transactions (
    id           text PRIMARY KEY DEFAULT gen_random_uuid()::text,
    uid          text NOT NULL,
    type         text NOT NULL,
    amount       double precision NOT NULL,
    currency     text NOT NULL,
    category_id  text,
    note         text NOT NULL DEFAULT '',
    date         timestamptz NOT NULL,
    created_at   timestamptz NOT NULL DEFAULT now(),
    updated_at   timestamptz NOT NULL DEFAULT now()
);
CREATE INDEX IF NOT EXISTS transactions_uid_date_idx
    ON transactions (uid, date DESC, id DESC);

CREATE TABLE IF NOT EXISTS api_keys (
    id            text PRIMARY KEY DEFAULT gen_random_uuid()::text,
    uid           text NOT NULL,
    email         text,
    key_hash      text NOT NULL UNIQUE,
    key_prefix    text NOT NULL,
    key_masked    text NOT NULL,
    label         text NOT NULL DEFAULT 'default',
    created_at    timestamptz NOT NULL DEFAULT now(),
    updated_at    timestamptz NOT NULL DEFAULT now(),
    last_used_at  timestamptz,
    revoked_at    timestamptz
);
CREATE INDEX IF NOT EXISTS api_keys_uid_idx ON api_keys (uid);
"""


@dataclass(frozen=True)
class TableSpec:
    table: str
    columns: dict[str, str]
    text_fields: frozenset[str] = frozenset()


TABLES = {
    TRANSACTIONS: TableSpec(
        table="transactions",
        columns={
            "uid": "uid",
            "type": "type",
            "amount": "amount",
            "currency": "currency",
            "categoryId": "category_id",
            "note": "note",
            "date": "date",
        },
    ),
    CATEGORIES: TableSpec(
        table="categories",
        columns={"uid": "uid", "name": "name", "icon": "icon", "color": "color"},
        text_fields=frozenset({"name"}),
    ),
    API_KEYS: TableSpec(
        table="api_keys",
        columns={
            "uid": "uid",
            "email": "email",
            "keyHash": "key_hash",
            "keyPrefix": "key_prefix",
            "keyMasked": "key_masked",
            "label": "label",
            "lastUsedAt": "last_used_at",
            "revokedAt": "revoked_at",
        },
    ),
}

_SERVER_COLUMNS = {"createdAt": "created_at", "updatedAt": "updated_at"}


class PostgresCollection:
    def __init__(self, pool: AsyncConnectionPool, name: str, spec: TableSpec) -> None:
        self.name = name
        self._pool = pool
        self._spec = spec
        self._fields = {**spec.columns, **_SERVER_COLUMNS}
        self._select = sql.SQL(", ").join(
            [sql.SQL("id")]
            + [sql.SQL("{} AS {}").format(sql.Identifier(col), sql.Identifier(f)) for f, col in self._fields.items()]
        )

    def _column(self, field_name: str) -> sql.Identifier:
        if field_name == "id":
            return sql.Identifier("id")
        try:
            return sql.Identifier(self._fields[field_name])
        except KeyError:
            raise ValueError(f"unknown field {field_name!r} for {self.name}") from None

    def _sort_expr(self, field_name: str) -> sql.Composable:
        # Byte-order collation keeps text ordering identical across locales.
        if field_name in self._spec.text_fields:
            return sql.SQL('{} COLLATE "C"').format(self._column(field_name))
        return self._column(field_name)

    def _writable(self, data: dict[str, Any]) -> dict[str, Any]:
        return {self._spec.columns[k]: v for k, v in data.items() if k in self._spec.columns}

    async def add(self, data: dict[str, Any]) -> dict[str, Any]:
        values = self._writable(data)
        query = sql.SQL("INSERT INTO {} ({}) VALUES ({}) RETURNING {}").format(
            sql.Identifier(self._spec.table),
            sql.SQL(", ").join(sql.Identifier(c) for c in values),
            sql.SQL(", ").join(sql.Placeholder() for _ in values),
            self._select,
        )
        async with self._pool.connection() as conn, conn.cursor() as cur:
            await cur.execute(query, list(values.values()))
            row = await cur.fetchone()
            await conn.commit()
        return row

    async def get(self, doc_id: str) -> dict[str, Any] | None:
        query = sql.SQL("SELECT {} FROM {} WHERE id=%s").format(self._select, sql.Identifier(self._spec.table))
        async with self._pool.connection() as conn, conn.cursor() as cur:
            await cur.execute(query, (doc_id,))
            return await cur.fetchone()

    async def find(self, query: Query) -> list[dict[str, Any]]:
        clauses: list[sql.Composable] = []
        params: list[Any] = []
        for flt in query.filters:
            column = self._column(flt.field)
            if flt.op == "==" and flt.value is None:
                clauses.append(sql.SQL("{} IS NULL").format(column))
                continue
            clauses.append(sql.SQL("{} {} %s").format(column, sql.SQL(flt.op if flt.op != "==" else "=")))
            params.append(flt.value)

        order_sql = sql.SQL("")
        if query.order_by is not None:
            direction = sql.SQL("DESC" if query.descending else "ASC")
            sort_expr = self._sort_expr(query.order_by)
            if query.start_after is not None:
                comparator = sql.SQL("<" if query.descending else ">")
                clauses.append(sql.SQL("({}, id) {} (%s, %s)").format(sort_expr, comparator))
                params.extend([query.start_after.get(query.order_by), query.start_after["id"]])
            order_sql = sql.SQL(" ORDER BY {} {}, id {}").format(sort_expr, direction, direction)

        where_sql = sql.SQL("")
        if clauses:
            where_sql = sql.SQL(" WHERE ") + sql.SQL(" AND ").join(clauses)
        limit_sql = sql.SQL("")
        if query.limit is not None:
            limit_sql = sql.SQL(" LIMIT %s")
            params.append(int(query.limit))

        statement = (
            sql.SQL("SELECT {} FROM {}").format(self._select, sql.Identifier(self._spec.table))
            + where_sql
            + order_sql
            + limit_sql
        )
        async with self._pool.connection() as conn, conn.cursor() as cur:
            await cur.execute(statement, params)
            return await cur.fetchall()

    async def update(self, doc_id: str, patch: dict[str, Any]) -> dict[str, Any] | None:
        values = self._writable(patch)
        assignments = [sql.SQL("{}=%s").format(sql.Identifier(c)) for c in values]
        assignments.append(sql.SQL("updated_at=GREATEST(now(), updated_at)"))
        statement = sql.SQL("UPDATE {} SET {} WHERE id=%s RETURNING {}").format(
            sql.Identifier(self._spec.table),
            sql.SQL(", ").join(assignments),
            self._select,
        )
        async with self._pool.connection() as conn, conn.cursor() as cur:
            await cur.execute(statement, [*values.values(), doc_id])
            row = await cur.fetchone()
            await conn.commit()
        return row

    async def delete(self, doc_id: str) -> bool:
        statement = sql.SQL("DELETE FROM {} WHERE id=%s").format(sql.Identifier(self._spec.table))
        async with self._pool.connection() as conn, conn.cursor() as cur:
            await cur.execute(statement, (doc_id,))
            deleted = cur.rowcount > 0
            await conn.commit()
        return deleted


class PostgresStore:
    def __init__(self, pool: AsyncConnectionPool) -> None:
        self._pool = pool
        self._collections = {name: PostgresCollection(pool, name, spec) for name, spec in TABLES.items()}

    @property
    def max_concurrency(self) -> int:
        return self._pool.max_size

    def collection(self, name: str) -> PostgresCollection:
        return self._collections[name]

    async def open(self) -> None:
        await self._pool.open()

    async def close(self) -> None:
        await self._pool.close()

    async def init_schema(self) -> None:
        async with self._pool.connection() as conn:
            await conn.execute(SCHEMA_SQL)
            await conn.commit()
