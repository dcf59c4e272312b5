import argparse
import asyncio
import logging
import sys
from datetime import datetime, timezone

from smartbudget.core.config import settings
from smartbudget.core.logging import configure_logging
from smartbudget.db.pool import create_db_pool
from smartbudget.db.postgres import PostgresStore
from smartbudget.db.store import Store
from smartbudget.services.auth import issue_api_key
from smartbudget.services.categories import create_category
from smartbudget.services.transactions import create_transaction

logger = logging.getLogger("smartbudget.cli")

DEFAULT_CATEGORIES = [
    {"key": "salary", "name": "Salary", "icon": "payments", "color": "#2E7D32"},
    {"key": "freelance", "name": "Freelance", "icon": "work", "color": "#1B5E20"},
    {"key": "food", "name": "Groceries", "icon": "restaurant", "color": "#EF6C00"},
    {"key": "transport", "name": "Transport", "icon": "directions_car", "color": "#1565C0"},
    {"key": "rent", "name": "Rent", "icon": "home", "color": "#6A1B9A"},
    {"key": "health", "name": "Health", "icon": "medical_services", "color": "#C62828"},
    {"key": "internet", "name": "Internet", "icon": "wifi", "color": "#00838F"},
    {"key": "leisure", "name": "Leisure", "icon": "sports_esports", "color": "#AD1457"},
    {"key": "saving", "name": "Savings", "icon": "savings", "color": "#283593"},
]

SAMPLE_TRANSACTIONS = [
    {"type": "income", "amount": 2500, "currency": "USD", "category": "salary", "note": "Monthly salary", "day": 1},
    {"type": "expense", "amount": 140, "currency": "USD", "category": "food", "note": "Weekly groceries", "day": 5},
    {"type": "expense", "amount": 35, "currency": "USD", "category": "transport", "note": "City transport", "day": 8},
]


async def seed_user(store: Store, uid: str, now: datetime | None = None) -> dict[str, int]:
    now = now or datetime.now(timezone.utc)
    category_ids: dict[str, str] = {}
    for entry in DEFAULT_CATEGORIES:
        doc = await create_category(store, uid, {k: entry[k] for k in ("name", "icon", "color")})
        category_ids[entry["key"]] = doc["id"]

    for entry in SAMPLE_TRANSACTIONS:
        when = datetime(now.year, now.month, entry["day"], 12, 0, tzinfo=timezone.utc)
        await create_transaction(
            store,
            uid,
            {
                "type": entry["type"],
                "amount": entry["amount"],
                "currency": entry["currency"],
                "categoryId": category_ids[entry["category"]],
                "note": entry["note"],
                "date": when.isoformat().replace("+00:00", "Z"),
            },
        )
    return {"categories": len(category_ids), "transactions": len(SAMPLE_TRANSACTIONS)}


async def _with_store(action) -> None:
    store = PostgresStore(create_db_pool(settings))
    await store.open()
    try:
        await action(store)
    finally:
        await store.close()


def cmd_init_db(_args) -> None:
    async def action(store: PostgresStore) -> None:
        await store.init_schema()
        logger.info("schema ready")

    asyncio.run(_with_store(action))


def cmd_issue_key(args) -> None:
    async def action(store: PostgresStore) -> None:
        plain = await issue_api_key(store, args.uid, args.email, args.label)
        print(plain)

    asyncio.run(_with_store(action))


def cmd_seed(args) -> None:
    async def action(store: PostgresStore) -> None:
        counts = await seed_user(store, args.uid)
        logger.info("seeded uid=%s categories=%d transactions=%d", args.uid, counts["categories"], counts["transactions"])

    asyncio.run(_with_store(action))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="smartbudget", description="SmartBudget maintenance commands")
    sub = parser.add_subparsers(dest="command", required=True)

    p_init = sub.add_parser("init-db", help="create tables and indexes")
    p_init.set_defaults(func=cmd_init_db)

    p_key = sub.add_parser("issue-key", help="issue an API key, revoking the user's previous key")
    p_key.add_argument("--uid", required=True)
    p_key.add_argument("--email", default=None)
    p_key.add_argument("--label", default="default")
    p_key.set_defaults(func=cmd_issue_key)

    p_seed = sub.add_parser("seed", help="create default categories and sample transactions for this month")
    p_seed.add_argument("--uid", required=True)
    p_seed.set_defaults(func=cmd_seed)
    return parser


def main(argv: list[str] | None = None) -> int:
    configure_logging(settings.log_level, settings.log_json)
    args = build_parser().parse_args(argv)
    if not settings.database_url:
        logger.error("DATABASE_URL is required")
        return 2
    args.func(args)
    return 0


if __name__ == "__main__":
    sys.exit(main())
