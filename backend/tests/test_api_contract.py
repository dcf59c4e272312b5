import asyncio
import json
import os
import pathlib
import sys
import threading
import time
import unittest
from dataclasses import replace

BACKEND_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("LOG_JSON", "false")

import httpx
from fastapi.testclient import TestClient

from smartbudget.core.config import load_settings
from smartbudget.core.rate_limit import RateLimiter
from smartbudget.db.memory import MemoryStore
from smartbudget.main import create_app
from smartbudget.services.auth import issue_api_key


def assert_success(test: unittest.TestCase, body: dict) -> dict:
    test.assertIs(body["ok"], True)
    test.assertIn("data", body)
    return body["data"]


def assert_error(test: unittest.TestCase, body: dict, code: str) -> None:
    test.assertEqual(body["error"], code)
    test.assertIsInstance(body["message"], str)
    test.assertNotIn("ok", body)


class BrokenStore(MemoryStore):
    def collection(self, name):
        collection = super().collection(name)
        if name != "api_keys":
            async def explode(*_args, **_kwargs):
                raise RuntimeError("connection reset by peer: secret-host:5432")

            collection.find = explode
        return collection


class OfflineIdentity:
    ready = False

    async def verify(self, token):
        raise AssertionError("verify must not be called when the identity service is not ready")


class SlowRedis:
    """Stands in for a shared redis whose round-trips take a while."""

    def __init__(self, delay: float) -> None:
        self.delay = delay
        self.calls = 0
        self._lock = threading.Lock()

    def eval(self, *_args):
        with self._lock:
            self.calls += 1
        time.sleep(self.delay)
        return 0


class ApiContractTests(unittest.TestCase):
    def setUp(self):
        self.settings = replace(load_settings(), store_backend="memory", api_rate_limit=1000)
        self.store = MemoryStore()
        self.alice_key = asyncio.run(issue_api_key(self.store, "alice", "alice@example.com"))
        self.bob_key = asyncio.run(issue_api_key(self.store, "bob"))
        self.app = create_app(settings=self.settings, store=self.store, rate_limiter=RateLimiter())
        self.client = TestClient(self.app, raise_server_exceptions=False)

    def auth(self, key=None) -> dict:
        return {"Authorization": f"Bearer {key or self.alice_key}"}

    def test_root_and_health_keep_success_contract(self):
        root = self.client.get("/")
        self.assertEqual(root.status_code, 200)
        self.assertIsInstance(assert_success(self, root.json())["message"], str)

        health = self.client.get("/health")
        self.assertEqual(health.status_code, 200)
        data = assert_success(self, health.json())
        self.assertIs(data["storeReady"], True)
        self.assertIs(data["identityReady"], True)

    def test_missing_and_invalid_tokens(self):
        res = self.client.get("/me")
        self.assertEqual(res.status_code, 401)
        assert_error(self, res.json(), "missing_token")

        res = self.client.get("/stats/summary?month=2026-02")
        self.assertEqual(res.status_code, 401)
        assert_error(self, res.json(), "missing_token")

        res = self.client.get("/me", headers=self.auth("sbk_forged"))
        self.assertEqual(res.status_code, 401)
        assert_error(self, res.json(), "invalid_token")

    def test_me_returns_identity(self):
        res = self.client.get("/me", headers=self.auth())
        self.assertEqual(assert_success(self, res.json()), {"uid": "alice", "email": "alice@example.com"})

    def test_reissued_key_revokes_previous(self):
        new_key = asyncio.run(issue_api_key(self.store, "alice"))
        self.assertEqual(self.client.get("/me", headers=self.auth(self.alice_key)).status_code, 401)
        self.assertEqual(self.client.get("/me", headers=self.auth(new_key)).status_code, 200)

    def test_transaction_lifecycle_and_pagination(self):
        ids = []
        for day, tx_type, amount in ((1, "expense", 100), (2, "income", 500), (3, "expense", 20)):
            res = self.client.post(
                "/transactions",
                headers=self.auth(),
                json={"type": tx_type, "amount": amount, "currency": "USD", "date": f"2026-02-0{day}T10:00:00Z"},
            )
            self.assertEqual(res.status_code, 201)
            doc = assert_success(self, res.json())
            self.assertEqual(doc["date"], f"2026-02-0{day}T10:00:00Z")
            ids.append(doc["id"])

        first = self.client.get("/transactions?limit=2", headers=self.auth())
        page = assert_success(self, first.json())
        self.assertEqual([item["id"] for item in page["items"]], [ids[2], ids[1]])
        self.assertIs(page["pageInfo"]["hasMore"], True)
        token = page["pageInfo"]["nextPageToken"]
        self.assertIsInstance(token, str)

        second = self.client.get("/transactions", params={"limit": 2, "pageToken": token}, headers=self.auth())
        page = assert_success(self, second.json())
        self.assertEqual([item["id"] for item in page["items"]], [ids[0]])
        self.assertEqual(page["pageInfo"], {"limit": 2, "hasMore": False, "nextPageToken": None})

        foreign = self.client.get("/transactions", params={"pageToken": token}, headers=self.auth(self.bob_key))
        self.assertEqual(foreign.status_code, 400)
        assert_error(self, foreign.json(), "invalid_page_token")

        res = self.client.patch(f"/transactions/{ids[0]}", headers=self.auth(), json={"note": "groceries"})
        self.assertEqual(assert_success(self, res.json())["note"], "groceries")

        res = self.client.patch(f"/transactions/{ids[0]}", headers=self.auth(), json={})
        self.assertEqual(res.status_code, 400)
        assert_error(self, res.json(), "empty_patch")

        res = self.client.get(f"/transactions/{ids[0]}", headers=self.auth(self.bob_key))
        self.assertEqual(res.status_code, 403)
        assert_error(self, res.json(), "forbidden")

        res = self.client.delete(f"/transactions/{ids[0]}", headers=self.auth())
        self.assertEqual(assert_success(self, res.json()), {"id": ids[0]})
        res = self.client.get(f"/transactions/{ids[0]}", headers=self.auth())
        self.assertEqual(res.status_code, 404)
        assert_error(self, res.json(), "not_found")

    def test_cross_user_category_is_rejected_on_create(self):
        res = self.client.post("/categories", headers=self.auth(self.bob_key), json={"name": "Bills"})
        bob_category = assert_success(self, res.json())["id"]

        res = self.client.post(
            "/transactions",
            headers=self.auth(),
            json={"type": "expense", "amount": 1, "currency": "USD", "categoryId": bob_category},
        )
        self.assertEqual(res.status_code, 400)
        assert_error(self, res.json(), "invalid_category")
        listing = assert_success(self, self.client.get("/transactions", headers=self.auth()).json())
        self.assertEqual(listing["items"], [])

    def test_stats_endpoints(self):
        res = self.client.post("/categories", headers=self.auth(), json={"name": "Food"})
        food = assert_success(self, res.json())["id"]
        for body in (
            {"type": "expense", "amount": 100, "currency": "USD", "categoryId": food, "date": "2026-02-03T08:00:00Z"},
            {"type": "income", "amount": 500, "currency": "USD", "date": "2026-02-10T08:00:00+01:00"},
            {"type": "expense", "amount": 7, "currency": "USD", "date": "2026-02-10T09:00:00Z"},
        ):
            self.assertEqual(self.client.post("/transactions", headers=self.auth(), json=body).status_code, 201)

        summary = assert_success(self, self.client.get("/stats/summary?month=2026-02", headers=self.auth()).json())
        self.assertEqual(
            summary,
            {
                "month": "2026-02",
                "currency": None,
                "totalExpense": 107,
                "totalIncome": 500,
                "balance": 393,
                "transactionCount": 3,
            },
        )

        by_cat = assert_success(
            self, self.client.get("/stats/by-category?month=2026-02&currency=USD", headers=self.auth()).json()
        )
        self.assertEqual(by_cat["type"], "expense")
        self.assertEqual(
            by_cat["items"],
            [
                {"categoryId": food, "categoryName": "Food", "total": 100},
                {"categoryId": None, "categoryName": "Uncategorized", "total": 7},
            ],
        )

        trend = assert_success(
            self, self.client.get("/stats/trend?month=2026-02&granularity=week", headers=self.auth()).json()
        )
        self.assertEqual(
            trend["items"],
            [
                {"date": "2026-02-02", "totalExpense": 100, "totalIncome": 0},
                {"date": "2026-02-09", "totalExpense": 7, "totalIncome": 500},
            ],
        )

    def test_stats_validation_errors_carry_details(self):
        res = self.client.get("/stats/summary", headers=self.auth())
        self.assertEqual(res.status_code, 400)
        body = res.json()
        assert_error(self, body, "invalid_month")
        self.assertEqual(body["details"], {"example": "2026-02"})

        res = self.client.get("/stats/by-category?month=2026-02", headers=self.auth())
        assert_error(self, res.json(), "invalid_currency")
        self.assertEqual(res.json()["details"], {"expected": ["USD", "CDF"]})

        res = self.client.get("/stats/trend?month=2026-02&granularity=year", headers=self.auth())
        assert_error(self, res.json(), "invalid_granularity")

    def test_invalid_limit_and_malformed_body(self):
        res = self.client.get("/transactions?limit=0", headers=self.auth())
        self.assertEqual(res.status_code, 400)
        assert_error(self, res.json(), "invalid_limit")

        headers = {**self.auth(), "Content-Type": "application/json"}
        res = self.client.post("/transactions", headers=headers, content="[1, 2]")
        self.assertEqual(res.status_code, 400)
        assert_error(self, res.json(), "invalid_request")

    def test_store_not_configured_returns_503(self):
        settings = replace(self.settings, store_backend="postgres", database_url=None)
        client = TestClient(create_app(settings=settings, rate_limiter=RateLimiter()), raise_server_exceptions=False)

        res = client.get("/me")
        self.assertEqual(res.status_code, 401)
        assert_error(self, res.json(), "missing_token")

        res = client.get("/transactions?limit=5", headers={"Authorization": "Bearer fake_token"})
        self.assertEqual(res.status_code, 503)
        assert_error(self, res.json(), "database_unavailable")

        health = assert_success(self, client.get("/health").json())
        self.assertIs(health["storeReady"], False)

    def test_unready_identity_with_store_returns_auth_unavailable(self):
        client = TestClient(
            create_app(settings=self.settings, store=self.store, identity=OfflineIdentity(), rate_limiter=RateLimiter()),
            raise_server_exceptions=False,
        )
        res = client.get("/me", headers=self.auth())
        self.assertEqual(res.status_code, 503)
        assert_error(self, res.json(), "auth_unavailable")

    def test_store_failure_returns_generic_server_error(self):
        store = BrokenStore()
        key = asyncio.run(issue_api_key(store, "alice"))
        client = TestClient(
            create_app(settings=self.settings, store=store, rate_limiter=RateLimiter()),
            raise_server_exceptions=False,
        )
        with self.assertLogs("smartbudget.core.responses", level="ERROR"), self.assertLogs(
            "smartbudget.request", level="INFO"
        ) as access:
            res = client.get("/stats/summary?month=2026-02", headers={"Authorization": f"Bearer {key}"})
        self.assertEqual(json.loads(access.records[-1].getMessage())["status"], 500)
        self.assertEqual(res.status_code, 500)
        body = res.json()
        assert_error(self, body, "server_error")
        self.assertNotIn("secret-host", res.text)

    def test_rate_limit_returns_429(self):
        settings = replace(self.settings, api_rate_limit=2, api_rate_window=60)
        client = TestClient(
            create_app(settings=settings, store=self.store, rate_limiter=RateLimiter()),
            raise_server_exceptions=False,
        )
        for _ in range(2):
            self.assertEqual(client.get("/me", headers=self.auth()).status_code, 200)
        res = client.get("/me", headers=self.auth())
        self.assertEqual(res.status_code, 429)
        assert_error(self, res.json(), "rate_limited")
        self.assertIn("Retry-After", res.headers)


class RateLimitConcurrencyTests(unittest.IsolatedAsyncioTestCase):
    async def test_slow_shared_limiter_does_not_serialize_requests(self):
        store = MemoryStore()
        key = await issue_api_key(store, "alice")
        limiter = RateLimiter()
        limiter._redis = SlowRedis(delay=0.3)
        settings = replace(load_settings(), store_backend="memory")
        app = create_app(settings=settings, store=store, rate_limiter=limiter)

        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
            started = time.perf_counter()
            responses = await asyncio.gather(
                *(client.get("/me", headers={"Authorization": f"Bearer {key}"}) for _ in range(4))
            )
            elapsed = time.perf_counter() - started

        self.assertEqual([res.status_code for res in responses], [200] * 4)
        self.assertEqual(limiter._redis.calls, 8)
        # Run one after another the 8 round-trips would take 2.4s.
        self.assertLess(elapsed, 1.5)


if __name__ == "__main__":
    unittest.main()
