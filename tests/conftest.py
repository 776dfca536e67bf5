"""Shared fixtures: in-memory store/session doubles, Postgres and browser gates."""

from __future__ import annotations

import asyncio
import os
from datetime import date
from pathlib import Path
from typing import Any

import pytest

from aloha_sync.config import Credentials, load_aliases, load_config
from aloha_sync.metrics import compute_prime_cost, with_labor_burden
from aloha_sync.registry import Restaurant
from aloha_sync.store import FACT_TABLES, SCRAPE_STATUSES, ScrapeLogEntry
from aloha_sync.transforms import as_date

FIXTURES_DIR = Path(__file__).resolve().parent / "fixtures"

LHR_RESTAURANTS = [
    Restaurant(1, "La Hacienda Ranch Arlington", "LHR-ARL", "La Hacienda Ranch", "Arlington", "2614"),
    Restaurant(2, "La Hacienda Ranch Colleyville", "LHR-COL", "La Hacienda Ranch", "Colleyville", "5250"),
    Restaurant(3, "La Hacienda Ranch Frisco", "LHR-FRI", "La Hacienda Ranch", "Frisco", "4110"),
]


class FakeStore:
    """Dict-backed stand-in for PostgresFactStore with the same write rules."""

    def __init__(self, restaurants: list[Restaurant], fail_for: set[int] | None = None) -> None:
        self.restaurants = list(restaurants)
        self.fail_for = set(fail_for or ())
        self.tables: dict[str, dict[tuple[int, date], dict[str, Any]]] = {
            "daily_sales": {},
            "daily_labor": {},
            "daily_food_cost": {},
            "daily_prime_cost": {},
        }
        self.runs: list[ScrapeLogEntry] = []
        self.fail_log = False

    def list_active_restaurants(self) -> list[Restaurant]:
        return [r for r in self.restaurants if r.is_active]

    def get_by_external_id(self, store_id: str) -> Restaurant | None:
        return next((r for r in self.restaurants if r.external_store_id == str(store_id)), None)

    def _upsert(self, table: str, restaurant_id: int, business_date: Any, fields: dict[str, Any]) -> int:
        unknown = set(fields) - set(FACT_TABLES[table])
        if unknown:
            raise ValueError(f"Unknown {table} columns: {', '.join(sorted(unknown))}")
        key = (restaurant_id, as_date(business_date))
        row = self.tables[table].setdefault(key, {})
        row.update({k: v for k, v in fields.items() if v is not None})
        return len(self.tables[table])

    def upsert_sales(self, restaurant_id: int, business_date: Any, fields: dict[str, Any]) -> int:
        return self._upsert("daily_sales", restaurant_id, business_date, fields)

    def upsert_labor(self, restaurant_id: int, business_date: Any, fields: dict[str, Any]) -> int:
        return self._upsert("daily_labor", restaurant_id, business_date, with_labor_burden(fields))

    def upsert_food_cost(self, restaurant_id: int, business_date: Any, fields: dict[str, Any]) -> int:
        fields = dict(fields)
        if fields.get("total_cogs") is None:
            parts = [fields.get(k) for k in ("food_cost", "beverage_cost", "alcohol_cost")]
            if any(p is not None for p in parts):
                fields["total_cogs"] = sum(float(p or 0) for p in parts)
        return self._upsert("daily_food_cost", restaurant_id, business_date, fields)

    def recompute_prime_cost(self, restaurant_id: int, business_date: Any) -> dict[str, float]:
        key = (restaurant_id, as_date(business_date))
        sales = self.tables["daily_sales"].get(key, {})
        labor = self.tables["daily_labor"].get(key, {})
        food = self.tables["daily_food_cost"].get(key, {})
        values = compute_prime_cost(
            sales.get("net_sales"),
            food.get("total_cogs"),
            labor.get("total_labor_cost"),
            labor_burden_cost=labor.get("total_labor_burden"),
            reported_labor_percent=labor.get("labor_percent"),
        )
        self.tables["daily_prime_cost"][key] = dict(values)
        return values

    def persist_store_metrics(
        self,
        restaurant_id: int,
        business_date: Any,
        sales_fields: dict[str, Any],
        labor_fields: dict[str, Any],
    ) -> dict[str, float]:
        if restaurant_id in self.fail_for:
            raise RuntimeError(f"write failed for restaurant {restaurant_id}")
        self.upsert_sales(restaurant_id, business_date, sales_fields)
        self.upsert_labor(restaurant_id, business_date, labor_fields)
        return self.recompute_prime_cost(restaurant_id, business_date)

    def log_run(self, entry: ScrapeLogEntry) -> int:
        if self.fail_log:
            raise RuntimeError("scrape_log unavailable")
        assert entry.status in SCRAPE_STATUSES
        self.runs.append(entry)
        return len(self.runs)

    def recent_runs(self, limit: int = 20) -> list[dict[str, Any]]:
        return [vars(entry) for entry in reversed(self.runs)][:limit]

    def row(self, table: str, restaurant_id: int, business_date: Any) -> dict[str, Any] | None:
        return self.tables[table].get((restaurant_id, as_date(business_date)))


class FakePage:
    url = "https://example.alohaenterprise.test/insightdashboard/dashboard.jsp#/"

    def __init__(self, scripts: dict[str, Any] | None = None) -> None:
        self.scripts = scripts or {}
        self.evaluated: list[str] = []

    async def title(self) -> str:
        return "Insight Dashboard"

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        self.evaluated.append(script)
        value = self.scripts.get(script, {})
        if isinstance(value, Exception):
            raise value
        return value


class FakeSession:
    """Records each lifecycle call; ``fail_at`` names the call that raises."""

    def __init__(
        self,
        credentials: Credentials,
        config: dict[str, Any],
        *,
        artifact_dir: Path | None = None,
        page: FakePage | None = None,
        fail_at: str | None = None,
        error: Exception | None = None,
    ) -> None:
        self.credentials = credentials
        self.config = config
        self.artifact_dir = artifact_dir
        self.page = page or FakePage()
        self.fail_at = fail_at
        self.error = error or RuntimeError(f"{fail_at} failed")
        self.calls: list[str] = []
        self.captured: list[str] = []
        self.close_count = 0

    def _step(self, name: str) -> None:
        self.calls.append(name)
        if self.fail_at == name:
            raise self.error

    async def launch(self) -> FakePage:
        self._step("launch")
        return self.page

    async def login(self) -> None:
        self._step("login")

    async def load_dashboard(self) -> FakePage:
        self._step("load_dashboard")
        return self.page

    async def capture(self, label: str) -> None:
        self.captured.append(label)

    async def close(self) -> None:
        self.close_count += 1


class StaticStrategy:
    def __init__(self, name: str, stores: Any) -> None:
        self.name = name
        self.stores = stores
        self.calls = 0

    async def extract(self, page: Any, config: dict[str, Any]) -> Any:
        self.calls += 1
        if isinstance(self.stores, Exception):
            raise self.stores
        return dict(self.stores)


class SessionFactory:
    def __init__(self, **options: Any) -> None:
        self.options = options
        self.sessions: list[FakeSession] = []

    def __call__(self, credentials: Credentials, config: dict[str, Any], *, artifact_dir: Path | None = None) -> FakeSession:
        session = FakeSession(credentials, config, artifact_dir=artifact_dir, **self.options)
        self.sessions.append(session)
        return session


@pytest.fixture
def restaurants() -> list[Restaurant]:
    return list(LHR_RESTAURANTS)


@pytest.fixture
def config() -> dict[str, Any]:
    return load_config()


@pytest.fixture
def aliases():
    return load_aliases()


@pytest.fixture
def credentials() -> Credentials:
    return Credentials(base_url="https://example.alohaenterprise.test", username="ops", password="secret")


@pytest.fixture
def pg_conn():
    url = os.environ.get("TEST_DATABASE_URL")
    if not url:
        pytest.skip("TEST_DATABASE_URL not set")
    psycopg = pytest.importorskip("psycopg")

    from aloha_sync.schema import create_schema, drop_all

    with psycopg.connect(url, autocommit=True) as conn:
        drop_all(conn)
        create_schema(conn)
        try:
            yield conn
        finally:
            drop_all(conn)


@pytest.fixture
def browser_page():
    """Yield (loop, page) for a real headless Chromium page; skip without a browser."""
    async_api = pytest.importorskip("playwright.async_api")
    loop = asyncio.new_event_loop()
    playwright = loop.run_until_complete(async_api.async_playwright().start())
    try:
        browser = loop.run_until_complete(playwright.chromium.launch(headless=True))
    except Exception as exc:
        loop.run_until_complete(playwright.stop())
        loop.close()
        pytest.skip(f"Chromium not available: {exc}")
    page = loop.run_until_complete(browser.new_page())
    try:
        yield loop, page
    finally:
        loop.run_until_complete(browser.close())
        loop.run_until_complete(playwright.stop())
        loop.close()
