import asyncio
from datetime import date

import pytest
from conftest import FakePage, FakeStore, SessionFactory, StaticStrategy

from aloha_sync.errors import AuthenticationRejected, ConfigError, DashboardTimeout, RunAlreadyActive
from aloha_sync.extract import ExtractedStoreRecord
from aloha_sync.pipeline import (
    RestaurantOutcome,
    RunGuard,
    Step,
    labor_fields_from_record,
    run_pipeline,
    sales_fields_from_record,
    summarize_status,
)
from aloha_sync.registry import Restaurant
from aloha_sync.session import AlohaSession

BUSINESS_DATE = date(2025, 1, 14)


def record(name, **metrics):
    return ExtractedStoreRecord(name, metrics)


def run(store, credentials, config, aliases, *, strategies, factory=None, **kwargs):
    factory = factory or SessionFactory()
    report = asyncio.run(
        run_pipeline(
            BUSINESS_DATE,
            store=store,
            credentials=credentials,
            config=config,
            aliases=aliases,
            session_factory=factory,
            strategies=strategies,
            **kwargs,
        )
    )
    return report, factory


def test_single_restaurant_end_to_end(credentials, config, aliases):
    store = FakeStore([Restaurant(1, "La Hacienda Ranch Frisco", "LHR-FRI")])
    extracted = {"Frisco": record("Frisco", net_sales=25000.00, labor_percent=29.0, guest_count=540)}
    report, factory = run(store, credentials, config, aliases, strategies=[StaticStrategy("structured_grid", extracted)])

    assert report.status == "success"
    assert report.source == "structured_grid"
    outcome = report.outcome_for(1)
    assert outcome.status == "success"
    assert outcome.method == "substring"

    sales = store.row("daily_sales", 1, BUSINESS_DATE)
    assert sales["net_sales"] == 25000.00
    assert sales["guest_count"] == 540
    assert store.row("daily_labor", 1, BUSINESS_DATE)["labor_percent"] == 29.0
    prime = store.row("daily_prime_cost", 1, BUSINESS_DATE)
    assert prime["labor_percent"] == 29.0
    assert prime["total_cogs"] == 0
    assert outcome.metrics["prime_cost"] == prime

    assert report.log_entry_id == 1
    [entry] = store.runs
    assert entry.status == "success"
    assert entry.records_processed == 1
    assert entry.business_date == BUSINESS_DATE
    assert factory.sessions[0].close_count == 1


def test_existing_cogs_row_feeds_prime_cost(credentials, config, aliases):
    store = FakeStore([Restaurant(1, "La Hacienda Ranch Frisco")])
    store.upsert_food_cost(1, BUSINESS_DATE, {"food_cost": 6000, "beverage_cost": 1500})
    extracted = {"Frisco": record("Frisco", net_sales=25000.0, labor_amount=5000.0)}
    run(store, credentials, config, aliases, strategies=[StaticStrategy("structured_grid", extracted)])

    labor = store.row("daily_labor", 1, BUSINESS_DATE)
    assert labor["total_labor_cost"] == 5000.0
    assert labor["total_labor_burden"] == 6100.0
    prime = store.row("daily_prime_cost", 1, BUSINESS_DATE)
    assert prime["total_cogs"] == 7500.0
    assert prime["total_labor"] == 6100.0
    assert prime["prime_cost_percent"] == 54.4


def test_persist_failure_is_isolated_to_one_restaurant(restaurants, credentials, config, aliases):
    store = FakeStore(restaurants, fail_for={2})
    extracted = {
        "Arlington": record("Arlington", net_sales=18000.0),
        "Colleyville": record("Colleyville", net_sales=21000.0),
        "Frisco": record("Frisco", net_sales=25000.0),
    }
    report, _ = run(store, credentials, config, aliases, strategies=[StaticStrategy("structured_grid", extracted)])

    assert [o.restaurant_id for o in report.per_restaurant] == [1, 2, 3]
    assert [o.status for o in report.per_restaurant] == ["success", "error", "success"]
    assert report.outcome_for(2).reason.startswith("persisting: write failed")
    assert store.row("daily_sales", 3, BUSINESS_DATE)["net_sales"] == 25000.0
    assert report.status == "partial"
    assert store.runs[0].status == "partial"
    assert store.runs[0].records_processed == 2


def test_unmatched_and_zero_sales_write_nothing(restaurants, credentials, config, aliases):
    store = FakeStore(restaurants)
    extracted = {"Arlington": record("Arlington", net_sales=18000.0), "Frisco": record("Frisco", net_sales=0.0)}
    report, _ = run(store, credentials, config, aliases, strategies=[StaticStrategy("structured_grid", extracted)])

    assert report.outcome_for(2).status == "no_data"
    assert report.outcome_for(2).reason == "no_match"
    assert report.outcome_for(3).status == "no_data"
    assert report.outcome_for(3).reason == "zero_sales"
    for restaurant_id in (2, 3):
        for table in ("daily_sales", "daily_labor", "daily_prime_cost"):
            assert store.row(table, restaurant_id, BUSINESS_DATE) is None
    assert report.status == "partial"


def test_text_tier_fallback_feeds_the_run(restaurants, credentials, config, aliases):
    store = FakeStore(restaurants)
    text_stores = {name: record(name, net_sales=1000.0 * (i + 1)) for i, name in enumerate(["Arlington", "Colleyville", "Frisco"])}
    report, _ = run(
        store,
        credentials,
        config,
        aliases,
        strategies=[StaticStrategy("structured_grid", {}), StaticStrategy("text_scan", text_stores)],
    )
    assert report.source == "text_scan"
    assert report.status == "success"
    assert store.row("daily_sales", 3, BUSINESS_DATE)["net_sales"] == 3000.0


def test_empty_extraction_marks_everyone_no_data(restaurants, credentials, config, aliases):
    store = FakeStore(restaurants)
    report, factory = run(
        store,
        credentials,
        config,
        aliases,
        strategies=[StaticStrategy("structured_grid", {}), StaticStrategy("text_scan", {})],
    )
    assert report.status == "error"
    assert report.source == "none"
    assert {(o.status, o.reason) for o in report.per_restaurant} == {("no_data", "extraction_failed")}
    assert len(report.per_restaurant) == 3
    assert store.runs[0].status == "error"
    assert factory.sessions[0].captured == ["extraction_empty"]
    assert factory.sessions[0].close_count == 1


@pytest.mark.parametrize(
    ("fail_at", "error", "step"),
    [
        ("launch", RuntimeError("chromium missing"), "session_opening"),
        ("login", AuthenticationRejected("Invalid username or password"), "authenticating"),
        ("load_dashboard", DashboardTimeout("'Net Sales' not rendered within 60s"), "dashboard_loading"),
    ],
)
def test_session_failure_marks_all_error_and_still_logs(restaurants, credentials, config, aliases, fail_at, error, step):
    store = FakeStore(restaurants)
    factory = SessionFactory(fail_at=fail_at, error=error)
    strategy = StaticStrategy("structured_grid", {"Frisco": record("Frisco", net_sales=1.0)})
    report, _ = run(store, credentials, config, aliases, strategies=[strategy], factory=factory)

    assert report.status == "error"
    assert report.failed_step == step
    assert len(report.per_restaurant) == 3
    for outcome in report.per_restaurant:
        assert outcome.status == "error"
        assert outcome.reason == f"{step}: {error}"
    assert strategy.calls == 0
    assert store.runs[0].status == "error"
    assert store.runs[0].error_message == f"{step}: {error}"
    assert factory.sessions[0].close_count == 1


def test_registry_failure_still_returns_report(credentials, config, aliases):
    class BrokenRegistry(FakeStore):
        def list_active_restaurants(self):
            raise RuntimeError("restaurants table missing")

    store = BrokenRegistry([])
    report, factory = run(store, credentials, config, aliases, strategies=[])
    assert report.status == "error"
    assert report.failed_step == Step.IDLE.value
    assert report.per_restaurant == []
    assert factory.sessions == []
    assert store.runs[0].status == "error"


def test_run_log_failure_does_not_escape(restaurants, credentials, config, aliases):
    store = FakeStore(restaurants)
    store.fail_log = True
    report, _ = run(store, credentials, config, aliases, strategies=[StaticStrategy("structured_grid", {})])
    assert report.log_entry_id is None
    assert report.status == "error"


def test_guard_rejects_overlapping_run(restaurants, credentials, config, aliases):
    guard = RunGuard()
    with guard.acquire(BUSINESS_DATE):
        with pytest.raises(RunAlreadyActive):
            run(FakeStore(restaurants), credentials, config, aliases, strategies=[], guard=guard)
    assert guard.active is False

    run(FakeStore(restaurants), credentials, config, aliases, strategies=[StaticStrategy("s", {})], guard=guard)
    assert guard.active is False
    assert guard.business_date is None


def test_report_to_dict_shape(credentials, config, aliases):
    store = FakeStore([Restaurant(1, "La Hacienda Ranch Frisco")])
    extracted = {"Frisco": record("Frisco", net_sales=25000.0)}
    report, _ = run(store, credentials, config, aliases, strategies=[StaticStrategy("structured_grid", extracted)])
    payload = report.to_dict()
    assert payload["date"] == "2025-01-14"
    assert payload["log_entry_id"] == 1
    assert payload["per_restaurant"][0]["restaurant_id"] == 1
    assert payload["per_restaurant"][0]["status"] == "success"
    assert "reason" not in payload["per_restaurant"][0]


def test_field_mapping_only_includes_extracted_metrics():
    rec = record("Frisco", net_sales=25000.0, comp_amount=150.0, check_avg=30.79, guest_count=539.6, labor_amount=1000.0)
    sales = sales_fields_from_record(rec)
    assert sales == {
        "data_source": "aloha",
        "net_sales": 25000.0,
        "gross_sales": 25000.0,
        "comps": 150.0,
        "avg_check": 30.79,
        "guest_count": 540,
    }
    labor = labor_fields_from_record(rec, 1.22)
    assert labor == {"data_source": "aloha", "total_labor_cost": 1000.0, "total_labor_burden": 1220.0}


def test_summarize_status():
    ok = RestaurantOutcome(1, "a", "success")
    miss = RestaurantOutcome(2, "b", "no_data", reason="no_match")
    assert summarize_status([ok]) == "success"
    assert summarize_status([ok, miss]) == "partial"
    assert summarize_status([miss]) == "partial"
    assert summarize_status([]) == "error"
    assert summarize_status([ok], extraction_failed=True) == "error"


class OfflineSession(AlohaSession):
    """Real session class with the browser steps replaced by a canned page."""

    async def launch(self):
        self.page = FakePage()
        return self.page

    async def login(self):
        return None

    async def load_dashboard(self):
        return self.page


def test_unwritable_artifact_dir_keeps_extraction_failure_as_no_data(
    restaurants, credentials, config, aliases, tmp_path
):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x")
    store = FakeStore(restaurants)
    report, _ = run(
        store,
        credentials,
        config,
        aliases,
        strategies=[StaticStrategy("structured_grid", {}), StaticStrategy("text_scan", {})],
        factory=OfflineSession,
        artifact_dir=blocker / "debug",
    )
    assert report.failed_step is None
    assert {(o.status, o.reason) for o in report.per_restaurant} == {("no_data", "extraction_failed")}
    assert store.runs[0].status == "error"


def test_malformed_date_is_rejected_before_the_run_starts(restaurants, credentials, config, aliases):
    store = FakeStore(restaurants)
    factory = SessionFactory()
    with pytest.raises(ConfigError):
        asyncio.run(
            run_pipeline(
                "14/01/2025",
                store=store,
                credentials=credentials,
                config=config,
                aliases=aliases,
                session_factory=factory,
            )
        )
    assert factory.sessions == []
    assert store.runs == []
