"""Run one scrape of the Aloha dashboard into the fact store for a business date.

Steps: session_opening -> authenticating -> dashboard_loading -> extracting
-> reconciling -> persisting -> logging_result. Any step may fall into
``failed``; the run still reports an outcome for every registry restaurant,
still tries to write its run-log entry, and always closes the browser.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from datetime import date
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Iterator

from .config import Credentials
from .errors import ConfigError, RunAlreadyActive
from .events import log_event
from .extract import ExtractedStoreRecord, default_strategies, extract
from .metrics import DEFAULT_LABOR_LOADING_FACTOR, labor_burden
from .reconcile import METHOD_UNMATCHED, AliasTable, MatchResult, is_zero_sales, reconcile
from .registry import Restaurant
from .session import AlohaSession
from .store import ScrapeLogEntry
from .transforms import as_date, default_business_date, parse_count

OUTCOME_SUCCESS = "success"
OUTCOME_NO_DATA = "no_data"
OUTCOME_ERROR = "error"

REASON_NO_MATCH = "no_match"
REASON_ZERO_SALES = "zero_sales"
REASON_EXTRACTION_FAILED = "extraction_failed"

DATA_SOURCE = "aloha"


class Step(str, Enum):
    IDLE = "idle"
    SESSION_OPENING = "session_opening"
    AUTHENTICATING = "authenticating"
    DASHBOARD_LOADING = "dashboard_loading"
    EXTRACTING = "extracting"
    RECONCILING = "reconciling"
    PERSISTING = "persisting"
    LOGGING_RESULT = "logging_result"
    FAILED = "failed"


@dataclass
class RestaurantOutcome:
    restaurant_id: int
    restaurant_name: str
    status: str
    reason: str | None = None
    method: str | None = None
    store_name: str | None = None
    metrics: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value is not None}


@dataclass
class RunReport:
    business_date: date
    status: str
    source: str | None = None
    per_restaurant: list[RestaurantOutcome] = field(default_factory=list)
    log_entry_id: int | None = None
    duration_seconds: float = 0.0
    failed_step: str | None = None
    error: str | None = None

    @property
    def records_processed(self) -> int:
        return sum(1 for outcome in self.per_restaurant if outcome.status == OUTCOME_SUCCESS)

    def outcome_for(self, restaurant_id: int) -> RestaurantOutcome | None:
        return next((o for o in self.per_restaurant if o.restaurant_id == restaurant_id), None)

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.business_date.isoformat(),
            "status": self.status,
            "source": self.source,
            "per_restaurant": [outcome.to_dict() for outcome in self.per_restaurant],
            "log_entry_id": self.log_entry_id,
            "records_processed": self.records_processed,
            "duration_seconds": round(self.duration_seconds, 2),
            "failed_step": self.failed_step,
            "error": self.error,
        }


@dataclass
class RunGuard:
    """In-process "a run is active" flag, owned by whoever triggers runs."""

    active: bool = False
    business_date: date | None = None

    @contextmanager
    def acquire(self, business_date: date) -> Iterator[None]:
        if self.active:
            raise RunAlreadyActive(f"A scrape for {self.business_date} is already running")
        self.active = True
        self.business_date = business_date
        try:
            yield
        finally:
            self.active = False
            self.business_date = None


def sales_fields_from_record(record: ExtractedStoreRecord) -> dict[str, Any]:
    metrics = record.metrics
    fields: dict[str, Any] = {"data_source": DATA_SOURCE}
    if "net_sales" in metrics:
        fields["net_sales"] = metrics["net_sales"]
        # The dashboard grid has no gross column; net stands in for it.
        fields["gross_sales"] = metrics["net_sales"]
    for target, source in (
        ("comps", "comp_amount"),
        ("voids", "void_amount"),
        ("avg_check", "check_avg"),
        ("avg_guest_spend", "avg_guest_spend"),
    ):
        if source in metrics:
            fields[target] = metrics[source]
    for key in ("guest_count", "check_count"):
        if key in metrics:
            fields[key] = parse_count(metrics[key])
    return fields


def labor_fields_from_record(
    record: ExtractedStoreRecord,
    loading_factor: float = DEFAULT_LABOR_LOADING_FACTOR,
) -> dict[str, Any]:
    metrics = record.metrics
    fields: dict[str, Any] = {"data_source": DATA_SOURCE}
    if "labor_hours" in metrics:
        fields["total_hours"] = metrics["labor_hours"]
    if "labor_amount" in metrics:
        fields["total_labor_cost"] = metrics["labor_amount"]
        fields["total_labor_burden"] = labor_burden(metrics["labor_amount"], loading_factor)
    if "labor_percent" in metrics:
        fields["labor_percent"] = metrics["labor_percent"]
    return fields


def summarize_status(outcomes: list[RestaurantOutcome], *, extraction_failed: bool = False) -> str:
    if extraction_failed or not outcomes:
        return "error"
    if all(outcome.status == OUTCOME_SUCCESS for outcome in outcomes):
        return "success"
    return "partial"


def _mark_all(registry: list[Restaurant], status: str, reason: str) -> list[RestaurantOutcome]:
    return [RestaurantOutcome(r.id, r.name, status, reason=reason) for r in registry]


def _error_message(report: RunReport) -> str | None:
    if report.error:
        return f"{report.failed_step}: {report.error}"
    problems = [
        f"{o.restaurant_name}: {o.reason}"
        for o in report.per_restaurant
        if o.status != OUTCOME_SUCCESS
    ]
    return "; ".join(problems) or None


def _persist_matches(
    store: Any,
    business_date: date,
    matches: list[MatchResult],
    loading_factor: float,
) -> list[RestaurantOutcome]:
    outcomes: list[RestaurantOutcome] = []
    for match in matches:
        restaurant = match.restaurant
        if match.method == METHOD_UNMATCHED or match.record is None:
            log_event("reconcile_unmatched", restaurant_id=restaurant.id, restaurant=restaurant.name)
            outcomes.append(RestaurantOutcome(restaurant.id, restaurant.name, OUTCOME_NO_DATA, reason=REASON_NO_MATCH))
            continue
        if is_zero_sales(match.record):
            log_event("reconcile_zero_sales", restaurant_id=restaurant.id, store=match.store_name)
            outcomes.append(
                RestaurantOutcome(
                    restaurant.id,
                    restaurant.name,
                    OUTCOME_NO_DATA,
                    reason=REASON_ZERO_SALES,
                    method=match.method,
                    store_name=match.store_name,
                )
            )
            continue
        try:
            prime = store.persist_store_metrics(
                restaurant.id,
                business_date,
                sales_fields_from_record(match.record),
                labor_fields_from_record(match.record, loading_factor),
            )
        except Exception as exc:
            log_event("persist_failed", restaurant_id=restaurant.id, step=Step.PERSISTING.value, error=str(exc))
            outcomes.append(
                RestaurantOutcome(
                    restaurant.id,
                    restaurant.name,
                    OUTCOME_ERROR,
                    reason=f"{Step.PERSISTING.value}: {exc}",
                    method=match.method,
                    store_name=match.store_name,
                )
            )
            continue
        log_event(
            "persist_done",
            restaurant_id=restaurant.id,
            store=match.store_name,
            method=match.method,
            net_sales=match.record.get("net_sales"),
        )
        outcomes.append(
            RestaurantOutcome(
                restaurant.id,
                restaurant.name,
                OUTCOME_SUCCESS,
                method=match.method,
                store_name=match.store_name,
                metrics={"extracted": dict(match.record.metrics), "prime_cost": prime},
            )
        )
    return outcomes


async def _run(
    report: RunReport,
    registry: list[Restaurant],
    *,
    store: Any,
    session: Any,
    config: dict[str, Any],
    aliases: AliasTable | None,
    strategies: list[Any] | None,
    on_step: Callable[[Step], None],
) -> None:
    on_step(Step.SESSION_OPENING)
    await session.launch()
    on_step(Step.AUTHENTICATING)
    await session.login()
    on_step(Step.DASHBOARD_LOADING)
    page = await session.load_dashboard()

    on_step(Step.EXTRACTING)
    result = await extract(page, config, strategies or default_strategies(config=config))
    report.source = result.source
    log_event("extract_done", source=result.source, stores=sorted(result.stores))

    if not result.stores:
        await session.capture("extraction_empty")
        report.per_restaurant = _mark_all(registry, OUTCOME_NO_DATA, REASON_EXTRACTION_FAILED)
        report.status = summarize_status(report.per_restaurant, extraction_failed=True)
        return

    on_step(Step.RECONCILING)
    matches = reconcile(registry, result.stores, aliases)
    log_event("reconcile_done", matched=sum(1 for m in matches if m.method != METHOD_UNMATCHED), total=len(matches))

    on_step(Step.PERSISTING)
    loading_factor = float(config.get("labor", {}).get("loading_factor", DEFAULT_LABOR_LOADING_FACTOR))
    report.per_restaurant = _persist_matches(store, report.business_date, matches, loading_factor)
    report.status = summarize_status(report.per_restaurant)


async def run_pipeline(
    business_date: date | str | None = None,
    *,
    store: Any,
    credentials: Credentials,
    config: dict[str, Any],
    aliases: AliasTable | None = None,
    session_factory: Callable[..., Any] = AlohaSession,
    strategies: list[Any] | None = None,
    guard: RunGuard | None = None,
    artifact_dir: Path | None = None,
    scrape_type: str = "aloha",
) -> RunReport:
    """Scrape ``business_date`` (default: yesterday) and return its run report.

    Only argument errors escape, and only before anything has started:
    ``ConfigError`` for a malformed date and ``RunAlreadyActive`` for an
    overlapping run. Every later failure is folded into the report.
    """
    try:
        target = as_date(business_date) if business_date else default_business_date()
    except ValueError as exc:
        raise ConfigError(f"Invalid business date: {business_date!r}. Expected YYYY-MM-DD.") from exc
    guard = guard or RunGuard()
    with guard.acquire(target):
        return await _run_guarded(
            target,
            store=store,
            credentials=credentials,
            config=config,
            aliases=aliases,
            session_factory=session_factory,
            strategies=strategies,
            artifact_dir=artifact_dir,
            scrape_type=scrape_type,
        )


async def _run_guarded(
    business_date: date,
    *,
    store: Any,
    credentials: Credentials,
    config: dict[str, Any],
    aliases: AliasTable | None,
    session_factory: Callable[..., Any],
    strategies: list[Any] | None,
    artifact_dir: Path | None,
    scrape_type: str,
) -> RunReport:
    started = time.monotonic()
    report = RunReport(business_date=business_date, status="error")
    step = Step.IDLE
    registry: list[Restaurant] = []
    session = None

    def on_step(next_step: Step) -> None:
        nonlocal step
        step = next_step
        log_event("pipeline_step", step=step.value, business_date=business_date.isoformat())

    log_event("pipeline_start", business_date=business_date.isoformat(), scrape_type=scrape_type)
    try:
        registry = store.list_active_restaurants()
        session = session_factory(credentials, config, artifact_dir=artifact_dir)
        await _run(
            report,
            registry,
            store=store,
            session=session,
            config=config,
            aliases=aliases,
            strategies=strategies,
            on_step=on_step,
        )
    except Exception as exc:
        report.failed_step = step.value
        report.error = str(exc)
        report.status = "error"
        step = Step.FAILED
        log_event("pipeline_failed", step=report.failed_step, error=str(exc))
        done = {o.restaurant_id for o in report.per_restaurant}
        report.per_restaurant += [
            RestaurantOutcome(r.id, r.name, OUTCOME_ERROR, reason=f"{report.failed_step}: {exc}")
            for r in registry
            if r.id not in done
        ]
    finally:
        if session is not None:
            try:
                await session.close()
            except Exception as exc:
                log_event("session_close_failed", error=str(exc))

    if step is not Step.FAILED:
        on_step(Step.LOGGING_RESULT)
    report.duration_seconds = time.monotonic() - started
    entry = ScrapeLogEntry(
        scrape_type=scrape_type,
        business_date=business_date,
        status=report.status,
        records_processed=report.records_processed,
        error_message=_error_message(report),
        duration_seconds=report.duration_seconds,
    )
    try:
        report.log_entry_id = store.log_run(entry)
    except Exception as exc:
        log_event("run_log_failed", step=Step.LOGGING_RESULT.value, error=str(exc))

    log_event(
        "pipeline_done",
        business_date=business_date.isoformat(),
        status=report.status,
        source=report.source,
        records_processed=report.records_processed,
        log_entry_id=report.log_entry_id,
        duration_seconds=round(report.duration_seconds, 2),
    )
    return report
