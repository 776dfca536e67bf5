"""Bulk JSON import of sales, labor and food-cost rows.

Payload shape::

    {"sales": [...], "labor": [...], "food_cost": [...]}

Each record carries ``business_date`` plus either ``restaurant_id`` or an
Aloha ``store_id``; every other key is a fact column. Bad records are
reported back, never raised, and prime cost is recomputed once per
(restaurant, date) touched.
"""

from __future__ import annotations

from datetime import date
from typing import Any

from .errors import ConfigError
from .events import log_event
from .store import FOOD_COST_COLUMNS, LABOR_COLUMNS, SALES_COLUMNS
from .transforms import as_date

KEY_FIELDS = ("restaurant_id", "store_id", "business_date")

# payload key -> (report key, store method, allowed columns)
SECTIONS = (
    ("sales", "sales", "upsert_sales", SALES_COLUMNS),
    ("labor", "labor", "upsert_labor", LABOR_COLUMNS),
    ("food_cost", "food_cost", "upsert_food_cost", FOOD_COST_COLUMNS),
    ("foodCost", "food_cost", "upsert_food_cost", FOOD_COST_COLUMNS),
)

DEFAULT_IMPORT_SOURCE = "manual"


def _resolve_restaurant_id(store: Any, record: dict[str, Any]) -> int:
    if record.get("restaurant_id") not in (None, ""):
        try:
            return int(record["restaurant_id"])
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Invalid restaurant_id: {record['restaurant_id']!r}") from exc
    if record.get("store_id") not in (None, ""):
        restaurant = store.get_by_external_id(str(record["store_id"]))
        if restaurant is None:
            raise ValueError(f"Unknown store_id: {record['store_id']}")
        return restaurant.id
    raise ValueError("Missing restaurant_id or store_id")


def _parse_business_date(record: dict[str, Any]) -> date:
    raw = record.get("business_date")
    if raw in (None, ""):
        raise ValueError("Missing business_date")
    try:
        return as_date(raw)
    except ValueError as exc:
        raise ValueError(f"Invalid business_date: {raw!r}. Expected YYYY-MM-DD.") from exc


def _fact_fields(record: dict[str, Any], columns: tuple[str, ...]) -> dict[str, Any]:
    fields = {key: value for key, value in record.items() if key not in KEY_FIELDS}
    unknown = sorted(set(fields) - set(columns))
    if unknown:
        raise ValueError(f"Unknown columns: {', '.join(unknown)}")
    fields.setdefault("data_source", DEFAULT_IMPORT_SOURCE)
    return fields


def import_payload(store: Any, payload: dict[str, Any]) -> dict[str, Any]:
    if not isinstance(payload, dict):
        raise ConfigError("Import payload must be a JSON object")
    present = [key for key, *_ in SECTIONS if key in payload]
    if not present:
        raise ConfigError("Import payload has none of: sales, labor, food_cost")

    results: dict[str, Any] = {}
    errors: list[dict[str, Any]] = []
    touched: set[tuple[int, date]] = set()

    for payload_key, report_key, method, columns in SECTIONS:
        if payload_key not in payload:
            continue
        records = payload[payload_key]
        if not isinstance(records, list):
            raise ConfigError(f"'{payload_key}' must be an array")
        section = results.setdefault(report_key, {"imported": 0})
        writer = getattr(store, method)
        for index, record in enumerate(records):
            try:
                if not isinstance(record, dict):
                    raise ValueError("Record must be an object")
                restaurant_id = _resolve_restaurant_id(store, record)
                business_date = _parse_business_date(record)
                writer(restaurant_id, business_date, _fact_fields(record, columns))
            except Exception as exc:
                errors.append({"section": payload_key, "index": index, "error": str(exc)})
                continue
            section["imported"] += 1
            touched.add((restaurant_id, business_date))

    recalculated = 0
    for restaurant_id, business_date in sorted(touched):
        try:
            store.recompute_prime_cost(restaurant_id, business_date)
        except Exception as exc:
            errors.append(
                {
                    "section": "prime_cost",
                    "restaurant_id": restaurant_id,
                    "business_date": business_date.isoformat(),
                    "error": str(exc),
                }
            )
            continue
        recalculated += 1

    results["prime_cost_recalculated"] = recalculated
    results["errors"] = errors
    log_event(
        "import_done",
        **{key: value["imported"] for key, value in results.items() if isinstance(value, dict)},
        prime_cost_recalculated=recalculated,
        errors=len(errors),
    )
    return results
