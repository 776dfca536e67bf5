"""Keyed writes into the daily fact tables and the scrape run log.

Each fact table holds at most one row per (restaurant_id, business_date).
Writes are ``INSERT ... ON CONFLICT DO UPDATE`` over the columns the caller
provided, so absent fields keep their stored value and provided ones (zero
included) replace it. Writers for the same key serialize on a
transaction-scoped advisory lock. A labor write carrying a cost but no burden
stores the burden derived from that cost.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

from .metrics import DEFAULT_LABOR_LOADING_FACTOR, PRIME_COST_FIELDS, compute_prime_cost, with_labor_burden
from .registry import Restaurant, get_by_external_id, list_active_restaurants
from .transforms import as_date

SALES_COLUMNS = (
    "gross_sales",
    "net_sales",
    "comps",
    "discounts",
    "voids",
    "guest_count",
    "check_count",
    "avg_check",
    "avg_guest_spend",
    "food_sales",
    "beverage_sales",
    "alcohol_sales",
    "liquor_sales",
    "beer_sales",
    "wine_sales",
    "retail_sales",
    "gift_card_sales",
    "data_source",
)

LABOR_COLUMNS = (
    "total_hours",
    "regular_hours",
    "overtime_hours",
    "total_labor_cost",
    "regular_wages",
    "overtime_wages",
    "foh_hours",
    "foh_cost",
    "boh_hours",
    "boh_cost",
    "management_hours",
    "management_cost",
    "payroll_taxes",
    "benefits_cost",
    "total_labor_burden",
    "employee_count",
    "labor_percent",
    "data_source",
)

FOOD_COST_COLUMNS = (
    "food_cost",
    "beverage_cost",
    "alcohol_cost",
    "total_cogs",
    "food_cost_percent",
    "beverage_cost_percent",
    "total_cogs_percent",
    "data_source",
)

FACT_TABLES = {
    "daily_sales": SALES_COLUMNS,
    "daily_labor": LABOR_COLUMNS,
    "daily_food_cost": FOOD_COST_COLUMNS,
}

SCRAPE_STATUSES = ("success", "partial", "error")


@dataclass
class ScrapeLogEntry:
    scrape_type: str
    business_date: date
    status: str
    records_processed: int = 0
    error_message: str | None = None
    duration_seconds: float = 0.0


def build_fact_upsert(
    table: str,
    restaurant_id: int,
    business_date: date | str,
    fields: dict[str, Any],
) -> tuple[str, dict[str, Any]]:
    """Build the keyed upsert for one fact row.

    Only keys present in ``fields`` (with a non-None value) are written; a
    column absent here is left alone on conflict and takes its default on
    first insert.
    """
    allowed = FACT_TABLES.get(table)
    if allowed is None:
        raise ValueError(f"Unknown fact table: {table}")
    unknown = sorted(set(fields) - set(allowed))
    if unknown:
        raise ValueError(f"Unknown {table} columns: {', '.join(unknown)}")

    columns = [key for key in allowed if fields.get(key) is not None]
    params: dict[str, Any] = {
        "restaurant_id": restaurant_id,
        "business_date": as_date(business_date),
        **{key: fields[key] for key in columns},
    }
    insert_columns = ", ".join(["restaurant_id", "business_date", *columns, "updated_at"])
    placeholders = ", ".join(
        ["%(restaurant_id)s", "%(business_date)s", *(f"%({key})s" for key in columns), "NOW()"]
    )
    assignments = ",\n               ".join(
        [*(f"{key} = EXCLUDED.{key}" for key in columns), "updated_at = NOW()"]
    )
    sql = f"""INSERT INTO {table} ({insert_columns})
           VALUES ({placeholders})
           ON CONFLICT (restaurant_id, business_date) DO UPDATE SET
               {assignments}
           RETURNING id"""
    return sql, params


def lock_key(cur: Any, restaurant_id: int, business_date: date | str) -> None:
    cur.execute(
        "SELECT pg_advisory_xact_lock(%s::int, %s::int)",
        (int(restaurant_id), as_date(business_date).toordinal()),
    )


def _upsert_fact(
    conn: Any,
    table: str,
    restaurant_id: int,
    business_date: date | str,
    fields: dict[str, Any],
) -> int:
    sql, params = build_fact_upsert(table, restaurant_id, business_date, fields)
    with conn.transaction():
        with conn.cursor() as cur:
            lock_key(cur, restaurant_id, business_date)
            cur.execute(sql, params)
            return cur.fetchone()[0]


def upsert_sales(conn: Any, restaurant_id: int, business_date: date | str, fields: dict[str, Any]) -> int:
    return _upsert_fact(conn, "daily_sales", restaurant_id, business_date, fields)


def upsert_labor(
    conn: Any,
    restaurant_id: int,
    business_date: date | str,
    fields: dict[str, Any],
    loading_factor: float = DEFAULT_LABOR_LOADING_FACTOR,
) -> int:
    fields = with_labor_burden(fields, loading_factor)
    return _upsert_fact(conn, "daily_labor", restaurant_id, business_date, fields)


def upsert_food_cost(conn: Any, restaurant_id: int, business_date: date | str, fields: dict[str, Any]) -> int:
    fields = dict(fields)
    if fields.get("total_cogs") is None:
        parts = [fields.get(key) for key in ("food_cost", "beverage_cost", "alcohol_cost")]
        if any(part is not None for part in parts):
            fields["total_cogs"] = sum(float(part or 0) for part in parts)
    return _upsert_fact(conn, "daily_food_cost", restaurant_id, business_date, fields)


def fetch_fact(conn: Any, table: str, restaurant_id: int, business_date: date | str) -> dict[str, Any] | None:
    if table not in FACT_TABLES and table != "daily_prime_cost":
        raise ValueError(f"Unknown fact table: {table}")
    with conn.cursor() as cur:
        cur.execute(
            f"SELECT * FROM {table} WHERE restaurant_id = %s AND business_date = %s",
            (restaurant_id, as_date(business_date)),
        )
        row = cur.fetchone()
        if row is None:
            return None
        cols = [desc[0] for desc in cur.description]
    return dict(zip(cols, row))


_PRIME_INPUTS_SQL = """
SELECT
    (SELECT net_sales FROM daily_sales
      WHERE restaurant_id = %(restaurant_id)s AND business_date = %(business_date)s),
    (SELECT total_cogs FROM daily_food_cost
      WHERE restaurant_id = %(restaurant_id)s AND business_date = %(business_date)s),
    (SELECT total_labor_cost FROM daily_labor
      WHERE restaurant_id = %(restaurant_id)s AND business_date = %(business_date)s),
    (SELECT total_labor_burden FROM daily_labor
      WHERE restaurant_id = %(restaurant_id)s AND business_date = %(business_date)s),
    (SELECT labor_percent FROM daily_labor
      WHERE restaurant_id = %(restaurant_id)s AND business_date = %(business_date)s)
"""

_PRIME_COLUMNS = ", ".join(PRIME_COST_FIELDS)
_PRIME_PLACEHOLDERS = ", ".join("%(" + key + ")s" for key in PRIME_COST_FIELDS)
_PRIME_ASSIGNMENTS = ",\n    ".join(key + " = EXCLUDED." + key for key in PRIME_COST_FIELDS)
_PRIME_STORED = ", ".join("daily_prime_cost." + key for key in PRIME_COST_FIELDS)
_PRIME_EXCLUDED = ", ".join("EXCLUDED." + key for key in PRIME_COST_FIELDS)

_PRIME_UPSERT_SQL = f"""
INSERT INTO daily_prime_cost (
    restaurant_id, business_date, {_PRIME_COLUMNS}, updated_at
)
VALUES (
    %(restaurant_id)s, %(business_date)s, {_PRIME_PLACEHOLDERS}, NOW()
)
ON CONFLICT (restaurant_id, business_date) DO UPDATE SET
    {_PRIME_ASSIGNMENTS},
    updated_at = NOW()
WHERE ({_PRIME_STORED})
    IS DISTINCT FROM ({_PRIME_EXCLUDED})
"""


def recompute_prime_cost(conn: Any, restaurant_id: int, business_date: date | str) -> dict[str, float]:
    """Rebuild daily_prime_cost for one key from the current input rows.

    Unchanged inputs leave the stored row untouched, ``updated_at`` included.
    """
    key = {"restaurant_id": restaurant_id, "business_date": as_date(business_date)}
    with conn.transaction():
        with conn.cursor() as cur:
            lock_key(cur, restaurant_id, business_date)
            cur.execute(_PRIME_INPUTS_SQL, key)
            net_sales, total_cogs, labor_cost, burden, labor_percent = cur.fetchone()
            values = compute_prime_cost(
                net_sales,
                total_cogs,
                labor_cost,
                labor_burden_cost=burden,
                reported_labor_percent=labor_percent,
            )
            cur.execute(_PRIME_UPSERT_SQL, {**key, **values})
    return values


def persist_store_metrics(
    conn: Any,
    restaurant_id: int,
    business_date: date | str,
    sales_fields: dict[str, Any],
    labor_fields: dict[str, Any],
) -> dict[str, float]:
    """Write one restaurant's scraped day and refresh its prime cost atomically."""
    with conn.transaction():
        with conn.cursor() as cur:
            lock_key(cur, restaurant_id, business_date)
        upsert_sales(conn, restaurant_id, business_date, sales_fields)
        upsert_labor(conn, restaurant_id, business_date, labor_fields)
        return recompute_prime_cost(conn, restaurant_id, business_date)


def log_run(conn: Any, entry: ScrapeLogEntry) -> int:
    if entry.status not in SCRAPE_STATUSES:
        raise ValueError(f"Unknown scrape status: {entry.status}")
    with conn.transaction():
        with conn.cursor() as cur:
            cur.execute(
                """INSERT INTO scrape_log (
                       scrape_type, business_date, status, records_processed,
                       error_message, completed_at, duration_seconds
                   )
                   VALUES (%s, %s, %s, %s, %s, NOW(), %s)
                   RETURNING id""",
                (
                    entry.scrape_type,
                    as_date(entry.business_date),
                    entry.status,
                    entry.records_processed,
                    entry.error_message,
                    round(entry.duration_seconds, 2),
                ),
            )
            return cur.fetchone()[0]


def recent_runs(conn: Any, limit: int = 20) -> list[dict[str, Any]]:
    with conn.cursor() as cur:
        cur.execute(
            """SELECT id, scrape_type, business_date, status, records_processed,
                      error_message, completed_at, duration_seconds
               FROM scrape_log
               ORDER BY completed_at DESC, id DESC
               LIMIT %s""",
            (max(1, int(limit)),),
        )
        cols = [desc[0] for desc in cur.description]
        rows = [dict(zip(cols, row)) for row in cur.fetchall()]
    for row in rows:
        for key, value in row.items():
            if isinstance(value, (date, datetime)):
                row[key] = value.isoformat()
            elif key == "duration_seconds" and value is not None:
                row[key] = float(value)
    return rows


class PostgresFactStore:
    """Connection-bound facade the pipeline and importer write through."""

    def __init__(self, conn: Any, loading_factor: float = DEFAULT_LABOR_LOADING_FACTOR) -> None:
        self.conn = conn
        self.loading_factor = loading_factor

    def list_active_restaurants(self) -> list[Restaurant]:
        return list_active_restaurants(self.conn)

    def get_by_external_id(self, store_id: str) -> Restaurant | None:
        return get_by_external_id(self.conn, store_id)

    def upsert_sales(self, restaurant_id: int, business_date: date | str, fields: dict[str, Any]) -> int:
        return upsert_sales(self.conn, restaurant_id, business_date, fields)

    def upsert_labor(self, restaurant_id: int, business_date: date | str, fields: dict[str, Any]) -> int:
        return upsert_labor(self.conn, restaurant_id, business_date, fields, self.loading_factor)

    def upsert_food_cost(self, restaurant_id: int, business_date: date | str, fields: dict[str, Any]) -> int:
        return upsert_food_cost(self.conn, restaurant_id, business_date, fields)

    def recompute_prime_cost(self, restaurant_id: int, business_date: date | str) -> dict[str, float]:
        return recompute_prime_cost(self.conn, restaurant_id, business_date)

    def persist_store_metrics(
        self,
        restaurant_id: int,
        business_date: date | str,
        sales_fields: dict[str, Any],
        labor_fields: dict[str, Any],
    ) -> dict[str, float]:
        return persist_store_metrics(self.conn, restaurant_id, business_date, sales_fields, labor_fields)

    def log_run(self, entry: ScrapeLogEntry) -> int:
        return log_run(self.conn, entry)

    def recent_runs(self, limit: int = 20) -> list[dict[str, Any]]:
        return recent_runs(self.conn, limit)
