"""Database schema DDL for the restaurant KPI store.

Restaurant registry, the four daily fact tables keyed by
(restaurant_id, business_date), and the append-only scrape log.
"""

from __future__ import annotations

from typing import Any

from .registry import seed_restaurants

REGISTRY_TABLES = """
CREATE TABLE IF NOT EXISTS restaurants (
    id              SERIAL PRIMARY KEY,
    name            TEXT UNIQUE NOT NULL,
    short_name      TEXT,
    brand           TEXT,
    city            TEXT,
    state           TEXT NOT NULL DEFAULT 'TX',
    aloha_store_id  TEXT,
    is_active       BOOLEAN NOT NULL DEFAULT TRUE,
    created_at      TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE UNIQUE INDEX IF NOT EXISTS ux_restaurants_short_name_active
    ON restaurants (short_name) WHERE is_active AND short_name IS NOT NULL;
CREATE UNIQUE INDEX IF NOT EXISTS ux_restaurants_aloha_store_active
    ON restaurants (aloha_store_id) WHERE is_active AND aloha_store_id IS NOT NULL;
"""

# Money NUMERIC(14,2); percentages NUMERIC(12,2) so a bad sales read cannot
# overflow the column.
FACT_TABLES = """
CREATE TABLE IF NOT EXISTS daily_sales (
    id                  BIGSERIAL PRIMARY KEY,
    restaurant_id       INTEGER NOT NULL REFERENCES restaurants(id),
    business_date       DATE NOT NULL,
    gross_sales         NUMERIC(14,2) NOT NULL DEFAULT 0,
    net_sales           NUMERIC(14,2) NOT NULL DEFAULT 0,
    comps               NUMERIC(14,2) NOT NULL DEFAULT 0,
    discounts           NUMERIC(14,2) NOT NULL DEFAULT 0,
    voids               NUMERIC(14,2) NOT NULL DEFAULT 0,
    guest_count         INTEGER NOT NULL DEFAULT 0,
    check_count         INTEGER NOT NULL DEFAULT 0,
    avg_check           NUMERIC(14,2) NOT NULL DEFAULT 0,
    avg_guest_spend     NUMERIC(14,2) NOT NULL DEFAULT 0,
    food_sales          NUMERIC(14,2) NOT NULL DEFAULT 0,
    beverage_sales      NUMERIC(14,2) NOT NULL DEFAULT 0,
    alcohol_sales       NUMERIC(14,2) NOT NULL DEFAULT 0,
    liquor_sales        NUMERIC(14,2) NOT NULL DEFAULT 0,
    beer_sales          NUMERIC(14,2) NOT NULL DEFAULT 0,
    wine_sales          NUMERIC(14,2) NOT NULL DEFAULT 0,
    retail_sales        NUMERIC(14,2) NOT NULL DEFAULT 0,
    gift_card_sales     NUMERIC(14,2) NOT NULL DEFAULT 0,
    data_source         TEXT NOT NULL DEFAULT 'aloha',
    created_at          TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at          TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE (restaurant_id, business_date)
);

CREATE TABLE IF NOT EXISTS daily_labor (
    id                  BIGSERIAL PRIMARY KEY,
    restaurant_id       INTEGER NOT NULL REFERENCES restaurants(id),
    business_date       DATE NOT NULL,
    total_hours         NUMERIC(10,2) NOT NULL DEFAULT 0,
    regular_hours       NUMERIC(10,2) NOT NULL DEFAULT 0,
    overtime_hours      NUMERIC(10,2) NOT NULL DEFAULT 0,
    total_labor_cost    NUMERIC(14,2) NOT NULL DEFAULT 0,
    regular_wages       NUMERIC(14,2) NOT NULL DEFAULT 0,
    overtime_wages      NUMERIC(14,2) NOT NULL DEFAULT 0,
    foh_hours           NUMERIC(10,2) NOT NULL DEFAULT 0,
    foh_cost            NUMERIC(14,2) NOT NULL DEFAULT 0,
    boh_hours           NUMERIC(10,2) NOT NULL DEFAULT 0,
    boh_cost            NUMERIC(14,2) NOT NULL DEFAULT 0,
    management_hours    NUMERIC(10,2) NOT NULL DEFAULT 0,
    management_cost     NUMERIC(14,2) NOT NULL DEFAULT 0,
    payroll_taxes       NUMERIC(14,2) NOT NULL DEFAULT 0,
    benefits_cost       NUMERIC(14,2) NOT NULL DEFAULT 0,
    total_labor_burden  NUMERIC(14,2) NOT NULL DEFAULT 0,
    employee_count      INTEGER NOT NULL DEFAULT 0,
    labor_percent       NUMERIC(12,2) NOT NULL DEFAULT 0,
    data_source         TEXT NOT NULL DEFAULT 'aloha',
    created_at          TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at          TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE (restaurant_id, business_date)
);

CREATE TABLE IF NOT EXISTS daily_food_cost (
    id                      BIGSERIAL PRIMARY KEY,
    restaurant_id           INTEGER NOT NULL REFERENCES restaurants(id),
    business_date           DATE NOT NULL,
    food_cost               NUMERIC(14,2) NOT NULL DEFAULT 0,
    beverage_cost           NUMERIC(14,2) NOT NULL DEFAULT 0,
    alcohol_cost            NUMERIC(14,2) NOT NULL DEFAULT 0,
    total_cogs              NUMERIC(14,2) NOT NULL DEFAULT 0,
    food_cost_percent       NUMERIC(12,2) NOT NULL DEFAULT 0,
    beverage_cost_percent   NUMERIC(12,2) NOT NULL DEFAULT 0,
    total_cogs_percent      NUMERIC(12,2) NOT NULL DEFAULT 0,
    data_source             TEXT NOT NULL DEFAULT 'manual',
    created_at              TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at              TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE (restaurant_id, business_date)
);

-- Derived: rebuilt from the three tables above, never written by ingestion.
CREATE TABLE IF NOT EXISTS daily_prime_cost (
    id                          BIGSERIAL PRIMARY KEY,
    restaurant_id               INTEGER NOT NULL REFERENCES restaurants(id),
    business_date               DATE NOT NULL,
    net_sales                   NUMERIC(14,2) NOT NULL DEFAULT 0,
    total_cogs                  NUMERIC(14,2) NOT NULL DEFAULT 0,
    total_labor                 NUMERIC(14,2) NOT NULL DEFAULT 0,
    prime_cost                  NUMERIC(14,2) NOT NULL DEFAULT 0,
    cogs_percent                NUMERIC(12,2) NOT NULL DEFAULT 0,
    labor_percent               NUMERIC(12,2) NOT NULL DEFAULT 0,
    prime_cost_percent          NUMERIC(12,2) NOT NULL DEFAULT 0,
    target_prime_cost_percent   NUMERIC(12,2) NOT NULL DEFAULT 65,
    variance_percent            NUMERIC(12,2) NOT NULL DEFAULT 0,
    variance_dollars            NUMERIC(14,2) NOT NULL DEFAULT 0,
    gross_profit                NUMERIC(14,2) NOT NULL DEFAULT 0,
    gross_profit_percent        NUMERIC(12,2) NOT NULL DEFAULT 0,
    created_at                  TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at                  TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE (restaurant_id, business_date)
);
"""

LOG_TABLES = """
CREATE TABLE IF NOT EXISTS scrape_log (
    id                  BIGSERIAL PRIMARY KEY,
    scrape_type         TEXT NOT NULL,
    business_date       DATE NOT NULL,
    status              TEXT NOT NULL CHECK (status IN ('success', 'partial', 'error')),
    records_processed   INTEGER NOT NULL DEFAULT 0,
    error_message       TEXT,
    completed_at        TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    duration_seconds    NUMERIC(10,2) NOT NULL DEFAULT 0
);
"""

INDEXES = """
CREATE INDEX IF NOT EXISTS idx_daily_sales_date ON daily_sales (business_date);
CREATE INDEX IF NOT EXISTS idx_daily_labor_date ON daily_labor (business_date);
CREATE INDEX IF NOT EXISTS idx_daily_food_cost_date ON daily_food_cost (business_date);
CREATE INDEX IF NOT EXISTS idx_daily_prime_cost_date ON daily_prime_cost (business_date);
CREATE INDEX IF NOT EXISTS idx_scrape_log_completed ON scrape_log (completed_at DESC);
"""


def create_schema(conn: Any) -> None:
    """Create all tables and indexes (idempotent)."""
    with conn.transaction():
        with conn.cursor() as cur:
            cur.execute(REGISTRY_TABLES)
            cur.execute(FACT_TABLES)
            cur.execute(LOG_TABLES)
            cur.execute(INDEXES)


def drop_all(conn: Any) -> None:
    """Drop all tables (for development/testing only)."""
    with conn.transaction():
        with conn.cursor() as cur:
            cur.execute("DROP TABLE IF EXISTS scrape_log CASCADE")
            cur.execute("DROP TABLE IF EXISTS daily_prime_cost CASCADE")
            cur.execute("DROP TABLE IF EXISTS daily_food_cost CASCADE")
            cur.execute("DROP TABLE IF EXISTS daily_labor CASCADE")
            cur.execute("DROP TABLE IF EXISTS daily_sales CASCADE")
            cur.execute("DROP TABLE IF EXISTS restaurants CASCADE")


def seed(conn: Any) -> int:
    create_schema(conn)
    return seed_restaurants(conn)
