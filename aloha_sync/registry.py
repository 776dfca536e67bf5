"""Restaurant registry: canonical identity plus the Aloha store identifier."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class Restaurant:
    id: int
    name: str
    short_name: str | None = None
    brand: str | None = None
    city: str | None = None
    external_store_id: str | None = None
    is_active: bool = True


# Aloha store ids as listed on the Enterprise dashboard store picker.
SEED_RESTAURANTS: list[dict[str, Any]] = [
    {
        "name": "La Hacienda Ranch Arlington",
        "short_name": "LHR-ARL",
        "brand": "La Hacienda Ranch",
        "city": "Arlington",
        "aloha_store_id": "2614",
    },
    {
        "name": "La Hacienda Ranch Colleyville",
        "short_name": "LHR-COL",
        "brand": "La Hacienda Ranch",
        "city": "Colleyville",
        "aloha_store_id": "5250",
    },
    {
        "name": "La Hacienda Ranch Frisco",
        "short_name": "LHR-FRI",
        "brand": "La Hacienda Ranch",
        "city": "Frisco",
        "aloha_store_id": "4110",
    },
    {
        "name": "La Hacienda Ranch Preston Trail",
        "short_name": "LHR-PT",
        "brand": "La Hacienda Ranch",
        "city": "Dallas",
        "aloha_store_id": "17390",
    },
    {
        "name": "La Hacienda Ranch Skillman",
        "short_name": "LHR-SKL",
        "brand": "La Hacienda Ranch",
        "city": "Dallas",
        "aloha_store_id": "6300",
    },
]

_SELECT_COLUMNS = "id, name, short_name, brand, city, aloha_store_id, is_active"


def _row_to_restaurant(row: Any) -> Restaurant:
    return Restaurant(
        id=row[0],
        name=row[1],
        short_name=row[2],
        brand=row[3],
        city=row[4],
        external_store_id=row[5],
        is_active=bool(row[6]),
    )


def list_active_restaurants(conn: Any) -> list[Restaurant]:
    with conn.cursor() as cur:
        cur.execute(
            f"""SELECT {_SELECT_COLUMNS}
                FROM restaurants
                WHERE is_active
                ORDER BY brand, name"""
        )
        return [_row_to_restaurant(row) for row in cur.fetchall()]


def get_by_external_id(conn: Any, store_id: str) -> Restaurant | None:
    with conn.cursor() as cur:
        cur.execute(
            f"SELECT {_SELECT_COLUMNS} FROM restaurants WHERE aloha_store_id = %s AND is_active",
            (str(store_id),),
        )
        row = cur.fetchone()
    return _row_to_restaurant(row) if row else None


def seed_restaurants(conn: Any, restaurants: list[dict[str, Any]] | None = None) -> int:
    """Insert registry rows once; existing names are left untouched."""
    inserted = 0
    with conn.transaction():
        with conn.cursor() as cur:
            for entry in restaurants or SEED_RESTAURANTS:
                cur.execute(
                    """INSERT INTO restaurants (name, short_name, brand, city, state, aloha_store_id)
                       VALUES (%s, %s, %s, %s, %s, %s)
                       ON CONFLICT (name) DO NOTHING""",
                    (
                        entry["name"],
                        entry.get("short_name"),
                        entry.get("brand"),
                        entry.get("city"),
                        entry.get("state", "TX"),
                        entry.get("aloha_store_id"),
                    ),
                )
                inserted += cur.rowcount
    return inserted
