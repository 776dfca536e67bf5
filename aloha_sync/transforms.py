"""Parsing helpers for dashboard tokens and store labels.

All functions are pure (no side effects, no browser or DB access).
"""

from __future__ import annotations

import math
import re
from datetime import date, datetime, timedelta
from html import unescape
from typing import Any

# Characters stripped from a token before numeric parsing: "$1,234.50", "29.0%".
NUMERIC_NOISE = re.compile(r"[$,%]")


def parse_number(raw: Any) -> float:
    """Parse a dashboard token as float; anything unreadable becomes 0.0.

    ``"$25,000.00"`` -> 25000.0, ``"29.0%"`` -> 29.0, ``"--"`` -> 0.0.
    A single bad field resolves to zero instead of failing the run.
    """
    if raw is None or isinstance(raw, bool):
        return 0.0
    if isinstance(raw, (int, float)):
        value = float(raw)
    else:
        text = NUMERIC_NOISE.sub("", str(raw)).strip()
        # Accounting negatives: "(1,250.00)"
        if text.startswith("(") and text.endswith(")"):
            text = "-" + text[1:-1]
        try:
            value = float(text)
        except ValueError:
            return 0.0
    if math.isnan(value) or math.isinf(value):
        return 0.0
    return value


def parse_count(raw: Any) -> int:
    return int(round(parse_number(raw)))


def clean_text(value: Any) -> str:
    text = re.sub(r"<[^>]+>", " ", str(value or ""))
    text = unescape(text)
    return re.sub(r"\s+", " ", text).strip()


def normalize_name(value: Any) -> str:
    """Lower-case, collapse whitespace and drop apostrophes for name comparison."""
    text = clean_text(value).lower().replace("'", "").replace("’", "")
    return re.sub(r"\s+", " ", text).strip()


def as_date(value: date | datetime | str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value).strip())


def default_business_date(today: date | None = None) -> date:
    """Yesterday in the local operating calendar."""
    today = today or datetime.now().astimezone().date()
    return today - timedelta(days=1)
