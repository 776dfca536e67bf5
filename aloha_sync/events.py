"""JSON-lines event log shared by every pipeline step."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def log_event(event: str, **payload: Any) -> None:
    record = {"ts": utc_now(), "event": event, **payload}
    print(json.dumps(record, ensure_ascii=True, default=str), flush=True)
