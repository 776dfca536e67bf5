"""Selector config, credentials, store aliases and database connection settings."""

from __future__ import annotations

import copy
import json
import os
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Generator

from .errors import ConfigError
from .reconcile import AliasTable

REFERENCES_DIR = Path(__file__).resolve().parent / "references"
DEFAULT_CONFIG_PATH = REFERENCES_DIR / "aloha_dashboard.json"
DEFAULT_ALIASES_PATH = REFERENCES_DIR / "store_aliases.json"

DEFAULT_BASE_URL = "https://lahaciendaranch.alohaenterprise.com"
HEADLESS_CHROME_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/131.0.0.0 Safari/537.36"
)


DEFAULT_CONFIG: dict[str, Any] = {
    "login_path": "/login.do",
    "dashboard_path": "/insightdashboard/dashboard.jsp#/",
    "browser": {
        "headless": True,
        "viewport": {"width": 1920, "height": 1080},
        "user_agent": HEADLESS_CHROME_USER_AGENT,
        "args": [
            "--no-sandbox",
            "--disable-setuid-sandbox",
            "--disable-dev-shm-usage",
            "--disable-gpu",
            "--disable-blink-features=AutomationControlled",
        ],
    },
    "timeouts": {
        "navigation_sec": 60,
        "action_sec": 30,
        "login_form_sec": 15,
        "login_settle_sec": 30,
        "dashboard_ready_sec": 60,
    },
    "auth": {
        "username_inputs": [
            "input[name='username']",
            "#username",
            "input[type='email']",
            "input[type='text']",
        ],
        "password_inputs": [
            "input[name='password']",
            "#password",
            "input[type='password']",
        ],
        "submit_buttons": [
            "input[type='submit']",
            "button[type='submit']",
            ".btn-primary",
            "button:has-text('Log In')",
            "button:has-text('Sign In')",
        ],
        "failure_phrases": [
            "Invalid username or password",
            "Invalid login",
            "Login failed",
            "incorrect password",
        ],
        "dismiss_buttons": [
            "button:has-text('No')",
            "input[value='No']",
            "button:has-text('Not now')",
            "button:has-text('Close')",
            ".modal-dialog button.close",
        ],
    },
    "dashboard": {
        "ready_marker": "Net Sales",
    },
    "grid": {
        "scope_paths": [
            "grid.rows",
            "vm.grid.rows",
            "$ctrl.grid.rows",
            "storeGrid.rows",
            "dashboard.storeGrid.rows",
        ],
        "name_column": 0,
        "columns": {
            "net_sales": 1,
            "check_count": 2,
            "check_avg": 3,
            "comp_amount": 4,
            "labor_amount": 5,
            "labor_percent": 6,
            "labor_hours": 7,
            "void_amount": 8,
            "guest_count": 12,
            "avg_guest_spend": 13,
        },
        "skip_labels": ["Total", "Grand Total", "Totals"],
    },
    "text_scan": {
        "section_marker": "Net Sales",
        "known_stores": ["Arlington", "Colleyville", "Frisco", "Preston Trail", "Skillman"],
    },
    "labor": {
        "loading_factor": 1.22,
    },
}


@dataclass(frozen=True)
class Credentials:
    base_url: str
    username: str
    password: str


def deep_merge(base: dict[str, Any], extra: dict[str, Any]) -> dict[str, Any]:
    out = dict(base)
    for key, value in extra.items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = deep_merge(out[key], value)
        else:
            out[key] = value
    return out


def load_config(path: str | Path | None = None) -> dict[str, Any]:
    config = copy.deepcopy(DEFAULT_CONFIG)
    config_path = Path(path) if path else DEFAULT_CONFIG_PATH
    if config_path.exists():
        try:
            extra = json.loads(config_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ConfigError(f"Config file is not valid JSON: {config_path}") from exc
        if not isinstance(extra, dict):
            raise ConfigError(f"Config file must hold a JSON object: {config_path}")
        config = deep_merge(config, extra)
    return config


def load_env_values(path: str | Path) -> dict[str, str]:
    env_path = Path(path)
    if not env_path.exists():
        return {}
    values: dict[str, str] = {}
    for raw_line in env_path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        values[key.strip()] = value.strip().strip('"').strip("'")
    return values


def resolve_credentials(env_values: dict[str, str]) -> Credentials:
    """Build vendor credentials; process environment wins over the env file."""
    merged = {**env_values, **os.environ}
    base_url = (merged.get("ALOHA_URL") or DEFAULT_BASE_URL).strip().rstrip("/")
    username = (merged.get("ALOHA_USERNAME") or "").strip()
    password = (merged.get("ALOHA_PASSWORD") or "").strip()
    if not username or not password:
        raise ConfigError("ALOHA_USERNAME and ALOHA_PASSWORD are required (env or --env-file).")
    return Credentials(base_url=base_url, username=username, password=password)


def load_aliases(path: str | Path | None = None) -> AliasTable:
    alias_path = Path(path) if path else DEFAULT_ALIASES_PATH
    if not alias_path.exists():
        raise ConfigError(f"Store alias file not found: {alias_path}")
    try:
        raw = json.loads(alias_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Store alias file is not valid JSON: {alias_path}") from exc

    aliases = raw.get("aliases") if isinstance(raw, dict) else None
    if not isinstance(aliases, dict):
        raise ConfigError(f"Store alias file needs an 'aliases' object: {alias_path}")
    prefixes = raw.get("brand_prefixes") or []
    if not isinstance(prefixes, list):
        raise ConfigError(f"'brand_prefixes' must be a list: {alias_path}")
    return AliasTable(
        version=str(raw.get("version") or "unversioned"),
        aliases={str(k): str(v) for k, v in aliases.items()},
        brand_prefixes=[str(p) for p in prefixes],
    )


def get_database_url(explicit: str | None = None) -> str:
    url = explicit or os.environ.get("DATABASE_URL", "")
    if not url:
        raise ConfigError("DATABASE_URL is required (--database-url or env var)")
    return url


@contextmanager
def get_connection(database_url: str | None = None) -> Generator[Any, None, None]:
    """Open an autocommit connection; writers scope their own transactions."""
    import psycopg

    url = get_database_url(database_url)
    with psycopg.connect(url, autocommit=True) as conn:
        yield conn
