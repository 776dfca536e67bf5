"""Command line entry point: ``python -m aloha_sync`` / ``aloha-sync``."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from datetime import date
from pathlib import Path

from .config import (
    get_connection,
    load_aliases,
    load_config,
    load_env_values,
    resolve_credentials,
)
from .errors import ConfigError, RunAlreadyActive
from .events import log_event
from .importer import import_payload
from .pipeline import RunGuard, run_pipeline
from .registry import list_active_restaurants
from .schema import create_schema, drop_all, seed
from .store import PostgresFactStore, recent_runs, recompute_prime_cost


def parse_iso_date(value: str, field_name: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise ConfigError(f"Invalid {field_name}: {value}. Expected YYYY-MM-DD.") from exc


def print_json(payload: object) -> None:
    print(json.dumps(payload, indent=2, default=str))


def run_scrape(args: argparse.Namespace) -> int:
    env_values = load_env_values(args.env_file)
    credentials = resolve_credentials(env_values)
    config = load_config(args.config)
    if args.headed:
        config["browser"] = {**config["browser"], "headless": False}
    aliases = load_aliases(args.aliases)
    business_date = parse_iso_date(args.date, "--date") if args.date else None
    artifact_dir = Path(args.artifact_dir) if args.artifact_dir else None

    with get_connection(args.database_url or env_values.get("DATABASE_URL")) as conn:
        report = asyncio.run(
            run_pipeline(
                business_date,
                store=PostgresFactStore(conn, float(config["labor"]["loading_factor"])),
                credentials=credentials,
                config=config,
                aliases=aliases,
                guard=RunGuard(),
                artifact_dir=artifact_dir,
            )
        )
    print_json(report.to_dict())
    return 1 if report.status == "error" else 0


def run_import(args: argparse.Namespace) -> int:
    path = Path(args.file)
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ConfigError(f"Import file not found: {path}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Import file is not valid JSON: {path}") from exc

    with get_connection(args.database_url) as conn:
        result = import_payload(PostgresFactStore(conn), payload)
    print_json(result)
    return 1 if result["errors"] else 0


def run_recompute(args: argparse.Namespace) -> int:
    business_date = parse_iso_date(args.date, "--date")
    with get_connection(args.database_url) as conn:
        if args.restaurant_id is not None:
            restaurant_ids = [args.restaurant_id]
        else:
            restaurant_ids = [r.id for r in list_active_restaurants(conn)]
        results = {}
        for restaurant_id in restaurant_ids:
            results[str(restaurant_id)] = recompute_prime_cost(conn, restaurant_id, business_date)
    log_event("recompute_done", business_date=business_date.isoformat(), restaurants=len(results))
    print_json({"business_date": business_date.isoformat(), "prime_cost": results})
    return 0


def run_status(args: argparse.Namespace) -> int:
    with get_connection(args.database_url) as conn:
        runs = recent_runs(conn, args.limit)
    print_json({"runs": runs})
    return 0


def run_schema(args: argparse.Namespace) -> int:
    with get_connection(args.database_url) as conn:
        if args.action in ("drop", "recreate"):
            drop_all(conn)
            log_event("schema_dropped")
        if args.action in ("create", "recreate"):
            create_schema(conn)
            log_event("schema_created")
        if args.action == "seed":
            inserted = seed(conn)
            log_event("registry_seeded", inserted=inserted)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="aloha-sync", description="Aloha dashboard scrape-to-Postgres sync")
    parser.add_argument("--database-url", default=None, help="Postgres URL (default: DATABASE_URL env var)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Scrape one business date into the fact tables")
    run_parser.add_argument("--date", default=None, help="Business date YYYY-MM-DD (default: yesterday)")
    run_parser.add_argument("--env-file", default=".env")
    run_parser.add_argument("--config", default=None, help="JSON override for dashboard selectors and layout")
    run_parser.add_argument("--aliases", default=None, help="Store alias table JSON")
    run_parser.add_argument("--artifact-dir", default="output/aloha_debug")
    run_parser.add_argument("--headed", action="store_true", help="Show the browser window")

    import_parser = subparsers.add_parser("import", help="Bulk import sales/labor/food_cost JSON")
    import_parser.add_argument("file")

    recompute_parser = subparsers.add_parser("recompute", help="Recompute prime cost for a date")
    recompute_parser.add_argument("--date", required=True)
    recompute_parser.add_argument("--restaurant-id", type=int, default=None)

    status_parser = subparsers.add_parser("status", help="Print recent scrape runs")
    status_parser.add_argument("--limit", type=int, default=20)

    schema_parser = subparsers.add_parser("schema", help="Manage database schema")
    schema_parser.add_argument("action", choices=["create", "drop", "recreate", "seed"])

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        if args.command == "run":
            return run_scrape(args)
        if args.command == "import":
            return run_import(args)
        if args.command == "recompute":
            return run_recompute(args)
        if args.command == "status":
            return run_status(args)
        if args.command == "schema":
            return run_schema(args)
    except ConfigError as exc:
        print(str(exc), file=sys.stderr)
        return 2
    except RunAlreadyActive as exc:
        print(str(exc), file=sys.stderr)
        return 3
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
