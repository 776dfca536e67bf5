"""Read per-store metrics off the Insight Dashboard.

Strategies run in order and the first one that yields any store wins:

- ``StructuredGridStrategy`` reads the store grid straight out of the Angular
  scope (raw numbers, no text parsing).
- ``TextScanStrategy`` parses the rendered page text below a section marker.

When both come back empty the result is an empty store map plus a diagnostic
bundle. That is a valid result, not an error.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from playwright.async_api import Page

from .events import log_event
from .transforms import clean_text, normalize_name, parse_number

STORE_METRIC_FIELDS = (
    "net_sales",
    "labor_hours",
    "labor_amount",
    "labor_percent",
    "comp_amount",
    "void_amount",
    "check_count",
    "guest_count",
    "avg_guest_spend",
    "check_avg",
)

SOURCE_NONE = "none"

# Returns rows as [[{value, label}, ...], ...] from the first scope exposing
# one of the configured paths. Cells may be plain values or objects using
# either value/label or rawValue/formattedValue.
GRID_SCRIPT = """
(paths) => {
  const ng = window.angular;
  if (!ng) return [];
  const read = (obj, path) => path.split('.').reduce(
    (acc, key) => (acc === null || acc === undefined ? undefined : acc[key]), obj);
  const toCell = (c) => {
    if (c === null || c === undefined || typeof c !== 'object') {
      return { value: c === undefined ? null : c, label: c === null || c === undefined ? '' : String(c) };
    }
    let value = c.value !== undefined ? c.value : c.rawValue;
    if (value === undefined) value = null;
    let label = c.label !== undefined ? c.label : c.formattedValue;
    if (label === undefined || label === null) label = value === null ? '' : String(value);
    return { value: value, label: String(label) };
  };
  const elements = document.querySelectorAll('.ng-scope, [ng-controller], [data-ng-controller]');
  for (const el of elements) {
    let scope;
    try { scope = ng.element(el).scope(); } catch (e) { continue; }
    if (!scope) continue;
    for (const path of paths) {
      const rows = read(scope, path);
      if (Array.isArray(rows) && rows.length) {
        return rows.map((row) => {
          const cells = Array.isArray(row) ? row : (row && Array.isArray(row.cells) ? row.cells : []);
          return cells.map(toCell);
        });
      }
    }
  }
  return [];
}
"""

PAGE_TEXT_SCRIPT = "() => (document.body ? document.body.innerText || '' : '')"

DIAGNOSTICS_SCRIPT = """
() => {
  const ng = window.angular;
  let scopeReachable = false;
  if (ng) {
    const el = document.querySelector('.ng-scope, [ng-controller], [ng-app], [data-ng-app]');
    try { scopeReachable = !!(el && ng.element(el).scope()); } catch (e) { scopeReachable = false; }
  }
  const text = document.body ? document.body.innerText || '' : '';
  return {
    text_length: text.length,
    text_preview: text.slice(0, 500),
    angular_loaded: !!ng,
    scope_reachable: scopeReachable,
  };
}
"""


@dataclass
class ExtractedStoreRecord:
    name: str
    metrics: dict[str, float] = field(default_factory=dict)

    def get(self, key: str, default: float | None = None) -> float | None:
        return self.metrics.get(key, default)


@dataclass
class ExtractionResult:
    stores: dict[str, ExtractedStoreRecord]
    source: str
    diagnostics: dict[str, Any] = field(default_factory=dict)


def _cell_number(cell: Any) -> float:
    if isinstance(cell, dict):
        raw = cell.get("value")
        if isinstance(raw, (int, float)) and not isinstance(raw, bool):
            return parse_number(raw)
        if raw not in (None, ""):
            value = parse_number(raw)
            if value:
                return value
        return parse_number(cell.get("label"))
    return parse_number(cell)


def _cell_label(cell: Any) -> str:
    if isinstance(cell, dict):
        return clean_text(cell.get("label") or cell.get("value") or "")
    return clean_text(cell)


def parse_grid_rows(rows: list[Any], grid_config: dict[str, Any]) -> dict[str, ExtractedStoreRecord]:
    name_column = int(grid_config.get("name_column", 0))
    columns: dict[str, int] = grid_config.get("columns", {})
    skip = {normalize_name(label) for label in grid_config.get("skip_labels", [])}

    stores: dict[str, ExtractedStoreRecord] = {}
    for row in rows or []:
        if not isinstance(row, list) or len(row) <= name_column:
            continue
        name = _cell_label(row[name_column])
        if not name or normalize_name(name) in skip or name in stores:
            continue
        metrics: dict[str, float] = {}
        for field_name, index in columns.items():
            if field_name not in STORE_METRIC_FIELDS:
                continue
            if 0 <= index < len(row):
                metrics[field_name] = _cell_number(row[index])
        stores[name] = ExtractedStoreRecord(name=name, metrics=metrics)
    return stores


def parse_text_section(
    text: str,
    section_marker: str,
    known_stores: list[str],
    columns: dict[str, int],
) -> dict[str, ExtractedStoreRecord]:
    """Parse store lines that follow ``section_marker`` in rendered page text.

    Lines must start with one of ``known_stores``; the remaining fields are
    tab-delimited (falling back to whitespace) and read with the same column
    layout as the grid, column 0 being the store name.
    """
    if not text or not section_marker:
        return {}
    start = text.find(section_marker)
    if start < 0:
        return {}

    # Longest label first so "Preston Trail" is not shadowed by a shorter prefix.
    candidates = sorted((s for s in known_stores if s), key=len, reverse=True)
    stores: dict[str, ExtractedStoreRecord] = {}
    for raw_line in text[start:].splitlines():
        line = raw_line.strip()
        if not line:
            continue
        store = next((s for s in candidates if line.lower().startswith(s.lower())), None)
        if store is None or store in stores:
            continue
        remainder = line[len(store):]
        if "\t" in remainder:
            tokens = [token.strip() for token in remainder.split("\t")]
            tokens = [token for token in tokens if token]
        else:
            tokens = remainder.split()
        if not tokens:
            continue
        metrics: dict[str, float] = {}
        for field_name, index in columns.items():
            if field_name not in STORE_METRIC_FIELDS or index < 1:
                continue
            if index - 1 < len(tokens):
                metrics[field_name] = parse_number(tokens[index - 1])
        stores[store] = ExtractedStoreRecord(name=store, metrics=metrics)
    return stores


class StructuredGridStrategy:
    name = "structured_grid"

    async def extract(self, page: Page, config: dict[str, Any]) -> dict[str, ExtractedStoreRecord]:
        grid_config = config.get("grid", {})
        rows = await page.evaluate(GRID_SCRIPT, list(grid_config.get("scope_paths", [])))
        return parse_grid_rows(rows, grid_config)


class TextScanStrategy:
    name = "text_scan"

    def __init__(self, known_stores: list[str] | None = None) -> None:
        self.known_stores = known_stores

    async def extract(self, page: Page, config: dict[str, Any]) -> dict[str, ExtractedStoreRecord]:
        text_config = config.get("text_scan", {})
        known = self.known_stores or list(text_config.get("known_stores", []))
        text = await page.evaluate(PAGE_TEXT_SCRIPT)
        return parse_text_section(
            text or "",
            text_config.get("section_marker", ""),
            known,
            config.get("grid", {}).get("columns", {}),
        )


def default_strategies(extra_store_names: list[str] | None = None, config: dict[str, Any] | None = None) -> list[Any]:
    known = list((config or {}).get("text_scan", {}).get("known_stores", []))
    for name in extra_store_names or []:
        if name not in known:
            known.append(name)
    return [StructuredGridStrategy(), TextScanStrategy(known or None)]


async def collect_diagnostics(page: Page) -> dict[str, Any]:
    diagnostics: dict[str, Any] = {"url": getattr(page, "url", None)}
    try:
        diagnostics["title"] = await page.title()
    except Exception as exc:
        diagnostics["title_error"] = str(exc)
    try:
        diagnostics.update(await page.evaluate(DIAGNOSTICS_SCRIPT))
    except Exception as exc:
        diagnostics["evaluate_error"] = str(exc)
    return diagnostics


async def extract(
    page: Page,
    config: dict[str, Any],
    strategies: list[Any] | None = None,
) -> ExtractionResult:
    for strategy in strategies or default_strategies(config=config):
        try:
            stores = await strategy.extract(page, config)
        except Exception as exc:
            # A broken tier counts as an empty one; the next tier still runs.
            log_event("extract_strategy_failed", strategy=strategy.name, error=str(exc))
            continue
        log_event("extract_strategy_done", strategy=strategy.name, stores=len(stores))
        if stores:
            return ExtractionResult(stores=stores, source=strategy.name)

    diagnostics = await collect_diagnostics(page)
    log_event("extract_empty", **diagnostics)
    return ExtractionResult(stores={}, source=SOURCE_NONE, diagnostics=diagnostics)
