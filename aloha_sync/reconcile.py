"""Match registry restaurants to store labels read from the Aloha dashboard.

Precedence per restaurant, first hit wins:

1. alias     - the store label is listed in the alias table and its keyword
               appears in the restaurant name
2. substring - brand-stripped names contain one another
3. fuzzy     - the last word of the restaurant name (usually the city)
               appears in the store label
4. unmatched

Labels listed in the alias table are matched only through their alias.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from .extract import ExtractedStoreRecord
from .registry import Restaurant
from .transforms import normalize_name

METHOD_ALIAS = "alias"
METHOD_SUBSTRING = "substring"
METHOD_FUZZY = "fuzzy"
METHOD_UNMATCHED = "unmatched"

# A matched store reporting $0 net sales is read as a missed scrape, not a
# closed day. Flip to False once closed days need to be recorded as zeros.
ZERO_SALES_IS_NO_DATA = True


@dataclass
class AliasTable:
    version: str = "unversioned"
    aliases: dict[str, str] = field(default_factory=dict)
    brand_prefixes: list[str] = field(default_factory=list)

    def keyword_for(self, store_name: str) -> str | None:
        wanted = normalize_name(store_name)
        for label, keyword in self.aliases.items():
            if normalize_name(label) == wanted:
                return keyword
        return None


@dataclass
class MatchResult:
    restaurant: Restaurant
    record: ExtractedStoreRecord | None
    method: str
    store_name: str | None = None


def strip_brand(name: str, prefixes: list[str]) -> str:
    text = normalize_name(name)
    # Longest first so "la hacienda ranch" goes before "la".
    for prefix in sorted((normalize_name(p) for p in prefixes), key=len, reverse=True):
        if prefix and text.startswith(prefix):
            text = text[len(prefix):].strip(" -")
    return text


def last_token(name: str) -> str:
    tokens = normalize_name(name).split()
    return tokens[-1] if tokens else ""


def is_zero_sales(record: ExtractedStoreRecord | None) -> bool:
    """Policy: a store with no net sales has no usable data for the day."""
    if record is None or not ZERO_SALES_IS_NO_DATA:
        return False
    return not record.get("net_sales")


def _match_one(
    restaurant: Restaurant,
    extracted: dict[str, ExtractedStoreRecord],
    aliases: AliasTable,
) -> MatchResult:
    restaurant_name = normalize_name(restaurant.name)
    open_labels: list[str] = []

    for store_name in extracted:
        keyword = aliases.keyword_for(store_name)
        if keyword is None:
            open_labels.append(store_name)
            continue
        if normalize_name(keyword) and normalize_name(keyword) in restaurant_name:
            return MatchResult(restaurant, extracted[store_name], METHOD_ALIAS, store_name)

    stripped_restaurant = strip_brand(restaurant.name, aliases.brand_prefixes)
    for store_name in open_labels:
        stripped_store = strip_brand(store_name, aliases.brand_prefixes)
        if not stripped_store or not stripped_restaurant:
            continue
        if stripped_store in stripped_restaurant or stripped_restaurant in stripped_store:
            return MatchResult(restaurant, extracted[store_name], METHOD_SUBSTRING, store_name)

    token = last_token(restaurant.name)
    if token:
        for store_name in open_labels:
            if token in normalize_name(store_name):
                return MatchResult(restaurant, extracted[store_name], METHOD_FUZZY, store_name)

    return MatchResult(restaurant, None, METHOD_UNMATCHED)


def reconcile(
    registry: list[Restaurant],
    extracted: dict[str, ExtractedStoreRecord],
    aliases: AliasTable | None = None,
) -> list[MatchResult]:
    aliases = aliases or AliasTable()
    return [_match_one(restaurant, extracted, aliases) for restaurant in registry]
