"""Prime-cost math and labor loading.

Pure functions over plain numbers; the storage layer reads the inputs and
writes the resulting row.
"""

from __future__ import annotations

from typing import Any

TARGET_PRIME_COST_PERCENT = 65.0
DEFAULT_LABOR_LOADING_FACTOR = 1.22

PRIME_COST_FIELDS = (
    "net_sales",
    "total_cogs",
    "total_labor",
    "prime_cost",
    "cogs_percent",
    "labor_percent",
    "prime_cost_percent",
    "target_prime_cost_percent",
    "variance_percent",
    "variance_dollars",
    "gross_profit",
    "gross_profit_percent",
)


def _num(value: Any) -> float:
    return float(value) if value is not None else 0.0


def percent_of(component: float, net_sales: float) -> float:
    """``component / net_sales * 100``; 0 when there are no sales to divide by."""
    if net_sales <= 0:
        return 0.0
    return component / net_sales * 100


def labor_burden(labor_cost: float, loading_factor: float = DEFAULT_LABOR_LOADING_FACTOR) -> float:
    return round(labor_cost * loading_factor, 2)


def with_labor_burden(
    fields: dict[str, Any],
    loading_factor: float = DEFAULT_LABOR_LOADING_FACTOR,
) -> dict[str, Any]:
    """Labor write fields with ``total_labor_burden`` tied to the cost being written.

    A new ``total_labor_cost`` without an explicit burden gets a derived one,
    so a corrected cost never leaves the previous burden behind.
    """
    fields = dict(fields)
    if fields.get("total_labor_cost") is not None and fields.get("total_labor_burden") is None:
        fields["total_labor_burden"] = labor_burden(_num(fields["total_labor_cost"]), loading_factor)
    return fields


def compute_prime_cost(
    net_sales: Any,
    total_cogs: Any,
    labor_cost: Any,
    labor_burden_cost: Any = None,
    reported_labor_percent: Any = None,
    target_percent: float = TARGET_PRIME_COST_PERCENT,
) -> dict[str, float]:
    """Compute a full daily_prime_cost row from its inputs.

    Missing inputs count as zero. Labor burden wins over raw labor cost when
    it is present and non-zero; when neither is known the labor percent
    reported by the POS is applied to net sales. With no net sales every
    percentage, the variance included, is 0.
    """
    sales = _num(net_sales)
    cogs = _num(total_cogs)
    burden = _num(labor_burden_cost)
    labor = burden if burden else _num(labor_cost)
    if not labor and sales > 0:
        labor = _num(reported_labor_percent) / 100 * sales

    prime_cost = cogs + labor
    gross_profit = sales - prime_cost
    prime_cost_percent = percent_of(prime_cost, sales)

    if sales > 0:
        variance_percent = prime_cost_percent - target_percent
        variance_dollars = variance_percent / 100 * sales
    else:
        variance_percent = 0.0
        variance_dollars = 0.0

    return {
        "net_sales": round(sales, 2),
        "total_cogs": round(cogs, 2),
        "total_labor": round(labor, 2),
        "prime_cost": round(prime_cost, 2),
        "cogs_percent": round(percent_of(cogs, sales), 2),
        "labor_percent": round(percent_of(labor, sales), 2),
        "prime_cost_percent": round(prime_cost_percent, 2),
        "target_prime_cost_percent": float(target_percent),
        "variance_percent": round(variance_percent, 2),
        "variance_dollars": round(variance_dollars, 2),
        "gross_profit": round(gross_profit, 2),
        "gross_profit_percent": round(percent_of(gross_profit, sales), 2),
    }
