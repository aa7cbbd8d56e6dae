from typing import List, Optional

from defi_tearsheet.schemas.protocol import AnnualSnapshot, ProjectionScenario, ProtocolMetrics, ProtocolProjections
from defi_tearsheet.services.arithmetic import finite_or_none, safe_pow

DEFAULT_GROWTH_RATE = 0.15

BASE_GROWTH_CAP = 0.50
BULL_GROWTH_MULTIPLIER = 1.5
BULL_GROWTH_CAP = 0.75
BEAR_GROWTH_MULTIPLIER = 0.5
BEAR_GROWTH_FLOOR = -0.20

BULL_PS_CHANGE = 0.25
BEAR_PS_CHANGE = -0.25

def compute_revenue_cagr(snapshots: List[AnnualSnapshot]) -> Optional[float]:
    """
    Revenue CAGR between the earliest and latest years with positive revenue.
    """
    with_revenue = sorted(
        (s for s in snapshots if s.total_revenue is not None and s.total_revenue > 0),
        key=lambda s: s.year,
    )
    if len(with_revenue) < 2:
        return None

    earliest, latest = with_revenue[0], with_revenue[-1]
    years = latest.year - earliest.year
    if years <= 0:
        return None

    growth = safe_pow(latest.total_revenue / earliest.total_revenue, 1 / years)
    return finite_or_none(growth - 1) if growth is not None else None

def _scale(value: float, factor: float, years: int) -> Optional[float]:
    compounded = safe_pow(factor, years)
    if compounded is None:
        return None
    return finite_or_none(value * compounded)

def build_scenario(
    label: str,
    current_revenue: float,
    current_ps: float,
    circulating_supply: float,
    growth_rate: float,
    ps_change: float,
) -> ProjectionScenario:
    revenue_1y = _scale(current_revenue, 1 + growth_rate, 1)
    revenue_3y = _scale(current_revenue, 1 + growth_rate, 3)
    ps_1y = _scale(current_ps, 1 + ps_change, 1)
    ps_3y = _scale(current_ps, 1 + ps_change, 3)

    def implied_price(revenue, ps):
        if revenue is None or ps is None:
            return None
        return finite_or_none(revenue * ps / circulating_supply)

    return ProjectionScenario(
        label=label,
        revenue_1y=revenue_1y,
        ps_1y=ps_1y,
        implied_price_1y=implied_price(revenue_1y, ps_1y),
        revenue_3y=revenue_3y,
        ps_3y=ps_3y,
        implied_price_3y=implied_price(revenue_3y, ps_3y),
    )

def compute_projections(metrics: ProtocolMetrics, annual_snapshots: List[AnnualSnapshot]) -> Optional[ProtocolProjections]:
    if (
        metrics.annualized_revenue is None
        or metrics.ps_ratio is None
        or metrics.circulating_supply is None
        or metrics.circulating_supply == 0
    ):
        return None

    cagr = compute_revenue_cagr(annual_snapshots)
    growth = cagr if cagr is not None else DEFAULT_GROWTH_RATE

    args = (metrics.annualized_revenue, metrics.ps_ratio, metrics.circulating_supply)
    return ProtocolProjections(
        base=build_scenario("Base Case", *args, min(growth, BASE_GROWTH_CAP), 0.0),
        bull=build_scenario("Bull Case", *args, min(growth * BULL_GROWTH_MULTIPLIER, BULL_GROWTH_CAP), BULL_PS_CHANGE),
        bear=build_scenario("Bear Case", *args, max(growth * BEAR_GROWTH_MULTIPLIER, BEAR_GROWTH_FLOOR), BEAR_PS_CHANGE),
    )
