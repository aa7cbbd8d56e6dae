"""
Buckets daily series into calendar-year snapshots.
Stock-like series (price, market cap, TVL) are averaged, flow-like series
(revenue, fees) are summed. Years are UTC calendar years.
"""
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Sequence, Set, Tuple

from defi_tearsheet.core.config import get_settings
from defi_tearsheet.schemas.protocol import AnnualSnapshot
from defi_tearsheet.services.arithmetic import mean_or_none, safe_pct, safe_ratio, sum_or_none

Series = Sequence[Tuple[float, float]]

def _year_bounds(year: int) -> Tuple[float, float]:
    start = datetime(year, 1, 1, tzinfo=timezone.utc).timestamp()
    end = datetime(year + 1, 1, 1, tzinfo=timezone.utc).timestamp()
    return start, end

def _year_of(unix_seconds: float) -> int:
    return datetime.fromtimestamp(unix_seconds, tz=timezone.utc).year

def _in_year(series: Series, start: float, end: float) -> List[float]:
    return [value for ts, value in series if start <= ts < end]

def _years_with_data(series_list: Iterable[Series], first_year: int, last_year: int) -> Set[int]:
    years = set()
    for series in series_list:
        for ts, _ in series:
            year = _year_of(ts)
            if first_year <= year <= last_year:
                years.add(year)
    return years

def build_annual_snapshots(
    price_history_ms: Series,
    mcap_history_ms: Series,
    tvl_history: Series,
    revenue_chart: Series,
    fee_chart: Series,
    current_year: Optional[int] = None,
    history_years: Optional[int] = None,
) -> List[AnnualSnapshot]:
    """
    Price and market-cap timestamps are milliseconds; TVL, revenue and fee
    timestamps are seconds. A year is emitted when any series has a point in it,
    restricted to the trailing `history_years` ending at `current_year`.
    """
    if current_year is None:
        current_year = datetime.now(timezone.utc).year
    if history_years is None:
        history_years = get_settings().HISTORY_YEARS

    prices = [(ts / 1000, value) for ts, value in price_history_ms]
    mcaps = [(ts / 1000, value) for ts, value in mcap_history_ms]
    tvls = list(tvl_history)
    revenue = list(revenue_chart)
    fees = list(fee_chart)

    first_year = current_year - history_years + 1
    years = _years_with_data((prices, mcaps, tvls, revenue, fees), first_year, current_year)

    snapshots = []
    for year in sorted(years):
        start, end = _year_bounds(year)

        avg_price = mean_or_none(_in_year(prices, start, end))
        avg_market_cap = mean_or_none(_in_year(mcaps, start, end))
        avg_tvl = mean_or_none(_in_year(tvls, start, end))
        total_revenue = sum_or_none(_in_year(revenue, start, end))
        total_fees = sum_or_none(_in_year(fees, start, end))

        snapshots.append(AnnualSnapshot(
            year=year,
            avg_price=avg_price,
            avg_market_cap=avg_market_cap,
            avg_tvl=avg_tvl,
            total_revenue=total_revenue,
            total_fees=total_fees,
            ps_ratio=safe_ratio(avg_market_cap, total_revenue),
            tvl_mcap_ratio=safe_ratio(avg_tvl, avg_market_cap),
            revenue_yield=safe_pct(total_revenue, avg_tvl),
        ))

    return snapshots
