"""
Turns raw DefiLlama and CoinGecko payloads into one ProtocolMetrics record and
one merged daily timeline. Provider payloads are plain dicts; anything missing
or oddly shaped degrades to None rather than raising.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, NamedTuple, Optional, Tuple

from defi_tearsheet.schemas.protocol import HistoricalDataPoint, ProtocolBundle, ProtocolConfig, ProtocolMetrics
from defi_tearsheet.services.annual import build_annual_snapshots
from defi_tearsheet.services.arithmetic import (
    as_number, finite_or_none, pct_change, safe_pct, safe_ratio,
)
from defi_tearsheet.services.drift_detection import detect_drift

SECONDS_PER_DAY = 86400
EXCLUDED_TVL_BUCKETS = {"borrowed", "pool2", "staking"}

# (timestamp, value) pairs; units are stated at each use
Series = List[Tuple[float, float]]

class ProviderPayloads(NamedTuple):
    protocol: Optional[Dict[str, Any]] = None
    fees: Optional[Dict[str, Any]] = None
    revenue: Optional[Dict[str, Any]] = None
    treasury: Optional[Dict[str, Any]] = None
    market: Optional[Dict[str, Any]] = None
    market_chart: Optional[Dict[str, Any]] = None

# --- TVL ---

def is_base_tvl_bucket(key: str) -> bool:
    """Chain buckets only; DefiLlama's derived buckets (staking, pool2, "Ethereum-staking", ...) are skipped."""
    lowered = key.lower()
    return lowered not in EXCLUDED_TVL_BUCKETS and "-" not in lowered

def aggregate_current_tvl(protocol: Optional[Dict[str, Any]]) -> Optional[float]:
    if not protocol:
        return None

    total = None
    breakdown = protocol.get("currentChainTvls")
    if isinstance(breakdown, dict):
        for chain, value in breakdown.items():
            value = as_number(value)
            if value is None or not is_base_tvl_bucket(chain):
                continue
            total = value if total is None else total + value

    if total is None:
        # /protocol returns tvl as a history list; only a flat number is usable here
        total = as_number(protocol.get("tvl"))
    return finite_or_none(total)

def _tvl_points(raw: Any) -> Series:
    points = []
    if not isinstance(raw, list):
        return points
    for point in raw:
        if not isinstance(point, dict):
            continue
        date = as_number(point.get("date"))
        tvl = as_number(point.get("totalLiquidityUSD"))
        if date is None or tvl is None:
            continue
        points.append((date, tvl))
    return points

def extract_tvl_history(protocol: Optional[Dict[str, Any]]) -> Series:
    """Per-day TVL in unix seconds, summed over base chain buckets, ascending."""
    if not protocol:
        return []

    by_date: Dict[float, float] = {}
    chain_tvls = protocol.get("chainTvls")
    if isinstance(chain_tvls, dict):
        for chain, chain_data in chain_tvls.items():
            if not is_base_tvl_bucket(chain) or not isinstance(chain_data, dict):
                continue
            for date, tvl in _tvl_points(chain_data.get("tvl")):
                by_date[date] = by_date.get(date, 0.0) + tvl

    if not by_date:
        for date, tvl in _tvl_points(protocol.get("tvl")):
            by_date[date] = tvl

    return sorted(by_date.items())

# --- Revenue / fees ---

def annualize_30d(summary: Optional[Dict[str, Any]]) -> Optional[float]:
    if not summary:
        return None
    total_30d = as_number(summary.get("total30d"))
    return finite_or_none(total_30d * 12) if total_30d is not None else None

def extract_daily_chart(summary: Optional[Dict[str, Any]]) -> Series:
    """totalDataChart as (unix seconds, value) pairs in provider order."""
    if not summary:
        return []
    chart = []
    for item in summary.get("totalDataChart") or []:
        if not isinstance(item, (list, tuple)) or len(item) < 2:
            continue
        ts, value = as_number(item[0]), as_number(item[1])
        if ts is None or value is None:
            continue
        chart.append((ts, value))
    return chart

# --- Momentum ---

def compound_30d_to_90d(change_30d_pct: Optional[float]) -> Optional[float]:
    """Approximates a 90d change by compounding the 30d change three times."""
    change_30d_pct = finite_or_none(change_30d_pct)
    if change_30d_pct is None:
        return None
    return finite_or_none(((1 + change_30d_pct / 100) ** 3 - 1) * 100)

def compute_tvl_change_90d(tvl_history: Series) -> Optional[float]:
    if len(tvl_history) < 2:
        return None
    now_date, now_tvl = tvl_history[-1]
    target = now_date - 90 * SECONDS_PER_DAY

    anchor = tvl_history[0]
    for point in tvl_history:
        if abs(point[0] - target) < abs(anchor[0] - target):
            anchor = point

    return pct_change(now_tvl, anchor[1])

def compute_revenue_change_90d(revenue_chart: Series) -> Optional[float]:
    """Last 30 days of revenue against the 30 days ending 60 days ago."""
    if len(revenue_chart) < 90:
        return None
    recent = revenue_chart[-30:]
    prior = revenue_chart[-90:-60]
    if not recent or not prior:
        return None
    return pct_change(sum(v for _, v in recent), sum(v for _, v in prior))

# --- Timeline ---

def _date_key(unix_seconds: float) -> str:
    return datetime.fromtimestamp(unix_seconds, tz=timezone.utc).date().isoformat()

def build_historical_timeline(price_history_ms: Series, tvl_history: Series) -> List[HistoricalDataPoint]:
    """
    One point per UTC calendar day present in either series.
    Price timestamps arrive in milliseconds, TVL timestamps in seconds; when both
    exist for a day the price timestamp wins.
    """
    merged: Dict[str, Dict[str, Any]] = {}

    for date, tvl in tvl_history:
        entry = merged.setdefault(_date_key(date), {"date": int(date), "price": None, "tvl": None})
        entry["tvl"] = tvl

    for ts_ms, price in price_history_ms:
        date = int(ts_ms // 1000)
        entry = merged.setdefault(_date_key(date), {"date": date, "price": None, "tvl": None})
        entry["date"] = date
        entry["price"] = price

    return [HistoricalDataPoint(**entry) for entry in sorted(merged.values(), key=lambda e: e["date"])]

def market_cap_history(market_chart: Optional[Dict[str, Any]], circulating_supply: Optional[float]) -> Series:
    """
    The provider's market-cap series when it has one, otherwise price(t) times
    today's circulating supply for every point.
    """
    if not market_chart:
        return []
    caps = list(market_chart.get("market_caps") or [])
    if caps:
        return [(ts, value) for ts, value in caps]
    if circulating_supply is None:
        return []
    estimated = []
    for ts, price in market_chart.get("prices") or []:
        value = finite_or_none(price * circulating_supply)
        if value is not None:
            estimated.append((ts, value))
    return estimated

# --- Metrics ---

def _usd(market_data: Dict[str, Any], key: str):
    field = market_data.get(key)
    if not isinstance(field, dict):
        return None
    return field.get("usd")

def build_metrics(payloads: ProviderPayloads) -> ProtocolMetrics:
    detect_drift(payloads.protocol, ("currentChainTvls", "chainTvls", "tvl"), "defillama_protocol")
    detect_drift(payloads.fees, ("total30d", "totalDataChart"), "defillama_fees")
    detect_drift(payloads.revenue, ("total30d", "totalDataChart"), "defillama_revenue")
    detect_drift(payloads.market, ("market_data",), "coingecko_market")

    market_data = (payloads.market or {}).get("market_data") or {}
    if not isinstance(market_data, dict):
        market_data = {}

    price = as_number(_usd(market_data, "current_price"))
    market_cap = as_number(_usd(market_data, "market_cap"))
    fdv = as_number(_usd(market_data, "fully_diluted_valuation"))
    circulating_supply = as_number(market_data.get("circulating_supply"))
    total_supply = as_number(market_data.get("total_supply"))
    ath = as_number(_usd(market_data, "ath"))
    ath_date = _usd(market_data, "ath_date")
    atl_date = _usd(market_data, "atl_date")

    distance_from_ath = None
    if price is not None and ath is not None and ath > 0:
        distance_from_ath = finite_or_none((price - ath) / ath * 100)

    tvl = aggregate_current_tvl(payloads.protocol)
    annualized_revenue = annualize_30d(payloads.revenue)
    annualized_fees = annualize_30d(payloads.fees)
    treasury = as_number((payloads.treasury or {}).get("tvl"))

    return ProtocolMetrics(
        price=price,
        market_cap=market_cap,
        fdv=fdv,
        volume_24h=as_number(_usd(market_data, "total_volume")),
        circulating_supply=circulating_supply,
        total_supply=total_supply,
        percent_circulating=safe_pct(circulating_supply, total_supply),
        ath=ath,
        ath_date=ath_date if isinstance(ath_date, str) else None,
        atl=as_number(_usd(market_data, "atl")),
        atl_date=atl_date if isinstance(atl_date, str) else None,
        distance_from_ath=distance_from_ath,
        tvl=tvl,
        annualized_revenue=annualized_revenue,
        annualized_fees=annualized_fees,
        treasury=treasury,
        ps_ratio=safe_ratio(market_cap, annualized_revenue),
        pf_ratio=safe_ratio(market_cap, annualized_fees),
        tvl_mcap_ratio=safe_ratio(tvl, market_cap),
        fdv_revenue=safe_ratio(fdv, annualized_revenue),
        revenue_yield=safe_pct(annualized_revenue, tvl),
        fee_tvl=safe_pct(annualized_fees, tvl),
        price_change_90d=compound_30d_to_90d(as_number(market_data.get("price_change_percentage_30d"))),
        tvl_change_90d=compute_tvl_change_90d(extract_tvl_history(payloads.protocol)),
        revenue_change_90d=compute_revenue_change_90d(extract_daily_chart(payloads.revenue)),
    )

def build_protocol_bundle(config: ProtocolConfig, payloads: ProviderPayloads, current_year: Optional[int] = None) -> ProtocolBundle:
    metrics = build_metrics(payloads)

    chart = payloads.market_chart or {}
    price_history = list(chart.get("prices") or [])
    tvl_history = extract_tvl_history(payloads.protocol)

    annual_snapshots = build_annual_snapshots(
        price_history_ms=price_history,
        mcap_history_ms=market_cap_history(payloads.market_chart, metrics.circulating_supply),
        tvl_history=tvl_history,
        revenue_chart=extract_daily_chart(payloads.revenue),
        fee_chart=extract_daily_chart(payloads.fees),
        current_year=current_year,
    )

    return ProtocolBundle(
        config=config,
        metrics=metrics,
        historical_prices=build_historical_timeline(price_history, tvl_history),
        annual_snapshots=annual_snapshots,
    )
