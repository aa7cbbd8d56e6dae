import pytest
from structlog.testing import capture_logs

from defi_tearsheet.schemas.protocol import ProtocolConfig
from defi_tearsheet.services.normalizer import (
    ProviderPayloads, aggregate_current_tvl, annualize_30d, build_historical_timeline,
    build_metrics, build_protocol_bundle, compound_30d_to_90d, compute_revenue_change_90d,
    compute_tvl_change_90d, extract_tvl_history, is_base_tvl_bucket, market_cap_history,
)

DAY = 86400

@pytest.mark.parametrize("bucket", ["Ethereum-staking", "borrowed", "Pool2", "STAKING", "Arbitrum-borrowed"])
def test_derived_tvl_buckets_are_excluded(bucket):
    assert not is_base_tvl_bucket(bucket)

@pytest.mark.parametrize("bucket", ["Ethereum", "Arbitrum", "BSC"])
def test_chain_tvl_buckets_are_included(bucket):
    assert is_base_tvl_bucket(bucket)

def test_current_tvl_sums_base_buckets(protocol_payload):
    assert aggregate_current_tvl(protocol_payload) == 300_000_000

def test_current_tvl_falls_back_to_flat_field():
    assert aggregate_current_tvl({"currentChainTvls": {"staking": 5.0}, "tvl": 42.0}) == 42.0
    assert aggregate_current_tvl({"currentChainTvls": {}, "tvl": [{"date": 0, "totalLiquidityUSD": 1}]}) is None
    assert aggregate_current_tvl(None) is None

def test_tvl_history_sums_chains_per_date(protocol_payload):
    assert extract_tvl_history(protocol_payload) == [(0, 100), (90 * DAY, 150)]

def test_tvl_history_falls_back_to_top_level_series():
    payload = {"chainTvls": {}, "tvl": [
        {"date": 2 * DAY, "totalLiquidityUSD": 7},
        {"date": DAY, "totalLiquidityUSD": 5},
    ]}
    assert extract_tvl_history(payload) == [(DAY, 5), (2 * DAY, 7)]

def test_annualization_requires_30d_total():
    assert annualize_30d({"total30d": 10_000_000}) == 120_000_000
    assert annualize_30d({"total30d": None, "total7d": 5}) is None
    assert annualize_30d(None) is None

def test_price_change_compounds_30d_three_times():
    assert compound_30d_to_90d(10.0) == pytest.approx(33.1)
    assert compound_30d_to_90d(-50.0) == pytest.approx(-87.5)
    assert compound_30d_to_90d(None) is None

def test_tvl_change_90d_from_nearest_anchor():
    assert compute_tvl_change_90d([(0, 100), (90 * DAY, 150)]) == pytest.approx(50.0)

def test_tvl_change_90d_tie_keeps_first_point():
    # Anchor target is day 10; days 9 and 11 are equally near
    history = [(9 * DAY, 100), (11 * DAY, 200), (100 * DAY, 300)]
    assert compute_tvl_change_90d(history) == pytest.approx(200.0)

def test_tvl_change_90d_guards():
    assert compute_tvl_change_90d([(0, 100)]) is None
    assert compute_tvl_change_90d([(0, 0), (90 * DAY, 150)]) is None

def test_revenue_change_90d_compares_windows():
    chart = [(i * DAY, 1.0) for i in range(30)]
    chart += [((30 + i) * DAY, 5.0) for i in range(30)]
    chart += [((60 + i) * DAY, 2.0) for i in range(30)]
    # Recent 30 days sum to 60 against 30 for days [-90, -60)
    assert compute_revenue_change_90d(chart) == pytest.approx(100.0)

def test_revenue_change_90d_guards():
    assert compute_revenue_change_90d([(i * DAY, 1.0) for i in range(89)]) is None
    zero_prior = [(i * DAY, 0.0 if i < 30 else 1.0) for i in range(90)]
    assert compute_revenue_change_90d(zero_prior) is None

def test_timeline_merges_by_utc_date():
    price_ms = [
        [1 * DAY * 1000, 1.0],
        [3 * DAY * 1000, 3.0],
    ]
    tvl = [
        (1 * DAY + 3600, 10.0),
        (2 * DAY, 20.0),
    ]
    points = build_historical_timeline(price_ms, tvl)

    assert [(p.date, p.price, p.tvl) for p in points] == [
        (1 * DAY, 1.0, 10.0),
        (2 * DAY, None, 20.0),
        (3 * DAY, 3.0, None),
    ]

def test_timeline_empty_sources():
    assert build_historical_timeline([], []) == []

def test_market_cap_history_estimated_from_current_supply():
    chart = {"prices": [[1000, 2.0], [2000, 3.0]], "market_caps": []}
    assert market_cap_history(chart, 10.0) == [(1000, 20.0), (2000, 30.0)]
    assert market_cap_history(chart, None) == []

def test_market_cap_history_prefers_provider_series():
    chart = {"prices": [[1000, 2.0]], "market_caps": [[1000, 99.0]]}
    assert market_cap_history(chart, 10.0) == [(1000, 99.0)]

def test_metrics_end_to_end(protocol_payload, market_payload):
    payloads = ProviderPayloads(
        protocol=protocol_payload,
        fees={"total30d": 20_000_000, "totalDataChart": []},
        revenue={"total30d": 10_000_000, "totalDataChart": []},
        treasury={"tvl": 5_000_000},
        market=market_payload,
    )
    m = build_metrics(payloads)

    assert m.annualized_revenue == 120_000_000
    assert m.annualized_fees == 240_000_000
    assert m.tvl == 300_000_000
    assert m.treasury == 5_000_000
    assert m.ps_ratio == 5.0
    assert m.pf_ratio == 2.5
    assert m.tvl_mcap_ratio == 0.5
    assert m.fdv_revenue == 7.5
    assert m.percent_circulating == 100.0
    assert m.revenue_yield == pytest.approx(40.0)
    assert m.fee_tvl == pytest.approx(80.0)
    assert m.distance_from_ath == -50.0
    assert m.ath_date == "2021-05-01T00:00:00.000Z"
    assert m.price_change_90d == pytest.approx(33.1)
    assert m.tvl_change_90d == pytest.approx(50.0)
    assert m.revenue_change_90d is None

def test_metrics_all_providers_down():
    m = build_metrics(ProviderPayloads())
    assert all(value is None for value in m.model_dump().values())

def test_zero_revenue_yields_null_ratios(market_payload):
    m = build_metrics(ProviderPayloads(revenue={"total30d": 0}, market=market_payload))
    assert m.annualized_revenue == 0
    assert m.ps_ratio is None
    assert m.fdv_revenue is None

def test_schema_drift_is_logged():
    with capture_logs() as logs:
        m = build_metrics(ProviderPayloads(market={"error": "coin not found"}))
    assert m.price is None
    drift = [e for e in logs if e["event"] == "potential_schema_drift"]
    assert [e["source"] for e in drift] == ["coingecko_market"]

def test_bundle_estimates_market_cap_for_annual_snapshots(market_payload):
    config = ProtocolConfig(name="Alpha", slug="alpha", gecko_id="alpha", ticker="alp")
    jan_2023_ms = 1_672_531_200_000
    payloads = ProviderPayloads(
        market=market_payload,
        market_chart={"prices": [[jan_2023_ms, 1.0], [jan_2023_ms + DAY * 1000, 3.0]], "market_caps": []},
    )
    bundle = build_protocol_bundle(config, payloads, current_year=2024)

    assert bundle.config.ticker == "ALP"
    assert [s.year for s in bundle.annual_snapshots] == [2023]
    assert bundle.annual_snapshots[0].avg_price == 2.0
    assert bundle.annual_snapshots[0].avg_market_cap == 600_000_000
    assert len(bundle.historical_prices) == 2
