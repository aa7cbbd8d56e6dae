import pytest
import httpx

from defi_tearsheet.core import config

# Settings are patched on the cached instance so nothing depends on a local .env
@pytest.fixture(scope="function", autouse=True)
def settings(monkeypatch):
    s = config.get_settings()
    monkeypatch.setattr(s, "DEFILLAMA_API_KEY", None)
    monkeypatch.setattr(s, "COINGECKO_API_KEY", None)
    monkeypatch.setattr(s, "RATE_LIMIT_RETRY_ATTEMPTS", 1)
    monkeypatch.setattr(s, "RATE_LIMIT_BACKOFF_SECONDS", 0)
    monkeypatch.setattr(s, "PROTOCOLS_CSV_PATH", None)
    monkeypatch.setattr(s, "HISTORY_YEARS", 6)
    return s

@pytest.fixture
def make_client():
    """Builds an AsyncClient whose requests are answered by `handler` instead of the network."""
    def _make(handler):
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return _make

@pytest.fixture
def market_payload():
    return {
        "id": "alpha",
        "market_data": {
            "current_price": {"usd": 2.0},
            "market_cap": {"usd": 600_000_000},
            "fully_diluted_valuation": {"usd": 900_000_000},
            "total_volume": {"usd": 5_000_000},
            "circulating_supply": 300_000_000,
            "total_supply": 300_000_000,
            "ath": {"usd": 4.0},
            "ath_date": {"usd": "2021-05-01T00:00:00.000Z"},
            "atl": {"usd": 0.5},
            "atl_date": {"usd": "2020-03-13T00:00:00.000Z"},
            "price_change_percentage_30d": 10.0,
        },
    }

@pytest.fixture
def protocol_payload():
    return {
        "name": "Alpha",
        "currentChainTvls": {
            "Ethereum": 200_000_000,
            "Arbitrum": 100_000_000,
            "Ethereum-staking": 50_000_000,
            "borrowed": 10_000_000,
            "pool2": 1_000_000,
        },
        "chainTvls": {
            "Ethereum": {"tvl": [
                {"date": 0, "totalLiquidityUSD": 60},
                {"date": 90 * 86400, "totalLiquidityUSD": 100},
            ]},
            "Arbitrum": {"tvl": [
                {"date": 0, "totalLiquidityUSD": 40},
                {"date": 90 * 86400, "totalLiquidityUSD": 50},
            ]},
            "staking": {"tvl": [
                {"date": 0, "totalLiquidityUSD": 1000},
            ]},
        },
        "tvl": [{"date": 0, "totalLiquidityUSD": 1}],
    }
