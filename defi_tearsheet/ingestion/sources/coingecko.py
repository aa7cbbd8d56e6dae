from typing import Any, Dict, List

import httpx

from defi_tearsheet.core.config import get_settings
from defi_tearsheet.ingestion.gateway import ProviderRequest, fetch_first, fetch_with_fallback, require_dict
from defi_tearsheet.ingestion.sources.defillama import coins_chart_request
from defi_tearsheet.services.arithmetic import as_number

SNAPSHOT_PARAMS = {
    "localization": "false",
    "tickers": "false",
    "community_data": "false",
    "developer_data": "false",
}

def _pro_request(path: str, params: Dict[str, Any], transform=require_dict):
    settings = get_settings()
    key = settings.COINGECKO_API_KEY
    if not key:
        return None
    return ProviderRequest(
        url=f"{settings.COINGECKO_PRO_BASE_URL}{path}",
        tier="pro",
        params=params,
        headers={"x-cg-pro-api-key": key},
        transform=transform,
    )

def _free_request(path: str, params: Dict[str, Any], transform=require_dict):
    settings = get_settings()
    return ProviderRequest(
        url=f"{settings.COINGECKO_FREE_BASE_URL}{path}",
        tier="free",
        params=params,
        transform=transform,
    )

async def fetch_market_data(client: httpx.AsyncClient, gecko_id: str):
    path = f"/coins/{gecko_id}"
    return await fetch_with_fallback(
        client,
        _pro_request(path, SNAPSHOT_PARAMS),
        _free_request(path, SNAPSHOT_PARAMS),
        source="coingecko_market",
    )

def _pairs(raw: Any) -> List[List[float]]:
    pairs = []
    for item in raw or []:
        if not isinstance(item, (list, tuple)) or len(item) < 2:
            continue
        ts, value = as_number(item[0]), as_number(item[1])
        if ts is None or value is None:
            continue
        pairs.append([ts, value])
    return pairs

def clean_market_chart(payload: Any) -> Dict[str, List[List[float]]]:
    data = require_dict(payload)
    if "prices" not in data:
        raise KeyError("prices")
    return {"prices": _pairs(data.get("prices")), "market_caps": _pairs(data.get("market_caps"))}

async def fetch_price_history(client: httpx.AsyncClient, gecko_id: str):
    """
    Daily price history covering the aggregation window.
    The free CoinGecko tier caps history at a year, so the free candidate is the
    DefiLlama coins chart instead.
    """
    pro = _pro_request(
        f"/coins/{gecko_id}/market_chart",
        {"vs_currency": "usd", "days": "max", "interval": "daily"},
        transform=clean_market_chart,
    )
    return await fetch_first(client, [pro, coins_chart_request(gecko_id)], source="price_history")
