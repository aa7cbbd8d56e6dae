from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from defi_tearsheet.core.config import get_settings
from defi_tearsheet.ingestion.gateway import ProviderRequest, fetch_with_fallback, require_dict
from defi_tearsheet.services.arithmetic import as_number

def _candidates(path: str, params: Optional[Dict[str, Any]] = None, transform=require_dict):
    """
    Pro tier embeds the key in the path; without a key only the public host is used.
    """
    settings = get_settings()
    key = settings.DEFILLAMA_API_KEY
    primary = None
    if key:
        primary = ProviderRequest(
            url=f"{settings.DEFILLAMA_PRO_BASE_URL}/{key}/api{path}",
            tier="pro",
            params=params,
            transform=transform,
        )
    fallback = ProviderRequest(
        url=f"{settings.DEFILLAMA_FREE_BASE_URL}{path}",
        tier="free",
        params=params,
        transform=transform,
    )
    return primary, fallback

async def fetch_protocol(client: httpx.AsyncClient, slug: str):
    return await fetch_with_fallback(client, *_candidates(f"/protocol/{slug}"), source="defillama_protocol")

async def fetch_fees(client: httpx.AsyncClient, slug: str):
    return await fetch_with_fallback(
        client, *_candidates(f"/summary/fees/{slug}", {"dataType": "dailyFees"}), source="defillama_fees"
    )

async def fetch_revenue(client: httpx.AsyncClient, slug: str):
    return await fetch_with_fallback(
        client, *_candidates(f"/summary/fees/{slug}", {"dataType": "dailyRevenue"}), source="defillama_revenue"
    )

async def fetch_treasury(client: httpx.AsyncClient, slug: str):
    return await fetch_with_fallback(client, *_candidates(f"/treasury/{slug}"), source="defillama_treasury")

def coins_chart_to_market_chart(payload: Any) -> Dict[str, List[List[float]]]:
    """
    Reshapes a coins.llama.fi chart into the CoinGecko market_chart layout.
    Timestamps go from seconds to milliseconds; there is no market-cap series.
    """
    coins = require_dict(payload)["coins"]
    if not coins:
        raise ValueError("coins chart returned no series")
    series = next(iter(coins.values()))

    prices = []
    for point in series.get("prices") or []:
        ts = as_number(point.get("timestamp"))
        price = as_number(point.get("price"))
        if ts is None or price is None:
            continue
        prices.append([ts * 1000, price])
    return {"prices": prices, "market_caps": []}

def coins_chart_request(gecko_id: str, now: Optional[datetime] = None) -> ProviderRequest:
    settings = get_settings()
    now = now or datetime.now(timezone.utc)
    start = datetime(now.year - settings.HISTORY_YEARS + 1, 1, 1, tzinfo=timezone.utc)
    span_days = (now - start).days + 1
    return ProviderRequest(
        url=f"{settings.DEFILLAMA_COINS_BASE_URL}/chart/coingecko:{gecko_id}",
        tier="free",
        params={"start": int(start.timestamp()), "span": span_days, "period": "1d"},
        transform=coins_chart_to_market_chart,
    )
