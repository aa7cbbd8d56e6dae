"""
Two-tier provider access shared by every upstream endpoint.
A fetch walks an ordered list of candidate requests (pro tier first, free tier
second) and degrades to None once all of them fail. It never raises to callers.
"""
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Sequence

import httpx
from prometheus_client import Counter
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from defi_tearsheet.core.config import get_settings
from defi_tearsheet.core.logging_config import get_logger

logger = get_logger("provider_gateway")

PROVIDER_REQUESTS = Counter('provider_requests_total', 'Provider requests by outcome', ['source', 'tier', 'outcome'])
PROVIDER_FALLBACKS = Counter('provider_fallbacks_total', 'Fallbacks to the next provider tier', ['source'])
PROVIDER_EXHAUSTED = Counter('provider_exhausted_total', 'Fetches where every tier failed', ['source'])

REDACTED = "***"

@dataclass(frozen=True)
class ProviderRequest:
    url: str
    tier: str
    params: Optional[Dict[str, Any]] = None
    headers: Optional[Dict[str, str]] = None
    # Reshapes the decoded payload; raising here counts as a failed attempt.
    transform: Optional[Callable[[Any], Any]] = None

def redact(text: str) -> str:
    """Strips configured credentials out of anything headed for the logs."""
    settings = get_settings()
    for secret in (settings.DEFILLAMA_API_KEY, settings.COINGECKO_API_KEY):
        if secret:
            text = text.replace(secret, REDACTED)
    return text

def new_client(**kwargs: Any) -> httpx.AsyncClient:
    settings = get_settings()
    client_kwargs: Dict[str, Any] = dict(kwargs)
    client_kwargs.setdefault("timeout", httpx.Timeout(settings.REQUEST_TIMEOUT_SECONDS))
    client_kwargs.setdefault("follow_redirects", True)
    client_kwargs.setdefault(
        "headers", {"User-Agent": f"{settings.PROJECT_NAME}/1.0", "Accept": "application/json"}
    )
    return httpx.AsyncClient(**client_kwargs)

def _is_rate_limited(exc: BaseException) -> bool:
    return isinstance(exc, httpx.HTTPStatusError) and exc.response.status_code == 429

async def _get_json(client: httpx.AsyncClient, request: ProviderRequest) -> Any:
    settings = get_settings()
    # Only 429s are retried in place; anything else falls through to the next tier.
    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(max(1, settings.RATE_LIMIT_RETRY_ATTEMPTS)),
        wait=wait_exponential(multiplier=settings.RATE_LIMIT_BACKOFF_SECONDS, max=30),
        retry=retry_if_exception(_is_rate_limited),
        reraise=True,
    ):
        with attempt:
            response = await client.get(request.url, params=request.params, headers=request.headers)
            response.raise_for_status()
            return response.json()

async def fetch_first(
    client: httpx.AsyncClient,
    candidates: Sequence[Optional[ProviderRequest]],
    source: str,
) -> Any:
    """
    Tries each candidate in order and returns the first successful payload.
    A None candidate is a tier without a configured credential and is skipped
    without touching the network.
    """
    remaining = len(candidates)
    for request in candidates:
        remaining -= 1
        if request is None:
            logger.debug("provider_tier_skipped", source=source, reason="missing_credential")
            continue

        url = redact(request.url)
        try:
            payload = await _get_json(client, request)
            if request.transform is not None:
                payload = request.transform(payload)
            PROVIDER_REQUESTS.labels(source=source, tier=request.tier, outcome="success").inc()
            return payload
        except httpx.HTTPStatusError as e:
            logger.warning("provider_http_error", source=source, tier=request.tier, url=url, status=e.response.status_code)
        except httpx.HTTPError as e:
            logger.warning("provider_transport_error", source=source, tier=request.tier, url=url, error=redact(repr(e)))
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            # Undecodable JSON or a payload the transformer could not reshape
            logger.warning("provider_payload_error", source=source, tier=request.tier, url=url, error=redact(str(e)))

        PROVIDER_REQUESTS.labels(source=source, tier=request.tier, outcome="failure").inc()
        if remaining > 0:
            PROVIDER_FALLBACKS.labels(source=source).inc()
            logger.info("provider_fallback", source=source, failed_tier=request.tier)

    PROVIDER_EXHAUSTED.labels(source=source).inc()
    logger.error("provider_exhausted", source=source)
    return None

async def fetch_with_fallback(
    client: httpx.AsyncClient,
    primary: Optional[ProviderRequest],
    fallback: ProviderRequest,
    source: str,
) -> Any:
    return await fetch_first(client, [primary, fallback], source)

def require_dict(payload: Any) -> Dict[str, Any]:
    if not isinstance(payload, dict):
        raise ValueError(f"expected a JSON object, got {type(payload).__name__}")
    return payload
