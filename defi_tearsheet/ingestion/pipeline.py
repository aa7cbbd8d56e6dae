"""
Orchestrates the per-protocol fetch fan-out and the universe-wide ranking pass.

Phase 1 runs every protocol's pipeline concurrently and settles all of them;
a failed protocol is logged and dropped. Phase 2 ranks the collected raw
scores and assembles the output records.
"""
import asyncio
import time
from typing import List, Optional, Sequence

import httpx
from prometheus_client import Counter, Histogram

from defi_tearsheet.core.logging_config import get_logger, setup_logging
from defi_tearsheet.core.protocols import load_universe
from defi_tearsheet.ingestion.gateway import new_client
from defi_tearsheet.ingestion.sources import coingecko, defillama
from defi_tearsheet.schemas.protocol import (
    ProtocolBundle, ProtocolConfig, ProtocolData, ProtocolSummary, UniverseReport,
)
from defi_tearsheet.services.normalizer import ProviderPayloads, build_protocol_bundle
from defi_tearsheet.services.projections import compute_projections
from defi_tearsheet.services.ratings import assign_quintile_ratings, compute_raw_scores

logger = get_logger("tearsheet_pipeline")

PROTOCOL_RUN_DURATION = Histogram('protocol_pipeline_duration_seconds', 'Per-protocol fetch and compute duration')
PROTOCOL_FAILURES = Counter('protocol_pipeline_failures_total', 'Protocols dropped from the universe', ['slug'])

# --- Single protocol ---

async def fetch_payloads(client: httpx.AsyncClient, config: ProtocolConfig) -> ProviderPayloads:
    protocol, fees, revenue, treasury, market, market_chart = await asyncio.gather(
        defillama.fetch_protocol(client, config.slug),
        defillama.fetch_fees(client, config.slug),
        defillama.fetch_revenue(client, config.slug),
        defillama.fetch_treasury(client, config.slug),
        coingecko.fetch_market_data(client, config.gecko_id),
        coingecko.fetch_price_history(client, config.gecko_id),
    )
    return ProviderPayloads(protocol, fees, revenue, treasury, market, market_chart)

async def get_protocol_data(config: ProtocolConfig, client: Optional[httpx.AsyncClient] = None) -> ProtocolBundle:
    if client is None:
        async with new_client() as client:
            return await get_protocol_data(config, client)

    start_time = time.time()
    payloads = await fetch_payloads(client, config)
    bundle = build_protocol_bundle(config, payloads)

    duration_ms = int((time.time() - start_time) * 1000)
    PROTOCOL_RUN_DURATION.observe(duration_ms / 1000.0)
    logger.info("protocol_processed", slug=config.slug, duration_ms=duration_ms,
                history_points=len(bundle.historical_prices), years=len(bundle.annual_snapshots))
    return bundle

# --- Universe ---

async def get_all_protocols_data(
    configs: Sequence[ProtocolConfig],
    client: Optional[httpx.AsyncClient] = None,
) -> List[ProtocolBundle]:
    if client is None:
        async with new_client() as client:
            return await get_all_protocols_data(configs, client)

    results = await asyncio.gather(
        *(get_protocol_data(config, client) for config in configs),
        return_exceptions=True,
    )

    bundles = []
    for config, result in zip(configs, results):
        if isinstance(result, BaseException):
            if not isinstance(result, Exception):
                raise result
            PROTOCOL_FAILURES.labels(slug=config.slug).inc()
            logger.error("protocol_failure", slug=config.slug, error=repr(result))
            continue
        bundles.append(result)
    return bundles

def _summary_sort_key(summary: ProtocolSummary):
    revenue = summary.metrics.annualized_revenue
    return (revenue is None, -(revenue or 0.0))

def rank_universe(bundles: Sequence[ProtocolBundle]) -> UniverseReport:
    """Cross-sectional step: every bundle's raw score is in hand before any rank is assigned."""
    raw_scores = [compute_raw_scores(b.config.slug, b.metrics) for b in bundles]
    ratings = assign_quintile_ratings(raw_scores)

    protocols = [
        ProtocolData(
            config=b.config,
            metrics=b.metrics,
            historical_prices=b.historical_prices,
            annual_snapshots=b.annual_snapshots,
            ratings=ratings.get(b.config.slug),
            projections=compute_projections(b.metrics, b.annual_snapshots),
        )
        for b in bundles
    ]
    summary = sorted(
        (ProtocolSummary(config=p.config, metrics=p.metrics, ratings=p.ratings) for p in protocols),
        key=_summary_sort_key,
    )
    return UniverseReport(protocols=protocols, summary=summary)

async def build_universe(
    configs: Optional[Sequence[ProtocolConfig]] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> UniverseReport:
    configs = list(configs) if configs is not None else load_universe()
    logger.info("universe_start", protocols=len(configs))
    bundles = await get_all_protocols_data(configs, client)
    report = rank_universe(bundles)
    logger.info("universe_finish", ranked=len(report.protocols), dropped=len(configs) - len(report.protocols))
    return report

async def build_protocol_page(
    slug: str,
    configs: Optional[Sequence[ProtocolConfig]] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> Optional[ProtocolData]:
    """One protocol's tearsheet record, ranked against the whole universe."""
    configs = list(configs) if configs is not None else load_universe()
    if not any(c.slug == slug for c in configs):
        logger.warning("unknown_protocol", slug=slug)
        return None

    report = await build_universe(configs, client)
    for protocol in report.protocols:
        if protocol.config.slug == slug:
            return protocol
    return None

async def run_refresh():
    setup_logging()
    report = await build_universe()
    for item in report.summary:
        logger.info(
            "protocol_summary",
            slug=item.config.slug,
            annualized_revenue=item.metrics.annualized_revenue,
            ps_ratio=item.metrics.ps_ratio,
            ratings=item.ratings.model_dump() if item.ratings else None,
        )
    return report

if __name__ == "__main__":
    asyncio.run(run_refresh())
