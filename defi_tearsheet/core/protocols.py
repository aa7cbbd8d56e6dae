"""
The protocol universe. Order matters: it is the tie-break order for ratings.
"""
from typing import List, Optional, Sequence

from defi_tearsheet.core.config import get_settings
from defi_tearsheet.core.logging_config import get_logger
from defi_tearsheet.ingestion.sources.csv_ingestor import read_protocol_configs
from defi_tearsheet.schemas.protocol import ProtocolConfig

logger = get_logger("universe")

PROTOCOLS: List[ProtocolConfig] = [
    ProtocolConfig(name="Aave", slug="aave", gecko_id="aave", ticker="AAVE", category="Lending", chain="Ethereum",
                   description="Largest decentralized money market across EVM chains"),
    ProtocolConfig(name="Uniswap", slug="uniswap", gecko_id="uniswap", ticker="UNI", category="DEX", chain="Ethereum",
                   description="Automated market maker and the largest spot DEX"),
    ProtocolConfig(name="Lido", slug="lido", gecko_id="lido-dao", ticker="LDO", category="Liquid Staking", chain="Ethereum",
                   description="Liquid staking for ETH via stETH"),
    ProtocolConfig(name="Maker", slug="makerdao", gecko_id="maker", ticker="MKR", category="CDP", chain="Ethereum",
                   description="Collateralized debt positions backing the DAI stablecoin"),
    ProtocolConfig(name="Curve", slug="curve-dex", gecko_id="curve-dao-token", ticker="CRV", category="DEX", chain="Ethereum",
                   description="Stableswap AMM specialised in like-asset pools"),
    ProtocolConfig(name="GMX", slug="gmx", gecko_id="gmx", ticker="GMX", category="Derivatives", chain="Arbitrum",
                   description="Perpetuals exchange backed by a multi-asset liquidity pool"),
    ProtocolConfig(name="Compound", slug="compound-finance", gecko_id="compound-governance-token", ticker="COMP",
                   category="Lending", chain="Ethereum", description="Algorithmic money market protocol"),
    ProtocolConfig(name="Pendle", slug="pendle", gecko_id="pendle", ticker="PENDLE", category="Yield", chain="Ethereum",
                   description="Tokenized yield trading via principal and yield tokens"),
    ProtocolConfig(name="Jupiter", slug="jupiter", gecko_id="jupiter-exchange-solana", ticker="JUP", category="DEX",
                   chain="Solana", description="Swap aggregator and perpetuals venue on Solana"),
    ProtocolConfig(name="dYdX", slug="dydx", gecko_id="dydx-chain", ticker="DYDX", category="Derivatives", chain="dYdX",
                   description="Order-book perpetuals exchange on its own appchain"),
]

def dedupe(configs: Sequence[ProtocolConfig]) -> List[ProtocolConfig]:
    seen = set()
    unique = []
    for config in configs:
        if config.slug in seen:
            logger.warning("duplicate_protocol_skipped", slug=config.slug)
            continue
        seen.add(config.slug)
        unique.append(config)
    return unique

def load_universe() -> List[ProtocolConfig]:
    """Built-in universe unless PROTOCOLS_CSV_PATH points at a non-empty CSV."""
    path = get_settings().PROTOCOLS_CSV_PATH
    if path:
        _, configs = read_protocol_configs(path)
        if configs:
            logger.info("universe_loaded", source=path, count=len(configs))
            return dedupe(configs)
        logger.warning("universe_csv_empty", source=path, fallback="builtin")
    return dedupe(PROTOCOLS)

def get_protocol_by_slug(slug: str, configs: Optional[Sequence[ProtocolConfig]] = None) -> Optional[ProtocolConfig]:
    for config in configs if configs is not None else load_universe():
        if config.slug == slug:
            return config
    return None
