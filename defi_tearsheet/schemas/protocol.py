"""
Defines the records that flow out of the fundamentals pipeline.
Every numeric field is independently nullable: missing upstream data propagates
as None instead of zero, Infinity or NaN.
"""
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, List

class ProtocolConfig(BaseModel):
    """Static identity of one protocol in the universe."""
    model_config = ConfigDict(frozen=True)

    name: str
    slug: str = Field(..., min_length=1, description="DefiLlama protocol slug")
    gecko_id: str = Field(..., min_length=1, description="CoinGecko coin id")
    ticker: str
    category: str = ""
    chain: str = ""
    description: str = ""

    @field_validator('ticker')
    @classmethod
    def uppercase_ticker(cls, v):
        return v.upper()

class ProtocolMetrics(BaseModel):
    # Price & market data
    price: Optional[float] = None
    market_cap: Optional[float] = None
    fdv: Optional[float] = None
    volume_24h: Optional[float] = None
    circulating_supply: Optional[float] = None
    total_supply: Optional[float] = None
    percent_circulating: Optional[float] = None
    ath: Optional[float] = None
    ath_date: Optional[str] = None
    atl: Optional[float] = None
    atl_date: Optional[str] = None
    distance_from_ath: Optional[float] = None

    # DeFi metrics
    tvl: Optional[float] = None
    annualized_revenue: Optional[float] = None
    annualized_fees: Optional[float] = None
    treasury: Optional[float] = None

    # Derived ratios
    ps_ratio: Optional[float] = None
    pf_ratio: Optional[float] = None
    tvl_mcap_ratio: Optional[float] = None
    fdv_revenue: Optional[float] = None
    revenue_yield: Optional[float] = Field(None, description="Annualized revenue / TVL, percent")
    fee_tvl: Optional[float] = Field(None, description="Annualized fees / TVL, percent")

    # Momentum, percent
    price_change_90d: Optional[float] = None
    tvl_change_90d: Optional[float] = None
    revenue_change_90d: Optional[float] = None

class HistoricalDataPoint(BaseModel):
    date: int = Field(..., description="Unix timestamp, seconds")
    price: Optional[float] = None
    tvl: Optional[float] = None

class AnnualSnapshot(BaseModel):
    year: int
    avg_price: Optional[float] = None
    avg_market_cap: Optional[float] = None
    avg_tvl: Optional[float] = None
    total_revenue: Optional[float] = None
    total_fees: Optional[float] = None
    ps_ratio: Optional[float] = None
    tvl_mcap_ratio: Optional[float] = None
    revenue_yield: Optional[float] = None

class RatingRawScores(BaseModel):
    slug: str
    timeliness_score: float
    safety_score: float
    technical_score: float

class ProtocolRatings(BaseModel):
    """Quintile ranks, 1 = best."""
    timeliness: int = Field(..., ge=1, le=5)
    safety: int = Field(..., ge=1, le=5)
    technical: int = Field(..., ge=1, le=5)

class ProjectionScenario(BaseModel):
    label: str
    revenue_1y: Optional[float] = None
    ps_1y: Optional[float] = None
    implied_price_1y: Optional[float] = None
    revenue_3y: Optional[float] = None
    ps_3y: Optional[float] = None
    implied_price_3y: Optional[float] = None

class ProtocolProjections(BaseModel):
    base: ProjectionScenario
    bull: ProjectionScenario
    bear: ProjectionScenario

class ProtocolBundle(BaseModel):
    """Single-protocol pipeline output, before cross-sectional ranking."""
    config: ProtocolConfig
    metrics: ProtocolMetrics
    historical_prices: List[HistoricalDataPoint] = []
    annual_snapshots: List[AnnualSnapshot] = []

class ProtocolData(ProtocolBundle):
    ratings: Optional[ProtocolRatings] = None
    projections: Optional[ProtocolProjections] = None

class ProtocolSummary(BaseModel):
    config: ProtocolConfig
    metrics: ProtocolMetrics
    ratings: Optional[ProtocolRatings] = None

class UniverseReport(BaseModel):
    protocols: List[ProtocolData] = []
    summary: List[ProtocolSummary] = []
