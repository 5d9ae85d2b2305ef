"""Data models for the holdings consolidation service."""

from datetime import date
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field


class AssetType(str, Enum):
    """Asset classes the backend groups holdings by."""
    MUTUAL_FUND = "MUTUAL_FUND"
    EQUITY_STOCK = "EQUITY_STOCK"
    PRECIOUS_METAL = "PRECIOUS_METAL"
    FIXED_DEPOSIT = "FIXED_DEPOSIT"


class DateRangeOption(str, Enum):
    """History ranges offered by the chart."""
    WEEK = "7d"
    MONTH = "30d"
    QUARTER = "90d"
    YEAR = "1y"
    ALL = "all"


class ChartMode(str, Enum):
    SINGLE = "single"
    COMBINED = "combined"


class Portfolio(BaseModel):
    """A named portfolio as listed by the backend."""
    id: int
    name: str
    pan: str = ""
    is_primary: bool = False


class RawHolding(BaseModel):
    """One instrument position within one folio of one portfolio.

    Built once from a backend payload by the holding parser; every
    downstream stage reads this canonical shape instead of the payload.
    """
    model_config = ConfigDict(frozen=True)

    asset_type: AssetType
    portfolio_id: Optional[int] = None
    portfolio_name: Optional[str] = None
    folio_number: Optional[str] = None

    # Instrument identity
    isin: Optional[str] = None
    symbol: Optional[str] = None
    scheme_code: Optional[str] = None
    scheme_id: Optional[int] = None

    # Additive amounts
    total_invested: float = 0.0
    current_value: float = 0.0
    realized_profit_loss: float = 0.0
    unrealized_profit_loss: float = 0.0
    total_profit_loss: float = 0.0
    quantity: Optional[float] = None  # units, shares or grams

    # Per-record prices and ratios as reported by the backend
    average_price: Optional[float] = None  # average NAV / buy price
    current_price: Optional[float] = None  # current NAV / LTP
    unrealized_profit_loss_percentage: Optional[float] = None
    total_profit_loss_percentage: Optional[float] = None
    one_day_profit_loss: Optional[float] = None

    # Descriptive fields, asset-class dependent
    scheme_name: Optional[str] = None
    amc: Optional[str] = None
    scheme_type: Optional[str] = None
    company_name: Optional[str] = None
    exchange: Optional[str] = None
    sector: Optional[str] = None
    metal_type: Optional[str] = None
    purity: Optional[str] = None
    bank_name: Optional[str] = None
    fd_name: Optional[str] = None
    principal: Optional[float] = None
    interest_rate: Optional[float] = None
    compounding_frequency: Optional[str] = None
    investment_date: Optional[date] = None
    maturity_date: Optional[date] = None
    is_closed: bool = False

    def status(self, today: Optional[date] = None) -> Optional[str]:
        """Lifecycle status of a fixed deposit; None for other asset classes."""
        if self.asset_type != AssetType.FIXED_DEPOSIT:
            return None
        if self.is_closed:
            return "Closed"
        if self.maturity_date is not None and self.maturity_date < (today or date.today()):
            return "Matured"
        return "Active"


class AggregatedHolding(BaseModel):
    """One row per distinct instrument across the selected portfolios."""
    identifier: str
    asset_type: AssetType
    display_name: str
    subtitle: str = ""
    total_invested: float = 0.0
    current_value: float = 0.0
    realized_profit_loss: float = 0.0
    unrealized_profit_loss: float = 0.0
    total_profit_loss: float = 0.0
    total_profit_loss_percentage: float = 0.0
    quantity: Optional[float] = None
    average_price: Optional[float] = None
    current_price: Optional[float] = None
    xirr: Optional[float] = None
    percent_of_total: float = 0.0
    holdings: list[RawHolding] = Field(default_factory=list)

    @computed_field
    @property
    def portfolio_ids(self) -> list[int]:
        """Distinct contributing portfolio ids, first-seen order."""
        seen: list[int] = []
        for holding in self.holdings:
            if holding.portfolio_id is not None and holding.portfolio_id not in seen:
                seen.append(holding.portfolio_id)
        return seen

    @computed_field
    @property
    def portfolio_count(self) -> int:
        return len(self.portfolio_ids)


class HoldingsOverview(BaseModel):
    """Totals over a set of aggregated rows."""
    total_invested: float = 0.0
    current_value: float = 0.0
    realized_profit_loss: float = 0.0
    unrealized_profit_loss: float = 0.0
    total_profit_loss: float = 0.0
    total_profit_loss_percentage: float = 0.0
    holding_count: int = 0


class HistoryPoint(BaseModel):
    date: date
    value: float


class PortfolioSeries(BaseModel):
    """One portfolio's value history, date ascending.

    ``portfolio_id`` is None for the backend's pre-combined total series.
    """
    portfolio_id: Optional[int] = None
    name: str = ""
    points: list[HistoryPoint] = Field(default_factory=list)


class CombinedPoint(BaseModel):
    date: date
    total: float
    # portfolio id -> value; a missing id means no data for that date
    values: dict[int, float] = Field(default_factory=dict)


class ChartLine(BaseModel):
    """A line the renderer can draw: the total or one portfolio overlay."""
    key: str
    label: str
    color: str
    portfolio_id: Optional[int] = None


class CombinedSeries(BaseModel):
    mode: ChartMode = ChartMode.COMBINED
    points: list[CombinedPoint] = Field(default_factory=list)
    portfolios: list[ChartLine] = Field(default_factory=list)


class ConsolidatedHoldings(BaseModel):
    """Result of one holdings refresh for a selection."""
    asset_type: AssetType
    portfolio_ids: list[int]
    rows: list[AggregatedHolding] = Field(default_factory=list)
    overview: HoldingsOverview = Field(default_factory=HoldingsOverview)
    consolidated_xirr: Optional[float] = None
    failed_portfolio_ids: list[int] = Field(default_factory=list)


class ConsolidatedHistory(BaseModel):
    """Result of one history refresh for a selection."""
    portfolio_ids: list[int]
    date_range: DateRangeOption
    series: CombinedSeries = Field(default_factory=CombinedSeries)
    failed_portfolio_ids: list[int] = Field(default_factory=list)
