"""CSV export of consolidated holdings, one line per contributing folio."""

import csv
import io
import re
from datetime import date
from typing import Iterable, Mapping, Optional

from .aggregator import profit_loss_percentage
from .history import portfolio_label
from .models import AggregatedHolding, RawHolding

CSV_HEADERS = [
    "Scheme Name",
    "AMC",
    "ISIN",
    "Scheme Type",
    "Portfolio",
    "Folio Number",
    "Units",
    "Avg Buy Price",
    "Current NAV",
    "Invested",
    "Current Value",
    "Realized P&L",
    "Unrealized P&L",
    "Total P&L",
    "Returns %",
]


def _fixed(value: Optional[float], decimals: int) -> str:
    return f"{(value or 0.0):.{decimals}f}"


def _returns_percentage(holding: RawHolding) -> float:
    if holding.unrealized_profit_loss_percentage is not None:
        return holding.unrealized_profit_loss_percentage
    return profit_loss_percentage(holding.unrealized_profit_loss, holding.total_invested)


def _portfolio_name(holding: RawHolding, portfolio_names: Mapping[int, str]) -> str:
    if holding.portfolio_id is None:
        return holding.portfolio_name or ""
    return portfolio_names.get(holding.portfolio_id) or portfolio_label(
        holding.portfolio_id, holding.portfolio_name
    )


def holding_to_row(
    row: AggregatedHolding,
    holding: RawHolding,
    portfolio_names: Mapping[int, str],
) -> list[str]:
    """CSV cells for one contributing holding of an aggregated row."""
    return [
        holding.scheme_name or row.display_name,
        holding.amc or "",
        holding.isin or "",
        holding.scheme_type or "",
        _portfolio_name(holding, portfolio_names),
        holding.folio_number or "",
        _fixed(holding.quantity, 3),
        _fixed(holding.average_price, 2),
        _fixed(holding.current_price, 4),
        _fixed(holding.total_invested, 2),
        _fixed(holding.current_value, 2),
        _fixed(holding.realized_profit_loss, 2),
        _fixed(holding.unrealized_profit_loss, 2),
        _fixed(holding.total_profit_loss, 2),
        _fixed(_returns_percentage(holding), 2),
    ]


def export_holdings_csv(
    rows: Iterable[AggregatedHolding],
    portfolio_names: Optional[Mapping[int, str]] = None,
) -> str:
    """Render aggregated rows as CSV text.

    Args:
        rows: Aggregated rows, already filtered and sorted for display
        portfolio_names: Portfolio id -> display name

    Returns:
        CSV content with a header line and quoted data cells
    """
    portfolio_names = portfolio_names or {}
    buffer = io.StringIO()
    csv.writer(buffer, lineterminator="\n").writerow(CSV_HEADERS)
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    for row in rows:
        for holding in row.holdings:
            writer.writerow(holding_to_row(row, holding, portfolio_names))
    return buffer.getvalue()


def export_filename(portfolio_name: Optional[str] = None, today: Optional[date] = None) -> str:
    """``holdings_<portfolio>_<YYYY-MM-DD>.csv``; ``combined`` without a name."""
    label = re.sub(r"[^A-Za-z0-9._-]+", "_", portfolio_name.strip()) if portfolio_name else ""
    return f"holdings_{label or 'combined'}_{(today or date.today()).isoformat()}.csv"
