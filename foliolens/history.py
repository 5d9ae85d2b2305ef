"""Merging per-portfolio value histories into one chart series."""

import logging
import math
from datetime import date, timedelta
from typing import Any, Iterable, Mapping, Optional

from .field_resolver import coerce_float, first_present, get_optional_int, resolve_field
from .formatters import parse_date
from .models import (
    ChartLine,
    ChartMode,
    CombinedPoint,
    CombinedSeries,
    DateRangeOption,
    HistoryPoint,
    PortfolioSeries,
)

logger = logging.getLogger(__name__)

TOTAL_KEY = "total"

PALETTE = [
    "#3B82F6",  # blue
    "#10B981",  # green
    "#F59E0B",  # amber
    "#EF4444",  # red
    "#8B5CF6",  # purple
    "#EC4899",  # pink
    "#14B8A6",  # teal
    "#F97316",  # orange
]
GAIN_COLOR = "#10B981"
LOSS_COLOR = "#EF4444"
NEUTRAL_COLOR = "#3B82F6"

_RANGE_DAYS = {
    DateRangeOption.WEEK: 7,
    DateRangeOption.MONTH: 30,
    DateRangeOption.QUARTER: 90,
    DateRangeOption.YEAR: 365,
}


def date_range_for(
    option: DateRangeOption,
    today: Optional[date] = None,
) -> tuple[Optional[date], Optional[date]]:
    """Start and end dates for a range preset; ``all`` is unbounded."""
    if option == DateRangeOption.ALL:
        return None, None
    end = today or date.today()
    return end - timedelta(days=_RANGE_DAYS[option]), end


def portfolio_key(portfolio_id: int) -> str:
    return f"portfolio_{portfolio_id}"


def portfolio_label(portfolio_id: int, name: Optional[str] = None) -> str:
    return name or f"Portfolio {portfolio_id}"


def parse_series(
    payload: Any,
    portfolio_id: Optional[int] = None,
    name: str = "",
) -> PortfolioSeries:
    """Parse a history payload into a date-ascending series.

    Accepts a bare list of ``{date, value}`` points or an object holding
    them under ``data_points``. Points with an unreadable date or value
    are skipped.
    """
    if isinstance(payload, Mapping):
        raw_points = first_present(payload, ("data_points", "points")) or []
        if portfolio_id is None:
            portfolio_id = get_optional_int(payload, "id")
        name = name or resolve_field(payload, "name", "") or ""
    else:
        raw_points = payload or []

    points = []
    for raw in raw_points:
        if not isinstance(raw, Mapping):
            continue
        point_date = parse_date(resolve_field(raw, "date"))
        value = coerce_float(resolve_field(raw, "value"))
        if point_date is None or value is None:
            logger.debug(f"Skipping unreadable history point {raw!r}")
            continue
        points.append(HistoryPoint(date=point_date, value=value))

    points.sort(key=lambda p: p.date)
    return PortfolioSeries(portfolio_id=portfolio_id, name=name, points=points)


def legend_for(series: Iterable[PortfolioSeries]) -> list[ChartLine]:
    """One legend entry per constituent portfolio."""
    lines = []
    for s in series:
        if s.portfolio_id is None:
            continue
        lines.append(ChartLine(
            key=portfolio_key(s.portfolio_id),
            label=portfolio_label(s.portfolio_id, s.name),
            color=PALETTE[s.portfolio_id % len(PALETTE)],
            portfolio_id=s.portfolio_id,
        ))
    return lines


def merge_series(
    combined_total: PortfolioSeries,
    per_portfolio: Iterable[PortfolioSeries],
    mode: ChartMode = ChartMode.COMBINED,
) -> CombinedSeries:
    """Align portfolio histories onto the pre-combined total series.

    The total series supplies the x-axis and the ``total`` value of every
    point verbatim. Constituent values are matched by calendar date, so a
    portfolio that starts later or skips a day simply has no value on
    those dates; nothing is filled with zero.
    """
    per_portfolio = [s for s in per_portfolio if s.portfolio_id is not None]

    by_date: dict[int, dict[date, float]] = {}
    for s in per_portfolio:
        by_date[s.portfolio_id] = {p.date: p.value for p in s.points}

    points = []
    for total_point in combined_total.points:
        values = {}
        if mode == ChartMode.COMBINED:
            for portfolio_id, values_by_date in by_date.items():
                if total_point.date in values_by_date:
                    values[portfolio_id] = values_by_date[total_point.date]
        points.append(CombinedPoint(date=total_point.date, total=total_point.value, values=values))

    known_dates = {p.date for p in combined_total.points}
    for s in per_portfolio:
        extra = [p.date for p in s.points if p.date not in known_dates]
        if extra:
            logger.debug(
                f"Portfolio {s.portfolio_id} has {len(extra)} points outside the total series"
            )

    portfolios = legend_for(per_portfolio) if mode == ChartMode.COMBINED else []
    return CombinedSeries(mode=mode, points=points, portfolios=portfolios)


def toggle_portfolio(visible: frozenset[int], portfolio_id: int) -> frozenset[int]:
    """Return a new visibility set with ``portfolio_id`` flipped."""
    if portfolio_id in visible:
        return visible - {portfolio_id}
    return visible | {portfolio_id}


def trend(series: CombinedSeries) -> Optional[str]:
    """``gain`` or ``loss`` comparing first and last totals; None under two points."""
    if len(series.points) < 2:
        return None
    return "gain" if series.points[-1].total >= series.points[0].total else "loss"


def visible_lines(series: CombinedSeries, visible: frozenset[int]) -> list[ChartLine]:
    """Lines to draw: the total always, then each visible portfolio overlay."""
    direction = trend(series)
    color = {"gain": GAIN_COLOR, "loss": LOSS_COLOR}.get(direction, NEUTRAL_COLOR)
    lines = [ChartLine(key=TOTAL_KEY, label="Total", color=color)]
    lines.extend(line for line in series.portfolios if line.portfolio_id in visible)
    return lines


def chart_rows(series: CombinedSeries) -> list[dict[str, Any]]:
    """Flatten points into renderer rows keyed ``total`` / ``portfolio_<id>``."""
    names = {line.portfolio_id: line.label for line in series.portfolios}
    rows = []
    for point in series.points:
        row: dict[str, Any] = {"date": point.date.isoformat(), TOTAL_KEY: point.total}
        for portfolio_id, value in point.values.items():
            row[portfolio_key(portfolio_id)] = value
            row[f"{portfolio_key(portfolio_id)}_name"] = names.get(
                portfolio_id, portfolio_label(portfolio_id)
            )
        rows.append(row)
    return rows


def y_axis_domain(series: CombinedSeries) -> tuple[int, Optional[int]]:
    """Y-axis bounds around the total line with 5% padding.

    Returns ``(0, None)`` (auto upper bound) for an empty series.
    """
    if not series.points:
        return 0, None
    totals = [p.total for p in series.points]
    low, high = min(totals), max(totals)
    padding = (high - low) * 0.05 or high * 0.05 or 1000
    return math.floor(max(0.0, low - padding)), math.ceil(high + padding)
