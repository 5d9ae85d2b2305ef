"""Consolidation of raw holdings into one row per instrument."""

import logging
from typing import Iterable, Optional

from .identity import display_name, identify, subtitle
from .models import AggregatedHolding, HoldingsOverview, RawHolding

logger = logging.getLogger(__name__)


def _per_unit(amount: float, quantity: Optional[float], previous: Optional[float]) -> Optional[float]:
    """amount / quantity, keeping the previous value (or 0) when quantity is not positive."""
    if quantity is None:
        return previous
    if quantity > 0:
        return amount / quantity
    return previous if previous is not None else 0.0


def profit_loss_percentage(total_profit_loss: float, total_invested: float) -> float:
    if total_invested > 0:
        return total_profit_loss / total_invested * 100
    return 0.0


class HoldingAggregator:
    """Folds raw holdings into aggregated rows keyed by instrument identity.

    Holdings from different portfolios or folios that share an identity
    are summed. Average and current prices are weighted by quantity and
    recomputed from the running totals after every merge; per-record
    averages are never summed. Only holdings that report a quantity feed
    those per-unit totals.
    """

    def __init__(self):
        # Identifier -> in-progress row, in first-seen order
        self._rows: dict[str, AggregatedHolding] = {}
        # Identifier -> (invested, current value) of holdings with a quantity
        self._priced: dict[str, tuple[float, float]] = {}

    def add(self, holding: RawHolding) -> Optional[AggregatedHolding]:
        """Fold one holding into the running rows.

        Returns:
            The row the holding was merged into, or None if it was dropped
        """
        identifier = identify(holding)
        if identifier is None:
            logger.warning(
                f"Dropping {holding.asset_type.value} holding without instrument id "
                f"(portfolio {holding.portfolio_id}, folio {holding.folio_number})"
            )
            return None

        row = self._rows.get(identifier)
        if row is None:
            row = self._seed(identifier, holding)
            self._rows[identifier] = row
            self._priced[identifier] = self._priced_amounts(holding)
            return row

        if (holding.quantity is None) != (row.quantity is None):
            logger.debug(
                f"{identifier} mixes holdings with and without a quantity; "
                f"prices use only the ones that have one"
            )

        row.total_invested += holding.total_invested
        row.current_value += holding.current_value
        row.realized_profit_loss += holding.realized_profit_loss
        row.unrealized_profit_loss += holding.unrealized_profit_loss
        row.total_profit_loss += holding.total_profit_loss
        if holding.quantity is not None:
            row.quantity = (row.quantity or 0.0) + holding.quantity
            invested, value = self._priced[identifier]
            priced_invested, priced_value = self._priced_amounts(holding)
            self._priced[identifier] = (invested + priced_invested, value + priced_value)
        row.holdings.append(holding)

        # Weighted, from the post-merge totals
        priced_invested, priced_value = self._priced[identifier]
        row.average_price = _per_unit(priced_invested, row.quantity, row.average_price)
        row.current_price = _per_unit(priced_value, row.quantity, row.current_price)
        return row

    @staticmethod
    def _priced_amounts(holding: RawHolding) -> tuple[float, float]:
        if holding.quantity is None:
            return 0.0, 0.0
        return holding.total_invested, holding.current_value

    def _seed(self, identifier: str, holding: RawHolding) -> AggregatedHolding:
        average_price = holding.average_price
        if average_price is None:
            average_price = _per_unit(holding.total_invested, holding.quantity, None)
        current_price = holding.current_price
        if current_price is None:
            current_price = _per_unit(holding.current_value, holding.quantity, None)

        return AggregatedHolding(
            identifier=identifier,
            asset_type=holding.asset_type,
            display_name=display_name(holding),
            subtitle=subtitle(holding),
            total_invested=holding.total_invested,
            current_value=holding.current_value,
            realized_profit_loss=holding.realized_profit_loss,
            unrealized_profit_loss=holding.unrealized_profit_loss,
            total_profit_loss=holding.total_profit_loss,
            quantity=holding.quantity,
            average_price=average_price,
            current_price=current_price,
            holdings=[holding],
        )

    def rows(self) -> list[AggregatedHolding]:
        """Finished rows in first-occurrence order, with percentages filled in."""
        rows = list(self._rows.values())
        for row in rows:
            row.total_profit_loss_percentage = profit_loss_percentage(
                row.total_profit_loss, row.total_invested
            )
        return rows

    def aggregate(self, holdings: Iterable[RawHolding]) -> list[AggregatedHolding]:
        """Aggregate holdings from scratch.

        Args:
            holdings: Raw holdings across all selected portfolios

        Returns:
            One AggregatedHolding per instrument identity
        """
        self._rows = {}
        self._priced = {}
        for holding in holdings:
            self.add(holding)
        return self.rows()


def aggregate_holdings(holdings: Iterable[RawHolding]) -> list[AggregatedHolding]:
    """Aggregate with a fresh aggregator; a pure function of its input."""
    return HoldingAggregator().aggregate(holdings)


def summarize(rows: Iterable[AggregatedHolding]) -> HoldingsOverview:
    """Overview totals across aggregated rows."""
    overview = HoldingsOverview()
    for row in rows:
        overview.total_invested += row.total_invested
        overview.current_value += row.current_value
        overview.realized_profit_loss += row.realized_profit_loss
        overview.unrealized_profit_loss += row.unrealized_profit_loss
        overview.total_profit_loss += row.total_profit_loss
        overview.holding_count += 1
    overview.total_profit_loss_percentage = profit_loss_percentage(
        overview.total_profit_loss, overview.total_invested
    )
    return overview


def with_share_of_total(rows: list[AggregatedHolding]) -> list[AggregatedHolding]:
    """Copies of rows with percent_of_total set against the rows' combined value."""
    total_value = sum(row.current_value for row in rows)
    return [
        row.model_copy(update={
            "percent_of_total": row.current_value / total_value * 100 if total_value else 0.0,
        })
        for row in rows
    ]
