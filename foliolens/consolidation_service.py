"""Refresh orchestration: fan out backend fetches, consolidate once they settle."""

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Iterable, Optional

from .aggregator import aggregate_holdings, summarize, with_share_of_total
from .api_client import BackendError, PortfolioApiClient
from .history import date_range_for, merge_series
from .models import (
    AssetType,
    ChartMode,
    ConsolidatedHistory,
    ConsolidatedHoldings,
    DateRangeOption,
    PortfolioSeries,
    RawHolding,
)
from .returns import build_xirr_index, join_xirr, scheme_ids_for

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Selection:
    """The set of portfolios (and view options) a refresh is for."""
    portfolio_ids: tuple[int, ...]
    asset_type: Optional[AssetType] = None
    date_range: Optional[DateRangeOption] = None
    mode: ChartMode = ChartMode.COMBINED

    @classmethod
    def of(cls, portfolio_ids: Iterable[int], **options: Any) -> "Selection":
        """Build a selection with sorted, de-duplicated portfolio ids."""
        return cls(portfolio_ids=tuple(sorted(set(portfolio_ids))), **options)

    @property
    def fingerprint(self) -> str:
        parts = [",".join(str(i) for i in self.portfolio_ids)]
        for option in (self.asset_type, self.date_range, self.mode):
            parts.append(option.value if option is not None else "-")
        return "|".join(parts)


async def _settle(tasks: list[Awaitable[Any]]) -> list[Any]:
    """Run tasks concurrently; backend failures come back as BackendError values."""
    results = await asyncio.gather(*tasks, return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException) and not isinstance(result, BackendError):
            raise result
    return results


class ConsolidationService:
    """Produces consolidated holdings and history for the current selection.

    Each refresh waits for every constituent fetch to settle before
    aggregating, so output never mixes old and new portfolio data.

    Refreshes are grouped into views: one holdings table per asset type
    and one history chart. Within a view, a refresh overtaken by a newer
    one for a different selection returns None instead of its (stale)
    result. Concurrent refreshes of the very same selection share one
    fetch and all receive its result.
    """

    def __init__(self, client: Optional[PortfolioApiClient] = None):
        self.client = client or PortfolioApiClient()
        # view -> fingerprint of the newest refresh started for it
        self._latest: dict[str, str] = {}
        # view:fingerprint -> refresh in flight
        self._inflight: dict[str, asyncio.Task] = {}

    async def _run(
        self,
        view: str,
        selection: Selection,
        refresh: Callable[[Selection], Awaitable[Any]],
    ) -> Any:
        fingerprint = selection.fingerprint
        self._latest[view] = fingerprint

        key = f"{view}:{fingerprint}"
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.create_task(refresh(selection))
            self._inflight[key] = task
            task.add_done_callback(lambda _: self._inflight.pop(key, None))

        try:
            result = await asyncio.shield(task)
        except BackendError:
            if not self._is_current(view, selection):
                return None
            raise
        return result if self._is_current(view, selection) else None

    def _is_current(self, view: str, selection: Selection) -> bool:
        if self._latest.get(view) != selection.fingerprint:
            logger.debug(f"Discarding stale {view} refresh for {selection.fingerprint}")
            return False
        return True

    async def refresh_holdings(self, selection: Selection) -> Optional[ConsolidatedHoldings]:
        """Fetch, aggregate and enrich holdings for a selection.

        Returns:
            The consolidated holdings, or None if a refresh for a different
            selection of the same asset type started while this one was in flight

        Raises:
            BackendError: If every portfolio's holdings fetch failed
        """
        selection = replace(selection, asset_type=selection.asset_type or AssetType.MUTUAL_FUND)
        return await self._run(
            f"holdings/{selection.asset_type.value}", selection, self._consolidate_holdings
        )

    async def _consolidate_holdings(self, selection: Selection) -> ConsolidatedHoldings:
        asset_type = selection.asset_type
        portfolio_ids = list(selection.portfolio_ids)
        result = ConsolidatedHoldings(asset_type=asset_type, portfolio_ids=portfolio_ids)
        if not portfolio_ids:
            return result

        fetched = await _settle(
            [self.client.get_holdings(pid, asset_type) for pid in portfolio_ids]
            + [self.client.get_consolidated_xirr(portfolio_ids)]
        )
        holdings_results, xirr_result = fetched[:-1], fetched[-1]

        raw: list[RawHolding] = []
        failed = []
        for portfolio_id, outcome in zip(portfolio_ids, holdings_results):
            if isinstance(outcome, BackendError):
                logger.warning(f"Holdings for portfolio {portfolio_id} unavailable: {outcome}")
                failed.append(portfolio_id)
                continue
            raw.extend(outcome.get(asset_type, []))

        if len(failed) == len(portfolio_ids):
            raise BackendError(f"Holdings unavailable for all portfolios {portfolio_ids}")

        if isinstance(xirr_result, BackendError):
            logger.warning(f"Consolidated XIRR unavailable for {portfolio_ids}: {xirr_result}")
            xirr_result = None

        rows = aggregate_holdings(raw)
        scheme_ids = scheme_ids_for(rows)
        xirr_entries = await self.client.get_scheme_xirrs(scheme_ids, portfolio_ids) if scheme_ids else []
        rows = with_share_of_total(join_xirr(rows, build_xirr_index(xirr_entries)))

        result.rows = rows
        result.overview = summarize(rows)
        result.consolidated_xirr = xirr_result
        result.failed_portfolio_ids = failed
        logger.info(
            f"Consolidated {len(raw)} {asset_type.value} holdings into {len(rows)} rows "
            f"for portfolios {portfolio_ids} (failed: {failed})"
        )
        return result

    async def refresh_history(
        self,
        selection: Selection,
        portfolio_names: Optional[dict[int, str]] = None,
    ) -> Optional[ConsolidatedHistory]:
        """Fetch the total and per-portfolio histories and merge them.

        Returns:
            The merged history, or None if a refresh for a different
            selection started while this one was in flight

        Raises:
            BackendError: If the combined total series cannot be fetched
        """
        selection = replace(selection, date_range=selection.date_range or DateRangeOption.MONTH)
        names = portfolio_names or {}
        return await self._run(
            "history", selection, lambda s: self._merge_history(s, names)
        )

    async def _merge_history(
        self,
        selection: Selection,
        portfolio_names: dict[int, str],
    ) -> ConsolidatedHistory:
        date_range = selection.date_range
        portfolio_ids = list(selection.portfolio_ids)
        result = ConsolidatedHistory(portfolio_ids=portfolio_ids, date_range=date_range)
        if not portfolio_ids:
            return result

        start_date, end_date = date_range_for(date_range)
        constituents = portfolio_ids if selection.mode == ChartMode.COMBINED else []
        fetched = await _settle(
            [self.client.get_combined_history(portfolio_ids, start_date, end_date)]
            + [
                self.client.get_portfolio_history(
                    pid, start_date, end_date, name=portfolio_names.get(pid, "")
                )
                for pid in constituents
            ]
        )
        total, per_portfolio = fetched[0], fetched[1:]
        if isinstance(total, BackendError):
            raise total

        series: list[PortfolioSeries] = []
        failed = []
        for portfolio_id, outcome in zip(constituents, per_portfolio):
            if isinstance(outcome, BackendError):
                logger.warning(f"History for portfolio {portfolio_id} unavailable: {outcome}")
                failed.append(portfolio_id)
                continue
            series.append(outcome)

        result.series = merge_series(total, series, mode=selection.mode)
        result.failed_portfolio_ids = failed
        logger.info(
            f"Merged {len(result.series.points)} history points for portfolios "
            f"{portfolio_ids} ({date_range.value}, failed: {failed})"
        )
        return result


# Global consolidation service instance
consolidation_service = ConsolidationService()
