import asyncio

import pytest

from foliolens.api_client import BackendError
from foliolens.consolidation_service import ConsolidationService, Selection
from foliolens.history import parse_series
from foliolens.models import AssetType, ChartMode, DateRangeOption
from tests.conftest import make_fund


class FakeClient:
    """In-memory stand-in for PortfolioApiClient."""

    def __init__(self, holdings=None, history=None, total=None, xirr=None, failing=()):
        self.holdings = holdings or {}
        self.history = history or {}
        self.total = total
        self.xirr = xirr or {}
        self.failing = set(failing)
        self.gates: dict[int, asyncio.Event] = {}
        self.history_calls = []
        self.holdings_calls = []

    async def _maybe_wait(self, portfolio_id):
        if portfolio_id in self.gates:
            await self.gates[portfolio_id].wait()
        if portfolio_id in self.failing:
            raise BackendError(f"portfolio {portfolio_id} unavailable", status_code=500)

    async def get_holdings(self, portfolio_id, asset_type=None):
        self.holdings_calls.append((portfolio_id, asset_type))
        await self._maybe_wait(portfolio_id)
        return {asset_type: self.holdings.get(portfolio_id, [])}

    async def get_consolidated_xirr(self, portfolio_ids):
        return 11.5

    async def get_scheme_xirrs(self, scheme_ids, portfolio_ids):
        return [{"schemeId": s, "xirr": self.xirr[s]} for s in scheme_ids if s in self.xirr]

    async def get_combined_history(self, portfolio_ids, start_date=None, end_date=None):
        if self.total is None:
            raise BackendError("no total")
        return self.total

    async def get_portfolio_history(self, portfolio_id, start_date=None, end_date=None, name=""):
        self.history_calls.append(portfolio_id)
        await self._maybe_wait(portfolio_id)
        return self.history[portfolio_id]


def points(*values):
    return [{"date": [2024, 1, day], "value": v} for day, v in enumerate(values, start=1)]


def test_selection_fingerprint_is_order_insensitive():
    a = Selection.of([2, 1, 2], asset_type=AssetType.EQUITY_STOCK)
    b = Selection.of([1, 2], asset_type=AssetType.EQUITY_STOCK)
    assert a == b
    assert a.fingerprint == "1,2|EQUITY_STOCK|-|combined"


@pytest.mark.asyncio
async def test_refresh_holdings_consolidates_and_joins_xirr():
    client = FakeClient(
        holdings={
            1: [make_fund("X", invested=1000, current=1200, units=50, portfolio_id=1, scheme_id=7)],
            2: [make_fund("X", invested=500, current=450, units=25, portfolio_id=2, scheme_id=7)],
        },
        xirr={7: 9.25},
    )
    service = ConsolidationService(client)

    result = await service.refresh_holdings(Selection.of([1, 2]))

    assert result.asset_type == AssetType.MUTUAL_FUND
    assert len(result.rows) == 1
    row = result.rows[0]
    assert row.current_value == 1650
    assert row.xirr == 9.25
    assert row.percent_of_total == pytest.approx(100.0)
    assert result.overview.total_profit_loss == 150
    assert result.consolidated_xirr == 11.5
    assert result.failed_portfolio_ids == []


@pytest.mark.asyncio
async def test_failed_portfolio_is_omitted():
    client = FakeClient(
        holdings={1: [make_fund("X", invested=100, current=110, units=1, portfolio_id=1)]},
        failing={2},
    )
    result = await ConsolidationService(client).refresh_holdings(Selection.of([1, 2]))

    assert result.failed_portfolio_ids == [2]
    assert result.rows[0].total_invested == 100


@pytest.mark.asyncio
async def test_all_portfolios_failing_raises():
    client = FakeClient(failing={1, 2})
    with pytest.raises(BackendError):
        await ConsolidationService(client).refresh_holdings(Selection.of([1, 2]))


@pytest.mark.asyncio
async def test_empty_selection_returns_empty_result():
    result = await ConsolidationService(FakeClient()).refresh_holdings(Selection.of([]))
    assert result.rows == []
    assert result.overview.holding_count == 0


@pytest.mark.asyncio
async def test_stale_holdings_refresh_is_discarded():
    client = FakeClient(holdings={
        1: [make_fund("OLD", invested=1, units=1, portfolio_id=1)],
        2: [make_fund("NEW", invested=2, units=1, portfolio_id=2)],
    })
    gate = asyncio.Event()
    client.gates[1] = gate
    service = ConsolidationService(client)

    old = asyncio.create_task(service.refresh_holdings(Selection.of([1])))
    await asyncio.sleep(0)
    new = await service.refresh_holdings(Selection.of([2]))
    gate.set()

    assert await old is None
    assert [r.identifier for r in new.rows] == ["NEW"]


@pytest.mark.asyncio
async def test_parallel_asset_types_do_not_discard_each_other():
    client = FakeClient(holdings={1: [make_fund("X", invested=10, units=1, portfolio_id=1)]})
    gate = asyncio.Event()
    client.gates[1] = gate
    service = ConsolidationService(client)

    funds = asyncio.create_task(
        service.refresh_holdings(Selection.of([1], asset_type=AssetType.MUTUAL_FUND))
    )
    stocks = asyncio.create_task(
        service.refresh_holdings(Selection.of([1], asset_type=AssetType.EQUITY_STOCK))
    )
    await asyncio.sleep(0)
    gate.set()

    fund_result, stock_result = await asyncio.gather(funds, stocks)
    assert fund_result is not None
    assert fund_result.asset_type == AssetType.MUTUAL_FUND
    assert stock_result is not None
    assert stock_result.asset_type == AssetType.EQUITY_STOCK


@pytest.mark.asyncio
async def test_identical_selections_share_one_refresh():
    client = FakeClient(holdings={1: [make_fund("X", invested=10, units=1, portfolio_id=1)]})
    gate = asyncio.Event()
    client.gates[1] = gate
    service = ConsolidationService(client)

    first = asyncio.create_task(service.refresh_holdings(Selection.of([1])))
    await asyncio.sleep(0)
    # an explicit MUTUAL_FUND selection is the same view as the default
    second = asyncio.create_task(
        service.refresh_holdings(Selection.of([1], asset_type=AssetType.MUTUAL_FUND))
    )
    await asyncio.sleep(0)
    gate.set()

    first_result, second_result = await asyncio.gather(first, second)
    assert first_result is not None
    assert first_result is second_result
    assert client.holdings_calls == [(1, AssetType.MUTUAL_FUND)]


@pytest.mark.asyncio
async def test_returning_to_a_selection_keeps_its_result():
    client = FakeClient(holdings={
        1: [make_fund("A", invested=1, units=1, portfolio_id=1)],
        2: [make_fund("B", invested=2, units=1, portfolio_id=2)],
    })
    gate = asyncio.Event()
    client.gates[1] = gate
    service = ConsolidationService(client)

    first = asyncio.create_task(service.refresh_holdings(Selection.of([1])))
    await asyncio.sleep(0)
    await service.refresh_holdings(Selection.of([2]))
    again = asyncio.create_task(service.refresh_holdings(Selection.of([1])))
    await asyncio.sleep(0)
    gate.set()

    assert [r.identifier for r in (await again).rows] == ["A"]
    assert (await first) is not None


@pytest.mark.asyncio
async def test_refresh_history_merges_by_date():
    client = FakeClient(
        total=parse_series(points(30.0, 33.0)),
        history={
            1: parse_series(points(10.0, 11.0), portfolio_id=1),
            2: parse_series(points(20.0, 22.0), portfolio_id=2),
        },
        failing={2},
    )
    selection = Selection.of([1, 2], date_range=DateRangeOption.WEEK)
    result = await ConsolidationService(client).refresh_history(selection, {1: "Mine"})

    assert result.date_range == DateRangeOption.WEEK
    assert result.failed_portfolio_ids == [2]
    assert [p.total for p in result.series.points] == [30.0, 33.0]
    assert result.series.points[1].values == {1: 11.0}


@pytest.mark.asyncio
async def test_single_mode_skips_constituent_fetches():
    client = FakeClient(total=parse_series(points(5.0)))
    selection = Selection.of([1, 2], mode=ChartMode.SINGLE)
    result = await ConsolidationService(client).refresh_history(selection)

    assert client.history_calls == []
    assert result.series.portfolios == []


@pytest.mark.asyncio
async def test_missing_total_raises():
    client = FakeClient(history={1: parse_series([], portfolio_id=1)})
    with pytest.raises(BackendError):
        await ConsolidationService(client).refresh_history(Selection.of([1]))


@pytest.mark.asyncio
async def test_stale_history_refresh_is_discarded():
    client = FakeClient(
        total=parse_series(points(1.0)),
        history={1: parse_series(points(1.0), portfolio_id=1), 2: parse_series(points(1.0), portfolio_id=2)},
    )
    gate = asyncio.Event()
    client.gates[1] = gate
    service = ConsolidationService(client)

    old = asyncio.create_task(service.refresh_history(Selection.of([1])))
    await asyncio.sleep(0)
    new = await service.refresh_history(Selection.of([2]))
    gate.set()

    assert await old is None
    assert new.portfolio_ids == [2]
