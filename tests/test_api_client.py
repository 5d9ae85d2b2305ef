from datetime import date

import httpx
import pytest

from foliolens.api_client import BackendError, PortfolioApiClient
from foliolens.models import AssetType


def make_client(handler):
    return PortfolioApiClient(
        base_url="http://backend.test/api",
        token="secret",
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_list_portfolios_sends_token():
    seen = {}

    def handler(request):
        seen["auth"] = request.headers.get("Authorization")
        seen["path"] = request.url.path
        return httpx.Response(200, json=[
            {"id": 1, "portfolioName": "Mine", "pan": "ABCDE1234F", "isPrimary": True},
            {"id": 2, "name": "Joint"},
            {"name": "No id"},
        ])

    client = make_client(handler)
    portfolios = await client.list_portfolios()
    await client.aclose()

    assert seen == {"auth": "Bearer secret", "path": "/api/portfolios"}
    assert [(p.id, p.name, p.is_primary) for p in portfolios] == [(1, "Mine", True), (2, "Joint", False)]


@pytest.mark.asyncio
async def test_get_holdings_parses_summary(summary_payload):
    def handler(request):
        assert request.url.path == "/api/v2/portfolios/summary"
        assert request.url.params["portfolioIds"] == "1"
        assert request.url.params["assetType"] == "MUTUAL_FUND"
        return httpx.Response(200, json=summary_payload)

    client = make_client(handler)
    grouped = await client.get_holdings(1, AssetType.MUTUAL_FUND)

    funds = grouped[AssetType.MUTUAL_FUND]
    assert len(funds) == 2
    assert all(f.portfolio_id == 1 for f in funds)


@pytest.mark.asyncio
async def test_error_status_raises_backend_error():
    client = make_client(lambda request: httpx.Response(503, text="down"))
    with pytest.raises(BackendError) as exc_info:
        await client.get_holdings(1)
    assert exc_info.value.status_code == 503


@pytest.mark.asyncio
async def test_transport_failure_raises_backend_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    client = make_client(handler)
    with pytest.raises(BackendError):
        await client.list_portfolios()


@pytest.mark.asyncio
async def test_invalid_json_raises_backend_error():
    client = make_client(lambda request: httpx.Response(200, text="<html>"))
    with pytest.raises(BackendError):
        await client.list_portfolios()


@pytest.mark.asyncio
async def test_history_paths_and_ranges():
    requests = []

    def handler(request):
        requests.append(request)
        if "combined-history" in request.url.path:
            return httpx.Response(200, json={"combined": [{"date": [2024, 1, 1], "value": 10}]})
        return httpx.Response(200, json=[{"date": [2024, 1, 1], "value": 4}])

    client = make_client(handler)
    total = await client.get_combined_history([1, 2], date(2023, 12, 1), date(2024, 1, 1))
    complete = await client.get_portfolio_history(2, name="Joint")

    assert requests[0].url.path == "/api/portfolios/combined-history"
    assert requests[0].url.params["portfolioIds"] == "1,2"
    assert requests[0].url.params["startDate"] == "2023-12-01"
    assert requests[1].url.path == "/api/portfolios/2/history/complete"
    assert total.portfolio_id is None
    assert total.points[0].value == 10.0
    assert (complete.portfolio_id, complete.name) == (2, "Joint")


@pytest.mark.asyncio
async def test_scheme_xirrs_skip_failures():
    def handler(request):
        if "/schemes/2/" in request.url.path:
            return httpx.Response(404)
        if "/schemes/3/" in request.url.path:
            return httpx.Response(200, json={"xirr": None})
        return httpx.Response(200, json={"xirr": 0})

    client = make_client(handler)
    entries = await client.get_scheme_xirrs([1, 2, 3], [1])

    assert entries == [{"schemeId": 1, "xirr": 0.0}]
