"""Async client for the external portfolio backend."""

import asyncio
import logging
from datetime import date
from typing import Any, Iterable, Optional

import httpx

from .config import settings
from .field_resolver import get_optional_float, get_optional_int, get_text, resolve_field
from .history import parse_series
from .holding_parser import parse_holdings_payload
from .models import AssetType, Portfolio, PortfolioSeries, RawHolding

logger = logging.getLogger(__name__)


class BackendError(Exception):
    """A request to the portfolio backend failed."""

    def __init__(self, message: str, status_code: Optional[int] = None, path: Optional[str] = None):
        self.status_code = status_code
        self.path = path
        super().__init__(message)


def _ids_param(portfolio_ids: Iterable[int]) -> str:
    return ",".join(str(i) for i in portfolio_ids)


def _range_params(start_date: Optional[date], end_date: Optional[date]) -> dict[str, str]:
    params = {}
    if start_date is not None:
        params["startDate"] = start_date.isoformat()
    if end_date is not None:
        params["endDate"] = end_date.isoformat()
    return params


class PortfolioApiClient:
    """Thin wrapper over the backend REST API.

    Every method returns canonical models; payload casing quirks are
    absorbed here and in the parsers it delegates to.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
        max_concurrency: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the client.

        Args:
            base_url: Backend API root (defaults to settings.API_BASE_URL)
            token: Bearer token (defaults to settings.API_TOKEN)
            timeout: Per-request timeout in seconds
            max_concurrency: Upper bound on concurrent in-flight requests
            transport: Optional httpx transport, e.g. a MockTransport in tests
        """
        self.base_url = (base_url or settings.API_BASE_URL).rstrip("/")
        self.token = token if token is not None else settings.API_TOKEN
        self.timeout = timeout or settings.REQUEST_TIMEOUT_SECONDS
        self._transport = transport
        self._semaphore = asyncio.Semaphore(max_concurrency or settings.MAX_CONCURRENT_REQUESTS)
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {"Accept": "application/json"}
            if self.token:
                headers["Authorization"] = f"Bearer {self.token}"
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request_json(self, path: str, params: Optional[dict[str, Any]] = None) -> Any:
        client = self._get_client()
        async with self._semaphore:
            try:
                response = await client.get(path, params=params)
            except httpx.HTTPError as e:
                raise BackendError(f"Request to {path} failed: {e}", path=path) from e

        if response.status_code >= 400:
            raise BackendError(
                f"Backend returned {response.status_code} for {path}",
                status_code=response.status_code,
                path=path,
            )
        try:
            return response.json()
        except ValueError as e:
            raise BackendError(f"Invalid JSON from {path}", response.status_code, path) from e

    # --- Portfolios ---

    async def list_portfolios(self) -> list[Portfolio]:
        payload = await self._request_json("/portfolios")
        portfolios = []
        for record in payload or []:
            portfolio_id = get_optional_int(record, "id")
            if portfolio_id is None:
                continue
            portfolios.append(Portfolio(
                id=portfolio_id,
                name=get_text(record, "portfolio_name") or get_text(record, "name"),
                pan=get_text(record, "pan"),
                is_primary=bool(resolve_field(record, "is_primary", False)),
            ))
        return portfolios

    # --- Holdings ---

    async def get_holdings(
        self,
        portfolio_id: int,
        asset_type: Optional[AssetType] = None,
    ) -> dict[AssetType, list[RawHolding]]:
        """Holdings of one portfolio, grouped by asset type."""
        params = {"portfolioIds": str(portfolio_id), "includeHoldings": "true"}
        if asset_type is not None:
            params["assetType"] = asset_type.value
        payload = await self._request_json("/v2/portfolios/summary", params)
        if not isinstance(payload, dict):
            raise BackendError("Unexpected holdings payload", path="/v2/portfolios/summary")
        return parse_holdings_payload(payload, portfolio_id=portfolio_id)

    # --- History ---

    async def get_combined_history(
        self,
        portfolio_ids: list[int],
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> PortfolioSeries:
        """The backend's pre-summed total series for the selection."""
        path = "/portfolios/combined-history"
        if start_date is None and end_date is None:
            path += "/complete"
        params = {"portfolioIds": _ids_param(portfolio_ids), **_range_params(start_date, end_date)}
        payload = await self._request_json(path, params)
        combined = resolve_field(payload, "combined") if isinstance(payload, dict) else payload
        return parse_series(combined if combined is not None else [])

    async def get_portfolio_history(
        self,
        portfolio_id: int,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        name: str = "",
    ) -> PortfolioSeries:
        path = f"/portfolios/{portfolio_id}/history"
        if start_date is None and end_date is None:
            path += "/complete"
        payload = await self._request_json(path, _range_params(start_date, end_date))
        return parse_series(payload, portfolio_id=portfolio_id, name=name)

    # --- XIRR ---

    async def get_consolidated_xirr(self, portfolio_ids: list[int]) -> Optional[float]:
        payload = await self._request_json(
            "/portfolios/xirr/consolidated",
            {"portfolioIds": _ids_param(portfolio_ids), "includeCurrentValue": "true"},
        )
        return get_optional_float(payload, "xirr") if isinstance(payload, dict) else None

    async def get_scheme_xirr(self, scheme_id: int, portfolio_ids: list[int]) -> Optional[float]:
        payload = await self._request_json(
            f"/portfolios/schemes/{scheme_id}/xirr/consolidated",
            {"portfolioIds": _ids_param(portfolio_ids), "includeCurrentValue": "true"},
        )
        return get_optional_float(payload, "xirr") if isinstance(payload, dict) else None

    async def get_scheme_xirrs(
        self,
        scheme_ids: list[int],
        portfolio_ids: list[int],
    ) -> list[dict[str, Any]]:
        """XIRR for several schemes, fetched in parallel.

        Schemes whose request fails (e.g. no transactions) are left out.

        Returns:
            ``{"schemeId", "xirr"}`` records
        """
        results = await asyncio.gather(
            *(self.get_scheme_xirr(scheme_id, portfolio_ids) for scheme_id in scheme_ids),
            return_exceptions=True,
        )
        entries = []
        for scheme_id, result in zip(scheme_ids, results):
            if isinstance(result, BackendError):
                logger.debug(f"No XIRR for scheme {scheme_id}: {result}")
                continue
            if isinstance(result, BaseException):
                raise result
            if result is not None:
                entries.append({"schemeId": scheme_id, "xirr": result})
        return entries
