"""FastAPI application entry point."""

import logging
from datetime import datetime, timedelta
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Query
from fastapi.responses import Response
from pydantic import ValidationError

from .api_client import BackendError
from .config import settings
from .consolidation_service import Selection, consolidation_service
from .csv_export import export_filename, export_holdings_csv
from .formatters import format_currency, format_percentage
from .history import chart_rows, trend, visible_lines, y_axis_domain
from .identity import UnknownAssetTypeError, parse_asset_type
from .models import ChartMode, ConsolidatedHistory, ConsolidatedHoldings, DateRangeOption
from .pipeline import HoldingQuery, apply_query

# Configure logging
logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="FolioLens",
    description="Consolidated holdings and value history across portfolios",
    version="1.0.0",
)

# API-level response cache
_api_cache: dict[str, tuple[Any, datetime]] = {}
_API_TTL = {
    "portfolios": timedelta(seconds=settings.HOLDINGS_CACHE_SECONDS),
    "holdings": timedelta(seconds=settings.HOLDINGS_CACHE_SECONDS),
    "history": timedelta(seconds=settings.HISTORY_CACHE_SECONDS),
    "xirr": timedelta(seconds=settings.XIRR_CACHE_SECONDS),
}


def _get_api_cache(key: str) -> Optional[Any]:
    if key in _api_cache:
        data, cached_at = _api_cache[key]
        ttl_key = key.split("_")[0]
        ttl = _API_TTL.get(ttl_key, timedelta(seconds=30))
        if datetime.now() - cached_at < ttl:
            return data
    return None


def _set_api_cache(key: str, data: Any) -> None:
    _api_cache[key] = (data, datetime.now())


def _parse_ids(value: Optional[str], name: str = "portfolio_ids") -> list[int]:
    """Parse a comma-separated id list such as ``1,2,3``."""
    if not value:
        return []
    try:
        return [int(part) for part in value.split(",") if part.strip()]
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {name}: {value!r}")


def _superseded(selection: Selection) -> HTTPException:
    return HTTPException(
        status_code=409,
        detail=f"Request for {selection.fingerprint} was superseded by a newer selection",
    )


async def _portfolio_names() -> dict[int, str]:
    """Portfolio id -> name, or empty when the backend cannot list them."""
    cached = _get_api_cache("portfolios")
    if cached is None:
        try:
            cached = await consolidation_service.client.list_portfolios()
        except BackendError as e:
            logger.warning(f"Portfolio names unavailable: {e}")
            return {}
        _set_api_cache("portfolios", cached)
    return {p.id: p.name for p in cached}


async def _consolidated_holdings(selection: Selection) -> ConsolidatedHoldings:
    cache_key = f"holdings_{selection.fingerprint}"
    cached = _get_api_cache(cache_key)
    if cached is not None:
        return cached

    result = await consolidation_service.refresh_holdings(selection)
    if result is None:
        raise _superseded(selection)
    _set_api_cache(cache_key, result)
    return result


@app.on_event("shutdown")
async def shutdown_event():
    """Close the backend HTTP client."""
    await consolidation_service.client.aclose()


@app.get("/api/portfolios")
async def get_portfolios():
    """List the portfolios available for selection."""
    try:
        cached = _get_api_cache("portfolios")
        if cached is None:
            cached = await consolidation_service.client.list_portfolios()
            _set_api_cache("portfolios", cached)
        return {"portfolios": [p.model_dump() for p in cached]}
    except BackendError as e:
        raise HTTPException(status_code=502, detail=str(e))
    except Exception as e:
        logger.error(f"Error listing portfolios: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/api/holdings")
async def get_holdings(
    portfolio_ids: Optional[str] = Query(None, description="Comma-separated portfolio ids"),
    asset_type: Optional[str] = Query(None, description="MUTUAL_FUND, EQUITY_STOCK, PRECIOUS_METAL or FIXED_DEPOSIT"),
    search: str = Query("", description="Case-insensitive name/subtitle filter"),
    sort_by: Optional[str] = Query(None, description="Field to sort by"),
    sort_order: str = Query("desc", description="asc or desc"),
    hide_zero_quantity: bool = Query(False, description="Hide rows with no remaining units"),
):
    """Get holdings consolidated across the selected portfolios."""
    try:
        selection = Selection.of(
            _parse_ids(portfolio_ids),
            asset_type=parse_asset_type(asset_type) if asset_type else None,
        )
        query = HoldingQuery(
            search_term=search,
            sort_key=sort_by,
            sort_order=sort_order,
            hide_zero_quantity=hide_zero_quantity,
        )
    except (UnknownAssetTypeError, ValidationError) as e:
        raise HTTPException(status_code=400, detail=str(e))

    try:
        consolidated = await _consolidated_holdings(selection)
        rows = apply_query(consolidated.rows, query)
        overview = consolidated.overview
        return {
            "asset_type": consolidated.asset_type.value,
            "portfolio_ids": consolidated.portfolio_ids,
            "holdings": [row.model_dump(mode="json") for row in rows],
            "overview": overview.model_dump(),
            "overview_display": {
                "total_invested": format_currency(overview.total_invested),
                "current_value": format_currency(overview.current_value),
                "total_profit_loss": format_currency(overview.total_profit_loss),
                "total_profit_loss_percentage": format_percentage(overview.total_profit_loss_percentage),
            },
            "consolidated_xirr": consolidated.consolidated_xirr,
            "failed_portfolio_ids": consolidated.failed_portfolio_ids,
        }
    except HTTPException:
        raise
    except BackendError as e:
        raise HTTPException(status_code=502, detail=str(e))
    except Exception as e:
        logger.error(f"Error consolidating holdings: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/api/holdings/export")
async def export_holdings(
    portfolio_ids: Optional[str] = Query(None, description="Comma-separated portfolio ids"),
    asset_type: Optional[str] = Query(None, description="Asset type to export"),
    search: str = Query("", description="Case-insensitive name/subtitle filter"),
    sort_by: Optional[str] = Query(None, description="Field to sort by"),
    sort_order: str = Query("desc", description="asc or desc"),
):
    """Download the consolidated holdings as CSV, one line per folio."""
    try:
        selection = Selection.of(
            _parse_ids(portfolio_ids),
            asset_type=parse_asset_type(asset_type) if asset_type else None,
        )
        query = HoldingQuery(search_term=search, sort_key=sort_by, sort_order=sort_order)
    except (UnknownAssetTypeError, ValidationError) as e:
        raise HTTPException(status_code=400, detail=str(e))

    try:
        consolidated = await _consolidated_holdings(selection)
        names = await _portfolio_names()
        content = export_holdings_csv(apply_query(consolidated.rows, query), names)
        single_name = names.get(selection.portfolio_ids[0]) if len(selection.portfolio_ids) == 1 else None
        filename = export_filename(single_name)
        return Response(
            content=content,
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )
    except HTTPException:
        raise
    except BackendError as e:
        raise HTTPException(status_code=502, detail=str(e))
    except Exception as e:
        logger.error(f"Error exporting holdings: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/api/history")
async def get_history(
    portfolio_ids: Optional[str] = Query(None, description="Comma-separated portfolio ids"),
    date_range: DateRangeOption = Query(DateRangeOption.MONTH, alias="range", description="7d, 30d, 90d, 1y or all"),
    mode: ChartMode = Query(ChartMode.COMBINED, description="single or combined"),
    visible: Optional[str] = Query(None, description="Portfolio ids whose overlay lines are shown"),
):
    """Get the merged value history for the selected portfolios."""
    selection = Selection.of(_parse_ids(portfolio_ids), date_range=date_range, mode=mode)
    shown = frozenset(_parse_ids(visible, "visible"))

    cache_key = f"history_{selection.fingerprint}"
    try:
        history: Optional[ConsolidatedHistory] = _get_api_cache(cache_key)
        if history is None:
            history = await consolidation_service.refresh_history(selection, await _portfolio_names())
            if history is None:
                raise _superseded(selection)
            _set_api_cache(cache_key, history)

        series = history.series
        domain = y_axis_domain(series)
        return {
            "portfolio_ids": history.portfolio_ids,
            "range": history.date_range.value,
            "mode": series.mode.value,
            "data": chart_rows(series),
            "legend": [line.model_dump() for line in series.portfolios],
            "lines": [line.model_dump() for line in visible_lines(series, shown)],
            "y_axis": {"min": domain[0], "max": domain[1]},
            "trend": trend(series),
            "failed_portfolio_ids": history.failed_portfolio_ids,
        }
    except HTTPException:
        raise
    except BackendError as e:
        raise HTTPException(status_code=502, detail=str(e))
    except Exception as e:
        logger.error(f"Error fetching history: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/api/xirr")
async def get_xirr(
    portfolio_ids: Optional[str] = Query(None, description="Comma-separated portfolio ids"),
):
    """Get the consolidated XIRR of the selected portfolios."""
    ids = sorted(set(_parse_ids(portfolio_ids)))
    if not ids:
        return {"portfolio_ids": [], "xirr": None}

    cache_key = f"xirr_{','.join(str(i) for i in ids)}"
    cached = _get_api_cache(cache_key)
    if cached is not None:
        return cached

    try:
        xirr = await consolidation_service.client.get_consolidated_xirr(ids)
        result = {"portfolio_ids": ids, "xirr": xirr}
        _set_api_cache(cache_key, result)
        return result
    except BackendError as e:
        raise HTTPException(status_code=502, detail=str(e))
    except Exception as e:
        logger.error(f"Error fetching XIRR: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.post("/api/cache/clear")
async def clear_cache():
    """Clear all cached responses."""
    _api_cache.clear()
    return {"message": "Cache cleared successfully"}
