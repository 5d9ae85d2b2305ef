"""Parsing of backend holding payloads into canonical records."""

import logging
from typing import Any, Mapping, Optional

from .field_resolver import (
    coerce_float,
    first_present,
    get_float,
    get_optional_float,
    get_optional_int,
    get_optional_text,
    resolve_field,
)
from .formatters import parse_date
from .identity import ASSET_REGISTRY, get_asset_config, identify
from .models import AssetType, RawHolding

logger = logging.getLogger(__name__)

_TEXT_FIELDS = (
    "portfolio_name",
    "folio_number",
    "isin",
    "symbol",
    "scheme_code",
    "scheme_name",
    "amc",
    "scheme_type",
    "company_name",
    "exchange",
    "sector",
    "metal_type",
    "purity",
    "bank_name",
    "fd_name",
    "compounding_frequency",
)

_NUMERIC_FIELDS = (
    "unrealized_profit_loss_percentage",
    "total_profit_loss_percentage",
    "one_day_profit_loss",
    "principal",
    "interest_rate",
)

_ADDITIVE_FIELDS = (
    "total_invested",
    "current_value",
    "realized_profit_loss",
    "unrealized_profit_loss",
    "total_profit_loss",
)


class HoldingParseError(ValueError):
    """Raised when a holding payload has no usable instrument identity."""

    def __init__(self, message: str, asset_type: Optional[AssetType] = None):
        self.asset_type = asset_type
        super().__init__(message)


def _is_truthy(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes", "closed")
    return bool(value)


def parse_holding(
    payload: Mapping[str, Any],
    asset_type: AssetType,
    portfolio_id: Optional[int] = None,
) -> RawHolding:
    """Build a canonical RawHolding from one backend record.

    Args:
        payload: Holding record, in snake_case, camelCase or a mix
        asset_type: Asset class the record was grouped under
        portfolio_id: Fallback portfolio id when the record carries none

    Raises:
        HoldingParseError: If no instrument identity can be derived
    """
    config = get_asset_config(asset_type)

    fields: dict[str, Any] = {"asset_type": asset_type}
    for key in _TEXT_FIELDS:
        fields[key] = get_optional_text(payload, key)
    for key in _NUMERIC_FIELDS:
        fields[key] = get_optional_float(payload, key)
    for key in _ADDITIVE_FIELDS:
        fields[key] = get_float(payload, key)

    record_portfolio = get_optional_int(payload, "portfolio_id")
    fields["portfolio_id"] = record_portfolio if record_portfolio is not None else portfolio_id
    fields["scheme_id"] = get_optional_int(payload, "scheme_id")

    fields["quantity"] = coerce_float(first_present(payload, config.quantity_keys))
    fields["average_price"] = coerce_float(first_present(payload, config.average_price_keys))
    fields["current_price"] = coerce_float(first_present(payload, config.current_price_keys))

    fields["investment_date"] = parse_date(resolve_field(payload, "investment_date"))
    fields["maturity_date"] = parse_date(resolve_field(payload, "maturity_date"))
    fields["is_closed"] = _is_truthy(resolve_field(payload, "is_closed", False))

    holding = RawHolding(**fields)
    if identify(holding) is None:
        raise HoldingParseError(f"no usable instrument id for {asset_type.value}", asset_type)
    return holding


def parse_holdings(
    records: list[Mapping[str, Any]],
    asset_type: AssetType,
    portfolio_id: Optional[int] = None,
) -> list[RawHolding]:
    """Parse a list of records, dropping those without an instrument id."""
    holdings = []
    for index, record in enumerate(records):
        if not isinstance(record, Mapping):
            logger.warning(f"Skipping non-object {asset_type.value} holding at index {index}")
            continue
        try:
            holdings.append(parse_holding(record, asset_type, portfolio_id))
        except HoldingParseError as e:
            logger.warning(f"Dropping {asset_type.value} holding at index {index}: {e}")
    return holdings


def parse_holdings_payload(
    payload: Mapping[str, Any],
    portfolio_id: Optional[int] = None,
) -> dict[AssetType, list[RawHolding]]:
    """Parse a grouped holdings response.

    Accepts the summary response itself (holdings nested under
    ``holdings``) or the holdings container directly. Groups may be keyed
    by asset type name (``MUTUAL_FUND``) or by the plural keys of the V2
    summary (``mutual_funds``).
    """
    container = payload.get("holdings", payload)
    if not isinstance(container, Mapping):
        return {asset_type: [] for asset_type in AssetType}

    result: dict[AssetType, list[RawHolding]] = {}
    for asset_type, config in ASSET_REGISTRY.items():
        records = first_present(container, config.group_keys) or []
        if not isinstance(records, list):
            logger.warning(f"Ignoring malformed {asset_type.value} holdings group")
            records = []
        result[asset_type] = parse_holdings(records, asset_type, portfolio_id)
    return result
