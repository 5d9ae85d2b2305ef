"""Instrument identity and display text per asset class.

Two raw holdings with the same identity are the same instrument, no
matter which portfolio or folio they came from, and are merged by the
aggregator.
"""

from dataclasses import dataclass
from typing import Callable, Optional

from .formatters import MISSING, format_date, format_number, format_percentage
from .models import AssetType, RawHolding


class UnknownAssetTypeError(ValueError):
    """Raised for asset type names outside the registry."""

    def __init__(self, value: str):
        self.value = value
        valid = ", ".join(a.value for a in AssetType)
        super().__init__(f"Unknown asset type '{value}'. Valid asset types: {valid}")


@dataclass(frozen=True)
class AssetConfig:
    asset_type: AssetType
    label: str
    # Keys the backend may use for this asset class's holdings group
    group_keys: tuple[str, ...]
    quantity_keys: tuple[str, ...]
    average_price_keys: tuple[str, ...]
    current_price_keys: tuple[str, ...]
    identify: Callable[[RawHolding], Optional[str]]
    display_name: Callable[[RawHolding], str]
    subtitle: Callable[[RawHolding], str]


def _join(*parts: Optional[str]) -> str:
    return " • ".join(part if part else MISSING for part in parts)


# --- Mutual funds ---

def _fund_identity(h: RawHolding) -> Optional[str]:
    return h.isin


def _fund_name(h: RawHolding) -> str:
    return h.scheme_name or h.isin or ""


def _fund_subtitle(h: RawHolding) -> str:
    return _join(h.folio_number, h.amc)


# --- Stocks ---

def _stock_identity(h: RawHolding) -> Optional[str]:
    return h.isin or h.symbol


def _stock_name(h: RawHolding) -> str:
    return h.company_name or h.symbol or ""


def _stock_subtitle(h: RawHolding) -> str:
    return _join(h.symbol, h.isin or h.exchange)


# --- Precious metals ---

def _metal_identity(h: RawHolding) -> Optional[str]:
    return h.scheme_code


def _metal_name(h: RawHolding) -> str:
    # GOLD_22K -> GOLD 22K
    metal = (h.scheme_code or "").replace("_", " ", 1)
    if h.folio_number and not h.folio_number.startswith("METAL_"):
        return f"{metal} - {h.folio_number}"
    return metal


def _metal_subtitle(h: RawHolding) -> str:
    return f"{h.purity or MISSING} • {format_number(h.quantity, 3)}g"


# --- Fixed deposits ---

def _deposit_identity(h: RawHolding) -> Optional[str]:
    # Scheme code, falling back to the deposit account number
    return h.scheme_code or h.folio_number


def _deposit_name(h: RawHolding) -> str:
    return h.fd_name or h.scheme_name or f"{h.bank_name or 'Bank'} FD"


def _deposit_subtitle(h: RawHolding) -> str:
    opened = format_date(h.investment_date) if h.investment_date else MISSING
    matures = format_date(h.maturity_date) if h.maturity_date else MISSING
    rate = format_percentage(h.interest_rate or 0.0)
    compounding = h.compounding_frequency or "QUARTERLY"
    return f"{opened} → {matures} • {rate} • {compounding}"


ASSET_REGISTRY: dict[AssetType, AssetConfig] = {
    AssetType.MUTUAL_FUND: AssetConfig(
        asset_type=AssetType.MUTUAL_FUND,
        label="Mutual Funds",
        group_keys=("MUTUAL_FUND", "mutual_funds"),
        quantity_keys=("current_units", "units", "quantity"),
        average_price_keys=("average_nav", "average_buy_price", "average_price"),
        current_price_keys=("current_nav", "nav", "current_price"),
        identify=_fund_identity,
        display_name=_fund_name,
        subtitle=_fund_subtitle,
    ),
    AssetType.EQUITY_STOCK: AssetConfig(
        asset_type=AssetType.EQUITY_STOCK,
        label="Stocks",
        group_keys=("EQUITY_STOCK", "stocks"),
        quantity_keys=("quantity", "current_quantity", "shares"),
        average_price_keys=("average_price", "average_buy_price"),
        current_price_keys=("current_price", "ltp"),
        identify=_stock_identity,
        display_name=_stock_name,
        subtitle=_stock_subtitle,
    ),
    AssetType.PRECIOUS_METAL: AssetConfig(
        asset_type=AssetType.PRECIOUS_METAL,
        label="Metals",
        group_keys=("PRECIOUS_METAL", "metals"),
        quantity_keys=("current_quantity", "quantity", "grams"),
        average_price_keys=("average_price", "average_buy_price"),
        current_price_keys=("current_price",),
        identify=_metal_identity,
        display_name=_metal_name,
        subtitle=_metal_subtitle,
    ),
    AssetType.FIXED_DEPOSIT: AssetConfig(
        asset_type=AssetType.FIXED_DEPOSIT,
        label="Fixed Deposits",
        group_keys=("FIXED_DEPOSIT", "fixed_deposits"),
        quantity_keys=(),
        average_price_keys=(),
        current_price_keys=(),
        identify=_deposit_identity,
        display_name=_deposit_name,
        subtitle=_deposit_subtitle,
    ),
}


def get_asset_config(asset_type: AssetType) -> AssetConfig:
    return ASSET_REGISTRY[asset_type]


def parse_asset_type(value: str) -> AssetType:
    """Parse an asset type name, case-insensitively."""
    try:
        return AssetType(value.strip().upper())
    except ValueError:
        raise UnknownAssetTypeError(value)


def identify(holding: RawHolding, asset_type: Optional[AssetType] = None) -> Optional[str]:
    """Stable instrument identifier, or None when the holding has no usable id."""
    config = get_asset_config(asset_type or holding.asset_type)
    identifier = config.identify(holding)
    if identifier is None:
        return None
    identifier = identifier.strip()
    return identifier or None


def display_name(holding: RawHolding) -> str:
    return get_asset_config(holding.asset_type).display_name(holding)


def subtitle(holding: RawHolding) -> str:
    return get_asset_config(holding.asset_type).subtitle(holding)
