"""Search, visibility filtering and sorting of aggregated rows."""

import unicodedata
from typing import Any, Literal, Optional

from pydantic import BaseModel, field_validator

from .field_resolver import to_snake_case
from .models import AggregatedHolding

TEXT_SORT_FIELDS = {"display_name"}
NUMERIC_SORT_FIELDS = {
    "total_invested",
    "current_value",
    "realized_profit_loss",
    "unrealized_profit_loss",
    "total_profit_loss",
    "total_profit_loss_percentage",
    "quantity",
    "average_price",
    "current_price",
    "xirr",
    "percent_of_total",
}


class HoldingQuery(BaseModel):
    """User-chosen view options for a holdings table."""
    search_term: str = ""
    sort_key: Optional[str] = None
    sort_order: Literal["asc", "desc"] = "desc"
    hide_zero_quantity: bool = False

    @field_validator("sort_key")
    @classmethod
    def normalize_sort_key(cls, v: Optional[str]) -> Optional[str]:
        """Accept ``currentValue`` or ``current_value``; reject unknown fields."""
        if v is None or not v.strip():
            return None
        key = to_snake_case(v.strip())
        if key not in TEXT_SORT_FIELDS and key not in NUMERIC_SORT_FIELDS:
            valid = ", ".join(sorted(TEXT_SORT_FIELDS | NUMERIC_SORT_FIELDS))
            raise ValueError(f"Cannot sort by '{v}'. Sortable fields: {valid}")
        return key


def _collation_key(text: str) -> str:
    # Accent- and case-insensitive ordering
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(c for c in decomposed if not unicodedata.combining(c)).casefold()


def matches_search(row: AggregatedHolding, search_term: str) -> bool:
    term = search_term.strip().casefold()
    if not term:
        return True
    return term in row.display_name.casefold() or term in row.subtitle.casefold()


def has_quantity(row: AggregatedHolding) -> bool:
    """False only when the row reports a quantity that is zero or negative."""
    return row.quantity is None or row.quantity > 0


def _sort_value(row: AggregatedHolding, key: str) -> Any:
    value = getattr(row, key)
    if key in TEXT_SORT_FIELDS:
        return None if value is None else (_collation_key(value), value)
    return value


def sort_rows(rows: list[AggregatedHolding], key: str, order: str = "desc") -> list[AggregatedHolding]:
    """Stable sort with missing values last in either direction."""
    present = [row for row in rows if _sort_value(row, key) is not None]
    missing = [row for row in rows if _sort_value(row, key) is None]
    present.sort(key=lambda row: _sort_value(row, key), reverse=(order == "desc"))
    return present + missing


def apply_query(rows: list[AggregatedHolding], query: HoldingQuery) -> list[AggregatedHolding]:
    """Filter, then sort. Input rows are left untouched."""
    result = [row for row in rows if matches_search(row, query.search_term)]
    if query.hide_zero_quantity:
        result = [row for row in result if has_quantity(row)]
    if query.sort_key:
        result = sort_rows(result, query.sort_key, query.sort_order)
    return result
