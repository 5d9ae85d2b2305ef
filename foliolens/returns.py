"""Joining externally computed XIRR onto aggregated rows.

The XIRR source keys its results by the backend's scheme id, not by the
ISIN or symbol the aggregator groups on, so each row is looked up through
the scheme id of its first contributing holding.
"""

import logging
from typing import Any, Iterable, Mapping, Optional

from .field_resolver import get_optional_float, get_optional_int
from .models import AggregatedHolding

logger = logging.getLogger(__name__)


def scheme_id_for(row: AggregatedHolding) -> Optional[int]:
    """Scheme id used to look up a row's XIRR (first contributing holding's)."""
    if not row.holdings:
        return None
    scheme_id = row.holdings[0].scheme_id
    distinct = {h.scheme_id for h in row.holdings if h.scheme_id is not None}
    if len(distinct) > 1:
        logger.debug(
            f"{row.identifier} spans scheme ids {sorted(distinct)}; using {scheme_id}"
        )
    return scheme_id


def scheme_ids_for(rows: Iterable[AggregatedHolding]) -> list[int]:
    """Distinct lookup scheme ids across rows, in row order."""
    ids: list[int] = []
    for row in rows:
        scheme_id = scheme_id_for(row)
        if scheme_id is not None and scheme_id not in ids:
            ids.append(scheme_id)
    return ids


def build_xirr_index(entries: Iterable[Mapping[str, Any]]) -> dict[int, float]:
    """Map scheme id -> XIRR from ``{schemeId, xirr}`` records.

    Records missing either field are skipped; an XIRR of exactly 0 is kept.
    """
    index: dict[int, float] = {}
    for entry in entries:
        scheme_id = get_optional_int(entry, "scheme_id")
        xirr = get_optional_float(entry, "xirr")
        if scheme_id is None or xirr is None:
            continue
        index[scheme_id] = xirr
    return index


def join_xirr(
    rows: Iterable[AggregatedHolding],
    xirr_by_scheme_id: Mapping[int, float],
) -> list[AggregatedHolding]:
    """Attach XIRR to each row.

    A row whose scheme id has no entry gets ``xirr=None``, never 0.
    """
    joined = []
    for row in rows:
        scheme_id = scheme_id_for(row)
        xirr = xirr_by_scheme_id.get(scheme_id) if scheme_id is not None else None
        joined.append(row.model_copy(update={"xirr": xirr}))
    return joined
