"""
Record Expander

Turns one opportunity-product record plus its geography set into report
rows: one row per distinct geography, or a single row with an empty
geography when none resolves.
"""
import logging
from decimal import Decimal, ROUND_HALF_EVEN
from typing import List

from crm_reporter.data.lookup_cache import LookupCache
from crm_reporter.data.records import ExpandedRow, RawProductRecord, make_row_id

logger = logging.getLogger(__name__)

PRODUCT_ENTITY = "zox_opportunityproduct"

# (row attribute, record attribute, referenced table, display field)
LOOKUP_FIELDS = (
    ("lead", "lead", "lead", "fullname"),
    ("pre_lead", "pre_lead", "zox_prelead", "zox_name"),
    ("opportunity", "opportunity", "opportunity", "name"),
    ("product", "product", "zox_productcode", "zox_name"),
    ("project", "project", "zox_project", "zox_name"),
    ("contractor", "contractor", "account", "name"),
    ("po_number", "po_number", "zox_purchaseorder", "zox_name"),
    ("so_number", "so_number", "salesorder", "name"),
)


def format_potential(amount) -> str:
    """Round a monetary amount half-to-even and render it without decimals."""
    value = Decimal(str(amount if amount is not None else 0))
    rounded = value.quantize(Decimal(1), rounding=ROUND_HALF_EVEN)
    # Decimal keeps the sign of zero ("-0")
    return str(rounded) if rounded != 0 else "0"


def select_geographies(geographies: List[str]) -> List[str]:
    """
    Pick the geographies that produce rows.

    Empty names are dropped whenever a non-empty name is present; with no
    non-empty name the record still gets one row with an empty geography.
    """
    selected = list(dict.fromkeys(g for g in geographies if g != ""))
    return selected if selected else [""]


class RecordExpander:
    """Builds ExpandedRow objects, resolving display values through the cache."""

    def __init__(self, cache: LookupCache, product_entity: str = PRODUCT_ENTITY):
        self.cache = cache
        self.product_entity = product_entity

    def expand(self, raw: RawProductRecord, geographies: List[str]) -> List[ExpandedRow]:
        """
        Expand one record into report rows.

        Args:
            raw: The fetched product record
            geographies: Its resolved geography set ([""] when none)

        Returns:
            One row per selected geography, each with row id "<product_id>|<geography>"
        """
        selected = select_geographies(geographies)
        resolved = self._resolve_fields(raw)
        rows = [
            ExpandedRow(
                row_id=make_row_id(raw.product_id, geography),
                geography=geography,
                **resolved,
            )
            for geography in selected
        ]
        logger.debug(f"Expanded product {raw.product_id} into {len(rows)} row(s)")
        return rows

    def _resolve_fields(self, raw: RawProductRecord) -> dict:
        """Resolve the display values shared by every row of one record."""
        fields = {
            row_attr: self.cache.resolve_name(entity, getattr(raw, record_attr), display_field)
            for row_attr, record_attr, entity, display_field in LOOKUP_FIELDS
        }
        fields.update(
            product_id=raw.product_id,
            product_name=raw.name or "",
            created_by_id=raw.created_by.id if raw.created_by else None,
            created_by_name=self.cache.resolve_name("systemuser", raw.created_by, "fullname"),
            lob=self.cache.resolve_option_label(self.product_entity, "zox_lob", raw.lob),
            status=self.cache.resolve_option_label(self.product_entity, "zox_productstatus", raw.status),
            created_on=raw.created_on,
            potential=format_potential(raw.potential),
        )
        return fields
