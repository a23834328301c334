"""
Product Aggregator

Collects the deduplicated report rows visible to one user, or to a user
together with the direct reports that have not been processed yet.
"""
import logging
from typing import Collection, List

from crm_reporter.core.error_taxonomy import guarded_fetch
from crm_reporter.data.lookup_cache import LookupCache
from crm_reporter.data.records import RowSet, RawProductRecord
from crm_reporter.data.user_hierarchy import UserHierarchy, UserRecord
from crm_reporter.reporting.record_expander import RecordExpander

logger = logging.getLogger(__name__)


class ProductAggregator:
    """
    Fetches shared opportunity products and expands them into row sets.

    Rows are deduplicated by row id only; the first row seen for an id wins.
    """

    def __init__(self, gateway, hierarchy: UserHierarchy, cache: LookupCache,
                 expander: RecordExpander = None):
        self.gateway = gateway
        self.hierarchy = hierarchy
        self.cache = cache
        self.expander = expander or RecordExpander(cache)

    def products_for(self, user_id: str, lob: int) -> RowSet:
        """
        Get the rows for products shared with one user.

        Args:
            user_id: The user whose shared-access grants are read
            lob: Line of business the products must belong to

        Returns:
            RowSet of expanded rows; empty when nothing is shared
        """
        shared = guarded_fetch(
            "fetch_shared_product_ids",
            lambda: self.gateway.fetch_shared_product_ids(user_id),
            default=[],
            user_id=user_id,
        )
        product_ids: List[str] = list(shared.value)
        if not product_ids:
            return RowSet()

        fetched = guarded_fetch(
            "fetch_products",
            lambda: self.gateway.fetch_products(product_ids, lob),
            default=[],
            user_id=user_id,
            lob=lob,
        )

        rows = RowSet()
        for raw in fetched.value:
            rows.extend(self._expand(raw))

        logger.debug(
            f"User {user_id}: {len(product_ids)} shared id(s), "
            f"{len(fetched.value)} product(s), {len(rows)} row(s)"
        )
        return rows

    def products_for_user_and_subordinates(
        self,
        user: UserRecord,
        processed: Collection[str],
    ) -> RowSet:
        """
        Get the rows for a user plus every unprocessed direct report.

        Subordinates already in `processed` are skipped; their rows reach the
        manager's report through the accumulated set of the climb.
        """
        rows = self.products_for(user.user_id, user.lob)

        for subordinate in self.hierarchy.subordinates_of(user.user_id):
            if subordinate.user_id in processed:
                continue
            rows.extend(self.products_for(subordinate.user_id, subordinate.lob))

        logger.info(f"Collected {len(rows)} row(s) for {user.full_name} and direct reports")
        return rows

    def _expand(self, raw: RawProductRecord):
        geographies = self.cache.resolve_record_geographies(raw)
        return self.expander.expand(raw, geographies)
