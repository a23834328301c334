"""
Tests for collecting a user's (and their direct reports') product rows.
"""
import pytest

from conftest import make_product, make_user
from crm_reporter.data.lookup_cache import LookupCache
from crm_reporter.data.user_hierarchy import UserFilter, UserHierarchyBuilder
from crm_reporter.reporting.aggregator import ProductAggregator
from crm_reporter.tools.crm_client import DataRetrievalError
from crm_reporter.tools.mock_crm import (
    MockCrmGateway,
    MOCK_LOB,
    MOCK_SEGMENT,
    ROLE_HEAD,
    ROLE_HPR,
    ROLE_MANAGER,
)


CRITERIA = UserFilter(segment=MOCK_SEGMENT, lob=MOCK_LOB, roles=(ROLE_MANAGER, ROLE_HPR, ROLE_HEAD))


def build(gateway):
    hierarchy = UserHierarchyBuilder(gateway).build(CRITERIA)
    return ProductAggregator(gateway, hierarchy, LookupCache(gateway)), hierarchy


@pytest.fixture
def aggregator(scenario_gateway):
    return build(scenario_gateway)[0]


class TestProductsFor:

    def test_user_without_shares_skips_product_fetch(self, aggregator, scenario_gateway):
        """Should not query products for a user with no shared records."""
        rows = aggregator.products_for("u-h", MOCK_LOB)

        assert len(rows) == 0
        assert scenario_gateway.calls["fetch_products"] == 0

    def test_expands_each_product(self, aggregator):
        """Test that every shared product is expanded into rows."""
        rows = aggregator.products_for("u-m", MOCK_LOB)

        assert rows.ids() == ["p1|North", "p1|South", "p3|West"]

    def test_other_lob_is_excluded(self):
        """Should drop products from a different line of business."""
        gateway = MockCrmGateway({
            "users": [make_user("u-1")],
            "shares": {"u-1": ["p1", "p2"]},
            "products": [make_product("p1"), make_product("p2", lob=100000001)],
        })
        aggregator, _ = build(gateway)

        assert aggregator.products_for("u-1", MOCK_LOB).ids() == ["p1|"]

    def test_fetch_failure_gives_empty_rows(self, caplog):
        """Should return no rows and log when the product fetch fails."""
        class BrokenGateway(MockCrmGateway):
            def fetch_products(self, ids, lob):
                raise DataRetrievalError("Dataverse request failed: 503")

        gateway = BrokenGateway({
            "users": [make_user("u-1")],
            "shares": {"u-1": ["p1"]},
            "products": [make_product("p1")],
        })
        aggregator, _ = build(gateway)

        assert len(aggregator.products_for("u-1", MOCK_LOB)) == 0
        assert "fetch_products failed" in caplog.text


class TestUserAndSubordinates:

    def test_includes_direct_reports(self, scenario_gateway):
        """Test that a manager's rows include their direct reports' rows."""
        aggregator, hierarchy = build(scenario_gateway)

        rows = aggregator.products_for_user_and_subordinates(hierarchy.record_of("u-s"), set())

        assert rows.ids() == ["p1|North", "p1|South", "p2|"]

    def test_skips_processed_reports(self, scenario_gateway):
        """Should not collect rows for subordinates already reported on."""
        aggregator, hierarchy = build(scenario_gateway)

        rows = aggregator.products_for_user_and_subordinates(hierarchy.record_of("u-s"), {"u-s1"})

        assert rows.ids() == ["p2|"]
        assert scenario_gateway.calls["fetch_shared_product_ids"] == 2

    def test_only_direct_reports_are_collected(self, scenario_gateway):
        """Test that only the manager's direct reports are collected."""
        aggregator, hierarchy = build(scenario_gateway)

        rows = aggregator.products_for_user_and_subordinates(hierarchy.record_of("u-m"), set())

        # u-s has no shares of its own; u-s1/u-s2 are two levels down
        assert rows.ids() == ["p1|North", "p1|South", "p3|West"]
