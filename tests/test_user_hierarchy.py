"""
Unit tests for the user hierarchy index.
"""
import logging

import pytest
from unittest.mock import Mock

from crm_reporter.data.user_hierarchy import (
    UserFilter,
    UserHierarchy,
    UserHierarchyBuilder,
    UserRecord,
    format_hierarchy,
)

HPR = 515140005


@pytest.fixture
def users():
    return [
        UserRecord("head", full_name="Head", role=100000006),
        UserRecord("mgr", full_name="Manager", role=515140004, manager_id="head"),
        UserRecord("hpr-1", full_name="First HPR", role=HPR, manager_id="mgr"),
        UserRecord("hpr-2", full_name="Second HPR", role=HPR, manager_id="mgr"),
    ]


@pytest.fixture
def hierarchy(users):
    return UserHierarchy.from_users(users)


class TestIndex:

    def test_record_lookup(self, hierarchy):
        """Should find users by id."""
        assert hierarchy.record_of("mgr").full_name == "Manager"
        assert hierarchy.record_of("nobody") is None
        assert hierarchy.record_of(None) is None
        assert len(hierarchy) == 4

    def test_subordinates_keep_fetch_order(self, hierarchy):
        """Should list direct reports in fetch order."""
        assert [u.user_id for u in hierarchy.subordinates_of("mgr")] == ["hpr-1", "hpr-2"]
        assert hierarchy.subordinates_of("hpr-1") == []

    def test_subordinates_list_is_a_copy(self, hierarchy):
        """Should not expose the internal subordinate list."""
        hierarchy.subordinates_of("mgr").clear()
        assert len(hierarchy.subordinates_of("mgr")) == 2

    def test_seeds_by_role(self, hierarchy):
        """Should select seed users by role."""
        assert [u.user_id for u in hierarchy.seeds(HPR)] == ["hpr-1", "hpr-2"]

    def test_duplicate_ids_keep_first(self, users, caplog):
        """Should keep the first record for a duplicate id."""
        users.append(UserRecord("mgr", full_name="Impostor"))

        hierarchy = UserHierarchy.from_users(users)

        assert hierarchy.record_of("mgr").full_name == "Manager"
        assert len(hierarchy) == 4
        assert "Duplicate user id mgr" in caplog.text


class TestManagementChain:

    def test_chain_nearest_first(self, hierarchy):
        """Should list managers nearest first."""
        assert [u.user_id for u in hierarchy.management_chain("hpr-1")] == ["mgr", "head"]

    def test_top_of_chain_is_empty(self, hierarchy):
        """Should return no managers for the top of a chain."""
        assert hierarchy.management_chain("head") == []

    def test_cycle_terminates(self):
        """Test that a management cycle ends the chain."""
        hierarchy = UserHierarchy.from_users([
            UserRecord("a", manager_id="b"),
            UserRecord("b", manager_id="a"),
        ])

        assert [u.user_id for u in hierarchy.management_chain("a")] == ["b"]

    def test_orphan_manager_stops_chain(self):
        """Should stop at a manager outside the filtered users."""
        hierarchy = UserHierarchy.from_users([UserRecord("a", manager_id="ghost")])

        assert hierarchy.management_chain("a") == []


class TestBuilder:

    def test_build_fetches_once(self, users, caplog):
        """Should fetch the user list once."""
        caplog.set_level(logging.INFO)
        gateway = Mock()
        gateway.fetch_users.return_value = users
        criteria = UserFilter(segment=100000002, lob=100000000, roles=(HPR,))

        hierarchy = UserHierarchyBuilder(gateway).build(criteria)

        gateway.fetch_users.assert_called_once_with(criteria)
        assert len(hierarchy) == 4
        assert "Found 4 filtered users" in caplog.text

    def test_fetch_errors_propagate(self):
        """Should propagate user fetch errors."""
        gateway = Mock()
        gateway.fetch_users.side_effect = RuntimeError("connection reset")

        with pytest.raises(RuntimeError):
            UserHierarchyBuilder(gateway).build(UserFilter(1, 1, (1,)))


class TestFormatting:

    def test_tree_indents_reports(self, hierarchy):
        """Should indent reports under their manager."""
        text = format_hierarchy(hierarchy)

        assert "Head (head)" in text
        assert "  Manager (mgr)" in text
        assert "    First HPR (hpr-1)" in text

    def test_orphans_are_roots(self):
        """Should print users with unknown managers as roots."""
        hierarchy = UserHierarchy.from_users([UserRecord("a", full_name="Alone", manager_id="ghost")])

        assert "\nAlone (a)" in format_hierarchy(hierarchy)

    def test_to_dict(self, hierarchy):
        """Should serialize the hierarchy."""
        data = hierarchy.record_of("hpr-1").to_dict()
        assert data["manager_id"] == "mgr"
        assert data["role"] == HPR
