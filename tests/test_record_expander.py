"""
Tests for record expansion and row deduplication.
"""
import pytest
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import Mock

from crm_reporter.data.lookup_cache import LookupCache
from crm_reporter.data.records import EntityReference, RawProductRecord, RowSet, dedup_rows
from crm_reporter.reporting.record_expander import (
    RecordExpander,
    format_potential,
    select_geographies,
)


@pytest.fixture
def expander():
    gateway = Mock()
    gateway.resolve_entity_field.side_effect = lambda kind, record_id, field: f"{kind}:{record_id}"
    gateway.resolve_option_label.side_effect = lambda kind, attribute, code: f"{attribute}={code}"
    return RecordExpander(LookupCache(gateway))


@pytest.fixture
def raw():
    return RawProductRecord(
        product_id="p1",
        name="OP-00001",
        created_on=datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc),
        potential=Decimal("125000.50"),
        status=2,
        lob=100000000,
        created_by=EntityReference("systemuser", "u-1"),
        lead=EntityReference("lead", "l-1"),
        product=EntityReference("zox_productcode", "pc-1"),
        contractor=EntityReference("account", "acc-1"),
    )


class TestSelectGeographies:

    @pytest.mark.parametrize("geographies,expected", [
        (["North", "South"], ["North", "South"]),
        ([""], [""]),
        (["", "North"], ["North"]),
        (["North", ""], ["North"]),
        ([], [""]),
        (["", ""], [""]),
        (["North", "", "North"], ["North"]),
    ])
    def test_empty_entry_survives_only_alone(self, geographies, expected):
        """Test which geographies produce rows."""
        assert select_geographies(geographies) == expected


class TestFormatPotential:

    @pytest.mark.parametrize("amount,expected", [
        (Decimal("2.5"), "2"),
        (Decimal("3.5"), "4"),
        (Decimal("125000.50"), "125000"),
        (Decimal("99999.5"), "100000"),
        (Decimal("-0.4"), "0"),
        (None, "0"),
        (1200, "1200"),
    ])
    def test_rounds_half_to_even(self, amount, expected):
        """Should round potentials half to even."""
        assert format_potential(amount) == expected


class TestExpand:

    def test_one_row_per_geography(self, expander, raw):
        """Should emit one row per geography."""
        rows = expander.expand(raw, ["North", "South", "West"])

        assert [r.row_id for r in rows] == ["p1|North", "p1|South", "p1|West"]
        assert [r.geography for r in rows] == ["North", "South", "West"]

    def test_no_geography_gives_single_row(self, expander, raw):
        """Should emit a single row when no geography resolves."""
        rows = expander.expand(raw, [""])

        assert len(rows) == 1
        assert rows[0].row_id == "p1|"
        assert rows[0].geography == ""

    def test_only_empty_entries_give_single_row(self, expander):
        """Should emit one empty-geography row when every entry is empty."""
        rows = expander.expand(RawProductRecord("p1"), ["", ""])

        assert [r.row_id for r in rows] == ["p1|"]

    def test_empty_entry_dropped_beside_real_name(self, expander, raw):
        """Should drop the empty entry next to a real name."""
        rows = expander.expand(raw, ["", "North"])

        assert [r.row_id for r in rows] == ["p1|North"]

    def test_resolves_display_fields(self, expander, raw):
        """Test that display fields are resolved through the cache."""
        row = expander.expand(raw, ["North"])[0]

        assert row.product_id == "p1"
        assert row.product_name == "OP-00001"
        assert row.lead == "lead:l-1"
        assert row.product == "zox_productcode:pc-1"
        assert row.contractor == "account:acc-1"
        assert row.pre_lead == ""
        assert row.so_number == ""
        assert row.created_by_id == "u-1"
        assert row.created_by_name == "systemuser:u-1"
        assert row.lob == "zox_lob=100000000"
        assert row.status == "zox_productstatus=2"
        assert row.potential == "125000"
        assert row.created_on == raw.created_on

    def test_missing_status_is_open(self, expander):
        """Should show Open for a record without status."""
        row = expander.expand(RawProductRecord(product_id="p2"), [""])[0]

        assert row.status == "Open"
        assert row.created_by_id is None
        assert row.potential == "0"

    def test_rows_share_resolved_values(self, expander, raw):
        """Should give every row of a record the same values."""
        rows = expander.expand(raw, ["North", "South"])

        assert rows[0].lead == rows[1].lead
        assert rows[0].potential == rows[1].potential


class TestDedup:

    def _rows(self, expander, raw):
        return expander.expand(raw, ["North", "South"]) + expander.expand(raw, ["North"])

    def test_dedup_is_idempotent(self, expander, raw):
        """Test that deduplicating twice changes nothing."""
        rows = self._rows(expander, raw)

        assert dedup_rows(dedup_rows(rows)) == dedup_rows(rows)
        assert dedup_rows(rows + rows) == dedup_rows(rows)
        assert [r.row_id for r in dedup_rows(rows)] == ["p1|North", "p1|South"]

    def test_first_row_wins(self, expander, raw):
        """Should keep the first row for a repeated row id."""
        first = expander.expand(raw, ["North"])[0]
        renamed = RawProductRecord(product_id="p1", name="Renamed")
        second = expander.expand(renamed, ["North"])[0]

        rows = RowSet([first])
        assert rows.add(second) is False
        assert rows.to_list()[0].product_name == "OP-00001"

    def test_union_keeps_order_and_leaves_inputs(self, expander, raw):
        """Should union row sets in order without touching the inputs."""
        left = RowSet(expander.expand(raw, ["North"]))
        right = RowSet(expander.expand(raw, ["South", "North"]))

        merged = left.union(right)

        assert merged.ids() == ["p1|North", "p1|South"]
        assert len(left) == 1
        assert "p1|South" in merged
