"""
Shared fixtures: small CRM organizations served by MockCrmGateway.
"""
import pytest

from crm_reporter.reporting.report_emitter import EmitResult
from crm_reporter.tools.mock_crm import (
    MockCrmGateway,
    MOCK_LOB,
    MOCK_SEGMENT,
    ROLE_HEAD,
    ROLE_HPR,
    ROLE_MANAGER,
)


def make_user(user_id, manager_id=None, role=ROLE_MANAGER, full_name=None, lob=MOCK_LOB):
    return {
        "id": user_id,
        "full_name": full_name or user_id.upper(),
        "segment": MOCK_SEGMENT,
        "lob": lob,
        "role": role,
        "manager_id": manager_id,
    }


def make_product(product_id, lead=None, lob=MOCK_LOB, **fields):
    product = {
        "id": product_id,
        "name": product_id,
        "lob": lob,
        "status": 1,
        "potential": 1000,
        "created_on": "2024-01-01T00:00:00Z",
        "lead": lead,
    }
    product.update(fields)
    return product


class RecordingEmitter:
    """Stands in for ReportEmitter and keeps every emitted report."""

    def __init__(self):
        self.reports = []

    def emit(self, rows, report_name, user_id):
        self.reports.append((report_name, user_id, [r.row_id for r in rows]))
        return EmitResult(report_name, user_id, len(rows), file_name=f"{user_id}.xlsx")

    def rows_for(self, user_id):
        for _, emitted_for, row_ids in self.reports:
            if emitted_for == user_id:
                return row_ids
        raise KeyError(user_id)


@pytest.fixture
def scenario_snapshot():
    """
    Head H <- Manager M <- seed S <- S1, S2.

    P1 (shared with S1 and M) maps to North and South, P2 (S2) maps to
    nothing, P3 (M only) maps to West.
    """
    return {
        "users": [
            make_user("u-s", manager_id="u-m", role=ROLE_HPR, full_name="Seed User"),
            make_user("u-s1", manager_id="u-s", full_name="Sub One"),
            make_user("u-s2", manager_id="u-s", full_name="Sub Two"),
            make_user("u-m", manager_id="u-h", full_name="Mid Manager"),
            make_user("u-h", role=ROLE_HEAD, full_name="Top Head"),
        ],
        "shares": {
            "u-s1": ["p1"],
            "u-s2": ["p2"],
            "u-m": ["p1", "p3"],
        },
        "products": [
            make_product("p1", lead="l-1", created_by="u-s1"),
            make_product("p2", lead="l-2", created_by="u-s2"),
            make_product("p3", lead="l-3", created_by="u-m"),
        ],
        "records": {
            "lead": {
                "l-1": {"fullname": "Lead One"},
                "l-2": {"fullname": "Lead Two"},
                "l-3": {"fullname": "Lead Three"},
            },
            "zox_regionmaster": {
                "r-n": {"zox_name": "North"},
                "r-s": {"zox_name": "South"},
                "r-w": {"zox_name": "West"},
            },
        },
        "geography_mappings": [
            {"zox_lead": "l-1", "region": "r-n"},
            {"zox_lead": "l-1", "region": "r-s"},
            {"zox_lead": "l-3", "region": "r-w"},
        ],
        "option_sets": {
            "zox_opportunityproduct.zox_lob": {MOCK_LOB: "Retail"},
            "zox_opportunityproduct.zox_productstatus": {1: "Open", 2: "Won"},
        },
    }


@pytest.fixture
def scenario_gateway(scenario_snapshot):
    return MockCrmGateway(scenario_snapshot)


@pytest.fixture
def recording_emitter():
    return RecordingEmitter()
