"""
Mock CRM Record Store

In-memory stand-in for the Dataverse gateway. Serves users, shared-access
grants, opportunity products, lookup records, geography mappings and
option sets from a snapshot dictionary, and keeps uploaded reports in
memory.

This allows running the full hierarchy report without a CRM connection,
and lets tests count how often each external operation is called.

Usage:
    Set USE_MOCK_DATA=true in .env (or pass --mock) to enable mock mode.
    `python main.py mock-data` writes a generated organization to YAML.
"""
import random
import logging
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Dict, Any, Optional, Union

import yaml

from crm_reporter.core.error_taxonomy import FatalConnectionError
from crm_reporter.data.records import EntityReference, RawProductRecord
from crm_reporter.data.user_hierarchy import UserFilter, UserRecord
from crm_reporter.tools.crm_client import (
    DataRetrievalError,
    PRODUCT_LOOKUPS,
    REGION_ENTITY,
    parse_datetime,
    parse_decimal,
)

logger = logging.getLogger(__name__)

# Mirrors the option-set codes used in the real organization
MOCK_SEGMENT = 100000002
MOCK_LOB = 100000000
ROLE_MANAGER = 515140004
ROLE_HPR = 515140005
ROLE_HEAD = 100000006

MOCK_REGIONS = ["North", "South", "East", "West", "Central", "North East"]

MOCK_STATUSES = {1: "Open", 2: "Won", 3: "Lost", 4: "On Hold"}

MOCK_FIRST_NAMES = ["Asha", "Ravi", "Meera", "Karan", "Divya", "Arjun", "Nisha", "Vikram", "Pooja", "Sanjay"]
MOCK_LAST_NAMES = ["Sharma", "Iyer", "Patel", "Reddy", "Nair", "Gupta", "Menon", "Das"]


@dataclass
class UploadedReport:
    user_id: str
    file_name: str
    content: bytes


class MockCrmGateway:
    """
    Snapshot-backed gateway with the same operations as DataverseGateway.

    `calls` counts every external operation by name.
    """

    def __init__(self, snapshot: Dict[str, Any], connected: bool = True):
        self.snapshot = snapshot
        self.connected = connected
        self.calls: Counter = Counter()
        self.uploads: List[UploadedReport] = []

        self._users = [self._parse_user(u) for u in snapshot.get("users", [])]
        self._shares: Dict[str, List[str]] = {
            str(k): [str(i) for i in v or []] for k, v in (snapshot.get("shares") or {}).items()
        }
        self._products: Dict[str, Dict[str, Any]] = {
            str(p["id"]): p for p in snapshot.get("products", [])
        }
        self._records: Dict[str, Dict[str, Dict[str, Any]]] = {
            entity: {str(rid): fields or {} for rid, fields in (rows or {}).items()}
            for entity, rows in (snapshot.get("records") or {}).items()
        }
        self._mappings: List[Dict[str, Any]] = list(snapshot.get("geography_mappings", []))
        self._option_sets: Dict[str, Dict[int, str]] = {
            key: {int(code): label for code, label in (options or {}).items()}
            for key, options in (snapshot.get("option_sets") or {}).items()
        }

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "MockCrmGateway":
        """Load a snapshot from a YAML file."""
        with open(path, "r", encoding="utf-8") as f:
            snapshot = yaml.safe_load(f) or {}
        logger.info(f"Loaded mock CRM snapshot from {path}")
        return cls(snapshot)

    def check_connection(self) -> str:
        self.calls["check_connection"] += 1
        if not self.connected:
            raise FatalConnectionError("CRM connection failed: mock store is offline")
        logger.info("Connected to mock CRM successfully")
        return "mock-application-user"

    def fetch_users(self, criteria: UserFilter) -> List[UserRecord]:
        self.calls["fetch_users"] += 1
        return [
            u for u in self._users
            if u.segment == criteria.segment and u.lob == criteria.lob and u.role in criteria.roles
        ]

    def fetch_shared_product_ids(self, user_id: str) -> List[str]:
        self.calls["fetch_shared_product_ids"] += 1
        return list(self._shares.get(user_id, []))

    def fetch_products(self, ids: List[str], lob: int) -> List[RawProductRecord]:
        self.calls["fetch_products"] += 1
        products = []
        for product_id in ids:
            raw = self._products.get(product_id)
            if raw is not None and raw.get("lob") == lob:
                products.append(self._parse_product(raw))
        return products

    def fetch_geography_mappings(self, entity_kind: str, entity_id: str) -> List[EntityReference]:
        self.calls["fetch_geography_mappings"] += 1
        return [
            EntityReference(REGION_ENTITY, str(m["region"]))
            for m in self._mappings
            if str(m.get(entity_kind, "")) == entity_id and m.get("region")
        ]

    def resolve_entity_field(self, entity_kind: str, record_id: str, field_name: str) -> Optional[str]:
        self.calls["resolve_entity_field"] += 1
        if entity_kind == "systemuser" and field_name == "fullname":
            user = next((u for u in self._users if u.user_id == record_id), None)
            if user is not None:
                return user.full_name
        record = self._records.get(entity_kind, {}).get(record_id)
        if record is None:
            raise DataRetrievalError(f"{entity_kind} With Id = {record_id} Does Not Exist")
        value = record.get(field_name)
        return None if value is None else str(value)

    def resolve_option_label(self, entity_kind: str, attribute: str, code: Optional[int]) -> str:
        self.calls["resolve_option_label"] += 1
        if code is None:
            return "Open"
        options = self._option_sets.get(f"{entity_kind}.{attribute}", {})
        return options.get(int(code), "")

    def upload_report(self, user_id: str, file_name: str, content: bytes, mime_type: str = None) -> None:
        self.calls["upload_report"] += 1
        self.uploads.append(UploadedReport(user_id=user_id, file_name=file_name, content=content))
        logger.info(f"Stored {file_name} ({len(content)} bytes) for user {user_id}")

    @staticmethod
    def _parse_user(raw: Dict[str, Any]) -> UserRecord:
        return UserRecord(
            user_id=str(raw["id"]),
            full_name=raw.get("full_name") or "N/A",
            email=raw.get("email") or "",
            segment=raw.get("segment", -1),
            lob=raw.get("lob", -1),
            role=raw.get("role", -1),
            manager_id=str(raw["manager_id"]) if raw.get("manager_id") else None,
        )

    @staticmethod
    def _parse_product(raw: Dict[str, Any]) -> RawProductRecord:
        lookups = {}
        for attribute, (_, target) in PRODUCT_LOOKUPS.items():
            ref_id = raw.get(attribute)
            lookups[attribute] = EntityReference(target, str(ref_id)) if ref_id else None
        return RawProductRecord(
            product_id=str(raw["id"]),
            name=raw.get("name") or "",
            created_on=parse_datetime(raw.get("created_on")),
            potential=parse_decimal(raw.get("potential")),
            status=raw.get("status"),
            lob=raw.get("lob"),
            **lookups,
        )


def generate_mock_snapshot(
    heads: int = 1,
    managers_per_head: int = 2,
    hprs_per_manager: int = 3,
    products_per_user: int = 4,
    share_overlap: float = 0.25,
    seed: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Generate a random organization snapshot.

    Builds heads -> managers -> HPR users, products shared with HPRs (and
    some also with their manager), leads with 0-3 mapped regions.

    Args:
        heads: Number of top-of-chain users
        managers_per_head: Managers reporting to each head
        hprs_per_manager: HPR users reporting to each manager
        products_per_user: Products shared with each HPR
        share_overlap: Probability a product is also shared with the HPR's manager
        seed: Random seed for reproducibility

    Returns:
        Snapshot dictionary accepted by MockCrmGateway
    """
    rng = random.Random(seed)
    now = datetime.now(timezone.utc)

    users: List[Dict[str, Any]] = []
    shares: Dict[str, List[str]] = {}
    products: List[Dict[str, Any]] = []
    records: Dict[str, Dict[str, Dict[str, Any]]] = {
        "lead": {},
        "zox_productcode": {"pc-1": {"zox_name": "Waterproofing"}, "pc-2": {"zox_name": "Tile Adhesive"}},
        "account": {"acc-1": {"name": "Apex Contractors"}},
        REGION_ENTITY: {f"r-{i}": {"zox_name": name} for i, name in enumerate(MOCK_REGIONS)},
    }
    mappings: List[Dict[str, Any]] = []

    def new_user(user_id: str, role: int, manager_id: Optional[str]) -> Dict[str, Any]:
        user = {
            "id": user_id,
            "full_name": f"{rng.choice(MOCK_FIRST_NAMES)} {rng.choice(MOCK_LAST_NAMES)}",
            "segment": MOCK_SEGMENT,
            "lob": MOCK_LOB,
            "role": role,
            "manager_id": manager_id,
        }
        users.append(user)
        return user

    counter = 0
    for h in range(heads):
        head = new_user(f"u-head-{h}", ROLE_HEAD, None)
        for m in range(managers_per_head):
            manager = new_user(f"u-mgr-{h}-{m}", ROLE_MANAGER, head["id"])
            for r in range(hprs_per_manager):
                hpr = new_user(f"u-hpr-{h}-{m}-{r}", ROLE_HPR, manager["id"])
                for _ in range(products_per_user):
                    counter += 1
                    product_id = f"p-{counter}"
                    lead_id = f"l-{counter}"
                    records["lead"][lead_id] = {"fullname": f"Lead {counter}"}
                    for region in rng.sample(range(len(MOCK_REGIONS)), rng.randint(0, 3)):
                        mappings.append({"zox_lead": lead_id, "region": f"r-{region}"})
                    products.append({
                        "id": product_id,
                        "name": f"OP-{counter:05d}",
                        "lob": MOCK_LOB,
                        "status": rng.choice(list(MOCK_STATUSES)),
                        "potential": round(rng.uniform(1000, 250000), 2),
                        "created_on": (now - timedelta(days=rng.randint(0, 365))).isoformat(),
                        "created_by": hpr["id"],
                        "owner": hpr["id"],
                        "lead": lead_id,
                        "product": rng.choice(["pc-1", "pc-2"]),
                        "contractor": "acc-1" if rng.random() < 0.5 else None,
                    })
                    shares.setdefault(hpr["id"], []).append(product_id)
                    if rng.random() < share_overlap:
                        shares.setdefault(manager["id"], []).append(product_id)

    logger.info(f"Generated mock snapshot: {len(users)} users, {len(products)} products")

    return {
        "users": users,
        "shares": shares,
        "products": products,
        "records": records,
        "geography_mappings": mappings,
        "option_sets": {
            "zox_opportunityproduct.zox_lob": {MOCK_LOB: "Retail"},
            "zox_opportunityproduct.zox_productstatus": dict(MOCK_STATUSES),
        },
    }


def save_mock_snapshot(snapshot: Dict[str, Any], path: Union[str, Path]) -> Path:
    """Write a snapshot as YAML that MockCrmGateway.from_yaml can load back."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(snapshot, f, sort_keys=False, allow_unicode=True)
    logger.info(f"Wrote mock CRM snapshot to {path}")
    return path
