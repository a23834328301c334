"""
Record Types

Immutable containers for what the record store returns (opportunity
products and lookup references) and for what the reports are built from
(expanded rows and ordered row sets).
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, Iterator, List, Optional


@dataclass(frozen=True)
class EntityReference:
    """A lookup value: which record of which table a field points at."""
    logical_name: str
    id: str


@dataclass(frozen=True)
class RawProductRecord:
    """
    One zox_opportunityproduct record as fetched.

    Related records are kept as references; their display names are
    resolved later through the per-pass lookup cache.
    """
    product_id: str
    name: str = ""
    created_on: Optional[datetime] = None
    potential: Decimal = Decimal(0)
    status: Optional[int] = None
    lob: Optional[int] = None

    owner: Optional[EntityReference] = None
    created_by: Optional[EntityReference] = None
    lead: Optional[EntityReference] = None
    pre_lead: Optional[EntityReference] = None
    opportunity: Optional[EntityReference] = None
    product: Optional[EntityReference] = None
    project: Optional[EntityReference] = None
    contractor: Optional[EntityReference] = None
    po_number: Optional[EntityReference] = None
    so_number: Optional[EntityReference] = None


def make_row_id(product_id: str, geography: str) -> str:
    return f"{product_id}|{geography}"


@dataclass(frozen=True)
class ExpandedRow:
    """One report line: a product record paired with one of its geographies."""
    row_id: str
    product_id: str
    product_name: str
    created_by_id: Optional[str]
    created_by_name: str
    pre_lead: str
    lead: str
    opportunity: str
    product: str
    lob: str
    created_on: Optional[datetime]
    project: str
    contractor: str
    po_number: str
    so_number: str
    potential: str
    geography: str
    status: str


class RowSet:
    """
    Insertion-ordered set of ExpandedRow keyed by row_id.

    Identity is the row id only: adding a row whose id is already present
    keeps the first row, even if the resolved field values differ.
    """

    def __init__(self, rows: Iterable[ExpandedRow] = ()):
        self._rows: Dict[str, ExpandedRow] = {}
        self.extend(rows)

    def add(self, row: ExpandedRow) -> bool:
        """Add a row; returns False when its id was already present."""
        if row.row_id in self._rows:
            return False
        self._rows[row.row_id] = row
        return True

    def extend(self, rows: Iterable[ExpandedRow]) -> None:
        for row in rows:
            self.add(row)

    def union(self, other: Iterable[ExpandedRow]) -> "RowSet":
        """Return a new set with this set's rows followed by the new rows of `other`."""
        merged = RowSet(self)
        merged.extend(other)
        return merged

    def ids(self) -> List[str]:
        return list(self._rows)

    def to_list(self) -> List[ExpandedRow]:
        return list(self._rows.values())

    def __contains__(self, row_id: object) -> bool:
        return row_id in self._rows

    def __iter__(self) -> Iterator[ExpandedRow]:
        return iter(list(self._rows.values()))

    def __len__(self) -> int:
        return len(self._rows)

    def __bool__(self) -> bool:
        return bool(self._rows)

    def __repr__(self) -> str:
        return f"RowSet({len(self._rows)} rows)"


def dedup_rows(rows: Iterable[ExpandedRow]) -> List[ExpandedRow]:
    """Drop rows whose id was already seen, keeping first occurrences in order."""
    return RowSet(rows).to_list()
