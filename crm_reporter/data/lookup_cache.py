"""
Per-Pass Lookup and Geography Cache

Memoizes the two expensive resolution operations of a hierarchy pass:
- Lookup names: referenced record id -> display name
- Geographies: lead/pre-lead/opportunity id -> region display names

Every resolution costs a round trip to the CRM, so memoization is the main
latency mitigation. The cache lives for exactly one seed user's pass and is
reset by the orchestrator before the next pass begins.
"""
import logging
from dataclasses import dataclass, asdict
from typing import Dict, List, Optional

from crm_reporter.core.error_taxonomy import guarded_fetch
from crm_reporter.data.records import EntityReference, RawProductRecord

logger = logging.getLogger(__name__)

# Returned when nothing resolves for an entity
NO_GEOGRAPHY: List[str] = [""]

REGION_ENTITY = "zox_regionmaster"
REGION_NAME_FIELD = "zox_name"

# Entities whose geography mappings feed a product row, in union order
GEOGRAPHY_SOURCES = (
    ("pre_lead", "zox_prelead"),
    ("lead", "zox_lead"),
    ("opportunity", "zox_opportunity"),
)


@dataclass
class CacheStats:
    name_hits: int = 0
    name_misses: int = 0
    geography_hits: int = 0
    geography_misses: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


class LookupCache:
    """
    Memoization layer over lookup-name and geography resolution.

    Cached and uncached calls with the same key return identical values.
    Fetch failures never escape: names fall back to "" (not cached),
    geographies fall back to the [""] sentinel (cached).
    """

    def __init__(self, gateway):
        self._gateway = gateway
        self._names: Dict[str, str] = {}
        self._geographies: Dict[str, List[str]] = {}
        self.stats = CacheStats()

    def reset(self) -> None:
        """Forget everything; called at the start of each seed user's pass."""
        logger.debug(
            f"Resetting lookup cache ({len(self._names)} names, "
            f"{len(self._geographies)} geography entries)"
        )
        self._names.clear()
        self._geographies.clear()
        self.stats = CacheStats()

    def resolve_name(self, entity_kind: str, ref: Optional[EntityReference], field_name: str) -> str:
        """
        Get the display value of one field of a referenced record.

        Args:
            entity_kind: Logical name of the referenced table
            ref: The lookup reference; None yields ""
            field_name: Attribute holding the display value

        Returns:
            The field value, or "" when absent or when the fetch fails
        """
        if ref is None:
            return ""
        if ref.id in self._names:
            self.stats.name_hits += 1
            return self._names[ref.id]

        self.stats.name_misses += 1
        outcome = guarded_fetch(
            "resolve_entity_field",
            lambda: self._gateway.resolve_entity_field(entity_kind, ref.id, field_name),
            default=None,
            absorb_fatal=True,
            entity=entity_kind,
            id=ref.id,
        )
        if not outcome.ok:
            return ""

        name = outcome.value or ""
        self._names[ref.id] = name
        return name

    def resolve_geographies(self, entity_kind: str, entity_id: str) -> List[str]:
        """
        Get the region names mapped to a lead, pre-lead or opportunity.

        Returns:
            Non-empty list of names; [""] when nothing resolves or the fetch fails
        """
        if entity_id in self._geographies:
            self.stats.geography_hits += 1
            return list(self._geographies[entity_id])

        self.stats.geography_misses += 1
        outcome = guarded_fetch(
            "fetch_geography_mappings",
            lambda: self._gateway.fetch_geography_mappings(entity_kind, entity_id),
            default=[],
            absorb_fatal=True,
            entity=entity_kind,
            id=entity_id,
        )

        geographies = [
            self.resolve_name(REGION_ENTITY, region, REGION_NAME_FIELD)
            for region in outcome.value
            if region is not None
        ]

        self._geographies[entity_id] = geographies if geographies else list(NO_GEOGRAPHY)
        return list(self._geographies[entity_id])

    def resolve_record_geographies(self, raw: RawProductRecord) -> List[str]:
        """
        Union the geographies of a product's pre-lead, lead and opportunity.

        Names are deduplicated in first-seen order. An entity with no mapping
        contributes the "" sentinel, which the expander drops whenever a
        real name is also present.
        """
        merged: List[str] = []
        seen = set()
        for attribute, entity_kind in GEOGRAPHY_SOURCES:
            ref = getattr(raw, attribute)
            if ref is None:
                continue
            for name in self.resolve_geographies(entity_kind, ref.id):
                if name not in seen:
                    seen.add(name)
                    merged.append(name)
        return merged if merged else list(NO_GEOGRAPHY)

    def resolve_option_label(self, entity_kind: str, attribute: str, code: Optional[int]) -> str:
        """Get an option-set label; "Open" for a missing code, "" on failure."""
        if code is None:
            return "Open"
        outcome = guarded_fetch(
            "resolve_option_label",
            lambda: self._gateway.resolve_option_label(entity_kind, attribute, code),
            default="",
            absorb_fatal=True,
            entity=entity_kind,
            attribute=attribute,
            code=code,
        )
        return outcome.value or ""

    @property
    def size(self) -> Dict[str, int]:
        return {"names": len(self._names), "geographies": len(self._geographies)}
