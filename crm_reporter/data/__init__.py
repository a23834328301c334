"""
Data layer module for records, the user hierarchy and the per-pass lookup cache.
"""
from crm_reporter.data.records import (
    EntityReference,
    RawProductRecord,
    ExpandedRow,
    RowSet,
    dedup_rows,
    make_row_id,
)
from crm_reporter.data.user_hierarchy import (
    UserRecord,
    UserFilter,
    UserHierarchy,
    UserHierarchyBuilder,
    format_hierarchy,
)
from crm_reporter.data.lookup_cache import (
    CacheStats,
    LookupCache,
    NO_GEOGRAPHY,
)

__all__ = [
    # Records
    "EntityReference",
    "RawProductRecord",
    "ExpandedRow",
    "RowSet",
    "dedup_rows",
    "make_row_id",
    # User hierarchy
    "UserRecord",
    "UserFilter",
    "UserHierarchy",
    "UserHierarchyBuilder",
    "format_hierarchy",
    # Lookup cache
    "CacheStats",
    "LookupCache",
    "NO_GEOGRAPHY",
]
