"""
User Hierarchy Index

Provides manager/subordinate relationship handling for team reporting.
Supports:
- Fetching the filtered user list from the CRM once per run
- Building a manager -> subordinates adjacency index
- Walking a user's management chain upward

Key Concepts:
- Seed user: a user whose role starts a hierarchy pass (HPR)
- Subordinate: a user whose manager field points at another user
- Management chain: the managers reached by following manager ids upward
"""
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional, Iterable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UserRecord:
    """A CRM system user as fetched for the report run."""
    user_id: str
    full_name: str = "N/A"
    email: str = ""
    segment: int = -1
    lob: int = -1
    role: int = -1
    manager_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "full_name": self.full_name,
            "email": self.email,
            "segment": self.segment,
            "lob": self.lob,
            "role": self.role,
            "manager_id": self.manager_id,
        }


@dataclass(frozen=True)
class UserFilter:
    """Criteria for the one-shot user fetch."""
    segment: int
    lob: int
    roles: tuple


@dataclass
class UserHierarchy:
    """
    In-memory index over the fetched user list.

    Built once per run; the user list does not change during a run.
    """
    users: List[UserRecord] = field(default_factory=list)
    users_by_id: Dict[str, UserRecord] = field(default_factory=dict)
    subordinates_by_manager: Dict[str, List[UserRecord]] = field(default_factory=dict)

    @classmethod
    def from_users(cls, users: Iterable[UserRecord]) -> "UserHierarchy":
        """Build the index, keeping the fetch order for subordinates."""
        users = list(users)
        users_by_id: Dict[str, UserRecord] = {}
        subordinates: Dict[str, List[UserRecord]] = defaultdict(list)

        for user in users:
            if user.user_id in users_by_id:
                logger.warning(f"Duplicate user id {user.user_id} in user list; keeping the first")
                continue
            users_by_id[user.user_id] = user
            if user.manager_id:
                subordinates[user.manager_id].append(user)

        logger.info(
            f"Built user hierarchy: {len(users_by_id)} users, "
            f"{len(subordinates)} managers with direct reports"
        )

        return cls(
            users=list(users_by_id.values()),
            users_by_id=users_by_id,
            subordinates_by_manager=dict(subordinates),
        )

    def record_of(self, user_id: Optional[str]) -> Optional[UserRecord]:
        """Get a user by id, or None when absent."""
        if not user_id:
            return None
        return self.users_by_id.get(user_id)

    def subordinates_of(self, manager_id: str) -> List[UserRecord]:
        """Get the direct reports of a manager, in fetch order."""
        return list(self.subordinates_by_manager.get(manager_id, []))

    def seeds(self, seed_role: int) -> List[UserRecord]:
        """Get the users whose role starts a hierarchy pass."""
        return [u for u in self.users if u.role == seed_role]

    def management_chain(self, user_id: str) -> List[UserRecord]:
        """
        Get the managers above a user, nearest first.

        Stops at a missing manager id, an id not in the index, or a manager
        already seen (cycle).
        """
        chain: List[UserRecord] = []
        seen = {user_id}
        current = self.record_of(user_id)

        while current and current.manager_id and current.manager_id not in seen:
            manager = self.record_of(current.manager_id)
            if manager is None:
                break
            chain.append(manager)
            seen.add(manager.user_id)
            current = manager

        return chain

    def __len__(self) -> int:
        return len(self.users_by_id)


class UserHierarchyBuilder:
    """
    Builds the user hierarchy from the CRM.

    Fetches the filtered user list through the gateway and indexes it.
    """

    def __init__(self, gateway):
        self._gateway = gateway

    def build(self, criteria: UserFilter) -> UserHierarchy:
        """
        Fetch users and build the hierarchy.

        Fetch errors propagate: without the user list there is nothing to run.
        """
        users = self._gateway.fetch_users(criteria)
        logger.info(f"Found {len(users)} filtered users")
        return UserHierarchy.from_users(users)


def format_hierarchy(hierarchy: UserHierarchy, indent_size: int = 2) -> str:
    """Format the hierarchy as an indented text tree."""
    lines = ["User Hierarchy", "=" * 50, ""]
    roots = [
        u for u in hierarchy.users
        if not u.manager_id or u.manager_id not in hierarchy.users_by_id
    ]
    visited = set()
    for root in roots:
        _format_user(hierarchy, root, lines, 0, indent_size, visited)
    return "\n".join(lines)


def _format_user(hierarchy: UserHierarchy, user: UserRecord, lines: List[str],
                 depth: int, indent_size: int, visited: set):
    """Recursively format a user and their direct reports."""
    if user.user_id in visited:
        return
    visited.add(user.user_id)
    indent = " " * (depth * indent_size)
    lines.append(f"{indent}{user.full_name} ({user.user_id}) role={user.role}")
    for sub in hierarchy.subordinates_of(user.user_id):
        _format_user(hierarchy, sub, lines, depth + 1, indent_size, visited)
