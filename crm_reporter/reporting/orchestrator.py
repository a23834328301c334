"""
Hierarchy Report Orchestrator

Walks the user hierarchy once per run:

1. Every HPR (seed) user not yet processed starts a pass with a fresh
   lookup cache and collects rows for itself and its direct reports.
2. The seed's report is emitted.
3. The pass climbs the management chain. Each manager not yet processed
   collects its own rows plus those of its unprocessed direct reports,
   merges them into the running set, and gets a report with the full
   accumulated set.
4. The climb stops at a missing manager, a processed manager (this also
   breaks cycles) or a manager id that is not in the index.

Failures while processing one seed or chain node are logged and the run
moves on to the next seed user.
"""
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Dict, Any, Optional, Iterator

from config.settings import ReportConfig
from crm_reporter.core.error_taxonomy import (
    ClassifiedError,
    RecoverableUserError,
    classify_error,
    summarize_errors,
)
from crm_reporter.data.lookup_cache import LookupCache
from crm_reporter.data.records import RowSet
from crm_reporter.data.user_hierarchy import UserFilter, UserHierarchy, UserHierarchyBuilder, UserRecord
from crm_reporter.reporting.aggregator import ProductAggregator
from crm_reporter.reporting.record_expander import RecordExpander
from crm_reporter.reporting.report_emitter import EmitResult

logger = logging.getLogger(__name__)


class TraversalState(Enum):
    """Where a seed user's pass is."""
    START = "start"
    COLLECT_SELF_AND_SUBORDINATES = "collect_self_and_subordinates"
    EMIT = "emit"
    CLIMB = "climb"
    DONE = "done"


class ProcessedSet:
    """User ids already handled in this run. Only grows."""

    def __init__(self):
        self._ids: Dict[str, None] = {}

    def claim(self, user_id: str) -> bool:
        """Mark a user processed; False when it already was."""
        if user_id in self._ids:
            return False
        self._ids[user_id] = None
        return True

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._ids

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._ids))

    def __len__(self) -> int:
        return len(self._ids)


@dataclass
class RunSummary:
    """What a run did."""
    seed_count: int = 0
    reports: List[EmitResult] = field(default_factory=list)
    skipped_empty: List[str] = field(default_factory=list)
    failed_users: List[str] = field(default_factory=list)
    errors: List[ClassifiedError] = field(default_factory=list)
    processed_ids: List[str] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    elapsed_seconds: float = 0.0

    @property
    def reports_emitted(self) -> int:
        return sum(1 for r in self.reports if r.ok)

    @property
    def reports_failed(self) -> int:
        return sum(1 for r in self.reports if not r.ok)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "elapsed_seconds": round(self.elapsed_seconds, 3),
            "seed_count": self.seed_count,
            "processed_users": len(self.processed_ids),
            "reports_emitted": self.reports_emitted,
            "reports_failed": self.reports_failed,
            "skipped_empty": len(self.skipped_empty),
            "failed_users": list(self.failed_users),
            "errors_by_category": summarize_errors(self.errors),
        }


class HierarchyReportOrchestrator:
    """
    Drives one report run over the whole user hierarchy.

    Owns the processed set and the per-pass lookup cache; the cache is reset
    only here, before each seed user's pass.
    """

    def __init__(self, gateway, emitter, report_config: Optional[ReportConfig] = None,
                 cache: Optional[LookupCache] = None):
        self.gateway = gateway
        self.emitter = emitter
        self.report_config = report_config or ReportConfig()
        self.cache = cache or LookupCache(gateway)

    def run(self) -> RunSummary:
        """
        Fetch users, build the hierarchy and process every seed user.

        A failure to fetch the user list propagates; everything after that
        is isolated per seed user.
        """
        criteria = UserFilter(
            segment=self.report_config.segment,
            lob=self.report_config.lob,
            roles=tuple(self.report_config.roles),
        )
        hierarchy = UserHierarchyBuilder(self.gateway).build(criteria)
        return self.run_hierarchy(hierarchy)

    def run_hierarchy(self, hierarchy: UserHierarchy) -> RunSummary:
        """Process every seed user of an already built hierarchy."""
        started = time.perf_counter()
        summary = RunSummary()
        processed = ProcessedSet()
        aggregator = ProductAggregator(
            self.gateway,
            hierarchy,
            self.cache,
            RecordExpander(self.cache, self.report_config.product_entity),
        )

        seeds = hierarchy.seeds(self.report_config.seed_role)
        summary.seed_count = len(seeds)
        logger.info(f"Processing {len(seeds)} HPR users")

        for seed in seeds:
            self.process_seed(seed, hierarchy, aggregator, processed, summary)

        summary.processed_ids = list(processed)
        summary.elapsed_seconds = time.perf_counter() - started
        logger.info(
            f"Run finished: {summary.reports_emitted} report(s) emitted, "
            f"{summary.reports_failed} failed, {len(summary.failed_users)} user failure(s), "
            f"{len(processed)} user(s) processed in {summary.elapsed_seconds:.1f}s"
        )
        return summary

    def process_seed(
        self,
        seed: UserRecord,
        hierarchy: UserHierarchy,
        aggregator: ProductAggregator,
        processed: ProcessedSet,
        summary: RunSummary,
    ) -> TraversalState:
        """
        Run one seed user's pass.

        Returns:
            The state the pass ended in (DONE, or where it stopped)
        """
        if not processed.claim(seed.user_id):
            return TraversalState.DONE

        state = TraversalState.START
        node = seed
        try:
            self.cache.reset()

            state = TraversalState.COLLECT_SELF_AND_SUBORDINATES
            rows = aggregator.products_for_user_and_subordinates(seed, processed)
            if not rows:
                logger.info(f"No products for {seed.full_name} or direct reports; skipping")
                summary.skipped_empty.append(seed.user_id)
                return TraversalState.DONE

            state = TraversalState.EMIT
            self._emit(seed, rows, summary)

            state = TraversalState.CLIMB
            accumulated = rows
            while True:
                manager = self._next_manager(node, hierarchy, processed)
                if manager is None:
                    break
                node = manager
                manager_rows = aggregator.products_for_user_and_subordinates(manager, processed)
                accumulated = accumulated.union(manager_rows)
                self._emit(manager, accumulated, summary)

            state = TraversalState.DONE
            return state

        except Exception as e:
            error = e if isinstance(e, RecoverableUserError) else RecoverableUserError(
                f"Error processing user {node.full_name}: {e}",
                context={"seed_id": seed.user_id},
            )
            classified = classify_error(error, context={"user_id": node.user_id, "state": state.name})
            summary.failed_users.append(node.user_id)
            summary.errors.append(classified)
            logger.error(f"Error processing user {node.full_name} during {state.name}: {e}", exc_info=True)
            return state

    @staticmethod
    def _next_manager(
        current: UserRecord,
        hierarchy: UserHierarchy,
        processed: ProcessedSet,
    ) -> Optional[UserRecord]:
        """Claim and return the next manager up the chain, or None when the climb ends."""
        manager_id = current.manager_id
        if not manager_id or manager_id in processed:
            return None

        manager = hierarchy.record_of(manager_id)
        if manager is None:
            logger.warning(
                f"Manager {manager_id} of {current.full_name} is not in the user list; "
                f"stopping this chain"
            )
            return None

        processed.claim(manager.user_id)
        return manager

    def _emit(self, user: UserRecord, rows: RowSet, summary: RunSummary) -> EmitResult:
        result = self.emitter.emit(rows.to_list(), f"{user.full_name}'s Team", user.user_id)
        summary.reports.append(result)
        if not result.ok:
            summary.errors.append(result.error)
        return result
