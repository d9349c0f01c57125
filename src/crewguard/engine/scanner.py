# src/crewguard/engine/scanner.py
from __future__ import annotations

import logging
import time
from collections.abc import Iterable
from datetime import timedelta

from crewguard.engine.cache import ConflictCache
from crewguard.engine.rules import EVALUATORS
from crewguard.engine.snapshot import Clock, WorkingSetBuilder, local_today, utc_now
from crewguard.schemas.models import Conflict, EngineConfig, ScopeFilter
from crewguard.store.base import AssignmentStore

logger = logging.getLogger(__name__)


def deduplicate(conflicts: Iterable[Conflict]) -> list[Conflict]:
    """
    @brief
    Merge conflicts describing the same finding.

    @details
    Two conflicts are the same when `(type, sorted(entity_id ∪ related))`
    match. The survivor is the higher-severity one (first seen on ties) and
    its `related_entities` absorb those of the duplicate.
    """
    merged: dict[tuple, Conflict] = {}
    for conflict in conflicts:
        key = conflict.dedup_key
        kept = merged.get(key)
        if kept is None:
            merged[key] = conflict
            continue
        winner = conflict if conflict.severity.rank > kept.severity.rank else kept
        related = (kept.related_entities | conflict.related_entities) - {winner.entity_id}
        merged[key] = winner.model_copy(update={"related_entities": frozenset(related)})
    return list(merged.values())


def sort_conflicts(conflicts: Iterable[Conflict]) -> list[Conflict]:
    """Severity descending, then detected_at descending, then a stable identity key."""
    ordered = sorted(conflicts, key=lambda c: (c.type.value, c.entity_id, c.id))
    ordered.sort(key=lambda c: c.detected_at, reverse=True)
    ordered.sort(key=lambda c: c.severity.rank, reverse=True)
    return ordered


class ConflictScanner:
    """
    @brief
    Full conflict audit over the active working set.

    @details
    Loads assignments within the scope (default: the configured look-back
    window up to the future), plus every active phase and its full crew,
    runs all rule evaluators and writes the deduplicated, sorted result
    through to the cache under the scope fingerprint.
    The scanner never writes to the store.
    """

    def __init__(
        self,
        store: AssignmentStore,
        cache: ConflictCache,
        cfg: EngineConfig,
        clock: Clock = utc_now,
    ) -> None:
        self.store = store
        self.cache = cache
        self.cfg = cfg
        self.clock = clock

    def default_scope(self) -> ScopeFilter:
        today = local_today(self.clock(), self.cfg.timezone)
        return ScopeFilter(since=today - timedelta(days=self.cfg.lookback_days))

    def scan(
        self, scope: ScopeFilter | None = None, *, force_refresh: bool = False
    ) -> list[Conflict]:
        """
        @brief
        Return all conflicts for `scope`, from cache when available.

        @params
            scope : ScopeFilter | None
                Query scope; None means the default look-back scope, cached
                under the "all" fingerprint.
            force_refresh : bool
                Recompute even when a cached entry exists.

        @returns
            Deduplicated conflicts sorted CRITICAL→LOW, newest first on ties.

        @raises
            NotFoundError
                An assignment references an id the store cannot resolve.
            StoreUnavailableError
                The store failed to return data.
        """
        key = scope.fingerprint() if scope is not None else "all"

        # (1) Serve from cache unless a refresh is requested
        if not force_refresh:
            entry = self.cache.get(key)
            if entry is not None:
                logger.debug("Scan cache hit for scope %s (computed %s)", key, entry.computed_at)
                return list(entry.conflicts)

        # (2) Compute and write through
        conflicts = self.compute(scope or self.default_scope())
        self.cache.put(key, conflicts)
        return conflicts

    def compute(self, scope: ScopeFilter) -> list[Conflict]:
        """Run every evaluator over a freshly loaded working set; no cache access."""
        t0 = time.perf_counter()
        builder = WorkingSetBuilder(self.store, self.clock, self.cfg.timezone)

        # (1) Load the working set
        assignments = builder.assignments(scope)
        phases = builder.active_phases(scope)
        phase_assignments = {
            phase.id: builder.assignments(ScopeFilter(phase_id=phase.id)) for phase in phases
        }
        ws = builder.build(assignments, phases, phase_assignments)

        # (2) Run evaluators in a fixed order
        found: list[Conflict] = []
        for ctype, evaluator in EVALUATORS.items():
            results = evaluator(ws, self.cfg)
            logger.debug("Evaluator %s: %d finding(s)", ctype.value, len(results))
            found.extend(results)

        # (3) Deduplicate and rank
        conflicts = sort_conflicts(deduplicate(found))
        logger.info(
            "Conflict scan complete: %d assignment(s), %d phase(s), %d conflict(s) in %.3f s",
            len(ws.assignments),
            len(phases),
            len(conflicts),
            time.perf_counter() - t0,
        )
        return conflicts
