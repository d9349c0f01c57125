# src/crewguard/engine/service.py
"""
@brief
Engine facade exposing the four caller-facing operations.

@details
Wires the validator, scanner, cache and advisor around one store adapter,
one configuration and one injected clock:

    validate_assignment(phase_id, employee_id, day, hours) -> ValidationResult
    scan_all_conflicts(scope=None)                          -> list[Conflict]
    get_resolution_suggestions(conflict)                    -> list[Suggestion]
    clear_cache()                                           -> None

The engine never writes to the store. Callers that mutate assignments,
phases or employees must call `clear_cache()` afterwards, or accept stale
scan results until they do.
"""

from __future__ import annotations

import logging
from datetime import date

from crewguard.engine.advisor import ResolutionAdvisor
from crewguard.engine.cache import ConflictCache
from crewguard.engine.scanner import ConflictScanner
from crewguard.engine.snapshot import Clock, utc_now
from crewguard.engine.validator import AssignmentValidator
from crewguard.schemas.models import (
    Conflict,
    EngineConfig,
    ScopeFilter,
    Suggestion,
    ValidationResult,
)
from crewguard.store.base import AssignmentStore

logger = logging.getLogger(__name__)


class ConflictEngine:
    def __init__(
        self,
        store: AssignmentStore,
        cfg: EngineConfig | None = None,
        clock: Clock = utc_now,
        cache: ConflictCache | None = None,
    ) -> None:
        self.store = store
        self.cfg = cfg or EngineConfig()
        self.clock = clock
        self.cache = cache or ConflictCache(clock=clock, max_entries=self.cfg.cache_max_entries)
        self.validator = AssignmentValidator(store, self.cfg, clock)
        self.scanner = ConflictScanner(store, self.cache, self.cfg, clock)
        self.advisor = ResolutionAdvisor(store, self.cfg, clock)

    def validate_assignment(
        self, phase_id: str, employee_id: str, day: date, hours: float
    ) -> ValidationResult:
        """Pre-commit check of one proposed assignment; never uses the cache."""
        return self.validator.validate(phase_id, employee_id, day, hours)

    def scan_all_conflicts(
        self, scope: ScopeFilter | None = None, *, force_refresh: bool = False
    ) -> list[Conflict]:
        """Full audit over `scope` (default look-back scope when None), cached per scope."""
        return self.scanner.scan(scope, force_refresh=force_refresh)

    def get_resolution_suggestions(self, conflict: Conflict) -> list[Suggestion]:
        return self.advisor.suggest(conflict)

    def clear_cache(self) -> None:
        """Drop every cached scan result unconditionally."""
        self.cache.clear()
        logger.info("Conflict cache cleared")

    def on_store_change(self, kind: str, entity_id: str) -> None:
        """
        @brief
        Invalidation hook for stores that publish mutations.

        @details
        Matches the listener signature of InMemoryAssignmentStore.add_listener;
        any change clears the whole cache.
        """
        logger.debug("Store change (%s %s): clearing conflict cache", kind, entity_id)
        self.cache.clear()
