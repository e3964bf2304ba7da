"""Correlation ledger: the in-memory working set of mapping entries.

The authoritative store is the local system's mapping repository.  The
ledger caches one slice per ``MappingScope`` and keeps a run-local buffer of
entries created during the current phase that have not been written yet.

Lookups go persisted ledger -> pending buffer and report the outcome as
``Found``, ``PendingThisRun`` or ``NotFound``.  A miss is never an error.

Usage:
    ledger = MappingLedger(local)
    resolution = ledger.resolve_internal(scope, release_id, project_id=7)
    if isinstance(resolution, NotFound):
        ...
        ledger.add_pending(scope, new_entry)
    ledger.flush_pending()
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Union

from .models import CorrelationEntry, MappingScope

if TYPE_CHECKING:
    from artifact_bridge.core.adapters import LocalSystem

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Resolution outcomes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Found:
    """Entry exists in the persisted ledger."""

    entry: CorrelationEntry


@dataclass(frozen=True)
class PendingThisRun:
    """Entry was created earlier in this run and is not persisted yet."""

    entry: CorrelationEntry


@dataclass(frozen=True)
class NotFound:
    """No entry anywhere; the caller decides whether to create one."""


Resolution = Union[Found, PendingThisRun, NotFound]


# ---------------------------------------------------------------------------
# Lookup helpers
# ---------------------------------------------------------------------------


def find_by_internal_id(
    entries: Iterable[CorrelationEntry],
    internal_id: int,
    project_id: int | None = None,
) -> CorrelationEntry | None:
    """First entry for *internal_id*; ``project_id=None`` matches any project."""
    for entry in entries:
        if entry.internal_id != internal_id:
            continue
        if project_id is not None and entry.project_id != project_id:
            continue
        return entry
    return None


def find_by_external_key(
    entries: Iterable[CorrelationEntry],
    external_key: str,
    project_id: int | None = None,
    primary_only: bool = False,
) -> CorrelationEntry | None:
    """First entry for *external_key*, optionally restricted to primaries."""
    for entry in entries:
        if entry.external_key != external_key:
            continue
        if project_id is not None and entry.project_id != project_id:
            continue
        if primary_only and not entry.primary:
            continue
        return entry
    return None


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


class MappingLedger:
    """Working set of correlation entries backed by the local system.

    Args:
        store: Local system adapter providing ``list_mappings`` and
            ``add_mappings``.
    """

    def __init__(self, store: LocalSystem) -> None:
        self._store = store
        self._entries: dict[MappingScope, list[CorrelationEntry]] = {}
        self._pending: dict[MappingScope, list[CorrelationEntry]] = {}

    # ------------------------------------------------------------------
    # Persisted entries
    # ------------------------------------------------------------------

    def entries(self, scope: MappingScope) -> list[CorrelationEntry]:
        """Cached entries for *scope*, loading them on first access."""
        if scope not in self._entries:
            self.refresh(scope)
        return self._entries[scope]

    def refresh(self, scope: MappingScope) -> None:
        """Reload *scope* from the authoritative store."""
        self._entries[scope] = list(self._store.list_mappings(scope))
        logger.debug(
            "Loaded %d mapping(s) for %s", len(self._entries[scope]), scope
        )

    def refresh_all(self) -> None:
        """Reload every scope loaded so far."""
        for scope in list(self._entries):
            self.refresh(scope)

    def find_by_internal_id(
        self,
        scope: MappingScope,
        internal_id: int,
        project_id: int | None = None,
    ) -> CorrelationEntry | None:
        return find_by_internal_id(
            self.entries(scope), internal_id, project_id
        )

    def find_by_external_key(
        self,
        scope: MappingScope,
        external_key: str,
        project_id: int | None = None,
        primary_only: bool = False,
    ) -> CorrelationEntry | None:
        return find_by_external_key(
            self.entries(scope), external_key, project_id, primary_only
        )

    def record_new(
        self, scope: MappingScope, entries: Iterable[CorrelationEntry]
    ) -> int:
        """Append *entries* to the store without deduplication.

        The cached slice is not touched; call ``refresh`` afterwards.

        Returns:
            Number of entries written.
        """
        batch = list(entries)
        if not batch:
            return 0
        self._store.add_mappings(scope, batch)
        logger.info("Recorded %d new mapping(s) for %s", len(batch), scope)
        return len(batch)

    # ------------------------------------------------------------------
    # Run-local pending buffer
    # ------------------------------------------------------------------

    def add_pending(
        self, scope: MappingScope, entry: CorrelationEntry
    ) -> None:
        self._pending.setdefault(scope, []).append(entry)

    def pending(self, scope: MappingScope) -> list[CorrelationEntry]:
        return list(self._pending.get(scope, []))

    def flush_pending(self, scope: MappingScope | None = None) -> int:
        """Write pending entries to the store and refresh their scopes.

        Args:
            scope: Only flush this scope; ``None`` flushes every scope.

        Returns:
            Total number of entries written.
        """
        scopes = [scope] if scope is not None else list(self._pending)
        written = 0
        for current in scopes:
            batch = self._pending.pop(current, [])
            if not batch:
                continue
            written += self.record_new(current, batch)
            self.refresh(current)
        return written

    # ------------------------------------------------------------------
    # Three-tier resolution
    # ------------------------------------------------------------------

    def resolve_internal(
        self,
        scope: MappingScope,
        internal_id: int,
        project_id: int | None = None,
    ) -> Resolution:
        entry = self.find_by_internal_id(scope, internal_id, project_id)
        if entry is not None:
            return Found(entry)
        entry = find_by_internal_id(
            self._pending.get(scope, []), internal_id, project_id
        )
        if entry is not None:
            return PendingThisRun(entry)
        return NotFound()

    def resolve_external(
        self,
        scope: MappingScope,
        external_key: str,
        project_id: int | None = None,
        primary_only: bool = False,
    ) -> Resolution:
        entry = self.find_by_external_key(
            scope, external_key, project_id, primary_only
        )
        if entry is not None:
            return Found(entry)
        entry = find_by_external_key(
            self._pending.get(scope, []),
            external_key,
            project_id,
            primary_only,
        )
        if entry is not None:
            return PendingThisRun(entry)
        return NotFound()
