"""Conflict resolution and change detection for correlated pairs.

- ``decide_direction``: whole-artifact last-writer-wins using adjusted
  timestamps.  The clock offset applies to the remote timestamp only.
- ``FieldChanges``: diff builder.  Values are proposed against the target's
  current values; only differences are kept, and a write happens only when
  the result is ``dirty``.
- ``validate_and_save``: validate a remote item, log every rejected field,
  and save it.

All timestamps are expected to be timezone-aware UTC.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Protocol

from .errors import RemoteSaveError, RemoteValidationError
from .models import FieldIssue, RemoteItem, SyncDirection

if TYPE_CHECKING:
    from artifact_bridge.core.adapters import RemoteSystem

logger = logging.getLogger(__name__)

DEFAULT_GUARD_WINDOW = timedelta(minutes=5)


def decide_direction(
    remote_changed_at: datetime | None,
    local_changed_at: datetime | None,
    last_sync_at: datetime,
    clock_offset_hours: int | float = 0,
    guard_window: timedelta = DEFAULT_GUARD_WINDOW,
) -> SyncDirection:
    """Decide which side of a pair is written to the other.

    Remote is a candidate when ``remote + offset + guard > last_sync``,
    local when ``local > last_sync``.  With both candidates the later
    adjusted timestamp (remote without the guard) wins; ties favour remote.

    Returns:
        ``SyncDirection.NONE`` when neither side changed.
    """
    remote_adjusted = None
    if remote_changed_at is not None:
        remote_adjusted = remote_changed_at + timedelta(hours=clock_offset_hours)

    remote_candidate = (
        remote_adjusted is not None
        and remote_adjusted + guard_window > last_sync_at
    )
    local_candidate = (
        local_changed_at is not None and local_changed_at > last_sync_at
    )

    if remote_candidate and local_candidate:
        if (
            remote_adjusted is not None
            and local_changed_at is not None
            and local_changed_at > remote_adjusted
        ):
            return SyncDirection.LOCAL_WINS
        return SyncDirection.REMOTE_WINS
    if remote_candidate:
        return SyncDirection.REMOTE_WINS
    if local_candidate:
        return SyncDirection.LOCAL_WINS
    return SyncDirection.NONE


# ---------------------------------------------------------------------------
# Diff builder
# ---------------------------------------------------------------------------


class FieldTarget(Protocol):
    """Anything exposing named field access (artifacts and remote items)."""

    def get_field(self, name: str) -> Any: ...  # pragma: no cover

    def set_field(self, name: str, value: Any) -> None: ...  # pragma: no cover


class FieldChanges:
    """Collect the field values that actually differ from the target.

    Usage:
        changes = FieldChanges()
        changes.propose("title", item.title, artifact.name)
        changes.propose_all(item, custom_values)
        if changes.dirty:
            changes.apply(item)
    """

    def __init__(self) -> None:
        self._changes: dict[str, Any] = {}

    def propose(self, name: str, current: Any, new: Any) -> bool:
        """Record *new* for *name* if it differs from *current*.

        Returns:
            True if the value was recorded as a change.
        """
        if current == new:
            self._changes.pop(name, None)
            return False
        self._changes[name] = new
        return True

    def propose_all(
        self, target: FieldTarget, proposed: Mapping[str, Any]
    ) -> None:
        """Propose every value in *proposed* against *target*'s fields."""
        for name, value in proposed.items():
            self.propose(name, target.get_field(name), value)

    @property
    def dirty(self) -> bool:
        return bool(self._changes)

    def apply(self, target: FieldTarget) -> None:
        for name, value in self._changes.items():
            target.set_field(name, value)

    def as_dict(self) -> dict[str, Any]:
        return dict(self._changes)

    def __contains__(self, name: object) -> bool:
        return name in self._changes

    def __iter__(self) -> Iterator[str]:
        return iter(self._changes)

    def __len__(self) -> int:
        return len(self._changes)

    def __repr__(self) -> str:
        return f"FieldChanges({sorted(self._changes)})"


# ---------------------------------------------------------------------------
# Validated remote writes
# ---------------------------------------------------------------------------


def _log_issues(
    issues: list[FieldIssue],
    project_id: int | None,
    artifact_id: Any,
    level: int,
) -> None:
    for issue in issues:
        logger.log(
            level,
            "Field '%s' with value '%s' is %s (project %s, artifact %s)%s",
            issue.field,
            issue.value,
            issue.status,
            project_id,
            artifact_id,
            f"; allowed values: {', '.join(issue.allowed_values)}"
            if issue.allowed_values
            else "",
            extra={
                "project_id": project_id,
                "artifact_id": artifact_id,
                "field": issue.field,
            },
        )


def validate_and_save(
    remote: RemoteSystem,
    item: RemoteItem,
    *,
    project_id: int | None = None,
    artifact_id: Any = None,
    level: int = logging.ERROR,
) -> RemoteItem:
    """Validate *item* and save it to the remote tracker.

    Args:
        remote: Remote system adapter.
        item: Item to save (draft or existing).
        project_id: Local project id, for log context.
        artifact_id: Local artifact id, for log context.
        level: Log level used for each rejected field.

    Returns:
        The saved item as returned by the adapter.

    Raises:
        RemoteValidationError: If validation rejected any field; nothing
            was written.
        RemoteSaveError: If the save itself failed.
    """
    issues = list(remote.validate(item))
    if issues:
        _log_issues(issues, project_id, artifact_id, level)
        raise RemoteValidationError(
            f"Remote item failed validation on {len(issues)} field(s)",
            issues,
            project_id=project_id,
            artifact_id=artifact_id,
            field=issues[0].field,
        )

    try:
        return remote.save(item)
    except Exception as exc:
        issues = list(getattr(exc, "issues", None) or [])
        if issues:
            _log_issues(issues, project_id, artifact_id, level)
        else:
            logger.log(
                level,
                "Unable to save remote item %s: %s",
                item.item_id,
                exc,
                extra={"project_id": project_id, "artifact_id": artifact_id},
            )
        raise RemoteSaveError(
            f"Unable to save remote item {item.item_id}: {exc}",
            issues,
            project_id=project_id,
            artifact_id=artifact_id,
        ) from exc
