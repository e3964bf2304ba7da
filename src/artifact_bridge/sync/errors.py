"""Exception hierarchy for the reconciliation engine.

Errors are grouped by how far they abort processing:

- ``FatalRunError``: the whole run stops and reports ``RunStatus.ERROR``.
- ``ProjectConnectionError``: the current project is skipped.
- ``ArtifactSyncError``: the current artifact is skipped.

Every error carries the project, artifact and field it concerns so the log
line alone is enough to act on.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import FieldIssue


class SyncError(Exception):
    """Base class for all reconciliation errors."""

    def __init__(
        self,
        message: str,
        *,
        project_id: int | None = None,
        artifact_id: int | str | None = None,
        field: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.project_id = project_id
        self.artifact_id = artifact_id
        self.field = field

    @property
    def context(self) -> dict[str, object]:
        """Non-empty identity attributes, for structured logging."""
        ctx = {
            "project_id": self.project_id,
            "artifact_id": self.artifact_id,
            "field": self.field,
        }
        return {k: v for k, v in ctx.items() if v is not None}

    def __str__(self) -> str:
        if not self.context:
            return self.message
        details = ", ".join(f"{k}={v}" for k, v in self.context.items())
        return f"{self.message} ({details})"


# ---------------------------------------------------------------------------
# Run and project level
# ---------------------------------------------------------------------------


class FatalRunError(SyncError):
    """The run cannot continue at all."""


class AuthenticationError(FatalRunError):
    """Authentication against one of the two systems failed."""


class ProjectConnectionError(SyncError):
    """A single project could not be opened on one of the two systems."""


# ---------------------------------------------------------------------------
# Artifact level
# ---------------------------------------------------------------------------


class ArtifactSyncError(SyncError):
    """A single artifact cannot be synchronized this pass."""


class MappingNotFoundError(ArtifactSyncError):
    """A required field value has no correlation entry."""


class MalformedCompositeKeyError(ArtifactSyncError):
    """A composite ``state+reason`` key is missing its separator."""


class ContainerTimeoutError(ArtifactSyncError):
    """A newly created container never became visible."""


class RemoteValidationError(ArtifactSyncError):
    """The remote tracker rejected field values before a save."""

    def __init__(
        self,
        message: str,
        issues: list[FieldIssue] | None = None,
        **kwargs,
    ) -> None:
        super().__init__(message, **kwargs)
        self.issues = list(issues or [])


class RemoteSaveError(ArtifactSyncError):
    """A remote save failed after passing validation.

    Adapters raise this with per-field ``issues`` when the remote side
    reports which fields it rejected.
    """

    def __init__(
        self,
        message: str,
        issues: list[FieldIssue] | None = None,
        **kwargs,
    ) -> None:
        super().__init__(message, **kwargs)
        self.issues = list(issues or [])
