"""Contracts for the local and remote system adapters.

The engine never talks to a transport directly.  Concrete adapters wrap
whatever client library each system ships and satisfy these protocols.

Adapters report a missing object by returning ``None``.  Authentication and
project access failures are raised as ``AuthenticationError`` and
``ProjectConnectionError`` from ``artifact_bridge.sync.errors``.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import Protocol

from artifact_bridge.sync.models import (
    ArtifactType,
    CorrelationEntry,
    CustomPropertyDefinition,
    FieldDefinition,
    FieldIssue,
    LocalArtifact,
    LocalComment,
    LocalRelease,
    LocalUser,
    MappingScope,
    RemoteIdentity,
    RemoteItem,
    RemoteIteration,
)

# ---------------------------------------------------------------------------
# Local system (owns the mapping repository)
# ---------------------------------------------------------------------------


class LocalSystem(Protocol):
    """Test-management system that also stores the correlation ledger."""

    def authenticate(self) -> None:
        """Open a session.

        Raises:
            AuthenticationError: If the credentials are rejected.
        """
        ...  # pragma: no cover

    def connect_to_project(self, project_id: int) -> None:
        """Select the project subsequent calls operate on.

        Raises:
            ProjectConnectionError: If the project cannot be opened.
        """
        ...  # pragma: no cover

    def list_new_since(
        self, artifact_type: ArtifactType, since: datetime
    ) -> list[LocalArtifact]:
        """Artifacts of *artifact_type* created after *since*."""
        ...  # pragma: no cover

    def get_by_id(
        self, artifact_type: ArtifactType, artifact_id: int
    ) -> LocalArtifact | None: ...  # pragma: no cover

    def create(self, artifact: LocalArtifact) -> LocalArtifact:
        """Persist a new artifact and return it with its id assigned."""
        ...  # pragma: no cover

    def update(self, artifact: LocalArtifact) -> None: ...  # pragma: no cover

    def create_release(
        self, release: LocalRelease
    ) -> LocalRelease: ...  # pragma: no cover

    def list_comments(
        self, artifact_type: ArtifactType, artifact_id: int
    ) -> list[LocalComment]: ...  # pragma: no cover

    def add_comments(
        self,
        artifact_type: ArtifactType,
        artifact_id: int,
        comments: list[LocalComment],
    ) -> None: ...  # pragma: no cover

    def list_custom_properties(
        self, artifact_type: ArtifactType
    ) -> list[CustomPropertyDefinition]: ...  # pragma: no cover

    def list_mappings(
        self, scope: MappingScope
    ) -> list[CorrelationEntry]: ...  # pragma: no cover

    def add_mappings(
        self, scope: MappingScope, entries: Iterable[CorrelationEntry]
    ) -> None:
        """Append entries to the mapping repository (no deduplication)."""
        ...  # pragma: no cover

    def get_user(self, user_id: int) -> LocalUser | None: ...  # pragma: no cover

    def get_user_by_login(
        self, login: str
    ) -> LocalUser | None: ...  # pragma: no cover

    def artifact_url(
        self, artifact_type: ArtifactType, artifact_id: int
    ) -> str:
        """Web link to the artifact, used as a back-reference remotely."""
        ...  # pragma: no cover


# ---------------------------------------------------------------------------
# Remote system (work-item tracker)
# ---------------------------------------------------------------------------


class RemoteSystem(Protocol):
    """Work-item tracker holding the remote side of each pair."""

    def authenticate(self) -> None: ...  # pragma: no cover

    def has_project(self, project_key: str) -> bool: ...  # pragma: no cover

    def query_changed_since(
        self, since: datetime, project_key: str
    ) -> list[RemoteItem]:
        """Items in *project_key* created or changed after *since*."""
        ...  # pragma: no cover

    def get_by_id(self, item_id: int) -> RemoteItem | None: ...  # pragma: no cover

    def create(
        self, project_key: str, type_name: str, fields: dict | None = None
    ) -> RemoteItem:
        """Return an unsaved draft item; nothing is persisted until ``save``."""
        ...  # pragma: no cover

    def validate(self, item: RemoteItem) -> list[FieldIssue]:
        """Return the fields the tracker would reject; empty when valid."""
        ...  # pragma: no cover

    def save(self, item: RemoteItem) -> RemoteItem:
        """Persist *item* and return it with ``item_id`` assigned.

        Raises:
            RemoteSaveError: With per-field issues when the tracker says
                which fields it rejected.
        """
        ...  # pragma: no cover

    def list_field_definitions(
        self, project_key: str, type_name: str
    ) -> list[FieldDefinition]: ...  # pragma: no cover

    def find_iteration(
        self,
        project_key: str,
        node_id: int | None = None,
        uri: str | None = None,
    ) -> RemoteIteration | None:
        """Search the project's iteration tree by node id or URI."""
        ...  # pragma: no cover

    def create_iteration(self, project_key: str, name: str) -> str:
        """Create an iteration under the project root and return its URI.

        The new node is not guaranteed to be visible to ``find_iteration``
        right away.
        """
        ...  # pragma: no cover

    def list_users(self) -> list[RemoteIdentity]: ...  # pragma: no cover
