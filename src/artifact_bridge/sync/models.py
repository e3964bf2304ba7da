"""Pydantic models for the reconciliation engine.

Defines the data contracts shared by all sync modules:

- ``ArtifactType`` / ``ArtifactField``: Local artifact type and field ids.
- ``MappingScope``: Which slice of the correlation ledger an entry lives in.
- ``CorrelationEntry``: One link between a local id and a remote key.
- ``LocalArtifact`` / ``RemoteItem``: The two sides of a correlated pair.
- ``LocalRelease`` / ``RemoteIteration``: Container entities.
- ``SyncResult`` / ``SyncReport``: Outcome of a reconciliation run.

Correlation entries and scopes are frozen.  Artifacts are mutable because
field changes are applied to them in place before they are written back.
"""

from __future__ import annotations

import re
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator


class ArtifactType(int, Enum):
    """Local artifact type ids."""

    INCIDENT = 3
    RELEASE = 4
    TASK = 6


class ArtifactField(int, Enum):
    """Local enumerated field ids that carry value mappings."""

    INCIDENT_SEVERITY = 1
    INCIDENT_PRIORITY = 2
    INCIDENT_STATUS = 3
    INCIDENT_TYPE = 4
    TASK_STATUS = 57
    TASK_PRIORITY = 59


class CustomPropertyType(int, Enum):
    """Kinds of local custom property."""

    TEXT = 1
    LIST = 2


class SyncDirection(str, Enum):
    """Which side's state is written to the other for one pair."""

    NONE = "none"
    LOCAL_WINS = "local-wins"
    REMOTE_WINS = "remote-wins"


class RunStatus(str, Enum):
    """Overall outcome of a run."""

    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class SyncAction(str, Enum):
    """What happened to one artifact during a run."""

    SKIP = "skip"
    CREATE_REMOTE = "create_remote"
    CREATE_LOCAL = "create_local"
    PUSH = "push"
    PULL = "pull"
    CREATE_CONTAINER = "create_container"


# ---------------------------------------------------------------------------
# Correlation ledger
# ---------------------------------------------------------------------------


class MappingScope(BaseModel):
    """Identifies one slice of the correlation ledger.

    Use the class-method constructors rather than building scopes by hand.

    Attributes:
        kind: Scope family (``projects``, ``users``, ``artifacts``,
            ``field_values``, ``custom_properties`` or
            ``custom_property_values``).
        artifact_type: Artifact type for artifact and custom-property scopes.
        field_id: Field id for field-value scopes.
        property_id: Custom property id for custom-property value scopes.
    """

    kind: str
    artifact_type: ArtifactType | None = None
    field_id: int | None = None
    property_id: int | None = None

    model_config = {"frozen": True}

    @classmethod
    def projects(cls) -> MappingScope:
        return cls(kind="projects")

    @classmethod
    def users(cls) -> MappingScope:
        return cls(kind="users")

    @classmethod
    def artifacts(cls, artifact_type: ArtifactType) -> MappingScope:
        return cls(kind="artifacts", artifact_type=artifact_type)

    @classmethod
    def field_values(cls, field: ArtifactField) -> MappingScope:
        return cls(kind="field_values", field_id=int(field))

    @classmethod
    def custom_properties(cls, artifact_type: ArtifactType) -> MappingScope:
        return cls(kind="custom_properties", artifact_type=artifact_type)

    @classmethod
    def custom_property_values(
        cls, artifact_type: ArtifactType, property_id: int
    ) -> MappingScope:
        return cls(
            kind="custom_property_values",
            artifact_type=artifact_type,
            property_id=property_id,
        )

    @property
    def is_project_agnostic(self) -> bool:
        """True for scopes whose entries have no project partition."""
        return self.kind in ("projects", "users")

    def __str__(self) -> str:
        parts = [self.kind]
        if self.artifact_type is not None:
            parts.append(self.artifact_type.name.lower())
        if self.field_id is not None:
            parts.append(f"field={self.field_id}")
        if self.property_id is not None:
            parts.append(f"property={self.property_id}")
        return ":".join(parts)


class CorrelationEntry(BaseModel):
    """Link between a local id and a remote key.

    Attributes:
        project_id: Local project id, or ``None`` in project-agnostic scopes.
        internal_id: Local id (artifact, value, user or project id).
        external_key: Remote key (item id, value name, display name...).
        primary: Whether this is the canonical entry for ``internal_id``.
    """

    project_id: int | None = None
    internal_id: int
    external_key: str
    primary: bool = True

    model_config = {"frozen": True}


class ProjectContext(BaseModel):
    """A local project and the remote project it is mapped to."""

    project_id: int
    project_key: str

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Local side
# ---------------------------------------------------------------------------

_SLOT_PATTERN = re.compile(r"^(TEXT|LIST)_(0[1-9]|10)$")


def validate_slot(slot: str) -> str:
    """Return *slot* if it names a custom property slot, else raise."""
    if not _SLOT_PATTERN.match(slot):
        raise ValueError(
            f"Invalid custom property slot '{slot}': "
            "expected TEXT_01..TEXT_10 or LIST_01..LIST_10"
        )
    return slot


class LocalUser(BaseModel):
    user_id: int
    login: str
    full_name: str = ""

    model_config = {"frozen": True}


class LocalComment(BaseModel):
    """Incident resolution or task comment on the local side."""

    text: str
    author_id: int | None = None
    created_at: datetime | None = None

    model_config = {"frozen": True}


class CustomPropertyDefinition(BaseModel):
    """A custom property configured for a local artifact type.

    Attributes:
        property_id: Local custom property id.
        slot: Slot the value is stored in, e.g. ``LIST_03``.
        property_type: TEXT or LIST.
        name: Display name.
    """

    property_id: int
    slot: str
    property_type: CustomPropertyType
    name: str = ""

    model_config = {"frozen": True}

    @field_validator("slot")
    @classmethod
    def _check_slot(cls, value: str) -> str:
        return validate_slot(value)


class LocalRelease(BaseModel):
    """Release (container) on the local side."""

    release_id: int | None = None
    project_id: int
    name: str
    version_number: str
    active: bool = True
    start_date: datetime | None = None
    end_date: datetime | None = None
    creator_id: int | None = None


class LocalArtifact(BaseModel):
    """Incident or task on the local side.

    Incidents use ``resolved_release_id`` / ``detected_release_id``; tasks
    use ``release_id``.  Effort values are in minutes.  Custom property
    values live in ``custom_properties`` keyed by slot name.
    """

    kind: ArtifactType
    artifact_id: int | None = None
    project_id: int
    name: str = ""
    description: str = ""
    type_id: int | None = None
    status_id: int | None = None
    priority_id: int | None = None
    severity_id: int | None = None
    owner_id: int | None = None
    opener_id: int | None = None
    opener_name: str | None = None
    resolved_release_id: int | None = None
    resolved_release_version: str | None = None
    detected_release_id: int | None = None
    detected_release_version: str | None = None
    release_id: int | None = None
    release_version: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    estimated_effort: int | None = None
    actual_effort: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    custom_properties: dict[str, Any] = Field(default_factory=dict)

    @property
    def prefix(self) -> str:
        """Display prefix used when the artifact is referenced remotely."""
        return "IN" if self.kind == ArtifactType.INCIDENT else "TK"

    @property
    def token(self) -> str:
        """Artifact token such as ``IN42``."""
        return f"{self.prefix}{self.artifact_id}"

    def get_custom(self, slot: str) -> Any:
        return self.custom_properties.get(validate_slot(slot))

    def set_custom(self, slot: str, value: Any) -> None:
        self.custom_properties[validate_slot(slot)] = value

    def get_field(self, name: str) -> Any:
        """Read a structural attribute or a custom property slot."""
        if _SLOT_PATTERN.match(name):
            return self.get_custom(name)
        return getattr(self, name)

    def set_field(self, name: str, value: Any) -> None:
        if _SLOT_PATTERN.match(name):
            self.set_custom(name, value)
        else:
            setattr(self, name, value)


# ---------------------------------------------------------------------------
# Remote side
# ---------------------------------------------------------------------------


class RemoteIdentity(BaseModel):
    """A user known to the remote tracker."""

    display_name: str
    unique_name: str

    model_config = {"frozen": True}


class RemoteComment(BaseModel):
    """One history entry on a remote item."""

    text: str
    author: str | None = None
    created_at: datetime | None = None

    model_config = {"frozen": True}


class RemoteIteration(BaseModel):
    """Iteration node (container) in the remote project's tree."""

    node_id: int
    name: str
    uri: str
    path: str = ""

    model_config = {"frozen": True}


class FieldIssue(BaseModel):
    """A field rejected by remote validation.

    Attributes:
        field: Remote field name.
        value: The offending value.
        status: Validation status reported by the remote side.
        allowed_values: Values the remote side would accept, if known.
    """

    field: str
    value: Any = None
    status: str = "invalid"
    allowed_values: list[str] = []

    model_config = {"frozen": True}


class FieldDefinition(BaseModel):
    name: str
    field_type: str = "string"
    allowed_values: list[str] = []

    model_config = {"frozen": True}


# Attributes of RemoteItem that are set directly rather than via ``fields``
_REMOTE_STRUCTURAL = frozenset(
    {
        "title",
        "description",
        "state",
        "reason",
        "iteration_id",
        "area_id",
        "assigned_to",
        "created_by",
    }
)


class RemoteItem(BaseModel):
    """Work item on the remote tracker.

    Structural attributes are first-class; any other remote field is
    stored in ``fields`` by its remote name.  An item with ``item_id`` of
    ``None`` is a draft that has not been saved yet.
    """

    item_id: int | None = None
    project_key: str
    type_name: str
    title: str = ""
    description: str = ""
    state: str | None = None
    reason: str | None = None
    iteration_id: int | None = None
    area_id: int | None = None
    assigned_to: str | None = None
    created_by: str | None = None
    created_at: datetime | None = None
    changed_at: datetime | None = None
    fields: dict[str, Any] = Field(default_factory=dict)
    history: list[RemoteComment] = Field(default_factory=list)
    links: list[str] = Field(default_factory=list)

    def get_field(self, name: str) -> Any:
        if name in _REMOTE_STRUCTURAL:
            return getattr(self, name)
        return self.fields.get(name)

    def set_field(self, name: str, value: Any) -> None:
        if name in _REMOTE_STRUCTURAL:
            setattr(self, name, value)
        else:
            self.fields[name] = value


# ---------------------------------------------------------------------------
# Run report
# ---------------------------------------------------------------------------


class SyncResult(BaseModel):
    """Result of processing one artifact.

    Attributes:
        project_id: Local project id.
        artifact_type: Local artifact type.
        local_id: Local artifact id, if known.
        remote_id: Remote item id, if known.
        action: Action that was performed.
        success: Whether the operation succeeded.
        error: Error message if the operation failed.
    """

    project_id: int
    artifact_type: ArtifactType
    local_id: int | None = None
    remote_id: int | None = None
    action: SyncAction
    success: bool = True
    error: str | None = None

    model_config = {"frozen": True}


class SyncReport(BaseModel):
    """Aggregate report for one reconciliation run.

    Attributes:
        status: Overall run status.
        results: Individual artifact results.
        started_at: ISO 8601 timestamp when the run started.
        completed_at: ISO 8601 timestamp when the run completed.
        cancelled: Whether the run stopped early on a cancellation signal.
    """

    status: RunStatus = RunStatus.SUCCESS
    results: list[SyncResult] = []
    started_at: str
    completed_at: str | None = None
    cancelled: bool = False

    model_config = {"frozen": True}

    def _by_action(self, action: SyncAction) -> list[SyncResult]:
        return [
            r for r in self.results if r.success and r.action == action
        ]

    @property
    def created_local(self) -> list[SyncResult]:
        """Successful results where action is CREATE_LOCAL."""
        return self._by_action(SyncAction.CREATE_LOCAL)

    @property
    def created_remote(self) -> list[SyncResult]:
        """Successful results where action is CREATE_REMOTE."""
        return self._by_action(SyncAction.CREATE_REMOTE)

    @property
    def updated_local(self) -> list[SyncResult]:
        """Successful results where action is PULL."""
        return self._by_action(SyncAction.PULL)

    @property
    def updated_remote(self) -> list[SyncResult]:
        """Successful results where action is PUSH."""
        return self._by_action(SyncAction.PUSH)

    @property
    def containers(self) -> list[SyncResult]:
        return self._by_action(SyncAction.CREATE_CONTAINER)

    @property
    def skipped(self) -> list[SyncResult]:
        return self._by_action(SyncAction.SKIP)

    @property
    def errors(self) -> list[SyncResult]:
        """Results where success is False."""
        return [r for r in self.results if not r.success]

    def summary(self) -> str:
        """Format a human-readable summary of the run.

        Returns:
            Multi-line summary string with counts by action.
        """
        lines = [
            f"Sync run {self.status.value}"
            + (" (cancelled)" if self.cancelled else ""),
            f"  Created local:  {len(self.created_local)}",
            f"  Created remote: {len(self.created_remote)}",
            f"  Updated local:  {len(self.updated_local)}",
            f"  Updated remote: {len(self.updated_remote)}",
            f"  Containers:     {len(self.containers)}",
            f"  Unchanged:      {len(self.skipped)}",
            f"  Errors:         {len(self.errors)}",
            f"  Total:          {len(self.results)}",
        ]
        return "\n".join(lines)
