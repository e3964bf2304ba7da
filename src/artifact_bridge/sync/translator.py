"""Translate enumerated field values between the two systems.

Three translators share the correlation ledger:

- ``FieldValueTranslator``: status, priority, severity and type values.
  Remote -> local lookups only accept primary entries, so several remote
  composite keys can fold onto one local value without ambiguity.
- ``CustomPropertyTranslator``: custom property slots, via the property
  mapping and (for LIST properties) the value mapping.  The special remote
  fields (rank, triage, area, discipline and the work item id) are routed
  to their own targets.
- ``UserMapper``: local user ids <-> remote display names, either from the
  users scope or by matching logins against the remote identity list.

Composite status keys are ``state + "+" + reason``.
"""

from __future__ import annotations

import logging
from collections.abc import Collection
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .errors import MalformedCompositeKeyError, MappingNotFoundError
from .models import (
    ArtifactField,
    ArtifactType,
    CustomPropertyDefinition,
    CustomPropertyType,
    LocalArtifact,
    MappingScope,
    RemoteIdentity,
    RemoteItem,
)

if TYPE_CHECKING:
    from artifact_bridge.core.adapters import LocalSystem, RemoteSystem

    from .ledger import MappingLedger

logger = logging.getLogger(__name__)

COMPOSITE_SEPARATOR = "+"


def split_composite(
    key: str | None,
    *,
    project_id: int | None = None,
    artifact_id: int | str | None = None,
    field: str | None = None,
) -> tuple[str, str]:
    """Split ``"State+Reason"`` into ``("State", "Reason")``.

    Raises:
        MalformedCompositeKeyError: If the separator is missing.
    """
    if not key or COMPOSITE_SEPARATOR not in key:
        raise MalformedCompositeKeyError(
            f"Composite key '{key}' has no '{COMPOSITE_SEPARATOR}' separator",
            project_id=project_id,
            artifact_id=artifact_id,
            field=field,
        )
    state, reason = key.split(COMPOSITE_SEPARATOR, 1)
    return state, reason


def join_composite(state: str | None, reason: str | None) -> str:
    return f"{state or ''}{COMPOSITE_SEPARATOR}{reason or ''}"


def _context(
    project_id: int | None, artifact_id: Any, field: str | None
) -> dict[str, Any]:
    return {"project_id": project_id, "artifact_id": artifact_id, "field": field}


# ---------------------------------------------------------------------------
# Enumerated field values
# ---------------------------------------------------------------------------


class FieldValueTranslator:
    """Resolve enumerated field values for one project.

    Args:
        ledger: Shared correlation ledger.
        project_id: Local project id the lookups are scoped to.
    """

    def __init__(self, ledger: MappingLedger, project_id: int) -> None:
        self.ledger = ledger
        self.project_id = project_id

    def _missing(
        self,
        field: ArtifactField,
        value: Any,
        artifact_id: Any,
        required: bool,
        direction: str,
    ) -> None:
        message = (
            f"No {direction} mapping for {field.name.lower()} value '{value}'"
        )
        if required:
            raise MappingNotFoundError(
                message,
                project_id=self.project_id,
                artifact_id=artifact_id,
                field=field.name.lower(),
            )
        logger.warning(
            "%s in project %s (artifact %s)",
            message,
            self.project_id,
            artifact_id,
            extra=_context(self.project_id, artifact_id, field.name.lower()),
        )

    def to_remote(
        self,
        field: ArtifactField,
        local_id: int | None,
        *,
        required: bool = False,
        artifact_id: Any = None,
    ) -> str | None:
        """Remote key for a local value id.

        Raises:
            MappingNotFoundError: If *required* and no mapping exists.
        """
        if local_id is not None:
            entry = self.ledger.find_by_internal_id(
                MappingScope.field_values(field), local_id, self.project_id
            )
            if entry is not None:
                return entry.external_key
        self._missing(field, local_id, artifact_id, required, "remote")
        return None

    def to_local(
        self,
        field: ArtifactField,
        external_key: str | None,
        *,
        required: bool = False,
        artifact_id: Any = None,
    ) -> int | None:
        """Local value id for a remote key (primary entries only).

        Raises:
            MappingNotFoundError: If *required* and no mapping exists.
        """
        if external_key:
            entry = self.ledger.find_by_external_key(
                MappingScope.field_values(field),
                external_key,
                self.project_id,
                primary_only=True,
            )
            if entry is not None:
                return entry.internal_id
        self._missing(field, external_key, artifact_id, required, "local")
        return None

    def status_to_remote(
        self, local_status_id: int | None, *, artifact_id: Any = None
    ) -> tuple[str, str]:
        """Incident status id -> ``(state, reason)``. Always required."""
        key = self.to_remote(
            ArtifactField.INCIDENT_STATUS,
            local_status_id,
            required=True,
            artifact_id=artifact_id,
        )
        return split_composite(
            key,
            project_id=self.project_id,
            artifact_id=artifact_id,
            field="incident_status",
        )

    def status_to_local(
        self, state: str | None, reason: str | None, *, artifact_id: Any = None
    ) -> int:
        """``(state, reason)`` -> incident status id. Always required."""
        status_id = self.to_local(
            ArtifactField.INCIDENT_STATUS,
            join_composite(state, reason),
            required=True,
            artifact_id=artifact_id,
        )
        return status_id  # type: ignore[return-value]


# ---------------------------------------------------------------------------
# Custom properties
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SpecialFieldNames:
    """Remote field names that get dedicated write paths.

    ``rank``, ``triage`` and ``discipline`` only exist in some process
    templates and are written only when the item type defines them.
    ``area`` targets the structural area id.  ``remote_id`` is not a
    remote field: a local property mapped to it receives the remote item
    id and is never pushed.
    """

    rank: str = "Rank"
    triage: str = "Triage"
    area: str = "Area"
    discipline: str = "Discipline"
    remote_id: str = "TfsWorkItemId"

    @property
    def template_fields(self) -> frozenset[str]:
        return frozenset({self.rank, self.triage, self.discipline})


# Target name used for the remote area, a structural attribute
AREA_TARGET = "area_id"


class CustomPropertyTranslator:
    """Map custom property slots for one project and artifact type."""

    def __init__(
        self,
        ledger: MappingLedger,
        project_id: int,
        artifact_type: ArtifactType,
        definitions: list[CustomPropertyDefinition],
        special: SpecialFieldNames | None = None,
    ) -> None:
        self.ledger = ledger
        self.project_id = project_id
        self.artifact_type = artifact_type
        self.definitions = definitions
        self.special = special or SpecialFieldNames()

    def _remote_name(self, prop: CustomPropertyDefinition) -> str | None:
        entry = self.ledger.find_by_internal_id(
            MappingScope.custom_properties(self.artifact_type),
            prop.property_id,
            self.project_id,
        )
        return entry.external_key if entry else None

    def _values_scope(self, prop: CustomPropertyDefinition) -> MappingScope:
        return MappingScope.custom_property_values(
            self.artifact_type, prop.property_id
        )

    def _undefined_template_field(
        self,
        remote_name: str,
        remote_fields: Collection[str] | None,
        artifact_id: Any,
        slot: str,
    ) -> bool:
        if remote_fields is None or remote_name in remote_fields:
            return False
        if remote_name not in self.special.template_fields:
            return False
        logger.warning(
            "Remote field %s is not defined for this item type; custom "
            "property %s not written (project %s, artifact %s)",
            remote_name,
            slot,
            self.project_id,
            artifact_id,
            extra=_context(self.project_id, artifact_id, slot),
        )
        return True

    def to_remote(
        self,
        artifact: LocalArtifact,
        remote_fields: Collection[str] | None = None,
    ) -> dict[str, Any]:
        """Remote target -> value for every mapped custom property.

        Args:
            artifact: Local artifact carrying the custom values.
            remote_fields: Field names defined for the target item type.
                ``None`` skips the check for template-specific fields.

        Returns:
            Dict keyed by remote field name, or ``AREA_TARGET`` for the
            area.  Unmapped properties and unset values are left out.
        """
        proposed: dict[str, Any] = {}
        for prop in self.definitions:
            remote_name = self._remote_name(prop)
            if remote_name is None or remote_name == self.special.remote_id:
                continue
            value = artifact.get_custom(prop.slot)
            if value is None or value == "":
                continue
            if self._undefined_template_field(
                remote_name, remote_fields, artifact.artifact_id, prop.slot
            ):
                continue

            if prop.property_type == CustomPropertyType.TEXT:
                proposed[remote_name] = str(value)
                continue

            entry = self.ledger.find_by_internal_id(
                self._values_scope(prop), int(value), self.project_id
            )
            if entry is None:
                logger.warning(
                    "No value mapping for custom property %s value %s "
                    "in project %s (artifact %s)",
                    prop.slot,
                    value,
                    self.project_id,
                    artifact.artifact_id,
                    extra=_context(
                        self.project_id, artifact.artifact_id, prop.slot
                    ),
                )
                continue

            if remote_name == self.special.area:
                try:
                    proposed[AREA_TARGET] = int(entry.external_key)
                except ValueError:
                    logger.warning(
                        "Area value '%s' for custom property %s is not a "
                        "numeric area id (project %s, artifact %s)",
                        entry.external_key,
                        prop.slot,
                        self.project_id,
                        artifact.artifact_id,
                        extra=_context(
                            self.project_id, artifact.artifact_id, prop.slot
                        ),
                    )
            else:
                proposed[remote_name] = entry.external_key
        return proposed

    def to_local(self, item: RemoteItem) -> dict[str, Any]:
        """Slot -> value for every mapped custom property present remotely."""
        proposed: dict[str, Any] = {}
        for prop in self.definitions:
            remote_name = self._remote_name(prop)
            if remote_name is None:
                continue

            if remote_name == self.special.remote_id:
                # Only a text property can hold the id
                if (
                    item.item_id is not None
                    and prop.property_type == CustomPropertyType.TEXT
                ):
                    proposed[prop.slot] = str(item.item_id)
                continue
            if remote_name == self.special.area:
                raw = item.area_id if item.area_id and item.area_id > 0 else None
            else:
                raw = item.get_field(remote_name)
            if raw is None or raw == "":
                continue

            if prop.property_type == CustomPropertyType.TEXT:
                proposed[prop.slot] = str(raw)
                continue

            entry = self.ledger.find_by_external_key(
                self._values_scope(prop),
                str(raw),
                self.project_id,
                primary_only=True,
            )
            if entry is None:
                logger.warning(
                    "No value mapping for remote field %s value '%s' "
                    "in project %s (item %s)",
                    remote_name,
                    raw,
                    self.project_id,
                    item.item_id,
                    extra=_context(self.project_id, item.item_id, remote_name),
                )
                continue
            proposed[prop.slot] = entry.internal_id
        return proposed


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserMapper:
    """Resolve users between the two systems.

    With ``auto_map`` the users scope is bypassed: a local login is matched
    case-insensitively against remote unique names, and remote display
    names are matched back to unique names and then to local logins.
    """

    def __init__(
        self,
        ledger: MappingLedger,
        local: LocalSystem,
        remote: RemoteSystem,
        auto_map: bool = False,
    ) -> None:
        self.ledger = ledger
        self.local = local
        self.remote = remote
        self.auto_map = auto_map
        self._identities: list[RemoteIdentity] | None = None

    def _remote_identities(self) -> list[RemoteIdentity]:
        if self._identities is None:
            self._identities = list(self.remote.list_users())
        return self._identities

    def to_remote(self, user_id: int | None) -> str | None:
        """Remote display name for a local user id, or ``None``."""
        if user_id is None:
            return None
        if not self.auto_map:
            entry = self.ledger.find_by_internal_id(
                MappingScope.users(), user_id
            )
            return entry.external_key if entry else None

        user = self.local.get_user(user_id)
        if user is None:
            return None
        login = user.login.lower()
        for identity in self._remote_identities():
            if identity.unique_name.lower() == login:
                return identity.display_name
        return user.full_name or None

    def to_local(self, display_name: str | None) -> int | None:
        """Local user id for a remote display name, or ``None``."""
        if not display_name:
            return None
        if not self.auto_map:
            entry = self.ledger.find_by_external_key(
                MappingScope.users(), display_name
            )
            return entry.internal_id if entry else None

        login = display_name
        wanted = display_name.lower()
        for identity in self._remote_identities():
            if identity.display_name.lower() == wanted:
                login = identity.unique_name
                break
        user = self.local.get_user_by_login(login)
        return user.user_id if user else None
