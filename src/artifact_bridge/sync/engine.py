"""Run orchestrator for the bidirectional reconciliation engine.

The ``SyncEngine`` ties together the ledger, translators, container
resolver and conflict policy.  For each mapped project it:

1. Connects to the project on both sides and reloads its ledger slices.
2. Creates remote items for local artifacts created since the last run.
3. Records the new correlations and refreshes the ledger.
4. Creates local artifacts for remote items not correlated yet.
5. Records the new correlations and refreshes the ledger.
6. Reconciles every correlated pair: decides the direction, builds the
   field diff and writes only when something differs.
7. Records containers created during the pair pass.

Error handling is per artifact: a single failure is logged and the run
moves on.  A project that cannot be opened is skipped.  Authentication
failures abort the run with ``RunStatus.ERROR``.
"""

from __future__ import annotations

import functools
import logging
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

from artifact_bridge.converters.html_to_text import html_to_text

from .conflict import FieldChanges, decide_direction, validate_and_save
from .containers import ContainerResolver, PollPolicy
from .errors import (
    ArtifactSyncError,
    FatalRunError,
    ProjectConnectionError,
)
from .ledger import MappingLedger, NotFound
from .models import (
    ArtifactField,
    ArtifactType,
    CorrelationEntry,
    LocalArtifact,
    LocalComment,
    MappingScope,
    ProjectContext,
    RemoteComment,
    RemoteItem,
    RunStatus,
    SyncAction,
    SyncDirection,
    SyncReport,
    SyncResult,
)
from .translator import (
    CustomPropertyTranslator,
    FieldValueTranslator,
    UserMapper,
)

if TYPE_CHECKING:
    from artifact_bridge.config_schema import SyncOptionsConfig
    from artifact_bridge.core.adapters import LocalSystem, RemoteSystem

logger = logging.getLogger(__name__)

# Used when the caller has no record of a previous successful run
EPOCH = datetime(1950, 1, 1, tzinfo=timezone.utc)

# Remote field names outside the structural attributes
PRIORITY_FIELD = "Priority"
SEVERITY_FIELD = "Severity"
COMPLETED_WORK_FIELD = "Completed Work"
REMAINING_WORK_FIELD = "Remaining Work"
START_DATE_FIELD = "Start Date"
FINISH_DATE_FIELD = "Finish Date"

# Tasks still carrying the default name are not pushed
DEFAULT_TASK_NAME = "New Task"
EMPTY_DESCRIPTION = "Empty Description in remote system"


def creation_header(token: str, detector: str, product_name: str) -> str:
    """First line of the description of a remote item created for an incident."""
    return f"Incident {token} detected by {detector} in {product_name}.\n"


def split_creation_header(token: str, text: str) -> tuple[str, str]:
    """Split ``text`` into its creation header line and the rest.

    The header is written once on creation and never flows back to the
    local side; text without it yields an empty header.
    """
    if text.startswith(f"Incident {token} detected by ") and "\n" in text:
        header, body = text.split("\n", 1)
        return header + "\n", body
    return "", text


def minutes_to_hours(minutes: int | None) -> float | None:
    if minutes is None:
        return None
    return round(minutes / 60, 2)


def hours_to_minutes(hours: Any) -> int | None:
    if hours is None or hours == "":
        return None
    return int(round(float(hours) * 60))


@dataclass
class _ProjectPass:
    """Per-project state shared by the handlers of one run."""

    ctx: ProjectContext
    values: FieldValueTranslator
    custom: dict[ArtifactType, CustomPropertyTranslator]
    last_sync: datetime
    results: list[SyncResult] = field(default_factory=list)
    # Pairs created in phases 1 and 2; already in step for this run
    created: set[tuple[ArtifactType, int]] = field(default_factory=set)
    # Remote item type -> names of the fields it defines
    field_names: dict[str, frozenset[str]] = field(default_factory=dict)


class SyncEngine:
    """Reconcile artifacts between a local and a remote system.

    Args:
        local: Local system adapter (also stores the correlation ledger).
        remote: Remote tracker adapter.
        options: Sync options.
        cancel_event: Checked between artifacts; when set, the run stops
            after the current artifact.
        sleep: Sleep function used by the container visibility poll.
        clock: Monotonic clock used by the container visibility poll.
    """

    def __init__(
        self,
        local: LocalSystem,
        remote: RemoteSystem,
        options: SyncOptionsConfig,
        cancel_event: threading.Event | None = None,
        sleep: Callable[[float], Any] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.local = local
        self.remote = remote
        self.options = options
        self.cancel_event = cancel_event

        self.ledger = MappingLedger(local)
        self.users = UserMapper(
            self.ledger, local, remote, auto_map=options.auto_map_users
        )
        self.containers = ContainerResolver(
            self.ledger,
            local,
            remote,
            poll=PollPolicy(
                initial_delay=options.poll_initial_delay,
                max_delay=options.poll_max_delay,
                timeout=options.poll_timeout,
            ),
            sleep=sleep,
            clock=clock,
        )
        self.guard_window = timedelta(minutes=options.guard_window_minutes)
        self.last_report: SyncReport | None = None
        self._cancelled = False
        self._degraded = False

    # ------------------------------------------------------------------
    # Main entry point
    # ------------------------------------------------------------------

    def run(
        self,
        last_sync_at: datetime | None,
        server_now: datetime | None = None,
    ) -> RunStatus:
        """Execute one reconciliation run.

        Args:
            last_sync_at: Time of the last successful run (UTC), or
                ``None`` to consider everything new.
            server_now: Current time on the local server (UTC).

        Returns:
            ``SUCCESS``, ``WARNING`` (some artifacts or projects failed, or
            the run was cancelled) or ``ERROR`` (the run could not start).
        """
        started_at = datetime.now(timezone.utc).isoformat()
        last_sync = last_sync_at or EPOCH
        self._cancelled = False
        self._degraded = False
        results: list[SyncResult] = []
        status = RunStatus.SUCCESS

        logger.info(
            "Starting sync run (last sync %s, server time %s)",
            last_sync.isoformat(),
            server_now.isoformat() if server_now else "unknown",
        )

        try:
            self.local.authenticate()
            self.remote.authenticate()

            projects = self.ledger.entries(MappingScope.projects())
            for mapping in projects:
                if self._check_cancel():
                    break
                try:
                    self._sync_project(mapping, last_sync, results)
                except ProjectConnectionError as exc:
                    logger.error(
                        "Skipping project %s: %s",
                        mapping.internal_id,
                        exc,
                        extra=exc.context,
                    )
                    self._degraded = True
                except FatalRunError:
                    raise
                except Exception as exc:
                    logger.exception(
                        "Error synchronizing project %s: %s",
                        mapping.internal_id,
                        exc,
                    )
                    self._degraded = True
        except FatalRunError as exc:
            logger.error("Sync run aborted: %s", exc, extra=exc.context)
            status = RunStatus.ERROR
        except Exception as exc:
            logger.exception("Sync run aborted by unexpected error: %s", exc)
            status = RunStatus.ERROR

        if status != RunStatus.ERROR and (
            self._degraded
            or self._cancelled
            or any(not r.success for r in results)
        ):
            status = RunStatus.WARNING

        self.last_report = SyncReport(
            status=status,
            results=results,
            started_at=started_at,
            completed_at=datetime.now(timezone.utc).isoformat(),
            cancelled=self._cancelled,
        )
        logger.info(self.last_report.summary())
        return status

    def _check_cancel(self) -> bool:
        if self.cancel_event is not None and self.cancel_event.is_set():
            if not self._cancelled:
                logger.warning("Cancellation requested; stopping sync run")
            self._cancelled = True
        return self._cancelled

    # ------------------------------------------------------------------
    # Per-project pass
    # ------------------------------------------------------------------

    def _artifact_types(self) -> list[ArtifactType]:
        types = []
        if self.options.sync_incidents:
            types.append(ArtifactType.INCIDENT)
        if self.options.sync_tasks:
            types.append(ArtifactType.TASK)
        return types

    def _sync_project(
        self,
        mapping: CorrelationEntry,
        last_sync: datetime,
        results: list[SyncResult],
    ) -> None:
        ctx = ProjectContext(
            project_id=mapping.internal_id, project_key=mapping.external_key
        )
        logger.info(
            "Synchronizing project %s with remote project '%s'",
            ctx.project_id,
            ctx.project_key,
        )
        self.local.connect_to_project(ctx.project_id)
        if not self.remote.has_project(ctx.project_key):
            raise ProjectConnectionError(
                f"Remote project '{ctx.project_key}' not found",
                project_id=ctx.project_id,
            )

        # Reload everything this project reads
        self.ledger.refresh_all()
        self.ledger.refresh(MappingScope.users())

        types = self._artifact_types()
        p = _ProjectPass(
            ctx=ctx,
            values=FieldValueTranslator(self.ledger, ctx.project_id),
            custom={
                t: CustomPropertyTranslator(
                    self.ledger,
                    ctx.project_id,
                    t,
                    self.local.list_custom_properties(t),
                    self.options.special_fields,
                )
                for t in types
            },
            last_sync=last_sync,
            results=results,
        )

        # Phase 1: new local artifacts -> remote
        if ArtifactType.INCIDENT in types:
            self._each(
                p,
                self.local.list_new_since(ArtifactType.INCIDENT, last_sync),
                self._create_remote_incident,
                ArtifactType.INCIDENT,
                SyncAction.CREATE_REMOTE,
            )
        if ArtifactType.TASK in types:
            self._each(
                p,
                self.local.list_new_since(ArtifactType.TASK, last_sync),
                self._create_remote_task,
                ArtifactType.TASK,
                SyncAction.CREATE_REMOTE,
            )
        self._checkpoint(p)

        # Phase 2: new remote items -> local
        if not self._cancelled:
            since = last_sync - timedelta(hours=self.options.clock_offset_hours)
            items = self.remote.query_changed_since(since, ctx.project_key)
            self._each(
                p,
                items,
                self._create_local_artifact,
                None,
                SyncAction.CREATE_LOCAL,
            )
            self._checkpoint(p)

        # Phase 3: correlated pairs
        for artifact_type in types:
            if self._cancelled:
                break
            entries = [
                e
                for e in self.ledger.entries(MappingScope.artifacts(artifact_type))
                if e.project_id == ctx.project_id
            ]
            self._each(
                p,
                entries,
                functools.partial(
                    self._reconcile_pair, artifact_type=artifact_type
                ),
                artifact_type,
                SyncAction.SKIP,
            )
        self._checkpoint(p)

    def _each(
        self,
        p: _ProjectPass,
        items: Iterable[Any],
        handler: Callable[[_ProjectPass, Any], SyncResult | None],
        artifact_type: ArtifactType | None,
        failure_action: SyncAction,
    ) -> None:
        """Run *handler* for every item, isolating failures per item."""
        for item in items:
            if self._check_cancel():
                return
            try:
                result = handler(p, item)
            except ArtifactSyncError as exc:
                logger.error(
                    "Unable to synchronize %s: %s",
                    self._describe(item),
                    exc,
                    extra=exc.context,
                )
                result = self._failure(p, item, artifact_type, failure_action, exc)
            except Exception as exc:
                logger.exception(
                    "Unexpected error synchronizing %s in project %s: %s",
                    self._describe(item),
                    p.ctx.project_id,
                    exc,
                )
                result = self._failure(p, item, artifact_type, failure_action, exc)
            if result is not None:
                p.results.append(result)

    @staticmethod
    def _describe(item: Any) -> str:
        if isinstance(item, LocalArtifact):
            return f"local artifact {item.token}"
        if isinstance(item, RemoteItem):
            return f"remote item {item.item_id}"
        if isinstance(item, CorrelationEntry):
            return f"pair {item.internal_id} <-> {item.external_key}"
        return repr(item)

    def _failure(
        self,
        p: _ProjectPass,
        item: Any,
        artifact_type: ArtifactType | None,
        action: SyncAction,
        exc: Exception,
    ) -> SyncResult:
        local_id = remote_id = None
        if isinstance(item, LocalArtifact):
            local_id, artifact_type = item.artifact_id, item.kind
        elif isinstance(item, RemoteItem):
            remote_id = item.item_id
            artifact_type = artifact_type or self._local_type_for(item)
        elif isinstance(item, CorrelationEntry):
            local_id = item.internal_id
            remote_id = _int_or_none(item.external_key)
        return SyncResult(
            project_id=p.ctx.project_id,
            artifact_type=artifact_type or ArtifactType.INCIDENT,
            local_id=local_id,
            remote_id=remote_id,
            action=action,
            success=False,
            error=str(exc),
        )

    def _checkpoint(self, p: _ProjectPass) -> None:
        """Persist pending correlations and reload the ledger."""
        for side, entry in self.containers.created:
            logger.debug(
                "Recorded new %s container for release %s (iteration %s)",
                side,
                entry.internal_id,
                entry.external_key,
            )
            p.results.append(
                SyncResult(
                    project_id=p.ctx.project_id,
                    artifact_type=ArtifactType.RELEASE,
                    local_id=entry.internal_id,
                    remote_id=_int_or_none(entry.external_key),
                    action=SyncAction.CREATE_CONTAINER,
                )
            )
        self.containers.created.clear()
        self.ledger.flush_pending()
        self.ledger.refresh_all()

    # ------------------------------------------------------------------
    # Shared field builders
    # ------------------------------------------------------------------

    def _user_to_remote(
        self, user_id: int | None, p: _ProjectPass, artifact_id: Any, name: str
    ) -> str | None:
        display_name = self.users.to_remote(user_id)
        if user_id is not None and display_name is None:
            logger.warning(
                "No remote user for local user %s (%s) in project %s, "
                "artifact %s",
                user_id,
                name,
                p.ctx.project_id,
                artifact_id,
                extra={
                    "project_id": p.ctx.project_id,
                    "artifact_id": artifact_id,
                    "field": name,
                },
            )
        return display_name

    def _user_to_local(
        self, display_name: str | None, p: _ProjectPass, item_id: Any, name: str
    ) -> int | None:
        user_id = self.users.to_local(display_name)
        if display_name and user_id is None:
            logger.warning(
                "No local user for remote user '%s' (%s) in project %s, "
                "item %s",
                display_name,
                name,
                p.ctx.project_id,
                item_id,
                extra={
                    "project_id": p.ctx.project_id,
                    "artifact_id": item_id,
                    "field": name,
                },
            )
        return user_id

    def _remote_field_names(
        self, p: _ProjectPass, type_name: str
    ) -> frozenset[str]:
        if type_name not in p.field_names:
            p.field_names[type_name] = frozenset(
                d.name
                for d in self.remote.list_field_definitions(
                    p.ctx.project_key, type_name
                )
            )
        return p.field_names[type_name]

    def _remote_values(
        self, p: _ProjectPass, artifact: LocalArtifact, type_name: str
    ) -> dict[str, Any]:
        """Remote target -> value for *artifact* as a *type_name* item."""
        aid = artifact.artifact_id
        values: dict[str, Any] = {"title": artifact.name}

        if artifact.kind == ArtifactType.INCIDENT:
            state, reason = p.values.status_to_remote(
                artifact.status_id, artifact_id=aid
            )
            values["state"] = state
            values["reason"] = reason
            priority = p.values.to_remote(
                ArtifactField.INCIDENT_PRIORITY,
                artifact.priority_id,
                artifact_id=aid,
            ) if artifact.priority_id is not None else None
            severity = p.values.to_remote(
                ArtifactField.INCIDENT_SEVERITY,
                artifact.severity_id,
                artifact_id=aid,
            ) if artifact.severity_id is not None else None
            iteration_id = self.containers.iteration_for_incident(p.ctx, artifact)
            if severity is not None:
                values[SEVERITY_FIELD] = severity
            if self.options.detector_field:
                detector = (
                    self.users.to_remote(artifact.opener_id)
                    or artifact.opener_name
                )
                if detector:
                    values[self.options.detector_field] = detector
        else:
            values["state"] = p.values.to_remote(
                ArtifactField.TASK_STATUS,
                artifact.status_id,
                required=True,
                artifact_id=aid,
            )
            priority = p.values.to_remote(
                ArtifactField.TASK_PRIORITY,
                artifact.priority_id,
                artifact_id=aid,
            ) if artifact.priority_id is not None else None
            iteration_id = self.containers.iteration_for_release(
                p.ctx,
                artifact.release_id,
                artifact.release_version,
                artifact_id=aid,
            )
            if artifact.start_date is not None:
                values[START_DATE_FIELD] = artifact.start_date
            if artifact.end_date is not None:
                values[FINISH_DATE_FIELD] = artifact.end_date
            if artifact.actual_effort is not None:
                values[COMPLETED_WORK_FIELD] = minutes_to_hours(
                    artifact.actual_effort
                )
            if artifact.estimated_effort is not None:
                values[REMAINING_WORK_FIELD] = minutes_to_hours(
                    max(
                        artifact.estimated_effort - (artifact.actual_effort or 0),
                        0,
                    )
                )

        if priority is not None:
            values[PRIORITY_FIELD] = priority
        if iteration_id is not None:
            values["iteration_id"] = iteration_id
        assignee = self._user_to_remote(artifact.owner_id, p, aid, "owner")
        if assignee is not None:
            values["assigned_to"] = assignee
        if self.options.artifact_id_field:
            values[self.options.artifact_id_field] = artifact.token
        values.update(
            p.custom[artifact.kind].to_remote(
                artifact, self._remote_field_names(p, type_name)
            )
        )
        return values

    def _local_values(
        self, p: _ProjectPass, item: RemoteItem, artifact_type: ArtifactType
    ) -> dict[str, Any]:
        """Local field -> value for a remote item."""
        iid = item.item_id
        values: dict[str, Any] = {"name": item.title}

        if artifact_type == ArtifactType.INCIDENT:
            values["status_id"] = p.values.status_to_local(
                item.state, item.reason, artifact_id=iid
            )
            type_id = p.values.to_local(
                ArtifactField.INCIDENT_TYPE, item.type_name, artifact_id=iid
            )
            if type_id is not None:
                values["type_id"] = type_id
            priority_id = self._optional_local(
                p, ArtifactField.INCIDENT_PRIORITY, item.get_field(PRIORITY_FIELD), iid
            )
            severity_id = self._optional_local(
                p, ArtifactField.INCIDENT_SEVERITY, item.get_field(SEVERITY_FIELD), iid
            )
            if severity_id is not None:
                values["severity_id"] = severity_id
            release_field = "resolved_release_id"
        else:
            values["status_id"] = p.values.to_local(
                ArtifactField.TASK_STATUS,
                item.state,
                required=True,
                artifact_id=iid,
            )
            priority_id = self._optional_local(
                p, ArtifactField.TASK_PRIORITY, item.get_field(PRIORITY_FIELD), iid
            )
            if item.get_field(START_DATE_FIELD) is not None:
                values["start_date"] = item.get_field(START_DATE_FIELD)
            if item.get_field(FINISH_DATE_FIELD) is not None:
                values["end_date"] = item.get_field(FINISH_DATE_FIELD)
            completed = item.get_field(COMPLETED_WORK_FIELD)
            remaining = item.get_field(REMAINING_WORK_FIELD)
            if completed is not None:
                values["actual_effort"] = hours_to_minutes(completed)
            if completed is not None or remaining is not None:
                values["estimated_effort"] = hours_to_minutes(
                    float(completed or 0) + float(remaining or 0)
                )
            release_field = "release_id"

        if priority_id is not None:
            values["priority_id"] = priority_id
        release_id = self.containers.release_for_iteration(
            p.ctx,
            item.iteration_id,
            creator_id=self.users.to_local(item.created_by),
        )
        if release_id is not None:
            values[release_field] = release_id
        owner_id = self._user_to_local(item.assigned_to, p, iid, "owner")
        if owner_id is not None:
            values["owner_id"] = owner_id
        values.update(p.custom[artifact_type].to_local(item))
        return values

    @staticmethod
    def _optional_local(
        p: _ProjectPass, field_id: ArtifactField, raw: Any, item_id: Any
    ) -> int | None:
        if raw is None or raw == "":
            return None
        return p.values.to_local(field_id, str(raw), artifact_id=item_id)

    def _local_type_for(self, item: RemoteItem) -> ArtifactType:
        if item.type_name in self.options.task_item_types:
            return ArtifactType.TASK
        return ArtifactType.INCIDENT

    # ------------------------------------------------------------------
    # Phase 1: local -> remote creation
    # ------------------------------------------------------------------

    def _is_correlated(
        self, p: _ProjectPass, artifact_type: ArtifactType, local_id: int
    ) -> bool:
        resolution = self.ledger.resolve_internal(
            MappingScope.artifacts(artifact_type), local_id, p.ctx.project_id
        )
        return not isinstance(resolution, NotFound)

    def _create_remote_incident(
        self, p: _ProjectPass, artifact: LocalArtifact
    ) -> SyncResult | None:
        if self._is_correlated(p, ArtifactType.INCIDENT, artifact.artifact_id):
            return None
        aid = artifact.artifact_id

        type_name = p.values.to_remote(
            ArtifactField.INCIDENT_TYPE,
            artifact.type_id,
            required=True,
            artifact_id=aid,
        )
        values = self._remote_values(p, artifact, type_name)
        # State and reason are promoted after creation
        state, reason = values.pop("state"), values.pop("reason")
        detector = artifact.opener_name or "unknown user"
        values["description"] = creation_header(
            artifact.token, detector, self.options.product_name
        ) + html_to_text(artifact.description)

        item = self.remote.create(p.ctx.project_key, type_name)
        for name, value in values.items():
            item.set_field(name, value)
        item.links.append(self.local.artifact_url(ArtifactType.INCIDENT, aid))
        item.history.extend(self._remote_comments(p, artifact))
        saved = validate_and_save(
            self.remote, item, project_id=p.ctx.project_id, artifact_id=aid
        )
        self._record(p, ArtifactType.INCIDENT, aid, saved.item_id)
        self._promote_state(p, saved, state, reason, aid)
        logger.info(
            "Created remote item %s for incident %s", saved.item_id, aid
        )
        return SyncResult(
            project_id=p.ctx.project_id,
            artifact_type=ArtifactType.INCIDENT,
            local_id=aid,
            remote_id=saved.item_id,
            action=SyncAction.CREATE_REMOTE,
        )

    def _promote_state(
        self,
        p: _ProjectPass,
        item: RemoteItem,
        state: str,
        reason: str,
        artifact_id: Any,
    ) -> None:
        """Move a newly created item to its mapped state and reason.

        Failure leaves the item in its initial state and is only a warning.
        """
        changes = FieldChanges()
        changes.propose("state", item.state, state)
        changes.propose("reason", item.reason, reason)
        if not changes.dirty:
            return
        changes.apply(item)
        try:
            validate_and_save(
                self.remote,
                item,
                project_id=p.ctx.project_id,
                artifact_id=artifact_id,
                level=logging.WARNING,
            )
        except ArtifactSyncError as exc:
            logger.warning(
                "Remote item %s left in its initial state: %s",
                item.item_id,
                exc,
                extra=exc.context,
            )

    def _create_remote_task(
        self, p: _ProjectPass, artifact: LocalArtifact
    ) -> SyncResult | None:
        if artifact.name == DEFAULT_TASK_NAME:
            return None
        if self._is_correlated(p, ArtifactType.TASK, artifact.artifact_id):
            return None
        aid = artifact.artifact_id

        type_name = self.options.task_item_types[0]
        values = self._remote_values(p, artifact, type_name)
        values["description"] = html_to_text(artifact.description)
        item = self.remote.create(p.ctx.project_key, type_name)
        for name, value in values.items():
            item.set_field(name, value)
        item.links.append(self.local.artifact_url(ArtifactType.TASK, aid))
        saved = validate_and_save(
            self.remote, item, project_id=p.ctx.project_id, artifact_id=aid
        )
        self._record(p, ArtifactType.TASK, aid, saved.item_id)
        logger.info("Created remote item %s for task %s", saved.item_id, aid)
        return SyncResult(
            project_id=p.ctx.project_id,
            artifact_type=ArtifactType.TASK,
            local_id=aid,
            remote_id=saved.item_id,
            action=SyncAction.CREATE_REMOTE,
        )

    def _record(
        self,
        p: _ProjectPass,
        artifact_type: ArtifactType,
        local_id: int,
        remote_id: int | None,
    ) -> None:
        self.ledger.add_pending(
            MappingScope.artifacts(artifact_type),
            CorrelationEntry(
                project_id=p.ctx.project_id,
                internal_id=local_id,
                external_key=str(remote_id),
            ),
        )
        p.created.add((artifact_type, local_id))

    def _remote_comments(
        self,
        p: _ProjectPass,
        artifact: LocalArtifact,
        existing: list[RemoteComment] | None = None,
        newer_than: datetime | None = None,
    ) -> list[RemoteComment]:
        """Local comments not yet present in the remote history."""
        known = {c.text.strip() for c in existing or []}
        comments = []
        for comment in self.local.list_comments(artifact.kind, artifact.artifact_id):
            if newer_than is not None and (
                comment.created_at is None or comment.created_at <= newer_than
            ):
                continue
            text = html_to_text(comment.text)
            if not text.strip() or text.strip() in known:
                continue
            comments.append(
                RemoteComment(
                    text=text,
                    author=self.users.to_remote(comment.author_id),
                    created_at=comment.created_at,
                )
            )
        return comments

    # ------------------------------------------------------------------
    # Phase 2: remote -> local creation
    # ------------------------------------------------------------------

    def _create_local_artifact(
        self, p: _ProjectPass, item: RemoteItem
    ) -> SyncResult | None:
        artifact_type = self._local_type_for(item)
        if artifact_type not in self._artifact_types():
            return None
        # Either scope counts: a remote item is correlated at most once
        for kind in (ArtifactType.INCIDENT, ArtifactType.TASK):
            resolution = self.ledger.resolve_external(
                MappingScope.artifacts(kind),
                str(item.item_id),
                p.ctx.project_id,
            )
            if not isinstance(resolution, NotFound):
                return None

        iid = item.item_id
        if artifact_type == ArtifactType.INCIDENT:
            # Type mapping is required for new incidents
            p.values.to_local(
                ArtifactField.INCIDENT_TYPE,
                item.type_name,
                required=True,
                artifact_id=iid,
            )
        values = self._local_values(p, item, artifact_type)
        creator_id = self._user_to_local(item.created_by, p, iid, "creator")

        artifact = LocalArtifact(
            kind=artifact_type,
            project_id=p.ctx.project_id,
            description=item.description or EMPTY_DESCRIPTION,
            opener_id=creator_id,
            created_at=item.created_at,
        )
        for name, value in values.items():
            artifact.set_field(name, value)
        created = self.local.create(artifact)
        self._record(p, artifact_type, created.artifact_id, iid)

        comments = [
            LocalComment(
                text=entry.text,
                author_id=self.users.to_local(entry.author) or creator_id,
                created_at=entry.created_at,
            )
            for entry in item.history
            if entry.text and entry.text.strip()
        ]
        if comments:
            self.local.add_comments(artifact_type, created.artifact_id, comments)

        logger.info(
            "Created local %s %s for remote item %s",
            artifact_type.name.lower(),
            created.artifact_id,
            iid,
        )
        return SyncResult(
            project_id=p.ctx.project_id,
            artifact_type=artifact_type,
            local_id=created.artifact_id,
            remote_id=iid,
            action=SyncAction.CREATE_LOCAL,
        )

    # ------------------------------------------------------------------
    # Phase 3: correlated pairs
    # ------------------------------------------------------------------

    def _reconcile_pair(
        self,
        p: _ProjectPass,
        entry: CorrelationEntry,
        artifact_type: ArtifactType,
    ) -> SyncResult | None:
        if (artifact_type, entry.internal_id) in p.created:
            return None
        item_id = _int_or_none(entry.external_key)
        if item_id is None:
            raise ArtifactSyncError(
                f"Remote key '{entry.external_key}' is not a numeric item id",
                project_id=p.ctx.project_id,
                artifact_id=entry.internal_id,
            )

        artifact = self.local.get_by_id(artifact_type, entry.internal_id)
        item = self.remote.get_by_id(item_id)
        if artifact is None or item is None:
            logger.debug(
                "Counterpart missing for pair %s <-> %s",
                entry.internal_id,
                item_id,
            )
            return None

        direction = decide_direction(
            item.changed_at,
            artifact.updated_at,
            p.last_sync,
            self.options.clock_offset_hours,
            self.guard_window,
        )
        if direction == SyncDirection.LOCAL_WINS:
            action = self._push_changes(p, artifact, item)
        elif direction == SyncDirection.REMOTE_WINS:
            action = self._pull_changes(p, artifact, item)
        else:
            action = SyncAction.SKIP

        return SyncResult(
            project_id=p.ctx.project_id,
            artifact_type=artifact_type,
            local_id=artifact.artifact_id,
            remote_id=item.item_id,
            action=action,
        )

    def _push_changes(
        self, p: _ProjectPass, artifact: LocalArtifact, item: RemoteItem
    ) -> SyncAction:
        """Local wins: write the local artifact onto the remote item."""
        values = self._remote_values(p, artifact, item.type_name)
        header, _ = split_creation_header(
            artifact.token, item.description or ""
        )
        values["description"] = header + html_to_text(artifact.description)
        changes = FieldChanges()
        changes.propose_all(item, values)

        guard_time = None
        if item.changed_at is not None:
            guard_time = (
                item.changed_at
                + timedelta(hours=self.options.clock_offset_hours)
                + self.guard_window
            )
        new_comments = self._remote_comments(
            p, artifact, existing=item.history, newer_than=guard_time
        )
        if not changes.dirty and not new_comments:
            return SyncAction.SKIP

        logger.debug(
            "Pushing %s to remote item %s: %s",
            artifact.token,
            item.item_id,
            changes,
        )
        changes.apply(item)
        item.history.extend(new_comments)
        validate_and_save(
            self.remote,
            item,
            project_id=p.ctx.project_id,
            artifact_id=artifact.artifact_id,
        )
        return SyncAction.PUSH

    def _pull_changes(
        self, p: _ProjectPass, artifact: LocalArtifact, item: RemoteItem
    ) -> SyncAction:
        """Remote wins: write the remote item onto the local artifact."""
        values = self._local_values(p, item, artifact.kind)
        # Rich text is only replaced when its plain rendering differs
        _, text = split_creation_header(
            artifact.token, item.description or ""
        )
        if html_to_text(artifact.description) != text:
            values["description"] = text or EMPTY_DESCRIPTION
        changes = FieldChanges()
        changes.propose_all(artifact, values)

        known = {
            html_to_text(c.text).strip()
            for c in self.local.list_comments(artifact.kind, artifact.artifact_id)
        }
        new_comments = [
            LocalComment(
                text=entry.text,
                author_id=self.users.to_local(entry.author),
                created_at=entry.created_at,
            )
            for entry in item.history
            if entry.text and entry.text.strip() not in known
        ]
        if not changes.dirty and not new_comments:
            return SyncAction.SKIP

        if changes.dirty:
            logger.debug(
                "Pulling remote item %s into %s: %s",
                item.item_id,
                artifact.token,
                changes,
            )
            changes.apply(artifact)
            self.local.update(artifact)
        if new_comments:
            self.local.add_comments(
                artifact.kind, artifact.artifact_id, new_comments
            )
        return SyncAction.PULL


def _int_or_none(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None

