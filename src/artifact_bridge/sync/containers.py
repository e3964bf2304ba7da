"""Lazy creation of container entities (releases and iterations).

Before an artifact is written, the release or iteration it points at must
exist on the target side and be correlated.  Resolution is:

1. persisted ledger for this project,
2. entries created earlier in this run (pending buffer),
3. create the container on the target side and record a pending entry.

Remote iterations are not visible immediately after creation, so the
resolver polls with a bounded exponential backoff and raises
``ContainerTimeoutError`` when the node never shows up.
"""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, TypeVar

from .errors import ArtifactSyncError, ContainerTimeoutError
from .ledger import Found, PendingThisRun
from .models import (
    ArtifactType,
    CorrelationEntry,
    LocalArtifact,
    LocalRelease,
    MappingScope,
    ProjectContext,
    RemoteIteration,
)

if TYPE_CHECKING:
    from artifact_bridge.core.adapters import LocalSystem, RemoteSystem

    from .ledger import MappingLedger

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Characters the remote tracker rejects in iteration names
_INVALID_NAME_CHARS = re.compile(r'[\\/$?*:"&><#%|]')

# Version number prefix for releases created from remote iterations
REMOTE_RELEASE_PREFIX = "TFS"
RELEASE_LENGTH_DAYS = 5


def sanitize_iteration_name(name: str) -> str:
    return _INVALID_NAME_CHARS.sub("", name).strip()


@dataclass(frozen=True)
class PollPolicy:
    """Backoff settings for the container visibility poll (seconds)."""

    initial_delay: float = 1.0
    max_delay: float = 8.0
    timeout: float = 30.0


def wait_until_visible(
    lookup: Callable[[], T | None],
    policy: PollPolicy,
    sleep: Callable[[float], Any] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> T | None:
    """Call *lookup* until it returns a value or the timeout elapses.

    Delays double from ``initial_delay`` up to ``max_delay``.

    Returns:
        The first non-``None`` lookup result, or ``None`` on timeout.
    """
    deadline = clock() + policy.timeout
    delay = policy.initial_delay
    attempt = 0
    while True:
        attempt += 1
        result = lookup()
        if result is not None:
            return result
        remaining = deadline - clock()
        if remaining <= 0:
            logger.debug("Gave up after %d visibility check(s)", attempt)
            return None
        sleep(min(delay, remaining))
        delay = min(delay * 2, policy.max_delay)


class ContainerResolver:
    """Resolve and lazily create releases and iterations.

    Args:
        ledger: Shared correlation ledger.
        local: Local system adapter.
        remote: Remote system adapter.
        poll: Visibility poll settings.
        sleep: Sleep function, replaceable in tests.
        clock: Monotonic clock, replaceable in tests.
    """

    def __init__(
        self,
        ledger: MappingLedger,
        local: LocalSystem,
        remote: RemoteSystem,
        poll: PollPolicy | None = None,
        sleep: Callable[[float], Any] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ledger = ledger
        self.local = local
        self.remote = remote
        self.poll = poll or PollPolicy()
        self._sleep = sleep
        self._clock = clock
        # (side, entry) for containers created this run; drained by the engine
        self.created: list[tuple[str, CorrelationEntry]] = []

    @property
    def scope(self) -> MappingScope:
        return MappingScope.artifacts(ArtifactType.RELEASE)

    # ------------------------------------------------------------------
    # Local release -> remote iteration
    # ------------------------------------------------------------------

    def iteration_for_release(
        self,
        ctx: ProjectContext,
        release_id: int | None,
        version_number: str | None,
        *,
        artifact_id: Any = None,
    ) -> int | None:
        """Remote iteration id for a local release, creating it if needed.

        Raises:
            ContainerTimeoutError: If a new iteration never became visible.
            ArtifactSyncError: If the iteration could not be created.
        """
        if release_id is None:
            return None

        resolution = self.ledger.resolve_internal(
            self.scope, release_id, ctx.project_id
        )
        if isinstance(resolution, (Found, PendingThisRun)):
            return self._numeric_key(resolution.entry, ctx, artifact_id)

        name = sanitize_iteration_name(version_number or str(release_id))
        logger.info(
            "Adding new iteration '%s' for release %s in project %s",
            name,
            release_id,
            ctx.project_id,
        )
        node = self._create_iteration(ctx, name, artifact_id)
        entry = CorrelationEntry(
            project_id=ctx.project_id,
            internal_id=release_id,
            external_key=str(node.node_id),
        )
        self.ledger.add_pending(self.scope, entry)
        self.created.append(("remote", entry))
        return node.node_id

    def iteration_for_incident(
        self, ctx: ProjectContext, artifact: LocalArtifact
    ) -> int | None:
        """Iteration for the resolved release, else the detected release."""
        iteration_id = self.iteration_for_release(
            ctx,
            artifact.resolved_release_id,
            artifact.resolved_release_version,
            artifact_id=artifact.artifact_id,
        )
        if iteration_id is None:
            iteration_id = self.iteration_for_release(
                ctx,
                artifact.detected_release_id,
                artifact.detected_release_version,
                artifact_id=artifact.artifact_id,
            )
        return iteration_id

    def _numeric_key(
        self, entry: CorrelationEntry, ctx: ProjectContext, artifact_id: Any
    ) -> int | None:
        try:
            return int(entry.external_key)
        except ValueError:
            logger.warning(
                "Release/iteration key '%s' in project %s is not numeric",
                entry.external_key,
                ctx.project_id,
                extra={
                    "project_id": ctx.project_id,
                    "artifact_id": artifact_id,
                    "field": "iteration",
                },
            )
            return None

    def _create_iteration(
        self, ctx: ProjectContext, name: str, artifact_id: Any
    ) -> RemoteIteration:
        try:
            uri = self.remote.create_iteration(ctx.project_key, name)
        except ArtifactSyncError:
            raise
        except Exception as exc:
            raise ArtifactSyncError(
                f"Unable to create iteration '{name}': {exc}",
                project_id=ctx.project_id,
                artifact_id=artifact_id,
                field="iteration",
            ) from exc

        logger.debug("Waiting for iteration %s to become visible", uri)
        node = wait_until_visible(
            lambda: self.remote.find_iteration(ctx.project_key, uri=uri),
            self.poll,
            sleep=self._sleep,
            clock=self._clock,
        )
        if node is None:
            raise ContainerTimeoutError(
                f"Iteration '{name}' ({uri}) not visible after "
                f"{self.poll.timeout:g}s",
                project_id=ctx.project_id,
                artifact_id=artifact_id,
                field="iteration",
            )
        return node

    # ------------------------------------------------------------------
    # Remote iteration -> local release
    # ------------------------------------------------------------------

    def release_for_iteration(
        self,
        ctx: ProjectContext,
        iteration_id: int | None,
        *,
        creator_id: int | None = None,
    ) -> int | None:
        """Local release id for a remote iteration, creating it if needed.

        An iteration that cannot be found in the remote tree yields
        ``None`` without logging.
        """
        if iteration_id is None or iteration_id <= 0:
            return None

        resolution = self.ledger.resolve_external(
            self.scope, str(iteration_id), ctx.project_id
        )
        if isinstance(resolution, (Found, PendingThisRun)):
            return resolution.entry.internal_id

        node = self.remote.find_iteration(ctx.project_key, node_id=iteration_id)
        if node is None:
            return None

        start = datetime.now(timezone.utc).replace(
            hour=0, minute=0, second=0, microsecond=0
        )
        release = self.local.create_release(
            LocalRelease(
                project_id=ctx.project_id,
                name=node.name,
                version_number=f"{REMOTE_RELEASE_PREFIX}-{node.node_id}",
                active=True,
                start_date=start,
                end_date=start + timedelta(days=RELEASE_LENGTH_DAYS),
                creator_id=creator_id,
            )
        )
        logger.info(
            "Added release %s for iteration %s in project %s",
            release.release_id,
            node.node_id,
            ctx.project_id,
        )
        entry = CorrelationEntry(
            project_id=ctx.project_id,
            internal_id=release.release_id,
            external_key=str(node.node_id),
        )
        self.ledger.add_pending(self.scope, entry)
        self.created.append(("local", entry))
        return release.release_id
