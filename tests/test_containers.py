"""Tests for lazy container creation and the visibility poll."""

from __future__ import annotations

import logging

import pytest

from artifact_bridge.sync.containers import (
    ContainerResolver,
    PollPolicy,
    sanitize_iteration_name,
    wait_until_visible,
)
from artifact_bridge.sync.errors import ArtifactSyncError, ContainerTimeoutError
from artifact_bridge.sync.ledger import MappingLedger
from artifact_bridge.sync.models import (
    ArtifactType,
    CorrelationEntry,
    LocalArtifact,
    MappingScope,
    ProjectContext,
    RemoteIteration,
)

CTX = ProjectContext(project_id=1, project_key="Phoenix")
RELEASES = MappingScope.artifacts(ArtifactType.RELEASE)


def _resolver(local_system, remote_system, fake_clock, **poll) -> ContainerResolver:
    return ContainerResolver(
        MappingLedger(local_system),
        local_system,
        remote_system,
        poll=PollPolicy(**poll),
        sleep=fake_clock.sleep,
        clock=fake_clock,
    )


class TestSanitizeIterationName:
    """Tests for sanitize_iteration_name()."""

    def test_strips_reserved_characters(self):
        assert sanitize_iteration_name('v1.0 "beta" <RC1>: #2 50% a/b\\c|d&e?*$') == (
            "v1.0 beta RC1 2 50 abcde"
        )

    def test_plain_name_untouched(self):
        assert sanitize_iteration_name("Sprint 12") == "Sprint 12"


class TestWaitUntilVisible:
    """Tests for the bounded exponential backoff."""

    def test_returns_immediately_when_visible(self, fake_clock):
        result = wait_until_visible(
            lambda: "node", PollPolicy(), fake_clock.sleep, fake_clock
        )
        assert result == "node"
        assert fake_clock.sleeps == []

    def test_delays_double_up_to_max(self, fake_clock):
        answers = iter([None, None, None, None, None, "node"])
        result = wait_until_visible(
            lambda: next(answers),
            PollPolicy(initial_delay=1, max_delay=4, timeout=100),
            fake_clock.sleep,
            fake_clock,
        )
        assert result == "node"
        assert fake_clock.sleeps == [1, 2, 4, 4, 4]

    def test_gives_up_at_timeout(self, fake_clock):
        result = wait_until_visible(
            lambda: None,
            PollPolicy(initial_delay=1, max_delay=8, timeout=10),
            fake_clock.sleep,
            fake_clock,
        )
        assert result is None
        assert sum(fake_clock.sleeps) == pytest.approx(10)
        assert fake_clock.sleeps == [1, 2, 4, 3]


class TestIterationForRelease:
    """Tests for local release -> remote iteration."""

    def test_mapped_release(self, local_system, remote_system, fake_clock):
        local_system.map(
            RELEASES,
            CorrelationEntry(project_id=1, internal_id=10, external_key="77"),
        )
        resolver = _resolver(local_system, remote_system, fake_clock)

        assert resolver.iteration_for_release(CTX, 10, "1.0") == 77
        assert remote_system.writes == []

    def test_no_release(self, local_system, remote_system, fake_clock):
        resolver = _resolver(local_system, remote_system, fake_clock)
        assert resolver.iteration_for_release(CTX, None, None) is None

    def test_creates_once_for_two_artifacts(
        self, local_system, remote_system, fake_clock
    ):
        remote_system.iteration_delay = 2
        resolver = _resolver(local_system, remote_system, fake_clock)

        first = resolver.iteration_for_release(CTX, 10, "1.0 <beta>")
        second = resolver.iteration_for_release(CTX, 10, "1.0 <beta>")

        assert first == second
        assert remote_system.writes == [("create_iteration", "1.0 beta")]
        assert fake_clock.sleeps == [1.0, 2.0]
        assert len(resolver.created) == 1

        resolver.ledger.flush_pending()
        assert local_system.list_mappings(RELEASES) == [
            CorrelationEntry(project_id=1, internal_id=10, external_key=str(first))
        ]

    def test_timeout_raises(self, local_system, remote_system, fake_clock):
        remote_system.iteration_delay = 1000
        resolver = _resolver(local_system, remote_system, fake_clock, timeout=5)

        with pytest.raises(ContainerTimeoutError) as exc_info:
            resolver.iteration_for_release(CTX, 10, "1.0", artifact_id=42)
        assert exc_info.value.artifact_id == 42
        assert resolver.ledger.pending(RELEASES) == []

    def test_creation_failure_wrapped(self, local_system, remote_system, fake_clock):
        def _boom(project_key, name):
            raise OSError("connection reset")

        remote_system.create_iteration = _boom
        resolver = _resolver(local_system, remote_system, fake_clock)

        with pytest.raises(ArtifactSyncError, match="connection reset"):
            resolver.iteration_for_release(CTX, 10, "1.0")

    def test_non_numeric_key_warns(
        self, local_system, remote_system, fake_clock, caplog
    ):
        local_system.map(
            RELEASES,
            CorrelationEntry(project_id=1, internal_id=10, external_key="abc"),
        )
        resolver = _resolver(local_system, remote_system, fake_clock)

        with caplog.at_level(logging.WARNING):
            assert resolver.iteration_for_release(CTX, 10, "1.0") is None
        assert "is not numeric" in caplog.text

    def test_incident_falls_back_to_detected_release(
        self, local_system, remote_system, fake_clock
    ):
        local_system.map(
            RELEASES,
            CorrelationEntry(project_id=1, internal_id=11, external_key="78"),
        )
        resolver = _resolver(local_system, remote_system, fake_clock)
        artifact = LocalArtifact(
            kind=ArtifactType.INCIDENT, project_id=1, detected_release_id=11
        )
        assert resolver.iteration_for_incident(CTX, artifact) == 78


class TestReleaseForIteration:
    """Tests for remote iteration -> local release."""

    def test_creates_release_from_node(
        self, local_system, remote_system, fake_clock
    ):
        remote_system.iterations.append(
            RemoteIteration(node_id=55, name="Sprint 3", uri="vstfs:///55")
        )
        resolver = _resolver(local_system, remote_system, fake_clock)

        release_id = resolver.release_for_iteration(CTX, 55, creator_id=5)

        [release] = local_system.releases
        assert release.release_id == release_id
        assert release.name == "Sprint 3"
        assert release.version_number == "TFS-55"
        assert release.active
        assert (release.end_date - release.start_date).days == 5
        assert resolver.created == [
            (
                "local",
                CorrelationEntry(
                    project_id=1, internal_id=release_id, external_key="55"
                ),
            )
        ]

    def test_second_lookup_uses_pending_entry(
        self, local_system, remote_system, fake_clock
    ):
        remote_system.iterations.append(
            RemoteIteration(node_id=55, name="Sprint 3", uri="vstfs:///55")
        )
        resolver = _resolver(local_system, remote_system, fake_clock)

        first = resolver.release_for_iteration(CTX, 55)
        assert resolver.release_for_iteration(CTX, 55) == first
        assert len(local_system.releases) == 1

    def test_unknown_node_is_silent(
        self, local_system, remote_system, fake_clock, caplog
    ):
        resolver = _resolver(local_system, remote_system, fake_clock)
        with caplog.at_level(logging.INFO):
            assert resolver.release_for_iteration(CTX, 99) is None
        assert caplog.records == []
        assert local_system.writes == []
