"""Shared pytest fixtures for artifact-bridge tests.

``FakeLocalSystem`` and ``FakeRemoteSystem`` are in-memory adapters that
satisfy the ``LocalSystem`` / ``RemoteSystem`` protocols.  Every write is
appended to ``writes`` so tests can assert that nothing was written.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import pytest
from dotenv import load_dotenv

from artifact_bridge.config import Config
from artifact_bridge.config_schema import SyncOptionsConfig
from artifact_bridge.sync.errors import (
    AuthenticationError,
    ProjectConnectionError,
)
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

load_dotenv()

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


def pytest_addoption(parser):
    """Add custom CLI options for test filtering."""
    parser.addoption(
        "--run-live",
        action="store_true",
        default=False,
        help="Run tests that require live local and remote systems",
    )


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "live: mark test as requiring live local and remote systems"
    )


def pytest_collection_modifyitems(config, items):
    """Skip live tests unless --run-live is passed."""
    if config.getoption("--run-live"):
        return
    skip_live = pytest.mark.skip(reason="need --run-live option to run")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


# ---------------------------------------------------------------------------
# Fake adapters
# ---------------------------------------------------------------------------


class FakeLocalSystem:
    """In-memory local system that also stores the mapping repository."""

    def __init__(self) -> None:
        self.mappings: dict[MappingScope, list[CorrelationEntry]] = {}
        self.artifacts: dict[tuple[ArtifactType, int], LocalArtifact] = {}
        self.comments: dict[tuple[ArtifactType, int], list[LocalComment]] = {}
        self.custom_properties: dict[
            ArtifactType, list[CustomPropertyDefinition]
        ] = {}
        self.releases: list[LocalRelease] = []
        self.users: dict[int, LocalUser] = {}
        self.writes: list[tuple[str, Any]] = []
        self.fail_auth = False
        self.unreachable_projects: set[int] = set()
        self.connected: list[int] = []
        self._next_id = 1000

    # --- seeding helpers ---

    def map(self, scope: MappingScope, *entries: CorrelationEntry) -> None:
        self.mappings.setdefault(scope, []).extend(entries)

    def add(self, artifact: LocalArtifact) -> LocalArtifact:
        self.artifacts[(artifact.kind, artifact.artifact_id)] = artifact
        return artifact

    def _new_id(self) -> int:
        self._next_id += 1
        return self._next_id

    # --- LocalSystem protocol ---

    def authenticate(self) -> None:
        if self.fail_auth:
            raise AuthenticationError("Local login rejected")

    def connect_to_project(self, project_id: int) -> None:
        if project_id in self.unreachable_projects:
            raise ProjectConnectionError(
                "Project not accessible", project_id=project_id
            )
        self.connected.append(project_id)

    def list_new_since(self, artifact_type, since):
        return [
            a.model_copy(deep=True)
            for (kind, _), a in sorted(self.artifacts.items())
            if kind == artifact_type
            and a.created_at is not None
            and a.created_at > since
        ]

    def get_by_id(self, artifact_type, artifact_id):
        artifact = self.artifacts.get((artifact_type, artifact_id))
        return artifact.model_copy(deep=True) if artifact else None

    def create(self, artifact):
        created = artifact.model_copy(update={"artifact_id": self._new_id()})
        self.writes.append(("create", created))
        self.artifacts[(created.kind, created.artifact_id)] = created
        return created.model_copy(deep=True)

    def update(self, artifact):
        self.writes.append(("update", artifact))
        self.artifacts[(artifact.kind, artifact.artifact_id)] = (
            artifact.model_copy(deep=True)
        )

    def create_release(self, release):
        created = release.model_copy(update={"release_id": self._new_id()})
        self.writes.append(("create_release", created))
        self.releases.append(created)
        return created

    def list_comments(self, artifact_type, artifact_id):
        return list(self.comments.get((artifact_type, artifact_id), []))

    def add_comments(self, artifact_type, artifact_id, comments):
        self.writes.append(("add_comments", list(comments)))
        self.comments.setdefault((artifact_type, artifact_id), []).extend(
            comments
        )

    def list_custom_properties(self, artifact_type):
        return list(self.custom_properties.get(artifact_type, []))

    def list_mappings(self, scope):
        return list(self.mappings.get(scope, []))

    def add_mappings(self, scope, entries):
        batch = list(entries)
        self.writes.append(("add_mappings", (scope, batch)))
        self.mappings.setdefault(scope, []).extend(batch)

    def get_user(self, user_id):
        return self.users.get(user_id)

    def get_user_by_login(self, login):
        for user in self.users.values():
            if user.login.lower() == login.lower():
                return user
        return None

    def artifact_url(self, artifact_type, artifact_id):
        return f"https://spira.example.com/{artifact_type.name}/{artifact_id}"


class FakeRemoteSystem:
    """In-memory work-item tracker.

    Args:
        iteration_delay: Number of ``find_iteration`` calls a newly created
            iteration stays invisible for.
    """

    def __init__(self, iteration_delay: int = 0) -> None:
        self.projects: set[str] = set()
        self.items: dict[int, RemoteItem] = {}
        self.iterations: list[RemoteIteration] = []
        self.identities: list[RemoteIdentity] = []
        self.field_definitions: list[FieldDefinition] = []
        self.validation_issues: list[FieldIssue] = []
        self.save_error: Exception | None = None
        self.iteration_delay = iteration_delay
        self.writes: list[tuple[str, Any]] = []
        self.now = NOW
        self._hidden: dict[str, int] = {}
        self._next_id = 500

    def add(self, item: RemoteItem) -> RemoteItem:
        self.items[item.item_id] = item
        return item

    # --- RemoteSystem protocol ---

    def authenticate(self) -> None:
        pass

    def has_project(self, project_key):
        return project_key in self.projects

    def query_changed_since(self, since, project_key):
        return [
            i.model_copy(deep=True)
            for _, i in sorted(self.items.items())
            if i.project_key == project_key
            and (i.changed_at or i.created_at or since) > since
        ]

    def get_by_id(self, item_id):
        item = self.items.get(item_id)
        return item.model_copy(deep=True) if item else None

    def create(self, project_key, type_name, fields=None):
        return RemoteItem(
            project_key=project_key,
            type_name=type_name,
            state="New",
            reason="New",
            fields=dict(fields or {}),
        )

    def validate(self, item):
        return list(self.validation_issues)

    def save(self, item):
        if self.save_error is not None:
            raise self.save_error
        if item.item_id is None:
            self._next_id += 1
            item = item.model_copy(
                update={"item_id": self._next_id, "created_at": self.now}
            )
        saved = item.model_copy(update={"changed_at": self.now}, deep=True)
        self.writes.append(("save", saved))
        self.items[saved.item_id] = saved
        return saved.model_copy(deep=True)

    def list_field_definitions(self, project_key, type_name):
        return list(self.field_definitions)

    def find_iteration(self, project_key, node_id=None, uri=None):
        for node in self.iterations:
            if node_id is not None and node.node_id != node_id:
                continue
            if uri is not None and node.uri != uri:
                continue
            if self._hidden.get(node.uri, 0) > 0:
                self._hidden[node.uri] -= 1
                return None
            return node
        return None

    def create_iteration(self, project_key, name):
        self._next_id += 1
        uri = f"vstfs:///Classification/Node/{self._next_id}"
        self.writes.append(("create_iteration", name))
        self.iterations.append(
            RemoteIteration(
                node_id=self._next_id,
                name=name,
                uri=uri,
                path=f"\\{project_key}\\{name}",
            )
        )
        self._hidden[uri] = self.iteration_delay
        return uri

    def list_users(self):
        return list(self.identities)


class FakeClock:
    """Monotonic clock advanced by its own ``sleep``."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def local_system():
    return FakeLocalSystem()


@pytest.fixture
def remote_system():
    return FakeRemoteSystem()


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def sync_options():
    return SyncOptionsConfig(custom_01="Spira Id")


@pytest.fixture
def mock_config():
    """Create a Config instance for testing."""
    return Config(
        local_url="https://spira.example.com",
        local_username="sync-bot",
        local_password="api-key",
        remote_url="https://tfs.example.com/tfs/DefaultCollection",
        remote_username="sync-bot",
        remote_password="secret",
    )
