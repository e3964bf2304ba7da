"""Bidirectional artifact reconciliation engine.

Public API for keeping incidents and tasks in a local test-management
system in step with work items in a remote tracker.

Architecture
------------
The two systems share no ids and no clock.  A **correlation ledger** stored
in the local system links each local id to a remote key.  Every run walks
each mapped project in three phases: create remote items for new local
artifacts, create local artifacts for new remote items, then reconcile the
correlated pairs with a whole-artifact last-writer-wins policy.  The ledger
is written and reloaded between phases so no pair is ever created twice.

Modules:

- ``engine``      -- ``SyncEngine``: orchestrates a full run.
- ``ledger``      -- ``MappingLedger``: correlation entries and the
  ``Found`` / ``PendingThisRun`` / ``NotFound`` lookup.
- ``translator``  -- field value, custom property and user translation.
- ``containers``  -- lazy release/iteration creation with bounded polling.
- ``conflict``    -- ``decide_direction``, the ``FieldChanges`` diff
  builder and validated remote saves.
- ``models``      -- data contracts.
- ``errors``      -- error taxonomy.
- ``reporter``    -- human-readable and JSON report formatting.

Usage example
-------------
::

    from artifact_bridge.config_schema import SyncOptionsConfig
    from artifact_bridge.sync import SyncEngine, format_sync_report

    engine = SyncEngine(
        local=local_adapter,          # LocalSystem implementation
        remote=remote_adapter,        # RemoteSystem implementation
        options=SyncOptionsConfig(clock_offset_hours=-2),
    )
    status = engine.run(last_sync_at, server_now)
    print(format_sync_report(engine.last_report))
"""

from .engine import SyncEngine
from .ledger import Found, MappingLedger, NotFound, PendingThisRun
from .models import (
    ArtifactType,
    CorrelationEntry,
    MappingScope,
    RunStatus,
    SyncAction,
    SyncDirection,
    SyncReport,
    SyncResult,
)
from .reporter import format_sync_report, report_to_json

__all__ = [
    "ArtifactType",
    "CorrelationEntry",
    "Found",
    "MappingLedger",
    "MappingScope",
    "NotFound",
    "PendingThisRun",
    "RunStatus",
    "SyncAction",
    "SyncDirection",
    "SyncEngine",
    "SyncReport",
    "SyncResult",
    "format_sync_report",
    "report_to_json",
]
