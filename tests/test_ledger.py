"""Tests for the correlation ledger and its three-tier resolution."""

from __future__ import annotations

from artifact_bridge.sync.ledger import (
    Found,
    MappingLedger,
    NotFound,
    PendingThisRun,
    find_by_external_key,
    find_by_internal_id,
)
from artifact_bridge.sync.models import (
    ArtifactField,
    ArtifactType,
    CorrelationEntry,
    MappingScope,
)

INCIDENTS = MappingScope.artifacts(ArtifactType.INCIDENT)
STATUS = MappingScope.field_values(ArtifactField.INCIDENT_STATUS)


def _entry(internal_id, external_key, project_id=1, primary=True):
    return CorrelationEntry(
        project_id=project_id,
        internal_id=internal_id,
        external_key=external_key,
        primary=primary,
    )


class TestLookupHelpers:
    """Tests for the module-level find functions."""

    def test_first_match_wins(self):
        entries = [_entry(1, "A"), _entry(1, "B")]
        assert find_by_internal_id(entries, 1).external_key == "A"

    def test_project_filter(self):
        entries = [_entry(1, "A", project_id=1), _entry(1, "B", project_id=2)]
        assert find_by_internal_id(entries, 1, project_id=2).external_key == "B"

    def test_project_agnostic_lookup(self):
        entries = [_entry(5, "Jane Doe", project_id=None)]
        assert find_by_internal_id(entries, 5).external_key == "Jane Doe"

    def test_primary_only_skips_secondary_entries(self):
        entries = [
            _entry(3, "Active+Approved", primary=False),
            _entry(4, "Active+Approved"),
        ]
        assert find_by_external_key(entries, "Active+Approved").internal_id == 3
        assert (
            find_by_external_key(
                entries, "Active+Approved", primary_only=True
            ).internal_id
            == 4
        )

    def test_miss_returns_none(self):
        assert find_by_external_key([_entry(1, "A")], "Z") is None


class TestMappingLedger:
    """Tests for MappingLedger caching and writes."""

    def test_entries_loaded_lazily_and_cached(self, local_system):
        local_system.map(INCIDENTS, _entry(1, "100"))
        ledger = MappingLedger(local_system)

        assert ledger.find_by_internal_id(INCIDENTS, 1).external_key == "100"
        local_system.map(INCIDENTS, _entry(2, "200"))
        assert ledger.find_by_internal_id(INCIDENTS, 2) is None

        ledger.refresh(INCIDENTS)
        assert ledger.find_by_internal_id(INCIDENTS, 2).external_key == "200"

    def test_record_new_does_not_dedupe(self, local_system):
        ledger = MappingLedger(local_system)
        entry = _entry(1, "100")

        assert ledger.record_new(INCIDENTS, [entry]) == 1
        assert ledger.record_new(INCIDENTS, [entry]) == 1
        assert local_system.list_mappings(INCIDENTS) == [entry, entry]

    def test_record_new_empty_batch_writes_nothing(self, local_system):
        ledger = MappingLedger(local_system)
        assert ledger.record_new(INCIDENTS, []) == 0
        assert local_system.writes == []

    def test_refresh_all_reloads_loaded_scopes(self, local_system):
        ledger = MappingLedger(local_system)
        ledger.entries(INCIDENTS)
        ledger.entries(STATUS)
        local_system.map(STATUS, _entry(3, "Active+Approved"))

        ledger.refresh_all()
        assert ledger.find_by_internal_id(STATUS, 3) is not None


class TestResolution:
    """Tests for Found / PendingThisRun / NotFound."""

    def test_found_in_persisted_ledger(self, local_system):
        local_system.map(INCIDENTS, _entry(1, "100"))
        ledger = MappingLedger(local_system)

        resolution = ledger.resolve_internal(INCIDENTS, 1, project_id=1)
        assert isinstance(resolution, Found)
        assert resolution.entry.external_key == "100"

    def test_pending_before_flush(self, local_system):
        ledger = MappingLedger(local_system)
        ledger.add_pending(INCIDENTS, _entry(1, "100"))

        assert isinstance(
            ledger.resolve_internal(INCIDENTS, 1, project_id=1), PendingThisRun
        )
        assert isinstance(
            ledger.resolve_external(INCIDENTS, "100", project_id=1),
            PendingThisRun,
        )

    def test_not_found_is_not_an_error(self, local_system):
        ledger = MappingLedger(local_system)
        assert isinstance(ledger.resolve_internal(INCIDENTS, 9), NotFound)
        assert isinstance(ledger.resolve_external(INCIDENTS, "9"), NotFound)

    def test_other_project_is_not_a_match(self, local_system):
        local_system.map(INCIDENTS, _entry(1, "100", project_id=2))
        ledger = MappingLedger(local_system)
        assert isinstance(
            ledger.resolve_internal(INCIDENTS, 1, project_id=1), NotFound
        )

    def test_flush_moves_pending_into_ledger(self, local_system):
        ledger = MappingLedger(local_system)
        ledger.add_pending(INCIDENTS, _entry(1, "100"))

        assert ledger.flush_pending() == 1
        assert ledger.pending(INCIDENTS) == []
        assert isinstance(
            ledger.resolve_internal(INCIDENTS, 1, project_id=1), Found
        )
        assert local_system.list_mappings(INCIDENTS) == [_entry(1, "100")]

    def test_flush_single_scope(self, local_system):
        ledger = MappingLedger(local_system)
        ledger.add_pending(INCIDENTS, _entry(1, "100"))
        ledger.add_pending(STATUS, _entry(3, "Active+Approved"))

        assert ledger.flush_pending(INCIDENTS) == 1
        assert len(ledger.pending(STATUS)) == 1
