"""Tests for direction decisions, the diff builder and validated saves."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

import pytest

from artifact_bridge.sync.conflict import (
    FieldChanges,
    decide_direction,
    validate_and_save,
)
from artifact_bridge.sync.errors import RemoteSaveError, RemoteValidationError
from artifact_bridge.sync.models import FieldIssue, RemoteItem, SyncDirection

T = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


def _item(**overrides) -> RemoteItem:
    defaults = {"project_key": "Phoenix", "type_name": "Bug", "title": "Crash"}
    defaults.update(overrides)
    return RemoteItem(**defaults)


# -------------------------------------------------------------------------
# decide_direction()
# -------------------------------------------------------------------------


class TestDecideDirection:
    """Tests for whole-artifact last-writer-wins."""

    def test_local_newer_wins(self):
        assert (
            decide_direction(
                remote_changed_at=T - timedelta(hours=10),
                local_changed_at=T,
                last_sync_at=T - timedelta(hours=1),
            )
            == SyncDirection.LOCAL_WINS
        )

    def test_neither_changed(self):
        assert (
            decide_direction(
                T - timedelta(hours=3),
                T - timedelta(hours=2),
                T - timedelta(hours=1),
            )
            == SyncDirection.NONE
        )

    def test_remote_only_changed(self):
        assert (
            decide_direction(T, T - timedelta(hours=2), T - timedelta(hours=1))
            == SyncDirection.REMOTE_WINS
        )

    def test_guard_window_makes_remote_a_candidate(self):
        # Remote changed 3 minutes before the last sync
        remote = T - timedelta(minutes=63)
        assert (
            decide_direction(remote, None, T - timedelta(hours=1))
            == SyncDirection.REMOTE_WINS
        )
        assert (
            decide_direction(
                remote, None, T - timedelta(hours=1), guard_window=timedelta(0)
            )
            == SyncDirection.NONE
        )

    def test_clock_offset_applies_to_remote(self):
        # Remote clock runs two hours behind
        remote = T - timedelta(hours=2)
        local = T - timedelta(minutes=30)
        last_sync = T - timedelta(hours=1)
        assert (
            decide_direction(remote, local, last_sync)
            == SyncDirection.LOCAL_WINS
        )
        assert (
            decide_direction(remote, local, last_sync, clock_offset_hours=2)
            == SyncDirection.REMOTE_WINS
        )

    def test_tie_favours_remote(self):
        assert (
            decide_direction(T, T, T - timedelta(hours=1))
            == SyncDirection.REMOTE_WINS
        )

    def test_both_changed_later_side_wins(self):
        last_sync = T - timedelta(hours=1)
        later = T + timedelta(seconds=1)
        assert decide_direction(T, later, last_sync) == SyncDirection.LOCAL_WINS
        assert decide_direction(later, T, last_sync) == SyncDirection.REMOTE_WINS

    def test_missing_timestamps(self):
        assert decide_direction(None, None, T) == SyncDirection.NONE


# -------------------------------------------------------------------------
# FieldChanges
# -------------------------------------------------------------------------


class TestFieldChanges:
    """Tests for the diff builder."""

    def test_equal_values_not_recorded(self):
        changes = FieldChanges()
        assert changes.propose("title", "Crash", "Crash") is False
        assert not changes.dirty
        assert len(changes) == 0

    def test_differing_value_recorded(self):
        changes = FieldChanges()
        assert changes.propose("title", "Crash", "Crash on save") is True
        assert changes.dirty
        assert "title" in changes
        assert changes.as_dict() == {"title": "Crash on save"}

    def test_reproposing_current_value_drops_change(self):
        changes = FieldChanges()
        changes.propose("state", "New", "Active")
        changes.propose("state", "New", "New")
        assert not changes.dirty

    def test_propose_all_and_apply(self):
        item = _item(fields={"Priority": "2"})
        changes = FieldChanges()
        changes.propose_all(
            item, {"title": "Crash", "Priority": "1", "Severity": "2 - High"}
        )

        assert sorted(changes) == ["Priority", "Severity"]
        changes.apply(item)
        assert item.fields == {"Priority": "1", "Severity": "2 - High"}
        assert item.title == "Crash"

    def test_repr_lists_names(self):
        changes = FieldChanges()
        changes.propose("b", 1, 2)
        changes.propose("a", 1, 2)
        assert repr(changes) == "FieldChanges(['a', 'b'])"


# -------------------------------------------------------------------------
# validate_and_save()
# -------------------------------------------------------------------------


class TestValidateAndSave:
    """Tests for validated remote writes."""

    def test_valid_item_saved(self, remote_system):
        saved = validate_and_save(remote_system, _item())
        assert saved.item_id is not None
        assert len(remote_system.writes) == 1

    def test_invalid_fields_logged_and_nothing_saved(self, remote_system, caplog):
        remote_system.validation_issues = [
            FieldIssue(
                field="State",
                value="Bogus",
                status="InvalidListValue",
                allowed_values=["New", "Active"],
            )
        ]
        with caplog.at_level(logging.ERROR):
            with pytest.raises(RemoteValidationError) as exc_info:
                validate_and_save(
                    remote_system, _item(), project_id=1, artifact_id=42
                )

        assert remote_system.writes == []
        assert exc_info.value.field == "State"
        assert len(exc_info.value.issues) == 1
        assert "allowed values: New, Active" in caplog.text

    def test_warning_level_for_secondary_saves(self, remote_system, caplog):
        remote_system.validation_issues = [FieldIssue(field="Reason")]
        with caplog.at_level(logging.WARNING):
            with pytest.raises(RemoteValidationError):
                validate_and_save(remote_system, _item(), level=logging.WARNING)
        assert all(r.levelno == logging.WARNING for r in caplog.records)

    def test_save_failure_wrapped(self, remote_system):
        remote_system.save_error = ConnectionError("timed out")
        with pytest.raises(RemoteSaveError, match="timed out") as exc_info:
            validate_and_save(remote_system, _item(item_id=7), artifact_id=42)
        assert isinstance(exc_info.value.__cause__, ConnectionError)

    def test_save_failure_issues_preserved(self, remote_system):
        remote_system.save_error = RemoteSaveError(
            "rejected", [FieldIssue(field="Area", value=3)]
        )
        with pytest.raises(RemoteSaveError) as exc_info:
            validate_and_save(remote_system, _item(item_id=7))
        assert [i.field for i in exc_info.value.issues] == ["Area"]
