# =============================================================================
# tests/unit/test_reconciliation_engine.py
# Unit Tests for ReconciliationEngine
# =============================================================================

import pytest
from datetime import timedelta

from tardiness_core.errors import LocalStorageFailure
from tardiness_core.models import (
    OPTIONS_COLLECTION,
    TARDINESS_COLLECTION,
    Option,
    PendingMutation,
    SyncState,
    TardinessRecord,
    format_timestamp,
)


def _record(record_id, name, when, grade="11", strand="STEM", section="A"):
    stamp = format_timestamp(when)
    return TardinessRecord(record_id, name, grade, strand, section, stamp, stamp)


class TestStartupLoad:
    """Test cache load, remote overlay and merge"""

    def test_default_options_when_cache_empty(self, engine, cache):
        """Defaults are used and persisted when no options are cached"""
        assert engine.options == sorted(engine.options)
        assert Option(11, "STEM", "A") in engine.options
        assert cache.has_options()

    def test_remote_wins_on_identity_collision(self, make_engine, cache, fake_remote, fixed_now):
        """Remote copy replaces the local one; unknown remote records are added"""
        cache.save_entries([_record("a", "Old Name", fixed_now - timedelta(hours=2))])
        fake_remote.collections[TARDINESS_COLLECTION] = {
            "a": _record("a", "New Name", fixed_now - timedelta(hours=2)).to_document(),
            "b": _record("b", "Ben Cruz", fixed_now - timedelta(hours=1)).to_document(),
        }

        engine = make_engine()

        assert [e.id for e in engine.entries] == ["b", "a"]
        assert engine.get_entry("a").full_name == "New Name"
        assert engine.sync_status("b") == SyncState.SYNCED
        assert [e.id for e in cache.load_entries()] == ["b", "a"]

    def test_merge_is_idempotent(self, fixed_now):
        """Merging the same remote snapshot twice changes nothing"""
        from tardiness_core.offline import ReconciliationEngine

        local = [_record("a", "Ana", fixed_now), _record("c", "Cara", fixed_now - timedelta(days=1))]
        remote = [_record("a", "Ana Reyes", fixed_now), _record("b", "Ben", fixed_now - timedelta(hours=3))]

        once = ReconciliationEngine.merge_entries(local, remote)
        twice = ReconciliationEngine.merge_entries(once, remote)

        assert once == twice
        assert [e.id for e in once] == ["a", "b", "c"]

    def test_remote_options_merge_ignores_document_id(self, make_engine, fake_remote):
        """Option documents from the remote store carry an id column"""
        fake_remote.collections[OPTIONS_COLLECTION]["10-GAS-B"] = {
            "id": "10-GAS-B", "grade": 10, "strand": "GAS", "section": "B",
        }

        engine = make_engine()

        assert engine.options[0] == Option(10, "GAS", "B")
        assert engine.sync_status("10-GAS-B") == SyncState.SYNCED

    def test_remote_fetch_failure_keeps_local_data(self, make_engine, cache, fake_remote, notices, fixed_now):
        """A failed fetch skips the overlay with an info notice"""
        cache.save_entries([_record("a", "Ana", fixed_now)])
        fake_remote.fail_on.add("fetch_all")

        engine = make_engine(load=False)
        result = engine.load()

        assert result.success
        assert result.metadata["source"] == "local"
        assert [e.id for e in engine.entries] == ["a"]
        assert ("info", "Could not reach the server. Using local data.") in notices

    def test_offline_load_makes_no_remote_calls(self, make_engine, cache, fake_remote, monitor, fixed_now):
        """Offline startup uses the cache only"""
        cache.save_entries([_record("a", "Ana", fixed_now)])
        monitor.set_online(False)

        engine = make_engine()

        assert fake_remote.calls == []
        assert [e.id for e in engine.entries] == ["a"]

    def test_persisted_queue_marks_records_local_only(self, make_engine, cache, monitor, fixed_now):
        """Ids with queued mutations start LOCAL_ONLY, the rest SYNCED"""
        queued = _record("q1", "Queued Student", fixed_now)
        cache.save_entries([queued, _record("s1", "Synced Student", fixed_now - timedelta(hours=1))])
        cache.save_queue([PendingMutation(TARDINESS_COLLECTION, "create", "q1", queued.to_document())])
        monitor.set_online(False)

        engine = make_engine()

        assert engine.sync_status("q1") == SyncState.LOCAL_ONLY
        assert engine.sync_status("s1") == SyncState.SYNCED
        assert engine.pending_count == 1

    def test_persisted_queue_replayed_before_fetch(self, make_engine, cache, fake_remote, fixed_now):
        """Startup replays the stored queue, then fetches"""
        queued = _record("q1", "Queued Student", fixed_now)
        cache.save_entries([queued])
        cache.save_queue([PendingMutation(TARDINESS_COLLECTION, "create", "q1", queued.to_document())])

        engine = make_engine()

        assert fake_remote.calls[0] == ("put", TARDINESS_COLLECTION, "q1")
        assert fake_remote.calls[1][0] == "fetch_all"
        assert engine.pending_count == 0
        assert cache.load_queue() == []
        assert engine.sync_status("q1") == SyncState.SYNCED


class TestDuplicateDetection:
    """Test same-day duplicate detection"""

    def test_second_same_day_entry_is_flagged(self, engine):
        """The second entry today is not inserted and reports count 2"""
        first = engine.add_entry("Juan Dela Cruz", "11", "STEM", "A").data.record

        result = engine.add_entry("Juan Dela Cruz", "11", "STEM", "A")

        assert result.success
        assert not result.data.added
        assert result.data.duplicate.is_duplicate
        assert result.data.duplicate.count == 2
        assert result.data.duplicate.previous_entry == first
        assert len(engine.entries) == 1

    def test_name_comparison_ignores_case(self, engine):
        engine.add_entry("juan dela cruz", "11", "STEM", "A")

        check = engine.check_duplicate("JUAN DELA CRUZ", "11", "STEM", "A")

        assert check.is_duplicate

    def test_other_section_is_not_a_duplicate(self, engine):
        engine.add_entry("Juan Dela Cruz", "11", "STEM", "A")

        check = engine.check_duplicate("Juan Dela Cruz", "11", "STEM", "B")

        assert not check.is_duplicate
        assert check.count == 1

    def test_yesterday_does_not_count(self, engine, clock):
        """Only entries since local midnight count"""
        engine.add_entry("Juan Dela Cruz", "11", "STEM", "A")
        clock.advance(days=1)

        result = engine.add_entry("Juan Dela Cruz", "11", "STEM", "A")

        assert result.data.added
        assert len(engine.entries) == 2

    def test_confirm_bypasses_check_and_previous_is_most_recent(self, engine, clock):
        """confirm_entry always inserts; previous_entry is the latest match"""
        engine.add_entry("Ana Reyes", "12", "HUMSS", "A")
        clock.advance(minutes=30)
        second = engine.confirm_entry("Ana Reyes", "12", "HUMSS", "A").data.record
        clock.advance(minutes=30)

        check = engine.check_duplicate("ana reyes", "12", "HUMSS", "A")

        assert len(engine.entries) == 2
        assert check.count == 3
        assert check.previous_entry == second

    def test_numeric_name_from_remote_does_not_break_add_or_search(self, make_engine, fake_remote, fixed_now):
        """A remote document whose fullName is a number is read as text"""
        from tardiness_core.services import filter_entries

        fake_remote.collections[TARDINESS_COLLECTION]["x1"] = {
            "id": "x1", "fullName": 123, "grade": "11", "strand": "STEM",
            "section": "A", "timestamp": format_timestamp(fixed_now - timedelta(hours=1)),
        }
        engine = make_engine()

        result = engine.add_entry("Juan", "11", "STEM", "A")

        assert result.success
        assert result.data.added
        assert [e.id for e in filter_entries(engine.entries, search="12")] == ["x1"]
        assert [e.id for e in filter_entries(engine.entries, search="juan")] == [result.data.record.id]


class TestAddEntry:
    """Test entry insertion and dispatch"""

    def test_online_add_writes_remote(self, engine, fake_remote):
        result = engine.add_entry("  juan DELA cruz ", "11", "STEM", "A")

        record = result.data.record
        assert result.success and result.data.added
        assert record.full_name == "Juan Dela Cruz"
        assert record.timestamp == record.created_at
        assert fake_remote.writes() == [("put", TARDINESS_COLLECTION, record.id)]
        assert fake_remote.collections[TARDINESS_COLLECTION][record.id]["fullName"] == "Juan Dela Cruz"
        assert engine.sync_status(record.id) == SyncState.SYNCED
        assert engine.pending_count == 0

    def test_newest_entry_is_first(self, engine, clock):
        engine.add_entry("Ana Reyes", "11", "STEM", "A")
        clock.advance(minutes=1)
        newest = engine.add_entry("Ben Cruz", "11", "STEM", "A").data.record

        assert engine.entries[0] == newest

    def test_offline_add_is_queued(self, engine, fake_remote, monitor, notices):
        monitor.set_online(False)

        record = engine.add_entry("Ana Reyes", "11", "STEM", "A").data.record

        assert fake_remote.writes() == []
        assert engine.pending_count == 1
        assert engine.pending[0].action.value == "create"
        assert engine.pending[0].doc_id == record.id
        assert engine.sync_status(record.id) == SyncState.LOCAL_ONLY
        assert ("info", "Entry saved locally. Will sync when online.") in notices

    def test_failed_remote_write_is_queued(self, engine, fake_remote):
        fake_remote.fail_on.add("put")

        result = engine.add_entry("Ana Reyes", "11", "STEM", "A")

        assert result.success
        assert engine.pending_count == 1
        assert engine.sync_status(result.data.record.id) == SyncState.LOCAL_ONLY

    def test_unconfigured_remote_queues(self, engine, fake_remote):
        fake_remote.configured = False

        engine.add_entry("Ana Reyes", "11", "STEM", "A")

        assert fake_remote.writes() == []
        assert engine.pending_count == 1

    def test_entry_persists_to_cache(self, engine, cache_path):
        from tardiness_core.offline import LocalCache

        record = engine.add_entry("Ana Reyes", "11", "STEM", "A").data.record

        reopened = LocalCache(cache_path)
        assert reopened.load_entries() == [record]
        reopened.close()

    def test_ids_are_unique(self, engine):
        for _ in range(50):
            engine.confirm_entry("Ana Reyes", "11", "STEM", "A")

        ids = [e.id for e in engine.entries]
        assert len(set(ids)) == 50

    @pytest.mark.parametrize("fields", [
        ("", "11", "STEM", "A"),
        ("Ana Reyes", "", "STEM", "A"),
        ("Ana Reyes", "11", "  ", "A"),
        ("Ana Reyes", "11", "STEM", None),
    ])
    def test_missing_field_is_rejected(self, engine, fake_remote, fields):
        result = engine.add_entry(*fields)

        assert not result.success
        assert result.error_code == "VALID_001"
        assert engine.entries == []
        assert fake_remote.writes() == []

    def test_local_failure_keeps_memory_and_still_dispatches(self, engine, fake_remote, notices, monkeypatch):
        """A cache write failure is reported but the entry still reaches the remote"""
        def broken_save(entries):
            raise LocalStorageFailure("disk full", key="tardinessData")

        monkeypatch.setattr(engine.cache, "save_entries", broken_save)

        result = engine.add_entry("Ana Reyes", "11", "STEM", "A")

        assert not result.success
        assert result.error_code == "LOCAL_001"
        assert result.data.added
        assert engine.entries == [result.data.record]
        assert fake_remote.writes() == [("put", TARDINESS_COLLECTION, result.data.record.id)]
        assert any(level == "warning" for level, _ in notices)


class TestEditAndDelete:
    """Test entry edits and deletions"""

    def test_edit_replaces_in_place(self, engine, fake_remote, clock):
        """Position is kept, timestamp moves, created_at does not"""
        original = engine.add_entry("Ana Reyes", "11", "STEM", "A").data.record
        engine.add_entry("Ben Cruz", "11", "STEM", "A")
        clock.advance(minutes=10)

        result = engine.edit_entry(original.id, "ana santos", "12", "HUMSS", "A")

        updated = result.data
        assert result.success
        assert engine.entries[1] == updated
        assert updated.full_name == "Ana Santos"
        assert updated.created_at == original.created_at
        assert updated.timestamp != original.timestamp
        assert fake_remote.writes()[-1] == ("update", TARDINESS_COLLECTION, original.id)
        assert fake_remote.collections[TARDINESS_COLLECTION][original.id]["grade"] == "12"

    def test_edit_offline_is_queued(self, engine, monitor):
        record = engine.add_entry("Ana Reyes", "11", "STEM", "A").data.record
        monitor.set_online(False)

        engine.edit_entry(record.id, "Ana Reyes", "11", "STEM", "B")

        assert [m.action.value for m in engine.pending] == ["update"]
        assert engine.sync_status(record.id) == SyncState.LOCAL_ONLY

    def test_edit_unknown_id(self, engine):
        result = engine.edit_entry("missing", "Ana Reyes", "11", "STEM", "A")

        assert result.error_code == "NOT_FOUND"
        assert engine.pending_count == 0

    def test_delete_online(self, engine, fake_remote):
        record = engine.add_entry("Ana Reyes", "11", "STEM", "A").data.record

        result = engine.delete_entry(record.id)

        assert result.success
        assert engine.entries == []
        assert record.id not in fake_remote.collections[TARDINESS_COLLECTION]
        assert engine.sync_status(record.id) is None

    def test_delete_offline_is_queued(self, engine, monitor):
        record = engine.add_entry("Ana Reyes", "11", "STEM", "A").data.record
        monitor.set_online(False)

        engine.delete_entry(record.id)

        assert [(m.action.value, m.doc_id) for m in engine.pending] == [("delete", record.id)]

    def test_delete_unknown_id(self, engine):
        assert engine.delete_entry("missing").error_code == "NOT_FOUND"


class TestOptions:
    """Test grade/strand/section option management"""

    def test_add_option_keeps_sorted_and_writes_remote(self, engine, fake_remote):
        result = engine.add_option(11, "ABM", "A")

        assert result.success
        assert engine.options[0] == Option(11, "ABM", "A")
        assert engine.options == sorted(engine.options)
        assert fake_remote.collections[OPTIONS_COLLECTION]["11-ABM-A"] == {
            "id": "11-ABM-A", "grade": 11, "strand": "ABM", "section": "A",
        }

    def test_duplicate_option_is_rejected(self, engine, fake_remote):
        before = engine.options

        result = engine.add_option("11", "STEM", "A")

        assert result.error_code == "OPTION_001"
        assert engine.options == before
        assert fake_remote.writes() == []
        assert engine.pending_count == 0

    def test_invalid_grade_is_rejected(self, engine):
        assert engine.add_option("eleven", "STEM", "C").error_code == "VALID_001"

    def test_delete_option_offline(self, engine, monitor):
        monitor.set_online(False)

        result = engine.delete_option(11, "STEM", "B")

        assert result.success
        assert Option(11, "STEM", "B") not in engine.options
        assert [(m.collection, m.action.value, m.doc_id) for m in engine.pending] == [
            (OPTIONS_COLLECTION, "delete", "11-STEM-B"),
        ]

    def test_delete_unknown_option(self, engine):
        assert engine.delete_option(9, "X", "Y").error_code == "NOT_FOUND"


class TestReplay:
    """Test pending-queue replay"""

    def test_reconnect_replays_in_order(self, engine, fake_remote, monitor, cache, notices):
        monitor.set_online(False)
        ana = engine.add_entry("Ana Reyes", "11", "STEM", "A").data.record
        ben = engine.add_entry("Ben Cruz", "11", "STEM", "A").data.record
        engine.edit_entry(ben.id, "Ben Cruz", "11", "STEM", "B")
        engine.delete_entry(ana.id)

        monitor.set_online(True)

        assert fake_remote.writes() == [
            ("put", TARDINESS_COLLECTION, ana.id),
            ("put", TARDINESS_COLLECTION, ben.id),
            ("update", TARDINESS_COLLECTION, ben.id),
            ("delete", TARDINESS_COLLECTION, ana.id),
        ]
        assert engine.pending_count == 0
        assert cache.load_queue() == []
        assert engine.sync_status(ben.id) == SyncState.SYNCED
        assert engine.sync_status(ana.id) is None
        assert list(fake_remote.collections[TARDINESS_COLLECTION]) == [ben.id]
        assert ("success", "All pending data synced successfully!") in notices

    def test_failure_aborts_and_keeps_queue(self, engine, fake_remote, monitor, cache):
        monitor.set_online(False)
        ana = engine.add_entry("Ana Reyes", "11", "STEM", "A").data.record
        ben = engine.add_entry("Ben Cruz", "11", "STEM", "A").data.record
        engine.add_option(12, "ABM", "A")
        before = [m.to_dict() for m in engine.pending]
        fake_remote.fail_on.add(("put", ben.id))

        monitor.set_online(True)

        assert [m.to_dict() for m in engine.pending] == before
        assert [m.to_dict() for m in cache.load_queue()] == before
        assert fake_remote.writes() == [
            ("put", TARDINESS_COLLECTION, ana.id),
            ("put", TARDINESS_COLLECTION, ben.id),
        ]
        assert engine.sync_status(ben.id) == SyncState.LOCAL_ONLY
        assert engine.sync_status("12-ABM-A") == SyncState.LOCAL_ONLY

        result = engine.replay_pending()
        assert result.error_code == "SYNC_001"
        assert result.metadata["position"] == 1

        fake_remote.fail_on.clear()
        result = engine.sync_now()
        assert result.success
        assert result.data == 3
        assert engine.pending_count == 0

    def test_failed_replay_leaves_deleted_records_without_status(self, engine, fake_remote, monitor):
        """An entry added and deleted offline has no status after a failed replay"""
        monitor.set_online(False)
        ana = engine.add_entry("Ana Reyes", "11", "STEM", "A").data.record
        engine.delete_entry(ana.id)
        engine.add_option(12, "ABM", "A")
        engine.delete_option(12, "ABM", "A")
        fake_remote.fail_on.add("put")

        monitor.set_online(True)

        assert engine.pending_count == 4
        assert engine.sync_status(ana.id) is None
        assert engine.sync_status("12-ABM-A") is None

    def test_new_mutation_waits_behind_queue(self, engine, fake_remote, monitor):
        """While a queue exists, new mutations are queued rather than written live"""
        monitor.set_online(False)
        engine.add_entry("Ana Reyes", "11", "STEM", "A")
        fake_remote.fail_on.add("put")
        monitor.set_online(True)
        fake_remote.calls.clear()
        fake_remote.fail_on.clear()

        engine.add_entry("Ben Cruz", "11", "STEM", "A")

        assert fake_remote.writes() == []
        assert engine.pending_count == 2

    def test_replay_offline_fails_without_touching_queue(self, engine, monitor):
        monitor.set_online(False)
        engine.add_entry("Ana Reyes", "11", "STEM", "A")

        result = engine.replay_pending()

        assert result.error_code == "OFFLINE"
        assert engine.pending_count == 1

    def test_empty_queue(self, engine):
        result = engine.replay_pending()

        assert result.success
        assert result.data == 0


class TestReadApi:
    """Test snapshot and status helpers"""

    def test_snapshot_is_a_copy(self, engine):
        engine.add_entry("Ana Reyes", "11", "STEM", "A")

        snapshot = engine.snapshot()
        snapshot.entries.clear()
        snapshot.options.clear()

        assert len(engine.entries) == 1
        assert engine.options

    def test_status_display(self, engine, monitor):
        monitor.set_online(False)
        engine.add_entry("Ana Reyes", "11", "STEM", "A")

        status = engine.get_status_display()

        assert status["is_online"] is False
        assert status["pending_count"] == 1
        assert status["degraded"] is False
        assert status["last_sync_failed"] is False

    def test_status_display_records_background_replay_outcome(self, engine, fake_remote, monitor):
        """Reconnect replays run off the page, so their outcome is kept for display"""
        monitor.set_online(False)
        engine.add_entry("Ana Reyes", "11", "STEM", "A")
        fake_remote.fail_on.add("put")

        monitor.set_online(True)
        failed = engine.get_status_display()

        fake_remote.fail_on.clear()
        engine.sync_now()
        recovered = engine.get_status_display()

        assert failed["last_sync"] is not None
        assert failed["last_success"] is None
        assert failed["last_sync_failed"] is True
        assert recovered["last_success"] is not None
        assert recovered["last_sync_failed"] is False

    def test_offline_transition_notifies(self, engine, monitor, notices):
        monitor.set_online(False)

        assert notices[-1][0] == "warning"


class TestOfflineScenarios:
    """Test offline behaviour against pre-existing synced records"""

    def test_add_edit_delete_on_existing_ids_replay_in_order(self, make_engine, fake_remote, monitor, fixed_now):
        """Three offline mutations queue in order and all reach the remote store"""
        for record in (
            _record("x", "Xena Cruz", fixed_now - timedelta(hours=3)),
            _record("y", "Yuri Tan", fixed_now - timedelta(hours=2)),
        ):
            fake_remote.collections[TARDINESS_COLLECTION][record.id] = record.to_document()
        engine = make_engine()
        monitor.set_online(False)

        added = engine.add_entry("Zed Lim", "12", "HUMSS", "A").data.record
        engine.edit_entry("x", "Xena Cruz", "11", "STEM", "B")
        engine.delete_entry("y")

        assert [(m.action.value, m.doc_id) for m in engine.pending] == [
            ("create", added.id),
            ("update", "x"),
            ("delete", "y"),
        ]

        fake_remote.calls.clear()
        monitor.set_online(True)

        assert engine.pending_count == 0
        assert fake_remote.writes() == [
            ("put", TARDINESS_COLLECTION, added.id),
            ("update", TARDINESS_COLLECTION, "x"),
            ("delete", TARDINESS_COLLECTION, "y"),
        ]
        assert fake_remote.collections[TARDINESS_COLLECTION]["x"]["section"] == "B"
        assert set(fake_remote.collections[TARDINESS_COLLECTION]) == {"x", added.id}

    def test_corrupt_cache_starts_empty(self, make_engine, cache, monitor, notices, caplog):
        """Unreadable cached entries give an empty collection and a degraded notice"""
        import logging
        from tardiness_core.offline import ENTRIES_KEY

        with cache.transaction() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO kv_store (key, value) VALUES (?, ?)",
                [ENTRIES_KEY, "[{broken"],
            )
        monitor.set_online(False)

        with caplog.at_level(logging.ERROR):
            engine = make_engine()

        assert engine.entries == []
        assert engine.get_status_display()["degraded"] is True
        assert any(level == "warning" for level, _ in notices)
        assert "Malformed data" in caplog.text
