# =============================================================================
# tardiness_core/offline/reconciliation_engine.py
# Local-First Reconciliation of Cache, Remote Store and Offline Queue
# =============================================================================
"""
ReconciliationEngine - owns the canonical tardiness entries and options.

Every mutation is applied in memory, persisted to the local cache, then
either written to the remote store or appended to the pending queue. When
connectivity returns the queue is replayed in order; the first failure
aborts the pass and leaves the queue intact.

Record sync status is explicit (SyncState per id):

    LOCAL_ONLY --(remote write starts)--> SYNCING --(ok)--> SYNCED
        ^                                    |                 |
        +----------(write failed)------------+   (offline edit)+

All public operations return a ServiceResult and never raise.
"""

from __future__ import annotations
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from tardiness_core.errors import (
    DuplicateOptionRejected,
    LocalStorageFailure,
    Notifier,
    RemoteUnavailable,
    ReplayFailure,
    ValidationFailure,
    handle_error,
)
from tardiness_core.models import (
    DEFAULT_OPTIONS,
    OPTIONS_COLLECTION,
    TARDINESS_COLLECTION,
    DuplicateCheck,
    MutationAction,
    Option,
    PendingMutation,
    SyncState,
    TardinessRecord,
    capitalize_name,
    format_timestamp,
    generate_id,
    local_day_bounds,
)
from tardiness_core.services.base_service import BaseService, ServiceResult
from tardiness_core.data.remote_store import RemoteStoreClient
from tardiness_core.offline.connection_monitor import ConnectionMonitor, ConnectionState, ConnectionStatus
from tardiness_core.offline.local_cache import LocalCache

_EPOCH = datetime.fromtimestamp(0, timezone.utc)


@dataclass
class AddEntryResult:
    """Outcome of add_entry / confirm_entry."""
    added: bool
    record: Optional[TardinessRecord] = None
    duplicate: DuplicateCheck = field(default_factory=lambda: DuplicateCheck(False))


@dataclass
class Snapshot:
    """Read-only copy of the canonical collections for the presentation layer."""
    entries: List[TardinessRecord]
    options: List[Option]
    pending_count: int = 0


def _entry_sort_key(entry: TardinessRecord) -> datetime:
    return entry.occurred_at or _EPOCH


class ReconciliationEngine(BaseService):
    """
    Single writer of the entries, options and pending-mutation queue.

    Usage:
        engine = ReconciliationEngine(cache, remote, monitor)
        engine.attach()
        engine.load()
        result = engine.add_entry("juan dela cruz", "11", "STEM", "A")
        if result.success and not result.data.added:
            # duplicate today; ask the user, then
            engine.confirm_entry("juan dela cruz", "11", "STEM", "A")
    """

    def __init__(
        self,
        cache: LocalCache,
        remote: RemoteStoreClient,
        monitor: ConnectionMonitor,
        notifier: Optional[Notifier] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        super().__init__(notifier)
        self.cache = cache
        self.remote = remote
        self.monitor = monitor
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self._entries: List[TardinessRecord] = []
        self._options: List[Option] = []
        self._queue: List[PendingMutation] = []
        self._entry_status: Dict[str, SyncState] = {}
        self._option_status: Dict[str, SyncState] = {}

        # The monitor thread may trigger replay while the UI thread mutates
        self._lock = threading.RLock()
        self._replaying = False
        self.last_sync: Optional[datetime] = None
        self.last_sync_success: Optional[datetime] = None

    # =========================================================================
    # WIRING
    # =========================================================================

    def attach(self) -> None:
        """Subscribe to connectivity transitions."""
        self.monitor.register_callback(self.on_connection_change)

    def detach(self) -> None:
        self.monitor.unregister_callback(self.on_connection_change)

    def on_connection_change(self, state: ConnectionState) -> None:
        """Replay the queue when connectivity returns."""
        if state.status == ConnectionStatus.ONLINE:
            self.logger.info("Connection restored, triggering sync")
            self.replay_pending()
        elif state.status == ConnectionStatus.OFFLINE:
            self.notify("You are currently offline. Data will be saved locally.", "warning")

    @property
    def can_reach_remote(self) -> bool:
        return self.monitor.is_online and self.remote.is_configured

    # =========================================================================
    # READ API
    # =========================================================================

    @property
    def entries(self) -> List[TardinessRecord]:
        with self._lock:
            return list(self._entries)

    @property
    def options(self) -> List[Option]:
        with self._lock:
            return list(self._options)

    @property
    def pending(self) -> List[PendingMutation]:
        with self._lock:
            return list(self._queue)

    @property
    def pending_count(self) -> int:
        return len(self._queue)

    def snapshot(self) -> Snapshot:
        with self._lock:
            return Snapshot(list(self._entries), list(self._options), len(self._queue))

    def get_entry(self, entry_id: str) -> Optional[TardinessRecord]:
        index = self._index_of(entry_id)
        return None if index is None else self._entries[index]

    def sync_status(self, doc_id: str) -> Optional[SyncState]:
        """Sync status of an entry id or an option doc id."""
        return self._entry_status.get(doc_id) or self._option_status.get(doc_id)

    def get_status_display(self) -> Dict[str, Any]:
        return {
            "is_online": self.monitor.is_online,
            "remote_configured": self.remote.is_configured,
            "pending_count": self.pending_count,
            "degraded": self.cache.degraded,
            "last_sync": self.last_sync.isoformat() if self.last_sync else None,
            "last_success": self.last_sync_success.isoformat() if self.last_sync_success else None,
            "last_sync_failed": self.last_sync is not None and (
                self.last_sync_success is None or self.last_sync_success < self.last_sync
            ),
        }

    # =========================================================================
    # STARTUP LOAD AND MERGE
    # =========================================================================

    def load(self) -> ServiceResult:
        """
        Populate the collections from the cache, then overlay the remote
        snapshot when reachable. Persisted pending mutations are replayed
        before the overlay so the merge cannot undo them.
        """
        with self._lock, self.log_operation("Loading tardiness data"):
            self._load_local()
            if self.cache.degraded:
                self.notify(
                    "Local storage could not be read. Running in degraded local-only mode.",
                    "warning",
                )

            if not self.can_reach_remote:
                self.logger.info("Offline - using local data only")
                return ServiceResult.ok(self.snapshot(), metadata={"source": "local"})

            if self._queue and not self.replay_pending().success:
                return ServiceResult.ok(
                    self.snapshot(),
                    metadata={"source": "local", "replay_failed": True},
                )

            try:
                remote_entries = self.remote.fetch_all(
                    TARDINESS_COLLECTION, order_by="timestamp", descending=True
                )
                remote_options = self.remote.fetch_all(OPTIONS_COLLECTION)
            except RemoteUnavailable as e:
                self.logger.warning(f"Skipping remote overlay: {e}")
                self.notify("Could not reach the server. Using local data.", "info")
                return ServiceResult.ok(self.snapshot(), metadata={"source": "local"})

            remote_records = self._parse_documents(remote_entries, TardinessRecord.from_document)
            remote_option_set = self._parse_documents(remote_options, Option.from_document)

            self._entries = self.merge_entries(self._entries, remote_records)
            self._options = self.merge_options(self._options, remote_option_set)
            for record in remote_records:
                self._entry_status[record.id] = SyncState.SYNCED
            for option in remote_option_set:
                self._option_status[option.doc_id] = SyncState.SYNCED

            degraded = self._persist_entries() is not None
            degraded = (self._persist_options() is not None) or degraded
            self.logger.info(
                f"Merged {len(remote_records)} remote entries; {len(self._entries)} total"
            )
            return ServiceResult.ok(
                self.snapshot(),
                metadata={"source": "remote", "degraded": degraded},
            )

    def _load_local(self) -> None:
        self._entries = self.cache.load_entries()

        if self.cache.has_options():
            self._options = sorted(set(self.cache.load_options()))
        else:
            self._options = sorted(DEFAULT_OPTIONS)
            self._persist_options()

        self._queue = self.cache.load_queue()
        queued_ids = {(m.collection, m.doc_id) for m in self._queue}

        self._entry_status = {
            entry.id: (
                SyncState.LOCAL_ONLY
                if (TARDINESS_COLLECTION, entry.id) in queued_ids
                else SyncState.SYNCED
            )
            for entry in self._entries
        }
        self._option_status = {
            option.doc_id: (
                SyncState.LOCAL_ONLY
                if (OPTIONS_COLLECTION, option.doc_id) in queued_ids
                else SyncState.SYNCED
            )
            for option in self._options
        }
        self.logger.info(
            f"Loaded {len(self._entries)} entries, {len(self._options)} options, "
            f"{len(self._queue)} pending from local cache"
        )

    def _parse_documents(self, documents: List[Dict[str, Any]], parse: Callable) -> List[Any]:
        parsed = []
        for doc in documents:
            try:
                parsed.append(parse(doc))
            except ValueError as e:
                self.logger.warning(f"Ignoring remote document: {e}")
        return parsed

    @staticmethod
    def merge_entries(
        local: List[TardinessRecord],
        remote: List[TardinessRecord],
    ) -> List[TardinessRecord]:
        """
        Overlay remote records on local ones by id; remote wins on collision.

        Idempotent: merging the same remote list again changes nothing.
        """
        merged = list(local)
        position = {entry.id: i for i, entry in enumerate(merged)}
        for record in remote:
            if record.id in position:
                merged[position[record.id]] = record
            else:
                position[record.id] = len(merged)
                merged.append(record)
        merged.sort(key=_entry_sort_key, reverse=True)
        return merged

    @staticmethod
    def merge_options(local: List[Option], remote: List[Option]) -> List[Option]:
        """Union of both option sets by triple, sorted by grade, strand, section."""
        return sorted(set(local) | set(remote))

    # =========================================================================
    # ENTRIES
    # =========================================================================

    def check_duplicate(self, full_name: str, grade: Any, strand: str, section: str) -> DuplicateCheck:
        """
        Scan today's entries (local midnight to next local midnight) for the
        same student in the same grade/strand/section.

        count is the ordinal the new entry would have for today.
        """
        name = capitalize_name(full_name)
        grade = "" if grade is None else str(grade).strip()
        strand = (strand or "").strip()
        section = (section or "").strip()
        day_start, day_end = local_day_bounds(self._clock())

        with self._lock:
            matches = [
                entry for entry in self._entries
                if entry.occurred_at is not None
                and day_start <= entry.occurred_at < day_end
                and entry.matches(name, grade, strand, section)
            ]

        previous = max(matches, key=_entry_sort_key) if matches else None
        return DuplicateCheck(bool(matches), len(matches) + 1, previous)

    def add_entry(self, full_name: str, grade: Any, strand: str, section: str) -> ServiceResult:
        """
        Record a late arrival unless the student is already logged today.

        On a same-day duplicate nothing is inserted; result.data.added is
        False and result.data.duplicate carries the count and previous entry.
        """
        with self._lock:
            invalid = self._validate_entry(full_name, grade, strand, section)
            if invalid is not None:
                return invalid

            check = self.check_duplicate(full_name, grade, strand, section)
            if check.is_duplicate:
                self.logger.info(
                    f"Duplicate entry for {capitalize_name(full_name)} today (#{check.count})"
                )
                return ServiceResult.ok(AddEntryResult(added=False, duplicate=check))

            return self._insert_entry(full_name, grade, strand, section, check)

    def confirm_entry(self, full_name: str, grade: Any, strand: str, section: str) -> ServiceResult:
        """Record a late arrival without the duplicate check."""
        with self._lock:
            invalid = self._validate_entry(full_name, grade, strand, section)
            if invalid is not None:
                return invalid

            check = self.check_duplicate(full_name, grade, strand, section)
            return self._insert_entry(full_name, grade, strand, section, check)

    def _insert_entry(
        self,
        full_name: str,
        grade: Any,
        strand: str,
        section: str,
        check: DuplicateCheck,
    ) -> ServiceResult:
        stamp = format_timestamp(self._clock())
        record = TardinessRecord(
            id=self._new_entry_id(),
            full_name=capitalize_name(full_name),
            grade=str(grade).strip(),
            strand=strand.strip(),
            section=section.strip(),
            timestamp=stamp,
            created_at=stamp,
        )

        self._entries.insert(0, record)
        self._entry_status[record.id] = SyncState.LOCAL_ONLY
        local_error = self._persist_entries()

        synced = self._dispatch(PendingMutation(
            TARDINESS_COLLECTION, MutationAction.CREATE, record.id, record.to_document()
        ))
        if not synced:
            self.notify("Entry saved locally. Will sync when online.", "info")

        outcome = AddEntryResult(added=True, record=record, duplicate=check)
        if local_error is not None:
            return ServiceResult.from_exception(local_error, data=outcome)
        return ServiceResult.ok(outcome)

    def edit_entry(
        self,
        entry_id: str,
        full_name: str,
        grade: Any,
        strand: str,
        section: str,
    ) -> ServiceResult:
        """
        Replace an entry's fields in place. The timestamp becomes the edit
        time; created_at keeps the original arrival time.
        """
        with self._lock:
            invalid = self._validate_entry(full_name, grade, strand, section)
            if invalid is not None:
                return invalid

            index = self._index_of(entry_id)
            if index is None:
                return ServiceResult.fail(f"No entry with id {entry_id}", error_code="NOT_FOUND")

            current = self._entries[index]
            updated = TardinessRecord(
                id=current.id,
                full_name=capitalize_name(full_name),
                grade=str(grade).strip(),
                strand=strand.strip(),
                section=section.strip(),
                timestamp=format_timestamp(self._clock()),
                created_at=current.created_at,
            )
            self._entries[index] = updated
            local_error = self._persist_entries()

            synced = self._dispatch(PendingMutation(
                TARDINESS_COLLECTION, MutationAction.UPDATE, updated.id, updated.to_document()
            ))
            if not synced:
                self.notify("Entry updated locally. Will sync when online.", "info")

            if local_error is not None:
                return ServiceResult.from_exception(local_error, data=updated)
            return ServiceResult.ok(updated)

    def delete_entry(self, entry_id: str) -> ServiceResult:
        with self._lock:
            index = self._index_of(entry_id)
            if index is None:
                return ServiceResult.fail(f"No entry with id {entry_id}", error_code="NOT_FOUND")

            removed = self._entries.pop(index)
            local_error = self._persist_entries()

            synced = self._dispatch(PendingMutation(
                TARDINESS_COLLECTION, MutationAction.DELETE, removed.id
            ))
            if not synced:
                self.notify("Entry deleted locally. Will sync when online.", "info")

            if local_error is not None:
                return ServiceResult.from_exception(local_error, data=removed)
            return ServiceResult.ok(removed)

    def _validate_entry(self, full_name: Any, grade: Any, strand: Any, section: Any) -> Optional[ServiceResult]:
        for field_name, value in (
            ("fullName", full_name),
            ("grade", grade),
            ("strand", strand),
            ("section", section),
        ):
            if value is None or not str(value).strip():
                error = ValidationFailure(f"Missing required field: {field_name}", field=field_name)
                handle_error(error, notify=self.notify, user_message="Please fill in all fields.")
                return ServiceResult.from_exception(error)
            if field_name in ("fullName", "strand", "section") and not isinstance(value, str):
                error = ValidationFailure(f"Field {field_name} must be text", field=field_name)
                handle_error(error, notify=self.notify)
                return ServiceResult.from_exception(error)
        return None

    def _index_of(self, entry_id: str) -> Optional[int]:
        for i, entry in enumerate(self._entries):
            if entry.id == entry_id:
                return i
        return None

    def _new_entry_id(self) -> str:
        existing = {entry.id for entry in self._entries}
        new_id = generate_id()
        while new_id in existing:
            new_id = generate_id()
        return new_id

    # =========================================================================
    # OPTIONS
    # =========================================================================

    def add_option(self, grade: Any, strand: str, section: str) -> ServiceResult:
        """Add a grade/strand/section option; an existing triple is rejected."""
        with self._lock:
            option = self._build_option(grade, strand, section)
            if isinstance(option, ServiceResult):
                return option

            if option in self._options:
                error = DuplicateOptionRejected(
                    f"Option {option.label} already exists",
                    option=option.doc_id,
                )
                handle_error(error, notify=self.notify, user_message="This combination already exists!")
                return ServiceResult.from_exception(error)

            self._options.append(option)
            self._options.sort()
            self._option_status[option.doc_id] = SyncState.LOCAL_ONLY
            local_error = self._persist_options()

            synced = self._dispatch(PendingMutation(
                OPTIONS_COLLECTION, MutationAction.ADD, option.doc_id, option.to_document()
            ))
            if not synced:
                self.notify("Option added locally. Will sync when online.", "info")

            if local_error is not None:
                return ServiceResult.from_exception(local_error, data=option)
            return ServiceResult.ok(option)

    def delete_option(self, grade: Any, strand: str, section: str) -> ServiceResult:
        with self._lock:
            option = self._build_option(grade, strand, section)
            if isinstance(option, ServiceResult):
                return option

            if option not in self._options:
                return ServiceResult.fail(f"No option {option.label}", error_code="NOT_FOUND")

            self._options.remove(option)
            local_error = self._persist_options()

            synced = self._dispatch(PendingMutation(
                OPTIONS_COLLECTION, MutationAction.DELETE, option.doc_id
            ))
            if not synced:
                self.notify("Option deleted locally. Will sync when online.", "info")

            if local_error is not None:
                return ServiceResult.from_exception(local_error, data=option)
            return ServiceResult.ok(option)

    def _build_option(self, grade: Any, strand: Any, section: Any):
        try:
            option = Option(int(grade), str(strand).strip(), str(section).strip())
        except (TypeError, ValueError):
            error = ValidationFailure(f"Grade must be a whole number, got {grade!r}", field="grade")
            handle_error(error, notify=self.notify)
            return ServiceResult.from_exception(error)

        if strand is None or section is None or not option.strand or not option.section:
            error = ValidationFailure("Strand and section are required", field="strand/section")
            handle_error(error, notify=self.notify, user_message="Please fill in all fields.")
            return ServiceResult.from_exception(error)
        return option

    # =========================================================================
    # REMOTE DISPATCH AND QUEUE
    # =========================================================================

    def _status_map(self, collection: str) -> Dict[str, SyncState]:
        return self._entry_status if collection == TARDINESS_COLLECTION else self._option_status

    def _holds(self, collection: str, doc_id: str) -> bool:
        """Whether the record a mutation targets is still in memory."""
        if collection == TARDINESS_COLLECTION:
            return self._index_of(doc_id) is not None
        return any(option.doc_id == doc_id for option in self._options)

    def _mark_in_flight(self, pending: List[PendingMutation], state: SyncState) -> None:
        for mutation in pending:
            if mutation.action != MutationAction.DELETE and self._holds(mutation.collection, mutation.doc_id):
                self._status_map(mutation.collection)[mutation.doc_id] = state

    def _apply_remote(self, mutation: PendingMutation) -> None:
        """
        Perform the remote operation a mutation stands for.

        Raises:
            RemoteUnavailable: If the remote call fails
            ValueError: If the mutation is not a known collection/action pair
        """
        collection, action = mutation.collection, mutation.action

        if collection == TARDINESS_COLLECTION:
            if action == MutationAction.CREATE:
                self.remote.put(collection, mutation.doc_id, mutation.payload)
            elif action == MutationAction.UPDATE:
                self.remote.update(collection, mutation.doc_id, mutation.payload)
            elif action == MutationAction.DELETE:
                self.remote.delete(collection, mutation.doc_id)
            else:
                raise ValueError(f"Unsupported action {action.value} for {collection}")
        elif collection == OPTIONS_COLLECTION:
            if action == MutationAction.ADD:
                self.remote.put(collection, mutation.doc_id, mutation.payload)
            elif action == MutationAction.DELETE:
                self.remote.delete(collection, mutation.doc_id)
            else:
                raise ValueError(f"Unsupported action {action.value} for {collection}")
        else:
            raise ValueError(f"Unknown collection {collection}")

    def _mark_applied(self, mutation: PendingMutation) -> None:
        status = self._status_map(mutation.collection)
        if mutation.action == MutationAction.DELETE:
            status.pop(mutation.doc_id, None)
        else:
            status[mutation.doc_id] = SyncState.SYNCED

    def _dispatch(self, mutation: PendingMutation) -> bool:
        """
        Write a mutation to the remote store, or queue it.

        A live write is only attempted when the queue is empty, so the remote
        store always sees mutations in dispatch order.

        Returns:
            True if the remote store accepted the write
        """
        status = self._status_map(mutation.collection)

        if self.can_reach_remote and not self._queue:
            if mutation.action != MutationAction.DELETE:
                status[mutation.doc_id] = SyncState.SYNCING
            try:
                self._apply_remote(mutation)
            except RemoteUnavailable as e:
                self.logger.warning(f"Remote write failed, queueing for later: {e}")
            else:
                self._mark_applied(mutation)
                return True

        self._enqueue(mutation)
        return False

    def _enqueue(self, mutation: PendingMutation) -> None:
        self._queue.append(mutation)
        status = self._status_map(mutation.collection)
        if mutation.action == MutationAction.DELETE:
            status.pop(mutation.doc_id, None)
        else:
            status[mutation.doc_id] = SyncState.LOCAL_ONLY
        self._persist_queue()
        self.logger.debug(
            f"Queued {mutation.action.value} {mutation.collection}/{mutation.doc_id} "
            f"({len(self._queue)} pending)"
        )

    def replay_pending(self) -> ServiceResult:
        """
        Re-apply queued mutations to the remote store in insertion order.

        The first failure aborts the whole pass and leaves the queue exactly
        as it was; full success clears it.

        Returns:
            ServiceResult whose data is the number of mutations replayed
        """
        with self._lock:
            if not self._queue:
                return ServiceResult.ok(0)

            if not self.can_reach_remote:
                return ServiceResult.fail(
                    "Cannot sync while offline",
                    error_code="OFFLINE",
                    metadata={"pending": len(self._queue)},
                )

            if self._replaying:
                return ServiceResult.fail("Sync already in progress", error_code="BUSY")

            self._replaying = True
            self.last_sync = datetime.now()
            pending = list(self._queue)

            try:
                with self.log_operation(f"Replaying {len(pending)} pending mutations"):
                    self._mark_in_flight(pending, SyncState.SYNCING)

                    for position, mutation in enumerate(pending):
                        try:
                            self._apply_remote(mutation)
                        except (RemoteUnavailable, ValueError) as e:
                            self._mark_in_flight(pending, SyncState.LOCAL_ONLY)
                            failure = ReplayFailure(
                                f"Replay aborted at {mutation.collection}/{mutation.doc_id}: {e}",
                                position=position,
                                pending=len(pending),
                            )
                            handle_error(
                                failure,
                                notify=self.notify,
                                user_message="Error syncing pending data. It will be retried.",
                            )
                            return ServiceResult.from_exception(failure)

                    self._queue = []
                    self._persist_queue()
                    for mutation in pending:
                        self._mark_applied(mutation)

                self.last_sync_success = datetime.now()
                self.notify("All pending data synced successfully!", "success")
                return ServiceResult.ok(len(pending))
            finally:
                self._replaying = False

    def sync_now(self) -> ServiceResult:
        """Replay the queue immediately if online."""
        return self.replay_pending()

    # =========================================================================
    # LOCAL PERSISTENCE
    # =========================================================================

    def _degraded_notice(self, error: LocalStorageFailure) -> LocalStorageFailure:
        handle_error(error)
        self.notify(
            "Could not save to local storage. Changes are kept for this session only.",
            "warning",
        )
        return error

    def _persist_entries(self) -> Optional[LocalStorageFailure]:
        try:
            self.cache.save_entries(self._entries)
        except LocalStorageFailure as e:
            return self._degraded_notice(e)
        return None

    def _persist_options(self) -> Optional[LocalStorageFailure]:
        try:
            self.cache.save_options(self._options)
        except LocalStorageFailure as e:
            return self._degraded_notice(e)
        return None

    def _persist_queue(self) -> Optional[LocalStorageFailure]:
        try:
            self.cache.save_queue(self._queue)
        except LocalStorageFailure as e:
            return self._degraded_notice(e)
        return None
