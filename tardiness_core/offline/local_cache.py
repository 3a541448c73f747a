# =============================================================================
# tardiness_core/offline/local_cache.py
# Local SQLite Key/Value Cache for Offline Operation
# =============================================================================
"""
LocalCache - durable key/value storage for the full snapshot of both record
collections, the pending-mutation queue and user preferences.

Each value is one JSON blob under a fixed key:
- tardinessData        JSON array of tardiness documents
- gradeStrandSections  JSON array of option documents
- pendingSync          JSON array of pending mutations
- userPreferences      JSON object

Loads never raise: absent keys give empty collections, malformed content is
logged, flags the cache as degraded and also gives empty collections.
Saves raise LocalStorageFailure.
"""

from __future__ import annotations
import json
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
import logging

from tardiness_core.errors import LocalStorageFailure
from tardiness_core.models import Option, PendingMutation, TardinessRecord

logger = logging.getLogger(__name__)

ENTRIES_KEY = "tardinessData"
OPTIONS_KEY = "gradeStrandSections"
QUEUE_KEY = "pendingSync"
PREFERENCES_KEY = "userPreferences"


class LocalCache:
    """
    Local SQLite cache mirroring what the remote store holds.
    """

    SCHEMA = """
        CREATE TABLE IF NOT EXISTS kv_store (
            key TEXT PRIMARY KEY,
            value TEXT,
            updated_at TEXT DEFAULT CURRENT_TIMESTAMP
        )
    """

    def __init__(self, db_path: Union[str, Path]):
        """
        Args:
            db_path: Path to the SQLite database file
        """
        self.db_path = Path(db_path)
        self._local = threading.local()
        self._initialized = False
        self.degraded = False
        self.last_error: Optional[str] = None

    def _get_connection(self) -> sqlite3.Connection:
        """Get thread-local database connection."""
        if getattr(self._local, "connection", None) is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._local.connection = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._local.connection.row_factory = sqlite3.Row
        return self._local.connection

    @contextmanager
    def transaction(self):
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise

    def initialize(self) -> None:
        """Create the key/value table if needed."""
        if self._initialized:
            return
        try:
            with self.transaction() as conn:
                conn.execute(self.SCHEMA)
        except (sqlite3.Error, OSError) as e:
            self._mark_degraded(f"Local cache unavailable: {e}")
            return
        self._initialized = True
        logger.info(f"Local cache initialized at: {self.db_path}")

    def _mark_degraded(self, message: str) -> None:
        self.degraded = True
        self.last_error = message
        logger.error(message)

    # =========================================================================
    # RAW BLOB ACCESS
    # =========================================================================

    def _read(self, key: str) -> Any:
        """
        Read and decode one blob.

        Returns:
            The decoded value, or None when the key is absent or unreadable
        """
        self.initialize()
        try:
            row = self._get_connection().execute(
                "SELECT value FROM kv_store WHERE key = ?", [key]
            ).fetchone()
        except (sqlite3.Error, OSError) as e:
            self._mark_degraded(f"Error reading '{key}' from local cache: {e}")
            return None

        if row is None or row["value"] is None:
            return None

        try:
            return json.loads(row["value"])
        except (json.JSONDecodeError, TypeError) as e:
            self._mark_degraded(f"Malformed data under '{key}' in local cache: {e}")
            return None

    def _write(self, key: str, value: Any) -> None:
        """
        Encode and store one blob.

        Raises:
            LocalStorageFailure: If the value cannot be encoded or stored
        """
        self.initialize()
        try:
            payload = json.dumps(value)
            with self.transaction() as conn:
                conn.execute(
                    """
                    INSERT OR REPLACE INTO kv_store (key, value, updated_at)
                    VALUES (?, ?, ?)
                    """,
                    [key, payload, datetime.now().isoformat()],
                )
        except (sqlite3.Error, OSError, TypeError, ValueError) as e:
            self._mark_degraded(f"Error writing '{key}' to local cache: {e}")
            raise LocalStorageFailure(f"Could not save {key} locally", key=key) from e

    def _read_list(self, key: str) -> List[Any]:
        value = self._read(key)
        if value is None:
            return []
        if not isinstance(value, list):
            self._mark_degraded(f"Expected a list under '{key}', got {type(value).__name__}")
            return []
        return value

    def has_key(self, key: str) -> bool:
        self.initialize()
        try:
            row = self._get_connection().execute(
                "SELECT 1 FROM kv_store WHERE key = ?", [key]
            ).fetchone()
        except (sqlite3.Error, OSError) as e:
            self._mark_degraded(f"Error reading '{key}' from local cache: {e}")
            return False
        return row is not None

    # =========================================================================
    # COLLECTIONS
    # =========================================================================

    def load_entries(self) -> List[TardinessRecord]:
        """Load tardiness records, skipping individual malformed documents."""
        entries = []
        for doc in self._read_list(ENTRIES_KEY):
            try:
                entries.append(TardinessRecord.from_document(doc))
            except ValueError as e:
                logger.warning(f"Skipping cached entry: {e}")
        return entries

    def save_entries(self, entries: List[TardinessRecord]) -> None:
        self._write(ENTRIES_KEY, [entry.to_document() for entry in entries])

    def has_options(self) -> bool:
        return self.has_key(OPTIONS_KEY)

    def load_options(self) -> List[Option]:
        options = []
        for doc in self._read_list(OPTIONS_KEY):
            try:
                options.append(Option.from_document(doc))
            except ValueError as e:
                logger.warning(f"Skipping cached option: {e}")
        return options

    def save_options(self, options: List[Option]) -> None:
        self._write(OPTIONS_KEY, [option.to_document() for option in options])

    def load_queue(self) -> List[PendingMutation]:
        queue = []
        for item in self._read_list(QUEUE_KEY):
            try:
                queue.append(PendingMutation.from_dict(item))
            except ValueError as e:
                logger.warning(f"Dropping unreadable pending mutation: {e}")
        return queue

    def save_queue(self, queue: List[PendingMutation]) -> None:
        self._write(QUEUE_KEY, [item.to_dict() for item in queue])

    # =========================================================================
    # PREFERENCES
    # =========================================================================

    def load_preferences(self) -> Dict[str, Any]:
        value = self._read(PREFERENCES_KEY)
        if value is None:
            return {}
        if not isinstance(value, dict):
            self._mark_degraded(f"Expected an object under '{PREFERENCES_KEY}'")
            return {}
        return value

    def save_preference(self, key: str, value: Any) -> None:
        """Set one preference (e.g. theme, currentMode), keeping the others."""
        preferences = self.load_preferences()
        preferences[key] = value
        self._write(PREFERENCES_KEY, preferences)

    def close(self) -> None:
        """Close the database connection of the calling thread."""
        connection = getattr(self._local, "connection", None)
        if connection is not None:
            connection.close()
            self._local.connection = None
