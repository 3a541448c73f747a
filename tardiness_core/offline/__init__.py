# =============================================================================
# tardiness_core/offline/__init__.py
# Local-First Storage and Synchronization
# =============================================================================
"""
Local-first architecture for the tardiness log.

    ┌──────────────────────────────────────────────┐
    │            ReconciliationEngine               │
    │   (entries, options, pending queue, status)   │
    └──────────────────────────────────────────────┘
           │                 │                │
           ▼                 ▼                ▼
    ┌────────────┐   ┌──────────────┐  ┌───────────────────┐
    │ LocalCache │   │ RemoteStore  │  │ ConnectionMonitor │
    │  (SQLite)  │   │  (Supabase)  │  │  (online/offline) │
    └────────────┘   └──────────────┘  └───────────────────┘

Usage:
------
from tardiness_core.offline import ReconciliationEngine

engine = ReconciliationEngine(cache, remote, monitor, notifier=toast)
engine.attach()
engine.load()
"""

from tardiness_core.offline.connection_monitor import (
    ConnectionMonitor,
    ConnectionState,
    ConnectionStatus,
)

from tardiness_core.offline.local_cache import (
    LocalCache,
    ENTRIES_KEY,
    OPTIONS_KEY,
    QUEUE_KEY,
    PREFERENCES_KEY,
)

from tardiness_core.offline.reconciliation_engine import (
    ReconciliationEngine,
    AddEntryResult,
    Snapshot,
)

__all__ = [
    # Connectivity
    "ConnectionMonitor",
    "ConnectionState",
    "ConnectionStatus",
    # Local cache
    "LocalCache",
    "ENTRIES_KEY",
    "OPTIONS_KEY",
    "QUEUE_KEY",
    "PREFERENCES_KEY",
    # Engine
    "ReconciliationEngine",
    "AddEntryResult",
    "Snapshot",
]
