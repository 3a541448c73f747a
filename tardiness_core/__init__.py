# =============================================================================
# tardiness_core/__init__.py
# Tardiness Monitoring Core
# =============================================================================
"""
Local-first core of the Tardiness Monitoring System.

Front-desk staff record late arrivals; this package keeps the canonical
record set in a local SQLite cache, mirrors it to Supabase when the network
is up, and replays queued mutations when connectivity returns.

Usage:
------
from tardiness_core.context import build_context

ctx = build_context()
result = ctx.engine.add_entry("juan dela cruz", "11", "STEM", "A")
"""

__version__ = "1.0.0"
