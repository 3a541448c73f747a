# =============================================================================
# tardiness_core/data/__init__.py
# Remote Data Access
# =============================================================================

from .remote_store import RemoteStoreClient, create_supabase_client

__all__ = ["RemoteStoreClient", "create_supabase_client"]
