# =============================================================================
# tardiness_core/data/remote_store.py
# Supabase Remote Store Client
# =============================================================================
"""
Thin wrapper around the Supabase client exposing whole-document operations
per collection. Each collection is a table with a text primary key `id`:

    tardiness            documents keyed by the record id
    gradeStrandSections  documents keyed by "grade-strand-section"

Every failure, including "not configured", surfaces as RemoteUnavailable.
Callers treat that as being offline for that one operation.
"""

from __future__ import annotations
from typing import Any, Dict, List, Optional

from tardiness_core.config import AppSettings
from tardiness_core.errors import RemoteUnavailable
from tardiness_core.logging import get_logger

logger = get_logger(__name__)


def create_supabase_client(url: str, key: str):
    """
    Create a Supabase client.

    Returns:
        Supabase client instance or None if it could not be created
    """
    try:
        from supabase import create_client
        return create_client(url, key)
    except Exception as e:
        logger.error(f"Failed to initialize Supabase client: {e}")
        return None


class RemoteStoreClient:
    """
    Whole-document access to the remote collections.

    Usage:
        remote = RemoteStoreClient.from_settings(settings)
        docs = remote.fetch_all("tardiness", order_by="timestamp", descending=True)
        remote.put("tardiness", record.id, record.to_document())
    """

    PAGE_SIZE = 1000

    def __init__(self, client: Optional[Any] = None):
        """
        Args:
            client: Supabase client (or a compatible object); None means unconfigured
        """
        self.client = client

    @classmethod
    def from_settings(cls, settings: AppSettings) -> RemoteStoreClient:
        if not settings.remote_configured:
            logger.warning("Supabase credentials not configured. Running in local-only mode.")
            return cls(None)
        return cls(create_supabase_client(settings.supabase_url, settings.supabase_key))

    @property
    def is_configured(self) -> bool:
        return self.client is not None

    def _require_client(self, collection: str, operation: str, doc_id: Optional[str] = None):
        if self.client is None:
            raise RemoteUnavailable(
                "Remote store is not configured",
                collection=collection,
                operation=operation,
                doc_id=doc_id,
            )
        return self.client

    def fetch_all(
        self,
        collection: str,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> List[Dict[str, Any]]:
        """
        Fetch every document of a collection (pages past the 1000 row limit).

        Raises:
            RemoteUnavailable: On any client or network error
        """
        client = self._require_client(collection, "fetch_all")
        documents: List[Dict[str, Any]] = []
        offset = 0

        try:
            while True:
                query = client.table(collection).select("*")
                if order_by:
                    query = query.order(order_by, desc=descending)
                response = query.range(offset, offset + self.PAGE_SIZE - 1).execute()

                batch = response.data or []
                documents.extend(batch)
                if len(batch) < self.PAGE_SIZE:
                    break
                offset += self.PAGE_SIZE
        except Exception as e:
            raise RemoteUnavailable(
                f"Error fetching {collection}: {e}",
                collection=collection,
                operation="fetch_all",
            ) from e

        logger.debug(f"Fetched {len(documents)} documents from {collection}")
        return documents

    def put(self, collection: str, doc_id: str, doc: Dict[str, Any]) -> None:
        """Create or fully overwrite a document."""
        client = self._require_client(collection, "put", doc_id)
        try:
            client.table(collection).upsert({**doc, "id": doc_id}).execute()
        except Exception as e:
            raise RemoteUnavailable(
                f"Error writing {collection}/{doc_id}: {e}",
                collection=collection,
                operation="put",
                doc_id=doc_id,
            ) from e

    def update(self, collection: str, doc_id: str, partial: Dict[str, Any]) -> None:
        """Merge fields into an existing document."""
        client = self._require_client(collection, "update", doc_id)
        fields = {k: v for k, v in partial.items() if k != "id"}
        try:
            client.table(collection).update(fields).eq("id", doc_id).execute()
        except Exception as e:
            raise RemoteUnavailable(
                f"Error updating {collection}/{doc_id}: {e}",
                collection=collection,
                operation="update",
                doc_id=doc_id,
            ) from e

    def delete(self, collection: str, doc_id: str) -> None:
        client = self._require_client(collection, "delete", doc_id)
        try:
            client.table(collection).delete().eq("id", doc_id).execute()
        except Exception as e:
            raise RemoteUnavailable(
                f"Error deleting {collection}/{doc_id}: {e}",
                collection=collection,
                operation="delete",
                doc_id=doc_id,
            ) from e
