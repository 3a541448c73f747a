# =============================================================================
# tardiness_core/models/__init__.py
# Record Types
# =============================================================================

from .records import (
    TARDINESS_COLLECTION,
    OPTIONS_COLLECTION,
    DEFAULT_OPTIONS,
    SyncState,
    MutationAction,
    TardinessRecord,
    Option,
    PendingMutation,
    DuplicateCheck,
    generate_id,
    capitalize_name,
    parse_timestamp,
    format_timestamp,
    local_day_bounds,
)

__all__ = [
    "TARDINESS_COLLECTION",
    "OPTIONS_COLLECTION",
    "DEFAULT_OPTIONS",
    "SyncState",
    "MutationAction",
    "TardinessRecord",
    "Option",
    "PendingMutation",
    "DuplicateCheck",
    "generate_id",
    "capitalize_name",
    "parse_timestamp",
    "format_timestamp",
    "local_day_bounds",
]
