# =============================================================================
# tardiness_core/services/__init__.py
# Service Layer
# =============================================================================

from .base_service import BaseService, ServiceResult
from .report_service import (
    DATE_RANGES,
    CONTENT_MODES,
    filter_entries,
    today_late_count,
    summary_counts,
    ordinal_suffix,
    date_range_bounds,
    filter_by_date_range,
    report_title,
    to_dataframe,
    summary_by_section,
    export_spreadsheet,
)

__all__ = [
    "BaseService",
    "ServiceResult",
    "DATE_RANGES",
    "CONTENT_MODES",
    "filter_entries",
    "today_late_count",
    "summary_counts",
    "ordinal_suffix",
    "date_range_bounds",
    "filter_by_date_range",
    "report_title",
    "to_dataframe",
    "summary_by_section",
    "export_spreadsheet",
]
