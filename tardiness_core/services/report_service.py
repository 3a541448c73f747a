# =============================================================================
# tardiness_core/services/report_service.py
# Read-only Queries, Summaries and Spreadsheet Export
# =============================================================================
"""
Helpers over a snapshot of tardiness entries for the table view, the summary
cards and exports. Nothing here mutates engine state.
"""

from __future__ import annotations
import io
from datetime import date, datetime, time, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

import pandas as pd

from tardiness_core.logging import get_logger
from tardiness_core.models import TardinessRecord, local_day_bounds

logger = get_logger(__name__)

DATE_RANGES = ("today", "week", "month", "custom", "all")
CONTENT_MODES = ("detailed", "summary")

EXPORT_COLUMNS = ["Full Name", "Grade", "Strand", "Section", "Date", "Time"]
SUMMARY_COLUMNS = ["Grade", "Strand", "Section", "Count"]


def _now(now: Optional[datetime]) -> datetime:
    return (now or datetime.now()).astimezone()


def _local_midnight(day: date) -> datetime:
    return datetime.combine(day, time.min).astimezone()


def _in_window(entry: TardinessRecord, start: datetime, end: Optional[datetime] = None) -> bool:
    occurred = entry.occurred_at
    if occurred is None:
        return False
    return occurred >= start and (end is None or occurred < end)


# =============================================================================
# TABLE VIEW
# =============================================================================

def filter_entries(
    entries: Iterable[TardinessRecord],
    search: str = "",
    grade: str = "",
    strand: str = "",
    section: str = "",
    sort_order: str = "desc",
) -> List[TardinessRecord]:
    """
    Apply the table's search box, dropdown filters and sort order.

    Search is a case-insensitive substring match over name, grade, strand and
    section; the dropdown filters are exact. Empty values disable a filter.
    """
    term = (search or "").strip().lower()

    def keep(entry: TardinessRecord) -> bool:
        if term and not any(
            term in value.lower()
            for value in (entry.full_name, entry.grade, entry.strand, entry.section)
        ):
            return False
        if grade and entry.grade != str(grade):
            return False
        if strand and entry.strand != strand:
            return False
        if section and entry.section != section:
            return False
        return True

    epoch = datetime.fromtimestamp(0).astimezone()
    return sorted(
        (entry for entry in entries if keep(entry)),
        key=lambda entry: entry.occurred_at or epoch,
        reverse=(sort_order != "asc"),
    )


def today_late_count(
    entries: Iterable[TardinessRecord],
    entry: TardinessRecord,
    now: Optional[datetime] = None,
) -> int:
    """How many times this student was logged late today (badge shown above 1)."""
    start, end = local_day_bounds(_now(now))
    return sum(
        1 for other in entries
        if _in_window(other, start, end)
        and other.matches(entry.full_name, entry.grade, entry.strand, entry.section)
    )


def summary_counts(entries: Iterable[TardinessRecord], now: Optional[datetime] = None) -> Dict[str, int]:
    """
    Counts for the summary cards.

    today: since local midnight
    week:  since local midnight seven days ago
    month: since the same day last month
    """
    current = _now(now)
    today_start, _ = local_day_bounds(current)
    week_start = today_start - timedelta(days=7)
    month_start = (pd.Timestamp(today_start) - pd.DateOffset(months=1)).to_pydatetime()

    entries = list(entries)
    return {
        "today": sum(1 for e in entries if _in_window(e, today_start)),
        "week": sum(1 for e in entries if _in_window(e, week_start)),
        "month": sum(1 for e in entries if _in_window(e, month_start)),
    }


def ordinal_suffix(n: int) -> str:
    """1 -> st, 2 -> nd, 3 -> rd, 11 -> th, 22 -> nd ..."""
    if n % 10 == 1 and n % 100 != 11:
        return "st"
    if n % 10 == 2 and n % 100 != 12:
        return "nd"
    if n % 10 == 3 and n % 100 != 13:
        return "rd"
    return "th"


# =============================================================================
# DATE RANGES
# =============================================================================

def date_range_bounds(
    date_range: str,
    start: Optional[date] = None,
    end: Optional[date] = None,
    now: Optional[datetime] = None,
) -> Optional[Tuple[datetime, datetime]]:
    """
    Resolve an export date range to a half-open [start, end) window.

    Returns:
        The window, or None for "all"

    Raises:
        ValueError: Unknown range, or "custom" without both dates
    """
    current = _now(now)
    today_start, tomorrow = local_day_bounds(current)

    if date_range == "all":
        return None
    if date_range == "today":
        return today_start, tomorrow
    if date_range == "week":
        monday = current.date() - timedelta(days=current.weekday())
        # Monday through Saturday
        return _local_midnight(monday), _local_midnight(monday + timedelta(days=6))
    if date_range == "month":
        month_start = _local_midnight(current.date().replace(day=1))
        next_month = (pd.Timestamp(current.date().replace(day=1)) + pd.DateOffset(months=1)).date()
        return month_start, _local_midnight(next_month)
    if date_range == "custom":
        if start is None or end is None:
            raise ValueError("Custom date range needs both a start and an end date")
        if end < start:
            raise ValueError(f"End date {end} is before start date {start}")
        return _local_midnight(start), _local_midnight(end + timedelta(days=1))

    raise ValueError(f"Unknown date range: {date_range!r}")


def filter_by_date_range(
    entries: Iterable[TardinessRecord],
    date_range: str = "today",
    start: Optional[date] = None,
    end: Optional[date] = None,
    now: Optional[datetime] = None,
) -> List[TardinessRecord]:
    bounds = date_range_bounds(date_range, start, end, now)
    if bounds is None:
        return list(entries)
    return [entry for entry in entries if _in_window(entry, *bounds)]


def report_title(
    date_range: str,
    start: Optional[date] = None,
    end: Optional[date] = None,
    now: Optional[datetime] = None,
) -> str:
    current = _now(now)
    if date_range == "week":
        window_start, window_end = date_range_bounds("week", now=current)
        saturday = window_end.date() - timedelta(days=1)
        return f"Tardiness This Week - {window_start:%m/%d/%Y} to {saturday:%m/%d/%Y}"
    if date_range == "month":
        return f"Tardiness for {current:%B %Y}"
    if date_range == "custom" and start and end:
        return f"Tardiness Report - {start:%m/%d/%Y} to {end:%m/%d/%Y}"
    if date_range == "all":
        return "Tardiness Report - All Records"
    return f"Tardiness for Today - {current:%m/%d/%Y}"


# =============================================================================
# TABULAR VIEWS AND EXPORT
# =============================================================================

def to_dataframe(entries: Iterable[TardinessRecord]) -> pd.DataFrame:
    """Detailed export rows with local Date and Time columns."""
    rows = []
    for entry in entries:
        occurred = entry.occurred_at
        rows.append({
            "Full Name": entry.full_name,
            "Grade": entry.grade,
            "Strand": entry.strand,
            "Section": entry.section,
            "Date": occurred.strftime("%m/%d/%Y") if occurred else "",
            "Time": occurred.strftime("%I:%M:%S %p") if occurred else "",
        })
    return pd.DataFrame(rows, columns=EXPORT_COLUMNS)


def summary_by_section(entries: Iterable[TardinessRecord]) -> pd.DataFrame:
    """
    Count of lates per grade/strand/section, sorted by grade, strand, section.

    Entries missing any of the three fields are skipped.
    """
    frame = pd.DataFrame(
        [
            {"Grade": e.grade, "Strand": e.strand, "Section": e.section}
            for e in entries
            if e.grade and e.strand and e.section
        ],
        columns=["Grade", "Strand", "Section"],
    )
    if frame.empty:
        return pd.DataFrame(columns=SUMMARY_COLUMNS)

    summary = (
        frame.groupby(["Grade", "Strand", "Section"])
        .size()
        .reset_index(name="Count")
        .sort_values(["Grade", "Strand", "Section"])
        .reset_index(drop=True)
    )
    return summary[SUMMARY_COLUMNS]


def export_spreadsheet(
    entries: Iterable[TardinessRecord],
    content_mode: str = "detailed",
    title: Optional[str] = None,
) -> bytes:
    """
    Render entries as an .xlsx workbook.

    Args:
        entries: Records to export (already filtered to the date range)
        content_mode: "detailed" for one row per entry, "summary" for counts per section
        title: Optional heading written above the table

    Returns:
        Workbook bytes suitable for st.download_button

    Raises:
        ValueError: Unknown content mode
    """
    if content_mode not in CONTENT_MODES:
        raise ValueError(f"Unknown content mode: {content_mode!r}")

    entries = list(entries)
    if content_mode == "summary":
        frame, sheet = summary_by_section(entries), "Summary"
    else:
        frame, sheet = to_dataframe(entries), "Tardiness"

    buffer = io.BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        frame.to_excel(writer, index=False, sheet_name=sheet, startrow=2 if title else 0)
        if title:
            writer.sheets[sheet].cell(row=1, column=1, value=title)

    logger.info(f"Exported {len(frame)} {content_mode} rows to spreadsheet")
    return buffer.getvalue()
