from __future__ import annotations
from datetime import date, datetime

import streamlit as st

from tardiness_core.context import AppContext, build_context
from tardiness_core.errors import ConfigurationError, safe_execute
from tardiness_core.logging import get_logger
from tardiness_core.models import SyncState
from tardiness_core.services import (
    export_spreadsheet,
    filter_by_date_range,
    filter_entries,
    ordinal_suffix,
    report_title,
    summary_by_section,
    summary_counts,
    to_dataframe,
    today_late_count,
)

# ============================================================================
# PAGE CONFIGURATION
# ============================================================================
st.set_page_config(
    page_title="Tardiness Monitoring",
    page_icon="⏰",
    layout="wide",
)

logger = get_logger(__name__)

TOAST_ICONS = {"success": "✅", "info": "ℹ️", "warning": "⚠️", "error": "❌"}
SYNC_BADGES = {
    SyncState.SYNCED: "☁️",
    SyncState.SYNCING: "🔄",
    SyncState.LOCAL_ONLY: "💾",
}


def toast(message: str, level: str = "info") -> None:
    # Notices from the connectivity thread have no page to land on; the
    # sidebar shows the last sync outcome instead.
    logger.info(f"[{level}] {message}")
    st.toast(message, icon=TOAST_ICONS.get(level, "ℹ️"))


@st.cache_resource
def get_context() -> AppContext:
    return build_context(notifier=toast)


try:
    ctx = get_context()
except ConfigurationError as e:
    st.error(f"Configuration error: {e.message}")
    st.stop()

engine = ctx.engine
preferences = ctx.cache.load_preferences()

if "pending_duplicate" not in st.session_state:
    st.session_state.pending_duplicate = None
if "editing_id" not in st.session_state:
    st.session_state.editing_id = None


def save_preference(key: str, value) -> None:
    safe_execute(ctx.cache.save_preference, key, value, error_message="Could not save preference")


def submit_entry(full_name: str, grade: str, strand: str, section: str) -> None:
    result = engine.add_entry(full_name, grade, strand, section)
    if result.data is None:
        return
    if not result.data.added:
        st.session_state.pending_duplicate = {
            "full_name": full_name,
            "grade": grade,
            "strand": strand,
            "section": section,
            "check": result.data.duplicate,
        }
    else:
        toast(f"Recorded {result.data.record.full_name}", "success")


# ============================================================================
# SIDEBAR: CONNECTION, SYNC, PREFERENCES
# ============================================================================
with st.sidebar:
    status = engine.get_status_display()
    st.markdown("### Connection")
    if status["is_online"] and status["remote_configured"]:
        st.success("🟢 Online")
    elif status["remote_configured"]:
        st.warning("🔴 Offline - saving locally")
    else:
        st.info("💾 Local-only mode (no Supabase credentials)")
    if status["degraded"]:
        st.error("Local storage unavailable. Changes last for this session only.")

    st.metric("Pending changes", status["pending_count"])
    if status["last_sync_failed"]:
        st.warning("Last sync attempt failed. Pending changes will be retried.")
    elif status["last_success"]:
        last = datetime.fromisoformat(status["last_success"])
        st.caption(f"Last synced {last.strftime('%I:%M:%S %p')}")
    if st.button("🔄 Sync now", use_container_width=True, disabled=status["pending_count"] == 0):
        ctx.monitor.check_connection()
        result = engine.sync_now()
        if not result and result.error_code == "OFFLINE":
            toast("Still offline. Changes stay queued.", "warning")
        st.rerun()

    st.markdown("### Preferences")
    modes = ["manual", "quickSelect"]
    mode = st.radio(
        "Entry mode",
        modes,
        index=modes.index(preferences.get("currentMode", "manual"))
        if preferences.get("currentMode") in modes else 0,
        format_func=lambda m: "Manual" if m == "manual" else "Quick Select",
    )
    if mode != preferences.get("currentMode"):
        save_preference("currentMode", mode)

    themes = ["light", "dark"]
    theme = st.radio(
        "Theme",
        themes,
        index=themes.index(preferences.get("theme", "light"))
        if preferences.get("theme") in themes else 0,
        horizontal=True,
    )
    if theme != preferences.get("theme"):
        save_preference("theme", theme)

if theme == "dark":
    st.markdown(
        "<style>.stApp { background-color: #0e1117; color: #fafafa; }</style>",
        unsafe_allow_html=True,
    )

# ============================================================================
# HEADER AND SUMMARY CARDS
# ============================================================================
st.title("⏰ Tardiness Monitoring")
now = datetime.now().astimezone()
st.caption(f"{now:%A, %B %d, %Y} | {now:%I:%M %p}")

snapshot = engine.snapshot()
counts = summary_counts(snapshot.entries, now)
col1, col2, col3 = st.columns(3)
col1.metric("Today", counts["today"])
col2.metric("This Week", counts["week"])
col3.metric("This Month", counts["month"])

# ============================================================================
# ENTRY FORM
# ============================================================================
st.markdown("---")
st.subheader("Log a late arrival")

option_labels = {option.label: option for option in snapshot.options}

if mode == "manual":
    with st.form("entry_form", clear_on_submit=True):
        full_name = st.text_input("Full Name")
        choice = st.selectbox("Grade / Strand / Section", list(option_labels) or ["-"])
        if st.form_submit_button("Add Entry", type="primary"):
            option = option_labels.get(choice)
            if option is None:
                toast("Add a grade/strand/section option first.", "warning")
            else:
                submit_entry(full_name, str(option.grade), option.strand, option.section)
else:
    if not snapshot.options:
        st.info("No options yet. Add one under Manage Options.")
    grid = st.columns(4)
    for i, option in enumerate(snapshot.options):
        if grid[i % 4].button(option.label, key=f"quick_{option.doc_id}", use_container_width=True):
            submit_entry("Quick Entry", str(option.grade), option.strand, option.section)

pending = st.session_state.pending_duplicate
if pending is not None:
    check = pending["check"]
    previous = check.previous_entry
    previous_time = previous.occurred_at.strftime("%I:%M:%S %p") if previous and previous.occurred_at else "earlier"
    st.warning(
        f"**{pending['full_name']}** was already marked late today at {previous_time}. "
        f"This will be their **{check.count}{ordinal_suffix(check.count)}** late entry for today."
    )
    confirm_col, cancel_col = st.columns(2)
    if confirm_col.button("Add anyway", type="primary"):
        result = engine.confirm_entry(
            pending["full_name"], pending["grade"], pending["strand"], pending["section"]
        )
        st.session_state.pending_duplicate = None
        if result.data is not None and result.data.added:
            toast(f"Recorded {result.data.record.full_name}", "success")
        st.rerun()
    if cancel_col.button("Cancel"):
        st.session_state.pending_duplicate = None
        st.rerun()

# ============================================================================
# MANAGE OPTIONS
# ============================================================================
with st.expander("⚙️ Manage Options"):
    with st.form("option_form", clear_on_submit=True):
        c1, c2, c3 = st.columns(3)
        new_grade = c1.number_input("Grade", min_value=1, max_value=12, value=11, step=1)
        new_strand = c2.text_input("Strand")
        new_section = c3.text_input("Section")
        if st.form_submit_button("Add Option"):
            result = engine.add_option(int(new_grade), new_strand, new_section)
            if result:
                toast(f"Added {result.data.label}", "success")

    for option in snapshot.options:
        label_col, state_col, action_col = st.columns([6, 1, 1])
        label_col.write(option.label)
        state_col.write(SYNC_BADGES.get(engine.sync_status(option.doc_id), ""))
        if action_col.button("🗑️", key=f"del_opt_{option.doc_id}"):
            engine.delete_option(option.grade, option.strand, option.section)
            st.rerun()

# ============================================================================
# RECORDS TABLE
# ============================================================================
st.markdown("---")
st.subheader("Records")

f1, f2, f3, f4, f5 = st.columns([3, 1, 1, 1, 1])
search = f1.text_input("Search", placeholder="Name, grade, strand or section")
grade_filter = f2.selectbox("Grade", [""] + sorted({e.grade for e in snapshot.entries}))
strand_filter = f3.selectbox("Strand", [""] + sorted({e.strand for e in snapshot.entries}))
section_filter = f4.selectbox("Section", [""] + sorted({e.section for e in snapshot.entries}))
sort_order = f5.selectbox("Sort", ["desc", "asc"], format_func=lambda s: "Newest" if s == "desc" else "Oldest")

visible = filter_entries(
    snapshot.entries,
    search=search,
    grade=grade_filter,
    strand=strand_filter,
    section=section_filter,
    sort_order=sort_order,
)

if not visible:
    st.info("No records to show.")

for entry in visible:
    late_today = today_late_count(snapshot.entries, entry, now)
    badge = f" `Late x{late_today}`" if late_today > 1 else ""
    occurred = entry.occurred_at.strftime("%m/%d/%Y %I:%M %p") if entry.occurred_at else ""

    row = st.columns([4, 1, 1, 1, 2, 1, 1, 1])
    row[0].markdown(f"{entry.full_name}{badge}")
    row[1].write(entry.grade)
    row[2].write(entry.strand)
    row[3].write(entry.section)
    row[4].write(occurred)
    row[5].write(SYNC_BADGES.get(engine.sync_status(entry.id), ""))
    if row[6].button("✏️", key=f"edit_{entry.id}"):
        st.session_state.editing_id = entry.id
    if row[7].button("🗑️", key=f"del_{entry.id}"):
        engine.delete_entry(entry.id)
        st.rerun()

    if st.session_state.editing_id == entry.id:
        with st.form(f"edit_form_{entry.id}"):
            edit_name = st.text_input("Full Name", value=entry.full_name)
            labels = list(option_labels)
            current_label = next(
                (label for label, o in option_labels.items()
                 if str(o.grade) == entry.grade and o.strand == entry.strand and o.section == entry.section),
                None,
            )
            edit_choice = st.selectbox(
                "Grade / Strand / Section",
                labels or ["-"],
                index=labels.index(current_label) if current_label in labels else 0,
            )
            save_col, cancel_col = st.columns(2)
            if save_col.form_submit_button("Save", type="primary"):
                option = option_labels.get(edit_choice)
                if option is not None:
                    result = engine.edit_entry(
                        entry.id, edit_name, str(option.grade), option.strand, option.section
                    )
                    if result:
                        toast("Entry updated", "success")
                st.session_state.editing_id = None
                st.rerun()
            if cancel_col.form_submit_button("Cancel"):
                st.session_state.editing_id = None
                st.rerun()

# ============================================================================
# EXPORT
# ============================================================================
st.markdown("---")
with st.expander("📥 Export"):
    e1, e2 = st.columns(2)
    date_range = e1.selectbox(
        "Date range",
        ["today", "week", "month", "custom", "all"],
        format_func=lambda r: {
            "today": "Today",
            "week": "This Week (Mon-Sat)",
            "month": "This Month",
            "custom": "Custom",
            "all": "All Records",
        }[r],
    )
    content_mode = e2.radio(
        "Content",
        ["detailed", "summary"],
        format_func=lambda m: "Detailed records" if m == "detailed" else "Summary by section",
        horizontal=True,
    )

    start_date = end_date = None
    if date_range == "custom":
        d1, d2 = st.columns(2)
        start_date = d1.date_input("Start date", value=date.today())
        end_date = d2.date_input("End date", value=date.today())

    try:
        export_entries = filter_by_date_range(snapshot.entries, date_range, start_date, end_date, now)
    except ValueError as e:
        st.error(str(e))
        export_entries = []

    title = report_title(date_range, start_date, end_date, now)
    st.caption(title)
    if content_mode == "summary":
        st.dataframe(summary_by_section(export_entries), use_container_width=True, hide_index=True)
    else:
        st.dataframe(to_dataframe(export_entries), use_container_width=True, hide_index=True)

    workbook = safe_execute(
        export_spreadsheet,
        export_entries,
        content_mode,
        title=title,
        default=None,
        error_message="Export failed",
        notify=toast,
    )
    if workbook:
        st.download_button(
            "⬇️ Download Excel",
            data=workbook,
            file_name=f"tardiness_{date_range}_{now:%Y%m%d}.xlsx",
            mime="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
            use_container_width=True,
        )
