# =============================================================================
# tardiness_core/models/records.py
# Record Types Shared by the Cache, the Remote Store and the Engine
# =============================================================================
"""
Data model for tardiness entries, grade/strand/section options and the
offline mutation queue.

Documents use the field names stored in both the local cache and the
Supabase tables (fullName, createdAt, ...); the dataclasses use Python names.
"""

from __future__ import annotations
import random
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


TARDINESS_COLLECTION = "tardiness"
OPTIONS_COLLECTION = "gradeStrandSections"

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


class SyncState(Enum):
    """Per-record sync status owned by the reconciliation engine."""
    LOCAL_ONLY = "local_only"   # Changed locally, not yet on the remote store
    SYNCING = "syncing"         # Remote write in flight
    SYNCED = "synced"           # Remote store reflects the local copy


class MutationAction(str, Enum):
    """Actions a pending mutation can carry."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    ADD = "add"


# =============================================================================
# HELPERS
# =============================================================================

def _to_base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_id() -> str:
    """Time-based component plus a random component, both base 36."""
    millis = int(time.time() * 1000)
    return _to_base36(millis) + _to_base36(random.getrandbits(52))


def capitalize_name(name: Any) -> Any:
    """
    Title-case a student name word by word.

    "  juan DELA cruz " -> "Juan Dela Cruz"
    """
    if not name or not isinstance(name, str):
        return name
    words = name.strip().lower().split(" ")
    return " ".join(word[:1].upper() + word[1:] if word else word for word in words)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse an ISO-8601 value into an aware datetime in local time.

    Naive values are taken as local time. Returns None if unparseable.
    """
    if isinstance(value, datetime):
        parsed = value
    else:
        if not value:
            return None
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except (TypeError, ValueError):
            return None
    return parsed.astimezone()


def format_timestamp(moment: datetime) -> str:
    """ISO-8601 UTC with milliseconds and a trailing Z."""
    if moment.tzinfo is None:
        moment = moment.astimezone()
    utc = moment.astimezone(timezone.utc)
    return utc.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def local_day_bounds(moment: datetime) -> Tuple[datetime, datetime]:
    """Local midnight of the given instant and the next local midnight."""
    local = moment.astimezone()
    start = local.replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=1)


# =============================================================================
# RECORDS
# =============================================================================

@dataclass
class TardinessRecord:
    """One late arrival of one student."""
    id: str
    full_name: str
    grade: str
    strand: str
    section: str
    timestamp: str
    created_at: Optional[str] = None

    def __post_init__(self):
        self.full_name = "" if self.full_name is None else str(self.full_name)
        self.grade = "" if self.grade is None else str(self.grade)
        self.strand = "" if self.strand is None else str(self.strand)
        self.section = "" if self.section is None else str(self.section)
        if self.created_at is None:
            self.created_at = self.timestamp

    @property
    def occurred_at(self) -> Optional[datetime]:
        return parse_timestamp(self.timestamp)

    def matches(self, full_name: str, grade: Any, strand: str, section: str) -> bool:
        """Case-insensitive name match plus exact grade/strand/section match."""
        return (
            (self.full_name or "").lower() == (full_name or "").lower()
            and self.grade == ("" if grade is None else str(grade))
            and self.strand == strand
            and self.section == section
        )

    def to_document(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "fullName": self.full_name,
            "grade": self.grade,
            "strand": self.strand,
            "section": self.section,
            "timestamp": self.timestamp,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> TardinessRecord:
        """
        Build a record from a stored document.

        Raises:
            ValueError: If the document has no id
        """
        if not isinstance(doc, dict) or not doc.get("id"):
            raise ValueError(f"Tardiness document without id: {doc!r}")
        return cls(
            id=str(doc["id"]),
            full_name=doc.get("fullName") or "",
            grade=doc.get("grade", ""),
            strand=doc.get("strand", ""),
            section=doc.get("section", ""),
            timestamp=doc.get("timestamp") or "",
            created_at=doc.get("createdAt"),
        )


@dataclass(frozen=True, order=True)
class Option:
    """A selectable grade/strand/section combination; the triple is its identity."""
    grade: int
    strand: str
    section: str

    @property
    def doc_id(self) -> str:
        return f"{self.grade}-{self.strand}-{self.section}"

    @property
    def label(self) -> str:
        return f"{self.grade} {self.strand} - {self.section}"

    def to_document(self) -> Dict[str, Any]:
        return {"grade": self.grade, "strand": self.strand, "section": self.section}

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> Option:
        """
        Raises:
            ValueError: If grade is not an integer or a field is missing
        """
        try:
            return cls(int(doc["grade"]), str(doc["strand"]), str(doc["section"]))
        except (KeyError, TypeError) as e:
            raise ValueError(f"Malformed option document: {doc!r}") from e


DEFAULT_OPTIONS: List[Option] = [
    Option(11, "STEM", "A"),
    Option(11, "STEM", "B"),
    Option(12, "STEM", "A"),
    Option(11, "HUMSS", "A"),
    Option(12, "HUMSS", "A"),
]


@dataclass
class PendingMutation:
    """A change applied locally but not yet confirmed on the remote store."""
    collection: str
    action: MutationAction
    doc_id: str
    payload: Dict[str, Any] = field(default_factory=dict)
    queued_at: str = field(default_factory=lambda: format_timestamp(datetime.now(timezone.utc)))

    def __post_init__(self):
        self.action = MutationAction(self.action)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "collection": self.collection,
            "action": self.action.value,
            "docId": self.doc_id,
            "payload": dict(self.payload),
            "queuedAt": self.queued_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> PendingMutation:
        """
        Raises:
            ValueError: If the stored item is not a recognizable mutation
        """
        try:
            return cls(
                collection=data["collection"],
                action=MutationAction(data["action"]),
                doc_id=str(data["docId"]),
                payload=dict(data.get("payload") or {}),
                queued_at=data.get("queuedAt") or "",
            )
        except (KeyError, TypeError) as e:
            raise ValueError(f"Malformed pending mutation: {data!r}") from e


@dataclass
class DuplicateCheck:
    """Outcome of the same-day duplicate scan for a candidate entry."""
    is_duplicate: bool
    count: int = 1
    previous_entry: Optional[TardinessRecord] = None
