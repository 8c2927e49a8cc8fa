"""
Session Inspector Data Model

Dataclasses for the records the admin session inspector reads from the
study database, plus the derived views it hands to consumers.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union


PAGE_KEY_PREFIX = "page:"

RESPONSE_CATEGORIES = ("demographic", "pre", "post")

# Response category -> backing table
RESPONSE_TABLES = {
    "demographic": "demographic_responses",
    "pre": "pre_test_responses",
    "post": "post_test_responses",
}

# study_questions.question_type -> response category
QUESTION_TYPE_CATEGORIES = {
    "demographic": "demographic",
    "pre_test": "pre",
    "post_test": "post",
    "pre": "pre",
    "post": "post",
}


class TimingSource(str, Enum):
    PRIMARY = "primary"
    FALLBACK = "fallback"
    OWNER_IMPUTED = "owner-imputed"


class DialogueSource(str, Enum):
    PRIMARY = "primary"
    FALLBACK = "fallback"


def parse_timestamp(value: Union[str, int, float, datetime, None]) -> Optional[datetime]:
    """
    Parse a database or telemetry timestamp into an aware UTC datetime.

    Accepts ISO-8601 strings (with ``Z`` or an offset), epoch milliseconds
    and datetimes. Returns None for empty or unparseable values.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, bool):
        return None
    elif isinstance(value, (int, float)):
        try:
            parsed = datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def to_epoch_ms(value: Optional[datetime]) -> Optional[int]:
    if value is None:
        return None
    return int(round(value.timestamp() * 1000))


def isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def is_page_key(key: Optional[str]) -> bool:
    return bool(key) and key.startswith(PAGE_KEY_PREFIX)


@dataclass
class SessionRecord:
    """One row of ``study_sessions``."""
    id: str
    public_session_id: str
    mode: str
    started_at: datetime
    modes_used: List[str] = field(default_factory=list)
    completed_at: Optional[datetime] = None
    last_activity_at: Optional[datetime] = None
    status: str = "active"
    suspicion_score: int = 0
    suspicious_flags: List[Any] = field(default_factory=list)
    validation_status: str = "pending"
    validated_by: Optional[str] = None
    validated_at: Optional[datetime] = None

    def session_modes(self) -> List[str]:
        """Modes the participant actually used (falls back to the assigned mode)."""
        if self.modes_used:
            return list(self.modes_used)
        return [self.mode] if self.mode else []

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "SessionRecord":
        started_at = parse_timestamp(row.get("started_at")) or parse_timestamp(row.get("created_at"))
        return cls(
            id=str(row["id"]),
            public_session_id=row.get("session_id") or str(row["id"]),
            mode=row.get("mode") or "",
            started_at=started_at or datetime.now(timezone.utc),
            modes_used=list(row.get("modes_used") or []),
            completed_at=parse_timestamp(row.get("completed_at")),
            last_activity_at=parse_timestamp(row.get("last_activity_at")),
            status=row.get("status") or "active",
            suspicion_score=row.get("suspicion_score") or 0,
            suspicious_flags=list(row.get("suspicious_flags") or []),
            validation_status=row.get("validation_status") or "pending",
            validated_by=row.get("validated_by"),
            validated_at=parse_timestamp(row.get("validated_at")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.public_session_id,
            "mode": self.mode,
            "modes_used": list(self.modes_used),
            "started_at": isoformat(self.started_at),
            "completed_at": isoformat(self.completed_at),
            "last_activity_at": isoformat(self.last_activity_at),
            "status": self.status,
            "suspicion_score": self.suspicion_score,
            "suspicious_flags": list(self.suspicious_flags),
            "validation_status": self.validation_status,
            "validated_by": self.validated_by,
            "validated_at": isoformat(self.validated_at),
        }


@dataclass
class ResponseRecord:
    """A demographic, pre-test or post-test answer row."""
    id: str
    session_id: str
    question_id: str
    answer: str
    category: str
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any], category: str) -> "ResponseRecord":
        return cls(
            id=str(row.get("id")),
            session_id=str(row.get("session_id")),
            question_id=row.get("question_id") or "",
            answer="" if row.get("answer") is None else str(row.get("answer")),
            category=category,
            created_at=parse_timestamp(row.get("created_at")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "question_id": self.question_id,
            "answer": self.answer,
            "created_at": isoformat(self.created_at),
        }


@dataclass
class TimingEntry:
    """A reconciled dwell-time record for one slide or page visit."""
    id: str
    session_id: str
    slide_key: str
    title: str
    duration_seconds: int
    source: TimingSource
    mode: Optional[str] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    raw_slide_id: Optional[str] = None

    @property
    def kind(self) -> str:
        return "page" if is_page_key(self.slide_key) else "slide"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "slide_key": self.slide_key,
            "title": self.title,
            "kind": self.kind,
            "duration_seconds": self.duration_seconds,
            "source": self.source.value,
            "mode": self.mode,
            "started_at": isoformat(self.started_at),
            "ended_at": isoformat(self.ended_at),
        }


@dataclass
class DialogueTurn:
    """One tutoring dialogue message."""
    id: str
    session_id: str
    role: str
    content: str
    timestamp: Optional[datetime]
    source: DialogueSource
    slide_key: Optional[str] = None
    mode: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "role": self.role,
            "content": self.content,
            "timestamp": isoformat(self.timestamp),
            "source": self.source.value,
            "slide_key": self.slide_key,
            "mode": self.mode,
        }


@dataclass
class ScenarioRecord:
    """Ratings a participant gave after a scenario."""
    id: str
    scenario_id: str
    trust_rating: Optional[int] = None
    confidence_rating: Optional[int] = None
    engagement_rating: Optional[bool] = None
    completed_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "ScenarioRecord":
        return cls(
            id=str(row.get("id")),
            scenario_id=row.get("scenario_id") or "",
            trust_rating=row.get("trust_rating"),
            confidence_rating=row.get("confidence_rating"),
            engagement_rating=row.get("engagement_rating"),
            completed_at=parse_timestamp(row.get("completed_at")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "scenario_id": self.scenario_id,
            "trust_rating": self.trust_rating,
            "confidence_rating": self.confidence_rating,
            "engagement_rating": self.engagement_rating,
            "completed_at": isoformat(self.completed_at),
        }


@dataclass
class QuestionDefinition:
    """A catalog question that may count toward a session's expected answers."""
    question_id: str
    type: str
    mode_scope: str = "both"
    is_active: bool = True
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "QuestionDefinition":
        raw_type = row.get("question_type") or row.get("type") or ""
        return cls(
            question_id=row.get("question_id") or "",
            type=QUESTION_TYPE_CATEGORIES.get(raw_type, raw_type),
            mode_scope=row.get("mode_specific") or row.get("mode_scope") or "both",
            is_active=bool(row.get("is_active", True)),
            created_at=parse_timestamp(row.get("created_at")),
        )


@dataclass
class SlideAggregate:
    """All segments recorded for one logical slide or page."""
    slide_key: str
    title: str
    total_seconds: int
    entries: List[TimingEntry] = field(default_factory=list)

    @property
    def kind(self) -> str:
        return "page" if is_page_key(self.slide_key) else "slide"

    @property
    def entry_ids(self) -> List[str]:
        return [entry.id for entry in self.entries]

    @property
    def segment_count(self) -> int:
        return len(self.entries)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "slide_key": self.slide_key,
            "title": self.title,
            "kind": self.kind,
            "total_seconds": self.total_seconds,
            "segment_count": self.segment_count,
            "entry_ids": self.entry_ids,
            "sources": sorted({entry.source.value for entry in self.entries}),
        }


@dataclass
class CategoryCompleteness:
    present: bool
    expected: int
    answered: int
    raw_answered: int
    catalog_backed: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "present": self.present,
            "expected": self.expected,
            "answered": self.answered,
            "raw_answered": self.raw_answered,
            "catalog_backed": self.catalog_backed,
        }


@dataclass
class CompletenessStatus:
    """Derived per-category completeness; never persisted."""
    categories: Dict[str, CategoryCompleteness]

    @property
    def is_complete(self) -> bool:
        return all(item.present for item in self.categories.values())

    def __getitem__(self, category: str) -> CategoryCompleteness:
        return self.categories[category]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_complete": self.is_complete,
            "categories": {name: item.to_dict() for name, item in self.categories.items()},
        }


@dataclass
class SessionDetails:
    """Everything the session detail view and exports need for one session."""
    session: SessionRecord
    responses: Dict[str, List[ResponseRecord]]
    timing_entries: List[TimingEntry]
    timing_groups: List[SlideAggregate]
    dialogue_turns: List[DialogueTurn]
    scenarios: List[ScenarioRecord] = field(default_factory=list)
    has_local_override: bool = False
    failed_sections: List[str] = field(default_factory=list)

    @property
    def total_timing_seconds(self) -> int:
        return sum(entry.duration_seconds for entry in self.timing_entries)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session": self.session.to_dict(),
            "responses": {
                category: [record.to_dict() for record in records]
                for category, records in self.responses.items()
            },
            "timing_entries": [entry.to_dict() for entry in self.timing_entries],
            "timing_groups": [group.to_dict() for group in self.timing_groups],
            "total_timing_seconds": self.total_timing_seconds,
            "dialogue_turns": [turn.to_dict() for turn in self.dialogue_turns],
            "scenarios": [scenario.to_dict() for scenario in self.scenarios],
            "has_local_override": self.has_local_override,
            "failed_sections": list(self.failed_sections),
        }
