"""
Administrative Edit Validation

Edits are checked locally before any write. An invalid edit is reported to the
caller and never reaches the store or the local override cache.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from study_session_inspector.errors import EditValidationError
from study_session_inspector.models import RESPONSE_CATEGORIES, SessionRecord, parse_timestamp
from study_session_inspector.override_cache import OverridePatch

EDITABLE_SESSION_FIELDS = (
    "started_at",
    "completed_at",
    "last_activity_at",
    "status",
    "mode",
    "modes_used",
    "suspicion_score",
    "suspicious_flags",
)

SCENARIO_RATING_FIELDS = ("trust_rating", "confidence_rating")


@dataclass
class SessionEdits:
    """
    One administrative save for a session.

    ``responses`` maps a category (demographic/pre/post) to ``{"id", "answer"}``
    rows. ``timing_inserts`` materialise fallback-only segments; each carries
    the ``entry_id`` of the reconciled fallback entry it came from.
    """
    session: Dict[str, Any] = field(default_factory=dict)
    responses: Dict[str, List[Dict[str, Any]]] = field(default_factory=dict)
    timing: List[Dict[str, Any]] = field(default_factory=list)
    timing_inserts: List[Dict[str, Any]] = field(default_factory=list)
    dialogue: List[Dict[str, Any]] = field(default_factory=list)
    scenarios: List[Dict[str, Any]] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (
            self.session
            or any(self.responses.values())
            or self.timing
            or self.timing_inserts
            or self.dialogue
            or self.scenarios
        )

    def to_override_patch(self) -> OverridePatch:
        """Field-level patch for the local cache. Inserts patch their source fallback entry."""
        records: Dict[str, Dict[str, Dict[str, Any]]] = {}

        def put(category: str, record_id: Any, fields: Dict[str, Any]) -> None:
            if record_id is None or not fields:
                return
            records.setdefault(category, {}).setdefault(str(record_id), {}).update(fields)

        for category, rows in self.responses.items():
            for row in rows:
                put(category, row.get("id"), {"answer": row.get("answer")})
        for row in self.timing:
            put("timing", row.get("id"), {"duration_seconds": row.get("duration_seconds")})
        for row in self.timing_inserts:
            put("timing", row.get("entry_id"), {"duration_seconds": row.get("duration_seconds")})
        for row in self.dialogue:
            put("dialogue", row.get("id"), {"content": row.get("content")})
        for row in self.scenarios:
            put("scenarios", row.get("id"), {k: v for k, v in row.items() if k != "id"})

        return OverridePatch(session=dict(self.session), records=records)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_duration(value: Any) -> bool:
    return _is_number(value) and math.isfinite(value) and value >= 0


def _check_timestamp(name: str, value: Any, problems: List[str]) -> None:
    if value is None:
        return
    if not isinstance(value, str) or parse_timestamp(value) is None:
        problems.append(f"session.{name}: malformed timestamp {value!r}")


def _validate_session(
    fields: Dict[str, Any],
    current: Optional[SessionRecord],
    problems: List[str],
) -> None:
    for name, value in fields.items():
        if name not in EDITABLE_SESSION_FIELDS:
            problems.append(f"session.{name}: field is not editable")
        elif name in ("started_at", "completed_at", "last_activity_at"):
            if name == "started_at" and value is None:
                problems.append("session.started_at: cannot be cleared")
            else:
                _check_timestamp(name, value, problems)
        elif name == "suspicion_score":
            if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                problems.append(f"session.suspicion_score: expected a non-negative integer, got {value!r}")
        elif name in ("modes_used", "suspicious_flags"):
            if not isinstance(value, list):
                problems.append(f"session.{name}: expected a list")
        elif name in ("status", "mode"):
            if not isinstance(value, str) or not value.strip():
                problems.append(f"session.{name}: expected a non-empty string")

    if "started_at" in fields:
        started = parse_timestamp(fields["started_at"])
    else:
        started = current.started_at if current else None
    if "completed_at" in fields:
        completed = parse_timestamp(fields["completed_at"])
    else:
        completed = current.completed_at if current else None

    if started and completed and completed < started:
        problems.append("session.completed_at: completed before started")


def _validate_rows(
    label: str,
    rows: List[Dict[str, Any]],
    value_field: str,
    problems: List[str],
) -> None:
    for index, row in enumerate(rows):
        if not isinstance(row, dict) or not row.get("id"):
            problems.append(f"{label}[{index}]: missing id")
            continue
        if value_field not in row:
            problems.append(f"{label}[{index}]: missing {value_field}")
            continue
        value = row[value_field]
        if value_field == "duration_seconds":
            if not _is_duration(value):
                problems.append(f"{label}[{index}]: duration must be a non-negative number")
        elif not isinstance(value, str):
            problems.append(f"{label}[{index}]: {value_field} must be text")


def validate_edits(edits: SessionEdits, current: Optional[SessionRecord] = None) -> None:
    """
    Raise EditValidationError listing every problem in ``edits``.

    Args:
        edits: Edit to check
        current: Session as last fetched, used for cross-field checks
    """
    problems: List[str] = []

    _validate_session(edits.session, current, problems)

    for category, rows in edits.responses.items():
        if category not in RESPONSE_CATEGORIES:
            problems.append(f"responses.{category}: unknown response category")
            continue
        if not isinstance(rows, list):
            problems.append(f"responses.{category}: expected a list of rows")
            continue
        _validate_rows(f"responses.{category}", rows, "answer", problems)

    _validate_rows("timing", edits.timing, "duration_seconds", problems)
    _validate_rows("dialogue", edits.dialogue, "content", problems)

    for index, row in enumerate(edits.timing_inserts):
        if not isinstance(row, dict):
            problems.append(f"timing_inserts[{index}]: expected an object")
            continue
        if not row.get("slide_id"):
            problems.append(f"timing_inserts[{index}]: missing slide_id")
        duration = row.get("duration_seconds")
        if not _is_duration(duration):
            problems.append(f"timing_inserts[{index}]: duration must be a non-negative number")

    for index, row in enumerate(edits.scenarios):
        if not isinstance(row, dict) or not row.get("id"):
            problems.append(f"scenarios[{index}]: missing id")
            continue
        for name in SCENARIO_RATING_FIELDS:
            if name in row and (not isinstance(row[name], int) or isinstance(row[name], bool) or not 1 <= row[name] <= 10):
                problems.append(f"scenarios[{index}].{name}: expected an integer from 1 to 10")
        if "engagement_rating" in row and not isinstance(row["engagement_rating"], bool):
            problems.append(f"scenarios[{index}].engagement_rating: expected true or false")
        if "completed_at" in row and parse_timestamp(row["completed_at"]) is None:
            problems.append(f"scenarios[{index}].completed_at: malformed timestamp")
        unknown = set(row) - {"id", "engagement_rating", "completed_at", *SCENARIO_RATING_FIELDS}
        if unknown:
            problems.append(f"scenarios[{index}]: fields not editable: {', '.join(sorted(unknown))}")

    if problems:
        raise EditValidationError(problems)
