"""
Record Store

Read and write access to the study database. ``SupabaseRecordStore`` talks to
the live project through the Supabase client; ``InMemoryRecordStore`` holds
the same tables in dictionaries for tests and offline development.

Both are synchronous; the inspector runs their calls in worker threads.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from study_session_inspector.errors import RecordStoreError
from study_session_inspector.models import RESPONSE_TABLES
from study_session_inspector.validation import EDITABLE_SESSION_FIELDS, SessionEdits

logger = logging.getLogger(__name__)

SESSIONS_TABLE = "study_sessions"
TIMING_TABLE = "avatar_time_tracking"
DIALOGUE_TABLE = "tutor_dialogue_turns"
SCENARIOS_TABLE = "scenarios"
QUESTIONS_TABLE = "study_questions"
SLIDES_TABLE = "study_slides"

TIMING_INSERT_FIELDS = (
    "slide_id",
    "slide_title",
    "duration_seconds",
    "started_at",
    "ended_at",
    "mode",
    "source",
    "is_imputed",
)
SCENARIO_FIELDS = ("trust_rating", "confidence_rating", "engagement_rating", "completed_at")

PAGE_SIZE = 1000
MAX_PAGES = 50


def is_uuid(value: Any) -> bool:
    try:
        uuid.UUID(str(value))
    except ValueError:
        return False
    return True


def pick_fields(source: Dict[str, Any], fields) -> Dict[str, Any]:
    return {name: source[name] for name in fields if name in source}


def timing_insert_payload(row: Dict[str, Any], session_id: str) -> Dict[str, Any]:
    # Unset columns keep their database defaults
    payload = {name: value for name, value in pick_fields(row, TIMING_INSERT_FIELDS).items() if value is not None}
    payload["session_id"] = session_id
    return payload


class RecordStore(ABC):
    """Queries the inspector needs from the authoritative store."""

    @abstractmethod
    def fetch_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    def fetch_responses(self, category: str, session_id: str) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    def fetch_timing(self, session_id: str) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    def fetch_dialogue(self, session_id: str) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    def fetch_scenarios(self, session_id: str) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    def fetch_questions(self, active_only: bool = True) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    def fetch_slides(self, active_only: bool = True) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    def apply_session_edits(self, session_id: str, edits: SessionEdits) -> None:
        """Write an edit. Raises RecordStoreError when the store rejects it."""


def fetch_all_pages(
    fetch_page: Callable[[int, int], List[Dict[str, Any]]],
    page_size: int = PAGE_SIZE,
    max_pages: int = MAX_PAGES,
) -> List[Dict[str, Any]]:
    """
    Collect every row of a query using PostgREST range pagination.

    The API caps rows per request, so a single select silently truncates
    long sessions.
    """
    rows: List[Dict[str, Any]] = []
    for page in range(max_pages):
        start = page * page_size
        batch = fetch_page(start, start + page_size - 1) or []
        rows.extend(batch)
        if len(batch) < page_size:
            return rows
    logger.warning(f"⚠️ [RecordStore] Reached {max_pages} pages; results may be truncated")
    return rows


class SupabaseRecordStore(RecordStore):
    """RecordStore backed by the Supabase (PostgREST) API."""

    def __init__(self, supabase_client):
        self.supabase = supabase_client

    def _select_all(self, table: str, build: Callable[[Any], Any], order: Optional[str] = None) -> List[Dict[str, Any]]:
        def fetch_page(start: int, end: int) -> List[Dict[str, Any]]:
            query = build(self.supabase.table(table).select("*"))
            if order:
                query = query.order(order, desc=False)
            return query.range(start, end).execute().data

        try:
            return fetch_all_pages(fetch_page)
        except Exception as e:
            raise RecordStoreError(f"Failed to read {table}: {e}", table=table) from e

    def fetch_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        # ``id`` is a uuid column; PostgREST rejects any other value outright
        columns = ("id", "session_id") if is_uuid(session_id) else ("session_id",)
        try:
            for column in columns:
                result = self.supabase.table(SESSIONS_TABLE).select("*").eq(column, session_id).execute()
                if result.data:
                    break
        except Exception as e:
            raise RecordStoreError(f"Failed to read {SESSIONS_TABLE}: {e}", table=SESSIONS_TABLE) from e
        return result.data[0] if result.data else None

    def fetch_responses(self, category: str, session_id: str) -> List[Dict[str, Any]]:
        return self._select_all(RESPONSE_TABLES[category], lambda q: q.eq("session_id", session_id), "created_at")

    def fetch_timing(self, session_id: str) -> List[Dict[str, Any]]:
        return self._select_all(TIMING_TABLE, lambda q: q.eq("session_id", session_id), "started_at")

    def fetch_dialogue(self, session_id: str) -> List[Dict[str, Any]]:
        return self._select_all(DIALOGUE_TABLE, lambda q: q.eq("session_id", session_id), "timestamp")

    def fetch_scenarios(self, session_id: str) -> List[Dict[str, Any]]:
        return self._select_all(SCENARIOS_TABLE, lambda q: q.eq("session_id", session_id), "completed_at")

    def fetch_questions(self, active_only: bool = True) -> List[Dict[str, Any]]:
        return self._select_all(QUESTIONS_TABLE, lambda q: q.eq("is_active", True) if active_only else q, "sort_order")

    def fetch_slides(self, active_only: bool = True) -> List[Dict[str, Any]]:
        return self._select_all(SLIDES_TABLE, lambda q: q.eq("is_active", True) if active_only else q, "sort_order")

    def _update_rows(self, table: str, rows: List[Dict[str, Any]], fields) -> None:
        for row in rows:
            payload = pick_fields(row, fields)
            if not row.get("id") or not payload:
                continue
            self.supabase.table(table).update(payload).eq("id", row["id"]).execute()

    def apply_session_edits(self, session_id: str, edits: SessionEdits) -> None:
        table = SESSIONS_TABLE
        try:
            session_payload = pick_fields(edits.session, EDITABLE_SESSION_FIELDS)
            if session_payload:
                self.supabase.table(table).update(session_payload).eq("id", session_id).execute()

            for category, rows in edits.responses.items():
                table = RESPONSE_TABLES[category]
                self._update_rows(table, rows, ("answer",))

            table = SCENARIOS_TABLE
            self._update_rows(table, edits.scenarios, SCENARIO_FIELDS)
            table = TIMING_TABLE
            self._update_rows(table, edits.timing, ("duration_seconds",))
            table = DIALOGUE_TABLE
            self._update_rows(table, edits.dialogue, ("content",))

            table = TIMING_TABLE
            inserts = [
                timing_insert_payload(row, session_id)
                for row in edits.timing_inserts
                if row.get("slide_id")
            ]
            if inserts:
                self.supabase.table(table).insert(inserts).execute()
        except Exception as e:
            raise RecordStoreError(f"Failed to update {table}: {e}", table=table) from e


class InMemoryRecordStore(RecordStore):
    """RecordStore holding every table in memory."""

    def __init__(self):
        self.tables: Dict[str, List[Dict[str, Any]]] = {
            name: []
            for name in (
                SESSIONS_TABLE,
                TIMING_TABLE,
                DIALOGUE_TABLE,
                SCENARIOS_TABLE,
                QUESTIONS_TABLE,
                SLIDES_TABLE,
                *RESPONSE_TABLES.values(),
            )
        }

    def add_rows(self, table: str, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        stored = []
        for row in rows:
            row = dict(row)
            row.setdefault("id", str(uuid.uuid4()))
            row.setdefault("created_at", datetime.now(timezone.utc).isoformat())
            self.tables.setdefault(table, []).append(row)
            stored.append(row)
        return stored

    def add_session(self, row: Dict[str, Any]) -> Dict[str, Any]:
        return self.add_rows(SESSIONS_TABLE, [row])[0]

    def _rows(self, table: str, session_id: Optional[str] = None) -> List[Dict[str, Any]]:
        rows = self.tables.get(table, [])
        if session_id is not None:
            rows = [row for row in rows if row.get("session_id") == session_id]
        return [dict(row) for row in rows]

    def fetch_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        for row in self.tables[SESSIONS_TABLE]:
            if row.get("id") == session_id or row.get("session_id") == session_id:
                return dict(row)
        return None

    def fetch_responses(self, category: str, session_id: str) -> List[Dict[str, Any]]:
        return self._rows(RESPONSE_TABLES[category], session_id)

    def fetch_timing(self, session_id: str) -> List[Dict[str, Any]]:
        return self._rows(TIMING_TABLE, session_id)

    def fetch_dialogue(self, session_id: str) -> List[Dict[str, Any]]:
        return self._rows(DIALOGUE_TABLE, session_id)

    def fetch_scenarios(self, session_id: str) -> List[Dict[str, Any]]:
        return self._rows(SCENARIOS_TABLE, session_id)

    def fetch_questions(self, active_only: bool = True) -> List[Dict[str, Any]]:
        return [row for row in self._rows(QUESTIONS_TABLE) if row.get("is_active", True) or not active_only]

    def fetch_slides(self, active_only: bool = True) -> List[Dict[str, Any]]:
        return [row for row in self._rows(SLIDES_TABLE) if row.get("is_active", True) or not active_only]

    def _update(self, table: str, rows: List[Dict[str, Any]], fields) -> None:
        by_id = {row.get("id"): row for row in self.tables[table]}
        for row in rows:
            target = by_id.get(row.get("id"))
            if target is not None:
                target.update(pick_fields(row, fields))

    def apply_session_edits(self, session_id: str, edits: SessionEdits) -> None:
        for row in self.tables[SESSIONS_TABLE]:
            if row.get("id") == session_id:
                row.update(pick_fields(edits.session, EDITABLE_SESSION_FIELDS))
        for category, rows in edits.responses.items():
            self._update(RESPONSE_TABLES[category], rows, ("answer",))
        self._update(SCENARIOS_TABLE, edits.scenarios, SCENARIO_FIELDS)
        self._update(TIMING_TABLE, edits.timing, ("duration_seconds",))
        self._update(DIALOGUE_TABLE, edits.dialogue, ("content",))
        self.add_rows(TIMING_TABLE, [
            timing_insert_payload(row, session_id)
            for row in edits.timing_inserts
            if row.get("slide_id")
        ])
