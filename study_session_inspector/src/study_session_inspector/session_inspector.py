"""
Session Inspector

Builds the admin view of one study session. Reads fan out concurrently, the
two telemetry sources are reconciled, any local override is layered on top
and revisit segments are aggregated. Edits go to the authoritative store
first and fall back to the local override cache when it is unreachable.
"""

import asyncio
import logging
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from study_session_inspector.completeness import evaluate_completeness
from study_session_inspector.dialogue_reconciler import reconcile_dialogue
from study_session_inspector.errors import (
    EditValidationError,
    RecordStoreError,
    SessionNotFoundError,
)
from study_session_inspector.models import (
    RESPONSE_CATEGORIES,
    CompletenessStatus,
    QuestionDefinition,
    ResponseRecord,
    ScenarioRecord,
    SessionDetails,
    SessionRecord,
)
from study_session_inspector.override_cache import OverrideCache, OverrideState
from study_session_inspector.payload_codec import (
    META_DIALOGUE_ID,
    META_TIMING_ID,
    decode_payload,
    is_meta_question_id,
)
from study_session_inspector.record_store import RecordStore
from study_session_inspector.segment_aggregator import (
    aggregate_segments,
    build_timing_edits,
    clamp_segment_seconds,
)
from study_session_inspector.slide_lookup import SlideLookup
from study_session_inspector.timing_reconciler import reconcile_timing
from study_session_inspector.validation import SessionEdits, validate_edits

logger = logging.getLogger(__name__)

LOCAL_ONLY_NOTICE = (
    "The database could not be reached. Your changes are saved on this machine only "
    "and will be shown until a later save succeeds or the local override is cleared."
)

# Detail views kept fresh by the refresh scheduler
DEFAULT_MAX_SNAPSHOTS = 50


class SaveOutcome(str, Enum):
    COMMITTED = "committed"
    LOCALLY_CACHED = "locally_cached"


@dataclass
class SaveResult:
    outcome: SaveOutcome
    notice: Optional[str] = None
    session_id: Optional[str] = None
    override_state: OverrideState = OverrideState.CLEAN

    def to_dict(self) -> Dict[str, Any]:
        return {"outcome": self.outcome.value, "notice": self.notice}


class SessionInspector:
    """
    Reconciliation and override engine behind the admin session inspector.

    Reconciliation is read-only and idempotent, so callers that stop caring
    about a result (a closed detail view) can simply drop it.
    """

    def __init__(
        self,
        store: RecordStore,
        override_cache: Optional[OverrideCache] = None,
        max_snapshots: int = DEFAULT_MAX_SNAPSHOTS,
    ):
        """
        Initialize SessionInspector.

        Args:
            store: Authoritative record store
            override_cache: Local patch layer (in-memory if omitted)
            max_snapshots: Open detail views kept; the least recently viewed is dropped first
        """
        self.store = store
        self.override_cache = override_cache or OverrideCache()
        self.max_snapshots = max_snapshots
        # Latest details per session, most recently viewed last
        self.snapshots: "OrderedDict[str, SessionDetails]" = OrderedDict()

    # ==================== Reads ====================

    async def _fetch_section(
        self,
        section: str,
        fetch: Callable[..., Any],
        *args,
        default: Any = None,
    ) -> Tuple[Any, Optional[str]]:
        """Run one blocking read; a failure degrades only this section."""
        try:
            return await asyncio.to_thread(fetch, *args), None
        except Exception as e:
            logger.warning(f"⚠️ [SessionInspector] Could not load {section}: {e}")
            return default, section

    async def _load_session(self, session_id: str) -> SessionRecord:
        row = await asyncio.to_thread(self.store.fetch_session, session_id)
        if not row:
            raise SessionNotFoundError(session_id)
        return SessionRecord.from_row(row)

    @staticmethod
    def _override_keys(session: SessionRecord, requested_id: Optional[str] = None) -> List[str]:
        """Cache keys a session's patch may sit under: the UUID first, then the codes it was saved by."""
        keys = [session.id]
        for alias in (session.public_session_id, requested_id):
            if alias and alias not in keys:
                keys.append(alias)
        return keys

    async def _resolve_override_keys(self, session_id: str) -> List[str]:
        try:
            session = await self._load_session(session_id)
        except (RecordStoreError, SessionNotFoundError) as e:
            # A patch saved while the database was down sits under the id it was saved by
            logger.warning(f"⚠️ [SessionInspector] Could not resolve session {session_id}: {e}")
            return [session_id]
        return self._override_keys(session, session_id)

    def _combined_state(self, keys: List[str]) -> OverrideState:
        states = [self.override_cache.state(key) for key in keys]
        for state in (OverrideState.PENDING_REMOTE, OverrideState.LOCALLY_OVERRIDDEN):
            if state in states:
                return state
        return states[0]

    async def get_session_details(self, session_id: str) -> SessionDetails:
        """
        Reconstruct everything recorded for a session.

        Args:
            session_id: Session UUID (or the participant-facing session code)

        Returns:
            SessionDetails with reconciled timing and dialogue, local override applied

        Raises:
            SessionNotFoundError: No such session
            RecordStoreError: The session row itself could not be read
        """
        session = await self._load_session(session_id)
        sid = session.id

        results = await asyncio.gather(
            *[
                self._fetch_section(f"{category} responses", self.store.fetch_responses, category, sid, default=[])
                for category in RESPONSE_CATEGORIES
            ],
            self._fetch_section("timing", self.store.fetch_timing, sid, default=[]),
            self._fetch_section("dialogue", self.store.fetch_dialogue, sid, default=[]),
            self._fetch_section("scenarios", self.store.fetch_scenarios, sid, default=[]),
            self._fetch_section("slides", self.store.fetch_slides, True, default=[]),
        )
        failed_sections = [failed for _, failed in results if failed]
        response_rows = {category: results[i][0] for i, category in enumerate(RESPONSE_CATEGORIES)}
        timing_rows, dialogue_rows, scenario_rows, slide_rows = [
            rows for rows, _ in results[len(RESPONSE_CATEGORIES):]
        ]

        # Telemetry snapshots ride along in the answer tables
        answer_rows = [row for rows in response_rows.values() for row in rows]
        fallback_timing = decode_payload(answer_rows, META_TIMING_ID)
        fallback_dialogue = decode_payload(answer_rows, META_DIALOGUE_ID)

        lookup = SlideLookup.from_slides(slide_rows)
        active_slide_ids = set(lookup.by_id) if lookup else None

        details = SessionDetails(
            session=session,
            responses={
                category: [
                    ResponseRecord.from_row(row, category)
                    for row in rows
                    if not is_meta_question_id(row.get("question_id"))
                ]
                for category, rows in response_rows.items()
            },
            timing_entries=reconcile_timing(timing_rows, fallback_timing, sid, lookup, active_slide_ids),
            timing_groups=[],
            dialogue_turns=reconcile_dialogue(dialogue_rows, fallback_dialogue, sid, lookup),
            scenarios=[ScenarioRecord.from_row(row) for row in scenario_rows],
            failed_sections=failed_sections,
        )

        # The UUID patch is applied last so it wins over one saved by public code
        for key in reversed(self._override_keys(session, session_id)):
            details = self.override_cache.apply(key, details)
        details.timing_groups = aggregate_segments(details.timing_entries)

        logger.info(
            f"🔎 [SessionInspector] Session {sid}: {len(details.timing_entries)} timing entries "
            f"({len(details.timing_groups)} groups), {len(details.dialogue_turns)} dialogue turns"
            + (", local override applied" if details.has_local_override else "")
        )
        return details

    async def get_completeness(self, session_id: str) -> CompletenessStatus:
        """Completeness of a session's responses against the question catalog."""
        (details, (question_rows, failed)) = await asyncio.gather(
            self.get_session_details(session_id),
            self._fetch_section("question catalog", self.store.fetch_questions, True, default=None),
        )
        catalog: Optional[List[QuestionDefinition]] = None
        if question_rows is not None:
            catalog = [QuestionDefinition.from_row(row) for row in question_rows]
        elif failed:
            logger.warning("⚠️ [SessionInspector] Question catalog unavailable; counting raw answers")
        return evaluate_completeness(details.session, details.responses, catalog)

    async def refresh_sessions(self, session_ids: Iterable[str]) -> Dict[str, SessionDetails]:
        """Re-fetch several sessions concurrently and update their snapshots."""
        ids = sorted(set(session_ids))
        results = await asyncio.gather(
            *(self.get_session_details(sid) for sid in ids),
            return_exceptions=True,
        )
        refreshed = {}
        for sid, result in zip(ids, results):
            if isinstance(result, Exception):
                logger.warning(f"⚠️ [SessionInspector] Refresh failed for {sid}: {result}")
                continue
            if result.session.id in self.snapshots:
                # Refreshing does not count as viewing
                self.snapshots[result.session.id] = result
            else:
                self.store_snapshot(result)
            refreshed[sid] = result
        return refreshed

    # ==================== Snapshots ====================

    def store_snapshot(self, details: SessionDetails) -> None:
        """Keep the latest details of an open view, dropping the least recently viewed past the cap."""
        sid = details.session.id
        self.snapshots[sid] = details
        self.snapshots.move_to_end(sid)
        while len(self.snapshots) > self.max_snapshots:
            evicted, _ = self.snapshots.popitem(last=False)
            logger.debug(f"🗑️ [SessionInspector] Dropped snapshot for session {evicted}")

    def get_snapshot(self, session_id: str) -> Optional[SessionDetails]:
        details = self.snapshots.get(session_id)
        if details is not None:
            self.snapshots.move_to_end(session_id)
        return details

    def discard_snapshot(self, session_id: str) -> None:
        self.snapshots.pop(session_id, None)

    def snapshot_ids(self) -> List[str]:
        return list(self.snapshots)

    # ==================== Writes ====================

    async def _recorded_timing_keys(self, session_id: str, current: Optional[SessionRecord]) -> Dict[str, str]:
        """Slide key of every timing entry id, so clamping never relies on the caller's slide id."""
        details = self.snapshots.get(current.id if current else session_id)
        if current is not None:
            try:
                details = await self.get_session_details(current.id)
            except RecordStoreError as e:
                logger.warning(f"⚠️ [SessionInspector] Could not load timing for {session_id}: {e}")
        if details is None:
            return {}
        return {entry.id: entry.slide_key for entry in details.timing_entries}

    async def save_edits(self, session_id: str, edits: SessionEdits) -> SaveResult:
        """
        Save an administrative edit.

        Validation runs first and raises EditValidationError without touching
        the store or the cache. A store failure caches the edit locally instead.

        Args:
            session_id: Session UUID (or the participant-facing session code)
            edits: Edit to apply

        Returns:
            SaveResult telling whether the edit was committed or only cached
        """
        try:
            current: Optional[SessionRecord] = await self._load_session(session_id)
        except RecordStoreError as e:
            logger.warning(f"⚠️ [SessionInspector] Could not load session {session_id} before save: {e}")
            current = None

        validate_edits(edits, current)
        timing_keys = await self._recorded_timing_keys(session_id, current) if edits.timing else {}
        return await self._write(session_id, current, edits, timing_keys)

    async def _write(
        self,
        requested_id: str,
        current: Optional[SessionRecord],
        edits: SessionEdits,
        timing_keys: Dict[str, str],
    ) -> SaveResult:
        keys = self._override_keys(current, requested_id) if current else [requested_id]
        session_id = keys[0]

        for row in edits.timing:
            slide_key = timing_keys.get(str(row["id"])) or row.get("slide_id") or ""
            row["duration_seconds"] = clamp_segment_seconds(row["duration_seconds"], slide_key)
        for row in edits.timing_inserts:
            row["duration_seconds"] = clamp_segment_seconds(row["duration_seconds"], row["slide_id"])

        self.override_cache.begin_save(session_id)
        try:
            await asyncio.to_thread(self.store.apply_session_edits, session_id, edits)
        except RecordStoreError as e:
            logger.error(f"❌ [SessionInspector] Remote save failed for {session_id}: {e}")
            # Last writer wins: an older patch saved under another key is replaced
            for alias in keys[1:]:
                if self.override_cache.has_override(alias):
                    self.override_cache.clear(alias)
            self.override_cache.save(session_id, edits.to_override_patch())
            return SaveResult(
                outcome=SaveOutcome.LOCALLY_CACHED,
                notice=LOCAL_ONLY_NOTICE,
                session_id=session_id,
                override_state=self._combined_state(keys),
            )

        for key in keys:
            self.override_cache.mark_committed(key)
            self.discard_snapshot(key)
        logger.info(f"✅ [SessionInspector] Saved edits for session {session_id}")
        return SaveResult(
            outcome=SaveOutcome.COMMITTED,
            session_id=session_id,
            override_state=self._combined_state(keys),
        )

    async def edit_timing_total(self, session_id: str, slide_key: str, new_total: int) -> SaveResult:
        """Set a slide's (or page's) total dwell time, spread over its segments."""
        details = await self.get_session_details(session_id)
        group = next((g for g in details.timing_groups if g.slide_key == slide_key), None)
        if group is None:
            raise EditValidationError([f"timing: no recorded time for {slide_key!r}"])

        timing_edits = build_timing_edits(group, new_total)
        edits = SessionEdits(timing=timing_edits.updates, timing_inserts=timing_edits.inserts)
        validate_edits(edits, details.session)
        return await self._write(
            session_id,
            details.session,
            edits,
            {entry.id: entry.slide_key for entry in details.timing_entries},
        )

    async def clear_local_override(self, session_id: str) -> str:
        """
        Drop the local patch so the next read shows remote data only.

        Returns:
            The session UUID, or ``session_id`` itself when it cannot be resolved
        """
        keys = await self._resolve_override_keys(session_id)
        for key in keys:
            self.override_cache.clear(key)
            self.discard_snapshot(key)
        return keys[0]

    async def get_override_state(self, session_id: str) -> OverrideState:
        return self._combined_state(await self._resolve_override_keys(session_id))

    def override_state_of(self, session: SessionRecord) -> OverrideState:
        """Override state of an already loaded session."""
        return self._combined_state(self._override_keys(session))
