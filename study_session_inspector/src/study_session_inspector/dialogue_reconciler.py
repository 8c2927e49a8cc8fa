"""
Tutor Dialogue Reconciliation

Merges ``tutor_dialogue_turns`` rows (primary) with the transcript snapshot
decoded from ``__meta_dialogue_v1`` (fallback). Dedupe is exact on
(role, content, timestamp, slide key); nothing fuzzy.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from study_session_inspector.models import (
    DialogueSource,
    DialogueTurn,
    parse_timestamp,
    to_epoch_ms,
)
from study_session_inspector.slide_lookup import SlideLookup

logger = logging.getLogger(__name__)

_ROLE_ALIASES = {"ai": "assistant", "assistant": "assistant", "user": "user"}


def normalize_role(role: Optional[str]) -> str:
    return _ROLE_ALIASES.get((role or "").strip().lower(), (role or "").strip().lower())


def _slide_key(slide_id: Optional[str], slide_title: Optional[str], lookup: Optional[SlideLookup]) -> Optional[str]:
    if not slide_id and not slide_title:
        return None
    if lookup is None:
        return slide_id or None
    key, _ = lookup.resolve(slide_id, slide_title)
    return key or None


def dedupe_key(turn: DialogueTurn) -> Tuple[str, str, Optional[int], Optional[str]]:
    return (turn.role, turn.content, to_epoch_ms(turn.timestamp), turn.slide_key)


def primary_turns(
    rows: Iterable[Dict[str, Any]],
    session_id: str,
    lookup: Optional[SlideLookup] = None,
) -> List[DialogueTurn]:
    return [
        DialogueTurn(
            id=str(row.get("id")),
            session_id=session_id,
            role=normalize_role(row.get("role")),
            content=row.get("content") or "",
            timestamp=parse_timestamp(row.get("timestamp") or row.get("created_at")),
            source=DialogueSource.PRIMARY,
            slide_key=_slide_key(row.get("slide_id"), row.get("slide_title"), lookup),
            mode=row.get("mode"),
        )
        for row in rows
    ]


def fallback_turns(
    items: Iterable[Any],
    session_id: str,
    lookup: Optional[SlideLookup] = None,
) -> List[DialogueTurn]:
    turns = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            continue
        content = item.get("content")
        if not isinstance(content, str) or not content.strip():
            continue
        turns.append(DialogueTurn(
            id=f"fallback:{session_id}:{index}",
            session_id=session_id,
            role=normalize_role(item.get("role")),
            content=content,
            timestamp=parse_timestamp(item.get("timestamp")),
            source=DialogueSource.FALLBACK,
            slide_key=_slide_key(
                item.get("slideId") or item.get("slide_id"),
                item.get("slideTitle") or item.get("slide_title"),
                lookup,
            ),
            mode=item.get("mode"),
        ))
    return turns


def merge_dialogue(primary: List[DialogueTurn], fallback: List[DialogueTurn]) -> List[DialogueTurn]:
    """Primary turns first; fallback turns appended unless an identical primary turn exists."""
    if not primary:
        return list(fallback)

    seen = {dedupe_key(turn) for turn in primary}
    merged = list(primary)
    merged.extend(turn for turn in fallback if dedupe_key(turn) not in seen)

    appended = len(merged) - len(primary)
    if appended:
        logger.debug(f"💬 [DialogueReconciler] Appended {appended} fallback turns")
    return merged


def reconcile_dialogue(
    primary_rows: Iterable[Dict[str, Any]],
    fallback_items: Iterable[Any],
    session_id: str,
    lookup: Optional[SlideLookup] = None,
) -> List[DialogueTurn]:
    """
    Produce one dialogue list for a session.

    Args:
        primary_rows: ``tutor_dialogue_turns`` rows
        fallback_items: Messages decoded from the ``__meta_dialogue_v1`` payload
        session_id: Session UUID
        lookup: Optional slide lookup used to canonicalise slide keys

    Returns:
        Merged list of DialogueTurn
    """
    return merge_dialogue(
        primary_turns(primary_rows, session_id, lookup),
        fallback_turns(fallback_items, session_id, lookup),
    )
