"""
Slide Timing Reconciliation

Merges the per-event ``avatar_time_tracking`` rows written during navigation
(primary) with the end-of-session timing snapshot decoded from the
``__meta_timing_v1`` payload (fallback).

Rules:
- Slide identity goes through SlideLookup; ``page:`` ids keep their literal id
- With a non-empty active-slide catalog, slides missing from it are stale
- Primary always wins: a fallback entry survives only if no primary entry
  resolved to the same key
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Set

from study_session_inspector.models import (
    TimingEntry,
    TimingSource,
    is_page_key,
    parse_timestamp,
)
from study_session_inspector.slide_lookup import SlideLookup

logger = logging.getLogger(__name__)

# Sources an administrator writes when materialising or correcting time
OWNER_SOURCES = {"owner", "owner-imputed", "admin"}


def _duration(value: Any) -> int:
    try:
        return max(int(round(float(value))), 0)
    except (TypeError, ValueError):
        return 0


def _is_stale(slide_key: str, active_slide_ids: Optional[Set[str]]) -> bool:
    if not active_slide_ids or is_page_key(slide_key):
        return False
    return slide_key not in active_slide_ids


def primary_entries(
    rows: Iterable[Dict[str, Any]],
    session_id: str,
    lookup: SlideLookup,
) -> List[TimingEntry]:
    """Convert ``avatar_time_tracking`` rows to TimingEntry objects."""
    entries = []
    for row in rows:
        raw_id = row.get("slide_id") or ""
        slide_key, title = lookup.resolve(raw_id, row.get("slide_title"))
        if not slide_key:
            continue
        is_owner = row.get("is_imputed") or (row.get("source") or "") in OWNER_SOURCES
        entries.append(TimingEntry(
            id=str(row.get("id")),
            session_id=session_id,
            slide_key=slide_key,
            title=title,
            duration_seconds=_duration(row.get("duration_seconds")),
            source=TimingSource.OWNER_IMPUTED if is_owner else TimingSource.PRIMARY,
            mode=row.get("mode"),
            started_at=parse_timestamp(row.get("started_at")),
            ended_at=parse_timestamp(row.get("ended_at")),
            raw_slide_id=raw_id,
        ))
    return entries


def fallback_entries(
    items: Iterable[Any],
    session_id: str,
    lookup: SlideLookup,
) -> List[TimingEntry]:
    """
    Convert decoded snapshot items to TimingEntry objects.

    Items without an id/title or with a non-positive duration were never
    recorded as visits and are skipped.
    """
    entries = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            continue
        raw_id = item.get("slideId") or item.get("slide_id") or ""
        raw_title = item.get("slideTitle") or item.get("slide_title") or ""
        duration = _duration(item.get("durationSeconds", item.get("duration_seconds")))
        if not raw_id or not raw_title or duration <= 0:
            continue
        slide_key, title = lookup.resolve(raw_id, raw_title)
        entries.append(TimingEntry(
            id=f"fallback:{session_id}:{index}",
            session_id=session_id,
            slide_key=slide_key,
            title=title,
            duration_seconds=duration,
            source=TimingSource.FALLBACK,
            mode=item.get("mode"),
            started_at=parse_timestamp(item.get("startedAt") or item.get("started_at")),
            ended_at=parse_timestamp(item.get("endedAt") or item.get("ended_at")),
            raw_slide_id=raw_id,
        ))
    return entries


def merge_timing(
    primary: List[TimingEntry],
    fallback: List[TimingEntry],
    active_slide_ids: Optional[Set[str]] = None,
) -> List[TimingEntry]:
    """Pure precedence merge of already-resolved primary and fallback entries."""
    merged = [entry for entry in primary if not _is_stale(entry.slide_key, active_slide_ids)]
    primary_keys = {entry.slide_key for entry in merged}

    dropped = 0
    for entry in fallback:
        if _is_stale(entry.slide_key, active_slide_ids) or entry.slide_key in primary_keys:
            dropped += 1
            continue
        merged.append(entry)

    if dropped:
        logger.debug(f"⏱️ [TimingReconciler] Dropped {dropped} fallback entries (duplicate or stale)")
    return merged


def reconcile_timing(
    primary_rows: Iterable[Dict[str, Any]],
    fallback_items: Iterable[Any],
    session_id: str,
    lookup: Optional[SlideLookup] = None,
    active_slide_ids: Optional[Set[str]] = None,
) -> List[TimingEntry]:
    """
    Produce one deduplicated timing list for a session.

    Args:
        primary_rows: ``avatar_time_tracking`` rows
        fallback_items: Items decoded from the ``__meta_timing_v1`` payload
        session_id: Session UUID
        lookup: Slide catalog lookup (empty lookup resolves by title only)
        active_slide_ids: Active slide ids; empty or None disables stale filtering

    Returns:
        Primary entries in input order followed by surviving fallback entries
    """
    lookup = lookup or SlideLookup()
    return merge_timing(
        primary_entries(primary_rows, session_id, lookup),
        fallback_entries(fallback_items, session_id, lookup),
        active_slide_ids,
    )
