"""
Revisit Segment Aggregation

A participant who revisits a slide (back/forward, refresh) leaves several
timing rows for one logical slide. This module groups them per key and, when
an administrator edits a group's total, spreads the new total back over the
original segments under a per-segment ceiling.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List

from study_session_inspector.models import (
    SlideAggregate,
    TimingEntry,
    TimingSource,
    is_page_key,
    isoformat,
)

# Matches the avatar-interaction bot-detection window
SLIDE_SEGMENT_CEILING_SECONDS = 180
# Generic navigation dwell time is far looser
PAGE_SEGMENT_CEILING_SECONDS = 7200


def segment_ceiling(kind: str) -> int:
    return PAGE_SEGMENT_CEILING_SECONDS if kind == "page" else SLIDE_SEGMENT_CEILING_SECONDS


def aggregate_segments(entries: List[TimingEntry]) -> List[SlideAggregate]:
    """Group entries by slide key, keeping first-seen order."""
    groups: Dict[str, SlideAggregate] = {}
    for entry in entries:
        group = groups.get(entry.slide_key)
        if group is None:
            group = SlideAggregate(slide_key=entry.slide_key, title=entry.title, total_seconds=0)
            groups[entry.slide_key] = group
        group.entries.append(entry)
        group.total_seconds += entry.duration_seconds
    return list(groups.values())


def redistribute(durations: List[int], target: int, ceiling: int) -> List[int]:
    """
    Spread ``target`` seconds over segments proportionally to their durations.

    The result sums to exactly ``min(target, ceiling * len(durations))`` and
    every value stays within ``[0, ceiling]``. A zero current total splits
    uniformly.
    """
    count = len(durations)
    if count == 0:
        return []

    goal = min(max(int(target), 0), ceiling * count)
    current_total = sum(max(d, 0) for d in durations)

    if current_total > 0:
        raw = [max(d, 0) / current_total * goal for d in durations]
    else:
        raw = [goal / count] * count

    values = [min(max(int(round(value)), 0), ceiling) for value in raw]
    diff = goal - sum(values)

    # Nudge the segments whose rounding lost (or gained) the most first
    if diff > 0:
        order = sorted(range(count), key=lambda i: raw[i] - values[i], reverse=True)
    else:
        order = sorted(range(count), key=lambda i: values[i] - raw[i], reverse=True)

    while diff != 0:
        step = 1 if diff > 0 else -1
        moved = False
        for i in order:
            if diff == 0:
                break
            candidate = values[i] + step
            if 0 <= candidate <= ceiling:
                values[i] = candidate
                diff -= step
                moved = True
        if not moved:
            break

    return values


@dataclass
class TimingEdits:
    """Row-level write-back for one edited aggregate."""
    updates: List[Dict[str, Any]] = field(default_factory=list)
    inserts: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def total_seconds(self) -> int:
        return sum(row["duration_seconds"] for row in self.updates + self.inserts)


def build_timing_edits(group: SlideAggregate, new_total: int) -> TimingEdits:
    """
    Redistribute an edited total over a group's segments.

    Stored segments become ``avatar_time_tracking`` updates. Fallback-only
    segments have no row yet, so they become owner-imputed inserts carrying
    the recorded slide, title, mode and timestamps.
    """
    ceiling = segment_ceiling(group.kind)
    new_values = redistribute([entry.duration_seconds for entry in group.entries], new_total, ceiling)

    edits = TimingEdits()
    for entry, seconds in zip(group.entries, new_values):
        if entry.source == TimingSource.FALLBACK:
            edits.inserts.append({
                "entry_id": entry.id,
                "slide_id": entry.slide_key,
                "slide_title": entry.title,
                "duration_seconds": seconds,
                "started_at": isoformat(entry.started_at),
                "ended_at": isoformat(entry.ended_at),
                "mode": entry.mode,
                "source": "owner",
                "is_imputed": True,
            })
        else:
            edits.updates.append({"id": entry.id, "slide_id": entry.slide_key, "duration_seconds": seconds})
    return edits


def clamp_segment_seconds(seconds: Any, slide_key: str) -> Any:
    """Clamp a single segment edit to its ceiling; non-numbers pass through."""
    if isinstance(seconds, bool) or not isinstance(seconds, (int, float)):
        return seconds
    if isinstance(seconds, float) and math.isnan(seconds):
        return seconds
    kind = "page" if is_page_key(slide_key) else "slide"
    return min(max(int(round(seconds)), 0), segment_ceiling(kind))
