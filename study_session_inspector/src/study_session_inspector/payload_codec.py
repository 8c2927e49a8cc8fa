"""
Batched Telemetry Payload Codec

Large telemetry snapshots (slide timing logs, tutor transcripts) travel through
the post-test answer table, which caps the size of a single answer. A payload
is serialised once and split into ordered parts; each part is stored as a
synthetic response row whose question id is

    <base_id>__batch_<batch_id>__part_<n>

Decoding picks the most recently written batch, stitches its parts back
together and parses the JSON. Anything that fails to parse is treated as
"no fallback data" - fallback telemetry is best effort.
"""

import json
import logging
import re
import time
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from study_session_inspector.models import parse_timestamp

logger = logging.getLogger(__name__)

META_QUESTION_PREFIX = "__meta_"
META_TIMING_ID = "__meta_timing_v1"
META_DIALOGUE_ID = "__meta_dialogue_v1"

DEFAULT_MAX_PART_LENGTH = 1800

# Envelope keys the participant client wraps its arrays in
_ENVELOPE_LIST_KEYS = ("entries", "messages")


def is_meta_question_id(question_id: Optional[str]) -> bool:
    """True for synthetic rows that carry telemetry rather than a real answer."""
    return isinstance(question_id, str) and question_id.startswith(META_QUESTION_PREFIX)


def batch_question_id(base_id: str, batch_id: str, part: int) -> str:
    return f"{base_id}__batch_{batch_id}__part_{part}"


def _batch_pattern(base_id: str) -> "re.Pattern[str]":
    return re.compile(rf"^{re.escape(base_id)}__batch_(?P<batch>.+?)__part_(?P<part>\d+)$")


def serialize_payload(items: Any) -> str:
    return json.dumps(items, separators=(",", ":"), ensure_ascii=False)


def encode_payload(
    base_id: str,
    items: List[Any],
    batch_id: Optional[str] = None,
    max_part_length: int = DEFAULT_MAX_PART_LENGTH,
) -> List[Dict[str, str]]:
    """
    Split a JSON array into synthetic response rows.

    Args:
        base_id: Meta question id the payload belongs to (e.g. ``__meta_timing_v1``)
        items: Array to store
        batch_id: Identifier shared by all parts (defaults to epoch milliseconds)
        max_part_length: Maximum characters per stored answer

    Returns:
        List of ``{"question_id", "answer"}`` rows, part indices starting at 0
    """
    if max_part_length <= 0:
        raise ValueError("max_part_length must be positive")

    batch_id = batch_id or str(int(time.time() * 1000))
    if "__part_" in batch_id:
        raise ValueError("batch_id must not contain '__part_'")

    text = serialize_payload(items)
    parts = [text[i:i + max_part_length] for i in range(0, len(text), max_part_length)] or [text]

    return [
        {"question_id": batch_question_id(base_id, batch_id, index), "answer": part}
        for index, part in enumerate(parts)
    ]


def _unwrap(parsed: Any) -> List[Any]:
    if isinstance(parsed, list):
        return parsed
    if isinstance(parsed, dict):
        for key in _ENVELOPE_LIST_KEYS:
            value = parsed.get(key)
            if isinstance(value, list):
                return value
    return []


def _parse(text: str, base_id: str) -> List[Any]:
    try:
        return _unwrap(json.loads(text))
    except (json.JSONDecodeError, TypeError, ValueError) as e:
        logger.debug(f"⚠️ [PayloadCodec] Ignoring malformed payload for {base_id}: {e}")
        return []


def _latest_batch(
    rows: List[Dict[str, Any]], base_id: str
) -> Tuple[Optional[List[Tuple[int, str]]], Optional[datetime]]:
    """Return the parts of the most recent batch and that batch's newest timestamp."""
    pattern = _batch_pattern(base_id)
    groups: Dict[str, List[Tuple[int, str]]] = {}
    newest: Dict[str, Optional[datetime]] = {}

    for row in rows:
        match = pattern.match(row.get("question_id") or "")
        if not match:
            continue
        batch = match.group("batch")
        groups.setdefault(batch, []).append((int(match.group("part")), row.get("answer") or ""))
        stamp = parse_timestamp(row.get("created_at"))
        current = newest.setdefault(batch, None)
        if stamp is not None and (current is None or stamp > current):
            newest[batch] = stamp

    if not groups:
        return None, None

    # Undated batches sort first; ties keep the batch id order for determinism
    def rank(batch: str):
        stamp = newest.get(batch)
        return (stamp is not None, stamp.timestamp() if stamp else 0.0, batch)

    chosen = max(groups, key=rank)
    return groups[chosen], newest.get(chosen)


def _latest_direct(rows: List[Dict[str, Any]], base_id: str) -> Tuple[Optional[str], Optional[datetime]]:
    best_answer: Optional[str] = None
    best_stamp: Optional[datetime] = None
    for row in rows:
        if row.get("question_id") != base_id:
            continue
        stamp = parse_timestamp(row.get("created_at"))
        if best_answer is None or (stamp is not None and (best_stamp is None or stamp > best_stamp)):
            best_answer = row.get("answer") or ""
            best_stamp = stamp
    return best_answer, best_stamp


def decode_payload(rows: List[Dict[str, Any]], base_id: str) -> List[Any]:
    """
    Rebuild a telemetry array from response rows.

    Batched rows win unless a direct row under the bare base id is strictly
    newer. Part gaps are not detected; present parts are joined in index order.
    Never raises on bad data.
    """
    parts, batch_stamp = _latest_batch(rows, base_id)
    direct, direct_stamp = _latest_direct(rows, base_id)

    if parts is None and direct is None:
        return []

    use_direct = parts is None or (
        direct is not None
        and direct_stamp is not None
        and (batch_stamp is None or direct_stamp > batch_stamp)
    )
    if use_direct:
        return _parse(direct, base_id)

    text = "".join(answer for _, answer in sorted(parts, key=lambda part: part[0]))
    return _parse(text, base_id)
