"""
Local Override Cache

Offline-first safety net for administrative edits. When the authoritative
write fails, the whole edit is kept as an OverridePatch in a local durable
key-value store, keyed by session id, and layered over freshly fetched data
until a later save succeeds or the admin clears it.

Patches only touch records that still exist in the fetched data; they never
create records.
"""

import copy
import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from study_session_inspector.models import (
    SessionDetails,
    isoformat,
    parse_timestamp,
)

logger = logging.getLogger(__name__)

SESSION_TIMESTAMP_FIELDS = ("started_at", "completed_at", "last_activity_at", "validated_at")

# Patch record category -> fields a patch may overwrite
RECORD_FIELDS = {
    "demographic": ("answer",),
    "pre": ("answer",),
    "post": ("answer",),
    "timing": ("duration_seconds",),
    "dialogue": ("content",),
    "scenarios": ("trust_rating", "confidence_rating", "engagement_rating", "completed_at"),
}


class OverrideState(str, Enum):
    CLEAN = "clean"
    PENDING_REMOTE = "pending-remote"
    COMMITTED = "committed"
    LOCALLY_OVERRIDDEN = "locally-overridden"


# ==================== Key-value stores ====================

class KeyValueStore(ABC):
    """Minimal durable string store the cache persists patches in."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...

    @abstractmethod
    def keys(self) -> List[str]:
        ...


class InMemoryKeyValueStore(KeyValueStore):
    """Process-local store for tests and throwaway sessions."""

    def __init__(self):
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> List[str]:
        return list(self._data.keys())


class JsonFileKeyValueStore(KeyValueStore):
    """
    Key-value store backed by a single JSON file.

    Every write rewrites the file through a temp file and ``os.replace`` so a
    crash never leaves a half-written cache behind.
    """

    def __init__(self, path: str):
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"⚠️ [OverrideCache] Could not read {self.path}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        tmp_path.write_text(json.dumps(data, indent=2, sort_keys=True), encoding="utf-8")
        os.replace(tmp_path, self.path)

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._read().get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            data = self._read()
            data[key] = value
            self._write(data)

    def delete(self, key: str) -> None:
        with self._lock:
            data = self._read()
            if key in data:
                del data[key]
                self._write(data)

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._read().keys())


# ==================== Patch ====================

@dataclass
class OverridePatch:
    """Field-level edits for one session, never authoritative."""
    session: Dict[str, Any] = field(default_factory=dict)
    records: Dict[str, Dict[str, Dict[str, Any]]] = field(default_factory=dict)
    saved_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def is_empty(self) -> bool:
        return not self.session and not any(self.records.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session": self.session,
            "records": self.records,
            "saved_at": isoformat(self.saved_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OverridePatch":
        return cls(
            session=dict(data.get("session") or {}),
            records={
                category: {str(record_id): dict(fields) for record_id, fields in (rows or {}).items()}
                for category, rows in (data.get("records") or {}).items()
            },
            saved_at=parse_timestamp(data.get("saved_at")) or datetime.now(timezone.utc),
        )


def _patch_records(records: List[Any], updates: Dict[str, Dict[str, Any]], category: str) -> int:
    """Apply per-id field updates in place to records that exist. Returns count patched."""
    allowed = RECORD_FIELDS[category]
    patched = 0
    for record in records:
        fields = updates.get(record.id)
        if not fields:
            continue
        for name, value in fields.items():
            if name not in allowed:
                continue
            if name == "completed_at":
                value = parse_timestamp(value)
            setattr(record, name, value)
        patched += 1
    return patched


def apply_patch(details: SessionDetails, patch: OverridePatch) -> SessionDetails:
    """
    Layer a patch over freshly fetched session details.

    Returns a patched copy; the input is left untouched. Timing groups are not
    recomputed here; callers aggregate after patching.
    """
    patched = copy.deepcopy(details)

    for name, value in patch.session.items():
        if not hasattr(patched.session, name):
            continue
        if name in SESSION_TIMESTAMP_FIELDS:
            value = parse_timestamp(value)
        elif name in ("modes_used", "suspicious_flags"):
            value = list(value or [])
        setattr(patched.session, name, value)

    for category, updates in patch.records.items():
        if category not in RECORD_FIELDS or not updates:
            continue
        if category in ("demographic", "pre", "post"):
            target = patched.responses.get(category, [])
        elif category == "timing":
            target = patched.timing_entries
        elif category == "dialogue":
            target = patched.dialogue_turns
        else:
            target = patched.scenarios
        _patch_records(target, updates, category)

    patched.has_local_override = True
    return patched


# ==================== Cache ====================

class OverrideCache:
    """
    Session-keyed store of pending local patches.

    State per session: clean -> pending-remote -> committed | locally-overridden.
    A locally-overridden session stays that way until ``clear`` or a later
    successful save; patches do not expire.
    """

    KEY_PREFIX = "session-override:"

    def __init__(self, store: Optional[KeyValueStore] = None):
        self.store = store or InMemoryKeyValueStore()
        self._states: Dict[str, OverrideState] = {}

    def _key(self, session_id: str) -> str:
        return f"{self.KEY_PREFIX}{session_id}"

    def state(self, session_id: str) -> OverrideState:
        current = self._states.get(session_id)
        if current == OverrideState.PENDING_REMOTE:
            return current
        if self.store.get(self._key(session_id)) is not None:
            return OverrideState.LOCALLY_OVERRIDDEN
        return current or OverrideState.CLEAN

    def begin_save(self, session_id: str) -> None:
        self._states[session_id] = OverrideState.PENDING_REMOTE

    def mark_committed(self, session_id: str) -> None:
        """Remote write succeeded: the pending patch, if any, is obsolete."""
        self.store.delete(self._key(session_id))
        self._states[session_id] = OverrideState.COMMITTED

    def save(self, session_id: str, patch: OverridePatch) -> None:
        """Persist a patch, replacing any earlier one for the session."""
        self.store.set(self._key(session_id), json.dumps(patch.to_dict()))
        self._states[session_id] = OverrideState.LOCALLY_OVERRIDDEN
        logger.warning(f"💾 [OverrideCache] Stored local override for session {session_id}")

    def load(self, session_id: str) -> Optional[OverridePatch]:
        raw = self.store.get(self._key(session_id))
        if raw is None:
            return None
        try:
            return OverridePatch.from_dict(json.loads(raw))
        except (json.JSONDecodeError, TypeError, AttributeError) as e:
            logger.warning(f"⚠️ [OverrideCache] Unreadable override for session {session_id}: {e}")
            return None

    def has_override(self, session_id: str) -> bool:
        return self.store.get(self._key(session_id)) is not None

    def clear(self, session_id: str) -> None:
        self.store.delete(self._key(session_id))
        self._states[session_id] = OverrideState.CLEAN
        logger.info(f"🧹 [OverrideCache] Cleared local override for session {session_id}")

    def session_ids(self) -> List[str]:
        return [key[len(self.KEY_PREFIX):] for key in self.store.keys() if key.startswith(self.KEY_PREFIX)]

    def apply(self, session_id: str, details: SessionDetails) -> SessionDetails:
        patch = self.load(session_id)
        if patch is None or patch.is_empty():
            return details
        return apply_patch(details, patch)
