"""
Shared fixtures for end-to-end tests: an in-memory study database seeded with
one text-mode session that has tracked and snapshot telemetry.
"""

import pytest
import sys
import os

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "study_session_inspector", "src"))

from study_session_inspector.errors import RecordStoreError
from study_session_inspector.payload_codec import META_DIALOGUE_ID, META_TIMING_ID, encode_payload
from study_session_inspector.record_store import (
    DIALOGUE_TABLE,
    QUESTIONS_TABLE,
    SCENARIOS_TABLE,
    SLIDES_TABLE,
    TIMING_TABLE,
    InMemoryRecordStore,
)

SESSION_UUID = "3f1c2a9e-0000-4000-8000-000000000001"
PUBLIC_SESSION_ID = "PUB-ABC123"

FALLBACK_TIMING = [
    {"slideId": "slide-intro", "slideTitle": "Introduction", "durationSeconds": 95},
    {"slideId": "legacy-nn", "slideTitle": "Neural Networks", "durationSeconds": 70},
    {"slideId": "slide-removed", "slideTitle": "Removed Slide", "durationSeconds": 20},
]

FALLBACK_DIALOGUE = [
    {"role": "user", "content": "What is a neuron?", "timestamp": "2024-03-01T12:05:00.000Z",
     "slideId": "slide-nn", "slideTitle": "Neural Networks"},
    {"role": "assistant", "content": "A unit that weighs its inputs.", "timestamp": "2024-03-01T12:05:05Z",
     "slideId": "slide-nn"},
    {"role": "user", "content": "Thanks!", "timestamp": "2024-03-01T12:06:00Z", "slideId": "slide-nn"},
]


class FlakyRecordStore(InMemoryRecordStore):
    """In-memory store whose writes (and optionally some reads) can be made to fail."""

    def __init__(self):
        super().__init__()
        self.fail_writes = False
        self.failing_reads = set()

    def apply_session_edits(self, session_id, edits):
        if self.fail_writes:
            raise RecordStoreError("connection refused", table="study_sessions")
        super().apply_session_edits(session_id, edits)

    def fetch_session(self, session_id):
        if "session" in self.failing_reads:
            raise RecordStoreError("connection refused", table="study_sessions")
        return super().fetch_session(session_id)

    def fetch_dialogue(self, session_id):
        if "dialogue" in self.failing_reads:
            raise RecordStoreError("timeout", table=DIALOGUE_TABLE)
        return super().fetch_dialogue(session_id)

    def fetch_questions(self, active_only=True):
        if "questions" in self.failing_reads:
            raise RecordStoreError("timeout", table=QUESTIONS_TABLE)
        return super().fetch_questions(active_only)


def seed(store):
    store.add_session({
        "id": SESSION_UUID,
        "session_id": PUBLIC_SESSION_ID,
        "mode": "text",
        "modes_used": ["text"],
        "status": "completed",
        "started_at": "2024-03-01T12:00:00Z",
        "completed_at": "2024-03-01T12:30:00Z",
    })

    store.add_rows(SLIDES_TABLE, [
        {"slide_id": "slide-intro", "title": "Introduction", "is_active": True},
        {"slide_id": "slide-nn", "title": "Neural Networks", "is_active": True},
        {"slide_id": "slide-ethics", "title": "Ethics", "is_active": True},
        {"slide_id": "slide-removed", "title": "Removed Slide", "is_active": False},
    ])

    store.add_rows(QUESTIONS_TABLE, [
        {"question_id": "demo_age", "question_type": "demographic", "mode_specific": "both",
         "is_active": True, "created_at": "2024-01-01T00:00:00Z"},
        {"question_id": "pre_q1", "question_type": "pre_test", "mode_specific": "both",
         "is_active": True, "created_at": "2024-01-01T00:00:00Z"},
        {"question_id": "pre_q2", "question_type": "pre_test", "mode_specific": "text",
         "is_active": True, "created_at": "2024-01-01T00:00:00Z"},
        {"question_id": "post_q1", "question_type": "post_test", "mode_specific": "both",
         "is_active": True, "created_at": "2024-01-01T00:00:00Z"},
        {"question_id": "post_q2", "question_type": "post_test", "mode_specific": "both",
         "is_active": True, "created_at": "2024-06-01T00:00:00Z"},
    ])

    store.add_rows("demographic_responses", [
        {"id": "demo-1", "session_id": SESSION_UUID, "question_id": "demo_age", "answer": "25-34"},
    ])
    store.add_rows("pre_test_responses", [
        {"id": "pre-1", "session_id": SESSION_UUID, "question_id": "pre_q1", "answer": "B"},
        {"id": "pre-2", "session_id": SESSION_UUID, "question_id": "pre_q2", "answer": "C"},
    ])
    store.add_rows("post_test_responses", [
        {"id": "post-1", "session_id": SESSION_UUID, "question_id": "post_q1", "answer": "A"},
    ])

    telemetry_rows = (
        encode_payload(META_TIMING_ID, FALLBACK_TIMING, batch_id="1709296200000", max_part_length=60)
        + encode_payload(META_DIALOGUE_ID, FALLBACK_DIALOGUE, batch_id="1709296200000", max_part_length=80)
    )
    store.add_rows("post_test_responses", [
        dict(row, session_id=SESSION_UUID, created_at="2024-03-01T12:30:00Z") for row in telemetry_rows
    ])

    store.add_rows(TIMING_TABLE, [
        {"id": "t1", "session_id": SESSION_UUID, "slide_id": "slide-intro", "slide_title": "Introduction",
         "duration_seconds": 40, "mode": "text", "started_at": "2024-03-01T12:01:00Z"},
        {"id": "t2", "session_id": SESSION_UUID, "slide_id": "slide-intro", "slide_title": "Introduction",
         "duration_seconds": 50, "mode": "text", "started_at": "2024-03-01T12:10:00Z"},
        {"id": "t3", "session_id": SESSION_UUID, "slide_id": "page:/consent", "slide_title": "Consent",
         "duration_seconds": 300, "mode": "text", "started_at": "2024-03-01T12:00:00Z"},
    ])

    store.add_rows(DIALOGUE_TABLE, [
        {"id": "d1", "session_id": SESSION_UUID, "role": "user", "content": "What is a neuron?",
         "timestamp": "2024-03-01T12:05:00Z", "slide_id": "slide-nn"},
        {"id": "d2", "session_id": SESSION_UUID, "role": "ai", "content": "A unit that weighs its inputs.",
         "timestamp": "2024-03-01T12:05:05Z", "slide_id": "slide-nn"},
    ])

    store.add_rows(SCENARIOS_TABLE, [
        {"id": "sc1", "session_id": SESSION_UUID, "scenario_id": "loan-approval",
         "trust_rating": 6, "confidence_rating": 5, "engagement_rating": True,
         "completed_at": "2024-03-01T12:20:00Z"},
    ])
    return store


@pytest.fixture
def store():
    """Seeded store whose writes can be switched to fail."""
    return seed(FlakyRecordStore())
