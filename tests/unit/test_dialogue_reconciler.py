"""
Unit Tests for Dialogue Reconciler

Tests merging stored tutor turns with the transcript snapshot.
"""

import pytest
import sys
import os

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "study_session_inspector", "src"))

from study_session_inspector.dialogue_reconciler import normalize_role, reconcile_dialogue
from study_session_inspector.models import DialogueSource

SESSION_ID = "session-a"


class TestDialogueReconciler:
    """Test suite for reconcile_dialogue."""

    @pytest.fixture
    def primary_rows(self):
        return [
            {"id": "turn-1", "role": "user", "content": "What is attention?",
             "timestamp": "2024-03-01T10:05:00Z", "slide_id": "slide-3"},
            {"id": "turn-2", "role": "ai", "content": "It weighs which tokens matter.",
             "timestamp": "2024-03-01T10:05:04Z", "slide_id": "slide-3"},
        ]

    def test_primary_empty_uses_fallback_verbatim(self):
        fallback = [
            {"role": "user", "content": "Hello", "timestamp": "2024-03-01T10:00:00Z"},
            {"role": "assistant", "content": "Hi there", "timestamp": "2024-03-01T10:00:02Z"},
        ]

        turns = reconcile_dialogue([], fallback, SESSION_ID)

        assert [t.content for t in turns] == ["Hello", "Hi there"]
        assert all(t.source == DialogueSource.FALLBACK for t in turns)

    def test_identical_fallback_turns_dropped(self, primary_rows):
        """Test exact-match dedupe across role aliases and timestamp formats."""
        fallback = [
            {"role": "user", "content": "What is attention?",
             "timestamp": "2024-03-01T10:05:00.000Z", "slideId": "slide-3"},
            {"role": "assistant", "content": "It weighs which tokens matter.",
             "timestamp": "2024-03-01T10:05:04+00:00", "slideId": "slide-3"},
            {"role": "user", "content": "Thanks!",
             "timestamp": "2024-03-01T10:06:00Z", "slideId": "slide-3"},
        ]

        turns = reconcile_dialogue(primary_rows, fallback, SESSION_ID)

        assert [t.id for t in turns] == ["turn-1", "turn-2", f"fallback:{SESSION_ID}:2"]
        assert turns[1].role == "assistant"

    def test_dedupe_is_exact(self, primary_rows):
        """Test that a one-second difference keeps both turns."""
        fallback = [{"role": "user", "content": "What is attention?",
                     "timestamp": "2024-03-01T10:05:01Z", "slideId": "slide-3"}]

        turns = reconcile_dialogue(primary_rows, fallback, SESSION_ID)

        assert len(turns) == 3

    def test_different_slide_not_deduped(self, primary_rows):
        fallback = [{"role": "user", "content": "What is attention?",
                     "timestamp": "2024-03-01T10:05:00Z", "slideId": "slide-4"}]

        assert len(reconcile_dialogue(primary_rows, fallback, SESSION_ID)) == 3

    def test_empty_fallback_content_skipped(self):
        fallback = [
            {"role": "user", "content": "   "},
            {"role": "user"},
            {"role": "user", "content": "real"},
        ]

        turns = reconcile_dialogue([], fallback, SESSION_ID)

        assert [t.content for t in turns] == ["real"]

    def test_normalize_role(self):
        assert normalize_role("AI") == "assistant"
        assert normalize_role("user") == "user"
        assert normalize_role(None) == ""


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
