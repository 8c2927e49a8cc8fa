"""
Unit Tests for Edit Validation

Tests that invalid administrative edits are rejected before any write.
"""

import pytest
import sys
import os

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "study_session_inspector", "src"))

from study_session_inspector.errors import EditValidationError
from study_session_inspector.models import SessionRecord
from study_session_inspector.validation import SessionEdits, validate_edits


class TestValidateEdits:
    """Test suite for validate_edits."""

    @pytest.fixture
    def current(self):
        return SessionRecord.from_row({
            "id": "session-a",
            "mode": "avatar",
            "started_at": "2024-03-01T10:00:00Z",
            "completed_at": "2024-03-01T10:20:00Z",
        })

    def problems(self, edits, current=None):
        with pytest.raises(EditValidationError) as exc_info:
            validate_edits(edits, current)
        return exc_info.value.problems

    def test_valid_edit(self, current):
        edits = SessionEdits(
            session={"status": "completed", "completed_at": "2024-03-01T10:25:00Z", "suspicion_score": 2},
            responses={"pre": [{"id": "r1", "answer": "B"}]},
            timing=[{"id": "t1", "duration_seconds": 45}],
            dialogue=[{"id": "d1", "content": "fixed typo"}],
            scenarios=[{"id": "sc1", "trust_rating": 7, "engagement_rating": True}],
        )

        validate_edits(edits, current)

    def test_completed_before_started(self, current):
        problems = self.problems(SessionEdits(session={"completed_at": "2024-03-01T09:00:00Z"}), current)

        assert any("completed before started" in p for p in problems)

    def test_started_after_existing_completion(self, current):
        problems = self.problems(SessionEdits(session={"started_at": "2024-03-01T11:00:00Z"}), current)

        assert any("completed before started" in p for p in problems)

    def test_malformed_timestamp(self):
        problems = self.problems(SessionEdits(session={"last_activity_at": "yesterday"}))

        assert problems == ["session.last_activity_at: malformed timestamp 'yesterday'"]

    def test_started_at_cannot_be_cleared(self):
        assert self.problems(SessionEdits(session={"started_at": None})) == ["session.started_at: cannot be cleared"]

    def test_completed_at_can_be_cleared(self, current):
        validate_edits(SessionEdits(session={"completed_at": None}), current)

    def test_non_editable_session_field(self):
        problems = self.problems(SessionEdits(session={"validated_by": "someone"}))

        assert problems == ["session.validated_by: field is not editable"]

    def test_negative_duration(self):
        problems = self.problems(SessionEdits(timing=[{"id": "t1", "duration_seconds": -3}]))

        assert problems == ["timing[0]: duration must be a non-negative number"]

    def test_rows_need_ids(self):
        problems = self.problems(SessionEdits(
            responses={"post": [{"answer": "B"}]},
            dialogue=[{"id": "d1", "content": 5}],
        ))

        assert "responses.post[0]: missing id" in problems
        assert "dialogue[0]: content must be text" in problems

    def test_unknown_response_category(self):
        problems = self.problems(SessionEdits(responses={"exit": [{"id": "r1", "answer": "B"}]}))

        assert problems == ["responses.exit: unknown response category"]

    def test_scenario_ratings(self):
        problems = self.problems(SessionEdits(scenarios=[
            {"id": "sc1", "trust_rating": 11, "engagement_rating": "yes", "scenario_id": "other"},
        ]))

        assert len(problems) == 3

    def test_timing_insert_needs_slide(self):
        problems = self.problems(SessionEdits(timing_inserts=[{"entry_id": "fallback:s:0", "duration_seconds": 10}]))

        assert problems == ["timing_inserts[0]: missing slide_id"]

    def test_non_finite_duration(self):
        problems = self.problems(SessionEdits(
            timing=[{"id": "t1", "duration_seconds": float("nan")}, {"id": "t2", "duration_seconds": float("inf")}],
            timing_inserts=[{"entry_id": "fallback:s:0", "slide_id": "slide-x", "duration_seconds": float("nan")}],
        ))

        assert problems == [
            "timing[0]: duration must be a non-negative number",
            "timing[1]: duration must be a non-negative number",
            "timing_inserts[0]: duration must be a non-negative number",
        ]

    def test_rows_must_be_objects(self):
        problems = self.problems(SessionEdits(
            responses={"pre": "B"},
            timing=["t1"],
            timing_inserts=[42],
            scenarios=[None],
        ))

        assert problems == [
            "responses.pre: expected a list of rows",
            "timing[0]: missing id",
            "timing_inserts[0]: expected an object",
            "scenarios[0]: missing id",
        ]

    def test_all_problems_reported(self):
        problems = self.problems(SessionEdits(
            session={"status": "", "mode": "avatar"},
            timing=[{"id": "t1", "duration_seconds": "ten"}],
        ))

        assert len(problems) == 2


class TestSessionEdits:
    """Test suite for SessionEdits."""

    def test_is_empty(self):
        assert SessionEdits().is_empty()
        assert SessionEdits(responses={"pre": []}).is_empty()
        assert not SessionEdits(timing=[{"id": "t1", "duration_seconds": 1}]).is_empty()

    def test_to_override_patch(self):
        edits = SessionEdits(
            session={"status": "completed"},
            responses={"pre": [{"id": "r1", "answer": "B"}]},
            timing=[{"id": "t1", "slide_id": "slide-x", "duration_seconds": 20}],
            timing_inserts=[{"entry_id": "fallback:s:1", "slide_id": "slide-y", "duration_seconds": 30}],
            scenarios=[{"id": "sc1", "trust_rating": 6}],
        )

        patch = edits.to_override_patch()

        assert patch.session == {"status": "completed"}
        assert patch.records["pre"] == {"r1": {"answer": "B"}}
        assert patch.records["timing"] == {
            "t1": {"duration_seconds": 20},
            "fallback:s:1": {"duration_seconds": 30},
        }
        assert patch.records["scenarios"] == {"sc1": {"trust_rating": 6}}


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
