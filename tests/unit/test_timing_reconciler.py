"""
Unit Tests for Timing Reconciler

Tests merging tracked slide time with the end-of-session snapshot.
"""

import pytest
import sys
import os

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "study_session_inspector", "src"))

from study_session_inspector.models import TimingSource
from study_session_inspector.slide_lookup import SlideLookup
from study_session_inspector.timing_reconciler import reconcile_timing

SESSION_ID = "session-a"


class TestTimingReconciler:
    """Test suite for reconcile_timing."""

    @pytest.fixture
    def lookup(self):
        return SlideLookup.from_slides([
            {"slide_id": "slide-x", "title": "Slide X"},
            {"slide_id": "slide-y", "title": "Slide Y"},
        ])

    @pytest.fixture
    def active_ids(self, lookup):
        return set(lookup.by_id)

    def test_avatar_session_scenario(self, lookup, active_ids):
        """Test one tracked visit plus a snapshot naming the same and another slide."""
        primary = [{"id": "row-1", "slide_id": "slide-x", "slide_title": "Slide X",
                    "duration_seconds": 50, "mode": "avatar"}]
        fallback = [
            {"slideId": "slide-x", "slideTitle": "Slide X", "durationSeconds": 50},
            {"slideId": "slide-y", "slideTitle": "Slide Y", "durationSeconds": 30},
        ]

        entries = reconcile_timing(primary, fallback, SESSION_ID, lookup, active_ids)

        assert [(e.slide_key, e.duration_seconds, e.source) for e in entries] == [
            ("slide-x", 50, TimingSource.PRIMARY),
            ("slide-y", 30, TimingSource.FALLBACK),
        ]
        assert sum(e.duration_seconds for e in entries) == 80

    def test_no_double_counting(self, lookup, active_ids):
        """Test that a fallback entry matched by title does not duplicate a tracked one."""
        primary = [{"id": "row-1", "slide_id": "slide-x", "duration_seconds": 40}]
        fallback = [{"slideId": "old-x-id", "slideTitle": "slide x", "durationSeconds": 90}]

        entries = reconcile_timing(primary, fallback, SESSION_ID, lookup, active_ids)

        assert len(entries) == 1
        assert entries[0].id == "row-1"
        assert entries[0].duration_seconds == 40

    def test_idempotent(self, lookup, active_ids):
        primary = [{"id": "row-1", "slide_id": "slide-x", "duration_seconds": 12}]
        fallback = [{"slideId": "slide-y", "slideTitle": "Slide Y", "durationSeconds": 7}]

        first = reconcile_timing(primary, fallback, SESSION_ID, lookup, active_ids)
        second = reconcile_timing(primary, fallback, SESSION_ID, lookup, active_ids)

        assert [e.to_dict() for e in first] == [e.to_dict() for e in second]

    def test_stale_fallback_dropped(self, lookup, active_ids):
        """Test that slides no longer in the active catalog are excluded."""
        fallback = [
            {"slideId": "slide-deleted", "slideTitle": "Deleted Slide", "durationSeconds": 20},
            {"slideId": "slide-y", "slideTitle": "Slide Y", "durationSeconds": 30},
        ]

        entries = reconcile_timing([], fallback, SESSION_ID, lookup, active_ids)

        assert [e.slide_key for e in entries] == ["slide-y"]

    def test_stale_primary_dropped(self, lookup, active_ids):
        primary = [{"id": "row-9", "slide_id": "slide-deleted", "duration_seconds": 15}]

        assert reconcile_timing(primary, [], SESSION_ID, lookup, active_ids) == []

    def test_without_catalog_nothing_is_stale(self):
        fallback = [{"slideId": "slide-deleted", "slideTitle": "Deleted Slide", "durationSeconds": 20}]

        entries = reconcile_timing([], fallback, SESSION_ID)

        assert len(entries) == 1
        assert entries[0].slide_key == "deleted-slide"

    def test_page_entries_keep_literal_id(self, lookup, active_ids):
        """Test that page dwell time is never treated as stale."""
        primary = [{"id": "row-2", "slide_id": "page:/consent", "slide_title": "Consent",
                    "duration_seconds": 300}]
        fallback = [{"slideId": "page:/debrief", "slideTitle": "Debrief", "durationSeconds": 60}]

        entries = reconcile_timing(primary, fallback, SESSION_ID, lookup, active_ids)

        assert [e.slide_key for e in entries] == ["page:/consent", "page:/debrief"]
        assert all(e.kind == "page" for e in entries)

    def test_revisits_kept_as_separate_entries(self, lookup, active_ids):
        primary = [
            {"id": "row-1", "slide_id": "slide-x", "duration_seconds": 20},
            {"id": "row-2", "slide_id": "slide-x", "duration_seconds": 25},
        ]

        entries = reconcile_timing(primary, [], SESSION_ID, lookup, active_ids)

        assert [e.id for e in entries] == ["row-1", "row-2"]

    def test_unusable_fallback_items_skipped(self, lookup):
        fallback = [
            {"slideId": "slide-x", "slideTitle": "Slide X", "durationSeconds": 0},
            {"slideId": "slide-y", "durationSeconds": 10},
            "not a dict",
            {"slideId": "slide-y", "slideTitle": "Slide Y", "durationSeconds": 10},
        ]

        entries = reconcile_timing([], fallback, SESSION_ID, lookup)

        assert len(entries) == 1
        assert entries[0].id == f"fallback:{SESSION_ID}:3"

    def test_imputed_rows_are_owner_imputed(self, lookup):
        primary = [{"id": "row-5", "slide_id": "slide-y", "duration_seconds": 60,
                    "source": "owner", "is_imputed": True}]

        entries = reconcile_timing(primary, [], SESSION_ID, lookup)

        assert entries[0].source == TimingSource.OWNER_IMPUTED


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
