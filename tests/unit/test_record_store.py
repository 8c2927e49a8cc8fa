"""
Unit Tests for the Supabase Record Store

Runs SupabaseRecordStore against a fake client that behaves like PostgREST
for the few query shapes the store uses.
"""

import pytest
import sys
import os
import uuid
from types import SimpleNamespace

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "study_session_inspector", "src"))

from study_session_inspector.errors import RecordStoreError
from study_session_inspector.record_store import SESSIONS_TABLE, SupabaseRecordStore, fetch_all_pages, is_uuid

SESSION_UUID = "3f1c2a9e-0000-4000-8000-000000000001"
UUID_COLUMNS = {"id"}


class FakeQuery:
    def __init__(self, client, table):
        self.client = client
        self.table = table
        self.filters = []
        self.bounds = None

    def select(self, columns):
        return self

    def eq(self, column, value):
        self.filters.append((column, value))
        return self

    def order(self, column, desc=False):
        return self

    def range(self, start, end):
        self.bounds = (start, end)
        return self

    def execute(self):
        self.client.queries.append((self.table, list(self.filters)))
        for column, value in self.filters:
            if column in UUID_COLUMNS and not is_uuid(value):
                raise RuntimeError(f'invalid input syntax for type uuid: "{value}"')
        rows = [
            row for row in self.client.tables.get(self.table, [])
            if all(row.get(column) == value for column, value in self.filters)
        ]
        if self.bounds:
            rows = rows[self.bounds[0]:self.bounds[1] + 1]
        return SimpleNamespace(data=rows)


class FakeSupabase:
    def __init__(self, tables):
        self.tables = tables
        self.queries = []

    def table(self, name):
        return FakeQuery(self, name)


@pytest.fixture
def client():
    return FakeSupabase({
        SESSIONS_TABLE: [{"id": SESSION_UUID, "session_id": "PUB-ABC123", "mode": "avatar"}],
    })


class TestFetchSession:
    """Test session lookup by UUID or participant-facing code."""

    def test_lookup_by_uuid(self, client):
        row = SupabaseRecordStore(client).fetch_session(SESSION_UUID)

        assert row["session_id"] == "PUB-ABC123"
        assert client.queries == [(SESSIONS_TABLE, [("id", SESSION_UUID)])]

    def test_lookup_by_public_code_skips_uuid_column(self, client):
        row = SupabaseRecordStore(client).fetch_session("PUB-ABC123")

        assert row["id"] == SESSION_UUID
        assert client.queries == [(SESSIONS_TABLE, [("session_id", "PUB-ABC123")])]

    def test_unknown_session(self, client):
        assert SupabaseRecordStore(client).fetch_session("PUB-NOPE") is None
        assert SupabaseRecordStore(client).fetch_session(str(uuid.uuid4())) is None

    def test_read_failure(self):
        class Broken:
            def table(self, name):
                raise ConnectionError("unreachable")

        with pytest.raises(RecordStoreError):
            SupabaseRecordStore(Broken()).fetch_session(SESSION_UUID)


class TestPagination:
    """Test range pagination."""

    def test_reads_every_page(self):
        rows = [{"n": i} for i in range(25)]

        result = fetch_all_pages(lambda start, end: rows[start:end + 1], page_size=10)

        assert result == rows

    def test_page_cap(self):
        calls = []

        def fetch_page(start, end):
            calls.append(start)
            return [{"n": n} for n in range(start, end + 1)]

        result = fetch_all_pages(fetch_page, page_size=5, max_pages=3)

        assert len(result) == 15
        assert calls == [0, 5, 10]


def test_is_uuid():
    assert is_uuid(SESSION_UUID)
    assert not is_uuid("PUB-ABC123")
    assert not is_uuid("")
