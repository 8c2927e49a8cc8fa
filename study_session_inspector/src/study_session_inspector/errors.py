"""
Inspector Errors

Exception hierarchy shared by the record store, the engine and the API layer.
"""

from typing import List, Optional


class InspectorError(Exception):
    """Base class for all inspector errors."""


class RecordStoreError(InspectorError):
    """The authoritative store could not be reached or rejected a call."""

    def __init__(self, message: str, table: Optional[str] = None):
        super().__init__(message)
        self.table = table


class SessionNotFoundError(InspectorError):
    """No session exists with the requested id."""

    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class EditValidationError(InspectorError):
    """An administrative edit failed local validation and was not written."""

    def __init__(self, problems: List[str]):
        super().__init__("; ".join(problems))
        self.problems = problems
