"""
Response Completeness

Decides, per response category, whether a session's answers are present
against the versioned question catalog. Only questions that existed when the
session started, are active and apply to one of the session's modes count as
expected, so later catalog changes never mark old sessions incomplete.
"""

from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set

from study_session_inspector.models import (
    RESPONSE_CATEGORIES,
    CategoryCompleteness,
    CompletenessStatus,
    QuestionDefinition,
    ResponseRecord,
    SessionRecord,
)
from study_session_inspector.payload_codec import is_meta_question_id


def _in_scope(question: QuestionDefinition, modes: Set[str]) -> bool:
    scope = (question.mode_scope or "both").lower()
    return scope == "both" or scope in modes


def expected_question_ids(
    category: str,
    catalog: Iterable[QuestionDefinition],
    session_modes: Iterable[str],
    started_at: datetime,
) -> Set[str]:
    """Question ids a session started at ``started_at`` was expected to answer."""
    modes = {mode.lower() for mode in session_modes if mode}
    return {
        question.question_id
        for question in catalog
        if question.type == category
        and question.is_active
        and _in_scope(question, modes)
        and question.created_at is not None
        and question.created_at <= started_at
    }


def answered_question_ids(responses: Iterable[ResponseRecord]) -> Set[str]:
    return {
        response.question_id
        for response in responses
        if not is_meta_question_id(response.question_id) and response.answer.strip()
    }


def evaluate_category(
    category: str,
    session: SessionRecord,
    responses: List[ResponseRecord],
    catalog: Optional[List[QuestionDefinition]],
) -> CategoryCompleteness:
    answered_ids = answered_question_ids(responses)
    expected_ids = (
        expected_question_ids(category, catalog, session.session_modes(), session.started_at)
        if catalog
        else set()
    )

    if not expected_ids:
        # Legacy sessions and an unreachable catalog fall back to raw answers
        return CategoryCompleteness(
            present=bool(answered_ids),
            expected=0,
            answered=len(answered_ids),
            raw_answered=len(answered_ids),
            catalog_backed=False,
        )

    answered_expected = expected_ids & answered_ids
    return CategoryCompleteness(
        present=answered_expected == expected_ids,
        expected=len(expected_ids),
        answered=len(answered_expected),
        raw_answered=len(answered_ids),
        catalog_backed=True,
    )


def evaluate_completeness(
    session: SessionRecord,
    responses: Dict[str, List[ResponseRecord]],
    catalog: Optional[List[QuestionDefinition]],
) -> CompletenessStatus:
    """
    Compute completeness for every response category.

    Args:
        session: Session being inspected
        responses: Response records keyed by category
        catalog: Question catalog, or None when it could not be loaded

    Returns:
        CompletenessStatus with expected/answered counts per category
    """
    return CompletenessStatus(categories={
        category: evaluate_category(category, session, responses.get(category, []), catalog)
        for category in RESPONSE_CATEGORIES
    })
