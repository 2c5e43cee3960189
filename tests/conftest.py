import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from app.auth.verify import auth_dependency
from app.db.helpers import DatabaseError
from app.features.email_analysis.analyzers import AnalyzerFailure, AnalyzerResult, AnalyzerSet, TokenUsage
from app.features.email_analysis.domain import KnownContact
from app.features.email_analysis.domain.schemas import (
    ActionExtractionResult,
    ActionItem,
    CategorizationResult,
    ContentDigestResult,
    RelationshipTagResult,
)
from app.features.email_analysis.repository.email_analysis_repository import (
    EmailAlreadyAnalyzedError,
    EmailAnalysisRepository,
)
from app.services.openai_service import FunctionCallResult


@pytest.fixture
def auth_override():
    def _override():
        return {"sub": "user-123"}

    return _override


@pytest.fixture
def apply_auth_override(auth_override):
    def _apply(app):
        app.dependency_overrides[auth_dependency] = auth_override

    return _apply


class FakeEmailStore:
    """
    In-memory stand-in for EmailAnalysisRepository.

    Rows use the same column names as the emails table and are turned into
    EmailRecord with the real row mapper. Every write checks that no row
    ever holds both analysis markers.
    """

    def __init__(self):
        self.rows: dict[str, dict] = {}
        self.contacts: dict[str, list[KnownContact]] = {}
        self.tasks: list = []
        self.analyses: dict[str, object] = {}
        self.run_summaries: list = []
        self.usage_logs: list[dict] = []
        self.reset_calls: list[tuple[str, list[str]]] = []
        self.failed_for_retry: list[dict] = []
        self.fail_selection = False
        self.fail_contacts = False
        self.fail_reset = False
        self.fail_persist_ids: set[str] = set()
        self.invariant_violations: list[str] = []

    def add_email(
        self,
        email_id: str,
        user_id: str = "user-123",
        *,
        minutes_ago: int = 0,
        analyzed: bool = False,
        error: str | None = None,
        archived: bool = False,
        sender_email: str = "sender@example.com",
    ) -> dict:
        row = {
            "id": email_id,
            "user_id": user_id,
            "subject": f"Subject {email_id}",
            "sender_email": sender_email,
            "sender_name": "Sender",
            "date": datetime.now(UTC) - timedelta(minutes=minutes_ago),
            "snippet": "snippet",
            "body_text": f"Body of {email_id}",
            "gmail_labels": ["INBOX"],
            "is_archived": archived,
            "category": "work" if analyzed else None,
            "analyzed_at": datetime.now(UTC) if analyzed else None,
            "analysis_error": error,
        }
        self.rows[email_id] = row
        return row

    def _check_invariant(self, email_id: str) -> None:
        row = self.rows[email_id]
        if row["analyzed_at"] is not None and row["analysis_error"] is not None:
            self.invariant_violations.append(email_id)

    def is_unanalyzed(self, email_id: str) -> bool:
        row = self.rows[email_id]
        return row["analyzed_at"] is None and row["analysis_error"] is None

    async def fetch_candidates(self, user_id, limit, skip_analyzed=True):
        if self.fail_selection:
            raise DatabaseError("connection refused", operation="fetch_all")
        rows = [
            row
            for row in self.rows.values()
            if row["user_id"] == user_id and not row["is_archived"]
        ]
        if skip_analyzed:
            rows = [r for r in rows if r["analyzed_at"] is None and r["analysis_error"] is None]
        rows.sort(key=lambda r: r["date"], reverse=True)
        return [EmailAnalysisRepository._row_to_email(dict(r)) for r in rows[:limit]]

    async def fetch_by_ids(self, user_id, email_ids):
        return [
            EmailAnalysisRepository._row_to_email(dict(self.rows[i]))
            for i in email_ids
            if i in self.rows and self.rows[i]["user_id"] == user_id
        ]

    async def fetch_email(self, user_id, email_id):
        found = await self.fetch_by_ids(user_id, [email_id])
        return found[0] if found else None

    async def fetch_contacts(self, user_id):
        if self.fail_contacts:
            raise DatabaseError("contacts unavailable", operation="fetch_all")
        return list(self.contacts.get(user_id, []))

    async def save_analysis(self, email, analysis, task=None, *, only_if_unanalyzed=False):
        await asyncio.sleep(0)
        if email.id in self.fail_persist_ids:
            raise DatabaseError("disk full", operation="save_analysis")
        row = self.rows[email.id]
        if only_if_unanalyzed and row["analyzed_at"] is not None:
            raise EmailAlreadyAnalyzedError(email.id)
        row["category"] = analysis.category
        row["analyzed_at"] = datetime.now(UTC)
        row["analysis_error"] = None
        self.analyses[email.id] = analysis
        self._check_invariant(email.id)
        if task is not None:
            self.tasks.append(task)
            return 1
        return 0

    async def mark_failed(self, email, error_message, *, only_if_unanalyzed=False):
        row = self.rows[email.id]
        if only_if_unanalyzed and row["analyzed_at"] is not None:
            return False
        row["analysis_error"] = error_message[:500]
        row["analyzed_at"] = None
        self._check_invariant(email.id)
        return True

    async def reset_analysis_state(self, user_id, email_ids):
        if self.fail_reset:
            raise DatabaseError("lock timeout", operation="execute")
        self.reset_calls.append((user_id, list(email_ids)))
        count = 0
        for email_id in email_ids:
            row = self.rows.get(email_id)
            if row and row["user_id"] == user_id:
                row["analyzed_at"] = None
                row["analysis_error"] = None
                count += 1
        return count

    async def insert_run_summary(self, summary):
        self.run_summaries.append(summary)

    async def record_api_usage(self, **kwargs):
        self.usage_logs.append(kwargs)

    async def fetch_failed_for_retry(self, limit, cooldown_hours, max_age_days):
        return self.failed_for_retry[:limit]

    async def fetch_users_with_pending(self, limit):
        users = []
        for row in self.rows.values():
            if self.is_unanalyzed(row["id"]) and not row["is_archived"]:
                if row["user_id"] not in users:
                    users.append(row["user_id"])
        return users[:limit]


class ScriptedAnalyzer:
    """Analyzer double returning fixed data, or a failure for chosen email ids."""

    def __init__(self, name, data, *, fail_for=(), input_tokens=100, output_tokens=20, delay=0.0):
        self.name = name
        self.data = data
        self.fail_for = set(fail_for)
        self.input_tokens = input_tokens
        self.output_tokens = output_tokens
        self.delay = delay
        self.calls: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def analyze(self, email, context):
        self.calls.append(email.id)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.in_flight -= 1

        usage = TokenUsage("gpt-4.1-mini", self.input_tokens, self.output_tokens)
        if email.id in self.fail_for:
            return AnalyzerResult(
                analyzer=self.name,
                failure=AnalyzerFailure(self.name, "scripted failure"),
                usage=usage,
            )
        data = self.data(email) if callable(self.data) else self.data
        return AnalyzerResult(analyzer=self.name, data=data, usage=usage)


def make_categorization(category: str = "work") -> CategorizationResult:
    return CategorizationResult(
        category=category,
        reasoning="Sent by a colleague about a project",
        summary="Project update",
        quick_action="respond",
        signal_strength="high",
        reply_worthiness="should_reply",
        labels=["needs_reply"],
        topics=["project"],
        confidence=0.9,
    )


def make_action_extraction(has_action: bool = True) -> ActionExtractionResult:
    actions = [ActionItem(type="respond", title="Reply to Ana", priority=1, deadline="2026-11-02")]
    return ActionExtractionResult(
        has_action=has_action, actions=actions if has_action else [], urgency_score=7
    )


@pytest.fixture
def email_store():
    return FakeEmailStore()


@pytest.fixture
def scripted_analyzers():
    return {
        "categorizer": ScriptedAnalyzer("categorizer", lambda email: make_categorization()),
        "action_extractor": ScriptedAnalyzer("action_extractor", make_action_extraction()),
        "relationship_tagger": ScriptedAnalyzer(
            "relationship_tagger", RelationshipTagResult.no_match(), input_tokens=0, output_tokens=0
        ),
        "content_digest": ScriptedAnalyzer(
            "content_digest",
            ContentDigestResult(gist="A short gist", key_points=["one", "two"]),
        ),
    }


@pytest.fixture
def analyzer_set(scripted_analyzers):
    return AnalyzerSet(**scripted_analyzers)


class FakeTransport:
    """Stands in for OpenAIService.call_function."""

    def __init__(self, arguments=None, error=None, input_tokens=120, output_tokens=30):
        self.arguments = arguments or {}
        self.error = error
        self.input_tokens = input_tokens
        self.output_tokens = output_tokens
        self.calls: list[dict] = []

    async def call_function(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return FunctionCallResult(
            arguments=self.arguments,
            model=kwargs["model"],
            input_tokens=self.input_tokens,
            output_tokens=self.output_tokens,
        )


@pytest.fixture
def fake_transport_factory():
    return FakeTransport
