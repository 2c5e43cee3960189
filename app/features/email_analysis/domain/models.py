"""
Domain models for the email analysis feature.

Records carry an explicit AnalysisState. The two nullable columns that
persist it (analyzed_at, analysis_error) are only read and written by the
repository, so no in-memory object can hold both markers at once.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from .errors import InvalidStateTransition
from .schemas import (
    ActionExtractionResult,
    CategorizationResult,
    ContentDigestResult,
    RelationshipTagResult,
)
from .taxonomy import priority_from_urgency


class AnalysisState(StrEnum):
    UNANALYZED = "unanalyzed"
    ANALYZING = "analyzing"
    ANALYZED = "analyzed"
    FAILED = "failed"

    @classmethod
    def from_columns(cls, analyzed_at: datetime | None, analysis_error: str | None) -> "AnalysisState":
        # A recorded error wins so the record stays eligible for retry
        if analysis_error:
            return cls.FAILED
        if analyzed_at is not None:
            return cls.ANALYZED
        return cls.UNANALYZED

    def can_transition_to(self, target: "AnalysisState") -> bool:
        return target in _TRANSITIONS[self]


_TRANSITIONS: dict[AnalysisState, frozenset[AnalysisState]] = {
    AnalysisState.UNANALYZED: frozenset({AnalysisState.ANALYZING}),
    AnalysisState.ANALYZING: frozenset({AnalysisState.ANALYZED, AnalysisState.FAILED}),
    AnalysisState.ANALYZED: frozenset({AnalysisState.ANALYZING, AnalysisState.UNANALYZED}),
    AnalysisState.FAILED: frozenset({AnalysisState.ANALYZING, AnalysisState.UNANALYZED}),
}


@dataclass(slots=True)
class EmailRecord:
    """An email row plus its current analysis state."""

    id: str
    user_id: str
    subject: str | None
    sender_email: str
    sender_name: str | None
    date: datetime | None
    snippet: str | None = None
    body_text: str | None = None
    gmail_labels: list[str] = field(default_factory=list)
    is_archived: bool = False
    state: AnalysisState = AnalysisState.UNANALYZED
    category: str | None = None

    @property
    def is_analyzed(self) -> bool:
        return self.state is AnalysisState.ANALYZED

    def transition(self, target: AnalysisState) -> None:
        if not self.state.can_transition_to(target):
            raise InvalidStateTransition(self.state.value, target.value)
        self.state = target


@dataclass(slots=True)
class KnownContact:
    id: str
    email: str
    name: str | None = None
    company: str | None = None
    relationship_type: str | None = None
    is_vip: bool = False


@dataclass(slots=True)
class AnalysisContext:
    """Per-owner context handed to every analyzer."""

    user_id: str
    contacts: list[KnownContact] = field(default_factory=list)

    def find_by_email(self, email: str | None) -> KnownContact | None:
        if not email:
            return None
        needle = email.strip().lower()
        for contact in self.contacts:
            if contact.email.strip().lower() == needle:
                return contact
        return None


@dataclass(slots=True)
class DerivedTask:
    """Row for the actions table, created from an actionable email."""

    user_id: str
    email_id: str
    title: str
    action_type: str
    priority: str
    urgency_score: int
    description: str | None = None
    deadline: datetime | None = None
    estimated_minutes: int | None = None
    contact_id: str | None = None
    status: str = "pending"

    @classmethod
    def from_extraction(
        cls,
        email: EmailRecord,
        extraction: ActionExtractionResult,
        contact_id: str | None = None,
    ) -> "DerivedTask | None":
        action = extraction.primary_action
        if action is None:
            return None

        return cls(
            user_id=email.user_id,
            email_id=email.id,
            title=action.title,
            action_type=action.type,
            priority=priority_from_urgency(extraction.urgency_score),
            urgency_score=extraction.urgency_score,
            description=action.description,
            deadline=action.parsed_deadline(),
            estimated_minutes=action.estimated_minutes,
            contact_id=contact_id,
        )


@dataclass(slots=True)
class MergedAnalysis:
    """
    Combined output of the analyzers that succeeded for one email.

    categorization is always present; the other facets are None when their
    analyzer was disabled or failed.
    """

    categorization: CategorizationResult
    action_extraction: ActionExtractionResult | None = None
    relationship: RelationshipTagResult | None = None
    content_digest: ContentDigestResult | None = None
    tokens_used: int = 0
    processing_time_ms: int = 0

    @property
    def category(self) -> str:
        return self.categorization.category

    @property
    def contact_id(self) -> str | None:
        if self.relationship and self.relationship.is_known_contact:
            return self.relationship.contact_id
        return None

    def envelope(self) -> dict[str, Any]:
        """Values for the envelope columns on the emails row."""
        cat = self.categorization
        summary = cat.summary or (self.content_digest.gist if self.content_digest else None)
        return {
            "category": cat.category,
            "quick_action": cat.quick_action,
            "summary": summary,
            "signal_strength": cat.signal_strength,
            "reply_worthiness": cat.reply_worthiness,
            "urgency_score": self.action_extraction.urgency_score if self.action_extraction else None,
            "labels": list(cat.labels),
            "topics": list(cat.topics),
            "contact_id": self.contact_id,
        }

    def analyzer_payloads(self) -> dict[str, dict | None]:
        """Full analyzer outputs for the email_analyses row."""

        def dump(result):
            return result.model_dump(mode="json") if result is not None else None

        return {
            "categorization": dump(self.categorization),
            "action_extraction": dump(self.action_extraction),
            "relationship_tagging": dump(self.relationship),
            "content_digest": dump(self.content_digest),
        }


@dataclass(slots=True)
class ProcessResult:
    email_id: str
    success: bool
    skipped: bool = False
    analysis: MergedAnalysis | None = None
    tokens_used: int = 0
    estimated_cost: float = 0.0
    tasks_created: int = 0
    error: str | None = None

    @property
    def category(self) -> str | None:
        return self.analysis.category if self.analysis else None


@dataclass(slots=True)
class BatchError:
    record_id: str
    message: str


@dataclass(slots=True)
class BatchResult:
    success_count: int = 0
    failure_count: int = 0
    skipped_count: int = 0
    categorized: dict[str, int] = field(default_factory=dict)
    tasks_created: int = 0
    total_tokens_used: int = 0
    estimated_cost: float = 0.0
    total_time_ms: int = 0
    errors: list[BatchError] = field(default_factory=list)
    total_records: int = 0
    results: dict[str, ProcessResult] = field(default_factory=dict)

    @property
    def avg_time_per_email_ms(self) -> int:
        return round(self.total_time_ms / self.total_records) if self.total_records else 0

    def record(self, result: ProcessResult) -> None:
        """Fold one record's outcome into the totals."""
        self.results[result.email_id] = result
        self.total_tokens_used += result.tokens_used
        self.estimated_cost += result.estimated_cost

        if not result.success:
            self.failure_count += 1
            self.errors.append(BatchError(result.email_id, result.error or "Unknown error"))
            return

        if result.skipped:
            self.skipped_count += 1
            return

        self.success_count += 1
        self.tasks_created += result.tasks_created
        if result.category:
            self.categorized[result.category] = self.categorized.get(result.category, 0) + 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "skipped_count": self.skipped_count,
            "categorized": dict(self.categorized),
            "tasks_created": self.tasks_created,
            "total_tokens_used": self.total_tokens_used,
            "estimated_cost": round(self.estimated_cost, 6),
            "total_time_ms": self.total_time_ms,
            "avg_time_per_email_ms": self.avg_time_per_email_ms,
            "errors": [{"record_id": e.record_id, "message": e.message} for e in self.errors],
        }


@dataclass(slots=True)
class RunSummary:
    """One sync_logs row per batch run."""

    user_id: str
    emails_fetched: int
    emails_analyzed: int
    errors_count: int
    duration_ms: int
    error_message: str | None = None

    @property
    def status(self) -> str:
        if self.errors_count > 0 and self.emails_analyzed == 0:
            return "failed"
        return "completed"

    @classmethod
    def from_batch(cls, user_id: str, fetched: int, batch: BatchResult) -> "RunSummary":
        return cls(
            user_id=user_id,
            emails_fetched=fetched,
            emails_analyzed=batch.success_count,
            errors_count=batch.failure_count,
            duration_ms=batch.total_time_ms,
            error_message=batch.errors[0].message if batch.errors else None,
        )


@dataclass(slots=True)
class RetryResult:
    record_id: str
    success: bool
    error: str | None = None
    category: str | None = None
    tokens_used: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"record_id": self.record_id, "success": self.success}
        if self.error is not None:
            data["error"] = self.error
        if self.category is not None:
            data["category"] = self.category
        if self.tokens_used is not None:
            data["tokens_used"] = self.tokens_used
        return data


@dataclass(slots=True)
class RetryReport:
    details: list[RetryResult] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for d in self.details if d.success)

    @property
    def failed(self) -> int:
        return sum(1 for d in self.details if not d.success)

    def to_dict(self) -> dict[str, Any]:
        return {
            "succeeded": self.succeeded,
            "failed": self.failed,
            "details": [d.to_dict() for d in self.details],
        }
