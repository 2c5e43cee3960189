from datetime import UTC, datetime

import pytest

from app.features.email_analysis.domain import (
    AnalysisState,
    BatchResult,
    DerivedTask,
    EmailRecord,
    InvalidStateTransition,
    MergedAnalysis,
    ProcessResult,
    RetryReport,
    RetryResult,
    RunSummary,
)
from app.features.email_analysis.domain.schemas import ActionExtractionResult, CategorizationResult
from app.features.email_analysis.domain.taxonomy import priority_from_urgency


def _email(state=AnalysisState.UNANALYZED):
    return EmailRecord(
        id="e1",
        user_id="user-123",
        subject="Hello",
        sender_email="a@example.com",
        sender_name="A",
        date=datetime.now(UTC),
        state=state,
    )


class TestAnalysisState:
    def test_state_from_columns(self):
        now = datetime.now(UTC)

        assert AnalysisState.from_columns(None, None) is AnalysisState.UNANALYZED
        assert AnalysisState.from_columns(now, None) is AnalysisState.ANALYZED
        assert AnalysisState.from_columns(None, "boom") is AnalysisState.FAILED

    def test_error_wins_when_both_columns_are_set(self):
        assert AnalysisState.from_columns(datetime.now(UTC), "boom") is AnalysisState.FAILED

    def test_happy_path_transitions(self):
        email = _email()

        email.transition(AnalysisState.ANALYZING)
        email.transition(AnalysisState.ANALYZED)

        assert email.is_analyzed

    def test_cannot_skip_analyzing(self):
        email = _email()

        with pytest.raises(InvalidStateTransition):
            email.transition(AnalysisState.ANALYZED)

    def test_failed_can_be_reset_for_retry(self):
        email = _email(AnalysisState.FAILED)

        email.transition(AnalysisState.UNANALYZED)

        assert email.state is AnalysisState.UNANALYZED

    def test_analyzing_cannot_be_reset(self):
        assert not AnalysisState.ANALYZING.can_transition_to(AnalysisState.UNANALYZED)


@pytest.mark.parametrize(
    "score,priority",
    [(10, "high"), (8, "high"), (7, "medium"), (5, "medium"), (4, "low"), (1, "low")],
)
def test_priority_from_urgency(score, priority):
    assert priority_from_urgency(score) == priority


class TestDerivedTask:
    def test_task_comes_from_highest_priority_action(self):
        extraction = ActionExtractionResult.model_validate(
            {
                "has_action": True,
                "urgency_score": 9,
                "actions": [
                    {"type": "review", "title": "Skim the doc", "priority": 2},
                    {"type": "pay", "title": "Pay invoice", "priority": 1, "deadline": "2026-11-01"},
                ],
            }
        )

        task = DerivedTask.from_extraction(_email(), extraction, contact_id="c1")

        assert task.title == "Pay invoice"
        assert task.action_type == "pay"
        assert task.priority == "high"
        assert task.deadline == datetime(2026, 11, 1)
        assert task.contact_id == "c1"
        assert task.status == "pending"

    def test_no_task_without_actions(self):
        extraction = ActionExtractionResult(has_action=False, urgency_score=3)

        assert DerivedTask.from_extraction(_email(), extraction) is None


class TestBatchResult:
    def test_record_folds_outcomes(self):
        batch = BatchResult(total_records=3)

        batch.record(ProcessResult("a", success=True, tokens_used=100, estimated_cost=0.01, tasks_created=1))
        batch.record(ProcessResult("b", success=False, tokens_used=40, estimated_cost=0.002, error="categorizer: bad"))
        batch.record(ProcessResult("c", success=True, skipped=True))

        assert batch.success_count == 1
        assert batch.failure_count == 1
        assert batch.skipped_count == 1
        assert batch.tasks_created == 1
        assert batch.total_tokens_used == 140
        assert batch.estimated_cost == pytest.approx(0.012)
        assert [(e.record_id, e.message) for e in batch.errors] == [("b", "categorizer: bad")]

    def test_skipped_records_are_not_successes(self):
        batch = BatchResult(total_records=2)
        analysis = MergedAnalysis(categorization=CategorizationResult(category="work", reasoning="x"))

        batch.record(ProcessResult("a", success=True, analysis=analysis))
        batch.record(ProcessResult("b", success=True, skipped=True, tokens_used=360))

        assert batch.success_count == 1
        assert batch.skipped_count == 1
        assert sum(batch.categorized.values()) == batch.success_count
        assert batch.total_tokens_used == 360

    def test_average_time_handles_empty_batch(self):
        assert BatchResult().avg_time_per_email_ms == 0
        assert BatchResult(total_time_ms=900, total_records=3).avg_time_per_email_ms == 300


class TestRunSummary:
    def test_all_failed_run_is_failed(self):
        batch = BatchResult(total_records=1)
        batch.record(ProcessResult("a", success=False, error="boom"))

        summary = RunSummary.from_batch("user-123", 1, batch)

        assert summary.status == "failed"
        assert summary.error_message == "boom"

    def test_partial_failure_is_completed(self):
        batch = BatchResult(total_records=2)
        batch.record(ProcessResult("a", success=True))
        batch.record(ProcessResult("b", success=False, error="boom"))

        assert RunSummary.from_batch("user-123", 2, batch).status == "completed"


def test_retry_report_counts_and_omits_empty_fields():
    report = RetryReport(
        details=[
            RetryResult("a", success=True, category="work", tokens_used=50),
            RetryResult("b", success=False, error="Email not found"),
        ]
    )

    assert report.to_dict() == {
        "succeeded": 1,
        "failed": 1,
        "details": [
            {"record_id": "a", "success": True, "category": "work", "tokens_used": 50},
            {"record_id": "b", "success": False, "error": "Email not found"},
        ],
    }
