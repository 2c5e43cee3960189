import pytest

from app.features.email_analysis.analyzers import AnalyzerSet
from app.features.email_analysis.domain import RetryResetError, SelectionError
from app.features.email_analysis.services.email_processor import EmailProcessor
from app.features.email_analysis.services.retry_service import (
    NOT_FOUND_MESSAGE,
    EmailAnalysisRetryService,
)


def _service(store, analyzers):
    processor = EmailProcessor(analyzers=analyzers, repository=store)
    return EmailAnalysisRetryService(
        processor=processor, repository=store, batch_size=5, batch_delay_seconds=0
    )


@pytest.mark.asyncio
async def test_retry_resets_then_reanalyzes(email_store, analyzer_set):
    email_store.add_email("failed", error="categorizer: timeout")
    email_store.add_email("done", analyzed=True)
    service = _service(email_store, analyzer_set)

    report = await service.retry("user-123", ["failed", "done"])

    assert email_store.reset_calls == [("user-123", ["failed", "done"])]
    assert report.succeeded == 2
    assert report.failed == 0
    assert [d.record_id for d in report.details] == ["failed", "done"]
    assert report.details[0].category == "work"
    assert report.details[0].tokens_used == 360
    assert email_store.rows["failed"]["analysis_error"] is None
    assert email_store.rows["failed"]["analyzed_at"] is not None


@pytest.mark.asyncio
async def test_markers_cleared_before_any_analyzer_runs(email_store, scripted_analyzers):
    email_store.add_email("a", error="categorizer: bad")
    email_store.add_email("b", error="categorizer: bad")
    observed = []
    categorizer = scripted_analyzers["categorizer"]
    original = categorizer.analyze

    async def observing_analyze(email, context):
        observed.append([email_store.rows[i]["analysis_error"] for i in ("a", "b")])
        return await original(email, context)

    categorizer.analyze = observing_analyze
    service = _service(email_store, AnalyzerSet(**scripted_analyzers))

    await service.retry("user-123", ["a", "b"])

    assert observed == [[None, None], [None, None]]


@pytest.mark.asyncio
async def test_unknown_and_foreign_ids_are_reported_not_found(email_store, analyzer_set):
    email_store.add_email("mine", error="categorizer: bad")
    email_store.add_email("theirs", "user-999", error="categorizer: bad")
    service = _service(email_store, analyzer_set)

    report = await service.retry("user-123", ["mine", "ghost", "theirs"])

    assert report.to_dict()["succeeded"] == 1
    assert report.to_dict()["failed"] == 2
    assert report.details[1].error == NOT_FOUND_MESSAGE
    assert report.details[2].error == NOT_FOUND_MESSAGE
    assert email_store.reset_calls == [("user-123", ["mine"])]
    assert email_store.rows["theirs"]["analysis_error"] == "categorizer: bad"


@pytest.mark.asyncio
async def test_duplicate_ids_reported_once(email_store, analyzer_set, scripted_analyzers):
    email_store.add_email("a", error="categorizer: bad")
    service = _service(email_store, analyzer_set)

    report = await service.retry("user-123", ["a", "a", "a"])

    assert len(report.details) == 1
    assert scripted_analyzers["categorizer"].calls == ["a"]


@pytest.mark.asyncio
async def test_retry_can_fail_again(email_store, scripted_analyzers):
    email_store.add_email("a", error="categorizer: bad")
    scripted_analyzers["categorizer"].fail_for = {"a"}
    service = _service(email_store, AnalyzerSet(**scripted_analyzers))

    report = await service.retry("user-123", ["a"])

    assert report.failed == 1
    assert report.details[0].error == "categorizer: scripted failure"
    assert email_store.rows["a"]["analysis_error"] == "categorizer: scripted failure"
    assert email_store.invariant_violations == []


@pytest.mark.asyncio
async def test_reset_failure_raises_before_processing(email_store, analyzer_set, scripted_analyzers):
    email_store.add_email("a", error="categorizer: bad")
    email_store.fail_reset = True
    service = _service(email_store, analyzer_set)

    with pytest.raises(RetryResetError):
        await service.retry("user-123", ["a"])

    assert scripted_analyzers["categorizer"].calls == []
    assert email_store.rows["a"]["analysis_error"] == "categorizer: bad"


@pytest.mark.asyncio
async def test_lookup_failure_raises_selection_error(email_store, analyzer_set, monkeypatch):
    async def broken_fetch(user_id, email_ids):
        raise RuntimeError("db down")

    monkeypatch.setattr(email_store, "fetch_by_ids", broken_fetch)
    service = _service(email_store, analyzer_set)

    with pytest.raises(SelectionError):
        await service.retry("user-123", ["a"])


@pytest.mark.asyncio
async def test_empty_request_does_nothing(email_store, analyzer_set):
    service = _service(email_store, analyzer_set)

    report = await service.retry("user-123", [])

    assert report.details == []
    assert email_store.reset_calls == []
