import pytest

from app.jobs import worker


@pytest.mark.asyncio
async def test_run_worker_runs_job(monkeypatch):
    called = {"ok": False}

    async def dummy_job():
        called["ok"] = True

    monkeypatch.setitem(worker.JOB_REGISTRY, "dummy", dummy_job)

    await worker.run_worker("dummy")

    assert called["ok"] is True


@pytest.mark.asyncio
async def test_run_worker_unknown_job():
    with pytest.raises(ValueError):
        await worker.run_worker("missing")


def test_registry_exposes_analysis_jobs():
    assert set(worker.JOB_REGISTRY) == {"email_analysis", "retry_failed_analyses"}


@pytest.mark.asyncio
async def test_job_name_from_env(monkeypatch):
    called = []

    async def analysis_job():
        called.append("email_analysis")

    monkeypatch.setattr(worker.sys, "argv", ["worker"])
    monkeypatch.setenv("WORKER_JOB", " Email_Analysis ")
    monkeypatch.setitem(worker.JOB_REGISTRY, "email_analysis", analysis_job)

    await worker.run_worker()

    assert called == ["email_analysis"]
