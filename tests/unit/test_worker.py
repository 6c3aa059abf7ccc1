import pytest

from crm_sync.jobs import worker


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


def test_provider_jobs_registered():
    assert worker.JOB_REGISTRY["hubspot_token_refresh"].args == (["hubspot"],)
    assert worker.JOB_REGISTRY["salesforce_token_refresh"].args == (["salesforce"],)


def test_job_name_from_env(monkeypatch):
    monkeypatch.setattr(worker.sys, "argv", ["worker"])
    monkeypatch.setenv("WORKER_JOB", " Salesforce_Token_Refresh ")

    assert worker._resolve_job_name() == "salesforce_token_refresh"
