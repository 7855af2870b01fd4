"""Tests for the APScheduler wrapper, application wiring and the CLI."""

from unittest.mock import AsyncMock, patch

import pytest
import yaml
from typer.testing import CliRunner

from webpresence.app import WebPresenceApp
from webpresence.scheduler import PROCESS_JOB_ID, SCHEDULE_JOB_ID, TrackerScheduler


def _noop(**kwargs):
    return None


# ===========================================================================
# 1. Scheduler wrapper
# ===========================================================================
class TestTrackerScheduler:

    def test_add_and_remove_cron_job(self):
        scheduler = TrackerScheduler(job_store_url=None)
        scheduler.add_job("hourly", _noop, cron="0 * * * *")

        jobs = scheduler.list_jobs()
        assert [job["id"] for job in jobs] == ["hourly"]
        assert "cron" in jobs[0]["trigger"]

        assert scheduler.remove_job("hourly") is True
        assert scheduler.remove_job("hourly") is False

    @pytest.mark.parametrize("cron", ["* * * *", "0 0 * * * *", ""])
    def test_invalid_cron_rejected(self, cron):
        with pytest.raises(ValueError):
            TrackerScheduler(job_store_url=None).add_job("bad", _noop, cron=cron)

    def test_interval_must_be_positive(self):
        with pytest.raises(ValueError):
            TrackerScheduler(job_store_url=None).add_interval_job("tick", _noop, seconds=0)

    def test_install_passes(self):
        scheduler = TrackerScheduler(job_store_url=None)
        scheduler.install_passes(schedule_cron="*/15 * * * *", process_interval_seconds=10, config_path="x.yaml")
        assert {job["id"] for job in scheduler.list_jobs()} == {SCHEDULE_JOB_ID, PROCESS_JOB_ID}

    def test_start_and_stop(self):
        scheduler = TrackerScheduler(job_store_url=None)
        scheduler.start()
        try:
            assert scheduler.is_running
        finally:
            scheduler.stop(wait=False)
        assert not scheduler.is_running


# ===========================================================================
# 2. Application wiring
# ===========================================================================
@pytest.fixture()
def config_file(tmp_path, monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.setenv("BLOB_STORAGE_PATH", str(tmp_path / "blobs"))
    path = tmp_path / "settings.yaml"
    path.write_text(yaml.safe_dump({
        "app": {"data_dir": str(tmp_path / "data")},
        "database": {"url": "sqlite:///:memory:"},
        "jobs": {"batch_size": 2},
        "serp": {"discovery_limit": 1},
        "llm": {"max_cost_usd": 2.5},
    }), encoding="utf-8")
    return str(path)


class TestWebPresenceApp:

    def test_initialize_loads_yaml(self, config_file, tmp_path):
        app = WebPresenceApp(config_path=config_file, env_path=str(tmp_path / "missing.env"))
        app.initialize()
        assert app.section("jobs") == {"batch_size": 2}
        assert app.section("nothing") == {}
        assert (tmp_path / "data").is_dir()

    def test_missing_config_uses_defaults(self, tmp_path, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        monkeypatch.setenv("DATABASE_URL", "sqlite:///:memory:")
        app = WebPresenceApp(config_path=str(tmp_path / "absent.yaml"), env_path=str(tmp_path / "x.env"))
        app.initialize()
        assert app.config == {}

    def test_environment_flags(self, monkeypatch):
        monkeypatch.delenv("ENVIRONMENT", raising=False)
        monkeypatch.setenv("APP_ENV", "Development")
        monkeypatch.setenv("CRON_SECRET", "abc")
        app = WebPresenceApp(config={})
        assert app.is_development
        assert app.cron_secret == "abc"
        monkeypatch.setenv("APP_ENV", "production")
        assert not app.is_development

    def test_dispatcher_uses_config(self, config_file, tmp_path):
        app = WebPresenceApp(config_path=config_file, env_path=str(tmp_path / "x.env"))
        app.initialize()
        dispatcher = app.build_dispatcher()
        assert dispatcher.context.serp == {"discovery_limit": 1}
        assert dispatcher.context.blobs.base_path == (tmp_path / "blobs").resolve()
        assert dispatcher.context.llm._max_cost_usd == 2.5

    @pytest.mark.asyncio
    async def test_process_pass_reads_job_settings(self, config_file, tmp_path):
        app = WebPresenceApp(config_path=config_file, env_path=str(tmp_path / "x.env"))
        app.initialize()
        with patch("webpresence.jobs.processor.process_job_queue", new=AsyncMock(return_value={"total": 0})) as run:
            assert await app.process_jobs() == {"total": 0}
        assert run.await_args.kwargs["batch_size"] == 2
        assert run.await_args.kwargs["max_workers"] == 5

    def test_schedule_pass_on_empty_database(self, config_file, tmp_path):
        app = WebPresenceApp(config_path=config_file, env_path=str(tmp_path / "x.env"))
        assert app.schedule_jobs() == 0


# ===========================================================================
# 3. CLI smoke tests
# ===========================================================================
class TestCli:

    def test_help_lists_commands(self):
        from webpresence.cli import app
        result = CliRunner().invoke(app, ["--help"])
        assert result.exit_code == 0
        for command in ("schedule-jobs", "process-jobs", "worker", "serve", "plan-extractions", "jobs-clear"):
            assert command in result.output

    def test_schedule_jobs_command(self, config_file):
        from webpresence.cli import app
        result = CliRunner().invoke(app, ["schedule-jobs", "--config", config_file])
        assert result.exit_code == 0, result.output
        assert "0 jobs created" in result.output

    def test_competitors_command_without_data(self, config_file):
        from webpresence.cli import app
        result = CliRunner().invoke(app, ["competitors", "1", "--config", config_file])
        assert result.exit_code == 0, result.output
        assert "No competitors tracked yet." in result.output
