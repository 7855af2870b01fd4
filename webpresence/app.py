"""Application wiring: configuration, database and job-system collaborators."""

import logging
import os
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config/settings.yaml"


class WebPresenceApp:
    """Central application object shared by the CLI, the API and the worker.

    Usage::

        app = WebPresenceApp()
        app.initialize()
        stats = await app.process_jobs()
        created = app.schedule_jobs()
    """

    def __init__(
        self,
        config_path: Optional[str] = None,
        env_path: str = ".env",
        config: Optional[dict[str, Any]] = None,
    ):
        self._config_path = config_path or os.getenv("WEBPRESENCE_CONFIG", DEFAULT_CONFIG_PATH)
        self._env_path = env_path
        self.config: dict[str, Any] = config or {}
        self._config_given = config is not None
        self._initialized = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self) -> None:
        """Load environment and configuration, then create database tables."""
        if self._initialized:
            return

        env_file = Path(self._env_path)
        if env_file.exists():
            load_dotenv(env_file)
            logger.info("Loaded environment from %s", self._env_path)

        if not self._config_given:
            self.config = self._load_config()

        data_dir = self.config.get("app", {}).get("data_dir", "")
        if data_dir:
            Path(data_dir).mkdir(parents=True, exist_ok=True)

        from webpresence.database import init_db
        db_cfg = self.config.get("database", {})
        init_db(
            database_url=os.getenv("DATABASE_URL") or db_cfg.get("url"),
            echo=db_cfg.get("echo", False),
        )

        self._initialized = True
        logger.info("WebPresenceApp initialised.")

    def _load_config(self) -> dict[str, Any]:
        config_file = Path(self._config_path)
        if not config_file.exists():
            logger.warning("Config file not found: %s, using defaults.", self._config_path)
            return {}
        with open(config_file, "r", encoding="utf-8") as fh:
            config = yaml.safe_load(fh) or {}
        logger.info("Configuration loaded from %s", self._config_path)
        return config

    def section(self, name: str) -> dict[str, Any]:
        return self.config.get(name, {}) or {}

    # ------------------------------------------------------------------
    # Settings read from the environment
    # ------------------------------------------------------------------

    @property
    def environment(self) -> str:
        return os.getenv("APP_ENV", os.getenv("ENVIRONMENT", "production")).lower()

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @property
    def cron_secret(self) -> str:
        return os.getenv("CRON_SECRET", "")

    # ------------------------------------------------------------------
    # Collaborators
    # ------------------------------------------------------------------

    def build_dispatcher(self):
        """Fresh job dispatcher with its own HTTP and LLM clients.

        Built per pass so clients never outlive the event loop that uses them.
        """
        from webpresence.integrations.blob_store import FileBlobStore
        from webpresence.integrations.llm_client import LLMClient
        from webpresence.integrations.web_fetcher import WebFetcher
        from webpresence.jobs.handlers import JobContext, JobDispatcher
        from webpresence.jobs.queue import JobQueue

        fetcher_cfg = self.section("fetcher")
        llm_cfg = self.section("llm")
        context = JobContext(
            fetcher=WebFetcher(
                timeout=fetcher_cfg.get("timeout", 30),
                requests_per_minute=fetcher_cfg.get("requests_per_minute", 60),
            ),
            llm=LLMClient(
                model=llm_cfg.get("model", "gpt-4o-mini"),
                max_tokens=llm_cfg.get("max_tokens", 4096),
                temperature=llm_cfg.get("temperature", 0.7),
                timeout=llm_cfg.get("timeout", 60),
                requests_per_minute=llm_cfg.get("requests_per_minute", 60),
                max_cost_usd=llm_cfg.get("max_cost_usd", 5.0),
                cost_warning_pct=llm_cfg.get("cost_warning_pct", 80.0),
            ),
            blobs=FileBlobStore(os.getenv("BLOB_STORAGE_PATH") or self.section("blob").get("base_path")),
            queue=JobQueue(),
            serp=self.section("serp"),
            max_key_pages=self.section("analysis").get("max_key_pages", 20),
        )
        return JobDispatcher(context)

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------

    def schedule_jobs(self) -> int:
        """Run one periodic scheduling pass.  Returns the number of jobs created."""
        self._ensure_initialized()
        from webpresence.jobs.periodic import schedule_periodic_jobs
        return schedule_periodic_jobs()

    async def process_jobs(self) -> dict[str, int]:
        """Run one job processing pass."""
        self._ensure_initialized()
        from webpresence.jobs.processor import process_job_queue
        jobs_cfg = self.section("jobs")
        return await process_job_queue(
            self.build_dispatcher(),
            batch_size=jobs_cfg.get("batch_size", 5),
            max_workers=jobs_cfg.get("max_workers", 5),
            job_timeout=float(jobs_cfg.get("job_timeout_seconds", 300)),
        )

    def extraction_planner(self):
        from webpresence.modules.extraction.planner import ExtractionPlanner
        jobs_cfg = self.section("jobs")
        return ExtractionPlanner(
            chunk_size=jobs_cfg.get("extraction_batch_size", 100),
            freshness_hours=jobs_cfg.get("freshness_hours", 24),
        )

    def _ensure_initialized(self) -> None:
        if not self._initialized:
            self.initialize()
