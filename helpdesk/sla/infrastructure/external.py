"""
SLA External Service Integrations
=================================

- YAML policy file loader with watchdog hot reload
- APScheduler wrapper running the escalation scan
"""

import threading
from pathlib import Path
from typing import Awaitable, Callable, Optional

import yaml
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from pydantic import ValidationError
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from helpdesk.core import ConfigurationException
from helpdesk.shared.infrastructure.logging import get_logger
from helpdesk.sla.domain import ISLAPolicyProvider, SLAConfig, SlaPolicy

logger = get_logger(__name__)


class ConfigFileHandler(FileSystemEventHandler):
    """Watchdog event handler for SLA policy file changes."""

    def __init__(self, config_manager: "SLAConfigManager", config_path: Path):
        self.config_manager = config_manager
        self.config_path = config_path
        super().__init__()

    def _matches(self, path: str) -> bool:
        return Path(path).resolve() == self.config_path.resolve()

    def on_modified(self, event):
        if not event.is_directory and self._matches(event.src_path):
            logger.info("SLA policy file changed", extra={"path": event.src_path})
            self.config_manager.reload()

    def on_created(self, event):
        self.on_modified(event)

    def on_moved(self, event):
        # Editors that save via rename surface as a move onto the watched path
        if not event.is_directory and self._matches(event.dest_path):
            logger.info("SLA policy file replaced", extra={"path": event.dest_path})
            self.config_manager.reload()


class SLAConfigManager(ISLAPolicyProvider):
    """
    Thread-safe SLA policy provider with hot-reload support.

    Uses watchdog to monitor the YAML file and swap in a new policy without
    restarting the service. A reload that fails to parse or validate keeps
    the previous policy.
    """

    def __init__(self):
        self._policy: Optional[SlaPolicy] = None
        self._lock = threading.Lock()
        self._path: Optional[Path] = None
        self._observer = None

    def load(self, path: Path) -> SlaPolicy:
        """
        Initial policy load.

        Raises:
            ConfigurationException: file exists but is not a valid policy
        """
        self._path = Path(path)
        try:
            policy = SlaPolicy(self._load_from_file(self._path))
        except (yaml.YAMLError, ValidationError, TypeError) as e:
            raise ConfigurationException(
                f"Invalid SLA policy file {self._path}: {e}",
                {"path": str(self._path)}
            ) from e
        with self._lock:
            self._policy = policy
        return policy

    def _load_from_file(self, path: Path) -> SLAConfig:
        if not path.exists():
            logger.warning("SLA policy file not found, using defaults", extra={"path": str(path)})
            return SLAConfig()

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        return SLAConfig(**data)

    def reload(self) -> bool:
        """Reload the policy from file; returns False and keeps the old one on failure."""
        if self._path is None:
            return False

        try:
            new_policy = SlaPolicy(self._load_from_file(self._path))
        except (OSError, yaml.YAMLError, ValidationError, TypeError) as e:
            logger.error(
                "Failed to reload SLA policy, keeping previous",
                extra={"path": str(self._path), "error": str(e)}
            )
            return False

        with self._lock:
            self._policy = new_policy
        logger.info(
            "SLA policy reloaded",
            extra={"sla_hours": {k.value: v for k, v in new_policy.config.sla_hours.items()}}
        )
        return True

    def get_policy(self) -> SlaPolicy:
        with self._lock:
            if self._policy is None:
                raise RuntimeError("SLA policy not loaded. Call load() first.")
            return self._policy

    def start_watching(self) -> None:
        """
        Start watching the policy file's directory for changes.

        Skipped when the directory does not exist or the platform refuses
        a watch (e.g. inotify limits inside containers).
        """
        if self._path is None:
            raise RuntimeError("Config not loaded. Call load() first.")

        directory = self._path.resolve().parent
        if not directory.exists():
            logger.info("SLA policy directory missing, skipping file watch", extra={"path": str(directory)})
            return

        try:
            self._observer = Observer()
            self._observer.schedule(ConfigFileHandler(self, self._path), str(directory), recursive=False)
            self._observer.start()
            logger.info("Started watching SLA policy file", extra={"path": str(self._path)})
        except OSError as e:
            logger.warning("File watching not available, using static policy", extra={"error": str(e)})
            self._observer = None

    def stop_watching(self) -> None:
        """Stop watching (safe to call even if not watching)."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None


class EscalationJobRunner:
    """
    Wrapper for APScheduler running the escalation scan.

    ``max_instances=1`` keeps scans from overlapping when one runs long.
    """

    JOB_ID = "escalation_scan"

    def __init__(self, interval_seconds: int = 60):
        self.interval_seconds = interval_seconds
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    async def start(self, job_func: Callable[[], Awaitable[object]]) -> None:
        """Start the scheduler with the given coroutine function."""
        if self._running:
            logger.warning("Escalation scheduler already running")
            return

        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            job_func,
            "interval",
            seconds=self.interval_seconds,
            id=self.JOB_ID,
            name="SLA Escalation Scan",
            misfire_grace_time=self.interval_seconds,
            coalesce=True,
            max_instances=1,
            replace_existing=True
        )
        self._scheduler.start()
        self._running = True

        logger.info(
            "Escalation scheduler started",
            extra={"interval_seconds": self.interval_seconds}
        )

    async def stop(self) -> None:
        """Stop the scheduler gracefully."""
        if not self._running:
            return

        if self._scheduler:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None

        self._running = False
        logger.info("Escalation scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._running
