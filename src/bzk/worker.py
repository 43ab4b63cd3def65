# worker.py
from __future__ import annotations

import logging
import os
import signal
import time
from typing import Callable, Mapping, Optional

import redis

from .config import (
    ENV_JOB_ID,
    ENV_PROJECT_ID,
    ENV_SCM,
    ENV_SCM_REFERENCE,
    ENV_SCM_URL,
    OrchestrationConfig,
)
from .controller import JobReport
from .errors import OrchestrationError, StoreError
from .model import JobStatus, now_utc
from .orchestrate import orchestrate
from .redisq import JobQueue
from .store import SqlJobStore
from .ui.console import get_console

logger = logging.getLogger(__name__)


class Worker:
    """Polls the job queue and orchestrates each dequeued job in turn."""

    def __init__(
        self,
        queue: JobQueue,
        store: SqlJobStore,
        base_env: Optional[Mapping[str, str]] = None,
        poll_interval: int = 5,
        run_job: Callable[[OrchestrationConfig, SqlJobStore], JobReport] | None = None,
    ):
        """
        Args:
            queue: where job ids are waiting
            store: job store shared with the API
            base_env: environment the per-job config is derived from
            poll_interval: seconds to block on the queue per poll
            run_job: orchestration entry point, replaceable in tests
        """
        self.queue = queue
        self.store = store
        self.base_env = dict(os.environ if base_env is None else base_env)
        self.poll_interval = poll_interval
        self.run_job = run_job or (lambda config, store: orchestrate(config, store=store))
        self.running = True

    def install_signal_handlers(self) -> None:
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

    def _signal_handler(self, signum, frame):
        get_console().print_info(f"\nReceived signal {signum}, shutting down after the current job...")
        self.running = False

    def run(self) -> None:
        console = get_console()
        console.print_worker_started(queue=self.queue.name, poll_interval=self.poll_interval)
        while self.running:
            try:
                self.poll_once()
            except redis.RedisError as e:
                console.print_error(
                    "Queue error",
                    str(e),
                    suggestion="Check Redis connectivity; retrying.",
                )
                time.sleep(self.poll_interval)
        console.print_info("Worker stopped.")

    def poll_once(self) -> bool:
        """Handle at most one job. Returns True if a job was dequeued."""
        job_id = self.queue.dequeue(timeout_s=self.poll_interval)
        if not job_id:
            return False
        get_console().print_job_dequeued(job_id)
        self.handle(job_id)
        return True

    def config_for(self, job_id: str) -> OrchestrationConfig:
        job = self.store.get_job(job_id)
        if job is None:
            raise StoreError(operation="get_job", message=f"job {job_id} not found")
        env = dict(self.base_env)
        env.update({
            ENV_SCM: job.scm,
            ENV_SCM_URL: job.scm_url,
            ENV_SCM_REFERENCE: job.reference or "HEAD",
            ENV_PROJECT_ID: job.project_id,
            ENV_JOB_ID: job.id,
        })
        return OrchestrationConfig.from_env(env)

    def handle(self, job_id: str) -> None:
        console = get_console()
        try:
            config = self.config_for(job_id)
        except OrchestrationError as e:
            console.print_exception(e)
            self._mark_errored(job_id)
            return

        try:
            report = self.run_job(config, self.store)
            console.print_info(f"Job {job_id} finished: {report.status.value}")
        except OrchestrationError as e:
            # the controller already recorded the job as errored
            console.print_exception(e)
        except Exception as e:
            logger.exception("job %s crashed the orchestrator", job_id)
            console.print_exception(e)
            self._mark_errored(job_id)

    def _mark_errored(self, job_id: str) -> None:
        try:
            self.store.finish_job(job_id, JobStatus.ERRORED, now_utc())
        except StoreError as e:
            logger.error("could not record job %s as errored: %s", job_id, e)
