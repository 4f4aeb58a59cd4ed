"""Background job scheduler: a fixed pool of polling worker threads.

Jobs move queued → processing → completed | failed. A worker claims the
most urgent queued job with one atomic store operation, runs the handler
registered for its kind, and records the outcome. Idle workers back off
exponentially; a separate sweeper fails jobs whose heartbeat (updated_at)
has gone stale so a crashed worker cannot strand a job forever.

Each worker owns its own Repository (from ``repo_factory``), so they can
run against the same SQLite file in parallel. All sleeping goes through
the scheduler's stop event, so ``shutdown()`` interrupts idle waits.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable

from cardwise.database.models import Job, to_timestamp
from cardwise.database.repository import Repository
from cardwise.settings import ConfigProvider, Settings

logger = logging.getLogger(__name__)

STALE_JOB_ERROR = "Job timed out or became stuck"
ERROR_BACKOFF_SECONDS = 5.0


@dataclass(frozen=True)
class BackoffPolicy:
    """Idle-poll delay: base × multiplier^min(n, max_exponent), capped."""
    base: float = 2.0
    multiplier: float = 1.5
    maximum: float = 30.0
    max_exponent: int = 10

    @classmethod
    def from_settings(cls, settings: Settings) -> BackoffPolicy:
        return cls(
            base=settings.get_float("backoff_base_seconds"),
            multiplier=settings.get_float("backoff_multiplier"),
            maximum=settings.get_float("backoff_max_seconds"),
            max_exponent=settings.get_int("backoff_max_exponent"),
        )

    def delay(self, empty_polls: int) -> float:
        exponent = min(max(0, empty_polls), self.max_exponent)
        return min(self.base * self.multiplier ** exponent, self.maximum)


@dataclass
class JobStatus:
    """What an observer polling a job sees."""
    job_id: str
    kind: str
    status: str
    progress: int
    current_step: str | None = None
    error: str | None = None
    result: dict | None = None
    queued_at: str | None = None
    started_at: str | None = None
    completed_at: str | None = None

    @classmethod
    def from_job(cls, job: Job) -> JobStatus:
        return cls(
            job_id=job.id,
            kind=job.kind,
            status=job.status,
            progress=job.progress,
            current_step=job.current_step,
            error=job.error_message,
            result=job.output_payload,
            queued_at=job.queued_at,
            started_at=job.started_at,
            completed_at=job.completed_at,
        )


@dataclass
class JobContext:
    """Everything a handler needs to run one job."""
    job: Job
    repo: Repository
    settings: Settings
    worker_id: str
    now: Callable[[], str] = field(default=lambda: to_timestamp(datetime.now(timezone.utc)))

    def progress(self, percent: int, step: str) -> None:
        """Report progress. Also serves as the job's heartbeat."""
        if not self.repo.update_job_progress(self.job.id, percent, step, now=self.now()):
            logger.warning(
                "Progress update for job %s ignored (no longer processing)", self.job.id,
            )


Handler = Callable[[JobContext], "dict | None"]


@dataclass
class WorkerStats:
    jobs_processed: int = 0
    jobs_failed: int = 0
    total_processing_time: float = 0.0
    current_job: str | None = None
    last_job_completed_at: str | None = None

    @property
    def average_processing_time(self) -> float:
        if self.jobs_processed == 0:
            return 0.0
        return self.total_processing_time / self.jobs_processed


class Worker(threading.Thread):
    """Poll-claim-execute loop for one worker slot."""

    def __init__(self, worker_id: str, scheduler: JobScheduler):
        super().__init__(name=worker_id, daemon=True)
        self.worker_id = worker_id
        self.scheduler = scheduler
        self.stats = WorkerStats()
        self.empty_polls = 0

    def run(self) -> None:
        repo = self.scheduler.repo_factory()
        logger.info("Worker %s started", self.worker_id)
        try:
            while not self.scheduler.stopping:
                try:
                    found = self.poll_once(repo)
                except Exception:
                    logger.exception("Worker %s failed to poll for jobs", self.worker_id)
                    self.scheduler.wait(ERROR_BACKOFF_SECONDS)
                    continue
                if not found:
                    self.empty_polls += 1
                    self.scheduler.wait(self.scheduler.backoff.delay(self.empty_polls))
        finally:
            if repo is not self.scheduler.repo:
                repo.close()
            logger.info("Worker %s stopped", self.worker_id)

    def poll_once(self, repo: Repository) -> bool:
        """Claim and run at most one job. Returns False when the queue is empty."""
        job = repo.claim_next_job(self.worker_id, now=self.scheduler.now())
        if job is None:
            return False
        self.empty_polls = 0
        self._execute(repo, job)
        return True

    def _execute(self, repo: Repository, job: Job) -> None:
        started = time.monotonic()
        self.stats.current_job = job.id
        logger.info(
            "Worker %s processing job %s (%s, session %s)",
            self.worker_id, job.id, job.kind, job.session_id,
        )
        failed = False
        try:
            handler = self.scheduler.handlers.get(job.kind)
            if handler is None:
                raise ValueError(f"Unknown job kind: {job.kind}")
            context = JobContext(
                job=job,
                repo=repo,
                settings=self.scheduler.settings_snapshot(),
                worker_id=self.worker_id,
                now=self.scheduler.now,
            )
            output = handler(context)
            if not repo.complete_job(job.id, output, now=self.scheduler.now()):
                logger.warning("Job %s finished after it was no longer processing", job.id)
        except Exception as exc:
            failed = True
            logger.exception("Worker %s: job %s (%s) failed", self.worker_id, job.id, job.kind)
            repo.fail_job(job.id, str(exc), now=self.scheduler.now())
        finally:
            elapsed = time.monotonic() - started
            self.stats.current_job = None
            self.stats.jobs_processed += 1
            self.stats.total_processing_time += elapsed
            self.stats.last_job_completed_at = self.scheduler.now()
            if failed:
                self.stats.jobs_failed += 1
            logger.info(
                "Worker %s finished job %s in %.2fs (%s)",
                self.worker_id, job.id, elapsed, "failed" if failed else "completed",
            )


class JobScheduler:
    """Owns the worker pool, the stale-job sweeper and job intake.

    Args:
        repo_factory: Returns a fresh Repository. Called once for the
            scheduler itself and once per worker thread.
        handlers: Job kind → handler.
        settings: A ConfigProvider (snapshotted per job) or a fixed
            Settings snapshot.
        clock: Returns the current UTC datetime. Injectable for tests.
        sleep: Replaces the interruptible stop-event wait. Injectable
            for tests.
        worker_count: Overrides the ``worker_count`` setting.
    """

    def __init__(
        self,
        repo_factory: Callable[[], Repository],
        handlers: dict[str, Handler],
        settings: Settings | ConfigProvider | None = None,
        clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], None] | None = None,
        worker_count: int | None = None,
    ):
        self.repo_factory = repo_factory
        self.handlers = dict(handlers)
        self._settings = settings or Settings()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._sleep = sleep
        self._stop = threading.Event()
        self._workers: list[Worker] = []
        self._sweeper: threading.Thread | None = None
        self._finished = WorkerStats()
        self.repo = repo_factory()

        snapshot = self.settings_snapshot()
        self.worker_count = worker_count if worker_count is not None else snapshot.get_int("worker_count")
        self.job_timeout = snapshot.get_float("job_timeout_seconds")
        self.sweep_interval = snapshot.get_float("sweep_interval_seconds")
        self.shutdown_grace = snapshot.get_float("shutdown_grace_seconds")
        self.backoff = BackoffPolicy.from_settings(snapshot)

    # ── Time and settings ──────────────────────────────────

    def now(self) -> str:
        return to_timestamp(self._clock())

    def settings_snapshot(self) -> Settings:
        if isinstance(self._settings, ConfigProvider):
            return self._settings.snapshot()
        return self._settings

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def wait(self, seconds: float) -> None:
        if self._sleep is not None:
            self._sleep(seconds)
        else:
            self._stop.wait(seconds)

    # ── Lifecycle ──────────────────────────────────────────

    @property
    def is_running(self) -> bool:
        return any(w.is_alive() for w in self._workers)

    def start(self) -> None:
        if self.is_running:
            logger.warning("Job scheduler is already running")
            return
        self._stop.clear()
        for old in self._workers:
            self._record_finished(old)
        self._workers = [
            Worker(f"worker-{i + 1}", self) for i in range(self.worker_count)
        ]
        for worker in self._workers:
            worker.start()
        self._sweeper = threading.Thread(target=self._sweep_loop, name="sweeper", daemon=True)
        self._sweeper.start()
        logger.info(
            "Started %d workers (job timeout %.0fs, sweep every %.0fs)",
            len(self._workers), self.job_timeout, self.sweep_interval,
        )

    def shutdown(self, deadline: float | None = None) -> bool:
        """Signal stop and join every thread within ``deadline`` seconds total.

        A worker in the middle of a job finishes it first; there is no
        mid-job cancellation. Returns True if every thread exited in time.
        """
        grace = self.shutdown_grace if deadline is None else deadline
        logger.info("Shutting down job scheduler (grace %.1fs)", grace)
        self._stop.set()
        ends_at = time.monotonic() + grace
        threads: list[threading.Thread] = list(self._workers)
        if self._sweeper is not None:
            threads.append(self._sweeper)
        for thread in threads:
            thread.join(max(0.0, ends_at - time.monotonic()))
        alive = [t.name for t in threads if t.is_alive()]
        if alive:
            logger.warning("Threads still running after shutdown: %s", ", ".join(alive))
        else:
            logger.info("Job scheduler shut down")
        return not alive

    def run_pending(self, worker_id: str = "worker-1") -> int:
        """Process queued jobs on the calling thread until the queue is empty.

        Returns the number of jobs run.
        """
        worker = Worker(worker_id, self)
        self._workers.append(worker)
        count = 0
        while worker.poll_once(self.repo):
            count += 1
        self._workers.remove(worker)
        self._record_finished(worker)
        return count

    # ── Sweeper ────────────────────────────────────────────

    def _sweep_loop(self) -> None:
        while not self.stopping:
            try:
                self.sweep_stale_jobs()
            except Exception:
                logger.exception("Stale job sweep failed")
            self.wait(self.sweep_interval)

    def sweep_stale_jobs(self) -> list[str]:
        """Fail processing jobs with no heartbeat for ``job_timeout`` seconds."""
        cutoff = to_timestamp(self._clock() - timedelta(seconds=self.job_timeout))
        failed = self.repo.fail_stale_jobs(cutoff, STALE_JOB_ERROR, now=self.now())
        if failed:
            logger.warning("Marked %d stuck jobs as failed: %s", len(failed), ", ".join(failed))
        return failed

    # ── Intake and status ──────────────────────────────────

    def enqueue(
        self,
        session_id: str,
        kind: str,
        priority: int = 5,
        input_payload: dict | None = None,
    ) -> str:
        if not session_id:
            raise ValueError("session_id is required")
        if not kind:
            raise ValueError("job kind is required")
        now = self.now()
        job = self.repo.insert_job(Job(
            session_id=session_id,
            kind=kind,
            priority=int(priority),
            input_payload=input_payload,
            queued_at=now,
            updated_at=now,
        ))
        logger.info("Queued %s job %s for session %s (priority %d)", kind, job.id, session_id, job.priority)
        return job.id

    def get_job_status(self, job_id: str) -> JobStatus | None:
        job = self.repo.get_job(job_id)
        return JobStatus.from_job(job) if job else None

    def get_session_jobs(self, session_id: str) -> list[JobStatus]:
        return [JobStatus.from_job(j) for j in self.repo.get_session_jobs(session_id)]

    # ── Statistics ─────────────────────────────────────────

    def _record_finished(self, worker: Worker) -> None:
        self._finished = WorkerStats(
            jobs_processed=self._finished.jobs_processed + worker.stats.jobs_processed,
            jobs_failed=self._finished.jobs_failed + worker.stats.jobs_failed,
            total_processing_time=(
                self._finished.total_processing_time + worker.stats.total_processing_time
            ),
        )

    def stats(self) -> dict:
        workers = {
            w.worker_id: {
                "is_running": w.is_alive(),
                "jobs_processed": w.stats.jobs_processed,
                "jobs_failed": w.stats.jobs_failed,
                "average_processing_time": round(w.stats.average_processing_time, 3),
                "current_job": w.stats.current_job,
                "last_job_completed_at": w.stats.last_job_completed_at,
            }
            for w in self._workers
        }
        processed = self._finished.jobs_processed + sum(w.stats.jobs_processed for w in self._workers)
        failed = self._finished.jobs_failed + sum(w.stats.jobs_failed for w in self._workers)
        total_time = self._finished.total_processing_time + sum(
            w.stats.total_processing_time for w in self._workers
        )
        return {
            "is_running": self.is_running,
            "worker_count": self.worker_count,
            "jobs_processed": processed,
            "jobs_failed": failed,
            "average_processing_time": round(total_time / processed, 3) if processed else 0.0,
            "queue": self.repo.count_jobs_by_status(),
            "workers": workers,
        }
