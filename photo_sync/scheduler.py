import logging
import sqlite3
import threading
import time
from datetime import datetime, timedelta, UTC
from typing import Callable, Dict, Iterable, Optional

from . import config
from .config import SyncConfig
from .database.ops import DBOperations
from .exceptions import DatabaseError, JobFailedError, JobNotFoundError, JobTimeoutError
from .models import JobStatus, JobType, ScanJob, utc_now_iso
from .scanning.full_scan import ScanOutcome
from .store.keys import normalize_folder_path, validate_folder_path

# Job types that may interrupt a running full scan
INTERACTIVE_JOBS = (JobType.FOLDER_SCAN, JobType.METADATA_SCAN)


def pick_next_job(jobs: Iterable[ScanJob]) -> Optional[ScanJob]:
    """Lowest priority tier first, then oldest (by id) within a tier."""
    pending = [j for j in jobs if j.status == JobStatus.PENDING]
    if not pending:
        return None
    return min(pending, key=lambda j: (j.type.priority, j.id))


def _parse_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(value)
    except ValueError:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=UTC)


class SyncThrottle:
    """
    In-memory record of when each folder was last synced on request.
    Entries older than twice the window are pruned on every write.
    """

    def __init__(self, window_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.window = window_seconds
        self.clock = clock
        self._last: Dict[str, float] = {}
        self._lock = threading.Lock()

    def is_recent(self, path: str) -> bool:
        with self._lock:
            last = self._last.get(path)
            return last is not None and self.clock() - last < self.window

    def mark(self, path: str):
        with self._lock:
            now = self.clock()
            self._last[path] = now
            horizon = now - 2 * self.window
            for stale in [p for p, t in self._last.items() if t < horizon]:
                del self._last[stale]

    def __len__(self) -> int:
        return len(self._last)


class JobScheduler:
    """
    Single worker that drains the job queue in priority order.

    Folder and metadata scans come first, then full scans, then cleanup.
    A running full scan checks between pages whether an interactive job is
    waiting and, if so, checkpoints and steps aside; it is requeued and
    resumes from its checkpoint once the queue clears.
    """

    def __init__(self,
                 db_ops: DBOperations,
                 full_scanner,
                 folder_scanner,
                 metadata_scanner,
                 cleaner,
                 cfg: SyncConfig,
                 idle_poll: float = config.IDLE_POLL_SECONDS,
                 error_backoff: float = config.ERROR_BACKOFF_SECONDS,
                 clock: Callable[[], float] = time.monotonic):
        self.db = db_ops
        self.full_scanner = full_scanner
        self.folder_scanner = folder_scanner
        self.metadata_scanner = metadata_scanner
        self.cleaner = cleaner
        self.cfg = cfg
        self.idle_poll = idle_poll
        self.error_backoff = error_backoff
        self.throttle = SyncThrottle(cfg.sync_throttle_seconds, clock=clock)

        self.current_job: Optional[ScanJob] = None
        self._thread: Optional[threading.Thread] = None
        self._stop = threading.Event()
        self._wake = threading.Event()
        self._job_done = threading.Condition()
        self._start_lock = threading.Lock()

    # --- Lifecycle ---

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        with self._start_lock:
            if self.is_running:
                logging.info("Sync scheduler already running")
                return
            self._stop.clear()
            self.bootstrap()
            self._thread = threading.Thread(target=self._loop, name="photo-sync-scheduler", daemon=True)
            self._thread.start()
            logging.info("Sync scheduler started")

    def stop(self, timeout: Optional[float] = None):
        """Stops after the current job finishes or yields."""
        self._stop.set()
        self._wake.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logging.info("Sync scheduler stopped")

    def bootstrap(self) -> Optional[ScanJob]:
        """
        Requeues jobs orphaned by a previous run, then enqueues a full scan
        when the queue is empty and no full scan completed recently.
        """
        requeued = self.db.requeue_running_jobs()
        if requeued:
            logging.info(f"Requeued {requeued} jobs left running by a previous process")

        if self.db.get_active_jobs():
            return None

        last = self.db.last_completed_job(JobType.FULL_SCAN)
        completed_at = _parse_iso(last.completed_at) if last else None
        if completed_at is not None:
            age = datetime.now(UTC) - completed_at
            if age < timedelta(seconds=config.BOOTSTRAP_FRESHNESS_SECONDS):
                logging.info(f"Skipping initial full scan; last one completed {int(age.total_seconds())}s ago")
                return None

        job = self.db.create_job(JobType.FULL_SCAN)
        logging.info(f"Queued initial full scan #{job.id}")
        return job

    def _loop(self):
        while not self._stop.is_set():
            try:
                ran = self.run_next()
                if ran is None:
                    self._wake.wait(self.idle_poll)
                    self._wake.clear()
            except Exception:
                logging.exception("Error in sync queue processing")
                self._stop.wait(self.error_backoff)

    # --- Execution ---

    def run_next(self) -> Optional[ScanJob]:
        """Runs the highest-priority pending job. Returns it refreshed, or None if idle."""
        job = pick_next_job(self.db.get_active_jobs())
        if job is None:
            return None
        self.execute(job)
        return self.db.get_job(job.id)

    def execute(self, job: ScanJob) -> JobStatus:
        self.current_job = job
        self.db.update_job(
            job.id,
            status=JobStatus.RUNNING,
            started_at=job.started_at or utc_now_iso(),
            error_message=None,
        )
        logging.info(f"Processing job #{job.id} ({job.type.value}{self._describe_target(job)})")

        try:
            outcome = self._dispatch(job)
        except Exception as e:
            logging.exception(f"Job #{job.id} failed")
            self.db.update_job(
                job.id,
                status=JobStatus.FAILED,
                completed_at=utc_now_iso(),
                error_message=self._error_message(e),
            )
            self._notify()
            return JobStatus.FAILED
        finally:
            self.current_job = None

        if outcome == ScanOutcome.PREEMPTED:
            self.db.update_job(job.id, status=JobStatus.PENDING)
            return JobStatus.PENDING

        self.db.update_job(job.id, status=JobStatus.COMPLETED, completed_at=utc_now_iso())
        self._notify()
        logging.info(f"Job #{job.id} completed")
        return JobStatus.COMPLETED

    def _dispatch(self, job: ScanJob) -> ScanOutcome:
        if job.type == JobType.FULL_SCAN:
            return self.full_scanner.run(job, should_yield=self._should_yield)
        if job.type == JobType.FOLDER_SCAN:
            return self.folder_scanner.run(job)
        if job.type == JobType.METADATA_SCAN:
            return self.metadata_scanner.run(job)
        if job.type == JobType.CLEANUP:
            return self.cleaner.run(job)
        raise ValueError(f"Unknown job type: {job.type}")

    def _should_yield(self) -> bool:
        return self._stop.is_set() or self.db.has_pending_jobs(INTERACTIVE_JOBS)

    @staticmethod
    def _error_message(error: Exception) -> str:
        if isinstance(error, sqlite3.Error):
            error = DatabaseError(f"Catalog error: {error}")
        return str(error) or error.__class__.__name__

    @staticmethod
    def _describe_target(job: ScanJob) -> str:
        return f" '{job.folder_path}'" if job.folder_path is not None else ""

    def _notify(self):
        with self._job_done:
            self._job_done.notify_all()

    # --- Requests ---

    def enqueue(self, job_type: JobType, folder_path: Optional[str] = None) -> ScanJob:
        job = self.db.create_job(job_type, folder_path)
        logging.info(f"Queued {job_type.value} #{job.id}{self._describe_target(job)}")
        self._wake.set()
        return job

    def request_full_scan(self) -> ScanJob:
        return self.enqueue(JobType.FULL_SCAN)

    def request_metadata_scan(self, folder_path: str) -> ScanJob:
        path = normalize_folder_path(validate_folder_path(folder_path))
        return self.enqueue(JobType.METADATA_SCAN, path)

    def request_cleanup(self) -> ScanJob:
        return self.enqueue(JobType.CLEANUP)

    def sync_folder(self, folder_path: str, timeout: float = config.JOB_WAIT_TIMEOUT_SECONDS) -> Optional[ScanJob]:
        """
        Scans one folder and blocks until it finishes. Returns None without
        enqueuing anything when the folder was synced within the throttle
        window, either by this process or (per the catalog) by any scan.
        """
        path = normalize_folder_path(validate_folder_path(folder_path))

        if self.throttle.is_recent(path):
            logging.debug(f"Skipping sync for '{path}' - synced recently")
            return None

        folder = self.db.get_folder_by_path(path)
        last_synced = _parse_iso(folder.last_synced) if folder else None
        if last_synced is not None:
            if datetime.now(UTC) - last_synced < timedelta(seconds=self.cfg.sync_throttle_seconds):
                logging.debug(f"Skipping sync for '{path}' - catalog shows a recent sync")
                return None

        job = self.enqueue(JobType.FOLDER_SCAN, path)
        if not self.is_running:
            self.start()

        result = self.wait_for_job(job.id, timeout=timeout)
        self.throttle.mark(path)
        return result

    def wait_for_job(self, job_id: int, timeout: float = config.JOB_WAIT_TIMEOUT_SECONDS,
                     poll_interval: float = config.JOB_WAIT_POLL_SECONDS) -> ScanJob:
        deadline = time.monotonic() + timeout
        while True:
            job = self.db.get_job(job_id)
            if job is None:
                raise JobNotFoundError(job_id, f"Job {job_id} not found")
            if job.status == JobStatus.COMPLETED:
                return job
            if job.status == JobStatus.FAILED:
                raise JobFailedError(job_id, f"Job {job_id} failed: {job.error_message}")

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise JobTimeoutError(job_id, f"Job {job_id} timeout after {timeout} seconds")
            with self._job_done:
                self._job_done.wait(min(poll_interval, remaining))

    # --- Introspection ---

    def get_job(self, job_id: int) -> Optional[ScanJob]:
        return self.db.get_job(job_id)

    def status(self) -> dict:
        jobs = self.db.get_active_jobs()
        current = self.current_job
        return {
            'running': self.is_running,
            'current_job': current.id if current else None,
            'current_type': current.type.value if current else None,
            'active_jobs': [(j.id, j.type.value, j.status.value, j.folder_path) for j in jobs],
            'queue_length': sum(1 for j in jobs if j.status == JobStatus.PENDING),
        }
