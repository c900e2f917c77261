import pytest

from photo_sync.exceptions import (
    InvalidFolderPathError, JobFailedError, JobNotFoundError, JobTimeoutError,
)
from photo_sync.metadata.extract import MetadataExtractor
from photo_sync.models import JobStatus, JobType, ScanJob, utc_now_iso
from photo_sync.scanning.cleanup import ThumbnailCleaner
from photo_sync.scanning.folder_scan import FolderScanner
from photo_sync.scanning.full_scan import FullScanner
from photo_sync.scanning.metadata_scan import MetadataScanner
from photo_sync.scheduler import JobScheduler, SyncThrottle, pick_next_job
from photo_sync.thumbnails import ThumbnailStore


@pytest.fixture
def make_scheduler(db_ops, cfg):
    extractors = []

    def _make(store, **kwargs):
        extractor = MetadataExtractor(store)
        extractors.append(extractor)
        return JobScheduler(
            db_ops,
            full_scanner=FullScanner(db_ops, store, cfg),
            folder_scanner=FolderScanner(db_ops, store, extractor, cfg),
            metadata_scanner=MetadataScanner(db_ops, extractor, cfg),
            cleaner=ThumbnailCleaner(db_ops, ThumbnailStore(cfg.thumbnail_dir), cfg),
            cfg=cfg,
            **kwargs,
        )

    yield _make
    for extractor in extractors:
        extractor.close()


def test_pick_next_job_priority_then_age():
    jobs = [
        ScanJob(1, JobType.CLEANUP, JobStatus.PENDING),
        ScanJob(2, JobType.FULL_SCAN, JobStatus.PENDING),
        ScanJob(3, JobType.METADATA_SCAN, JobStatus.PENDING),
        ScanJob(4, JobType.FOLDER_SCAN, JobStatus.PENDING),
        ScanJob(5, JobType.FOLDER_SCAN, JobStatus.RUNNING),
    ]
    assert pick_next_job(jobs).id == 3
    assert pick_next_job(jobs[:2]).id == 2
    assert pick_next_job([jobs[4]]) is None


def test_run_next_drains_in_priority_order(db_ops, store, make_scheduler):
    db_ops.upsert_folder("a", "a", None)
    store.put("a/1.jpg", size=10)
    cleanup = db_ops.create_job(JobType.CLEANUP)
    full = db_ops.create_job(JobType.FULL_SCAN)
    folder = db_ops.create_job(JobType.FOLDER_SCAN, "a")
    scheduler = make_scheduler(store)

    order = []
    while True:
        job = scheduler.run_next()
        if job is None:
            break
        order.append(job.id)
        assert job.status == JobStatus.COMPLETED
        assert job.started_at is not None and job.completed_at is not None

    assert order == [folder.id, full.id, cleanup.id]


def test_full_scan_yields_to_folder_scan_and_resumes(db_ops, store, cfg, make_scheduler):
    cfg.page_size = 4
    for i in range(10):
        store.put(f"p/{i:02d}.jpg", size=100)

    class InterruptingStore:
        """Enqueues a folder scan while the first listing page is fetched."""

        def __init__(self, inner):
            self.inner = inner
            self.calls = 0

        def list(self, prefix="", continuation_token=None, page_size=1000):
            self.calls += 1
            if self.calls == 1:
                db_ops.create_job(JobType.FOLDER_SCAN, "p")
            return self.inner.list(prefix, continuation_token, page_size)

        def open_stream(self, key):
            return self.inner.open_stream(key)

    full = db_ops.create_job(JobType.FULL_SCAN)
    scheduler = make_scheduler(InterruptingStore(store))

    first = scheduler.run_next()
    assert first.id == full.id
    assert first.status == JobStatus.PENDING
    assert first.resume_token == "4"
    assert first.resume_processed == 4

    second = scheduler.run_next()
    assert second.type == JobType.FOLDER_SCAN
    assert second.status == JobStatus.COMPLETED

    third = scheduler.run_next()
    assert third.id == full.id
    assert third.status == JobStatus.COMPLETED
    assert (third.processed_items, third.total_items) == (10, 10)
    assert third.resume_token is None

    assert scheduler.run_next() is None
    assert db_ops.get_folder_by_path("p").photo_count == 10


def test_structural_failure_marks_job_failed(db_ops, store, make_scheduler):
    job = db_ops.create_job(JobType.FOLDER_SCAN, "missing")
    scheduler = make_scheduler(store)

    done = scheduler.run_next()

    assert done.status == JobStatus.FAILED
    assert "Folder not found: missing" in done.error_message
    assert done.completed_at is not None
    with pytest.raises(JobFailedError) as exc:
        scheduler.wait_for_job(job.id, timeout=1)
    assert exc.value.job_id == job.id


def test_bootstrap_enqueues_full_scan_when_idle(db_ops, store, make_scheduler):
    scheduler = make_scheduler(store)
    job = scheduler.bootstrap()
    assert job.type == JobType.FULL_SCAN
    # Not twice while one is pending
    assert scheduler.bootstrap() is None


def test_bootstrap_skips_after_recent_full_scan(db_ops, store, make_scheduler):
    done = db_ops.create_job(JobType.FULL_SCAN)
    db_ops.update_job(done.id, status=JobStatus.COMPLETED, completed_at=utc_now_iso())
    assert make_scheduler(store).bootstrap() is None


def test_bootstrap_runs_after_stale_full_scan(db_ops, store, make_scheduler):
    done = db_ops.create_job(JobType.FULL_SCAN)
    db_ops.update_job(done.id, status=JobStatus.COMPLETED, completed_at="2020-01-01T00:00:00+00:00")
    assert make_scheduler(store).bootstrap().type == JobType.FULL_SCAN


def test_bootstrap_requeues_orphaned_jobs(db_ops, store, make_scheduler):
    orphan = db_ops.create_job(JobType.FULL_SCAN)
    db_ops.update_job(orphan.id, status=JobStatus.RUNNING, resume_token="4", resume_processed=4)

    assert make_scheduler(store).bootstrap() is None

    requeued = db_ops.get_job(orphan.id)
    assert requeued.status == JobStatus.PENDING
    assert requeued.resume_token == "4"


def test_sync_folder_skips_when_recent_in_memory(db_ops, store, make_scheduler):
    scheduler = make_scheduler(store)
    scheduler.throttle.mark("a")

    assert scheduler.sync_folder("a") is None
    assert db_ops.get_active_jobs() == []


def test_sync_folder_skips_after_restart_when_catalog_is_fresh(db_ops, store, make_scheduler):
    folder = db_ops.upsert_folder("a", "a", None)
    db_ops.refresh_folders([folder.id], mark_synced=True)

    # A new scheduler has an empty in-memory map
    scheduler = make_scheduler(store)
    assert len(scheduler.throttle) == 0
    assert scheduler.sync_folder("a") is None
    assert db_ops.get_active_jobs() == []


def test_sync_folder_runs_and_waits(db_ops, store, make_scheduler):
    db_ops.upsert_folder("a", "a", None)
    store.put("a/1.jpg", size=10)
    scheduler = make_scheduler(store, idle_poll=0.05)

    try:
        job = scheduler.sync_folder("a", timeout=10)
        assert job.status == JobStatus.COMPLETED
        assert job.type == JobType.FOLDER_SCAN
        assert db_ops.get_photo_by_key("a/1.jpg") is not None

        # Throttled on the second request
        assert scheduler.sync_folder("a", timeout=10) is None
    finally:
        scheduler.stop(timeout=10)
    assert not scheduler.is_running


def test_sync_folder_rejects_bad_paths(store, make_scheduler):
    scheduler = make_scheduler(store)
    for bad in ("../etc", "a//b", "/a", "a;rm"):
        with pytest.raises(InvalidFolderPathError):
            scheduler.sync_folder(bad)


def test_wait_for_job_errors(db_ops, store, make_scheduler):
    scheduler = make_scheduler(store)
    with pytest.raises(JobNotFoundError):
        scheduler.wait_for_job(999, timeout=0.1)

    pending = db_ops.create_job(JobType.CLEANUP)
    with pytest.raises(JobTimeoutError):
        scheduler.wait_for_job(pending.id, timeout=0.2, poll_interval=0.05)


def test_status_snapshot(db_ops, store, make_scheduler):
    scheduler = make_scheduler(store)
    job = scheduler.request_cleanup()
    scheduler.request_metadata_scan("a/b")

    snap = scheduler.status()
    assert snap['running'] is False
    assert snap['current_job'] is None
    assert snap['queue_length'] == 2
    assert snap['active_jobs'][0] == (job.id, 'cleanup', 'pending', None)


def test_throttle_prunes_old_entries():
    now = [1000.0]
    throttle = SyncThrottle(30, clock=lambda: now[0])
    throttle.mark("a")
    assert throttle.is_recent("a")

    now[0] += 31
    assert not throttle.is_recent("a")

    now[0] += 30
    throttle.mark("b")
    assert len(throttle) == 1
