import logging
from typing import Optional

from . import config
from .config import SyncConfig
from .database.db import DBManager
from .database.ops import DBOperations
from .metadata.extract import MetadataExtractor
from .models import JobStatus, ScanJob
from .scanning.admission import ThumbnailDecision
from .scanning.cleanup import ThumbnailCleaner
from .scanning.folder_scan import FolderScanner
from .scanning.full_scan import FullScanner
from .scanning.metadata_scan import MetadataScanner
from .scheduler import JobScheduler
from .store.keys import normalize_folder_path, validate_folder_path
from .store.s3 import S3ObjectStore
from .thumbnails import ThumbnailStore, request_thumbnail


class PhotoSyncApp:
    """
    Wires the catalog, object store, extractor and scheduler together.

    Pass `store` to use something other than the configured S3 bucket
    (anything with `list(prefix, token, page_size)` and `open_stream(key)`).
    """

    def __init__(self, cfg: SyncConfig, store=None, show_progress: bool = False):
        cfg.require_valid(require_store=store is None)
        self.cfg = cfg
        self.db_manager = DBManager(cfg.db_path)
        self.db: DBOperations = self.db_manager.operations()

        self.store = store if store is not None else S3ObjectStore.from_config(cfg)
        self.extractor = MetadataExtractor(self.store)
        self.thumbnails = ThumbnailStore(cfg.thumbnail_dir)

        self.scheduler = JobScheduler(
            self.db,
            full_scanner=FullScanner(self.db, self.store, cfg),
            folder_scanner=FolderScanner(self.db, self.store, self.extractor, cfg),
            metadata_scanner=MetadataScanner(self.db, self.extractor, cfg, show_progress=show_progress),
            cleaner=ThumbnailCleaner(self.db, self.thumbnails, cfg, show_progress=show_progress),
            cfg=cfg,
        )

    # --- Lifecycle ---

    def start(self):
        self.scheduler.start()

    def stop(self):
        self.scheduler.stop()

    def close(self):
        self.scheduler.stop()
        self.extractor.close()
        self.db_manager.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def run_until_idle(self) -> int:
        """
        Runs queued jobs in the calling thread until none are pending.
        Returns the number of jobs that ended in 'failed'.
        """
        self.db.requeue_running_jobs()
        failed = 0
        while True:
            job = self.scheduler.run_next()
            if job is None:
                return failed
            if job.status == JobStatus.FAILED:
                failed += 1

    # --- Jobs ---

    def sync_folder(self, folder_path: str, timeout: float = config.JOB_WAIT_TIMEOUT_SECONDS) -> Optional[ScanJob]:
        return self.scheduler.sync_folder(folder_path, timeout=timeout)

    def request_full_scan(self) -> ScanJob:
        return self.scheduler.request_full_scan()

    def request_metadata_scan(self, folder_path: str) -> ScanJob:
        return self.scheduler.request_metadata_scan(folder_path)

    def request_cleanup(self) -> ScanJob:
        return self.scheduler.request_cleanup()

    def wait_for_job(self, job_id: int, timeout: float = config.JOB_WAIT_TIMEOUT_SECONDS) -> ScanJob:
        return self.scheduler.wait_for_job(job_id, timeout=timeout)

    def get_job(self, job_id: int) -> Optional[ScanJob]:
        return self.scheduler.get_job(job_id)

    def status(self) -> dict:
        return self.scheduler.status()

    # --- Thumbnails & UI hooks ---

    def request_thumbnail(self, photo_id: int, force: bool = False) -> ThumbnailDecision:
        return request_thumbnail(self.db, photo_id, self.cfg, force=force)

    def record_thumbnail(self, photo_id: int, artifact_path: str):
        self.db.record_thumbnail(photo_id, artifact_path)

    def save_thumbnail(self, photo_id: int, data: bytes) -> str:
        """Writes generated thumbnail bytes to the local store and records them."""
        rel_path = self.thumbnails.save(photo_id, data)
        self.db.record_thumbnail(photo_id, rel_path)
        logging.debug(f"Stored thumbnail for photo {photo_id} at {rel_path}")
        return rel_path

    def mark_folder_visited(self, folder_path: str) -> bool:
        path = normalize_folder_path(validate_folder_path(folder_path))
        return self.db.mark_folder_visited(path)
