import logging
from datetime import datetime, timedelta, UTC

from tqdm import tqdm

from .. import config
from ..config import SyncConfig
from ..database.ops import DBOperations
from ..models import ScanJob
from ..thumbnails import ThumbnailStore
from .full_scan import ScanOutcome


class ThumbnailCleaner:
    """Expires thumbnails older than the retention window and deletes their files."""

    def __init__(self, db_ops: DBOperations, thumbnails: ThumbnailStore, cfg: SyncConfig,
                 show_progress: bool = False):
        self.db = db_ops
        self.thumbnails = thumbnails
        self.cfg = cfg
        self.show_progress = show_progress

    def run(self, job: ScanJob) -> ScanOutcome:
        cutoff = datetime.now(UTC) - timedelta(days=self.cfg.thumbnail_max_age_days)
        paths = self.db.expire_thumbnails(cutoff.isoformat())
        self.db.update_job(job.id, total_items=len(paths), processed_items=0)
        logging.info(f"Cleanup #{job.id}: {len(paths)} thumbnails older than {self.cfg.thumbnail_max_age_days} days")

        deleted = 0
        processed = 0
        for rel_path in tqdm(paths, desc="Removing thumbnails", unit="file", disable=not self.show_progress):
            try:
                if not self.thumbnails.exists(rel_path):
                    logging.debug(f"Thumbnail {rel_path} already missing from disk")
                elif self.thumbnails.delete(rel_path):
                    deleted += 1
            except OSError as e:
                logging.error(f"Failed to delete thumbnail {rel_path}: {e}")
            processed += 1
            if processed % config.CLEANUP_PROGRESS_EVERY == 0:
                self.db.update_job(job.id, processed_items=processed)

        self.db.update_job(job.id, processed_items=processed)
        logging.info(f"Cleanup #{job.id} completed: deleted {deleted} of {len(paths)} thumbnail files")
        return ScanOutcome.COMPLETED
