import logging
import sqlite3

from tqdm import tqdm

from .. import config
from ..config import SyncConfig
from ..database.ops import DBOperations
from ..exceptions import FolderNotFoundError, MetadataExtractionError
from ..metadata.extract import MetadataExtractor
from ..models import MetadataStatus, Photo, ScanJob
from ..store.keys import normalize_folder_path
from .full_scan import ScanOutcome


class MetadataScanner:
    """
    Backfills embedded metadata for the admitted photos of one folder,
    smallest first. A photo that fails goes back to 'none' so the next
    scan retries it; the rest of the folder carries on.
    """

    def __init__(self, db_ops: DBOperations, extractor: MetadataExtractor, cfg: SyncConfig,
                 show_progress: bool = False):
        self.db = db_ops
        self.extractor = extractor
        self.cfg = cfg
        self.show_progress = show_progress

    def run(self, job: ScanJob) -> ScanOutcome:
        if job.folder_path is None:
            raise ValueError(f"Metadata scan job #{job.id} has no folder path")
        path = normalize_folder_path(job.folder_path)

        folder = self.db.get_folder_by_path(path)
        if folder is None:
            raise FolderNotFoundError(f"Folder not found: {path}")

        photos = self.db.select_photos_needing_metadata(folder.id, self.cfg.metadata_threshold_bytes)
        self.db.update_job(job.id, total_items=len(photos), processed_items=0)
        logging.info(
            f"Metadata scan #{job.id}: {len(photos)} photos in '{path}' "
            f"at or under {self.cfg.metadata_threshold_mb}MB"
        )

        processed = 0
        extracted = 0
        for photo in tqdm(photos, desc="Extracting metadata", unit="photo", disable=not self.show_progress):
            if self._extract_one(photo):
                extracted += 1
            processed += 1
            if processed % config.METADATA_SCAN_PROGRESS_EVERY == 0:
                self.db.update_job(job.id, processed_items=processed)

        self.db.update_job(job.id, processed_items=processed)
        logging.info(f"Metadata scan #{job.id} completed: {extracted}/{processed} extracted")
        return ScanOutcome.COMPLETED

    def _extract_one(self, photo: Photo) -> bool:
        try:
            self.db.set_metadata_status(photo.id, MetadataStatus.PENDING)
            metadata = self.extractor.extract(photo.s3_key)
            if metadata is None:
                raise MetadataExtractionError(f"No readable bytes for {photo.s3_key}")
            if metadata.is_empty():
                logging.debug(f"No embedded metadata in {photo.s3_key}")
            self.db.update_photo_metadata(photo.id, metadata)
            return True
        except sqlite3.Error:
            raise
        except Exception as e:
            logging.warning(f"Metadata extraction failed for {photo.s3_key}: {e}")
            self.db.set_metadata_status(photo.id, MetadataStatus.NONE, retry=True)
            return False
