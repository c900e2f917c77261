import logging
import sqlite3
from typing import List, Optional, Set

from .. import config
from ..config import SyncConfig
from ..database.ops import DBOperations
from ..exceptions import FolderNotFoundError
from ..metadata.extract import MetadataExtractor
from ..models import Folder, MetadataStatus, PhotoRecord, ScanJob, StoreObject
from ..store.keys import folder_prefix, get_filename_from_key, get_mime_type, is_media_file, normalize_folder_path
from .admission import initial_statuses
from .folders import FolderResolver
from .full_scan import ScanOutcome, _modified_iso


class FolderScanner:
    """
    Refreshes one folder: its immediate subfolders and its direct files.

    Unlike the full scan this extracts metadata inline for admitted files,
    since a folder scan is what a user waits on before browsing.
    """

    def __init__(self, db_ops: DBOperations, store, extractor: MetadataExtractor, cfg: SyncConfig):
        self.db = db_ops
        self.store = store
        self.extractor = extractor
        self.cfg = cfg

    def run(self, job: ScanJob) -> ScanOutcome:
        if job.folder_path is None:
            raise ValueError(f"Folder scan job #{job.id} has no folder path")
        path = normalize_folder_path(job.folder_path)

        folder: Optional[Folder] = None
        if path:
            folder = self.db.get_folder_by_path(path)
            if folder is None:
                raise FolderNotFoundError(f"Folder not found: {path}")

        logging.info(f"Scanning folder '{path or config.ROOT_FOLDER_NAME}' (job #{job.id})")
        prefix = folder_prefix(path)
        objects = self._list_all(prefix)

        subfolders: Set[str] = set()
        direct: List[StoreObject] = []
        for obj in objects:
            relative = obj.key[len(prefix):] if obj.key.startswith(prefix) else obj.key
            slash = relative.find("/")
            if slash > 0:
                subfolders.add(relative[:slash])
            elif slash == -1 and relative:
                direct.append(obj)

        if subfolders:
            parent_id = folder.id if folder else None
            rows = [(f"{prefix}{name}", name, parent_id) for name in sorted(subfolders)]
            self.db.bulk_upsert_folders(rows)
            logging.info(f"Found {len(rows)} subfolders under '{path}'")

        media = [o for o in direct if is_media_file(o.key)]
        self.db.update_job(job.id, total_items=len(media), processed_items=0)

        if media:
            folder_id = folder.id if folder else FolderResolver(self.db).resolve("")
            processed = 0
            for obj in media:
                try:
                    self._upsert_with_metadata(folder_id, obj)
                except sqlite3.Error:
                    raise
                except Exception as e:
                    logging.error(f"Error processing {obj.key} in folder scan #{job.id}: {e}")
                processed += 1
                if processed % config.FOLDER_SCAN_PROGRESS_EVERY == 0:
                    self.db.update_job(job.id, processed_items=processed)
            self.db.update_job(job.id, processed_items=processed)

        if folder is not None:
            self.db.refresh_folders([folder.id], mark_synced=True)

        logging.info(f"Folder scan #{job.id} completed: {len(media)} media files, {len(subfolders)} subfolders")
        return ScanOutcome.COMPLETED

    def _list_all(self, prefix: str) -> List[StoreObject]:
        objects: List[StoreObject] = []
        token = None
        while True:
            page = self.store.list(prefix, token, self.cfg.page_size)
            objects.extend(page.objects)
            if not page.is_truncated or not page.next_token:
                return objects
            token = page.next_token

    def _upsert_with_metadata(self, folder_id: int, obj: StoreObject):
        metadata_status, thumbnail_status = initial_statuses(obj.size, self.cfg)
        modified_at = _modified_iso(obj)
        metadata = None

        if metadata_status == MetadataStatus.NONE and not self._already_extracted(obj, modified_at):
            metadata = self.extractor.extract(obj.key)
            if metadata is not None:
                metadata_status = MetadataStatus.EXTRACTED

        filename = get_filename_from_key(obj.key)
        self.db.upsert_photo(PhotoRecord(
            folder_id=folder_id,
            filename=filename,
            s3_key=obj.key,
            size=obj.size,
            mime_type=get_mime_type(filename),
            modified_at=modified_at,
            metadata=metadata,
            metadata_status=metadata_status,
            thumbnail_status=thumbnail_status,
        ))

    def _already_extracted(self, obj: StoreObject, modified_at: str) -> bool:
        existing = self.db.get_photo_by_key(obj.key)
        return (
            existing is not None
            and existing.metadata_status == MetadataStatus.EXTRACTED
            and existing.size == obj.size
            and existing.modified_at == modified_at
        )
