import logging
import sqlite3
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from ..config import SyncConfig
from ..database.ops import DBOperations
from ..models import PhotoRecord, ScanJob, StoreObject
from ..store.keys import get_filename_from_key, get_folder_from_key, get_mime_type, is_media_file
from .admission import initial_statuses
from .aggregator import FolderAggregator
from .batching import PhotoBatcher
from .folders import FolderResolver


class ScanOutcome(str, Enum):
    COMPLETED = 'completed'
    PREEMPTED = 'preempted'


@dataclass
class _Progress:
    processed: int = 0
    total: int = 0


def _modified_iso(obj: StoreObject) -> str:
    lm = obj.last_modified
    return lm.isoformat() if hasattr(lm, "isoformat") else str(lm)


class FullScanner:
    """
    Mirrors the whole store into the catalog.

    The listing runs one page ahead of processing on a single worker thread,
    so at most two pages are held at once. Records are staged and flushed in
    batches; progress is written after every flush and a resume checkpoint
    after every page. Metadata is never extracted here.
    """

    def __init__(self, db_ops: DBOperations, store, cfg: SyncConfig):
        self.db = db_ops
        self.store = store
        self.cfg = cfg

    def run(self, job: ScanJob, should_yield: Optional[Callable[[], bool]] = None) -> ScanOutcome:
        resumed = job.resume_token is not None
        token = job.resume_token
        progress = _Progress()
        if resumed:
            progress.processed = progress.total = job.resume_processed
            logging.info(f"Resuming full scan #{job.id} at {progress.processed} objects")
        else:
            logging.info(f"Starting full store scan #{job.id} (read-only)")

        resolver = FolderResolver(self.db)
        batcher = PhotoBatcher(
            self.db,
            batch_size=self.cfg.batch_size,
            on_flush=lambda _n: self.db.update_job(job.id, processed_items=progress.processed),
        )

        page_number = 0
        with ThreadPoolExecutor(max_workers=1, thread_name_prefix="list-ahead") as lister:
            pending = lister.submit(self.store.list, "", token, self.cfg.page_size)

            while pending is not None:
                page = pending.result()
                page_number += 1
                next_token = page.next_token if page.is_truncated else None

                # Fetch page N+1 while page N is written to the catalog
                pending = lister.submit(self.store.list, "", next_token, self.cfg.page_size) if next_token else None

                progress.total += len(page.objects)
                self.db.update_job(job.id, total_items=progress.total, processed_items=progress.processed)

                for obj in page.objects:
                    self._process_object(job, obj, resolver, batcher, progress)

                batcher.flush()
                self.db.update_job(
                    job.id,
                    processed_items=progress.processed,
                    total_items=progress.total,
                    resume_token=next_token,
                    resume_processed=progress.processed,
                )
                logging.debug(f"Full scan #{job.id} page {page_number}: {progress.processed}/{progress.total}")

                if next_token and should_yield and should_yield():
                    if pending is not None:
                        pending.cancel()
                    logging.info(
                        f"Full scan #{job.id} yielding at {progress.processed} objects "
                        f"for higher-priority work"
                    )
                    return ScanOutcome.PREEMPTED

        aggregator = FolderAggregator(self.db)
        if resumed:
            # Folders touched before the resume are not in this resolver
            aggregator.refresh_all()
        else:
            aggregator.refresh(resolver.touched_ids)

        self.db.update_job(
            job.id,
            processed_items=progress.processed,
            total_items=progress.total,
            resume_token=None,
            resume_processed=0,
        )
        logging.info(
            f"Full scan #{job.id} completed: processed {progress.processed}/{progress.total} objects, "
            f"created {resolver.created_count} folders"
        )
        return ScanOutcome.COMPLETED

    def _process_object(self, job: ScanJob, obj: StoreObject, resolver: FolderResolver,
                        batcher: PhotoBatcher, progress: _Progress):
        try:
            # Directory shape is ingested for every key, media or not
            folder_id = resolver.resolve(get_folder_from_key(obj.key))

            if not is_media_file(obj.key):
                progress.processed += 1
                logging.debug(f"Skipping non-media object {obj.key}")
                return

            metadata_status, thumbnail_status = initial_statuses(obj.size, self.cfg)
            filename = get_filename_from_key(obj.key)
            progress.processed += 1
            batcher.add(PhotoRecord(
                folder_id=folder_id,
                filename=filename,
                s3_key=obj.key,
                size=obj.size,
                mime_type=get_mime_type(filename),
                modified_at=_modified_iso(obj),
                metadata_status=metadata_status,
                thumbnail_status=thumbnail_status,
            ))
        except sqlite3.Error:
            raise
        except Exception as e:
            logging.error(f"Error processing {obj.key} during full scan #{job.id}: {e}")
            progress.processed += 1
