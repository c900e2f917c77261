import logging
from typing import Callable, List, Optional

from .. import config
from ..database.ops import DBOperations
from ..models import PhotoRecord


class PhotoBatcher:
    """
    Stages photo records and flushes them to the catalog in bounded batches.

    `on_flush` is called after every successful flush with the number of
    records written, which is where scans checkpoint their progress.
    """

    def __init__(self,
                 db_ops: DBOperations,
                 batch_size: int = config.UPSERT_BATCH_SIZE,
                 on_flush: Optional[Callable[[int], None]] = None):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.db = db_ops
        self.batch_size = batch_size
        self.on_flush = on_flush
        self._staged: List[PhotoRecord] = []
        self.flushed_total = 0

    def add(self, record: PhotoRecord) -> bool:
        """Stages a record; returns True if this call triggered a flush."""
        self._staged.append(record)
        if len(self._staged) >= self.batch_size:
            self.flush()
            return True
        return False

    def flush(self) -> int:
        if not self._staged:
            return 0
        batch, self._staged = self._staged, []
        written = self.db.bulk_upsert_photos(batch)
        self.flushed_total += written
        logging.debug(f"Flushed {written} photo records ({self.flushed_total} this scan)")
        if self.on_flush:
            self.on_flush(written)
        return written

    @property
    def pending(self) -> int:
        return len(self._staged)
