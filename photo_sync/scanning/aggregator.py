import logging
from typing import Iterable

from ..database.ops import DBOperations


class FolderAggregator:
    """Recomputes folder counts and sync timestamps in bulk after a scan."""

    def __init__(self, db_ops: DBOperations):
        self.db = db_ops

    def refresh(self, folder_ids: Iterable[int]) -> int:
        ids = set(folder_ids)
        if not ids:
            return 0
        updated = self.db.refresh_folders(ids, mark_synced=True)
        logging.info(f"Refreshed counts for {updated} folders")
        return updated

    def refresh_all(self) -> int:
        return self.refresh(self.db.get_all_folder_ids())
