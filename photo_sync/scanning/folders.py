import logging
from typing import Dict, Set

from ..database.ops import DBOperations
from ..store.keys import ancestor_chain, folder_name, normalize_folder_path


class FolderResolver:
    """
    Maps folder paths to catalog ids, creating missing folders top-down.

    One resolver lives for one scan. A path seen thousands of times costs a
    dictionary hit after its first resolution, and a cache miss checks the
    whole missing ancestor chain with a single query before creating the rest.
    """

    def __init__(self, db_ops: DBOperations):
        self.db = db_ops
        self._ids: Dict[str, int] = {}
        self._seen: Set[str] = set()
        self.created_count = 0

    def resolve(self, path: str) -> int:
        path = normalize_folder_path(path)
        cached = self._ids.get(path)
        if cached is not None and path in self._seen:
            return cached

        if path == "":
            return self._resolve_root()

        chain = ancestor_chain(path)
        missing = [p for p in chain if p not in self._ids]
        if missing:
            for folder in self.db.get_folders_by_paths(missing):
                self._ids[folder.path] = folder.id

        parent_id = None
        for current in chain:
            folder_id = self._ids.get(current)
            if folder_id is None:
                folder = self.db.upsert_folder(current, folder_name(current), parent_id)
                folder_id = folder.id
                self._ids[current] = folder_id
                self.created_count += 1
                logging.debug(f"Created folder '{current}' (parent={parent_id})")
            self._seen.add(current)
            parent_id = folder_id

        return parent_id

    def _resolve_root(self) -> int:
        folder_id = self._ids.get("")
        if folder_id is None:
            folder = self.db.get_folder_by_path("")
            if folder is None:
                folder = self.db.upsert_folder("", folder_name(""), None)
                self.created_count += 1
            folder_id = folder.id
            self._ids[""] = folder_id
        self._seen.add("")
        return folder_id

    @property
    def touched_ids(self) -> Set[int]:
        """Ids of every folder resolved during this scan, ancestors included."""
        return {self._ids[p] for p in self._seen if p in self._ids}

    def __len__(self) -> int:
        return len(self._seen)
