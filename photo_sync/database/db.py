"""
Catalog connection management.
"""
import sqlite3
import logging
import threading
from pathlib import Path
from typing import Optional, Union

from .ops import DBOperations
from .schema import init_schema

# Safe for one writer thread plus polling readers
_PRAGMAS = (
    "PRAGMA journal_mode=WAL;",
    "PRAGMA synchronous=NORMAL;",
    "PRAGMA temp_store=MEMORY;",
    "PRAGMA cache_size=-64000;",  # ~64MB cache
    "PRAGMA foreign_keys=ON;",
    "PRAGMA busy_timeout=5000;",
)


class DBManager:
    """
    Owns the single catalog connection. The scheduler thread and callers
    waiting on jobs share it, so every access goes through one shared lock.
    """

    def __init__(self, db_path: Union[str, Path]):
        self.db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()

    def connect(self) -> sqlite3.Connection:
        if self._conn:
            return self._conn

        in_memory = str(self.db_path) == ":memory:"
        if not in_memory:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        logging.info(f"Opening catalog: {self.db_path}")
        conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        for pragma in _PRAGMAS:
            if in_memory and "journal_mode" in pragma:
                continue
            conn.execute(pragma)

        init_schema(conn)
        self._conn = conn
        return conn

    def operations(self) -> DBOperations:
        """Catalog operations bound to this connection and its lock."""
        return DBOperations(self.connect(), self._lock)

    def close(self):
        if self._conn:
            with self._lock:
                self._conn.close()
            self._conn = None

    def __enter__(self):
        return self.connect()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()