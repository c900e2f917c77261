import json
import sqlite3
import logging
import threading
from contextlib import contextmanager
from typing import Optional, List, Dict, Any, Iterable, Sequence, Tuple

from .. import config
from ..exceptions import PhotoNotFoundError, StatusTransitionError
from ..models import (
    Folder, Photo, PhotoRecord, PhotoMetadata, ScanJob,
    MetadataStatus, ThumbnailStatus, JobType, JobStatus,
    can_transition, utc_now_iso,
)

# Columns a job update may touch
_JOB_COLUMNS = {
    'status', 'processed_items', 'total_items', 'started_at', 'completed_at',
    'error_message', 'resume_token', 'resume_processed',
}

# An object is "unchanged" when the store reports the same size and mtime
_UNCHANGED = "photos.size = excluded.size AND photos.modified_at = excluded.modified_at"

_UPSERT_PHOTO_SQL = f"""
    INSERT INTO photos (
        folder_id, filename, s3_key, size, mime_type, modified_at,
        metadata, metadata_status, thumbnail_status, created_at, last_synced
    )
    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    ON CONFLICT(s3_key) DO UPDATE SET
        folder_id = excluded.folder_id,
        filename = excluded.filename,
        size = excluded.size,
        mime_type = excluded.mime_type,
        modified_at = excluded.modified_at,
        metadata = CASE
            WHEN photos.metadata_status = 'extracted' AND excluded.metadata_status != 'extracted'
                 AND {_UNCHANGED}
            THEN photos.metadata ELSE excluded.metadata END,
        metadata_status = CASE
            WHEN photos.metadata_status = 'extracted' AND {_UNCHANGED}
            THEN photos.metadata_status ELSE excluded.metadata_status END,
        thumbnail_status = CASE
            WHEN photos.thumbnail_status = 'generated' AND {_UNCHANGED}
            THEN photos.thumbnail_status ELSE excluded.thumbnail_status END,
        thumbnail_path = CASE WHEN {_UNCHANGED} THEN photos.thumbnail_path ELSE NULL END,
        thumbnail_generated_at = CASE WHEN {_UNCHANGED} THEN photos.thumbnail_generated_at ELSE NULL END,
        last_synced = excluded.last_synced
"""


def _chunks(items: Sequence, size: int = config.SQL_IN_CHUNK) -> Iterable[Sequence]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


def _metadata_json(metadata: Optional[PhotoMetadata]) -> Optional[str]:
    if metadata is None:
        return None
    return json.dumps(metadata.to_dict())


class DBOperations:
    """
    Catalog reads and writes. Every public method runs in its own
    transaction under the shared connection lock.
    """

    def __init__(self, conn: sqlite3.Connection, lock: Optional[threading.RLock] = None):
        self.conn = conn
        self._lock = lock or threading.RLock()

    @contextmanager
    def _tx(self):
        with self._lock:
            with self.conn:
                cur = self.conn.cursor()
                cur.row_factory = sqlite3.Row
                yield cur

    # --- Folders ---

    def get_folder_by_path(self, path: str) -> Optional[Folder]:
        with self._tx() as cur:
            cur.execute("SELECT * FROM folders WHERE path = ?", (path,))
            row = cur.fetchone()
        return self._to_folder(row) if row else None

    def get_folders_by_paths(self, paths: Sequence[str]) -> List[Folder]:
        """One IN query per chunk rather than one lookup per path."""
        paths = list(paths)
        if not paths:
            return []
        found = []
        with self._tx() as cur:
            for chunk in _chunks(paths):
                placeholders = ",".join("?" * len(chunk))
                cur.execute(f"SELECT * FROM folders WHERE path IN ({placeholders})", tuple(chunk))
                found.extend(self._to_folder(r) for r in cur.fetchall())
        return found

    def get_all_folder_ids(self) -> List[int]:
        with self._tx() as cur:
            cur.execute("SELECT id FROM folders")
            return [r[0] for r in cur.fetchall()]

    def upsert_folder(self, path: str, name: str, parent_id: Optional[int]) -> Folder:
        return self.bulk_upsert_folders([(path, name, parent_id)])[0]

    def bulk_upsert_folders(self, folders: Sequence[Tuple[str, str, Optional[int]]]) -> List[Folder]:
        """Insert-or-update by path; returns the stored rows in input order."""
        now_iso = utc_now_iso()
        results = []
        with self._tx() as cur:
            for path, name, parent_id in folders:
                cur.execute("""
                    INSERT INTO folders (path, name, parent_id, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(path) DO UPDATE SET
                        name = excluded.name,
                        parent_id = excluded.parent_id,
                        updated_at = excluded.updated_at
                """, (path, name, parent_id, now_iso, now_iso))
                cur.execute("SELECT * FROM folders WHERE path = ?", (path,))
                results.append(self._to_folder(cur.fetchone()))
        return results

    def refresh_folders(self, folder_ids: Iterable[int], mark_synced: bool = True) -> int:
        """
        Recomputes photo/subfolder counts (and optionally last_synced) for
        the given folders in one statement per chunk.
        """
        ids = sorted(set(folder_ids))
        if not ids:
            return 0
        now_iso = utc_now_iso()
        updated = 0
        with self._tx() as cur:
            for chunk in _chunks(ids):
                placeholders = ",".join("?" * len(chunk))
                cur.execute(f"""
                    UPDATE folders SET
                        photo_count = (SELECT COUNT(*) FROM photos p WHERE p.folder_id = folders.id),
                        subfolder_count = (SELECT COUNT(*) FROM folders c WHERE c.parent_id = folders.id),
                        last_synced = CASE WHEN ? THEN ? ELSE last_synced END,
                        updated_at = ?
                    WHERE id IN ({placeholders})
                """, (int(mark_synced), now_iso, now_iso, *chunk))
                updated += cur.rowcount
        return updated

    def mark_folder_visited(self, path: str) -> bool:
        now_iso = utc_now_iso()
        with self._tx() as cur:
            cur.execute(
                "UPDATE folders SET last_visited = ?, updated_at = ? WHERE path = ?",
                (now_iso, now_iso, path),
            )
            return cur.rowcount > 0

    # --- Photos ---

    def upsert_photo(self, rec: PhotoRecord) -> Photo:
        self.bulk_upsert_photos([rec])
        photo = self.get_photo_by_key(rec.s3_key)
        if photo is None:
            raise RuntimeError(f"Upsert of {rec.s3_key} did not produce a row.")
        return photo

    def bulk_upsert_photos(self, records: Sequence[PhotoRecord]) -> int:
        """
        Insert-or-update keyed by s3_key, in one transaction.
        Completed extraction/thumbnail work on an unchanged object is kept.
        """
        if not records:
            return 0
        now_iso = utc_now_iso()
        rows = [
            (
                r.folder_id, r.filename, r.s3_key, r.size, r.mime_type, r.modified_at,
                _metadata_json(r.metadata), MetadataStatus(r.metadata_status).value,
                ThumbnailStatus(r.thumbnail_status).value, now_iso, now_iso,
            )
            for r in records
        ]
        with self._tx() as cur:
            cur.executemany(_UPSERT_PHOTO_SQL, rows)
        return len(rows)

    def get_photo(self, photo_id: int) -> Optional[Photo]:
        with self._tx() as cur:
            cur.execute("SELECT * FROM photos WHERE id = ?", (photo_id,))
            row = cur.fetchone()
        return self._to_photo(row) if row else None

    def get_photo_by_key(self, s3_key: str) -> Optional[Photo]:
        with self._tx() as cur:
            cur.execute("SELECT * FROM photos WHERE s3_key = ?", (s3_key,))
            row = cur.fetchone()
        return self._to_photo(row) if row else None

    def select_photos_needing_metadata(self, folder_id: int, max_size: int) -> List[Photo]:
        """Smallest first so progress shows early and outliers go last."""
        with self._tx() as cur:
            cur.execute("""
                SELECT * FROM photos
                WHERE folder_id = ?
                  AND metadata_status IN ('none', 'pending')
                  AND size <= ?
                ORDER BY size ASC, id ASC
            """, (folder_id, max_size))
            return [self._to_photo(r) for r in cur.fetchall()]

    def set_metadata_status(self, photo_id: int, status: MetadataStatus, retry: bool = False):
        self._set_status(photo_id, 'metadata_status', MetadataStatus, status, retry)

    def set_thumbnail_status(self, photo_id: int, status: ThumbnailStatus, retry: bool = False):
        self._set_status(photo_id, 'thumbnail_status', ThumbnailStatus, status, retry)

    def _set_status(self, photo_id, column, enum_cls, status, retry):
        new = enum_cls(status)
        with self._tx() as cur:
            cur.execute(f"SELECT {column} FROM photos WHERE id = ?", (photo_id,))
            row = cur.fetchone()
            if row is None:
                raise PhotoNotFoundError(f"Photo {photo_id} not found")
            current = enum_cls(row[0])
            if not can_transition(current, new, retry=retry):
                raise StatusTransitionError(
                    f"Photo {photo_id}: {column} cannot move from '{current.value}' to '{new.value}'"
                )
            cur.execute(f"UPDATE photos SET {column} = ? WHERE id = ?", (new.value, photo_id))

    def update_photo_metadata(self, photo_id: int, metadata: PhotoMetadata):
        """Stores the parsed blob (possibly empty) and marks it extracted."""
        with self._tx() as cur:
            cur.execute("SELECT metadata_status FROM photos WHERE id = ?", (photo_id,))
            row = cur.fetchone()
            if row is None:
                raise PhotoNotFoundError(f"Photo {photo_id} not found")
            current = MetadataStatus(row[0])
            if not can_transition(current, MetadataStatus.EXTRACTED):
                raise StatusTransitionError(
                    f"Photo {photo_id}: metadata_status cannot move from '{current.value}' to 'extracted'"
                )
            cur.execute(
                "UPDATE photos SET metadata = ?, metadata_status = ? WHERE id = ?",
                (_metadata_json(metadata), MetadataStatus.EXTRACTED.value, photo_id),
            )

    def record_thumbnail(self, photo_id: int, thumbnail_path: str, generated_at: Optional[str] = None):
        with self._tx() as cur:
            cur.execute("SELECT thumbnail_status FROM photos WHERE id = ?", (photo_id,))
            row = cur.fetchone()
            if row is None:
                raise PhotoNotFoundError(f"Photo {photo_id} not found")
            current = ThumbnailStatus(row[0])
            # Regenerating an existing thumbnail refreshes it in place
            if current != ThumbnailStatus.GENERATED and not can_transition(current, ThumbnailStatus.GENERATED):
                raise StatusTransitionError(
                    f"Photo {photo_id}: thumbnail_status cannot move from '{current.value}' to 'generated'"
                )
            cur.execute("""
                UPDATE photos
                SET thumbnail_path = ?, thumbnail_generated_at = ?, thumbnail_status = ?
                WHERE id = ?
            """, (thumbnail_path, generated_at or utc_now_iso(), ThumbnailStatus.GENERATED.value, photo_id))

    def expire_thumbnails(self, cutoff_iso: str) -> List[str]:
        """
        Clears thumbnail references generated before `cutoff_iso` and returns
        the artifact paths so the caller can delete them. The status goes back
        to 'none' so a later request regenerates it.
        """
        with self._tx() as cur:
            cur.execute("""
                SELECT id, thumbnail_path FROM photos
                WHERE thumbnail_path IS NOT NULL
                  AND thumbnail_generated_at IS NOT NULL
                  AND thumbnail_generated_at < ?
            """, (cutoff_iso,))
            rows = cur.fetchall()
            for chunk in _chunks([r[0] for r in rows]):
                placeholders = ",".join("?" * len(chunk))
                cur.execute(f"""
                    UPDATE photos
                    SET thumbnail_path = NULL, thumbnail_generated_at = NULL, thumbnail_status = 'none'
                    WHERE id IN ({placeholders})
                """, tuple(chunk))
        return [r[1] for r in rows]

    # --- Jobs ---

    def create_job(self, job_type: JobType, folder_path: Optional[str] = None) -> ScanJob:
        with self._tx() as cur:
            cur.execute(
                "INSERT INTO sync_jobs (type, folder_path, created_at) VALUES (?, ?, ?)",
                (JobType(job_type).value, folder_path, utc_now_iso()),
            )
            job_id = cur.lastrowid
            if job_id is None:
                raise RuntimeError("Database INSERT failed to return a row ID.")
            cur.execute("SELECT * FROM sync_jobs WHERE id = ?", (job_id,))
            return self._to_job(cur.fetchone())

    def get_job(self, job_id: int) -> Optional[ScanJob]:
        with self._tx() as cur:
            cur.execute("SELECT * FROM sync_jobs WHERE id = ?", (job_id,))
            row = cur.fetchone()
        return self._to_job(row) if row else None

    def update_job(self, job_id: int, **fields: Any):
        """Partial update; only the named columns are written."""
        unknown = set(fields) - _JOB_COLUMNS
        if unknown:
            raise ValueError(f"Unknown job fields: {sorted(unknown)}")
        if not fields:
            return
        names = list(fields)
        values = [fields[n].value if isinstance(fields[n], JobStatus) else fields[n] for n in names]
        assignments = ", ".join(f"{n} = ?" for n in names)
        with self._tx() as cur:
            cur.execute(f"UPDATE sync_jobs SET {assignments} WHERE id = ?", (*values, job_id))

    def get_active_jobs(self) -> List[ScanJob]:
        with self._tx() as cur:
            cur.execute("""
                SELECT * FROM sync_jobs
                WHERE status IN ('pending', 'running')
                ORDER BY id ASC
            """)
            return [self._to_job(r) for r in cur.fetchall()]

    def has_pending_jobs(self, job_types: Iterable[JobType]) -> bool:
        types = [JobType(t).value for t in job_types]
        if not types:
            return False
        placeholders = ",".join("?" * len(types))
        with self._tx() as cur:
            cur.execute(
                f"SELECT 1 FROM sync_jobs WHERE status = 'pending' AND type IN ({placeholders}) LIMIT 1",
                tuple(types),
            )
            return cur.fetchone() is not None

    def last_completed_job(self, job_type: JobType) -> Optional[ScanJob]:
        with self._tx() as cur:
            cur.execute("""
                SELECT * FROM sync_jobs
                WHERE type = ? AND status = 'completed' AND completed_at IS NOT NULL
                ORDER BY completed_at DESC
                LIMIT 1
            """, (JobType(job_type).value,))
            row = cur.fetchone()
        return self._to_job(row) if row else None

    def requeue_running_jobs(self) -> int:
        """Returns jobs orphaned by a previous process to the queue."""
        with self._tx() as cur:
            cur.execute("UPDATE sync_jobs SET status = 'pending' WHERE status = 'running'")
            return cur.rowcount

    # --- Statistics ---

    def catalog_stats(self) -> Dict[str, Any]:
        with self._tx() as cur:
            cur.execute("""
                SELECT COUNT(*), COALESCE(SUM(size), 0), COUNT(DISTINCT folder_id)
                FROM photos
            """)
            total_photos, total_bytes, folders_with_photos = cur.fetchone()
            cur.execute("SELECT COUNT(*) FROM folders")
            total_folders = cur.fetchone()[0]

            cur.execute("SELECT metadata_status, COUNT(*) FROM photos GROUP BY metadata_status")
            metadata_counts = {r[0]: r[1] for r in cur.fetchall()}
            cur.execute("SELECT thumbnail_status, COUNT(*) FROM photos GROUP BY thumbnail_status")
            thumbnail_counts = {r[0]: r[1] for r in cur.fetchall()}

            cur.execute("""
                SELECT path, photo_count FROM folders
                WHERE photo_count > 0
                ORDER BY photo_count DESC, path ASC
                LIMIT 10
            """)
            largest = [(r[0], r[1]) for r in cur.fetchall()]

        return {
            'total_photos': total_photos,
            'total_bytes': total_bytes,
            'total_folders': total_folders,
            'folders_with_photos': folders_with_photos,
            'metadata_status': {s.value: metadata_counts.get(s.value, 0) for s in MetadataStatus},
            'thumbnail_status': {s.value: thumbnail_counts.get(s.value, 0) for s in ThumbnailStatus},
            'largest_folders': largest,
        }

    def folder_report_rows(self) -> List[Dict[str, Any]]:
        """Per-folder counts joined with per-status photo tallies."""
        with self._tx() as cur:
            cur.execute("""
                SELECT
                    f.path, f.photo_count, f.subfolder_count, f.last_synced,
                    COALESCE(SUM(p.size), 0) AS total_bytes,
                    SUM(CASE WHEN p.metadata_status = 'extracted' THEN 1 ELSE 0 END) AS metadata_extracted,
                    SUM(CASE WHEN p.metadata_status = 'skipped_size' THEN 1 ELSE 0 END) AS metadata_skipped,
                    SUM(CASE WHEN p.thumbnail_status = 'generated' THEN 1 ELSE 0 END) AS thumbnails_generated,
                    SUM(CASE WHEN p.thumbnail_status = 'skipped_size' THEN 1 ELSE 0 END) AS thumbnails_skipped
                FROM folders f
                LEFT JOIN photos p ON p.folder_id = f.id
                GROUP BY f.id
                ORDER BY f.path
            """)
            rows = [dict(r) for r in cur.fetchall()]

        # SUM over an empty LEFT JOIN yields NULL
        for row in rows:
            for key, value in row.items():
                if value is None and key != 'last_synced':
                    row[key] = 0
        return rows

    # --- Row mapping ---

    @staticmethod
    def _to_folder(row: sqlite3.Row) -> Folder:
        return Folder(
            id=row['id'],
            path=row['path'],
            name=row['name'],
            parent_id=row['parent_id'],
            photo_count=row['photo_count'],
            subfolder_count=row['subfolder_count'],
            last_synced=row['last_synced'],
            last_visited=row['last_visited'],
        )

    @staticmethod
    def _to_photo(row: sqlite3.Row) -> Photo:
        metadata = None
        if row['metadata'] is not None:
            try:
                metadata = PhotoMetadata.from_dict(json.loads(row['metadata']))
            except (ValueError, TypeError) as e:
                logging.warning(f"Unreadable metadata blob for {row['s3_key']}: {e}")
        return Photo(
            id=row['id'],
            folder_id=row['folder_id'],
            filename=row['filename'],
            s3_key=row['s3_key'],
            size=row['size'],
            mime_type=row['mime_type'],
            modified_at=row['modified_at'],
            metadata=metadata,
            metadata_status=MetadataStatus(row['metadata_status']),
            thumbnail_status=ThumbnailStatus(row['thumbnail_status']),
            thumbnail_path=row['thumbnail_path'],
            thumbnail_generated_at=row['thumbnail_generated_at'],
            last_synced=row['last_synced'],
        )

    @staticmethod
    def _to_job(row: sqlite3.Row) -> ScanJob:
        return ScanJob(
            id=row['id'],
            type=JobType(row['type']),
            status=JobStatus(row['status']),
            folder_path=row['folder_path'],
            processed_items=row['processed_items'],
            total_items=row['total_items'],
            created_at=row['created_at'],
            started_at=row['started_at'],
            completed_at=row['completed_at'],
            error_message=row['error_message'],
            resume_token=row['resume_token'],
            resume_processed=row['resume_processed'],
        )
