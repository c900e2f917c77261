from dataclasses import dataclass
from datetime import datetime, UTC
from enum import Enum
from typing import Any, Dict, Optional


def utc_now_iso() -> str:
    """Timestamp format used for every catalog column (sortable as text)."""
    return datetime.now(UTC).isoformat()


class MetadataStatus(str, Enum):
    NONE = 'none'
    PENDING = 'pending'
    EXTRACTED = 'extracted'
    SKIPPED_SIZE = 'skipped_size'


class ThumbnailStatus(str, Enum):
    NONE = 'none'
    PENDING = 'pending'
    GENERATED = 'generated'
    SKIPPED_SIZE = 'skipped_size'


# Forward-only moves. Anything leaving a terminal state needs an explicit retry.
_METADATA_MOVES = {
    MetadataStatus.NONE: {MetadataStatus.PENDING, MetadataStatus.EXTRACTED, MetadataStatus.SKIPPED_SIZE},
    MetadataStatus.PENDING: {MetadataStatus.EXTRACTED, MetadataStatus.NONE, MetadataStatus.SKIPPED_SIZE},
    MetadataStatus.EXTRACTED: set(),
    MetadataStatus.SKIPPED_SIZE: set(),
}

_THUMBNAIL_MOVES = {
    ThumbnailStatus.NONE: {ThumbnailStatus.PENDING, ThumbnailStatus.GENERATED, ThumbnailStatus.SKIPPED_SIZE},
    ThumbnailStatus.PENDING: {ThumbnailStatus.GENERATED, ThumbnailStatus.NONE, ThumbnailStatus.SKIPPED_SIZE},
    ThumbnailStatus.GENERATED: set(),
    ThumbnailStatus.SKIPPED_SIZE: set(),
}


def can_transition(current: Enum, new: Enum, retry: bool = False) -> bool:
    """
    True when a status may move from `current` to `new`.
    Writing the same state again is always allowed.
    """
    if current == new or retry:
        return True
    moves = _METADATA_MOVES if isinstance(current, MetadataStatus) else _THUMBNAIL_MOVES
    return new in moves.get(current, set())


class JobType(str, Enum):
    FULL_SCAN = 'full_scan'
    FOLDER_SCAN = 'folder_scan'
    METADATA_SCAN = 'metadata_scan'
    CLEANUP = 'cleanup'

    @property
    def priority(self) -> int:
        """Lower runs first: folder/metadata scans, then full scans, then cleanup."""
        return _JOB_PRIORITY[self]


_JOB_PRIORITY = {
    JobType.FOLDER_SCAN: 1,
    JobType.METADATA_SCAN: 1,
    JobType.FULL_SCAN: 2,
    JobType.CLEANUP: 3,
}


class JobStatus(str, Enum):
    PENDING = 'pending'
    RUNNING = 'running'
    COMPLETED = 'completed'
    FAILED = 'failed'


@dataclass
class StoreObject:
    """One entry returned by the object store listing."""
    key: str
    size: int
    last_modified: datetime
    etag: str = ""


@dataclass
class ListPage:
    objects: list
    next_token: Optional[str] = None
    is_truncated: bool = False


@dataclass
class PhotoMetadata:
    """
    Embedded metadata parsed from the head of a media object.
    Every field is optional; an instance with nothing set is a valid
    "nothing found" result.
    """
    date_taken: Optional[datetime] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    width: Optional[int] = None
    height: Optional[int] = None
    duration_sec: Optional[float] = None

    def is_empty(self) -> bool:
        return not self.to_dict()

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        if self.date_taken:
            data['date_taken'] = self.date_taken.isoformat()
        if self.latitude is not None and self.longitude is not None:
            data['location'] = {'latitude': self.latitude, 'longitude': self.longitude}
        if self.width and self.height:
            data['dimensions'] = {'width': self.width, 'height': self.height}
        if self.duration_sec is not None:
            data['duration_sec'] = self.duration_sec
        return data

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "PhotoMetadata":
        if not data:
            return cls()
        location = data.get('location') or {}
        dims = data.get('dimensions') or {}
        taken = data.get('date_taken')
        return cls(
            date_taken=datetime.fromisoformat(taken) if taken else None,
            latitude=location.get('latitude'),
            longitude=location.get('longitude'),
            width=dims.get('width'),
            height=dims.get('height'),
            duration_sec=data.get('duration_sec'),
        )


@dataclass
class Folder:
    id: int
    path: str
    name: str
    parent_id: Optional[int]
    photo_count: int = 0
    subfolder_count: int = 0
    last_synced: Optional[str] = None
    last_visited: Optional[str] = None


@dataclass
class PhotoRecord:
    """
    A file staged for the catalog. `s3_key` is the natural key for upserts.
    """
    folder_id: int
    filename: str
    s3_key: str
    size: int
    mime_type: str
    modified_at: str
    metadata: Optional[PhotoMetadata] = None
    metadata_status: MetadataStatus = MetadataStatus.NONE
    thumbnail_status: ThumbnailStatus = ThumbnailStatus.NONE


@dataclass
class Photo:
    """A file row as stored in the catalog."""
    id: int
    folder_id: int
    filename: str
    s3_key: str
    size: int
    mime_type: str
    modified_at: str
    metadata: Optional[PhotoMetadata]
    metadata_status: MetadataStatus
    thumbnail_status: ThumbnailStatus
    thumbnail_path: Optional[str] = None
    thumbnail_generated_at: Optional[str] = None
    last_synced: Optional[str] = None


@dataclass
class ScanJob:
    id: int
    type: JobType
    status: JobStatus
    folder_path: Optional[str] = None
    processed_items: int = 0
    total_items: int = 0
    created_at: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    error_message: Optional[str] = None
    resume_token: Optional[str] = None
    resume_processed: int = 0
