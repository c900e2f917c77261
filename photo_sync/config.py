"""
Configuration for the photo catalog sync engine.

Static tables and engine constants live at module level; values an operator
is expected to tune are carried by `SyncConfig`.
"""
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import List, Optional

from .exceptions import ConfigError

# --- Media Type Definitions ---
IMAGE_FORMATS = {
    '.jpg': 'image/jpeg',
    '.jpeg': 'image/jpeg',
    '.png': 'image/png',
    '.gif': 'image/gif',
    '.bmp': 'image/bmp',
    '.webp': 'image/webp',
    '.tiff': 'image/tiff',
    '.tif': 'image/tiff',
    '.svg': 'image/svg+xml',
    # RAW camera formats
    '.nef': 'image/x-nikon-nef',
    '.cr2': 'image/x-canon-cr2',
    '.cr3': 'image/x-canon-cr3',
    '.arw': 'image/x-sony-arw',
    '.dng': 'image/x-adobe-dng',
    '.raf': 'image/x-fuji-raf',
    '.orf': 'image/x-olympus-orf',
    '.rw2': 'image/x-panasonic-rw2',
    '.pef': 'image/x-pentax-pef',
    '.srw': 'image/x-samsung-srw',
    '.x3f': 'image/x-sigma-x3f',
    # Modern formats
    '.heic': 'image/heic',
    '.heif': 'image/heif',
    '.avif': 'image/avif',
}

VIDEO_FORMATS = {
    '.mp4': 'video/mp4',
    '.m4v': 'video/mp4',
    '.mov': 'video/quicktime',
    '.avi': 'video/x-msvideo',
    '.wmv': 'video/x-ms-wmv',
    '.mkv': 'video/x-matroska',
    '.webm': 'video/webm',
    '.flv': 'video/x-flv',
    '.ogv': 'video/ogg',
    '.3gp': 'video/3gpp',
    '.3g2': 'video/3gpp2',
    '.mts': 'video/mp2t',
    '.m2ts': 'video/mp2t',
    '.ts': 'video/mp2t',
}

MEDIA_FORMATS = {**IMAGE_FORMATS, **VIDEO_FORMATS}

DEFAULT_MIME_TYPE = 'application/octet-stream'

# Formats Pillow can render into a thumbnail. RAW and vector files are
# cataloged but never admitted for thumbnailing.
THUMBNAIL_EXTS = {'.jpg', '.jpeg', '.png', '.gif', '.bmp', '.webp', '.tiff', '.tif'}

ROOT_FOLDER_NAME = "Root"

# --- Metadata Parsing ---
DATE_TAGS = [
    'EXIF DateTimeOriginal',
    'EXIF DateTimeDigitized',
    'Image DateTime',
]

WIDTH_TAGS = ['EXIF ExifImageWidth', 'Image ImageWidth']
HEIGHT_TAGS = ['EXIF ExifImageLength', 'Image ImageLength']

# --- Streaming Extraction ---
METADATA_READ_CAP = 512 * 1024  # 512 KB; EXIF blocks sit at the front of the file
METADATA_READ_CHUNK = 64 * 1024
METADATA_TIMEOUT_SECONDS = 30.0

# --- Scanning & Batching ---
LIST_PAGE_SIZE = 1000
UPSERT_BATCH_SIZE = 100
FOLDER_SCAN_PROGRESS_EVERY = 50
METADATA_SCAN_PROGRESS_EVERY = 10
CLEANUP_PROGRESS_EVERY = 100

# SQLite's default host-parameter ceiling is 999 on older builds
SQL_IN_CHUNK = 500

# --- Scheduler ---
IDLE_POLL_SECONDS = 5.0
ERROR_BACKOFF_SECONDS = 10.0
JOB_WAIT_TIMEOUT_SECONDS = 30.0
JOB_WAIT_POLL_SECONDS = 0.1
BOOTSTRAP_FRESHNESS_SECONDS = 60 * 60

BYTES_PER_MB = 1024 * 1024

ENV_PREFIX = "PHOTO_SYNC_"


@dataclass
class SyncConfig:
    """
    Named configuration values consumed by the engine.

    Thresholds are in megabytes, the throttle window in seconds and the
    thumbnail retention in days.
    """
    bucket: str = ""
    endpoint_url: Optional[str] = None
    region: Optional[str] = None
    access_key: Optional[str] = None
    secret_key: Optional[str] = None

    db_path: Path = field(default_factory=lambda: Path("data") / "catalog.db")
    thumbnail_dir: Path = field(default_factory=lambda: Path("data") / "thumbnails")

    metadata_threshold_mb: int = 5
    thumbnail_threshold_mb: int = 30
    sync_throttle_seconds: int = 30
    thumbnail_max_age_days: int = 30

    page_size: int = LIST_PAGE_SIZE
    batch_size: int = UPSERT_BATCH_SIZE

    @property
    def metadata_threshold_bytes(self) -> int:
        return self.metadata_threshold_mb * BYTES_PER_MB

    @property
    def thumbnail_threshold_bytes(self) -> int:
        return self.thumbnail_threshold_mb * BYTES_PER_MB

    @classmethod
    def from_env(cls, environ=None) -> "SyncConfig":
        """Builds a config from PHOTO_SYNC_* variables, falling back to defaults."""
        env = os.environ if environ is None else environ
        cfg = cls()

        for f in fields(cls):
            raw = env.get(ENV_PREFIX + f.name.upper())
            if raw is None or raw == "":
                continue
            current = getattr(cfg, f.name)
            try:
                if isinstance(current, bool):
                    value = raw.lower() in ("1", "true", "yes")
                elif isinstance(current, int):
                    value = int(raw)
                elif isinstance(current, Path):
                    value = Path(raw)
                else:
                    value = raw
            except ValueError as e:
                raise ConfigError(f"Invalid value for {ENV_PREFIX}{f.name.upper()}: {raw!r}") from e
            setattr(cfg, f.name, value)

        return cfg

    def validate(self, require_store: bool = True) -> List[str]:
        errors = []
        if require_store and not self.bucket:
            errors.append("Bucket name is required")
        if self.metadata_threshold_mb < 1:
            errors.append("Metadata threshold must be at least 1 MB")
        if self.thumbnail_threshold_mb < 1:
            errors.append("Thumbnail threshold must be at least 1 MB")
        if self.thumbnail_max_age_days < 1:
            errors.append("Thumbnail max age must be at least 1 day")
        if self.sync_throttle_seconds < 1:
            errors.append("Sync throttle must be at least 1 second")
        if self.sync_throttle_seconds > 300:
            errors.append("Sync throttle should not exceed 5 minutes (300 seconds)")
        if not 1 <= self.page_size <= 1000:
            errors.append("Page size must be between 1 and 1000")
        if self.batch_size < 1:
            errors.append("Batch size must be at least 1")
        return errors

    def require_valid(self, require_store: bool = True) -> "SyncConfig":
        errors = self.validate(require_store=require_store)
        if errors:
            raise ConfigError("Invalid configuration: " + "; ".join(errors))
        return self
