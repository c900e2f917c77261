"""
Size/type admission for metadata extraction and thumbnail generation.

Pure functions: no catalog or store access. A size exactly at a threshold
is admitted; one byte over is skipped.
"""
from enum import Enum
from typing import Tuple

from .. import config
from ..config import SyncConfig
from ..models import MetadataStatus, ThumbnailStatus
from ..store.keys import get_extension


class ThumbnailDecision(str, Enum):
    GENERATE = 'generate'
    SKIP_SIZE = 'skip_size'
    UNSUPPORTED = 'unsupported'


def metadata_admitted(size_bytes: int, cfg: SyncConfig) -> bool:
    return size_bytes <= cfg.metadata_threshold_bytes


def thumbnail_admitted(size_bytes: int, cfg: SyncConfig) -> bool:
    return size_bytes <= cfg.thumbnail_threshold_bytes


def initial_statuses(size_bytes: int, cfg: SyncConfig) -> Tuple[MetadataStatus, ThumbnailStatus]:
    """Statuses a freshly listed object starts with."""
    metadata_status = MetadataStatus.NONE if metadata_admitted(size_bytes, cfg) else MetadataStatus.SKIPPED_SIZE
    thumbnail_status = ThumbnailStatus.NONE if thumbnail_admitted(size_bytes, cfg) else ThumbnailStatus.SKIPPED_SIZE
    return metadata_status, thumbnail_status


def thumbnail_decision(key: str, size_bytes: int, cfg: SyncConfig, force: bool = False) -> ThumbnailDecision:
    """
    Decides whether a thumbnail should be attempted. `force` bypasses the
    size threshold but never the format check.
    """
    if get_extension(key) not in config.THUMBNAIL_EXTS:
        return ThumbnailDecision.UNSUPPORTED
    if not force and not thumbnail_admitted(size_bytes, cfg):
        return ThumbnailDecision.SKIP_SIZE
    return ThumbnailDecision.GENERATE
