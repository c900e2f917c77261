import logging
from pathlib import Path
from typing import Union

from .config import SyncConfig
from .database.ops import DBOperations
from .exceptions import PhotoNotFoundError
from .models import ThumbnailStatus
from .scanning.admission import ThumbnailDecision, thumbnail_decision


class ThumbnailStore:
    """
    Local directory of generated thumbnail artifacts. Paths recorded in the
    catalog are relative to `root`.
    """

    def __init__(self, root: Path):
        self.root = Path(root)

    def path_for(self, photo_id: int) -> str:
        return f"{photo_id}.jpg"

    def resolve(self, rel_path: Union[str, Path]) -> Path:
        p = Path(rel_path)
        return p if p.is_absolute() else self.root / p

    def exists(self, rel_path: Union[str, Path]) -> bool:
        return self.resolve(rel_path).is_file()

    def save(self, photo_id: int, data: bytes) -> str:
        rel = self.path_for(photo_id)
        target = self.resolve(rel)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        return rel

    def delete(self, rel_path: Union[str, Path]) -> bool:
        """Removes an artifact. A file that is already gone is not an error."""
        target = self.resolve(rel_path)
        try:
            target.unlink()
        except FileNotFoundError:
            logging.debug(f"Thumbnail already missing: {target}")
            return False
        return True


def request_thumbnail(db_ops: DBOperations, photo_id: int, cfg: SyncConfig, force: bool = False) -> ThumbnailDecision:
    """
    Admission gate for an on-demand thumbnail. Oversized photos are marked
    skipped unless forced; admitted ones move to 'pending' for the generator.
    """
    photo = db_ops.get_photo(photo_id)
    if photo is None:
        raise PhotoNotFoundError(f"Photo {photo_id} not found")

    decision = thumbnail_decision(photo.s3_key, photo.size, cfg, force=force)
    if photo.thumbnail_status == ThumbnailStatus.GENERATED and decision == ThumbnailDecision.SKIP_SIZE:
        # An existing thumbnail outlives a lowered threshold
        return decision
    if photo.thumbnail_status == ThumbnailStatus.SKIPPED_SIZE and not force:
        return ThumbnailDecision.SKIP_SIZE
    if decision == ThumbnailDecision.SKIP_SIZE:
        if photo.thumbnail_status != ThumbnailStatus.SKIPPED_SIZE:
            db_ops.set_thumbnail_status(photo_id, ThumbnailStatus.SKIPPED_SIZE)
        logging.info(f"Thumbnail skipped for {photo.s3_key}: {photo.size} bytes over threshold")
    elif decision == ThumbnailDecision.GENERATE and photo.thumbnail_status != ThumbnailStatus.GENERATED:
        db_ops.set_thumbnail_status(photo_id, ThumbnailStatus.PENDING, retry=force)
    return decision
