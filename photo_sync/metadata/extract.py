import io
import logging
import threading
from concurrent.futures import Future, TimeoutError as FuturesTimeout
from datetime import datetime
from typing import Optional, Tuple

import exifread
from PIL import Image
from pymediainfo import MediaInfo

from .. import config
from ..models import PhotoMetadata
from ..store.keys import is_video_file


class _PendingRead:
    """Stream handle for one read; once abandoned, any stream it gets is closed."""

    def __init__(self):
        self.stream = None
        self.abandoned = False
        self._lock = threading.Lock()

    def attach(self, stream) -> bool:
        with self._lock:
            if self.abandoned:
                return False
            self.stream = stream
            return True

    def abandon(self):
        with self._lock:
            self.abandoned = True
            stream, self.stream = self.stream, None
        MetadataExtractor._close_stream(stream)


class MetadataExtractor:
    """
    Reads a bounded prefix of one object and parses embedded metadata from it.

    Strategies:
      - Images: 'exifread' for capture time, GPS and dimensions; Pillow reads
        the header for dimensions when EXIF does not carry them.
      - Video: 'pymediainfo' over the same in-memory prefix.

    `extract` never raises. It returns None when the bytes could not be read
    (stream error or timeout) and an empty PhotoMetadata when the bytes were
    read but carried nothing parseable.

    Each read runs on its own daemon thread, so a stalled object only ever
    holds up its own worker.
    """

    def __init__(self,
                 store,
                 read_cap: int = config.METADATA_READ_CAP,
                 timeout: float = config.METADATA_TIMEOUT_SECONDS,
                 chunk_size: int = config.METADATA_READ_CHUNK):
        self.store = store
        self.read_cap = read_cap
        self.timeout = timeout
        self.chunk_size = chunk_size
        self._inflight = set()
        self._lock = threading.Lock()

    def close(self):
        """Abandons reads still in flight, closing their streams."""
        with self._lock:
            pending, self._inflight = list(self._inflight), set()
        for read in pending:
            read.abandon()

    def extract(self, key: str) -> Optional[PhotoMetadata]:
        pending = _PendingRead()
        with self._lock:
            self._inflight.add(pending)
        future = self._submit(key, pending)
        try:
            data = future.result(timeout=self.timeout)
        except FuturesTimeout:
            logging.warning(f"Metadata extraction timeout for {key} after {self.timeout}s")
            future.cancel()
            # Closing the stream unblocks the reader thread
            pending.abandon()
            return None
        except Exception as e:
            logging.warning(f"Could not read {key} for metadata: {e}")
            return None
        finally:
            with self._lock:
                self._inflight.discard(pending)

        if not data:
            return PhotoMetadata()
        return self.parse(key, data)

    def _submit(self, key: str, pending: _PendingRead) -> Future:
        future = Future()

        def run():
            if not future.set_running_or_notify_cancel():
                return
            try:
                future.set_result(self._fetch_prefix(key, pending))
            except Exception as e:
                future.set_exception(e)

        threading.Thread(target=run, name="metadata-read", daemon=True).start()
        return future

    def _fetch_prefix(self, key: str, pending: _PendingRead) -> bytes:
        stream = self.store.open_stream(key)
        if not pending.attach(stream):
            # Caller already gave up on this object
            self._close_stream(stream)
            return b""
        return self.read_prefix(stream)

    def read_prefix(self, stream) -> bytes:
        """
        Accumulates at most `read_cap` bytes, then closes the stream
        instead of draining it.
        """
        chunks = []
        total = 0
        try:
            while total < self.read_cap:
                chunk = stream.read(min(self.chunk_size, self.read_cap - total))
                if not chunk:
                    break
                chunks.append(chunk)
                total += len(chunk)
        finally:
            self._close_stream(stream)
        return b"".join(chunks)

    @staticmethod
    def _close_stream(stream):
        if stream is None:
            return
        try:
            stream.close()
        except Exception as e:
            logging.debug(f"Error closing metadata stream: {e}")

    def parse(self, key: str, data: bytes) -> PhotoMetadata:
        """Parses an in-memory prefix. Corrupt data yields an empty result."""
        if is_video_file(key):
            return self._parse_video(key, data)
        return self._parse_image(key, data)

    # --- Internal Extraction Helpers ---

    def _parse_image(self, key: str, data: bytes) -> PhotoMetadata:
        meta = PhotoMetadata()
        try:
            # details=False skips maker notes and thumbnails
            tags = exifread.process_file(io.BytesIO(data), details=False)
        except Exception as e:
            logging.warning(f"ExifRead failed for {key}: {e}")
            tags = {}

        meta.date_taken = self._parse_exif_date(tags)
        coords = self._parse_gps(tags)
        if coords:
            meta.latitude, meta.longitude = coords

        meta.width = self._first_int(tags, config.WIDTH_TAGS)
        meta.height = self._first_int(tags, config.HEIGHT_TAGS)

        if not (meta.width and meta.height):
            dims = self._header_dimensions(key, data)
            if dims:
                meta.width, meta.height = dims

        return meta

    def _parse_video(self, key: str, data: bytes) -> PhotoMetadata:
        meta = PhotoMetadata()
        try:
            mi = MediaInfo.parse(io.BytesIO(data))
        except Exception as e:
            logging.warning(f"MediaInfo failed for {key}: {e}")
            return meta

        for track in mi.tracks:
            if track.track_type == "General":
                if getattr(track, "duration", None):
                    # MediaInfo duration is in milliseconds
                    meta.duration_sec = float(track.duration) / 1000.0

                for field in ("recorded_date", "encoded_date", "tagged_date"):
                    val = getattr(track, field, None)
                    if val:
                        dt = self._parse_flexible_date(str(val))
                        if dt:
                            meta.date_taken = dt
                            break

            elif track.track_type == "Video":
                width = getattr(track, "width", None)
                height = getattr(track, "height", None)
                if width and height:
                    meta.width, meta.height = int(width), int(height)

        return meta

    def _header_dimensions(self, key: str, data: bytes) -> Optional[Tuple[int, int]]:
        try:
            with Image.open(io.BytesIO(data)) as im:
                return im.size
        except Exception as e:
            logging.debug(f"Pillow could not read header for {key}: {e}")
            return None

    def _parse_exif_date(self, tags) -> Optional[datetime]:
        """Helper to parse standard EXIF date strings from exifread."""
        for tag in config.DATE_TAGS:
            if tag in tags:
                try:
                    # EXIF format is usually "YYYY:MM:DD HH:MM:SS"
                    dt_str = str(tags[tag]).strip().replace(':', '-', 2)
                    return datetime.strptime(dt_str, "%Y-%m-%d %H:%M:%S")
                except ValueError:
                    continue
        return None

    def _parse_gps(self, tags) -> Optional[Tuple[float, float]]:
        lat = self._dms_to_degrees(tags.get('GPS GPSLatitude'))
        lon = self._dms_to_degrees(tags.get('GPS GPSLongitude'))
        if lat is None or lon is None:
            return None
        if str(tags.get('GPS GPSLatitudeRef', 'N')).strip().upper() == 'S':
            lat = -lat
        if str(tags.get('GPS GPSLongitudeRef', 'E')).strip().upper() == 'W':
            lon = -lon
        return lat, lon

    @staticmethod
    def _dms_to_degrees(tag) -> Optional[float]:
        """Converts an exifread (deg, min, sec) ratio triple to decimal degrees."""
        if tag is None:
            return None
        try:
            values = list(tag.values)
            parts = [r.num / r.den if r.den else 0.0 for r in values[:3]]
        except (AttributeError, TypeError, ZeroDivisionError):
            return None
        while len(parts) < 3:
            parts.append(0.0)
        degrees, minutes, seconds = parts
        return degrees + minutes / 60.0 + seconds / 3600.0

    @staticmethod
    def _first_int(tags, names) -> Optional[int]:
        for name in names:
            tag = tags.get(name)
            if tag is None:
                continue
            try:
                value = int(tag.values[0])
            except (AttributeError, IndexError, TypeError, ValueError):
                continue
            if value > 0:
                return value
        return None

    def _parse_flexible_date(self, dt_str: str) -> Optional[datetime]:
        """
        Handles various date formats (ISO, UTC suffixes, MediaInfo quirks).
        Returns a naive datetime object.
        """
        if not dt_str:
            return None

        clean = dt_str.replace("UTC", "").strip()

        # 1. Try ISO format (e.g. 2020-01-01T12:00:00)
        try:
            return datetime.fromisoformat(clean).replace(tzinfo=None)
        except ValueError:
            pass

        # 2. Try Standard EXIF style "YYYY:MM:DD HH:MM:SS"
        try:
            clean_exif = clean.replace(":", "-", 2)
            if "." in clean_exif:
                clean_exif = clean_exif.split(".")[0]
            return datetime.strptime(clean_exif, "%Y-%m-%d %H:%M:%S")
        except ValueError:
            pass

        return None
