import io
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone

import pytest

from photo_sync.config import SyncConfig
from photo_sync.database.ops import DBOperations
from photo_sync.database.schema import init_schema
from photo_sync.models import ListPage, StoreObject

MB = 1024 * 1024


class CountingStream:
    """File-like body that records how many bytes were pulled from it."""

    def __init__(self, data: bytes):
        self._buf = io.BytesIO(data)
        self.bytes_read = 0
        self.closed = False

    def read(self, n=-1):
        chunk = self._buf.read(n)
        self.bytes_read += len(chunk)
        return chunk

    def close(self):
        self.closed = True


@dataclass
class FakeObject:
    size: int
    data: bytes
    last_modified: datetime


class FakeStore:
    """
    In-memory object store. Listing is lexicographic and paged by an
    integer continuation token, like S3's list_objects_v2.
    """

    def __init__(self):
        self.objects = {}
        self.list_calls = []
        self.streams = []

    def put(self, key, size=None, data=b"", last_modified=None):
        self.objects[key] = FakeObject(
            size=len(data) if size is None else size,
            data=data,
            last_modified=last_modified or datetime(2024, 1, 1, tzinfo=timezone.utc),
        )

    def list(self, prefix="", continuation_token=None, page_size=1000):
        self.list_calls.append((prefix, continuation_token))
        keys = sorted(k for k in self.objects if k.startswith(prefix))
        start = int(continuation_token) if continuation_token else 0
        chunk = keys[start:start + page_size]
        end = start + len(chunk)
        truncated = end < len(keys)
        return ListPage(
            objects=[
                StoreObject(key=k, size=self.objects[k].size, last_modified=self.objects[k].last_modified)
                for k in chunk
            ],
            next_token=str(end) if truncated else None,
            is_truncated=truncated,
        )

    def open_stream(self, key):
        stream = CountingStream(self.objects[key].data)
        self.streams.append(stream)
        return stream


@pytest.fixture
def conn():
    """Returns an in-memory SQLite connection with the schema initialized."""
    c = sqlite3.connect(":memory:", check_same_thread=False)
    init_schema(c)
    try:
        yield c
    finally:
        c.close()


@pytest.fixture
def db_ops(conn):
    """Returns a DBOperations instance attached to the in-memory DB."""
    return DBOperations(conn)


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def cfg(tmp_path):
    return SyncConfig(
        bucket="test-bucket",
        db_path=tmp_path / "catalog.db",
        thumbnail_dir=tmp_path / "thumbs",
    )


@pytest.fixture
def jpeg_bytes():
    """A small real JPEG with an EXIF DateTime in IFD0."""
    from PIL import Image

    img = Image.new("RGB", (64, 48), color=(200, 120, 40))
    exif = Image.Exif()
    exif[0x0132] = "2021:06:15 10:30:00"
    buf = io.BytesIO()
    img.save(buf, format="JPEG", exif=exif.tobytes())
    return buf.getvalue()
