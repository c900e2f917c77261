from pathlib import Path

import pytest

from photo_sync.config import SyncConfig
from photo_sync.exceptions import ConfigError, InvalidFolderPathError
from photo_sync.store.keys import (
    ancestor_chain, folder_name, folder_prefix, get_filename_from_key, get_folder_from_key,
    get_mime_type, is_media_file, is_video_file, normalize_folder_path,
    validate_folder_path,
)


def test_defaults():
    cfg = SyncConfig()
    assert cfg.metadata_threshold_mb == 5
    assert cfg.thumbnail_threshold_mb == 30
    assert cfg.sync_throttle_seconds == 30
    assert cfg.thumbnail_max_age_days == 30
    assert cfg.metadata_threshold_bytes == 5_242_880


def test_from_env():
    env = {
        "PHOTO_SYNC_BUCKET": "photos",
        "PHOTO_SYNC_METADATA_THRESHOLD_MB": "8",
        "PHOTO_SYNC_DB_PATH": "/tmp/cat.db",
        "PHOTO_SYNC_ENDPOINT_URL": "http://localhost:9000",
        "PHOTO_SYNC_REGION": "",
    }
    cfg = SyncConfig.from_env(env)
    assert cfg.bucket == "photos"
    assert cfg.metadata_threshold_mb == 8
    assert cfg.db_path == Path("/tmp/cat.db")
    assert cfg.endpoint_url == "http://localhost:9000"
    assert cfg.region is None


def test_from_env_rejects_bad_int():
    with pytest.raises(ConfigError):
        SyncConfig.from_env({"PHOTO_SYNC_SYNC_THROTTLE_SECONDS": "soon"})


def test_validate_ranges():
    cfg = SyncConfig(bucket="b", sync_throttle_seconds=301, metadata_threshold_mb=0)
    errors = cfg.validate()
    assert len(errors) == 2
    with pytest.raises(ConfigError):
        cfg.require_valid()

    assert SyncConfig().validate(require_store=False) == []
    assert "Bucket name is required" in SyncConfig().validate()


@pytest.mark.parametrize(
    "key,folder,filename",
    [
        ("a/b/c/img1.jpg", "a/b/c", "img1.jpg"),
        ("top.jpg", "", "top.jpg"),
        ("a//b/x.png", "a/b", "x.png"),
        ("a/b/", "a/b", ""),
    ],
)
def test_key_splitting(key, folder, filename):
    assert get_folder_from_key(key) == folder
    assert get_filename_from_key(key) == filename


@pytest.mark.parametrize(
    "name,image,video",
    [
        ("photo.JPG", True, False),
        ("raw.cr2", True, False),
        ("clip.MOV", False, True),
        ("notes.txt", False, False),
        (".jpg", False, False),
    ],
)
def test_media_classification(name, image, video):
    assert is_video_file(name) == video
    assert is_media_file(name) == (image or video)


def test_mime_types():
    assert get_mime_type("a/x.jpeg") == "image/jpeg"
    assert get_mime_type("a/x.mp4") == "video/mp4"
    assert get_mime_type("a/x.bin") == "application/octet-stream"


def test_path_helpers():
    assert normalize_folder_path("/a//b/") == "a/b"
    assert ancestor_chain("a/b/c") == ["a", "a/b", "a/b/c"]
    assert ancestor_chain("") == []
    assert folder_prefix("a/b") == "a/b/"
    assert folder_prefix("") == ""
    assert folder_name("") == "Root"
    assert folder_name("a/b") == "b"


@pytest.mark.parametrize("good", ["", "2021", "Trips/Paris 2019", "a_b-c.d"])
def test_validate_accepts(good):
    assert validate_folder_path(good) == good


@pytest.mark.parametrize("bad", ["..", "a/../b", "a//b", "/a", "a?b", "a\\b"])
def test_validate_rejects(bad):
    with pytest.raises(InvalidFolderPathError):
        validate_folder_path(bad)
