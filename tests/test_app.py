import csv

import pytest

from photo_sync.core import PhotoSyncApp
from photo_sync.main import main, parse_args
from photo_sync.models import JobStatus, MetadataStatus, ThumbnailStatus
from photo_sync.scanning.admission import ThumbnailDecision

MB = 1024 * 1024


def test_app_scans_and_extracts(cfg, store, jpeg_bytes):
    store.put("a/b/c/img1.jpg", data=jpeg_bytes)
    store.put("a/b/img2.jpg", size=40 * MB)

    with PhotoSyncApp(cfg, store=store) as app:
        full = app.request_full_scan()
        assert app.run_until_idle() == 0
        assert app.get_job(full.id).status == JobStatus.COMPLETED

        app.request_metadata_scan("a/b/c")
        assert app.run_until_idle() == 0

        img1 = app.db.get_photo_by_key("a/b/c/img1.jpg")
        assert img1.metadata_status == MetadataStatus.EXTRACTED
        assert img1.metadata.date_taken is not None

        img2 = app.db.get_photo_by_key("a/b/img2.jpg")
        assert img2.metadata_status == MetadataStatus.SKIPPED_SIZE
        assert img2.thumbnail_status == ThumbnailStatus.SKIPPED_SIZE

        assert app.mark_folder_visited("a/b") is True
        assert app.db.get_folder_by_path("a/b").last_visited is not None
        assert app.mark_folder_visited("nope") is False


def test_app_thumbnail_round(cfg, store):
    store.put("a/x.jpg", size=1 * MB)

    with PhotoSyncApp(cfg, store=store) as app:
        app.request_full_scan()
        app.run_until_idle()
        photo = app.db.get_photo_by_key("a/x.jpg")

        assert app.request_thumbnail(photo.id) == ThumbnailDecision.GENERATE
        rel = app.save_thumbnail(photo.id, b"\xff\xd8thumb")

        stored = app.db.get_photo(photo.id)
        assert stored.thumbnail_status == ThumbnailStatus.GENERATED
        assert stored.thumbnail_path == rel
        assert (cfg.thumbnail_dir / rel).read_bytes() == b"\xff\xd8thumb"


def test_app_failed_job_counted(cfg, store):
    with PhotoSyncApp(cfg, store=store) as app:
        app.request_metadata_scan("unknown")
        assert app.run_until_idle() == 1


def test_parse_args_subcommands():
    args = parse_args(["--db", "x.db", "sync-folder", "trips/2020", "--timeout", "5"])
    assert args.command == "sync-folder"
    assert args.path == "trips/2020"
    assert args.timeout == 5.0


def _seed_catalog(cfg, store):
    store.put("trips/a.jpg", size=100)
    with PhotoSyncApp(cfg, store=store) as app:
        app.request_full_scan()
        app.run_until_idle()


def test_cli_status(cfg, store, capsys):
    _seed_catalog(cfg, store)
    with pytest.raises(SystemExit) as exc:
        main(["--db", str(cfg.db_path), "status"])
    assert exc.value.code == 0
    out = capsys.readouterr().out
    assert "Photos:   1" in out
    assert "Queue:    0 pending" in out


def test_cli_report(cfg, store, tmp_path):
    _seed_catalog(cfg, store)
    out = tmp_path / "folders.csv"
    with pytest.raises(SystemExit) as exc:
        main(["--db", str(cfg.db_path), "report", str(out)])
    assert exc.value.code == 0

    with open(out, newline="", encoding="utf-8") as f:
        rows = list(csv.DictReader(f))
    assert [r["Folder Path"] for r in rows] == ["trips"]


def test_cli_unknown_job(cfg, store):
    _seed_catalog(cfg, store)
    with pytest.raises(SystemExit) as exc:
        main(["--db", str(cfg.db_path), "job", "999"])
    assert exc.value.code == 1
