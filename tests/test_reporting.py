import csv

from photo_sync.models import JobType, MetadataStatus, PhotoMetadata
from photo_sync.reporting import ReportGenerator, format_bytes
from photo_sync.scanning.full_scan import FullScanner

MB = 1024 * 1024


def _scan(db_ops, store, cfg):
    store.put("trips/a.jpg", size=1 * MB)
    store.put("trips/b.jpg", size=6 * MB)
    store.put("trips/2020/c.jpg", size=40 * MB)
    store.put("loose.png", size=100)
    FullScanner(db_ops, store, cfg).run(db_ops.create_job(JobType.FULL_SCAN))


def test_catalog_stats(db_ops, store, cfg):
    _scan(db_ops, store, cfg)
    a = db_ops.get_photo_by_key("trips/a.jpg")
    db_ops.update_photo_metadata(a.id, PhotoMetadata(width=1, height=1))

    stats = ReportGenerator(db_ops).stats()

    assert stats['total_photos'] == 4
    assert stats['total_bytes'] == 47 * MB + 100
    assert stats['total_folders'] == 3  # root, trips, trips/2020
    assert stats['metadata_status'][MetadataStatus.EXTRACTED.value] == 1
    assert stats['metadata_status']['skipped_size'] == 2
    assert stats['thumbnail_status']['skipped_size'] == 1
    assert stats['largest_folders'][0] == ("trips", 2)


def test_folder_report_csv(db_ops, store, cfg, tmp_path):
    _scan(db_ops, store, cfg)
    out = tmp_path / "report.csv"

    written = ReportGenerator(db_ops).write_folder_report(out)

    with open(out, newline="", encoding="utf-8") as f:
        rows = list(csv.DictReader(f))

    assert written == 3
    by_path = {r["Folder Path"]: r for r in rows}
    assert set(by_path) == {"", "trips", "trips/2020"}
    trips = by_path["trips"]
    assert trips["Photos"] == "2"
    assert trips["Subfolders"] == "1"
    assert trips["Total Bytes"] == str(7 * MB)
    assert trips["Metadata Skipped (Size)"] == "1"
    assert trips["Last Synced"] != ""
    assert by_path["trips/2020"]["Thumbnails Skipped (Size)"] == "1"


def test_report_on_empty_catalog(db_ops, tmp_path):
    out = tmp_path / "empty.csv"
    assert ReportGenerator(db_ops).write_folder_report(out) == 0
    assert out.read_text(encoding="utf-8").startswith("Folder Path,Photos")


def test_format_bytes():
    assert format_bytes(512) == "512 B"
    assert format_bytes(1536) == "1.5 KB"
    assert format_bytes(5 * MB) == "5.0 MB"
