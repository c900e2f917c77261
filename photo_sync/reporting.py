import csv
import logging
from pathlib import Path
from typing import Any, Dict, List, Union

from .database.ops import DBOperations

REPORT_HEADERS = [
    "Folder Path",
    "Photos",
    "Subfolders",
    "Total Bytes",
    "Metadata Extracted",
    "Metadata Skipped (Size)",
    "Thumbnails Generated",
    "Thumbnails Skipped (Size)",
    "Last Synced",
]


def format_bytes(num: float) -> str:
    if abs(num) < 1024:
        return f"{int(num)} B"
    for unit in ("KB", "MB", "GB"):
        num /= 1024
        if abs(num) < 1024:
            return f"{num:.1f} {unit}"
    return f"{num / 1024:.1f} TB"


class ReportGenerator:
    def __init__(self, db_ops: DBOperations):
        self.db = db_ops

    def stats(self) -> Dict[str, Any]:
        return self.db.catalog_stats()

    def summary_lines(self) -> List[str]:
        """Human-readable catalog summary, one line per fact."""
        s = self.stats()
        lines = [
            f"Photos:   {s['total_photos']} ({format_bytes(s['total_bytes'])})",
            f"Folders:  {s['total_folders']} ({s['folders_with_photos']} with photos)",
            "Metadata: " + ", ".join(f"{k}={v}" for k, v in s['metadata_status'].items()),
            "Thumbs:   " + ", ".join(f"{k}={v}" for k, v in s['thumbnail_status'].items()),
        ]
        if s['largest_folders']:
            lines.append("Largest folders:")
            lines.extend(f"  {path or '(root)'}: {count}" for path, count in s['largest_folders'])
        return lines

    def write_folder_report(self, output_csv: Union[str, Path]) -> int:
        """
        Writes one CSV row per catalog folder with its counts and the
        per-status tallies of its direct photos. Returns the row count.
        """
        logging.info(f"Generating folder report -> {output_csv}")
        rows = self.db.folder_report_rows()

        with open(output_csv, "w", newline="", encoding="utf-8") as f:
            writer = csv.writer(f)
            writer.writerow(REPORT_HEADERS)
            for row in rows:
                writer.writerow([
                    row['path'],
                    row['photo_count'],
                    row['subfolder_count'],
                    row['total_bytes'],
                    row['metadata_extracted'],
                    row['metadata_skipped'],
                    row['thumbnails_generated'],
                    row['thumbnails_skipped'],
                    row['last_synced'] or "",
                ])

        logging.info(f"Report complete. Wrote {len(rows)} folders.")
        return len(rows)
