import argparse
import logging
import signal
import sys
import threading
from pathlib import Path
from typing import Optional

from .config import SyncConfig
from .core import PhotoSyncApp
from .exceptions import ConfigError, JobError, PhotoSyncError
from .reporting import ReportGenerator


def setup_logging(log_file: Optional[Path], verbose: bool):
    """Sets up logging to the console and, optionally, a file."""
    log_level = logging.DEBUG if verbose else logging.INFO

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding='utf-8'))

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=handlers,
    )

    # Silence chatty libraries
    logging.getLogger("exifread").setLevel(logging.ERROR)
    logging.getLogger("PIL").setLevel(logging.WARNING)
    for name in ("botocore", "boto3", "urllib3"):
        logging.getLogger(name).setLevel(logging.WARNING)


def parse_args(argv=None):
    p = argparse.ArgumentParser(description="Photo Sync: mirror an object store into a local photo catalog")

    p.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    p.add_argument("--log-file", type=Path, default=None, help="Also write logs to this file")
    p.add_argument("--db", type=Path, default=None, help="Catalog path (default: $PHOTO_SYNC_DB_PATH or data/catalog.db)")
    p.add_argument("--bucket", default=None, help="Bucket name (default: $PHOTO_SYNC_BUCKET)")
    p.add_argument("--progress", action="store_true", help="Show progress bars for long scans")

    sub = p.add_subparsers(dest="command", required=True)

    sub.add_parser("serve", help="Run the scheduler until interrupted")
    sub.add_parser("full-scan", help="Mirror the whole store into the catalog")

    sf = sub.add_parser("sync-folder", help="Scan one folder and wait for it")
    sf.add_argument("path", help="Folder path relative to the bucket root ('' for root)")
    sf.add_argument("--timeout", type=float, default=30.0, help="Seconds to wait for the scan")

    ms = sub.add_parser("metadata-scan", help="Extract metadata for one folder")
    ms.add_argument("path", help="Folder path relative to the bucket root")

    sub.add_parser("cleanup", help="Remove thumbnails older than the retention window")

    jb = sub.add_parser("job", help="Show one job")
    jb.add_argument("job_id", type=int)

    sub.add_parser("status", help="Show catalog statistics and the job queue")

    rp = sub.add_parser("report", help="Write a per-folder CSV report")
    rp.add_argument("csv", type=Path, help="Output CSV path")

    return p.parse_args(argv)


def build_config(args) -> SyncConfig:
    cfg = SyncConfig.from_env()
    if args.db:
        cfg.db_path = args.db
    if args.bucket:
        cfg.bucket = args.bucket
    return cfg


def _needs_store(command: str) -> bool:
    return command in ("serve", "full-scan", "sync-folder", "metadata-scan")


def _print_job(job):
    print(f"Job #{job.id} {job.type.value} [{job.status.value}]"
          f"{' ' + repr(job.folder_path) if job.folder_path is not None else ''}")
    print(f"  progress: {job.processed_items}/{job.total_items}")
    print(f"  created:  {job.created_at}  started: {job.started_at}  completed: {job.completed_at}")
    if job.error_message:
        print(f"  error:    {job.error_message}")


def serve(app: PhotoSyncApp):
    stop = threading.Event()

    def _handle(signum, _frame):
        logging.info(f"Received signal {signum}, shutting down...")
        stop.set()

    signal.signal(signal.SIGTERM, _handle)
    app.start()
    try:
        while not stop.wait(1.0):
            pass
    except KeyboardInterrupt:
        logging.warning("Interrupted by user.")
    finally:
        app.stop()


def run(args) -> int:
    cfg = build_config(args)
    store = None
    if not _needs_store(args.command):
        # Catalog-only commands never touch the bucket
        cfg.require_valid(require_store=False)
        store = _NoStore()

    with PhotoSyncApp(cfg, store=store, show_progress=args.progress) as app:
        if args.command == "serve":
            serve(app)
            return 0

        if args.command == "full-scan":
            app.request_full_scan()
            return 1 if app.run_until_idle() else 0

        if args.command == "sync-folder":
            job = app.sync_folder(args.path, timeout=args.timeout)
            if job is None:
                logging.info(f"'{args.path}' was synced recently; nothing to do")
            else:
                _print_job(job)
            return 0

        if args.command == "metadata-scan":
            app.request_metadata_scan(args.path)
            return 1 if app.run_until_idle() else 0

        if args.command == "cleanup":
            app.request_cleanup()
            return 1 if app.run_until_idle() else 0

        if args.command == "job":
            job = app.get_job(args.job_id)
            if job is None:
                logging.error(f"Job {args.job_id} not found")
                return 1
            _print_job(job)
            return 0

        reporter = ReportGenerator(app.db)
        if args.command == "status":
            for line in reporter.summary_lines():
                print(line)
            snapshot = app.status()
            print(f"Queue:    {snapshot['queue_length']} pending")
            for job_id, job_type, status, path in snapshot['active_jobs']:
                print(f"  #{job_id} {job_type} [{status}]{' ' + repr(path) if path is not None else ''}")
            return 0

        if args.command == "report":
            reporter.write_folder_report(args.csv)
            return 0

    return 1


class _NoStore:
    """Placeholder for commands that only read the catalog."""

    def list(self, prefix="", continuation_token=None, page_size=1000):
        raise PhotoSyncError("This command does not access the object store")

    def open_stream(self, key):
        raise PhotoSyncError("This command does not access the object store")


def main(argv=None):
    args = parse_args(argv)
    setup_logging(args.log_file, args.verbose)

    try:
        sys.exit(run(args))
    except ConfigError as e:
        logging.error(str(e))
        sys.exit(2)
    except JobError as e:
        logging.error(str(e))
        sys.exit(1)
    except KeyboardInterrupt:
        logging.warning("Operation cancelled by user.")
        sys.exit(1)
    except Exception:
        logging.exception("Fatal error.")
        sys.exit(1)


if __name__ == "__main__":
    main()
