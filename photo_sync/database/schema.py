"""
Database schema definitions.
"""
import sqlite3
import logging

CURRENT_SCHEMA_VERSION = 1

def init_schema(conn: sqlite3.Connection):
    """
    Applies the catalog schema to the database.
    Idempotent: safe to run on every startup.
    """
    with conn:
        # 1. Version Tracking (For future migrations)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY
            );
        """)

        cur = conn.cursor()
        cur.execute("SELECT version FROM schema_version")
        if not cur.fetchone():
            conn.execute("INSERT INTO schema_version (version) VALUES (?)", (CURRENT_SCHEMA_VERSION,))

        # 2. Folder tree derived from key prefixes.
        # path '' is the store root; top-level folders have no parent.
        conn.execute("""
        CREATE TABLE IF NOT EXISTS folders (
            id              INTEGER PRIMARY KEY AUTOINCREMENT,
            path            TEXT UNIQUE NOT NULL,
            name            TEXT NOT NULL,
            parent_id       INTEGER,
            photo_count     INTEGER NOT NULL DEFAULT 0,
            subfolder_count INTEGER NOT NULL DEFAULT 0,
            created_at      TEXT NOT NULL,
            updated_at      TEXT NOT NULL,
            last_synced     TEXT,
            last_visited    TEXT,
            FOREIGN KEY(parent_id) REFERENCES folders(id) ON DELETE CASCADE
        );
        """)

        # 3. One row per media object, keyed by its store key
        conn.execute("""
        CREATE TABLE IF NOT EXISTS photos (
            id                      INTEGER PRIMARY KEY AUTOINCREMENT,
            folder_id               INTEGER NOT NULL,
            filename                TEXT NOT NULL,
            s3_key                  TEXT UNIQUE NOT NULL,
            size                    INTEGER NOT NULL,
            mime_type               TEXT NOT NULL,
            modified_at             TEXT NOT NULL,
            metadata                TEXT,                 -- JSON blob
            metadata_status         TEXT NOT NULL DEFAULT 'none'
                CHECK (metadata_status IN ('none', 'pending', 'extracted', 'skipped_size')),
            thumbnail_status        TEXT NOT NULL DEFAULT 'none'
                CHECK (thumbnail_status IN ('none', 'pending', 'generated', 'skipped_size')),
            thumbnail_path          TEXT,
            thumbnail_generated_at  TEXT,
            created_at              TEXT NOT NULL,
            last_synced             TEXT,
            FOREIGN KEY(folder_id) REFERENCES folders(id) ON DELETE CASCADE
        );
        """)

        # 4. Durable job queue
        conn.execute("""
        CREATE TABLE IF NOT EXISTS sync_jobs (
            id                INTEGER PRIMARY KEY AUTOINCREMENT,
            type              TEXT NOT NULL
                CHECK (type IN ('full_scan', 'folder_scan', 'metadata_scan', 'cleanup')),
            status            TEXT NOT NULL DEFAULT 'pending'
                CHECK (status IN ('pending', 'running', 'completed', 'failed')),
            folder_path       TEXT,
            processed_items   INTEGER NOT NULL DEFAULT 0,
            total_items       INTEGER NOT NULL DEFAULT 0,
            created_at        TEXT NOT NULL,
            started_at        TEXT,
            completed_at      TEXT,
            error_message     TEXT,
            resume_token      TEXT,                 -- listing cursor at the last page boundary
            resume_processed  INTEGER NOT NULL DEFAULT 0
        );
        """)

        # 5. Indices for Performance
        conn.execute("CREATE INDEX IF NOT EXISTS idx_folders_parent_id ON folders(parent_id);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_photos_folder_id ON photos(folder_id);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_photos_folder_status ON photos(folder_id, metadata_status, size);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_photos_thumbnail_age ON photos(thumbnail_generated_at);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_sync_jobs_status_type ON sync_jobs(status, type);")

    logging.debug("Catalog schema initialized.")
