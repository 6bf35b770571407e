from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

SCHEMA_SQL = """
PRAGMA foreign_keys = ON;

CREATE TABLE IF NOT EXISTS document_batches (
    processing_id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    document_ref TEXT NOT NULL,
    document_name TEXT NOT NULL,
    page_count INTEGER NOT NULL DEFAULT 0,
    status TEXT NOT NULL CHECK (status IN ('processing', 'completed', 'failed')),
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    artifacts_root_path TEXT NOT NULL,
    metadata_json TEXT NOT NULL DEFAULT '{}'
);

CREATE TABLE IF NOT EXISTS document_batch_results (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    processing_id TEXT NOT NULL,
    user_id TEXT NOT NULL,
    batch_index INTEGER NOT NULL,
    total_batches INTEGER NOT NULL,
    success INTEGER NOT NULL CHECK (success IN (0, 1)),
    extracted_data_json TEXT,
    raw_response_path TEXT,
    image_count INTEGER NOT NULL,
    images_processed_json TEXT NOT NULL DEFAULT '[]',
    error_code TEXT,
    error_detail TEXT,
    attempts INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    FOREIGN KEY (processing_id)
        REFERENCES document_batches (processing_id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS farm_records (
    processing_id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    origin TEXT NOT NULL CHECK (origin IN ('extracted', 'augmented', 'synthetic')),
    data_unavailable INTEGER NOT NULL CHECK (data_unavailable IN (0, 1)),
    record_json TEXT NOT NULL,
    extracted_record_json TEXT NOT NULL,
    response_artifact_url TEXT,
    created_at TEXT NOT NULL,
    FOREIGN KEY (processing_id)
        REFERENCES document_batches (processing_id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_document_batches_user_id
    ON document_batches (user_id);
CREATE INDEX IF NOT EXISTS idx_batch_results_processing_id
    ON document_batch_results (processing_id);
"""


def init_db(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    with connection(db_path) as conn:
        conn.executescript(SCHEMA_SQL)


@contextmanager
def connection(db_path: Path) -> Iterator[sqlite3.Connection]:
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    try:
        conn.execute("PRAGMA foreign_keys = ON;")
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()
