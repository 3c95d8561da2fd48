"""Database schema definition."""

import sqlite3

SCHEMA_SQL = """
-- Stored driver packages, one row per upload of a new payload
CREATE TABLE IF NOT EXISTS packages (
    id INTEGER PRIMARY KEY,
    package_id TEXT NOT NULL,
    original_filename TEXT NOT NULL,
    content_hash TEXT NOT NULL,
    display_name TEXT,
    version TEXT,
    vendor TEXT,
    uploaded_by TEXT NOT NULL,
    created_at_unix REAL NOT NULL,
    created_at INTEGER NOT NULL
);

-- Concurrent saves of the same payload and package collide here
CREATE UNIQUE INDEX IF NOT EXISTS idx_packages_identity
    ON packages(content_hash, package_id);
CREATE INDEX IF NOT EXISTS idx_packages_hash ON packages(content_hash);
CREATE INDEX IF NOT EXISTS idx_packages_package_id ON packages(package_id);
CREATE INDEX IF NOT EXISTS idx_packages_display_name
    ON packages(display_name) WHERE display_name IS NOT NULL;

-- Hardware support rows derived from the manifest
CREATE TABLE IF NOT EXISTS supported_models (
    id INTEGER PRIMARY KEY,
    package_ref INTEGER NOT NULL REFERENCES packages(id) ON DELETE CASCADE,
    model_name TEXT NOT NULL,
    hardware_id TEXT NOT NULL DEFAULT ''
);

CREATE INDEX IF NOT EXISTS idx_supported_models_package ON supported_models(package_ref);
CREATE INDEX IF NOT EXISTS idx_supported_models_hardware_id
    ON supported_models(hardware_id) WHERE hardware_id != '';
"""


def create_schema(conn: sqlite3.Connection) -> None:
    """Create tables and indexes (idempotent)."""
    conn.executescript(SCHEMA_SQL)
    conn.commit()
