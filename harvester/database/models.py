"""SQLite database schema and initialization."""

from __future__ import annotations

import aiosqlite

SCHEMA = """
CREATE TABLE IF NOT EXISTS crawl_jobs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    principal TEXT NOT NULL,
    source_site TEXT NOT NULL,
    search_url TEXT NOT NULL,
    search_keywords TEXT,
    device_id TEXT,
    status TEXT NOT NULL DEFAULT 'PENDING',
    max_pages INTEGER,
    max_items INTEGER,
    request_delay REAL,
    items_found INTEGER DEFAULT 0,
    items_crawled INTEGER DEFAULT 0,
    pages_processed INTEGER DEFAULT 0,
    started_at TEXT,
    completed_at TEXT,
    duration_ms INTEGER,
    error_message TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS crawl_items (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    job_id INTEGER NOT NULL REFERENCES crawl_jobs(id) ON DELETE CASCADE,
    item_id TEXT NOT NULL,
    title TEXT,
    content TEXT,
    url TEXT,
    rating REAL,
    review_date TEXT,
    reviewer_name TEXT,
    is_verified INTEGER,
    price REAL,
    original_price REAL,
    discount REAL,
    image_urls TEXT DEFAULT '[]',
    page_number INTEGER NOT NULL,
    item_order INTEGER NOT NULL,
    site_data TEXT DEFAULT '{}',
    created_at TEXT NOT NULL,
    UNIQUE (job_id, item_id)
);

-- At most one in-flight job per principal.
CREATE UNIQUE INDEX IF NOT EXISTS idx_crawl_jobs_in_flight
    ON crawl_jobs(principal) WHERE status IN ('PENDING', 'RUNNING');

CREATE INDEX IF NOT EXISTS idx_crawl_jobs_principal ON crawl_jobs(principal);
CREATE INDEX IF NOT EXISTS idx_crawl_jobs_status ON crawl_jobs(status);
CREATE INDEX IF NOT EXISTS idx_crawl_items_job ON crawl_items(job_id, page_number, item_order);
"""


async def initialize_db(db: aiosqlite.Connection):
    """Create tables and indexes if they don't exist."""
    await db.executescript(SCHEMA)
    await db.commit()
