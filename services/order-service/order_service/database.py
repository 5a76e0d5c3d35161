from __future__ import annotations

import logging
import os
import sqlite3
import time

import psycopg
from psycopg.rows import dict_row

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS orders (
    id {id_column},
    user_id TEXT NOT NULL,
    status TEXT NOT NULL,
    total_amount REAL NOT NULL,
    address TEXT,
    payment_id INTEGER,
    cancel_reason TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS payments (
    id {id_column},
    order_id INTEGER NOT NULL REFERENCES orders (id),
    method TEXT NOT NULL,
    status TEXT NOT NULL,
    amount REAL NOT NULL,
    paid_at TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_orders_user ON orders (user_id);
CREATE INDEX IF NOT EXISTS idx_payments_order ON payments (order_id);
"""

SQLITE_ID_COLUMN = "INTEGER PRIMARY KEY AUTOINCREMENT"
POSTGRES_ID_COLUMN = "BIGINT GENERATED BY DEFAULT AS IDENTITY PRIMARY KEY"


def _build_database_url() -> str:
    explicit = os.environ.get("DATABASE_URL")
    if explicit:
        return explicit
    return "postgresql://{user}:{password}@{host}:{port}/{name}".format(
        user=os.environ.get("DB_USER", "bookstore"),
        password=os.environ.get("DB_PASSWORD", "bookstore"),
        host=os.environ.get("DB_HOST", "order-db"),
        port=os.environ.get("DB_PORT", "5432"),
        name=os.environ.get("DB_NAME", "order_service"),
    )


DATABASE_URL = _build_database_url()


def get_connection():
    """Open a connection to the configured database, waiting for Postgres to come up."""
    max_retries = int(os.environ.get("DB_CONNECT_MAX_RETRIES", "30"))
    retry_delay = float(os.environ.get("DB_CONNECT_RETRY_DELAY", "2"))
    attempt = 1
    while True:
        try:
            return _open(DATABASE_URL)
        except (sqlite3.Error, psycopg.OperationalError) as exc:
            if attempt >= max_retries:
                raise
            logger.warning(
                "Order database unavailable (attempt %d/%d): %s", attempt, max_retries, exc
            )
            attempt += 1
            time.sleep(retry_delay)


def _open(url: str):
    if url.startswith("sqlite:///"):
        conn = sqlite3.connect(url[len("sqlite:///"):])
        conn.row_factory = sqlite3.Row
        return conn
    return psycopg.connect(url, autocommit=True, row_factory=dict_row)


def init_db() -> None:
    conn = get_connection()
    try:
        apply_schema(conn)
    finally:
        conn.close()


def apply_schema(conn) -> None:
    """Create the order and payment tables if they are missing."""
    if is_sqlite(conn):
        conn.executescript(SCHEMA_SQL.format(id_column=SQLITE_ID_COLUMN))
        conn.commit()
        return

    script = SCHEMA_SQL.format(id_column=POSTGRES_ID_COLUMN)
    with conn.cursor() as cur:
        for statement in filter(None, (chunk.strip() for chunk in script.split(";"))):
            cur.execute(statement)


def is_sqlite(conn) -> bool:
    return isinstance(conn, sqlite3.Connection)
