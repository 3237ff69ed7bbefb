"""
database.py — Database layer for the POS sync backend
Supports both SQLite (local/offline) and PostgreSQL (cloud/online).
The engine is picked from the connection URL passed to create_db_engine().

When the URL starts with "postgres", uses PostgreSQL through psycopg2.
Otherwise, falls back to a local SQLite file.
"""

import logging
from pathlib import Path

from sqlalchemy import create_engine, event, text

BASE_DIR = Path(__file__).resolve().parent
DATA_DIR = BASE_DIR / "data"
DB_PATH = DATA_DIR / "pos_sync.db"

logger = logging.getLogger("pos_sync.db")


# ---------------------------------------------------------------------------
# Engine / connection pool
# ---------------------------------------------------------------------------

def is_postgres_url(url):
    return url.startswith("postgres")


def _sqlite_path(url):
    if url.startswith("sqlite:///"):
        return Path(url[len("sqlite:///"):])
    return DB_PATH


def create_db_engine(url, pool_size=10, pool_timeout=30,
                     connect_timeout=10, statement_timeout_ms=15000):
    """
    Pooled engine for `url`: PostgreSQL when it starts with postgres, else a
    SQLite file. At most `pool_size` connections are in use at once; callers
    wait up to `pool_timeout` seconds before sqlalchemy.exc.TimeoutError.
    """
    pool_options = dict(
        pool_size=pool_size,
        max_overflow=0,
        pool_timeout=pool_timeout,
        pool_pre_ping=True,
    )

    if is_postgres_url(url):
        return create_engine(
            url,
            pool_recycle=1800,  # Refresh connections every 30 minutes
            connect_args={
                "connect_timeout": connect_timeout,
                "options": f"-c statement_timeout={int(statement_timeout_ms)}",
            },
            **pool_options,
        )

    path = _sqlite_path(url)
    path.parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(
        f"sqlite:///{path}",
        connect_args={
            "timeout": statement_timeout_ms / 1000,
            "check_same_thread": False,
        },
        **pool_options,
    )

    @event.listens_for(engine, "connect")
    def _sqlite_pragmas(dbapi_conn, connection_record):
        cur = dbapi_conn.cursor()
        cur.execute("PRAGMA journal_mode=WAL")
        cur.execute(f"PRAGMA busy_timeout={int(statement_timeout_ms)}")
        cur.close()

    return engine


def engine_label(engine):
    """Printable engine name and location, without credentials."""
    if engine.dialect.name == "postgresql":
        host = engine.url.host or "cloud"
        if engine.url.port:
            host = f"{host}:{engine.url.port}"
        return "PostgreSQL", host
    return "SQLite", engine.url.database


def check_connection(engine):
    """Log whether the store answers; returns True/False, never raises."""
    name, location = engine_label(engine)
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception:
        logger.exception("[DB] Database connection failed (%s | %s)", name, location)
        return False
    logger.info("[DB] Database connected successfully (%s | %s)", name, location)
    return True


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

SQLITE_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS orders (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        items TEXT NOT NULL,
        total NUMERIC NOT NULL,
        tax NUMERIC DEFAULT 0,
        grand_total NUMERIC NOT NULL,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP,
        payment_method TEXT NOT NULL,
        synced_at TEXT,
        cloud_id TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS shop_settings (
        id INTEGER PRIMARY KEY CHECK (id = 1),
        name TEXT NOT NULL,
        name_local TEXT NOT NULL,
        address TEXT NOT NULL,
        phone TEXT NOT NULL,
        gst_number TEXT,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP,
        updated_at TEXT DEFAULT CURRENT_TIMESTAMP
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_orders_created_at ON orders(created_at)",
]

PG_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS orders (
        id VARCHAR(50) PRIMARY KEY,
        user_id VARCHAR(50) NOT NULL,
        items JSONB NOT NULL,
        total DECIMAL(10,2) NOT NULL,
        tax DECIMAL(10,2) DEFAULT 0,
        grand_total DECIMAL(10,2) NOT NULL,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        payment_method VARCHAR(20) NOT NULL,
        synced_at TIMESTAMP,
        cloud_id VARCHAR(50)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS shop_settings (
        id INTEGER PRIMARY KEY CHECK (id = 1),
        name VARCHAR(255) NOT NULL,
        name_local VARCHAR(255) NOT NULL,
        address TEXT NOT NULL,
        phone VARCHAR(20) NOT NULL,
        gst_number VARCHAR(50),
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_orders_created_at ON orders(created_at)",
]


def init_db(engine):
    """Create tables if they don't exist. Safe to run on every start."""
    schema = PG_SCHEMA if engine.dialect.name == "postgresql" else SQLITE_SCHEMA
    try:
        with engine.begin() as conn:
            for statement in schema:
                conn.execute(text(statement))
    except Exception:
        logger.exception("[DB] Error creating tables")
        raise
    name, location = engine_label(engine)
    logger.info("[DB] Tables ready | Engine: %s | %s", name, location)
