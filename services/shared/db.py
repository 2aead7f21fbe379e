import logging
from pathlib import Path

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine, make_url

logger = logging.getLogger(__name__)

SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS beliefs (
        id TEXT PRIMARY KEY,
        text TEXT NOT NULL,
        domain TEXT NOT NULL,
        confidence REAL NOT NULL,
        evidence_ids TEXT NOT NULL,
        supporting_count INTEGER NOT NULL DEFAULT 0,
        contradicting_count INTEGER NOT NULL DEFAULT 0,
        derived_at TEXT NOT NULL,
        last_evaluated TEXT NOT NULL,
        supersedes_id TEXT,
        invalidated_at TEXT,
        invalidation_reason TEXT,
        importance INTEGER NOT NULL DEFAULT 5,
        tags TEXT,
        fingerprint TEXT,
        FOREIGN KEY (supersedes_id) REFERENCES beliefs(id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_beliefs_domain ON beliefs(domain)",
    "CREATE INDEX IF NOT EXISTS idx_beliefs_active ON beliefs(invalidated_at) WHERE invalidated_at IS NULL",
    "CREATE INDEX IF NOT EXISTS idx_beliefs_confidence ON beliefs(confidence DESC)",
    """
    CREATE VIRTUAL TABLE IF NOT EXISTS beliefs_fts USING fts5(
        text,
        tags,
        content='beliefs',
        content_rowid='rowid'
    )
    """,
    """
    CREATE TRIGGER IF NOT EXISTS beliefs_ai AFTER INSERT ON beliefs BEGIN
        INSERT INTO beliefs_fts(rowid, text, tags) VALUES (NEW.rowid, NEW.text, NEW.tags);
    END
    """,
    """
    CREATE TRIGGER IF NOT EXISTS beliefs_ad AFTER DELETE ON beliefs BEGIN
        INSERT INTO beliefs_fts(beliefs_fts, rowid, text, tags) VALUES ('delete', OLD.rowid, OLD.text, OLD.tags);
    END
    """,
    """
    CREATE TRIGGER IF NOT EXISTS beliefs_au AFTER UPDATE ON beliefs BEGIN
        INSERT INTO beliefs_fts(beliefs_fts, rowid, text, tags) VALUES ('delete', OLD.rowid, OLD.text, OLD.tags);
        INSERT INTO beliefs_fts(rowid, text, tags) VALUES (NEW.rowid, NEW.text, NEW.tags);
    END
    """,
)


def _set_sqlite_pragmas(dbapi_conn, _record):
    cur = dbapi_conn.cursor()
    cur.execute("PRAGMA journal_mode=WAL")
    cur.execute("PRAGMA foreign_keys=ON")
    cur.close()


def create_db_engine(database_url: str) -> Engine:
    """
    Open the storage handle. The caller owns it and must dispose() it.
    SQLite: parent directory is created, WAL + foreign keys on every connection.
    """
    url = make_url(database_url)
    is_sqlite = url.get_backend_name() == "sqlite"

    if is_sqlite and url.database and url.database != ":memory:":
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)

    eng = create_engine(database_url, pool_pre_ping=True)
    if is_sqlite:
        event.listen(eng, "connect", _set_sqlite_pragmas)

    logger.debug("Opened engine for %s", url.render_as_string(hide_password=True))
    return eng


def init_schema(eng: Engine) -> None:
    with eng.begin() as conn:
        for stmt in SCHEMA_STATEMENTS:
            conn.execute(text(stmt))
    logger.info("Belief schema ready")


def exec_sql(eng: Engine, sql: str, **params) -> int:
    """Run one write statement in its own transaction; returns rows affected."""
    with eng.begin() as conn:
        res = conn.execute(text(sql), params)
        return int(res.rowcount or 0)
