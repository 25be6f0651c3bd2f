"""SQLite-backed auditor and the queries behind ``hook-chain audit``."""

from __future__ import annotations

import logging
import sqlite3
from datetime import UTC, datetime, timedelta
from pathlib import Path

from hookchain.audit import (
    MAX_STDERR_LEN,
    AuditStats,
    ChainExecution,
    ChainOutcome,
    HookOutcome,
    HookResult,
    truncate_stderr,
)

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%f"

SCHEMA = """
CREATE TABLE IF NOT EXISTS chain_executions (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp   TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now')),
    event_name  TEXT    NOT NULL,
    tool_name   TEXT    NOT NULL,
    chain_len   INTEGER NOT NULL,
    outcome     TEXT    NOT NULL,
    reason      TEXT    NOT NULL DEFAULT '',
    duration_ms INTEGER NOT NULL,
    session_id  TEXT    NOT NULL DEFAULT ''
);

CREATE TABLE IF NOT EXISTS hook_results (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    chain_id     INTEGER NOT NULL REFERENCES chain_executions(id),
    hook_index   INTEGER NOT NULL,
    hook_name    TEXT    NOT NULL,
    exit_code    INTEGER NOT NULL,
    outcome      TEXT    NOT NULL,
    duration_ms  INTEGER NOT NULL,
    stderr       TEXT    NOT NULL DEFAULT ''
);

CREATE INDEX IF NOT EXISTS idx_chain_ts ON chain_executions(timestamp);
CREATE INDEX IF NOT EXISTS idx_hook_chain ON hook_results(chain_id);
"""

_CHAIN_COLUMNS = (
    "id, timestamp, event_name, tool_name, tool_detail, chain_len, outcome, reason, duration_ms, session_id"
)


def format_timestamp(ts: datetime) -> str:
    """Millisecond precision, UTC, sortable as text."""
    if ts.tzinfo is not None:
        ts = ts.astimezone(UTC)
    return ts.strftime(TIMESTAMP_FORMAT)[:-3]


def parse_timestamp(text: str) -> datetime:
    return datetime.strptime(text, TIMESTAMP_FORMAT).replace(tzinfo=UTC)


def connect(db_path: str | Path) -> sqlite3.Connection:
    conn = sqlite3.connect(str(db_path), timeout=5.0)
    conn.execute("PRAGMA busy_timeout=5000")
    return conn


def _column_exists(conn: sqlite3.Connection, table: str, column: str) -> bool:
    rows = conn.execute(f"PRAGMA table_info({table})").fetchall()
    return any(row[1] == column for row in rows)


def _migrate(conn: sqlite3.Connection) -> None:
    """Apply incremental migrations tracked by ``PRAGMA user_version``."""
    (version,) = conn.execute("PRAGMA user_version").fetchone()
    if version == 0:
        if not _column_exists(conn, "chain_executions", "tool_detail"):
            conn.execute("ALTER TABLE chain_executions ADD COLUMN tool_detail TEXT NOT NULL DEFAULT ''")
        conn.execute("PRAGMA user_version = 1")
        conn.commit()


class SQLiteAuditor:
    """Auditor that writes chain executions to a local SQLite database."""

    def __init__(self, conn: sqlite3.Connection, path: Path | None = None):
        self._conn = conn
        self.path = path

    @classmethod
    def open(cls, db_path: str | Path) -> SQLiteAuditor:
        """Open (or create) the database, apply the schema, switch to WAL."""
        path = Path(db_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        conn = connect(path)
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript(SCHEMA)
            _migrate(conn)
        except sqlite3.Error:
            conn.close()
            raise
        return cls(conn, path)

    @property
    def conn(self) -> sqlite3.Connection:
        return self._conn

    def insert(self, entry: ChainExecution) -> int:
        """Insert a chain and its hook results in one transaction."""
        with self._conn:
            cur = self._conn.execute(
                "INSERT INTO chain_executions "
                "(timestamp, event_name, tool_name, tool_detail, chain_len, outcome, reason, duration_ms, session_id) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    format_timestamp(entry.timestamp),
                    entry.event_name,
                    entry.tool_name,
                    entry.tool_detail,
                    entry.chain_len,
                    str(entry.outcome),
                    entry.reason,
                    entry.duration_ms,
                    entry.session_id,
                ),
            )
            chain_id = cur.lastrowid
            self._conn.executemany(
                "INSERT INTO hook_results "
                "(chain_id, hook_index, hook_name, exit_code, outcome, duration_ms, stderr) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                [
                    (
                        chain_id,
                        h.hook_index,
                        h.hook_name,
                        h.exit_code,
                        str(h.outcome),
                        h.duration_ms,
                        truncate_stderr(h.stderr, MAX_STDERR_LEN),
                    )
                    for h in entry.hooks
                ],
            )
        return chain_id

    async def record_chain(self, entry: ChainExecution) -> None:
        self.insert(entry)

    async def close(self) -> None:
        self._conn.close()


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


def _row_to_chain(row: tuple) -> ChainExecution:
    return ChainExecution(
        id=row[0],
        timestamp=parse_timestamp(row[1]),
        event_name=row[2],
        tool_name=row[3],
        tool_detail=row[4],
        chain_len=row[5],
        outcome=ChainOutcome(row[6]),
        reason=row[7],
        duration_ms=row[8],
        session_id=row[9],
    )


def list_chains(
    conn: sqlite3.Connection,
    limit: int = 20,
    offset: int = 0,
    event: str | None = None,
    outcome: str | None = None,
) -> list[ChainExecution]:
    """Chain executions, newest first, optionally filtered by event and outcome."""
    query = f"SELECT {_CHAIN_COLUMNS} FROM chain_executions WHERE 1=1"
    params: list = []
    if event:
        query += " AND event_name = ?"
        params.append(event)
    if outcome:
        query += " AND outcome = ?"
        params.append(outcome)
    query += " ORDER BY timestamp DESC, id DESC"
    if limit > 0:
        query += " LIMIT ?"
        params.append(limit)
    elif offset > 0:
        query += " LIMIT -1"
    if offset > 0:
        query += " OFFSET ?"
        params.append(offset)

    return [_row_to_chain(row) for row in conn.execute(query, params).fetchall()]


def get_chain(conn: sqlite3.Connection, chain_id: int) -> ChainExecution | None:
    """A single chain execution with its hook results, or ``None``."""
    row = conn.execute(f"SELECT {_CHAIN_COLUMNS} FROM chain_executions WHERE id = ?", (chain_id,)).fetchone()
    if row is None:
        return None
    chain = _row_to_chain(row)
    for h in conn.execute(
        "SELECT id, chain_id, hook_index, hook_name, exit_code, outcome, duration_ms, stderr "
        "FROM hook_results WHERE chain_id = ? ORDER BY hook_index",
        (chain_id,),
    ):
        chain.hooks.append(
            HookResult(
                id=h[0],
                chain_id=h[1],
                hook_index=h[2],
                hook_name=h[3],
                exit_code=h[4],
                outcome=HookOutcome(h[5]),
                duration_ms=h[6],
                stderr=h[7],
            )
        )
    return chain


def tail(conn: sqlite3.Connection, n: int = 10) -> list[ChainExecution]:
    return list_chains(conn, limit=n)


def chain_ids_before(conn: sqlite3.Connection, cutoff: datetime) -> list[int]:
    rows = conn.execute(
        "SELECT id FROM chain_executions WHERE timestamp < ? ORDER BY timestamp ASC",
        (format_timestamp(cutoff),),
    ).fetchall()
    return [row[0] for row in rows]


def prune_before(conn: sqlite3.Connection, cutoff: datetime) -> int:
    """Delete chains (and their hook results) older than *cutoff*."""
    stamp = format_timestamp(cutoff)
    with conn:
        conn.execute(
            "DELETE FROM hook_results WHERE chain_id IN (SELECT id FROM chain_executions WHERE timestamp < ?)",
            (stamp,),
        )
        cur = conn.execute("DELETE FROM chain_executions WHERE timestamp < ?", (stamp,))
    return cur.rowcount


def prune(conn: sqlite3.Connection, older_than: float) -> int:
    """Delete chains older than *older_than* seconds."""
    return prune_before(conn, datetime.now(UTC) - timedelta(seconds=older_than))


def stats(conn: sqlite3.Connection) -> AuditStats:
    result = AuditStats()
    total, avg = conn.execute(
        "SELECT COALESCE(COUNT(*), 0), COALESCE(AVG(duration_ms), 0) FROM chain_executions"
    ).fetchone()
    result.total_chains = total
    result.avg_duration_ms = float(avg)
    if total == 0:
        return result

    oldest, newest = conn.execute("SELECT MIN(timestamp), MAX(timestamp) FROM chain_executions").fetchone()
    result.oldest_entry = parse_timestamp(oldest)
    result.newest_entry = parse_timestamp(newest)

    for outcome, count in conn.execute("SELECT outcome, COUNT(*) FROM chain_executions GROUP BY outcome"):
        result.count_by_outcome[outcome] = count
    return result
