"""SQLite storage for feeds, entries and read/starred status."""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path

from local_feed.errors import InvalidInputError, NotFoundError
from local_feed.models import Entry, Feed, Staleness, Stats, UpsertEntryInput

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 500
DEFAULT_LIST_LIMIT = 50
ENTRY_STATUSES = ("unread", "read", "all")
_FTS_QUERY_ERRORS = ("fts5", "syntax error", "unterminated", "no such column")

INITIAL_SCHEMA = [
    """CREATE TABLE IF NOT EXISTS feeds (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        url TEXT NOT NULL UNIQUE,
        site_url TEXT,
        title TEXT,
        description TEXT,
        last_fetched_at TEXT,
        etag TEXT,
        last_modified TEXT,
        created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
    )""",
    """CREATE TABLE IF NOT EXISTS entries (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        feed_id INTEGER NOT NULL REFERENCES feeds(id) ON DELETE CASCADE,
        guid TEXT NOT NULL,
        url TEXT,
        external_url TEXT,
        title TEXT,
        summary TEXT,
        content_html TEXT,
        content_md TEXT,
        author TEXT,
        published_at TEXT,
        date_modified TEXT,
        fetched_at TEXT NOT NULL,
        UNIQUE(feed_id, guid)
    )""",
    """CREATE TABLE IF NOT EXISTS entry_status (
        entry_id INTEGER PRIMARY KEY REFERENCES entries(id) ON DELETE CASCADE,
        read INTEGER NOT NULL DEFAULT 0,
        starred INTEGER NOT NULL DEFAULT 0,
        read_at TEXT,
        starred_at TEXT
    )""",
    """CREATE VIRTUAL TABLE IF NOT EXISTS entries_fts USING fts5(
        title,
        summary,
        content_md,
        content='entries',
        content_rowid='id'
    )""",
    """CREATE TRIGGER IF NOT EXISTS entries_ai AFTER INSERT ON entries BEGIN
        INSERT INTO entries_fts(rowid, title, summary, content_md)
        VALUES (new.id, new.title, new.summary, new.content_md);
    END""",
    """CREATE TRIGGER IF NOT EXISTS entries_ad AFTER DELETE ON entries BEGIN
        INSERT INTO entries_fts(entries_fts, rowid, title, summary, content_md)
        VALUES ('delete', old.id, old.title, old.summary, old.content_md);
    END""",
    """CREATE TRIGGER IF NOT EXISTS entries_au AFTER UPDATE ON entries BEGIN
        INSERT INTO entries_fts(entries_fts, rowid, title, summary, content_md)
        VALUES ('delete', old.id, old.title, old.summary, old.content_md);
        INSERT INTO entries_fts(rowid, title, summary, content_md)
        VALUES (new.id, new.title, new.summary, new.content_md);
    END""",
    "CREATE INDEX IF NOT EXISTS idx_entries_feed_published ON entries(feed_id, published_at DESC)",
    "CREATE INDEX IF NOT EXISTS idx_entry_status_read ON entry_status(read)",
    "CREATE INDEX IF NOT EXISTS idx_entry_status_starred ON entry_status(starred)",
]

FEED_COLUMNS = """
    f.id, f.url, f.site_url, f.title, f.description, f.last_fetched_at,
    f.etag, f.last_modified, f.last_error, f.error_count, f.created_at
"""

ENTRY_COLUMNS = """
    e.id, e.feed_id, COALESCE(NULLIF(f.title, ''), f.url) AS feed_title, e.guid,
    e.url, e.external_url, e.title, e.summary, e.content_html, e.content_md,
    e.author, e.published_at, e.date_modified, e.fetched_at,
    COALESCE(es.read, 0) AS read, COALESCE(es.starred, 0) AS starred
"""

ENTRY_JOINS = """
    JOIN feeds f ON f.id = e.feed_id
    LEFT JOIN entry_status es ON es.entry_id = e.id
"""


def _migrate_initial_schema(conn: sqlite3.Connection) -> None:
    for stmt in INITIAL_SCHEMA:
        conn.execute(stmt)


def _migrate_feed_error_columns(conn: sqlite3.Connection) -> None:
    columns = {row["name"] for row in conn.execute("PRAGMA table_info(feeds)")}
    if "last_error" not in columns:
        conn.execute("ALTER TABLE feeds ADD COLUMN last_error TEXT")
    if "error_count" not in columns:
        conn.execute("ALTER TABLE feeds ADD COLUMN error_count INTEGER NOT NULL DEFAULT 0")


def _migrate_fts_rebuild(conn: sqlite3.Connection) -> None:
    conn.execute("INSERT INTO entries_fts(entries_fts) VALUES ('rebuild')")


MIGRATIONS = [
    ("0001_initial_schema", _migrate_initial_schema),
    ("0002_feed_error_columns", _migrate_feed_error_columns),
    ("0003_fts_rebuild", _migrate_fts_rebuild),
]


class Database:
    """SQLite database manager for feeds and entries.

    A single connection is shared by all callers. Every statement runs under
    one re-entrant lock, so writes are serialized and multi-step mutations
    execute inside ``BEGIN IMMEDIATE`` transactions that commit or roll back
    as a unit.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()

    def connect(self) -> None:
        """Open database connection and apply pending migrations."""
        if self.db_path != ":memory:":
            Path(self.db_path).expanduser().parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(
            self.db_path, check_same_thread=False, isolation_level=None
        )
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA foreign_keys=ON")
            conn.execute("PRAGMA busy_timeout=5000")
            conn.execute("PRAGMA journal_mode=WAL")
            self._conn = conn
            self._run_migrations()
        except sqlite3.Error:
            conn.close()
            self._conn = None
            raise

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None

    def __enter__(self) -> "Database":
        self.connect()
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._conn

    @contextmanager
    def transaction(self):
        """Run the enclosed statements as one write transaction."""
        with self._lock:
            conn = self.conn
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    def _query(self, sql: str, params=()) -> list[sqlite3.Row]:
        with self._lock:
            return self.conn.execute(sql, params).fetchall()

    def _query_one(self, sql: str, params=()) -> sqlite3.Row | None:
        with self._lock:
            return self.conn.execute(sql, params).fetchone()

    def _run_migrations(self) -> None:
        with self._lock:
            self.conn.execute(
                """CREATE TABLE IF NOT EXISTS schema_migrations (
                    name TEXT PRIMARY KEY,
                    applied_at TEXT NOT NULL
                )"""
            )
            applied = {
                row["name"]
                for row in self.conn.execute("SELECT name FROM schema_migrations")
            }
            for name, migrate in MIGRATIONS:
                if name in applied:
                    continue
                with self.transaction() as conn:
                    migrate(conn)
                    conn.execute(
                        "INSERT INTO schema_migrations(name, applied_at) VALUES (?, ?)",
                        (name, _dt_to_str(_utcnow())),
                    )
                logger.info("Applied migration %s", name)

    # --- Feed operations ---

    def create_feed(self, url: str) -> tuple[Feed, bool]:
        """Subscribe to ``url`` if it is new.

        Returns:
            Tuple of (canonical Feed row, whether it was inserted now).
        """
        with self.transaction() as conn:
            cursor = conn.execute("INSERT OR IGNORE INTO feeds(url) VALUES (?)", (url,))
            inserted = cursor.rowcount > 0
            feed = self.get_feed_by_url(url)
        if feed is None:
            raise NotFoundError(f"feed {url!r} vanished after insert")
        return feed, inserted

    def get_feed_by_url(self, url: str) -> Feed | None:
        """Look up a feed by its URL."""
        row = self._query_one(f"SELECT {FEED_COLUMNS} FROM feeds f WHERE f.url = ?", (url,))
        return _row_to_feed(row) if row else None

    def get_feed_by_id(self, feed_id: int) -> Feed | None:
        """Look up a feed by its id."""
        row = self._query_one(f"SELECT {FEED_COLUMNS} FROM feeds f WHERE f.id = ?", (feed_id,))
        return _row_to_feed(row) if row else None

    def delete_feed(self, feed_id: int) -> bool:
        """Delete a feed and its entries (cascade). Returns True if deleted."""
        with self.transaction() as conn:
            cursor = conn.execute("DELETE FROM feeds WHERE id = ?", (feed_id,))
        return cursor.rowcount > 0

    def list_feeds(self) -> list[Feed]:
        """Return all feeds with unread and total entry counts."""
        rows = self._query(
            f"""SELECT {FEED_COLUMNS},
                   COALESCE(SUM(CASE WHEN e.id IS NOT NULL AND COALESCE(es.read, 0) = 0
                                THEN 1 ELSE 0 END), 0) AS unread_count,
                   COUNT(e.id) AS total_count
               FROM feeds f
               LEFT JOIN entries e ON e.feed_id = f.id
               LEFT JOIN entry_status es ON es.entry_id = e.id
               GROUP BY f.id
               ORDER BY COALESCE(NULLIF(f.title, ''), f.url) COLLATE NOCASE"""
        )
        feeds = []
        for r in rows:
            feed = _row_to_feed(r)
            feed.unread_count = r["unread_count"]
            feed.total_count = r["total_count"]
            feeds.append(feed)
        return feeds

    def list_feed_urls(self) -> list[Feed]:
        """Return id, url, title (falling back to url) and site url for export."""
        rows = self._query(
            """SELECT id, url, COALESCE(NULLIF(title, ''), url) AS title, site_url
               FROM feeds
               ORDER BY COALESCE(NULLIF(title, ''), url) COLLATE NOCASE"""
        )
        return [
            Feed(id=r["id"], url=r["url"], title=r["title"], site_url=r["site_url"])
            for r in rows
        ]

    def list_feeds_for_fetch(self, feed_id: int | None = None) -> list[Feed]:
        """Return the feeds to poll, ordered by id.

        Raises:
            NotFoundError: If ``feed_id`` is given and does not exist.
        """
        query = f"SELECT {FEED_COLUMNS} FROM feeds f"
        params: list = []
        if feed_id is not None:
            query += " WHERE f.id = ?"
            params.append(feed_id)
        query += " ORDER BY f.id"

        feeds = [_row_to_feed(r) for r in self._query(query, params)]
        if feed_id is not None and not feeds:
            raise NotFoundError(f"feed {feed_id} not found")
        return feeds

    def update_feed_fetch_success(
        self,
        feed_id: int,
        title: str,
        site_url: str,
        description: str,
        etag: str,
        last_modified: str,
        fetched_at: datetime,
    ) -> None:
        """Record a successful fetch and clear the feed's error state.

        Empty ``title``, ``site_url`` or ``description`` keep the stored value;
        caching tokens and the timestamp are always overwritten.
        """
        with self.transaction() as conn:
            conn.execute(
                """UPDATE feeds SET
                       title = CASE WHEN ? <> '' THEN ? ELSE title END,
                       site_url = CASE WHEN ? <> '' THEN ? ELSE site_url END,
                       description = CASE WHEN ? <> '' THEN ? ELSE description END,
                       etag = ?,
                       last_modified = ?,
                       last_fetched_at = ?,
                       last_error = NULL,
                       error_count = 0
                   WHERE id = ?""",
                (
                    title, title,
                    site_url, site_url,
                    description, description,
                    etag or None,
                    last_modified or None,
                    _dt_to_str(fetched_at),
                    feed_id,
                ),
            )

    def set_feed_error(self, feed_id: int, message: str) -> None:
        """Increment error count and store a truncated error message for a feed."""
        with self.transaction() as conn:
            conn.execute(
                """UPDATE feeds SET error_count = error_count + 1, last_error = ?
                   WHERE id = ?""",
                (message[:MAX_ERROR_LENGTH], feed_id),
            )

    def get_fetch_staleness(self, stale_after: timedelta) -> Staleness:
        """Report whether the most recent fetch is older than ``stale_after``."""
        row = self._query_one(
            "SELECT COUNT(*) AS cnt, MAX(last_fetched_at) AS latest FROM feeds"
        )
        if not row or row["cnt"] == 0:
            return Staleness(has_feeds=False, stale=False)

        latest = _str_to_dt(row["latest"])
        if latest is None:
            return Staleness(has_feeds=True, stale=True)
        return Staleness(
            has_feeds=True,
            stale=_utcnow() - latest > stale_after,
            last_fetched_at=latest,
        )

    # --- Entry operations ---

    def upsert_entry(self, entry: UpsertEntryInput) -> tuple[int, bool]:
        """Insert or update an entry keyed by (feed_id, guid).

        Returns:
            Tuple of (entry id, whether the entry was newly inserted).
        """
        with self.transaction() as conn:
            existing = conn.execute(
                "SELECT id FROM entries WHERE feed_id = ? AND guid = ?",
                (entry.feed_id, entry.guid),
            ).fetchone()

            conn.execute(
                """INSERT INTO entries (
                       feed_id, guid, url, external_url, title, summary,
                       content_html, content_md, author, published_at,
                       date_modified, fetched_at
                   ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT(feed_id, guid) DO UPDATE SET
                       url = excluded.url,
                       external_url = excluded.external_url,
                       title = excluded.title,
                       summary = excluded.summary,
                       content_html = excluded.content_html,
                       content_md = excluded.content_md,
                       author = excluded.author,
                       published_at = excluded.published_at,
                       date_modified = excluded.date_modified,
                       fetched_at = excluded.fetched_at""",
                (
                    entry.feed_id,
                    entry.guid,
                    entry.url,
                    entry.external_url,
                    entry.title,
                    entry.summary,
                    entry.content_html,
                    entry.content_md,
                    entry.author,
                    _dt_to_str(entry.published_at),
                    _dt_to_str(entry.date_modified),
                    _dt_to_str(_utcnow()),
                ),
            )

            entry_id = conn.execute(
                "SELECT id FROM entries WHERE feed_id = ? AND guid = ?",
                (entry.feed_id, entry.guid),
            ).fetchone()["id"]
            conn.execute(
                "INSERT OR IGNORE INTO entry_status(entry_id) VALUES (?)", (entry_id,)
            )
        return entry_id, existing is None

    def list_entries(
        self,
        status: str = "unread",
        feed_id: int | None = None,
        limit: int = DEFAULT_LIST_LIMIT,
    ) -> list[Entry]:
        """List entries filtered by read status and feed, newest first.

        Entries without a published date sort last.

        Raises:
            InvalidInputError: If ``status`` is not unread, read or all.
        """
        status = (status or "unread").strip().lower()
        if status not in ENTRY_STATUSES:
            raise InvalidInputError(
                f"invalid status {status!r} (expected unread|read|all)"
            )
        if limit <= 0:
            limit = DEFAULT_LIST_LIMIT

        query = f"SELECT {ENTRY_COLUMNS} FROM entries e {ENTRY_JOINS} WHERE 1=1"
        params: list = []

        if feed_id is not None:
            query += " AND e.feed_id = ?"
            params.append(feed_id)
        if status == "unread":
            query += " AND COALESCE(es.read, 0) = 0"
        elif status == "read":
            query += " AND COALESCE(es.read, 0) = 1"

        query += """ ORDER BY CASE WHEN e.published_at IS NULL OR e.published_at = ''
                                  THEN 1 ELSE 0 END,
                             COALESCE(e.published_at, e.fetched_at) DESC
                     LIMIT ?"""
        params.append(limit)
        return [_row_to_entry(r) for r in self._query(query, params)]

    def get_entry(self, entry_id: int) -> Entry:
        """Return a single entry.

        Raises:
            NotFoundError: If the entry does not exist.
        """
        row = self._query_one(
            f"SELECT {ENTRY_COLUMNS} FROM entries e {ENTRY_JOINS} WHERE e.id = ?",
            (entry_id,),
        )
        if row is None:
            raise NotFoundError(f"entry {entry_id} not found")
        return _row_to_entry(row)

    def search_entries(
        self,
        query: str,
        feed_id: int | None = None,
        limit: int = DEFAULT_LIST_LIMIT,
    ) -> list[Entry]:
        """Full-text search across entry title, summary and content using FTS5.

        Results are ranked by bm25 relevance, then by recency.
        """
        if not query or not query.strip():
            raise InvalidInputError("query must not be empty")
        if limit <= 0:
            limit = DEFAULT_LIST_LIMIT

        sql = f"""SELECT {ENTRY_COLUMNS}
                  FROM entries_fts
                  JOIN entries e ON e.id = entries_fts.rowid
                  {ENTRY_JOINS}
                  WHERE entries_fts MATCH ?"""
        params: list = [query]
        if feed_id is not None:
            sql += " AND e.feed_id = ?"
            params.append(feed_id)
        sql += """ ORDER BY bm25(entries_fts), COALESCE(e.published_at, e.fetched_at) DESC
                   LIMIT ?"""
        params.append(limit)

        try:
            rows = self._query(sql, params)
        except sqlite3.OperationalError as e:
            message = str(e).lower()
            if any(hint in message for hint in _FTS_QUERY_ERRORS):
                raise InvalidInputError(f"invalid search query {query!r}: {e}") from e
            raise
        return [_row_to_entry(r) for r in rows]

    def get_stats(self) -> Stats:
        """Return aggregate feed and entry counts."""
        row = self._query_one(
            """SELECT
                   (SELECT COUNT(*) FROM feeds) AS feeds,
                   (SELECT COUNT(*) FROM entries) AS total,
                   (SELECT COUNT(*) FROM entry_status WHERE read = 0) AS unread,
                   (SELECT COUNT(*) FROM entry_status WHERE starred = 1) AS starred"""
        )
        return Stats(
            feeds=row["feeds"],
            unread=row["unread"],
            starred=row["starred"],
            total=row["total"],
        )

    # --- Status operations ---

    def update_entry_read(self, entry_id: int, read: bool) -> None:
        """Mark one entry read or unread."""
        self._set_status(_read_update(read), _status_stamp(read), [entry_id])

    def toggle_entry_starred(self, entry_id: int) -> bool:
        """Flip an entry's starred flag. Returns the new value."""
        with self.transaction() as conn:
            _ensure_status(conn, entry_id)
            current = conn.execute(
                "SELECT starred FROM entry_status WHERE entry_id = ?", (entry_id,)
            ).fetchone()["starred"]
            starred = not current
            conn.execute(_starred_update(starred), (_status_stamp(starred), entry_id))
        return starred

    def set_entries_read(self, entry_ids: list[int], read: bool) -> None:
        """Mark several entries read or unread, all or nothing."""
        self._set_status(_read_update(read), _status_stamp(read), entry_ids)

    def set_entries_starred(self, entry_ids: list[int], starred: bool) -> None:
        """Star or unstar several entries, all or nothing."""
        self._set_status(_starred_update(starred), _status_stamp(starred), entry_ids)

    def _set_status(
        self, update_sql: str, stamp: str | None, entry_ids: list[int]
    ) -> None:
        if not entry_ids:
            return
        bad = [i for i in entry_ids if isinstance(i, bool) or not isinstance(i, int) or i <= 0]
        if bad:
            raise InvalidInputError(f"invalid entry ids: {bad}")
        with self.transaction() as conn:
            for entry_id in entry_ids:
                _ensure_status(conn, entry_id)
                conn.execute(update_sql, (stamp, entry_id))

    def prune_read_entries_older_than(self, days: int) -> int:
        """Delete read, unstarred entries older than ``days``.

        The entry age is its published date, falling back to its fetch time.
        Returns the number of deleted entries; ``days <= 0`` is a no-op.
        """
        if days <= 0:
            return 0

        cutoff = _utcnow() - timedelta(days=days)
        with self.transaction() as conn:
            rows = conn.execute(
                """SELECT e.id, COALESCE(e.published_at, e.fetched_at) AS ts
                   FROM entries e
                   JOIN entry_status es ON es.entry_id = e.id
                   WHERE es.read = 1 AND es.starred = 0"""
            ).fetchall()
            ids = [
                r["id"] for r in rows
                if (ts := _str_to_dt(r["ts"])) is not None and ts < cutoff
            ]
            if not ids:
                return 0
            placeholders = ",".join("?" for _ in ids)
            cursor = conn.execute(
                f"DELETE FROM entries WHERE id IN ({placeholders})", ids
            )
        logger.info("Pruned %d read entries older than %d days", cursor.rowcount, days)
        return cursor.rowcount


# --- Helper functions ---


def _ensure_status(conn: sqlite3.Connection, entry_id: int) -> None:
    if conn.execute("SELECT 1 FROM entries WHERE id = ?", (entry_id,)).fetchone() is None:
        raise NotFoundError(f"entry {entry_id} not found")
    conn.execute("INSERT OR IGNORE INTO entry_status(entry_id) VALUES (?)", (entry_id,))


def _read_update(read: bool) -> str:
    if read:
        return "UPDATE entry_status SET read = 1, read_at = ? WHERE entry_id = ?"
    return "UPDATE entry_status SET read = 0, read_at = ? WHERE entry_id = ?"


def _starred_update(starred: bool) -> str:
    if starred:
        return "UPDATE entry_status SET starred = 1, starred_at = ? WHERE entry_id = ?"
    return "UPDATE entry_status SET starred = 0, starred_at = ? WHERE entry_id = ?"


def _status_stamp(on: bool) -> str | None:
    return _dt_to_str(_utcnow()) if on else None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


_DB_TIME_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def _dt_to_str(dt: datetime | None) -> str | None:
    """Convert datetime to a sortable UTC string for storage."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime(_DB_TIME_FORMAT)


def _str_to_dt(s: str | None) -> datetime | None:
    """Convert a stored timestamp back to an aware UTC datetime."""
    if not s:
        return None
    try:
        return datetime.strptime(s, _DB_TIME_FORMAT).replace(tzinfo=timezone.utc)
    except ValueError:
        pass
    try:
        dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError:
        logger.debug("Ignoring unparseable timestamp %r", s)
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _row_to_feed(row: sqlite3.Row) -> Feed:
    """Convert a database row to a Feed dataclass."""
    return Feed(
        id=row["id"],
        url=row["url"],
        site_url=row["site_url"],
        title=row["title"],
        description=row["description"],
        last_fetched_at=_str_to_dt(row["last_fetched_at"]),
        etag=row["etag"],
        last_modified=row["last_modified"],
        last_error=row["last_error"],
        error_count=row["error_count"],
        created_at=_str_to_dt(row["created_at"]),
    )


def _row_to_entry(row: sqlite3.Row) -> Entry:
    """Convert a joined database row to an Entry dataclass."""
    return Entry(
        id=row["id"],
        feed_id=row["feed_id"],
        feed_title=row["feed_title"],
        guid=row["guid"],
        url=row["url"],
        external_url=row["external_url"],
        title=row["title"],
        summary=row["summary"],
        content_html=row["content_html"],
        content_md=row["content_md"],
        author=row["author"],
        published_at=_str_to_dt(row["published_at"]),
        date_modified=_str_to_dt(row["date_modified"]),
        fetched_at=_str_to_dt(row["fetched_at"]),
        read=bool(row["read"]),
        starred=bool(row["starred"]),
    )
