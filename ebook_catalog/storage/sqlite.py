from __future__ import annotations

import sqlite3
import time
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import Any

from ebook_catalog.shared.concurrency import chunked
from ebook_catalog.storage.repositories import (
    AuthorCount,
    CatalogItemRecord,
    CategoryCount,
    SyncStateRecord,
)

ITEM_COLUMNS: tuple[str, ...] = (
    "id",
    "lang",
    "title",
    "author",
    "category",
    "title_norm",
    "author_norm",
    "source",
    "download_url",
    "cover_url",
    "source_id",
    "source_popularity",
    "created_at",
    "updated_at",
    "last_seen_at",
)

_INSERT_COLUMNS_SQL = ", ".join(ITEM_COLUMNS)
_INSERT_VALUES_SQL = ", ".join(f":{column}" for column in ITEM_COLUMNS)

ITEM_ORDER_SQL = "source_popularity IS NULL, source_popularity DESC, updated_at DESC, id ASC"
# Rows without a download link are hidden from listings and counts.
LISTABLE_SQL = "download_url IS NOT NULL AND download_url != ''"


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _item_from_row(row: sqlite3.Row) -> CatalogItemRecord:
    popularity = row["source_popularity"]
    return CatalogItemRecord(
        id=str(row["id"]),
        lang=str(row["lang"]),
        title=str(row["title"]),
        author=str(row["author"]),
        category=str(row["category"]),
        title_norm=str(row["title_norm"]),
        author_norm=str(row["author_norm"]),
        source=str(row["source"]),
        download_url=row["download_url"],
        cover_url=row["cover_url"],
        source_id=row["source_id"],
        source_popularity=int(popularity) if popularity is not None else None,
        created_at=int(row["created_at"] or 0),
        updated_at=int(row["updated_at"] or 0),
        last_seen_at=int(row["last_seen_at"] or 0),
    )


class SQLiteStore:
    def __init__(self, db_path: Path, *, check_same_thread: bool = True) -> None:
        self.db_path = db_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(str(db_path), check_same_thread=check_same_thread)
        self.conn.row_factory = sqlite3.Row

    def close(self) -> None:
        self.conn.close()

    def _table_columns(self, table: str) -> set[str]:
        rows = self.conn.execute(f"PRAGMA table_info({table})").fetchall()
        return {str(row["name"]) for row in rows}

    def _ensure_column(self, table: str, column: str, column_def: str) -> None:
        if column in self._table_columns(table):
            return
        self.conn.execute(f"ALTER TABLE {table} ADD COLUMN {column_def}")

    def create_schema(self) -> None:
        self.conn.executescript(
            """
            PRAGMA journal_mode=WAL;

            CREATE TABLE IF NOT EXISTS catalog_items (
                id TEXT PRIMARY KEY,
                lang TEXT NOT NULL,
                title TEXT NOT NULL,
                author TEXT NOT NULL,
                category TEXT NOT NULL,
                title_norm TEXT NOT NULL,
                author_norm TEXT NOT NULL,
                source TEXT NOT NULL,
                download_url TEXT,
                cover_url TEXT,
                source_id TEXT,
                source_popularity INTEGER,
                created_at INTEGER NOT NULL,
                updated_at INTEGER NOT NULL,
                last_seen_at INTEGER NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_catalog_items_lang_category ON catalog_items(lang, category);
            CREATE INDEX IF NOT EXISTS idx_catalog_items_lang_author_norm ON catalog_items(lang, author_norm);
            CREATE INDEX IF NOT EXISTS idx_catalog_items_lang_title_norm ON catalog_items(lang, title_norm);

            CREATE TABLE IF NOT EXISTS category_counts (
                lang TEXT NOT NULL,
                category TEXT NOT NULL,
                count INTEGER NOT NULL,
                updated_at INTEGER NOT NULL,
                PRIMARY KEY (lang, category)
            );

            CREATE TABLE IF NOT EXISTS author_counts (
                lang TEXT NOT NULL,
                author_norm TEXT NOT NULL,
                author TEXT NOT NULL,
                count INTEGER NOT NULL,
                updated_at INTEGER NOT NULL,
                PRIMARY KEY (lang, author_norm)
            );

            CREATE TABLE IF NOT EXISTS sync_state (
                lang TEXT PRIMARY KEY,
                status TEXT NOT NULL,
                last_started_at INTEGER,
                last_completed_at INTEGER,
                last_error TEXT,
                last_items_upserted INTEGER NOT NULL DEFAULT 0,
                updated_at INTEGER
            );
            """
        )

        # Older local DB files predate last_seen_at.
        self._ensure_column("catalog_items", "last_seen_at", "last_seen_at INTEGER NOT NULL DEFAULT 0")
        self.conn.commit()

    def upsert_catalog_items(self, rows: Sequence[CatalogItemRecord], *, batch_size: int = 400) -> int:
        """Insert or update rows by id; each batch is its own transaction.

        ``created_at`` of an existing row is kept. Cover, download URL, source
        id and popularity are never cleared by an incoming NULL.
        """
        if not rows:
            return 0
        written = 0
        for batch in chunked(rows, batch_size):
            params = [{column: getattr(row, column) for column in ITEM_COLUMNS} for row in batch]
            with self.conn:
                self.conn.executemany(
                    f"""
                    INSERT INTO catalog_items ({_INSERT_COLUMNS_SQL})
                    VALUES ({_INSERT_VALUES_SQL})
                    ON CONFLICT(id) DO UPDATE SET
                        lang=excluded.lang,
                        title=excluded.title,
                        author=excluded.author,
                        category=excluded.category,
                        title_norm=excluded.title_norm,
                        author_norm=excluded.author_norm,
                        source=excluded.source,
                        download_url=COALESCE(excluded.download_url, catalog_items.download_url),
                        cover_url=COALESCE(excluded.cover_url, catalog_items.cover_url),
                        source_id=COALESCE(excluded.source_id, catalog_items.source_id),
                        source_popularity=COALESCE(excluded.source_popularity, catalog_items.source_popularity),
                        updated_at=excluded.updated_at,
                        last_seen_at=excluded.last_seen_at
                    """,
                    params,
                )
            written += len(batch)
        return written

    def get_items_by_ids(self, ids: Iterable[str]) -> dict[str, CatalogItemRecord]:
        unique = list(dict.fromkeys(ids))
        if not unique:
            return {}
        out: dict[str, CatalogItemRecord] = {}
        # Stay well below SQLite's bound-parameter limit.
        for batch in chunked(unique, 500):
            placeholders = ", ".join("?" for _ in batch)
            rows = self.conn.execute(
                f"SELECT * FROM catalog_items WHERE id IN ({placeholders})",
                tuple(batch),
            ).fetchall()
            for row in rows:
                out[str(row["id"])] = _item_from_row(row)
        return out

    def _item_filters(
        self,
        lang: str,
        *,
        category: str | None,
        author_norm: str | None,
        search: str | None,
    ) -> tuple[str, list[Any]]:
        clauses = ["lang = ?", LISTABLE_SQL]
        params: list[Any] = [lang]
        if category is not None:
            clauses.append("category = ?")
            params.append(category)
        if author_norm is not None:
            clauses.append("author_norm = ?")
            params.append(author_norm)
        if search:
            pattern = f"%{_escape_like(search)}%"
            clauses.append("(title_norm LIKE ? ESCAPE '\\' OR author_norm LIKE ? ESCAPE '\\')")
            params.extend([pattern, pattern])
        return " AND ".join(clauses), params

    def list_items(
        self,
        lang: str,
        *,
        category: str | None = None,
        author_norm: str | None = None,
        search: str | None = None,
        offset: int = 0,
        limit: int = 40,
    ) -> list[CatalogItemRecord]:
        where, params = self._item_filters(lang, category=category, author_norm=author_norm, search=search)
        rows = self.conn.execute(
            f"""
            SELECT *
            FROM catalog_items
            WHERE {where}
            ORDER BY {ITEM_ORDER_SQL}
            LIMIT ? OFFSET ?
            """,
            (*params, max(0, limit), max(0, offset)),
        ).fetchall()
        return [_item_from_row(row) for row in rows]

    def count_items(
        self,
        lang: str,
        *,
        category: str | None = None,
        author_norm: str | None = None,
        search: str | None = None,
    ) -> int:
        where, params = self._item_filters(lang, category=category, author_norm=author_norm, search=search)
        row = self.conn.execute(f"SELECT COUNT(*) AS count FROM catalog_items WHERE {where}", params).fetchone()
        return int(row["count"]) if row else 0

    def rebuild_counts(self, lang: str, *, now_unix: int | None = None) -> None:
        """Recompute category and author counts for one language in one transaction."""
        now = int(time.time()) if now_unix is None else now_unix
        with self.conn:
            self.conn.execute("DELETE FROM category_counts WHERE lang = ?", (lang,))
            self.conn.execute(
                f"""
                INSERT INTO category_counts (lang, category, count, updated_at)
                SELECT lang, category, COUNT(*), ?
                FROM catalog_items
                WHERE lang = ? AND {LISTABLE_SQL}
                GROUP BY lang, category
                """,
                (now, lang),
            )
            self.conn.execute("DELETE FROM author_counts WHERE lang = ?", (lang,))
            self.conn.execute(
                f"""
                INSERT INTO author_counts (lang, author_norm, author, count, updated_at)
                SELECT lang, author_norm, MIN(author), COUNT(*), ?
                FROM catalog_items
                WHERE lang = ? AND {LISTABLE_SQL}
                  AND TRIM(author) != ''
                  AND LOWER(TRIM(author)) != 'unknown'
                GROUP BY lang, author_norm
                """,
                (now, lang),
            )

    def refresh_category_counts(self, lang: str, categories: Iterable[str], *, now_unix: int | None = None) -> None:
        now = int(time.time()) if now_unix is None else now_unix
        with self.conn:
            for category in dict.fromkeys(categories):
                row = self.conn.execute(
                    f"SELECT COUNT(*) AS count FROM catalog_items WHERE lang = ? AND category = ? AND {LISTABLE_SQL}",
                    (lang, category),
                ).fetchone()
                count = int(row["count"]) if row else 0
                if count == 0:
                    self.conn.execute(
                        "DELETE FROM category_counts WHERE lang = ? AND category = ?",
                        (lang, category),
                    )
                    continue
                self.conn.execute(
                    """
                    INSERT INTO category_counts (lang, category, count, updated_at)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(lang, category) DO UPDATE SET
                        count=excluded.count,
                        updated_at=excluded.updated_at
                    """,
                    (lang, category, count, now),
                )

    def list_category_counts(self, lang: str, limit: int | None = None) -> list[CategoryCount]:
        sql = """
            SELECT category, count
            FROM category_counts
            WHERE lang = ?
            ORDER BY count DESC, category ASC
        """
        params: tuple[object, ...] = (lang,)
        if limit is not None:
            sql = f"{sql} LIMIT ?"
            params = (lang, limit)
        rows = self.conn.execute(sql, params).fetchall()
        return [CategoryCount(category=str(row["category"]), count=int(row["count"])) for row in rows]

    def top_authors(self, lang: str, limit: int) -> list[AuthorCount]:
        rows = self.conn.execute(
            """
            SELECT author, author_norm, count
            FROM author_counts
            WHERE lang = ?
            ORDER BY count DESC, author ASC
            LIMIT ?
            """,
            (lang, limit),
        ).fetchall()
        return [
            AuthorCount(author=str(row["author"]), author_norm=str(row["author_norm"]), count=int(row["count"]))
            for row in rows
        ]

    def get_author_count(self, lang: str, author_norm: str) -> AuthorCount | None:
        row = self.conn.execute(
            "SELECT author, author_norm, count FROM author_counts WHERE lang = ? AND author_norm = ?",
            (lang, author_norm),
        ).fetchone()
        if row is None:
            return None
        return AuthorCount(author=str(row["author"]), author_norm=str(row["author_norm"]), count=int(row["count"]))

    def get_sync_state(self, lang: str) -> SyncStateRecord | None:
        row = self.conn.execute("SELECT * FROM sync_state WHERE lang = ?", (lang,)).fetchone()
        if row is None:
            return None
        return SyncStateRecord(
            lang=str(row["lang"]),
            status=row["status"],
            last_started_at=row["last_started_at"],
            last_completed_at=row["last_completed_at"],
            last_error=row["last_error"],
            last_items_upserted=int(row["last_items_upserted"] or 0),
            updated_at=row["updated_at"],
        )

    def upsert_sync_state(self, state: SyncStateRecord) -> None:
        self.conn.execute(
            """
            INSERT INTO sync_state (
                lang,
                status,
                last_started_at,
                last_completed_at,
                last_error,
                last_items_upserted,
                updated_at
            )
            VALUES (
                :lang,
                :status,
                :last_started_at,
                :last_completed_at,
                :last_error,
                :last_items_upserted,
                :updated_at
            )
            ON CONFLICT(lang) DO UPDATE SET
                status=excluded.status,
                last_started_at=excluded.last_started_at,
                last_completed_at=excluded.last_completed_at,
                last_error=excluded.last_error,
                last_items_upserted=excluded.last_items_upserted,
                updated_at=excluded.updated_at
            """,
            {
                "lang": state.lang,
                "status": state.status,
                "last_started_at": state.last_started_at,
                "last_completed_at": state.last_completed_at,
                "last_error": state.last_error,
                "last_items_upserted": state.last_items_upserted,
                "updated_at": state.updated_at,
            },
        )
        self.conn.commit()

    def mark_sync_started(self, lang: str, *, now_unix: int | None = None) -> SyncStateRecord:
        now = int(time.time()) if now_unix is None else now_unix
        previous = self.get_sync_state(lang) or SyncStateRecord(lang=lang)
        state = SyncStateRecord(
            lang=lang,
            status="running",
            last_started_at=now,
            last_completed_at=previous.last_completed_at,
            last_error=None,
            last_items_upserted=previous.last_items_upserted,
            updated_at=now,
        )
        self.upsert_sync_state(state)
        return state

    def mark_sync_completed(self, lang: str, items_upserted: int, *, now_unix: int | None = None) -> SyncStateRecord:
        now = int(time.time()) if now_unix is None else now_unix
        previous = self.get_sync_state(lang) or SyncStateRecord(lang=lang)
        state = SyncStateRecord(
            lang=lang,
            status="idle",
            last_started_at=previous.last_started_at,
            last_completed_at=now,
            last_error=None,
            last_items_upserted=items_upserted,
            updated_at=now,
        )
        self.upsert_sync_state(state)
        return state

    def mark_sync_failed(self, lang: str, error: str, *, now_unix: int | None = None) -> SyncStateRecord:
        now = int(time.time()) if now_unix is None else now_unix
        previous = self.get_sync_state(lang) or SyncStateRecord(lang=lang)
        state = SyncStateRecord(
            lang=lang,
            status="error",
            last_started_at=previous.last_started_at,
            last_completed_at=previous.last_completed_at,
            last_error=error[:2000],
            last_items_upserted=previous.last_items_upserted,
            updated_at=now,
        )
        self.upsert_sync_state(state)
        return state

    def list_sync_states(self) -> list[SyncStateRecord]:
        rows = self.conn.execute("SELECT lang FROM sync_state ORDER BY lang ASC").fetchall()
        return [state for state in (self.get_sync_state(str(row["lang"])) for row in rows) if state]
