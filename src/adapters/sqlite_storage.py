"""SQLite storage adapter.

Implements the core CursorStorePort and StatSinkPort using a simple SQLite
database. Every public method runs in its own transaction, so a commit is
never observed half-applied by a concurrent reader.
"""

from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from typing import List, Optional

from core.cursors import files_to_prune, is_rotation, sort_death_log_files
from core.models import CursorState


def _to_text(value: Optional[datetime]) -> Optional[str]:
    return value.astimezone(timezone.utc).isoformat() if value else None


def _from_text(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class SQLiteStorage:
    """Thin SQLite wrapper that satisfies the cursor store and stat sink contracts."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self) -> None:
        """Create tables if they do not exist.

        Tables:
        - server_state: per-server line offset and death log watermark
        - processed_files: bounded registry of ingested death log files
        - player_stats: kill/death counters and currency mutated by the pipeline
        """

        with self._connect() as conn:
            # server_state keeps one row per server id so a restart resumes
            # where the last committed sweep stopped.
            # Fields:
            # - server_id: stable registration id (PRIMARY KEY)
            # - line_offset: complete server log lines already consumed
            # - last_processed_timestamp: newest death log line attributed (UTC ISO)
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS server_state (
                    server_id TEXT PRIMARY KEY,
                    line_offset INTEGER NOT NULL DEFAULT 0,
                    last_processed_timestamp TEXT
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS processed_files (
                    server_id TEXT NOT NULL,
                    filename TEXT NOT NULL,
                    processed_at TIMESTAMP NOT NULL,
                    PRIMARY KEY (server_id, filename)
                )
                """
            )
            # player_stats is keyed by the in-game player id when the source
            # provides one, otherwise by player name.
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS player_stats (
                    player_id TEXT PRIMARY KEY,
                    name TEXT,
                    kills INTEGER NOT NULL DEFAULT 0,
                    deaths INTEGER NOT NULL DEFAULT 0,
                    currency INTEGER NOT NULL DEFAULT 0
                )
                """
            )

    # -- line offsets ---------------------------------------------------

    def get_offset(self, server_id: str) -> int:
        """Return the committed line offset for a server (0 when unknown)."""

        with self._connect() as conn:
            row = conn.execute(
                "SELECT line_offset FROM server_state WHERE server_id = ?",
                (server_id,),
            ).fetchone()
        return int(row["line_offset"]) if row else 0

    def commit_offset(self, server_id: str, new_offset: int) -> None:
        """Upsert the line offset; offsets only move forward outside a rotation."""

        if new_offset < 0:
            raise ValueError(f"Offset must be >= 0, got {new_offset}")
        with self._connect() as conn:
            row = conn.execute(
                "SELECT line_offset FROM server_state WHERE server_id = ?",
                (server_id,),
            ).fetchone()
            if row and new_offset < int(row["line_offset"]):
                raise ValueError(
                    f"Offset for {server_id} cannot move backwards "
                    f"({row['line_offset']} -> {new_offset}) without a reset"
                )
            conn.execute(
                """
                INSERT INTO server_state (server_id, line_offset)
                VALUES (?, ?)
                ON CONFLICT(server_id) DO UPDATE SET line_offset = excluded.line_offset
                """,
                (server_id, new_offset),
            )

    def detect_rotation(self, server_id: str, reported_size: int) -> bool:
        return is_rotation(reported_size, self.get_offset(server_id))

    def reset_offset(self, server_id: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE server_state SET line_offset = 0 WHERE server_id = ?",
                (server_id,),
            )

    # -- death log registry ---------------------------------------------

    def is_processed(self, server_id: str, filename: str) -> bool:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT 1 FROM processed_files WHERE server_id = ? AND filename = ?",
                (server_id, filename),
            ).fetchone()
        return row is not None

    def mark_processed(self, server_id: str, filename: str) -> None:
        """Register a file as ingested, pruning the registry in the same transaction."""

        with self._connect() as conn:
            self._insert_processed(conn, server_id, filename)
            self._prune(conn, server_id)

    def prune_processed_files(self, server_id: str) -> int:
        """Drop all but the newest files once the registry exceeds its bound."""

        with self._connect() as conn:
            return self._prune(conn, server_id)

    def get_last_processed_timestamp(self, server_id: str) -> Optional[datetime]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT last_processed_timestamp FROM server_state WHERE server_id = ?",
                (server_id,),
            ).fetchone()
        return _from_text(row["last_processed_timestamp"]) if row else None

    def commit_death_file(
        self, server_id: str, filename: str, newest_timestamp: Optional[datetime]
    ) -> None:
        """Mark a file processed and advance the watermark atomically.

        The watermark only moves when the file contributed at least one line.
        """

        with self._connect() as conn:
            self._insert_processed(conn, server_id, filename)
            if newest_timestamp is not None:
                conn.execute(
                    """
                    INSERT INTO server_state (server_id, last_processed_timestamp)
                    VALUES (?, ?)
                    ON CONFLICT(server_id) DO UPDATE SET
                        last_processed_timestamp = MAX(
                            COALESCE(last_processed_timestamp, ''),
                            excluded.last_processed_timestamp
                        )
                    """,
                    (server_id, _to_text(newest_timestamp)),
                )
            self._prune(conn, server_id)

    def _insert_processed(self, conn: sqlite3.Connection, server_id: str, filename: str) -> None:
        conn.execute(
            """
            INSERT OR IGNORE INTO processed_files (server_id, filename, processed_at)
            VALUES (?, ?, ?)
            """,
            (server_id, filename, datetime.now(timezone.utc).isoformat()),
        )

    def _prune(self, conn: sqlite3.Connection, server_id: str) -> int:
        rows = conn.execute(
            "SELECT filename FROM processed_files WHERE server_id = ?",
            (server_id,),
        ).fetchall()
        stale = files_to_prune(row["filename"] for row in rows)
        conn.executemany(
            "DELETE FROM processed_files WHERE server_id = ? AND filename = ?",
            [(server_id, filename) for filename in stale],
        )
        return len(stale)

    def list_processed_files(self, server_id: str) -> List[str]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT filename FROM processed_files WHERE server_id = ?",
                (server_id,),
            ).fetchall()
        return sort_death_log_files(row["filename"] for row in rows)

    def get_state(self, server_id: str) -> CursorState:
        return CursorState(
            server_id=server_id,
            line_offset=self.get_offset(server_id),
            last_processed_timestamp=self.get_last_processed_timestamp(server_id),
            processed_files=tuple(self.list_processed_files(server_id)),
        )

    def list_server_ids(self) -> set[str]:
        """Return all server ids with any persisted cursor state."""

        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT server_id FROM server_state
                UNION SELECT server_id FROM processed_files
                """
            ).fetchall()
        return {row["server_id"] for row in rows}

    def list_states(self) -> List[CursorState]:
        return [self.get_state(server_id) for server_id in sorted(self.list_server_ids())]

    # -- player stats ---------------------------------------------------

    def increment_kills(self, player_id: str, name: str) -> None:
        self._bump(player_id, name, "kills", 1)

    def increment_deaths(self, player_id: str, name: str) -> None:
        self._bump(player_id, name, "deaths", 1)

    def grant_currency(self, player_id: str, amount: int) -> None:
        self._bump(player_id, None, "currency", amount)

    def _bump(self, player_id: str, name: Optional[str], column: str, amount: int) -> None:
        # Column names come from the three callers above, never from input.
        with self._connect() as conn:
            conn.execute(
                f"""
                INSERT INTO player_stats (player_id, name, {column})
                VALUES (?, ?, ?)
                ON CONFLICT(player_id) DO UPDATE SET
                    {column} = {column} + excluded.{column},
                    name = COALESCE(excluded.name, name)
                """,
                (player_id, name, amount),
            )

    def get_player_stats(self, player_id: str) -> Optional[dict]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT player_id, name, kills, deaths, currency FROM player_stats WHERE player_id = ?",
                (player_id,),
            ).fetchone()
        return dict(row) if row else None
