"""
SQLite-backed durable sink for the legend archive.

Each legend is one row: identity columns for fast listing plus the full
snapshot as a zlib-compressed JSON blob. Unlike session persistence, a
failed write is not degraded to a warning: it surfaces as
``ArchiveWriteError`` so the agent stays unarchived and is retried.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import zlib
from datetime import datetime, timezone
from typing import Any

from tribesim.core.errors import ArchiveWriteError
from tribesim.social.legend import Legend

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS legends (
    agent_id INTEGER PRIMARY KEY,
    lineage_id TEXT NOT NULL,
    archived_tick INTEGER NOT NULL,
    created_at TEXT NOT NULL,
    legend_blob BLOB NOT NULL
);
"""


def compress_legend(legend: Legend) -> bytes:
    """Serialize a legend to zlib-compressed JSON bytes."""
    json_bytes = json.dumps(legend.to_dict(), sort_keys=True).encode("utf-8")
    return zlib.compress(json_bytes, level=6)


def decompress_legend(blob: bytes) -> Legend:
    return Legend.from_dict(json.loads(zlib.decompress(blob).decode("utf-8")))


class SqliteLegendSink:
    """Append-only legend storage in a single SQLite table.

    Uses ``check_same_thread=False`` so the API's thread pool can read
    while the tick engine writes; SQLite serializes the writes.
    """

    def __init__(self, db_path: str = "data/legends.db"):
        self.db_path = db_path
        try:
            self._conn = sqlite3.connect(db_path, check_same_thread=False)
            self._conn.execute(_SCHEMA)
            self._conn.commit()
        except sqlite3.Error as exc:
            raise OSError(f"Cannot open legend store at {db_path}: {exc}") from exc

    def append(self, legend: Legend) -> None:
        """Insert one legend; any storage failure raises ArchiveWriteError."""
        try:
            self._conn.execute(
                "INSERT INTO legends (agent_id, lineage_id, archived_tick, created_at, legend_blob) "
                "VALUES (?, ?, ?, ?, ?)",
                (
                    legend.agent_id,
                    legend.lineage_id,
                    legend.archived_tick,
                    datetime.now(timezone.utc).isoformat(),
                    compress_legend(legend),
                ),
            )
            self._conn.commit()
        except (sqlite3.Error, OSError) as exc:
            logger.warning("Legend write failed for agent %d: %s", legend.agent_id, exc)
            raise ArchiveWriteError(legend.agent_id, str(exc)) from exc
        logger.debug("Stored legend %d in %s", legend.agent_id, self.db_path)

    def load_all(self) -> list[Legend]:
        """Every stored legend in insertion order."""
        rows = self._conn.execute(
            "SELECT legend_blob FROM legends ORDER BY rowid"
        ).fetchall()
        return [decompress_legend(row[0]) for row in rows]

    def list_summaries(self) -> list[dict[str, Any]]:
        rows = self._conn.execute(
            "SELECT agent_id, lineage_id, archived_tick, created_at "
            "FROM legends ORDER BY rowid"
        ).fetchall()
        return [
            {"agent_id": r[0], "lineage_id": r[1], "archived_tick": r[2], "created_at": r[3]}
            for r in rows
        ]

    def close(self) -> None:
        self._conn.close()
