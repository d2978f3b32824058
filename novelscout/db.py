"""Database helpers for the novelscout service.

The service stores the source registry, the favorites list and download jobs
in an SQLite database. Each helper function opens its own connection on
demand using the standard ``sqlite3`` module and closes it as soon as
possible, so helpers are safe to call from any task.

The schema is defined in ``init_db()``. Sources are keyed by their unique
``name`` and also carry a ``UNIQUE`` constraint on ``url``; selector maps
and request headers are stored as JSON text. ``position`` records the
registration order, which breaks ties when sources are ranked by latency.
"""

from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Optional

from . import config

DB_PATH = config.DB_PATH


def get_connection() -> sqlite3.Connection:
    """Return a new SQLite connection with row_factory set to dict-like."""
    Path(DB_PATH).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(DB_PATH)
    conn.row_factory = sqlite3.Row
    return conn


def init_db() -> None:
    """Create the ``sources``, ``favorites`` and ``jobs`` tables if missing.

    This function is idempotent and is called on every application start.
    """
    conn = get_connection()
    cur = conn.cursor()
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS sources (
            name TEXT PRIMARY KEY,
            url TEXT UNIQUE NOT NULL,
            search_url TEXT,
            kind TEXT,
            selectors TEXT,
            headers TEXT,
            delay REAL DEFAULT 0,
            enabled INTEGER DEFAULT 1,
            disabled INTEGER DEFAULT 0,
            latency REAL,
            last_checked TEXT,
            position INTEGER
        )
        """
    )
    columns = {row["name"] for row in cur.execute("PRAGMA table_info(sources)")}
    if "disabled" not in columns:
        cur.execute("ALTER TABLE sources ADD COLUMN disabled INTEGER DEFAULT 0")
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS favorites (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            link TEXT,
            payload TEXT,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP
        )
        """
    )
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS jobs (
            id TEXT PRIMARY KEY,
            payload TEXT,
            status TEXT,
            progress INTEGER,
            processed INTEGER,
            total INTEGER,
            error TEXT,
            result_path TEXT,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT DEFAULT CURRENT_TIMESTAMP
        )
        """
    )
    conn.commit()
    conn.close()


def upsert_source(source: Dict[str, Any], position: int) -> None:
    """Insert or update a source row.

    ``source`` is the JSON-compatible dump of a ``SourceDefinition``. If a
    row with the same ``name`` exists it is updated in place, keeping its
    original ``position``.
    """
    values = [
        source["name"],
        source["url"],
        source.get("search_url"),
        source.get("kind"),
        json.dumps(source.get("selectors") or {}, ensure_ascii=False),
        json.dumps(source.get("headers") or {}, ensure_ascii=False),
        source.get("delay", 0),
        1 if source.get("enabled", True) else 0,
        1 if source.get("disabled") else 0,
        source.get("latency"),
        source.get("last_checked"),
    ]
    conn = get_connection()
    cur = conn.cursor()
    try:
        cur.execute(
            """
            INSERT INTO sources(name, url, search_url, kind, selectors, headers,
                                delay, enabled, disabled, latency, last_checked, position)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            values + [position],
        )
    except sqlite3.IntegrityError:
        cur.execute(
            """
            UPDATE sources SET url = ?, search_url = ?, kind = ?, selectors = ?, headers = ?,
                               delay = ?, enabled = ?, disabled = ?, latency = ?, last_checked = ?
            WHERE name = ?
            """,
            values[1:] + [source["name"]],
        )
    conn.commit()
    conn.close()


def list_sources() -> List[Dict[str, Any]]:
    """Return all source rows in registration order."""
    conn = get_connection()
    cur = conn.cursor()
    cur.execute("SELECT * FROM sources ORDER BY position ASC")
    rows = cur.fetchall()
    conn.close()
    sources = []
    for row in rows:
        data = dict(row)
        data["selectors"] = json.loads(data["selectors"] or "{}")
        data["headers"] = json.loads(data["headers"] or "{}")
        data["enabled"] = bool(data["enabled"])
        data["disabled"] = bool(data["disabled"])
        data.pop("position", None)
        sources.append(data)
    return sources


def add_favorite(novel: Dict[str, Any]) -> int:
    """Store a favorite novel record and return its row id."""
    conn = get_connection()
    cur = conn.cursor()
    cur.execute(
        "INSERT INTO favorites(link, payload) VALUES (?, ?)",
        (novel.get("link", ""), json.dumps(novel, ensure_ascii=False)),
    )
    favorite_id = cur.lastrowid
    conn.commit()
    conn.close()
    return favorite_id


def list_favorites() -> List[Dict[str, Any]]:
    """Return favorites oldest first, each with its ``id`` merged in."""
    conn = get_connection()
    cur = conn.cursor()
    cur.execute("SELECT id, payload FROM favorites ORDER BY id ASC")
    rows = cur.fetchall()
    conn.close()
    return [dict(json.loads(row["payload"]), id=row["id"]) for row in rows]


def delete_favorite(favorite_id: int) -> bool:
    """Delete a favorite; returns False when no row matched."""
    conn = get_connection()
    cur = conn.cursor()
    cur.execute("DELETE FROM favorites WHERE id = ?", (favorite_id,))
    deleted = cur.rowcount > 0
    conn.commit()
    conn.close()
    return deleted


def insert_job(job: Dict[str, Any]) -> None:
    """Insert a download job row. The ``payload`` field is stored as JSON."""
    payload_json = json.dumps(job.get("payload")) if job.get("payload") is not None else None
    conn = get_connection()
    cur = conn.cursor()
    cur.execute(
        """
        INSERT INTO jobs(id, payload, status, progress, processed, total, error, result_path)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            job["id"],
            payload_json,
            job.get("status", "queued"),
            job.get("progress", 0),
            job.get("processed", 0),
            job.get("total", 0),
            job.get("error"),
            job.get("result_path"),
        ),
    )
    conn.commit()
    conn.close()


def update_job(job_id: str, **fields: Any) -> None:
    """Update any of status/progress/processed/total/error/result_path on a job.

    Only provided (non-None) arguments are written. The ``updated_at``
    field records when the row was modified.
    """
    allowed = ("status", "progress", "processed", "total", "error", "result_path")
    parts: List[str] = []
    params: List[Any] = []
    for name in allowed:
        if fields.get(name) is not None:
            parts.append(f"{name} = ?")
            params.append(fields[name])
    if not parts:
        return
    params.append(job_id)
    conn = get_connection()
    cur = conn.cursor()
    cur.execute(
        f"UPDATE jobs SET {', '.join(parts)}, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
        params,
    )
    conn.commit()
    conn.close()


def get_job(job_id: str) -> Optional[Dict[str, Any]]:
    """Return a job record as a dict, or None if absent."""
    conn = get_connection()
    cur = conn.cursor()
    cur.execute("SELECT * FROM jobs WHERE id = ?", (job_id,))
    row = cur.fetchone()
    conn.close()
    if not row:
        return None
    data = dict(row)
    if data.get("payload"):
        data["payload"] = json.loads(data["payload"])
    return data
