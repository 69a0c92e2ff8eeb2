from __future__ import annotations

import copy
import json
import logging
import sqlite3
from typing import Any, Dict, List

from hackjudge.errors import StorageError

logger = logging.getLogger(__name__)

COLLECTIONS = ("teams", "judges", "evaluations")

Record = Dict[str, Any]


def _check_name(name: str) -> None:
    if name not in COLLECTIONS:
        raise KeyError(f"Unknown collection '{name}'.")


class MemoryStorage:
    """Whole-collection key/value storage kept in process memory."""

    def __init__(self, initial: Dict[str, List[Record]] | None = None):
        self._data: Dict[str, List[Record]] = {name: [] for name in COLLECTIONS}
        for name, records in (initial or {}).items():
            _check_name(name)
            self._data[name] = copy.deepcopy(records)

    def get(self, name: str) -> List[Record]:
        _check_name(name)
        return copy.deepcopy(self._data[name])

    def set(self, name: str, records: List[Record]) -> None:
        _check_name(name)
        self._data[name] = copy.deepcopy(records)


# -----------------------
# sqlite
# -----------------------
SCHEMA = """
CREATE TABLE IF NOT EXISTS teams (
    position INTEGER NOT NULL,
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    project_name TEXT NOT NULL,
    project_description TEXT NOT NULL DEFAULT '',
    members TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS judges (
    position INTEGER NOT NULL,
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    email TEXT NOT NULL,
    assigned_teams TEXT
);

-- one row per (judge, team); a resubmission replaces the row
CREATE TABLE IF NOT EXISTS evaluations (
    position INTEGER NOT NULL,
    id TEXT PRIMARY KEY,
    team_id TEXT NOT NULL,
    judge_id TEXT NOT NULL,
    scores TEXT NOT NULL,
    comments TEXT,
    total_score REAL NOT NULL,
    submitted_at TEXT NOT NULL,
    UNIQUE(judge_id, team_id)
);
"""

# column -> True when stored as JSON text
COLUMNS: Dict[str, Dict[str, bool]] = {
    "teams": {"id": False, "name": False, "project_name": False, "project_description": False, "members": True},
    "judges": {"id": False, "name": False, "email": False, "assigned_teams": True},
    "evaluations": {
        "id": False,
        "team_id": False,
        "judge_id": False,
        "scores": True,
        "comments": False,
        "total_score": False,
        "submitted_at": False,
    },
}


class SqliteStorage:
    """
    Whole-collection storage backed by one sqlite table per collection.

    set() swaps the full table inside one transaction, so a failed write leaves
    the previous rows in place.
    """

    def __init__(self, path: str, timeout: float = 5.0):
        self.path = path
        self.timeout = timeout

    def db(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.path, timeout=self.timeout)
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self) -> None:
        try:
            conn = self.db()
            try:
                with conn:
                    conn.executescript(SCHEMA)
            finally:
                conn.close()
        except sqlite3.Error as e:
            logger.error("Could not initialise database at %s: %s", self.path, e)
            raise StorageError(f"Could not initialise database: {e}") from e

    def get(self, name: str) -> List[Record]:
        _check_name(name)
        cols = COLUMNS[name]
        try:
            conn = self.db()
            try:
                rows = conn.execute(f"SELECT {', '.join(cols)} FROM {name} ORDER BY position").fetchall()
            finally:
                conn.close()
        except sqlite3.Error as e:
            logger.error("Reading %s failed: %s", name, e)
            raise StorageError(f"Could not read {name}: {e}") from e

        records = []
        for r in rows:
            rec: Record = {}
            for col, is_json in cols.items():
                val = r[col]
                if is_json and val is not None:
                    try:
                        val = json.loads(val)
                    except json.JSONDecodeError as e:
                        raise StorageError(f"Corrupt {col} value in {name} row {r['id']}.") from e
                rec[col] = val
            records.append(rec)
        return records

    def set(self, name: str, records: List[Record]) -> None:
        _check_name(name)
        cols = COLUMNS[name]
        placeholders = ",".join(["?"] * (len(cols) + 1))
        rows = []
        for pos, rec in enumerate(records):
            values: List[Any] = [pos]
            for col, is_json in cols.items():
                val = rec.get(col)
                values.append(json.dumps(val) if is_json and val is not None else val)
            rows.append(values)

        try:
            conn = self.db()
            try:
                with conn:
                    conn.execute(f"DELETE FROM {name}")
                    conn.executemany(
                        f"INSERT INTO {name}(position, {', '.join(cols)}) VALUES({placeholders})",
                        rows,
                    )
            finally:
                conn.close()
        except sqlite3.Error as e:
            logger.error("Writing %s failed: %s", name, e)
            raise StorageError(f"Could not write {name}: {e}") from e
