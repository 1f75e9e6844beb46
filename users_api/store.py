from __future__ import annotations

import sqlite3
import threading
from pathlib import Path
from typing import Dict, List, Optional


_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    email TEXT NOT NULL
)
"""


class UserStore:
    """sqlite3-backed `users` table shared by the REST handler and the push relay."""

    def __init__(self, path: str | Path = ":memory:") -> None:
        self.path = str(path)
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self.path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        with self._lock, self._conn:
            self._conn.execute(_SCHEMA)

    @staticmethod
    def _row(row: sqlite3.Row) -> Dict:
        return {"id": int(row["id"]), "name": row["name"], "email": row["email"]}

    def list(self) -> List[Dict]:
        with self._lock:
            rows = self._conn.execute("SELECT id, name, email FROM users ORDER BY id").fetchall()
        return [self._row(r) for r in rows]

    def get(self, user_id: int) -> Optional[Dict]:
        with self._lock:
            row = self._conn.execute("SELECT id, name, email FROM users WHERE id = ?", (user_id,)).fetchone()
        return self._row(row) if row is not None else None

    def create(self, name: str, email: str) -> Dict:
        with self._lock, self._conn:
            cur = self._conn.execute("INSERT INTO users (name, email) VALUES (?, ?)", (name, email))
        return {"id": int(cur.lastrowid), "name": name, "email": email}

    def update(self, user_id: int, name: str, email: str) -> Optional[Dict]:
        with self._lock, self._conn:
            cur = self._conn.execute("UPDATE users SET name = ?, email = ? WHERE id = ?", (name, email, user_id))
        if cur.rowcount == 0:
            return None
        return {"id": user_id, "name": name, "email": email}

    def delete(self, user_id: int) -> bool:
        with self._lock, self._conn:
            cur = self._conn.execute("DELETE FROM users WHERE id = ?", (user_id,))
        return cur.rowcount > 0

    def close(self) -> None:
        with self._lock:
            self._conn.close()
