from __future__ import annotations
import contextlib, os, shutil, sqlite3, threading, time
from typing import Any, Dict, List, Protocol

from .naming import MillisStamp, stamped_path


class MediaStore(Protocol):
    def persist(self, file_path: str) -> str: ...


class DirectoryGallery:
    """Permanent photo store: a directory of copies plus a SQLite index."""

    def __init__(self, root: str, db_path: str, stamp: MillisStamp | None = None):
        self.root = os.path.abspath(root)
        self.db_path = os.path.abspath(db_path)
        self._lock = threading.RLock()
        self._stamp = stamp or MillisStamp()

    @classmethod
    def from_config(cls, cfg: Dict[str, Any]) -> "DirectoryGallery":
        st = cfg.get("storage", {})
        return cls(st["gallery_dir"], st["gallery_db"])

    @contextlib.contextmanager
    def _conn(self):
        os.makedirs(os.path.dirname(self.db_path), exist_ok=True)
        c = sqlite3.connect(self.db_path)
        try:
            with c:
                yield c
        finally:
            c.close()

    def init_db(self) -> None:
        with self._lock, self._conn() as c:
            c.execute("""CREATE TABLE IF NOT EXISTS gallery (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                source_path TEXT NOT NULL,
                stored_path TEXT NOT NULL,
                created_ts INTEGER NOT NULL
            )""")
            c.commit()

    def persist(self, file_path: str) -> str:
        """Copy ``file_path`` into the gallery and index it; returns the stored path."""
        _, ext = os.path.splitext(file_path)
        with self._lock:
            self.init_db()
            stored, _ = stamped_path(self.root, "IMG", ext or ".png", self._stamp)
            shutil.copy2(file_path, stored)
            try:
                with self._conn() as c:
                    c.execute("INSERT INTO gallery(source_path, stored_path, created_ts) VALUES (?,?,?)",
                              (os.path.abspath(file_path), stored, int(time.time())))
                    c.commit()
            except sqlite3.Error:
                os.remove(stored)
                raise
        return stored

    def items(self) -> List[Dict[str, Any]]:
        with self._lock:
            self.init_db()
            with self._conn() as c:
                rows = c.execute("SELECT id, source_path, stored_path, created_ts FROM gallery ORDER BY id").fetchall()
        return [{"id": i, "source_path": s, "stored_path": p, "created_ts": ts} for i, s, p, ts in rows]
