import sqlite3
import threading
from typing import Optional, Dict, List

class StorageDB:
    def __init__(self, db_path: str):
        self.conn = sqlite3.connect(db_path, check_same_thread=False)
        self.cursor = self.conn.cursor()
        self._lock = threading.Lock()
        self._init_db()

    def _init_db(self):
        with self._lock:
            # State table: Key-Value store for accounts and global counters
            self.cursor.execute('''
                CREATE TABLE IF NOT EXISTS state (
                    key TEXT PRIMARY KEY,
                    value TEXT
                )
            ''')
            # Append-only audit log of committed operations
            self.cursor.execute('''
                CREATE TABLE IF NOT EXISTS events (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    op TEXT,
                    data TEXT
                )
            ''')
            self.conn.commit()

    # --- State Methods ---
    def get_state(self, key: str) -> Optional[str]:
        with self._lock:
            self.cursor.execute('SELECT value FROM state WHERE key = ?', (key,))
            row = self.cursor.fetchone()
            return row[0] if row else None

    def set_state_many(self, items: Dict[str, str]):
        """Writes several keys in one transaction."""
        with self._lock:
            self.cursor.executemany(
                'INSERT OR REPLACE INTO state (key, value) VALUES (?, ?)',
                list(items.items())
            )
            self.conn.commit()

    def get_state_by_prefix(self, prefix: str) -> Dict[str, str]:
        with self._lock:
            self.cursor.execute('SELECT key, value FROM state WHERE key LIKE ?', (f"{prefix}%",))
            return {row[0]: row[1] for row in self.cursor.fetchall()}

    # --- Event Methods ---
    def append_event(self, op: str, data: str):
        with self._lock:
            self.cursor.execute('INSERT INTO events (op, data) VALUES (?, ?)', (op, data))
            self.conn.commit()

    def get_events(self, limit: int = 100) -> List[str]:
        """Returns the most recent events, oldest first."""
        with self._lock:
            self.cursor.execute('SELECT data FROM events ORDER BY seq DESC LIMIT ?', (limit,))
            rows = self.cursor.fetchall()
            return [row[0] for row in reversed(rows)]

    def close(self):
        with self._lock:
            self.conn.close()
