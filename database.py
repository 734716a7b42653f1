import sqlite3
import threading
from datetime import date
from typing import Optional

import config

# -----------------------
# DB initialisieren
# -----------------------
_SCHEMA = (
    # Store tracker settings in dedicated table
    """
    CREATE TABLE IF NOT EXISTS tracker_settings (
        key TEXT PRIMARY KEY,
        value TEXT,
        updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
    )
    """,
    # Single-row counters for auto-buys / detections
    """
    CREATE TABLE IF NOT EXISTS sniper_stats (
        id INTEGER PRIMARY KEY CHECK (id = 1),
        auto_buys INTEGER NOT NULL DEFAULT 0,
        detections INTEGER NOT NULL DEFAULT 0,
        today_buys INTEGER NOT NULL DEFAULT 0,
        last_reset_date TEXT,
        updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
    )
    """,
)

# Thread-local connections
_local = threading.local()


def _ensure_schema(conn: sqlite3.Connection) -> None:
    c = conn.cursor()
    for stmt in _SCHEMA:
        c.execute(stmt)
    c.execute("INSERT OR IGNORE INTO sniper_stats (id) VALUES (1)")
    conn.commit()


def get_connection() -> sqlite3.Connection:
    path = config.DB_PATH
    conn = getattr(_local, "conn", None)
    if conn is not None and getattr(_local, "path", None) == path:
        return conn
    if conn is not None:
        conn.close()
    conn = sqlite3.connect(path, check_same_thread=False)
    _ensure_schema(conn)
    _local.conn = conn
    _local.path = path
    return conn


def get_cursor() -> sqlite3.Cursor:
    return get_connection().cursor()


def close_connection() -> None:
    conn = getattr(_local, "conn", None)
    if conn is not None:
        conn.close()
    _local.conn = None
    _local.path = None


def save_setting(key: str, value: str) -> None:
    conn = get_connection()
    conn.execute("""
        INSERT OR REPLACE INTO tracker_settings (key, value, updated_at)
        VALUES (?, ?, CURRENT_TIMESTAMP)
    """, (key, value))
    conn.commit()


def load_setting(key: str, default: Optional[str] = None) -> Optional[str]:
    try:
        c = get_cursor()
        c.execute("SELECT value FROM tracker_settings WHERE key = ?", (key,))
        row = c.fetchone()
        return row[0] if row else default
    except sqlite3.Error as e:
        print(f"Error loading setting {key}: {e}")
        return default


# -----------------------
# Statistik
# -----------------------
def get_stats() -> dict:
    c = get_cursor()
    c.execute("SELECT auto_buys, detections, today_buys, last_reset_date FROM sniper_stats WHERE id = 1")
    row = c.fetchone() or (0, 0, 0, None)
    return {
        "auto_buys": row[0],
        "detections": row[1],
        "today_buys": row[2],
        "last_reset_date": row[3],
    }


def increment_stats(auto_buys: int = 0, detections: int = 0, today: Optional[date] = None) -> dict:
    """Add pending counters in one transaction; today_buys restarts on a new day.

    Raises sqlite3.Error on failure so the caller can keep its pending counts.
    """
    today_str = (today or date.today()).isoformat()
    conn = get_connection()
    with conn:
        c = conn.cursor()
        c.execute("SELECT last_reset_date FROM sniper_stats WHERE id = 1")
        row = c.fetchone()
        if not row or row[0] != today_str:
            c.execute(
                "UPDATE sniper_stats SET today_buys = 0, last_reset_date = ? WHERE id = 1",
                (today_str,),
            )
        c.execute(
            """
            UPDATE sniper_stats
            SET auto_buys = auto_buys + ?,
                detections = detections + ?,
                today_buys = today_buys + ?,
                updated_at = CURRENT_TIMESTAMP
            WHERE id = 1
            """,
            (int(auto_buys), int(detections), int(auto_buys)),
        )
    return get_stats()


def reset_stats() -> None:
    conn = get_connection()
    with conn:
        conn.execute(
            "UPDATE sniper_stats SET auto_buys = 0, detections = 0, today_buys = 0, last_reset_date = NULL WHERE id = 1"
        )


class SqliteStatsStore:
    """Stats store backed by the sniper_stats table."""

    def __init__(self, today_fn=None) -> None:
        self._today_fn = today_fn or date.today

    def increment(self, counters: dict) -> dict:
        return increment_stats(
            auto_buys=counters.get("auto_buys", 0),
            detections=counters.get("detections", 0),
            today=self._today_fn(),
        )
