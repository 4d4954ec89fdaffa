import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone

import config

# Tests point this at a temporary file.
DATABASE_PATH = config.DATABASE_PATH


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def init_database():
    """Initialize the database with required tables."""
    conn = sqlite3.connect(DATABASE_PATH)
    cursor = conn.cursor()

    # Users table (email/password auth)
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            email TEXT UNIQUE NOT NULL,
            password_hash TEXT NOT NULL,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    """)

    # User profiles table (latest row per user is active)
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS user_profiles (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER,
            name TEXT,
            age INTEGER,
            weight REAL,
            height REAL,
            sex TEXT,
            created_at TEXT,
            FOREIGN KEY (user_id) REFERENCES users(id)
        )
    """)

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS notes (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            text TEXT NOT NULL,
            created_at TEXT NOT NULL,
            FOREIGN KEY (user_id) REFERENCES users(id)
        )
    """)

    # Metadata only; the binary lives in blob storage under storage_path.
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS uploaded_files (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            file_name TEXT NOT NULL,
            mime_type TEXT,
            category TEXT,
            subcategory TEXT,
            storage_path TEXT,
            size_bytes INTEGER DEFAULT 0,
            created_at TEXT NOT NULL,
            FOREIGN KEY (user_id) REFERENCES users(id)
        )
    """)

    # Written by the integration sync; read-only for the report pipeline.
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS integration_activities (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            integration_type TEXT NOT NULL,
            external_id TEXT NOT NULL,
            activity_type TEXT,
            name TEXT,
            start_date TEXT,
            distance_m REAL,
            moving_time_s INTEGER,
            elapsed_time_s INTEGER,
            average_speed_mps REAL,
            average_cadence REAL,
            total_elevation_gain_m REAL,
            average_heartrate REAL,
            created_at TEXT NOT NULL,
            UNIQUE (user_id, integration_type, external_id),
            FOREIGN KEY (user_id) REFERENCES users(id)
        )
    """)

    cursor.execute("CREATE INDEX IF NOT EXISTS idx_notes_user ON notes(user_id, created_at)")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_files_user ON uploaded_files(user_id, created_at)")
    cursor.execute(
        "CREATE INDEX IF NOT EXISTS idx_activities_user ON integration_activities(user_id, start_date)"
    )

    conn.commit()
    conn.close()


@contextmanager
def get_db():
    """Context manager for database connections."""
    conn = sqlite3.connect(DATABASE_PATH)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
    finally:
        conn.close()


def create_user(email: str, password_hash: str) -> int:
    with get_db() as conn:
        cur = conn.cursor()
        cur.execute(
            "INSERT INTO users (email, password_hash) VALUES (?, ?)",
            (email.lower().strip(), password_hash),
        )
        conn.commit()
        return cur.lastrowid


def get_user_by_email(email: str):
    with get_db() as conn:
        cur = conn.cursor()
        cur.execute("SELECT * FROM users WHERE email = ?", (email.lower().strip(),))
        row = cur.fetchone()
        return dict(row) if row else None


def get_user_profile(user_id: int):
    """Get latest user profile for a given auth user_id."""
    with get_db() as conn:
        cur = conn.cursor()
        cur.execute(
            "SELECT * FROM user_profiles WHERE user_id = ? ORDER BY id DESC LIMIT 1",
            (user_id,),
        )
        row = cur.fetchone()
        return dict(row) if row else None


def save_user_profile(data, user_id: int) -> int:
    """Save a new profile row; the latest row wins."""
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute("""
            INSERT INTO user_profiles (user_id, name, age, weight, height, sex, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """, (
            int(user_id),
            data.get('name'), data.get('age'), data.get('weight'),
            data.get('height'), data.get('sex'), _now_iso(),
        ))
        conn.commit()
        return cursor.lastrowid


def list_notes(user_id: int):
    """Notes for a user, newest first."""
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute(
            "SELECT id, text, created_at FROM notes WHERE user_id = ? ORDER BY created_at DESC",
            (user_id,),
        )
        return [dict(row) for row in cursor.fetchall()]


def create_note(user_id: int, text: str, created_at: str | None = None) -> int:
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute(
            "INSERT INTO notes (user_id, text, created_at) VALUES (?, ?, ?)",
            (user_id, text, created_at or _now_iso()),
        )
        conn.commit()
        return cursor.lastrowid


def delete_note(user_id: int, note_id: int) -> bool:
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute("DELETE FROM notes WHERE id = ? AND user_id = ?", (note_id, user_id))
        conn.commit()
        return cursor.rowcount > 0


def list_uploaded_files(user_id: int):
    """Uploaded file metadata for a user, newest first."""
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute(
            """
            SELECT id, file_name, mime_type, category, subcategory, storage_path, size_bytes, created_at
            FROM uploaded_files WHERE user_id = ? ORDER BY created_at DESC
            """,
            (user_id,),
        )
        return [dict(row) for row in cursor.fetchall()]


def get_uploaded_file(user_id: int, file_id: int):
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute(
            "SELECT * FROM uploaded_files WHERE id = ? AND user_id = ?",
            (file_id, user_id),
        )
        row = cursor.fetchone()
        return dict(row) if row else None


def save_uploaded_file(data) -> int:
    """Save uploaded file metadata."""
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute("""
            INSERT INTO uploaded_files (
                user_id, file_name, mime_type, category, subcategory,
                storage_path, size_bytes, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            data['user_id'], data['file_name'], data.get('mime_type'),
            data.get('category'), data.get('subcategory'), data.get('storage_path'),
            data.get('size_bytes', 0), data.get('created_at') or _now_iso(),
        ))
        conn.commit()
        return cursor.lastrowid


def delete_uploaded_file(user_id: int, file_id: int) -> bool:
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute("DELETE FROM uploaded_files WHERE id = ? AND user_id = ?", (file_id, user_id))
        conn.commit()
        return cursor.rowcount > 0


def list_integration_activities(user_id: int, limit: int | None = None):
    """Integration activities for a user, newest first."""
    with get_db() as conn:
        cursor = conn.cursor()
        sql = "SELECT * FROM integration_activities WHERE user_id = ? ORDER BY start_date DESC"
        params: tuple = (user_id,)
        if limit:
            sql += " LIMIT ?"
            params = (user_id, int(limit))
        cursor.execute(sql, params)
        return [dict(row) for row in cursor.fetchall()]


def save_integration_activity(user_id: int, integration_type: str, activity: dict) -> int:
    """Upsert one synced activity (keyed by integration type + external id)."""
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute("""
            INSERT INTO integration_activities (
                user_id, integration_type, external_id, activity_type, name, start_date,
                distance_m, moving_time_s, elapsed_time_s, average_speed_mps,
                average_cadence, total_elevation_gain_m, average_heartrate, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (user_id, integration_type, external_id) DO UPDATE SET
                activity_type = excluded.activity_type,
                name = excluded.name,
                start_date = excluded.start_date,
                distance_m = excluded.distance_m,
                moving_time_s = excluded.moving_time_s,
                elapsed_time_s = excluded.elapsed_time_s,
                average_speed_mps = excluded.average_speed_mps,
                average_cadence = excluded.average_cadence,
                total_elevation_gain_m = excluded.total_elevation_gain_m,
                average_heartrate = excluded.average_heartrate
        """, (
            user_id, integration_type, str(activity['external_id']),
            activity.get('activity_type'), activity.get('name'), activity.get('start_date'),
            activity.get('distance_m'), activity.get('moving_time_s'), activity.get('elapsed_time_s'),
            activity.get('average_speed_mps'), activity.get('average_cadence'),
            activity.get('total_elevation_gain_m'), activity.get('average_heartrate'),
            _now_iso(),
        ))
        conn.commit()
        return cursor.lastrowid
