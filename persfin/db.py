import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional

SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    email TEXT UNIQUE NOT NULL,
    password_hash TEXT NOT NULL,
    metadata_json TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS sessions (
    token TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    expires_at TEXT NOT NULL,
    created_at TEXT NOT NULL,
    FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS profiles (
    id TEXT PRIMARY KEY,
    full_name TEXT,
    display_name TEXT,
    mobile_number TEXT,
    profession TEXT,
    city TEXT,
    country TEXT,
    date_of_birth TEXT,
    bio TEXT,
    knowledge_level TEXT NOT NULL DEFAULT 'beginner',
    FOREIGN KEY (id) REFERENCES users(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS password_resets (
    token TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    expires_at TEXT NOT NULL,
    FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS mfa_secrets (
    user_id TEXT PRIMARY KEY,
    secret TEXT NOT NULL,
    enabled INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS email_otp (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    email TEXT NOT NULL,
    otp_code TEXT NOT NULL,
    type TEXT NOT NULL DEFAULT 'login',
    expires_at TEXT NOT NULL,
    verified INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_email_otp_email_type ON email_otp(email, type);

CREATE TABLE IF NOT EXISTS mfa_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT,
    method TEXT,
    success INTEGER NOT NULL DEFAULT 0,
    detail TEXT,
    timestamp DATETIME DEFAULT CURRENT_TIMESTAMP
);
"""


def ts(dt: Optional[datetime] = None) -> str:
    """UTC timestamp in a fixed format so string comparison orders correctly."""
    dt = dt or datetime.now(timezone.utc)
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class Database:
    """Thin sqlite3 wrapper. Every call opens a fresh connection, so one
    instance is safe to share between request threads."""

    def __init__(self, path: str):
        self.path = path

    @contextmanager
    def connect(self):
        conn = sqlite3.connect(self.path, timeout=10)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def init_db(self) -> None:
        with self.connect() as conn:
            conn.executescript(SCHEMA)

    def query_one(self, sql: str, params: tuple = ()):
        """Execute a query and return a single row (or None)."""
        with self.connect() as conn:
            return conn.execute(sql, params).fetchone()

    def query_all(self, sql: str, params: tuple = ()):
        """Execute a query and return all rows."""
        with self.connect() as conn:
            return conn.execute(sql, params).fetchall()

    def exec_sql(self, sql: str, params: tuple = ()) -> int:
        """Execute a write statement, commit, and return the affected row count."""
        with self.connect() as conn:
            return conn.execute(sql, params).rowcount

    # MFA secrets
    def get_mfa_secret(self, user_id: str) -> Optional[dict]:
        row = self.query_one(
            "SELECT user_id, secret, enabled, created_at, updated_at FROM mfa_secrets WHERE user_id=?",
            (user_id,),
        )
        if not row:
            return None
        d = dict(row)
        d["enabled"] = bool(d["enabled"])
        return d

    def upsert_pending_secret(self, user_id: str, secret: str) -> bool:
        """Store `secret` as pending. Returns False if the record is already enabled."""
        now = ts()
        return self.exec_sql(
            """INSERT INTO mfa_secrets(user_id, secret, enabled, created_at, updated_at)
               VALUES(?, ?, 0, ?, ?)
               ON CONFLICT(user_id) DO UPDATE
               SET secret=excluded.secret, enabled=0, updated_at=excluded.updated_at
               WHERE mfa_secrets.enabled = 0""",
            (user_id, secret, now, now),
        ) == 1

    def enable_mfa(self, user_id: str, secret: str) -> bool:
        """Flip to enabled only if the stored ciphertext is still the one verified."""
        return self.exec_sql(
            "UPDATE mfa_secrets SET enabled=1, updated_at=? WHERE user_id=? AND secret=?",
            (ts(), user_id, secret),
        ) == 1

    def mfa_log(self, user_id: str, method: str, success: bool, detail: str = "") -> None:
        """Append an MFA event to mfa_logs."""
        self.exec_sql(
            "INSERT INTO mfa_logs(user_id,method,success,detail) VALUES(?,?,?,?)",
            (user_id, method, 1 if success else 0, detail),
        )

    # Email OTP challenges
    def replace_email_otp(self, email: str, purpose: str, code: str, expires_at: str) -> None:
        """Delete earlier challenges for (email, purpose) and insert the new one."""
        with self.connect() as conn:
            conn.execute("DELETE FROM email_otp WHERE email=? AND type=?", (email, purpose))
            conn.execute(
                """INSERT INTO email_otp(email, otp_code, type, expires_at, verified, created_at)
                   VALUES(?, ?, ?, ?, 0, ?)""",
                (email, code, purpose, expires_at, ts()),
            )

    def active_email_otp(self, email: str, purpose: str, now: str):
        return self.query_one(
            """SELECT id, otp_code, expires_at FROM email_otp
               WHERE email=? AND type=? AND verified=0 AND expires_at > ?
               ORDER BY created_at DESC LIMIT 1""",
            (email, purpose, now),
        )

    def consume_email_otp(self, otp_id: int) -> bool:
        """Mark a challenge verified. Only the first caller sees True."""
        return self.exec_sql(
            "UPDATE email_otp SET verified=1 WHERE id=? AND verified=0", (otp_id,)
        ) == 1

    def purge_email_otps(self, now: str) -> int:
        return self.exec_sql("DELETE FROM email_otp WHERE expires_at <= ? OR verified=1", (now,))

    # Users, sessions, profiles
    def get_user_by_email(self, email: str) -> Optional[dict]:
        row = self.query_one(
            "SELECT id, email, password_hash, metadata_json, created_at FROM users WHERE email=?",
            (email,),
        )
        return _user(row)

    def get_user(self, user_id: str) -> Optional[dict]:
        row = self.query_one(
            "SELECT id, email, password_hash, metadata_json, created_at FROM users WHERE id=?",
            (user_id,),
        )
        return _user(row)

    def create_user(self, user_id: str, email: str, password_hash: str, metadata: dict) -> None:
        with self.connect() as conn:
            conn.execute(
                "INSERT INTO users(id, email, password_hash, metadata_json, created_at) VALUES(?,?,?,?,?)",
                (user_id, email, password_hash, json.dumps(metadata), ts()),
            )
            conn.execute(
                """INSERT INTO profiles(id, full_name, display_name, mobile_number, profession,
                                        city, country, date_of_birth, bio)
                   VALUES(?,?,?,?,?,?,?,?,?)""",
                (
                    user_id,
                    metadata.get("full_name"),
                    metadata.get("display_name"),
                    metadata.get("mobile_number"),
                    metadata.get("profession"),
                    metadata.get("city"),
                    metadata.get("country"),
                    metadata.get("date_of_birth"),
                    metadata.get("bio"),
                ),
            )

    def update_password_hash(self, user_id: str, password_hash: str) -> None:
        self.exec_sql("UPDATE users SET password_hash=? WHERE id=?", (password_hash, user_id))

    def get_profile(self, user_id: str) -> Optional[dict]:
        row = self.query_one("SELECT * FROM profiles WHERE id=?", (user_id,))
        return dict(row) if row else None

    def create_session(self, token: str, user_id: str, expires_at: str) -> None:
        self.exec_sql(
            "INSERT INTO sessions(token, user_id, expires_at, created_at) VALUES(?,?,?,?)",
            (token, user_id, expires_at, ts()),
        )

    def get_session_user(self, token: str, now: str) -> Optional[dict]:
        row = self.query_one(
            """SELECT u.id, u.email, u.password_hash, u.metadata_json, u.created_at
               FROM sessions s JOIN users u ON u.id = s.user_id
               WHERE s.token=? AND s.expires_at > ?""",
            (token, now),
        )
        return _user(row)

    def delete_session(self, token: str) -> None:
        self.exec_sql("DELETE FROM sessions WHERE token=?", (token,))

    def create_password_reset(self, token: str, user_id: str, expires_at: str) -> None:
        self.exec_sql(
            "INSERT INTO password_resets(token, user_id, expires_at) VALUES(?,?,?)",
            (token, user_id, expires_at),
        )

    def consume_password_reset(self, token: str, now: str) -> Optional[str]:
        """Delete a live reset token and return its user id (None if unknown/expired)."""
        with self.connect() as conn:
            row = conn.execute(
                "SELECT user_id FROM password_resets WHERE token=? AND expires_at > ?", (token, now)
            ).fetchone()
            if not row:
                return None
            if conn.execute("DELETE FROM password_resets WHERE token=?", (token,)).rowcount != 1:
                return None
            return row["user_id"]


def _user(row) -> Optional[dict]:
    if not row:
        return None
    d = dict(row)
    try:
        d["metadata"] = json.loads(d.pop("metadata_json") or "{}")
    except ValueError:
        d["metadata"] = {}
    return d
