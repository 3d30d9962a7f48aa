import sqlite3
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

from pricing import DAY_PASS, FREE, PRO

PASS_TYPES = {"processing-pass": DAY_PASS, DAY_PASS: DAY_PASS, PRO: PRO}

# 연결 하나를 스레드풀이 공유한다
_LOCK = threading.RLock()


def connect(db_path: str) -> sqlite3.Connection:
    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    con = sqlite3.connect(db_path, check_same_thread=False)
    con.execute("PRAGMA journal_mode=WAL;")
    con.execute("PRAGMA synchronous=NORMAL;")
    return con


def init_db(con: sqlite3.Connection) -> None:
    con.execute("""
    CREATE TABLE IF NOT EXISTS processing_pass (
      session_id TEXT PRIMARY KEY,
      pass_type TEXT NOT NULL,
      expires_at TEXT NOT NULL
    );
    """)
    con.execute("""
    CREATE TABLE IF NOT EXISTS daily_usage (
      client_key TEXT NOT NULL,
      day TEXT NOT NULL,
      checks INTEGER NOT NULL DEFAULT 0,
      PRIMARY KEY (client_key, day)
    );
    """)
    con.execute("CREATE INDEX IF NOT EXISTS idx_processing_pass_expires ON processing_pass(expires_at);")
    con.commit()


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def _day(now: Optional[datetime] = None) -> str:
    return (now or _utcnow()).strftime("%Y-%m-%d")


def upsert_pass(
    con: sqlite3.Connection,
    session_id: str,
    pass_type: str = "processing-pass",
    ttl_hours: float = 24,
    now: Optional[datetime] = None,
) -> datetime:
    # 같은 세션으로 다시 발급하면 만료 시각을 새로 잡는다(단순 upsert)
    expires_at = (now or _utcnow()) + timedelta(hours=ttl_hours)
    with _LOCK:
        con.execute(
            "INSERT OR REPLACE INTO processing_pass(session_id, pass_type, expires_at) VALUES (?, ?, ?)",
            (session_id, pass_type, expires_at.isoformat()),
        )
        con.commit()
    return expires_at


def find_pass(con: sqlite3.Connection, session_id: str, now: Optional[datetime] = None) -> Optional[str]:
    """만료되지 않은 pass의 타입을 돌려준다. 없거나 만료면 None."""
    if not session_id:
        return None
    with _LOCK:
        cur = con.execute(
            "SELECT pass_type FROM processing_pass WHERE session_id=? AND expires_at > ?",
            (session_id, (now or _utcnow()).isoformat()),
        )
        row = cur.fetchone()
    return row[0] if row else None


def has_valid_pass(con: sqlite3.Connection, session_id: Optional[str], now: Optional[datetime] = None) -> bool:
    return find_pass(con, session_id or "", now=now) is not None


def plan_for_session(con: sqlite3.Connection, session_id: Optional[str], now: Optional[datetime] = None) -> str:
    pass_type = find_pass(con, session_id or "", now=now)
    if pass_type is None:
        return FREE
    return PASS_TYPES.get(pass_type, DAY_PASS)


def purge_expired_passes(con: sqlite3.Connection, now: Optional[datetime] = None) -> int:
    with _LOCK:
        cur = con.execute(
            "DELETE FROM processing_pass WHERE expires_at <= ?",
            ((now or _utcnow()).isoformat(),),
        )
        con.commit()
    return cur.rowcount


def get_usage(con: sqlite3.Connection, client_key: str, now: Optional[datetime] = None) -> int:
    with _LOCK:
        cur = con.execute(
            "SELECT checks FROM daily_usage WHERE client_key=? AND day=?",
            (client_key, _day(now)),
        )
        row = cur.fetchone()
    return int(row[0]) if row else 0


def consume_check(
    con: sqlite3.Connection,
    client_key: str,
    limit: Optional[int] = None,
    now: Optional[datetime] = None,
) -> Optional[int]:
    """
    오늘 사용 횟수를 1 올리고 새 값을 돌려준다.
    limit이 있으면 이미 limit 이상일 때 올리지 않고 None.
    """
    day = _day(now)
    with _LOCK:
        cur = con.execute(
            """
            INSERT INTO daily_usage(client_key, day, checks) VALUES (?, ?, 1)
            ON CONFLICT(client_key, day) DO UPDATE SET checks = checks + 1
            WHERE ? IS NULL OR checks < ?
            """,
            (client_key, day, limit, limit),
        )
        con.commit()
        if cur.rowcount == 0:
            return None
        return get_usage(con, client_key, now=now)


def record_usage(con: sqlite3.Connection, client_key: str, now: Optional[datetime] = None) -> int:
    return consume_check(con, client_key, now=now)
