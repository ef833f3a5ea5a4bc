"""
Repository pattern for data access.

Handles database operations and data persistence logic.
"""

import json
import sqlite3
from datetime import datetime
from typing import Any, Dict, List, Optional

from .base import AccountStore, ExamStore, UsageStore, VoucherStore
from .db import DEFAULT_DB_PATH, get_connection, write_transaction
from .models import (
    ExamSession,
    ExamStatus,
    LLMUsageEvent,
    TokenAccount,
    TransactionRecord,
    TransactionType,
    Voucher,
    VoucherRedemption,
)


SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS token_account (
        user_id TEXT PRIMARY KEY,
        balance INTEGER NOT NULL CHECK (balance >= 0),
        subscription_active INTEGER NOT NULL DEFAULT 0,
        subscription_ends_at TEXT,
        version INTEGER NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS token_transaction (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        type TEXT NOT NULL,
        delta INTEGER NOT NULL,
        resulting_balance INTEGER NOT NULL,
        description TEXT NOT NULL,
        timestamp TEXT NOT NULL,
        reference_id TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS voucher (
        code TEXT PRIMARY KEY,
        discount_percent INTEGER NOT NULL,
        expires_at TEXT NOT NULL,
        max_uses INTEGER,
        uses_so_far INTEGER NOT NULL DEFAULT 0,
        active INTEGER NOT NULL DEFAULT 1
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS voucher_redemption (
        code TEXT NOT NULL REFERENCES voucher(code),
        user_id TEXT NOT NULL,
        redeemed_at TEXT NOT NULL,
        PRIMARY KEY (code, user_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS exam_session (
        session_id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        title TEXT NOT NULL,
        questions TEXT NOT NULL,
        correct_answers TEXT NOT NULL,
        answers TEXT NOT NULL,
        duration_minutes INTEGER NOT NULL,
        status TEXT NOT NULL,
        started_at TEXT,
        completed_at TEXT,
        overall_score REAL,
        max_score INTEGER,
        overall_feedback TEXT,
        results TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS llm_usage_event (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        timestamp TEXT NOT NULL,
        feature TEXT NOT NULL,
        model TEXT NOT NULL,
        credential_source TEXT NOT NULL,
        prompt_tokens INTEGER NOT NULL,
        completion_tokens INTEGER NOT NULL,
        total_tokens INTEGER NOT NULL,
        request_id TEXT
    )
    """,
]

_ACCOUNT_PATCH_KEYS = {"balance", "subscription_active", "subscription_ends_at"}
_EXAM_PATCH_KEYS = {
    "answers", "started_at", "completed_at", "overall_score",
    "max_score", "overall_feedback", "results",
}


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create all tables if they don't exist.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        for statement in SCHEMA:
            conn.execute(statement)
        conn.commit()
    finally:
        conn.close()


def _to_text(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _to_datetime(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _encode_answers(answers: Dict[int, str]) -> str:
    # JSON object keys are strings; decode restores ints
    return json.dumps({str(k): v for k, v in answers.items()})


def _decode_answers(raw: str) -> Dict[int, str]:
    return {int(k): v for k, v in json.loads(raw).items()}


class Repository(AccountStore, VoucherStore, ExamStore, UsageStore):
    """SQLite implementation of every store the core needs.

    Each method opens its own connection, so one instance can be shared
    between threads.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize the repository with a database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path

    # Accounts

    def get_account(self, user_id: str) -> Optional[TokenAccount]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                """
                SELECT user_id, balance, subscription_active,
                       subscription_ends_at, version
                FROM token_account WHERE user_id = ?
                """,
                (user_id,)
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            return None
        return TokenAccount(
            user_id=row[0],
            balance=row[1],
            subscription_active=bool(row[2]),
            subscription_ends_at=_to_datetime(row[3]),
            version=row[4]
        )

    def create_account(self, account: TokenAccount) -> None:
        conn = get_connection(self.db_path)
        try:
            conn.execute(
                """
                INSERT INTO token_account
                (user_id, balance, subscription_active, subscription_ends_at, version)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    account.user_id,
                    account.balance,
                    int(account.subscription_active),
                    _to_text(account.subscription_ends_at),
                    account.version
                )
            )
            conn.commit()
        except sqlite3.IntegrityError:
            raise ValueError(f"Account already exists: {account.user_id}")
        finally:
            conn.close()

    def compare_and_set_account(
        self,
        user_id: str,
        expected_version: int,
        patch: Dict[str, Any]
    ) -> bool:
        unknown = set(patch) - _ACCOUNT_PATCH_KEYS
        if unknown:
            raise ValueError(f"Unknown account fields: {unknown}")
        if not patch:
            raise ValueError("patch cannot be empty")

        values = dict(patch)
        if "subscription_active" in values:
            values["subscription_active"] = int(values["subscription_active"])
        if "subscription_ends_at" in values:
            values["subscription_ends_at"] = _to_text(values["subscription_ends_at"])

        assignments = ", ".join(f"{column} = ?" for column in values)
        params = list(values.values()) + [user_id, expected_version]

        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                f"""
                UPDATE token_account
                SET {assignments}, version = version + 1
                WHERE user_id = ? AND version = ?
                """,
                params
            )
            conn.commit()
            return cursor.rowcount == 1
        finally:
            conn.close()

    def append_transaction(self, record: TransactionRecord) -> None:
        conn = get_connection(self.db_path)
        try:
            conn.execute(
                """
                INSERT INTO token_transaction
                (user_id, type, delta, resulting_balance, description,
                 timestamp, reference_id)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.user_id,
                    record.type.value,
                    record.delta,
                    record.resulting_balance,
                    record.description,
                    record.timestamp.isoformat(),
                    record.reference_id
                )
            )
            conn.commit()
        finally:
            conn.close()

    def list_transactions(self, user_id: str, limit: int = 100) -> List[TransactionRecord]:
        """Return the user's ledger entries, newest first."""
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                """
                SELECT user_id, type, delta, resulting_balance, description,
                       timestamp, reference_id
                FROM token_transaction
                WHERE user_id = ?
                ORDER BY id DESC LIMIT ?
                """,
                (user_id, limit)
            )
            return [
                TransactionRecord(
                    user_id=row[0],
                    type=TransactionType(row[1]),
                    delta=row[2],
                    resulting_balance=row[3],
                    description=row[4],
                    timestamp=datetime.fromisoformat(row[5]),
                    reference_id=row[6]
                )
                for row in cursor.fetchall()
            ]
        finally:
            conn.close()

    # Vouchers

    def get_voucher(self, code: str) -> Optional[Voucher]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                """
                SELECT code, discount_percent, expires_at, max_uses,
                       uses_so_far, active
                FROM voucher WHERE code = ?
                """,
                (code,)
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            return None
        return Voucher(
            code=row[0],
            discount_percent=row[1],
            expires_at=datetime.fromisoformat(row[2]),
            max_uses=row[3],
            uses_so_far=row[4],
            active=bool(row[5])
        )

    def create_voucher(self, voucher: Voucher) -> None:
        conn = get_connection(self.db_path)
        try:
            conn.execute(
                """
                INSERT INTO voucher
                (code, discount_percent, expires_at, max_uses, uses_so_far, active)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    voucher.code,
                    voucher.discount_percent,
                    voucher.expires_at.isoformat(),
                    voucher.max_uses,
                    voucher.uses_so_far,
                    int(voucher.active)
                )
            )
            conn.commit()
        except sqlite3.IntegrityError:
            raise ValueError(f"Voucher already exists: {voucher.code}")
        finally:
            conn.close()

    def claim_redemption(self, code: str, user_id: str, now: datetime) -> bool:
        with write_transaction(self.db_path) as conn:
            already = conn.execute(
                "SELECT 1 FROM voucher_redemption WHERE code = ? AND user_id = ?",
                (code, user_id)
            ).fetchone()
            if already:
                return False
            cursor = conn.execute(
                """
                UPDATE voucher SET uses_so_far = uses_so_far + 1
                WHERE code = ? AND (max_uses IS NULL OR uses_so_far < max_uses)
                """,
                (code,)
            )
            if cursor.rowcount != 1:
                return False
            conn.execute(
                """
                INSERT INTO voucher_redemption (code, user_id, redeemed_at)
                VALUES (?, ?, ?)
                """,
                (code, user_id, now.isoformat())
            )
            return True

    def get_redemption(self, code: str, user_id: str) -> Optional[VoucherRedemption]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                """
                SELECT code, user_id, redeemed_at FROM voucher_redemption
                WHERE code = ? AND user_id = ?
                """,
                (code, user_id)
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            return None
        return VoucherRedemption(
            code=row[0],
            user_id=row[1],
            redeemed_at=datetime.fromisoformat(row[2])
        )

    def release_redemption(self, code: str, user_id: str) -> bool:
        with write_transaction(self.db_path) as conn:
            cursor = conn.execute(
                "DELETE FROM voucher_redemption WHERE code = ? AND user_id = ?",
                (code, user_id)
            )
            if cursor.rowcount != 1:
                return False
            conn.execute(
                """
                UPDATE voucher SET uses_so_far = uses_so_far - 1
                WHERE code = ? AND uses_so_far > 0
                """,
                (code,)
            )
            return True

    # Exam sessions

    def get_session(self, session_id: str) -> Optional[ExamSession]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                """
                SELECT session_id, user_id, title, questions, correct_answers,
                       answers, duration_minutes, status, started_at,
                       completed_at, overall_score, max_score,
                       overall_feedback, results
                FROM exam_session WHERE session_id = ?
                """,
                (session_id,)
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            return None
        return ExamSession(
            session_id=row[0],
            user_id=row[1],
            title=row[2],
            questions=json.loads(row[3]),
            correct_answers=json.loads(row[4]),
            answers=_decode_answers(row[5]),
            duration_minutes=row[6],
            status=ExamStatus(row[7]),
            started_at=_to_datetime(row[8]),
            completed_at=_to_datetime(row[9]),
            overall_score=row[10],
            max_score=row[11],
            overall_feedback=row[12],
            results=json.loads(row[13])
        )

    def create_session(self, session: ExamSession) -> None:
        conn = get_connection(self.db_path)
        try:
            conn.execute(
                """
                INSERT INTO exam_session
                (session_id, user_id, title, questions, correct_answers, answers,
                 duration_minutes, status, started_at, completed_at,
                 overall_score, max_score, overall_feedback, results)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    session.session_id,
                    session.user_id,
                    session.title,
                    json.dumps(session.questions),
                    json.dumps(session.correct_answers),
                    _encode_answers(session.answers),
                    session.duration_minutes,
                    session.status.value,
                    _to_text(session.started_at),
                    _to_text(session.completed_at),
                    session.overall_score,
                    session.max_score,
                    session.overall_feedback,
                    json.dumps(session.results)
                )
            )
            conn.commit()
        except sqlite3.IntegrityError:
            raise ValueError(f"Exam session already exists: {session.session_id}")
        finally:
            conn.close()

    def transition(
        self,
        session_id: str,
        from_status: ExamStatus,
        to_status: ExamStatus,
        patch: Optional[Dict[str, Any]] = None
    ) -> bool:
        patch = dict(patch or {})
        unknown = set(patch) - _EXAM_PATCH_KEYS
        if unknown:
            raise ValueError(f"Unknown exam session fields: {unknown}")

        for key in ("started_at", "completed_at"):
            if key in patch:
                patch[key] = _to_text(patch[key])
        if "answers" in patch:
            patch["answers"] = _encode_answers(patch["answers"])
        if "results" in patch:
            patch["results"] = json.dumps(patch["results"])

        patch["status"] = to_status.value
        assignments = ", ".join(f"{column} = ?" for column in patch)
        params = list(patch.values()) + [session_id, from_status.value]

        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                f"UPDATE exam_session SET {assignments} "
                "WHERE session_id = ? AND status = ?",
                params
            )
            conn.commit()
            return cursor.rowcount == 1
        finally:
            conn.close()

    def update_answers(
        self,
        session_id: str,
        answers: Dict[int, str],
        required_status: ExamStatus
    ) -> bool:
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                """
                UPDATE exam_session SET answers = ?
                WHERE session_id = ? AND status = ?
                """,
                (_encode_answers(answers), session_id, required_status.value)
            )
            conn.commit()
            return cursor.rowcount == 1
        finally:
            conn.close()

    # Usage events

    def insert_usage_event(self, event: LLMUsageEvent) -> None:
        insert_usage_event(event, self.db_path)


def insert_usage_event(event: LLMUsageEvent, db_path: str = DEFAULT_DB_PATH) -> None:
    """Insert a single usage event into the append-only ledger.

    This operation is append-only - events cannot be modified after insertion.

    Args:
        event: The usage event to record
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.execute("""
            INSERT INTO llm_usage_event
            (timestamp, feature, model, credential_source, prompt_tokens,
             completion_tokens, total_tokens, request_id)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            event.timestamp.isoformat(),
            event.feature,
            event.model,
            event.credential_source,
            event.prompt_tokens,
            event.completion_tokens,
            event.total_tokens,
            event.request_id
        ))
        conn.commit()
    finally:
        conn.close()


def fetch_recent_usage_events(
    feature: Optional[str] = None,
    limit: int = 100,
    db_path: str = DEFAULT_DB_PATH
) -> List[LLMUsageEvent]:
    """Fetch recent usage events, optionally filtered by feature.

    Returns events in reverse chronological order (newest first).

    Args:
        feature: Optional filter for specific feature
        limit: Maximum number of events to return
        db_path: Path to SQLite database file

    Returns:
        List of usage events ordered by timestamp (newest first)
    """
    conn = get_connection(db_path)
    try:
        query = (
            "SELECT timestamp, feature, model, credential_source, prompt_tokens, "
            "completion_tokens, total_tokens, request_id FROM llm_usage_event"
        )
        params: List[Any] = []

        if feature:
            query += " WHERE feature = ?"
            params.append(feature)

        query += " ORDER BY timestamp DESC LIMIT ?"
        params.append(limit)

        cursor = conn.execute(query, params)
        events = []
        for row in cursor.fetchall():
            events.append(LLMUsageEvent(
                timestamp=datetime.fromisoformat(row[0]),
                feature=row[1],
                model=row[2],
                credential_source=row[3],
                prompt_tokens=row[4],
                completion_tokens=row[5],
                total_tokens=row[6],
                request_id=row[7]
            ))
        return events
    finally:
        conn.close()
