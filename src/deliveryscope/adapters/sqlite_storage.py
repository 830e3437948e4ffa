"""SQLite storage adapter.

Implements the core InternalRecordSource using a simple SQLite database that
holds our own outbound and inbound conversation log.
"""

from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Sequence

from deliveryscope.core.models import InternalMessageRecord, ensure_utc, parse_timestamp


def _to_db(value: datetime) -> str:
    return ensure_utc(value).astimezone(timezone.utc).isoformat(timespec="microseconds")


def _placeholders(values: Sequence[str]) -> str:
    return ", ".join("?" for _ in values)


class SQLiteMessageStore:
    """Thin SQLite wrapper that satisfies the InternalRecordSource contract."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self) -> None:
        """Create tables if they do not exist.

        Tables:
        - messages: append-only log of conversation messages we recorded
        """

        with self._connect() as conn:
            # Fields:
            # - record_id: our message id (PRIMARY KEY)
            # - phone_number: the customer's phone number
            # - message: text content as we stored it
            # - sent_date: UTC ISO-8601 timestamp; sorts lexicographically
            # - role: user/assistant/system/admin
            # - type_of_message: first_message/follow_up/payment_reminder/user_reply
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS messages (
                    record_id TEXT PRIMARY KEY,
                    phone_number TEXT NOT NULL,
                    message TEXT,
                    sent_date TIMESTAMP NOT NULL,
                    role TEXT NOT NULL,
                    type_of_message TEXT
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS messages_phone_date ON messages (phone_number, sent_date)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS messages_type_date ON messages (type_of_message, sent_date)"
            )

    def add_messages(self, records: Iterable[InternalMessageRecord]) -> int:
        """Upsert records and return how many were written."""

        rows = [
            (
                record.record_id,
                record.phone_number,
                record.text,
                _to_db(record.sent_at),
                record.role,
                record.classification,
            )
            for record in records
        ]
        with self._connect() as conn:
            conn.executemany(
                """
                INSERT INTO messages (record_id, phone_number, message, sent_date, role, type_of_message)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(record_id) DO UPDATE SET
                    phone_number = excluded.phone_number,
                    message = excluded.message,
                    sent_date = excluded.sent_date,
                    role = excluded.role,
                    type_of_message = excluded.type_of_message
                """,
                rows,
            )
        return len(rows)

    def fetch_messages(
        self,
        window_start: datetime,
        window_end: datetime,
        phone_numbers: Optional[Sequence[str]] = None,
        roles: Optional[Sequence[str]] = None,
        classification: Optional[str] = None,
    ) -> List[InternalMessageRecord]:
        """Return records in the window ordered by sent_date ascending."""

        clauses = ["sent_date >= ?", "sent_date <= ?"]
        params: list = [_to_db(window_start), _to_db(window_end)]
        if phone_numbers:
            clauses.append(f"phone_number IN ({_placeholders(phone_numbers)})")
            params.extend(phone_numbers)
        if roles:
            clauses.append(f"role IN ({_placeholders(roles)})")
            params.extend(roles)
        if classification:
            clauses.append("type_of_message = ?")
            params.append(classification)

        query = f"SELECT * FROM messages WHERE {' AND '.join(clauses)} ORDER BY sent_date ASC, rowid ASC"
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [
            InternalMessageRecord(
                record_id=row["record_id"],
                text=row["message"] or "",
                phone_number=row["phone_number"],
                sent_at=parse_timestamp(row["sent_date"]),
                role=row["role"],
                classification=row["type_of_message"],
            )
            for row in rows
        ]

    def list_phone_numbers(self, window_start: datetime, window_end: datetime) -> List[str]:
        """Return phone numbers with at least one message in the window."""

        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT DISTINCT phone_number FROM messages
                WHERE sent_date >= ? AND sent_date <= ?
                ORDER BY phone_number
                """,
                (_to_db(window_start), _to_db(window_end)),
            ).fetchall()
        return [row["phone_number"] for row in rows]
