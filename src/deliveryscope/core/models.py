"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to any storage- or provider-specific types.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, List, Mapping, Optional, Union

FIRST_MESSAGE = "first_message"
FOLLOW_UP = "follow_up"
PAYMENT_REMINDER = "payment_reminder"
USER_REPLY = "user_reply"

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"
ROLE_SYSTEM = "system"
ROLE_ADMIN = "admin"

BELOW_THRESHOLD = "below_threshold"
NO_CANDIDATE = "no_candidate"

# Epoch values above this are treated as milliseconds.
_EPOCH_MILLIS_CUTOFF = 10**11


def ensure_utc(value: datetime) -> datetime:
    """Return an aware datetime, treating naive values as UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def parse_timestamp(value: Union[datetime, int, float, str]) -> datetime:
    """Parse epoch seconds/millis, ISO-8601 strings, or datetimes."""

    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, (int, float)):
        seconds = value / 1000 if value > _EPOCH_MILLIS_CUTOFF else value
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = f"{text[:-1]}+00:00"
        return ensure_utc(datetime.fromisoformat(text))
    raise ValueError(f"Unsupported timestamp value: {value!r}")


def format_percentage(ratio: float) -> str:
    return f"{ratio * 100:.2f}%"


@dataclass(frozen=True)
class InternalMessageRecord:
    """A message as recorded by our own conversation log."""

    record_id: str
    text: str
    phone_number: str
    sent_at: datetime
    role: str
    classification: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "sent_at", ensure_utc(self.sent_at))

    @property
    def is_first_contact(self) -> bool:
        return self.classification == FIRST_MESSAGE


@dataclass(frozen=True)
class ExternalMessageRecord:
    """A message as reported by the external messaging provider."""

    text: str
    timestamp: datetime
    phone_number: str
    role: Optional[str] = None
    has_media: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "timestamp", ensure_utc(self.timestamp))

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any], phone_number: str) -> "ExternalMessageRecord":
        """Build a record from a raw provider payload.

        Providers expose the text as either ``message`` or ``body`` and the
        time as either ``timestamp`` or ``sent_date``; both spellings are
        accepted.
        """

        # An empty ``message`` still falls back to ``body``.
        text = payload.get("message") or payload.get("body")
        raw_timestamp = payload.get("timestamp")
        if raw_timestamp is None:
            raw_timestamp = payload.get("sent_date")
        if raw_timestamp is None:
            raise ValueError("External payload has no timestamp or sent_date")
        return cls(
            text=text or "",
            timestamp=parse_timestamp(raw_timestamp),
            phone_number=str(payload.get("phone_number") or phone_number),
            role=payload.get("role"),
            has_media=bool(payload.get("hasMedia", payload.get("has_media", False))),
        )


@dataclass(frozen=True)
class MatchedOutcome:
    """An internal record paired with the external record confirming it."""

    internal: InternalMessageRecord
    external: ExternalMessageRecord
    confidence: float

    @property
    def percentage(self) -> str:
        return format_percentage(self.confidence)


@dataclass(frozen=True)
class UnmatchedOutcome:
    """An internal record with no acceptable external counterpart."""

    internal: InternalMessageRecord
    best_score: float
    reason: str


@dataclass
class FirstContactStats:
    total: int = 0
    matched: int = 0
    unmatched: int = 0

    def add(self, other: "FirstContactStats") -> None:
        self.total += other.total
        self.matched += other.matched
        self.unmatched += other.unmatched


@dataclass
class ReconciliationStatistics:
    """Counters for one batch or one whole reconciliation run."""

    total_internal: int = 0
    total_external: int = 0
    matched_count: int = 0
    unmatched_count: int = 0
    average_confidence: float = 0.0
    first_contact: FirstContactStats = field(default_factory=FirstContactStats)


@dataclass
class ReconciliationResult:
    matched: List[MatchedOutcome] = field(default_factory=list)
    unmatched: List[UnmatchedOutcome] = field(default_factory=list)
    statistics: ReconciliationStatistics = field(default_factory=ReconciliationStatistics)


@dataclass(frozen=True)
class ExternalFetchResult:
    """External records obtained for one phone number."""

    phone_number: str
    records: List[ExternalMessageRecord]
    success: bool


@dataclass(frozen=True)
class FetchError:
    """Non-fatal failure while fetching one identifier's external records."""

    identifier: str
    error: str


def internal_record_from_row(row: Mapping[str, Any]) -> InternalMessageRecord:
    """Build an internal record from an exported message-log row.

    Accepts the log's own field names (``_id``/``id``, ``message``,
    ``phone_number``, ``sent_date``, ``role``, ``type_of_message``).
    """

    record_id = row.get("_id", row.get("id"))
    if record_id is None:
        raise ValueError("Internal record has no _id or id")
    sent_date = row.get("sent_date")
    if sent_date is None:
        raise ValueError(f"Internal record {record_id} has no sent_date")
    return InternalMessageRecord(
        record_id=str(record_id),
        text=row.get("message") or "",
        phone_number=str(row.get("phone_number") or ""),
        sent_at=parse_timestamp(sent_date),
        role=row.get("role") or ROLE_ASSISTANT,
        classification=row.get("type_of_message"),
    )
