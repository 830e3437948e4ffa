"""Report aggregation for reconciliation results (core domain).

Turns merged outcomes and statistics into the structured verification report.
Rates are rendered as percentage strings and fall back to "0%" whenever the
denominator is zero.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

from deliveryscope.core.models import (
    ExternalMessageRecord,
    InternalMessageRecord,
    MatchedOutcome,
    ReconciliationResult,
    UnmatchedOutcome,
    ensure_utc,
    format_percentage,
)

ZERO_RATE = "0%"
UNKNOWN_CLASSIFICATION = "unknown"


def rate(numerator: int, denominator: int) -> str:
    if denominator <= 0:
        return ZERO_RATE
    return format_percentage(numerator / denominator)


@dataclass(frozen=True)
class FirstContactSummary:
    total: int
    matched: int
    unmatched: int
    unmatched_rate: str


@dataclass(frozen=True)
class ReportSummary:
    window_start: datetime
    window_end: datetime
    phone_numbers_verified: int
    phone_numbers: List[str]
    total_internal: int
    total_external: int
    matched_count: int
    unmatched_count: int
    match_rate: str
    average_confidence: str
    first_contact: FirstContactSummary


@dataclass
class UnmatchedGroup:
    count: int = 0
    outcomes: List[UnmatchedOutcome] = field(default_factory=list)


@dataclass(frozen=True)
class ReportDetails:
    matched: List[MatchedOutcome]
    unmatched: List[UnmatchedOutcome]


@dataclass(frozen=True)
class ReportAnalysis:
    unmatched_by_classification: Dict[str, UnmatchedGroup]
    unmatched_by_phone_number: Dict[str, UnmatchedGroup]
    unmatched_by_date: Dict[str, UnmatchedGroup]


@dataclass(frozen=True)
class FirstContactAnalysis:
    total_first_messages: int
    unique_phone_numbers: int
    unmatched_first_messages: int
    failure_rate: str


@dataclass
class Report:
    summary: ReportSummary
    details: Optional[ReportDetails] = None
    analysis: Optional[ReportAnalysis] = None
    first_contact_analysis: Optional[FirstContactAnalysis] = None


def group_unmatched(
    outcomes: Sequence[UnmatchedOutcome],
    key: Callable[[UnmatchedOutcome], str],
) -> Dict[str, UnmatchedGroup]:
    """Group unmatched outcomes by ``key``, keeping first-seen key order."""

    grouped: Dict[str, UnmatchedGroup] = {}
    for outcome in outcomes:
        group = grouped.setdefault(key(outcome), UnmatchedGroup())
        group.count += 1
        group.outcomes.append(outcome)
    return grouped


def _classification_key(outcome: UnmatchedOutcome) -> str:
    return outcome.internal.classification or UNKNOWN_CLASSIFICATION


def _phone_number_key(outcome: UnmatchedOutcome) -> str:
    return outcome.internal.phone_number


def _date_key(outcome: UnmatchedOutcome) -> str:
    return ensure_utc(outcome.internal.sent_at).astimezone(timezone.utc).date().isoformat()


def build_report(
    result: ReconciliationResult,
    include_details: bool,
    window_start: datetime,
    window_end: datetime,
    phone_numbers: Sequence[str],
) -> Report:
    """Shape a reconciliation result into a verification report."""

    stats = result.statistics
    first_contact = stats.first_contact
    summary = ReportSummary(
        window_start=window_start,
        window_end=window_end,
        phone_numbers_verified=len(phone_numbers),
        phone_numbers=list(phone_numbers),
        total_internal=stats.total_internal,
        total_external=stats.total_external,
        matched_count=stats.matched_count,
        unmatched_count=stats.unmatched_count,
        match_rate=rate(stats.matched_count, stats.total_internal),
        average_confidence=format_percentage(stats.average_confidence) if result.matched else ZERO_RATE,
        first_contact=FirstContactSummary(
            total=first_contact.total,
            matched=first_contact.matched,
            unmatched=first_contact.unmatched,
            unmatched_rate=rate(first_contact.unmatched, first_contact.total),
        ),
    )
    report = Report(summary=summary)
    if not include_details:
        return report

    report.details = ReportDetails(matched=list(result.matched), unmatched=list(result.unmatched))
    report.analysis = ReportAnalysis(
        unmatched_by_classification=group_unmatched(result.unmatched, _classification_key),
        unmatched_by_phone_number=group_unmatched(result.unmatched, _phone_number_key),
        unmatched_by_date=group_unmatched(result.unmatched, _date_key),
    )
    return report


def attach_first_contact_analysis(
    report: Report, total_first_messages: int, unique_phone_numbers: int
) -> Report:
    """Add the first-contact failure analysis to an existing report."""

    unmatched = report.summary.first_contact.unmatched
    report.first_contact_analysis = FirstContactAnalysis(
        total_first_messages=total_first_messages,
        unique_phone_numbers=unique_phone_numbers,
        unmatched_first_messages=unmatched,
        failure_rate=rate(unmatched, total_first_messages),
    )
    return report


def _internal_to_dict(record: InternalMessageRecord) -> Dict[str, Any]:
    return {
        "id": record.record_id,
        "message": record.text,
        "phoneNumber": record.phone_number,
        "sentDate": record.sent_at.isoformat(),
        "role": record.role,
        "type": record.classification,
    }


def _external_to_dict(record: ExternalMessageRecord) -> Dict[str, Any]:
    return {
        "message": record.text,
        "timestamp": record.timestamp.isoformat(),
        "phoneNumber": record.phone_number,
        "role": record.role,
        "hasMedia": record.has_media,
    }


def _matched_to_dict(outcome: MatchedOutcome) -> Dict[str, Any]:
    return {
        "dbMessage": _internal_to_dict(outcome.internal),
        "apiMessage": _external_to_dict(outcome.external),
        "confidenceScore": outcome.confidence,
        "similarityPercentage": outcome.percentage,
    }


def _unmatched_to_dict(outcome: UnmatchedOutcome) -> Dict[str, Any]:
    return {
        "dbMessage": _internal_to_dict(outcome.internal),
        "bestMatchScore": outcome.best_score,
        "reason": outcome.reason,
    }


def _groups_to_dict(groups: Dict[str, UnmatchedGroup]) -> Dict[str, Any]:
    return {
        key: {"count": group.count, "messages": [_unmatched_to_dict(o) for o in group.outcomes]}
        for key, group in groups.items()
    }


def report_to_dict(report: Report) -> Dict[str, Any]:
    """Render the report as JSON-safe primitives."""

    summary = report.summary
    first_contact = summary.first_contact
    payload: Dict[str, Any] = {
        "summary": {
            "verificationPeriod": {
                "from": summary.window_start.isoformat(),
                "to": summary.window_end.isoformat(),
            },
            "phoneNumbersVerified": summary.phone_numbers_verified,
            "phoneNumbers": list(summary.phone_numbers),
            "totalMessagesInDB": summary.total_internal,
            "totalMessagesInAPI": summary.total_external,
            "matchedMessages": summary.matched_count,
            "unmatchedMessages": summary.unmatched_count,
            "matchRate": summary.match_rate,
            "averageConfidence": summary.average_confidence,
            "firstMessageStats": {
                "total": first_contact.total,
                "matched": first_contact.matched,
                "unmatched": first_contact.unmatched,
                "unmatchedRate": first_contact.unmatched_rate,
            },
        }
    }
    if report.details is not None:
        payload["details"] = {
            "matchedMessages": [_matched_to_dict(o) for o in report.details.matched],
            "unmatchedMessages": [_unmatched_to_dict(o) for o in report.details.unmatched],
        }
    if report.analysis is not None:
        payload["analysis"] = {
            "unmatchedByType": _groups_to_dict(report.analysis.unmatched_by_classification),
            "unmatchedByPhoneNumber": _groups_to_dict(report.analysis.unmatched_by_phone_number),
            "unmatchedByDate": _groups_to_dict(report.analysis.unmatched_by_date),
        }
    if report.first_contact_analysis is not None:
        analysis = report.first_contact_analysis
        payload["firstMessageAnalysis"] = {
            "totalFirstMessages": analysis.total_first_messages,
            "uniquePhoneNumbers": analysis.unique_phone_numbers,
            "unmatchedFirstMessages": analysis.unmatched_first_messages,
            "failureRate": analysis.failure_rate,
        }
    return payload
