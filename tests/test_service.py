from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Sequence

import pytest

from deliveryscope.core.config import ConfigurationError, MatchingConfig
from deliveryscope.core.models import (
    FIRST_MESSAGE,
    ExternalFetchResult,
    ExternalMessageRecord,
    FetchError,
    InternalMessageRecord,
)
from deliveryscope.core.service import (
    VerificationRequest,
    VerificationService,
    expand_phone_number_range,
    flatten_external,
)

WINDOW_START = datetime(2024, 6, 1, tzinfo=timezone.utc)
WINDOW_END = datetime(2024, 6, 30, tzinfo=timezone.utc)
T0 = datetime(2024, 6, 10, 9, tzinfo=timezone.utc)


class FakeInternalSource:
    def __init__(self, records: List[InternalMessageRecord]) -> None:
        self.records = records
        self.calls: list[dict] = []

    def fetch_messages(
        self,
        window_start: datetime,
        window_end: datetime,
        phone_numbers: Optional[Sequence[str]] = None,
        roles: Optional[Sequence[str]] = None,
        classification: Optional[str] = None,
    ) -> List[InternalMessageRecord]:
        self.calls.append({"phone_numbers": phone_numbers, "roles": roles, "classification": classification})
        selected = [r for r in self.records if window_start <= r.sent_at <= window_end]
        if phone_numbers:
            selected = [r for r in selected if r.phone_number in phone_numbers]
        if roles:
            selected = [r for r in selected if r.role in roles]
        if classification:
            selected = [r for r in selected if r.classification == classification]
        return sorted(selected, key=lambda r: r.sent_at)

    def list_phone_numbers(self, window_start: datetime, window_end: datetime) -> List[str]:
        return sorted({r.phone_number for r in self.records if window_start <= r.sent_at <= window_end})


class FakeExternalSource:
    def __init__(self, history: dict[str, List[ExternalMessageRecord]], failing: Sequence[str] = ()) -> None:
        self.history = history
        self.failing = set(failing)
        self.requested: list[list[str]] = []

    async def fetch(self, phone_numbers, window_start, window_end):
        self.requested.append(list(phone_numbers))
        results, errors = [], []
        for phone in phone_numbers:
            if phone in self.failing:
                errors.append(FetchError(identifier=phone, error="provider timeout"))
                results.append(ExternalFetchResult(phone, [], success=False))
                continue
            results.append(ExternalFetchResult(phone, self.history.get(phone, []), success=True))
        return results, errors


def _internal(record_id: str, phone: str, text: str, role: str = "assistant", classification=None, minutes: int = 0):
    return InternalMessageRecord(
        record_id=record_id,
        text=text,
        phone_number=phone,
        sent_at=T0 + timedelta(minutes=minutes),
        role=role,
        classification=classification,
    )


def _external(phone: str, text: str, minutes: int) -> ExternalMessageRecord:
    return ExternalMessageRecord(text=text, timestamp=T0 + timedelta(minutes=minutes), phone_number=phone)


def _service(internal, external, **matching) -> VerificationService:
    return VerificationService(internal, external, MatchingConfig(**matching))


def test_expand_phone_number_range_keeps_formatting() -> None:
    assert expand_phone_number_range("+1 (555) 0100", "+1 (555) 0102") == [
        "+1 (555) 0100",
        "+1 (555) 0101",
        "+1 (555) 0102",
    ]


def test_expand_phone_number_range_rejects_inverted_range() -> None:
    with pytest.raises(ConfigurationError):
        expand_phone_number_range("+15550105", "+15550100")


def test_flatten_external_skips_failed_results() -> None:
    ok = ExternalFetchResult("+1", [_external("+1", "hi", 1)], success=True)
    failed = ExternalFetchResult("+2", [_external("+2", "ignored", 1)], success=False)
    assert flatten_external([ok, failed]) == ok.records


def test_verify_treats_failed_phone_number_as_empty_pool() -> None:
    internal = FakeInternalSource(
        [
            _internal("a", "+100", "Your code is 1234", classification=FIRST_MESSAGE),
            _internal("b", "+200", "Your code is 9876", classification=FIRST_MESSAGE, minutes=1),
        ]
    )
    external = FakeExternalSource(
        {"+100": [_external("+100", "Your code is 1234.", 2)], "+200": [_external("+200", "Your code is 9876", 3)]},
        failing=["+200"],
    )
    service = _service(internal, external)

    outcome = asyncio.run(
        service.verify(VerificationRequest(WINDOW_START, WINDOW_END, phone_numbers=("+100", "+200")))
    )

    summary = outcome.report.summary
    assert summary.matched_count == 1
    assert summary.unmatched_count == 1
    assert summary.total_external == 1
    assert summary.first_contact.unmatched_rate == "50.00%"
    assert outcome.errors == [FetchError(identifier="+200", error="provider timeout")]
    assert outcome.report.details.unmatched[0].internal.record_id == "b"


def test_verify_falls_back_to_active_phone_numbers() -> None:
    internal = FakeInternalSource([_internal("a", "+300", "hello"), _internal("b", "+100", "hello")])
    external = FakeExternalSource({})
    service = _service(internal, external)

    outcome = asyncio.run(service.verify(VerificationRequest(WINDOW_START, WINDOW_END)))

    assert external.requested == [["+100", "+300"]]
    assert outcome.report.summary.phone_numbers == ["+100", "+300"]
    assert outcome.report.summary.match_rate == "0.00%"


def test_verify_role_filter_defaults_to_conversation_roles() -> None:
    internal = FakeInternalSource([_internal("a", "+100", "hi", role="admin"), _internal("b", "+100", "yo")])
    service = _service(internal, FakeExternalSource({}))

    outcome = asyncio.run(service.verify(VerificationRequest(WINDOW_START, WINDOW_END, phone_numbers=("+100",))))

    assert internal.calls[0]["roles"] == ("user", "assistant", "system")
    assert outcome.report.summary.total_internal == 1


def test_verify_with_no_data_is_not_an_error() -> None:
    service = _service(FakeInternalSource([]), FakeExternalSource({}))
    outcome = asyncio.run(service.verify(VerificationRequest(WINDOW_START, WINDOW_END, phone_numbers=("+1",))))

    assert outcome.report.summary.total_internal == 0
    assert outcome.report.summary.match_rate == "0%"
    assert outcome.errors == []


def test_invalid_requests_fail_fast() -> None:
    internal = FakeInternalSource([])
    external = FakeExternalSource({})
    service = _service(internal, external)

    with pytest.raises(ConfigurationError):
        asyncio.run(service.verify(VerificationRequest(WINDOW_END, WINDOW_START)))
    with pytest.raises(ConfigurationError):
        asyncio.run(service.verify(VerificationRequest(WINDOW_START, WINDOW_END, role_filter="robots")))
    with pytest.raises(ConfigurationError):
        asyncio.run(service.verify_single("  ", WINDOW_START, WINDOW_END))

    assert internal.calls == []
    assert external.requested == []


def test_invalid_matching_config_is_rejected_at_construction() -> None:
    with pytest.raises(ConfigurationError):
        _service(FakeInternalSource([]), FakeExternalSource({}), threshold=0)
    with pytest.raises(ConfigurationError):
        _service(FakeInternalSource([]), FakeExternalSource({}), batch_size=0)


def test_verify_single_uses_only_that_number() -> None:
    internal = FakeInternalSource([_internal("a", "+100", "Ping"), _internal("b", "+200", "Ping")])
    external = FakeExternalSource({"+100": [_external("+100", "ping", 5)]})
    service = _service(internal, external)

    outcome = asyncio.run(service.verify_single(" +100 ", WINDOW_START, WINDOW_END))

    assert external.requested == [["+100"]]
    assert outcome.report.summary.matched_count == 1
    assert outcome.report.summary.total_internal == 1


def test_verify_first_contact_attaches_analysis() -> None:
    internal = FakeInternalSource(
        [
            _internal("a", "+100", "Hi, this is Acme", classification=FIRST_MESSAGE),
            _internal("b", "+200", "Hi, this is Acme", classification=FIRST_MESSAGE, minutes=1),
            _internal("c", "+200", "Any update?", classification="follow_up", minutes=2),
            _internal("d", "+200", "Sure", role="user", classification="user_reply", minutes=3),
        ]
    )
    external = FakeExternalSource(
        {
            "+100": [_external("+100", "Hi this is Acme", 1)],
            "+200": [_external("+200", "Any update?", 5)],
        }
    )
    service = _service(internal, external)

    outcome = asyncio.run(service.verify_first_contact(WINDOW_START, WINDOW_END))
    report = outcome.report

    assert external.requested == [["+100", "+200"]]
    assert report.summary.total_internal == 3
    assert report.summary.first_contact.total == 2
    assert report.first_contact_analysis.total_first_messages == 2
    assert report.first_contact_analysis.unique_phone_numbers == 2
    assert report.first_contact_analysis.unmatched_first_messages == 1
    assert report.first_contact_analysis.failure_rate == "50.00%"


def test_verify_first_contact_without_first_messages() -> None:
    internal = FakeInternalSource([_internal("c", "+200", "Any update?", classification="follow_up")])
    external = FakeExternalSource({})
    service = _service(internal, external)

    outcome = asyncio.run(service.verify_first_contact(WINDOW_START, WINDOW_END))

    assert external.requested == []
    assert outcome.report.first_contact_analysis.failure_rate == "0%"


def test_naive_window_bound_is_compared_as_utc() -> None:
    internal = FakeInternalSource([])
    external = FakeExternalSource({})
    service = _service(internal, external)
    naive_start = datetime(2024, 2, 2)
    request = VerificationRequest(naive_start, datetime(2024, 2, 1, tzinfo=timezone.utc))

    with pytest.raises(ConfigurationError):
        asyncio.run(service.verify(request))
    assert internal.calls == []
