from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from deliveryscope.core.matcher import match_batch
from deliveryscope.core.models import (
    BELOW_THRESHOLD,
    FIRST_MESSAGE,
    FOLLOW_UP,
    NO_CANDIDATE,
    ExternalMessageRecord,
    InternalMessageRecord,
)

T0 = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def _internal(
    record_id: str,
    text: str,
    sent_at: datetime = T0,
    classification: Optional[str] = FOLLOW_UP,
) -> InternalMessageRecord:
    return InternalMessageRecord(
        record_id=record_id,
        text=text,
        phone_number="+15550100",
        sent_at=sent_at,
        role="assistant",
        classification=classification,
    )


def _external(text: str, timestamp: datetime) -> ExternalMessageRecord:
    return ExternalMessageRecord(text=text, timestamp=timestamp, phone_number="+15550100", role="assistant")


def test_matches_despite_punctuation_drift() -> None:
    internal = [_internal("1", "Your payment is due")]
    external = [_external("your payment is due!!", T0 + timedelta(seconds=1))]

    result = match_batch(internal, external, threshold=0.9)

    assert len(result.matched) == 1
    assert result.matched[0].confidence >= 0.9
    assert result.matched[0].external is external[0]
    assert result.matched[0].percentage == "100.00%"
    assert not result.unmatched


def test_external_earlier_than_internal_is_not_a_candidate() -> None:
    internal = [_internal("1", "Hello")]
    external = [_external("Hello", T0 - timedelta(seconds=1))]

    result = match_batch(internal, external, threshold=0.9)

    assert not result.matched
    assert result.unmatched[0].reason == NO_CANDIDATE
    assert result.unmatched[0].best_score == 0.0


def test_equal_timestamps_are_eligible() -> None:
    result = match_batch([_internal("1", "Hello there")], [_external("Hello there", T0)], threshold=0.9)
    assert len(result.matched) == 1


def test_one_external_record_is_consumed_once_per_batch() -> None:
    internal = [_internal("1", "Payment received"), _internal("2", "Payment received")]
    external = [_external("Payment received", T0 + timedelta(minutes=1))]

    result = match_batch(internal, external, threshold=0.9)

    assert [o.internal.record_id for o in result.matched] == ["1"]
    assert [o.internal.record_id for o in result.unmatched] == ["2"]
    assert result.unmatched[0].reason == NO_CANDIDATE


def test_second_duplicate_falls_back_to_weaker_candidate() -> None:
    internal = [_internal("1", "Payment received"), _internal("2", "Payment received")]
    external = [
        _external("Payment received", T0 + timedelta(minutes=1)),
        _external("Payment pending", T0 + timedelta(minutes=2)),
    ]

    result = match_batch(internal, external, threshold=0.9)

    assert len(result.matched) == 1
    unmatched = result.unmatched[0]
    assert unmatched.internal.record_id == "2"
    assert unmatched.reason == BELOW_THRESHOLD
    assert 0.0 < unmatched.best_score < 0.9


def test_ties_keep_first_external_in_pool_order() -> None:
    first = _external("See you tomorrow", T0 + timedelta(minutes=5))
    second = _external("See you tomorrow", T0 + timedelta(minutes=1))

    result = match_batch([_internal("1", "See you tomorrow")], [first, second], threshold=0.9)

    assert result.matched[0].external is first


def test_internal_after_all_external_records_has_no_candidate() -> None:
    internal = [_internal("1", "Late message", sent_at=T0 + timedelta(hours=1))]
    external = [_external("Late message", T0), _external("Other", T0 + timedelta(minutes=30))]

    result = match_batch(internal, external, threshold=0.9)

    assert result.unmatched[0].reason == NO_CANDIDATE
    assert result.unmatched[0].best_score == 0.0


def test_empty_batch_and_empty_pool() -> None:
    empty = match_batch([], [_external("x", T0)], threshold=0.9)
    assert not empty.matched and not empty.unmatched
    assert empty.statistics.total_internal == 0
    assert empty.statistics.matched_count == 0
    assert empty.statistics.average_confidence == 0.0

    no_pool = match_batch([_internal("1", "a"), _internal("2", "b")], [], threshold=0.9)
    assert [o.reason for o in no_pool.unmatched] == [NO_CANDIDATE, NO_CANDIDATE]


def test_counts_sum_to_batch_size_and_track_first_contact() -> None:
    internal = [
        _internal("1", "Welcome to our service", classification=FIRST_MESSAGE),
        _internal("2", "Welcome again", classification=FIRST_MESSAGE),
        _internal("3", "Your balance is 20 dollars"),
    ]
    external = [
        _external("Welcome to our service!", T0 + timedelta(seconds=5)),
        _external("Your balance is 20 dollars.", T0 + timedelta(seconds=9)),
    ]

    result = match_batch(internal, external, threshold=0.9)
    stats = result.statistics

    assert len(result.matched) + len(result.unmatched) == len(internal)
    assert stats.matched_count == 2
    assert stats.unmatched_count == 1
    assert stats.total_external == 2
    assert stats.first_contact.total == 2
    assert stats.first_contact.matched == 1
    assert stats.first_contact.unmatched == 1
    assert stats.average_confidence == 1.0


def test_matched_confidence_never_below_threshold() -> None:
    internal = [_internal(str(i), text) for i, text in enumerate(["pay now", "pay later", "call us", "thanks"])]
    external = [
        _external(text, T0 + timedelta(seconds=i))
        for i, text in enumerate(["pay now please", "pay later", "call me", "thank you"])
    ]

    result = match_batch(internal, external, threshold=0.8)

    assert all(o.confidence >= 0.8 for o in result.matched)
    assert len(result.matched) + len(result.unmatched) == len(internal)


def test_shared_consumed_set_is_updated() -> None:
    consumed: set[int] = set()
    external = [_external("Hello", T0)]
    match_batch([_internal("1", "Hello")], external, threshold=0.9, consumed=consumed)
    assert consumed == {0}

    second = match_batch([_internal("2", "Hello")], external, threshold=0.9, consumed=consumed)
    assert second.unmatched[0].reason == NO_CANDIDATE
