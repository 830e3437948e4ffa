"""Greedy one-to-one matching of internal records against an external pool.

The matcher is integration-agnostic and performs no I/O. Assignment is
greedy in internal-record order: each record takes the best still-available
external candidate. This is order dependent and not globally optimal, which
is accepted for this workload.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Set

from deliveryscope.core.models import (
    BELOW_THRESHOLD,
    NO_CANDIDATE,
    ExternalMessageRecord,
    InternalMessageRecord,
    MatchedOutcome,
    ReconciliationStatistics,
    UnmatchedOutcome,
)
from deliveryscope.core.similarity import score

LOGGER = logging.getLogger(__name__)


@dataclass
class BatchResult:
    """Outcomes and partial statistics for one batch."""

    matched: List[MatchedOutcome] = field(default_factory=list)
    unmatched: List[UnmatchedOutcome] = field(default_factory=list)
    statistics: ReconciliationStatistics = field(default_factory=ReconciliationStatistics)


def average_confidence(matched: Sequence[MatchedOutcome]) -> float:
    if not matched:
        return 0.0
    return sum(outcome.confidence for outcome in matched) / len(matched)


def _best_candidate(
    internal: InternalMessageRecord,
    external_pool: Sequence[ExternalMessageRecord],
    consumed: Set[int],
) -> tuple[int, float]:
    """Return (pool index, score) of the best eligible candidate, or (-1, 0.0)."""

    best_index = -1
    best_score = 0.0
    for index, external in enumerate(external_pool):
        if index in consumed:
            continue
        # The provider can only confirm a message after we recorded sending it.
        if external.timestamp < internal.sent_at:
            continue
        candidate_score = score(internal.text, external.text)
        # Strictly greater keeps the first-seen candidate on ties.
        if candidate_score > best_score:
            best_index = index
            best_score = candidate_score
    return best_index, best_score


def match_batch(
    internal_batch: Sequence[InternalMessageRecord],
    external_pool: Sequence[ExternalMessageRecord],
    threshold: float,
    consumed: Optional[Set[int]] = None,
) -> BatchResult:
    """Match one batch of internal records against the external pool.

    ``consumed`` holds pool indices already taken by a match. When omitted a
    fresh set is used, so consumption is scoped to this batch only. Passing
    a shared set lets callers extend the one-match-per-external guarantee
    across batches. The set is updated in place.
    """

    if consumed is None:
        consumed = set()

    result = BatchResult()
    stats = result.statistics
    stats.total_internal = len(internal_batch)
    stats.total_external = len(external_pool)

    for internal in internal_batch:
        if internal.is_first_contact:
            stats.first_contact.total += 1

        best_index, best_score = _best_candidate(internal, external_pool, consumed)

        if best_index >= 0 and best_score >= threshold:
            consumed.add(best_index)
            result.matched.append(
                MatchedOutcome(
                    internal=internal,
                    external=external_pool[best_index],
                    confidence=best_score,
                )
            )
            stats.matched_count += 1
            if internal.is_first_contact:
                stats.first_contact.matched += 1
            continue

        reason = BELOW_THRESHOLD if best_score > 0 else NO_CANDIDATE
        result.unmatched.append(
            UnmatchedOutcome(internal=internal, best_score=best_score, reason=reason)
        )
        stats.unmatched_count += 1
        if internal.is_first_contact:
            stats.first_contact.unmatched += 1

    stats.average_confidence = average_confidence(result.matched)

    LOGGER.debug(
        "Batch matched %s/%s internal records against %s external records",
        stats.matched_count,
        stats.total_internal,
        stats.total_external,
    )
    return result
