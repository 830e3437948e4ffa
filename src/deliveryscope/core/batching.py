"""Batch coordination for reconciliation runs.

Internal records are split into contiguous batches and each batch is matched
against the full, unpartitioned external pool. Counts are summed across
batches; the average confidence is always recomputed from the merged matched
list so small batches do not skew it.

Consumption modes:
- per_batch: every batch gets its own consumption set. The same external
  record can be matched once per batch, so across a run it may back more
  than one matched outcome. Batches are independent and may run on a thread
  pool.
- global: one consumption set is threaded through all batches in order, so
  an external record is matched at most once per run. Always sequential.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Iterator, List, Sequence, Set

from deliveryscope.core.config import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_THRESHOLD,
    validate_batch_size,
    validate_consumption_mode,
    validate_threshold,
)
from deliveryscope.core.matcher import BatchResult, average_confidence, match_batch
from deliveryscope.core.models import (
    ExternalMessageRecord,
    InternalMessageRecord,
    ReconciliationResult,
)

LOGGER = logging.getLogger(__name__)


def iter_batches(
    records: Sequence[InternalMessageRecord], batch_size: int
) -> Iterator[Sequence[InternalMessageRecord]]:
    """Yield contiguous slices of ``batch_size`` records; the last may be shorter."""

    for start in range(0, len(records), batch_size):
        yield records[start : start + batch_size]


def merge_batches(
    batches: Sequence[BatchResult],
    total_internal: int,
    total_external: int,
) -> ReconciliationResult:
    """Concatenate batch outcomes in order and sum their counters."""

    merged = ReconciliationResult()
    stats = merged.statistics
    stats.total_internal = total_internal
    stats.total_external = total_external

    for batch in batches:
        merged.matched.extend(batch.matched)
        merged.unmatched.extend(batch.unmatched)
        stats.matched_count += batch.statistics.matched_count
        stats.unmatched_count += batch.statistics.unmatched_count
        stats.first_contact.add(batch.statistics.first_contact)

    stats.average_confidence = average_confidence(merged.matched)
    return merged


def reconcile(
    internal_all: Sequence[InternalMessageRecord],
    external_all: Sequence[ExternalMessageRecord],
    batch_size: int = DEFAULT_BATCH_SIZE,
    threshold: float = DEFAULT_THRESHOLD,
    consumption_mode: str = "per_batch",
    workers: int = 1,
) -> ReconciliationResult:
    """Reconcile all internal records against all external records."""

    validate_batch_size(batch_size)
    validate_threshold(threshold)
    validate_consumption_mode(consumption_mode)

    internal_all = list(internal_all)
    external_pool = list(external_all)
    batches = list(iter_batches(internal_all, batch_size))

    results: List[BatchResult]
    if consumption_mode == "global":
        shared: Set[int] = set()
        results = [match_batch(batch, external_pool, threshold, shared) for batch in batches]
    elif workers > 1 and len(batches) > 1:
        with ThreadPoolExecutor(max_workers=workers) as executor:
            # map() yields in submission order, keeping merge order deterministic.
            results = list(
                executor.map(lambda batch: match_batch(batch, external_pool, threshold), batches)
            )
    else:
        results = [match_batch(batch, external_pool, threshold) for batch in batches]

    merged = merge_batches(results, len(internal_all), len(external_pool))
    LOGGER.info(
        "Reconciliation complete: batches=%s, matched=%s, unmatched=%s, mode=%s",
        len(batches),
        merged.statistics.matched_count,
        merged.statistics.unmatched_count,
        consumption_mode,
    )
    return merged
