"""Verification service orchestrating sources, reconciliation, and reporting.

This module is integration-agnostic. It only relies on ports for internal and
external records, so storage backends and providers can change without edits
here. The flow for one request is:
1) Validate the request before touching any source
2) Resolve the phone numbers to verify
3) Fetch internal records, then external records per phone number
4) Flatten external results, treating failed phone numbers as empty
5) Reconcile in batches and shape the report
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from deliveryscope.core.batching import reconcile
from deliveryscope.core.config import ConfigurationError, MatchingConfig
from deliveryscope.core.models import (
    FIRST_MESSAGE,
    ROLE_ADMIN,
    ROLE_ASSISTANT,
    ROLE_SYSTEM,
    ROLE_USER,
    ExternalFetchResult,
    ExternalMessageRecord,
    FetchError,
    ReconciliationResult,
    ensure_utc,
)
from deliveryscope.core.ports import ExternalRecordSource, InternalRecordSource
from deliveryscope.core.report import Report, attach_first_contact_analysis, build_report

LOGGER = logging.getLogger(__name__)

ROLE_FILTERS = {
    "both": (ROLE_USER, ROLE_ASSISTANT, ROLE_SYSTEM),
    ROLE_USER: (ROLE_USER,),
    ROLE_ASSISTANT: (ROLE_ASSISTANT,),
    ROLE_SYSTEM: (ROLE_SYSTEM,),
    ROLE_ADMIN: (ROLE_ADMIN,),
}

# Upper bound on phone numbers generated from a range.
MAX_RANGE_SIZE = 10_000

_DIGIT = re.compile(r"\d")


@dataclass(frozen=True)
class VerificationRequest:
    """Parameters for one verification run."""

    window_start: datetime
    window_end: datetime
    phone_numbers: Tuple[str, ...] = ()
    phone_number_range: Optional[Tuple[str, str]] = None
    role_filter: str = "both"
    include_details: bool = True


@dataclass
class VerificationOutcome:
    report: Report
    errors: List[FetchError] = field(default_factory=list)


def expand_phone_number_range(start: str, end: str) -> List[str]:
    """Expand an inclusive phone number range, keeping the start's formatting.

    Digits of each generated number are written back into the positions the
    digits of ``start`` occupied, so ``+1 (555) 0100`` yields ``+1 (555) 0101``.
    """

    start_digits = "".join(_DIGIT.findall(start))
    end_digits = "".join(_DIGIT.findall(end))
    if not start_digits or not end_digits:
        raise ConfigurationError(f"Phone number range needs digits: {start!r} - {end!r}")

    first, last = int(start_digits), int(end_digits)
    if first > last:
        raise ConfigurationError(f"Phone number range start {start!r} is after end {end!r}")
    if last - first + 1 > MAX_RANGE_SIZE:
        raise ConfigurationError(f"Phone number range is larger than {MAX_RANGE_SIZE} numbers")

    width = len(start_digits)
    numbers: List[str] = []
    for value in range(first, last + 1):
        text = str(value)
        if len(text) > width:
            # Overflowed the template; fall back to the bare number.
            numbers.append(text)
            continue
        digits = iter(text.zfill(width))
        numbers.append(_DIGIT.sub(lambda _: next(digits), start))
    return numbers


def flatten_external(results: Sequence[ExternalFetchResult]) -> List[ExternalMessageRecord]:
    """Concatenate records of successful fetches; failed phone numbers add nothing."""

    records: List[ExternalMessageRecord] = []
    for result in results:
        if result.success:
            records.extend(result.records)
    return records


def _unique(values: Sequence[str]) -> List[str]:
    return list(dict.fromkeys(value for value in values if value))


class VerificationService:
    """Drives one verification request end to end."""

    def __init__(
        self,
        internal_source: InternalRecordSource,
        external_source: ExternalRecordSource,
        matching: MatchingConfig,
    ) -> None:
        matching.validate()
        self._internal = internal_source
        self._external = external_source
        self._matching = matching

    def _validate(self, request: VerificationRequest) -> None:
        if ensure_utc(request.window_start) > ensure_utc(request.window_end):
            raise ConfigurationError("Window start cannot be after window end")
        if request.role_filter not in ROLE_FILTERS:
            raise ConfigurationError(f"Unsupported role filter: {request.role_filter}")

    def resolve_phone_numbers(self, request: VerificationRequest) -> List[str]:
        """Explicit numbers win, then a range, then numbers active in the window."""

        if request.phone_numbers:
            return _unique(request.phone_numbers)
        if request.phone_number_range:
            start, end = request.phone_number_range
            return expand_phone_number_range(start, end)
        numbers = self._internal.list_phone_numbers(request.window_start, request.window_end)
        LOGGER.info("Found %s phone numbers with messages in the window", len(numbers))
        return numbers

    async def verify(self, request: VerificationRequest) -> VerificationOutcome:
        """Verify internal messages against the provider for one request."""

        self._validate(request)
        phone_numbers = self.resolve_phone_numbers(request)

        internal = self._internal.fetch_messages(
            request.window_start,
            request.window_end,
            phone_numbers=phone_numbers or None,
            roles=ROLE_FILTERS[request.role_filter],
        )
        LOGGER.info("Fetched %s internal messages", len(internal))

        results, errors = await self._external.fetch(
            phone_numbers, request.window_start, request.window_end
        )
        external = flatten_external(results)
        for error in errors:
            LOGGER.warning("External fetch failed for %s: %s", error.identifier, error.error)
        LOGGER.info(
            "Fetched %s external messages for %s phone numbers (%s errors)",
            len(external),
            len(phone_numbers),
            len(errors),
        )

        result = reconcile(
            internal,
            external,
            batch_size=self._matching.batch_size,
            threshold=self._matching.threshold,
            consumption_mode=self._matching.consumption_mode,
            workers=self._matching.workers,
        )
        report = build_report(
            result,
            request.include_details,
            request.window_start,
            request.window_end,
            phone_numbers,
        )
        return VerificationOutcome(report=report, errors=list(errors))

    async def verify_single(
        self,
        phone_number: str,
        window_start: datetime,
        window_end: datetime,
        include_details: bool = True,
        role_filter: str = "both",
    ) -> VerificationOutcome:
        """Verify one phone number; the number is mandatory in this mode."""

        if not phone_number or not phone_number.strip():
            raise ConfigurationError("A phone number is required for single verification")
        request = VerificationRequest(
            window_start=window_start,
            window_end=window_end,
            phone_numbers=(phone_number.strip(),),
            role_filter=role_filter,
            include_details=include_details,
        )
        return await self.verify(request)

    async def verify_first_contact(
        self, window_start: datetime, window_end: datetime
    ) -> VerificationOutcome:
        """Verify the first outbound message of each conversation in the window."""

        if window_start > window_end:
            raise ConfigurationError("Window start cannot be after window end")

        first_messages = self._internal.fetch_messages(
            window_start, window_end, classification=FIRST_MESSAGE
        )
        phone_numbers = _unique([record.phone_number for record in first_messages])
        LOGGER.info(
            "Found %s first messages across %s phone numbers",
            len(first_messages),
            len(phone_numbers),
        )

        if not phone_numbers:
            report = build_report(ReconciliationResult(), True, window_start, window_end, [])
            return VerificationOutcome(report=attach_first_contact_analysis(report, 0, 0))

        outcome = await self.verify(
            VerificationRequest(
                window_start=window_start,
                window_end=window_end,
                phone_numbers=tuple(phone_numbers),
                role_filter=ROLE_ASSISTANT,
                include_details=True,
            )
        )
        attach_first_contact_analysis(outcome.report, len(first_messages), len(phone_numbers))
        return outcome
