"""Verification of observed records against case expectations.

The verifier is a pure function of the expectations of a case and the
records captured while observing it. Matching is evaluated per channel:

1. Ordered expectations are matched first, in declaration order,
   against records in arrival order, with a forward-only cursor. A record
   matching only behind the cursor is an out-of-order mismatch.
2. Unordered expectations then claim any remaining matching record.
3. "No extra output" assertions fail on any record left unclaimed.

A record is inside an expectation window if it arrived no later than
the expectation timeout after the window opened. No record is ever
claimed twice. An expectation without any unclaimed record inside its
window timed out; one whose window holds only non-matching records
mismatched.
"""

from collections import defaultdict
from typing import TYPE_CHECKING

from systest.results.verdicts import ExpectationResult
from systest.schema import Expectation, NoExtraOutput

from .matchers import diff, matches

if TYPE_CHECKING:
    from collections.abc import Sequence

if TYPE_CHECKING:
    from systest.extensions import ObservedRecord
    from systest.schema import AnyExpectation

#: Channel key: `(service, channel)`.
type ChannelKey = tuple[str, str]


class Verifier:
    """Compare observed records with expectations.

    Expectations handed to the verifier must be fully resolved: every
    expectation has a channel, a timeout and (for payload expectations)
    an ordering mode.
    """

    def verify(self, expectations: 'Sequence[AnyExpectation]',
               records: 'Sequence[ObservedRecord]') -> tuple[ExpectationResult, ...]:
        """Verify expectations against observed records.

        Args:
            expectations: Resolved expectations of a case, in declaration order.
            records: Records captured during observation.

        Returns:
            One result per expectation, in declaration order.
        """
        streams: dict[ChannelKey, list[ObservedRecord]] = defaultdict(list)
        for record in sorted(records, key=lambda item: (item.elapsed, item.sequence)):
            streams[record.service, record.channel].append(record)

        groups: dict[ChannelKey, list[int]] = defaultdict(list)
        for index, expectation in enumerate(expectations):
            groups[expectation.service, self._channel(expectation)].append(index)

        results: dict[int, ExpectationResult] = {}
        for key, indexes in groups.items():
            results.update(self._verify_channel(
                [(index, expectations[index]) for index in indexes],
                streams.get(key, []),
            ))

        return tuple(results[index] for index in range(len(expectations)))

    def _verify_channel(self, expectations: list[tuple[int, 'AnyExpectation']],
                        stream: list['ObservedRecord']) -> dict[int, ExpectationResult]:
        """Verify the expectations of one channel against its records."""
        claimed: set[int] = set()
        results: dict[int, ExpectationResult] = {}

        ordered = [
            (index, item)
            for index, item in expectations
            if isinstance(item, Expectation) and item.ordering == 'ordered'
        ]
        unordered = [
            (index, item)
            for index, item in expectations
            if isinstance(item, Expectation) and item.ordering != 'ordered'
        ]
        absences = [
            (index, item)
            for index, item in expectations
            if isinstance(item, NoExtraOutput)
        ]

        cursor = 0
        for index, expectation in ordered:
            window = self._window(stream, expectation)
            position = next((
                position
                for position in range(cursor, len(window))
                if position not in claimed
                and matches(window[position].payload, expectation.payload, expectation.match)
            ), None)

            if position is not None:
                claimed.add(position)
                cursor = position + 1
                results[index] = self._matched(index, expectation, window[position])
                continue

            behind = next((
                position
                for position in range(min(cursor, len(window)))
                if position not in claimed
                and matches(window[position].payload, expectation.payload, expectation.match)
            ), None)

            if behind is not None:
                results[index] = self._failed(
                    index, expectation, 'mismatched', window[behind],
                    f'Record #{window[behind].sequence} matches but arrived out of order',
                )
            else:
                results[index] = self._unmatched(index, expectation, window, claimed)

        for index, expectation in unordered:
            window = self._window(stream, expectation)
            position = next((
                position
                for position, record in enumerate(window)
                if position not in claimed
                and matches(record.payload, expectation.payload, expectation.match)
            ), None)

            if position is not None:
                claimed.add(position)
                results[index] = self._matched(index, expectation, window[position])
            else:
                results[index] = self._unmatched(index, expectation, window, claimed)

        for index, expectation in absences:
            window = self._window(stream, expectation)
            extra = [
                record
                for position, record in enumerate(window)
                if position not in claimed
            ]

            if not extra:
                results[index] = ExpectationResult(
                    index=index,
                    service=expectation.service,
                    channel=self._channel(expectation),
                    status='matched',
                )
                continue

            results[index] = ExpectationResult(
                index=index,
                service=expectation.service,
                channel=self._channel(expectation),
                status='unexpected',
                observed=[record.payload for record in extra],
                message=f'{len(extra)} unexpected record(s) on {self._label(expectation)}',
            )

        return results

    def _unmatched(self, index: int, expectation: Expectation,
                   window: list['ObservedRecord'],
                   claimed: set[int]) -> ExpectationResult:
        """Build the result of an expectation without a matching record."""
        candidates = [
            record
            for position, record in enumerate(window)
            if position not in claimed
        ]

        if not candidates:
            return self._failed(
                index, expectation, 'timed_out', None,
                f'No record on {self._label(expectation)} within the observation window',
            )

        return self._failed(
            index, expectation, 'mismatched', candidates[0],
            f'{len(candidates)} record(s) on {self._label(expectation)} did not match',
        )

    def _matched(self, index: int, expectation: Expectation,
                 record: 'ObservedRecord') -> ExpectationResult:
        return ExpectationResult(
            index=index,
            service=expectation.service,
            channel=self._channel(expectation),
            status='matched',
            optional=expectation.optional,
            expected=expectation.payload,
            observed=record.payload,
        )

    def _failed(self, index: int, expectation: Expectation, status: str,
                record: 'ObservedRecord | None', message: str) -> ExpectationResult:
        return ExpectationResult(
            index=index,
            service=expectation.service,
            channel=self._channel(expectation),
            status=status,
            optional=expectation.optional,
            expected=expectation.payload,
            observed=record.payload if record is not None else None,
            diff=diff(record.payload, expectation.payload) if record is not None else None,
            message=message,
        )

    @staticmethod
    def _window(stream: list['ObservedRecord'],
                expectation: 'AnyExpectation') -> list['ObservedRecord']:
        """Select the records of a channel inside an expectation window.

        The window of a stream is a prefix of it, so record positions are
        shared between windows of different lengths.
        """
        if expectation.timeout is None:
            return stream

        return [
            record
            for record in stream
            if record.elapsed <= expectation.timeout
        ]

    @staticmethod
    def _channel(expectation: 'AnyExpectation') -> str:
        return expectation.channel or ''

    @classmethod
    def _label(cls, expectation: 'AnyExpectation') -> str:
        return f'{expectation.service}:{cls._channel(expectation)}'
