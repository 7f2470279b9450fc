"""Exponential backoff with jitter and the delivery eligibility gate.

``delay(n) = min(base * 2**n, max_delay) + jitter`` with jitter drawn uniformly
from ``[0, jitter_ms)``. An operation that failed ``n`` times becomes eligible
again ``delay(n - 1)`` after its last attempt; the jitter is drawn once, when
the operation is re-armed, and stored as ``nextAttemptAt``.

Unset constants are read from the ``sync`` section of the settings on every
access, so edits to sync.json take effect without rebuilding the policy.
"""
import datetime
import logging
import random
from typing import Callable, Iterable, List, Optional

from .models import OperationStatus, SyncOperation, parse_timestamp, to_iso
from ..settings import lib


def utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class RetryPolicy:
    """Backoff schedule and attempt limit for queued operations.

    Args:
        base_delay_ms: Delay before the first retry.
        max_delay_ms: Cap applied before jitter is added.
        jitter_ms: Upper bound (exclusive) of the random jitter.
        max_attempts: Attempts after which an operation is terminally failed.
        rng: Random source returning floats in ``[0, 1)``.
        clock: Callable returning the current aware datetime.
    """

    def __init__(self,
                 base_delay_ms: Optional[int] = None,
                 max_delay_ms: Optional[int] = None,
                 jitter_ms: Optional[int] = None,
                 max_attempts: Optional[int] = None,
                 rng: Optional[Callable[[], float]] = None,
                 clock: Optional[Callable[[], datetime.datetime]] = None) -> None:
        self._base_delay_ms = base_delay_ms
        self._max_delay_ms = max_delay_ms
        self._jitter_ms = jitter_ms
        self._max_attempts = max_attempts
        self.rng: Callable[[], float] = rng or random.random
        self.clock: Callable[[], datetime.datetime] = clock or utc_now

    @property
    def base_delay_ms(self) -> int:
        return self._base_delay_ms if self._base_delay_ms is not None else lib.settings['base_delay_ms']

    @property
    def max_delay_ms(self) -> int:
        return self._max_delay_ms if self._max_delay_ms is not None else lib.settings['max_delay_ms']

    @property
    def jitter_ms(self) -> int:
        return self._jitter_ms if self._jitter_ms is not None else lib.settings['jitter_ms']

    @property
    def max_attempts(self) -> int:
        return self._max_attempts if self._max_attempts is not None else lib.settings['max_attempts']

    def delay(self, retry_count: int) -> float:
        """Return the backoff delay in milliseconds for ``retry_count`` previous failures."""
        retry_count = max(0, int(retry_count))
        # Cap the exponent to keep the intermediate value small
        exponent = min(retry_count, 32)
        backoff = min(self.base_delay_ms * (2 ** exponent), self.max_delay_ms)
        return backoff + self.rng() * self.jitter_ms

    def now(self) -> datetime.datetime:
        return self.clock()

    def is_exhausted(self, op: SyncOperation) -> bool:
        """True when the operation has used up its delivery attempts."""
        return op.retry_count >= self.max_attempts

    def is_eligible(self, op: SyncOperation, now: Optional[datetime.datetime] = None) -> bool:
        """Check whether ``op`` may be sent now.

        Never-attempted operations are always eligible. Exhausted operations
        and operations already being sent never are.
        """
        if op.status == OperationStatus.Syncing or self.is_exhausted(op):
            return False
        if op.retry_count == 0:
            return True

        now = now or self.now()
        next_attempt = parse_timestamp(op.next_attempt_at)
        if next_attempt is None:
            last_attempt = parse_timestamp(op.last_attempt_at)
            if last_attempt is None:
                return True
            next_attempt = last_attempt + datetime.timedelta(milliseconds=self.delay(op.retry_count - 1))
        return now >= next_attempt

    def filter_eligible(self, ops: Iterable[SyncOperation],
                        now: Optional[datetime.datetime] = None) -> List[SyncOperation]:
        now = now or self.now()
        return [op for op in ops if self.is_eligible(op, now)]

    def rearm(self, op: SyncOperation, error: str, now: Optional[datetime.datetime] = None) -> SyncOperation:
        """Record a failed attempt on ``op``.

        The retry count is incremented and the error stored. Operations still
        under the attempt limit go back to pending with their next attempt time
        set; the others are marked failed and left for the user to inspect.

        Returns:
            The same operation, modified in place.
        """
        now = now or self.now()
        op.retry_count += 1
        op.error = error
        op.last_attempt_at = to_iso(now)

        if self.is_exhausted(op):
            op.status = OperationStatus.Failed
            op.next_attempt_at = None
            logging.warning(f'Operation {op.id} ({op.table}/{op.record_id}) failed permanently: {error}')
            return op

        op.status = OperationStatus.Pending
        next_attempt = now + datetime.timedelta(milliseconds=self.delay(op.retry_count - 1))
        op.next_attempt_at = to_iso(next_attempt)
        logging.debug(
            f'Operation {op.id} re-armed (attempt {op.retry_count}/{self.max_attempts}), '
            f'next attempt at {op.next_attempt_at}'
        )
        return op
