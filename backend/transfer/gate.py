"""Bounded-concurrency gate for in-flight downloads."""

import logging

from config import MAX_CONCURRENT_TRANSFERS

logger = logging.getLogger(__name__)


class AdmissionGate:
    """
    Non-blocking counting semaphore. Acquiring never exceeds the limit;
    lowering the limit below the current use only holds back new admissions.
    """

    def __init__(self, limit: int = MAX_CONCURRENT_TRANSFERS) -> None:
        self._limit = self._check_limit(limit)
        self._in_use = 0

    @staticmethod
    def _check_limit(limit: int) -> int:
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 0:
            raise ValueError(f"Admission limit must be a non-negative integer, got {limit!r}")
        if limit == 0:
            logger.warning("Admission limit set to 0: queued transfers will wait until it is raised")
        return limit

    @property
    def limit(self) -> int:
        return self._limit

    @limit.setter
    def limit(self, value: int) -> None:
        self._limit = self._check_limit(value)

    @property
    def in_use(self) -> int:
        return self._in_use

    @property
    def available(self) -> int:
        return max(self._limit - self._in_use, 0)

    def try_acquire(self) -> bool:
        if self._in_use >= self._limit:
            return False
        self._in_use += 1
        return True

    def release(self) -> bool:
        """Give a slot back. Releasing with nothing held is refused."""
        if self._in_use == 0:
            logger.warning("Ignoring release on an idle admission gate")
            return False
        self._in_use -= 1
        return True

    def utilization(self) -> float:
        if self._limit == 0:
            return 1.0 if self._in_use else 0.0
        return self._in_use / self._limit
