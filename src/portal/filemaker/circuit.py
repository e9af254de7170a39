"""Shared-state circuit breaker for FileMaker.

The failure counter lives in the shared store so that every process instance
sees the same state. The counter's existence with a value >= threshold *is*
the open state; when its TTL lapses the key disappears and the breaker is
closed again. There is no half-open probe.
"""

from __future__ import annotations

import structlog

from src.portal.core.redis import SharedStateStore, StateStoreError

logger = structlog.get_logger(__name__)

CIRCUIT_KEY = "fm:circuit"
CIRCUIT_OPEN_DURATION_SECONDS = 300  # 5 minutes
FAILURE_THRESHOLD = 3


class CircuitBreaker:
    """Counts consecutive FileMaker failures and gates calls when FM looks down.

    Args:
        store: Shared TTL-capable store holding the failure counter.
        key: Counter key name.
        threshold: Consecutive failures before the circuit opens.
        cooldown_seconds: Counter TTL, i.e. how long the circuit stays open.
    """

    def __init__(
        self,
        store: SharedStateStore,
        key: str = CIRCUIT_KEY,
        threshold: int = FAILURE_THRESHOLD,
        cooldown_seconds: int = CIRCUIT_OPEN_DURATION_SECONDS,
    ) -> None:
        self._store = store
        self._key = key
        self._threshold = threshold
        self._cooldown = cooldown_seconds

    async def is_open(self) -> bool:
        """True iff the counter exists and is at or above the threshold.

        Fails open: an unreachable store never blocks traffic.
        """
        try:
            failures = await self._store.get(self._key)
        except StateStoreError as exc:
            logger.warning("filemaker.circuit_state_unavailable", error=str(exc))
            return False

        if not failures:
            return False
        try:
            return int(failures) >= self._threshold
        except ValueError:
            return False

    async def record_failure(self) -> None:
        """Atomically increment the counter; start the TTL on absent -> 1."""
        try:
            count = await self._store.incr(self._key)
            if count == 1:
                await self._store.expire(self._key, self._cooldown)
        except StateStoreError as exc:
            logger.warning("filemaker.circuit_record_failure_failed", error=str(exc))
            return

        if count == self._threshold:
            logger.warning(
                "filemaker.circuit_opened",
                failures=count,
                cooldown_seconds=self._cooldown,
            )

    async def record_success(self) -> None:
        """Reset the breaker by deleting the counter."""
        try:
            await self._store.delete(self._key)
        except StateStoreError as exc:
            logger.warning("filemaker.circuit_reset_failed", error=str(exc))
