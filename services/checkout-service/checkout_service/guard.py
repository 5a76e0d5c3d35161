from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ReconciliationAttempt:
    """One-shot state for a single page load / request.

    ``has_processed`` latches on the first run; ``is_live`` drops when the
    owner goes away, after which late results are thrown away.
    """

    def __init__(self) -> None:
        self.has_processed = False
        self.is_live = True

    def begin(self) -> bool:
        if self.has_processed or not self.is_live:
            return False
        self.has_processed = True
        return True

    def close(self) -> None:
        self.is_live = False

    def __enter__(self) -> "ReconciliationAttempt":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class IdempotencyGuard:
    """Runs reconciliation at most once per attempt and once per in-flight callback.

    Runs are keyed by the callback fingerprint scoped to the caller. A second
    trigger for the same key while the first is still running awaits the same
    task instead of entering the engine again. This only covers one process; a
    reload or a second tab racing us is handled by the engine's duplicate
    tolerance.
    """

    def __init__(self) -> None:
        self._in_flight: Dict[str, asyncio.Future] = {}

    def in_flight(self, key: str) -> bool:
        return key in self._in_flight

    async def run(
        self,
        attempt: ReconciliationAttempt,
        key: str,
        operation: Callable[[], Awaitable[T]],
    ) -> Optional[T]:
        if not attempt.begin():
            logger.info("Reconciliation for %s already started by this attempt, skipping", key[:12])
            return None

        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.ensure_future(operation())
            self._in_flight[key] = task
            task.add_done_callback(lambda _: self._in_flight.pop(key, None))
        else:
            logger.info("Joining in-flight reconciliation for %s", key[:12])

        # Shielded: tearing the caller down must not cancel calls already on the wire.
        result = await asyncio.shield(task)
        if not attempt.is_live:
            logger.info("Attempt for %s closed before completion, discarding result", key[:12])
            return None
        return result
