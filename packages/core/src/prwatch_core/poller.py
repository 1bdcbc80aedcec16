"""Fixed-interval scheduler driving the review and comment cycles."""

from __future__ import annotations

import logging
import time

logger = logging.getLogger(__name__)


class Poller:
    """Runs ticks back to back, one at a time.

    A tick is: retention sweep, comment cycle, review cycle, comment cycle.
    The second comment cycle picks up replies to reviews posted in the same
    tick. An overrunning tick just delays the next one; ticks never overlap.
    """

    def __init__(
        self,
        review,
        comments,
        store,
        interval: float = 180,
        retention_days: int = 30,
        clock=time.monotonic,
        sleep=time.sleep,
    ):
        self.review = review
        self.comments = comments
        self.store = store
        self.interval = interval
        self.retention_days = retention_days
        self.clock = clock
        self.sleep = sleep

    def tick(self) -> None:
        self.store.sweep(self.retention_days)
        self.comments.run_cycle()
        self.review.run_cycle()
        self.comments.run_cycle()

    def run_forever(self, max_ticks: int | None = None) -> int:
        """Run ticks until interrupted (or ``max_ticks`` is reached). Returns the ticks run."""
        ticks = 0
        try:
            while max_ticks is None or ticks < max_ticks:
                started = self.clock()
                try:
                    self.tick()
                except Exception:
                    logger.exception("Poll cycle failed")
                ticks += 1
                if max_ticks is not None and ticks >= max_ticks:
                    break
                elapsed = self.clock() - started
                self.sleep(max(0.0, self.interval - elapsed))
        except KeyboardInterrupt:
            logger.info("Shutting down")
        return ticks
