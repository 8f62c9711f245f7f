"""CI backpressure throttle.

Blocks before each batch candidate while the shared build farm's evaluator
queue is longer than a threshold. There is no backoff and no maximum wait:
the queue is assumed to drain eventually.
"""
from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from constants import Constants
from common.http_client import get_json

logger = logging.getLogger(__name__)


def _extract_waiting(data) -> Optional[int]:
    try:
        return int(data["evaluator"]["messages"]["waiting"])
    except (KeyError, TypeError, ValueError):
        return None


def fetch_queue_depth(stats_url: str = Constants.CI_STATS_URL) -> Optional[int]:
    """Current evaluator queue depth, or None when the signal is unavailable."""
    status, _, data = get_json(stats_url, use_cache=False)
    if status != 200:
        return None
    return _extract_waiting(data)


class CiThrottle:
    """Waits until the CI queue depth is at or below ``threshold``."""

    def __init__(
        self,
        threshold: int = Constants.CI_QUEUE_THRESHOLD,
        interval_sec: float = Constants.CI_POLL_INTERVAL_SEC,
        signal: Optional[Callable[[], Optional[int]]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.threshold = threshold
        self.interval_sec = interval_sec
        self._signal = signal or fetch_queue_depth
        self._sleep = sleep

    def wait_until_free(self) -> int:
        """Block until the queue drains; return how many times it slept.

        An unreachable or malformed signal counts as an empty queue.
        """
        slept = 0
        while True:
            depth = self._signal()
            if depth is None:
                logger.warning("CI queue depth unavailable; proceeding")
                return slept
            if depth <= self.threshold:
                return slept
            logger.info("CI queue has %d waiting (> %d); sleeping %ss", depth, self.threshold, self.interval_sec)
            self._sleep(self.interval_sec)
            slept += 1
