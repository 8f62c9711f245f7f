"""Rebuild-impact estimation with a merge-base snapshot cache.

The merge-base outpath set is expensive and identical for every candidate
that branches off the same merge base, so it lives in a single cache handle
owned by the batch driver. The edited set is unique per candidate and is
never cached.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from common.logging_utils import extra_context, is_debug_enabled, Timer
from . import outpaths as op
from .outpaths import OutpathSet

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class MergeBaseOutpathsInfo:
    """Cached merge-base outpath set and when it was computed."""

    last_computed_at: datetime
    outpaths: OutpathSet = field(default_factory=frozenset)

    @classmethod
    def stale(cls, now: Optional[datetime] = None, age: timedelta = timedelta(hours=2)) -> "MergeBaseOutpathsInfo":
        """A deliberately outdated, empty snapshot for the start of a batch."""
        return cls(last_computed_at=(now or _utcnow()) - age, outpaths=frozenset())


def needs_refresh(now: datetime, last_computed_at: datetime, max_age_sec: float, enabled: bool) -> bool:
    """Refresh only when estimation is enabled and the snapshot is too old."""
    return enabled and (now - last_computed_at) > timedelta(seconds=max_age_sec)


@dataclass
class ImpactEstimate:
    """Result of comparing the baseline with the edited checkout."""

    diff: OutpathSet
    rebuild_count: int


class RebuildImpactEstimator:
    """Computes how many packages a candidate change would rebuild."""

    def __init__(
        self,
        enabled: bool,
        max_age_sec: float,
        compute: Optional[Callable[[], OutpathSet]] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.enabled = enabled
        self.max_age_sec = max_age_sec
        self._compute = compute or op.current_outpath_set
        self._clock = clock

    def _evaluate(self, label: str) -> OutpathSet:
        with Timer() as t:
            result = self._compute()
        if is_debug_enabled(logger):
            logger.debug(
                "Outpath set evaluated",
                extra=extra_context(
                    event="outpaths",
                    component="impact",
                    action=label,
                    outcome="success",
                    count=len(result),
                    duration_ms=t.duration_ms(),
                )
            )
        return result

    def baseline(self, attr_path: str, cache: MergeBaseOutpathsInfo) -> OutpathSet:
        """Outpath set at the merge base, refreshing the cache when stale.

        Must be called with the merge-base commit checked out.
        """
        if not self.enabled:
            return op.dummy_outpath_set_before(attr_path)
        now = self._clock()
        if needs_refresh(now, cache.last_computed_at, self.max_age_sec, self.enabled):
            logger.info("Merge-base outpaths are stale; recomputing")
            cache.outpaths = self._evaluate("baseline")
            cache.last_computed_at = now
        return cache.outpaths

    def edited(self, attr_path: str) -> OutpathSet:
        """Outpath set of the edited checkout; always computed fresh."""
        if not self.enabled:
            return op.dummy_outpath_set_after(attr_path)
        return self._evaluate("edited")

    def estimate(self, baseline: OutpathSet, edited: OutpathSet) -> ImpactEstimate:
        diff = op.outpath_diff(baseline, edited)
        return ImpactEstimate(diff=diff, rebuild_count=op.num_package_rebuilds(diff))
