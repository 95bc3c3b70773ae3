# cat_engine/exposure_control.py

"""
Item exposure control.

Items shown very often across the whole bank get compromised, so selection
prefers items with low system-wide usage. Usage counters are shared by all
concurrent sessions and live behind the ExposureCounter interface; the
engine only records presentations and reads counts back. Stale reads are
acceptable since exposure scoring is a soft preference.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from threading import Lock
from typing import Dict, Optional

from .schema import Item

logger = logging.getLogger(__name__)

EXPOSURE_CAP = 1000
EXPOSURE_FLOOR = 0.2


def exposure_score(usage: int, cap: int = EXPOSURE_CAP) -> float:
    """
    1.0 for an unused item, falling linearly with usage, never below the
    0.2 floor (reached for good once usage >= cap).
    """
    usage = max(0, usage)
    return max(EXPOSURE_FLOOR, 1.0 - min(usage, cap) / cap)


class ExposureCounter:
    """
    Interface to the shared usage-counter service.
    Implementations must tolerate concurrent record() calls from many sessions.
    """

    def record(self, item: Item) -> None:
        raise NotImplementedError

    def usage(self, item: Item) -> int:
        raise NotImplementedError


class InMemoryExposureCounter(ExposureCounter):
    """
    Process-local counter: the item's own usage_count plus presentations
    recorded through this counter. Thread-safe.
    """

    def __init__(self):
        self._lock = Lock()
        self._recorded: Dict[str, int] = defaultdict(int)

    def record(self, item: Item) -> None:
        with self._lock:
            self._recorded[item.id] += 1
            count = self._recorded[item.id]
        logger.debug(f"Exposure recorded for item {item.id} (+{count} this process)")

    def usage(self, item: Item) -> int:
        with self._lock:
            extra = self._recorded.get(item.id, 0)
        return item.usage_count + extra

    def snapshot(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._recorded)


def item_exposure_score(item: Item, counter: Optional[ExposureCounter] = None) -> float:
    usage = counter.usage(item) if counter is not None else item.usage_count
    return exposure_score(usage)
