"""
Heat exchanger ratio auto-tuning.

While the compressor runs, both tanks warm up towards their upper limits. The tuner
estimates how many minutes each tank needs to reach its limit and, when one tank
is consistently predicted to get there first, moves the heat exchanger ratio a
step towards the other tank.
"""

import logging
from collections import deque
from typing import Optional

from .api import HeatPumpApi
from .codec import round2
from .store import SnapshotStore

logger = logging.getLogger(__name__)

ADJUSTMENT_THRESHOLD_MINUTES = 25
RATIO_STEP = 5
MIN_RATIO = 10
MAX_RATIO = 50
BUFFER_SIZE = 5


class HeatExchangerTuner:
    """Closed-loop controller for the heat exchanger ratio register"""

    def __init__(self, api: HeatPumpApi, store: SnapshotStore,
                 threshold: float = ADJUSTMENT_THRESHOLD_MINUTES, step: float = RATIO_STEP,
                 min_ratio: float = MIN_RATIO, max_ratio: float = MAX_RATIO,
                 buffer_size: int = BUFFER_SIZE):
        self.api = api
        self.store = store
        self.threshold = threshold
        self.step = step
        self.min_ratio = min_ratio
        self.max_ratio = max_ratio
        # estimated lower tank minutes minus upper tank minutes, oldest first
        self.buffer = deque(maxlen=buffer_size)

    def run(self) -> Optional[float]:
        """
        Evaluate the two most recent snapshots.

        Returns:
            The ratio written to the heat pump, or None when nothing was written
        """
        snapshots = self.store.latest_snapshots(2)
        if len(snapshots) < 2:
            return None
        current, previous = snapshots

        limits = (current.lower_tank_upper_limit, current.upper_tank_upper_limit)
        if None in limits:
            logger.debug("Tank upper limits unknown, skipping heat exchanger tuning")
            return None

        # Either tank already past its upper limit
        if (current.lower_tank_temp > current.lower_tank_upper_limit
                or current.upper_tank_temp > current.upper_tank_upper_limit):
            return None

        lower_delta = round2(current.lower_tank_temp - previous.lower_tank_temp)
        upper_delta = round2(current.upper_tank_temp - previous.upper_tank_temp)

        if lower_delta < 0 or upper_delta < 0:
            # Tanks cooling down, estimates are meaningless
            self.buffer.clear()
            return None
        if lower_delta == 0 or upper_delta == 0:
            return None

        lower_minutes = round2((current.lower_tank_upper_limit - current.lower_tank_temp) / lower_delta)
        upper_minutes = round2((current.upper_tank_upper_limit - current.upper_tank_temp) / upper_delta)
        logger.debug(
            f"Estimated minutes until upper limit: lower tank {lower_minutes}, "
            f"upper tank {upper_minutes}"
        )
        return self.push(lower_minutes - upper_minutes)

    def push(self, difference: float) -> Optional[float]:
        """Add one estimate difference and adjust the ratio once the buffer is full"""
        self.buffer.append(difference)
        if len(self.buffer) < self.buffer.maxlen:
            return None

        mean = sum(self.buffer) / len(self.buffer)
        if abs(mean) < self.threshold:
            return None

        try:
            return self._adjust(mean)
        finally:
            self.buffer.clear()

    def _adjust(self, mean: float) -> Optional[float]:
        current = self.api.query_heat_exchanger_ratio()
        if mean < 0:
            new_ratio = max(current - self.step, self.min_ratio)
        else:
            new_ratio = min(current + self.step, self.max_ratio)

        if new_ratio == current:
            logger.info(
                f"Heat exchanger ratio already at bound {current} "
                f"(mean estimate difference {mean:.2f} min)"
            )
            return None

        self.api.set_heat_exchanger_ratio(new_ratio)
        logger.info(
            f"Heat exchanger ratio adjusted {current} -> {new_ratio} "
            f"(mean estimate difference {mean:.2f} min)"
        )
        return new_ratio
