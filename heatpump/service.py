"""
Heating status and scheduling service.

Controls heat distribution circuit 3 and the boosting schedules, and derives the
coarse heating status shown to users.
"""

import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from . import registers
from .api import HeatPumpApi
from .errors import HeatPumpError
from .models import HeatingStatus, HeatPumpSnapshot, ScheduleVariable, VariableHeatingSchedule, WeekDay
from .store import SnapshotStore

logger = logging.getLogger(__name__)

SOFT_START_HOURS = 12


def local_now() -> datetime:
    return datetime.now().astimezone()


class HeatingService:
    """
    Heating status, circuit 3 start/stop and boosting schedules.

    Soft-start state belongs to the instance. Its deadline is persisted through the
    store so a restart can pick up a pending transition with recover().
    """

    def __init__(self, api: HeatPumpApi, store: SnapshotStore,
                 soft_start_hours: float = SOFT_START_HOURS,
                 clock: Callable[[], datetime] = local_now,
                 timer_factory: Callable[..., threading.Timer] = threading.Timer):
        self.api = api
        self.store = store
        self.soft_start_duration = timedelta(hours=soft_start_hours)
        self.clock = clock
        self.timer_factory = timer_factory
        self._soft_start = False
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()

    @property
    def soft_start(self) -> bool:
        return self._soft_start

    # ==================== Data ====================

    def get_data(self, year: Optional[str] = None, month: Optional[str] = None,
                 day: Optional[str] = None) -> List[HeatPumpSnapshot]:
        """
        Snapshots after the given date, or all snapshots.

        All snapshots are returned when any date part is missing or the parts do
        not form a valid date.
        """
        if not year or not month or not day:
            return self.store.snapshots_since(None)
        try:
            threshold = datetime(int(year), int(month), int(day)).astimezone()
        except (TypeError, ValueError):
            logger.debug(f"Invalid date {year}-{month}-{day}, returning all snapshots")
            return self.store.snapshots_since(None)
        return self.store.snapshots_since(threshold)

    # ==================== Status ====================

    def get_status(self) -> HeatingStatus:
        circuits = self.api.query_active_circuits()
        if circuits != registers.CIRCUITS_WITH_CIRCUIT_THREE:
            return HeatingStatus.STOPPED
        if self._soft_start:
            return HeatingStatus.SOFT_START
        if not self.api.query_scheduling_status():
            return HeatingStatus.RUNNING

        now = self.clock()
        schedule = self.api.query_schedule(ScheduleVariable.HEAT_DIST_CIRCUIT_3)
        today = schedule[WeekDay.from_date(now)]
        # The window is compared against the coming hour
        if today.start <= now.hour + 1 < today.end:
            return HeatingStatus.BOOSTING
        return HeatingStatus.RUNNING

    # ==================== Circuit 3 ====================

    def start_circuit_three(self):
        """Turn on circuit 3 and enable the boosting schedule"""
        self.api.start_circuit_three()
        self.api.enable_scheduling()
        logger.info("Circuit 3 started with scheduling enabled")

    def soft_start_circuit_three(self):
        """Turn on circuit 3 now and enable the boosting schedule after the soft-start period"""
        # Nothing is recorded unless the circuit actually started
        self.api.start_circuit_three()
        deadline = self.clock() + self.soft_start_duration
        with self._lock:
            self._cancel_timer()
            self.store.save_soft_start(deadline)
            self._soft_start = True
        self._arm(deadline)
        logger.info(f"Circuit 3 soft-started, scheduling will be enabled at {deadline.isoformat()}")

    def stop_circuit_three(self):
        """Disable the boosting schedule and turn off circuit 3"""
        self.api.disable_scheduling()
        self.api.stop_circuit_three()
        self._clear_soft_start()
        logger.info("Circuit 3 stopped")

    # ==================== Scheduling ====================

    def get_scheduling_enabled(self) -> bool:
        return self.api.query_scheduling_status()

    def set_scheduling_enabled(self, enable: bool) -> HeatingStatus:
        if enable:
            self._clear_soft_start()
            self.api.enable_scheduling()
        else:
            self.api.disable_scheduling()
        logger.info(f"Scheduling {'enabled' if enable else 'disabled'}")
        return self.get_status()

    def get_schedule(self, variable: ScheduleVariable) -> VariableHeatingSchedule:
        return self.api.query_schedule(variable)

    def set_schedule(self, variable: ScheduleVariable, schedule: VariableHeatingSchedule):
        self.api.set_schedule(variable, schedule)

    # ==================== Soft-start timer ====================

    def recover(self):
        """Re-arm a soft-start that was pending when the process stopped"""
        deadline = self.store.load_soft_start()
        if deadline is None:
            return
        if deadline <= self.clock():
            logger.info(f"Soft-start deadline {deadline.isoformat()} passed while stopped")
            self._finish_soft_start()
            return
        with self._lock:
            self._soft_start = True
        self._arm(deadline)
        logger.info(f"Pending soft-start restored, scheduling will be enabled at {deadline.isoformat()}")

    def _arm(self, deadline: datetime):
        delay = max((deadline - self.clock()).total_seconds(), 0)
        with self._lock:
            self._cancel_timer()
            self._timer = self.timer_factory(delay, self._finish_soft_start)
            self._timer.daemon = True
            self._timer.start()

    def _cancel_timer(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _clear_soft_start(self):
        with self._lock:
            self._cancel_timer()
            was_pending = self._soft_start
            self._soft_start = False
        if was_pending:
            self.store.save_soft_start(None)

    def _finish_soft_start(self):
        with self._lock:
            self._timer = None
            self._soft_start = False
        try:
            self.api.enable_scheduling()
            self.store.save_soft_start(None)
        except HeatPumpError as e:
            # Deadline stays persisted, recover() retries on next start
            logger.error(f"Could not enable scheduling after soft-start: {e}")
            return
        logger.info("Soft-start finished, scheduling enabled")
