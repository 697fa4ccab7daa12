"""Tests for heating status, circuit 3 control and soft-start."""

from datetime import timedelta

import pytest
from conftest import at

from heatpump import registers
from heatpump.errors import FieldBusError
from heatpump.models import HeatingStatus, ScheduleVariable, WeekDay, WeekDaySchedule
from heatpump.service import HeatingService


class Clock:
    def __init__(self, moment):
        self.moment = moment

    def __call__(self):
        return self.moment


@pytest.fixture
def clock():
    return Clock(at(2020, 2, 13, 13, 45))


@pytest.fixture
def service(api, store, clock, timers):
    return HeatingService(api, store, clock=clock, timer_factory=timers)


@pytest.fixture
def circuit_three_running(bus, api):
    """Circuit 3 active with scheduling on and an 8-22 boosting window every day"""
    bus.registers[registers.ACTIVE_CIRCUITS] = 3
    bus.coils[registers.SCHEDULING_ACTIVE] = True
    api.set_schedule(
        ScheduleVariable.HEAT_DIST_CIRCUIT_3,
        {weekday: WeekDaySchedule(start=8, end=22, delta=2.0) for weekday in WeekDay},
    )
    bus.writes.clear()
    return bus


class TestGetStatus:
    def test_stopped_regardless_of_other_state(self, service, bus, timers):
        bus.coils[registers.SCHEDULING_ACTIVE] = True
        service.soft_start_circuit_three()
        bus.registers[registers.ACTIVE_CIRCUITS] = 2

        assert service.get_status() == HeatingStatus.STOPPED

    def test_boosting_inside_window(self, service, circuit_three_running):
        assert service.get_status() == HeatingStatus.BOOSTING

    def test_running_outside_window(self, service, clock, circuit_three_running):
        clock.moment = at(2020, 2, 13, 1, 45)

        assert service.get_status() == HeatingStatus.RUNNING

    def test_window_uses_coming_hour(self, service, clock, circuit_three_running):
        clock.moment = at(2020, 2, 13, 7, 30)
        assert service.get_status() == HeatingStatus.BOOSTING

        clock.moment = at(2020, 2, 13, 21, 30)
        assert service.get_status() == HeatingStatus.RUNNING

    def test_uses_todays_schedule(self, service, bus, clock, circuit_three_running):
        # 2020-02-13 is a Thursday: start 5222, end 5215
        bus.registers[registers.HEAT_DIST_CIRCUIT_3_SCHEDULE['thursday']['start']] = 20

        assert service.get_status() == HeatingStatus.RUNNING

    def test_running_when_scheduling_disabled(self, service, bus, circuit_three_running):
        bus.coils[registers.SCHEDULING_ACTIVE] = False

        assert service.get_status() == HeatingStatus.RUNNING

    def test_soft_start(self, service, circuit_three_running):
        service.soft_start_circuit_three()

        assert service.get_status() == HeatingStatus.SOFT_START


class TestCircuitThree:
    def test_start(self, service, bus):
        service.start_circuit_three()

        assert bus.registers[registers.ACTIVE_CIRCUITS] == 3
        assert bus.coils[registers.SCHEDULING_ACTIVE] is True
        assert service.soft_start is False

    def test_soft_start_defers_scheduling(self, service, bus, store, clock, timers):
        service.soft_start_circuit_three()

        assert bus.registers[registers.ACTIVE_CIRCUITS] == 3
        assert bus.coil_writes == []
        assert service.soft_start is True
        assert store.soft_start_deadline == clock.moment + timedelta(hours=12)
        timer = timers.created[-1]
        assert timer.interval == 12 * 3600
        assert timer.started and timer.daemon

    def test_soft_start_deadline_enables_scheduling(self, service, bus, store, timers):
        service.soft_start_circuit_three()

        timers.created[-1].fire()

        assert bus.coils[registers.SCHEDULING_ACTIVE] is True
        assert service.soft_start is False
        assert store.soft_start_deadline is None

    def test_restarting_soft_start_replaces_timer(self, service, timers):
        service.soft_start_circuit_three()
        first = timers.created[-1]

        service.soft_start_circuit_three()

        assert first.cancelled
        assert not timers.created[-1].cancelled

    def test_stop_cancels_pending_soft_start(self, service, bus, store, timers):
        service.soft_start_circuit_three()

        service.stop_circuit_three()

        assert bus.registers[registers.ACTIVE_CIRCUITS] == 2
        assert bus.coils[registers.SCHEDULING_ACTIVE] is False
        assert service.soft_start is False
        assert timers.created[-1].cancelled
        assert store.soft_start_deadline is None

    def test_failed_soft_start_leaves_no_pending_state(self, service, bus, store, clock, timers):
        bus.fail_after_writes = 0

        with pytest.raises(FieldBusError):
            service.soft_start_circuit_three()

        assert service.soft_start is False
        assert store.soft_start_deadline is None
        assert timers.created == []

        bus.fail_after_writes = None
        bus.coils[registers.SCHEDULING_ACTIVE] = True
        clock.moment = at(2020, 2, 13, 1, 45)
        service.start_circuit_three()
        assert service.get_status() == HeatingStatus.RUNNING

    def test_failed_deadline_keeps_persisted_soft_start(self, service, bus, store, timers, monkeypatch):
        service.soft_start_circuit_three()
        deadline = store.soft_start_deadline

        def broken(address, value):
            raise FieldBusError("timeout")
        monkeypatch.setattr(bus, 'write_coil', broken)
        timers.created[-1].fire()

        assert store.soft_start_deadline == deadline


class TestScheduling:
    def test_enabling_clears_soft_start(self, service, bus, store, timers, circuit_three_running):
        service.soft_start_circuit_three()

        status = service.set_scheduling_enabled(True)

        assert status == HeatingStatus.BOOSTING
        assert service.soft_start is False
        assert timers.created[-1].cancelled
        assert store.soft_start_deadline is None

    def test_disabling(self, service, bus, circuit_three_running):
        assert service.set_scheduling_enabled(False) == HeatingStatus.RUNNING
        assert service.get_scheduling_enabled() is False

    def test_schedule_pass_through(self, service, bus):
        schedule = {weekday: WeekDaySchedule(start=6, end=9, delta=-1.5) for weekday in WeekDay}

        service.set_schedule(ScheduleVariable.LOWER_TANK, schedule)

        assert len(bus.writes) == 21
        assert service.get_schedule(ScheduleVariable.LOWER_TANK) == schedule


class TestRecover:
    def test_nothing_pending(self, service, timers):
        service.recover()

        assert service.soft_start is False
        assert timers.created == []

    def test_pending_deadline_rearms_timer(self, service, store, clock, timers):
        store.soft_start_deadline = clock.moment + timedelta(hours=3)

        service.recover()

        assert service.soft_start is True
        assert timers.created[-1].interval == 3 * 3600
        assert timers.created[-1].started

    def test_passed_deadline_enables_scheduling(self, service, bus, store, clock, timers):
        store.soft_start_deadline = clock.moment - timedelta(minutes=1)

        service.recover()

        assert bus.coils[registers.SCHEDULING_ACTIVE] is True
        assert service.soft_start is False
        assert store.soft_start_deadline is None
        assert timers.created == []


class TestGetData:
    @pytest.fixture
    def snapshots(self, store, make_snapshot):
        store.snapshots += [
            make_snapshot(at(2020, 2, 10, 12, 0)),
            make_snapshot(at(2020, 2, 14, 12, 0)),
            make_snapshot(at(2020, 2, 15, 12, 0)),
        ]
        return store.snapshots

    def test_all_without_date(self, service, snapshots):
        assert service.get_data() == snapshots
        assert service.get_data('2020', None, '13') == snapshots

    def test_from_date(self, service, snapshots):
        assert service.get_data('2020', '2', '13') == snapshots[1:]

    def test_invalid_date_returns_all(self, service, snapshots):
        assert service.get_data('2020', '13', '45') == snapshots
        assert service.get_data('year', 'month', 'day') == snapshots
