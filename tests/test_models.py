"""Tests for schedule parsing and snapshot serialization."""

import pytest
from conftest import at

from heatpump.errors import UnknownVariable, ValidationError
from heatpump.models import (
    ScheduleVariable,
    WeekDay,
    WeekDaySchedule,
    schedule_from_json,
    schedule_to_json,
)


def schedule_json(**overrides):
    data = {weekday.value: {'start': 8, 'end': 22, 'delta': 2} for weekday in WeekDay}
    data.update(overrides)
    return data


class TestScheduleVariable:
    def test_parse(self):
        assert ScheduleVariable.parse('lowerTank') is ScheduleVariable.LOWER_TANK
        assert ScheduleVariable.parse('heatDistCircuit3') is ScheduleVariable.HEAT_DIST_CIRCUIT_3

    @pytest.mark.parametrize("name", ['upperTank', 'LOWER_TANK', 'lowertank', ''])
    def test_unknown(self, name):
        with pytest.raises(UnknownVariable, match="Unknown variable"):
            ScheduleVariable.parse(name)


class TestWeekDay:
    def test_from_date(self):
        assert WeekDay.from_date(at(2020, 2, 13)) is WeekDay.THURSDAY
        assert WeekDay.from_date(at(2020, 2, 16)) is WeekDay.SUNDAY
        assert WeekDay.from_date(at(2020, 2, 17)) is WeekDay.MONDAY


class TestScheduleJson:
    def test_from_json(self):
        schedule = schedule_from_json(schedule_json(friday={'start': 6.0, 'end': 9, 'delta': -1.5}))

        assert schedule[WeekDay.MONDAY] == WeekDaySchedule(start=8, end=22, delta=2.0)
        assert schedule[WeekDay.FRIDAY] == WeekDaySchedule(start=6, end=9, delta=-1.5)

    def test_to_json(self):
        schedule = schedule_from_json(schedule_json())

        assert schedule_to_json(schedule)['sunday'] == {'start': 8, 'end': 22, 'delta': 2.0}

    @pytest.mark.parametrize("day", [
        {'start': 24, 'end': 22, 'delta': 2},
        {'start': -1, 'end': 22, 'delta': 2},
        {'start': 8.5, 'end': 22, 'delta': 2},
        {'start': '8', 'end': 22, 'delta': 2},
        {'start': True, 'end': 22, 'delta': 2},
        {'start': 8, 'end': 22, 'delta': 'warm'},
        {'start': 8, 'end': 22},
        {'start': 8, 'end': 22, 'delta': 3276.75},
        {'start': 8, 'end': 22, 'delta': 10 ** 400},
        {'start': 8, 'end': 22, 'delta': float('-inf')},
        {'start': 8, 'end': 22, 'delta': float('nan')},
    ])
    def test_malformed_day(self, day):
        with pytest.raises(ValidationError):
            schedule_from_json(schedule_json(tuesday=day))

    def test_missing_weekday(self):
        data = schedule_json()
        del data['wednesday']

        with pytest.raises(ValidationError, match="wednesday"):
            schedule_from_json(data)

    def test_not_an_object(self):
        with pytest.raises(ValidationError):
            schedule_from_json([1, 2, 3])


class TestSnapshotJson:
    def test_camel_case_keys(self, make_snapshot):
        data = make_snapshot(at(2020, 2, 13, 13, 40), compressor_usage=33.33).to_json()

        assert data['time'] == '2020-02-13T13:40:00+00:00'
        assert data['heatDistCircuit1Temp'] == 28.5
        assert data['groundLoopTempInput'] == 0.5
        assert data['lowerTankUpperLimit'] == 44.0
        assert data['compressorRunning'] is True
        assert data['compressorUsage'] == 33.33
        assert len(data) == 17
