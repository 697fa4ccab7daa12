"""
Heat pump data types: telemetry snapshots, compressor edge events,
heating schedules and heating status.
"""

import math
from dataclasses import dataclass, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from .errors import UnknownVariable, ValidationError


class HeatingStatus(str, Enum):
    RUNNING = 'RUNNING'
    BOOSTING = 'BOOSTING'
    SOFT_START = 'SOFT_START'
    STOPPED = 'STOPPED'


class EdgeKind(str, Enum):
    START = 'start'
    STOP = 'stop'


class WeekDay(str, Enum):
    MONDAY = 'monday'
    TUESDAY = 'tuesday'
    WEDNESDAY = 'wednesday'
    THURSDAY = 'thursday'
    FRIDAY = 'friday'
    SATURDAY = 'saturday'
    SUNDAY = 'sunday'

    @classmethod
    def from_date(cls, moment: datetime) -> 'WeekDay':
        """Weekday of a date (ISO numbering, Monday first)"""
        return list(cls)[moment.isoweekday() - 1]


class ScheduleVariable(str, Enum):
    """Variables that have a boosting schedule on the heat pump"""
    LOWER_TANK = 'lowerTank'
    HEAT_DIST_CIRCUIT_3 = 'heatDistCircuit3'

    @classmethod
    def parse(cls, name: str) -> 'ScheduleVariable':
        """
        Map a request value to a schedule variable.

        Raises:
            UnknownVariable: For anything but 'lowerTank' and 'heatDistCircuit3'
        """
        for variable in cls:
            if variable.value == name:
                return variable
        raise UnknownVariable(name)


@dataclass(frozen=True)
class WeekDaySchedule:
    start: int
    end: int
    delta: float

    def to_json(self) -> Dict[str, Any]:
        return {'start': self.start, 'end': self.end, 'delta': self.delta}


# One entry for each of the seven weekdays
VariableHeatingSchedule = Dict[WeekDay, WeekDaySchedule]

# Signed 16-bit register range in tenths
MIN_DELTA = -3276.8
MAX_DELTA = 3276.7


def schedule_to_json(schedule: VariableHeatingSchedule) -> Dict[str, Dict[str, Any]]:
    return {weekday.value: schedule[weekday].to_json() for weekday in WeekDay}


def _hour(value: Any, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{field} must be a whole hour")
    if isinstance(value, float) and not value.is_integer():
        raise ValidationError(f"{field} must be a whole hour")
    if not 0 <= value <= 23:
        raise ValidationError(f"{field} must be between 0 and 23")
    return int(value)


def schedule_from_json(data: Any) -> VariableHeatingSchedule:
    """
    Build a schedule from request JSON ({"monday": {"start": 8, "end": 22, "delta": 2}, ...}).

    Deltas are degrees with one decimal, the same unit as every other temperature in
    the API. They are stored on the heat pump as signed tenths, so a delta of 2.5
    is written as the register word 25 (not passed through as a raw word).

    Raises:
        ValidationError: If a weekday is missing or any field is malformed
    """
    if not isinstance(data, dict):
        raise ValidationError("Schedule must be an object keyed by weekday")

    schedule = {}
    for weekday in WeekDay:
        day = data.get(weekday.value)
        if not isinstance(day, dict):
            raise ValidationError(f"Schedule for {weekday.value} is missing")

        delta = day.get('delta')
        if isinstance(delta, bool) or not isinstance(delta, (int, float)):
            raise ValidationError(f"{weekday.value}.delta must be a number")
        if isinstance(delta, float) and not math.isfinite(delta) or not MIN_DELTA <= delta <= MAX_DELTA:
            raise ValidationError(f"{weekday.value}.delta must be between {MIN_DELTA} and {MAX_DELTA}")

        schedule[weekday] = WeekDaySchedule(
            start=_hour(day.get('start'), f"{weekday.value}.start"),
            end=_hour(day.get('end'), f"{weekday.value}.end"),
            delta=float(delta),
        )
    return schedule


@dataclass(frozen=True)
class HeatPumpSnapshot:
    """One poll cycle worth of heat pump telemetry. Never mutated once created."""
    time: datetime
    outside_temp: float
    inside_temp: float
    hot_gas_temp: float
    heat_dist_circuit_1_temp: float
    heat_dist_circuit_2_temp: float
    heat_dist_circuit_3_temp: float
    lower_tank_temp: float
    upper_tank_temp: float
    ground_loop_temp_input: float
    ground_loop_temp_output: float
    compressor_running: bool
    compressor_usage: Optional[float]
    lower_tank_lower_limit: Optional[float]
    lower_tank_upper_limit: Optional[float]
    upper_tank_lower_limit: Optional[float]
    upper_tank_upper_limit: Optional[float]

    def to_json(self) -> Dict[str, Any]:
        """Camel-cased representation used by the REST API and Socket.IO"""
        data = asdict(self)
        result = {'time': self.time.isoformat()}
        for key, value in data.items():
            if key == 'time':
                continue
            result[_camel(key)] = value
        return result


@dataclass(frozen=True)
class CompressorEdgeEvent:
    """Compressor switched on (start) or off (stop) at the given time"""
    time: datetime
    kind: EdgeKind


SNAPSHOT_VALUE_FIELDS = [
    name for name in HeatPumpSnapshot.__dataclass_fields__ if name != 'time'
]

TANK_LIMIT_FIELDS = [
    'lower_tank_lower_limit',
    'lower_tank_upper_limit',
    'upper_tank_lower_limit',
    'upper_tank_upper_limit',
]


def _camel(name: str) -> str:
    # heat_dist_circuit_1_temp -> heatDistCircuit1Temp
    head, *rest = name.split('_')
    return head + ''.join(part[:1].upper() + part[1:] for part in rest)
