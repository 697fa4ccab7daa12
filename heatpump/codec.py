"""
Value Codec
Conversions between raw 16-bit register words and physical values,
and between schedule register blocks and VariableHeatingSchedule objects.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Tuple

from . import registers
from .models import ScheduleVariable, VariableHeatingSchedule, WeekDay, WeekDaySchedule

# Weekday -> (start index, end index, delta index) into the queried register blocks.
# Mirrors the address tables in registers.py.
LOWER_TANK_LAYOUT = {
    WeekDay.MONDAY: (0, 7, 0),
    WeekDay.TUESDAY: (1, 8, 1),
    WeekDay.WEDNESDAY: (2, 9, 2),
    WeekDay.THURSDAY: (3, 10, 3),
    WeekDay.FRIDAY: (4, 11, 5),
    WeekDay.SATURDAY: (5, 12, 6),
    WeekDay.SUNDAY: (6, 13, 7),
}

HEAT_DIST_CIRCUIT_3_LAYOUT = {
    WeekDay.MONDAY: (3, 2, 1),
    WeekDay.TUESDAY: (0, 1, 0),
    WeekDay.WEDNESDAY: (9, 10, 4),
    WeekDay.THURSDAY: (11, 4, 5),
    WeekDay.FRIDAY: (12, 13, 6),
    WeekDay.SATURDAY: (5, 6, 2),
    WeekDay.SUNDAY: (7, 8, 3),
}

REGISTER_TABLES = {
    ScheduleVariable.LOWER_TANK: registers.LOWER_TANK_SCHEDULE,
    ScheduleVariable.HEAT_DIST_CIRCUIT_3: registers.HEAT_DIST_CIRCUIT_3_SCHEDULE,
}


def sign_value(raw: int) -> float:
    """
    Convert an unsigned 16-bit register word to a signed value with one decimal.

    Words above 32767 are two's complement negatives, e.g. 65535 -> -0.1.
    """
    raw &= 0xFFFF
    if raw > 0x7FFF:
        raw -= 0x10000
    return raw / 10


def unsign_value(value: float) -> int:
    """Inverse of sign_value: scale by ten and encode as an unsigned 16-bit word"""
    scaled = int(Decimal(str(value)).scaleb(1).quantize(Decimal(1), rounding=ROUND_HALF_UP))
    if not -0x8000 <= scaled <= 0x7FFF:
        raise ValueError(f"Value {value} does not fit in a signed 16-bit register")
    return scaled & 0xFFFF


def round2(value: float) -> float:
    """Round to two decimals, halves away from zero (1.005 -> 1.01)"""
    return float(Decimal(repr(value)).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP))


def _decode(layout, times: List[int], deltas: List[int]) -> VariableHeatingSchedule:
    return {
        weekday: WeekDaySchedule(
            start=times[start_index],
            end=times[end_index],
            delta=sign_value(deltas[delta_index]),
        )
        for weekday, (start_index, end_index, delta_index) in layout.items()
    }


def decode_lower_tank_schedule(times: List[int], deltas: List[int]) -> VariableHeatingSchedule:
    """Decode the lower tank schedule from 14 time words (5014-5027) and 8 delta words (36-43)"""
    return _decode(LOWER_TANK_LAYOUT, times, deltas)


def decode_circuit_three_schedule(times: List[int], deltas: List[int]) -> VariableHeatingSchedule:
    """Decode the circuit 3 schedule from 14 time words (5211-5224) and 7 delta words (106-112)"""
    return _decode(HEAT_DIST_CIRCUIT_3_LAYOUT, times, deltas)


def decode_schedule(variable: ScheduleVariable, times: List[int],
                    deltas: List[int]) -> VariableHeatingSchedule:
    if variable is ScheduleVariable.LOWER_TANK:
        return decode_lower_tank_schedule(times, deltas)
    return decode_circuit_three_schedule(times, deltas)


def encode_schedule(variable: ScheduleVariable,
                    schedule: VariableHeatingSchedule) -> List[Tuple[int, int]]:
    """
    Produce the (address, word) writes that store a schedule on the heat pump.

    Returns 21 writes: start hour, end hour and delta for each weekday.
    """
    table: Dict[str, Dict[str, int]] = REGISTER_TABLES[variable]
    writes = []
    for weekday in WeekDay:
        addresses = table[weekday.value]
        day = schedule[weekday]
        writes.append((addresses["start"], day.start))
        writes.append((addresses["end"], day.end))
        writes.append((addresses["delta"], unsign_value(day.delta)))
    return writes


def encode_lower_tank_schedule(schedule: VariableHeatingSchedule) -> List[Tuple[int, int]]:
    return encode_schedule(ScheduleVariable.LOWER_TANK, schedule)


def encode_circuit_three_schedule(schedule: VariableHeatingSchedule) -> List[Tuple[int, int]]:
    return encode_schedule(ScheduleVariable.HEAT_DIST_CIRCUIT_3, schedule)
