"""
Heat Pump ModBus API
Typed operations on the heat pump built on the field-bus client, the register map
and the value codec.
"""

import logging
from typing import List, Optional

from . import registers
from .codec import decode_schedule, encode_schedule, sign_value, unsign_value
from .errors import FieldBusError
from .modbus import FieldBusClient
from .models import ScheduleVariable, VariableHeatingSchedule

logger = logging.getLogger(__name__)

SCHEDULE_BLOCKS = {
    ScheduleVariable.LOWER_TANK: (
        (registers.LOWER_TANK_TIMES_START, registers.LOWER_TANK_TIMES_COUNT),
        (registers.LOWER_TANK_DELTAS_START, registers.LOWER_TANK_DELTAS_COUNT),
    ),
    ScheduleVariable.HEAT_DIST_CIRCUIT_3: (
        (registers.HEAT_DIST_CIRCUIT_3_TIMES_START, registers.HEAT_DIST_CIRCUIT_3_TIMES_COUNT),
        (registers.HEAT_DIST_CIRCUIT_3_DELTAS_START, registers.HEAT_DIST_CIRCUIT_3_DELTAS_COUNT),
    ),
}


class HeatPumpApi:
    """Register-level operations used by the collector, automation and heating service"""

    def __init__(self, client: FieldBusClient, ratio_register: Optional[int] = None):
        self.client = client
        self.ratio_register = ratio_register

    # Telemetry

    def query_telemetry_block(self) -> List[int]:
        """Read the contiguous block of telemetry holding registers"""
        values = self.client.read_holding_registers(
            registers.TELEMETRY_BLOCK_START, registers.TELEMETRY_BLOCK_SIZE
        )
        if len(values) < registers.TELEMETRY_BLOCK_SIZE:
            raise FieldBusError(
                f"Expected {registers.TELEMETRY_BLOCK_SIZE} telemetry registers, got {len(values)}"
            )
        return values

    def query_compressor_running(self) -> bool:
        return self.client.read_holding_registers(registers.COMPRESSOR_STATUS, 1)[0] == 1

    # Heat distribution circuit 3

    def query_active_circuits(self) -> int:
        """Number of active heat distribution circuits (usually 2 or 3)"""
        return self.client.read_holding_registers(registers.ACTIVE_CIRCUITS, 1)[0]

    def start_circuit_three(self):
        self.client.write_register(registers.ACTIVE_CIRCUITS, registers.CIRCUITS_WITH_CIRCUIT_THREE)

    def stop_circuit_three(self):
        self.client.write_register(registers.ACTIVE_CIRCUITS, registers.CIRCUITS_WITHOUT_CIRCUIT_THREE)

    # Boosting schedules

    def query_scheduling_status(self) -> bool:
        return self.client.read_coils(registers.SCHEDULING_ACTIVE, 1)[0]

    def enable_scheduling(self):
        self.client.write_coil(registers.SCHEDULING_ACTIVE, True)

    def disable_scheduling(self):
        self.client.write_coil(registers.SCHEDULING_ACTIVE, False)

    def query_schedule(self, variable: ScheduleVariable) -> VariableHeatingSchedule:
        (times_start, times_count), (deltas_start, deltas_count) = SCHEDULE_BLOCKS[variable]
        times = self.client.read_holding_registers(times_start, times_count)
        deltas = self.client.read_holding_registers(deltas_start, deltas_count)
        return decode_schedule(variable, times, deltas)

    def set_schedule(self, variable: ScheduleVariable, schedule: VariableHeatingSchedule):
        """
        Write all 21 schedule registers of a variable, one after another.

        The first failing write aborts the rest. Registers written before the
        failure keep their new values, so callers must re-issue the full schedule.

        Raises:
            FieldBusError: If any write fails
        """
        writes = encode_schedule(variable, schedule)
        for applied, (address, value) in enumerate(writes):
            try:
                self.client.write_register(address, value)
            except FieldBusError as e:
                logger.error(
                    f"Schedule write for {variable.value} aborted after "
                    f"{applied}/{len(writes)} registers"
                )
                raise FieldBusError(
                    f"Schedule for {variable.value} partially written "
                    f"({applied}/{len(writes)} registers): {e}"
                ) from e
        logger.info(f"Wrote {len(writes)} schedule registers for {variable.value}")

    # Heat exchanger

    def query_heat_exchanger_ratio(self) -> float:
        return sign_value(self.client.read_holding_registers(self._ratio_register(), 1)[0])

    def set_heat_exchanger_ratio(self, ratio: float):
        self.client.write_register(self._ratio_register(), unsign_value(ratio))

    def _ratio_register(self) -> int:
        if self.ratio_register is None:
            raise FieldBusError("Heat exchanger ratio register is not configured")
        return self.ratio_register
