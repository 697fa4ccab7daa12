"""
Heat Pump Register Definitions
ModBus addresses of the values and controls used by the automation.

Telemetry is read as one contiguous block of holding registers starting at
TELEMETRY_BLOCK_START. Addresses in TELEMETRY_REGISTERS are absolute device
addresses; use block_offset() to index into the block.
"""

TELEMETRY_BLOCK_START = 1
TELEMETRY_BLOCK_SIZE = 120

TELEMETRY_REGISTERS = {
    # Temperatures
    1: {
        "name": "outside_temp",
        "unit": "°C",
        "type": "temperature",
        "description": "Outdoor temperature sensor"
    },
    2: {
        "name": "hot_gas_temp",
        "unit": "°C",
        "type": "temperature",
        "description": "Hot gas temperature after compressor"
    },
    5: {
        "name": "heat_dist_circuit_1_temp",
        "unit": "°C",
        "type": "temperature",
        "description": "Heat distribution circuit 1 supply temperature"
    },
    6: {
        "name": "heat_dist_circuit_2_temp",
        "unit": "°C",
        "type": "temperature",
        "description": "Heat distribution circuit 2 supply temperature"
    },
    17: {
        "name": "lower_tank_temp",
        "unit": "°C",
        "type": "temperature",
        "description": "Lower storage tank temperature"
    },
    18: {
        "name": "upper_tank_temp",
        "unit": "°C",
        "type": "temperature",
        "description": "Upper storage tank temperature"
    },
    74: {
        "name": "inside_temp",
        "unit": "°C",
        "type": "temperature",
        "description": "Indoor temperature sensor"
    },
    98: {
        "name": "ground_loop_temp_output",
        "unit": "°C",
        "type": "temperature",
        "description": "Ground loop (brine) return temperature"
    },
    99: {
        "name": "ground_loop_temp_input",
        "unit": "°C",
        "type": "temperature",
        "description": "Ground loop (brine) supply temperature"
    },
    117: {
        "name": "heat_dist_circuit_3_temp",
        "unit": "°C",
        "type": "temperature",
        "description": "Heat distribution circuit 3 supply temperature"
    },

    # Tank limits
    75: {
        "name": "lower_tank_lower_limit",
        "unit": "°C",
        "type": "limit",
        "description": "Lower tank charging start temperature"
    },
    76: {
        "name": "lower_tank_upper_limit",
        "unit": "°C",
        "type": "limit",
        "description": "Lower tank charging stop temperature"
    },
    79: {
        "name": "upper_tank_lower_limit",
        "unit": "°C",
        "type": "limit",
        "description": "Upper tank charging start temperature"
    },
    80: {
        "name": "upper_tank_upper_limit",
        "unit": "°C",
        "type": "limit",
        "description": "Upper tank charging stop temperature"
    },
}

# Single registers and coils
COMPRESSOR_STATUS = 5158      # 1 = running
ACTIVE_CIRCUITS = 5100        # number of active heat distribution circuits (2 or 3)
SCHEDULING_ACTIVE = 134       # coil, boosting schedule enabled

CIRCUITS_WITH_CIRCUIT_THREE = 3
CIRCUITS_WITHOUT_CIRCUIT_THREE = 2

# Boosting schedules: start hour, end hour and temperature delta per weekday.
# The physical layout is not contiguous per weekday, hence the explicit tables.
LOWER_TANK_TIMES_START = 5014
LOWER_TANK_TIMES_COUNT = 14
LOWER_TANK_DELTAS_START = 36
LOWER_TANK_DELTAS_COUNT = 8

LOWER_TANK_SCHEDULE = {
    "monday": {"start": 5014, "end": 5021, "delta": 36},
    "tuesday": {"start": 5015, "end": 5022, "delta": 37},
    "wednesday": {"start": 5016, "end": 5023, "delta": 38},
    "thursday": {"start": 5017, "end": 5024, "delta": 39},
    "friday": {"start": 5018, "end": 5025, "delta": 41},
    "saturday": {"start": 5019, "end": 5026, "delta": 42},
    "sunday": {"start": 5020, "end": 5027, "delta": 43},
}

HEAT_DIST_CIRCUIT_3_TIMES_START = 5211
HEAT_DIST_CIRCUIT_3_TIMES_COUNT = 14
HEAT_DIST_CIRCUIT_3_DELTAS_START = 106
HEAT_DIST_CIRCUIT_3_DELTAS_COUNT = 7

HEAT_DIST_CIRCUIT_3_SCHEDULE = {
    "monday": {"start": 5214, "end": 5213, "delta": 107},
    "tuesday": {"start": 5211, "end": 5212, "delta": 106},
    "wednesday": {"start": 5220, "end": 5221, "delta": 110},
    "thursday": {"start": 5222, "end": 5215, "delta": 111},
    "friday": {"start": 5223, "end": 5224, "delta": 112},
    "saturday": {"start": 5216, "end": 5217, "delta": 108},
    "sunday": {"start": 5218, "end": 5219, "delta": 109},
}


def block_offset(address: int) -> int:
    """Index of a telemetry register inside the block read from TELEMETRY_BLOCK_START"""
    return address - TELEMETRY_BLOCK_START


def get_register_address(name: str) -> int:
    """
    Look up the device address of a telemetry register by name.

    Raises:
        KeyError: If no telemetry register has the given name
    """
    for address, info in TELEMETRY_REGISTERS.items():
        if info["name"] == name:
            return address
    raise KeyError(name)
