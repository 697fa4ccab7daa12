"""
Exceptions raised by the heat pump automation core.
"""


class HeatPumpError(Exception):
    """Base class for all heat pump automation errors"""


class FieldBusError(HeatPumpError):
    """Connection, timeout or protocol failure on the ModBus link"""


class UnknownVariable(HeatPumpError):
    """Schedule variable is not one of the controllable variables"""

    def __init__(self, variable):
        super().__init__("Unknown variable")
        self.variable = variable


class ValidationError(HeatPumpError):
    """Malformed request data"""


class PersistenceError(HeatPumpError):
    """Snapshot store is unavailable or rejected a request"""


class ConfigError(ValueError):
    """Missing or invalid configuration"""
