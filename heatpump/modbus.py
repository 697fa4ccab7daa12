"""
ModBus Field-Bus Client
Owns the single TCP connection to the heat pump and serialises all requests.
"""

import logging
import threading
from typing import List, Optional

from pymodbus.client import ModbusTcpClient
from pymodbus.exceptions import ModbusException

from .errors import FieldBusError

logger = logging.getLogger(__name__)


class FieldBusClient:
    """Request/response wrapper around a persistent ModBus TCP session"""

    def __init__(self, host: str, port: int = 502, unit_id: int = 1, timeout: float = 5.0,
                 client: Optional[ModbusTcpClient] = None):
        """
        Initialize the field-bus client

        Args:
            host: Hostname or IP address of the heat pump ModBus gateway
            port: ModBus TCP port (default: 502)
            unit_id: ModBus device id of the heat pump
            timeout: Seconds before an unanswered request fails
            client: Pre-built pymodbus client (tests)
        """
        self.host = host
        self.port = port
        self.unit_id = unit_id
        self.timeout = timeout
        self.client = client or ModbusTcpClient(host, port=port, timeout=timeout, retries=0)
        # One request in flight at a time; the device answers strictly in order
        self._lock = threading.Lock()

    def _ensure_connected(self):
        if self.client.connected:
            return
        logger.info(f"Connecting to heat pump at {self.host}:{self.port}")
        if not self.client.connect():
            raise FieldBusError(f"Could not connect to heat pump at {self.host}:{self.port}")

    def _execute(self, description: str, request):
        with self._lock:
            try:
                self._ensure_connected()
                logger.debug(f"ModBus request: {description}")
                response = request()
            except ModbusException as e:
                # Drop the session so the next request reconnects
                self.client.close()
                logger.error(f"ModBus {description} failed: {e}")
                raise FieldBusError(f"{description} failed: {e}") from e

        if response is None or response.isError():
            logger.error(f"ModBus {description} returned an error response: {response}")
            raise FieldBusError(f"{description} returned an error response: {response}")
        return response

    def read_holding_registers(self, address: int, count: int = 1) -> List[int]:
        response = self._execute(
            f"read {count} holding register(s) at {address}",
            lambda: self.client.read_holding_registers(address, count=count, device_id=self.unit_id),
        )
        return list(response.registers[:count])

    def read_coils(self, address: int, count: int = 1) -> List[bool]:
        response = self._execute(
            f"read {count} coil(s) at {address}",
            lambda: self.client.read_coils(address, count=count, device_id=self.unit_id),
        )
        # Coil responses are padded to whole bytes
        return [bool(bit) for bit in response.bits[:count]]

    def write_register(self, address: int, value: int) -> None:
        if not 0 <= value <= 0xFFFF:
            raise FieldBusError(f"Register value {value} out of range for address {address}")
        self._execute(
            f"write {value} to register {address}",
            lambda: self.client.write_register(address, value, device_id=self.unit_id),
        )

    def write_coil(self, address: int, value: bool) -> None:
        self._execute(
            f"write {value} to coil {address}",
            lambda: self.client.write_coil(address, bool(value), device_id=self.unit_id),
        )

    def close(self):
        with self._lock:
            self.client.close()
        logger.info("ModBus connection closed")
