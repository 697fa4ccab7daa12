"""Pytest configuration and shared fakes for heat pump tests."""

from datetime import datetime, timezone
from typing import List, Optional

import pytest

from heatpump.api import HeatPumpApi
from heatpump.errors import FieldBusError, PersistenceError
from heatpump.models import CompressorEdgeEvent, EdgeKind, HeatPumpSnapshot
from heatpump.store import SnapshotStore

RATIO_REGISTER = 5300


class MemoryStore(SnapshotStore):
    """In-memory SnapshotStore with the same ordering semantics as InfluxStore"""

    def __init__(self):
        self.snapshots: List[HeatPumpSnapshot] = []
        self.events: List[CompressorEdgeEvent] = []
        self.soft_start_deadline: Optional[datetime] = None
        self.fail_writes = False

    def save_snapshot(self, snapshot, edge_event=None):
        if self.fail_writes:
            raise PersistenceError("store unavailable")
        self.snapshots.append(snapshot)
        if edge_event is not None:
            self.events.append(edge_event)

    def latest_snapshots(self, count):
        return sorted(self.snapshots, key=lambda s: s.time, reverse=True)[:count]

    def snapshots_since(self, threshold=None):
        ordered = sorted(self.snapshots, key=lambda s: s.time)
        if threshold is None:
            return ordered
        return [s for s in ordered if s.time > threshold]

    def latest_edge_event(self, kind):
        events = [e for e in self.events if e.kind == kind]
        return max(events, key=lambda e: e.time) if events else None

    def delete_snapshots_before(self, threshold):
        self.snapshots = [s for s in self.snapshots if s.time >= threshold]

    def save_soft_start(self, deadline):
        if self.fail_writes:
            raise PersistenceError("store unavailable")
        self.soft_start_deadline = deadline

    def load_soft_start(self):
        return self.soft_start_deadline


class FakeBus:
    """Register bank standing in for FieldBusClient"""

    def __init__(self):
        self.registers = {}
        self.coils = {}
        self.writes = []
        self.coil_writes = []
        self.fail_reads = False
        self.fail_after_writes = None

    def read_holding_registers(self, address, count=1):
        if self.fail_reads:
            raise FieldBusError("timeout")
        return [self.registers.get(a, 0) for a in range(address, address + count)]

    def read_coils(self, address, count=1):
        if self.fail_reads:
            raise FieldBusError("timeout")
        return [self.coils.get(a, False) for a in range(address, address + count)]

    def write_register(self, address, value):
        if self.fail_after_writes is not None and len(self.writes) >= self.fail_after_writes:
            raise FieldBusError("connection lost")
        self.registers[address] = value
        self.writes.append((address, value))

    def write_coil(self, address, value):
        self.coils[address] = value
        self.coil_writes.append((address, value))


class FakeTimer:
    """threading.Timer replacement that only fires when told to"""

    def __init__(self, interval, function):
        self.interval = interval
        self.function = function
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        self.function()


def at(*args) -> datetime:
    """Timezone-aware datetime in UTC"""
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def bus():
    return FakeBus()


@pytest.fixture
def api(bus):
    return HeatPumpApi(bus, ratio_register=RATIO_REGISTER)


@pytest.fixture
def timers():
    created = []

    def factory(interval, function):
        timer = FakeTimer(interval, function)
        created.append(timer)
        return timer

    factory.created = created
    return factory


@pytest.fixture
def make_snapshot():
    """Build snapshots with sensible defaults, overriding selected fields"""
    def factory(time, **overrides):
        values = dict(
            outside_temp=-5.0,
            inside_temp=21.5,
            hot_gas_temp=67.5,
            heat_dist_circuit_1_temp=28.5,
            heat_dist_circuit_2_temp=24.5,
            heat_dist_circuit_3_temp=25.5,
            lower_tank_temp=37.5,
            upper_tank_temp=48.5,
            ground_loop_temp_input=0.5,
            ground_loop_temp_output=4.5,
            compressor_running=True,
            compressor_usage=None,
            lower_tank_lower_limit=34.0,
            lower_tank_upper_limit=44.0,
            upper_tank_lower_limit=48.0,
            upper_tank_upper_limit=58.0,
        )
        values.update(overrides)
        return HeatPumpSnapshot(time=time, **values)
    return factory


@pytest.fixture
def edge():
    def factory(time, kind):
        return CompressorEdgeEvent(time=time, kind=EdgeKind(kind))
    return factory
