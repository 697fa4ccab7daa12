"""
Heat Pump Data Collector
Polls the heat pump over ModBus once per interval, derives compressor usage and
tank limits, and stores one snapshot per cycle.

Cycle:
- Read the telemetry block and the compressor status register
- Decode temperatures and limits
- Detect compressor edges and track tank limits against the previous snapshot
- Store the snapshot (and edge event) in a single write
- Hand the snapshot to subscribers, then run heat exchanger tuning
"""

import logging
import time
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from . import registers
from .api import HeatPumpApi
from .automation import HeatExchangerTuner
from .codec import sign_value
from .compressor import CompressorUsageEstimator
from .config import Settings, load_settings
from .errors import HeatPumpError
from .modbus import FieldBusClient
from .models import TANK_LIMIT_FIELDS, HeatPumpSnapshot
from .service import HeatingService, local_now
from .store import InfluxStore, SnapshotStore
from .tank_limits import track_tank_limits

logger = logging.getLogger(__name__)

TEMPERATURE_FIELDS = [
    'outside_temp',
    'inside_temp',
    'hot_gas_temp',
    'heat_dist_circuit_1_temp',
    'heat_dist_circuit_2_temp',
    'heat_dist_circuit_3_temp',
    'lower_tank_temp',
    'upper_tank_temp',
    'ground_loop_temp_input',
    'ground_loop_temp_output',
]


def decode_block(values: List[int], *fields: str) -> dict:
    """Sign and scale the named telemetry registers from a block read"""
    return {
        field: sign_value(values[registers.block_offset(registers.get_register_address(field))])
        for field in fields
    }


class HeatPumpCollector:
    """Telemetry poller: one snapshot per tick"""

    def __init__(self, api: HeatPumpApi, store: SnapshotStore,
                 tuner: Optional[HeatExchangerTuner] = None, interval: int = 60,
                 retention_days: int = 30, clock: Callable[[], datetime] = local_now):
        """
        Initialize the collector

        Args:
            api: Heat pump ModBus API
            store: Snapshot store
            tuner: Heat exchanger tuner, None disables tuning
            interval: Polling interval in seconds (default: 60)
            retention_days: Snapshots older than this are deleted (default: 30)
            clock: Returns the current timezone-aware time
        """
        self.api = api
        self.store = store
        self.tuner = tuner
        self.interval = interval
        self.retention = timedelta(days=retention_days)
        self.clock = clock
        self.estimator = CompressorUsageEstimator(store)
        self.subscribers: List[Callable[[HeatPumpSnapshot], None]] = []

    def subscribe(self, callback: Callable[[HeatPumpSnapshot], None]):
        """Register a callback receiving every stored snapshot"""
        self.subscribers.append(callback)

    def query(self) -> HeatPumpSnapshot:
        """
        Perform one poll cycle and return the stored snapshot.

        Nothing is stored unless every read succeeds.

        Raises:
            FieldBusError: If a register read fails
            PersistenceError: If the store cannot be read or written
        """
        values = self.api.query_telemetry_block()
        compressor_running = self.api.query_compressor_running()
        timestamp = self.clock()

        previous = self.store.latest_snapshot()
        estimate = self.estimator.estimate(compressor_running, timestamp, previous)
        limits = track_tank_limits(decode_block(values, *TANK_LIMIT_FIELDS), timestamp, previous)

        snapshot = HeatPumpSnapshot(
            time=timestamp,
            compressor_running=compressor_running,
            compressor_usage=estimate.usage,
            **decode_block(values, *TEMPERATURE_FIELDS),
            **limits,
        )
        self.store.save_snapshot(snapshot, estimate.event)
        return snapshot

    def cleanup(self):
        """Delete snapshots older than the retention period"""
        self.store.delete_snapshots_before(self.clock() - self.retention)

    def _notify(self, snapshot: HeatPumpSnapshot):
        for callback in self.subscribers:
            try:
                callback(snapshot)
            except Exception as e:
                logger.error(f"Snapshot subscriber {callback!r} failed: {e}")

    def collect_once(self) -> Optional[HeatPumpSnapshot]:
        """
        Perform one collection cycle; failures are logged and the cycle abandoned.

        Returns:
            The stored snapshot, or None when the cycle failed
        """
        try:
            snapshot = self.query()
        except HeatPumpError as e:
            logger.error(f"Query could not be completed: {e}")
            return None

        logger.info(f"Query complete. {snapshot.time.isoformat()}")
        self._notify(snapshot)

        if self.tuner is not None and snapshot.compressor_running:
            try:
                self.tuner.run()
            except HeatPumpError as e:
                logger.error(f"Heat exchanger tuning failed: {e}")

        try:
            self.cleanup()
        except HeatPumpError as e:
            logger.error(f"Snapshot cleanup failed: {e}")

        return snapshot

    def seconds_until_next_tick(self) -> float:
        """Seconds until the next interval boundary, ticks are aligned to the wall clock"""
        now = self.clock()
        elapsed = now.timestamp() % self.interval
        return self.interval - elapsed

    def run(self, sleep: Callable[[float], None] = time.sleep,
            should_stop: Callable[[], bool] = lambda: False):
        """
        Main run loop - polls the heat pump at the configured interval

        Args:
            sleep: Sleep function (Socket.IO passes its cooperative sleep)
            should_stop: Checked before every tick
        """
        logger.info(f"Starting heat pump collector, polling every {self.interval} seconds")
        while not should_stop():
            sleep(self.seconds_until_next_tick())
            if should_stop():
                break
            self.collect_once()
        logger.info("Heat pump collector stopped")


def build_components(settings: Settings):
    """Wire ModBus client, store, automation and services from settings"""
    client = FieldBusClient(
        settings.modbus_host,
        port=settings.modbus_port,
        unit_id=settings.modbus_unit_id,
        timeout=settings.modbus_timeout,
    )
    store = InfluxStore(
        settings.influxdb_url,
        settings.influxdb_token,
        settings.influxdb_org,
        settings.influxdb_bucket,
    )
    api = HeatPumpApi(client, ratio_register=settings.ratio_register)

    tuner = None
    if settings.ratio_register is None:
        logger.warning("Heat exchanger ratio register not configured, automatic tuning disabled")
    else:
        tuner = HeatExchangerTuner(
            api,
            store,
            threshold=settings.adjustment_threshold,
            step=settings.ratio_step,
            min_ratio=settings.min_ratio,
            max_ratio=settings.max_ratio,
            buffer_size=settings.buffer_size,
        )

    service = HeatingService(api, store, soft_start_hours=settings.soft_start_hours)
    collector = HeatPumpCollector(
        api,
        store,
        tuner=tuner,
        interval=settings.collection_interval,
        retention_days=settings.retention_days,
    )
    return client, store, service, collector


def main():
    """Entry point for running the collector without the web service"""
    settings = load_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    client, store, _, collector = build_components(settings)
    store.ping()
    try:
        collector.collect_once()
        collector.run()
    except KeyboardInterrupt:
        logger.info("Collector stopped by user")
    finally:
        client.close()
        store.close()


if __name__ == '__main__':
    main()
