"""
Heat Pump Snapshot Store
Persists telemetry snapshots, compressor edge events and the soft-start deadline.

SnapshotStore describes what the automation needs from persistence;
InfluxStore implements it on InfluxDB 2.x.
"""

import logging
import warnings
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pandas as pd
from influxdb_client import InfluxDBClient, Point
from influxdb_client.client.warnings import MissingPivotFunction
from influxdb_client.client.write_api import SYNCHRONOUS
from influxdb_client.rest import ApiException
from urllib3.exceptions import HTTPError

from .errors import PersistenceError
from .models import SNAPSHOT_VALUE_FIELDS, CompressorEdgeEvent, EdgeKind, HeatPumpSnapshot

# Queries pivot server-side
warnings.simplefilter("ignore", MissingPivotFunction)

logger = logging.getLogger(__name__)

SNAPSHOT_MEASUREMENT = "heatpump"
EDGE_MEASUREMENT = "compressor_status"
SOFT_START_MEASUREMENT = "soft_start"

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

STORE_ERRORS = (ApiException, HTTPError, OSError)


class SnapshotStore(ABC):
    """
    Time-ordered persistence used by the collector, automation and heating service.

    Snapshots and edge events are append-only. All timestamps are timezone-aware.
    """

    @abstractmethod
    def save_snapshot(self, snapshot: HeatPumpSnapshot,
                      edge_event: Optional[CompressorEdgeEvent] = None) -> None:
        """Store a snapshot, and the edge event detected with it, in a single write"""

    @abstractmethod
    def latest_snapshots(self, count: int) -> List[HeatPumpSnapshot]:
        """The most recent snapshots, newest first"""

    @abstractmethod
    def snapshots_since(self, threshold: Optional[datetime] = None) -> List[HeatPumpSnapshot]:
        """Snapshots with time > threshold (all when None), oldest first"""

    @abstractmethod
    def latest_edge_event(self, kind: EdgeKind) -> Optional[CompressorEdgeEvent]:
        """The most recent compressor edge event of the given kind"""

    @abstractmethod
    def delete_snapshots_before(self, threshold: datetime) -> None:
        """Remove snapshots with time < threshold"""

    @abstractmethod
    def save_soft_start(self, deadline: Optional[datetime]) -> None:
        """Record a pending soft-start deadline, or None when no soft-start is pending"""

    @abstractmethod
    def load_soft_start(self) -> Optional[datetime]:
        """The pending soft-start deadline, if any"""

    def latest_snapshot(self) -> Optional[HeatPumpSnapshot]:
        snapshots = self.latest_snapshots(1)
        return snapshots[0] if snapshots else None

    def close(self):
        pass


def _rfc3339(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.astimezone()
    return moment.astimezone(timezone.utc).isoformat().replace('+00:00', 'Z')


def _optional(value: Any):
    if value is None:
        return None
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        pass
    return value


class InfluxStore(SnapshotStore):
    """InfluxDB backed snapshot store"""

    def __init__(self, url: str, token: str, org: str, bucket: str,
                 client: Optional[InfluxDBClient] = None):
        """
        Setup InfluxDB client, write, query and delete APIs

        Args:
            url: InfluxDB URL (e.g. http://influxdb:8086)
            token: API token with read/write access to the bucket
            org: InfluxDB organisation
            bucket: Bucket holding all heat pump measurements
            client: Pre-built client (tests)
        """
        if not token and client is None:
            raise ValueError("InfluxDB token must be set")

        self.org = org
        self.bucket = bucket
        self.client = client or InfluxDBClient(url=url, token=token, org=org)
        self.write_api = self.client.write_api(write_options=SYNCHRONOUS)
        self.query_api = self.client.query_api()
        self.delete_api = self.client.delete_api()

    def ping(self):
        """Log the InfluxDB health status"""
        try:
            health = self.client.health()
            logger.info(f"InfluxDB connection established: {health.status}")
        except STORE_ERRORS as e:
            logger.error(f"Failed to reach InfluxDB: {e}")
            raise PersistenceError(f"InfluxDB unavailable: {e}") from e

    # ==================== Writes ====================

    def _write(self, records: List[Point]):
        try:
            self.write_api.write(bucket=self.bucket, org=self.org, record=records)
        except STORE_ERRORS as e:
            logger.error(f"Error storing data to InfluxDB: {e}")
            raise PersistenceError(f"InfluxDB write failed: {e}") from e

    @staticmethod
    def snapshot_point(snapshot: HeatPumpSnapshot) -> Point:
        point = Point(SNAPSHOT_MEASUREMENT).time(snapshot.time)
        for field in SNAPSHOT_VALUE_FIELDS:
            value = getattr(snapshot, field)
            if value is None:
                continue
            point = point.field(field, value if isinstance(value, bool) else float(value))
        return point

    @staticmethod
    def edge_point(event: CompressorEdgeEvent) -> Point:
        return Point(EDGE_MEASUREMENT) \
            .tag("kind", event.kind.value) \
            .field("value", 1) \
            .time(event.time)

    def save_snapshot(self, snapshot: HeatPumpSnapshot,
                      edge_event: Optional[CompressorEdgeEvent] = None) -> None:
        records = [self.snapshot_point(snapshot)]
        if edge_event is not None:
            records.append(self.edge_point(edge_event))
        self._write(records)
        logger.debug(f"Stored snapshot {snapshot.time.isoformat()}")

    def save_soft_start(self, deadline: Optional[datetime]) -> None:
        point = Point(SOFT_START_MEASUREMENT) \
            .field("active", deadline is not None) \
            .field("deadline", deadline.timestamp() if deadline else 0.0) \
            .time(datetime.now(timezone.utc))
        self._write([point])

    def delete_snapshots_before(self, threshold: datetime) -> None:
        try:
            self.delete_api.delete(
                start=EPOCH,
                stop=threshold,
                predicate=f'_measurement="{SNAPSHOT_MEASUREMENT}"',
                bucket=self.bucket,
                org=self.org,
            )
        except STORE_ERRORS as e:
            logger.error(f"Error deleting old snapshots: {e}")
            raise PersistenceError(f"InfluxDB delete failed: {e}") from e
        logger.debug(f"Deleted snapshots older than {threshold.isoformat()}")

    # ==================== Reads ====================

    def _query_frame(self, query: str) -> pd.DataFrame:
        try:
            result = self.query_api.query_data_frame(query)
        except STORE_ERRORS as e:
            logger.error(f"Error querying InfluxDB: {e}")
            raise PersistenceError(f"InfluxDB query failed: {e}") from e

        # Multiple tables come back as a list of frames
        if isinstance(result, list):
            if not result:
                return pd.DataFrame()
            result = pd.concat(result, ignore_index=True)
        return result

    def _snapshot_query(self, start: datetime, after: Optional[datetime] = None,
                        descending: bool = False, limit: Optional[int] = None) -> str:
        query = f'''
            from(bucket: "{self.bucket}")
                |> range(start: {_rfc3339(start)})
                |> filter(fn: (r) => r._measurement == "{SNAPSHOT_MEASUREMENT}")'''
        if after is not None:
            query += f'''
                |> filter(fn: (r) => r._time > time(v: "{_rfc3339(after)}"))'''
        query += f'''
                |> pivot(rowKey: ["_time"], columnKey: ["_field"], valueColumn: "_value")
                |> group()
                |> sort(columns: ["_time"], desc: {"true" if descending else "false"})'''
        if limit is not None:
            query += f'''
                |> limit(n: {int(limit)})'''
        return query + '\n'

    @staticmethod
    def snapshot_from_row(row: Dict[str, Any]) -> HeatPumpSnapshot:
        values = {}
        for field in SNAPSHOT_VALUE_FIELDS:
            value = _optional(row.get(field))
            if value is None:
                values[field] = None
            elif field == 'compressor_running':
                values[field] = bool(value)
            else:
                values[field] = float(value)
        return HeatPumpSnapshot(time=pd.Timestamp(row['_time']).to_pydatetime(), **values)

    def _snapshots(self, query: str) -> List[HeatPumpSnapshot]:
        df = self._query_frame(query)
        if df.empty:
            return []
        return [self.snapshot_from_row(row) for row in df.to_dict('records')]

    def latest_snapshots(self, count: int) -> List[HeatPumpSnapshot]:
        return self._snapshots(self._snapshot_query(EPOCH, descending=True, limit=count))

    def snapshots_since(self, threshold: Optional[datetime] = None) -> List[HeatPumpSnapshot]:
        if threshold is None:
            return self._snapshots(self._snapshot_query(EPOCH))
        return self._snapshots(self._snapshot_query(threshold, after=threshold))

    def latest_edge_event(self, kind: EdgeKind) -> Optional[CompressorEdgeEvent]:
        query = f'''
            from(bucket: "{self.bucket}")
                |> range(start: {_rfc3339(EPOCH)})
                |> filter(fn: (r) => r._measurement == "{EDGE_MEASUREMENT}")
                |> filter(fn: (r) => r.kind == "{kind.value}")
                |> last()
        '''
        df = self._query_frame(query)
        if df.empty:
            return None
        moment = pd.Timestamp(df.iloc[-1]['_time']).to_pydatetime()
        return CompressorEdgeEvent(time=moment, kind=kind)

    def load_soft_start(self) -> Optional[datetime]:
        query = f'''
            from(bucket: "{self.bucket}")
                |> range(start: {_rfc3339(EPOCH)})
                |> filter(fn: (r) => r._measurement == "{SOFT_START_MEASUREMENT}")
                |> pivot(rowKey: ["_time"], columnKey: ["_field"], valueColumn: "_value")
                |> group()
                |> sort(columns: ["_time"], desc: true)
                |> limit(n: 1)
        '''
        df = self._query_frame(query)
        if df.empty:
            return None
        row = df.iloc[0]
        if not bool(row.get('active', False)):
            return None
        return datetime.fromtimestamp(float(row['deadline']), tz=timezone.utc)

    def close(self):
        self.client.close()
        logger.info("InfluxDB connection closed")
