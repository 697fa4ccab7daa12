"""
Compressor usage estimation.

A cycle runs from one compressor edge to the next edge of the same kind, so
consecutive cycles overlap: every edge closes one cycle and yields a usage value.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .codec import round2
from .models import CompressorEdgeEvent, EdgeKind, HeatPumpSnapshot
from .store import SnapshotStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompressorEstimate:
    usage: Optional[float] = None
    event: Optional[CompressorEdgeEvent] = None


def calculate_compressor_usage(start: datetime, stop: datetime, now: datetime) -> Optional[float]:
    """
    Percentage of the completed cycle the compressor was running.

    Args:
        start: Time of the latest recorded compressor start
        stop: Time of the latest recorded compressor stop
        now: Time of the edge closing the cycle

    Returns:
        Usage in percent rounded to two decimals, or None for a zero-length cycle
    """
    if start < stop:
        # start -> stop -> now (compressor just started again)
        cycle = now - start
        running = stop - start
    else:
        # stop -> start -> now (compressor just stopped)
        cycle = now - stop
        running = now - start

    if cycle.total_seconds() <= 0:
        return None
    return round2(running.total_seconds() / cycle.total_seconds() * 100)


class CompressorUsageEstimator:
    """Edge detector over consecutive snapshots"""

    def __init__(self, store: SnapshotStore):
        self.store = store

    def estimate(self, compressor_running: bool, now: datetime,
                 previous: Optional[HeatPumpSnapshot]) -> CompressorEstimate:
        """
        Detect a compressor on/off transition against the previous snapshot.

        The returned edge event is not stored here; the collector saves it
        together with the snapshot.
        """
        if previous is None:
            return CompressorEstimate()

        if compressor_running == previous.compressor_running:
            return CompressorEstimate()

        kind = EdgeKind.START if compressor_running else EdgeKind.STOP
        event = CompressorEdgeEvent(time=now, kind=kind)

        last_start = self.store.latest_edge_event(EdgeKind.START)
        last_stop = self.store.latest_edge_event(EdgeKind.STOP)
        if last_start is None or last_stop is None:
            logger.debug(f"Compressor {kind.value} at {now.isoformat()}, no complete cycle yet")
            return CompressorEstimate(event=event)

        usage = calculate_compressor_usage(last_start.time, last_stop.time, now)
        logger.info(f"Compressor {kind.value}, usage during last cycle: {usage} %")
        return CompressorEstimate(usage=usage, event=event)
