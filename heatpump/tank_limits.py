"""
Tank limit tracking.

Limits are refreshed every ten minutes. In between, a limit is only replaced
when the device reports a value different from the one last stored.
"""

from datetime import datetime
from typing import Dict, Optional

from .models import TANK_LIMIT_FIELDS, HeatPumpSnapshot

REFRESH_MINUTES = 10


def track_tank_limits(limits: Dict[str, float], timestamp: datetime,
                      previous: Optional[HeatPumpSnapshot]) -> Dict[str, Optional[float]]:
    """
    Decide which tank limits to record on a new snapshot.

    Args:
        limits: Freshly read limits keyed by snapshot field name
        timestamp: Time of the current query
        previous: Most recent stored snapshot, if any

    Returns:
        The four limit values to store
    """
    if previous is None or timestamp.minute % REFRESH_MINUTES == 0:
        return {field: limits[field] for field in TANK_LIMIT_FIELDS}

    result = {}
    for field in TANK_LIMIT_FIELDS:
        stored = getattr(previous, field)
        fresh = limits[field]
        if stored and stored != fresh:
            result[field] = fresh
        else:
            result[field] = stored
    return result
