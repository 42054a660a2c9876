import logging
import math
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

import numpy as np
import pandas as pd

from slope_match.data_layer.config import FORECAST_HORIZONS
from slope_match.data_layer.models import MetricSnapshot

logger = logging.getLogger(__name__)

DEFAULT_MAX_HORIZON = max(FORECAST_HORIZONS)


@dataclass(frozen=True)
class AlignedForecast:
    """Hourly cumulative snowfall, one column per resort in resort order."""

    table: pd.DataFrame   # index "hour" = 0..max horizon
    leader: Optional[str]

    @property
    def hours(self) -> List[int]:
        return list(self.table.index)

    def rows(self) -> List[Tuple[int, Dict[str, float]]]:
        return [(int(hour), row.to_dict()) for hour, row in self.table.iterrows()]


def _hour(value) -> Optional[int]:
    try:
        hour = int(value)
    except (TypeError, ValueError):
        return None
    return hour if hour >= 0 else None


def _amount(value) -> Optional[float]:
    if value is None:
        return None
    try:
        amount = float(value)
    except (TypeError, ValueError):
        return None
    return amount if math.isfinite(amount) else None


def align(
    forecasts: Mapping[str, Mapping[int, Optional[float]]],
    resort_ids: Optional[Iterable[str]] = None,
) -> AlignedForecast:
    """
    Reshapes per-resort horizon checkpoints (cumulative snowfall at 24/48/72h)
    into one hourly table from hour 0 to the largest horizon seen.

    Step convention: the value at hour h is the latest checkpoint at or before
    h. Nothing has accumulated before the first checkpoint, so those hours
    are 0. A missing checkpoint holds the previous value, and a running
    maximum keeps every series non-decreasing.
    """
    resort_ids = list(resort_ids) if resort_ids is not None else list(forecasts.keys())

    checkpoints: Dict[str, Dict[int, float]] = {}
    horizons = set()
    for rid in resort_ids:
        points = {}
        for raw_hour, raw_value in (forecasts.get(rid) or {}).items():
            hour, amount = _hour(raw_hour), _amount(raw_value)
            if hour is None:
                logger.warning(f"[{rid}] Ignoring forecast horizon {raw_hour!r}")
                continue
            horizons.add(hour)
            if amount is not None:
                points[hour] = max(amount, 0.0)
        checkpoints[rid] = points

    max_horizon = max(horizons) if horizons else DEFAULT_MAX_HORIZON

    index = pd.RangeIndex(0, max_horizon + 1, name="hour")
    table = pd.DataFrame(np.nan, index=index, columns=resort_ids, dtype=float)
    for rid, points in checkpoints.items():
        for hour, amount in points.items():
            table.at[hour, rid] = amount

    table.iloc[0] = table.iloc[0].fillna(0.0)
    table = table.ffill().cummax()

    leader = None
    if resort_ids:
        # idxmax returns the first maximum, i.e. resort order breaks ties
        leader = table.iloc[-1].idxmax()

    return AlignedForecast(table=table, leader=leader)


def forecast_series(
    snapshot: MetricSnapshot,
    horizons: Tuple[int, ...] = FORECAST_HORIZONS,
) -> Dict[str, Dict[int, Optional[float]]]:
    """Builds align() input from the predicted_<h>h fields of a snow snapshot."""
    by_horizon = {h: snapshot.metric(f"predicted_{h}h") for h in horizons}
    return {
        rid: {h: by_horizon[h][rid] for h in horizons}
        for rid in snapshot.resort_ids
    }
