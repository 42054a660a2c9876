import math
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, field_validator, model_validator
from sqlalchemy import Column, DateTime, Float, Integer, String

from slope_match.data_layer.database import Base

# =============================================================================
# Pydantic Models (Data Exchange)
# =============================================================================

class MetricName(str, Enum):
    """
    The four user-weighted ranking criteria.
    str, Enum keeps MetricName.WARMTH == "warmth", so weight vectors coming
    straight from slider keys index the same mappings as the enum members.
    """
    WARMTH     = "warmth"
    FRESH_SNOW = "fresh_snow"
    BASE_DEPTH = "base_depth"
    OPEN_RUNS  = "open_runs"

class CacheState(str, Enum):
    EMPTY     = "empty"
    POPULATED = "populated"

class Resort(BaseModel):
    model_config = ConfigDict(extra='forbid', frozen=True)

    id             : str
    name           : str
    lat            : float
    lon            : float
    timezone       : str = "UTC"
    elevation      : str = ""
    logo           : Optional[str] = None
    snow_report_id : Optional[str] = None

class ResortRegistry(BaseModel):
    """Fixed ordered resort universe; the list order is the tie-break order."""
    model_config = ConfigDict(frozen=True)

    resorts: List[Resort]

    @field_validator("resorts")
    @classmethod
    def _unique_ids(cls, resorts: List[Resort]) -> List[Resort]:
        seen = set()
        for resort in resorts:
            if resort.id in seen:
                raise ValueError(f"Duplicate resort id: {resort.id}")
            seen.add(resort.id)
        return resorts

    @property
    def ids(self) -> Tuple[str, ...]:
        return tuple(r.id for r in self.resorts)

    def get(self, resort_id: str) -> Resort:
        for resort in self.resorts:
            if resort.id == resort_id:
                return resort
        raise KeyError(resort_id)

    def __len__(self) -> int:
        return len(self.resorts)


def _coerce_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _coerce_label(value: Any) -> Optional[str]:
    return None if value is None else str(value)


class MetricSnapshot(BaseModel):
    """
    One whole fetch of one source. Every field mapping covers exactly
    resort_ids: resorts the source had nothing for are present with None,
    unknown resorts are dropped and unparseable numbers become None.
    """
    model_config = ConfigDict(frozen=True)

    source     : str
    taken_at   : datetime
    resort_ids : Tuple[str, ...]
    values     : Dict[str, Dict[str, Optional[float]]] = {}
    labels     : Dict[str, Dict[str, Optional[str]]] = {}

    @model_validator(mode="before")
    @classmethod
    def _cover_all_resorts(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        ids = tuple(data.get("resort_ids") or ())
        values = data.get("values") or {}
        labels = data.get("labels") or {}
        data = dict(data)
        data["resort_ids"] = ids
        data["values"] = {
            field: {rid: _coerce_number((per_resort or {}).get(rid)) for rid in ids}
            for field, per_resort in values.items()
        }
        data["labels"] = {
            field: {rid: _coerce_label((per_resort or {}).get(rid)) for rid in ids}
            for field, per_resort in labels.items()
        }
        return data

    def metric(self, field: str) -> Dict[str, Optional[float]]:
        per_resort = self.values.get(field, {})
        return {rid: per_resort.get(rid) for rid in self.resort_ids}

    def label(self, field: str) -> Dict[str, Optional[str]]:
        per_resort = self.labels.get(field, {})
        return {rid: per_resort.get(rid) for rid in self.resort_ids}

class CachedSnapshot(BaseModel):
    """Last successful snapshot of one cache plus the outcome of the latest attempt."""
    model_config = ConfigDict(frozen=True)

    snapshot        : MetricSnapshot
    last_success_at : datetime
    last_attempt_at : datetime
    last_error      : Optional[str] = None

    def age(self, now: datetime) -> timedelta:
        return now - self.last_success_at

class RankResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    scores : List[Tuple[str, float]]        # resort order
    ranks  : Dict[str, Dict[str, int]]      # metric -> resort -> rank (1 = worst)
    winner : str

    def score_of(self, resort_id: str) -> float:
        for rid, score in self.scores:
            if rid == resort_id:
                return score
        raise KeyError(resort_id)

    def ordered(self) -> List[Tuple[str, float]]:
        """Scores best first; equal scores keep resort order."""
        return sorted(self.scores, key=lambda item: -item[1])

class SourceStatus(BaseModel):
    source          : str
    state           : CacheState
    stale           : bool
    last_success_at : Optional[datetime] = None
    last_attempt_at : Optional[datetime] = None
    last_error      : Optional[str] = None

class ResortDetail(BaseModel):
    resort        : Resort
    feels_like    : Optional[float] = None
    condition     : Optional[str] = None
    description   : Optional[str] = None
    base_depth    : Optional[float] = None
    snow_48h      : Optional[float] = None
    open_trails   : Optional[float] = None
    max_trails    : Optional[float] = None
    open_lifts    : Optional[float] = None
    max_lifts     : Optional[float] = None
    surface       : Optional[str] = None
    predicted_24h : Optional[float] = None
    predicted_48h : Optional[float] = None
    predicted_72h : Optional[float] = None
    weather_as_of : Optional[datetime] = None
    snow_as_of    : Optional[datetime] = None

class SnowReportPayload(BaseModel):
    """One resort's report as returned by the snow report provider."""
    model_config = ConfigDict(extra='ignore')

    resort_id     : str
    base_depth    : Optional[float] = None
    snow_48h      : Optional[float] = None
    open_trails   : Optional[float] = None
    max_trails    : Optional[float] = None
    open_lifts    : Optional[float] = None
    max_lifts     : Optional[float] = None
    predicted_24h : Optional[float] = None
    predicted_48h : Optional[float] = None
    predicted_72h : Optional[float] = None
    surface       : Optional[str] = None

# =============================================================================
# SQLAlchemy Models (Snapshot File)
# =============================================================================

class SnowReport(Base):
    """Latest snow report per resort. Rows are upserted in place; no history."""
    __tablename__ = "snow_reports"

    id            = Column(Integer,  primary_key=True, index=True)
    resort_id     = Column(String,   unique=True, index=True)
    fetched_at    = Column(DateTime, index=True)
    base_depth    = Column(Float)
    snow_48h      = Column(Float)
    open_trails   = Column(Float)
    max_trails    = Column(Float)
    open_lifts    = Column(Float)
    max_lifts     = Column(Float)
    predicted_24h = Column(Float)
    predicted_48h = Column(Float)
    predicted_72h = Column(Float)
    surface       = Column(String)
