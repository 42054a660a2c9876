import logging
from datetime import datetime
from typing import Dict, Mapping, Optional

from slope_match.data_layer.cache import StaleCache
from slope_match.data_layer.config import (
    SNOW_REFRESH_PERIOD,
    WEATHER_REFRESH_PERIOD,
    load_registry,
)
from slope_match.data_layer.exceptions import NoDataYet
from slope_match.data_layer.interfaces import MetricSource, SnowConditionSource, WeatherSource
from slope_match.data_layer.models import (
    CachedSnapshot,
    MetricName,
    RankResult,
    ResortDetail,
    ResortRegistry,
    SourceStatus,
)
from slope_match.logic_engine.alignment import AlignedForecast, align, forecast_series
from slope_match.logic_engine.ranking import rank

logger = logging.getLogger(__name__)

# Ranking metric -> (cache, snapshot field)
METRIC_FIELDS = {
    MetricName.WARMTH:     ("weather", "feels_like"),
    MetricName.FRESH_SNOW: ("snow", "snow_48h"),
    MetricName.BASE_DEPTH: ("snow", "base_depth"),
    MetricName.OPEN_RUNS:  ("snow", "open_trails"),
}


class DashboardController:
    """
    The only entry point for the UI. Owns the resort registry and one
    StaleCache per source; every other operation is a pure read over the
    snapshots those caches last committed.
    """

    def __init__(
        self,
        registry: Optional[ResortRegistry] = None,
        weather_source: Optional[MetricSource] = None,
        snow_source: Optional[MetricSource] = None,
        weather_period: float = WEATHER_REFRESH_PERIOD,
        snow_period: float = SNOW_REFRESH_PERIOD,
    ):
        self.registry = registry or load_registry()
        self.caches: Dict[str, StaleCache] = {
            "weather": StaleCache(weather_source or WeatherSource(self.registry), weather_period),
            "snow": StaleCache(snow_source or SnowConditionSource(self.registry), snow_period),
        }

    def start(self):
        for cache in self.caches.values():
            cache.start()
        logger.info(f"Started refresh schedules for {', '.join(self.caches)}")

    def stop(self):
        for cache in self.caches.values():
            cache.stop()

    def refresh_all(self) -> Dict[str, bool]:
        """Synchronous refresh of every source, for the UI's manual refresh button."""
        return {name: cache.refresh() for name, cache in self.caches.items()}

    def read(self, source: str) -> Optional[CachedSnapshot]:
        """Current snapshot of one source, or None while it has no data yet."""
        try:
            return self.caches[source].read()
        except NoDataYet:
            return None

    def weather(self) -> Optional[CachedSnapshot]:
        return self.read("weather")

    def snow(self) -> Optional[CachedSnapshot]:
        return self.read("snow")

    def status(self, now: Optional[datetime] = None) -> Dict[str, SourceStatus]:
        return {name: cache.status(now) for name, cache in self.caches.items()}

    def metrics(self) -> Dict[str, Dict[str, Optional[float]]]:
        """The four ranking metrics; a source without data yields all-absent values."""
        snapshots = {name: self.read(name) for name in self.caches}
        metrics = {}
        for metric, (source, field) in METRIC_FIELDS.items():
            cached = snapshots[source]
            if cached is None:
                metrics[metric.value] = {rid: None for rid in self.registry.ids}
            else:
                metrics[metric.value] = cached.snapshot.metric(field)
        return metrics

    def rank(self, weights: Mapping[str, float]) -> RankResult:
        result = rank(self.metrics(), weights, resort_ids=self.registry.ids)
        logger.debug(f"Recommendation: {result.winner} (weights={dict(weights)})")
        return result

    def forecast(self) -> AlignedForecast:
        cached = self.snow()
        if cached is None:
            return align({}, resort_ids=self.registry.ids)
        return align(forecast_series(cached.snapshot), resort_ids=self.registry.ids)

    def resort_detail(self, resort_id: str) -> ResortDetail:
        resort = self.registry.get(resort_id)
        detail = {"resort": resort}

        weather = self.weather()
        if weather is not None:
            snap = weather.snapshot
            detail["feels_like"] = snap.metric("feels_like")[resort_id]
            detail["condition"] = snap.label("condition")[resort_id]
            detail["description"] = snap.label("description")[resort_id]
            detail["weather_as_of"] = snap.taken_at

        snow = self.snow()
        if snow is not None:
            snap = snow.snapshot
            for field in (
                "base_depth", "snow_48h", "open_trails", "max_trails",
                "open_lifts", "max_lifts", "predicted_24h", "predicted_48h", "predicted_72h",
            ):
                detail[field] = snap.metric(field)[resort_id]
            detail["surface"] = snap.label("surface")[resort_id]
            detail["snow_as_of"] = snap.taken_at

        return ResortDetail(**detail)
