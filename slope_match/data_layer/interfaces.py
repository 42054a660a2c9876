import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

import aiohttp
from aiobreaker import CircuitBreaker, CircuitBreakerError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from .config import (
    BREAKER_FAIL_MAX,
    BREAKER_RESET_SECONDS,
    OPENWEATHER_API_KEY,
    OPENWEATHER_URL,
    SNOW_FETCH_TIMEOUT,
    WEATHER_FETCH_TIMEOUT,
)
from .database import create_snapshot_engine
from .exceptions import FetchError
from .models import MetricSnapshot, Resort, ResortRegistry, SnowReport

logger = logging.getLogger(__name__)

SNOW_NUMERIC_FIELDS = (
    "base_depth", "snow_48h",
    "open_trails", "max_trails", "open_lifts", "max_lifts",
    "predicted_24h", "predicted_48h", "predicted_72h",
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class MetricSource(ABC):
    """
    The contract every upstream provider follows.

    fetch() returns a snapshot covering every resort in the registry. A resort
    whose upstream call failed is present with None values; FetchError is
    reserved for a failure of the whole call. No retries here, the owning
    StaleCache decides when to try again.
    """

    name: str = "source"

    def __init__(self, registry: ResortRegistry, timeout: float, clock: Optional[Callable[[], datetime]] = None):
        self.registry = registry
        self.timeout = timeout
        self.clock = clock or utcnow

    @abstractmethod
    def fetch(self) -> MetricSnapshot:
        pass


def parse_weather(data: dict) -> Dict[str, object]:
    """Pulls feels-like temperature and the condition strings out of one current-weather payload."""
    main = data.get("main") or {}
    weather = (data.get("weather") or [{}])[0] or {}
    return {
        "feels_like": main.get("feels_like"),
        "condition": weather.get("main"),
        "description": weather.get("description"),
    }


class WeatherSource(MetricSource):
    """
    Adapter for the OpenWeatherMap current-weather endpoint.
    One request per resort, issued concurrently. The batch is bounded by the
    source timeout so a refresh never outlives its period; resorts still
    pending at the deadline are cancelled and served as None.
    """

    name = "weather"

    def __init__(
        self,
        registry: ResortRegistry,
        api_key: Optional[str] = None,
        timeout: float = WEATHER_FETCH_TIMEOUT,
        breaker: Optional[CircuitBreaker] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        super().__init__(registry, timeout, clock)
        self.api_key = api_key or OPENWEATHER_API_KEY
        # Trip open after 3 total failures, stay open for 5 minutes
        self.breaker = breaker or CircuitBreaker(
            fail_max=BREAKER_FAIL_MAX,
            timeout_duration=timedelta(seconds=BREAKER_RESET_SECONDS),
        )

    def fetch(self) -> MetricSnapshot:
        if not self.api_key:
            raise FetchError(self.name, "OPENWEATHER_API_KEY missing")
        try:
            return asyncio.run(self.fetch_async())
        except FetchError:
            raise
        except Exception as e:
            raise FetchError(self.name, f"{type(e).__name__}: {e}") from e

    async def fetch_async(self) -> MetricSnapshot:
        try:
            readings = await self.breaker.call_async(self._fetch_all)
        except CircuitBreakerError as e:
            raise FetchError(self.name, f"circuit open: {e}") from e

        fields = ("feels_like", "condition", "description")
        column = {f: {rid: r.get(f) for rid, r in readings.items()} for f in fields}
        return MetricSnapshot(
            source=self.name,
            taken_at=self.clock(),
            resort_ids=self.registry.ids,
            values={"feels_like": column["feels_like"]},
            labels={"condition": column["condition"], "description": column["description"]},
        )

    async def _fetch_all(self) -> Dict[str, Dict[str, object]]:
        if not self.registry.resorts:
            raise FetchError(self.name, "no resorts to fetch")
        client_timeout = aiohttp.ClientTimeout(total=self.timeout)
        async with aiohttp.ClientSession(timeout=client_timeout) as session:
            tasks = {
                asyncio.ensure_future(self._fetch_one(session, resort)): resort
                for resort in self.registry.resorts
            }
            _, pending = await asyncio.wait(tasks, timeout=self.timeout)
            # Late resorts are dropped, the ones that answered are kept
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        readings = {}
        for task, resort in tasks.items():
            if task in pending:
                logger.warning(f"[{resort.id}] Weather request timed out after {self.timeout}s")
                continue
            error = task.exception()
            if error is not None:
                logger.warning(f"[{resort.id}] Weather request failed: {error}")
                continue
            readings[resort.id] = task.result()

        if not readings:
            raise FetchError(self.name, "every resort request failed")
        if len(readings) < len(self.registry):
            logger.info(f"Weather partial: {len(readings)}/{len(self.registry)} resorts")
        return readings

    async def _fetch_one(self, session: aiohttp.ClientSession, resort: Resort) -> Dict[str, object]:
        params = {
            "lat": resort.lat,
            "lon": resort.lon,
            "appid": self.api_key,
            "units": "imperial",
        }
        async with session.get(OPENWEATHER_URL, params=params) as resp:
            resp.raise_for_status()
            data = await resp.json()
        return parse_weather(data)


class SnowConditionSource(MetricSource):
    """
    Reads the snapshot file written by the daily snow-report batch job.
    A resort without a row is served as all-None; an unreadable file is a
    whole-call failure.
    """

    name = "snow"

    def __init__(
        self,
        registry: ResortRegistry,
        session_factory: Optional[Callable] = None,
        timeout: float = SNOW_FETCH_TIMEOUT,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        super().__init__(registry, timeout, clock)
        if session_factory is None:
            # Own engine so the lock wait on the snapshot file is bounded by the source timeout
            session_factory = sessionmaker(
                autocommit=False, autoflush=False, bind=create_snapshot_engine(timeout=timeout)
            )
        self.session_factory = session_factory

    def fetch(self) -> MetricSnapshot:
        session = self.session_factory()
        try:
            rows = session.execute(
                select(SnowReport).where(SnowReport.resort_id.in_(self.registry.ids))
            ).scalars().all()
        except SQLAlchemyError as e:
            raise FetchError(self.name, f"snapshot unreadable: {e}") from e
        finally:
            session.close()

        by_resort = {row.resort_id: row for row in rows}
        missing = [rid for rid in self.registry.ids if rid not in by_resort]
        if missing:
            logger.warning(f"No snow report for: {', '.join(missing)}")

        values = {
            field: {rid: getattr(row, field) for rid, row in by_resort.items()}
            for field in SNOW_NUMERIC_FIELDS
        }
        labels = {"surface": {rid: row.surface for rid, row in by_resort.items()}}

        fetched = [row.fetched_at for row in rows if row.fetched_at is not None]
        return MetricSnapshot(
            source=self.name,
            taken_at=max(fetched) if fetched else self.clock(),
            resort_ids=self.registry.ids,
            values=values,
            labels=labels,
        )
