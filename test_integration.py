import asyncio
import os
import unittest
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
from aiobreaker import CircuitBreaker
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from slope_match.batch_engine.harvester import fetch_snow_report, harvest_snow_reports, parse_snow_report
from slope_match.batch_engine.snapshot import capture_snow_reports
from slope_match.controller import DashboardController
from slope_match.data_layer.config import load_registry
from slope_match.data_layer.database import Base, create_snapshot_engine, init_db
from slope_match.data_layer.exceptions import FetchError
from slope_match.data_layer.interfaces import (
    MetricSource,
    SnowConditionSource,
    WeatherSource,
    parse_weather,
)
from slope_match.data_layer.models import (
    MetricSnapshot,
    Resort,
    ResortRegistry,
    SnowReport,
    SnowReportPayload,
)

# Setup Test DB
TEST_DB_FILE = "test_snow_snapshot.db"
TEST_DB_URL = f"sqlite:///{TEST_DB_FILE}"
engine = create_snapshot_engine(TEST_DB_URL, timeout=5)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

REGISTRY = ResortRegistry(resorts=[
    Resort(id="A", name="Alpha", lat=39.0, lon=-105.0, snow_report_id="alpha-mtn"),
    Resort(id="B", name="Bravo", lat=40.0, lon=-106.0),
])


def weather_payload(feels_like, main="Snow", description="light snow"):
    return {
        "main": {"temp": feels_like + 3, "feels_like": feels_like},
        "weather": [{"main": main, "description": description}],
    }


class StaticSource(MetricSource):
    def __init__(self, name, snapshot=None, timeout=1):
        super().__init__(REGISTRY, timeout)
        self.name = name
        self.snapshot = snapshot

    def fetch(self):
        if self.snapshot is None:
            raise FetchError(self.name, "unreachable")
        return self.snapshot


class TestWeatherSource(unittest.TestCase):

    def test_parse_weather(self):
        self.assertEqual(
            parse_weather(weather_payload(12.5)),
            {"feels_like": 12.5, "condition": "Snow", "description": "light snow"},
        )
        self.assertEqual(
            parse_weather({}),
            {"feels_like": None, "condition": None, "description": None},
        )

    def test_partial_failure_marks_resort_absent(self):
        def fake_fetch(session, resort):
            if resort.id == "B":
                raise aiohttp.ClientError("connection reset")
            return parse_weather(weather_payload(18.0))

        source = WeatherSource(REGISTRY, api_key="test-key", breaker=CircuitBreaker(fail_max=3))
        with patch.object(WeatherSource, "_fetch_one", new=AsyncMock(side_effect=fake_fetch)):
            snapshot = source.fetch()

        self.assertEqual(snapshot.source, "weather")
        self.assertEqual(snapshot.resort_ids, ("A", "B"))
        self.assertEqual(snapshot.metric("feels_like"), {"A": 18.0, "B": None})
        self.assertEqual(snapshot.label("condition"), {"A": "Snow", "B": None})

    def test_slow_resort_marked_absent_others_kept(self):
        async def fake_fetch(session, resort):
            if resort.id == "B":
                await asyncio.sleep(5)
            return parse_weather(weather_payload(18.0))

        source = WeatherSource(REGISTRY, api_key="test-key", timeout=0.2, breaker=CircuitBreaker(fail_max=3))
        with patch.object(WeatherSource, "_fetch_one", new=AsyncMock(side_effect=fake_fetch)):
            with self.assertLogs("slope_match.data_layer.interfaces", level="WARNING") as logs:
                snapshot = source.fetch()

        self.assertEqual(snapshot.metric("feels_like"), {"A": 18.0, "B": None})
        self.assertTrue(any("[B]" in line and "timed out" in line for line in logs.output))

    def test_every_resort_too_slow_is_total_failure(self):
        async def fake_fetch(session, resort):
            await asyncio.sleep(5)

        source = WeatherSource(REGISTRY, api_key="test-key", timeout=0.1, breaker=CircuitBreaker(fail_max=3))
        with patch.object(WeatherSource, "_fetch_one", new=AsyncMock(side_effect=fake_fetch)):
            with self.assertRaises(FetchError):
                source.fetch()

    def test_total_failure_raises_fetch_error(self):
        source = WeatherSource(REGISTRY, api_key="test-key", breaker=CircuitBreaker(fail_max=3))
        mock_fetch = AsyncMock(side_effect=aiohttp.ClientError("no route to host"))
        with patch.object(WeatherSource, "_fetch_one", new=mock_fetch):
            with self.assertRaises(FetchError):
                source.fetch()

    def test_open_circuit_skips_network(self):
        source = WeatherSource(REGISTRY, api_key="test-key", breaker=CircuitBreaker(fail_max=2))
        mock_fetch = AsyncMock(side_effect=aiohttp.ClientError("no route to host"))
        with patch.object(WeatherSource, "_fetch_one", new=mock_fetch):
            for _ in range(2):
                with self.assertRaises(FetchError):
                    source.fetch()
            calls_before = mock_fetch.call_count

            with self.assertRaises(FetchError) as ctx:
                source.fetch()

        self.assertEqual(mock_fetch.call_count, calls_before)
        self.assertIn("circuit open", str(ctx.exception))

    def test_missing_api_key(self):
        source = WeatherSource(REGISTRY, api_key=None)
        source.api_key = None
        with self.assertRaises(FetchError):
            source.fetch()


class TestSnowSnapshot(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        init_db(bind=engine)

    @classmethod
    def tearDownClass(cls):
        Base.metadata.drop_all(bind=engine)
        engine.dispose()
        if os.path.exists(TEST_DB_FILE):
            os.remove(TEST_DB_FILE)

    def setUp(self):
        self.db = TestingSessionLocal()
        self.db.query(SnowReport).delete()
        self.db.commit()

    def tearDown(self):
        self.db.close()

    def test_parse_snow_report(self):
        report = parse_snow_report("A", {
            "baseDepth": "48",
            "snowLast48Hours": 6,
            "openTrails": "n/a",
            "maxTrails": 120,
            "predictedSnow24h": 2.5,
            "surfaceCondition": " Packed Powder ",
        })
        self.assertEqual(report.base_depth, 48.0)
        self.assertEqual(report.snow_48h, 6.0)
        self.assertIsNone(report.open_trails)
        self.assertEqual(report.max_trails, 120.0)
        self.assertIsNone(report.predicted_72h)
        self.assertEqual(report.surface, "Packed Powder")

    @patch('slope_match.batch_engine.harvester.requests.get')
    def test_harvest_skips_failed_resorts(self, mock_get):
        ok = MagicMock()
        ok.status_code = 200
        ok.json.return_value = {"baseDepth": 40, "snowLast48Hours": 3}
        mock_get.side_effect = [ok, Exception("503 Service Unavailable")]

        reports = harvest_snow_reports(REGISTRY, base_url="http://fake.url/v1/")

        self.assertEqual([r.resort_id for r in reports], ["A"])
        self.assertEqual(mock_get.call_args_list[0].args[0], "http://fake.url/v1/alpha-mtn")
        self.assertEqual(mock_get.call_args_list[1].args[0], "http://fake.url/v1/B")

    @patch('slope_match.batch_engine.harvester.requests.get')
    def test_fetch_snow_report_rejects_non_object(self, mock_get):
        resp = MagicMock()
        resp.json.return_value = ["not", "a", "report"]
        mock_get.return_value = resp
        self.assertIsNone(fetch_snow_report(REGISTRY.get("A")))

    def test_capture_upserts_one_row_per_resort(self):
        first = datetime(2024, 1, 1, 6, 0)
        capture_snow_reports(self.db, [
            SnowReportPayload(resort_id="A", base_depth=40, surface="Groomed"),
            SnowReportPayload(resort_id="B", base_depth=30),
        ], fetched_at=first)
        capture_snow_reports(self.db, [
            SnowReportPayload(resort_id="A", base_depth=44, snow_48h=4),
        ], fetched_at=first + timedelta(days=1))

        rows = self.db.query(SnowReport).order_by(SnowReport.resort_id).all()
        self.assertEqual(len(rows), 2)
        self.assertEqual(rows[0].base_depth, 44)
        self.assertEqual(rows[0].snow_48h, 4)
        self.assertIsNone(rows[0].surface)
        self.assertEqual(rows[0].fetched_at, first + timedelta(days=1))
        self.assertEqual(rows[1].base_depth, 30)

    def test_snow_source_reads_snapshot(self):
        fetched_at = datetime(2024, 1, 2, 6, 0)
        capture_snow_reports(self.db, [
            SnowReportPayload(
                resort_id="A", base_depth=50, snow_48h=8, open_trails=90, max_trails=120,
                predicted_24h=2, predicted_48h=5, predicted_72h=5, surface="Powder",
            ),
        ], fetched_at=fetched_at)

        source = SnowConditionSource(REGISTRY, session_factory=TestingSessionLocal)
        snapshot = source.fetch()

        self.assertEqual(snapshot.taken_at, fetched_at)
        self.assertEqual(snapshot.metric("base_depth"), {"A": 50.0, "B": None})
        self.assertEqual(snapshot.metric("predicted_48h"), {"A": 5.0, "B": None})
        self.assertEqual(snapshot.label("surface"), {"A": "Powder", "B": None})

    def test_snow_source_unreadable_file(self):
        empty_engine = create_engine("sqlite://")
        source = SnowConditionSource(REGISTRY, session_factory=sessionmaker(bind=empty_engine))
        with self.assertRaises(FetchError):
            source.fetch()

    def test_snapshot_engine_applies_lock_timeout(self):
        with patch('slope_match.data_layer.database.create_engine') as mock_create:
            create_snapshot_engine("sqlite:///other.db", timeout=7)
            create_snapshot_engine("postgresql://db/snow", timeout=7)

        sqlite_args = mock_create.call_args_list[0].kwargs["connect_args"]
        self.assertEqual(sqlite_args, {"check_same_thread": False, "timeout": 7})
        self.assertEqual(mock_create.call_args_list[1].kwargs["connect_args"], {})

    @patch('slope_match.data_layer.interfaces.create_snapshot_engine')
    def test_snow_source_default_engine_uses_source_timeout(self, mock_engine):
        mock_engine.return_value = engine
        SnowConditionSource(REGISTRY, timeout=12)
        mock_engine.assert_called_once_with(timeout=12)

        mock_engine.reset_mock()
        SnowConditionSource(REGISTRY, session_factory=TestingSessionLocal, timeout=12)
        mock_engine.assert_not_called()


class BrokenSource(StaticSource):
    def fetch(self):
        raise ValueError("unparseable payload")


class TestDashboardController(unittest.TestCase):

    def setUp(self):
        self.weather = StaticSource("weather", MetricSnapshot(
            source="weather",
            taken_at=datetime(2024, 1, 2, 9, 0),
            resort_ids=REGISTRY.ids,
            values={"feels_like": {"A": 20, "B": 30}},
            labels={"condition": {"A": "Clear", "B": "Snow"}},
        ))
        self.snow = StaticSource("snow", MetricSnapshot(
            source="snow",
            taken_at=datetime(2024, 1, 2, 6, 0),
            resort_ids=REGISTRY.ids,
            values={
                "snow_48h": {"A": 5},
                "base_depth": {"A": 40, "B": 40},
                "open_trails": {"A": 10, "B": 10},
                "max_trails": {"A": 20, "B": 30},
                "predicted_24h": {"A": 2, "B": 1},
                "predicted_48h": {"A": 5, "B": 3},
                "predicted_72h": {"A": 5, "B": 7},
            },
            labels={"surface": {"A": "Powder"}},
        ))
        self.controller = DashboardController(REGISTRY, self.weather, self.snow)

    def test_no_data_yet(self):
        controller = DashboardController(REGISTRY, StaticSource("weather"), StaticSource("snow"))
        controller.refresh_all()

        self.assertIsNone(controller.weather())
        self.assertIsNone(controller.snow())
        metrics = controller.metrics()
        self.assertEqual(set(metrics), {"warmth", "fresh_snow", "base_depth", "open_runs"})
        self.assertTrue(all(v is None for m in metrics.values() for v in m.values()))
        self.assertEqual(controller.rank({"warmth": 1}).winner, "A")
        self.assertEqual(controller.forecast().hours[-1], 72)
        self.assertIsNone(controller.resort_detail("B").feels_like)
        self.assertEqual(controller.status()["weather"].last_error, "weather: unreachable")

    def test_rank_uses_latest_snapshots(self):
        self.assertEqual(self.controller.refresh_all(), {"weather": True, "snow": True})
        result = self.controller.rank({"warmth": 1, "fresh_snow": 1})
        self.assertEqual(result.winner, "A")
        self.assertEqual(result.scores, [("A", 3.0), ("B", 3.0)])

        result = self.controller.rank({"warmth": 1, "fresh_snow": 0.5})
        self.assertEqual(result.winner, "B")

    def test_source_bug_does_not_escape_manual_refresh(self):
        controller = DashboardController(REGISTRY, BrokenSource("weather"), BrokenSource("snow"))
        with self.assertLogs("slope_match.data_layer.cache", level="ERROR"):
            self.assertEqual(controller.refresh_all(), {"weather": False, "snow": False})

        self.assertIsNone(controller.weather())
        status = controller.status()
        self.assertEqual(status["weather"].last_error, "ValueError: unparseable payload")
        self.assertEqual(status["snow"].state, "empty")

    def test_stale_data_survives_outage(self):
        self.controller.refresh_all()
        self.weather.snapshot = None
        self.assertEqual(self.controller.refresh_all(), {"weather": False, "snow": True})

        self.assertEqual(self.controller.metrics()["warmth"], {"A": 20.0, "B": 30.0})
        self.assertEqual(self.controller.status()["weather"].last_error, "weather: unreachable")

    def test_forecast(self):
        self.controller.refresh_all()
        aligned = self.controller.forecast()
        self.assertEqual(aligned.table.at[24, "A"], 2)
        self.assertEqual(aligned.table.at[71, "B"], 3)
        self.assertEqual(aligned.table.at[72, "B"], 7)
        self.assertEqual(aligned.leader, "B")

    def test_resort_detail(self):
        self.controller.refresh_all()
        detail = self.controller.resort_detail("A")

        self.assertEqual(detail.resort.name, "Alpha")
        self.assertEqual(detail.feels_like, 20.0)
        self.assertEqual(detail.condition, "Clear")
        self.assertEqual(detail.open_trails, 10.0)
        self.assertEqual(detail.max_trails, 20.0)
        self.assertEqual(detail.surface, "Powder")
        self.assertIsNone(detail.open_lifts)
        self.assertEqual(detail.snow_as_of, datetime(2024, 1, 2, 6, 0))

        with self.assertRaises(KeyError):
            self.controller.resort_detail("Z")


class TestRegistry(unittest.TestCase):

    def test_bundled_registry_loads_in_order(self):
        registry = load_registry()
        self.assertGreater(len(registry), 1)
        self.assertEqual(registry.ids[0], "winter-park")
        self.assertEqual(registry.get("vail").name, "Vail")

    def test_duplicate_ids_rejected(self):
        with self.assertRaises(ValueError):
            ResortRegistry(resorts=[REGISTRY.get("A"), REGISTRY.get("A")])

if __name__ == '__main__':
    unittest.main()
