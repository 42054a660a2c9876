import argparse
import logging
import sys
import os

# Ensure the app package is in path
sys.path.append(os.path.join(os.path.dirname(__file__), '..'))

from slope_match.data_layer.config import load_registry
from slope_match.data_layer.database import init_db, SessionLocal
from slope_match.data_layer.models import ResortRegistry
from slope_match.batch_engine.harvester import harvest_snow_reports
from slope_match.batch_engine.snapshot import capture_snow_reports

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)

def main():
    parser = argparse.ArgumentParser(description="Refresh the snow-condition snapshot file")
    parser.add_argument("--resorts", nargs="+", help="Specific resort ids to refresh (default: all)")
    parser.add_argument("--config", default=None, help="Path to the resort registry YAML")
    parser.add_argument("--url", default=None, help="Override the snow report provider base URL")

    args = parser.parse_args()

    logger.info("Starting snow snapshot run...")

    init_db()

    registry = load_registry(args.config)
    if args.resorts:
        selected = [r for r in registry.resorts if r.id in args.resorts]
        if not selected:
            logger.warning(f"No resorts in registry matching {args.resorts}")
            return 1
        registry = ResortRegistry(resorts=selected)

    reports = harvest_snow_reports(registry, args.url) if args.url else harvest_snow_reports(registry)
    if not reports:
        logger.error("Snapshot run produced no reports; keeping the previous snapshot")
        return 1

    session = SessionLocal()
    try:
        capture_snow_reports(session, reports)
    except Exception as e:
        logger.error(f"Snapshot run failed: {e}")
        return 1
    finally:
        session.close()
        logger.info("Snapshot run complete.")
    return 0

if __name__ == "__main__":
    sys.exit(main())
