import logging
from typing import Dict, List, Optional

import pandas as pd
import requests

from slope_match.data_layer.config import SNOW_REPORT_TIMEOUT, SNOW_REPORT_URL
from slope_match.data_layer.models import Resort, ResortRegistry, SnowReportPayload

logger = logging.getLogger(__name__)

# Provider key -> snapshot column
FIELD_MAP = {
    "baseDepth":        "base_depth",
    "snowLast48Hours":  "snow_48h",
    "openTrails":       "open_trails",
    "maxTrails":        "max_trails",
    "openLifts":        "open_lifts",
    "maxLifts":         "max_lifts",
    "predictedSnow24h": "predicted_24h",
    "predictedSnow48h": "predicted_48h",
    "predictedSnow72h": "predicted_72h",
}


def parse_snow_report(resort_id: str, data: Dict) -> SnowReportPayload:
    """
    Maps one provider document onto the snapshot columns.
    Values that are missing or not numeric become None.
    """
    raw = pd.Series({column: data.get(key) for key, column in FIELD_MAP.items()}, dtype=object)
    numeric = pd.to_numeric(raw, errors="coerce")

    fields = {column: (None if pd.isna(value) else float(value)) for column, value in numeric.items()}
    surface = data.get("surfaceCondition")
    fields["surface"] = str(surface).strip() if surface else None
    return SnowReportPayload(resort_id=resort_id, **fields)


def fetch_snow_report(resort: Resort, base_url: str = SNOW_REPORT_URL) -> Optional[SnowReportPayload]:
    """Fetches one resort's report. Returns None on any failure."""
    report_id = resort.snow_report_id or resort.id
    url = f"{base_url.rstrip('/')}/{report_id}"
    try:
        response = requests.get(url, timeout=SNOW_REPORT_TIMEOUT)
        response.raise_for_status()
        data = response.json()
    except Exception as e:
        logger.error(f"Error fetching snow report for {resort.id}: {e}")
        return None

    if not isinstance(data, dict):
        logger.error(f"Unexpected snow report payload for {resort.id}: {type(data).__name__}")
        return None
    return parse_snow_report(resort.id, data)


def harvest_snow_reports(registry: ResortRegistry, base_url: str = SNOW_REPORT_URL) -> List[SnowReportPayload]:
    logger.info(f"Starting snow report harvest for {len(registry)} resorts")
    reports = []
    for resort in registry.resorts:
        logger.info(f"Processing {resort.name} ({resort.snow_report_id or resort.id})...")
        report = fetch_snow_report(resort, base_url)
        if report is None:
            logger.warning(f"No snow report returned for {resort.name}")
            continue
        reports.append(report)
    return reports
