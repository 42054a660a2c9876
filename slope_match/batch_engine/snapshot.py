import logging
from datetime import datetime, timezone
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from slope_match.data_layer.models import SnowReport, SnowReportPayload

logger = logging.getLogger(__name__)


def capture_snow_reports(
    session: Session,
    reports: Iterable[SnowReportPayload],
    fetched_at: Optional[datetime] = None,
) -> int:
    """
    Writes the latest report per resort into the snapshot file.

    Rows are updated in place when the resort already has one, so the file
    only ever holds the current window. Returns the number of rows written.
    """
    if fetched_at is None:
        fetched_at = datetime.now(timezone.utc).replace(tzinfo=None)

    count = 0
    for report in reports:
        fields = report.model_dump(exclude={"resort_id"})

        existing = session.execute(
            select(SnowReport).where(SnowReport.resort_id == report.resort_id)
        ).scalar_one_or_none()

        if existing:
            for column, value in fields.items():
                setattr(existing, column, value)
            existing.fetched_at = fetched_at
        else:
            session.add(SnowReport(resort_id=report.resort_id, fetched_at=fetched_at, **fields))
        count += 1

    try:
        session.commit()
        logger.info(f"Captured {count} snow reports")
    except Exception as e:
        session.rollback()
        logger.error(f"Failed to commit snow reports: {e}")
        raise
    return count
