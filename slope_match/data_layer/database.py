import os
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

# Snapshot file written by the daily batch job and read by the snow-condition source
DATABASE_URL = os.environ.get("SLOPE_MATCH_DATABASE_URL", "sqlite:///snow_snapshot.db")


def create_snapshot_engine(url: str = DATABASE_URL, timeout: Optional[float] = None):
    """
    Engine for the snapshot file. For sqlite, `timeout` bounds how long a
    reader waits on the batch job's write lock before the read fails.
    """
    connect_args = {}
    if url.startswith("sqlite"):
        # Read from the cache refresh thread, written by the batch job
        connect_args["check_same_thread"] = False
        if timeout is not None:
            connect_args["timeout"] = timeout
    return create_engine(
        url,
        connect_args=connect_args,
        echo=False # Set to True for SQL logging
    )


engine = create_snapshot_engine()

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for models
Base = declarative_base()

def init_db(bind=None):
    """Creates the snapshot tables on `bind` (the default engine when omitted)."""
    # Import models to ensure they are registered with Base.metadata
    from slope_match.data_layer import models
    Base.metadata.create_all(bind=bind or engine)
