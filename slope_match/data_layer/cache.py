import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, Optional

from .exceptions import FetchError, NoDataYet
from .interfaces import MetricSource, utcnow
from .models import CachedSnapshot, CacheState, SourceStatus

logger = logging.getLogger(__name__)


class StaleCache:
    """
    Holds the last successful snapshot of one MetricSource and refreshes it
    on its own schedule.

    Readers never wait on a refresh: read() returns whatever was last
    committed. A failed refresh keeps the previous data, so the cache serves
    stale-but-valid data instead of nothing. The held CachedSnapshot is only
    ever replaced whole, under a lock.
    """

    def __init__(
        self,
        source: MetricSource,
        period: float,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        if source.timeout >= period:
            raise ValueError(
                f"{source.name}: fetch timeout ({source.timeout}s) must be shorter than "
                f"the refresh period ({period}s)"
            )
        self.source = source
        self.period = period
        self.clock = clock or utcnow

        self._cached: Optional[CachedSnapshot] = None
        self._last_attempt_at: Optional[datetime] = None
        self._last_error: Optional[str] = None
        self._lock = threading.Lock()
        self._refresh_lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def name(self) -> str:
        return self.source.name

    @property
    def state(self) -> CacheState:
        return CacheState.POPULATED if self._cached is not None else CacheState.EMPTY

    def read(self) -> CachedSnapshot:
        cached = self._cached
        if cached is None:
            raise NoDataYet(self.name)
        return cached

    def refresh(self) -> bool:
        """
        Runs one fetch. Returns True when new data was committed.
        A call made while another refresh of this cache is in flight returns
        False immediately without fetching.
        """
        if not self._refresh_lock.acquire(blocking=False):
            logger.debug(f"[{self.name}] Refresh already in flight, skipping")
            return False
        try:
            attempt_at = self.clock()
            try:
                snapshot = self.source.fetch()
            except FetchError as e:
                logger.warning(f"[{self.name}] Refresh failed, keeping previous data: {e}")
                self._record_failure(attempt_at, str(e))
                return False
            except Exception as e:
                # A source bug is recorded like an outage, never raised to the caller
                logger.exception(f"[{self.name}] Unexpected refresh error: {e}")
                self._record_failure(attempt_at, f"{type(e).__name__}: {e}")
                return False

            with self._lock:
                self._cached = CachedSnapshot(
                    snapshot=snapshot,
                    last_success_at=attempt_at,
                    last_attempt_at=attempt_at,
                )
                self._last_attempt_at = attempt_at
                self._last_error = None
            logger.info(f"[{self.name}] Refreshed snapshot (taken_at={snapshot.taken_at})")
            return True
        finally:
            self._refresh_lock.release()

    def _record_failure(self, attempt_at: datetime, error: str):
        with self._lock:
            self._last_attempt_at = attempt_at
            self._last_error = error
            if self._cached is not None:
                self._cached = self._cached.model_copy(
                    update={"last_attempt_at": attempt_at, "last_error": error}
                )

    def is_stale(self, now: Optional[datetime] = None) -> bool:
        """True once the data is older than one period plus one failed attempt."""
        cached = self._cached
        if cached is None:
            return True
        now = now or self.clock()
        return cached.age(now) > timedelta(seconds=2 * self.period)

    def status(self, now: Optional[datetime] = None) -> SourceStatus:
        cached = self._cached
        return SourceStatus(
            source=self.name,
            state=self.state,
            stale=self.is_stale(now),
            last_success_at=cached.last_success_at if cached else None,
            last_attempt_at=self._last_attempt_at,
            last_error=self._last_error,
        )

    # -------------------------------------------------------------------------
    # Background schedule
    # -------------------------------------------------------------------------

    def start(self):
        """Starts the refresh thread: one refresh now, then one per period."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run, name=f"stale-cache-{self.name}", daemon=True
        )
        self._thread.start()

    def stop(self, timeout: Optional[float] = None):
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _run(self):
        while not self._stop.is_set():
            self.refresh()
            self._stop.wait(self.period)
