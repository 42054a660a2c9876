class SlopeMatchError(Exception):
    """Base class for errors raised by the data layer."""


class FetchError(SlopeMatchError):
    """
    A whole-call failure of one upstream source (provider unreachable,
    timeout, circuit open). Per-resort gaps are never a FetchError; they are
    None values inside the snapshot.
    """

    def __init__(self, source: str, message: str):
        super().__init__(f"{source}: {message}")
        self.source = source
        self.message = message


class NoDataYet(SlopeMatchError):
    """Raised by StaleCache.read() before the first successful refresh."""

    def __init__(self, source: str):
        super().__init__(f"No data fetched yet for {source}")
        self.source = source
