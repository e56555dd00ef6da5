"""Exception taxonomy for network fetches and payload decoding.

Cancellation is deliberately absent: callers cancel with the standard
`asyncio.CancelledError`, which is never wrapped, retried or logged as a
failure.
"""


class PriceFeedError(Exception):
    """Base class for all errors raised by pricefeed."""


class TransportError(PriceFeedError):
    """A request-level failure (network, DNS, timeout, body decoding) for one attempt."""

    def __init__(self, url: str, cause: BaseException) -> None:
        self.url = url
        self.cause = cause
        super().__init__(f"Transport failure for {url}: {type(cause).__name__}: {cause}")


class ServerError(PriceFeedError):
    """The server answered with a non-2xx status code."""

    def __init__(self, url: str, status_code: int) -> None:
        self.url = url
        self.status_code = status_code
        super().__init__(f"HTTP {status_code} from {url}")


class FetchError(PriceFeedError):
    """Every attempt of a retrying fetch failed.

    Attributes:
        url: The requested URL.
        attempts: How many attempts were made.
        last_error: The failure of the final attempt.
    """

    def __init__(self, url: str, attempts: int, last_error: PriceFeedError) -> None:
        self.url = url
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Fetch of {url} failed after {attempts} attempt(s): {last_error}")


class DecodeError(PriceFeedError):
    """A payload did not have the expected JSON shape."""
