# scraper/errors.py


class ScraperError(Exception):
    """
    Base class for every error raised by the extraction pipeline.

    ``retryable`` is None when the raiser did not classify the failure, in
    which case is_retryable() falls back to the message heuristic. Raisers
    whose message embeds the product URL must classify explicitly, since a
    URL can contain "429" or "timeout".
    """

    retryable = None

    def __init__(self, *args, retryable=None):
        super().__init__(*args)
        if retryable is not None:
            self.retryable = retryable


class InvalidUrlError(ScraperError):
    """The URL could not be parsed or is not an http(s) URL."""

    retryable = False

    def __init__(self, url, reason="Invalid URL format"):
        self.url = url
        self.reason = reason
        super().__init__(reason)


class NavigationError(ScraperError):
    """A page load failed or timed out."""


class RateLimitedError(ScraperError):
    """The target site signalled throttling (HTTP 429 and friends)."""

    retryable = True


class ExtractionFailure(ScraperError):
    """A strategy ran but did not produce a usable title."""


class RendererUnavailable(ScraperError):
    """Browser automation is not available in this process."""

    retryable = False


class ResourceCleanupWarning(ScraperError):
    """A browser session could not be released. Logged, never raised."""


class UnknownPlatformError(ScraperError):
    """A platform id reached the registry without a configuration."""

    retryable = False


class InvalidJobTransition(ScraperError):
    """Raised when a job status change would move backwards or leave a terminal state."""

    def __init__(self, from_status, to_status, allowed=()):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Invalid transition from {from_status.value} to {to_status.value}. "
            f"Allowed transitions: {sorted(s.value for s in allowed)}"
        )


RETRYABLE_INDICATORS = ("rate limit", "429", "too many requests", "timeout", "timed out")


def message_is_retryable(message):
    """True if an error message carries a throttling or timeout marker."""
    message = str(message).lower()
    return any(indicator in message for indicator in RETRYABLE_INDICATORS)


def is_retryable(exc):
    """
    Decide whether a failed attempt is worth retrying.

    Errors classified where they were raised (``retryable`` set) are taken
    at their word: rate limiting is always retryable, invalid URLs and
    configuration problems never are. Anything unclassified falls back to
    message heuristics: throttling markers, HTTP 429 and timeouts count as
    transient, everything else is terminal.

    Args:
        exc (BaseException): The error raised by the attempt

    Returns:
        bool: True if the retry controller should back off and try again
    """
    retryable = getattr(exc, "retryable", None)
    if retryable is not None:
        return bool(retryable)
    return message_is_retryable(exc)
