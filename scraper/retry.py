# scraper/retry.py
import asyncio
import time

from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt

from .errors import InvalidUrlError, is_retryable
from .models import ScrapeOverrides, ScrapingResult
from .platforms import detect_platform, get_config
from .utils import get_logger

logger = get_logger("scraper")


def backoff_seconds(attempt):
    """Exponential backoff after failed attempt ``attempt`` (1-based): 4s, 8s, 16s..."""
    return 2**attempt * 2


class RetryController:
    """
    Wrap one URL's extraction in courtesy delays and bounded retries.

    Args:
        chain (StrategyChain): Extraction strategies to run per attempt
        sleep (callable): Awaitable sleep, injectable for tests
        clock (callable): Monotonic clock in seconds
    """

    def __init__(self, chain, sleep=asyncio.sleep, clock=time.monotonic):
        self.chain = chain
        self.sleep = sleep
        self.clock = clock

    def _elapsed_ms(self, start):
        return int((self.clock() - start) * 1000)

    async def scrape(self, url, overrides=None):
        """
        Scrape one product URL.

        The platform's courtesy delay runs before every attempt, the first
        included. Retryable failures (rate limiting, HTTP 429, timeouts) back
        off ``2**attempt * 2`` seconds and try again until the platform's
        retry budget is spent; any other failure ends the loop at once.

        Args:
            url (str): Product URL
            overrides (ScrapeOverrides, optional): Per-call headers/delay/retries

        Returns:
            ScrapingResult: Success with the product, or failure carrying the
                last error message and the total elapsed time

        Raises:
            UnknownPlatformError: Configuration problems are not per-URL
                failures and are left to fail the enclosing job
        """
        start = self.clock()
        overrides = overrides or ScrapeOverrides()

        try:
            platform = detect_platform(url)
        except InvalidUrlError as e:
            logger.warning(f"Rejected {url!r}: {e.reason}")
            return ScrapingResult.failure(url, f"Invalid URL: {e.reason}", self._elapsed_ms(start))

        config = get_config(platform).with_overrides(overrides)
        attempts = 0

        retrying = AsyncRetrying(
            stop=stop_after_attempt(config.retries),
            wait=lambda state: backoff_seconds(state.attempt_number),
            retry=retry_if_exception(is_retryable),
            sleep=self.sleep,
            before_sleep=lambda state: logger.info(
                f"Retryable failure for {url}, retrying in "
                f"{backoff_seconds(state.attempt_number)}s..."
            ),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    logger.info(
                        f"Scraping {platform.value}: {url} (attempt {attempts}/{config.retries})"
                    )
                    if config.delay:
                        await self.sleep(config.delay)
                    product = await self.chain.run(
                        url, config, allow_synthetic=overrides.allow_synthetic
                    )
        except Exception as e:
            logger.warning(f"Attempt {attempts} failed for {url}: {e}")
            return ScrapingResult.failure(url, str(e), self._elapsed_ms(start), attempts)

        logger.info(f"Successfully scraped product: {product.title}")
        return ScrapingResult.success(url, product, self._elapsed_ms(start), attempts)
