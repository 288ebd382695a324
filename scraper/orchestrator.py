# scraper/orchestrator.py
import asyncio
import inspect
import sys

from .errors import InvalidUrlError, ScraperError
from .models import JobStatus, Platform, Progress, ScrapeOverrides
from .platforms import detect_platform, get_config
from .utils import get_logger

logger = get_logger("scraper")


async def _notify(callback, progress):
    if callback is None:
        return
    outcome = callback(progress)
    if inspect.isawaitable(outcome):
        await outcome


class BatchOrchestrator:
    """
    Drive many URLs through the retry controller, one at a time.

    URLs are never scraped concurrently within a batch so the target sites'
    rate limits are respected. Independent orchestrators (or independent
    batches on one orchestrator) may run side by side.

    Args:
        controller (RetryController): Per-URL scrape with retries
        gateway (PersistenceGateway, optional): Job/product store, required
            for the job-level methods
        sleep (callable): Awaitable sleep, injectable for tests
    """

    def __init__(self, controller, gateway=None, sleep=asyncio.sleep):
        self.controller = controller
        self.gateway = gateway
        self.sleep = sleep
        self._cancel_requests = set()

    def inter_url_delay(self, url, overrides):
        if overrides.delay is not None:
            return overrides.delay
        try:
            platform = detect_platform(url)
        except InvalidUrlError:
            platform = Platform.GENERIC
        return get_config(platform).delay

    async def scrape_multiple(
        self, urls, overrides=None, progress_callback=None, should_cancel=None, on_result=None
    ):
        """
        Scrape a list of URLs sequentially, in input order.

        Before each URL the progress callback receives
        ``Progress(completed=i, total=n, current=url)``; once every URL has
        been attempted it receives a final ``Progress(completed=n, total=n)``.
        A failed URL never stops the batch. Cancellation is checked between
        URLs only, never interrupting an attempt in flight; a cancelled batch
        returns the results gathered so far and skips the final progress call.

        Args:
            urls (list[str]): URLs to scrape
            overrides (ScrapeOverrides, optional): Shared per-call settings
            progress_callback (callable, optional): Sync or async, takes Progress
            should_cancel (callable, optional): Sync or async, returns True to stop
            on_result (callable, optional): Sync or async, takes each ScrapingResult

        Returns:
            list[ScrapingResult]: One result per attempted URL, in input order
        """
        overrides = overrides or ScrapeOverrides()
        total = len(urls)
        results = []

        for i, url in enumerate(urls):
            if should_cancel is not None:
                cancelled = should_cancel()
                if inspect.isawaitable(cancelled):
                    cancelled = await cancelled
                if cancelled:
                    logger.info(f"Batch cancelled after {i}/{total} URLs")
                    return results

            await _notify(progress_callback, Progress(completed=i, total=total, current=url))

            result = await self.controller.scrape(url, overrides)
            results.append(result)
            if on_result is not None:
                outcome = on_result(result)
                if inspect.isawaitable(outcome):
                    await outcome

            if i < total - 1:
                await self.sleep(self.inter_url_delay(url, overrides))

        await _notify(progress_callback, Progress(completed=total, total=total))
        return results

    def request_cancel(self, job_id):
        """Ask a running job to stop before its next URL."""
        self._cancel_requests.add(job_id)

    async def _cancel_requested(self, job_id):
        if job_id in self._cancel_requests:
            return True
        # a job finalised elsewhere (cancel endpoint, stuck-job sweep) stops too
        stored = await self.gateway.get_job(job_id)
        return stored is not None and stored.status.is_terminal

    async def _keep_stored(self, job_id, attempted):
        stored = await self.gateway.get_job(job_id)
        if stored is None:
            raise ScraperError(f"Job {job_id} not found")
        logger.warning(
            f"Job {job_id} is already {stored.status.value} in storage, "
            f"not moving it to {attempted.value}"
        )
        return stored

    async def start_job(self, urls, platform=None, owner=None, settings=None, progress_callback=None):
        """Create a job through the gateway and run it to completion."""
        settings = settings or ScrapeOverrides()
        if platform is None:
            platform = batch_platform(urls)
        job = await self.gateway.create_job(urls, platform, owner, settings)
        return await self.run_job(job.id, progress_callback=progress_callback)

    async def run_job(self, job_id, progress_callback=None):
        """
        Run a stored job: pending -> processing -> completed.

        Every URL's result is appended and the counters pushed to the gateway
        as soon as it finishes; successful products are stored. A
        configuration error (anything that is not a per-URL failure) drives
        the job to ``failed`` instead. A cancellation request, in process or
        persisted, drives it to ``cancelled`` between URLs. Status writes only
        land while storage still holds the status this run last wrote, so a
        job failed by the stuck-job sweep or cancelled through the API keeps
        that status.

        Args:
            job_id (str): Id of a pending job
            progress_callback (callable, optional): Forwarded progress reports

        Returns:
            ScrapingJob: The finalised job, or the stored one if storage
                finalised it first
        """
        job = await self.gateway.get_job(job_id)
        if job is None:
            raise ScraperError(f"Job {job_id} not found")
        if job.status.is_terminal:
            logger.info(f"Job {job.id} already {job.status.value}, not running it")
            self._cancel_requests.discard(job.id)
            return job

        loaded_status = job.status
        job.transition_to(JobStatus.PROCESSING)
        if not await self.gateway.transition_job(job.id, loaded_status, {"status": job.status}):
            return await self._keep_stored(job.id, JobStatus.PROCESSING)
        logger.info(f"Job {job.id} processing {len(job.urls)} URL(s)")

        async def record(result):
            job.record(result)
            if result.ok:
                await self.gateway.store_product(result.product, job.id)
            await self.gateway.update_job(
                job.id,
                {
                    "processed_urls": job.processed_urls,
                    "successful_scrapes": job.successful_scrapes,
                    "failed_scrapes": job.failed_scrapes,
                    "results": job.results,
                },
            )

        try:
            await self.scrape_multiple(
                job.urls,
                job.settings,
                progress_callback=progress_callback,
                should_cancel=lambda: self._cancel_requested(job.id),
                on_result=record,
            )
        except Exception as e:
            logger.exception(f"Job {job.id} failed: {e}")
            job.transition_to(JobStatus.FAILED, error_message=str(e))
        else:
            if job.processed_urls < len(job.urls):
                job.transition_to(JobStatus.CANCELLED)
                logger.info(f"Job {job.id} cancelled after {job.processed_urls} URL(s)")
            else:
                job.transition_to(JobStatus.COMPLETED)
                logger.info(
                    f"Job {job.id} completed: {job.successful_scrapes} ok, "
                    f"{job.failed_scrapes} failed"
                )
        finally:
            self._cancel_requests.discard(job.id)

        finalised = await self.gateway.transition_job(
            job.id,
            JobStatus.PROCESSING,
            {
                "status": job.status,
                "completed_at": job.completed_at,
                "error_message": job.error_message,
            },
        )
        if not finalised:
            return await self._keep_stored(job.id, job.status)
        return job


def batch_platform(urls):
    """The shared platform of a batch, or generic when URLs are mixed or invalid."""
    platforms = set()
    for url in urls:
        try:
            platforms.add(detect_platform(url))
        except InvalidUrlError:
            platforms.add(Platform.GENERIC)
    return platforms.pop() if len(platforms) == 1 else Platform.GENERIC


# convenience script
async def main(urls):
    from .fetcher import HttpFetcher
    from .renderer import build_renderer
    from .retry import RetryController
    from .strategies import build_chain

    renderer = build_renderer()
    fetcher = HttpFetcher()
    orchestrator = BatchOrchestrator(RetryController(build_chain(renderer, fetcher)))

    def report(progress):
        if progress.current:
            logger.info(f"[{progress.completed}/{progress.total}] {progress.current}")

    try:
        results = await orchestrator.scrape_multiple(urls, progress_callback=report)
    finally:
        await fetcher.close()
        await renderer.close()
    for result in results:
        print(result.model_dump_json(indent=2))


if __name__ == "__main__":
    asyncio.run(main(sys.argv[1:]))
