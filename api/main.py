# api/main.py
from contextlib import asynccontextmanager
from typing import List, Optional
import math
import os

from dotenv import load_dotenv
from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from scraper.db import MongoGateway
from scraper.fetcher import HttpFetcher
from scraper.models import JobStatus, Platform, ScrapeOverrides
from scraper.orchestrator import BatchOrchestrator, batch_platform
from scraper.platforms import validate_url
from scraper.renderer import build_renderer
from scraper.retry import RetryController
from scraper.strategies import build_chain
from scraper.utils import get_logger
from .auth import get_api_key
from .rate_limit import READ_RATE_LIMIT, SCRAPE_RATE_LIMIT, limiter, register_rate_limit

load_dotenv()
API_PORT = int(os.getenv("API_PORT", "8000"))
MAX_BATCH_URLS = int(os.getenv("MAX_BATCH_URLS", "50"))

logger = get_logger("api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    renderer = build_renderer()
    fetcher = HttpFetcher()
    gateway = MongoGateway()
    app.state.gateway = gateway
    app.state.orchestrator = BatchOrchestrator(
        RetryController(build_chain(renderer, fetcher)), gateway=gateway
    )
    logger.info(f"Scraper API ready (browser available: {renderer.available})")
    try:
        yield
    finally:
        await fetcher.close()
        await renderer.close()


app = FastAPI(title="Product Scraper API", version="1.0", lifespan=lifespan)

register_rate_limit(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


def get_gateway(request: Request):
    return request.app.state.gateway


def get_orchestrator(request: Request):
    return request.app.state.orchestrator


class ValidateRequest(BaseModel):
    url: str


class ScrapeRequest(BaseModel):
    url: str
    overrides: Optional[ScrapeOverrides] = None
    store: bool = True


class JobRequest(BaseModel):
    urls: List[str] = Field(..., min_length=1)
    settings: Optional[ScrapeOverrides] = None
    owner: Optional[str] = None
    platform: Optional[Platform] = None


@app.post("/scraper/validate", dependencies=[Depends(get_api_key)])
@limiter.limit(READ_RATE_LIMIT)
async def validate(request: Request, body: ValidateRequest):
    """
    Check a URL and report which platform it belongs to.

    Returns:
        UrlValidationResult: ``valid``, ``platform``, ``error`` and
            suggestions for a better hit rate. Never triggers extraction.
    """
    return validate_url(body.url)


@app.post("/scraper/scrape", dependencies=[Depends(get_api_key)])
@limiter.limit(SCRAPE_RATE_LIMIT)
async def scrape(
    request: Request,
    body: ScrapeRequest,
    orchestrator=Depends(get_orchestrator),
    gateway=Depends(get_gateway),
):
    """
    Scrape a single product URL synchronously.

    Invalid URLs are rejected with 400 before any extraction attempt. A
    successful product is stored unless ``store`` is false.

    Returns:
        dict: ``result`` (ScrapingResult) and ``product_id`` when stored
    """
    validation = validate_url(body.url)
    if not validation.valid:
        raise HTTPException(status_code=400, detail=validation.error)

    result = await orchestrator.controller.scrape(body.url, body.overrides)
    product_id = None
    if result.ok and body.store:
        product_id = await gateway.store_product(result.product)
    return {"result": result, "product_id": product_id}


@app.post("/scraper/jobs", status_code=202, dependencies=[Depends(get_api_key)])
@limiter.limit(SCRAPE_RATE_LIMIT)
async def create_job(
    request: Request,
    body: JobRequest,
    background_tasks: BackgroundTasks,
    orchestrator=Depends(get_orchestrator),
    gateway=Depends(get_gateway),
):
    """
    Queue a batch scraping job and run it in the background.

    Returns:
        ScrapingJob: The freshly created job, still ``pending``
    """
    if len(body.urls) > MAX_BATCH_URLS:
        raise HTTPException(
            status_code=400, detail=f"At most {MAX_BATCH_URLS} URLs per job"
        )
    platform = body.platform or batch_platform(body.urls)
    job = await gateway.create_job(
        body.urls, platform, body.owner, body.settings or ScrapeOverrides()
    )
    background_tasks.add_task(orchestrator.run_job, job.id)
    logger.info(f"Queued job {job.id} with {len(body.urls)} URL(s)")
    return job


@app.get("/scraper/jobs", dependencies=[Depends(get_api_key)])
@limiter.limit(READ_RATE_LIMIT)
async def list_jobs(
    request: Request,
    status: Optional[JobStatus] = Query(None),
    platform: Optional[Platform] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=200),
    gateway=Depends(get_gateway),
):
    jobs, total = await gateway.list_jobs(status=status, platform=platform, page=page, limit=limit)
    return {
        "jobs": jobs,
        "total": total,
        "page": page,
        "limit": limit,
        "pages": math.ceil(total / limit),
    }


# declared before /scraper/jobs/{job_id} routes so "fix-stuck" is not read as an id
@app.post("/scraper/jobs/fix-stuck", dependencies=[Depends(get_api_key)])
@limiter.limit(READ_RATE_LIMIT)
async def fix_stuck_jobs(
    request: Request,
    older_than_minutes: int = Query(10, ge=1),
    gateway=Depends(get_gateway),
):
    updated = await gateway.fail_stuck_jobs(older_than_minutes)
    return {"updated": updated, "message": f"Fixed {updated} stuck jobs"}


@app.get("/scraper/jobs/{job_id}", dependencies=[Depends(get_api_key)])
@limiter.limit(READ_RATE_LIMIT)
async def get_job(request: Request, job_id: str, gateway=Depends(get_gateway)):
    job = await gateway.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return job


@app.post("/scraper/jobs/{job_id}/cancel", dependencies=[Depends(get_api_key)])
@limiter.limit(READ_RATE_LIMIT)
async def cancel_job(
    request: Request,
    job_id: str,
    orchestrator=Depends(get_orchestrator),
    gateway=Depends(get_gateway),
):
    """
    Cancel a pending or running job.

    A running job stops before its next URL; the attempt in flight finishes.

    Raises:
        HTTPException: 404 for unknown jobs, 409 for jobs already finished
    """
    job = await gateway.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    # a pending job may start processing between the read and the write
    for _ in range(2):
        if not job.can_transition(JobStatus.CANCELLED):
            raise HTTPException(
                status_code=409, detail=f"Job is already {job.status.value}"
            )
        loaded_status = job.status
        job.transition_to(JobStatus.CANCELLED)
        if await gateway.transition_job(
            job_id, loaded_status, {"status": job.status, "completed_at": job.completed_at}
        ):
            orchestrator.request_cancel(job_id)
            return job
        job = await gateway.get_job(job_id)
    raise HTTPException(status_code=409, detail=f"Job is already {job.status.value}")


@app.get("/scraper/products", dependencies=[Depends(get_api_key)])
@limiter.limit(READ_RATE_LIMIT)
async def list_products(
    request: Request,
    platform: Optional[Platform] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    gateway=Depends(get_gateway),
):
    docs = await gateway.list_products(platform=platform, limit=limit, offset=offset)
    return {"results": docs}


# Run uvicorn externally or here
if __name__ == "__main__":
    import uvicorn

    uvicorn.run("api.main:app", host="0.0.0.0", port=API_PORT, reload=True)
