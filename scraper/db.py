# scraper/db.py
import os
import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol

from dotenv import load_dotenv
from motor.motor_asyncio import AsyncIOMotorClient
from pydantic import BaseModel

from .models import JobStatus, ScrapedProduct, ScrapingJob
from .utils import compute_hash_for_product

load_dotenv()

MONGO_URI = os.getenv("MONGO_URI", "mongodb://localhost:27017")
MONGO_DB = os.getenv("MONGO_DB", "product_scraper")
STUCK_JOB_MINUTES = int(os.getenv("STUCK_JOB_MINUTES", "10"))

STUCK_JOB_MESSAGE = "Job automatically marked as failed due to timeout"

_client = None
_db = None


def get_client():
    """Initialize and return the MongoDB AsyncIOMotorClient singleton."""
    global _client, _db
    if _client is None:
        _client = AsyncIOMotorClient(MONGO_URI)
        _db = _client[MONGO_DB]
    return _client


def get_db():
    """Return the MongoDB database instance, initializing if needed."""
    global _db
    if _db is None:
        get_client()
    return _db


class PersistenceGateway(Protocol):
    """What the pipeline needs from storage. Any backend will do."""

    async def store_product(self, product: ScrapedProduct, job_id: Optional[str] = None) -> str: ...

    async def create_job(self, urls, platform, owner, settings) -> ScrapingJob: ...

    async def update_job(self, job_id: str, fields: Dict[str, Any]) -> None: ...

    async def transition_job(
        self, job_id: str, from_status: JobStatus, fields: Dict[str, Any]
    ) -> bool: ...

    async def get_job(self, job_id: str) -> Optional[ScrapingJob]: ...

    async def list_jobs(self, status=None, platform=None, page=1, limit=20): ...

    async def list_products(self, platform=None, limit=50, offset=0) -> List[dict]: ...

    async def fail_stuck_jobs(self, older_than_minutes: int = STUCK_JOB_MINUTES) -> int: ...


def to_document(value):
    """Convert models, enums and containers into plain BSON-friendly values."""
    if isinstance(value, BaseModel):
        return to_document(value.model_dump())
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: to_document(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_document(v) for v in value]
    return value


def job_from_document(doc):
    if doc is None:
        return None
    doc = dict(doc)
    doc["id"] = str(doc.pop("_id"))
    return ScrapingJob.model_validate(doc)


class MongoGateway:
    """
    PersistenceGateway on MongoDB via Motor.

    Collections: ``scraped_products`` and ``scraping_jobs``.

    Args:
        db: Motor database; defaults to the process-wide get_db()
    """

    def __init__(self, db=None):
        self.db = db if db is not None else get_db()

    async def store_product(self, product, job_id=None):
        """
        Upsert a scraped product keyed by its content hash.

        Storing the same extraction twice keeps a single document.

        Returns:
            str: The product document id (the content hash)
        """
        doc = to_document(product)
        doc["content_hash"] = compute_hash_for_product(doc)
        doc["_id"] = doc["content_hash"]
        if job_id:
            doc["job_id"] = job_id
        await self.db.scraped_products.update_one(
            {"_id": doc["_id"]}, {"$set": doc}, upsert=True
        )
        return doc["_id"]

    async def create_job(self, urls, platform, owner=None, settings=None):
        job = ScrapingJob(
            id=uuid.uuid4().hex,
            urls=list(urls),
            platform=platform,
            owner=owner,
            total_urls=len(urls),
            settings=settings or {},
        )
        doc = to_document(job)
        doc["_id"] = doc.pop("id")
        await self.db.scraping_jobs.insert_one(doc)
        return job

    async def update_job(self, job_id, fields):
        await self.db.scraping_jobs.update_one(
            {"_id": job_id}, {"$set": to_document(fields)}
        )

    async def transition_job(self, job_id, from_status, fields):
        """
        Write ``fields`` only if the stored job is still in ``from_status``.

        The status check and the write are one update_one call, so a sweeper
        or a cancel request that finalised the job in the meantime wins.

        Returns:
            bool: True if the job was updated
        """
        result = await self.db.scraping_jobs.update_one(
            {"_id": job_id, "status": to_document(from_status)},
            {"$set": to_document(fields)},
        )
        return result.matched_count > 0

    async def get_job(self, job_id):
        return job_from_document(await self.db.scraping_jobs.find_one({"_id": job_id}))

    async def list_jobs(self, status=None, platform=None, page=1, limit=20):
        """
        Page through jobs, newest first.

        Returns:
            tuple[list[ScrapingJob], int]: The page of jobs and the total match count
        """
        q = {}
        if status:
            q["status"] = to_document(status)
        if platform:
            q["platform"] = to_document(platform)
        total = await self.db.scraping_jobs.count_documents(q)
        docs = (
            await self.db.scraping_jobs.find(q)
            .sort([("created_at", -1)])
            .skip((page - 1) * limit)
            .limit(limit)
            .to_list(length=limit)
        )
        return [job_from_document(d) for d in docs], total

    async def list_products(self, platform=None, limit=50, offset=0) -> List[dict]:
        q = {}
        if platform:
            q["source_platform"] = to_document(platform)
        return (
            await self.db.scraped_products.find(q)
            .sort([("scraped_at", -1)])
            .skip(offset)
            .limit(limit)
            .to_list(length=limit)
        )

    async def fail_stuck_jobs(self, older_than_minutes=STUCK_JOB_MINUTES):
        """
        Mark jobs stuck in ``processing`` for too long as failed.

        Returns:
            int: Number of jobs updated
        """
        cutoff = datetime.now(timezone.utc) - timedelta(minutes=older_than_minutes)
        result = await self.db.scraping_jobs.update_many(
            {"status": JobStatus.PROCESSING.value, "created_at": {"$lt": cutoff}},
            {
                "$set": {
                    "status": JobStatus.FAILED.value,
                    "completed_at": datetime.now(timezone.utc),
                    "error_message": STUCK_JOB_MESSAGE,
                }
            },
        )
        return result.modified_count
