# tests/conftest.py
import sys
import os

ROOT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
sys.path.insert(0, ROOT_DIR)

os.environ.setdefault("API_KEY", "testapikey")

from datetime import datetime, timedelta, timezone

from bson import ObjectId
import pytest
from typing import List, Dict, Any
from httpx import ASGITransport, AsyncClient
from fastapi import Request, HTTPException

from api.main import app, get_api_key, get_gateway, get_orchestrator
from scraper.db import MongoGateway
from scraper.orchestrator import BatchOrchestrator
from scraper.retry import RetryController
from scraper.strategies import build_chain
from fakes import FakeFetcher, FakeRenderer, RecordingSleep, AMAZON_STATIC_HTML


def _matches(doc, q):
    """
    Check a document against a MongoDB-style filter.

    Supports exact matches plus the ``$gte``, ``$lte`` and ``$lt`` operators,
    which is all the gateway issues. Missing fields fail operator checks.
    """
    for k, v in (q or {}).items():
        docv = doc.get(k)
        if isinstance(v, dict):
            if docv is None:
                return False
            if "$gte" in v and docv < v["$gte"]:
                return False
            if "$lte" in v and docv > v["$lte"]:
                return False
            if "$lt" in v and not docv < v["$lt"]:
                return False
        elif docv != v:
            return False
    return True


class FakeCursor:
    def __init__(self, docs: List[Dict[str, Any]]):
        self._docs = list(docs)
        self._skip = 0
        self._limit = None

    def sort(self, order):
        """Sort on the first (field, direction) pair only, like the tests need."""
        field, direction = order[0]
        self._docs.sort(key=lambda d: d.get(field), reverse=(direction < 0))
        return self

    def skip(self, n: int):
        self._skip = n
        return self

    def limit(self, n: int):
        self._limit = n
        return self

    async def to_list(self, length: int):
        start = self._skip
        end = None if self._limit is None else start + self._limit
        return [dict(d) for d in self._docs[start:end]]


class _UpdateResult:
    def __init__(self, matched, modified, upserted_id=None):
        self.matched_count = matched
        self.modified_count = modified
        self.upserted_id = upserted_id


class FakeCollection:
    """
    In-memory stand-in for a Motor collection.

    Implements the subset of the Motor API the gateway uses: find_one, find
    (with sort/skip/limit), insert_one, update_one (with upsert),
    update_many and count_documents. Only the ``$set`` update operator is
    supported.
    """

    def __init__(self, docs=None):
        self.docs = list(docs or [])
        for d in self.docs:
            if "_id" not in d:
                d["_id"] = str(ObjectId())

    async def find_one(self, q):
        for d in self.docs:
            if _matches(d, q):
                return dict(d)
        return None

    def find(self, q=None):
        return FakeCursor([d for d in self.docs if _matches(d, q)])

    async def insert_one(self, doc):
        doc = dict(doc)
        if "_id" not in doc:
            doc["_id"] = str(ObjectId())
        self.docs.append(doc)

        class R:
            inserted_id = doc["_id"]

        return R()

    async def update_one(self, q, u, upsert=False):
        """
        Apply ``$set`` to the first matching document.

        With ``upsert=True`` and no match, a new document is built from the
        equality parts of the filter plus the ``$set`` fields.
        """
        for sd in self.docs:
            if _matches(sd, q):
                sd.update(u.get("$set", {}))
                return _UpdateResult(1, 1)
        if upsert:
            doc = {k: v for k, v in q.items() if not isinstance(v, dict)}
            doc.update(u.get("$set", {}))
            await self.insert_one(doc)
            return _UpdateResult(0, 0, doc.get("_id"))
        return _UpdateResult(0, 0)

    async def update_many(self, q, u):
        modified = 0
        for sd in self.docs:
            if _matches(sd, q):
                sd.update(u.get("$set", {}))
                modified += 1
        return _UpdateResult(modified, modified)

    async def count_documents(self, q=None):
        return sum(1 for d in self.docs if _matches(d, q))


class FakeDB:
    def __init__(self, scraped_products=None, scraping_jobs=None):
        self.scraped_products = FakeCollection(scraped_products or [])
        self.scraping_jobs = FakeCollection(scraping_jobs or [])


@pytest.fixture
def sample_jobs():
    """
    Three stored jobs: an old stuck ``processing`` job, a recent
    ``processing`` job and a ``completed`` Amazon job.
    """
    now = datetime.now(timezone.utc)
    base = {
        "owner": "admin",
        "processed_urls": 0,
        "successful_scrapes": 0,
        "failed_scrapes": 0,
        "imported_products": 0,
        "settings": {},
        "results": [],
        "completed_at": None,
        "error_message": None,
    }
    return [
        {
            **base,
            "_id": "job-stuck",
            "urls": ["https://shop.example.com/a"],
            "platform": "generic",
            "total_urls": 1,
            "status": "processing",
            "created_at": now - timedelta(minutes=30),
        },
        {
            **base,
            "_id": "job-running",
            "urls": ["https://shop.example.com/b"],
            "platform": "generic",
            "total_urls": 1,
            "status": "processing",
            "created_at": now - timedelta(minutes=1),
        },
        {
            **base,
            "_id": "job-done",
            "urls": ["https://www.amazon.com/dp/B000123456"],
            "platform": "amazon",
            "total_urls": 1,
            "processed_urls": 1,
            "successful_scrapes": 1,
            "status": "completed",
            "created_at": now - timedelta(minutes=5),
            "completed_at": now - timedelta(minutes=4),
        },
    ]


@pytest.fixture
def fake_db(sample_jobs):
    return FakeDB(scraping_jobs=sample_jobs)


@pytest.fixture
def gateway(fake_db):
    return MongoGateway(db=fake_db)


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def orchestrator(gateway, recording_sleep):
    """
    Orchestrator wired to fake capabilities.

    Every browser navigation fails with a non-retryable error, so extraction
    always falls through to the static fetch, which serves the Amazon
    fixture page for every URL.
    """
    renderer = FakeRenderer(nav_error=RuntimeError("net::ERR_NAME_NOT_RESOLVED"))
    fetcher = FakeFetcher(default=AMAZON_STATIC_HTML)
    chain = build_chain(renderer, fetcher, sleep=recording_sleep)
    controller = RetryController(chain, sleep=recording_sleep)
    return BatchOrchestrator(controller, gateway=gateway, sleep=recording_sleep)


@pytest.fixture
async def client(gateway, orchestrator):
    """
    Async test client with the fake gateway, fake orchestrator and a fake
    API key check that accepts only "testapikey".
    """

    async def fake_get_api_key(request: Request):
        key = request.headers.get("x-api-key") or request.headers.get("X-API-Key")
        if key != "testapikey":
            raise HTTPException(status_code=401, detail="Unauthorized")
        return key

    app.dependency_overrides[get_api_key] = fake_get_api_key
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
