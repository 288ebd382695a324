# scraper/models.py
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .errors import InvalidJobTransition


def utcnow():
    return datetime.now(timezone.utc)


class Platform(str, Enum):
    AMAZON = "amazon"
    ALIBABA = "alibaba"
    ALIEXPRESS = "aliexpress"
    EBAY = "ebay"
    WALMART = "walmart"
    SHOPIFY = "shopify"
    GENERIC = "generic"


class Availability(str, Enum):
    IN_STOCK = "in_stock"
    OUT_OF_STOCK = "out_of_stock"
    LIMITED_STOCK = "limited_stock"
    UNKNOWN = "unknown"


class Provenance(str, Enum):
    REAL = "real"
    SYNTHETIC = "synthetic"


class ResultStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self):
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


# from_status -> statuses it may move to; terminal statuses have none
JOB_TRANSITIONS = {
    JobStatus.PENDING: frozenset({JobStatus.PROCESSING, JobStatus.CANCELLED}),
    JobStatus.PROCESSING: frozenset(
        {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}
    ),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}


class ScrapedProduct(BaseModel):
    title: str
    description: str = ""
    price: Optional[float] = Field(None, ge=0)
    original_price: Optional[float] = Field(None, ge=0)
    currency: str = "USD"
    images: List[str] = Field(default_factory=list, max_length=10)
    rating: Optional[float] = Field(None, ge=0, le=5)
    review_count: Optional[int] = Field(None, ge=0)
    brand: str = ""
    category: str = ""
    availability: Availability = Availability.UNKNOWN
    source_url: str
    source_platform: Platform
    scraped_at: datetime = Field(default_factory=utcnow)
    specifications: Dict[str, str] = Field(default_factory=dict)
    discount_percentage: Optional[int] = None
    provenance: Provenance = Provenance.REAL
    strategy: Optional[str] = None


class ScrapingResult(BaseModel):
    url: str
    status: ResultStatus
    product: Optional[ScrapedProduct] = None
    error: Optional[str] = None
    scraped_at: datetime = Field(default_factory=utcnow)
    processing_time: int = 0  # ms
    provenance: Optional[Provenance] = None
    strategy: Optional[str] = None
    attempts: int = 0

    @classmethod
    def success(cls, url, product, processing_time, attempts=1):
        return cls(
            url=url,
            status=ResultStatus.SUCCESS,
            product=product,
            processing_time=processing_time,
            provenance=product.provenance,
            strategy=product.strategy,
            attempts=attempts,
        )

    @classmethod
    def failure(cls, url, error, processing_time=0, attempts=0):
        return cls(
            url=url,
            status=ResultStatus.FAILED,
            error=error,
            processing_time=processing_time,
            attempts=attempts,
        )

    @property
    def ok(self):
        return self.status == ResultStatus.SUCCESS


class UrlValidationResult(BaseModel):
    valid: bool
    platform: Optional[Platform] = None
    error: Optional[str] = None
    suggestions: List[str] = Field(default_factory=list)


class Progress(BaseModel):
    completed: int
    total: int
    current: Optional[str] = None


class ScrapeOverrides(BaseModel):
    """Per-call overrides layered on top of a platform's configuration."""

    headers: Optional[Dict[str, str]] = None
    delay: Optional[float] = Field(None, ge=0)  # seconds
    retries: Optional[int] = Field(None, ge=1)
    allow_synthetic: bool = True


class ScrapingJob(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    id: str
    urls: List[str]
    platform: Platform = Platform.GENERIC
    owner: Optional[str] = None
    total_urls: int = 0
    processed_urls: int = 0
    successful_scrapes: int = 0
    failed_scrapes: int = 0
    imported_products: int = 0
    status: JobStatus = JobStatus.PENDING
    settings: ScrapeOverrides = Field(default_factory=ScrapeOverrides)
    results: List[ScrapingResult] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None

    def can_transition(self, to_status):
        return to_status in JOB_TRANSITIONS[self.status]

    def transition_to(self, to_status, error_message=None):
        """
        Move the job to a new status, enforcing the one-directional lifecycle.

        Terminal statuses stamp ``completed_at``.

        Raises:
            InvalidJobTransition: If the move is not in JOB_TRANSITIONS
        """
        if not self.can_transition(to_status):
            raise InvalidJobTransition(
                self.status, to_status, JOB_TRANSITIONS[self.status]
            )
        self.status = to_status
        if error_message:
            self.error_message = error_message
        if to_status.is_terminal:
            self.completed_at = utcnow()

    def record(self, result):
        """Append one URL's result and bump the counters."""
        self.results.append(result)
        self.processed_urls += 1
        if result.ok:
            self.successful_scrapes += 1
        else:
            self.failed_scrapes += 1
