# api/rate_limit.py
import os

from dotenv import load_dotenv
from fastapi import FastAPI
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

load_dotenv()
# endpoints that send requests to third-party stores
SCRAPE_RATE_LIMIT = os.getenv("SCRAPE_RATE_LIMIT", "30/hour")
# validation, job and product lookups
READ_RATE_LIMIT = os.getenv("READ_RATE_LIMIT", "100/hour")

limiter = Limiter(key_func=get_remote_address)


def register_rate_limit(app: FastAPI):
    """Attach the slowapi limiter to the app and answer 429 when it trips."""
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
