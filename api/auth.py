# api/auth.py
import os
import secrets

from dotenv import load_dotenv
from fastapi import HTTPException, Security
from fastapi.security.api_key import APIKeyHeader

load_dotenv()
API_KEY = os.getenv("API_KEY")
APIKEY_NAME = "X-API-Key"
api_key_header = APIKeyHeader(name=APIKEY_NAME, auto_error=False)


async def get_api_key(api_key_header: str = Security(api_key_header)):
    """
    Validate the X-API-Key header for the scraper endpoints.

    Scraping triggers outbound traffic to third-party stores, so an unset
    API_KEY locks every endpoint instead of leaving them open.

    Raises:
        HTTPException: 401 if the header is missing, 403 if it does not
            match API_KEY or no API_KEY is configured
    """
    if not api_key_header:
        raise HTTPException(status_code=401, detail="Missing API Key")
    if not API_KEY or not secrets.compare_digest(api_key_header, API_KEY):
        raise HTTPException(status_code=403, detail="Forbidden")
    return api_key_header
