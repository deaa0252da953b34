"""Credentials for the live-generation endpoint."""

import asyncio
import logging
import re
from typing import Dict, Optional
from urllib.parse import urlencode

from google.auth.transport.requests import Request
from google.oauth2 import service_account

from ..errors import InterviewLiveError

logger = logging.getLogger(__name__)

API_KEY_PATTERN = re.compile(r"^AIza[0-9A-Za-z_\-]{35}$")
SCOPES = ["https://www.googleapis.com/auth/generative-language"]


def is_valid_api_key_format(api_key: str) -> bool:
    return bool(api_key and API_KEY_PATTERN.match(api_key))


class LiveCredentials:
    """API key or service-account credentials.

    An API key travels as the ``key`` query parameter; a service account
    yields an OAuth bearer token refreshed on demand.
    """

    def __init__(self, api_key: Optional[str] = None, credentials_path: Optional[str] = None):
        if not api_key and not credentials_path:
            raise InterviewLiveError("An API key or a service account credentials path is required",
                                     code="AUTHENTICATION_FAILED", recoverable=False)
        if api_key and not is_valid_api_key_format(api_key):
            raise InterviewLiveError("Invalid API key format", code="API_KEY_INVALID", recoverable=False)
        self.api_key = api_key
        self.credentials_path = credentials_path
        self._credentials = None
        if not api_key:
            logger.info(f"Loading Google credentials from: {credentials_path}")
            self._credentials = service_account.Credentials.from_service_account_file(
                credentials_path, scopes=SCOPES)

    def build_url(self, endpoint: str, model: str) -> str:
        params = {"model": model}
        if self.api_key:
            params["key"] = self.api_key
        separator = "&" if "?" in endpoint else "?"
        return f"{endpoint}{separator}{urlencode(params)}"

    async def headers(self) -> Dict[str, str]:
        if self._credentials is None:
            return {}
        if not self._credentials.valid:
            logger.debug("Refreshing service account access token")
            await asyncio.to_thread(self._credentials.refresh, Request())
        return {"Authorization": f"Bearer {self._credentials.token}"}
