"""
REST backend for bookmark rows.

Talks to a PostgREST-style endpoint (`{url}/rest/v1/{table}`) with the
blocking requests library, off-loaded to worker threads.
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

import requests

from core.models.bookmarks import Bookmark
from core.models.config import BackendConfig
from core.sync.errors import NetworkFailure

logger = logging.getLogger(__name__)


class RestBookmarkBackend:
    """
    Bookmark backend over HTTP.

    Every transport error, non-2xx status and undecodable body is raised as
    NetworkFailure so the gateway can report it uniformly.
    """

    def __init__(self, config: Optional[BackendConfig] = None, session: Optional[requests.Session] = None):
        self.config = config or BackendConfig()
        self._session = session or requests.Session()

        # Request tracking
        self._request_count = 0
        self._failed_requests = 0
        self._last_request_time: Optional[float] = None

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if self.config.api_key:
            headers["apikey"] = self.config.api_key
        token = self.config.access_token or self.config.api_key
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def _request(self, method: str, params: Optional[Dict[str, str]] = None,
                 json_body: Any = None, extra_headers: Optional[Dict[str, str]] = None) -> requests.Response:
        """Blocking request; runs in a worker thread"""
        headers = self._headers()
        if extra_headers:
            headers.update(extra_headers)

        self._request_count += 1
        self._last_request_time = time.time()

        try:
            response = self._session.request(
                method,
                self.config.rest_url,
                params=params,
                json=json_body,
                headers=headers,
                timeout=self.config.timeout
            )
        except requests.RequestException as e:
            self._failed_requests += 1
            raise NetworkFailure(f"{method} {self.config.rest_url} failed: {e}") from e

        if not response.ok:
            self._failed_requests += 1
            raise NetworkFailure(
                f"{method} {self.config.rest_url} returned {response.status_code}: {response.text[:200]}",
                status_code=response.status_code
            )
        return response

    @staticmethod
    def _decode_rows(response: requests.Response) -> List[Dict[str, Any]]:
        try:
            rows = response.json()
        except ValueError as e:
            raise NetworkFailure(f"Backend returned invalid JSON: {e}") from e
        if not isinstance(rows, list):
            raise NetworkFailure("Backend returned a non-list body")
        return rows

    @staticmethod
    def _to_bookmark(row: Any) -> Bookmark:
        try:
            return Bookmark.from_record(row)
        except (AttributeError, TypeError, ValueError) as e:
            raise NetworkFailure(f"Backend returned a malformed bookmark row: {e}") from e

    async def fetch_all(self, owner_id: str) -> List[Bookmark]:
        """Fetch every bookmark of an owner, newest first"""
        params = {
            "select": "*",
            "user_id": f"eq.{owner_id}",
            "order": "created_at.desc",
        }
        response = await asyncio.to_thread(self._request, "GET", params=params)
        rows = self._decode_rows(response)
        logger.debug(f"Fetched {len(rows)} bookmark rows for {owner_id}")
        return [self._to_bookmark(row) for row in rows]

    async def create(self, title: str, url: str, owner_id: str) -> Bookmark:
        """Insert a row and return the stored entity"""
        response = await asyncio.to_thread(
            self._request,
            "POST",
            json_body=[{"title": title, "url": url, "user_id": owner_id}],
            extra_headers={"Prefer": "return=representation"}
        )
        rows = self._decode_rows(response)
        if not rows:
            raise NetworkFailure("Backend returned no row for the created bookmark")
        return self._to_bookmark(rows[0])

    async def delete(self, bookmark_id: str) -> None:
        """Delete a row by id; deleting an absent id is not an error"""
        await asyncio.to_thread(self._request, "DELETE", params={"id": f"eq.{bookmark_id}"})

    async def health_check(self) -> bool:
        """Check whether the REST endpoint answers"""
        try:
            await asyncio.to_thread(self._request, "GET", params={"select": "id", "limit": "1"})
            return True
        except NetworkFailure as e:
            logger.warning(f"Backend health check failed: {e}")
            return False

    def get_stats(self) -> Dict[str, Any]:
        return {
            "url": self.config.rest_url,
            "requests": self._request_count,
            "failed_requests": self._failed_requests,
            "last_request_time": self._last_request_time,
        }

    def close(self) -> None:
        self._session.close()
