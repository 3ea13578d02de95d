"""Backend HTTP API client for RoadSync."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

import aiohttp

from ..config import SyncConfig
from .errors import BackendRequestError, StoreUnreachableError
from .models import RecordKind, SyncableRecord

logger = logging.getLogger(__name__)


class BackendClient:
    """
    Client for the authoritative backend.

    The base URL is resolved lazily: `ping()` tries each configured candidate
    against the status endpoint and remembers the first one that answers.
    """

    def __init__(self, config: SyncConfig) -> None:
        """Initialize backend client.

        Args:
            config: Application configuration
        """
        self.config = config
        self.candidates = config.backend_candidates
        self.session: Optional[aiohttp.ClientSession] = None
        self._resolved_url: Optional[str] = None

    @property
    def base_url(self) -> str:
        """Resolved backend URL, or the configured one before any probe."""
        return self._resolved_url or self.config.backend_url

    @property
    def headers(self) -> Dict[str, str]:
        """Get request headers with authentication."""
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if self.config.backend_token:
            headers["Authorization"] = f"Bearer {self.config.backend_token}"
        return headers

    async def start(self) -> None:
        """Open the HTTP session."""
        if not self.session:
            timeout = aiohttp.ClientTimeout(total=self.config.request_timeout_seconds)
            self.session = aiohttp.ClientSession(timeout=timeout, headers=self.headers)
            logger.info("Backend client started")

    async def stop(self) -> None:
        """Close the HTTP session."""
        if self.session:
            await self.session.close()
            self.session = None
            logger.info("Backend client stopped")

    async def _ensure_session(self) -> aiohttp.ClientSession:
        """Ensure session is available."""
        if not self.session:
            await self.start()
        if self.session is None:
            raise StoreUnreachableError("backend", "HTTP session could not be opened")
        return self.session

    def reset_resolution(self) -> None:
        """Forget the resolved URL so the next ping walks the candidates again."""
        self._resolved_url = None

    async def ping(self) -> bool:
        """Return True if any candidate URL answers the status endpoint with 2xx."""
        session = await self._ensure_session()
        timeout = aiohttp.ClientTimeout(total=self.config.probe_timeout_seconds)

        for url in self.candidates:
            logger.debug(f"Probing backend at {url}")
            try:
                async with session.get(
                    f"{url}{self.config.backend_status_path}", timeout=timeout
                ) as response:
                    if 200 <= response.status < 300:
                        if self._resolved_url != url:
                            logger.info(f"Backend resolved to {url}")
                        self._resolved_url = url
                        return True
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                logger.debug(f"Backend probe failed for {url}: {e}")

        logger.warning("No backend candidate reachable")
        self._resolved_url = None
        return False

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        """Make an API request.

        Raises:
            BackendRequestError: On a non-2xx answer
            StoreUnreachableError: On timeout or transport failure
        """
        session = await self._ensure_session()
        url = f"{self.base_url}{path}"

        try:
            async with session.request(method, url, **kwargs) as response:
                if response.status == 204:
                    return None

                if response.status >= 400:
                    message = ""
                    try:
                        data = await response.json()
                        if isinstance(data, dict):
                            message = str(data.get("error") or data.get("message") or "")
                    except (aiohttp.ContentTypeError, ValueError):
                        message = await response.text()
                    logger.error(f"Backend error: {response.status} {method} {path} {message}")
                    raise BackendRequestError(response.status, message)

                return await response.json()

        except asyncio.TimeoutError:
            logger.error(f"Request timeout for {url}")
            raise StoreUnreachableError("backend", f"timeout on {method} {path}")
        except aiohttp.ClientError as e:
            logger.error(f"Request failed for {url}: {e}")
            raise StoreUnreachableError("backend", str(e))

    def _record_body(self, record: SyncableRecord) -> Dict[str, Any]:
        return {
            "record_id": record.record_id,
            "kind": record.kind.value,
            "owner_account_id": record.owner_account_id,
            "payload": record.payload,
            "source": record.source.value,
            "created_at": record.created_at.isoformat() if record.created_at else None,
        }

    async def create_record(self, record: SyncableRecord) -> Dict[str, Any]:
        """POST a new record; returns the backend representation."""
        result = await self._request("POST", "/records", json=self._record_body(record))
        return result or {}

    async def upsert_record(self, record: SyncableRecord) -> Dict[str, Any]:
        """
        POST a record the backend upserts by its record_id.

        Returns:
            Backend answer, `{"id": ..., "created": bool}`
        """
        body = self._record_body(record)
        body["upsert"] = True
        result = await self._request("POST", "/records", json=body)
        return result or {}

    async def list_records(
        self, kind: Optional[RecordKind] = None, **filters: Any
    ) -> List[Dict[str, Any]]:
        """GET records matching the filters."""
        params = {key: str(value) for key, value in filters.items() if value is not None}
        if kind is not None:
            params["kind"] = kind.value
        result = await self._request("GET", "/records", params=params)
        return result if isinstance(result, list) else []

    async def update_record(self, backend_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        """PATCH a record by its backend id."""
        result = await self._request("PATCH", f"/records/{backend_id}", json=patch)
        return result or {}
