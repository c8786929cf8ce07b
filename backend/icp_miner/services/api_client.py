# backend/icp_miner/services/api_client.py
"""
Thin JSON-over-HTTP client shared by the collaborator integrations
(finder search, email generation, deliverability validation).
"""

import logging
from typing import Any, Dict, Optional

import httpx

from icp_miner.exceptions import CollaboratorError

logger = logging.getLogger(__name__)


class ApiClient:
    """POSTs JSON, raises on HTTP errors and on ``{"success": false}`` bodies."""

    collaborator = "api"

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        # Injected in tests (httpx.MockTransport)
        self.transport = transport

    def _build_headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Cache-Control": "no-cache",
        }
        if self.api_key:
            headers["X-Api-Key"] = self.api_key
        return headers

    def _error(self, message: str) -> CollaboratorError:
        return CollaboratorError(self.collaborator, message)

    async def post(self, path: str, payload: Dict[str, Any], unwrap: bool = True) -> Any:
        """
        POST ``payload`` to ``path`` and return the unwrapped response body.

        ``{"success": true, "data": {...}}`` envelopes are unwrapped to ``data``
        unless ``unwrap`` is False.
        """
        url = f"{self.base_url}/{path.lstrip('/')}" if path else self.base_url

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            response = await client.post(url, json=payload, headers=self._build_headers())
            response.raise_for_status()
            body = response.json()

        if isinstance(body, dict):
            if body.get("success") is False:
                error = body.get("error")
                if isinstance(error, dict):
                    error = error.get("message")
                raise self._error(error or "request failed")
            if unwrap and body.get("data") is not None:
                return body["data"]

        return body
