"""
Content-addressed metadata storage over the IPFS HTTP API.

Certificate metadata (holder, institution, ...) is stored as a JSON blob
and referenced by its content identifier. Signing never depends on the
store; it only serves the surrounding issuance workflow.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

import httpx


logger = logging.getLogger(__name__)

DEFAULT_IPFS_URL = "http://localhost:5001"


class MetadataStoreError(Exception):
    """Raised when metadata cannot be stored or retrieved."""


@dataclass
class StoredMetadata:
    """A stored metadata blob."""

    cid: str
    size: int

    @property
    def uri(self) -> str:
        return f"ipfs://{self.cid}"


class MetadataStore:
    """Client for an IPFS node's HTTP API."""

    def __init__(
        self,
        api_url: str = DEFAULT_IPFS_URL,
        timeout: float = 30.0,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout

    def _post(self, path: str, **kwargs: Any) -> httpx.Response:
        url = f"{self.api_url}/api/v0/{path}"
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(url, **kwargs)
                response.raise_for_status()
                return response
        except httpx.HTTPStatusError as e:
            raise MetadataStoreError(
                f"HTTP error from IPFS at {url}: {e.response.status_code}"
            ) from e
        except httpx.RequestError as e:
            raise MetadataStoreError(f"Network error contacting IPFS: {e}") from e
        except httpx.InvalidURL as e:
            raise MetadataStoreError(f"Invalid IPFS URL {url!r}: {e}") from e

    def upload(self, data: Any) -> StoredMetadata:
        """Store a JSON-serializable value.

        Args:
            data: Value to store.

        Returns:
            StoredMetadata with the content identifier.

        Raises:
            MetadataStoreError: If the value cannot be stored.
        """
        try:
            blob = json.dumps(data, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
        except (TypeError, ValueError) as e:
            raise MetadataStoreError(f"Metadata is not JSON serializable: {e}") from e

        response = self._post(
            "add",
            files={"file": ("metadata.json", blob, "application/json")},
        )

        try:
            result = response.json()
            stored = StoredMetadata(cid=result["Hash"], size=int(result.get("Size", len(blob))))
        except (ValueError, KeyError, TypeError) as e:
            raise MetadataStoreError(f"Unexpected IPFS add response: {response.text}") from e

        logger.info("Stored metadata as %s", stored.uri)
        return stored

    def fetch(self, cid: str) -> Any:
        """Retrieve and parse a stored JSON value.

        Args:
            cid: Content identifier, with or without the ``ipfs://`` scheme.

        Raises:
            MetadataStoreError: If the blob is missing or not JSON.
        """
        if cid.startswith("ipfs://"):
            cid = cid[len("ipfs://"):]

        response = self._post("cat", params={"arg": cid})
        try:
            return response.json()
        except ValueError as e:
            raise MetadataStoreError(f"Content {cid} is not valid JSON") from e
