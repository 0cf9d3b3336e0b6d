"""HTTP client for pushing files to a PicUp server and fetching them back."""

from __future__ import annotations

import logging
import mimetypes
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import quote

import httpx

logger = logging.getLogger(__name__)

API_BASE_URL = "/picup"
DEFAULT_API_URL = "http://127.0.0.1:19190"


class PicupError(Exception):
    """The server answered with a non-zero envelope code."""

    def __init__(self, code: int, msg: str):
        super().__init__(msg)
        self.code = code
        self.msg = msg


class PicupClient:
    """Thin wrapper around the ``/picup`` HTTP API."""

    def __init__(self, base_url: str = DEFAULT_API_URL, token: str = "", timeout: float = 30.0):
        """
        Initialize the client.

        Args:
            base_url: Server URL without the ``/picup`` prefix
            token: Shared access token
            timeout: HTTP request timeout in seconds
        """
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout

    async def upload(
        self,
        paths: Sequence[Path | str],
        category: str,
        override: bool = False,
        compress: int = 0,
    ) -> List[str]:
        """
        Upload files as one batch.

        Args:
            paths: Local files, sent in order
            category: Target category
            override: Replace files that already exist on the server
            compress: Reserved; the server only accepts 0

        Returns:
            Public URLs of the uploaded files, in input order

        Raises:
            PicupError: The server rejected the batch
            httpx.HTTPError: Transport failure
        """
        params = {
            "access_token": self.token,
            "category": category,
            "override": "true" if override else "false",
            "compress": str(compress),
        }
        handles = []
        files = []
        try:
            for raw in paths:
                path = Path(raw)
                content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
                handle = open(path, "rb")
                handles.append(handle)
                files.append(("file", (path.name, handle, content_type)))

            async with httpx.AsyncClient() as client:
                response = await client.post(
                    f"{self.base_url}{API_BASE_URL}/upload",
                    params=params,
                    files=files,
                    timeout=self.timeout,
                )
        finally:
            for handle in handles:
                handle.close()

        envelope = self._envelope(response)
        if envelope.get("code") != 0:
            logger.error(f"Upload rejected with code {envelope.get('code')}: {envelope.get('msg')}")
            raise PicupError(int(envelope.get("code", -1)), str(envelope.get("msg", "")))
        urls = envelope.get("data") or []
        logger.info(f"Uploaded {len(urls)} file(s) to category '{category}'")
        return list(urls)

    async def fetch(self, category: str, filename: str) -> Optional[bytes]:
        """Download a committed asset; None when the server reports not found."""
        url = f"{self.base_url}{API_BASE_URL}/asset/{quote(category, safe='')}/{quote(filename, safe='')}"
        async with httpx.AsyncClient() as client:
            response = await client.get(url, timeout=self.timeout)
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return response.content

    @staticmethod
    def _envelope(response: httpx.Response) -> Dict[str, Any]:
        try:
            payload = response.json()
        except ValueError as exc:
            raise PicupError(-1, f"server returned {response.status_code}: {response.text}") from exc
        if not isinstance(payload, dict):
            raise PicupError(-1, f"unexpected response body: {payload!r}")
        return payload
