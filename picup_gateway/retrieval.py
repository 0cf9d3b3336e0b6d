from __future__ import annotations

import logging
from typing import AsyncIterator, Optional

from .asset_store import AssetStore, is_plain_filename
from .categories import CategoryTable

logger = logging.getLogger(__name__)

STREAM_CHUNK_SIZE = 64 * 1024


class AssetStream:
    """An opened asset; iterate it once, or ``aclose`` it without reading."""

    def __init__(self, handle):
        self._handle = handle
        self._closed = False

    async def __aiter__(self) -> AsyncIterator[bytes]:
        try:
            while True:
                chunk = await self._handle.read(STREAM_CHUNK_SIZE)
                if not chunk:
                    break
                yield chunk
        finally:
            await self.aclose()

    async def aclose(self) -> None:
        if not self._closed:
            self._closed = True
            await self._handle.close()


class AssetRetriever:
    """Resolves ``(category, filename)`` to a byte stream, or None when not found."""

    def __init__(self, store: AssetStore, categories: CategoryTable):
        self.store = store
        self.categories = categories

    async def open_asset(self, category: str, filename: str) -> Optional[AssetStream]:
        if category not in self.categories or not is_plain_filename(filename):
            return None
        try:
            handle = await self.store.open(category, filename)
        except OSError as exc:
            logger.debug(f"Asset {category}/{filename} not available: {exc}")
            return None
        return AssetStream(handle)
