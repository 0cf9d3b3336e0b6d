"""
Upload ingestion pipeline.

A request passes a fixed sequence of gates: authenticate, validate category,
validate compression, stage every part, commit the batch. The first failing
gate raises ``UploadError`` and nothing from the batch becomes visible.
"""

from __future__ import annotations

import asyncio
import hmac
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence
from urllib.parse import quote

from .asset_store import (
    AssetExistsError,
    AssetStore,
    ClientStreamError,
    FilePart,
    is_plain_filename,
)
from .categories import CategoryConfig, CategoryTable
from .responses import ResponseCode, UploadError, not_implemented, request_timed_out

logger = logging.getLogger(__name__)

API_BASE_URL = "/picup"


@dataclass(frozen=True)
class UploadParams:
    access_token: Optional[str]
    category: Optional[str]
    override: bool = False
    compress: int = 0


def asset_url(url_prefix: str, category: str, filename: str) -> str:
    return f"{url_prefix}{API_BASE_URL}/asset/{category}/{quote(filename, safe='')}"


def token_matches(supplied: Optional[str], expected: str) -> bool:
    if supplied is None:
        return False
    return hmac.compare_digest(supplied.encode("utf-8"), expected.encode("utf-8"))


class IngestionPipeline:
    def __init__(
        self,
        store: AssetStore,
        categories: CategoryTable,
        access_token: str,
        url_prefix: str,
    ):
        self.store = store
        self.categories = categories
        self.access_token = access_token
        self.url_prefix = url_prefix

    def authorize(self, params: UploadParams) -> CategoryConfig:
        """Run the request-level gates and return the target category policy."""
        if not token_matches(params.access_token, self.access_token):
            raise UploadError(ResponseCode.INVALID_TOKEN, "invalid token")
        category = self.categories.get(params.category) if params.category else None
        if category is None:
            raise UploadError(ResponseCode.INVALID_CATEGORY, "invalid category")
        if params.compress != 0:
            raise not_implemented("compress")
        return category

    async def run(
        self,
        params: UploadParams,
        parts: Sequence[FilePart],
        deadline: Optional[float] = None,
    ) -> List[str]:
        """
        Validate, stage and commit ``parts``.

        ``deadline`` (event loop time) bounds staging only; once the batch is
        staged the commit always runs to completion.

        Returns:
            One public URL per part, in input order

        Raises:
            UploadError: The first gate that failed
        """
        category = self.authorize(params)
        async with self.store.staging() as scratch:
            try:
                async with asyncio.timeout_at(deadline):
                    filenames = await self._stage_all(scratch, category, params.override, parts)
            except TimeoutError as exc:
                raise request_timed_out() from exc
            commit = asyncio.create_task(
                self._commit(scratch, category.name, filenames, params.override)
            )
            try:
                await asyncio.shield(commit)
            except asyncio.CancelledError:
                # A fully staged batch commits even if the request goes away;
                # scratch must outlive the renames.
                await asyncio.wait([commit])
                if not commit.cancelled() and commit.exception() is not None:
                    logger.error(f"Commit after cancellation failed: {commit.exception()}")
                raise
        return [asset_url(self.url_prefix, category.name, name) for name in filenames]

    async def _stage_all(
        self,
        scratch: Path,
        category: CategoryConfig,
        override: bool,
        parts: Sequence[FilePart],
    ) -> List[str]:
        staged: List[str] = []
        for index, part in enumerate(parts, start=1):
            filename = part.filename
            if not is_plain_filename(filename):
                raise UploadError(
                    ResponseCode.BAD_FILE_NAME,
                    f"invalid file name, file no: {index}",
                )
            if not category.accepts(part.content_type):
                raise UploadError(ResponseCode.NOT_AN_IMAGE, f"not a image: {filename}")
            if filename in staged:
                raise UploadError(ResponseCode.FILE_EXISTED, f"duplicate file in batch: {filename}")
            try:
                existed = await self.store.exists(category.name, filename)
            except OSError as exc:
                logger.error(f"Existence check failed for {category.name}/{filename}: {exc}")
                raise UploadError(ResponseCode.INTERNAL_ERROR, "internal file system error") from exc
            if existed and not override:
                raise UploadError(ResponseCode.FILE_EXISTED, f"file existed: {filename}")
            try:
                size = await self.store.stage(scratch, filename, part)
            except ClientStreamError as exc:
                raise UploadError(ResponseCode.BAD_FILE, str(exc)) from exc
            except OSError as exc:
                logger.error(f"Staging {filename} failed: {exc}")
                raise UploadError(ResponseCode.INTERNAL_ERROR, "internal file system error") from exc
            logger.debug(f"Staged {filename} ({size} bytes) for category '{category.name}'")
            staged.append(filename)
        return staged

    async def _commit(
        self,
        scratch: Path,
        category: str,
        filenames: List[str],
        override: bool,
    ) -> None:
        try:
            await self.store.commit(scratch, category, filenames, override)
        except AssetExistsError as exc:
            raise UploadError(ResponseCode.FILE_EXISTED, f"file existed: {exc.filename}") from exc
        except OSError as exc:
            logger.exception(f"Commit into category '{category}' failed")
            raise UploadError(ResponseCode.INTERNAL_ERROR, "internal file system error") from exc
