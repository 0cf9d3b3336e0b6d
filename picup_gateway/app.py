from __future__ import annotations

import asyncio
import logging
import mimetypes
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse
from starlette.datastructures import UploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException

from .asset_store import AssetStore, FilePart
from .categories import CategoryTable
from .pipeline import API_BASE_URL, IngestionPipeline, UploadParams
from .responses import ResponseCode, UploadError, not_implemented, request_timed_out, response_no, response_ok
from .retrieval import AssetRetriever

logger = logging.getLogger(__name__)


@dataclass
class GatewayConfig:
    access_token: str
    categories: CategoryTable
    storage_root: Path = Path("picup-data")
    url_prefix: str = "http://127.0.0.1:19190"
    host: str = "0.0.0.0"
    port: int = 19190
    request_timeout: float = 30.0
    max_body_size: int = 32 * 1024 * 1024 * 1024

    def resolved_root(self) -> Path:
        path = self.storage_root.resolve()
        path.mkdir(parents=True, exist_ok=True)
        return path


@dataclass
class GatewayState:
    config: GatewayConfig
    store: AssetStore
    pipeline: IngestionPipeline
    retriever: AssetRetriever


class _FieldPart:
    """A form field sent without a filename; it always fails the filename gate."""

    filename: Optional[str] = None
    content_type: Optional[str] = None

    async def read(self, size: int = -1) -> bytes:
        return b""


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token.strip()


def create_app(config: GatewayConfig) -> FastAPI:
    store = AssetStore(config.resolved_root())
    state = GatewayState(
        config=config,
        store=store,
        pipeline=IngestionPipeline(
            store,
            config.categories,
            access_token=config.access_token,
            url_prefix=config.url_prefix,
        ),
        retriever=AssetRetriever(store, config.categories),
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):  # noqa: ANN001
        store.ensure_layout(config.categories)
        logger.info(
            f"PicUp gateway serving categories {list(config.categories)} at {config.url_prefix}{API_BASE_URL}"
        )
        yield

    app = FastAPI(title="PicUp Gateway", version="0.1.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def trace_requests(request: Request, call_next):  # noqa: ANN001
        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info(f"{request.method} {request.url.path} -> {response.status_code} ({elapsed_ms:.1f} ms)")
        return response

    @app.exception_handler(UploadError)
    async def upload_error_handler(request: Request, exc: UploadError) -> JSONResponse:
        logger.warning(f"{request.method} {request.url.path} rejected: {exc.code.name} ({exc.msg})")
        return exc.to_response()

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        fields = ", ".join(".".join(str(p) for p in err.get("loc", ())) for err in exc.errors())
        return response_no(ResponseCode.BAD_REQUEST, f"invalid parameters: {fields}")

    def get_state() -> GatewayState:
        return state

    @app.post(f"{API_BASE_URL}/upload")
    async def upload(
        request: Request,
        state: GatewayState = Depends(get_state),
        access_token: Optional[str] = Query(None),
        category: Optional[str] = Query(None),
        override: bool = Query(False),
        compress: int = Query(0, ge=0),
        authorization: Optional[str] = Header(None),
    ) -> JSONResponse:
        params = UploadParams(
            access_token=access_token if access_token is not None else _bearer_token(authorization),
            category=category,
            override=override,
            compress=compress,
        )
        # Request-level gates run before the body is read.
        state.pipeline.authorize(params)

        declared = request.headers.get("content-length")
        if declared and declared.isdigit() and int(declared) > state.config.max_body_size:
            raise UploadError(ResponseCode.BAD_FILE, "request body too large", status_code=413)

        # The timeout covers body parsing and staging; a staged batch always commits.
        deadline = asyncio.get_running_loop().time() + state.config.request_timeout
        try:
            async with asyncio.timeout_at(deadline):
                form = await request.form()
        except TimeoutError as exc:
            raise request_timed_out() from exc
        except StarletteHTTPException as exc:
            raise UploadError(ResponseCode.BAD_FILE, f"bad multipart body: {exc.detail}") from exc
        try:
            parts: List[FilePart] = [
                value if isinstance(value, UploadFile) else _FieldPart()
                for _, value in form.multi_items()
            ]
            urls = await state.pipeline.run(params, parts, deadline=deadline)
        finally:
            await form.close()
        logger.info(f"Uploaded {len(urls)} file(s) to category '{category}'")
        return response_ok(urls)

    @app.get(f"{API_BASE_URL}/asset/{{category}}/{{filename}}")
    async def get_asset(
        category: str,
        filename: str,
        compress: int = Query(0, ge=0),
        state: GatewayState = Depends(get_state),
    ) -> Response:
        stream = await state.retriever.open_asset(category, filename)
        if stream is None:
            return Response(status_code=404)
        if compress != 0:
            await stream.aclose()
            return Response(status_code=501)
        media_type = mimetypes.guess_type(filename)[0] or "application/octet-stream"
        return StreamingResponse(stream, media_type=media_type)

    @app.get(f"{API_BASE_URL}/category/{{category}}")
    async def list_category(
        category: str,
        page: Optional[str] = Query(None),
        limit: Optional[str] = Query(None),
        precache: Optional[bool] = Query(None),
    ) -> JSONResponse:
        raise not_implemented()

    @app.get("/health")
    async def health_check(state: GatewayState = Depends(get_state)) -> JSONResponse:
        return JSONResponse(
            {
                "status": "healthy",
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "categories": list(state.config.categories),
            }
        )

    return app
