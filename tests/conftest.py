import io

import pytest
from PIL import Image

from picup_gateway.app import GatewayConfig
from picup_gateway.asset_store import AssetStore
from picup_gateway.categories import CategoryConfig, CategoryTable
from picup_gateway.pipeline import IngestionPipeline

TOKEN = "baka"
URL_PREFIX = "http://127.0.0.1:19190"


def png_bytes(color=(20, 30, 40)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (8, 8), color=color).save(buffer, format="PNG")
    return buffer.getvalue()


class FakePart:
    """Single-pass upload part fed from memory."""

    def __init__(self, filename, data=b"", content_type="image/png", fail_after=None):
        self.filename = filename
        self.content_type = content_type
        self._buffer = io.BytesIO(data)
        self._fail_after = fail_after
        self.reads = 0

    async def read(self, size=-1):
        if self._fail_after is not None and self.reads >= self._fail_after:
            raise ConnectionResetError("client went away")
        self.reads += 1
        return self._buffer.read(size)


@pytest.fixture
def categories():
    return CategoryTable(
        {
            "images": CategoryConfig("images", allow_non_image_content=False),
            "files": CategoryConfig("files", allow_non_image_content=True),
        }
    )


@pytest.fixture
def store(tmp_path, categories):
    asset_store = AssetStore(tmp_path / "data")
    asset_store.ensure_layout(categories)
    return asset_store


@pytest.fixture
def pipeline(store, categories):
    return IngestionPipeline(store, categories, access_token=TOKEN, url_prefix=URL_PREFIX)


@pytest.fixture
def gateway_config(tmp_path, categories):
    return GatewayConfig(
        access_token=TOKEN,
        categories=categories,
        storage_root=tmp_path / "gateway",
        url_prefix=URL_PREFIX,
        request_timeout=5.0,
    )
