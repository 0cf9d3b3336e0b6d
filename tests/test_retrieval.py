import pytest

from picup_gateway.retrieval import AssetRetriever


async def _collect(stream):
    return b"".join([chunk async for chunk in stream])


@pytest.mark.asyncio
async def test_streams_committed_asset(store, categories):
    payload = bytes(range(256)) * 1024
    store.asset_path("images", "big.bin").write_bytes(payload)
    retriever = AssetRetriever(store, categories)

    stream = await retriever.open_asset("images", "big.bin")

    assert stream is not None
    assert await _collect(stream) == payload


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "category, filename",
    [
        ("unknown", "a.png"),
        ("images", "missing.png"),
        ("images", "../files/a.png"),
        ("images", ".."),
    ],
)
async def test_not_found_cases_return_none(store, categories, category, filename):
    store.asset_path("files", "a.png").write_bytes(b"x")
    retriever = AssetRetriever(store, categories)

    assert await retriever.open_asset(category, filename) is None


@pytest.mark.asyncio
async def test_unknown_category_hides_files_on_disk(store, categories, tmp_path):
    stray = store.category_dir("retired")
    stray.mkdir(parents=True)
    (stray / "a.png").write_bytes(b"x")
    retriever = AssetRetriever(store, categories)

    assert await retriever.open_asset("retired", "a.png") is None


@pytest.mark.asyncio
async def test_unread_stream_can_be_closed(store, categories, monkeypatch):
    class FakeHandle:
        closed = False

        async def read(self, size=-1):
            return b""

        async def close(self):
            self.closed = True

    handle = FakeHandle()

    async def fake_open(category, filename):
        return handle

    monkeypatch.setattr(store, "open", fake_open)
    retriever = AssetRetriever(store, categories)

    stream = await retriever.open_asset("images", "a.png")
    await stream.aclose()

    assert handle.closed is True
