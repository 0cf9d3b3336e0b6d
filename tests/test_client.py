"""Tests for the upload client and CLI."""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from picup_client import cli
from picup_client.client import PicupClient, PicupError


@pytest.fixture
def picup_client():
    return PicupClient("http://127.0.0.1:19190/", token="baka", timeout=5.0)


@pytest.fixture
def image_files(tmp_path):
    first = tmp_path / "first.png"
    second = tmp_path / "second.jpg"
    first.write_bytes(b"png data")
    second.write_bytes(b"jpeg data")
    return [first, second]


def _mock_response(status_code, payload):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload
    return response


@pytest.mark.asyncio
async def test_upload_returns_urls(picup_client, image_files):
    urls = ["http://127.0.0.1:19190/picup/asset/images/first.png"]
    mock_response = _mock_response(200, {"code": 0, "msg": "ok", "data": urls})

    with patch("httpx.AsyncClient") as mock_client_class:
        mock_client = AsyncMock()
        mock_client.post.return_value = mock_response
        mock_client_class.return_value.__aenter__.return_value = mock_client

        result = await picup_client.upload(image_files, "images", override=True)

        assert result == urls
        call_args, call_kwargs = mock_client.post.call_args
        assert call_args[0] == "http://127.0.0.1:19190/picup/upload"
        assert call_kwargs["params"] == {
            "access_token": "baka",
            "category": "images",
            "override": "true",
            "compress": "0",
        }
        sent = call_kwargs["files"]
        assert [part[1][0] for part in sent] == ["first.png", "second.jpg"]
        assert [part[1][2] for part in sent] == ["image/png", "image/jpeg"]
        assert all(part[1][1].closed for part in sent)


@pytest.mark.asyncio
async def test_upload_raises_on_error_envelope(picup_client, image_files):
    mock_response = _mock_response(400, {"code": 1004, "msg": "file existed: first.png", "data": None})

    with patch("httpx.AsyncClient") as mock_client_class:
        mock_client = AsyncMock()
        mock_client.post.return_value = mock_response
        mock_client_class.return_value.__aenter__.return_value = mock_client

        with pytest.raises(PicupError) as exc_info:
            await picup_client.upload(image_files, "images")

        assert exc_info.value.code == 1004
        assert "first.png" in exc_info.value.msg


@pytest.mark.asyncio
async def test_upload_non_json_response(picup_client, image_files):
    mock_response = MagicMock()
    mock_response.status_code = 502
    mock_response.text = "Bad Gateway"
    mock_response.json.side_effect = ValueError("not json")

    with patch("httpx.AsyncClient") as mock_client_class:
        mock_client = AsyncMock()
        mock_client.post.return_value = mock_response
        mock_client_class.return_value.__aenter__.return_value = mock_client

        with pytest.raises(PicupError, match="502"):
            await picup_client.upload(image_files, "images")


@pytest.mark.asyncio
async def test_fetch_handles_not_found(picup_client):
    missing = MagicMock()
    missing.status_code = 404

    with patch("httpx.AsyncClient") as mock_client_class:
        mock_client = AsyncMock()
        mock_client.get.return_value = missing
        mock_client_class.return_value.__aenter__.return_value = mock_client

        assert await picup_client.fetch("images", "my pic.png") is None
        assert mock_client.get.call_args[0][0] == "http://127.0.0.1:19190/picup/asset/images/my%20pic.png"


def test_cli_prints_urls(image_files, capsys):
    urls = ["http://host/picup/asset/images/first.png", "http://host/picup/asset/images/second.jpg"]

    with patch.object(PicupClient, "upload", new=AsyncMock(return_value=urls)) as upload:
        code = cli.main(["-c", "images", "-t", "baka", "-o", *map(str, image_files)])

    assert code == 0
    assert capsys.readouterr().out.splitlines() == urls
    assert upload.call_args.kwargs["override"] is True


def test_cli_reports_server_error(image_files, capsys):
    failing = AsyncMock(side_effect=PicupError(1001, "invalid token"))

    with patch.object(PicupClient, "upload", new=failing):
        code = cli.main(["-c", "images", "-t", "wrong", str(image_files[0])])

    assert code == 1
    assert "invalid token" in capsys.readouterr().err


def test_cli_reports_transport_error(image_files, capsys):
    failing = AsyncMock(side_effect=httpx.ConnectError("refused"))

    with patch.object(PicupClient, "upload", new=failing):
        code = cli.main(["-c", "images", "-t", "baka", str(image_files[0])])

    assert code == 1
    assert "refused" in capsys.readouterr().err


def test_cli_rejects_missing_file(tmp_path, capsys):
    code = cli.main(["-c", "images", "-t", "baka", str(tmp_path / "nope.png")])

    assert code == 2
    assert "not a file" in capsys.readouterr().err
