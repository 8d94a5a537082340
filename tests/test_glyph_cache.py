import asyncio

import httpx
import pytest

from noteforge.errors import NetworkError
from noteforge.processing.glyph_cache import GlyphCache, twemoji_filename

BASE_URL = "https://cdn.example.test/72x72/"


@pytest.mark.parametrize(
    "token, expected",
    [
        ("\U0001F44D", "1f44d.png"),
        ("\u2764\ufe0f", "2764.png"),
        ("\U0001F468\u200d\U0001F4BB", "1f468-200d-1f4bb.png"),
        ("\U0001F3F3\ufe0f\u200d\U0001F308", "1f3f3-fe0f-200d-1f308.png"),
        ("\U0001F44D\U0001F3FD", "1f44d-1f3fd.png"),
    ],
)
def test_twemoji_filename(token, expected):
    assert twemoji_filename(token) == expected


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def test_miss_downloads_once_then_hits_cache(tmp_path):
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(str(request.url))
        return httpx.Response(200, content=b"PNG")

    async def scenario():
        async with _client(handler) as client:
            cache = GlyphCache(str(tmp_path), BASE_URL, client=client)
            first = await cache.resolve("\U0001F44D")
            second = await cache.resolve("\U0001F44D")
            return first, second

    first, second = asyncio.run(scenario())
    assert first == second
    assert first.name == "1f44d.png"
    assert first.read_bytes() == b"PNG"
    assert requests == [BASE_URL + "1f44d.png"]


def test_existing_file_is_never_refetched(tmp_path):
    (tmp_path / "1f44d.png").write_bytes(b"OLD")

    def handler(request):
        raise AssertionError("should not fetch")

    async def scenario():
        async with _client(handler) as client:
            return await GlyphCache(str(tmp_path), BASE_URL, client=client).resolve("\U0001F44D")

    assert asyncio.run(scenario()).read_bytes() == b"OLD"


def test_http_error_status_raises_network_error_and_caches_nothing(tmp_path):
    def handler(request):
        return httpx.Response(404)

    async def scenario():
        async with _client(handler) as client:
            await GlyphCache(str(tmp_path), BASE_URL, client=client).resolve("\U0001F44D")

    with pytest.raises(NetworkError):
        asyncio.run(scenario())
    assert list(tmp_path.iterdir()) == []


def test_transport_failure_raises_network_error(tmp_path):
    def handler(request):
        raise httpx.ConnectError("offline", request=request)

    async def scenario():
        async with _client(handler) as client:
            await GlyphCache(str(tmp_path), BASE_URL, client=client).resolve("\U0001F44D")

    with pytest.raises(NetworkError):
        asyncio.run(scenario())


def test_base_url_without_trailing_slash(tmp_path):
    seen = []

    def handler(request):
        seen.append(str(request.url))
        return httpx.Response(200, content=b"PNG")

    async def scenario():
        async with _client(handler) as client:
            await GlyphCache(str(tmp_path), BASE_URL.rstrip("/"), client=client).resolve("\u2764\ufe0f")

    asyncio.run(scenario())
    assert seen == [BASE_URL + "2764.png"]
