"""Process-wide emoji image cache, downloading on miss.

Entries are keyed by twemoji's canonical file name and never invalidated.
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

import httpx

from noteforge.errors import NetworkError

logger = logging.getLogger(__name__)

ZWJ = "\u200d"
VS16 = "\ufe0f"


def twemoji_filename(token: str) -> str:
    """Canonical asset name, e.g. ``1f44d.png`` or ``1f468-200d-1f4bb.png``.

    Twemoji drops the emoji variation selector unless the sequence is
    ZWJ-joined.
    """
    if ZWJ not in token:
        token = token.replace(VS16, "")
    return "-".join(f"{ord(ch):x}" for ch in token) + ".png"


class GlyphCache:
    def __init__(
        self,
        cache_dir: str,
        base_url: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ):
        self.cache_dir = Path(cache_dir).resolve()
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.base_url = base_url if base_url.endswith("/") else base_url + "/"
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout, follow_redirects=True)
        return self._client

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    def path_for(self, token: str) -> Path:
        return self.cache_dir / twemoji_filename(token)

    def lookup(self, token: str) -> Optional[Path]:
        path = self.path_for(token)
        return path if path.exists() else None

    async def resolve(self, token: str) -> Path:
        """Return the local image for ``token``, fetching it first if needed.

        Raises:
            NetworkError: the asset could not be downloaded.
        """
        cached = self.lookup(token)
        if cached is not None:
            return cached

        path = self.path_for(token)
        url = self.base_url + path.name
        try:
            response = await self._get_client().get(url)
        except httpx.HTTPError as e:
            raise NetworkError(f"Failed to download {url}: {e}") from e
        if response.status_code != 200:
            raise NetworkError(f"Failed to download {url}: HTTP {response.status_code}")

        self._write(path, response.content)
        logger.debug(f"Cached {token!r} as {path.name}")
        return path

    def _write(self, path: Path, content: bytes) -> None:
        # Concurrent fetches of the same token may race here; last rename wins
        # and both write identical bytes.
        fd, tmp_path = tempfile.mkstemp(dir=self.cache_dir, suffix=".part")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(content)
            os.replace(tmp_path, path)
        except OSError:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise
