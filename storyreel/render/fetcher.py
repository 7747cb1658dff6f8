"""Download remote media into a job workspace.

Every URL goes through the allowlist before any connection is opened. A
download either leaves exactly one complete file at the destination or
leaves nothing behind.
"""

import asyncio
import logging
import shutil
from pathlib import Path
from typing import Optional

import httpx

from storyreel.config import Settings, get_settings
from storyreel.exceptions import (
    FetchError,
    FetchHTTPError,
    FetchTimeoutError,
    LocalPathNotAllowedError,
)
from storyreel.render.allowlist import UrlAllowlist

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024
MAX_REDIRECTS = 5


def _remove_partial(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning(f"[FETCH] Could not remove partial file {path}: {e}")


class Fetcher:
    """Allowlisted HTTP downloader with a per-download timeout."""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        allowlist: Optional[UrlAllowlist] = None,
        timeout_s: Optional[float] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.allowlist = allowlist or UrlAllowlist.from_settings(self.settings)
        self.timeout_s = timeout_s if timeout_s is not None else self.settings.fetch_timeout_s
        self._client = client
        self.local_prefix = self.settings.local_media_url_prefix
        self.local_root = Path(self.settings.local_media_dir).resolve()

    def is_local(self, url: str) -> bool:
        return url.startswith(self.local_prefix)

    async def fetch(self, url: str, destination: str | Path) -> Path:
        """
        Retrieve ``url`` into ``destination``.

        Args:
            url: Remote http(s) URL, or a locally generated media path
            destination: File path to write

        Returns:
            The destination path

        Raises:
            DisallowedUrlError: Scheme or host not allowlisted (no I/O attempted)
            FetchHTTPError: Non-2xx response
            FetchTimeoutError: Transfer exceeded the timeout
            FetchError: Any other transport or filesystem failure
        """
        destination = Path(destination)

        if self.is_local(url):
            return await self._copy_local(url, destination)

        self.allowlist.check(url)

        logger.info(f"[FETCH] Downloading {url}")
        try:
            await asyncio.wait_for(self._download(url, destination), timeout=self.timeout_s)
        except asyncio.TimeoutError:
            _remove_partial(destination)
            raise FetchTimeoutError(url, self.timeout_s)
        except httpx.TimeoutException:
            _remove_partial(destination)
            raise FetchTimeoutError(url, self.timeout_s)
        except httpx.HTTPError as e:
            _remove_partial(destination)
            raise FetchError(f"Download failed for {url}: {e}", url=url)
        except OSError as e:
            _remove_partial(destination)
            raise FetchError(f"Could not write {destination}: {e}", url=url)
        except BaseException:
            # FetchHTTPError and task cancellation
            _remove_partial(destination)
            raise

        logger.info(f"[FETCH] Saved {url} -> {destination.name}")
        return destination

    async def _download(self, url: str, destination: Path) -> None:
        if self._client is not None:
            await self._stream_to_file(self._client, url, destination)
            return
        async with httpx.AsyncClient(timeout=self.timeout_s, follow_redirects=False) as client:
            await self._stream_to_file(client, url, destination)

    async def _stream_to_file(self, client: httpx.AsyncClient, url: str, destination: Path) -> None:
        # Redirects are followed by hand so every hop passes the allowlist
        current = url
        for _ in range(MAX_REDIRECTS + 1):
            async with client.stream("GET", current, follow_redirects=False) as response:
                if response.is_redirect:
                    location = response.headers["location"]
                    current = str(response.url.join(location))
                    self.allowlist.check(current)
                    logger.info(f"[FETCH] Redirected {url} -> {current}")
                    continue
                if not 200 <= response.status_code < 300:
                    raise FetchHTTPError(response.status_code, url)
                with open(destination, "wb") as f:
                    async for chunk in response.aiter_bytes(CHUNK_SIZE):
                        f.write(chunk)
                return
        raise FetchError(f"Too many redirects for {url}", url=url)

    async def _copy_local(self, url: str, destination: Path) -> Path:
        relative = url[len(self.local_prefix):]
        source = (self.local_root / relative).resolve()
        if not source.is_relative_to(self.local_root):
            raise LocalPathNotAllowedError(url)
        if not source.is_file():
            raise FetchError(f"Local file not found: {url}", url=url)

        logger.info(f"[FETCH] Copying local media {url}")
        try:
            await asyncio.to_thread(shutil.copyfile, source, destination)
        except OSError as e:
            _remove_partial(destination)
            raise FetchError(f"Could not copy {url}: {e}", url=url)
        except BaseException:
            _remove_partial(destination)
            raise
        return destination
