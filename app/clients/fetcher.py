from __future__ import annotations

import logging
import pathlib
import re
from typing import Optional
from urllib.parse import urlsplit

import httpx

from app.errors import DownloadError

_SAFE_SUFFIX = re.compile(r"^\.[A-Za-z0-9]{1,8}$")


def extension_from_url(url: str, default: str) -> str:
    """Return the file extension of the URL path, or ``default`` if it has none.

    Query strings and fragments never contribute to the extension. Suffixes that
    don't look like a plain extension (e.g. ``.php%27``) are ignored.
    """
    try:
        path = urlsplit(url).path
    except ValueError:
        return default
    suffix = pathlib.PurePosixPath(path).suffix
    if suffix and _SAFE_SUFFIX.match(suffix):
        return suffix.lower()
    return default


class AssetFetcher:
    def __init__(
        self,
        timeout: float = 60.0,
        connect_timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.timeout = httpx.Timeout(
            connect=min(connect_timeout, timeout),
            read=timeout,
            write=min(connect_timeout, timeout),
            pool=timeout,
        )
        self._transport = transport
        self.log = logger or logging.getLogger(__name__)

    def fetch(self, url: str, dest_dir: str | pathlib.Path, stem: str, default_ext: str = ".jpg") -> pathlib.Path:
        dest = pathlib.Path(dest_dir) / f"{stem}{extension_from_url(url, default_ext)}"
        return self.fetch_to(url, dest)

    def fetch_to(self, url: str, dest: str | pathlib.Path) -> pathlib.Path:
        dest = pathlib.Path(dest)
        written = 0
        try:
            with httpx.Client(timeout=self.timeout, follow_redirects=True, transport=self._transport) as client:
                with client.stream("GET", url) as resp:
                    if not resp.is_success:
                        raise DownloadError(
                            f"failed to download {url} status {resp.status_code}",
                            url=url,
                            status_code=resp.status_code,
                        )
                    with open(dest, "wb") as f:
                        for chunk in resp.iter_bytes():
                            if chunk:
                                f.write(chunk)
                                written += len(chunk)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise DownloadError(f"failed to download {url}: {exc}", url=url) from exc
        except OSError as exc:
            raise DownloadError(f"failed to write {dest}: {exc}", url=url) from exc
        self.log.info("asset downloaded", extra={"url": url, "path": str(dest), "bytes": written})
        return dest
