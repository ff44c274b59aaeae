"""didanchor.batching.cas

Content-addressable storage.

Every backend addresses content the same way: ``hash_then_encode(bytes)``.
A backend that returns content under an address it does not hash to is
broken, and reads check for that.

Backends:
- ``MemoryCas``: tests and dry runs
- ``FileCas``: one file per address under a root directory
- ``HttpCas``: a REST CAS service (``POST /`` -> ``{"hash"}``, ``GET /<hash>``)
"""

from __future__ import annotations

import contextlib
import gzip
import io
import logging
import os
import tempfile
import threading
import time
from pathlib import Path
from typing import Any, Protocol

import httpx

from didanchor.core.config import CasConfig
from didanchor.core.encoding import hash_then_encode, is_encoded_multihash
from didanchor.core.exceptions import CasError, CasNotFoundError, FileSizeExceedsLimitError, InvalidInputError

logger = logging.getLogger(__name__)


class ContentAddressableStore(Protocol):
    def write(self, content: bytes) -> str: ...

    def read(self, uri: str, max_size: int) -> bytes: ...


def content_address(content: bytes) -> str:
    return hash_then_encode(content)


def _check_uri(uri: str) -> None:
    if not is_encoded_multihash(uri):
        raise InvalidInputError(f"not a content address: {uri!r}")


def _check_size(uri: str, size: int, max_size: int) -> None:
    if size > max_size:
        raise FileSizeExceedsLimitError(f"{uri} is {size} bytes, limit {max_size}")


def _check_content(uri: str, content: bytes) -> bytes:
    if content_address(content) != uri:
        raise CasError(f"content stored under {uri} does not hash to it")
    return content


# -----------------
# gzip
# -----------------


def compress(data: bytes) -> bytes:
    """gzip with a fixed header so equal input gives equal bytes, and equal addresses."""

    return gzip.compress(data, compresslevel=9, mtime=0)


def decompress(data: bytes, max_size: int) -> bytes:
    """Inflate at most ``max_size`` bytes. Larger output is a capacity error."""

    try:
        with gzip.GzipFile(fileobj=io.BytesIO(data)) as f:
            out = f.read(max_size + 1)
    except (OSError, EOFError) as e:
        raise InvalidInputError("content is not valid gzip") from e
    if len(out) > max_size:
        raise FileSizeExceedsLimitError(f"decompressed content exceeds {max_size} bytes")
    return out


# -----------------
# Backends
# -----------------


class MemoryCas:
    def __init__(self) -> None:
        self._blobs: dict[str, bytes] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._blobs)

    def __contains__(self, uri: object) -> bool:
        return uri in self._blobs

    def write(self, content: bytes) -> str:
        uri = content_address(content)
        with self._lock:
            self._blobs[uri] = bytes(content)
        return uri

    def read(self, uri: str, max_size: int) -> bytes:
        _check_uri(uri)
        with self._lock:
            content = self._blobs.get(uri)
        if content is None:
            raise CasNotFoundError(uri)
        _check_size(uri, len(content), max_size)
        return content


class FileCas:
    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, uri: str) -> Path:
        _check_uri(uri)
        return self.root / uri

    def _write_atomic(self, uri: str, path: Path, content: bytes) -> None:
        """Write through a temp file private to this writer, then rename into place.

        Concurrent writers of one blob each rename identical bytes onto the
        same address. Whichever lands last wins, and a failed rename is fine
        if another writer already landed the blob.
        """

        tmp_name: str | None = None
        try:
            with tempfile.NamedTemporaryFile(dir=self.root, prefix=f".{uri}.", suffix=".tmp", delete=False) as tmp:
                tmp_name = tmp.name
                tmp.write(content)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_name, path)
        except OSError as e:
            if tmp_name is not None:
                with contextlib.suppress(OSError):
                    os.unlink(tmp_name)
            if not path.exists():
                raise CasError(f"cannot write {uri}: {e}") from e

    def write(self, content: bytes) -> str:
        uri = content_address(content)
        path = self._path(uri)
        if not path.exists():
            self._write_atomic(uri, path, content)
        logger.debug("cas_write", extra={"uri": uri, "bytes": len(content)})
        return uri

    def read(self, uri: str, max_size: int) -> bytes:
        path = self._path(uri)
        if not path.exists():
            raise CasNotFoundError(uri)
        _check_size(uri, path.stat().st_size, max_size)
        return _check_content(uri, path.read_bytes())


class HttpCas:
    """Client for a REST CAS service. Retries transport errors with backoff."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout_s: float = 20.0,
        max_retries: int = 3,
        client: httpx.Client | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries
        self._http = client or httpx.Client(timeout=timeout_s)

    def close(self) -> None:
        self._http.close()

    def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        last_exc: Exception | None = None
        for attempt in range(self.max_retries + 1):
            try:
                resp = self._http.request(method, url, **kwargs)
                if resp.status_code == 404:
                    return resp
                resp.raise_for_status()
                return resp
            except (httpx.TimeoutException, httpx.NetworkError, httpx.HTTPStatusError) as e:
                last_exc = e
                logger.warning("cas_request_failed", extra={"url": url, "attempt": attempt, "error": str(e)})
                if attempt >= self.max_retries:
                    break
                time.sleep(min(2**attempt, 8))
        raise CasError(f"{method} {url} failed: {last_exc}") from last_exc

    def write(self, content: bytes) -> str:
        resp = self._request(
            "POST",
            f"{self.base_url}/",
            content=content,
            headers={"Content-Type": "application/octet-stream"},
        )
        try:
            uri = resp.json()["hash"]
        except (ValueError, KeyError, TypeError) as e:
            raise CasError("CAS write response has no hash") from e
        if uri != content_address(content):
            raise CasError(f"CAS returned {uri}, expected {content_address(content)}")
        return uri

    def read(self, uri: str, max_size: int) -> bytes:
        _check_uri(uri)
        resp = self._request("GET", f"{self.base_url}/{uri}", params={"max-size": max_size})
        if resp.status_code == 404:
            raise CasNotFoundError(uri)
        _check_size(uri, len(resp.content), max_size)
        return _check_content(uri, resp.content)


def cas_from_config(config: CasConfig) -> ContentAddressableStore:
    if config.backend == "memory":
        return MemoryCas()
    if config.backend == "file":
        return FileCas(config.root)
    if config.backend == "http":
        return HttpCas(config.url, timeout_s=config.timeout_s, max_retries=config.max_retries)
    raise CasError(f"unknown CAS backend: {config.backend}")
