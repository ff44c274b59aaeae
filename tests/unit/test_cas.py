from __future__ import annotations

import json
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import httpx
import pytest

from didanchor.batching.cas import (
    FileCas,
    HttpCas,
    MemoryCas,
    cas_from_config,
    compress,
    content_address,
    decompress,
)
from didanchor.core.config import CasConfig
from didanchor.core.exceptions import CasError, CasNotFoundError, FileSizeExceedsLimitError, InvalidInputError


def test_memory_cas_roundtrip(cas: MemoryCas) -> None:
    uri = cas.write(b"hello")
    assert uri == content_address(b"hello")
    assert cas.read(uri, max_size=5) == b"hello"
    assert uri in cas and len(cas) == 1


def test_memory_cas_errors(cas: MemoryCas) -> None:
    uri = cas.write(b"hello")
    with pytest.raises(FileSizeExceedsLimitError):
        cas.read(uri, max_size=4)
    with pytest.raises(CasNotFoundError):
        cas.read(content_address(b"other"), max_size=100)
    with pytest.raises(InvalidInputError):
        cas.read("not-an-address", max_size=100)


def test_file_cas_roundtrip_and_tamper_detection(temp_dir: Path) -> None:
    store = FileCas(temp_dir / "cas")
    uri = store.write(b"content")
    assert store.write(b"content") == uri
    assert store.read(uri, max_size=100) == b"content"

    (temp_dir / "cas" / uri).write_bytes(b"CONTENT")
    with pytest.raises(CasError):
        store.read(uri, max_size=100)

    with pytest.raises(CasNotFoundError):
        store.read(content_address(b"missing"), max_size=100)


def test_file_cas_parallel_writers_of_one_blob(temp_dir: Path) -> None:
    store = FileCas(temp_dir / "cas")
    writers = 8

    for round_no in range(10):
        blob = bytes([round_no]) * 256_000
        barrier = threading.Barrier(writers)

        def _write(data: bytes = blob, gate: threading.Barrier = barrier) -> str:
            gate.wait()
            return store.write(data)

        with ThreadPoolExecutor(max_workers=writers) as pool:
            uris = list(pool.map(lambda _: _write(), range(writers)))

        assert set(uris) == {content_address(blob)}
        assert store.read(uris[0], max_size=len(blob)) == blob

    assert [p.name for p in (temp_dir / "cas").iterdir() if p.name.endswith(".tmp")] == []


def test_file_cas_write_failure_is_cas_error(temp_dir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    store = FileCas(temp_dir / "cas")

    def _fail(src: str, dst: object) -> None:
        raise PermissionError("read-only store")

    monkeypatch.setattr(os, "replace", _fail)
    with pytest.raises(CasError):
        store.write(b"content")
    assert list((temp_dir / "cas").iterdir()) == []


def _http_cas(handler) -> HttpCas:
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return HttpCas("http://cas.test/api", max_retries=0, client=client)


def test_http_cas_write_and_read() -> None:
    blobs: dict[str, bytes] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            body = request.read()
            uri = content_address(body)
            blobs[uri] = body
            return httpx.Response(200, json={"hash": uri})
        uri = request.url.path.rsplit("/", 1)[-1]
        assert request.url.params["max-size"] == "100"
        if uri not in blobs:
            return httpx.Response(404)
        return httpx.Response(200, content=blobs[uri])

    store = _http_cas(handler)
    uri = store.write(b"payload")
    assert store.read(uri, max_size=100) == b"payload"
    with pytest.raises(CasNotFoundError):
        store.read(content_address(b"nope"), max_size=100)


def test_http_cas_rejects_wrong_hash_and_server_errors() -> None:
    def wrong_hash(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=json.dumps({"hash": content_address(b"x")}).encode())

    with pytest.raises(CasError):
        _http_cas(wrong_hash).write(b"payload")

    def broken(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500)

    with pytest.raises(CasError):
        _http_cas(broken).write(b"payload")


def test_compress_is_deterministic_and_bounded() -> None:
    data = b"a" * 10_000
    assert compress(data) == compress(data)
    assert decompress(compress(data), max_size=10_000) == data
    with pytest.raises(FileSizeExceedsLimitError):
        decompress(compress(data), max_size=9_999)
    with pytest.raises(InvalidInputError):
        decompress(b"not gzip", max_size=100)


def test_cas_from_config(temp_dir: Path) -> None:
    assert isinstance(cas_from_config(CasConfig(backend="memory")), MemoryCas)
    assert isinstance(cas_from_config(CasConfig(backend="file", root=temp_dir / "c")), FileCas)
    assert isinstance(cas_from_config(CasConfig(backend="http")), HttpCas)
