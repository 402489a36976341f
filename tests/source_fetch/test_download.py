"""Artifact fetcher tests over httpx MockTransport and a local trickling HTTP server."""

from __future__ import annotations

import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path

import httpx
import pytest

from SourceFetch.download import ArtifactFetcher, fetch_artifact
from SourceFetch.errors import DownloadFailure, ExtractionError
from SourceFetch.settings import HttpSettings
from tests.source_fetch.fakes import make_tarball, mock_client

URL = "http://localhost:8080/gitrepository/flux-system/demo/v1.tar.gz"


class RecordingExtractor:
    def __init__(self) -> None:
        self.calls: list = []

    def __call__(self, payload, destination, *, logger=None):
        self.calls.append((payload, destination))
        return []


def test_fetch_downloads_and_extracts(tmp_path: Path) -> None:
    payload = make_tarball({"kustomization.yaml": b"resources: []\n"})

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "GET"
        assert str(request.url) == URL
        return httpx.Response(200, content=payload)

    files = fetch_artifact(URL, tmp_path, client=mock_client(handler))

    assert files == [tmp_path / "kustomization.yaml"]
    assert (tmp_path / "kustomization.yaml").read_bytes() == b"resources: []\n"


def test_non_200_names_url_and_both_codes_without_extracting(tmp_path: Path) -> None:
    extractor = RecordingExtractor()
    fetcher = ArtifactFetcher(
        client=mock_client(lambda request: httpx.Response(404, text="no such artifact")),
        extractor=extractor,
    )

    with pytest.raises(DownloadFailure) as excinfo:
        fetcher.fetch(URL, tmp_path)

    message = str(excinfo.value)
    assert URL in message
    assert "200" in message and "404" in message
    assert excinfo.value.status_code == 404
    assert excinfo.value.expected_status == 200
    assert excinfo.value.url == URL
    assert extractor.calls == []


@pytest.mark.parametrize("status", [201, 204, 301, 500, 503])
def test_any_status_other_than_200_fails(tmp_path: Path, status: int) -> None:
    fetcher = ArtifactFetcher(client=mock_client(lambda request: httpx.Response(status)))

    with pytest.raises(DownloadFailure) as excinfo:
        fetcher.download(URL)

    assert excinfo.value.status_code == status


def test_timeout_fails_once_without_retry() -> None:
    attempts: list = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        raise httpx.ReadTimeout("timed out", request=request)

    fetcher = ArtifactFetcher(client=mock_client(handler))

    with pytest.raises(DownloadFailure, match="timed out after 15.0s"):
        fetcher.download(URL)

    assert len(attempts) == 1


def test_connection_refused_is_a_download_failure() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    fetcher = ArtifactFetcher(client=mock_client(handler))

    with pytest.raises(DownloadFailure, match="connection refused") as excinfo:
        fetcher.download(URL)

    assert excinfo.value.status_code is None


def test_timeout_applies_to_request() -> None:
    seen: list = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.extensions["timeout"])
        return httpx.Response(200, content=b"")

    ArtifactFetcher(client=mock_client(handler)).download(URL)

    assert seen[0]["read"] == 15.0
    assert seen[0]["connect"] == 15.0
    assert HttpSettings().timeout == 15.0


def test_extractor_failure_propagates_unchanged(tmp_path: Path) -> None:
    error = ExtractionError("Unsafe path detected in archive: ../evil")

    def extractor(payload, destination, *, logger=None):
        raise error

    fetcher = ArtifactFetcher(
        client=mock_client(lambda request: httpx.Response(200, content=b"payload")),
        extractor=extractor,
    )

    with pytest.raises(ExtractionError) as excinfo:
        fetcher.fetch(URL, tmp_path)

    assert excinfo.value is error


class _TricklingHandler(BaseHTTPRequestHandler):
    """Serve an 8 byte body one byte every half second."""

    body = b"trickled"

    def do_GET(self) -> None:
        self.send_response(200)
        self.send_header("Content-Length", str(len(self.body)))
        self.end_headers()
        for byte in self.body:
            try:
                self.wfile.write(bytes([byte]))
                self.wfile.flush()
            except (BrokenPipeError, ConnectionResetError):
                return
            time.sleep(0.5)

    def log_message(self, format, *args) -> None:
        pass


@pytest.fixture
def trickling_url():
    server = ThreadingHTTPServer(("127.0.0.1", 0), _TricklingHandler)
    server.daemon_threads = True
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield f"http://127.0.0.1:{server.server_address[1]}/gitrepository/ns/demo/v1.tar.gz"
    finally:
        server.shutdown()
        server.server_close()


def test_timeout_bounds_the_whole_download(trickling_url: str) -> None:
    fetcher = ArtifactFetcher(HttpSettings(timeout=1.0))

    started = time.monotonic()
    with pytest.raises(DownloadFailure, match="timed out after 1.0s") as excinfo:
        fetcher.download(trickling_url)
    elapsed = time.monotonic() - started

    assert elapsed < 3.0
    assert excinfo.value.url == trickling_url
    assert excinfo.value.expected_status == 200
    assert excinfo.value.status_code is None
