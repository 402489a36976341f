"""HTTP download of source artifacts through the local tunnel.

One ``GET`` per invocation, with a hard client-side timeout and no retries:
a tunnel or source controller that fails once is not expected to recover
within the lifetime of a single fetch.  Anything but ``200 OK`` is an error;
the response body of a failed request is never inspected.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Callable, List, Optional

import httpx

from .errors import DownloadFailure
from .io_safe import extract_tarball
from .settings import HttpSettings

__all__ = ["Extractor", "ArtifactFetcher", "fetch_artifact", "EXPECTED_STATUS"]

_LOGGER = logging.getLogger("SourceFetch")

EXPECTED_STATUS = httpx.codes.OK

Extractor = Callable[..., List[Path]]


class ArtifactFetcher:
    """Download artifacts and hand them to an extractor.

    Args:
        settings: HTTP settings; the timeout defaults to 15 seconds.
        client: Optional pre-built ``httpx.Client`` (tests inject one backed by
            ``httpx.MockTransport``).  When omitted a client is created per call.
        extractor: Callable ``(payload, destination, *, logger)`` materialising
            the archive.
        logger: Logger for ``stage="download"`` records.
    """

    def __init__(
        self,
        settings: Optional[HttpSettings] = None,
        *,
        client: Optional[httpx.Client] = None,
        extractor: Extractor = extract_tarball,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.settings = settings or HttpSettings()
        self.logger = logger or _LOGGER
        self.extractor = extractor
        self._client = client

    def _build_client(self) -> httpx.Client:
        return httpx.Client(
            timeout=httpx.Timeout(self.settings.timeout),
            trust_env=self.settings.trust_env,
            headers={"User-Agent": self.settings.user_agent},
        )

    def _timed_out(self, url: str) -> DownloadFailure:
        return DownloadFailure(
            f"error calling {url!r}: timed out after {self.settings.timeout}s",
            url=url,
            expected_status=EXPECTED_STATUS,
        )

    def download(self, url: str) -> bytes:
        """Return the full response body of ``GET url``.

        ``settings.timeout`` bounds the whole exchange, body included, on top
        of the per-phase ``httpx.Timeout``.

        Raises:
            DownloadFailure: On transport errors, timeouts, or a non-200 status.
        """
        client = self._client or self._build_client()
        deadline = time.monotonic() + self.settings.timeout
        try:
            try:
                with client.stream("GET", url, timeout=self.settings.timeout) as response:
                    if response.status_code != EXPECTED_STATUS:
                        raise DownloadFailure(
                            f"error calling {url!r}: expected {int(EXPECTED_STATUS)}, "
                            f"got {response.status_code}",
                            url=url,
                            status_code=response.status_code,
                            expected_status=EXPECTED_STATUS,
                        )
                    chunks: List[bytes] = []
                    for chunk in response.iter_bytes():
                        if time.monotonic() > deadline:
                            raise self._timed_out(url)
                        chunks.append(chunk)
                    if time.monotonic() > deadline:
                        raise self._timed_out(url)
            except httpx.TimeoutException as exc:
                raise self._timed_out(url) from exc
            except httpx.HTTPError as exc:
                raise DownloadFailure(
                    f"error calling {url!r}: {exc}", url=url, expected_status=EXPECTED_STATUS
                ) from exc
            payload = b"".join(chunks)
        finally:
            if self._client is None:
                client.close()

        self.logger.info(
            "Downloaded %r", url, extra={"stage": "download", "bytes": len(payload)}
        )
        return payload

    def extract(self, payload: bytes, target_dir: Path) -> List[Path]:
        """Materialise ``payload`` under ``target_dir`` using the configured extractor."""
        return self.extractor(payload, target_dir, logger=self.logger)

    def fetch(self, url: str, target_dir: Path) -> List[Path]:
        """Download ``url`` and extract it into ``target_dir``.

        Extractor failures propagate unchanged.
        """
        payload = self.download(url)
        return self.extract(payload, target_dir)


def fetch_artifact(
    url: str,
    target_dir: Path,
    *,
    settings: Optional[HttpSettings] = None,
    client: Optional[httpx.Client] = None,
    extractor: Extractor = extract_tarball,
    logger: Optional[logging.Logger] = None,
) -> List[Path]:
    """Download ``url`` and extract it into ``target_dir``."""
    fetcher = ArtifactFetcher(settings, client=client, extractor=extractor, logger=logger)
    return fetcher.fetch(url, target_dir)
