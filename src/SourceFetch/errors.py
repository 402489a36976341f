"""Exception hierarchy shared across tunnelling, resolution, download, and extraction.

A single fetch spans configuration parsing, a ``kubectl port-forward``
subprocess, an optional control-plane lookup, one HTTP request, and archive
materialisation.  The classes below group those failure modes so the CLI can
map high-level categories to exit codes while callers that need finer
handling can still catch the specialised subclasses.
"""

from __future__ import annotations

from typing import Optional

__all__ = [
    "SourceFetchError",
    "ConfigurationError",
    "TunnelError",
    "TunnelStartError",
    "TunnelStopError",
    "StagingError",
    "ResolverError",
    "DownloadFailure",
    "ExtractionError",
    "FetchInterrupted",
]


class SourceFetchError(RuntimeError):
    """Base exception for every failure raised by the source fetcher."""


class ConfigurationError(SourceFetchError):
    """Raised when request identifiers, ports, or the source kind are invalid."""


class TunnelError(SourceFetchError):
    """Raised when the port-forward subprocess cannot be supervised."""


class TunnelStartError(TunnelError):
    """Raised when the port-forward subprocess fails to launch or become ready."""


class TunnelStopError(TunnelError):
    """Raised when the port-forward subprocess cannot be signalled or awaited."""


class StagingError(SourceFetchError):
    """Raised when the staging directory cannot be created."""


class ResolverError(SourceFetchError):
    """Raised when an artifact URL cannot be resolved from the cluster."""


class DownloadFailure(SourceFetchError):
    """Raised when the HTTP download attempt fails."""

    def __init__(
        self,
        message: str,
        *,
        url: Optional[str] = None,
        status_code: Optional[int] = None,
        expected_status: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code
        self.expected_status = expected_status


class ExtractionError(SourceFetchError):
    """Raised when a downloaded archive cannot be materialised on disk."""


class FetchInterrupted(SourceFetchError):
    """Raised when an operator interrupt aborts the fetch between stages."""

    def __init__(self, message: str, *, signum: Optional[int] = None) -> None:
        super().__init__(message)
        self.signum = signum


# === NAVMAP v1 ===
# {
#   "module": "SourceFetch.errors",
#   "purpose": "Define the exception hierarchy used across tunnelling, resolution, download, and extraction",
#   "sections": [
#     {"id": "base", "name": "Base Exceptions", "anchor": "BAS", "kind": "api"},
#     {"id": "tunnel", "name": "Tunnel Errors", "anchor": "TUN", "kind": "api"},
#     {"id": "fetch", "name": "Resolver, Download & Extraction Errors", "anchor": "FET", "kind": "api"}
#   ]
# }
# === /NAVMAP ===
