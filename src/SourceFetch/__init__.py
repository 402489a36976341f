"""Fetch Flux source artifacts through a ``kubectl port-forward`` tunnel.

The public surface covers the whole port-forward protected fetch: the
request and settings models, the tunnel supervisor, URL construction and
resolution, the artifact fetcher, and the pipeline tying them together.
"""

from __future__ import annotations

__version__ = "0.1.0"

from .download import ArtifactFetcher, fetch_artifact
from .errors import (
    ConfigurationError,
    DownloadFailure,
    ExtractionError,
    FetchInterrupted,
    ResolverError,
    SourceFetchError,
    StagingError,
    TunnelError,
    TunnelStartError,
    TunnelStopError,
)
from .io_safe import extract_tarball
from .pipeline import FetchOutcome, FetchState, SourceFetchPipeline, run_fetch
from .resolvers import HelmChartResolver, rewrite_to_local
from .settings import FetchRequest, SourceFetchSettings, SourceKind, build_request
from .tunnel import TunnelHandle, TunnelState, TunnelSupervisor
from .urls import build_source_url

__all__ = [
    "__version__",
    "ArtifactFetcher",
    "ConfigurationError",
    "DownloadFailure",
    "ExtractionError",
    "FetchInterrupted",
    "FetchOutcome",
    "FetchRequest",
    "FetchState",
    "HelmChartResolver",
    "ResolverError",
    "SourceFetchError",
    "SourceFetchPipeline",
    "SourceFetchSettings",
    "SourceKind",
    "StagingError",
    "TunnelError",
    "TunnelHandle",
    "TunnelStartError",
    "TunnelState",
    "TunnelStopError",
    "TunnelSupervisor",
    "build_request",
    "build_source_url",
    "extract_tarball",
    "fetch_artifact",
    "rewrite_to_local",
    "run_fetch",
]
