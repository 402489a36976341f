# === NAVMAP v1 ===
# {
#   "module": "SourceFetch.pipeline",
#   "purpose": "Sequence tunnel start, URL resolution, download, extraction, and teardown",
#   "sections": [
#     {"id": "states", "name": "FetchState", "anchor": "STA", "kind": "api"},
#     {"id": "outcome", "name": "FetchOutcome", "anchor": "OUT", "kind": "api"},
#     {"id": "staging", "name": "create_staging_directory", "anchor": "STG", "kind": "function"},
#     {"id": "pipeline", "name": "SourceFetchPipeline", "anchor": "PIP", "kind": "class"},
#     {"id": "run-fetch", "name": "run_fetch", "anchor": "RUN", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Port-forward protected fetch of a source artifact.

:class:`SourceFetchPipeline` drives one invocation through the states::

    IDLE -> TUNNEL_STARTING -> TUNNEL_ACTIVE -> RESOLVING -> DOWNLOADING
         -> EXTRACTING -> TUNNEL_STOPPING -> DONE | FAILED

Once the tunnel has started, every path (success, staging failure, resolver
failure, download failure, extraction failure, operator interrupt) passes
through ``TUNNEL_STOPPING`` exactly once.  A tunnel that never started is
never stopped.  Partially populated staging directories are left on disk.
"""

from __future__ import annotations

import logging
import tempfile
from contextlib import nullcontext
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional

from .cancellation import ShutdownChannel, relay_signals
from .download import ArtifactFetcher
from .errors import FetchInterrupted, StagingError, TunnelStartError
from .io_safe import sanitize_filename
from .resolvers import HelmChartResolver
from .settings import FetchRequest, SourceFetchSettings, SourceKind, get_default_config
from .tunnel import TunnelHandle, TunnelState, TunnelSupervisor
from .urls import UrlResolver, build_source_url

__all__ = [
    "FetchState",
    "FetchOutcome",
    "SourceFetchPipeline",
    "create_staging_directory",
    "run_fetch",
]

_LOGGER = logging.getLogger("SourceFetch")


class FetchState(str, Enum):
    """States of a single fetch invocation."""

    IDLE = "idle"
    TUNNEL_STARTING = "tunnel_starting"
    TUNNEL_ACTIVE = "tunnel_active"
    RESOLVING = "resolving"
    DOWNLOADING = "downloading"
    EXTRACTING = "extracting"
    TUNNEL_STOPPING = "tunnel_stopping"
    DONE = "done"
    FAILED = "failed"


@dataclass
class FetchOutcome:
    """Result of a successful fetch."""

    request: FetchRequest
    url: str
    staging_dir: Path
    files: List[Path] = field(default_factory=list)
    states: List[FetchState] = field(default_factory=list)


def create_staging_directory(request: FetchRequest, root: Optional[Path] = None) -> Path:
    """Create a fresh, uniquely named directory for ``request``'s artifact.

    The name embeds namespace, name and revision, e.g.
    ``flux-system-demo-v1-k2j3h4``.

    Raises:
        StagingError: If the directory cannot be created.
    """
    prefix = sanitize_filename(f"{request.namespace}-{request.name}-{request.revision}") + "-"
    try:
        if root is not None:
            root.mkdir(parents=True, exist_ok=True)
        return Path(tempfile.mkdtemp(prefix=prefix, dir=root))
    except OSError as exc:
        raise StagingError(f"failed to create staging directory: {exc}") from exc


class SourceFetchPipeline:
    """Fetch one source artifact through a port-forward tunnel.

    Collaborators default to the real implementations built from ``settings``
    and may be replaced (tests inject fakes).
    """

    def __init__(
        self,
        request: FetchRequest,
        *,
        settings: Optional[SourceFetchSettings] = None,
        supervisor: Optional[TunnelSupervisor] = None,
        resolver: Optional[UrlResolver] = None,
        fetcher: Optional[ArtifactFetcher] = None,
        relay_interrupts: bool = False,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.request = request
        self.settings = settings or get_default_config()
        self.logger = logger or _LOGGER
        self.supervisor = supervisor or TunnelSupervisor(self.settings.tunnel, logger=self.logger)
        self.fetcher = fetcher or ArtifactFetcher(self.settings.http, logger=self.logger)
        self._resolver = resolver
        self.relay_interrupts = relay_interrupts
        self.state = FetchState.IDLE
        self.states: List[FetchState] = [FetchState.IDLE]

    @property
    def resolver(self) -> Optional[UrlResolver]:
        """Resolver used for chart sources, created on first use."""
        if self._resolver is None and self.request.source_kind is SourceKind.HELM_CHART:
            self._resolver = HelmChartResolver(self.settings.cluster, logger=self.logger)
        return self._resolver

    def _transition(self, state: FetchState) -> None:
        self.logger.debug(
            "fetch state %s -> %s", self.state.value, state.value, extra={"stage": "pipeline"}
        )
        self.state = state
        self.states.append(state)

    def run(self) -> FetchOutcome:
        """Run the fetch and return its outcome.

        Raises:
            SourceFetchError: Any failure; the tunnel is stopped before the
                error propagates whenever it had started.
        """
        request = self.request
        self._transition(FetchState.TUNNEL_STARTING)
        try:
            handle = self.supervisor.start(
                request.service_namespace,
                request.service_name,
                request.local_port,
                request.service_port,
            )
        except TunnelStartError:
            self._transition(FetchState.FAILED)
            raise

        relay = relay_signals(handle.channel) if self.relay_interrupts else nullcontext()
        with relay:
            try:
                outcome = self._fetch_through(handle)
            except BaseException:
                self._teardown(handle, failed=True)
                raise
            self._teardown(handle, failed=False)
        outcome.states = list(self.states)
        return outcome

    def _teardown(self, handle: TunnelHandle, *, failed: bool) -> None:
        self._transition(FetchState.TUNNEL_STOPPING)
        try:
            self.supervisor.stop(handle)
        except BaseException:
            self._transition(FetchState.FAILED)
            raise
        self._transition(FetchState.FAILED if failed else FetchState.DONE)

    def _check_interrupted(self, channel: ShutdownChannel) -> None:
        if channel.requested:
            raise FetchInterrupted(
                f"fetch interrupted during {self.state.value}", signum=channel.signum
            )

    def _fetch_through(self, handle: TunnelHandle) -> FetchOutcome:
        request = self.request
        try:
            self.supervisor.wait_until_ready(handle)
        except TunnelStartError:
            self._check_interrupted(handle.channel)
            raise
        self._check_interrupted(handle.channel)
        if handle.state is not TunnelState.ACTIVE:
            raise TunnelStartError(f"tunnel to {handle.target} is {handle.state.value}, not active")
        self._transition(FetchState.TUNNEL_ACTIVE)

        staging_dir = create_staging_directory(request, self.settings.staging.root)
        self.logger.info("Downloading and untarring the source...", extra={"stage": "stage"})

        self._transition(FetchState.RESOLVING)
        url = build_source_url(
            request.source_kind,
            request.namespace,
            request.name,
            request.revision,
            request.local_port,
            resolver=self.resolver,
        )
        self._check_interrupted(handle.channel)

        self._transition(FetchState.DOWNLOADING)
        payload = self.fetcher.download(url)
        self._check_interrupted(handle.channel)

        self._transition(FetchState.EXTRACTING)
        files = self.fetcher.extract(payload, staging_dir)
        return FetchOutcome(request=request, url=url, staging_dir=staging_dir, files=files)


def run_fetch(
    request: FetchRequest,
    *,
    settings: Optional[SourceFetchSettings] = None,
    relay_interrupts: bool = True,
    logger: Optional[logging.Logger] = None,
) -> FetchOutcome:
    """Fetch ``request`` with the default collaborators."""
    pipeline = SourceFetchPipeline(
        request, settings=settings, relay_interrupts=relay_interrupts, logger=logger
    )
    return pipeline.run()
