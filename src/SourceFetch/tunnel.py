# === NAVMAP v1 ===
# {
#   "module": "SourceFetch.tunnel",
#   "purpose": "Launch, probe, and tear down the kubectl port-forward subprocess",
#   "sections": [
#     {"id": "state", "name": "TunnelState & TunnelHandle", "anchor": "STA", "kind": "api"},
#     {"id": "command", "name": "build_port_forward_command", "anchor": "CMD", "kind": "function"},
#     {"id": "probe", "name": "wait_for_port", "anchor": "PRB", "kind": "function"},
#     {"id": "supervisor", "name": "TunnelSupervisor", "anchor": "SUP", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Port-forward tunnel supervision.

A :class:`TunnelSupervisor` owns the lifetime of one ``kubectl port-forward``
subprocess per :class:`TunnelHandle`.  The subprocess is spawned by a
background worker thread which then blocks on the handle's
:class:`~SourceFetch.cancellation.ShutdownChannel`; when a notification
arrives (planned teardown or a relayed operator interrupt) the worker signals
the subprocess and waits for it to exit.  :meth:`TunnelSupervisor.stop`
sends the notification and joins the worker, so the subprocess is never
orphaned once ``stop`` returns.

Readiness is probed, not assumed: :meth:`TunnelSupervisor.wait_until_ready`
polls the local port until it accepts TCP connections or a bounded timeout
elapses.

Example:
    >>> supervisor = TunnelSupervisor()
    >>> handle = supervisor.start("flux-system", "source-controller", 8080, 80)  # doctest: +SKIP
    >>> supervisor.wait_until_ready(handle)  # doctest: +SKIP
    >>> supervisor.stop(handle)  # doctest: +SKIP
"""

from __future__ import annotations

import logging
import signal
import socket
import subprocess
import threading
import time
from enum import Enum
from typing import Callable, List, Optional, Sequence

from .cancellation import ShutdownChannel
from .errors import TunnelStartError, TunnelStopError
from .settings import TunnelSettings

__all__ = [
    "TunnelState",
    "TunnelHandle",
    "TunnelSupervisor",
    "build_port_forward_command",
    "wait_for_port",
]

_LOGGER = logging.getLogger("SourceFetch")


class TunnelState(str, Enum):
    """Lifecycle states of a port-forward subprocess."""

    STARTING = "starting"
    ACTIVE = "active"
    TERMINATING = "terminating"
    TERMINATED = "terminated"


class TunnelHandle:
    """Live port-forward subprocess bound to ``local_port``.

    Attributes:
        service_namespace: Namespace of the forwarded service.
        service_name: Name of the forwarded service.
        local_port: Port listening on ``localhost``.
        service_port: Port on the in-cluster service.
        command: Argument vector used to launch the subprocess.
        channel: Shutdown channel consumed by the worker thread.
        state: Current :class:`TunnelState`.
        process: The spawned subprocess, once launched.
    """

    def __init__(
        self,
        *,
        service_namespace: str,
        service_name: str,
        local_port: int,
        service_port: int,
        command: Sequence[str],
    ) -> None:
        self.service_namespace = service_namespace
        self.service_name = service_name
        self.local_port = local_port
        self.service_port = service_port
        self.command: List[str] = list(command)
        self.channel = ShutdownChannel()
        self.state = TunnelState.STARTING
        self.process: Optional[subprocess.Popen] = None
        self._thread: Optional[threading.Thread] = None
        self._spawned = threading.Event()
        self._spawn_error: Optional[BaseException] = None
        self._stop_error: Optional[BaseException] = None

    @property
    def target(self) -> str:
        """Human readable ``namespace/service local:remote`` description."""
        return (
            f"{self.service_namespace}/{self.service_name} "
            f"{self.local_port}:{self.service_port}"
        )

    def is_alive(self) -> bool:
        """Return True while the subprocess is running."""
        return self.process is not None and self.process.poll() is None

    def __repr__(self) -> str:
        pid = self.process.pid if self.process is not None else None
        return f"TunnelHandle(target={self.target!r}, state={self.state.value}, pid={pid})"


def build_port_forward_command(
    binary: str,
    service_namespace: str,
    service_name: str,
    local_port: int,
    service_port: int,
) -> List[str]:
    """Return the ``kubectl port-forward`` argument vector.

    Examples:
        >>> build_port_forward_command("kubectl", "flux-system", "source-controller", 8080, 80)
        ['kubectl', 'port-forward', '-n', 'flux-system', 'svc/source-controller', '8080:80']
    """
    return [
        binary,
        "port-forward",
        "-n",
        service_namespace,
        f"svc/{service_name}",
        f"{local_port}:{service_port}",
    ]


def wait_for_port(
    port: int,
    *,
    host: str = "localhost",
    timeout: float = 10.0,
    interval: float = 0.25,
    is_alive: Optional[Callable[[], bool]] = None,
) -> None:
    """Block until ``host:port`` accepts TCP connections.

    Args:
        port: Local port to probe.
        host: Host to probe.
        timeout: Maximum number of seconds to wait.
        interval: Delay between connection attempts.
        is_alive: Optional liveness check for the process owning the port;
            when it returns False the wait aborts immediately.

    Raises:
        TunnelStartError: If the owner exits or the port is still closed after ``timeout``.
    """
    deadline = time.monotonic() + timeout
    last_error: Optional[OSError] = None
    while True:
        if is_alive is not None and not is_alive():
            raise TunnelStartError(f"port-forward exited before {host}:{port} became ready")
        try:
            with socket.create_connection((host, port), timeout=interval):
                return
        except OSError as exc:
            last_error = exc
        if time.monotonic() >= deadline:
            raise TunnelStartError(
                f"{host}:{port} not accepting connections after {timeout}s: {last_error}"
            )
        time.sleep(interval)


class TunnelSupervisor:
    """Start and stop ``kubectl port-forward`` subprocesses."""

    def __init__(
        self,
        settings: Optional[TunnelSettings] = None,
        *,
        logger: Optional[logging.Logger] = None,
        popen: Callable[..., subprocess.Popen] = subprocess.Popen,
    ) -> None:
        self.settings = settings or TunnelSettings()
        self.logger = logger or _LOGGER
        self._popen = popen

    def build_command(
        self,
        service_namespace: str,
        service_name: str,
        local_port: int,
        service_port: int,
    ) -> List[str]:
        """Return the argument vector for one tunnel."""
        return build_port_forward_command(
            self.settings.binary, service_namespace, service_name, local_port, service_port
        )

    def start(
        self,
        service_namespace: str,
        service_name: str,
        local_port: int,
        service_port: int,
    ) -> TunnelHandle:
        """Launch the port-forward subprocess and return its handle.

        Returns once the subprocess has been spawned; it does not wait for the
        tunnel to carry traffic (see :meth:`wait_until_ready`).

        Raises:
            TunnelStartError: If the subprocess cannot be launched.
        """
        command = self.build_command(service_namespace, service_name, local_port, service_port)
        handle = TunnelHandle(
            service_namespace=service_namespace,
            service_name=service_name,
            local_port=local_port,
            service_port=service_port,
            command=command,
        )
        self.logger.info(
            "Starting port forwarding to %s/%s %d:%d...",
            service_namespace,
            service_name,
            local_port,
            service_port,
            extra={"stage": "tunnel"},
        )
        thread = threading.Thread(
            target=self._supervise,
            args=(handle,),
            name=f"port-forward-{local_port}",
            daemon=True,
        )
        handle._thread = thread
        thread.start()
        handle._spawned.wait()

        if handle._spawn_error is not None:
            thread.join()
            handle.state = TunnelState.TERMINATED
            raise TunnelStartError(
                f"failed to start port forwarding to {handle.target}: {handle._spawn_error}"
            ) from handle._spawn_error
        return handle

    def wait_until_ready(self, handle: TunnelHandle) -> None:
        """Wait until the tunnel accepts connections, then mark it active.

        Raises:
            TunnelStartError: If the subprocess exits or the port stays closed.
        """
        if self.settings.settle_delay:
            time.sleep(self.settings.settle_delay)
        wait_for_port(
            handle.local_port,
            timeout=self.settings.ready_timeout,
            interval=self.settings.poll_interval,
            is_alive=handle.is_alive,
        )
        handle.state = TunnelState.ACTIVE
        self.logger.debug(
            "port forwarding ready on localhost:%d", handle.local_port, extra={"stage": "tunnel"}
        )

    def stop(self, handle: TunnelHandle) -> None:
        """Signal the subprocess through the handle's channel and wait for it.

        A notification already queued by a relayed interrupt is reused.
        Stopping a terminated handle is a no-op.

        Raises:
            TunnelStopError: If the subprocess could not be signalled or awaited.
        """
        if handle.state is TunnelState.TERMINATED:
            return
        handle.state = TunnelState.TERMINATING
        handle.channel.send(signal.SIGINT)
        if handle._thread is not None:
            handle._thread.join()
        handle.state = TunnelState.TERMINATED

        if handle._stop_error is not None:
            self.logger.error(
                "failed to stop port forwarding to %s: %s",
                handle.target,
                handle._stop_error,
                extra={"stage": "tunnel"},
            )
            raise TunnelStopError(
                f"failed to stop port forwarding to {handle.target}: {handle._stop_error}"
            ) from handle._stop_error
        self.logger.info("Ended port forwarding", extra={"stage": "tunnel"})

    def _supervise(self, handle: TunnelHandle) -> None:
        """Worker body: spawn, wait for a shutdown notification, signal, await."""
        try:
            handle.process = self._popen(handle.command)
        except Exception as exc:
            handle._spawn_error = exc
            return
        finally:
            handle._spawned.set()

        signum = handle.channel.receive()
        try:
            self._terminate(handle.process, signum)
        except (OSError, subprocess.SubprocessError) as exc:
            handle._stop_error = exc

    def _terminate(self, process: subprocess.Popen, signum: int) -> None:
        process.send_signal(signum)
        try:
            process.wait(timeout=self.settings.stop_timeout)
        except subprocess.TimeoutExpired:
            self.logger.warning(
                "port-forward pid %d ignored %s for %.1fs, killing",
                process.pid,
                signal.Signals(signum).name,
                self.settings.stop_timeout,
                extra={"stage": "tunnel"},
            )
            process.kill()
            process.wait()
