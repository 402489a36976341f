"""Tunnel supervisor tests using short-lived Python subprocesses in place of kubectl."""

from __future__ import annotations

import signal
import socket
import sys

import pytest

from SourceFetch.errors import TunnelStartError
from SourceFetch.settings import TunnelSettings
from SourceFetch.tunnel import (
    TunnelState,
    TunnelSupervisor,
    build_port_forward_command,
    wait_for_port,
)

pytestmark = pytest.mark.subprocess

EXIT_ON_SIGINT = (
    "import signal, sys, time\n"
    "signal.signal(signal.SIGINT, lambda *_: sys.exit(0))\n"
    "time.sleep(60)\n"
)
IGNORE_SIGINT = (
    "import signal, time\n"
    "signal.signal(signal.SIGINT, signal.SIG_IGN)\n"
    "time.sleep(60)\n"
)
EXIT_IMMEDIATELY = "import sys; sys.exit(3)"


class ScriptSupervisor(TunnelSupervisor):
    """Supervisor running a Python one-liner instead of ``kubectl port-forward``."""

    def __init__(self, script: str, settings: TunnelSettings | None = None) -> None:
        super().__init__(settings)
        self.script = script

    def build_command(self, service_namespace, service_name, local_port, service_port):
        return [sys.executable, "-c", self.script]


def _closed_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def test_build_port_forward_command() -> None:
    assert build_port_forward_command("kubectl", "flux-system", "source-controller", 8080, 80) == [
        "kubectl",
        "port-forward",
        "-n",
        "flux-system",
        "svc/source-controller",
        "8080:80",
    ]


def test_supervisor_uses_configured_binary() -> None:
    supervisor = TunnelSupervisor(TunnelSettings(binary="/opt/bin/kubectl"))
    command = supervisor.build_command("ns", "svc", 9000, 9090)
    assert command[0] == "/opt/bin/kubectl"
    assert command[-2:] == ["svc/svc", "9000:9090"]


def test_missing_binary_fails_to_start() -> None:
    supervisor = TunnelSupervisor(TunnelSettings(binary="sourcefetch-test-no-such-kubectl"))

    with pytest.raises(TunnelStartError, match="failed to start port forwarding"):
        supervisor.start("flux-system", "source-controller", 8080, 80)


def test_unexpected_spawn_error_fails_start_instead_of_hanging() -> None:
    def broken_popen(command):
        raise TypeError("unexpected keyword argument")

    supervisor = TunnelSupervisor(popen=broken_popen)

    with pytest.raises(TunnelStartError, match="unexpected keyword argument") as excinfo:
        supervisor.start("flux-system", "source-controller", 8080, 80)

    assert isinstance(excinfo.value.__cause__, TypeError)


def test_start_returns_without_waiting_and_stop_terminates() -> None:
    supervisor = ScriptSupervisor(EXIT_ON_SIGINT)

    handle = supervisor.start("flux-system", "source-controller", 8080, 80)
    try:
        assert handle.state is TunnelState.STARTING
        assert handle.is_alive()
    finally:
        supervisor.stop(handle)

    assert handle.state is TunnelState.TERMINATED
    assert handle.process is not None
    assert handle.process.returncode is not None
    assert not handle._thread.is_alive()


def test_stop_is_noop_on_terminated_handle() -> None:
    supervisor = ScriptSupervisor(EXIT_ON_SIGINT)
    handle = supervisor.start("flux-system", "source-controller", 8080, 80)

    supervisor.stop(handle)
    supervisor.stop(handle)

    assert handle.state is TunnelState.TERMINATED


def test_first_relayed_signal_is_delivered_to_subprocess() -> None:
    supervisor = ScriptSupervisor(EXIT_ON_SIGINT)
    handle = supervisor.start("flux-system", "source-controller", 8080, 80)

    assert handle.channel.send(signal.SIGTERM)
    supervisor.stop(handle)

    assert handle.process.returncode == -signal.SIGTERM


def test_subprocess_ignoring_interrupt_is_killed() -> None:
    supervisor = ScriptSupervisor(IGNORE_SIGINT, TunnelSettings(stop_timeout=0.5))
    handle = supervisor.start("flux-system", "source-controller", 8080, 80)

    supervisor.stop(handle)

    assert handle.state is TunnelState.TERMINATED
    assert handle.process.returncode is not None


def test_wait_until_ready_marks_handle_active() -> None:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as listener:
        listener.bind(("127.0.0.1", 0))
        listener.listen()
        port = listener.getsockname()[1]
        supervisor = ScriptSupervisor(EXIT_ON_SIGINT, TunnelSettings(ready_timeout=5.0))
        handle = supervisor.start("flux-system", "source-controller", port, 80)
        try:
            supervisor.wait_until_ready(handle)
            assert handle.state is TunnelState.ACTIVE
        finally:
            supervisor.stop(handle)


def test_wait_until_ready_fails_when_subprocess_exits() -> None:
    supervisor = ScriptSupervisor(EXIT_IMMEDIATELY, TunnelSettings(ready_timeout=10.0))
    handle = supervisor.start("flux-system", "source-controller", _closed_port(), 80)
    try:
        with pytest.raises(TunnelStartError, match="exited"):
            supervisor.wait_until_ready(handle)
    finally:
        supervisor.stop(handle)

    assert handle.state is TunnelState.TERMINATED
    assert handle.process.returncode == 3


def test_wait_for_port_times_out_on_closed_port() -> None:
    with pytest.raises(TunnelStartError, match="not accepting connections"):
        wait_for_port(_closed_port(), host="127.0.0.1", timeout=0.3, interval=0.05)


def test_wait_for_port_aborts_when_owner_is_dead() -> None:
    with pytest.raises(TunnelStartError, match="exited before"):
        wait_for_port(_closed_port(), timeout=5.0, is_alive=lambda: False)
