# === NAVMAP v1 ===
# {
#   "module": "tests.source_fetch.test_cancellation",
#   "purpose": "Tests for the single-slot shutdown channel and signal relay.",
#   "sections": [
#     {"id": "tests", "name": "Test Cases", "anchor": "TST", "kind": "tests"}
#   ]
# }
# === /NAVMAP ===

"""Tests for the single-slot shutdown channel and signal relay."""

import os
import queue
import signal
import threading
import time

import pytest

from SourceFetch.cancellation import ShutdownChannel, relay_signals


def test_only_the_first_notification_is_queued() -> None:
    """Later sends are dropped without blocking."""

    channel = ShutdownChannel()
    assert not channel.requested

    assert channel.send(signal.SIGTERM) is True
    assert channel.send(signal.SIGINT) is False

    assert channel.requested
    assert channel.signum == signal.SIGTERM
    assert channel.receive(timeout=1) == signal.SIGTERM
    with pytest.raises(queue.Empty):
        channel.receive(timeout=0.05)


def test_send_after_receive_is_still_dropped() -> None:
    """A consumed notification does not reopen the slot."""

    channel = ShutdownChannel()
    channel.send(signal.SIGINT)
    channel.receive(timeout=1)

    assert channel.send(signal.SIGINT) is False


def test_receive_blocks_until_send_from_other_thread() -> None:
    channel = ShutdownChannel()
    received: list = []
    worker = threading.Thread(target=lambda: received.append(channel.receive(timeout=5)))
    worker.start()

    time.sleep(0.05)
    channel.send(signal.SIGINT)
    worker.join(timeout=5)

    assert received == [signal.SIGINT]


def test_relay_signals_forwards_interrupt_and_restores_handler() -> None:
    """An OS interrupt inside the block lands in the channel, not as KeyboardInterrupt."""

    previous = signal.getsignal(signal.SIGINT)
    channel = ShutdownChannel()

    with relay_signals(channel, signals=(signal.SIGINT,)):
        os.kill(os.getpid(), signal.SIGINT)
        deadline = time.monotonic() + 5
        while not channel.requested and time.monotonic() < deadline:
            time.sleep(0.01)

    assert channel.requested
    assert channel.signum == signal.SIGINT
    assert signal.getsignal(signal.SIGINT) is previous
