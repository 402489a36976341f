"""Shutdown channel shared by the pipeline and the tunnel worker thread.

The port-forward subprocess is owned by a background worker which blocks on a
:class:`ShutdownChannel` until somebody asks it to stop.  Both planned
teardown (the pipeline finishing or failing) and operator interrupts
(``SIGINT``/``SIGTERM`` relayed by :func:`relay_signals`) send into the same
channel, so there is exactly one teardown path.  The channel holds a single
slot: the first notification wins and later sends are dropped without
blocking.
"""

from __future__ import annotations

import logging
import queue
import signal
import threading
from contextlib import contextmanager
from typing import Iterator, Optional, Sequence

__all__ = ["ShutdownChannel", "relay_signals"]

logger = logging.getLogger("SourceFetch")


class ShutdownChannel:
    """Single-slot, non-blocking-send channel carrying a signal number.

    Examples:
        >>> channel = ShutdownChannel()
        >>> channel.send(signal.SIGINT)
        True
        >>> channel.send(signal.SIGTERM)
        False
        >>> channel.receive() == signal.SIGINT
        True
    """

    def __init__(self) -> None:
        """Initialize an empty channel."""
        self._slot: "queue.Queue[int]" = queue.Queue(maxsize=1)
        self._requested = threading.Event()
        self._lock = threading.Lock()
        self._signum: Optional[int] = None

    def send(self, signum: int = signal.SIGINT) -> bool:
        """Queue ``signum`` unless a notification was already sent.

        Returns:
            True if this call queued the notification, False if it was dropped.
        """
        with self._lock:
            if self._requested.is_set():
                return False
            try:
                self._slot.put_nowait(int(signum))
            except queue.Full:
                return False
            self._signum = int(signum)
            self._requested.set()
            return True

    def receive(self, timeout: Optional[float] = None) -> int:
        """Block until a notification arrives and return its signal number.

        Raises:
            queue.Empty: If ``timeout`` elapses first.
        """
        return self._slot.get(timeout=timeout)

    @property
    def requested(self) -> bool:
        """Whether a shutdown notification has ever been sent."""
        return self._requested.is_set()

    @property
    def signum(self) -> Optional[int]:
        """Signal number of the first notification, if any."""
        return self._signum


@contextmanager
def relay_signals(
    channel: ShutdownChannel,
    signals: Sequence[int] = (signal.SIGINT, signal.SIGTERM),
) -> Iterator[ShutdownChannel]:
    """Forward process signals into ``channel`` while the block runs.

    Handlers can only be installed from the main thread; elsewhere the block
    runs without relaying.  Previous handlers are restored on exit.
    """

    if threading.current_thread() is not threading.main_thread():
        logger.debug("signal relay skipped outside main thread", extra={"stage": "tunnel"})
        yield channel
        return

    def _forward(signum, frame):  # pragma: no cover - exercised via os.kill in tests
        if channel.send(signum):
            logger.warning(
                "received %s, stopping port forwarding",
                signal.Signals(signum).name,
                extra={"stage": "tunnel"},
            )

    previous = {}
    for signum in signals:
        previous[signum] = signal.getsignal(signum)
        signal.signal(signum, _forward)
    try:
        yield channel
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler if handler is not None else signal.SIG_DFL)
