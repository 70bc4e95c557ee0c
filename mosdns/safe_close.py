"""Coordinated shutdown of a service and the threads it started."""

from __future__ import annotations

import threading
from typing import Callable, Optional

DoneFunc = Callable[[], None]
AttachedFunc = Callable[[DoneFunc, threading.Event], None]


class SafeClose:
    """Lets ``wait_closed`` return only after every attached thread has finished.

    1. The main service thread starts and waits on ``close_signal()``.
    2. Every sub thread is started by ``attach`` and waits on the same signal.
    3. Any thread can call ``send_close_signal`` on a fatal error.
    4. Any third party can call ``send_close_signal`` to stop the service.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._signal = threading.Event()
        self._err: Optional[BaseException] = None
        self._pending = 0

    def wait_closed(self) -> None:
        """Block until the close signal is sent and all attached threads are done.

        Raises the error given to ``send_close_signal``, if any.
        """
        self._signal.wait()
        with self._idle:
            self._idle.wait_for(lambda: self._pending == 0)
        if self._err is not None:
            raise self._err

    def send_close_signal(self, err: Optional[BaseException] = None) -> None:
        """Send the close signal; err is raised by ``wait_closed``.

        Only the first call has any effect.
        """
        with self._lock:
            if self._signal.is_set():
                return
            self._err = err
            self._signal.set()

    def close_signal(self) -> threading.Event:
        """The event that is set once the close signal has been sent."""
        return self._signal

    def attach(self, func: AttachedFunc) -> None:
        """Run ``func(done, close_signal)`` in a new thread tracked by ``wait_closed``.

        func must call ``done`` once it has finished. Nothing runs if the close
        signal was already sent.
        """
        with self._lock:
            if self._signal.is_set():
                return
            self._pending += 1
            thread = threading.Thread(
                target=func, args=(self._make_done(), self._signal), daemon=True
            )
            thread.start()

    def _make_done(self) -> DoneFunc:
        called = False

        def done() -> None:
            nonlocal called
            with self._idle:
                if called:
                    raise RuntimeError("done called more than once")
                called = True
                self._pending -= 1
                self._idle.notify_all()

        return done