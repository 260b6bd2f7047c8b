"""Process lifecycle: one soft-exit primitive shared by every thread.

The event that ends a run (a completed or rejected callback) happens on an
HTTP handler thread, but the listener must be torn down from the main
thread. :class:`Lifecycle` bridges the two: handlers call
:meth:`Lifecycle.request_exit`, the runner blocks in :meth:`Lifecycle.wait`
and then performs the shutdown itself.
"""

from __future__ import annotations

import signal
import threading
from contextlib import contextmanager
from typing import Any, Iterator, Optional

from idptoken.exit_codes import EXIT_INTERRUPTED, EXIT_OUT_OF_RANGE, MAX_PORTABLE_EXIT_CODE
from idptoken.output import debug


class Lifecycle:
    """Exit-code cell plus a one-shot completion event.

    Args:
        verbose: Log replaced out-of-range exit codes.

    Example::

        lifecycle = Lifecycle()
        # ... on a handler thread:
        lifecycle.request_exit(0)
        # ... on the main thread:
        code = lifecycle.wait()
    """

    def __init__(self, verbose: bool = False) -> None:
        self._verbose = verbose
        self._lock = threading.Lock()
        self._done = threading.Event()
        self._exit_code = 0

    @property
    def exit_code(self) -> int:
        """The most recently requested (clamped) exit code."""
        with self._lock:
            return self._exit_code

    @property
    def is_exit_requested(self) -> bool:
        return self._done.is_set()

    def request_exit(self, code: int) -> None:
        """Record *code* as the exit code and wake the waiting main thread.

        Safe to call from any thread and more than once; the last call
        before the process exits determines the code. Codes outside
        ``[0, 125]`` are replaced with 125.

        This never blocks and never tears anything down itself.
        """
        if code < 0 or code > MAX_PORTABLE_EXIT_CODE:
            if self._verbose:
                debug(f"Replacing desired exit code {code} with {EXIT_OUT_OF_RANGE}")
            code = EXIT_OUT_OF_RANGE
        with self._lock:
            self._exit_code = code
        self._done.set()

    def wait(self, timeout: Optional[float] = None) -> Optional[int]:
        """Block until :meth:`request_exit` is called.

        Args:
            timeout: Seconds to wait, or ``None`` to wait indefinitely.

        Returns:
            The recorded exit code, or ``None`` if *timeout* elapsed first.
        """
        if not self._done.wait(timeout):
            return None
        return self.exit_code


@contextmanager
def interrupt_handler(lifecycle: Lifecycle) -> Iterator[None]:
    """Route SIGINT into ``lifecycle.request_exit(EXIT_INTERRUPTED)`` while active.

    The handler hands the call to a short-lived thread so that it never
    takes a lock the interrupted main thread might hold. Outside the main
    thread (where signal handlers cannot be installed) this is a no-op.
    """
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def _handler(signum: int, frame: Any) -> None:
        threading.Thread(
            target=lifecycle.request_exit,
            args=(EXIT_INTERRUPTED,),
            name="idptoken-sigint",
            daemon=True,
        ).start()

    previous = signal.signal(signal.SIGINT, _handler)
    try:
        yield
    finally:
        if previous is not None:
            signal.signal(signal.SIGINT, previous)
