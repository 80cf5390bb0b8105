"""
Deadline guard for blocking calls (network reads, image decoding).

The call runs on its own daemon thread and the caller stops waiting once the
timeout passes. A call that overruns keeps only its own thread busy, so later
calls are never queued behind it.
"""

import threading
from concurrent.futures import Future
from concurrent.futures import TimeoutError as DeadlineExceeded


def call_with_deadline(fn, timeout: float, *args, name: str = 'deadline-call'):
    """
    Run fn(*args) and return its result, waiting at most timeout seconds.

    Exceptions raised by fn are re-raised in the caller.

    Raises:
        DeadlineExceeded: if fn has not finished within timeout
    """
    future = Future()

    def runner():
        if not future.set_running_or_notify_cancel():
            return
        try:
            future.set_result(fn(*args))
        except Exception as e:
            future.set_exception(e)

    threading.Thread(target=runner, name=name, daemon=True).start()
    return future.result(timeout=max(timeout, 0))


__all__ = ['call_with_deadline', 'DeadlineExceeded']
