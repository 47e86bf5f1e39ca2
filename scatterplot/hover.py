"""
Debounced hover clearing.

Moving the pointer between two adjacent points produces a mouseout
immediately followed by a mouseover. Clearing is delayed by a short window
so the "nothing hovered" callback only fires if no new hover arrives.
"""

import threading
from typing import Callable, Optional


class HoverDebouncer:
    """Cancellable delayed task for the "nothing hovered" callback.

    Args:
        delay: Seconds to wait before running the clear callback.
    """

    def __init__(self, delay: float):
        self.delay = delay
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()
        self._closed = False

    @property
    def pending(self) -> bool:
        """True while a clear is scheduled and has not run."""
        with self._lock:
            return self._timer is not None

    def schedule(self, callback: Callable[[], None]) -> None:
        """Run ``callback`` after the delay, replacing any pending clear."""
        with self._lock:
            if self._closed:
                return
            if self._timer is not None:
                self._timer.cancel()
            timer = threading.Timer(self.delay, self._fire, args=(callback,))
            timer.daemon = True
            self._timer = timer
        timer.start()

    def _fire(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if self._timer is None or self._timer is not threading.current_thread():
                return
            self._timer = None
        callback()

    def cancel(self) -> bool:
        """Cancel a pending clear. Returns True if one was pending."""
        with self._lock:
            timer, self._timer = self._timer, None
        if timer is None:
            return False
        timer.cancel()
        return True

    def close(self) -> None:
        """Cancel any pending clear and refuse new ones (view teardown)."""
        self.cancel()
        with self._lock:
            self._closed = True
