"""Serialized execution context: every state change runs on the thread that drains this loop."""
import logging
import queue
import threading
from typing import Any, Callable


class RepeatingTimer:
    """Posts ``callback`` onto a loop every ``interval`` seconds until stopped."""

    def __init__(self, loop: "SerialEventLoop", interval: float, callback: Callable[[], Any]):
        self.loop = loop
        self.interval = interval
        self.callback = callback
        self._stopped = threading.Event()
        self._thread = threading.Thread(target=self._run, name=f"timer-{interval}s", daemon=True)

    def start(self) -> "RepeatingTimer":
        self._thread.start()
        return self

    def stop(self) -> None:
        self._stopped.set()

    @property
    def active(self) -> bool:
        return self._thread.is_alive() and not self._stopped.is_set()

    def _run(self) -> None:
        while not self._stopped.wait(self.interval):
            self.loop.post(self._fire)

    def _fire(self) -> None:
        # A tick queued just before stop() must not run.
        if not self._stopped.is_set():
            self.callback()


class SerialEventLoop:
    """
    Thread-safe work queue executed on a single thread.

    Any thread may ``post``; only the draining thread (``run_pending`` or
    ``run_forever``) executes callbacks.
    """

    def __init__(self):
        self._queue: "queue.Queue" = queue.Queue()
        self._stopped = threading.Event()

    def post(self, callback: Callable[..., Any], *args: Any) -> None:
        self._queue.put((callback, args))

    def call_repeating(self, interval: float, callback: Callable[[], Any]) -> RepeatingTimer:
        logging.debug(f"Starting repeating timer every {interval}s")
        return RepeatingTimer(self, interval, callback).start()

    def run_pending(self) -> int:
        """Run everything queued so far, including work posted while draining. Returns the count."""
        count = 0
        while True:
            try:
                callback, args = self._queue.get_nowait()
            except queue.Empty:
                return count
            self._execute(callback, args)
            count += 1

    def run_forever(self, poll_seconds: float = 0.5) -> None:
        logging.info("Event loop running")
        while not self._stopped.is_set():
            try:
                callback, args = self._queue.get(timeout=poll_seconds)
            except queue.Empty:
                continue
            self._execute(callback, args)
        logging.info("Event loop stopped")

    def stop(self) -> None:
        self._stopped.set()

    def _execute(self, callback: Callable[..., Any], args: tuple) -> None:
        try:
            callback(*args)
        except Exception as exc:
            logging.exception(f"Unexpected error in event loop callback: {exc}")
