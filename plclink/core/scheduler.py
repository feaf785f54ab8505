"""
Transmission Scheduler
======================
Fixed-cadence transmit loop. Each tick:

    1. Snapshot the parameter vector from the ParameterStore
    2. Encode it into a 32-byte frame
    3. Hand the frame to the active session's send()

The next deadline advances from the previous deadline, not from
"now", so slow sends do not shift the long-run rate. A failed
send skips the tick; too many consecutive failures stop the loop
and are reported through `on_fatal` as a ConnectionLost.
"""

import logging
import threading
import time
from typing import Callable, Optional

from plclink.core.errors import ConnectionLost, SendError
from plclink.core.frame_codec import encode_parameters
from plclink.core.parameter_store import ParameterStore

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_MS = 20
DEFAULT_MAX_FAILURES = 5

# Lag (in intervals) after which the schedule restarts from "now"
# instead of bursting to catch up
MAX_CATCH_UP_INTERVALS = 50


class TransmissionScheduler:
    """
    Periodic sender driven by a monotonic deadline.

    `clock` and `wait` are injectable so the cadence can be driven
    by a fake clock in tests. `wait(timeout)` must return True when
    a stop was requested during the wait.
    """

    def __init__(
        self,
        store: ParameterStore,
        send: Callable[[bytes], None],
        interval_ms: float = DEFAULT_INTERVAL_MS,
        max_failures: int = DEFAULT_MAX_FAILURES,
        on_fatal: Optional[Callable[[ConnectionLost], None]] = None,
        on_skip: Optional[Callable[[SendError], None]] = None,
        clock: Callable[[], float] = time.monotonic,
        wait: Optional[Callable[[float], bool]] = None,
    ):
        if interval_ms <= 0:
            raise ValueError("interval_ms must be > 0")
        if max_failures < 1:
            raise ValueError("max_failures must be >= 1")
        self.store = store
        self._send = send
        self._interval_ms = float(interval_ms)
        self.max_failures = max_failures
        self._on_fatal = on_fatal
        self._on_skip = on_skip
        self._clock = clock
        self._stop_event = threading.Event()
        self._wait = wait or self._stop_event.wait
        self._thread: Optional[threading.Thread] = None
        self._running = False

        self._tick_count = 0
        self._sent_count = 0
        self._skipped_count = 0
        self._consecutive_failures = 0
        self._overrun_count = 0
        self._last_tick_time: Optional[float] = None
        self._first_tick_time: Optional[float] = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def interval_ms(self) -> float:
        return self._interval_ms

    @interval_ms.setter
    def interval_ms(self, value: float):
        if value <= 0:
            raise ValueError("interval_ms must be > 0")
        self._interval_ms = float(value)

    @property
    def tick_count(self) -> int:
        return self._tick_count

    @property
    def sent_count(self) -> int:
        return self._sent_count

    @property
    def skipped_count(self) -> int:
        return self._skipped_count

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def overrun_count(self) -> int:
        return self._overrun_count

    @property
    def mean_interval_ms(self) -> float:
        """Average spacing between ticks since start."""
        if self._tick_count < 2:
            return 0.0
        span = self._last_tick_time - self._first_tick_time
        return span * 1000.0 / (self._tick_count - 1)

    def start(self, blocking: bool = False):
        """Start the transmit loop."""
        if self._running:
            return
        self._stop_event.clear()
        self._running = True
        self._consecutive_failures = 0
        logger.info("Transmit loop starting (interval: %.1f ms)", self._interval_ms)

        if blocking:
            self._run()
        else:
            self._thread = threading.Thread(
                target=self._run, name="plclink-tx", daemon=True
            )
            self._thread.start()

    def stop(self):
        """Stop the transmit loop; no send is issued after this returns."""
        self._running = False
        self._stop_event.set()
        thread = self._thread
        if thread and thread is not threading.current_thread():
            thread.join(timeout=5.0)
        self._thread = None

    def single_tick(self) -> bool:
        """Snapshot, encode and send exactly once. Returns True on success."""
        self._tick_count += 1
        now = self._clock()
        if self._first_tick_time is None:
            self._first_tick_time = now
        self._last_tick_time = now

        frame = encode_parameters(self.store.snapshot_for_send())
        try:
            self._send(frame)
        except SendError as exc:
            self._skipped_count += 1
            self._consecutive_failures += 1
            logger.warning(
                "Tick %d skipped (%d consecutive): %s",
                self._tick_count, self._consecutive_failures, exc,
            )
            if self._on_skip:
                self._on_skip(exc)
            return False

        self._sent_count += 1
        self._consecutive_failures = 0
        logger.debug("Tick %d sent %d bytes", self._tick_count, len(frame))
        return True

    def _run(self):
        next_fire = self._clock()

        while self._running:
            try:
                self.single_tick()
            except Exception:
                logger.exception("Transmit tick exception")
                self._skipped_count += 1
                self._consecutive_failures += 1

            if self._consecutive_failures >= self.max_failures:
                self._fail(ConnectionLost(
                    f"{self._consecutive_failures} consecutive send failures"
                ))
                break

            next_fire += self._interval_ms / 1000.0
            delay = next_fire - self._clock()
            if delay > 0:
                if self._wait(delay) or not self._running:
                    break
            elif -delay > MAX_CATCH_UP_INTERVALS * self._interval_ms / 1000.0:
                self._overrun_count += 1
                logger.warning(
                    "Transmit loop %.1f ms behind schedule, resynchronizing",
                    -delay * 1000.0,
                )
                next_fire = self._clock()
            elif self._stop_event.is_set():
                break

        self._running = False
        logger.info(
            "Transmit loop stopped. Ticks: %d, sent: %d, skipped: %d",
            self._tick_count, self._sent_count, self._skipped_count,
        )

    def _fail(self, error: ConnectionLost):
        self._running = False
        logger.error("Transmit loop giving up: %s", error)
        if self._on_fatal:
            try:
                self._on_fatal(error)
            except Exception:
                logger.exception("Fatal handler failed")
