"""Background ticker for periodic jobs.

A :class:`PeriodicTask` sleeps on a ``threading.Event`` until the next due
time, runs its job, and repeats until stopped. ``tick()`` is also the manual
trigger; a non-blocking lock makes a second concurrent tick return ``None``
instead of running the job twice.
"""
import logging
import threading
from datetime import datetime, timedelta
from typing import Any, Callable

logger = logging.getLogger(__name__)


def seconds_until(hour: int, minute: int, now: datetime) -> float:
    """Seconds from ``now`` to the next local ``hour:minute``."""
    target = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return (target - now).total_seconds()


def daily_at(hour: int, minute: int = 0) -> Callable[[datetime], float]:
    if not (0 <= hour < 24 and 0 <= minute < 60):
        raise ValueError(f"Invalid time of day {hour:02d}:{minute:02d}")
    return lambda now: seconds_until(hour, minute, now)


def every(seconds: float) -> Callable[[datetime], float]:
    if seconds <= 0:
        raise ValueError("Interval must be positive")
    return lambda now: seconds


class PeriodicTask:
    def __init__(self, name: str, job: Callable[[], Any], next_delay: Callable[[datetime], float]):
        self.name = name
        self.job = job
        self.next_delay = next_delay
        self.last_result: Any = None
        self.last_run_at: datetime | None = None
        self.runs = 0
        self.skipped = 0
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def tick(self) -> Any:
        """Run the job once now. Returns None without running if a run is in flight."""
        if not self._lock.acquire(blocking=False):
            self.skipped += 1
            logger.warning("%s: previous run still in progress, skipping", self.name)
            return None
        try:
            self.last_run_at = datetime.now()
            self.last_result = self.job()
            self.runs += 1
            return self.last_result
        finally:
            self._lock.release()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name=f"periodic-{self.name}", daemon=True)
        self._thread.start()
        logger.info("%s scheduled, first run in %.0fs", self.name, self.next_delay(datetime.now()))

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("%s stopped", self.name)

    def _loop(self) -> None:
        while not self._stop.is_set():
            if self._stop.wait(self.next_delay(datetime.now())):
                break
            try:
                self.tick()
            except Exception:
                logger.exception("%s run failed", self.name)
