"""Host clock abstraction and pure helpers for PPS-edge arithmetic."""

import math
import time
from datetime import datetime, timezone
from typing import Optional, Protocol

from timed_rx_lib.cancellation import CancellationToken
from timed_rx_lib.errors import Cancelled


class HostClock(Protocol):
    """Protocol for the host time source (allows simulated clocks in tests)."""

    def now(self) -> float:
        """Current wall-clock time in epoch seconds."""
        ...

    def monotonic(self) -> float:
        """Monotonic seconds for measuring elapsed intervals."""
        ...

    def sleep(self, seconds: float, cancel: Optional[CancellationToken] = None) -> None:
        """Sleep for seconds; raise Cancelled if the token fires first."""
        ...

    def sleep_until(self, epoch_s: float, cancel: Optional[CancellationToken] = None) -> None:
        """Sleep until the wall clock reaches epoch_s."""
        ...


class SystemClock:
    """Wall clock of the host, assumed to be NTP disciplined."""

    def now(self) -> float:
        return time.time()

    def monotonic(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float, cancel: Optional[CancellationToken] = None) -> None:
        if seconds <= 0:
            return
        if cancel is None:
            time.sleep(seconds)
            return
        if cancel.wait(seconds):
            raise Cancelled("Sleep cancelled")

    def sleep_until(self, epoch_s: float, cancel: Optional[CancellationToken] = None) -> None:
        self.sleep(epoch_s - self.now(), cancel)


def next_edge(t: float, extra_s: int = 0) -> float:
    """Return the whole second following t, plus extra_s additional seconds."""
    return math.floor(t) + 1 + extra_s


def near_edge(t: float, slack_s: float) -> bool:
    """True if t is within slack_s of a whole second, on either side."""
    frac = t - math.floor(t)
    return frac + slack_s >= 1.0 or frac <= slack_s


def format_timestamp(t: float) -> str:
    """Render epoch seconds as s.uuuuuu for status messages."""
    return f"{t:.6f}"


def format_datestamp(t: float) -> str:
    """Render epoch seconds as UTC YYYY-MM-DD-HH:MM:SS.mmm (millisecond truncation)."""
    millis = math.floor(t * 1000)
    dt = datetime.fromtimestamp(millis // 1000, tz=timezone.utc)
    return f"{dt:%Y-%m-%d-%H:%M:%S}.{millis % 1000:03d}"
