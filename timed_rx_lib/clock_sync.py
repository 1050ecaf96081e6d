"""Alignment of the device clock to host (NTP) time using the PPS edge."""

import logging
import math
from typing import Optional

from timed_rx_lib import protocol
from timed_rx_lib.cancellation import CancellationToken
from timed_rx_lib.device import RadioDevice
from timed_rx_lib.timing import HostClock, SystemClock, format_timestamp, near_edge, next_edge

logger = logging.getLogger(__name__)


class ClockSyncSupervisor:
    """Keeps the device clock within a threshold of host time.

    ensure_synced() loops Measuring -> AwaitingSafeWindow -> Arming ->
    Cooldown -> Measuring until the offset is within threshold. It is meant
    to run before every request and costs one measurement when the clocks
    already agree.

    Arming always targets the edge after next: the device latches on an edge
    only if the command is in place strictly before it, so the value written
    is next_edge + 1.
    """

    def __init__(
        self,
        device: RadioDevice,
        threshold_s: float,
        clock: Optional[HostClock] = None,
        edge_slack_s: float = protocol.EDGE_SLACK_S,
        settle_s: float = protocol.SYNC_SETTLE_S,
    ) -> None:
        """Initialize supervisor.

        Args:
            device: Radio whose clock is aligned
            threshold_s: Maximum tolerated |device - host| offset in seconds
            clock: Host clock (defaults to SystemClock)
            edge_slack_s: Unsafe window on either side of a whole second
            settle_s: Cooldown after arming before re-measuring
        """
        if threshold_s <= 0:
            raise ValueError(f"threshold_s must be positive, got {threshold_s}")

        self._device = device
        self._clock = clock or SystemClock()
        self.threshold_s = threshold_s
        self.edge_slack_s = edge_slack_s
        self.settle_s = settle_s

        self.last_offset: Optional[float] = None
        self.sync_count = 0

    def measure_offset(self) -> float:
        """Return device time minus host time, in seconds."""
        device_time = self._device.get_time_now()
        host_time = self._clock.now()
        offset = device_time - host_time
        self.last_offset = offset
        return offset

    def is_synced(self) -> bool:
        return abs(self.measure_offset()) <= self.threshold_s

    def ensure_synced(self, cancel: Optional[CancellationToken] = None) -> float:
        """Block until the device clock is within threshold of host time.

        Args:
            cancel: Optional token observed during every sleep

        Returns:
            Final measured offset in seconds

        Raises:
            Cancelled: If the token fires before convergence
        """
        while True:
            offset = self.measure_offset()
            if abs(offset) <= self.threshold_s:
                logger.debug(f"Device clock synced, offset {offset * 1e3:+.3f} ms")
                return offset

            logger.warning(
                f"Device clock not synced with host: offset {offset:+.6f}s "
                f"(threshold {self.threshold_s}s)"
            )
            self._arm_next_pps(cancel)
            self._clock.sleep(self.settle_s, cancel)

    def _arm_next_pps(self, cancel: Optional[CancellationToken]) -> None:
        """Wait for a safe window away from the edge, then arm the latch."""
        while True:
            now = self._clock.now()
            if not near_edge(now, self.edge_slack_s):
                break
            # Too close to the edge: skip past it plus extra slack
            resume_at = next_edge(now) + 2 * self.edge_slack_s
            logger.debug(
                f"Host time {format_timestamp(now)} within {self.edge_slack_s}s of a PPS edge, "
                f"waiting until {format_timestamp(resume_at)}"
            )
            self._clock.sleep_until(resume_at, cancel)

        latch_value = float(next_edge(now, extra_s=1))
        logger.info(
            f"[{format_timestamp(now)}] arming device time {format_timestamp(latch_value)} "
            f"on PPS edge"
        )
        self._device.set_time_unknown_pps(latch_value)
        self.sync_count += 1


def describe_offset(offset: float) -> str:
    """Short human-readable offset string used by tools."""
    sign = "ahead of" if offset >= 0 else "behind"
    return f"device {math.fabs(offset):.6f}s {sign} host"
