"""Deadline validation for timed capture requests."""

import logging
from typing import Optional

from timed_rx_lib.errors import LateDeadlineError
from timed_rx_lib.models import AcquisitionRequest
from timed_rx_lib.timing import HostClock, SystemClock, format_timestamp

logger = logging.getLogger(__name__)


def check_deadline(
    request: AcquisitionRequest,
    now: float,
    clock_slack: float,
    setup_slack: float,
) -> float:
    """Reject a request whose start cannot be honored.

    In the worst case host time lags the PPS-disciplined device clock by
    clock_slack and hardware setup consumes setup_slack, so the request fails
    unless now + clock_slack + setup_slack < start_time. Equality is rejected.

    Args:
        request: Decoded request
        now: Current host time (epoch seconds)
        clock_slack: Bound on residual host/device clock error
        setup_slack: Bound on hardware configuration and arming time

    Returns:
        Remaining margin in seconds (> 0)

    Raises:
        LateDeadlineError: If the start time is already out of reach
    """
    margin = request.start_time - (now + clock_slack + setup_slack)
    if margin <= 0:
        raise LateDeadlineError(
            f"Request for {format_timestamp(request.start_time)} is late by "
            f"{-margin:.6f}s (now={format_timestamp(now)}, "
            f"clock_slack={clock_slack}s, setup_slack={setup_slack}s)",
            margin_s=margin,
        )
    return margin


class DeadlineGuard:
    """Holds the configured slacks and validates requests against the host clock."""

    def __init__(
        self,
        clock_slack: float,
        setup_slack: float,
        clock: Optional[HostClock] = None,
    ) -> None:
        self.clock_slack = clock_slack
        self.setup_slack = setup_slack
        self._clock = clock or SystemClock()

    def check(self, request: AcquisitionRequest, now: Optional[float] = None) -> float:
        """Validate request at now (defaults to the host clock).

        Returns:
            Remaining margin in seconds

        Raises:
            LateDeadlineError: If the request is late
        """
        if now is None:
            now = self._clock.now()
        margin = check_deadline(request, now, self.clock_slack, self.setup_slack)
        logger.debug(f"Deadline ok, margin {margin:.3f}s")
        return margin
