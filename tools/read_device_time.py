#!/usr/bin/env python3
"""Print the clock source and current time of a USRP next to host time."""

import argparse
import logging
import sys

from timed_rx_lib.clock_sync import describe_offset
from timed_rx_lib.device import UsrpRadio
from timed_rx_lib.errors import DeviceError
from timed_rx_lib.timing import SystemClock, format_timestamp


def main() -> int:
    parser = argparse.ArgumentParser(description="Read USRP time and clock source")
    parser.add_argument("--addr", default="192.168.10.3", help="IP address of the USRP")
    parser.add_argument("--nowarn", action="store_true", help="hide library warnings")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.ERROR if args.nowarn else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    try:
        radio = UsrpRadio.open(f"addr={args.addr}", clock_ref=None, check_lock=False)
    except DeviceError as e:
        print(f"✗ {e}", file=sys.stderr)
        return 1

    clock = SystemClock()
    device_time = radio.get_time_now()
    host_time = clock.now()

    print(f"Using device: {radio.pp_string}")
    print(f"current clock source: {radio.get_clock_source()}")
    print(f"usrp time: {format_timestamp(device_time)}")
    print(f"current host time: {format_timestamp(host_time)}")
    print(f"offset: {describe_offset(device_time - host_time)}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
