#!/usr/bin/env python3
"""Set the time of a USRP immediately (not on a PPS edge)."""

import argparse
import logging
import sys

from timed_rx_lib.device import UsrpRadio
from timed_rx_lib.errors import DeviceError
from timed_rx_lib.timing import format_timestamp


def main() -> int:
    parser = argparse.ArgumentParser(description="Reset USRP time")
    parser.add_argument("--addr", default="192.168.10.3", help="IP address of the USRP")
    parser.add_argument("--time", type=float, default=0.0, help="time to set in seconds (default 0)")
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

    print(f"usrp time before: {format_timestamp(radio.get_time_now())}")
    print(f"set time to {args.time}")
    radio.set_time_now(args.time)
    print(f"usrp time after: {format_timestamp(radio.get_time_now())}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
