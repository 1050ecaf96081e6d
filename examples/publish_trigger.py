#!/usr/bin/env python3
"""
Trigger demo: publish one capture request and print the replies.

Run the service first, e.g.
    python run_trigger_service.py --id rx1 --prefix /tmp/
then
    python examples/publish_trigger.py --delay 3
"""

import argparse
import sys
import threading
import time

import paho.mqtt.client as mqtt
from paho.mqtt.enums import CallbackAPIVersion

from timed_rx_lib.codec import encode_request
from timed_rx_lib.config import parse_mqtt_server
from timed_rx_lib.models import AcquisitionRequest


def main() -> int:
    parser = argparse.ArgumentParser(description="Publish a timed RX trigger")
    parser.add_argument("--mqttserv", default="tcp://localhost:1883")
    parser.add_argument("--pubtop", default="command", help="topic the service listens on")
    parser.add_argument("--subtop", default="response", help="topic the service answers on")
    parser.add_argument("--fc", type=float, default=915e6, help="center frequency in Hz")
    parser.add_argument("--lo", type=float, default=0.0, help="LO offset in Hz")
    parser.add_argument("--sps", type=float, default=1e6, help="sample rate in S/s")
    parser.add_argument("--bw", type=float, default=1e6, help="bandwidth in Hz")
    parser.add_argument("--gain", type=float, default=20.0, help="gain in dB")
    parser.add_argument("--n", type=int, default=1000000, help="number of samples")
    parser.add_argument("--ant", default="RX2", help="antenna")
    parser.add_argument("--delay", type=float, default=3.0, help="start this many seconds from now")
    parser.add_argument("--wait", type=float, default=10.0, help="seconds to wait for the reply")
    args = parser.parse_args()

    host, port = parse_mqtt_server(args.mqttserv)
    replied = threading.Event()

    def on_message(client, userdata, message):
        text = message.payload.decode("utf-8", errors="replace")
        print(f"      [{message.topic}] {text}")
        # Presence messages use <<< >>>, statuses a single pair
        if not text.startswith("<<<"):
            replied.set()

    client = mqtt.Client(CallbackAPIVersion.VERSION2, client_id=f"trigger-{int(time.time())}")
    client.on_message = on_message

    print("=" * 70)
    print("Timed RX trigger demo")
    print("=" * 70)

    try:
        print(f"[1/3] Connecting to {host}:{port}...")
        client.connect(host, port)
        client.subscribe(args.subtop, qos=1)
        client.loop_start()

        request = AcquisitionRequest(
            center_freq_hz=args.fc,
            lo_offset_hz=args.lo,
            sample_rate_hz=args.sps,
            bandwidth_hz=args.bw,
            gain_db=args.gain,
            start_time=time.time() + args.delay,
            num_samples=args.n,
            antenna=args.ant,
        )
        message = encode_request(request)
        print(f"[2/3] Publishing on '{args.pubtop}':")
        print(f"      {message}")
        client.publish(args.pubtop, message, qos=1).wait_for_publish()

        print(f"[3/3] Waiting up to {args.delay + args.wait:.0f}s for the reply...")
        if replied.wait(args.delay + args.wait):
            print("✓ Reply received")
            return 0
        print("✗ No reply")
        return 1
    except OSError as e:
        print(f"✗ Cannot reach broker: {e}")
        return 1
    finally:
        client.loop_stop()
        client.disconnect()
        print("=" * 70)


if __name__ == "__main__":
    sys.exit(main())
