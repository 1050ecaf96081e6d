#!/usr/bin/env python3
"""
Timed RX with MQTT trigger.

Listens on the subscribe topic for trigger messages of the form
    fc=<Hz>,lo=<Hz>,sps=<S/s>,bw=<Hz>,g=<dB>,t0=<epoch s>,n=<samples>,ant=<name>
captures n samples starting at device time t0 into
    <prefix><fc MHz, 3 decimals>M_<UTC t0 as YYYY-MM-DD-HH:MM:SS.mmm>.dat
and publishes one status message per trigger on the publish topic.

Settings come from TRX_* environment variables (see timed_rx_lib.config);
flags given here override them.
"""

import argparse
import dataclasses
import logging
import sys

from data_store import OutcomeStore
from timed_rx_lib.config import LOG_LEVELS, ServiceConfig
from timed_rx_lib.errors import ConfigError
from timed_rx_lib.service import EXIT_FATAL, TriggerService

logger = logging.getLogger("run_trigger_service")

# Flag dest -> ServiceConfig field
FLAG_FIELDS = {
    "usrpargs": "device_args",
    "clockref": "clock_ref",
    "mqttserv": "mqtt_server",
    "id": "client_id",
    "pubtop": "pub_topic",
    "subtop": "sub_topic",
    "prefix": "file_prefix",
    "subdev": "subdev",
    "channel": "channel",
    "slack": "setup_slack_s",
    "ntpslack": "ntp_slack_s",
    "timeoutslack": "timeout_slack_s",
    "spb": "samples_per_buffer",
    "wirefmt": "wire_format",
    "datafmt": "data_format",
    "retries": "mqtt_retries",
    "api_host": "api_host",
    "api_port": "api_port",
    "log_level": "log_level",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Timed RX with MQTT trigger")
    parser.add_argument("--usrpargs", help="UHD device address args (default \"\")")
    parser.add_argument("--clockref", help="clock/time reference: internal, external, mimo, gpsdo (default external)")
    parser.add_argument("--mqttserv", help="MQTT server to connect (default tcp://localhost:1883)")
    parser.add_argument("--id", help="own ID used as MQTT client id and in status messages (default tester)")
    parser.add_argument("--pubtop", help="topic to send responses/updates to (default response)")
    parser.add_argument("--subtop", help="topic to listen for triggers (default command)")
    parser.add_argument("--prefix", help="prefix for save files, may include a directory")
    parser.add_argument("--subdev", help="RX subdevice specification")
    parser.add_argument("--channel", type=int, help="which channel to use (default 0)")
    parser.add_argument("--slack", type=float, help="additional slack for setup operations in s (default 0.5)")
    parser.add_argument("--ntpslack", type=float, help="allowed device/host clock offset in s (default 0.1)")
    parser.add_argument("--timeoutslack", type=float, help="extra receive time beyond the capture length in s (default 0.5)")
    parser.add_argument("--spb", type=int, help="samples per buffer (default 10000)")
    parser.add_argument("--wirefmt", help="wire format: sc8 or sc16 (default sc16)")
    parser.add_argument("--datafmt", help="sample type: double, float or short (default short)")
    parser.add_argument("--retries", type=int, help="MQTT reconnect attempts before giving up (default 5)")
    parser.add_argument("--int-n", dest="int_n", action="store_true", help="tune with integer-N tuning")
    parser.add_argument("--skip-lock-checks", action="store_true", help="don't wait for ref/LO lock sensors")
    parser.add_argument("--null", action="store_true", help="run the capture but don't write files")
    parser.add_argument("--api-host", dest="api_host", help="status API bind address (default 0.0.0.0)")
    parser.add_argument("--api-port", dest="api_port", type=int, help="status API port, 0 disables (default 0)")
    parser.add_argument("--log-level", dest="log_level", choices=LOG_LEVELS, type=str.upper)
    return parser


def load_config(args: argparse.Namespace) -> ServiceConfig:
    """Environment first, then flags that were given explicitly."""
    config = ServiceConfig.from_env()

    overrides = {
        field: getattr(args, dest)
        for dest, field in FLAG_FIELDS.items()
        if getattr(args, dest) is not None
    }
    if args.int_n:
        overrides["integer_n"] = True
    if args.skip_lock_checks:
        overrides["skip_lock_checks"] = True
    if args.null:
        overrides["save_to_file"] = False

    return dataclasses.replace(config, **overrides).validate()


def main() -> int:
    args = build_parser().parse_args()

    try:
        config = load_config(args)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_FATAL

    logging.basicConfig(
        level=getattr(logging, config.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    logger.info(
        f"Starting client '{config.client_id}' on {config.mqtt_server} "
        f"(sub '{config.sub_topic}', pub '{config.pub_topic}')"
    )

    service = TriggerService(config, store=OutcomeStore())
    service.install_signal_handlers()
    return service.run()


if __name__ == "__main__":
    sys.exit(main())
