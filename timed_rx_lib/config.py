"""Service configuration: defaults, environment overrides and validation."""

import logging
import os
from dataclasses import dataclass, fields
from typing import Mapping, Optional, Tuple
from urllib.parse import urlsplit

from timed_rx_lib import protocol
from timed_rx_lib.errors import ConfigError
from timed_rx_lib.models import SampleFormat, resolve_sample_format

logger = logging.getLogger(__name__)

ENV_PREFIX = "TRX_"

CLOCK_REFERENCES = ("internal", "external", "mimo", "gpsdo")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class ServiceConfig:
    """All settings of the trigger service.

    Every field can be set from an environment variable named
    TRX_<FIELD NAME IN UPPER CASE>, e.g. TRX_MQTT_SERVER or TRX_NTP_SLACK_S.
    Command-line flags override the environment.
    """

    # Radio
    device_args: str = ""
    clock_ref: str = "external"
    channel: int = 0
    subdev: str = ""
    samples_per_buffer: int = 10000
    wire_format: str = "sc16"
    data_format: str = "short"
    integer_n: bool = False
    skip_lock_checks: bool = False

    # Timing
    setup_slack_s: float = 0.5
    ntp_slack_s: float = 0.1
    timeout_slack_s: float = protocol.DEFAULT_TIMEOUT_SLACK_S

    # Output
    file_prefix: str = ""
    save_to_file: bool = True

    # Control channel
    mqtt_server: str = f"tcp://localhost:{protocol.MQTT_DEFAULT_PORT}"
    client_id: str = "tester"
    pub_topic: str = "response"
    sub_topic: str = "command"
    mqtt_retries: int = protocol.MQTT_MAX_RETRIES

    # Service
    api_host: str = "0.0.0.0"
    api_port: int = 0
    log_level: str = "INFO"
    worker_restarts: int = 3

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ServiceConfig":
        """Build a config from TRX_* environment variables over the defaults.

        Args:
            environ: Mapping to read instead of os.environ

        Returns:
            ServiceConfig (not yet validated)

        Raises:
            ConfigError: If a variable cannot be converted to its field type
        """
        env = os.environ if environ is None else environ
        values = {}

        for f in fields(cls):
            key = ENV_PREFIX + f.name.upper()
            if key not in env:
                continue
            raw = env[key]
            try:
                values[f.name] = _convert(raw, f.type)
            except ValueError as e:
                raise ConfigError(f"Invalid value for {key}: {raw!r}") from e

        return cls(**values)

    def validate(self) -> "ServiceConfig":
        """Check value ranges and names.

        Returns:
            self, for chaining

        Raises:
            ConfigError: On the first invalid setting
        """
        if self.clock_ref not in CLOCK_REFERENCES:
            raise ConfigError(f"clock_ref must be one of {CLOCK_REFERENCES}, got '{self.clock_ref}'")
        if self.channel < 0:
            raise ConfigError(f"channel must be >= 0, got {self.channel}")
        if self.samples_per_buffer <= 0:
            raise ConfigError(f"samples_per_buffer must be > 0, got {self.samples_per_buffer}")
        if self.setup_slack_s < 0:
            raise ConfigError(f"setup_slack_s must be >= 0, got {self.setup_slack_s}")
        if self.ntp_slack_s <= 0:
            raise ConfigError(f"ntp_slack_s must be > 0, got {self.ntp_slack_s}")
        if self.timeout_slack_s < 0:
            raise ConfigError(f"timeout_slack_s must be >= 0, got {self.timeout_slack_s}")
        if not self.client_id:
            raise ConfigError("client_id must not be empty")
        if not self.pub_topic or not self.sub_topic:
            raise ConfigError("pub_topic and sub_topic must not be empty")
        if self.mqtt_retries < 0:
            raise ConfigError(f"mqtt_retries must be >= 0, got {self.mqtt_retries}")
        if not 0 <= self.api_port <= 65535:
            raise ConfigError(f"api_port must be in 0..65535, got {self.api_port}")
        if self.log_level.upper() not in LOG_LEVELS:
            raise ConfigError(f"log_level must be one of {LOG_LEVELS}, got '{self.log_level}'")
        if self.worker_restarts < 0:
            raise ConfigError(f"worker_restarts must be >= 0, got {self.worker_restarts}")

        parse_mqtt_server(self.mqtt_server)
        # Raises ConfigError for unknown format names
        self.sample_format
        return self

    @property
    def sample_format(self) -> SampleFormat:
        return resolve_sample_format(self.data_format, self.wire_format)

    @property
    def mqtt_address(self) -> Tuple[str, int]:
        return parse_mqtt_server(self.mqtt_server)


def parse_mqtt_server(url: str) -> Tuple[str, int]:
    """Split a broker URL such as "tcp://localhost:1883" into host and port.

    The scheme is optional ("broker:1883" works) and the port defaults to 1883.

    Raises:
        ConfigError: If the URL has an unsupported scheme, no host or a bad port
    """
    text = url.strip()
    if "://" not in text:
        text = "tcp://" + text

    parts = urlsplit(text)
    if parts.scheme not in ("tcp", "mqtt"):
        raise ConfigError(f"Unsupported MQTT server scheme '{parts.scheme}' in {url!r}")
    if not parts.hostname:
        raise ConfigError(f"MQTT server URL has no host: {url!r}")

    try:
        port = parts.port or protocol.MQTT_DEFAULT_PORT
    except ValueError as e:
        raise ConfigError(f"Invalid port in MQTT server URL {url!r}") from e

    return parts.hostname, port


def _convert(raw: str, field_type: object) -> object:
    """Convert an environment string to a dataclass field type."""
    if field_type in (bool, "bool"):
        lowered = raw.strip().lower()
        if lowered in ("1", "true", "yes", "on"):
            return True
        if lowered in ("0", "false", "no", "off", ""):
            return False
        raise ValueError(f"not a boolean: {raw!r}")
    if field_type in (int, "int"):
        return int(raw)
    if field_type in (float, "float"):
        return float(raw)
    return raw
