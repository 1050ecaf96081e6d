"""Wire protocol constants and patterns for the timed RX trigger service.

Defines the inbound request grammar, the outbound status templates, the
capture filename layout and the timing constants used by clock alignment and
hardware setup.
"""

import re
from typing import Dict, Final, Tuple

# ============================================================================
# Inbound Request Grammar
# ============================================================================

# Fixed, positional key order of an inbound trigger message
REQUEST_FIELDS: Final[Tuple[str, ...]] = ("fc", "lo", "sps", "bw", "g", "t0", "n", "ant")

REQUEST_SEPARATOR: Final[str] = ","
KEY_VALUE_SEPARATOR: Final[str] = "="

_FLOAT = r"[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?"

# Example: "fc=2400000000,lo=0,sps=1000000,bw=2000000,g=30,t0=1700000000.5,n=500000,ant=TX/RX"
# Groups: 1=fc 2=lo 3=sps 4=bw 5=g 6=t0 7=n 8=ant
# Anything after a comma that follows ant is ignored.
RE_REQUEST: Final[re.Pattern[str]] = re.compile(
    rf"^fc=({_FLOAT}),lo=({_FLOAT}),sps=({_FLOAT}),bw=({_FLOAT}),g=({_FLOAT}),"
    rf"t0=({_FLOAT}),n=(\d+),ant=([^,]+)(?:,.*)?$",
    re.DOTALL,
)

# ============================================================================
# Outbound Status Messages
# ============================================================================

MSG_SAVED: Final[str] = "<{client_id} req saved {path}>"
MSG_FAILED: Final[str] = "<{client_id} req failed @ {timestamp}>"
MSG_LATE: Final[str] = "<{client_id} host late command @ {timestamp}>"
MSG_INVALID: Final[str] = "<{client_id} invalid msg>"

# Presence messages published on connect and registered as the last will
MSG_CONNECTED: Final[str] = "<<<{client_id} connected>>>"
MSG_DISCONNECTED: Final[str] = "<<<{client_id} disconnected>>>"

# Rendered in place of the file path when file output is disabled
NULL_PATH: Final[str] = "-"

# ============================================================================
# Capture Files
# ============================================================================

# <prefix><fc in MHz, 3 decimals>M_<UTC start YYYY-MM-DD-HH:MM:SS.mmm>.dat
CAPTURE_FILENAME: Final[str] = "{prefix}{fc_mhz:.3f}M_{datestamp}.dat"

# ============================================================================
# Sample Formats
# ============================================================================

# --datafmt name -> (complex cpu format, real cpu format)
DATA_FORMATS: Final[Dict[str, Tuple[str, str]]] = {
    "short": ("sc16", "s16"),
    "float": ("fc32", "f32"),
    "double": ("fc64", "f64"),
}

# Real-only wire formats select real cpu formats; all others carry I/Q pairs
WIRE_FORMATS_COMPLEX: Final[frozenset] = frozenset({"sc16", "sc8"})
WIRE_FORMATS_REAL: Final[frozenset] = frozenset({"s16"})

# ============================================================================
# Clock Alignment
# ============================================================================

# Too close to a PPS edge if within this many seconds on either side
EDGE_SLACK_S: Final[float] = 0.020

# Settle time after arming a time-next-PPS before re-measuring
SYNC_SETTLE_S: Final[float] = 2.5

# ============================================================================
# Hardware Setup
# ============================================================================

SENSOR_LO_LOCKED: Final[str] = "lo_locked"
SENSOR_REF_LOCKED: Final[str] = "ref_locked"
SENSOR_MIMO_LOCKED: Final[str] = "mimo_locked"

LOCK_POLL_INTERVAL_S: Final[float] = 0.1

# Tune request argument selecting integer-N synthesis
INTEGER_N_TUNE_ARGS: Final[str] = "mode_n=integer"

# Extra receive budget on top of the nominal capture duration
DEFAULT_TIMEOUT_SLACK_S: Final[float] = 0.5

# ============================================================================
# MQTT
# ============================================================================

MQTT_QOS: Final[int] = 1
MQTT_KEEPALIVE_S: Final[int] = 30
MQTT_MAX_RETRIES: Final[int] = 5
MQTT_DEFAULT_PORT: Final[int] = 1883
