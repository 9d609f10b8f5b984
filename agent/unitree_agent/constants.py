"""
Constants, thresholds, defaults, and API endpoints.
"""

AGENT_VERSION = "1.2.0"

# ─── Tick loop ───────────────────────────────────────────────────
TICK_INTERVAL_SEC = 30          # Sample IP + location and drive the state machine
HEARTBEAT_INTERVAL_SEC = 60     # Persist a heartbeat at most once per minute (limits I/O)
TICK_TIMEOUT_SEC = 180          # No valid tick for 3 min → session ends at last valid tick
SAMPLE_TIMEOUT_SEC = 10         # Max wait for an IP or location sample
MAX_SESSION_HOURS = 5           # Hard ceiling, a session never runs forever

# ─── Persistence retry ───────────────────────────────────────────
HEARTBEAT_RETRY_BASE_SEC = 5    # First heartbeat retry after 5s, then 10s, 20s...
HEARTBEAT_RETRY_MAX_SEC = 300
TERMINAL_RETRY_BASE_SEC = 0.5   # Ending→Ended write retried until it sticks
TERMINAL_RETRY_MAX_SEC = 30

# ─── Validation defaults ─────────────────────────────────────────
DEFAULT_IP_PREFIX = "192.168"
IP_MATCH_MODES = ("octet", "string", "cidr")
EARTH_RADIUS_M = 6371000.0
DEFAULT_CAMPUS_RADIUS_M = 100.0
MAX_FIX_AGE_SEC = 120           # File-provided GPS fixes older than this are ignored

# ─── Accrual defaults ────────────────────────────────────────────
DEFAULT_POINTS_PER_MINUTE = 1   # 1 minute = 1 point (60 points per hour)
DEFAULT_MIN_SESSION_MINUTES = 5
DEFAULT_DAILY_CAP_POINTS = 480  # 8 hours of campus time

# ─── Network / sync ──────────────────────────────────────────────
API_TIMEOUT_SYNC = 25           # Seconds, generous for cold starts
API_TIMEOUT_BALANCE = 10
SYNC_INTERVAL_SEC = 300         # Flush pending records every 5 minutes
CONNECTIVITY_CHECK_SEC = 60
STATUS_WRITE_SEC = 15           # status.json refresh for UI polling
PRUNE_INTERVAL_SEC = 3600
RETENTION_DAYS = 30             # Synced records older than this are dropped

SESSION_SYNC_PATH = "/api/wifi/background-sync"
TRANSACTION_SYNC_PATH = "/api/points/wifi-transaction"
TODAY_POINTS_PATH = "/api/points/today"

REQUIRED_CONFIG_KEYS = ("serverUrl", "userId", "deviceId")
