"""
Paths, logging setup, config load/save, env overrides, typed config builders.
"""

import os
import json
import sys
import logging
import tempfile
from pathlib import Path

from dotenv import load_dotenv

from .constants import (
    DEFAULT_IP_PREFIX, DEFAULT_CAMPUS_RADIUS_M, DEFAULT_POINTS_PER_MINUTE,
    DEFAULT_MIN_SESSION_MINUTES, DEFAULT_DAILY_CAP_POINTS, IP_MATCH_MODES,
    REQUIRED_CONFIG_KEYS,
)
from .errors import ConfigError
from .models import Campus, ValidatorConfig, AccrualConfig

load_dotenv()


# ─── Paths ───────────────────────────────────────────────────────
# One data directory per user per machine. UNITREE_HOME wins when set.
_FOLDER_NAME = "UniTree"


def _default_base_dir():
    if sys.platform == "win32":
        return Path(os.environ.get("APPDATA", Path.home() / "AppData" / "Roaming")) / _FOLDER_NAME
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / _FOLDER_NAME
    return Path.home() / ".local" / "share" / _FOLDER_NAME


BASE_DIR = Path(os.environ.get("UNITREE_HOME") or _default_base_dir())
try:
    BASE_DIR.mkdir(parents=True, exist_ok=True)
except OSError:
    BASE_DIR = Path(tempfile.gettempdir()) / _FOLDER_NAME
    BASE_DIR.mkdir(parents=True, exist_ok=True)

CONFIG_FILE = BASE_DIR / "config.json"
LOG_FILE = BASE_DIR / "agent.log"
SESSIONS_FILE = BASE_DIR / "sessions.json"
LEDGER_FILE = BASE_DIR / "ledger.jsonl"
STATUS_FILE = BASE_DIR / "status.json"


# ─── Safe print (no crash when --noconsole) ──────────────────────

def safe_print(*args, **kwargs):
    try:
        print(*args, **kwargs)
    except Exception:
        pass


# ─── Logging ─────────────────────────────────────────────────────

try:
    if LOG_FILE.exists() and LOG_FILE.stat().st_size > 1_000_000:
        LOG_FILE.write_text("")
except OSError:
    pass

_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
_LOG_LEVEL = getattr(logging, os.environ.get("UNITREE_LOG_LEVEL", "INFO").upper(), logging.INFO)

logging.basicConfig(
    filename=str(LOG_FILE),
    level=_LOG_LEVEL,
    format=_LOG_FORMAT,
    datefmt="%Y-%m-%d %H:%M:%S",
    encoding="utf-8",
)
log = logging.getLogger("svc")

console_handler = logging.StreamHandler(sys.stdout)
console_handler.setLevel(_LOG_LEVEL)
console_handler.setFormatter(logging.Formatter(_LOG_FORMAT))
log.addHandler(console_handler)


# ─── Config Management ──────────────────────────────────────────

def load_config(path=None):
    """Load config from disk and apply env overrides. Returns dict or None."""
    path = Path(path) if path else CONFIG_FILE
    config = None
    if path.exists():
        try:
            with open(path, "r", encoding="utf-8") as f:
                config = json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            log.warning("Config at %s unreadable: %s", path, e)
            config = None
    overrides = env_overrides()
    if config is None and not overrides:
        return None
    merged = dict(config or {})
    merged.update(overrides)
    return merged


def save_config(config, path=None):
    """Save config dict to disk."""
    path = Path(path) if path else CONFIG_FILE
    with open(path, "w", encoding="utf-8") as f:
        json.dump(config, f, indent=2)
    log.info("Config saved to %s", path)


def _env_bool(value):
    return value.strip().lower() in ("1", "true", "yes", "on")


# env var → (config key, parser)
_ENV_MAP = {
    "UNITREE_SERVER_URL": ("serverUrl", str),
    "UNITREE_API_TOKEN": ("apiToken", str),
    "UNITREE_USER_ID": ("userId", str),
    "UNITREE_DEVICE_ID": ("deviceId", str),
    "UNITREE_IP_PREFIX": ("ipPrefix", str),
    "UNITREE_IP_MATCH_MODE": ("ipMatchMode", str),
    "UNITREE_POINTS_PER_MINUTE": ("pointsPerMinute", float),
    "UNITREE_MIN_SESSION_MINUTES": ("minSessionMinutes", float),
    "UNITREE_DAILY_CAP_POINTS": ("dailyCapPoints", int),
    "UNITREE_ENABLE_LOCATION_TRACKING": ("enableLocationTracking", _env_bool),
    "UNITREE_TICK_INTERVAL_SEC": ("tickIntervalSec", float),
    "UNITREE_HEARTBEAT_INTERVAL_SEC": ("heartbeatIntervalSec", float),
    "UNITREE_TICK_TIMEOUT_SEC": ("tickTimeoutSec", float),
    "UNITREE_MAX_SESSION_HOURS": ("maxSessionHours", float),
    "UNITREE_SYNC_INTERVAL_SEC": ("syncIntervalSec", float),
}


def env_overrides(environ=None):
    """
    Collect UNITREE_* overrides from the environment (.env already loaded).
    A single campus may be given via UNITREE_CAMPUS_LAT / _LNG / _RADIUS / _NAME.
    Unparseable values are logged and skipped.
    """
    environ = os.environ if environ is None else environ
    out = {}
    for var, (key, parse) in _ENV_MAP.items():
        raw = environ.get(var)
        if raw is None or raw == "":
            continue
        try:
            out[key] = parse(raw)
        except ValueError:
            log.warning("Ignoring %s=%r (not a valid %s)", var, raw, parse.__name__)

    lat, lng = environ.get("UNITREE_CAMPUS_LAT"), environ.get("UNITREE_CAMPUS_LNG")
    if lat and lng:
        try:
            out["campuses"] = [{
                "name": environ.get("UNITREE_CAMPUS_NAME", "Main Campus"),
                "lat": float(lat),
                "lng": float(lng),
                "radiusMeters": float(environ.get("UNITREE_CAMPUS_RADIUS", DEFAULT_CAMPUS_RADIUS_M)),
            }]
        except ValueError:
            log.warning("Ignoring UNITREE_CAMPUS_* (coordinates not numeric)")
    return out


def validate_config(config):
    """Raise ConfigError if required keys are missing."""
    if not config:
        raise ConfigError(f"No config found at {CONFIG_FILE}")
    missing = [k for k in REQUIRED_CONFIG_KEYS if not config.get(k)]
    if missing:
        raise ConfigError("Missing required config keys: " + ", ".join(missing))
    mode = config.get("ipMatchMode", "octet")
    if mode not in IP_MATCH_MODES:
        raise ConfigError(f"ipMatchMode must be one of {IP_MATCH_MODES}, got {mode!r}")
    return config


def build_validator_config(config):
    campuses = []
    for entry in config.get("campuses", []):
        campuses.append(Campus(
            name=entry.get("name", "Campus"),
            latitude=float(entry["lat"]),
            longitude=float(entry["lng"]),
            radius_meters=float(entry.get("radiusMeters", DEFAULT_CAMPUS_RADIUS_M)),
        ))
    if not campuses:
        log.warning("No campuses configured — location check will always fail")
    return ValidatorConfig(
        ip_prefix=config.get("ipPrefix", DEFAULT_IP_PREFIX),
        campuses=tuple(campuses),
        ip_match_mode=config.get("ipMatchMode", "octet"),
    )


def build_accrual_config(config):
    return AccrualConfig(
        points_per_minute=float(config.get("pointsPerMinute", DEFAULT_POINTS_PER_MINUTE)),
        min_session_minutes=float(config.get("minSessionMinutes", DEFAULT_MIN_SESSION_MINUTES)),
        daily_cap_points=int(config.get("dailyCapPoints", DEFAULT_DAILY_CAP_POINTS)),
    )
