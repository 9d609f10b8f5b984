"""
Location providers and the permission tri-state.

The agent never asks the OS for permission itself; a provider reports what
it has been granted. Anything other than a fresh fix means "no location",
which the validator treats as off-campus.
"""

import enum
import json
import time
from pathlib import Path

from .config import log
from .constants import MAX_FIX_AGE_SEC
from .models import LocationSignal


class PermissionState(str, enum.Enum):
    GRANTED = "granted"
    DENIED = "denied"
    UNDETERMINED = "undetermined"


class LocationProvider:
    """Base provider: subclasses implement permission() and current_location()."""

    def permission(self):
        return PermissionState.UNDETERMINED

    def current_location(self, timeout):
        raise NotImplementedError


class DisabledLocationProvider(LocationProvider):
    """Location tracking switched off in config."""

    def permission(self):
        return PermissionState.DENIED

    def current_location(self, timeout):
        return None


class StaticLocationProvider(LocationProvider):
    """Fixed coordinates for a workstation or kiosk that never moves."""

    def __init__(self, latitude, longitude, accuracy_meters=10.0, clock=time.time):
        self._lat = float(latitude)
        self._lng = float(longitude)
        self._accuracy = float(accuracy_meters)
        self._clock = clock

    def permission(self):
        return PermissionState.GRANTED

    def current_location(self, timeout):
        return LocationSignal(self._lat, self._lng, self._accuracy, self._clock())


class FileLocationProvider(LocationProvider):
    """
    Reads the latest fix written by a companion process (phone bridge, GPS
    daemon) as JSON: {"latitude", "longitude", "accuracy", "timestamp",
    "permission"}. Missing file → undetermined. Stale fix → None.
    """

    def __init__(self, path, max_fix_age=MAX_FIX_AGE_SEC, clock=time.time):
        self.path = Path(path)
        self._max_age = max_fix_age
        self._clock = clock

    def _load(self):
        try:
            return json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as e:
            log.warning("Location file %s unreadable: %s", self.path, e)
            return None

    def permission(self):
        data = self._load()
        if data is None:
            return PermissionState.UNDETERMINED
        try:
            return PermissionState(data.get("permission", "granted"))
        except ValueError:
            return PermissionState.UNDETERMINED

    def current_location(self, timeout):
        data = self._load()
        if not data:
            return None
        try:
            fix = LocationSignal(
                latitude=float(data["latitude"]),
                longitude=float(data["longitude"]),
                accuracy_meters=float(data.get("accuracy", 0.0)),
                sampled_at=float(data["timestamp"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            log.warning("Location file %s malformed: %s", self.path, e)
            return None
        age = self._clock() - fix.sampled_at
        if age > self._max_age:
            log.debug("Location fix is %.0fs old (> %ds) — ignoring", age, self._max_age)
            return None
        return fix


def provider_from_config(config):
    """Build the provider named in config["locationProvider"]."""
    if config.get("enableLocationTracking") is False:
        return DisabledLocationProvider()
    provider_cfg = config.get("locationProvider") or {}
    kind = provider_cfg.get("type", "disabled")
    if kind == "static":
        return StaticLocationProvider(
            provider_cfg["latitude"], provider_cfg["longitude"], provider_cfg.get("accuracyMeters", 10.0),
        )
    if kind == "file":
        return FileLocationProvider(provider_cfg["path"], provider_cfg.get("maxFixAgeSec", MAX_FIX_AGE_SEC))
    if kind != "disabled":
        log.warning("Unknown location provider %r — location disabled", kind)
    return DisabledLocationProvider()
