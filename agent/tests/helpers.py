"""Shared fixtures for the agent tests: a campus, configs, signal builders."""

from datetime import datetime

from unitree_agent.models import (
    Campus, ValidatorConfig, AccrualConfig, NetworkSignal, LocationSignal,
)

CAMPUS = Campus(name="Main Campus", latitude=24.8607, longitude=67.0011, radius_meters=100)

# ~50m north of the campus centre (1 deg latitude ≈ 111.2 km)
NEAR_LAT = CAMPUS.latitude + 50 / 111_195
# ~2km away
FAR_LAT = CAMPUS.latitude + 2000 / 111_195

VALIDATOR_CONFIG = ValidatorConfig(ip_prefix="10.22", campuses=(CAMPUS,))
ACCRUAL_CONFIG = AccrualConfig(points_per_minute=2, min_session_minutes=5, daily_cap_points=500)


def net(ip="10.22.5.9", at=0.0):
    return NetworkSignal(ip_address=ip, sampled_at=at)


def near(at=0.0):
    return LocationSignal(latitude=NEAR_LAT, longitude=CAMPUS.longitude, accuracy_meters=10, sampled_at=at)


def far(at=0.0):
    return LocationSignal(latitude=FAR_LAT, longitude=CAMPUS.longitude, accuracy_meters=10, sampled_at=at)


class FakeClock:
    """Manually advanced clock; also records sleep() calls without sleeping."""

    def __init__(self, now=None):
        if now is None:
            now = local_noon()
        self.now = now
        self.sleeps = []

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def local_noon(year=2024, month=3, day=14):
    """Epoch seconds for local noon, so short sessions stay on one calendar day."""
    return datetime(year, month, day, 12, 0, 0).timestamp()
