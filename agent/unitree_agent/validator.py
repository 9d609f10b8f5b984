"""
Dual-factor validation: university IP prefix AND on-campus location.

Pure functions of their inputs. Both checks are computed independently so
"IP ok, location blocked" stays visible in logs; overall validity is the AND.
"""

import ipaddress
from math import radians, cos, sin, asin, sqrt

from .constants import EARTH_RADIUS_M
from .models import ValidationResult, LocationReason


def haversine_m(a_lat, a_lng, b_lat, b_lng):
    """Great-circle distance in meters."""
    dlat = radians(b_lat - a_lat)
    dlng = radians(b_lng - a_lng)
    lat1 = radians(a_lat)
    lat2 = radians(b_lat)
    h = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlng / 2) ** 2
    return 2 * EARTH_RADIUS_M * asin(sqrt(min(1.0, h)))


# ─── IP check ────────────────────────────────────────────────────

def ip_matches(ip_address, prefix, mode="octet"):
    """
    Match an address against the configured university prefix.

      octet  → leading dotted components must be equal ("10.22" ≠ "10.220.1.1")
      string → raw case-insensitive startswith (loose, "10.22" = "10.220.1.1")
      cidr   → proper subnet containment, prefix like "10.22.0.0/16"
    """
    if not ip_address or not prefix:
        return False
    ip_address = ip_address.strip().lower()
    prefix = prefix.strip().lower()

    if mode == "string":
        return ip_address.startswith(prefix)

    if mode == "cidr":
        try:
            return ipaddress.ip_address(ip_address) in ipaddress.ip_network(prefix, strict=False)
        except ValueError:
            return False

    want = [p for p in prefix.rstrip(".").split(".") if p]
    have = ip_address.split(".")
    if not want or len(have) < len(want):
        return False
    return have[:len(want)] == want


# ─── Location check ──────────────────────────────────────────────

def check_location(location, campuses):
    """
    Returns (valid, campus_name, distance_meters).

    On a match: the nearest matching campus. On a miss: (False, None,
    distance to the nearest campus) for audit. No campuses → (False, None, None).
    """
    nearest = None
    best_match = None
    for campus in campuses:
        d = haversine_m(location.latitude, location.longitude, campus.latitude, campus.longitude)
        if nearest is None or d < nearest:
            nearest = d
        if d <= campus.radius_meters and (best_match is None or d < best_match[1]):
            best_match = (campus.name, d)

    if best_match:
        return True, best_match[0], round(best_match[1], 1)
    return False, None, round(nearest, 1) if nearest is not None else None


def validate(signal, location, config, location_reason=None):
    """
    Validate one sample.

    signal:   NetworkSignal or None (IP unavailable → ip check fails)
    location: LocationSignal or None (fail-closed → location check fails)
    location_reason: why location is None, if the caller knows
                     (permission_denied / timeout / no_fix)
    """
    ip_valid = signal is not None and ip_matches(
        signal.ip_address, config.ip_prefix, config.ip_match_mode,
    )

    if location is None:
        reason = location_reason if location_reason is not None else LocationReason.NO_FIX
        if reason in (LocationReason.OK, LocationReason.OUTSIDE_CAMPUS):
            reason = LocationReason.NO_FIX
        return ValidationResult(
            ip_valid=ip_valid,
            location_valid=False,
            location_reason=reason,
        )

    loc_valid, campus_name, distance = check_location(location, config.campuses)
    return ValidationResult(
        ip_valid=ip_valid,
        location_valid=loc_valid,
        campus_name=campus_name,
        distance_meters=distance,
        location_reason=LocationReason.OK if loc_valid else LocationReason.OUTSIDE_CAMPUS,
    )
