"""
Record types shared by the validator, state machine, accrual engine and stores.

Timestamps are epoch seconds (float) in memory and on disk; the API layer
converts them to ISO-8601 UTC strings.
"""

import enum
import hashlib
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Optional, Tuple


class SessionPhase(str, enum.Enum):
    IDLE = "idle"
    ACTIVE = "active"
    ENDING = "ending"
    ENDED = "ended"


class EndReason(str, enum.Enum):
    VALIDATION_FAILED = "validation_failed"
    DISCONNECT = "disconnect"
    TICK_TIMEOUT = "tick_timeout"
    IP_CHANGED = "ip_changed"
    RECOVERED = "recovered"
    SUPERSEDED = "superseded"
    MAX_DURATION = "max_duration"


class TransactionType(str, enum.Enum):
    WIFI_SESSION = "WIFI_SESSION"
    TREE_REDEMPTION = "TREE_REDEMPTION"
    REAL_TREE_REDEMPTION = "REAL_TREE_REDEMPTION"
    ADMIN_ADJUSTMENT = "ADMIN_ADJUSTMENT"
    ATTENDANCE = "ATTENDANCE"
    ACHIEVEMENT = "ACHIEVEMENT"
    BONUS = "BONUS"


class LocationReason(str, enum.Enum):
    """Why the location check came out the way it did (audit/telemetry)."""
    OK = "ok"
    OUTSIDE_CAMPUS = "outside_campus"
    NO_FIX = "no_fix"
    PERMISSION_DENIED = "permission_denied"
    PERMISSION_UNDETERMINED = "permission_undetermined"
    TIMEOUT = "timeout"


# ─── Signals (transient) ─────────────────────────────────────────

@dataclass(frozen=True)
class NetworkSignal:
    ip_address: str
    sampled_at: float


@dataclass(frozen=True)
class LocationSignal:
    latitude: float
    longitude: float
    accuracy_meters: float
    sampled_at: float


# ─── Configuration ───────────────────────────────────────────────

@dataclass(frozen=True)
class Campus:
    name: str
    latitude: float
    longitude: float
    radius_meters: float


@dataclass(frozen=True)
class ValidatorConfig:
    ip_prefix: str
    campuses: Tuple[Campus, ...] = ()
    ip_match_mode: str = "octet"


@dataclass(frozen=True)
class AccrualConfig:
    points_per_minute: float
    min_session_minutes: float
    daily_cap_points: int


# ─── Validation ──────────────────────────────────────────────────

@dataclass(frozen=True)
class ValidationResult:
    ip_valid: bool
    location_valid: bool
    campus_name: Optional[str] = None
    distance_meters: Optional[float] = None
    location_reason: LocationReason = LocationReason.NO_FIX

    @property
    def is_valid(self) -> bool:
        return self.ip_valid and self.location_valid

    def describe(self) -> str:
        """One-line summary for logs, e.g. 'ip=ok loc=permission_denied'."""
        ip = "ok" if self.ip_valid else "fail"
        loc = self.location_reason.value
        if self.distance_meters is not None:
            loc += f"({self.distance_meters:.0f}m)"
        return f"ip={ip} loc={loc}"

    def to_dict(self):
        return {
            "ipValid": self.ip_valid,
            "locationValid": self.location_valid,
            "campusName": self.campus_name,
            "distanceMeters": self.distance_meters,
            "locationReason": self.location_reason.value,
        }

    @classmethod
    def from_dict(cls, data):
        if not data:
            return None
        return cls(
            ip_valid=bool(data.get("ipValid")),
            location_valid=bool(data.get("locationValid")),
            campus_name=data.get("campusName"),
            distance_meters=data.get("distanceMeters"),
            location_reason=LocationReason(data.get("locationReason", "no_fix")),
        )


# ─── Durable records ─────────────────────────────────────────────

@dataclass
class WifiSession:
    id: str
    user_id: str
    device_id: str
    start_time: float
    ip_address: str
    last_seen_valid: float
    last_heartbeat: float
    last_validation: Optional[ValidationResult] = None
    end_time: Optional[float] = None
    is_active: bool = True
    phase: SessionPhase = SessionPhase.ACTIVE
    duration_seconds: Optional[int] = None
    points_earned: Optional[int] = None
    end_reason: Optional[EndReason] = None
    synced: bool = False

    @property
    def day(self):
        """Calendar day (local time) the session is credited to: the day it ended."""
        ts = self.end_time if self.end_time is not None else self.last_seen_valid
        return datetime.fromtimestamp(ts).date()

    def elapsed(self, now: float) -> int:
        end = self.end_time if self.end_time is not None else now
        return max(0, int(end - self.start_time))

    def to_dict(self):
        return {
            "id": self.id,
            "userId": self.user_id,
            "deviceId": self.device_id,
            "startTime": self.start_time,
            "ipAddress": self.ip_address,
            "lastSeenValid": self.last_seen_valid,
            "lastHeartbeat": self.last_heartbeat,
            "lastValidation": self.last_validation.to_dict() if self.last_validation else None,
            "endTime": self.end_time,
            "isActive": self.is_active,
            "phase": self.phase.value,
            "durationSeconds": self.duration_seconds,
            "pointsEarned": self.points_earned,
            "endReason": self.end_reason.value if self.end_reason else None,
            "synced": self.synced,
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            id=data["id"],
            user_id=data["userId"],
            device_id=data["deviceId"],
            start_time=float(data["startTime"]),
            ip_address=data.get("ipAddress", ""),
            last_seen_valid=float(data.get("lastSeenValid", data["startTime"])),
            last_heartbeat=float(data.get("lastHeartbeat", data["startTime"])),
            last_validation=ValidationResult.from_dict(data.get("lastValidation")),
            end_time=data.get("endTime"),
            is_active=bool(data.get("isActive", False)),
            phase=SessionPhase(data.get("phase", "active")),
            duration_seconds=data.get("durationSeconds"),
            points_earned=data.get("pointsEarned"),
            end_reason=EndReason(data["endReason"]) if data.get("endReason") else None,
            synced=bool(data.get("synced", False)),
        )


def transaction_id_for(source_session_id: str) -> str:
    """Deterministic transaction id, so re-emission for a session is a no-op."""
    digest = hashlib.sha256(source_session_id.encode("utf-8")).hexdigest()[:24]
    return f"txn_{digest}"


@dataclass(frozen=True)
class PointLedgerTransaction:
    id: str
    user_id: str
    amount: int
    type: TransactionType
    source_session_id: Optional[str]
    created_at: float
    metadata: dict = field(default_factory=dict)

    @property
    def day(self):
        return datetime.fromtimestamp(self.metadata.get("endTime", self.created_at)).date()

    def to_dict(self):
        data = asdict(self)
        return {
            "id": data["id"],
            "userId": data["user_id"],
            "amount": data["amount"],
            "type": self.type.value,
            "sourceSessionId": data["source_session_id"],
            "createdAt": data["created_at"],
            "metadata": data["metadata"],
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            id=data["id"],
            user_id=data["userId"],
            amount=int(data["amount"]),
            type=TransactionType(data["type"]),
            source_session_id=data.get("sourceSessionId"),
            created_at=float(data["createdAt"]),
            metadata=dict(data.get("metadata") or {}),
        )


# ─── UI snapshot ─────────────────────────────────────────────────

@dataclass(frozen=True)
class SessionStatus:
    phase: SessionPhase
    session_id: Optional[str] = None
    elapsed_seconds: int = 0
    estimated_points: int = 0
    ip_address: Optional[str] = None
    campus_name: Optional[str] = None
    pending_sync: int = 0
    last_validation: Optional[ValidationResult] = None

    @property
    def syncing(self) -> bool:
        return self.pending_sync > 0

    def to_dict(self):
        return {
            "phase": self.phase.value,
            "sessionId": self.session_id,
            "elapsedSeconds": self.elapsed_seconds,
            "estimatedPoints": self.estimated_points,
            "ipAddress": self.ip_address,
            "campusName": self.campus_name,
            "pendingSync": self.pending_sync,
            "lastValidation": self.last_validation.to_dict() if self.last_validation else None,
        }
