"""
Accrual — converts an ended session's validated time into ledger points.

Rules:
  - Sessions shorter than the minimum earn nothing (no transaction).
  - raw = floor(minutes * points_per_minute)
  - Clipped to what is left of the daily cap, never rejected.
  - One transaction per session, keyed by its id, so a retry is a no-op.
"""

import math
import time

from .config import log
from .models import PointLedgerTransaction, TransactionType, transaction_id_for


def estimate_points(duration_seconds, config):
    """Uncapped preview for the status display."""
    if duration_seconds < config.min_session_minutes * 60:
        return 0
    return int(math.floor(duration_seconds / 60 * config.points_per_minute))


def accrue(session, config, ledger, today_points=None, now=None):
    """
    Compute and record points for an ended session.

    Sets session.points_earned (None for short sessions, 0 when capped) and
    returns the ledger transaction, or None when nothing was credited.

    today_points(user_id, day) -> int is the ledger-balance lookup; defaults
    to the local ledger. It is only consulted for a session that has no
    transaction yet.
    """
    if session.end_time is None:
        raise ValueError(f"session {session.id} has not ended")

    duration = session.duration_seconds
    if duration is None:
        duration = max(0, int(session.end_time - session.start_time))
        session.duration_seconds = duration

    if duration < config.min_session_minutes * 60:
        session.points_earned = None
        log.info("Session %s too short for points (%ds < %.0f min)",
                 session.id, duration, config.min_session_minutes)
        return None

    existing = ledger.find_by_session(session.id)
    if existing is not None:
        session.points_earned = existing.amount
        log.info("Session %s already credited (%s, %d pts) — skipping",
                 session.id, existing.id, existing.amount)
        return existing

    raw_points = int(math.floor(duration / 60 * config.points_per_minute))
    lookup = today_points or ledger.today_wifi_points
    already = lookup(session.user_id, session.day)
    awarded = max(0, min(raw_points, config.daily_cap_points - already))

    if awarded <= 0:
        session.points_earned = 0
        log.info("Session %s hit daily cap (%d/%d already today) — 0 pts",
                 session.id, already, config.daily_cap_points)
        return None

    txn = PointLedgerTransaction(
        id=transaction_id_for(session.id),
        user_id=session.user_id,
        amount=awarded,
        type=TransactionType.WIFI_SESSION,
        source_session_id=session.id,
        created_at=now if now is not None else time.time(),
        metadata={
            "startTime": session.start_time,
            "endTime": session.end_time,
            "duration": duration,
            "rawPoints": raw_points,
            "description": f"WiFi session on {session.ip_address}",
        },
    )
    txn, created = ledger.append(txn)
    session.points_earned = txn.amount
    if created:
        if awarded < raw_points:
            log.info("Session %s: %d pts (clipped from %d, cap %d)",
                     session.id, awarded, raw_points, config.daily_cap_points)
        else:
            log.info("Session %s: %d pts for %ds", session.id, awarded, duration)
    return txn
