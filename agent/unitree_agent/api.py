"""
UniTree API calls — session upload, transaction upload, today's WiFi points.

All functions are blocking and return plain results; callers decide what a
failure means. Uploads are idempotent on the server (keyed by sessionId /
sourceSessionId), so re-sending after a partial failure is safe.
"""

from datetime import datetime, timezone

import requests

from .config import log
from .constants import (
    API_TIMEOUT_SYNC, API_TIMEOUT_BALANCE,
    SESSION_SYNC_PATH, TRANSACTION_SYNC_PATH, TODAY_POINTS_PATH,
)
from .errors import SyncError
from . import http_client

# 409 = the server already has this record
_DELIVERED = (200, 201, 409)


def iso(ts):
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat().replace("+00:00", "Z")


def _url(config, path):
    return config["serverUrl"].rstrip("/") + path


def _post(url, payload, what):
    try:
        resp = http_client.http.post(url, json=payload, timeout=API_TIMEOUT_SYNC)
    except requests.RequestException as e:
        raise SyncError(f"{what} network error: {e}") from e
    if resp.status_code in _DELIVERED:
        return resp
    if resp.status_code == 401:
        log.error("%s REJECTED (401) — API token invalid or expired", what)
    raise SyncError(f"{what} failed: HTTP {resp.status_code} — {resp.text[:200]}", resp.status_code)


# ─── Sessions ────────────────────────────────────────────────────

def session_payload(config, session):
    v = session.last_validation
    return {
        "sessionId": session.id,
        "userId": session.user_id,
        "deviceId": session.device_id,
        "startTime": iso(session.start_time),
        "endTime": iso(session.end_time),
        "duration": session.duration_seconds,
        "ipAddress": session.ip_address,
        "pointsEarned": session.points_earned,
        "endReason": session.end_reason.value if session.end_reason else None,
        "validationMethods": {
            "ipAddress": v.ip_valid if v else False,
            "location": v.location_valid if v else False,
        },
        "campus": v.campus_name if v else None,
        "distance": v.distance_meters if v else None,
        "source": "agent",
    }


def upload_session(config, session):
    """POST an ended session. Raises SyncError unless the server has it."""
    url = _url(config, SESSION_SYNC_PATH)
    resp = _post(url, session_payload(config, session), "Session upload")
    log.info("Session %s synced (HTTP %d)", session.id, resp.status_code)
    return True


# ─── Ledger ──────────────────────────────────────────────────────

def upload_transaction(config, txn):
    url = _url(config, TRANSACTION_SYNC_PATH)
    payload = {
        "transactionId": txn.id,
        "userId": txn.user_id,
        "amount": txn.amount,
        "type": txn.type.value,
        "sourceSessionId": txn.source_session_id,
        "createdAt": iso(txn.created_at),
        "metadata": {
            k: iso(v) if k in ("startTime", "endTime") else v
            for k, v in txn.metadata.items()
        },
    }
    resp = _post(url, payload, "Transaction upload")
    log.info("Transaction %s synced (%d pts, HTTP %d)", txn.id, txn.amount, resp.status_code)
    return True


def fetch_today_wifi_points(config, user_id):
    """
    Server-side WIFI_SESSION total for today, or None when unavailable.
    Falls back gracefully if the endpoint doesn't exist (404 → None).
    """
    url = _url(config, TODAY_POINTS_PATH)
    try:
        resp = http_client.http.get(
            url, params={"userId": user_id, "type": "WIFI_SESSION"}, timeout=API_TIMEOUT_BALANCE,
        )
    except requests.RequestException as e:
        log.debug("Today-points fetch error: %s", e)
        return None
    if resp.status_code == 200:
        try:
            return int(resp.json().get("points", 0))
        except (ValueError, TypeError, AttributeError) as e:
            log.warning("Today-points response malformed: %s", e)
            return None
    if resp.status_code == 404:
        log.debug("Today-points endpoint not available — using local ledger")
    else:
        log.warning("Today-points fetch failed: HTTP %d", resp.status_code)
    return None
