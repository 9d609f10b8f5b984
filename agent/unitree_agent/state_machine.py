"""
SessionStateMachine — one per (user, device). Sole writer of WifiSession records.

    Idle ──valid──▶ Active ──invalid / disconnect / timeout──▶ Ending ──persisted──▶ Ended
                      ▲  │                                                        │
                      └──┘ valid tick (heartbeat every N s)                         ▼
                                                                     Idle on the next tick
    relaunch: stored Active/Ending record ──recover()──▶ Ending ──▶ Ended

Rules that matter:
  - end_time is the last moment validation held, never the moment we noticed.
  - Heartbeat writes are best-effort with backoff and never block a tick.
  - The Ending→Ended writes (and the ledger append between them) are retried
    until they succeed; the machine does not return to Idle before that.
  - Recovered sessions end at their last persisted heartbeat.
  - Two live sessions for one device: most recent last_seen_valid wins
    (later start_time on a tie); the loser is closed through recovery.
"""

import time
import uuid

from .accrual import accrue, estimate_points
from .config import log
from .constants import (
    HEARTBEAT_INTERVAL_SEC, TICK_TIMEOUT_SEC, MAX_SESSION_HOURS,
    HEARTBEAT_RETRY_BASE_SEC, HEARTBEAT_RETRY_MAX_SEC,
    TERMINAL_RETRY_BASE_SEC, TERMINAL_RETRY_MAX_SEC,
)
from .errors import PersistenceError, SessionConflictError
from .models import WifiSession, SessionPhase, SessionStatus, EndReason
from .validator import validate


def new_session_id(now):
    return f"ws_{int(now * 1000)}_{uuid.uuid4().hex[:9]}"


def _fmt_ts(ts):
    return time.strftime("%H:%M:%S", time.localtime(ts)) if ts else "-"


class SessionStateMachine:

    def __init__(self, user_id, device_id, store, ledger, validator_config, accrual_config,
                 today_points=None, clock=time.time, sleep=time.sleep,
                 heartbeat_interval=HEARTBEAT_INTERVAL_SEC,
                 tick_timeout=TICK_TIMEOUT_SEC,
                 max_session_hours=MAX_SESSION_HOURS):
        self.user_id = user_id
        self.device_id = device_id
        self._store = store
        self._ledger = ledger
        self._validator_config = validator_config
        self._accrual_config = accrual_config
        self._today_points = today_points
        self._clock = clock
        self._sleep = sleep
        self._heartbeat_interval = heartbeat_interval
        self._tick_timeout = tick_timeout
        self._max_session_sec = max_session_hours * 3600

        self.phase = SessionPhase.IDLE
        self.session = None          # in-memory active session
        self.last_ended = None
        self.last_result = None

        self._dirty = False          # in-memory session not yet durably written
        self._hb_failures = 0
        self._hb_retry_at = 0.0
        self._busy = False
        self._listeners = []

    # ─── Public API ──────────────────────────────────────────

    def tick(self, signal, location, now=None, location_reason=None):
        """Validate one sample and advance. Returns the ValidationResult."""
        now = self._clock() if now is None else now
        result = validate(signal, location, self._validator_config, location_reason)
        if not self._enter("tick"):
            return result
        try:
            self.last_result = result
            if self.phase == SessionPhase.ENDED:
                self.phase = SessionPhase.IDLE
            if self.session is None:
                if result.is_valid:
                    self._start(signal, result, now)
                else:
                    log.debug("Idle tick: %s", result.describe())
            else:
                self._advance(signal, result, now)
        finally:
            self._leave()
        self._notify(now)
        return result

    def disconnect(self, now=None):
        """Logout / explicit disconnect: end the active session right away."""
        now = self._clock() if now is None else now
        if self.session is None:
            return None
        if not self._enter("disconnect"):
            return None
        try:
            s = self.session
            if now - s.last_seen_valid > self._tick_timeout:
                ended = self._end_current(s.last_seen_valid, EndReason.TICK_TIMEOUT)
            else:
                s.last_seen_valid = now
                ended = self._end_current(now, EndReason.DISCONNECT)
        finally:
            self._leave()
        self._notify(now)
        return ended

    def recover(self, now=None):
        """
        Close anything a dead process left Active/Ending for this device.
        Called once at startup, before the first tick. Returns the closed sessions.
        """
        now = self._clock() if now is None else now
        if not self._enter("recover"):
            return []
        recovered = []
        try:
            unfinished = self._retry_until_ok(
                lambda: self._store.load_unfinished(self.user_id, self.device_id),
                "load unfinished sessions",
            )
            for stored in unfinished:
                if self.session is not None and stored.id == self.session.id:
                    continue
                log.warning(
                    "Recovering interrupted session %s (started %s, last heartbeat %s, %.0fs ago)",
                    stored.id, _fmt_ts(stored.start_time), _fmt_ts(stored.last_heartbeat),
                    now - stored.last_heartbeat,
                )
                recovered.append(self._close_stored(stored, EndReason.RECOVERED))
        finally:
            self._leave()
        if recovered:
            self._notify(now)
        return recovered

    def status(self, now=None):
        """Read-only snapshot for the UI."""
        now = self._clock() if now is None else now
        try:
            pending = len(self._store.pending_sync())
        except PersistenceError as e:
            log.debug("pending_sync unavailable for status: %s", e)
            pending = 0

        s = self.session
        if s is not None:
            elapsed = s.elapsed(now)
            return SessionStatus(
                phase=self.phase,
                session_id=s.id,
                elapsed_seconds=elapsed,
                estimated_points=estimate_points(elapsed, self._accrual_config),
                ip_address=s.ip_address,
                campus_name=s.last_validation.campus_name if s.last_validation else None,
                pending_sync=pending,
                last_validation=self.last_result,
            )
        if self.phase == SessionPhase.ENDED and self.last_ended is not None:
            e = self.last_ended
            return SessionStatus(
                phase=self.phase,
                session_id=e.id,
                elapsed_seconds=e.duration_seconds or 0,
                estimated_points=e.points_earned or 0,
                ip_address=e.ip_address,
                pending_sync=pending,
                last_validation=self.last_result,
            )
        return SessionStatus(phase=self.phase, pending_sync=pending, last_validation=self.last_result)

    def add_listener(self, listener):
        """Subscribe to status snapshots. Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)
        return unsubscribe

    # ─── Transitions ─────────────────────────────────────────

    def _start(self, signal, result, now):
        session = WifiSession(
            id=new_session_id(now),
            user_id=self.user_id,
            device_id=self.device_id,
            start_time=now,
            ip_address=signal.ip_address,
            last_seen_valid=now,
            last_heartbeat=now,
            last_validation=result,
        )
        self.session = session
        self.phase = SessionPhase.ACTIVE
        log.info("Session %s STARTED on %s (%s, campus=%s)",
                 session.id, session.ip_address, result.describe(), result.campus_name)
        try:
            self._retry_until_ok(lambda: self._store.save(session), f"persist start {session.id}")
        except SessionConflictError as e:
            self._resolve_conflict(e.existing, now)

    def _advance(self, signal, result, now):
        s = self.session

        if now - s.start_time >= self._max_session_sec:
            cutoff = s.start_time + self._max_session_sec
            log.warning("Session %s reached %.0fh ceiling — ending", s.id, self._max_session_sec / 3600)
            self._end_current(min(s.last_seen_valid, cutoff), EndReason.MAX_DURATION)
        elif now - s.last_seen_valid > self._tick_timeout:
            log.warning("Session %s: no valid tick for %.0fs (> %ds) — ending at %s",
                        s.id, now - s.last_seen_valid, self._tick_timeout, _fmt_ts(s.last_seen_valid))
            self._end_current(s.last_seen_valid, EndReason.TICK_TIMEOUT)
        elif not result.is_valid:
            log.info("Session %s: validation failed (%s)", s.id, result.describe())
            self._end_current(s.last_seen_valid, EndReason.VALIDATION_FAILED)
            return
        elif signal.ip_address != s.ip_address:
            log.info("Session %s: IP changed %s → %s", s.id, s.ip_address, signal.ip_address)
            self._end_current(s.last_seen_valid, EndReason.IP_CHANGED)
        else:
            s.last_seen_valid = now
            s.last_validation = result
            self._maybe_heartbeat(now)
            return

        # Previous session closed; this tick may open the next one.
        if result.is_valid and self.session is None:
            self.phase = SessionPhase.IDLE
            self._start(signal, result, now)

    def _end_current(self, end_time, reason):
        s = self.session
        self.phase = SessionPhase.ENDING
        closed = self._closed_elsewhere(s.id)
        if closed is None:
            self._finish(s, end_time, reason)
        elif closed.phase == SessionPhase.ENDING:
            s = self._close_stored(closed, reason)
        else:
            s = closed
        self.session = None
        self.last_ended = s
        self._dirty = False
        self._hb_failures = 0
        self.phase = SessionPhase.ENDED
        return s

    def _close_stored(self, stored, reason):
        """Recovery path for a record we do not own in memory."""
        if stored.phase == SessionPhase.ENDING and stored.end_time is not None:
            end_time = stored.end_time
        else:
            end_time = stored.last_heartbeat
        return self._finish(stored, end_time, reason)

    def _finish(self, session, end_time, reason):
        """
        Ending → accrue → Ended. Each durable step is retried until it sticks.
        A record already in Ending keeps the end_time it was snapshotted with.
        """
        if session.phase != SessionPhase.ENDING:
            session.end_time = max(session.start_time, end_time)
            session.duration_seconds = int(session.end_time - session.start_time)
            session.end_reason = reason
            session.is_active = False
            session.phase = SessionPhase.ENDING
            self._retry_until_ok(lambda: self._store.save(session), f"persist ending {session.id}")

        self._retry_until_ok(
            lambda: accrue(session, self._accrual_config, self._ledger, self._today_points),
            f"accrue {session.id}",
        )

        session.phase = SessionPhase.ENDED
        self._retry_until_ok(lambda: self._store.save(session), f"persist ended {session.id}")

        log.info(
            "Session %s ENDED (%s) | %s → %s | %dm %02ds | points=%s",
            session.id, session.end_reason.value if session.end_reason else reason.value,
            _fmt_ts(session.start_time), _fmt_ts(session.end_time),
            session.duration_seconds // 60, session.duration_seconds % 60,
            session.points_earned,
        )
        return session

    # ─── Heartbeat persistence ───────────────────────────────

    def _maybe_heartbeat(self, now):
        due = self._dirty or (now - self.session.last_heartbeat) >= self._heartbeat_interval
        if not due:
            return
        if self._hb_failures and now < self._hb_retry_at:
            return

        if self._closed_elsewhere(self.session.id) is not None:
            # Recovery or a newer instance owns the close; finish it via _end_current.
            self._end_current(self.session.last_seen_valid, EndReason.SUPERSEDED)
            return

        self._write_heartbeat(now)

    def _closed_elsewhere(self, session_id):
        """The stored record if another process has moved it past Active, else None."""
        try:
            stored = self._store.get(session_id)
        except PersistenceError as e:
            log.debug("Pre-check read of %s failed: %s", session_id, e)
            return None
        if stored is not None and stored.phase != SessionPhase.ACTIVE:
            log.warning("Session %s was closed elsewhere (%s)",
                        stored.id, stored.end_reason.value if stored.end_reason else stored.phase.value)
            return stored
        return None

    def _write_heartbeat(self, now):
        s = self.session
        previous = s.last_heartbeat
        s.last_heartbeat = now
        try:
            self._store.save(s)
        except SessionConflictError as e:
            s.last_heartbeat = previous
            if e.existing.id == s.id:
                # Closed between the pre-check and the write.
                self._end_current(s.last_seen_valid, EndReason.SUPERSEDED)
            else:
                self._resolve_conflict(e.existing, now)
            return
        except PersistenceError as e:
            s.last_heartbeat = previous
            self._dirty = True
            self._hb_failures += 1
            delay = min(HEARTBEAT_RETRY_BASE_SEC * (2 ** (self._hb_failures - 1)), HEARTBEAT_RETRY_MAX_SEC)
            self._hb_retry_at = now + delay
            log.warning("Heartbeat write for %s failed (%d in a row, retry in %.0fs): %s "
                        "| last good heartbeat %s",
                        s.id, self._hb_failures, delay, e, _fmt_ts(previous))
            return

        if self._hb_failures:
            log.info("Heartbeat write recovered after %d failures", self._hb_failures)
        self._dirty = False
        self._hb_failures = 0

    def _resolve_conflict(self, other, now):
        mine = self.session
        if (mine.last_seen_valid, mine.start_time) > (other.last_seen_valid, other.start_time):
            log.warning("Conflicting session %s (last valid %s) is stale — closing it",
                        other.id, _fmt_ts(other.last_seen_valid))
            self._close_stored(other, EndReason.SUPERSEDED)
            self._write_heartbeat(now)
        else:
            log.warning("Session %s superseded by %s (last valid %s) — closing ours",
                        mine.id, other.id, _fmt_ts(other.last_seen_valid))
            self.phase = SessionPhase.ENDING
            self._close_stored(mine, EndReason.SUPERSEDED)
            self.session = None
            self.last_ended = mine
            self._dirty = False
            self.phase = SessionPhase.ENDED

    # ─── Helpers ─────────────────────────────────────────────

    def _retry_until_ok(self, fn, what):
        delay = TERMINAL_RETRY_BASE_SEC
        attempt = 0
        while True:
            attempt += 1
            try:
                return fn()
            except SessionConflictError:
                raise
            except PersistenceError as e:
                log.error("%s failed (attempt %d): %s — retrying in %.1fs", what, attempt, e, delay)
                self._sleep(delay)
                delay = min(delay * 2, TERMINAL_RETRY_MAX_SEC)

    def _enter(self, op):
        if self._busy:
            log.warning("%s ignored: another transition is in progress", op)
            return False
        self._busy = True
        return True

    def _leave(self):
        self._busy = False

    def _notify(self, now):
        if not self._listeners:
            return
        snapshot = self.status(now)
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                log.error("Status listener error: %s", e)
