"""
Durable local storage — the single source of truth on the client.

SessionStore keeps WifiSession records; Ledger keeps PointLedgerTransaction
records. Both come in a JSON-file flavour (atomic temp-file + os.replace
writes, re-read on every call, each read-modify-write under an OS file lock
so several processes can share one file) and an in-memory flavour used by
tests.

The session store refuses to hold two active sessions for the same
(user, device), and refuses to reactivate a record that is already closed:
save() raises SessionConflictError and the state machine decides who wins.
"""

import copy
import json
import os
import sys
import tempfile
import threading
import time
from contextlib import contextmanager
from pathlib import Path

from .config import log
from .constants import RETENTION_DAYS
from .errors import PersistenceError, SessionConflictError
from .models import WifiSession, PointLedgerTransaction, TransactionType, SessionPhase


def atomic_write_text(path, text, prefix):
    """Write to a temp file in the same dir, then replace. Raises PersistenceError."""
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(suffix=".tmp", prefix=prefix, dir=path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(text)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, path)
        except Exception:
            try:
                os.unlink(tmp)
            except OSError:
                pass
            raise
    except OSError as e:
        raise PersistenceError(f"write {path.name} failed: {e}") from e


@contextmanager
def file_lock(path):
    """
    Exclusive OS-level lock on `<path>.lock`, held for one read-modify-write.

    Blocks until other processes sharing the file are done. The OS drops
    the lock if the holder dies, so a crash never leaves the store wedged.
    """
    lock_path = Path(path).with_name(Path(path).name + ".lock")
    try:
        lock_path.parent.mkdir(parents=True, exist_ok=True)
        handle = open(lock_path, "a+b")
    except OSError as e:
        raise PersistenceError(f"open {lock_path.name} failed: {e}") from e

    try:
        if sys.platform == "win32":
            import msvcrt
            handle.seek(0)
            # LK_LOCK retries for ~10s before raising
            msvcrt.locking(handle.fileno(), msvcrt.LK_LOCK, 1)
        else:
            import fcntl
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
    except OSError as e:
        handle.close()
        raise PersistenceError(f"lock {lock_path.name} failed: {e}") from e

    try:
        yield
    finally:
        if sys.platform == "win32":
            import msvcrt
            try:
                handle.seek(0)
                msvcrt.locking(handle.fileno(), msvcrt.LK_UNLCK, 1)
            except OSError:
                pass    # closing the handle releases it anyway
        # On Unix, closing the file releases flock
        handle.close()


# ─── Sessions ────────────────────────────────────────────────────

class SessionStore:
    """Storage-agnostic logic; subclasses provide _read() / _write()."""

    def __init__(self):
        self._lock = threading.Lock()

    @contextmanager
    def _locked(self):
        with self._lock:
            yield

    def _read(self):
        raise NotImplementedError

    def _write(self, sessions):
        raise NotImplementedError

    def save(self, session):
        with self._locked():
            sessions = self._read()
            if session.is_active:
                stored = sessions.get(session.id)
                closed = stored is not None and stored.get("phase", "active") != "active"
                if closed:
                    # Closed by another process; an active write would revive it.
                    raise SessionConflictError(WifiSession.from_dict(stored))
                for other in sessions.values():
                    if (other["id"] != session.id
                            and other.get("isActive")
                            and other["userId"] == session.user_id
                            and other["deviceId"] == session.device_id):
                        raise SessionConflictError(WifiSession.from_dict(other))
            sessions[session.id] = session.to_dict()
            self._write(sessions)

    def get(self, session_id):
        with self._locked():
            data = self._read().get(session_id)
        return WifiSession.from_dict(data) if data else None

    def load_active(self, user_id, device_id):
        """The active session for this user/device, or None."""
        with self._locked():
            sessions = self._read()
        active = [
            WifiSession.from_dict(s) for s in sessions.values()
            if s.get("isActive") and s["userId"] == user_id and s["deviceId"] == device_id
        ]
        if not active:
            return None
        if len(active) > 1:
            log.warning("Store holds %d active sessions for %s/%s — using most recent",
                        len(active), user_id, device_id)
        return max(active, key=lambda s: (s.last_seen_valid, s.start_time))

    def load_unfinished(self, user_id, device_id):
        """Sessions left active or mid-ending (e.g. by a killed process), oldest first."""
        unfinished = (SessionPhase.ACTIVE.value, SessionPhase.ENDING.value)
        with self._locked():
            sessions = self._read()
        found = [
            WifiSession.from_dict(s) for s in sessions.values()
            if s.get("phase") in unfinished
            and s["userId"] == user_id and s["deviceId"] == device_id
        ]
        return sorted(found, key=lambda s: s.start_time)

    def mark_synced(self, session_id):
        with self._locked():
            sessions = self._read()
            if session_id not in sessions:
                return False
            sessions[session_id]["synced"] = True
            self._write(sessions)
            return True

    def pending_sync(self):
        """Ended sessions not yet uploaded, oldest first."""
        with self._locked():
            sessions = self._read()
        pending = [
            WifiSession.from_dict(s) for s in sessions.values()
            if s.get("phase") == SessionPhase.ENDED.value and not s.get("synced")
        ]
        return sorted(pending, key=lambda s: s.start_time)

    def prune(self, now=None, retention_days=RETENTION_DAYS):
        """Drop synced, ended sessions older than the retention window."""
        cutoff = (now or time.time()) - retention_days * 86400
        with self._locked():
            sessions = self._read()
            keep = {
                sid: s for sid, s in sessions.items()
                if not (s.get("synced") and s.get("endTime") and s["endTime"] < cutoff)
            }
            removed = len(sessions) - len(keep)
            if removed:
                self._write(keep)
        if removed:
            log.info("Pruned %d synced sessions older than %d days", removed, retention_days)
        return removed


class MemorySessionStore(SessionStore):
    """In-memory store for tests. fail_writes=N makes the next N writes raise."""

    def __init__(self):
        super().__init__()
        self._sessions = {}
        self.fail_writes = 0

    def _read(self):
        return copy.deepcopy(self._sessions)

    def _write(self, sessions):
        if self.fail_writes:
            self.fail_writes -= 1
            raise PersistenceError("injected session write failure")
        self._sessions = copy.deepcopy(sessions)


class JsonSessionStore(SessionStore):
    """One JSON document, shared safely by every process pointed at it."""

    def __init__(self, path):
        super().__init__()
        self.path = Path(path)

    @contextmanager
    def _locked(self):
        with self._lock, file_lock(self.path):
            yield

    def _read(self):
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except json.JSONDecodeError as e:
            # Atomic writes make this unexpected; keep the bad file for inspection.
            backup = self.path.with_suffix(".corrupt")
            log.error("Session file corrupt (%s) — moved to %s", e, backup.name)
            try:
                os.replace(self.path, backup)
            except OSError:
                pass
            return {}
        except OSError as e:
            raise PersistenceError(f"read {self.path.name} failed: {e}") from e
        return data.get("sessions", {})

    def _write(self, sessions):
        payload = json.dumps({"sessions": sessions}, indent=2, sort_keys=True)
        atomic_write_text(self.path, payload, prefix="sessions_")


# ─── Ledger ──────────────────────────────────────────────────────

class Ledger:
    """
    Append-only point ledger. Entries: {"txn": {...}, "synced": bool}.
    append() is idempotent by source_session_id.
    """

    def __init__(self):
        self._lock = threading.Lock()

    @contextmanager
    def _locked(self):
        with self._lock:
            yield

    def _read(self):
        raise NotImplementedError

    def _write(self, entries):
        raise NotImplementedError

    def _append_entry(self, entry):
        entries = self._read()
        entries.append(entry)
        self._write(entries)

    def append(self, txn):
        """Returns (transaction, created). An existing entry for the session wins."""
        with self._locked():
            if txn.source_session_id:
                for entry in self._read():
                    if entry["txn"].get("sourceSessionId") == txn.source_session_id:
                        return PointLedgerTransaction.from_dict(entry["txn"]), False
            self._append_entry({"txn": txn.to_dict(), "synced": False})
        return txn, True

    def find_by_session(self, source_session_id):
        with self._locked():
            for entry in self._read():
                if entry["txn"].get("sourceSessionId") == source_session_id:
                    return PointLedgerTransaction.from_dict(entry["txn"])
        return None

    def today_wifi_points(self, user_id, day):
        """Sum of WIFI_SESSION amounts credited to user on the given calendar day."""
        with self._locked():
            entries = self._read()
        total = 0
        for entry in entries:
            txn = PointLedgerTransaction.from_dict(entry["txn"])
            if (txn.user_id == user_id
                    and txn.type == TransactionType.WIFI_SESSION
                    and txn.day == day):
                total += txn.amount
        return total

    def transactions(self, user_id=None):
        with self._locked():
            entries = self._read()
        txns = [PointLedgerTransaction.from_dict(e["txn"]) for e in entries]
        return [t for t in txns if user_id is None or t.user_id == user_id]

    def mark_synced(self, txn_id):
        with self._locked():
            entries = self._read()
            for entry in entries:
                if entry["txn"]["id"] == txn_id:
                    entry["synced"] = True
                    self._write(entries)
                    return True
        return False

    def pending_sync(self):
        with self._locked():
            entries = self._read()
        return [PointLedgerTransaction.from_dict(e["txn"]) for e in entries if not e.get("synced")]

    def prune(self, now=None, retention_days=RETENTION_DAYS):
        cutoff = (now or time.time()) - retention_days * 86400
        with self._locked():
            entries = self._read()
            keep = [e for e in entries if not (e.get("synced") and e["txn"]["createdAt"] < cutoff)]
            removed = len(entries) - len(keep)
            if removed:
                self._write(keep)
        return removed


class MemoryLedger(Ledger):
    def __init__(self):
        super().__init__()
        self._entries = []
        self.fail_writes = 0

    def _read(self):
        return copy.deepcopy(self._entries)

    def _write(self, entries):
        if self.fail_writes:
            self.fail_writes -= 1
            raise PersistenceError("injected ledger write failure")
        self._entries = copy.deepcopy(entries)


class JsonLedger(Ledger):
    """JSON-lines file; appends go straight to the end of the file."""

    def __init__(self, path):
        super().__init__()
        self.path = Path(path)

    @contextmanager
    def _locked(self):
        with self._lock, file_lock(self.path):
            yield

    def _read(self):
        if not self.path.exists():
            return []
        try:
            lines = self.path.read_text(encoding="utf-8").splitlines()
        except OSError as e:
            raise PersistenceError(f"read {self.path.name} failed: {e}") from e
        entries = []
        for line in lines:
            if not line.strip():
                continue
            try:
                entries.append(json.loads(line))
            except json.JSONDecodeError:
                # A torn final line from a crash mid-append.
                log.warning("Skipping unreadable ledger line: %.80s", line)
        return entries

    def _append_entry(self, entry):
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            lead = ""
            if self.path.exists() and self.path.stat().st_size:
                with open(self.path, "rb") as f:
                    f.seek(-1, os.SEEK_END)
                    if f.read(1) != b"\n":
                        lead = "\n"     # start clear of a torn line
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(lead + json.dumps(entry) + "\n")
                f.flush()
                os.fsync(f.fileno())
        except OSError as e:
            raise PersistenceError(f"append {self.path.name} failed: {e}") from e

    def _write(self, entries):
        text = "".join(json.dumps(e) + "\n" for e in entries)
        atomic_write_text(self.path, text, prefix="ledger_")
