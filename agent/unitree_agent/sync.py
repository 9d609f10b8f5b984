"""
Remote sync — replays locally persisted sessions and ledger entries to the API.

The local stores are the queue: a record stays pending until the server has
acknowledged it, so delivery is at-least-once and the lifecycle never waits
on the network.
"""

import threading
from datetime import date

from .config import log
from .errors import SyncError, PersistenceError
from . import api


class RemoteSync:

    def __init__(self, config, store, ledger, balance=None):
        self._config = config
        self._store = store
        self._ledger = ledger
        self._balance = balance

    def flush(self):
        """
        Upload everything pending, oldest first. Returns (synced, remaining).
        Stops early on a network error or 401; later records would fail the same way.
        """
        synced = 0
        try:
            sessions = self._store.pending_sync()
            txns = {t.source_session_id: t for t in self._ledger.pending_sync()}
        except PersistenceError as e:
            log.warning("Sync skipped — local store unreadable: %s", e)
            return 0, 0

        queue = []
        for session in sessions:
            queue.append(("session", session))
            txn = txns.pop(session.id, None)
            if txn is not None:
                queue.append(("txn", txn))
        queue.extend(("txn", t) for t in txns.values())

        for kind, record in queue:
            try:
                if kind == "session":
                    api.upload_session(self._config, record)
                    self._store.mark_synced(record.id)
                else:
                    api.upload_transaction(self._config, record)
                    self._ledger.mark_synced(record.id)
                synced += 1
            except SyncError as e:
                log.warning("Sync of %s %s failed: %s", kind, record.id, e)
                if e.status_code is None or e.status_code == 401:
                    remaining = len(queue) - synced
                    log.info("Sync paused: %d synced, %d still pending", synced, remaining)
                    return synced, remaining
            except PersistenceError as e:
                # Uploaded but not marked; the server dedupes the resend.
                log.warning("Could not mark %s %s synced: %s", kind, record.id, e)

        remaining = len(queue) - synced
        if synced:
            log.info("Flushed %d pending records (%d still pending)", synced, remaining)
        if self._balance is not None:
            self._balance.refresh(self._config["userId"])
        return synced, remaining


class LedgerBalance:
    """
    today_points(user_id, day) for the accrual engine: the larger of the local
    ledger and the server's figure for today (the server also knows about
    other devices).

    The server figure is cached. Only refresh() touches the network, and it
    runs on the sync thread, so accrual never waits on the API. Other days,
    or no server answer yet → local only.
    """

    def __init__(self, config, ledger, today=date.today):
        self._config = config
        self._ledger = ledger
        self._today = today
        self._lock = threading.Lock()
        self._remote = {}       # user_id -> (day, points)

    def __call__(self, user_id, day):
        local = self._ledger.today_wifi_points(user_id, day)
        with self._lock:
            cached = self._remote.get(user_id)
        if cached is None or cached[0] != day:
            return local
        return max(local, cached[1])

    def refresh(self, user_id):
        """Fetch the server's total for today. Returns it, or None if unavailable."""
        points = api.fetch_today_wifi_points(self._config, user_id)
        if points is None:
            return None
        with self._lock:
            self._remote[user_id] = (self._today(), points)
        log.debug("Server reports %d WiFi points today for %s", points, user_id)
        return points
