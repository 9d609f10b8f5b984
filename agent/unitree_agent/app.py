"""
AgentApp — the cooperative tick loop.

One thread drives everything through run_once(); the only other threads are
the sampler's workers (bounded by a timeout) and short-lived sync uploads,
neither of which touches the state machine.
"""

import json
import threading
import time

from .config import log, STATUS_FILE
from .constants import (
    AGENT_VERSION, TICK_INTERVAL_SEC, SYNC_INTERVAL_SEC, CONNECTIVITY_CHECK_SEC,
    STATUS_WRITE_SEC, PRUNE_INTERVAL_SEC,
)
from .errors import PersistenceError
from .state import AgentState
from .store import atomic_write_text
from . import network


def _spawn_daemon(fn):
    threading.Thread(target=fn, daemon=True).start()


class SleepTicker:
    """Production scheduler: call the tick callback every `interval` seconds."""

    def __init__(self, interval=TICK_INTERVAL_SEC, sleep=time.sleep, clock=time.monotonic):
        self.interval = interval
        self._sleep = sleep
        self._clock = clock

    def run(self, callback, should_stop):
        while not should_stop():
            started = self._clock()
            callback()
            # Sleep in short slices so stop() is noticed quickly.
            remaining = self.interval - (self._clock() - started)
            while remaining > 0 and not should_stop():
                step = min(1.0, remaining)
                self._sleep(step)
                remaining -= step


class AgentApp:
    """
    Each run_once():
      _tick()               — sample IP + location, drive the state machine  (every call)
      _check_connectivity() — offline/online transitions                     (every 60s)
      _maybe_sync()         — flush pending sessions/transactions            (every 5 min, online)
      _maybe_write_status() — status.json for the UI to poll                 (every 15s)
      _maybe_prune()        — drop old synced records                        (hourly)
    """

    def __init__(self, config, machine, sampler, syncer, store, ledger,
                 ticker=None, status_file=STATUS_FILE, clock=time.time, spawn=_spawn_daemon):
        self._config = config
        self.machine = machine
        self._sampler = sampler
        self.syncer = syncer
        self._store = store
        self._ledger = ledger
        self._ticker = ticker or SleepTicker(config.get("tickIntervalSec", TICK_INTERVAL_SEC))
        self._status_file = status_file
        self._clock = clock
        self._spawn = spawn
        self.state = AgentState()
        self._sync_interval = config.get("syncIntervalSec", SYNC_INTERVAL_SEC)

        self.machine.add_listener(self._on_status)

    def run(self):
        """Blocks until stop(). Ends the active session on the way out."""
        log.info(
            "v%s started (user=%s, device=%s, tick=%ss, sync=%ss)",
            AGENT_VERSION, self._config["userId"], self._config["deviceId"],
            self._ticker.interval, self._sync_interval,
        )
        try:
            self._ticker.run(self.run_once, lambda: self.state.stop_requested)
        finally:
            self.shutdown()

    def stop(self):
        """Safe from signal handlers: only sets a flag the loop checks."""
        self.state.stop_requested = True

    def shutdown(self):
        now = self._clock()
        try:
            self.machine.disconnect(now)
        except Exception as e:
            log.error("Disconnect on shutdown failed: %s", e, exc_info=True)
        self._write_status(now)
        self._sampler.close()
        log.info("AgentApp shut down.")

    def run_once(self, now=None):
        now = self._clock() if now is None else now
        for job in (self._tick, self._check_connectivity, self._maybe_sync,
                    self._maybe_write_status, self._maybe_prune):
            try:
                job(now)
            except Exception as e:
                log.error("%s error: %s", job.__name__, e, exc_info=True)

    # ─── Jobs ────────────────────────────────────────────────

    def _tick(self, now):
        signal, location, reason = self._sampler.sample()
        self.machine.tick(signal, location, now=now, location_reason=reason)
        self.state.last_tick_time = now

    def _check_connectivity(self, now):
        if not self.state.due(self.state.last_connectivity_check, CONNECTIVITY_CHECK_SEC, now):
            return
        self.state.last_connectivity_check = now
        server_url = self._config.get("serverUrl", "")
        if not server_url:
            return

        if self.state.online and self.state.consecutive_sync_failures >= 2:
            if not network.is_online(server_url):
                self.state.mark_offline(now)
                log.warning("Network OFFLINE — sync paused, sessions continue locally")
            else:
                self.state.consecutive_sync_failures = 0
        elif not self.state.online and network.is_online(server_url):
            log.info("Network ONLINE after %.0fs — flushing pending records",
                     now - self.state.offline_since)
            self.state.mark_online()
            self._start_sync(now)

    def _maybe_sync(self, now):
        if not self.state.online:
            return
        if not self.state.due(self.state.last_sync_time, self._sync_interval, now):
            return
        self._start_sync(now)

    def _start_sync(self, now):
        if self.state.sync_in_flight:
            return
        self.state.sync_in_flight = True
        self.state.last_sync_time = now

        def do_sync():
            try:
                synced, remaining = self.syncer.flush()
                if remaining and not synced:
                    self.state.consecutive_sync_failures += 1
                else:
                    self.state.consecutive_sync_failures = 0
            except Exception as e:
                log.warning("Sync thread error: %s", e)
                self.state.consecutive_sync_failures += 1
            finally:
                self.state.sync_in_flight = False

        self._spawn(do_sync)

    def _maybe_write_status(self, now):
        if self.state.due(self.state.last_status_write, STATUS_WRITE_SEC, now):
            self._write_status(now)

    def _maybe_prune(self, now):
        if not self.state.due(self.state.last_prune_time, PRUNE_INTERVAL_SEC, now):
            return
        self.state.last_prune_time = now
        self._store.prune(now)
        self._ledger.prune(now)

    # ─── Status for the UI ───────────────────────────────────

    def _on_status(self, status):
        self._write_status(self._clock(), status)

    def _write_status(self, now, status=None):
        status = status or self.machine.status(now)
        payload = status.to_dict()
        payload.update({
            "updatedAt": now,
            "online": self.state.online,
            "syncing": status.syncing,
            "agentVersion": AGENT_VERSION,
        })
        try:
            atomic_write_text(self._status_file, json.dumps(payload, indent=2), prefix="status_")
        except PersistenceError as e:
            log.debug("Status write failed: %s", e)
            return
        self.state.last_status_write = now
