"""
AgentState — runtime bookkeeping for the agent loop (not session state).

Session state lives in SessionStateMachine and the durable store. This holds
only scheduling timestamps and connectivity flags. Mutated on the loop
thread, except sync_in_flight / consecutive_sync_failures which the sync
worker writes once when it finishes.
"""

from dataclasses import dataclass


@dataclass
class AgentState:
    # ── Scheduling ────────────────────────────────────────────
    last_tick_time: float = 0.0
    last_sync_time: float = 0.0
    last_status_write: float = 0.0
    last_prune_time: float = 0.0
    last_connectivity_check: float = 0.0

    # ── Connectivity ──────────────────────────────────────────
    online: bool = True
    offline_since: float = 0.0
    consecutive_sync_failures: int = 0
    sync_in_flight: bool = False

    # ── Lifecycle ─────────────────────────────────────────────
    stop_requested: bool = False

    def due(self, last_ts: float, interval: float, now: float) -> bool:
        return (now - last_ts) >= interval

    def mark_offline(self, now: float):
        self.online = False
        self.offline_since = now

    def mark_online(self):
        self.online = True
        self.offline_since = 0.0
        self.consecutive_sync_failures = 0
