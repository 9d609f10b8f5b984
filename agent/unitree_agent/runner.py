"""
Entry point and auto-restart wrapper.
"""

import signal
import sys
import time

from .constants import AGENT_VERSION
from .config import (
    log, safe_print, load_config, validate_config,
    build_validator_config, build_accrual_config,
    SESSIONS_FILE, LEDGER_FILE,
)
from .errors import ConfigError
from .location import provider_from_config
from .network import SignalSampler, is_online
from .state_machine import SessionStateMachine
from .store import JsonSessionStore, JsonLedger
from .sync import RemoteSync, LedgerBalance
from .app import AgentApp
from . import http_client


def build_app(config, store=None, ledger=None, sampler=None):
    """Wire stores, state machine, sampler and sync from a validated config."""
    store = store or JsonSessionStore(config.get("sessionsFile", SESSIONS_FILE))
    ledger = ledger or JsonLedger(config.get("ledgerFile", LEDGER_FILE))
    balance = LedgerBalance(config, ledger)
    machine = SessionStateMachine(
        user_id=config["userId"],
        device_id=config["deviceId"],
        store=store,
        ledger=ledger,
        validator_config=build_validator_config(config),
        accrual_config=build_accrual_config(config),
        today_points=balance,
        **_machine_overrides(config),
    )
    sampler = sampler or SignalSampler(provider_from_config(config))
    syncer = RemoteSync(config, store, ledger, balance)
    return AgentApp(config, machine, sampler, syncer, store, ledger)


def _machine_overrides(config):
    keys = {
        "heartbeatIntervalSec": "heartbeat_interval",
        "tickTimeoutSec": "tick_timeout",
        "maxSessionHours": "max_session_hours",
    }
    return {arg: config[key] for key, arg in keys.items() if key in config}


def main():
    """Primary agent entry point."""
    safe_print("UniTree WiFi Agent v" + AGENT_VERSION)
    safe_print()

    try:
        config = validate_config(load_config())
    except ConfigError as e:
        log.error("Cannot start: %s", e)
        safe_print(f"Configuration error: {e}")
        sys.exit(1)

    log.info("Loaded config for %s (device: %s)",
             config["userId"], str(config["deviceId"])[:8] + "...")
    http_client.set_token(config.get("apiToken"))

    app = build_app(config)

    # ── Close sessions a killed process left open ──
    try:
        recovered = app.machine.recover()
        if recovered:
            log.info("Recovered %d interrupted session(s)", len(recovered))
    except Exception as e:
        log.error("Session recovery failed: %s", e, exc_info=True)

    # ── Flush anything left pending by the previous run ──
    if is_online(config["serverUrl"]):
        try:
            app.syncer.flush()
        except Exception as e:
            log.warning("Startup sync failed: %s", e)

    def _on_signal(signum, frame):
        log.info("Signal %d received — stopping", signum)
        app.stop()

    signal.signal(signal.SIGTERM, _on_signal)
    signal.signal(signal.SIGINT, _on_signal)

    app.run()


def run_with_auto_restart():
    """
    Wrapper that auto-restarts on crash. Never gives up.
    Crash counter resets if the agent ran for 2+ minutes (not a boot-loop).
    """
    crash_count = 0
    crash_window = 120
    max_rapid_crashes = 10

    while True:
        start_time = time.time()
        try:
            main()
            break
        except KeyboardInterrupt:
            safe_print("\nAgent stopped by user.")
            break
        except SystemExit as e:
            if str(e) in ("0", "None"):
                break
            log.error("Agent SystemExit: %s", e)
            if str(e) == "1":
                break
        except Exception as e:
            elapsed = time.time() - start_time
            log.error("Agent crashed after %.0fs: %s", elapsed, e, exc_info=True)

            if elapsed > crash_window:
                crash_count = 0
            crash_count += 1

            if crash_count >= max_rapid_crashes:
                wait = 120
                log.warning("Many rapid crashes (%d). Waiting %ds...", crash_count, wait)
            else:
                wait = min(10 * crash_count, 60)

            log.info("Restarting in %ds (crash %d)...", wait, crash_count)
            time.sleep(wait)

            http_client.http = http_client.reset_session(http_client.http)
