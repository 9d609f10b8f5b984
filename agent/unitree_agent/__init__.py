"""
unitree_agent — UniTree WiFi Session Agent v1.2
===============================================
Architecture: single-threaded tick loop. Sampling and uploads run on worker
threads that never touch session state.

  constants.py     → Version, intervals, validation and accrual defaults
  errors.py        → AgentError hierarchy
  config.py        → Paths, logging, config load/save, .env + UNITREE_* overrides
  models.py        → Signals, configs, WifiSession, ledger transaction, status
  validator.py     → Dual-factor check (IP prefix AND campus geofence)
  location.py      → Location providers + permission tri-state
  network.py       → Connectivity check, interface IP, SignalSampler
  store.py         → Durable session store + point ledger (JSON / memory)
  accrual.py       → Points for an ended session, daily cap, idempotent
  state_machine.py → SessionStateMachine (Idle/Active/Ending/Ended, recovery)
  http_client.py   → HTTP session with retry/pooling + bearer auth
  api.py           → Server API calls (session + transaction upload, balance)
  sync.py          → RemoteSync flush queue + ledger balance lookup
  state.py         → AgentState dataclass (loop bookkeeping)
  app.py           → AgentApp (tick loop, sync, status file, pruning)
  runner.py        → main() + auto-restart wrapper
"""
