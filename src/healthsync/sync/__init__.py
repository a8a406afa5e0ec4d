"""Sync infrastructure for HealthSync.

Modules:
    state_store       — persisted key/value state (sync state, retry queue, caches)
    dashboard_client  — httpx client for the remote dashboard
    coordinator       — guarded sync pipeline and retry queue
    scheduler         — periodic / app-open triggers with a minimum interval
"""
