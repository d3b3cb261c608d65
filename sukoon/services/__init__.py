"""Sukoon risk pipeline services.

- Safety Service classifies intake text and publishes risky outcomes
- Triage Service consumes risk.flagged, decides escalation against the
  user's history and dispatches crisis-team notifications
- All services use hash_pii() for user identifiers in logs
"""
