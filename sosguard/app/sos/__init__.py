"""
sos — Auto-escalating SOS alerts.

Sub-modules:
    models          — Alert, Subject, Location, status enums
    timer_registry  — per-alert countdowns with atomic arm / disarm
    lifecycle       — trigger, escalate, verify-and-cancel, listing
    store           — alert record store (in-memory / SQLAlchemy)
    subjects        — subject directory (in-memory / SQLAlchemy)
    notifier        — escalation notifiers (log, webhook, composite)
    orm             — SQLAlchemy tables
    factory         — build a lifecycle manager from settings
"""
