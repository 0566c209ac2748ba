"""
Notifications — tenant-scoped email for scan, risk, breach and digest events.

Components:
    preferences.py — NotificationPreferences + event kind names
    templates.py   — subject/html per template kind
    email.py       — EmailTransport (SendGrid)
    dispatcher.py  — NotificationDispatcher (gating, recipient resolution, digest)
"""
