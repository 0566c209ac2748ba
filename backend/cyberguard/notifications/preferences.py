# cyberguard/notifications/preferences.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

# Event kinds routed by the NotificationDispatcher
EVENT_NEW_BREACH = "new_breach"
EVENT_SCAN_COMPLETE = "scan_complete"
EVENT_HIGH_RISK = "high_risk"
EVENT_WEEKLY_DIGEST = "weekly_digest"


@dataclass(frozen=True)
class NotificationPreferences:
    """Per-tenant opt-in flags. Defaults mirror a freshly created tenant."""
    new_breach: bool = True
    scan_complete: bool = False
    high_risk: bool = True
    weekly_digest: bool = False
    notification_email: Optional[str] = None

    def allows(self, event: str) -> bool:
        return {
            EVENT_NEW_BREACH: self.new_breach,
            EVENT_SCAN_COMPLETE: self.scan_complete,
            EVENT_HIGH_RISK: self.high_risk,
            EVENT_WEEKLY_DIGEST: self.weekly_digest,
        }.get(event, False)
