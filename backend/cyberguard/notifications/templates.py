# cyberguard/notifications/templates.py
"""
Email templates, one per notification kind.

render(kind, data) -> (subject, html). Values are HTML-escaped; the
layout follows the dark alert card used for integration emails.
"""

from __future__ import annotations

from html import escape

BREACH_ALERT = "breach_alert"
SCAN_COMPLETE = "scan_complete"
HIGH_RISK = "high_risk"
WEEKLY_DIGEST = "weekly_digest"

TEMPLATE_KINDS = (BREACH_ALERT, SCAN_COMPLETE, HIGH_RISK, WEEKLY_DIGEST)


def _card(heading: str, title: str, rows: list[tuple[str, object]]) -> str:
    html = f"""
    <div style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
        <div style="background: #0f1729; color: white; padding: 20px; border-radius: 8px 8px 0 0;">
            <h2 style="margin: 0; font-size: 18px;">{escape(heading)}</h2>
        </div>
        <div style="background: #1a2332; color: #e2e8f0; padding: 20px; border-radius: 0 0 8px 8px; border: 1px solid #2d3748; border-top: none;">
            <h3 style="margin: 0 0 10px; color: white;">{escape(title)}</h3>
            <table style="width: 100%; font-size: 14px; border-collapse: collapse;">
    """
    for label, value in rows:
        if value is None or value == "":
            continue
        html += f"""
                <tr>
                    <td style="padding: 6px 0; color: #94a3b8; width: 160px;">{escape(label)}</td>
                    <td style="padding: 6px 0;">{escape(str(value))[:300]}</td>
                </tr>
        """
    html += """
            </table>
        </div>
        <p style="text-align: center; font-size: 11px; color: #64748b; margin-top: 15px;">
            Sent by CyberGuard
        </p>
    </div>
    """
    return html


def _breach_alert(data: dict) -> tuple[str, str]:
    subject = f"CyberGuard Alert: Credential Breach Detected - {data.get('breach', '')}"
    html = _card("CyberGuard Breach Alert", "Credential exposure detected", [
        ("Email", data.get("email")),
        ("Breach", data.get("breach")),
        ("Breach date", data.get("breachDate")),
        ("Severity", str(data.get("severity", "")).upper()),
        ("Exposed data", ", ".join(data.get("dataClasses") or [])),
    ])
    return subject, html


def _scan_complete(data: dict) -> tuple[str, str]:
    subject = f"CyberGuard: Scan Complete - {data.get('domain', '')}"
    html = _card("CyberGuard Scan Report", f"Scan finished for {data.get('domain', '')}", [
        ("Company", data.get("companyName")),
        ("Scan types", ", ".join(data.get("scanTypes") or [])),
        ("Duration", data.get("duration")),
        ("Findings", data.get("findings")),
        ("Risk score", f"{data.get('riskScore', 0)}/100"),
        ("Risk category", data.get("riskCategory")),
    ])
    return subject, html


def _high_risk(data: dict) -> tuple[str, str]:
    subject = f"CyberGuard: High Risk Alert - Score {data.get('riskScore', 0)}/100"
    html = _card("CyberGuard High Risk Alert", f"{data.get('companyName', '')} needs attention", [
        ("Risk score", f"{data.get('riskScore', 0)}/100"),
        ("Risk category", data.get("riskCategory")),
        ("Critical findings", data.get("criticalFindings")),
        ("High findings", data.get("highFindings")),
    ])
    return subject, html


def _weekly_digest(data: dict) -> tuple[str, str]:
    subject = f"CyberGuard Weekly Digest - {data.get('weekEnd', '')}"
    html = _card("CyberGuard Weekly Digest", f"{data.get('weekStart', '')} to {data.get('weekEnd', '')}", [
        ("Company", data.get("companyName")),
        ("Scans completed", data.get("scansCompleted")),
        ("New breaches", data.get("newBreaches")),
        ("Current risk score", f"{data.get('currentRiskScore', 0)}/100"),
        ("Risk trend", data.get("riskTrend")),
    ])
    return subject, html


_RENDERERS = {
    BREACH_ALERT: _breach_alert,
    SCAN_COMPLETE: _scan_complete,
    HIGH_RISK: _high_risk,
    WEEKLY_DIGEST: _weekly_digest,
}


def render(kind: str, data: dict) -> tuple[str, str]:
    try:
        renderer = _RENDERERS[kind]
    except KeyError:
        raise ValueError(f"unknown email template {kind!r}") from None
    return renderer(data or {})
