# cyberguard/utils/domains.py
from __future__ import annotations

import re
from urllib.parse import urlparse

_DOMAIN_RE = re.compile(
    r"^(?:[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?\.)+[a-zA-Z]{2,}$"
)
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def normalize_domain(value: str | None) -> str:
    """
    Canonical hostname: no scheme, no path, no port, no trailing dot or
    slash, lower-case.

        normalize_domain("https://Example.com/login")  -> "example.com"
        normalize_domain("example.com/")               -> "example.com"
    """
    v = (value or "").strip()
    if not v:
        return ""

    if "://" in v:
        host = urlparse(v).hostname or ""
    else:
        host = v.split("/", 1)[0]
        if host.count(":") == 1:
            host = host.split(":", 1)[0]

    return host.rstrip(".").lower()


def is_valid_domain(value: str | None) -> bool:
    return bool(value) and bool(_DOMAIN_RE.match(value))


def is_valid_email(value: str | None) -> bool:
    return bool(value) and bool(_EMAIL_RE.match(value))
