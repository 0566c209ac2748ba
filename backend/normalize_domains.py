#!/usr/bin/env python3
"""
normalize_domains.py

Re-normalizes every stored tenant domain and email domain (scheme, path,
port and trailing dots stripped, lower-cased). Rows written before the
model validators existed can hold "https://Example.com/" style values,
which the scheduler then passes to the probe engine verbatim.

Usage:
    # Dry run (shows what would change, no writes):
    python normalize_domains.py

    # Actually update:
    python normalize_domains.py --commit

Run from backend/ (where cyberguard/ lives).
"""

import os
import sys

# Ensure the app is importable
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from cyberguard import create_app
from cyberguard.extensions import db
from cyberguard.models import Tenant
from cyberguard.utils.domains import normalize_domain


def _normalized_list(values):
    out = []
    for v in values or []:
        nd = normalize_domain(v)
        if nd and nd not in out:
            out.append(nd)
    return out


def normalize(commit=False):
    """Returns [(tenant_id, old_domain, new_domain)] for every tenant that changed."""
    changes = []
    seen = {}

    for tenant in Tenant.query.order_by(Tenant.id.asc()).all():
        old_domain = tenant.domain
        new_domain = normalize_domain(old_domain) or None
        old_emails = list(tenant.email_domains or [])
        new_emails = _normalized_list(old_emails)

        if new_domain:
            if new_domain in seen:
                print(f"  [{tenant.id}] WARNING: {new_domain} is also tenant #{seen[new_domain]}")
            seen.setdefault(new_domain, tenant.id)

        if new_domain == old_domain and new_emails == old_emails:
            continue

        print(f"  [{tenant.id}] {str(old_domain):<40} -> {new_domain}")
        if new_emails != old_emails:
            print(f"  [{tenant.id}] email domains {old_emails} -> {new_emails}")

        tenant.domain = new_domain
        tenant.email_domains = new_emails
        changes.append((tenant.id, old_domain, new_domain))

    print(f"\n{'=' * 60}")
    print(f"Total: {len(changes)} tenant(s) to update")

    if commit:
        db.session.commit()
        print(f"\nDONE — {len(changes)} tenant(s) updated and committed.")
    else:
        db.session.rollback()
        print("\nDRY RUN — no changes made. Run with --commit to apply.")

    return changes


if __name__ == "__main__":
    do_commit = "--commit" in sys.argv
    app = create_app({"SCHEDULER_ENABLED": False})
    with app.app_context():
        normalize(commit=do_commit)
