"""
Shared pytest fixtures for backend tests.

Every test gets a fresh app on an in-memory SQLite database with the
background scheduler disabled, a fake probe engine, a recording email
transport, and an inline executor so "background" scans finish before
the triggering call returns.
"""
import sys
from concurrent.futures import Future
from pathlib import Path

import pytest

# Add backend directory to path for imports
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

from cyberguard import create_app
from cyberguard.extensions import db
from cyberguard.models import Tenant, TenantSettings, User
from cyberguard.scanner.probe import ProbeEngine, ScanFindings


class InlineExecutor:
    """Runs submitted work immediately on the calling thread."""

    def __init__(self):
        self.submitted = 0

    def submit(self, fn, *args, **kwargs):
        self.submitted += 1
        future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)
        return future

    def shutdown(self, wait=True):
        pass


class DeferredExecutor:
    """Collects submitted work; run_all() executes it later."""

    def __init__(self):
        self.pending = []

    def submit(self, fn, *args, **kwargs):
        future = Future()
        self.pending.append((future, fn, args, kwargs))
        return future

    def run_all(self):
        pending, self.pending = self.pending, []
        for future, fn, args, kwargs in pending:
            try:
                future.set_result(fn(*args, **kwargs))
            except Exception as e:
                future.set_exception(e)

    def shutdown(self, wait=True):
        pass


class FakeProbeEngine(ProbeEngine):
    """Returns canned findings (or raises) and records every call."""

    def __init__(self):
        self.findings = ScanFindings()
        self.error = None
        self.calls = []
        self.on_run = None

    def run_probes(self, domain, types, email_domains=()):
        self.calls.append({"domain": domain, "types": list(types), "email_domains": list(email_domains)})
        if self.on_run:
            self.on_run(domain)
        if self.error:
            raise self.error
        return self.findings


class RecordingTransport:
    """Stands in for EmailTransport; records what would have been sent."""

    def __init__(self):
        self.sent = []
        self.result = True
        self.error = None

    def send_templated_email(self, to, template_kind, data):
        if self.error:
            raise self.error
        self.sent.append({"to": to, "kind": template_kind, "data": data})
        return self.result

    def kinds(self):
        return [m["kind"] for m in self.sent]


@pytest.fixture
def probe():
    return FakeProbeEngine()


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def executor():
    return InlineExecutor()


@pytest.fixture
def app(probe, transport, executor):
    app = create_app(
        {
            "SQLALCHEMY_DATABASE_URI": "sqlite://",
            "SCHEDULER_ENABLED": False,
            "CORS_ORIGINS": "",
            "TESTING": True,
        },
        probe_engine=probe,
        transport=transport,
        executor=executor,
    )
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def queue(app):
    return app.extensions["job_queue"]


@pytest.fixture
def orchestrator(app):
    return app.extensions["orchestrator"]


@pytest.fixture
def evaluator(app):
    return app.extensions["evaluator"]


@pytest.fixture
def dispatcher(app):
    return app.extensions["dispatcher"]


@pytest.fixture
def notifier(app):
    return app.extensions["notifier"]


@pytest.fixture
def make_tenant(app):
    """Create a committed tenant with settings (and optionally an admin user)."""

    def _make(
        name="Acme",
        domain="acme.com",
        admin_email="admin@acme.com",
        email_domains=None,
        **settings,
    ):
        tenant = Tenant(name=name, domain=domain, email_domains=email_domains or [])
        db.session.add(tenant)
        db.session.flush()
        db.session.add(TenantSettings(tenant_id=tenant.id, **settings))
        if admin_email:
            db.session.add(User(tenant_id=tenant.id, email=admin_email, role="admin"))
        db.session.commit()
        return tenant

    return _make


@pytest.fixture
def deferred():
    return DeferredExecutor()
