"""
Shared pytest fixtures for the FlowVision test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup + fresh AI queue + cold config cache (autouse)
    - client: Flask test client (function-scoped)
    - ai_queue: The app's AIOperationQueue for this test (workers not started)
    - system_config: The app's SystemConfigService
    - seeded: Default system configuration rows
    - api_keys: Enables auth with one key per role
"""

import pytest

from flowvision import create_app
from flowvision.ai.audit import OperationAuditRecorder
from flowvision.ai.operation_queue import AIOperationQueue
from flowvision.ai.operations import OperationExecutor
from flowvision.models import db as _db

ADMIN_KEY = "admin-key-123"
EDITOR_KEY = "editor-key-456"
OTHER_EDITOR_KEY = "editor-key-789"
VIEWER_KEY = "viewer-key-000"
GLOBEX_KEY = "globex-key-321"


def _fresh_queue(app) -> AIOperationQueue:
    """Same wiring as the app factory, with empty state."""
    queue = AIOperationQueue(
        OperationExecutor(app.extensions["ai_gateway"]),
        settings_provider=app.extensions["system_config"].operation_settings,
        max_workers=app.config["AI_QUEUE_WORKERS"],
        retention_seconds=app.config["AI_RESULT_RETENTION_SECONDS"],
        default_timeout_seconds=app.config["AI_DEFAULT_TIMEOUT_SECONDS"],
        app=app,
    )
    queue.add_listener(OperationAuditRecorder(app))
    return queue


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, reset queue + config cache, recreate tables after."""
    app.extensions["ai_queue"] = _fresh_queue(app)
    app.extensions["system_config"].clear_cache()
    with app.app_context():
        yield
        app.extensions["ai_queue"].stop(timeout=1)
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture()
def ai_queue(app):
    return app.extensions["ai_queue"]


@pytest.fixture()
def system_config(app):
    return app.extensions["system_config"]


@pytest.fixture()
def seeded(system_config):
    """Seed the default configuration rows."""
    return system_config.seed_defaults("pytest")


# ── Auth fixtures ────────────────────────────────────────────────────────


@pytest.fixture()
def api_keys(monkeypatch):
    """Enable API-key auth with one key per role, plus an admin bound to tenant "globex"."""
    monkeypatch.setenv("API_AUTH_ENABLED", "true")
    monkeypatch.setenv(
        "API_KEYS",
        ",".join([
            f"{ADMIN_KEY}:admin:admin@acme.io",
            f"{EDITOR_KEY}:editor:alice@acme.io",
            f"{OTHER_EDITOR_KEY}:editor:bob@acme.io",
            f"{VIEWER_KEY}:viewer:viewer@acme.io",
            f"{GLOBEX_KEY}:admin:carol@globex.io:globex",
        ]),
    )
    return {
        "admin": {"X-API-Key": ADMIN_KEY},
        "editor": {"X-API-Key": EDITOR_KEY},
        "other_editor": {"X-API-Key": OTHER_EDITOR_KEY},
        "viewer": {"X-API-Key": VIEWER_KEY},
        "globex_admin": {"X-API-Key": GLOBEX_KEY},
    }
