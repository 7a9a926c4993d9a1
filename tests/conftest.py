"""
Shared pytest fixtures for the SiteTrack test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - owner / company / owner_headers: a signed-up company and its owner
    - make_user / headers_for: users of any role plus their Bearer headers
    - other_owner / other_headers: a second, unrelated company
    - workflow: a small three-stage workflow for the company
"""

import os

import pytest
from cryptography.fernet import Fernet

# Share tokens need a key before the app is imported
os.environ.setdefault("ENCRYPTION_KEY", Fernet.generate_key().decode())

from app import create_app  # noqa: E402
from app.models import db as _db  # noqa: E402
from app.services import stage_config_service, user_service, worker_service  # noqa: E402
from app.services.permission_service import invalidate_all_cache  # noqa: E402

PASSWORD = "Sup3rSecret!"


def login(client, email, password=PASSWORD):
    """Log in through the API and return Authorization headers."""
    res = client.post("/api/v1/auth/login", json={"email": email, "password": password})
    assert res.status_code == 200, res.get_json()
    return {"Authorization": f"Bearer {res.get_json()['access_token']}"}


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


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
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        # Ids are reused across tests; permission decisions are cached by user id
        invalidate_all_cache()
        yield
        invalidate_all_cache()
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Company & user fixtures ──────────────────────────────────────────────


@pytest.fixture()
def owner():
    """Owner of a freshly signed-up company."""
    return user_service.signup("Acme Build", "owner@acmebuild.com", PASSWORD, "Olivia Owner")


@pytest.fixture()
def company(owner):
    return owner.company


@pytest.fixture()
def owner_headers(client, owner):
    return login(client, owner.email)


@pytest.fixture()
def make_user(company):
    """Factory: create an active user with ``role`` in the test company."""

    def _make(role, email=None, company_id=None, full_name=None):
        return user_service.create_user(
            company_id or company.id,
            email=email or f"{role}@acmebuild.com",
            password=PASSWORD,
            full_name=full_name or f"{role.title()} User",
            role=role,
        )

    return _make


@pytest.fixture()
def headers_for(client, make_user):
    """Factory: create a user with ``role`` and return their auth headers."""

    def _headers(role, **kwargs):
        user = make_user(role, **kwargs)
        return login(client, user.email)

    return _headers


@pytest.fixture()
def other_owner():
    """Owner of a second company, for isolation checks."""
    return user_service.signup("Rival Homes", "owner@rivalhomes.com", PASSWORD, "Riley Rival")


@pytest.fixture()
def other_headers(client, other_owner):
    return login(client, other_owner.email)


@pytest.fixture()
def site_admin():
    return user_service.create_site_admin("root@sitetrack.io", PASSWORD, "Site Admin")


@pytest.fixture()
def site_admin_headers(client, site_admin):
    return login(client, site_admin.email)


# ── Workflow fixtures ────────────────────────────────────────────────────


@pytest.fixture()
def workflow(company):
    """Three stages: Survey → Build → Closed.

    Survey asks "Site surveyed?" (yes_no) and "Soil score" (number);
    "Yes" on the first question moves a job to Build, which spawns a
    two-item checklist.
    """
    cid = company.id
    survey = stage_config_service.create_stage(cid, {"name": "Survey", "maps_to_status": "planning"})
    build = stage_config_service.create_stage(cid, {"name": "Build", "maps_to_status": "active"})
    closed = stage_config_service.create_stage(cid, {"name": "Closed", "maps_to_status": "completed"})

    surveyed = stage_config_service.create_question(
        cid, survey.id, {"question_text": "Site surveyed?", "response_type": "yes_no"},
    )
    soil = stage_config_service.create_question(
        cid, survey.id, {"question_text": "Soil score", "response_type": "number"},
    )
    finished = stage_config_service.create_question(
        cid, build.id, {"question_text": "Build finished?", "response_type": "yes_no"},
    )

    to_build = stage_config_service.create_transition(
        cid, survey.id,
        {"to_stage_id": build.id, "trigger_response": "Yes",
         "conditions": {"question_id": surveyed.id}, "is_automatic": True},
    )
    to_closed = stage_config_service.create_transition(
        cid, build.id,
        {"to_stage_id": closed.id, "trigger_response": "Yes",
         "conditions": {"question_id": finished.id}, "is_automatic": True},
    )

    checklist = stage_config_service.create_template(
        cid, build.id,
        {"title": "Site setup", "task_type": "checklist",
         "subtasks": ["Fence the site", "Deliver skip bin"]},
    )

    return {
        "survey": survey.id,
        "build": build.id,
        "closed": closed.id,
        "q_surveyed": surveyed.id,
        "q_soil": soil.id,
        "q_finished": finished.id,
        "t_to_build": to_build.id,
        "t_to_closed": to_closed.id,
        "checklist": checklist.id,
    }


@pytest.fixture()
def job(client, owner_headers, workflow):
    """A job created through the API; it starts in the Survey stage."""
    res = client.post("/api/v1/jobs", json={"title": "Kitchen extension"}, headers=owner_headers)
    assert res.status_code == 201, res.get_json()
    return res.get_json()


@pytest.fixture()
def worker_user(make_user, company):
    """A ``worker``-role user with a linked Worker record at $40/h."""
    user = make_user("worker", email="wes@acmebuild.com", full_name="Wes Worker")
    worker = worker_service.create_worker(
        company.id, {"full_name": "Wes Worker", "user_id": user.id, "hourly_rate": 40},
    )
    return user, worker
