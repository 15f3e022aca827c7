"""
Shared pytest fixtures: a Flask app on in-memory SQLite with the dashboard
tables the engine reads, plus in-memory fakes for the external adapters.
"""
import os

import pytest
from sqlalchemy import text

os.environ.setdefault('GYMFLOW_ENV', 'testing')

from gymflow import create_app, db  # noqa: E402
from gymflow.models import AutomatedFlow, FlowStep  # noqa: E402
from gymflow.services.automation.engine import FlowEngine  # noqa: E402
from fakes import FakeDispatcher, FakeMemberDirectory, FakeTagStore  # noqa: E402

# Owned by the dashboard; only created here so the SQL adapters have something to read
DASHBOARD_TABLES = [
    "CREATE TABLE gyms (id VARCHAR(36) PRIMARY KEY, name VARCHAR(255))",
    """CREATE TABLE members (
        id VARCHAR(36) PRIMARY KEY, gym_id VARCHAR(36), first_name VARCHAR(100),
        last_name VARCHAR(100), email VARCHAR(255), phone VARCHAR(50), status VARCHAR(20),
        joined_at TIMESTAMP, date_of_birth DATE)""",
    """CREATE TABLE subscriptions (
        id VARCHAR(36) PRIMARY KEY, member_id VARCHAR(36), status VARCHAR(20),
        current_period_end TIMESTAMP)""",
    "CREATE TABLE check_ins (id VARCHAR(36) PRIMARY KEY, member_id VARCHAR(36), checked_in_at TIMESTAMP)",
    """CREATE TABLE member_tags (
        id VARCHAR(36) PRIMARY KEY, member_id VARCHAR(36), tag_id VARCHAR(36),
        applied_by VARCHAR(50), created_at TIMESTAMP)""",
    "CREATE UNIQUE INDEX uq_member_tags_member_tag ON member_tags (member_id, tag_id)",
]

DASHBOARD_TABLE_NAMES = ['gyms', 'members', 'subscriptions', 'check_ins', 'member_tags']


# ============================================================================
# APP / DATABASE
# ============================================================================


@pytest.fixture
def app():
    app = create_app('testing')
    with app.app_context():
        db.create_all()
        for ddl in DASHBOARD_TABLES:
            db.session.execute(text(ddl))
        db.session.commit()

        yield app

        db.session.remove()
        for name in DASHBOARD_TABLE_NAMES:
            db.session.execute(text(f"DROP TABLE IF EXISTS {name}"))
        db.session.commit()
        db.drop_all()


@pytest.fixture
def session(app):
    return db.session


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth_headers():
    return {'Authorization': 'Bearer test-token'}


@pytest.fixture
def make_flow(session):
    """Factory: make_flow([email_step(), wait_step(2)], trigger_type='NO_CHECKIN', ...)"""

    def _make(steps, trigger_type='NO_CHECKIN', trigger_value=14, is_active=True,
              gym_id='gym-1', name='Test Flow'):
        flow = AutomatedFlow(
            gym_id=gym_id,
            name=name,
            trigger_type=trigger_type,
            trigger_value=trigger_value,
            is_active=is_active,
        )
        flow.steps = [FlowStep(order=i, **step) for i, step in enumerate(steps)]
        session.add(flow)
        session.commit()
        return flow

    return _make


# ============================================================================
# FAKE ADAPTERS
# ============================================================================


@pytest.fixture
def dispatcher():
    return FakeDispatcher()


@pytest.fixture
def directory():
    return FakeMemberDirectory()


@pytest.fixture
def tag_store():
    return FakeTagStore()


@pytest.fixture
def engine(app, dispatcher, directory, tag_store):
    return FlowEngine(
        db.session,
        app.config,
        dispatcher=dispatcher,
        tag_store=tag_store,
        member_directory=directory,
        worker_id='worker-test',
    )
