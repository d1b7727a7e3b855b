import pytest
from datetime import timedelta

from vote_server import db
from vote_server.authentication import sessions as sessions_module
from vote_server.authentication.sessions import SessionManager, SessionPolicy
from vote_server.database.models import UserSession, utcnow
from vote_server.security.token_manager import TokenManager


@pytest.fixture
def user(voter):
    return voter[0]


def _shift_clock(monkeypatch, delta):
    later = utcnow() + delta
    monkeypatch.setattr(sessions_module, 'utcnow', lambda: later)


def test_issue_and_validate(services, user):
    session, token = services.sessions.issue(user, '10.0.0.7')

    assert len(session.token) == 64  # 256-bit random id
    assert session.active is True
    assert session.source_address == '10.0.0.7'
    assert session.expires_at is not None

    validated = services.sessions.validate(token)
    assert validated is not None
    assert validated[0].id == session.id
    assert validated[1].id == user.id


def test_garbage_tokens_are_rejected(services, user):
    assert services.sessions.validate(None) is None
    assert services.sessions.validate('') is None
    assert services.sessions.validate('not.a.jwt') is None


def test_token_without_session_claim_is_rejected(app):
    from flask_jwt_extended import create_access_token

    token = create_access_token(identity='someone')
    assert TokenManager().decode(token) is None


def test_single_policy_replaces_earlier_sessions(services, user):
    first, first_token = services.sessions.issue(user, '10.0.0.1')
    second, second_token = services.sessions.issue(user, '10.0.0.2')

    assert services.sessions.validate(first_token) is None
    assert services.sessions.validate(second_token)[0].id == second.id
    old = db.session.get(UserSession, first.id)
    assert old.active is False
    assert old.ended_at is not None


def test_multiple_policy_keeps_sessions(app, user):
    manager = SessionManager(ttl=timedelta(hours=1), policy=SessionPolicy.MULTIPLE)
    _, first_token = manager.issue(user, '10.0.0.1')
    _, second_token = manager.issue(user, '10.0.0.2')

    assert manager.validate(first_token) is not None
    assert manager.validate(second_token) is not None


def test_invalidate(services, user):
    session, token = services.sessions.issue(user, '10.0.0.1')

    ended = services.sessions.invalidate(token)
    assert ended.id == session.id
    assert ended.active is False
    assert ended.ended_at is not None
    assert services.sessions.validate(token) is None

    # unknown and repeated logouts are harmless
    assert services.sessions.invalidate('garbage') is None
    assert services.sessions.invalidate(token).id == session.id


def test_expired_session_is_rejected(services, user, monkeypatch):
    _, token = services.sessions.issue(user, '10.0.0.1')
    _shift_clock(monkeypatch, timedelta(hours=25))

    assert services.sessions.validate(token) is None


def test_expired_signature_is_rejected(app, user):
    manager = SessionManager(ttl=timedelta(seconds=-5))
    _, token = manager.issue(user, '10.0.0.1')

    assert manager.validate(token) is None


def test_expiry_not_enforced(app, user, monkeypatch):
    manager = SessionManager(ttl=timedelta(hours=24), enforce_expiry=False)
    session, token = manager.issue(user, '10.0.0.1')
    _shift_clock(monkeypatch, timedelta(days=30))

    validated = manager.validate(token)
    assert validated is not None
    assert validated[0].id == session.id


def test_validate_touches_last_access(services, user, monkeypatch):
    session, token = services.sessions.issue(user, '10.0.0.1')
    before = session.last_access_at
    _shift_clock(monkeypatch, timedelta(minutes=5))

    validated_session, _ = services.sessions.validate(token)
    assert validated_session.last_access_at > before


def test_user_row_is_locked_for_single_sessions(services, user):
    from sqlalchemy.dialects import postgresql

    query = SessionManager.lock_user(user.id)
    assert 'FOR UPDATE' in str(query.statement.compile(dialect=postgresql.dialect()))

    first, _ = services.sessions.issue(user, '10.0.0.1')
    second, _ = services.sessions.issue(user, '10.0.0.2')
    assert db.session.get(UserSession, first.id).active is False
    assert db.session.get(UserSession, second.id).active is True
