import pytest
from datetime import timedelta

from vote_server import create_app, db
from vote_server.config import TestingConfig
from vote_server.database.models import Election, isoformat, utcnow
from vote_server.services import get_services

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "AdminPass123!"


@pytest.fixture
def app():
    """Application on a fresh in-memory database, with an app context pushed."""
    app = create_app(TestingConfig)
    with app.app_context():
        yield app
        db.session.remove()


@pytest.fixture
def client(app):
    with app.test_client() as client:
        yield client


@pytest.fixture
def services(app):
    return get_services()


@pytest.fixture
def election(services):
    """An open election running from an hour ago until tomorrow."""
    now = utcnow()
    return services.elections.create({
        'name': 'Student Council 2025',
        'startDate': isoformat(now - timedelta(hours=1)),
        'endDate': isoformat(now + timedelta(days=1)),
        'activate': True,
    }, confirm_reset=True)


@pytest.fixture
def make_election(app):
    """Insert an election row directly, bypassing the season reset."""
    def _make(status='active', start=None, end=None, **columns):
        now = utcnow()
        election = Election(
            name=columns.pop('name', f'Election {status}'),
            start_date=start or now - timedelta(days=2),
            end_date=end or now + timedelta(days=1),
            status=status,
            **columns,
        )
        db.session.add(election)
        db.session.commit()
        return election
    return _make


@pytest.fixture
def candidates(services):
    return [
        services.candidates.create({'name': 'Ana Torres', 'party': 'Blue', 'description': 'Mayor'}),
        services.candidates.create({'name': 'Bruno Diaz', 'party': 'Green', 'description': 'Teacher'}),
        services.candidates.create({'name': 'Carla Ruiz', 'party': 'Red', 'description': 'Engineer'}),
    ]


@pytest.fixture
def make_voter(services):
    """Provision a voter; returns (user, credentials) with the one-time password and access code."""
    def _make(email='voter@example.com', **fields):
        return services.credentials.create(dict(fields, email=email))
    return _make


@pytest.fixture
def voter(make_voter):
    return make_voter()


@pytest.fixture
def admin(services):
    user, _ = services.credentials.create({'email': ADMIN_EMAIL}, role='admin', password=ADMIN_PASSWORD)
    return user


@pytest.fixture
def admin_headers(client, admin):
    resp = client.post('/api/login', json={'email': ADMIN_EMAIL, 'password': ADMIN_PASSWORD})
    assert resp.status_code == 200
    return {'Authorization': f"Bearer {resp.get_json()['sessionToken']}"}
