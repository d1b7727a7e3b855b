import pytest

from vote_server import db
from vote_server.database.models import AuditLogEntry, User
from vote_server.errors import AuthError, ConflictError, NotFoundError, ValidationError


def test_create_voter_returns_one_time_credentials(services):
    user, creds = services.credentials.create({'email': '  Maria@Example.COM ', 'name': 'Maria <b>Lopez</b>',
                                               'department': 'Sales', 'idNumber': 'A-17'})

    assert user.email == 'maria@example.com'
    assert user.role == 'voter'
    assert user.is_eligible is True
    assert user.has_voted is False
    assert user.name == 'Maria <b>Lopez</b>'
    assert creds['email'] == 'maria@example.com'
    assert len(creds['accessCode']) == 6 and creds['accessCode'].isdigit()
    assert services.hasher.is_strong_password(creds['password'])

    # only hashes are stored
    assert creds['password'] not in user.password_hash
    assert user.access_code_hash != creds['accessCode']


def test_create_sanitizes_markup(services):
    user, _ = services.credentials.create({'email': 'x@example.com', 'name': '<script>alert(1)</script>Eve'})
    assert '<script>' not in user.name


def test_create_rejects_duplicates_case_insensitively(services, voter):
    with pytest.raises(ConflictError):
        services.credentials.create({'email': 'VOTER@example.com'})


def test_create_rejects_bad_email(services):
    with pytest.raises(ValidationError):
        services.credentials.create({'email': 'not-an-email'})


def test_admin_gets_no_access_code_and_needs_strong_password(services):
    user, creds = services.credentials.create({'email': 'boss@example.com'}, role='admin',
                                              password='Sup3rSecret!!')
    assert user.role == 'admin'
    assert user.access_code_hash is None
    assert creds['accessCode'] is None
    assert 'password' not in creds

    with pytest.raises(ValidationError):
        services.credentials.create({'email': 'weak@example.com'}, role='admin', password='weak')


def test_verify(services, voter):
    user, creds = voter

    assert services.credentials.verify('Voter@Example.com', creds['password']).id == user.id
    assert services.credentials.verify(user.email, creds['password'], creds['accessCode']).id == user.id


@pytest.mark.parametrize('email, password, code, required, reason', [
    ('nobody@example.com', 'whatever', None, False, 'invalid_credentials'),
    ('voter@example.com', 'wrong-password', None, False, 'invalid_credentials'),
    ('voter@example.com', None, 'wrong', False, 'invalid_access_code'),
    ('voter@example.com', None, None, True, 'access_code_required'),
])
def test_verify_failures(services, voter, email, password, code, required, reason):
    _, creds = voter
    password = password or creds['password']
    if code == 'wrong':
        code = str((int(creds['accessCode']) + 1) % 1000000).zfill(6)

    with pytest.raises(AuthError) as excinfo:
        services.credentials.verify(email, password, code, require_access_code=required)
    assert excinfo.value.reason == reason
    assert excinfo.value.status_code == 401


def test_bulk_create(services, voter):
    results = services.credentials.bulk_create([
        {'email': 'a@example.com', 'name': 'A'},
        {'email': 'A@example.com'},
        {'email': 'voter@example.com'},
        {'name': 'no email'},
        {'email': 'broken'},
        {'email': 'b@example.com'},
    ])

    assert [c['email'] for c in results['created']] == ['a@example.com', 'b@example.com']
    assert [d['row'] for d in results['duplicates']] == [2, 3]
    assert [e['row'] for e in results['errors']] == [4, 5]
    assert all(c['password'] and c['accessCode'] for c in results['created'])
    assert db.session.query(User).count() == 3

    entry = db.session.query(AuditLogEntry).order_by(AuditLogEntry.id.desc()).first()
    assert entry.message == 'Bulk voter upload completed'
    assert entry.event_metadata['created'] == 2


def test_bulk_create_requires_list(services):
    with pytest.raises(ValidationError):
        services.credentials.bulk_create([])
    with pytest.raises(ValidationError):
        services.credentials.bulk_create({'email': 'a@example.com'})


def test_regenerate_credentials(services, voter):
    user, creds = voter
    fresh = services.credentials.regenerate_credentials(user.id)

    assert fresh['password'] != creds['password']
    with pytest.raises(AuthError):
        services.credentials.verify(user.email, creds['password'])
    assert services.credentials.verify(user.email, fresh['password'], fresh['accessCode']).id == user.id


def test_update_and_eligibility(services, voter):
    user, _ = voter
    services.credentials.update(user.id, {'department': 'Finance', 'role': 'admin'})
    assert user.department == 'Finance'
    assert user.role == 'voter'

    services.credentials.set_eligibility(user.id, False)
    assert user.is_eligible is False

    with pytest.raises(ValidationError):
        services.credentials.set_eligibility(user.id, 'no')


def test_delete(services, voter):
    user, _ = voter
    services.credentials.delete(user.id)
    assert services.credentials.find_by_email('voter@example.com') is None
    with pytest.raises(NotFoundError):
        services.credentials.get(user.id)


def test_delete_refused_after_voting(services, voter):
    user, _ = voter
    user.has_voted = True
    db.session.commit()

    with pytest.raises(ConflictError):
        services.credentials.delete(user.id)
