from datetime import timedelta

from vote_server import db
from vote_server.database.models import AuditLogEntry, Election, PublishedResult, utcnow
from vote_server.operations.scheduler import AUTO_PUBLISH_ACTOR


def test_tick_closes_and_auto_publishes(services, make_election):
    now = utcnow()
    expired = make_election(status='active', end=now - timedelta(minutes=1))
    running = make_election(status='active', end=now + timedelta(hours=1))

    summary = services.scheduler.tick(now)

    assert summary['closed'] == [expired.id]
    assert summary['published'] == [expired.id]
    assert summary['failed'] == []

    expired = db.session.get(Election, expired.id)
    assert expired.status == 'published'
    assert expired.results_published_at is not None
    assert db.session.get(Election, running.id).status == 'active'

    results = db.session.query(PublishedResult).all()
    assert len(results) == 1
    assert results[0].election_id == expired.id
    assert results[0].status == 'final'
    assert results[0].published_by == AUTO_PUBLISH_ACTOR

    # later passes are no-ops
    assert services.scheduler.tick(now + timedelta(minutes=1)) == {'closed': [], 'published': [], 'failed': []}
    assert db.session.query(PublishedResult).count() == 1


def test_publish_delay_is_honoured(services, make_election):
    now = utcnow()
    election = make_election(status='active', end=now - timedelta(minutes=1), result_publish_delay_minutes=10)

    summary = services.scheduler.tick(now)
    assert summary['closed'] == [election.id]
    assert summary['published'] == []

    summary = services.scheduler.tick(now + timedelta(minutes=10))
    assert summary['published'] == [election.id]


def test_manual_publish_elections_are_only_closed(services, make_election):
    now = utcnow()
    election = make_election(status='active', end=now - timedelta(minutes=1), auto_publish_results=False)

    summary = services.scheduler.tick(now)
    assert summary == {'closed': [election.id], 'published': [], 'failed': []}
    assert db.session.get(Election, election.id).status == 'closed'


def test_failure_is_isolated_per_election(services, make_election, monkeypatch):
    now = utcnow()
    broken = make_election(status='closed', name='Broken', end=now - timedelta(hours=2))
    healthy = make_election(status='closed', name='Healthy', end=now - timedelta(hours=1))
    publish = services.results.publish

    def flaky_publish(election_id, published_by='system'):
        if election_id == broken.id:
            raise RuntimeError('disk full')
        return publish(election_id, published_by=published_by)

    monkeypatch.setattr(services.results, 'publish', flaky_publish)

    summary = services.scheduler.tick(now)

    assert summary['failed'] == [broken.id]
    assert summary['published'] == [healthy.id]
    assert db.session.get(Election, broken.id).status == 'closed'
    assert db.session.get(Election, healthy.id).status == 'published'

    entry = (db.session.query(AuditLogEntry)
             .filter(AuditLogEntry.message == 'Failed to auto-publish election results')
             .one())
    assert entry.actor == AUTO_PUBLISH_ACTOR
    assert entry.event_metadata['electionId'] == broken.id
    assert entry.event_metadata['error'] == 'disk full'
    assert entry.event_metadata['level'] == 'error'


def test_oversized_publish_delay_fails_alone(services, make_election):
    now = utcnow()
    stuck = make_election(status='closed', name='Stuck', end=now - timedelta(hours=2),
                          result_publish_delay_minutes=10 ** 11)
    healthy = make_election(status='closed', name='Healthy', end=now - timedelta(hours=1))

    summary = services.scheduler.tick(now)

    assert summary['failed'] == [stuck.id]
    assert summary['published'] == [healthy.id]
    assert db.session.get(Election, stuck.id).status == 'closed'
    assert db.session.get(Election, healthy.id).status == 'published'


def test_start_and_stop(services):
    services.scheduler.initial_delay = 30
    services.scheduler.start()
    assert services.scheduler.worker.is_alive()

    services.scheduler.stop(timeout=5)
    assert not services.scheduler.worker.is_alive()
