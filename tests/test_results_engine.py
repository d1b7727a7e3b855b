import pytest

from vote_server import db
from vote_server.database.models import AuditLogEntry, Election, PublishedResult
from vote_server.errors import ConflictError, NotFoundError
from vote_server.results.engine import integrity_hash, rank_candidates


@pytest.fixture
def ballots(services, election, candidates, make_voter):
    """Cast votes 2 / 1 / 0 across the three candidates from three voters; a fourth abstains."""
    choices = [candidates[0], candidates[0], candidates[1], None]
    for i, candidate in enumerate(choices):
        _, creds = make_voter(f'voter{i}@example.com')
        if candidate is not None:
            services.ledger.cast_vote(creds['email'], creds['password'], candidate.id)
    return choices


def test_preliminary_results(services, election, ballots):
    results = services.results.compute_preliminary(election.id)

    assert results['status'] == 'preliminary'
    assert results['electionId'] == election.id
    assert results['statistics'] == {
        'totalVotes': 3,
        'totalEligibleVoters': 4,
        'totalVotedUsers': 3,
        'participationRate': 75.0,
        'abstentions': 1,
    }
    assert [c['name'] for c in results['candidates']] == ['Ana Torres', 'Bruno Diaz', 'Carla Ruiz']
    assert [c['percentage'] for c in results['candidates']] == [66.67, 33.33, 0.0]
    assert sum(c['percentage'] for c in results['candidates']) == pytest.approx(100, abs=0.01)
    assert results['metadata']['dataIntegrityHash'] == integrity_hash(results['candidates'], 3)


def test_preliminary_results_without_votes(services, election, candidates):
    results = services.results.compute_preliminary(election.id)
    assert results['statistics']['totalVotes'] == 0
    assert results['statistics']['participationRate'] == 0.0
    assert all(c['percentage'] == 0.0 for c in results['candidates'])


def test_preliminary_unknown_election(services):
    with pytest.raises(NotFoundError):
        services.results.compute_preliminary('missing')


def test_ties_keep_creation_order(candidates):
    candidates[0].votes = 1
    candidates[1].votes = 4
    candidates[2].votes = 1
    ranked = rank_candidates(candidates, 6)
    assert [c['name'] for c in ranked] == ['Bruno Diaz', 'Ana Torres', 'Carla Ruiz']


def test_integrity_hash_covers_tallies_and_total():
    tallies = [{'id': 'a', 'name': 'A', 'party': 'X', 'votes': 2, 'percentage': 100.0}]
    base = integrity_hash(tallies, 2)

    assert base == integrity_hash([{'id': 'a', 'name': 'A', 'party': 'X', 'votes': 2}], 2)
    assert base != integrity_hash(tallies, 3)
    assert base != integrity_hash([dict(tallies[0], votes=3)], 2)


def test_publish_closes_and_freezes(services, election, ballots):
    result = services.results.publish(election.id, published_by='admin@example.com')

    election = db.session.get(Election, election.id)
    assert election.status == 'published'
    assert election.results_published_at == result.published_at
    assert result.status == 'final'
    assert result.published_by == 'admin@example.com'
    assert result.statistics['totalVotes'] == 3
    assert [c['votes'] for c in result.candidates] == [2, 1, 0]

    messages = [e.message for e in db.session.query(AuditLogEntry).filter_by(type='ADMIN_ACTION')]
    assert messages[-2:] == ['Election closed', 'Election results published']

    assert services.results.verify_published(result.id)['valid'] is True
    assert services.results.latest_published(election.id).id == result.id


def test_publish_twice_is_refused(services, election, ballots):
    services.results.publish(election.id)
    with pytest.raises(ConflictError):
        services.results.publish(election.id)
    assert db.session.query(PublishedResult).count() == 1


def test_publish_draft_is_refused(services, make_election):
    draft = make_election(status='draft')
    with pytest.raises(ConflictError):
        services.results.publish(draft.id)
    assert db.session.query(PublishedResult).count() == 0


def test_verify_detects_tampering(services, election, ballots):
    result = services.results.publish(election.id)
    candidates = [dict(c) for c in result.candidates]
    candidates[1]['votes'] = 5
    result.candidates = candidates
    db.session.commit()

    verdict = services.results.verify_published(result.id)
    assert verdict['valid'] is False
    assert verdict['storedHash'] != verdict['recomputedHash']

    with pytest.raises(NotFoundError):
        services.results.verify_published('missing')


def test_latest_published_missing(services, election):
    with pytest.raises(NotFoundError):
        services.results.latest_published(election.id)


def test_public_tally_and_progress(services, election, ballots):
    tally = services.results.public_tally()
    assert tally['totalVotes'] == 3
    assert [c['votes'] for c in tally['candidates']] == [2, 1, 0]

    progress = services.results.voting_progress()
    assert progress['eligibleVoters'] == 4
    assert progress['votedUsers'] == 3
    assert progress['remaining'] == 1


def test_voting_statistics(services, election, ballots):
    stats = services.results.voting_statistics()
    assert stats['totalVotes'] == 3
    assert stats['participationRate'] == 75.0
    assert len(stats['hourlyVotes']) == 24
    assert sum(stats['hourlyVotes'].values()) == 3
    assert stats['candidates'][0]['percentage'] == 66.67
