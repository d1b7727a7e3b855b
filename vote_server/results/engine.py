# vote_server/results/engine.py

import json
import hashlib
import logging

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from vote_server import db
from vote_server.audit.audit_logger import AuditEventType
from vote_server.database.models import (AuditLogEntry, Candidate, PublishedResult, User, Vote,
                                         isoformat, utcnow)
from vote_server.elections.lifecycle import ElectionStatus
from vote_server.errors import ConflictError, InternalError, NotFoundError

logger = logging.getLogger(__name__)

TALLY_FIELDS = ('id', 'name', 'party', 'votes')


def _rate(part, whole):
    return round(part / whole * 100, 2) if whole > 0 else 0.0


def rank_candidates(candidates, total_votes):
    """
    Candidate dicts with percentages, most votes first. Ties keep the input
    order, which is candidate creation order.
    """
    ranked = []
    for candidate in candidates:
        data = candidate.to_dict()
        data['percentage'] = _rate(data['votes'], total_votes)
        ranked.append(data)
    # sorted() is stable
    return sorted(ranked, key=lambda c: -c['votes'])


def integrity_hash(candidates, total_votes):
    """SHA-256 over the canonical candidate tallies and the total vote count."""
    tallies = [{field: c[field] for field in TALLY_FIELDS} for c in candidates]
    payload = json.dumps(tallies, sort_keys=True, separators=(',', ':')) + str(total_votes)
    return hashlib.sha256(payload.encode()).hexdigest()


class ResultsEngine:
    def __init__(self, elections, candidates, audit_logger):
        self.elections = elections
        self.candidates = candidates
        self.audit = audit_logger

    def participation(self):
        voters = db.session.query(User).filter(User.role == 'voter')
        eligible = voters.filter(User.is_eligible.is_(True)).count()
        voted = voters.filter(User.is_eligible.is_(True), User.has_voted.is_(True)).count()
        return {
            'totalUsers': voters.count(),
            'eligibleVoters': eligible,
            'votedUsers': voted,
            'participationRate': _rate(voted, eligible),
            'abstentions': eligible - voted,
        }

    def compute_preliminary(self, election_id):
        election = self.elections.get(election_id)
        candidates = self.candidates.list_candidates()
        total_votes = sum(c.votes or 0 for c in candidates)
        ranked = rank_candidates(candidates, total_votes)
        participation = self.participation()
        return {
            'electionId': election.id,
            'electionName': election.name,
            'generatedAt': isoformat(utcnow()),
            'status': 'preliminary',
            'statistics': {
                'totalVotes': total_votes,
                'totalEligibleVoters': participation['eligibleVoters'],
                'totalVotedUsers': participation['votedUsers'],
                'participationRate': participation['participationRate'],
                'abstentions': participation['abstentions'],
            },
            'candidates': ranked,
            'metadata': {
                'generationMethod': 'automatic',
                'dataIntegrityHash': integrity_hash(ranked, total_votes),
            },
        }

    def publish(self, election_id, published_by='system'):
        """
        Freeze a final snapshot and move the election to published in one
        transaction. An active election is closed first. Publishing twice is
        refused.
        """
        election = self.elections.get(election_id)
        if election.status == ElectionStatus.ACTIVE.value:
            if not self.elections.transition(election.id, ElectionStatus.CLOSED, expected=[ElectionStatus.ACTIVE]):
                db.session.rollback()
                raise ConflictError("election status changed concurrently; retry")
            db.session.commit()
            db.session.refresh(election)
            self.audit.log_admin_action(published_by, 'Election closed', electionId=election.id,
                                        electionName=election.name, reason='published')
        if election.status == ElectionStatus.PUBLISHED.value:
            raise ConflictError("results already published for this election")
        if election.status != ElectionStatus.CLOSED.value:
            raise ConflictError(f"cannot publish an election in {election.status} status")

        snapshot = self.compute_preliminary(election.id)
        now = utcnow()
        result = PublishedResult(
            election_id=election.id,
            election_name=election.name,
            generated_at=now,
            published_at=now,
            published_by=published_by,
            status='final',
            statistics=snapshot['statistics'],
            candidates=snapshot['candidates'],
            integrity_hash=snapshot['metadata']['dataIntegrityHash'],
        )
        try:
            if not self.elections.transition(election.id, ElectionStatus.PUBLISHED,
                                             expected=[ElectionStatus.CLOSED], results_published_at=now):
                db.session.rollback()
                raise ConflictError("results already published for this election")
            db.session.add(result)
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            raise InternalError("failed to publish results") from e
        db.session.refresh(election)

        self.audit.log_admin_action(published_by, 'Election results published',
                                    electionId=election.id, electionName=election.name,
                                    totalVotes=result.statistics['totalVotes'],
                                    participationRate=result.statistics['participationRate'],
                                    resultId=result.id)
        return result

    def published(self, election_id=None):
        q = db.session.query(PublishedResult)
        if election_id is not None:
            q = q.filter_by(election_id=election_id)
        return q.order_by(PublishedResult.published_at.desc()).all()

    def latest_published(self, election_id):
        results = self.published(election_id)
        if not results:
            raise NotFoundError("No published results found for this election")
        return results[0]

    def verify_published(self, result_id):
        result = db.session.get(PublishedResult, result_id)
        if result is None:
            raise NotFoundError("Published result not found")
        recomputed = integrity_hash(result.candidates, result.statistics.get('totalVotes', 0))
        return {
            'resultId': result.id,
            'electionId': result.election_id,
            'storedHash': result.integrity_hash,
            'recomputedHash': recomputed,
            'valid': recomputed == result.integrity_hash,
        }

    def public_tally(self):
        return {
            'candidates': [c.to_dict() for c in self.candidates.list_candidates()],
            'totalVotes': db.session.query(func.count(Vote.id)).scalar() or 0,
        }

    def voting_progress(self):
        participation = self.participation()
        return {
            'eligibleVoters': participation['eligibleVoters'],
            'votedUsers': participation['votedUsers'],
            'participationRate': participation['participationRate'],
            'remaining': participation['abstentions'],
            'lastUpdated': isoformat(utcnow()),
        }

    def voting_statistics(self, now=None):
        now = now or utcnow()
        candidates = self.candidates.list_candidates()
        total_votes = sum(c.votes or 0 for c in candidates)
        participation = self.participation()

        day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        hourly = {f"{hour:02d}:00": 0 for hour in range(24)}
        for (timestamp,) in (db.session.query(AuditLogEntry.timestamp)
                             .filter(AuditLogEntry.type == AuditEventType.VOTE.value,
                                     AuditLogEntry.timestamp >= day_start)
                             .all()):
            if timestamp.date() == day_start.date():
                hourly[f"{timestamp.hour:02d}:00"] += 1

        ranked = rank_candidates(candidates, total_votes)
        return dict(participation, **{
            'totalVotes': total_votes,
            'candidates': [{k: c[k] for k in ('id', 'name', 'party', 'votes', 'percentage')} for c in ranked],
            'hourlyVotes': hourly,
            'lastUpdated': isoformat(now),
        })
