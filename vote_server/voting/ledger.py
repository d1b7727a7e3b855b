# vote_server/voting/ledger.py

import hashlib
import logging
import secrets

from sqlalchemy.exc import SQLAlchemyError

from vote_server import db
from vote_server.audit.audit_logger import AuditEventType
from vote_server.authentication.rbac import Permission
from vote_server.database.models import Candidate, User, Vote, isoformat, utcnow
from vote_server.errors import (AuthError, ConflictError, ForbiddenError, InternalError,
                                NotFoundError, ValidationError)

logger = logging.getLogger(__name__)


def hash_source_address(source_address):
    return hashlib.sha256((source_address or 'unknown').encode()).hexdigest()


class VoteLedger:
    """
    Accepts ballots. Credentials are checked first, then session and
    eligibility, and the ballot is recorded in one transaction whose first
    statement claims the voter's single vote with a conditional UPDATE, so
    two concurrent requests from one voter cannot both succeed.

    The stored Vote holds no voter field, and the VOTE audit entry names the
    voter but neither the candidate nor the vote id.
    """

    def __init__(self, credentials, sessions, elections, rbac, audit_logger):
        self.credentials = credentials
        self.sessions = sessions
        self.elections = elections
        self.rbac = rbac
        self.audit = audit_logger

    def cast_vote(self, email, password, candidate_id, access_code=None, session_token=None,
                  source_address='unknown'):
        if not email or not password or not candidate_id:
            self.audit.log_security_event(email or 'unknown', 'Vote attempt with missing data',
                                          reason='missing_fields', ip=source_address)
            raise ValidationError("email, password, and candidateId required")

        election = self.elections.get_active()
        require_code = bool(election and election.require_access_code)

        try:
            voter = self.credentials.verify(email, password, access_code, require_access_code=require_code)
        except AuthError as e:
            self.audit.log_security_event(email, 'Vote attempt with invalid credentials',
                                          reason=e.reason, ip=source_address)
            raise

        if session_token:
            validated = self.sessions.validate(session_token)
            if validated is None or validated[1].id != voter.id:
                self.audit.log_security_event(email, 'Vote attempt with invalid session',
                                              reason='invalid_session', ip=source_address)
                raise AuthError("invalid session", reason='invalid_session')

        if not self.rbac.has_permission(voter.role, Permission.VOTE):
            self.audit.log_security_event(email, 'Vote attempt by non-voter account',
                                          reason='not_a_voter', ip=source_address, role=voter.role)
            raise ForbiddenError("account is not allowed to vote")
        if not voter.is_eligible:
            self.audit.log_security_event(email, 'Vote attempt by ineligible voter',
                                          reason='not_eligible', ip=source_address)
            raise ForbiddenError("voter is not eligible")

        if voter.has_voted:
            self._double_vote(email, source_address)

        if election is None:
            self.audit.log_security_event(email, 'Vote attempt outside an open election',
                                          reason='voting_closed', ip=source_address)
            raise ConflictError("voting is not open")

        candidate = db.session.get(Candidate, candidate_id) if isinstance(candidate_id, str) else None
        if candidate is None:
            self.audit.log_security_event(email, 'Vote for non-existent candidate',
                                          reason='unknown_candidate', ip=source_address)
            raise NotFoundError("candidate not found")

        vote = self._record(voter.id, candidate.id, source_address)
        if vote is None:
            self._double_vote(email, source_address)

        self.audit.append(AuditEventType.VOTE, email, 'Vote cast successfully',
                          {'ip': source_address, 'electionId': election.id})
        logger.info("Ballot recorded for election %s", election.id)
        return {
            'success': True,
            'voteId': vote.id,
            'timestamp': isoformat(vote.timestamp),
            'message': 'Vote recorded successfully',
        }

    def _double_vote(self, email, source_address):
        self.audit.log_security_event(email, 'Attempted double vote', reason='already_voted',
                                      ip=source_address)
        raise ConflictError("user already voted")

    def _record(self, voter_id, candidate_id, source_address):
        """Claim, append and count in one transaction. Returns None if the claim was lost."""
        timestamp = utcnow()
        # the nonce is discarded so the hash cannot be recomputed from known voter ids
        nonce = secrets.token_hex(16)
        vote_hash = hashlib.sha256(
            f"{voter_id}{candidate_id}{isoformat(timestamp)}{nonce}".encode()).hexdigest()
        try:
            claimed = (db.session.query(User)
                       .filter(User.id == voter_id, User.has_voted.is_(False))
                       .update({User.has_voted: True, User.voted_at: timestamp},
                               synchronize_session=False))
            if claimed != 1:
                db.session.rollback()
                return None
            vote = Vote(candidate_id=candidate_id, timestamp=timestamp, vote_hash=vote_hash,
                        source_hash=hash_source_address(source_address))
            db.session.add(vote)
            (db.session.query(Candidate)
             .filter(Candidate.id == candidate_id)
             .update({Candidate.votes: Candidate.votes + 1}, synchronize_session=False))
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.exception("Ballot transaction failed")
            raise InternalError("failed to record vote") from e
        return vote
