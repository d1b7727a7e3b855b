# vote_server/elections/lifecycle.py

import logging
from datetime import timedelta
from enum import Enum

from sqlalchemy.exc import SQLAlchemyError

from vote_server import db
from vote_server.database.models import Candidate, Election, PublishedResult, User, Vote, utcnow
from vote_server.errors import ConflictError, InternalError, NotFoundError, ValidationError
from vote_server.security.input_validator import InputValidator

logger = logging.getLogger(__name__)


class ElectionStatus(Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    CLOSED = "closed"
    PUBLISHED = "published"


# Forward-only state machine
TRANSITIONS = {
    ElectionStatus.DRAFT: {ElectionStatus.ACTIVE},
    ElectionStatus.ACTIVE: {ElectionStatus.CLOSED},
    ElectionStatus.CLOSED: {ElectionStatus.PUBLISHED},
    ElectionStatus.PUBLISHED: set(),
}

DELETABLE = {ElectionStatus.CLOSED, ElectionStatus.PUBLISHED}

MAX_PUBLISH_DELAY_MINUTES = 60 * 24 * 30

# request key -> (column, default)
SETTINGS = {
    'requireAccessCode': ('require_access_code', False),
    'allowPublicResults': ('allow_public_results', True),
    'autoPublishResults': ('auto_publish_results', True),
    'resultPublishDelayMinutes': ('result_publish_delay_minutes', 0),
}


class ElectionLifecycleManager:
    def __init__(self, audit_logger, validator=None):
        self.audit = audit_logger
        self.validator = validator or InputValidator()

    def list_elections(self):
        return db.session.query(Election).order_by(Election.created_at.asc(), Election.id.asc()).all()

    def get(self, election_id):
        election = db.session.get(Election, election_id)
        if election is None:
            raise NotFoundError("Election not found")
        return election

    @staticmethod
    def is_active(election, now=None):
        now = now or utcnow()
        return (election.status == ElectionStatus.ACTIVE.value
                and election.start_date <= now <= election.end_date)

    def get_active(self, now=None):
        now = now or utcnow()
        candidates = (db.session.query(Election)
                      .filter(Election.status == ElectionStatus.ACTIVE.value)
                      .order_by(Election.start_date.asc())
                      .all())
        for election in candidates:
            if self.is_active(election, now):
                return election
        return None

    def current(self):
        """Most recently created non-draft election, used for public result visibility."""
        return (db.session.query(Election)
                .filter(Election.status != ElectionStatus.DRAFT.value)
                .order_by(Election.created_at.desc())
                .first())

    def _apply_settings(self, election, settings):
        if settings is None:
            return
        if not isinstance(settings, dict):
            raise ValidationError("settings must be an object")
        for key, (column, _) in SETTINGS.items():
            if key not in settings:
                continue
            if key == 'resultPublishDelayMinutes':
                value = self.validator.parse_int(settings[key], key, default=0, minimum=0)
                if value > MAX_PUBLISH_DELAY_MINUTES:
                    raise ValidationError(f"{key} must be <= {MAX_PUBLISH_DELAY_MINUTES}")
            else:
                value = self.validator.parse_bool(settings[key], key)
            setattr(election, column, value)

    def _apply_dates(self, election, start, end):
        if start is not None:
            election.start_date = self.validator.parse_datetime(start, 'startDate')
        if end is not None:
            election.end_date = self.validator.parse_datetime(end, 'endDate')
        if election.end_date <= election.start_date:
            raise ValidationError("endDate must be after startDate")

    def reset_season(self):
        """Zero candidate counters, drop every ballot and clear voters' hasVoted. Caller commits."""
        candidates_reset = db.session.query(Candidate).update({Candidate.votes: 0}, synchronize_session=False)
        votes_cleared = db.session.query(Vote).delete(synchronize_session=False)
        voters_reset = (db.session.query(User)
                        .update({User.has_voted: False, User.voted_at: None}, synchronize_session=False))
        return {'candidatesReset': candidates_reset, 'votesCleared': votes_cleared, 'votersReset': voters_reset}

    def create(self, data, actor='admin', confirm_reset=False):
        """
        Create a new election. This starts a new season: every ballot is
        discarded, candidate counters are zeroed and voters may vote again.
        The caller must pass confirm_reset=True.
        """
        self.validator.require_fields(data, ['name', 'startDate', 'endDate'],
                                      message='name, startDate, and endDate are required')
        if confirm_reset is not True:
            raise ValidationError(
                "creating an election resets all votes and voter status; resend with confirmReset=true")
        pending = (db.session.query(Election)
                   .filter(Election.status.in_([ElectionStatus.ACTIVE.value, ElectionStatus.CLOSED.value]))
                   .first())
        if pending is not None:
            # the reset would wipe the ballots a closed election is still waiting to publish
            raise ConflictError(f"election {pending.name!r} is {pending.status}; "
                                "close and publish it before creating a new one")

        election = Election(
            name=self.validator.sanitize_string(data.get('name'), max_length=200),
            description=self.validator.sanitize_string(data.get('description'), max_length=2000),
            status=ElectionStatus.DRAFT.value,
            created_by=actor,
        )
        for key, (column, default) in SETTINGS.items():
            setattr(election, column, default)
        self._apply_dates(election, data.get('startDate'), data.get('endDate'))
        self._apply_settings(election, data.get('settings'))
        if data.get('activate') is True:
            election.status = ElectionStatus.ACTIVE.value

        try:
            reset = self.reset_season()
            db.session.add(election)
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            raise InternalError("failed to create election") from e

        self.audit.log_admin_action(actor, 'Electoral system reset for new season', **reset)
        self.audit.log_admin_action(actor, 'New election created',
                                    electionId=election.id, electionName=election.name,
                                    status=election.status)
        return election

    def update(self, election_id, data, actor='admin'):
        if not isinstance(data, dict):
            raise ValidationError("JSON object body required")
        election = self.get(election_id)
        if election.status in (ElectionStatus.CLOSED.value, ElectionStatus.PUBLISHED.value):
            raise ConflictError("closed or published elections cannot be edited")
        try:
            if 'name' in data:
                if not data['name']:
                    raise ValidationError("name cannot be empty")
                election.name = self.validator.sanitize_string(data['name'], max_length=200)
            if 'description' in data:
                election.description = self.validator.sanitize_string(data['description'], max_length=2000)
            self._apply_dates(election, data.get('startDate'), data.get('endDate'))
            self._apply_settings(election, data.get('settings'))
        except ValidationError:
            db.session.rollback()
            raise
        election.updated_at = utcnow()
        db.session.commit()

        self.audit.log_admin_action(actor, 'Election updated', electionId=election.id,
                                    updatedFields=sorted(k for k in data if k in
                                                         ('name', 'description', 'startDate', 'endDate', 'settings')))
        return election

    def transition(self, election_id, target, expected=None, **values):
        """
        Compare-and-set status change. Stages the UPDATE without committing
        and returns True only if this call moved the election. `expected`
        defaults to every state allowed to reach `target`.
        """
        target = ElectionStatus(target)
        if expected is None:
            expected = [s for s, allowed in TRANSITIONS.items() if target in allowed]
        expected = [ElectionStatus(s).value for s in expected]
        values.update({Election.status: target.value, Election.updated_at: utcnow()})
        moved = (db.session.query(Election)
                 .filter(Election.id == election_id, Election.status.in_(expected))
                 .update(values, synchronize_session=False))
        return moved == 1

    def change_status(self, election_id, status, actor='admin'):
        """Admin status change along draft -> active -> closed. Publishing goes through the results engine."""
        try:
            target = ElectionStatus(status)
        except ValueError:
            raise ValidationError("Invalid status")
        election = self.get(election_id)
        current = ElectionStatus(election.status)
        if target is current:
            return election
        if target is ElectionStatus.PUBLISHED:
            raise ValidationError("use the publish endpoint to publish results")
        if target not in TRANSITIONS[current]:
            raise ConflictError(f"cannot move election from {current.value} to {target.value}")
        if not self.transition(election.id, target, expected=[current]):
            db.session.rollback()
            raise ConflictError("election status changed concurrently; retry")
        db.session.commit()
        db.session.refresh(election)

        self.audit.log_admin_action(actor, 'Election status updated', electionId=election.id,
                                    electionName=election.name, previousStatus=current.value,
                                    newStatus=target.value)
        return election

    def close_if_expired(self, election, now=None, actor='scheduler'):
        """active -> closed once `now` is past endDate. Returns True if this call closed it."""
        now = now or utcnow()
        if election.status != ElectionStatus.ACTIVE.value or now <= election.end_date:
            return False
        if not self.transition(election.id, ElectionStatus.CLOSED, expected=[ElectionStatus.ACTIVE]):
            db.session.rollback()
            return False
        db.session.commit()
        db.session.refresh(election)
        self.audit.log_admin_action(actor, 'Election closed', electionId=election.id,
                                    electionName=election.name, reason='end_date_passed')
        return True

    @staticmethod
    def publish_due(election, now=None):
        now = now or utcnow()
        delay = timedelta(minutes=election.result_publish_delay_minutes or 0)
        return (election.status == ElectionStatus.CLOSED.value
                and election.auto_publish_results
                and now > election.end_date + delay)

    def delete(self, election_id, actor='admin'):
        election = self.get(election_id)
        if ElectionStatus(election.status) not in DELETABLE:
            raise ConflictError("Only closed or published elections can be deleted")
        name, status = election.name, election.status
        removed = (db.session.query(PublishedResult)
                   .filter_by(election_id=election.id)
                   .delete(synchronize_session=False))
        db.session.delete(election)
        db.session.commit()

        self.audit.log_admin_action(actor, 'Election deleted', electionId=election_id,
                                    electionName=name, electionStatus=status, resultsRemoved=removed)

    def bootstrap_default(self, now=None):
        """Create an active seven-day election when none exists."""
        if db.session.query(Election).first() is not None:
            return None
        now = now or utcnow()
        election = Election(
            name='General Election',
            description='General election for public office',
            start_date=now,
            end_date=now + timedelta(days=7),
            status=ElectionStatus.ACTIVE.value,
            created_by='system',
        )
        for key, (column, default) in SETTINGS.items():
            setattr(election, column, default)
        db.session.add(election)
        db.session.commit()
        logger.info("Created default election %s", election.id)
        return election
