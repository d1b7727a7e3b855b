# vote_server/database/models.py

import uuid
from datetime import datetime, timezone

from vote_server import db

# Database schema for voters, candidates, anonymous ballots, elections,
# sessions, the audit chain and published result snapshots.


def utcnow():
    """Naive UTC now; every timestamp in the store is naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def isoformat(value):
    if value is None:
        return None
    return value.isoformat(timespec='milliseconds') + 'Z'


def _new_id():
    return uuid.uuid4().hex


class User(db.Model):
    __tablename__ = 'users'
    id = db.Column(db.String(32), primary_key=True, default=_new_id)
    email = db.Column(db.String(254), unique=True, nullable=False, index=True)  # always lower-cased
    password_hash = db.Column(db.String(200), nullable=False)  # Argon2id, salt embedded
    access_code_hash = db.Column(db.String(200), nullable=True)
    role = db.Column(db.String(20), nullable=False, default='voter')
    is_eligible = db.Column(db.Boolean, nullable=False, default=True)
    has_voted = db.Column(db.Boolean, nullable=False, default=False)
    voted_at = db.Column(db.DateTime, nullable=True)
    name = db.Column(db.String(200), nullable=False, default='')
    department = db.Column(db.String(200), nullable=False, default='')
    id_number = db.Column(db.String(64), nullable=False, default='')
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=True)
    last_login_at = db.Column(db.DateTime, nullable=True)

    sessions = db.relationship('UserSession', backref='user', lazy=True,
                               cascade='all, delete-orphan')

    def to_dict(self, detailed=False):
        data = {
            'id': self.id,
            'email': self.email,
            'role': self.role,
            'hasVoted': bool(self.has_voted),
            'votedAt': isoformat(self.voted_at),
            'isEligible': bool(self.is_eligible),
            'hasAccessCode': self.access_code_hash is not None,
            'createdAt': isoformat(self.created_at),
            'lastLoginAt': isoformat(self.last_login_at),
        }
        if detailed:
            data.update({
                'name': self.name,
                'department': self.department,
                'idNumber': self.id_number,
                'updatedAt': isoformat(self.updated_at),
            })
        return data

    def __repr__(self):
        return f'<User {self.id} {self.role}>'


class Candidate(db.Model):
    __tablename__ = 'candidates'
    id = db.Column(db.String(32), primary_key=True, default=_new_id)
    name = db.Column(db.String(100), nullable=False)
    party = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, nullable=False, default='')
    photo = db.Column(db.String(500), nullable=True)
    position = db.Column(db.String(200), nullable=False, default='')
    trajectory = db.Column(db.Text, nullable=False, default='')
    profile = db.Column(db.Text, nullable=False, default='')
    projects = db.Column(db.Text, nullable=False, default='')
    votes = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=True)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'party': self.party,
            'description': self.description,
            'photo': self.photo,
            'position': self.position,
            'trajectory': self.trajectory,
            'profile': self.profile,
            'projects': self.projects,
            'votes': self.votes or 0,
            'createdAt': isoformat(self.created_at),
            'updatedAt': isoformat(self.updated_at),
        }


class Vote(db.Model):
    """Anonymous ballot. Carries no reference to the voter who cast it."""
    __tablename__ = 'votes'
    id = db.Column(db.String(32), primary_key=True, default=_new_id)
    candidate_id = db.Column(db.String(32), db.ForeignKey('candidates.id'), nullable=False, index=True)
    timestamp = db.Column(db.DateTime, default=utcnow, nullable=False)
    vote_hash = db.Column(db.String(64), nullable=False)
    source_hash = db.Column(db.String(64), nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'candidateId': self.candidate_id,
            'timestamp': isoformat(self.timestamp),
            'voteHash': self.vote_hash,
            'ip': self.source_hash,
        }

    def __repr__(self):
        return f'<Vote {self.id}>'


class Election(db.Model):
    __tablename__ = 'elections'
    id = db.Column(db.String(32), primary_key=True, default=_new_id)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=False, default='')
    start_date = db.Column(db.DateTime, nullable=False)
    end_date = db.Column(db.DateTime, nullable=False)
    status = db.Column(db.String(20), nullable=False, default='draft', index=True)
    require_access_code = db.Column(db.Boolean, nullable=False, default=False)
    allow_public_results = db.Column(db.Boolean, nullable=False, default=True)
    auto_publish_results = db.Column(db.Boolean, nullable=False, default=True)
    result_publish_delay_minutes = db.Column(db.Integer, nullable=False, default=0)
    results_published_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    created_by = db.Column(db.String(254), nullable=False, default='system')
    updated_at = db.Column(db.DateTime, nullable=True)

    @property
    def settings(self):
        return {
            'requireAccessCode': bool(self.require_access_code),
            'allowPublicResults': bool(self.allow_public_results),
            'autoPublishResults': bool(self.auto_publish_results),
            'resultPublishDelayMinutes': self.result_publish_delay_minutes or 0,
        }

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'startDate': isoformat(self.start_date),
            'endDate': isoformat(self.end_date),
            'status': self.status,
            'settings': self.settings,
            'resultsPublishedAt': isoformat(self.results_published_at),
            'createdAt': isoformat(self.created_at),
            'createdBy': self.created_by,
            'updatedAt': isoformat(self.updated_at),
        }


class UserSession(db.Model):
    __tablename__ = 'sessions'
    id = db.Column(db.String(32), primary_key=True, default=_new_id)
    user_id = db.Column(db.String(32), db.ForeignKey('users.id'), nullable=False, index=True)
    token = db.Column(db.String(64), unique=True, nullable=False)  # random session id carried in the bearer JWT
    created_at = db.Column(db.DateTime, default=utcnow)
    last_access_at = db.Column(db.DateTime, default=utcnow)
    expires_at = db.Column(db.DateTime, nullable=True)
    source_address = db.Column(db.String(64), nullable=True)
    active = db.Column(db.Boolean, nullable=False, default=True)
    ended_at = db.Column(db.DateTime, nullable=True)

    def __repr__(self):
        return f'<UserSession {self.id} user={self.user_id} active={self.active}>'


class AuditLogEntry(db.Model):
    __tablename__ = 'audit_logs'
    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    timestamp = db.Column(db.DateTime, default=utcnow, nullable=False, index=True)
    type = db.Column(db.String(20), nullable=False, index=True)
    actor = db.Column(db.String(254), nullable=False)
    message = db.Column(db.String(500), nullable=False)
    # "metadata" is reserved on declarative models
    event_metadata = db.Column('metadata', db.JSON, nullable=False, default=dict)
    ip = db.Column(db.String(64), nullable=False, default='unknown')
    previous_hash = db.Column(db.String(64), nullable=True)
    hash = db.Column(db.String(64), nullable=False)
    signature = db.Column(db.String(128), nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'timestamp': isoformat(self.timestamp),
            'type': self.type,
            'actor': self.actor,
            'message': self.message,
            'metadata': self.event_metadata or {},
            'ip': self.ip,
            'previousHash': self.previous_hash,
            'hash': self.hash,
        }


class PublishedResult(db.Model):
    __tablename__ = 'published_results'
    id = db.Column(db.String(32), primary_key=True, default=_new_id)
    election_id = db.Column(db.String(32), nullable=False, index=True)
    election_name = db.Column(db.String(200), nullable=False)
    generated_at = db.Column(db.DateTime, nullable=False)
    published_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    published_by = db.Column(db.String(254), nullable=False)
    status = db.Column(db.String(20), nullable=False, default='final')
    statistics = db.Column(db.JSON, nullable=False)
    candidates = db.Column(db.JSON, nullable=False)
    integrity_hash = db.Column(db.String(64), nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'electionId': self.election_id,
            'electionName': self.election_name,
            'generatedAt': isoformat(self.generated_at),
            'publishedAt': isoformat(self.published_at),
            'publishedBy': self.published_by,
            'status': self.status,
            'statistics': self.statistics,
            'candidates': self.candidates,
            'integrityHash': self.integrity_hash,
        }
