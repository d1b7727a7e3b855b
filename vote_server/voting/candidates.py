# vote_server/voting/candidates.py

from urllib.parse import quote

from vote_server import db
from vote_server.database.models import Candidate, utcnow
from vote_server.errors import ConflictError, NotFoundError, ValidationError
from vote_server.security.input_validator import InputValidator

BASIC_FIELDS = ('name', 'photo', 'description', 'party')
EXTENDED_FIELDS = BASIC_FIELDS + ('position', 'trajectory', 'profile', 'projects')

_MAX_LENGTHS = {'name': 100, 'party': 100, 'photo': 500, 'position': 200}


class CandidateRegistry:
    """Admin-managed candidate list. Vote counters are only touched by the ledger and season reset."""

    def __init__(self, audit_logger, validator=None):
        self.audit = audit_logger
        self.validator = validator or InputValidator()

    def list_candidates(self):
        # creation order is the tie-break for equal vote counts
        return db.session.query(Candidate).order_by(Candidate.created_at.asc(), Candidate.id.asc()).all()

    def get(self, candidate_id):
        candidate = db.session.get(Candidate, candidate_id) if self.validator.validate_record_id(candidate_id) else None
        if candidate is None:
            raise NotFoundError("candidate not found")
        return candidate

    def _clean(self, field, value):
        return self.validator.sanitize_string(value, max_length=_MAX_LENGTHS.get(field, 5000))

    def create(self, data, extended=False, actor='admin'):
        if extended:
            required, message, fields = ['name', 'party'], "name and party are required", EXTENDED_FIELDS
        else:
            required, message, fields = ['name', 'description', 'party'], \
                "name, description, and party are required", BASIC_FIELDS
        self.validator.require_fields(data, required, message=message)

        candidate = Candidate(votes=0)
        for field in fields:
            setattr(candidate, field, self._clean(field, data.get(field)))
        if not candidate.photo:
            candidate.photo = f"https://via.placeholder.com/200x200?text={quote(candidate.name)}"
        db.session.add(candidate)
        db.session.commit()

        self.audit.log_admin_action(actor, 'Candidate created', candidateId=candidate.id,
                                    candidateName=candidate.name, party=candidate.party)
        return candidate

    def update(self, candidate_id, data, extended=False, actor='admin'):
        if not isinstance(data, dict):
            raise ValidationError("JSON object body required")
        candidate = self.get(candidate_id)
        fields = EXTENDED_FIELDS if extended else BASIC_FIELDS
        updated = [f for f in fields if data.get(f) is not None]
        for field in updated:
            value = self._clean(field, data[field])
            if field in ('name', 'party') and not value:
                db.session.rollback()
                raise ValidationError(f"{field} cannot be empty")
            setattr(candidate, field, value)
        candidate.updated_at = utcnow()
        db.session.commit()

        self.audit.log_admin_action(actor, 'Candidate updated', candidateId=candidate.id,
                                    candidateName=candidate.name, updatedFields=updated)
        return candidate

    def delete(self, candidate_id, actor='admin'):
        candidate = self.get(candidate_id)
        if (candidate.votes or 0) > 0:
            raise ConflictError("cannot delete candidate with votes")
        name = candidate.name
        # a ballot may land between the check above and the delete
        deleted = (db.session.query(Candidate)
                   .filter(Candidate.id == candidate_id, Candidate.votes == 0)
                   .delete(synchronize_session='fetch'))
        if deleted != 1:
            db.session.rollback()
            raise ConflictError("cannot delete candidate with votes")
        db.session.commit()

        self.audit.log_admin_action(actor, 'Candidate deleted', candidateId=candidate_id, candidateName=name)
