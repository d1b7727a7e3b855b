# vote_server/authentication/credentials.py

import logging

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from vote_server import db
from vote_server.authentication.rbac import UserRole
from vote_server.database.models import User, utcnow
from vote_server.errors import AuthError, ConflictError, InternalError, NotFoundError, ValidationError
from vote_server.security.input_validator import InputValidator

logger = logging.getLogger(__name__)

# Voter and administrator records. Owns password / access code hashing;
# generated credentials are returned once and only their hashes are stored.

PROFILE_FIELDS = {'name': 'name', 'department': 'department', 'idNumber': 'id_number'}


class CredentialStore:
    def __init__(self, hasher, audit_logger, validator=None):
        self.hasher = hasher
        self.audit = audit_logger
        self.validator = validator or InputValidator()

    def find_by_email(self, email):
        if not isinstance(email, str) or not email.strip():
            return None
        return db.session.query(User).filter_by(email=email.strip().lower()).first()

    def get(self, user_id):
        user = db.session.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user

    def list_users(self):
        return db.session.query(User).order_by(User.created_at.asc(), User.id.asc()).all()

    def _build_user(self, voter_input, role, password=None):
        email = self.validator.normalize_email(voter_input.get('email'))
        role = UserRole(role).value
        generated = password is None
        if generated:
            password = self.hasher.generate_secure_password()
        try:
            password_hash = self.hasher.hash_password(password, enforce_strength=not generated)
        except ValueError as e:
            raise ValidationError(str(e))

        access_code = None
        access_code_hash = None
        if role == UserRole.VOTER.value:
            access_code = self.hasher.generate_access_code()
            access_code_hash = self.hasher.hash_access_code(access_code)

        is_eligible = voter_input.get('isEligible', True)
        user = User(
            email=email,
            password_hash=password_hash,
            access_code_hash=access_code_hash,
            role=role,
            is_eligible=is_eligible is not False,
            has_voted=False,
        )
        for key, attr in PROFILE_FIELDS.items():
            setattr(user, attr, self.validator.sanitize_string(voter_input.get(key), max_length=200))

        credentials = {'email': email, 'accessCode': access_code}
        if generated:
            credentials['password'] = password
        return user, credentials

    def create(self, voter_input, role=UserRole.VOTER.value, password=None, actor='admin'):
        """Create one user. Returns (user, credentials); credentials are never stored in clear."""
        if not isinstance(voter_input, dict):
            raise ValidationError("JSON object body required")
        if self.find_by_email(voter_input.get('email')) is not None:
            raise ConflictError("user already exists")
        user, credentials = self._build_user(voter_input, role, password)
        db.session.add(user)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise ConflictError("user already exists")
        except SQLAlchemyError as e:
            db.session.rollback()
            raise InternalError("failed to create user") from e

        self.audit.log_admin_action(actor, 'User created', userId=user.id, userEmail=user.email, role=user.role)
        return user, credentials

    def bulk_create(self, voter_inputs, actor='admin'):
        """Create voters row by row, collecting per-row failures instead of aborting the batch."""
        if not isinstance(voter_inputs, list) or not voter_inputs:
            raise ValidationError("voters array is required")

        results = {'created': [], 'duplicates': [], 'errors': []}
        seen = set()
        for row, voter_data in enumerate(voter_inputs, start=1):
            if not isinstance(voter_data, dict):
                results['errors'].append({'row': row, 'email': '', 'error': 'Row must be an object'})
                continue
            raw_email = voter_data.get('email')
            if not raw_email:
                results['errors'].append({'row': row, 'email': '', 'error': 'Email is required'})
                continue
            email = str(raw_email).strip().lower()
            if email in seen or self.find_by_email(email) is not None:
                results['duplicates'].append({'row': row, 'email': email})
                continue
            try:
                user, credentials = self._build_user(voter_data, UserRole.VOTER.value)
            except (ValidationError, ValueError) as e:
                message = e.message if isinstance(e, ValidationError) else str(e)
                results['errors'].append({'row': row, 'email': email, 'error': message})
                continue
            seen.add(email)
            db.session.add(user)
            credentials.update({'name': user.name, 'row': row})
            results['created'].append(credentials)

        try:
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            raise InternalError("bulk voter upload failed") from e

        self.audit.log_admin_action(actor, 'Bulk voter upload completed',
                                    totalAttempted=len(voter_inputs),
                                    created=len(results['created']),
                                    errors=len(results['errors']),
                                    duplicates=len(results['duplicates']))
        return results

    def verify(self, email, password, access_code=None, require_access_code=False):
        """Check email + password, then the access code. Raises AuthError with a reason."""
        user = self.find_by_email(email)
        if user is None:
            self.hasher.burn_verification(password)
            raise AuthError("invalid credentials", reason='invalid_credentials')
        if not self.hasher.verify_password(password, user.password_hash):
            raise AuthError("invalid credentials", reason='invalid_credentials')
        if self.hasher.needs_rehash(user.password_hash):
            user.password_hash = self.hasher.hash_password(password, enforce_strength=False)
            db.session.commit()

        if access_code not in (None, ''):
            if user.access_code_hash and not self.hasher.verify_access_code(str(access_code), user.access_code_hash):
                raise AuthError("invalid access code", reason='invalid_access_code')
        elif require_access_code and user.access_code_hash:
            raise AuthError("access code required", reason='access_code_required')
        return user

    def record_login(self, user):
        user.last_login_at = utcnow()
        db.session.commit()

    def regenerate_credentials(self, user_id, actor='admin'):
        user = self.get(user_id)
        password = self.hasher.generate_secure_password()
        access_code = self.hasher.generate_access_code()
        user.password_hash = self.hasher.hash_password(password, enforce_strength=False)
        user.access_code_hash = self.hasher.hash_access_code(access_code)
        user.updated_at = utcnow()
        db.session.commit()

        self.audit.log_admin_action(actor, 'User credentials regenerated', userId=user.id, userEmail=user.email)
        return {'email': user.email, 'password': password, 'accessCode': access_code}

    def update(self, user_id, fields, actor='admin'):
        if not isinstance(fields, dict):
            raise ValidationError("JSON object body required")
        user = self.get(user_id)
        changed = []
        for key, attr in PROFILE_FIELDS.items():
            if key in fields:
                setattr(user, attr, self.validator.sanitize_string(fields[key], max_length=200))
                changed.append(key)
        if 'isEligible' in fields:
            user.is_eligible = self.validator.parse_bool(fields['isEligible'], 'isEligible')
            changed.append('isEligible')
        user.updated_at = utcnow()
        db.session.commit()

        self.audit.log_admin_action(actor, 'User updated', userId=user.id, updatedFields=changed)
        return user

    def set_eligibility(self, user_id, is_eligible, actor='admin'):
        return self.update(user_id, {'isEligible': is_eligible}, actor=actor)

    def delete(self, user_id, actor='admin'):
        user = self.get(user_id)
        if user.has_voted:
            raise ConflictError("cannot delete a voter who has already voted")
        email = user.email
        db.session.delete(user)
        db.session.commit()

        self.audit.log_admin_action(actor, 'User deleted', userId=user_id, userEmail=email)
