# vote_server/authentication/sessions.py

import logging
import secrets
from enum import Enum

from vote_server import db
from vote_server.database.models import User, UserSession, utcnow
from vote_server.security.token_manager import TokenManager

logger = logging.getLogger(__name__)


class SessionPolicy(Enum):
    """How many sessions a user may hold at once."""
    SINGLE = "single"      # issuing a session deactivates every earlier one for the user
    MULTIPLE = "multiple"  # sessions coexist until logout or expiry


class SessionManager:
    def __init__(self, token_manager=None, ttl=None, policy=SessionPolicy.SINGLE, enforce_expiry=True):
        self.tokens = token_manager or TokenManager()
        self.ttl = ttl
        self.policy = SessionPolicy(policy)
        self.enforce_expiry = enforce_expiry

    @staticmethod
    def lock_user(user_id):
        """Row-lock query on the user (SELECT ... FOR UPDATE where the database supports it)."""
        return db.session.query(User.id).filter(User.id == user_id).with_for_update()

    def issue(self, user, source_address):
        """Create a session for `user`. Returns (session, bearer_token)."""
        now = utcnow()
        if self.policy is SessionPolicy.SINGLE:
            # serialise concurrent logins for the same user on the user row
            self.lock_user(user.id).one()
            (db.session.query(UserSession)
             .filter(UserSession.user_id == user.id, UserSession.active.is_(True))
             .update({UserSession.active: False, UserSession.ended_at: now}, synchronize_session=False))

        session = UserSession(
            user_id=user.id,
            token=secrets.token_hex(32),
            created_at=now,
            last_access_at=now,
            expires_at=now + self.ttl if self.ttl else None,
            source_address=(source_address or 'unknown')[:64],
            active=True,
        )
        db.session.add(session)
        db.session.commit()

        # the token is only signed with an exp claim when expiry is enforced
        bearer = self.tokens.generate_token(user.id, session.token, user.role,
                                            expires_in=self.ttl if self.enforce_expiry else None)
        return session, bearer

    def validate(self, token):
        """Return (session, user) for a live token, else None. Touches lastAccessAt."""
        decoded = self.tokens.decode(token, allow_expired=not self.enforce_expiry)
        if decoded is None:
            return None
        user_id, session_id = decoded

        session = (db.session.query(UserSession)
                   .filter_by(token=session_id, active=True)
                   .first())
        if session is None or session.user_id != user_id:
            return None
        now = utcnow()
        if self.enforce_expiry and session.expires_at is not None and now > session.expires_at:
            logger.info("Session %s expired", session.id)
            return None

        session.last_access_at = now
        db.session.commit()
        user = db.session.get(User, session.user_id)
        if user is None:
            return None
        return session, user

    def invalidate(self, token):
        """Deactivate the session behind `token`; returns it, or None if unknown."""
        decoded = self.tokens.decode(token, allow_expired=True)
        if decoded is None:
            return None
        _, session_id = decoded
        session = db.session.query(UserSession).filter_by(token=session_id).first()
        if session is None:
            return None
        if session.active:
            session.active = False
            session.ended_at = utcnow()
            db.session.commit()
        return session
