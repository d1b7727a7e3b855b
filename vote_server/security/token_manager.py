# vote_server/security/token_manager.py
import logging
from datetime import timedelta

from flask_jwt_extended import create_access_token, decode_token
from flask_jwt_extended.exceptions import JWTExtendedException
from jwt.exceptions import PyJWTError

logger = logging.getLogger(__name__)


# Signed bearer tokens via Flask-JWT-Extended. The token wraps a random
# session id; the session row stays the source of truth for revocation.
class TokenManager:
    SESSION_CLAIM = "sid"

    def generate_token(self, user_id: str, session_id: str, role: str, expires_in: timedelta = None) -> str:
        # expires_in=None issues a token without an exp claim
        return create_access_token(
            identity=str(user_id),
            expires_delta=expires_in if expires_in is not None else False,
            additional_claims={self.SESSION_CLAIM: session_id, "role": role},
        )

    def decode(self, token: str, allow_expired: bool = False):
        """Return (user_id, session_id) if the token verifies, else None."""
        if not isinstance(token, str) or not token:
            return None
        try:
            decoded = decode_token(token, allow_expired=allow_expired)
        except (PyJWTError, JWTExtendedException) as e:
            logger.warning("Token validation failed: %s", e)
            return None
        session_id = decoded.get(self.SESSION_CLAIM)
        if not session_id:
            return None
        return decoded.get("sub"), session_id
