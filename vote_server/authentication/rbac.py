# vote_server/authentication/rbac.py

from enum import Enum
from functools import wraps

from flask import g, request

from vote_server.errors import AuthError, ForbiddenError

# Role-Based Access Control for the admin surface. Every admin route is
# gated on a session token whose user role grants the route's permission.


class UserRole(Enum):
    VOTER = "voter"
    ADMIN = "admin"


class Permission(Enum):
    VOTE = "vote"
    VIEW_OWN_STATUS = "view_own_status"
    MANAGE_VOTERS = "manage_voters"
    MANAGE_CANDIDATES = "manage_candidates"
    MANAGE_ELECTIONS = "manage_elections"
    PUBLISH_RESULTS = "publish_results"
    VIEW_AUDIT_LOGS = "view_audit_logs"
    VIEW_STATISTICS = "view_statistics"


# Role -> Permissions mapping
ROLE_PERMISSIONS = {
    UserRole.VOTER: [
        Permission.VOTE,
        Permission.VIEW_OWN_STATUS,
    ],
    UserRole.ADMIN: [
        Permission.VIEW_OWN_STATUS,
        Permission.MANAGE_VOTERS,
        Permission.MANAGE_CANDIDATES,
        Permission.MANAGE_ELECTIONS,
        Permission.PUBLISH_RESULTS,
        Permission.VIEW_AUDIT_LOGS,
        Permission.VIEW_STATISTICS,
    ],
}


class RBACService:
    def has_permission(self, user_role, permission):
        try:
            if isinstance(user_role, str):
                user_role = UserRole(user_role)
            if isinstance(permission, str):
                permission = Permission(permission)
        except ValueError:
            return False
        return permission in ROLE_PERMISSIONS.get(user_role, [])

    def get_permissions(self, user_role):
        if isinstance(user_role, str):
            user_role = UserRole(user_role)
        return ROLE_PERMISSIONS.get(user_role, [])


def bearer_token():
    """Session token from `Authorization: Bearer ...` or the X-Session-Token header."""
    header = request.headers.get('Authorization', '')
    if header.lower().startswith('bearer '):
        return header[7:].strip() or None
    return request.headers.get('X-Session-Token') or None


def require_permission(permission):
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            from vote_server.services import get_services

            services = get_services()
            source = request.remote_addr or 'unknown'
            token = bearer_token()
            validated = services.sessions.validate(token) if token else None
            if validated is None:
                services.audit.log_security_event('unknown', 'Unauthenticated admin request',
                                                  reason='missing_or_invalid_session',
                                                  ip=source, path=request.path)
                raise AuthError("valid session token required", reason='invalid_session')
            session, user = validated
            if not services.rbac.has_permission(user.role, permission):
                services.audit.log_security_event(user.email, 'Forbidden admin request',
                                                  reason='insufficient_role', ip=source,
                                                  path=request.path, role=user.role)
                raise ForbiddenError("insufficient permissions")
            g.current_user = user
            g.current_session = session
            return func(*args, **kwargs)
        return wrapper
    return decorator
