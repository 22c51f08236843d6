# Overview: Request authentication and role decorators for API routes.

from functools import wraps
from flask import request, g

from .errors import AuthenticationError, ForbiddenError, error_response
from .services import session_service


def _bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1]


def _is_authenticated() -> bool:
    return getattr(g, "current_user", None) is not None


def require_auth(f):
    """
    Require a valid session token.

    Sets g.current_user to the authenticated User.

    Returns 401 if:
    - No Authorization header
    - Invalid, expired or revoked token
    - User account deactivated
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = _bearer_token()
        if not token:
            return error_response(AuthenticationError("Authentication required"))

        user = session_service.validate_session(token)
        if not user:
            return error_response(AuthenticationError("Invalid or expired token"))

        g.current_user = user
        return f(*args, **kwargs)

    return decorated_function


def optional_auth(f):
    """Resolve g.current_user when a valid token is sent; never rejects."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = _bearer_token()
        g.current_user = session_service.validate_session(token) if token else None
        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles):
    """
    Require the authenticated user to hold one of the given roles.

    Must be stacked below @require_auth.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return error_response(AuthenticationError("Authentication required"))

            if g.current_user.role not in roles:
                return error_response(ForbiddenError(
                    "Permission denied",
                    details={"required_roles": list(roles)},
                ))

            return f(*args, **kwargs)

        return decorated_function
    return decorator
