# Overview: Request and role decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .models.auth import ROLE_ADMIN, ROLE_CUSTOMER, ROLE_STAFF
from .services import session_service


def _is_authenticated() -> bool:
    return hasattr(g, 'current_user')


def require_auth(f):
    """
    Require authentication and establish the request principal.

    Sets the following Flask g attributes:
    - g.current_user: The authenticated User object
    - g.session_context: The full SessionContext object

    SECURITY: Returns 401 if:
    - No Authorization header
    - Invalid, expired or revoked token
    - User account deactivated
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authentication required"}), 401

        token = auth_header.split(" ", 1)[1]
        context = session_service.validate_session(token)

        if not context:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_user = context.user
        g.session_context = context

        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles: str):
    """Require the authenticated user to hold one of the given roles."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            if g.current_user.role not in roles:
                return jsonify({
                    "error": "Permission denied",
                    "required_roles": list(roles),
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator


require_staff = require_role(ROLE_ADMIN, ROLE_STAFF)
require_admin = require_role(ROLE_ADMIN)


def is_customer_principal() -> bool:
    return _is_authenticated() and g.current_user.role == ROLE_CUSTOMER


def customer_scope_denied(customer_id: int | None):
    """
    Customer principals may only touch their own account.

    Returns a 403 response tuple when the current principal is a customer
    bound to a different account, otherwise None. Admin and staff are never
    restricted here.
    """
    if not is_customer_principal():
        return None
    if customer_id is None or g.current_user.customer_id != customer_id:
        return jsonify({"error": "Permission denied"}), 403
    return None
