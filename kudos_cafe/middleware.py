from flask import request, redirect, url_for, jsonify, abort
from flask_login import current_user, logout_user
from functools import wraps
import logging

logger = logging.getLogger(__name__)

# Reachable without a session, any method
OPEN_PATHS = frozenset({
    '/login',
    '/register',
    '/favicon.ico',
    '/api/auth/login',
    '/api/auth/register',
})

# Pages anonymous visitors may read
BROWSE_PAGES = frozenset({'/', '/menu', '/gallery', '/contact'})

PUBLIC_API_PREFIX = '/api/public/'
SAFE_METHODS = ('GET', 'HEAD', 'OPTIONS')


def _is_api(path: str) -> bool:
    return path.startswith('/api/')


def _is_open(path: str, method: str) -> bool:
    if path.startswith('/static/') or path in OPEN_PATHS:
        return True
    if path.startswith(PUBLIC_API_PREFIX):
        return True
    return method in SAFE_METHODS and path in BROWSE_PAGES


def _login_response(**extra):
    if _is_api(request.path):
        body = {'error': 'Not logged in'}
        body.update(extra)
        return jsonify(body), 401
    return redirect(url_for('auth.login'))


def setup_auth_middleware(app):

    @app.before_request
    def require_login():
        if current_user.is_authenticated and not current_user.is_active:
            # Staff deactivated this account after it signed in.
            logger.info("Ending session of deactivated user %s",
                        current_user.id)
            logout_user()

        if _is_open(request.path, request.method.upper()):
            return None
        if not current_user.is_authenticated:
            return _login_response(login_required=True)
        return None


def role_required(*allowed_roles):
    """Limit a view to users whose role name is in ``allowed_roles``."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not current_user.is_authenticated:
                return _login_response()

            role = current_user.role.value
            if role not in allowed_roles:
                logger.warning(
                    "User %s (%s) denied access to %s, needs one of %s",
                    current_user.id, role, request.path, allowed_roles)
                if _is_api(request.path):
                    return jsonify({'error': 'Insufficient permissions'}), 403
                abort(403)

            return f(*args, **kwargs)
        return decorated_function
    return decorator
