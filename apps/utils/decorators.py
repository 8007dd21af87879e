from functools import wraps

from flask import session, jsonify


def login_required(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if 'id' not in session:
            return jsonify({'success': False, 'message': 'Not authenticated'}), 401
        return f(*args, **kwargs)
    return decorated_function


def role_required(*roles):
    """Allow only logged in users whose session role is one of ``roles``."""
    def decorator(f):
        @wraps(f)
        @login_required
        def decorated_function(*args, **kwargs):
            if session.get('role') not in roles:
                return jsonify({'success': False, 'message': 'You do not have permission to do this.'}), 403
            return f(*args, **kwargs)
        return decorated_function
    return decorator
