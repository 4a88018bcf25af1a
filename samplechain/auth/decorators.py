from functools import wraps
from flask import jsonify
from flask_login import current_user


def roles_required(*roles):
    """Decorator to restrict a view to users holding one of ``roles``.

    Admins pass every role check. Unauthenticated callers get a 401 JSON
    response, authenticated callers without the role a 403.

    Args:
        roles: role names allowed to call the view

    Returns:
        decorator: wraps the view function
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not current_user.is_authenticated:
                return jsonify({'error': 'unauthorized', 'message': 'Authentication required.'}), 401

            if not current_user.has_role(*roles):
                return jsonify({
                    'error': 'forbidden',
                    'message': 'Insufficient role for this operation.',
                    'details': {'required_roles': list(roles), 'role': current_user.role},
                }), 403

            return f(*args, **kwargs)
        return decorated_function
    return decorator


def staff_required(f):
    """Restrict a view to lab staff, logistics and admin users."""
    return roles_required('lab_staff', 'logistics', 'admin')(f)
