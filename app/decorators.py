"""
Custom route decorators for access control.

- admin_required: ensures user is logged in AND has the admin role.
- self_or_admin_required: ensures user is logged in AND is either the user
  named by the `user_id` URL parameter or an admin.
"""

from functools import wraps

from flask import abort
from flask_login import current_user, login_required


def admin_required(f):
    """Require login + admin role."""

    @wraps(f)
    @login_required
    def decorated(*args, **kwargs):
        if not current_user.is_admin:
            abort(403)
        return f(*args, **kwargs)

    return decorated


def self_or_admin_required(f):
    """Require login; non-admins may only act on their own user_id."""

    @wraps(f)
    @login_required
    def decorated(*args, **kwargs):
        user_id = kwargs.get("user_id")
        if user_id != current_user.id and not current_user.is_admin:
            abort(403)
        return f(*args, **kwargs)

    return decorated
