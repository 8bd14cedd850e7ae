# casedesk/security.py
from functools import wraps

from flask import abort
from flask_login import current_user


def roles_required(*roles):
    """Allow the view only for authenticated users holding one of ``roles``."""
    def decorator(view):
        @wraps(view)
        def wrapped(*args, **kwargs):
            if not current_user.is_authenticated:
                abort(401)
            if roles and current_user.role not in roles:
                abort(403)
            return view(*args, **kwargs)
        return wrapped
    return decorator


ORG_ROLES = ("org_admin", "property_owner")
