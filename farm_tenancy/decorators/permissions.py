"""
Permission decorators for identity and platform-role checks.
Use after load_identity() has populated g.
"""

from functools import wraps
from flask import g

from farm_tenancy.exceptions import UnauthorizedError
from farm_tenancy.middleware import is_org_admin, is_super_admin


def require_identity(f):
    """
    Decorator: Require an authenticated caller (g.user_id).

    Usage:
        @require_identity
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not g.get('user_id'):
            raise UnauthorizedError('Authentication required')
        return f(*args, **kwargs)
    return decorated_function


def require_tenant(f):
    """
    Decorator: Require an active tenant (g.tenant_id).

    Implies require_identity.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not g.get('user_id'):
            raise UnauthorizedError('Authentication required')
        if not g.get('tenant_id'):
            raise UnauthorizedError('Select a farm first')
        return f(*args, **kwargs)
    return decorated_function


def require_super_admin(f):
    """
    Decorator: Restrict to platform super admins.

    Usage:
        @require_super_admin
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not g.get('user_id'):
            raise UnauthorizedError('Authentication required')
        if not is_super_admin():
            raise UnauthorizedError('Super admin access required')
        return f(*args, **kwargs)
    return decorated_function


def require_org_admin(f):
    """
    Decorator: Require an active tenant and the organisation admin role.

    Platform super admins pass as well.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not g.get('user_id'):
            raise UnauthorizedError('Authentication required')
        if not g.get('tenant_id'):
            raise UnauthorizedError('Select a farm first')
        if not is_org_admin():
            raise UnauthorizedError('Farm admin access required')
        return f(*args, **kwargs)
    return decorated_function
