"""Middleware for identity and tenant context."""
from flask import g, request, current_app

USER_HEADER = 'X-User-Id'
TENANT_HEADER = 'X-Tenant-Id'
ROLE_HEADER = 'X-Platform-Role'
ORG_ROLE_HEADER = 'X-Org-Role'

SUPER_ADMIN = 'super_admin'
ORG_ADMIN_ROLES = ('org:admin', 'admin', 'owner')


def load_identity():
    """
    Load the caller's identity into g (Flask's per-request global).

    The identity provider sits in front of this service; the gateway forwards
    the verified user id, active organisation id and platform role as headers.
    Sets g.user_id, g.tenant_id, g.platform_role and g.org_role (None when absent).
    """
    g.user_id = None
    g.tenant_id = None
    g.platform_role = None
    g.org_role = None

    user_id = (request.headers.get(USER_HEADER) or '').strip()
    if not user_id:
        return

    g.user_id = user_id
    g.tenant_id = (request.headers.get(TENANT_HEADER) or '').strip() or None
    g.platform_role = (request.headers.get(ROLE_HEADER) or '').strip().lower() or None
    g.org_role = (request.headers.get(ORG_ROLE_HEADER) or '').strip().lower() or None

    current_app.logger.debug(
        f"Identity: user={g.user_id} tenant={g.tenant_id} role={g.platform_role}"
    )


def is_super_admin():
    return g.get('platform_role') == SUPER_ADMIN


def is_org_admin():
    """Admin of the active organisation (super admins always qualify)."""
    return is_super_admin() or g.get('org_role') in ORG_ADMIN_ROLES
