"""Middleware for buyer authentication and tenant context."""
from flask import session, g, current_app
from quoteflow.database import get_session
from quoteflow.models import AppUser, UserTenant, Tenant


def load_user_and_tenant():
    """
    Load current user and tenant into g (Flask's per-request global).

    Called before each request to establish user and tenant context.
    Sets g.user, g.tenant_id, and g.user_role if authenticated.
    The supplier portal ignores all of this: its token is its credential.
    """
    g.user = None
    g.user_id = None
    g.tenant_id = None
    g.user_role = None

    try:
        user_id = session.get('user_id')
        if not user_id:
            return

        db_session = get_session()
        user = db_session.query(AppUser).filter_by(id=user_id, active=True).first()
        if not user:
            return

        g.user = user
        g.user_id = user.id

        tenant_id = session.get('tenant_id')
        if not tenant_id:
            return

        user_tenant = db_session.query(UserTenant).filter_by(
            user_id=user.id,
            tenant_id=tenant_id,
            active=True
        ).first()
        if not user_tenant:
            # User doesn't have access to this tenant, clear it
            session.pop('tenant_id', None)
            return

        tenant = db_session.query(Tenant).filter_by(id=tenant_id).first()
        if tenant is None or tenant.is_suspended or not tenant.active:
            current_app.logger.warning(f"Blocked access to suspended tenant {tenant_id} (user {user.id})")
            return

        g.tenant_id = tenant.id
        g.user_role = user_tenant.role
    except Exception as e:
        # Avoid crashing the whole app if context loading fails
        current_app.logger.error(f"Error in load_user_and_tenant: {e}")
