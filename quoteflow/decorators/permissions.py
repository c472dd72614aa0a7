"""
Permission decorators for role-based access control.
Buyer routes need a logged-in user, a selected tenant and a role granting the permission.
"""

from functools import wraps
from flask import g, jsonify


# Permission map
PERMISSION_MAP = {
    'OWNER': 'all',  # Owner has all permissions
    'ADMIN': [
        'view_quotes', 'manage_quotes', 'close_quotes', 'select_winners',
        'view_purchase_orders', 'manage_purchase_orders',
        'view_price_history',
    ],
    'BUYER': [
        'view_quotes', 'manage_quotes', 'select_winners',
        'view_purchase_orders', 'manage_purchase_orders',
        'view_price_history',
    ],
    'VIEWER': [
        'view_quotes',
        'view_purchase_orders',
        'view_price_history',
    ],
}


def has_permission(role, permission_name):
    """True if the role grants the permission."""
    role_permissions = PERMISSION_MAP.get(role, [])
    if role_permissions == 'all':
        return True
    return permission_name in role_permissions


def _denied(message, status_code):
    return jsonify({'status': 'error', 'message': message}), status_code


def require_permission(permission_name):
    """
    Decorator to check for specific permission.

    Permission mapping by role:
    - OWNER: All permissions
    - ADMIN: Everything the pipeline exposes
    - BUYER: Everything except closing quotes
    - VIEWER: Read-only

    Usage:
        @require_permission('close_quotes')
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            # Must be logged in
            if not g.get('user'):
                return _denied('Debes iniciar sesión.', 401)

            # Must have tenant selected
            if not g.get('tenant_id'):
                return _denied('Debes seleccionar un negocio primero.', 403)

            user_role = g.get('user_role')
            if not user_role:
                return _denied('No se pudo determinar tu rol.', 403)

            if not has_permission(user_role, permission_name):
                return _denied(f'No tienes permiso para: {permission_name}', 403)

            return f(*args, **kwargs)

        return decorated_function
    return decorator
