"""
Audit logging service for quote and purchase order actions.
"""
from quoteflow.models.audit_log import AuditLog, AuditAction
from quoteflow.utils.clock import utcnow
from flask import request, g, has_request_context, has_app_context
import json
import logging

logger = logging.getLogger(__name__)


def log_action(
    session,
    action: AuditAction,
    resource_type: str = None,
    resource_id: int = None,
    details: dict = None,
    tenant_id: int = None,
    user_id: int = None
):
    """
    Log an auditable action to the database.

    Args:
        session: Database session
        action: AuditAction enum value
        resource_type: Type of resource affected (e.g., 'quote', 'purchase_order')
        resource_id: ID of the affected resource
        details: Dict with additional details (will be JSON encoded)
        tenant_id: Tenant ID; falls back to g.tenant_id
        user_id: Acting user; falls back to g.user (None for system jobs)
    """
    try:
        if has_app_context():
            if user_id is None and g.get('user') is not None:
                user_id = g.user.id
            if tenant_id is None:
                tenant_id = g.get('tenant_id')

        if not tenant_id:
            logger.warning(f"Cannot log action {action}: missing tenant_id")
            return

        ip_address = None
        user_agent = None
        if has_request_context():
            ip_address = request.remote_addr
            user_agent = request.headers.get('User-Agent', '')[:255]

        details_json = None
        if details:
            try:
                details_json = json.dumps(details, default=str)
            except (TypeError, ValueError) as e:
                logger.warning(f"Failed to serialize audit details: {e}")
                details_json = str(details)

        audit_entry = AuditLog(
            tenant_id=tenant_id,
            user_id=user_id,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            details=details_json,
            ip_address=ip_address,
            user_agent=user_agent,
            created_at=utcnow()
        )

        session.add(audit_entry)
        # Note: Caller is responsible for committing the session

        logger.info(f"Audit log created: {action.value} by user {user_id} on {resource_type} {resource_id}")

    except Exception as e:
        logger.error(f"Failed to create audit log: {e}")
        # Don't raise exception - audit failures should not break business logic


def get_audit_logs(
    session,
    tenant_id: int,
    limit: int = 100,
    offset: int = 0,
    action_filter: AuditAction = None,
    resource_type_filter: str = None,
    resource_id_filter: int = None
):
    """
    Retrieve audit logs for a tenant with optional filters, newest first.
    """
    query = session.query(AuditLog).filter(
        AuditLog.tenant_id == tenant_id
    )

    if action_filter:
        query = query.filter(AuditLog.action == action_filter)

    if resource_type_filter:
        query = query.filter(AuditLog.resource_type == resource_type_filter)

    if resource_id_filter:
        query = query.filter(AuditLog.resource_id == resource_id_filter)

    query = query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
    query = query.limit(limit).offset(offset)

    return query.all()


def serialize_audit_log(entry: AuditLog) -> dict:
    details = None
    if entry.details:
        try:
            details = json.loads(entry.details)
        except ValueError:
            details = entry.details
    return {
        'id': entry.id,
        'action': entry.action.value,
        'resource_type': entry.resource_type,
        'resource_id': entry.resource_id,
        'user_id': entry.user_id,
        'details': details,
        'created_at': entry.created_at.isoformat() if entry.created_at else None,
    }
