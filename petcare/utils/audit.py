from flask import request, current_app, has_request_context
from flask_login import current_user
from petcare.models.audit import AuditLog
from petcare import db


def _request_actor_id():
    if not has_request_context():
        return None
    if current_user and current_user.is_authenticated:
        return current_user.id
    return None


def log_audit(action, entity_type, entity_id=None, details=None, company_id=None, user_id=None):
    """
    Log an audit entry

    Parameters:
    - action: The action performed (e.g., 'appointment.created', 'hold.released')
    - entity_type: The type of entity affected (e.g., 'appointment', 'booking_hold')
    - entity_id: ID of the affected entity (optional)
    - details: Additional details about the action (optional)
    - company_id: Tenant the entry belongs to (optional)
    - user_id: Acting user; defaults to the authenticated actor of the request
    """
    try:
        if user_id is None:
            user_id = _request_actor_id()

        # Get IP address
        ip_address = request.remote_addr if has_request_context() else None

        # Create audit log entry
        audit_entry = AuditLog(
            company_id=company_id,
            user_id=user_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            details=details,
            ip_address=ip_address
        )

        db.session.add(audit_entry)
        db.session.commit()

        return True
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Failed to log audit entry: {e}")
        return False
