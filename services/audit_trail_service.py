"""
Audit Trail Service - append-only record of administrative actions

Rows are added inside the transaction of the action they describe, after
its mutation. There is no update or delete API.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from database import managed_session
from models import AdminAccount, AuditLog
from utils.helpers import utcnow

logger = logging.getLogger(__name__)


class AuditAction:
    """Action kinds written by the admin operations"""
    PROCESS_WITHDRAWAL = "PROCESS_WITHDRAWAL"
    REVIEW_KYC = "REVIEW_KYC"
    SET_USER_STATUS = "SET_USER_STATUS"
    TOGGLE_EMERGENCY = "TOGGLE_EMERGENCY"
    UPDATE_SETTINGS = "UPDATE_SETTINGS"
    ADJUST_BALANCE = "ADJUST_BALANCE"
    CREATE_ADMIN = "CREATE_ADMIN"
    DEACTIVATE_ADMIN = "DEACTIVATE_ADMIN"


def serialize_audit_entry(entry: AuditLog) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "admin_id": entry.admin_id,
        "admin_role": entry.admin_role,
        "action": entry.action,
        "target_id": entry.target_id,
        "description": entry.description,
        "details": entry.details or {},
        "timestamp": entry.created_at,
    }


class AuditTrailService:
    """Writes and reads the admin audit trail"""

    def __init__(self, session_factory: sessionmaker, clock: Optional[Callable[[], datetime]] = None):
        self.session_factory = session_factory
        self.clock = clock or utcnow

    def log_admin_action(
        self,
        session: Session,
        admin: AdminAccount,
        action: str,
        target_id: Optional[str] = None,
        description: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> AuditLog:
        entry = AuditLog(
            admin_id=admin.id,
            admin_role=admin.role,
            action=action,
            target_id=target_id,
            description=description,
            details=details,
            created_at=self.clock(),
        )
        session.add(entry)
        logger.info(f"📋 AUDIT: {admin.id} ({admin.role}) {action} target={target_id}")
        return entry

    def get_audit_log(self, admin_id: Optional[str] = None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Newest first, optionally filtered by acting admin"""
        with managed_session(self.session_factory) as session:
            query = select(AuditLog).order_by(AuditLog.id.desc())
            if admin_id:
                query = query.where(AuditLog.admin_id == admin_id)
            if limit:
                query = query.limit(limit)
            return [serialize_audit_entry(entry) for entry in session.scalars(query).all()]
