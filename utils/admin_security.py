"""
Admin Security Module
Capability-based authorization checked once at the admin operations boundary
"""

import logging
from enum import Enum
from typing import Dict, FrozenSet, Iterable, Optional

from models import AdminAccount, AdminRole

logger = logging.getLogger(__name__)


class Capability(Enum):
    MANAGE_ADMINS = "MANAGE_ADMINS"
    VIEW_DASHBOARD = "VIEW_DASHBOARD"
    VIEW_USERS = "VIEW_USERS"
    EDIT_USERS = "EDIT_USERS"
    VIEW_FINANCE = "VIEW_FINANCE"
    APPROVE_WITHDRAWALS = "APPROVE_WITHDRAWALS"
    ADJUST_BALANCES = "ADJUST_BALANCES"
    VIEW_KYC = "VIEW_KYC"
    APPROVE_KYC = "APPROVE_KYC"
    VIEW_AUDIT = "VIEW_AUDIT"
    MANAGE_SETTINGS = "MANAGE_SETTINGS"
    EMERGENCY_CONTROL = "EMERGENCY_CONTROL"


ROLE_CAPABILITIES: Dict[AdminRole, FrozenSet[Capability]] = {
    AdminRole.SUPER_ADMIN: frozenset(Capability),
    AdminRole.FINANCE_ADMIN: frozenset({
        Capability.VIEW_DASHBOARD,
        Capability.VIEW_USERS,
        Capability.VIEW_FINANCE,
        Capability.APPROVE_WITHDRAWALS,
    }),
    AdminRole.KYC_ADMIN: frozenset({
        Capability.VIEW_KYC,
        Capability.APPROVE_KYC,
    }),
    AdminRole.SUPPORT_ADMIN: frozenset({
        Capability.VIEW_USERS,
        Capability.EDIT_USERS,
    }),
    AdminRole.FRAUD_ANALYST: frozenset({
        Capability.VIEW_USERS,
        Capability.EDIT_USERS,
        Capability.VIEW_AUDIT,
    }),
    AdminRole.AUDITOR: frozenset({
        Capability.VIEW_DASHBOARD,
        Capability.VIEW_FINANCE,
        Capability.VIEW_AUDIT,
    }),
    AdminRole.CONTENT_ADMIN: frozenset({
        Capability.VIEW_DASHBOARD,
    }),
}


class PermissionDenied(Exception):
    """Raised by require_capability; converted to a result at the service boundary"""

    def __init__(self, admin_id: str, capability: Capability):
        self.admin_id = admin_id
        self.capability = capability
        super().__init__(f"Admin {admin_id} lacks {capability.value}")


def parse_capabilities(values: Optional[Iterable[str]]) -> FrozenSet[Capability]:
    """Unknown capability names are dropped with a warning"""
    capabilities = set()
    for value in values or ():
        try:
            capabilities.add(Capability(value))
        except ValueError:
            logger.warning(f"Ignoring unknown admin capability {value!r}")
    return frozenset(capabilities)


def capabilities_for(admin: AdminAccount) -> FrozenSet[Capability]:
    """Role grants plus any explicitly assigned extras; inactive admins get nothing"""
    if not admin.is_active:
        return frozenset()
    role = AdminRole(admin.role)
    return ROLE_CAPABILITIES.get(role, frozenset()) | parse_capabilities(admin.extra_capabilities)


def has_capability(admin: AdminAccount, capability: Capability) -> bool:
    return capability in capabilities_for(admin)


def require_capability(admin: AdminAccount, capability: Capability) -> None:
    if not has_capability(admin, capability):
        logger.warning(
            f"SECURITY: admin {admin.id} ({admin.role}) denied {capability.value}"
        )
        raise PermissionDenied(admin.id, capability)
