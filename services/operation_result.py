"""
Structured operation results
Business-rule rejections are returned to the caller, never raised
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(Enum):
    """Recoverable, user-facing rejection reasons"""
    EMERGENCY_PAUSED = "EmergencyPaused"
    MAINTENANCE_MODE = "MaintenanceMode"
    LIMIT_REACHED = "LimitReached"
    ACCOUNT_NOT_ACTIVE = "AccountNotActive"
    KYC_REQUIRED = "KycRequired"
    BELOW_MINIMUM = "BelowMinimum"
    INSUFFICIENT_BALANCE = "InsufficientBalance"
    REQUIREMENT_NOT_MET = "RequirementNotMet"
    NO_BALANCE = "NoBalance"
    NOT_FOUND = "NotFound"
    PERMISSION_DENIED = "PermissionDenied"
    INVALID_AMOUNT = "InvalidAmount"
    INVALID_STATE = "InvalidState"
    INVALID_INPUT = "InvalidInput"


@dataclass
class OperationResult:
    """Result of a ledger or admin operation"""
    success: bool
    error_code: Optional[ErrorKind] = None
    error_message: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, **data: Any) -> "OperationResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error_code: ErrorKind, message: str, **data: Any) -> "OperationResult":
        return cls(success=False, error_code=error_code, error_message=message, data=data)

    def to_dict(self) -> Dict[str, Any]:
        result = {"success": self.success, **self.data}
        if not self.success:
            result["error_code"] = self.error_code.value if self.error_code else None
            result["error"] = self.error_message
        return result
