"""System settings - fee percentages, withdrawal minimums and platform flags"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, Mapping, Optional

from sqlalchemy.orm import Session, sessionmaker

from database import SETTINGS_ROW_ID, LedgerStoreError, managed_session
from models import PlanTier, SystemSettings
from utils.financial import FinancialCalculator
from utils.helpers import utcnow

logger = logging.getLogger(__name__)

SETTINGS_FIELDS = (
    "platform_fee_percent",
    "transaction_fee_percent",
    "min_withdrawal_trial",
    "min_withdrawal_paid",
    "referrals_enabled",
    "maintenance_mode",
)

_DECIMAL_FIELDS = SETTINGS_FIELDS[:4]
_BOOL_FIELDS = SETTINGS_FIELDS[4:]


class SettingsValidationError(ValueError):
    """A proposed settings record is malformed"""
    pass


def serialize_settings(settings: SystemSettings) -> Dict[str, Any]:
    return {
        "platform_fee_percent": Decimal(settings.platform_fee_percent),
        "transaction_fee_percent": Decimal(settings.transaction_fee_percent),
        "min_withdrawal_trial": Decimal(settings.min_withdrawal_trial),
        "min_withdrawal_paid": Decimal(settings.min_withdrawal_paid),
        "referrals_enabled": settings.referrals_enabled,
        "maintenance_mode": settings.maintenance_mode,
        "updated_at": settings.updated_at,
        "updated_by": settings.updated_by,
    }


def validate_settings(new_settings: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Normalise a complete settings record.

    Every field must be present. Fees are each 0-100 and together below
    100; minimum withdrawals are non-negative.
    """
    missing = [name for name in SETTINGS_FIELDS if name not in new_settings]
    if missing:
        raise SettingsValidationError(f"Missing settings fields: {', '.join(missing)}")

    cleaned: Dict[str, Any] = {}
    for name in _DECIMAL_FIELDS:
        try:
            cleaned[name] = FinancialCalculator.to_decimal(new_settings[name])
        except ValueError as e:
            raise SettingsValidationError(f"{name}: {e}") from e
    for name in _BOOL_FIELDS:
        if not isinstance(new_settings[name], bool):
            raise SettingsValidationError(f"{name} must be a boolean")
        cleaned[name] = new_settings[name]

    for name in ("platform_fee_percent", "transaction_fee_percent"):
        if not Decimal("0") <= cleaned[name] <= Decimal("100"):
            raise SettingsValidationError(f"{name} must be between 0 and 100")
    if cleaned["platform_fee_percent"] + cleaned["transaction_fee_percent"] >= Decimal("100"):
        raise SettingsValidationError("Combined fees must stay below 100%")
    for name in ("min_withdrawal_trial", "min_withdrawal_paid"):
        if cleaned[name] < 0:
            raise SettingsValidationError(f"{name} cannot be negative")
    return cleaned


class SettingsService:
    """Access to the single mutable settings row"""

    def __init__(self, session_factory: sessionmaker, clock: Optional[Callable[[], datetime]] = None):
        self.session_factory = session_factory
        self.clock = clock or utcnow

    @staticmethod
    def settings_row(session: Session) -> SystemSettings:
        settings = session.get(SystemSettings, SETTINGS_ROW_ID)
        if settings is None:
            raise LedgerStoreError("System settings row missing - was init_db run?")
        return settings

    @staticmethod
    def minimum_withdrawal(settings: SystemSettings, plan_tier: str) -> Decimal:
        if plan_tier == PlanTier.TRIAL.value:
            return Decimal(settings.min_withdrawal_trial)
        return Decimal(settings.min_withdrawal_paid)

    def get_settings(self) -> Dict[str, Any]:
        with managed_session(self.session_factory) as session:
            return serialize_settings(self.settings_row(session))

    def replace(self, session: Session, cleaned: Mapping[str, Any], admin_id: str) -> SystemSettings:
        """Overwrite every field with an already validated record"""
        settings = self.settings_row(session)
        for name in SETTINGS_FIELDS:
            setattr(settings, name, cleaned[name])
        settings.updated_at = self.clock()
        settings.updated_by = admin_id
        logger.info(
            f"⚙️ Settings replaced by {admin_id}: fees {cleaned['platform_fee_percent']}%"
            f"+{cleaned['transaction_fee_percent']}%, minimums "
            f"{cleaned['min_withdrawal_trial']}/{cleaned['min_withdrawal_paid']}, "
            f"maintenance={cleaned['maintenance_mode']}"
        )
        return settings
