"""
FairTask Ledger - single entry point wiring every service on one store

    ledger = FairTaskLedger.create()            # in-memory SQLite
    user = ledger.register_user("Ravi").data["user"]
    ledger.rules.complete_task(user["id"], "VIDEO")
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from config import Config
from database import create_ledger_engine, create_session_factory, init_db
from services.admin_service import AdminOperations
from services.atomic_lock_manager import AtomicLockManager
from services.audit_trail_service import AuditTrailService
from services.emergency_control_service import EmergencyGate
from services.rules_engine import RulesEngine, list_withdrawals
from services.settings_service import SettingsService
from services.user_service import UserService
from services.wallet_ledger import WalletLedger
from utils.helpers import utcnow
from utils.logging_setup import configure_logging

logger = logging.getLogger(__name__)


class FairTaskLedger:
    """User and admin operations sharing one session factory, lock manager and clock"""

    def __init__(
        self,
        session_factory: sessionmaker,
        clock: Optional[Callable[[], datetime]] = None,
        lock_manager: Optional[AtomicLockManager] = None,
    ):
        self.session_factory = session_factory
        self.clock = clock or utcnow
        self.locks = lock_manager or AtomicLockManager()

        self.users = UserService(session_factory, self.clock)
        self.wallets = WalletLedger(session_factory, self.clock)
        self.emergency = EmergencyGate(session_factory, self.clock)
        self.settings = SettingsService(session_factory, self.clock)
        self.audit = AuditTrailService(session_factory, self.clock)
        self.rules = RulesEngine(session_factory, self.locks, self.clock)
        self.admin = AdminOperations(session_factory, self.locks, self.clock)

    @classmethod
    def create(
        cls,
        database_url: Optional[str] = None,
        clock: Optional[Callable[[], datetime]] = None,
        engine: Optional[Engine] = None,
    ) -> "FairTaskLedger":
        """Build the engine, create and seed the schema, and wire the services"""
        configure_logging()
        Config.validate_fee_configuration()
        Config.log_environment_config()

        engine = engine or create_ledger_engine(database_url)
        session_factory = create_session_factory(engine)
        init_db(engine, session_factory)
        ledger = cls(session_factory, clock=clock)
        ledger.engine = engine
        logger.info("✅ FairTask ledger ready")
        return ledger

    # User operations

    def register_user(self, *args, **kwargs):
        return self.users.register_user(*args, **kwargs)

    def complete_task(self, user_id, task_type):
        return self.rules.complete_task(user_id, task_type)

    def request_withdrawal(self, user_id, amount, method, details):
        return self.rules.request_withdrawal(user_id, amount, method, details)

    def unlock_bonus(self, user_id):
        return self.rules.unlock_bonus(user_id)

    def submit_kyc(self, user_id, kyc_data):
        return self.rules.submit_kyc(user_id, kyc_data)

    def purchase_plan(self, user_id, tier):
        return self.rules.purchase_plan(user_id, tier)

    # Admin operations

    def review_kyc(self, user_id, outcome, reason, admin_id):
        return self.admin.review_kyc(user_id, outcome, reason, admin_id)

    def process_withdrawal(self, request_id, outcome, admin_id):
        return self.admin.process_withdrawal(request_id, outcome, admin_id)

    def set_user_status(self, user_id, status, admin_id):
        return self.admin.set_user_status(user_id, status, admin_id)

    def toggle_emergency_flag(self, flag, value, admin_id):
        return self.admin.toggle_emergency_flag(flag, value, admin_id)

    def update_settings(self, new_settings, admin_id):
        return self.admin.update_settings(new_settings, admin_id)

    # Reads

    def get_ledger(self, user_id: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        return self.wallets.get_ledger(user_id, limit)

    def get_wallet(self, user_id: str):
        return self.wallets.get_wallet(user_id)

    def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        return self.users.get_user(user_id)

    def get_withdrawals(self, status=None, user_id: Optional[str] = None) -> List[Dict[str, Any]]:
        return list_withdrawals(self.session_factory, user_id=user_id, status=status)

    def get_audit_log(self, admin_id: Optional[str] = None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        return self.audit.get_audit_log(admin_id, limit)

    def get_emergency_state(self) -> Dict[str, Any]:
        return self.emergency.get_state()

    def get_settings(self) -> Dict[str, Any]:
        return self.settings.get_settings()
