"""
Emergency Control Service - platform-wide kill switches

Three independent flags pause earnings, withdrawals and referral credits.
The state row is seeded all-false by init_db and only changes through
set_flag; readers never reset it.
"""

import logging
from datetime import datetime
from typing import Callable, Dict, Optional, Union

from sqlalchemy.orm import Session, sessionmaker

from database import EMERGENCY_ROW_ID, LedgerStoreError, managed_session
from models import EmergencyFlag, EmergencyState
from utils.helpers import utcnow

logger = logging.getLogger(__name__)


def serialize_emergency_state(state: EmergencyState) -> Dict[str, object]:
    return {
        EmergencyFlag.WITHDRAWALS_PAUSED.value: state.withdrawals_paused,
        EmergencyFlag.EARNINGS_PAUSED.value: state.earnings_paused,
        EmergencyFlag.REFERRALS_PAUSED.value: state.referrals_paused,
        "updated_at": state.updated_at,
        "updated_by": state.updated_by,
    }


class EmergencyGate:
    """Reads and flips the emergency switches"""

    def __init__(self, session_factory: sessionmaker, clock: Optional[Callable[[], datetime]] = None):
        self.session_factory = session_factory
        self.clock = clock or utcnow

    @staticmethod
    def _state_row(session: Session) -> EmergencyState:
        state = session.get(EmergencyState, EMERGENCY_ROW_ID)
        if state is None:
            raise LedgerStoreError("Emergency state row missing - was init_db run?")
        return state

    @staticmethod
    def _flag(flag: Union[EmergencyFlag, str]) -> EmergencyFlag:
        return flag if isinstance(flag, EmergencyFlag) else EmergencyFlag(flag)

    def is_paused_in(self, session: Session, flag: Union[EmergencyFlag, str]) -> bool:
        """Check a flag inside an already open transaction"""
        return bool(getattr(self._state_row(session), self._flag(flag).value))

    def is_paused(self, flag: Union[EmergencyFlag, str]) -> bool:
        with managed_session(self.session_factory) as session:
            return self.is_paused_in(session, flag)

    def get_state(self) -> Dict[str, object]:
        with managed_session(self.session_factory) as session:
            return serialize_emergency_state(self._state_row(session))

    def set_flag(
        self,
        session: Session,
        flag: Union[EmergencyFlag, str],
        value: bool,
        admin_id: Optional[str] = None,
    ) -> EmergencyState:
        """Unconditional overwrite of one switch, effective for every later check"""
        emergency_flag = self._flag(flag)
        state = self._state_row(session)
        previous = getattr(state, emergency_flag.value)
        setattr(state, emergency_flag.value, bool(value))
        state.updated_at = self.clock()
        state.updated_by = admin_id

        if value:
            logger.critical(f"🚨 EMERGENCY: {emergency_flag.value} ENABLED by {admin_id}")
        else:
            logger.warning(f"✅ EMERGENCY: {emergency_flag.value} cleared by {admin_id} (was {previous})")
        return state
