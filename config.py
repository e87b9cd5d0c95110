"""Configuration management for the FairTask earnings ledger"""

import os
import logging
from decimal import Decimal

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower().strip() == "true"


class Config:
    """Application configuration"""

    # Environment detection
    ENVIRONMENT = os.getenv("ENVIRONMENT", "development").lower().strip()
    IS_PRODUCTION = ENVIRONMENT == "production"

    # Storage - in-memory SQLite unless a real URL is supplied
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///:memory:")
    SQL_ECHO = _env_bool("SQL_ECHO", "false")

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

    # Earnings are booked in USD; plan prices are quoted in INR
    LEDGER_CURRENCY = os.getenv("LEDGER_CURRENCY", "USD")

    # Seed values for the mutable SystemSettings record
    DEFAULT_PLATFORM_FEE_PERCENT = Decimal(os.getenv("DEFAULT_PLATFORM_FEE_PERCENT", "10"))
    DEFAULT_TRANSACTION_FEE_PERCENT = Decimal(os.getenv("DEFAULT_TRANSACTION_FEE_PERCENT", "5"))
    DEFAULT_MIN_WITHDRAWAL_TRIAL = Decimal(os.getenv("DEFAULT_MIN_WITHDRAWAL_TRIAL", "10"))
    DEFAULT_MIN_WITHDRAWAL_PAID = Decimal(os.getenv("DEFAULT_MIN_WITHDRAWAL_PAID", "50"))
    DEFAULT_REFERRALS_ENABLED = _env_bool("DEFAULT_REFERRALS_ENABLED", "true")
    DEFAULT_MAINTENANCE_MODE = _env_bool("DEFAULT_MAINTENANCE_MODE", "false")

    # Verification hold before task earnings leave the pending bucket
    PENDING_HOLD_HOURS = int(os.getenv("PENDING_HOLD_HOURS", "24"))
    PENDING_RELEASE_INTERVAL_MINUTES = int(os.getenv("PENDING_RELEASE_INTERVAL_MINUTES", "15"))
    LEADERBOARD_PAYOUTS_ENABLED = _env_bool("LEADERBOARD_PAYOUTS_ENABLED", "true")

    BONUS_UNLOCK_REQUIRED_DAYS = int(os.getenv("BONUS_UNLOCK_REQUIRED_DAYS", "7"))

    # Root administrator seeded at init_db time
    ROOT_ADMIN_ID = os.getenv("ROOT_ADMIN_ID", "admin_root")
    ROOT_ADMIN_NAME = os.getenv("ROOT_ADMIN_NAME", "ROOT ADMIN")

    @staticmethod
    def log_environment_config():
        """Log current environment configuration for debugging"""
        logger.info("🔧 Ledger Environment Configuration:")
        logger.info(f"   Environment: {Config.ENVIRONMENT.upper()}")
        logger.info(f"   Is Production: {Config.IS_PRODUCTION}")
        if Config.DATABASE_URL.startswith("sqlite:///:memory:"):
            logger.info("   Database: in-memory SQLite (state is lost on exit)")
        else:
            # Never log credentials embedded in the URL
            logger.info(f"   Database: {Config.DATABASE_URL.split('://')[0]}")
        logger.info(
            f"   Fees: platform={Config.DEFAULT_PLATFORM_FEE_PERCENT}% "
            f"transaction={Config.DEFAULT_TRANSACTION_FEE_PERCENT}%"
        )
        logger.info(
            f"   Minimum withdrawal: trial=${Config.DEFAULT_MIN_WITHDRAWAL_TRIAL} "
            f"paid=${Config.DEFAULT_MIN_WITHDRAWAL_PAID}"
        )
        logger.info(f"   Pending hold: {Config.PENDING_HOLD_HOURS}h")

    @staticmethod
    def validate_fee_configuration():
        """Validate fee and withdrawal seed values"""
        platform = Config.DEFAULT_PLATFORM_FEE_PERCENT
        transaction = Config.DEFAULT_TRANSACTION_FEE_PERCENT
        if platform < 0 or transaction < 0:
            logger.critical("❌ Fee percentages cannot be negative")
            raise ValueError("Fee percentages must be non-negative")
        if platform + transaction >= Decimal("100"):
            logger.critical(
                f"❌ Combined fees {platform + transaction}% would leave no payout"
            )
            raise ValueError("Combined withdrawal fees must be below 100%")
        if Config.DEFAULT_MIN_WITHDRAWAL_TRIAL < 0 or Config.DEFAULT_MIN_WITHDRAWAL_PAID < 0:
            raise ValueError("Minimum withdrawal amounts must be non-negative")
        if Config.PENDING_HOLD_HOURS < 0:
            raise ValueError("PENDING_HOLD_HOURS must be non-negative")
        return True
