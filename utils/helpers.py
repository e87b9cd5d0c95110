"""Helper utilities for identifiers and timestamps"""

import secrets
import string
import uuid
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the DateTime columns of the schema"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def generate_unique_id(prefix: str = "") -> str:
    """Prefixed id in the form PREFIX_<timestamp>_<random>"""
    timestamp = int(utcnow().timestamp())
    random_part = uuid.uuid4().hex[:10].upper()
    if prefix:
        return f"{prefix.upper()}_{timestamp % 1000000:06d}_{random_part}"
    return f"{timestamp % 1000000:06d}_{random_part}"


def generate_user_id() -> str:
    return f"user_{uuid.uuid4().hex[:12]}"


def generate_admin_id() -> str:
    return f"admin_{uuid.uuid4().hex[:9]}"


def generate_transaction_id() -> str:
    return generate_unique_id("TX")


def generate_withdrawal_id() -> str:
    return generate_unique_id("WD")


def generate_referral_code(name: str = "", length: int = 6) -> str:
    """Readable referral code: up to four letters of the name plus random digits"""
    letters = "".join(ch for ch in name.upper() if ch in string.ascii_uppercase)[:4]
    digits = "".join(secrets.choice(string.digits) for _ in range(length))
    return f"{letters or 'REF'}{digits}"
