"""Financial calculation utilities with Decimal precision"""

import logging
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Dict, Union

logger = logging.getLogger(__name__)

Number = Union[Decimal, int, float, str]


class FinancialCalculator:
    """Handles ledger arithmetic so no float ever touches a balance"""

    USD_PRECISION = Decimal("0.01")  # Payout amounts
    LEDGER_PRECISION = Decimal("0.00000001")  # Matches Numeric(20, 8) columns

    @staticmethod
    def to_decimal(value: Number) -> Decimal:
        """Convert via str() so 0.1 stays 0.1"""
        if isinstance(value, Decimal):
            return value
        try:
            return Decimal(str(value))
        except (InvalidOperation, ValueError) as e:
            raise ValueError(f"Invalid monetary amount: {value!r}") from e

    @classmethod
    def to_ledger(cls, value: Number) -> Decimal:
        return cls.to_decimal(value).quantize(cls.LEDGER_PRECISION, rounding=ROUND_HALF_UP)

    @classmethod
    def to_usd(cls, value: Number) -> Decimal:
        return cls.to_decimal(value).quantize(cls.USD_PRECISION, rounding=ROUND_HALF_UP)

    @classmethod
    def per_task_reward(cls, rate: Number, rate_basis: int) -> Decimal:
        """Reward paid per single completion: rate is earned per rate_basis tasks"""
        if rate_basis <= 0:
            raise ValueError("rate_basis must be positive")
        return cls.to_ledger(cls.to_decimal(rate) / Decimal(rate_basis))

    @classmethod
    def percentage_of(cls, amount: Number, percent: Number) -> Decimal:
        """percent is expressed on a 0-100 scale"""
        return cls.to_decimal(amount) * cls.to_decimal(percent) / Decimal("100")

    @classmethod
    def withdrawal_breakdown(
        cls, gross: Number, platform_fee_percent: Number, transaction_fee_percent: Number
    ) -> Dict[str, Decimal]:
        """
        Split a gross withdrawal into fees and net payout.

        net = gross * (1 - (platform% + transaction%) / 100), rounded to cents.
        The fee legs are rounded individually and the platform leg absorbs
        any rounding residue so that gross = net + platform_fee + transaction_fee.
        """
        gross_decimal = cls.to_decimal(gross)
        total_percent = cls.to_decimal(platform_fee_percent) + cls.to_decimal(transaction_fee_percent)
        net = cls.to_usd(gross_decimal * (Decimal("1") - total_percent / Decimal("100")))
        transaction_fee = cls.to_usd(cls.percentage_of(gross_decimal, transaction_fee_percent))
        platform_fee = gross_decimal - net - transaction_fee

        logger.debug(
            f"Withdrawal breakdown for ${gross_decimal}: net=${net} "
            f"platform=${platform_fee} tx=${transaction_fee}"
        )
        return {
            "gross": gross_decimal,
            "net": net,
            "platform_fee": platform_fee,
            "transaction_fee": transaction_fee,
        }

    @classmethod
    def referral_commission(cls, event_amount: Number, rate: Number) -> Decimal:
        return cls.to_ledger(cls.to_decimal(event_amount) * cls.to_decimal(rate))
