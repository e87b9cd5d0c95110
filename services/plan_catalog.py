"""
Plan Catalog - static plan tiers, referral rates and leaderboard prize tables

One canonical table is kept here: the tier set that carries explicit
rate-basis fields. Rewards are quoted as "rate per rate_basis completions".
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Mapping, Union

from config import Config
from models import LeaderboardTimeframe, PlanTier, TaskType
from utils.financial import FinancialCalculator

# Plan prices are quoted in INR and booked in USD at a fixed rate
INR_PER_USD = Decimal("83")


@dataclass(frozen=True)
class PlanConfig:
    """Immutable configuration of one plan tier"""
    tier: PlanTier
    price_inr: Decimal
    duration_days: int
    daily_video_limit: int
    daily_link_limit: int
    video_rate: Decimal
    video_rate_basis: int
    link_rate: Decimal
    link_rate_basis: int
    min_withdrawal: Decimal

    def __post_init__(self):
        if self.video_rate_basis <= 0 or self.link_rate_basis <= 0:
            raise ValueError(f"Plan {self.tier.value}: rate basis must be positive")
        if self.daily_video_limit < 0 or self.daily_link_limit < 0:
            raise ValueError(f"Plan {self.tier.value}: daily limits must be non-negative")

    def daily_limit(self, task_type: TaskType) -> int:
        if task_type == TaskType.VIDEO:
            return self.daily_video_limit
        return self.daily_link_limit

    def per_task_reward(self, task_type: TaskType) -> Decimal:
        if task_type == TaskType.VIDEO:
            return FinancialCalculator.per_task_reward(self.video_rate, self.video_rate_basis)
        return FinancialCalculator.per_task_reward(self.link_rate, self.link_rate_basis)

    @property
    def price_usd(self) -> Decimal:
        return FinancialCalculator.to_usd(self.price_inr / INR_PER_USD)


PLANS: Dict[PlanTier, PlanConfig] = {
    PlanTier.TRIAL: PlanConfig(
        tier=PlanTier.TRIAL,
        price_inr=Decimal("59"),
        duration_days=7,
        daily_video_limit=8,
        daily_link_limit=3,
        video_rate=Decimal("0.3"),
        video_rate_basis=5,
        link_rate=Decimal("0.5"),
        link_rate_basis=5,
        min_withdrawal=Decimal("10"),
    ),
    PlanTier.STARTER: PlanConfig(
        tier=PlanTier.STARTER,
        price_inr=Decimal("199"),
        duration_days=30,
        daily_video_limit=15,
        daily_link_limit=8,
        video_rate=Decimal("0.5"),
        video_rate_basis=5,
        link_rate=Decimal("0.7"),
        link_rate_basis=5,
        min_withdrawal=Decimal("50"),
    ),
    PlanTier.BASIC: PlanConfig(
        tier=PlanTier.BASIC,
        price_inr=Decimal("259"),
        duration_days=30,
        daily_video_limit=15,
        daily_link_limit=10,
        video_rate=Decimal("0.7"),
        video_rate_basis=5,
        link_rate=Decimal("0.9"),
        link_rate_basis=5,
        min_withdrawal=Decimal("50"),
    ),
    PlanTier.PRO: PlanConfig(
        tier=PlanTier.PRO,
        price_inr=Decimal("599"),
        duration_days=30,
        daily_video_limit=20,
        daily_link_limit=15,
        video_rate=Decimal("0.7"),
        video_rate_basis=5,
        link_rate=Decimal("0.9"),
        link_rate_basis=5,
        min_withdrawal=Decimal("50"),
    ),
    PlanTier.ULTRA: PlanConfig(
        tier=PlanTier.ULTRA,
        price_inr=Decimal("999"),
        duration_days=30,
        daily_video_limit=50,
        daily_link_limit=20,
        video_rate=Decimal("1.0"),
        video_rate_basis=6,
        link_rate=Decimal("1.0"),
        link_rate_basis=7,
        min_withdrawal=Decimal("50"),
    ),
}

# Commission rates by referral depth, for plan purchases and task completions
REFERRAL_BONUS: Mapping[str, Mapping[int, Decimal]] = {
    "PLAN": {1: Decimal("0.08"), 2: Decimal("0.04"), 3: Decimal("0.02")},
    "TASK": {1: Decimal("0.03"), 2: Decimal("0.02"), 3: Decimal("0.01")},
}
MAX_REFERRAL_DEPTH = 3

LEADERBOARD_REWARDS: Mapping[LeaderboardTimeframe, Mapping[int, Decimal]] = {
    LeaderboardTimeframe.DAILY: {
        1: Decimal("2.0"),
        2: Decimal("1.5"),
        3: Decimal("1.0"),
    },
    LeaderboardTimeframe.WEEKLY: {
        1: Decimal("10.0"),
        2: Decimal("7.0"),
        3: Decimal("5.0"),
        4: Decimal("3.0"),
        5: Decimal("2.0"),
    },
    LeaderboardTimeframe.MONTHLY: {
        1: Decimal("50.0"),
        2: Decimal("35.0"),
        3: Decimal("25.0"),
    },
}
MONTHLY_REST_TOP_10_REWARD = Decimal("10.0")  # Ranks 4-10

UNLOCK_RULES = {
    "REQUIRED_DAYS": Config.BONUS_UNLOCK_REQUIRED_DAYS,
}


def get_plan(tier: Union[PlanTier, str]) -> PlanConfig:
    """Look up a plan; unknown tiers are a programming error"""
    plan_tier = tier if isinstance(tier, PlanTier) else PlanTier(tier)
    return PLANS[plan_tier]


def leaderboard_reward(timeframe: Union[LeaderboardTimeframe, str], rank: int) -> Decimal:
    """Prize for a rank; YEARLY and LIFETIME boards carry no money"""
    frame = timeframe if isinstance(timeframe, LeaderboardTimeframe) else LeaderboardTimeframe(timeframe)
    if rank < 1:
        return Decimal("0")
    table = LEADERBOARD_REWARDS.get(frame)
    if not table:
        return Decimal("0")
    if rank in table:
        return table[rank]
    if frame == LeaderboardTimeframe.MONTHLY and 4 <= rank <= 10:
        return MONTHLY_REST_TOP_10_REWARD
    return Decimal("0")


def referral_rate(kind: str, level: int) -> Decimal:
    """kind is 'PLAN' or 'TASK'; levels outside 1-3 earn nothing"""
    return REFERRAL_BONUS[kind].get(level, Decimal("0"))
