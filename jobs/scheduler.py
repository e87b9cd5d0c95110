"""Background job scheduler for pending-earnings release and leaderboard payouts"""

import logging
from datetime import datetime

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from config import Config
from models import LeaderboardTimeframe
from services.rules_engine import RulesEngine

logger = logging.getLogger(__name__)


class LedgerScheduler:
    """Runs the periodic ledger jobs against one rules engine"""

    def __init__(self, rules_engine: RulesEngine, scheduler: BackgroundScheduler = None):
        self.rules_engine = rules_engine
        jobstores = {
            'default': MemoryJobStore()
        }
        executors = {
            'default': ThreadPoolExecutor(max_workers=2)
        }
        job_defaults = {
            'coalesce': True,  # Collapse missed runs into one
            'max_instances': 1,
            'misfire_grace_time': 120
        }
        self.scheduler = scheduler or BackgroundScheduler(
            jobstores=jobstores,
            executors=executors,
            job_defaults=job_defaults,
            timezone='UTC'
        )

    def setup_jobs(self):
        """Register every ledger job"""

        # Pending earnings release - verification hold has elapsed
        self.scheduler.add_job(
            self.release_pending_job,
            trigger=IntervalTrigger(
                minutes=Config.PENDING_RELEASE_INTERVAL_MINUTES,
                start_date=datetime.now().replace(second=5, microsecond=0),
            ),
            id="release_matured_pending",
            name="Release matured pending earnings",
            replace_existing=True,
        )

        if not Config.LEADERBOARD_PAYOUTS_ENABLED:
            logger.info("🏆 Leaderboard payouts disabled - skipping payout jobs")
            return

        self.scheduler.add_job(
            self.leaderboard_payout_job,
            trigger=CronTrigger(hour=0, minute=5),
            args=[LeaderboardTimeframe.DAILY],
            id="leaderboard_payout_daily",
            name="Daily leaderboard payout",
            replace_existing=True,
        )
        self.scheduler.add_job(
            self.leaderboard_payout_job,
            trigger=CronTrigger(day_of_week="mon", hour=0, minute=15),
            args=[LeaderboardTimeframe.WEEKLY],
            id="leaderboard_payout_weekly",
            name="Weekly leaderboard payout",
            replace_existing=True,
        )
        self.scheduler.add_job(
            self.leaderboard_payout_job,
            trigger=CronTrigger(day=1, hour=0, minute=30),
            args=[LeaderboardTimeframe.MONTHLY],
            id="leaderboard_payout_monthly",
            name="Monthly leaderboard payout",
            replace_existing=True,
        )

    def release_pending_job(self):
        try:
            result = self.rules_engine.release_matured_pending()
            if result.data["released_entries"]:
                logger.info(
                    f"⏳ Pending release: {result.data['released_entries']} entries, "
                    f"${result.data['released_amount']}"
                )
            for shortfall in result.data.get("shortfalls", []):
                logger.warning(
                    f"⚠️ Pending release for {shortfall['user_id']} short by ${shortfall['shortfall']}"
                )
        except Exception as e:
            logger.error(f"Pending release job failed: {e}", exc_info=True)

    def leaderboard_payout_job(self, timeframe: LeaderboardTimeframe):
        try:
            result = self.rules_engine.distribute_leaderboard_rewards(timeframe)
            logger.info(
                f"🏆 {timeframe.value} payout: {len(result.data['awarded'])} awarded, "
                f"${result.data['total']} total"
            )
        except Exception as e:
            logger.error(f"{timeframe.value} leaderboard payout failed: {e}", exc_info=True)

    def start(self):
        """Start the scheduler"""
        self.setup_jobs()
        self.scheduler.start()
        logger.info(f"⏰ Ledger scheduler started with {len(self.scheduler.get_jobs())} jobs")

    def shutdown(self):
        """Shutdown the scheduler"""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Ledger scheduler stopped")
