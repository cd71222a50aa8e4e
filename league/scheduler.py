"""Background tasks: challenge expiry sweep and challenger notifications."""

import asyncio
import logging
from typing import Dict, Optional

from discord.ext import commands, tasks

from . import view
from .config import CHALLENGES, SWEEP_INTERVAL_MINUTES
from .events import Change
from .logic import LeagueLogic
from .models import Challenge, ChallengeStatus
from .notifications import NotificationManager
from .repositories import challenge_from_document
from .storage import Filter

logger = logging.getLogger(__name__)


class ChallengeScheduler:
    """Expires overdue challenges and tells challengers what became of theirs."""

    def __init__(self, bot: commands.Bot, league: LeagueLogic, notifications: NotificationManager):
        self.bot = bot
        self.league = league
        self.notifications = notifications
        self.notified: Dict[str, ChallengeStatus] = {}
        self.listener: Optional[asyncio.Task] = None

    def start(self):
        self.expiry_sweep.start()
        self.listener = asyncio.create_task(self.watch_challenges())

    def stop(self):
        """Clean shutdown of the scheduler."""
        self.expiry_sweep.cancel()
        if self.listener:
            self.listener.cancel()

    @tasks.loop(minutes=SWEEP_INTERVAL_MINUTES)
    async def expiry_sweep(self):
        try:
            result = await self.league.expire_challenges()
            logger.debug(f"Expiry sweep finished: {result.message}")
        except Exception as e:
            logger.error(f"Error in expiry sweep task: {e}", exc_info=True)

    @expiry_sweep.before_loop
    async def before_expiry_sweep(self):
        """Wait for bot to be ready before sweeping."""
        await self.bot.wait_until_ready()
        logger.info("Challenge expiry sweep initialized")

    def handle_change(self, change: Change) -> Optional[Challenge]:
        """Return the challenge if its challenger has not yet heard about its new status."""
        if change.deleted:
            return None
        challenge = challenge_from_document(change.data)
        if challenge.status is ChallengeStatus.PENDING:
            return None
        if self.notified.get(challenge.id) is challenge.status:
            return None
        self.notified[challenge.id] = challenge.status
        return challenge

    async def watch_challenges(self):
        await self.bot.wait_until_ready()
        subscription = self.league.store.subscribe(
            CHALLENGES, filters=[Filter("status", "!=", ChallengeStatus.PENDING)]
        )
        logger.info("Watching challenges for status changes")
        async with subscription:
            async for change in subscription:
                try:
                    challenge = self.handle_change(change)
                    if challenge:
                        await self.notifications.send_dm(
                            challenge.challenger_id, view.format_challenge_update(challenge)
                        )
                except Exception as e:
                    logger.error(f"Failed to handle change to challenge {change.doc_id}: {e}", exc_info=True)


async def setup(bot: commands.Bot):
    """Setup function to start the scheduler."""
    scheduler = ChallengeScheduler(bot, bot.league, bot.notifications)
    scheduler.start()
    # Store reference so it doesn't get garbage collected
    bot.challenge_scheduler = scheduler
