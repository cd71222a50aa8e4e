"""Main entry point for the Spider League Discord bot."""

import os
import sys
import asyncio
import logging

import discord
from discord.ext import commands
from dotenv import load_dotenv

# Settings in league.config are read from the environment at import time.
load_dotenv()

from error_handler import ErrorHandler  # noqa: E402
from league.blobs import LocalBlobStore  # noqa: E402
from league.logic import LeagueLogic  # noqa: E402
from league.notifications import NotificationManager  # noqa: E402
from league.repositories import SettingsRepository  # noqa: E402
from league.storage import SqliteDocumentStore  # noqa: E402

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(),
        logging.FileHandler('spider_league.log')
    ]
)
logger = logging.getLogger(__name__)

EXTENSIONS = ('league.commands', 'league.admin_commands', 'league.scheduler')


def load_token() -> str:
    """Read the bot token from the environment, exiting when it is missing."""
    token = os.getenv('DISCORD_TOKEN')
    if not token:
        logger.error("DISCORD_TOKEN not found in environment or .env file. Exiting.")
        sys.exit(1)
    return token


class SpiderLeagueBot(commands.Bot):
    """The main Spider League bot class.

    The document store, blob store and league logic are built here once and
    handed to every cog.
    """

    def __init__(self):
        intents = discord.Intents.default()
        intents.message_content = False  # We only use slash commands

        super().__init__(
            command_prefix='!',  # Unused but required
            intents=intents,
            description="A Discord bot for the Spider League - challenge other players' spiders"
        )

        owner_id = int(os.getenv('BOT_OWNER_ID', '0'))
        self.error_handler = ErrorHandler(self, owner_id)

        self.store = SqliteDocumentStore()
        self.blobs = LocalBlobStore()
        self.league = LeagueLogic(self.store, self.blobs)
        self.settings = SettingsRepository(self.store)
        self.notifications = NotificationManager(self, self.settings)

    async def setup_hook(self):
        """Setup hook called before the bot connects."""
        logger.info("Setting up Spider League bot...")
        await self.store.initialize()
        self.tree.on_error = self.on_app_command_error

        for extension in EXTENSIONS:
            try:
                await self.load_extension(extension)
                logger.info(f"Loaded {extension}")
            except commands.ExtensionError as e:
                await self.error_handler.notify_owner(f"Failed to load {extension}", str(e), e)
                logger.error(f"Failed to load {extension}: {e}")
                raise

        try:
            synced = await self.tree.sync()
            logger.info(f"Synced {len(synced)} command(s)")
        except discord.HTTPException as e:
            await self.error_handler.notify_owner("Failed to sync commands", str(e), e)
            logger.error(f"Failed to sync commands: {e}")

    async def on_ready(self):
        """Called when the bot is ready."""
        logger.info(f"Spider League bot is ready! Logged in as {self.user}")
        logger.info(f"Bot is in {len(self.guilds)} guild(s)")

        await self.change_presence(activity=discord.Game(name="Spider League | /leaderboard"))
        await self.error_handler.send_startup_notification()

    async def on_app_command_error(self, interaction, error):
        """Handle application command errors."""
        await self.error_handler.handle_interaction_error(interaction, error)

    async def on_error(self, event, *args, **kwargs):
        """Handle general bot errors."""
        exc_type, exc_value, exc_traceback = sys.exc_info()
        logger.error(f"Bot error in event {event}", exc_info=True)
        if exc_value:
            context = {"event": event, "args": str(args)[:500]}
            await self.error_handler.notify_owner(f"Bot Error in {event}", str(context), exc_value)

    async def close(self):
        """Clean shutdown."""
        logger.info("Shutting down Spider League bot...")
        scheduler = getattr(self, 'challenge_scheduler', None)
        if scheduler:
            scheduler.stop()
        await self.store.close()
        await self.error_handler.notify_owner("Bot Shutdown", "Spider League bot is shutting down normally")
        await super().close()


async def main():
    """Main function to run the bot."""
    token = load_token()
    bot = SpiderLeagueBot()
    async with bot:
        await bot.start(token)


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Bot stopped by user")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)
