"""Error handling and owner notifications for the Spider League bot."""

import logging
import traceback
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

import discord
from discord import app_commands
from discord.ext import commands

from league.errors import LeagueError

logger = logging.getLogger(__name__)


def unwrap(error: Exception) -> Exception:
    """The exception a command raised, without discord.py's invoke wrapper."""
    if isinstance(error, app_commands.CommandInvokeError):
        return error.original
    return error


def user_message(error: Exception) -> str:
    """What to tell the user who ran the failing command."""
    if isinstance(error, LeagueError):
        return error.display
    if isinstance(error, discord.NotFound) and error.code == 10062:
        return "⏱️ The command took too long to process. Please try again."
    if isinstance(error, app_commands.CommandOnCooldown):
        return f"🕒 Command is on cooldown. Try again in {error.retry_after:.1f} seconds."
    if isinstance(error, (app_commands.MissingPermissions, app_commands.CheckFailure)):
        return "🔒 You don't have permission to use this command."
    return "An error occurred while processing your command. The bot owner has been notified."


def should_notify_owner(error: Exception) -> bool:
    """League rule violations are the user's business; everything else is ours."""
    if isinstance(error, LeagueError):
        return error.retryable or type(error) is LeagueError
    return not isinstance(error, (app_commands.CommandOnCooldown, app_commands.CheckFailure))


class ErrorHandler:
    """Centralized error handling and notification system."""

    def __init__(self, bot: commands.Bot, owner_id: int):
        self.bot = bot
        self.owner_id = owner_id
        self.error_counts: Dict[str, int] = {}
        self.last_notification: Dict[str, datetime] = {}
        self.notification_cooldown = 300  # 5 minutes between same error types

    def _cooled_down(self, error_type: str, now: datetime) -> bool:
        last = self.last_notification.get(error_type)
        if last is not None and now - last <= timedelta(seconds=self.notification_cooldown):
            return False
        self.last_notification[error_type] = now
        return True

    async def notify_owner(self, title: str, description: str, error: Optional[Exception] = None):
        """Send a DM notification to the bot owner."""
        if not self.owner_id:
            logger.warning(f"No BOT_OWNER_ID configured; not sending '{title}'")
            return
        try:
            owner = self.bot.get_user(self.owner_id) or await self.bot.fetch_user(self.owner_id)

            embed = discord.Embed(
                title=f"🚨 {title}",
                description=description,
                color=0xff0000,
                timestamp=datetime.now(timezone.utc)
            )

            if error:
                embed.add_field(
                    name="Error Details",
                    value=f"```{str(error)[:1000]}```",
                    inline=False
                )
                tb = ''.join(traceback.format_exception(type(error), error, error.__traceback__))
                embed.add_field(
                    name="Traceback",
                    value=f"```{tb[-1000:]}```",
                    inline=False
                )

            embed.set_footer(text="Spider League Bot Error Handler")
            await owner.send(embed=embed)
            logger.info(f"Sent error notification to owner: {title}")

        except discord.HTTPException as e:
            logger.error(f"Failed to send error notification: {e}")

    async def handle_interaction_error(self, interaction: discord.Interaction, error: Exception):
        """Handle slash command interaction errors."""
        error = unwrap(error)
        error_type = type(error).__name__
        command_name = interaction.command.name if interaction.command else "unknown"
        self.error_counts[error_type] = self.error_counts.get(error_type, 0) + 1

        if should_notify_owner(error):
            logger.error(f"Interaction error in /{command_name}: {error}", exc_info=error)
            if self._cooled_down(error_type, datetime.now(timezone.utc)):
                user = f"{interaction.user.display_name} ({interaction.user.id})"
                guild = f"{interaction.guild.name} ({interaction.guild.id})" if interaction.guild else "DM"
                description = (
                    f"**Command:** /{command_name}\n"
                    f"**User:** {user}\n"
                    f"**Guild:** {guild}\n"
                    f"**Error Count:** {self.error_counts[error_type]} (since restart)"
                )
                await self.notify_owner(f"Slash Command Error: {error_type}", description, error)
        else:
            logger.info(f"/{command_name} rejected for {interaction.user.id}: {error}")

        error_embed = discord.Embed(
            title="❌ Command Error",
            description=user_message(error),
            color=0xff0000
        )
        try:
            if not interaction.response.is_done():
                await interaction.response.send_message(embed=error_embed, ephemeral=True)
            else:
                await interaction.followup.send(embed=error_embed, ephemeral=True)
        except discord.HTTPException as followup_error:
            logger.error(f"Failed to send error message to user: {followup_error}")

    async def send_startup_notification(self):
        """Send notification when bot starts successfully."""
        if not self.owner_id:
            return
        try:
            owner = self.bot.get_user(self.owner_id) or await self.bot.fetch_user(self.owner_id)
            embed = discord.Embed(
                title="✅ Spider League Bot Started",
                description=f"Bot is online and ready in {len(self.bot.guilds)} guild(s)",
                color=0x00ff00,
                timestamp=datetime.now(timezone.utc)
            )
            await owner.send(embed=embed)
            logger.info("Sent startup notification to owner")
        except discord.HTTPException as e:
            logger.error(f"Failed to send startup notification: {e}")
