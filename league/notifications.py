"""Notification system for Spider League."""

import logging
from typing import Optional

import discord

from .repositories import SettingsRepository

logger = logging.getLogger(__name__)


class NotificationManager:
    """Handles the public announcement channel and DM notifications."""

    def __init__(self, bot, settings: SettingsRepository):
        self.bot = bot
        self.settings = settings

    async def public_channel(self, interaction: discord.Interaction):
        """The configured announcement channel, falling back to the interaction's channel."""
        if interaction.guild_id:
            channel_id = await self.settings.get_channel(str(interaction.guild_id))
            if channel_id:
                channel = self.bot.get_channel(int(channel_id))
                if channel:
                    return channel
                logger.warning(f"Configured channel {channel_id} is not accessible in guild {interaction.guild_id}")
        return interaction.channel

    async def send_public_message(self, interaction: discord.Interaction,
                                  content: Optional[str] = None,
                                  embed: Optional[discord.Embed] = None):
        """Send a public message to the configured channel."""
        channel = await self.public_channel(interaction)
        if channel is None:
            return
        try:
            await channel.send(content=content, embed=embed)
        except discord.HTTPException as e:
            logger.warning(f"Failed to send public message in guild {interaction.guild_id}: {e}")

    async def send_dm(self, user_id: str, embed: discord.Embed) -> bool:
        """DM a user; returns False when they cannot be reached."""
        try:
            user = self.bot.get_user(int(user_id)) or await self.bot.fetch_user(int(user_id))
            await user.send(embed=embed)
            logger.debug(f"Sent DM to user {user_id}")
            return True
        except discord.Forbidden:
            logger.warning(f"Cannot send DM to user {user_id} - DMs disabled")
        except discord.HTTPException as e:
            logger.warning(f"Failed to send DM to user {user_id}: {e}")
        return False
