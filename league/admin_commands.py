"""Admin commands for league management."""

import logging
import os

import discord
from discord import app_commands
from discord.ext import commands

from . import view
from .errors import LeagueError
from .logic import LeagueLogic
from .repositories import SettingsRepository

logger = logging.getLogger(__name__)


class AdminCommands(commands.Cog):
    """Admin-only commands for management."""

    def __init__(self, bot: commands.Bot, league: LeagueLogic, settings: SettingsRepository):
        self.bot = bot
        self.league = league
        self.settings = settings
        self.owner_id = int(os.getenv('BOT_OWNER_ID', '0'))

    def is_owner(self, user_id: int) -> bool:
        """Check if user is the bot owner."""
        if user_id == self.owner_id:
            return True
        application = self.bot.application
        return bool(application and application.owner and application.owner.id == user_id)

    @app_commands.command(name="admin_setchannel", description="[ADMIN] Set the channel for league announcements")
    @app_commands.describe(channel="The channel where fights and new challenges are announced")
    async def set_channel(self, interaction: discord.Interaction, channel: discord.TextChannel):
        """Set the channel for public league messages."""
        if not interaction.user.guild_permissions.administrator and not self.is_owner(interaction.user.id):
            await interaction.response.send_message("❌ Only server administrators can set the league channel.", ephemeral=True)
            return

        if not channel.permissions_for(interaction.guild.me).send_messages:
            await interaction.response.send_message(f"❌ I don't have permission to send messages in {channel.mention}.", ephemeral=True)
            return

        await self.settings.set_channel(str(interaction.guild_id), channel.id)
        embed = discord.Embed(
            title="✅ Channel Set Successfully",
            description=f"League announcements will now be sent to {channel.mention}",
            color=view.SUCCESS_COLOR
        )
        await interaction.response.send_message(embed=embed, ephemeral=True)

        try:
            await channel.send(embed=discord.Embed(
                title="🕷️ Spider League Channel Configured",
                description="Fight results and challenges will be announced here!",
                color=view.LEAGUE_COLOR
            ))
        except discord.HTTPException as e:
            await interaction.followup.send(f"⚠️ Channel set but failed to send test message: {e}", ephemeral=True)

    @app_commands.command(name="admin_sweep", description="[ADMIN] Expire overdue challenges now")
    async def sweep(self, interaction: discord.Interaction):
        if not self.is_owner(interaction.user.id):
            await interaction.response.send_message("❌ This command is restricted to bot owners.", ephemeral=True)
            return

        try:
            result = await self.league.expire_challenges()
        except LeagueError as e:
            await interaction.response.send_message(embed=view.format_error(e.display), ephemeral=True)
            return
        await interaction.response.send_message(embed=view.format_success(result.message), ephemeral=True)

    @app_commands.command(name="admin_deactivate_spider", description="[ADMIN] Retire any player's spider")
    @app_commands.describe(spider_id="Full id of the spider to retire")
    async def deactivate_spider(self, interaction: discord.Interaction, spider_id: str):
        if not self.is_owner(interaction.user.id):
            await interaction.response.send_message("❌ This command is restricted to bot owners.", ephemeral=True)
            return

        try:
            result = await self.league.deactivate_spider(str(interaction.user.id), spider_id, as_admin=True)
        except LeagueError as e:
            await interaction.response.send_message(embed=view.format_error(e.display), ephemeral=True)
            return
        logger.info(f"Owner {interaction.user.id} retired spider {spider_id} of user {result.spider.user_id}")
        await interaction.response.send_message(
            embed=view.format_success(f"Retired spider `{spider_id}` of {view.mention(result.spider.user_id)}."),
            ephemeral=True,
        )


async def setup(bot: commands.Bot):
    """Setup function to add the admin cog to the bot."""
    await bot.add_cog(AdminCommands(bot, bot.league, bot.settings))
