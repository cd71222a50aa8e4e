"""Discord slash commands for Spider League."""

import logging
from typing import List, Optional

import discord
from discord import app_commands
from discord.ext import commands

from . import view
from .challenges import can_be_accepted
from .errors import InvalidData, LeagueError
from .logic import LeagueLogic
from .models import ActionResult, ImageMetadata
from .notifications import NotificationManager

logger = logging.getLogger(__name__)


class SpiderLeagueCommands(commands.Cog):
    """Cog containing all Spider League slash commands."""

    def __init__(self, bot: commands.Bot, league: LeagueLogic, notifications: NotificationManager):
        self.bot = bot
        self.league = league
        self.notifications = notifications

    async def _fail(self, interaction: discord.Interaction, error: LeagueError):
        logger.debug(f"Rejected /{interaction.command.name if interaction.command else '?'} "
                     f"from {interaction.user.id}: {error.message}")
        embed = view.format_error(error.display)
        if interaction.response.is_done():
            await interaction.followup.send(embed=embed, ephemeral=True)
        else:
            await interaction.response.send_message(embed=embed, ephemeral=True)

    async def _announce(self, interaction: discord.Interaction, result: ActionResult):
        if result.public_message:
            await self.notifications.send_public_message(interaction, content=result.public_message)

    async def _resolve_challenge(self, user_id: str, value: str, sent: bool) -> str:
        """Expand a short challenge id typed by the user to the full id."""
        open_challenges = await self.league.open_challenges(user_id)
        candidates = open_challenges["sent" if sent else "received"]
        matches = [c.id for c in candidates if c.id == value or c.id.startswith(value)]
        if len(matches) != 1:
            raise InvalidData(f"No single open challenge matches `{value}`.")
        return matches[0]

    async def _resolve_spider(self, user_id: str, value: str) -> str:
        spiders = await self.league.user_spiders(user_id)
        matches = [s.id for s in spiders if s.id == value or s.id.startswith(value)]
        if len(matches) != 1:
            raise InvalidData(f"No single spider of yours matches `{value}`.")
        return matches[0]

    # Autocomplete

    async def spider_autocomplete(self, interaction: discord.Interaction,
                                  current: str) -> List[app_commands.Choice[str]]:
        spiders = await self.league.available_spiders(str(interaction.user.id))
        return [
            app_commands.Choice(name=f"{s.species} ({s.deadliness_score:.1f})", value=s.id)
            for s in spiders
            if current.lower() in s.species.lower() or s.id.startswith(current)
        ][:25]

    async def received_autocomplete(self, interaction: discord.Interaction,
                                    current: str) -> List[app_commands.Choice[str]]:
        challenges = (await self.league.open_challenges(str(interaction.user.id)))["received"]
        now = self.league.clock()
        return [
            app_commands.Choice(name=f"{view.short_id(c.id)} from {c.challenger_id}", value=c.id)
            for c in challenges if c.id.startswith(current) and can_be_accepted(c, now)
        ][:25]

    async def sent_autocomplete(self, interaction: discord.Interaction,
                                current: str) -> List[app_commands.Choice[str]]:
        challenges = (await self.league.open_challenges(str(interaction.user.id)))["sent"]
        return [
            app_commands.Choice(name=f"{view.short_id(c.id)} to {c.challenged_id}", value=c.id)
            for c in challenges if c.id.startswith(current)
        ][:25]

    # Players

    @app_commands.command(name="register", description="Join the Spider League")
    @app_commands.describe(fight_name="Your fighter name", town="Your home town")
    async def register(self, interaction: discord.Interaction, fight_name: str, town: str):
        """Register as a player."""
        try:
            result = await self.league.register_user(str(interaction.user.id), fight_name, town)
        except LeagueError as e:
            await self._fail(interaction, e)
            return
        await interaction.response.send_message(result.message, ephemeral=True)
        await self._announce(interaction, result)

    @app_commands.command(name="ready", description="Set whether you are ready to be challenged")
    @app_commands.describe(ready="True to accept challenges, False to stop")
    async def ready(self, interaction: discord.Interaction, ready: bool):
        try:
            result = await self.league.set_ready(str(interaction.user.id), ready)
        except LeagueError as e:
            await self._fail(interaction, e)
            return
        await interaction.response.send_message(result.message, ephemeral=True)

    @app_commands.command(name="profile", description="Show a player's profile")
    @app_commands.describe(member="The player to show (defaults to you)")
    async def profile(self, interaction: discord.Interaction, member: Optional[discord.Member] = None):
        user_id = str((member or interaction.user).id)
        try:
            user = await self.league.users.require(user_id)
            record = await self.league.user_stats(user_id)
            cooldown = await self.league.cooldown_status(user_id)
            challenge_stats = await self.league.challenge_stats(user_id)
        except LeagueError as e:
            await self._fail(interaction, e)
            return
        embed = view.format_profile(user, record, cooldown, challenge_stats)
        await interaction.response.send_message(embed=embed, ephemeral=member is None)

    @app_commands.command(name="opponents", description="List players who are ready to fight")
    @app_commands.describe(town="Only show players from this town")
    async def opponents(self, interaction: discord.Interaction, town: Optional[str] = None):
        users = await self.league.ready_opponents(str(interaction.user.id), town)
        await interaction.response.send_message(embed=view.format_opponents(users, town), ephemeral=True)

    # Spiders

    @app_commands.command(name="spider_add", description="Register a spider from a photo")
    @app_commands.describe(
        photo="A JPEG photo of your spider",
        species="The spider's species",
        deadliness="Deadliness score from 0 to 100",
        confidence="How sure you are of the species, 0 to 1",
    )
    async def spider_add(self, interaction: discord.Interaction, photo: discord.Attachment,
                         species: str, deadliness: app_commands.Range[float, 0.0, 100.0],
                         confidence: app_commands.Range[float, 0.0, 1.0] = 1.0):
        """Upload a photo and register a spider."""
        await interaction.response.defer(ephemeral=True)
        if photo.content_type and not photo.content_type.startswith("image/"):
            await self._fail(interaction, InvalidData("The attachment must be an image."))
            return

        metadata = ImageMetadata(
            width=photo.width or 0,
            height=photo.height or 0,
            file_size=photo.size,
        )
        try:
            data = await photo.read()
            result = await self.league.register_spider(
                str(interaction.user.id), data, metadata, species, confidence, deadliness
            )
        except LeagueError as e:
            await self._fail(interaction, e)
            return
        await interaction.followup.send(embed=view.format_spider_registered(result.spider), ephemeral=True)

    @app_commands.command(name="spiders", description="List a player's spiders")
    @app_commands.describe(member="Whose spiders to show (defaults to you)")
    async def spiders(self, interaction: discord.Interaction, member: Optional[discord.Member] = None):
        target = member or interaction.user
        spiders = await self.league.user_spiders(str(target.id))
        records = {spider.id: await self.league.spider_stats(spider.id) for spider in spiders}
        embed = view.format_spiders(target.display_name, spiders, records, self.league.clock())
        await interaction.response.send_message(embed=embed, ephemeral=member is None)

    # Challenges

    @app_commands.command(name="challenge", description="Challenge another player")
    @app_commands.describe(
        opponent="The player to challenge",
        spider="The spider you send into the fight",
        message="Optional trash talk",
    )
    @app_commands.autocomplete(spider=spider_autocomplete)
    async def challenge(self, interaction: discord.Interaction, opponent: discord.Member,
                        spider: str, message: Optional[str] = None):
        """Send a challenge."""
        challenger_id = str(interaction.user.id)
        try:
            spider_id = await self._resolve_spider(challenger_id, spider)
            result = await self.league.send_challenge(challenger_id, str(opponent.id), spider_id, message)
            challenger = await self.league.users.require(challenger_id)
        except LeagueError as e:
            await self._fail(interaction, e)
            return

        await interaction.response.send_message(result.message, ephemeral=True)
        await self._announce(interaction, result)
        await self.notifications.send_dm(
            str(opponent.id), view.format_challenge_received(result.challenge, challenger)
        )

    @app_commands.command(name="accept", description="Accept a challenge and fight")
    @app_commands.describe(challenge="The challenge to accept", spider="The spider you fight with")
    @app_commands.autocomplete(challenge=received_autocomplete, spider=spider_autocomplete)
    async def accept(self, interaction: discord.Interaction, challenge: str, spider: str):
        """Accept a challenge; the fight is resolved immediately."""
        await interaction.response.defer(ephemeral=True)
        user_id = str(interaction.user.id)
        try:
            challenge_id = await self._resolve_challenge(user_id, challenge, sent=False)
            spider_id = await self._resolve_spider(user_id, spider)
            result = await self.league.fight_for_challenge(user_id, challenge_id, spider_id)
            analysis = await self.league.analyze(result.fight.id)
        except LeagueError as e:
            await self._fail(interaction, e)
            return

        embed = view.format_fight(result.fight, analysis)
        await interaction.followup.send(result.message, embed=embed, ephemeral=True)
        await self.notifications.send_public_message(interaction, content=result.public_message, embed=embed)

    @app_commands.command(name="decline", description="Decline a challenge")
    @app_commands.describe(challenge="The challenge to decline")
    @app_commands.autocomplete(challenge=received_autocomplete)
    async def decline(self, interaction: discord.Interaction, challenge: str):
        user_id = str(interaction.user.id)
        try:
            challenge_id = await self._resolve_challenge(user_id, challenge, sent=False)
            result = await self.league.decline_challenge(user_id, challenge_id)
        except LeagueError as e:
            await self._fail(interaction, e)
            return
        await interaction.response.send_message(result.message, ephemeral=True)

    @app_commands.command(name="cancel", description="Withdraw a challenge you sent")
    @app_commands.describe(challenge="The challenge to withdraw")
    @app_commands.autocomplete(challenge=sent_autocomplete)
    async def cancel(self, interaction: discord.Interaction, challenge: str):
        user_id = str(interaction.user.id)
        try:
            challenge_id = await self._resolve_challenge(user_id, challenge, sent=True)
            result = await self.league.cancel_challenge(user_id, challenge_id)
        except LeagueError as e:
            await self._fail(interaction, e)
            return
        await interaction.response.send_message(result.message, ephemeral=True)

    @app_commands.command(name="challenges", description="Show your open challenges")
    async def challenges(self, interaction: discord.Interaction):
        open_challenges = await self.league.open_challenges(str(interaction.user.id))
        embed = view.format_challenges(open_challenges["received"], open_challenges["sent"], self.league.clock())
        await interaction.response.send_message(embed=embed, ephemeral=True)

    # Standings

    @app_commands.command(name="leaderboard", description="Show the Spider League leaderboard")
    async def leaderboard(self, interaction: discord.Interaction):
        entries = await self.league.leaderboard()
        names = {}
        for entry in entries:
            user = await self.league.users.get(entry.user_id)
            if user:
                names[entry.user_id] = user.fight_name
        await interaction.response.send_message(embed=view.format_leaderboard(entries, names))

    @app_commands.command(name="fights", description="Show recent fights")
    @app_commands.describe(member="Only show fights of this player")
    async def fights(self, interaction: discord.Interaction, member: Optional[discord.Member] = None):
        user_id = str(member.id) if member else None
        fights = await self.league.recent_fights(user_id)
        outcomes = await self.league.outcome_stats(user_id)
        await interaction.response.send_message(embed=view.format_fight_history(fights, outcomes, user_id))


async def setup(bot: commands.Bot):
    """Setup function to add the cog to the bot."""
    await bot.add_cog(SpiderLeagueCommands(bot, bot.league, bot.notifications))
