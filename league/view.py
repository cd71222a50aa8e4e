"""View formatting for Spider League displays."""

from typing import Dict, List, Optional

import discord

from .challenges import ChallengeStats, expiring_soon, is_pending
from .models import Challenge, CooldownStatus, Fight, Spider, User, summarize_spiders
from .stats import FightAnalysis, FightRecord, LeaderboardEntry, OutcomeStats
from .timeutils import format_remaining, hours_since, hours_until

LEAGUE_COLOR = 0x8b0000
ERROR_COLOR = 0xff0000
SUCCESS_COLOR = 0x00ff00


def mention(user_id: str) -> str:
    return f"<@{user_id}>"


def short_id(entity_id: str) -> str:
    return entity_id[:8]


def format_error(message: str) -> discord.Embed:
    return discord.Embed(title="❌ Error", description=message, color=ERROR_COLOR)


def format_success(message: str) -> discord.Embed:
    return discord.Embed(title="✅ Done", description=message, color=SUCCESS_COLOR)


def spider_line(spider: Spider, record: Optional[FightRecord] = None, now=None) -> str:
    status = "" if spider.is_active else " (retired)"
    line = f"**{spider.species}** `{short_id(spider.id)}` - deadliness {spider.deadliness_score:.1f}{status}"
    if record is not None and record.total_fights:
        line += f" | {record.wins}W/{record.losses}L/{record.draws}D"
    if now is not None and spider.last_used_in_fight is not None:
        line += f" | fought {hours_since(spider.last_used_in_fight, now):.0f}h ago"
    return line


def format_profile(user: User, record: FightRecord, cooldown: CooldownStatus,
                   challenge_stats: ChallengeStats) -> discord.Embed:
    """Format a player's profile card."""
    embed = discord.Embed(
        title=f"🕷️ {user.fight_name}",
        description=f"{user.town} | {user.status.value}",
        color=LEAGUE_COLOR,
    )
    if user.profile_image_url:
        embed.set_thumbnail(url=user.profile_image_url)

    embed.add_field(
        name="Record",
        value=f"{user.wins}W / {user.losses}L ({user.win_percentage:.0%})",
        inline=True,
    )
    embed.add_field(
        name="Fights",
        value=f"{record.total_fights} fought, {record.draws} drawn\nAvg score {record.average_score:.1f}",
        inline=True,
    )

    if cooldown.can_use_spider:
        cooldown_text = "A spider is ready to fight"
    elif cooldown.time_remaining is not None:
        cooldown_text = f"Next spider ready in {format_remaining(cooldown.time_remaining)}"
    else:
        cooldown_text = "No spider available. Use `/spider_add`"
    embed.add_field(name="Cooldown", value=cooldown_text, inline=False)

    embed.add_field(
        name="Challenges",
        value=(
            f"Sent {challenge_stats.sent} | Received {challenge_stats.received} | "
            f"Pending {challenge_stats.pending}\n"
            f"Accepted {challenge_stats.accepted} | Declined {challenge_stats.declined} | "
            f"Expired {challenge_stats.expired}\n"
            f"Success rate {challenge_stats.success_rate:.0%}"
        ),
        inline=False,
    )
    return embed


def format_spiders(owner_name: str, spiders: List[Spider], records: Dict[str, FightRecord], now) -> discord.Embed:
    embed = discord.Embed(title=f"🕸️ {owner_name}'s spiders", color=LEAGUE_COLOR)
    if not spiders:
        embed.description = "No spiders yet. Use `/spider_add` to register one!"
        return embed

    summary = summarize_spiders(spiders)
    embed.description = "\n".join(spider_line(spider, records.get(spider.id), now) for spider in spiders)
    embed.set_footer(
        text=f"{summary.active_spiders}/{summary.total_spiders} active | "
             f"average deadliness {summary.average_deadliness:.1f}"
    )
    return embed


def format_spider_registered(spider: Spider) -> discord.Embed:
    embed = discord.Embed(
        title="🕷️ Spider registered",
        description=spider_line(spider),
        color=SUCCESS_COLOR,
    )
    embed.set_image(url=spider.image_url)
    embed.add_field(
        name="Photo",
        value=f"{spider.image_metadata.width}x{spider.image_metadata.height}, "
              f"{spider.image_metadata.size_mb:.2f} MB",
        inline=True,
    )
    return embed


def challenge_line(challenge: Challenge, now) -> str:
    line = (
        f"`{short_id(challenge.id)}` {mention(challenge.challenger_id)} ➜ {mention(challenge.challenged_id)} "
        f"- {challenge.status.value}"
    )
    if is_pending(challenge, now):
        line += f" ({hours_until(challenge.expires_at, now):.1f}h left)"
    if challenge.message:
        line += f"\n> {challenge.message}"
    return line


def format_challenges(received: List[Challenge], sent: List[Challenge], now) -> discord.Embed:
    """Format a user's open challenges."""
    embed = discord.Embed(title="⚔️ Open challenges", color=LEAGUE_COLOR)
    embed.add_field(
        name=f"Received ({len(received)})",
        value="\n".join(challenge_line(c, now) for c in received) or "None",
        inline=False,
    )
    embed.add_field(
        name=f"Sent ({len(sent)})",
        value="\n".join(challenge_line(c, now) for c in sent) or "None",
        inline=False,
    )
    soon = expiring_soon(received + sent, now)
    if soon:
        embed.add_field(
            name="⏳ Expiring soon",
            value="\n".join(
                f"`{short_id(c.id)}` in {format_remaining(c.time_until_expiry(now))}" for c in soon
            ),
            inline=False,
        )
    return embed


def format_challenge_received(challenge: Challenge, challenger: User) -> discord.Embed:
    embed = discord.Embed(
        title="⚔️ You have been challenged!",
        description=f"**{challenger.fight_name}** from {challenger.town} wants to fight.",
        color=LEAGUE_COLOR,
    )
    if challenge.message:
        embed.add_field(name="Message", value=challenge.message, inline=False)
    embed.add_field(
        name="Respond",
        value=f"`/accept {short_id(challenge.id)}` or `/decline {short_id(challenge.id)}` within 24 hours.",
        inline=False,
    )
    return embed


def format_challenge_update(challenge: Challenge) -> discord.Embed:
    """DM sent to a challenger when their challenge leaves pending."""
    descriptions = {
        "Accepted": f"{mention(challenge.challenged_id)} accepted your challenge!",
        "Declined": f"{mention(challenge.challenged_id)} declined your challenge.",
        "Expired": f"Your challenge to {mention(challenge.challenged_id)} expired unanswered.",
    }
    return discord.Embed(
        title=f"⚔️ Challenge {challenge.status.value.lower()}",
        description=descriptions.get(challenge.status.value, challenge.status.value),
        color=LEAGUE_COLOR,
    )


def format_fight(fight: Fight, analysis: Optional[FightAnalysis] = None) -> discord.Embed:
    if fight.is_draw:
        description = (f"{mention(fight.challenger_id)} and {mention(fight.challenged_id)} fought to a draw "
                       f"at {fight.outcome.winner_score:.1f}.")
    else:
        description = (f"{mention(fight.winner_id)} defeated {mention(fight.loser_id)} "
                       f"{fight.outcome.winner_score:.1f} to {fight.outcome.loser_score:.1f}.")
    embed = discord.Embed(title="🏆 Fight result", description=description, color=0xffd700)
    embed.add_field(
        name="Odds",
        value=f"Challenger had a {fight.outcome.win_probability:.0%} chance",
        inline=True,
    )
    if not fight.is_draw:
        embed.add_field(
            name="Margin",
            value=f"{fight.outcome.margin_of_victory:.1f} ({fight.outcome.victory_percentage:.0f}% of points)",
            inline=True,
        )
    if analysis and analysis.key_factors:
        embed.add_field(name="Key factors", value="\n".join(analysis.key_factors), inline=False)
    return embed


def format_fight_history(fights: List[Fight], outcomes: OutcomeStats,
                         user_id: Optional[str] = None) -> discord.Embed:
    embed = discord.Embed(title="📜 Recent fights", color=LEAGUE_COLOR)
    if not fights:
        embed.description = "No fights yet."
        return embed
    embed.set_footer(
        text=f"{outcomes.total_fights} fights | {outcomes.draws} draws | {outcomes.close_fights} close | "
             f"average margin {outcomes.average_score_difference:.1f}"
    )

    lines = []
    for fight in fights:
        stamp = discord.utils.format_dt(fight.completed_at, style="R")
        if fight.is_draw:
            result = "Draw"
        elif user_id is not None:
            result = "Won" if fight.winner_id == user_id else "Lost"
        else:
            result = f"{mention(fight.winner_id)} won"
        close = " (close)" if fight.was_close_fight and not fight.is_draw else ""
        lines.append(
            f"{stamp} {mention(fight.challenger_id)} vs {mention(fight.challenged_id)}: "
            f"**{result}**{close} {fight.outcome.winner_score:.1f}-{fight.outcome.loser_score:.1f}"
        )
    embed.description = "\n".join(lines)
    return embed


def format_leaderboard(entries: List[LeaderboardEntry], names: dict) -> discord.Embed:
    """Format the leaderboard display."""
    embed = discord.Embed(title="🕷️ Spider League Leaderboard", color=LEAGUE_COLOR)
    if not entries:
        embed.description = "Nobody has fought three decided fights yet. Get challenging!"
        return embed

    medals = {1: "🥇", 2: "🥈", 3: "🥉"}
    lines = []
    for rank, entry in enumerate(entries, start=1):
        name = names.get(entry.user_id) or mention(entry.user_id)
        lines.append(
            f"{medals.get(rank, f'{rank}.')} **{name}** - {entry.wins}W/{entry.losses}L "
            f"({entry.win_percentage:.0%})"
        )
    embed.description = "\n".join(lines)
    embed.set_footer(text="Minimum three decided fights to qualify. Draws do not count.")
    return embed


def format_opponents(users: List[User], town: Optional[str] = None) -> discord.Embed:
    title = f"🎯 Ready to fight in {town}" if town else "🎯 Ready to fight"
    embed = discord.Embed(title=title, color=LEAGUE_COLOR)
    if not users:
        embed.description = "Nobody is ready right now."
        return embed
    embed.description = "\n".join(
        f"{mention(user.id)} **{user.fight_name}** ({user.town}) - {user.wins}W/{user.losses}L"
        for user in users[:25]
    )
    return embed
