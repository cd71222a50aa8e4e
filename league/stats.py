"""Read-side statistics over fight history.

All functions are deterministic folds over a list of fights and return
zeroed results for an empty history.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from .config import DOMINANT_MARGIN, LEADERBOARD_MIN_FIGHTS, LEADERBOARD_SIZE, UPSET_SURPRISE
from .models import Fight


@dataclass
class FightRecord:
    """Totals for one user or one spider."""
    total_fights: int = 0
    wins: int = 0
    losses: int = 0
    draws: int = 0
    average_score: float = 0.0

    @property
    def decided(self) -> int:
        return self.wins + self.losses

    @property
    def win_percentage(self) -> float:
        """Share of decided fights won; draws count for neither side."""
        if self.decided == 0:
            return 0.0
        return self.wins / self.decided


@dataclass
class OutcomeStats:
    total_fights: int = 0
    draws: int = 0
    close_fights: int = 0
    average_score_difference: float = 0.0


@dataclass
class LeaderboardEntry:
    user_id: str
    wins: int
    losses: int
    win_percentage: float


@dataclass
class FightAnalysis:
    was_expected: bool
    surprise_factor: float
    key_factors: List[str] = field(default_factory=list)


def _average(values: List[float]) -> float:
    if not values:
        return 0.0
    return sum(values) / len(values)


def user_stats(fights: Iterable[Fight], user_id: str) -> FightRecord:
    record = FightRecord()
    scores = []
    for fight in fights:
        if not fight.involves(user_id):
            continue
        record.total_fights += 1
        if fight.is_draw:
            record.draws += 1
        elif fight.winner_id == user_id:
            record.wins += 1
        else:
            record.losses += 1
        scores.append(fight.score_for(user_id))
    record.average_score = _average(scores)
    return record


def spider_stats(fights: Iterable[Fight], spider_id: str) -> FightRecord:
    record = FightRecord()
    scores = []
    for fight in fights:
        if not fight.involves_spider(spider_id):
            continue
        record.total_fights += 1
        if fight.is_draw:
            record.draws += 1
            scores.append(fight.outcome.winner_score)
        elif fight.winner_spider_id == spider_id:
            record.wins += 1
            scores.append(fight.outcome.winner_score)
        else:
            record.losses += 1
            scores.append(fight.outcome.loser_score)
    record.average_score = _average(scores)
    return record


def outcome_stats(fights: Iterable[Fight]) -> OutcomeStats:
    stats = OutcomeStats()
    differences = []
    for fight in fights:
        stats.total_fights += 1
        if fight.is_draw:
            stats.draws += 1
        else:
            differences.append(fight.score_difference)
        if fight.was_close_fight:
            stats.close_fights += 1
    stats.average_score_difference = _average(differences)
    return stats


def leaderboard(
    fights: Iterable[Fight],
    limit: int = LEADERBOARD_SIZE,
    min_fights: int = LEADERBOARD_MIN_FIGHTS,
) -> List[LeaderboardEntry]:
    """Users ranked by win percentage over decided fights.

    Only users with at least min_fights decided fights qualify. Ties are
    broken by wins, then by user id so the order is stable.
    """
    wins: Dict[str, int] = defaultdict(int)
    losses: Dict[str, int] = defaultdict(int)
    for fight in fights:
        if fight.is_draw:
            continue
        wins[fight.winner_id] += 1
        losses[fight.loser_id] += 1

    entries = []
    for user_id in set(wins) | set(losses):
        decided = wins[user_id] + losses[user_id]
        if decided < min_fights:
            continue
        entries.append(LeaderboardEntry(user_id, wins[user_id], losses[user_id], wins[user_id] / decided))

    entries.sort(key=lambda entry: (-entry.win_percentage, -entry.wins, entry.user_id))
    return entries[:limit]


def analyze_fight(fight: Fight) -> FightAnalysis:
    """Compare a fight's result with its pre-fight odds.

    surprise_factor is 0 for an even matchup and 1 for a completely
    one-sided one; was_expected tells whether the favoured side won.
    """
    probability = fight.outcome.win_probability
    challenger_favoured = probability > 0.5
    was_expected = challenger_favoured == fight.is_challenger_winner
    surprise_factor = abs(probability - 0.5) * 2

    key_factors = []
    if fight.was_close_fight:
        key_factors.append("Close fight - scores were very similar")
    if surprise_factor > UPSET_SURPRISE and not was_expected and not fight.is_draw:
        key_factors.append("Upset victory - unexpected outcome")
    if fight.outcome.margin_of_victory > DOMINANT_MARGIN:
        key_factors.append("Dominant performance - large score difference")
    if fight.is_draw:
        key_factors.append("Perfect tie - identical scores")
    return FightAnalysis(was_expected, surprise_factor, key_factors)


def recent_fights(fights: Iterable[Fight], limit: int = 20, user_id: Optional[str] = None) -> List[Fight]:
    selected = [fight for fight in fights if user_id is None or fight.involves(user_id)]
    selected.sort(key=lambda fight: fight.completed_at, reverse=True)
    return selected[:limit]
