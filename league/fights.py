"""Fight resolution for accepted challenges.

The higher score wins and exactly equal scores are a draw. The win
probability is recorded alongside the result but never decides it.
"""

import datetime
import math
import uuid
from abc import ABC, abstractmethod
from typing import Dict, Optional

from .config import WIN_PROBABILITY_SCALE
from .errors import InvalidData, InvalidTransition
from .models import Challenge, ChallengeStatus, Fight, FightOutcome, Spider, SpiderUpdate, User, UserUpdate
from .rules import validate_spider_for


class WinProbability(ABC):
    """Strategy mapping two deadliness scores to the challenger's odds."""

    name = "base"

    @abstractmethod
    def probability(self, challenger_score: float, challenged_score: float) -> float:
        """Return a probability in [0, 1], increasing in challenger_score."""


class LogisticWinProbability(WinProbability):
    """Logistic curve on the deadliness difference."""

    name = "logistic"

    def __init__(self, scale: float = WIN_PROBABILITY_SCALE):
        if scale <= 0:
            raise ValueError("scale must be positive")
        self.scale = scale

    def probability(self, challenger_score: float, challenged_score: float) -> float:
        exponent = (challenged_score - challenger_score) / self.scale
        # Clamp to keep math.exp in range for absurd inputs.
        exponent = max(-700.0, min(700.0, exponent))
        return 1.0 / (1.0 + math.exp(exponent))


DEFAULT_STRATEGY = LogisticWinProbability()


def _check_participants(challenge: Challenge, challenger_spider: Spider, challenged_spider: Spider):
    if challenge.status is not ChallengeStatus.ACCEPTED:
        raise InvalidTransition("Only accepted challenges can be fought")
    if challenger_spider.id != challenge.challenger_spider_id:
        raise InvalidData("Challenger spider does not match the challenge")
    if challenged_spider.id != challenge.challenged_spider_id:
        raise InvalidData("Challenged spider does not match the challenge")
    if challenger_spider.id == challenged_spider.id:
        raise InvalidData("A spider cannot fight itself")


def resolve(
    challenge: Challenge,
    challenger_spider: Spider,
    challenged_spider: Spider,
    challenger_score: float,
    challenged_score: float,
    now: datetime.datetime,
    strategy: Optional[WinProbability] = None,
    fight_id: Optional[str] = None,
) -> Fight:
    """Build the fight record for an accepted challenge.

    Raises InvalidTransition if the challenge is not accepted and InvalidData
    if the spiders do not match the challenge or are still on cooldown.
    """
    _check_participants(challenge, challenger_spider, challenged_spider)
    validate_spider_for(challenger_spider, challenge.challenger_id, now)
    validate_spider_for(challenged_spider, challenge.challenged_id, now)

    strategy = strategy or DEFAULT_STRATEGY
    win_probability = strategy.probability(
        challenger_spider.deadliness_score, challenged_spider.deadliness_score
    )
    outcome = FightOutcome(
        winner_score=max(challenger_score, challenged_score),
        loser_score=min(challenger_score, challenged_score),
        win_probability=win_probability,
        modifiers={
            "challengerDeadliness": challenger_spider.deadliness_score,
            "challengedDeadliness": challenged_spider.deadliness_score,
            "probabilityModel": strategy.name,
        },
    )

    sides = {
        "winner_id": "", "loser_id": "",
        "winner_spider_id": "", "loser_spider_id": "",
    }
    if challenger_score > challenged_score:
        sides = {
            "winner_id": challenge.challenger_id, "loser_id": challenge.challenged_id,
            "winner_spider_id": challenger_spider.id, "loser_spider_id": challenged_spider.id,
        }
    elif challenged_score > challenger_score:
        sides = {
            "winner_id": challenge.challenged_id, "loser_id": challenge.challenger_id,
            "winner_spider_id": challenged_spider.id, "loser_spider_id": challenger_spider.id,
        }

    return Fight(
        id=fight_id or str(uuid.uuid4()),
        challenge_id=challenge.id,
        challenger_id=challenge.challenger_id,
        challenged_id=challenge.challenged_id,
        challenger_spider_id=challenger_spider.id,
        challenged_spider_id=challenged_spider.id,
        outcome=outcome,
        completed_at=now,
        is_draw=outcome.is_draw,
        **sides,
    )


def spider_updates(fight: Fight) -> Dict[str, SpiderUpdate]:
    """Cooldown stamps for both spiders, keyed by spider id."""
    stamp = SpiderUpdate(last_used_in_fight=fight.completed_at)
    return {
        fight.challenger_spider_id: stamp,
        fight.challenged_spider_id: stamp,
    }


def record_updates(fight: Fight, challenger: User, challenged: User) -> Dict[str, UserUpdate]:
    """Win/loss counter changes for both users, keyed by user id.

    A draw leaves the counters alone and only refreshes last_active.
    """
    updates = {}
    for user in (challenger, challenged):
        update = UserUpdate(last_active=fight.completed_at)
        if user.id == fight.winner_id:
            update.wins = user.wins + 1
        elif user.id == fight.loser_id:
            update.losses = user.losses + 1
        updates[user.id] = update
    return updates
