"""Cooldown and eligibility rules for spiders and challenges.

Everything here is pure: callers pass in the entities and the current
instant, nothing touches the store.
"""

import datetime
from typing import Iterable, List, Optional

from .challenges import can_be_accepted
from .config import MIN_DEADLINESS, MAX_DEADLINESS
from .errors import InvalidData
from .models import Challenge, CooldownStatus, Eligibility, Spider, User

SELF_CHALLENGE = "cannot challenge yourself"
PENDING_EXISTS = "pending challenge exists"


def spider_eligible(spider: Spider, now: datetime.datetime) -> bool:
    """A spider may fight when active and at least a full cooldown past its last fight."""
    return spider.can_be_used_in_fight(now)


def available_spiders(spiders: Iterable[Spider], now: datetime.datetime) -> List[Spider]:
    return [spider for spider in spiders if spider_eligible(spider, now)]


def has_available_spider(spiders: Iterable[Spider], now: datetime.datetime) -> bool:
    return any(spider_eligible(spider, now) for spider in spiders)


def next_available_time(spiders: Iterable[Spider], now: datetime.datetime) -> Optional[datetime.datetime]:
    """Cooldown end of the most recently used spider, None if none has fought.

    ``now`` is accepted for symmetry with the other rules; the result is an
    absolute instant and may already be in the past.
    """
    ends = [spider.available_at() for spider in spiders if spider.last_used_in_fight is not None]
    if not ends:
        return None
    return max(ends)


def cooldown_status(spiders: List[Spider], now: datetime.datetime) -> CooldownStatus:
    """Whether the user can field a spider right now, and if not, when."""
    if has_available_spider(spiders, now):
        return CooldownStatus(True, None, None)
    next_time = next_available_time(spiders, now)
    if next_time is None:
        # No spiders fought and none is eligible: all inactive or none registered.
        return CooldownStatus(False, None, None)
    return CooldownStatus(False, next_time, max(next_time - now, datetime.timedelta(0)))


def has_pending_between(
    challenger_id: str,
    challenged_id: str,
    challenges: Iterable[Challenge],
    now: datetime.datetime,
) -> bool:
    """True when a pending challenge the ordered pair could still answer exists.

    A challenge stops blocking at its expiry instant, the same moment it can
    no longer be accepted or declined.
    """
    return any(
        challenge.challenger_id == challenger_id
        and challenge.challenged_id == challenged_id
        and can_be_accepted(challenge, now)
        for challenge in challenges
    )


def can_challenge(
    challenger_id: str,
    challenged_id: str,
    existing_challenges: Iterable[Challenge],
    now: datetime.datetime,
) -> Eligibility:
    """Check whether a new challenge may be created between two users."""
    if challenger_id == challenged_id:
        return Eligibility(False, SELF_CHALLENGE)
    if has_pending_between(challenger_id, challenged_id, existing_challenges, now):
        return Eligibility(False, PENDING_EXISTS)
    return Eligibility(True)


def validate_deadliness(score: float):
    if not MIN_DEADLINESS <= score <= MAX_DEADLINESS:
        raise InvalidData(
            f"Deadliness score must be between {MIN_DEADLINESS:g} and {MAX_DEADLINESS:g}"
        )


def validate_spider_for(spider: Spider, owner_id: str, now: datetime.datetime):
    """Raise InvalidData unless the spider belongs to owner_id and is off cooldown."""
    if spider.user_id != owner_id:
        raise InvalidData(f"Spider {spider.id} does not belong to this user")
    if not spider.is_active:
        raise InvalidData(f"Spider {spider.id} is not active")
    if not spider_eligible(spider, now):
        raise InvalidData(f"Spider {spider.id} is still on cooldown")


def validate_challenge_request(
    challenger: User,
    challenged: User,
    challenger_spider: Spider,
    existing_challenges: Iterable[Challenge],
    now: datetime.datetime,
):
    """Full pre-creation check for a challenge, raising InvalidData on failure."""
    eligibility = can_challenge(challenger.id, challenged.id, existing_challenges, now)
    if not eligibility.allowed:
        raise InvalidData(eligibility.reason)
    if not challenged.is_ready_to_fight:
        raise InvalidData(f"{challenged.fight_name} is not ready to fight")
    validate_spider_for(challenger_spider, challenger.id, now)
