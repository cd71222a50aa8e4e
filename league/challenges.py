"""Challenge lifecycle: pending -> accepted, declined or expired.

Transitions return a new Challenge and never mutate their argument. Every
state other than pending is terminal.
"""

import datetime
import uuid
from dataclasses import dataclass, replace
from typing import Iterable, List, Optional

from .config import CHALLENGE_TTL_HOURS, EXPIRING_SOON_HOURS
from .errors import InvalidTransition
from .models import Challenge, ChallengeStatus
from .timeutils import hours


def new_challenge(
    challenger_id: str,
    challenged_id: str,
    challenger_spider_id: str,
    now: datetime.datetime,
    message: Optional[str] = None,
    challenge_id: Optional[str] = None,
) -> Challenge:
    """Create a pending challenge that expires CHALLENGE_TTL_HOURS after now."""
    return Challenge(
        id=challenge_id or str(uuid.uuid4()),
        challenger_id=challenger_id,
        challenged_id=challenged_id,
        challenger_spider_id=challenger_spider_id,
        created_at=now,
        expires_at=now + hours(CHALLENGE_TTL_HOURS),
        message=message.strip() if message and message.strip() else None,
    )


def is_expired(challenge: Challenge, now: datetime.datetime) -> bool:
    return now > challenge.expires_at


def _open(challenge: Challenge, now: datetime.datetime) -> bool:
    return challenge.status is ChallengeStatus.PENDING and now < challenge.expires_at


def is_pending(challenge: Challenge, now: datetime.datetime) -> bool:
    """Pending and not yet past its expiry."""
    return challenge.status is ChallengeStatus.PENDING and not is_expired(challenge, now)


def can_be_accepted(challenge: Challenge, now: datetime.datetime) -> bool:
    return _open(challenge, now)


def can_be_declined(challenge: Challenge, now: datetime.datetime) -> bool:
    return _open(challenge, now)


def accept(challenge: Challenge, challenged_spider_id: str, now: datetime.datetime) -> Challenge:
    if challenge.status is not ChallengeStatus.PENDING:
        raise InvalidTransition(f"Challenge is already {challenge.status.value.lower()}")
    if now >= challenge.expires_at:
        raise InvalidTransition("Challenge has expired")
    return replace(
        challenge,
        status=ChallengeStatus.ACCEPTED,
        challenged_spider_id=challenged_spider_id,
        accepted_at=now,
    )


def decline(challenge: Challenge, now: datetime.datetime) -> Challenge:
    if challenge.status is not ChallengeStatus.PENDING:
        raise InvalidTransition(f"Challenge is already {challenge.status.value.lower()}")
    if now >= challenge.expires_at:
        raise InvalidTransition("Challenge has expired")
    return replace(challenge, status=ChallengeStatus.DECLINED, declined_at=now)


def expire(challenge: Challenge, now: datetime.datetime) -> Challenge:
    """Expire a pending challenge whose time is up.

    Expiring an already expired challenge returns it unchanged.
    """
    if challenge.status is ChallengeStatus.EXPIRED:
        return challenge
    if challenge.status is not ChallengeStatus.PENDING:
        raise InvalidTransition(f"Challenge is already {challenge.status.value.lower()}")
    if now < challenge.expires_at:
        raise InvalidTransition("Challenge has not expired yet")
    return replace(challenge, status=ChallengeStatus.EXPIRED)


def due_for_expiry(challenge: Challenge, now: datetime.datetime) -> bool:
    return challenge.status is ChallengeStatus.PENDING and now >= challenge.expires_at


def sweep_expired(challenges: Iterable[Challenge], now: datetime.datetime) -> List[Challenge]:
    """Expired copies of every pending challenge whose time is up."""
    return [expire(challenge, now) for challenge in challenges if due_for_expiry(challenge, now)]


def expiring_soon(
    challenges: Iterable[Challenge],
    now: datetime.datetime,
    within_hours: float = EXPIRING_SOON_HOURS,
) -> List[Challenge]:
    threshold = now + hours(within_hours)
    return [
        challenge for challenge in challenges
        if challenge.status is ChallengeStatus.PENDING and now < challenge.expires_at <= threshold
    ]


@dataclass
class ChallengeStats:
    total: int = 0
    sent: int = 0
    received: int = 0
    pending: int = 0
    accepted: int = 0
    declined: int = 0
    expired: int = 0
    sent_accepted: int = 0

    @property
    def success_rate(self) -> float:
        """Share of sent challenges that were accepted."""
        if self.sent == 0:
            return 0.0
        return self.sent_accepted / self.sent


def summarize(challenges: Iterable[Challenge], user_id: str) -> ChallengeStats:
    stats = ChallengeStats()
    for challenge in challenges:
        if not challenge.involves(user_id):
            continue
        stats.total += 1
        if challenge.challenger_id == user_id:
            stats.sent += 1
        else:
            stats.received += 1
        if challenge.status is ChallengeStatus.PENDING:
            stats.pending += 1
        elif challenge.status is ChallengeStatus.ACCEPTED:
            stats.accepted += 1
            if challenge.challenger_id == user_id:
                stats.sent_accepted += 1
        elif challenge.status is ChallengeStatus.DECLINED:
            stats.declined += 1
        else:
            stats.expired += 1
    return stats
