"""Data models for the Spider League."""

import datetime
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .config import COOLDOWN_HOURS, CLOSE_FIGHT_THRESHOLD, MIN_DEADLINESS, MAX_DEADLINESS
from .errors import InvalidData
from .timeutils import hours, to_timestamp


class UserStatus(str, Enum):
    READY = "Ready to Fight"
    NOT_READY = "Not Ready"


class ChallengeStatus(str, Enum):
    PENDING = "Pending"
    ACCEPTED = "Accepted"
    DECLINED = "Declined"
    EXPIRED = "Expired"

    @property
    def is_active(self) -> bool:
        return self is ChallengeStatus.PENDING

    @property
    def is_completed(self) -> bool:
        return self is not ChallengeStatus.PENDING


@dataclass
class User:
    """A registered league player."""
    id: str
    email: str
    fight_name: str
    town: str
    created_at: datetime.datetime
    last_active: datetime.datetime
    wins: int = 0
    losses: int = 0
    status: UserStatus = UserStatus.NOT_READY
    profile_image_url: Optional[str] = None
    is_email_verified: bool = False

    @property
    def total_fights(self) -> int:
        return self.wins + self.losses

    @property
    def win_percentage(self) -> float:
        """Share of decided fights won, 0 when the user has not fought."""
        if self.total_fights == 0:
            return 0.0
        return self.wins / self.total_fights

    @property
    def is_ready_to_fight(self) -> bool:
        return self.status is UserStatus.READY


@dataclass
class LocationData:
    latitude: float
    longitude: float


@dataclass
class ImageMetadata:
    """Dimensions and provenance of an uploaded spider photo."""
    width: int
    height: int
    file_size: int
    taken_at: Optional[datetime.datetime] = None
    location: Optional[LocationData] = None

    @property
    def size_mb(self) -> float:
        return self.file_size / (1024 * 1024)

    def to_document(self) -> Dict[str, Any]:
        document: Dict[str, Any] = {
            "width": self.width,
            "height": self.height,
            "fileSize": self.file_size,
        }
        if self.taken_at is not None:
            document["takenAt"] = to_timestamp(self.taken_at)
        if self.location is not None:
            document["location"] = {
                "latitude": self.location.latitude,
                "longitude": self.location.longitude,
            }
        return document


@dataclass
class Classification:
    """Species classification attached to a spider at registration."""
    species: str
    confidence: float
    analyzed_at: datetime.datetime

    def to_document(self) -> Dict[str, Any]:
        return {
            "species": self.species,
            "confidence": self.confidence,
            "analysisTimestamp": to_timestamp(self.analyzed_at),
        }


@dataclass
class Spider:
    """A spider owned by exactly one user."""
    id: str
    user_id: str
    species: str
    deadliness_score: float
    image_url: str
    image_metadata: ImageMetadata
    classification: Classification
    created_at: datetime.datetime
    last_used_in_fight: Optional[datetime.datetime] = None
    is_active: bool = True

    def available_at(self) -> Optional[datetime.datetime]:
        """When the cooldown from the last fight ends, None if never used."""
        if self.last_used_in_fight is None:
            return None
        return self.last_used_in_fight + hours(COOLDOWN_HOURS)

    def can_be_used_in_fight(self, now: datetime.datetime) -> bool:
        if not self.is_active:
            return False
        available_at = self.available_at()
        return available_at is None or now >= available_at


@dataclass
class Challenge:
    """A time-boxed proposal from one user's spider to another user."""
    id: str
    challenger_id: str
    challenged_id: str
    challenger_spider_id: str
    created_at: datetime.datetime
    expires_at: datetime.datetime
    status: ChallengeStatus = ChallengeStatus.PENDING
    challenged_spider_id: Optional[str] = None
    accepted_at: Optional[datetime.datetime] = None
    declined_at: Optional[datetime.datetime] = None
    message: Optional[str] = None

    def time_until_expiry(self, now: datetime.datetime) -> datetime.timedelta:
        return self.expires_at - now

    def involves(self, user_id: str) -> bool:
        return user_id in (self.challenger_id, self.challenged_id)


@dataclass(frozen=True)
class FightOutcome:
    """Scores of a fight; win_probability is the challenger's pre-fight odds."""
    winner_score: float
    loser_score: float
    win_probability: float
    modifiers: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_draw(self) -> bool:
        return self.winner_score == self.loser_score

    @property
    def margin_of_victory(self) -> float:
        return self.winner_score - self.loser_score

    @property
    def victory_percentage(self) -> float:
        total = self.winner_score + self.loser_score
        if total <= 0:
            return 0.0
        return self.winner_score / total * 100.0


@dataclass(frozen=True)
class Fight:
    """Immutable result of a resolved challenge."""
    id: str
    challenge_id: str
    challenger_id: str
    challenged_id: str
    challenger_spider_id: str
    challenged_spider_id: str
    winner_id: str
    loser_id: str
    winner_spider_id: str
    loser_spider_id: str
    outcome: FightOutcome
    completed_at: datetime.datetime
    is_draw: bool
    rematch_triggered: bool = False

    @property
    def score_difference(self) -> float:
        return abs(self.outcome.winner_score - self.outcome.loser_score)

    @property
    def was_close_fight(self) -> bool:
        return self.score_difference < CLOSE_FIGHT_THRESHOLD

    @property
    def is_challenger_winner(self) -> bool:
        return not self.is_draw and self.winner_id == self.challenger_id

    @property
    def is_challenged_winner(self) -> bool:
        return not self.is_draw and self.winner_id == self.challenged_id

    def involves(self, user_id: str) -> bool:
        return user_id in (self.challenger_id, self.challenged_id)

    def involves_spider(self, spider_id: str) -> bool:
        return spider_id in (self.challenger_spider_id, self.challenged_spider_id)

    def score_for(self, user_id: str) -> Optional[float]:
        """Score posted by the given participant, None if they did not fight."""
        if self.is_draw and self.involves(user_id):
            return self.outcome.winner_score
        if user_id == self.winner_id:
            return self.outcome.winner_score
        if user_id == self.loser_id:
            return self.outcome.loser_score
        return None


@dataclass
class ActionResult:
    """Result of performing a league action."""
    success: bool
    message: str
    public_message: Optional[str] = None
    challenge: Optional[Challenge] = None
    fight: Optional[Fight] = None
    spider: Optional[Spider] = None
    count: int = 0


# Typed partial updates. Only the repositories turn these into store field maps.

@dataclass
class UserUpdate:
    fight_name: Optional[str] = None
    town: Optional[str] = None
    status: Optional[UserStatus] = None
    wins: Optional[int] = None
    losses: Optional[int] = None
    last_active: Optional[datetime.datetime] = None
    profile_image_url: Optional[str] = None

    def validate(self):
        if self.fight_name is not None and not self.fight_name.strip():
            raise InvalidData("Fight name cannot be empty")
        if self.town is not None and not self.town.strip():
            raise InvalidData("Town cannot be empty")
        for name in ("wins", "losses"):
            value = getattr(self, name)
            if value is not None and value < 0:
                raise InvalidData(f"{name} cannot be negative")

    def to_fields(self) -> Dict[str, Any]:
        self.validate()
        fields = {
            "fightName": self.fight_name.strip() if self.fight_name is not None else None,
            "town": self.town.strip() if self.town is not None else None,
            "status": self.status.value if self.status is not None else None,
            "wins": self.wins,
            "losses": self.losses,
            "lastActive": to_timestamp(self.last_active),
            "profileImageUrl": self.profile_image_url,
        }
        return {key: value for key, value in fields.items() if value is not None}


@dataclass
class SpiderUpdate:
    deadliness_score: Optional[float] = None
    last_used_in_fight: Optional[datetime.datetime] = None
    is_active: Optional[bool] = None
    image_metadata: Optional[ImageMetadata] = None
    classification: Optional[Classification] = None

    def validate(self):
        if self.deadliness_score is not None and not (
            MIN_DEADLINESS <= self.deadliness_score <= MAX_DEADLINESS
        ):
            raise InvalidData(
                f"Deadliness score must be between {MIN_DEADLINESS:g} and {MAX_DEADLINESS:g}"
            )
        if self.classification is not None and not (0.0 <= self.classification.confidence <= 1.0):
            raise InvalidData("Classification confidence must be between 0 and 1")

    def to_fields(self) -> Dict[str, Any]:
        self.validate()
        fields: Dict[str, Any] = {}
        if self.deadliness_score is not None:
            fields["deadlinessScore"] = float(self.deadliness_score)
        if self.last_used_in_fight is not None:
            fields["lastUsedInFight"] = to_timestamp(self.last_used_in_fight)
        if self.is_active is not None:
            fields["isActive"] = self.is_active
        if self.image_metadata is not None:
            fields["imageMetadata"] = self.image_metadata.to_document()
        if self.classification is not None:
            fields["classification"] = self.classification.to_document()
            fields["species"] = self.classification.species
        return fields


@dataclass
class ChallengeUpdate:
    """Status change of a challenge together with its matching timestamp."""
    status: ChallengeStatus
    challenged_spider_id: Optional[str] = None
    accepted_at: Optional[datetime.datetime] = None
    declined_at: Optional[datetime.datetime] = None

    def validate(self):
        if self.status is ChallengeStatus.PENDING:
            raise InvalidData("A challenge cannot be moved back to pending")
        if (self.accepted_at is not None) != (self.status is ChallengeStatus.ACCEPTED):
            raise InvalidData("acceptedAt is set exactly when the challenge is accepted")
        if (self.declined_at is not None) != (self.status is ChallengeStatus.DECLINED):
            raise InvalidData("declinedAt is set exactly when the challenge is declined")
        if self.status is ChallengeStatus.ACCEPTED and not self.challenged_spider_id:
            raise InvalidData("An accepted challenge needs the challenged spider")

    def to_fields(self) -> Dict[str, Any]:
        self.validate()
        fields: Dict[str, Any] = {"status": self.status.value}
        if self.challenged_spider_id is not None:
            fields["challengedSpiderId"] = self.challenged_spider_id
        if self.accepted_at is not None:
            fields["acceptedAt"] = to_timestamp(self.accepted_at)
        if self.declined_at is not None:
            fields["declinedAt"] = to_timestamp(self.declined_at)
        return fields

    @classmethod
    def from_challenge(cls, challenge: Challenge) -> "ChallengeUpdate":
        """Describe the terminal state a transitioned challenge now holds."""
        return cls(
            status=challenge.status,
            challenged_spider_id=challenge.challenged_spider_id,
            accepted_at=challenge.accepted_at,
            declined_at=challenge.declined_at,
        )


@dataclass
class Eligibility:
    allowed: bool
    reason: Optional[str] = None


@dataclass
class CooldownStatus:
    can_use_spider: bool
    next_available_time: Optional[datetime.datetime]
    time_remaining: Optional[datetime.timedelta]


@dataclass
class SpiderSummary:
    total_spiders: int
    active_spiders: int
    average_deadliness: float
    strongest: Optional[Spider] = None


def summarize_spiders(spiders: List[Spider]) -> SpiderSummary:
    """Roster summary for a user's spiders."""
    if not spiders:
        return SpiderSummary(0, 0, 0.0)
    active = [spider for spider in spiders if spider.is_active]
    average = sum(spider.deadliness_score for spider in spiders) / len(spiders)
    strongest = max(spiders, key=lambda spider: spider.deadliness_score)
    return SpiderSummary(len(spiders), len(active), average, strongest)
