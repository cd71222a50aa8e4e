"""Typed repositories over the document store.

Documents use the camelCase field names the mobile app persisted and store
instants as epoch seconds. Only this module knows that layout.
"""

import logging
from typing import Any, Dict, List, Optional

from .config import CHALLENGES, FIGHTS, SETTINGS, SPIDERS, USERS
from .errors import NotFound
from .models import (
    Challenge, ChallengeStatus, ChallengeUpdate, Classification, Fight, FightOutcome,
    ImageMetadata, LocationData, Spider, SpiderUpdate, User, UserStatus, UserUpdate,
)
from .storage import DocumentStore, Filter, Write
from .timeutils import from_timestamp, to_timestamp

logger = logging.getLogger(__name__)


# Codec

def user_to_document(user: User) -> Dict[str, Any]:
    return {
        "id": user.id,
        "email": user.email,
        "fightName": user.fight_name,
        "town": user.town,
        "createdAt": to_timestamp(user.created_at),
        "lastActive": to_timestamp(user.last_active),
        "wins": user.wins,
        "losses": user.losses,
        "status": user.status.value,
        "profileImageUrl": user.profile_image_url,
        "isEmailVerified": user.is_email_verified,
    }


def user_from_document(document: Dict[str, Any]) -> User:
    return User(
        id=document["id"],
        email=document.get("email", ""),
        fight_name=document["fightName"],
        town=document.get("town", ""),
        created_at=from_timestamp(document["createdAt"]),
        last_active=from_timestamp(document.get("lastActive", document["createdAt"])),
        wins=document.get("wins", 0),
        losses=document.get("losses", 0),
        status=UserStatus(document.get("status", UserStatus.NOT_READY.value)),
        profile_image_url=document.get("profileImageUrl"),
        is_email_verified=document.get("isEmailVerified", False),
    )


def _metadata_from_document(document: Dict[str, Any]) -> ImageMetadata:
    location = document.get("location")
    return ImageMetadata(
        width=document["width"],
        height=document["height"],
        file_size=document["fileSize"],
        taken_at=from_timestamp(document.get("takenAt")),
        location=LocationData(location["latitude"], location["longitude"]) if location else None,
    )


def _classification_from_document(document: Dict[str, Any]) -> Classification:
    return Classification(
        species=document["species"],
        confidence=document["confidence"],
        analyzed_at=from_timestamp(document["analysisTimestamp"]),
    )


def spider_to_document(spider: Spider) -> Dict[str, Any]:
    return {
        "id": spider.id,
        "userId": spider.user_id,
        "species": spider.species,
        "deadlinessScore": float(spider.deadliness_score),
        "imageUrl": spider.image_url,
        "imageMetadata": spider.image_metadata.to_document(),
        "classification": spider.classification.to_document(),
        "createdAt": to_timestamp(spider.created_at),
        "lastUsedInFight": to_timestamp(spider.last_used_in_fight),
        "isActive": spider.is_active,
    }


def spider_from_document(document: Dict[str, Any]) -> Spider:
    return Spider(
        id=document["id"],
        user_id=document["userId"],
        species=document["species"],
        deadliness_score=document["deadlinessScore"],
        image_url=document["imageUrl"],
        image_metadata=_metadata_from_document(document["imageMetadata"]),
        classification=_classification_from_document(document["classification"]),
        created_at=from_timestamp(document["createdAt"]),
        last_used_in_fight=from_timestamp(document.get("lastUsedInFight")),
        is_active=document.get("isActive", True),
    )


def challenge_to_document(challenge: Challenge) -> Dict[str, Any]:
    return {
        "id": challenge.id,
        "challengerId": challenge.challenger_id,
        "challengedId": challenge.challenged_id,
        "challengerSpiderId": challenge.challenger_spider_id,
        "challengedSpiderId": challenge.challenged_spider_id,
        "status": challenge.status.value,
        "createdAt": to_timestamp(challenge.created_at),
        "expiresAt": to_timestamp(challenge.expires_at),
        "acceptedAt": to_timestamp(challenge.accepted_at),
        "declinedAt": to_timestamp(challenge.declined_at),
        "message": challenge.message,
    }


def challenge_from_document(document: Dict[str, Any]) -> Challenge:
    return Challenge(
        id=document["id"],
        challenger_id=document["challengerId"],
        challenged_id=document["challengedId"],
        challenger_spider_id=document["challengerSpiderId"],
        challenged_spider_id=document.get("challengedSpiderId"),
        status=ChallengeStatus(document["status"]),
        created_at=from_timestamp(document["createdAt"]),
        expires_at=from_timestamp(document["expiresAt"]),
        accepted_at=from_timestamp(document.get("acceptedAt")),
        declined_at=from_timestamp(document.get("declinedAt")),
        message=document.get("message"),
    )


def fight_to_document(fight: Fight) -> Dict[str, Any]:
    return {
        "id": fight.id,
        "challengeId": fight.challenge_id,
        "challengerId": fight.challenger_id,
        "challengedId": fight.challenged_id,
        "challengerSpiderId": fight.challenger_spider_id,
        "challengedSpiderId": fight.challenged_spider_id,
        "winnerId": fight.winner_id,
        "loserId": fight.loser_id,
        "winnerSpiderId": fight.winner_spider_id,
        "loserSpiderId": fight.loser_spider_id,
        "fightOutcome": {
            "winnerScore": fight.outcome.winner_score,
            "loserScore": fight.outcome.loser_score,
            "winProbability": fight.outcome.win_probability,
            "modifiers": dict(fight.outcome.modifiers),
        },
        "completedAt": to_timestamp(fight.completed_at),
        "isDraw": fight.is_draw,
        "rematchTriggered": fight.rematch_triggered,
    }


def fight_from_document(document: Dict[str, Any]) -> Fight:
    outcome = document["fightOutcome"]
    return Fight(
        id=document["id"],
        challenge_id=document["challengeId"],
        challenger_id=document["challengerId"],
        challenged_id=document["challengedId"],
        challenger_spider_id=document["challengerSpiderId"],
        challenged_spider_id=document["challengedSpiderId"],
        winner_id=document["winnerId"],
        loser_id=document["loserId"],
        winner_spider_id=document["winnerSpiderId"],
        loser_spider_id=document["loserSpiderId"],
        outcome=FightOutcome(
            winner_score=outcome["winnerScore"],
            loser_score=outcome["loserScore"],
            win_probability=outcome["winProbability"],
            modifiers=outcome.get("modifiers", {}),
        ),
        completed_at=from_timestamp(document["completedAt"]),
        is_draw=document["isDraw"],
        rematch_triggered=document.get("rematchTriggered", False),
    )


def _merge(*groups: List[Any]) -> List[Any]:
    """Concatenate query results, dropping duplicates by id."""
    seen = set()
    merged = []
    for group in groups:
        for item in group:
            if item.id not in seen:
                seen.add(item.id)
                merged.append(item)
    return merged


class UserRepository:
    def __init__(self, store: DocumentStore):
        self.store = store

    async def get(self, user_id: str) -> Optional[User]:
        document = await self.store.get(USERS, user_id)
        return user_from_document(document) if document else None

    async def require(self, user_id: str) -> User:
        user = await self.get(user_id)
        if user is None:
            raise NotFound("User", user_id)
        return user

    async def create(self, user: User):
        await self.store.create(USERS, user.id, user_to_document(user))
        logger.info(f"Created user {user.id} ({user.fight_name})")

    def update_write(self, user_id: str, update: UserUpdate,
                     expect: Optional[Dict[str, Any]] = None) -> Write:
        return Write.update(USERS, user_id, update.to_fields(), expect)

    async def update(self, user_id: str, update: UserUpdate,
                     expect: Optional[Dict[str, Any]] = None):
        await self.store.commit([self.update_write(user_id, update, expect)])

    async def ready_users(self, town: Optional[str] = None) -> List[User]:
        """Users ready to fight, optionally limited to one town."""
        filters = [Filter("status", "==", UserStatus.READY)]
        if town:
            filters.append(Filter("town", "==", town))
        documents = await self.store.query(USERS, filters, order_by="fightName")
        return [user_from_document(document) for document in documents]


class SpiderRepository:
    def __init__(self, store: DocumentStore):
        self.store = store

    async def get(self, spider_id: str) -> Optional[Spider]:
        document = await self.store.get(SPIDERS, spider_id)
        return spider_from_document(document) if document else None

    async def require(self, spider_id: str) -> Spider:
        spider = await self.get(spider_id)
        if spider is None:
            raise NotFound("Spider", spider_id)
        return spider

    async def create(self, spider: Spider):
        await self.store.create(SPIDERS, spider.id, spider_to_document(spider))
        logger.info(f"Created spider {spider.id} for user {spider.user_id}")

    def update_write(self, spider_id: str, update: SpiderUpdate,
                     expect: Optional[Dict[str, Any]] = None) -> Write:
        return Write.update(SPIDERS, spider_id, update.to_fields(), expect)

    async def update(self, spider_id: str, update: SpiderUpdate,
                     expect: Optional[Dict[str, Any]] = None):
        await self.store.commit([self.update_write(spider_id, update, expect)])

    async def for_user(self, user_id: str, active_only: bool = False) -> List[Spider]:
        filters = [Filter("userId", "==", user_id)]
        if active_only:
            filters.append(Filter("isActive", "==", True))
        documents = await self.store.query(SPIDERS, filters, order_by="createdAt", descending=True)
        return [spider_from_document(document) for document in documents]


class ChallengeRepository:
    def __init__(self, store: DocumentStore):
        self.store = store

    async def get(self, challenge_id: str) -> Optional[Challenge]:
        document = await self.store.get(CHALLENGES, challenge_id)
        return challenge_from_document(document) if document else None

    async def require(self, challenge_id: str) -> Challenge:
        challenge = await self.get(challenge_id)
        if challenge is None:
            raise NotFound("Challenge", challenge_id)
        return challenge

    async def create(self, challenge: Challenge):
        await self.store.create(CHALLENGES, challenge.id, challenge_to_document(challenge))
        logger.info(f"Created challenge {challenge.id}: {challenge.challenger_id} -> {challenge.challenged_id}")

    def transition_write(self, challenge: Challenge, fight_id: Optional[str] = None) -> Write:
        """Persist a transitioned challenge, guarded on it still being pending.

        fight_id links the fight recorded in the same commit.
        """
        fields = ChallengeUpdate.from_challenge(challenge).to_fields()
        if fight_id is not None:
            fields["fightId"] = fight_id
        return Write.update(CHALLENGES, challenge.id, fields, expect={"status": ChallengeStatus.PENDING})

    async def save_transition(self, challenge: Challenge):
        await self.store.commit([self.transition_write(challenge)])

    async def delete_pending(self, challenge_id: str):
        await self.store.delete(CHALLENGES, challenge_id, expect={"status": ChallengeStatus.PENDING})

    async def received(self, user_id: str, status: Optional[ChallengeStatus] = None) -> List[Challenge]:
        return await self._query("challengedId", user_id, status)

    async def sent(self, user_id: str, status: Optional[ChallengeStatus] = None) -> List[Challenge]:
        return await self._query("challengerId", user_id, status)

    async def involving(self, user_id: str, status: Optional[ChallengeStatus] = None) -> List[Challenge]:
        challenges = _merge(await self.sent(user_id, status), await self.received(user_id, status))
        challenges.sort(key=lambda challenge: challenge.created_at, reverse=True)
        return challenges

    async def pending(self) -> List[Challenge]:
        documents = await self.store.query(
            CHALLENGES, [Filter("status", "==", ChallengeStatus.PENDING)], order_by="expiresAt"
        )
        return [challenge_from_document(document) for document in documents]

    async def _query(self, field: str, user_id: str, status: Optional[ChallengeStatus]) -> List[Challenge]:
        filters = [Filter(field, "==", user_id)]
        if status is not None:
            filters.append(Filter("status", "==", status))
        documents = await self.store.query(CHALLENGES, filters, order_by="createdAt", descending=True)
        return [challenge_from_document(document) for document in documents]


class FightRepository:
    """Fights are written once and never updated."""

    def __init__(self, store: DocumentStore):
        self.store = store

    async def get(self, fight_id: str) -> Optional[Fight]:
        document = await self.store.get(FIGHTS, fight_id)
        return fight_from_document(document) if document else None

    async def require(self, fight_id: str) -> Fight:
        fight = await self.get(fight_id)
        if fight is None:
            raise NotFound("Fight", fight_id)
        return fight

    def create_write(self, fight: Fight) -> Write:
        return Write.create(FIGHTS, fight.id, fight_to_document(fight))

    async def for_user(self, user_id: str) -> List[Fight]:
        fights = _merge(
            await self._query([Filter("challengerId", "==", user_id)]),
            await self._query([Filter("challengedId", "==", user_id)]),
        )
        fights.sort(key=lambda fight: fight.completed_at, reverse=True)
        return fights

    async def for_spider(self, spider_id: str) -> List[Fight]:
        fights = _merge(
            await self._query([Filter("challengerSpiderId", "==", spider_id)]),
            await self._query([Filter("challengedSpiderId", "==", spider_id)]),
        )
        fights.sort(key=lambda fight: fight.completed_at, reverse=True)
        return fights

    async def for_challenge(self, challenge_id: str) -> Optional[Fight]:
        fights = await self._query([Filter("challengeId", "==", challenge_id)], limit=1)
        return fights[0] if fights else None

    async def all(self, limit: Optional[int] = None) -> List[Fight]:
        return await self._query([], limit=limit)

    async def _query(self, filters: List[Filter], limit: Optional[int] = None) -> List[Fight]:
        documents = await self.store.query(
            FIGHTS, filters, order_by="completedAt", descending=True, limit=limit
        )
        return [fight_from_document(document) for document in documents]


class SettingsRepository:
    """Per-guild bot settings."""

    def __init__(self, store: DocumentStore):
        self.store = store

    async def get_channel(self, guild_id: str) -> Optional[int]:
        document = await self.store.get(SETTINGS, guild_id)
        if not document:
            return None
        return document.get("announceChannelId")

    async def set_channel(self, guild_id: str, channel_id: int):
        if await self.store.get(SETTINGS, guild_id) is None:
            await self.store.create(SETTINGS, guild_id, {"announceChannelId": channel_id})
        else:
            await self.store.update_fields(SETTINGS, guild_id, {"announceChannelId": channel_id})
        logger.info(f"Announcement channel for guild {guild_id} set to {channel_id}")
