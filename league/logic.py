"""Core league logic for Spider League."""

import logging
import uuid
from typing import Callable, Dict, List, Optional, Tuple

from .blobs import BlobStore, spider_image_path, validate_image
from .challenges import ChallengeStats, accept, decline, new_challenge, summarize, sweep_expired
from .config import CHALLENGES, IMAGE_CONTENT_TYPE
from .errors import Conflict, InvalidData, InvalidTransition, LeagueError, NotFound, PermissionDenied, Unauthenticated
from .fights import WinProbability, record_updates, resolve, spider_updates
from .models import (
    ActionResult, Challenge, ChallengeStatus, Classification, CooldownStatus, Fight, ImageMetadata,
    Spider, SpiderUpdate, User, UserStatus, UserUpdate,
)
from .repositories import ChallengeRepository, FightRepository, SpiderRepository, UserRepository
from .rules import available_spiders, cooldown_status, validate_challenge_request, validate_deadliness, validate_spider_for
from .stats import (
    FightAnalysis, FightRecord, LeaderboardEntry, OutcomeStats, analyze_fight, leaderboard, outcome_stats,
    recent_fights, spider_stats, user_stats,
)
from .storage import DocumentStore, Write
from .timeutils import now as current_time, to_timestamp

logger = logging.getLogger(__name__)


class LeagueLogic:
    """Handles all league operations."""

    def __init__(self, store: DocumentStore, blobs: BlobStore,
                 strategy: Optional[WinProbability] = None,
                 clock: Callable = current_time):
        self.store = store
        self.blobs = blobs
        self.strategy = strategy
        self.clock = clock
        self.users = UserRepository(store)
        self.spiders = SpiderRepository(store)
        self.challenges = ChallengeRepository(store)
        self.fights = FightRepository(store)

    async def _player(self, user_id: str) -> User:
        """The acting user, who must have registered."""
        user = await self.users.get(user_id)
        if user is None:
            raise Unauthenticated()
        return user

    # Users

    async def register_user(self, user_id: str, fight_name: str, town: str, email: str = "") -> ActionResult:
        """Register a new player."""
        if await self.users.get(user_id) is not None:
            raise InvalidData("You are already registered.")
        UserUpdate(fight_name=fight_name, town=town).validate()

        moment = self.clock()
        user = User(
            id=user_id,
            email=email,
            fight_name=fight_name.strip(),
            town=town.strip(),
            created_at=moment,
            last_active=moment,
        )
        await self.users.create(user)
        return ActionResult(
            True,
            f"Welcome to the Spider League, **{user.fight_name}**! Add a spider with `/spider_add`.",
            f"**{user.fight_name}** from {user.town} has joined the Spider League!",
        )

    async def set_ready(self, user_id: str, ready: bool) -> ActionResult:
        user = await self._player(user_id)
        status = UserStatus.READY if ready else UserStatus.NOT_READY
        await self.users.update(user.id, UserUpdate(status=status, last_active=self.clock()))
        logger.info(f"User {user_id} is now {status.value}")
        return ActionResult(True, f"Your status is now **{status.value}**.")

    async def update_profile(self, user_id: str, fight_name: Optional[str] = None,
                             town: Optional[str] = None,
                             profile_image_url: Optional[str] = None) -> ActionResult:
        await self._player(user_id)
        update = UserUpdate(
            fight_name=fight_name,
            town=town,
            profile_image_url=profile_image_url,
            last_active=self.clock(),
        )
        await self.users.update(user_id, update)
        logger.info(f"Updated profile of user {user_id}")
        return ActionResult(True, "Your profile has been updated.")

    async def ready_opponents(self, user_id: str, town: Optional[str] = None) -> List[User]:
        """Players ready to fight, other than user_id, optionally from one town."""
        return [user for user in await self.users.ready_users(town) if user.id != user_id]

    # Spiders

    async def register_spider(self, user_id: str, image: bytes, metadata: ImageMetadata,
                              species: str, confidence: float, deadliness_score: float) -> ActionResult:
        """Upload a spider photo and register the spider.

        The photo is removed again if the spider document cannot be created.
        """
        await self._player(user_id)
        validate_deadliness(deadliness_score)
        if not species.strip():
            raise InvalidData("Species cannot be empty")
        validate_image(metadata)

        moment = self.clock()
        spider_id = str(uuid.uuid4())
        classification = Classification(species.strip(), confidence, moment)
        SpiderUpdate(classification=classification).validate()

        image_url = await self.blobs.upload(spider_image_path(spider_id), image, IMAGE_CONTENT_TYPE)
        spider = Spider(
            id=spider_id,
            user_id=user_id,
            species=classification.species,
            deadliness_score=float(deadliness_score),
            image_url=image_url,
            image_metadata=metadata,
            classification=classification,
            created_at=moment,
        )
        try:
            await self.spiders.create(spider)
        except LeagueError:
            try:
                await self.blobs.delete(image_url)
            except LeagueError as cleanup_error:
                logger.error(f"Could not remove image {image_url} of failed spider {spider_id}: {cleanup_error}")
            raise

        return ActionResult(
            True,
            f"Registered your **{spider.species}** with deadliness {spider.deadliness_score:.1f}.",
            spider=spider,
        )

    async def deactivate_spider(self, user_id: str, spider_id: str, as_admin: bool = False) -> ActionResult:
        spider = await self.spiders.require(spider_id)
        if not as_admin and spider.user_id != user_id:
            raise PermissionDenied("That spider is not yours.")
        if not spider.is_active:
            raise InvalidData("That spider is already inactive.")
        await self.spiders.update(spider_id, SpiderUpdate(is_active=False))
        logger.info(f"Spider {spider_id} deactivated by {user_id}")
        return ActionResult(True, f"Your **{spider.species}** has been retired.", spider=spider)

    async def user_spiders(self, user_id: str, active_only: bool = False) -> List[Spider]:
        return await self.spiders.for_user(user_id, active_only)

    async def available_spiders(self, user_id: str) -> List[Spider]:
        return available_spiders(await self.spiders.for_user(user_id, active_only=True), self.clock())

    async def cooldown_status(self, user_id: str) -> CooldownStatus:
        return cooldown_status(await self.spiders.for_user(user_id), self.clock())

    # Challenges

    async def send_challenge(self, challenger_id: str, challenged_id: str, spider_id: str,
                             message: Optional[str] = None) -> ActionResult:
        """Challenge another user with one of your spiders."""
        challenger = await self._player(challenger_id)
        challenged = await self.users.require(challenged_id)
        spider = await self.spiders.require(spider_id)
        existing = await self.challenges.sent(challenger_id, ChallengeStatus.PENDING)

        moment = self.clock()
        validate_challenge_request(challenger, challenged, spider, existing, moment)

        challenge = new_challenge(challenger_id, challenged_id, spider_id, moment, message)
        await self.challenges.create(challenge)
        return ActionResult(
            True,
            f"Challenge sent to **{challenged.fight_name}**. It expires in 24 hours.",
            f"**{challenger.fight_name}** has challenged **{challenged.fight_name}**!",
            challenge=challenge,
        )

    async def accept_challenge(self, user_id: str, challenge_id: str, spider_id: str) -> ActionResult:
        """Accept a challenge addressed to user_id, fielding spider_id."""
        await self._player(user_id)
        challenge = await self.challenges.require(challenge_id)
        if challenge.challenged_id != user_id:
            raise PermissionDenied("Only the challenged player can accept this challenge.")
        spider = await self.spiders.require(spider_id)

        moment = self.clock()
        validate_spider_for(spider, user_id, moment)
        accepted = accept(challenge, spider_id, moment)
        await self.challenges.save_transition(accepted)
        logger.info(f"Challenge {challenge_id} accepted by {user_id} with spider {spider_id}")
        return ActionResult(True, "Challenge accepted!", challenge=accepted)

    async def decline_challenge(self, user_id: str, challenge_id: str) -> ActionResult:
        challenge = await self.challenges.require(challenge_id)
        if challenge.challenged_id != user_id:
            raise PermissionDenied("Only the challenged player can decline this challenge.")
        declined = decline(challenge, self.clock())
        await self.challenges.save_transition(declined)
        logger.info(f"Challenge {challenge_id} declined by {user_id}")
        return ActionResult(True, "Challenge declined.", challenge=declined)

    async def cancel_challenge(self, user_id: str, challenge_id: str) -> ActionResult:
        """Withdraw a pending challenge you sent."""
        challenge = await self.challenges.require(challenge_id)
        if challenge.challenger_id != user_id:
            raise PermissionDenied("Only the challenger can cancel this challenge.")
        if challenge.status is not ChallengeStatus.PENDING:
            raise InvalidTransition(f"Challenge is already {challenge.status.value.lower()}")
        await self.challenges.delete_pending(challenge_id)
        logger.info(f"Challenge {challenge_id} cancelled by {user_id}")
        return ActionResult(True, "Challenge cancelled.", challenge=challenge)

    async def expire_challenges(self) -> ActionResult:
        """Expire every pending challenge whose time is up.

        Each challenge is written with its own status guard, so a challenge
        accepted, declined or cancelled in the meantime is left alone and
        running the sweep twice changes nothing the second time.
        """
        moment = self.clock()
        expired = 0
        for challenge in sweep_expired(await self.challenges.pending(), moment):
            try:
                await self.challenges.save_transition(challenge)
            except (Conflict, NotFound) as e:
                logger.info(f"Skipping expiry of challenge {challenge.id}: {e}")
                continue
            expired += 1

        if expired:
            logger.info(f"Expired {expired} challenges")
        return ActionResult(True, f"Expired {expired} challenges.", count=expired)

    async def challenge_stats(self, user_id: str) -> ChallengeStats:
        return summarize(await self.challenges.involving(user_id), user_id)

    async def open_challenges(self, user_id: str) -> dict:
        """Pending challenges sent and received by user_id."""
        return {
            "received": await self.challenges.received(user_id, ChallengeStatus.PENDING),
            "sent": await self.challenges.sent(user_id, ChallengeStatus.PENDING),
        }

    # Fights

    async def _fight_writes(self, challenge: Challenge, challenger_score: float,
                            challenged_score: float) -> Tuple[Fight, List[Write], Dict[str, User]]:
        """Build the fight for an accepted challenge and its guarded spider and user writes.

        Every eligibility check runs here, before anything is written.
        """
        challenger_spider = await self.spiders.require(challenge.challenger_spider_id)
        challenged_spider = await self.spiders.require(challenge.challenged_spider_id)
        challenger = await self.users.require(challenge.challenger_id)
        challenged = await self.users.require(challenge.challenged_id)

        fight = resolve(
            challenge,
            challenger_spider,
            challenged_spider,
            challenger_score,
            challenged_score,
            self.clock(),
            strategy=self.strategy,
        )

        writes = [self.fights.create_write(fight)]
        spiders = {challenger_spider.id: challenger_spider, challenged_spider.id: challenged_spider}
        for spider_id, update in spider_updates(fight).items():
            last_used = spiders[spider_id].last_used_in_fight
            writes.append(self.spiders.update_write(
                spider_id, update, expect={"lastUsedInFight": to_timestamp(last_used)}
            ))
        users = {challenger.id: challenger, challenged.id: challenged}
        for user_id, update in record_updates(fight, challenger, challenged).items():
            user = users[user_id]
            writes.append(self.users.update_write(
                user_id, update, expect={"wins": user.wins, "losses": user.losses}
            ))
        return fight, writes, users

    def _fight_result(self, challenge: Challenge, fight: Fight, users: Dict[str, User]) -> ActionResult:
        challenger = users[challenge.challenger_id]
        challenged = users[challenge.challenged_id]
        if fight.is_draw:
            logger.info(f"Fight {fight.id} for challenge {challenge.id} ended in a draw")
            public = (f"**{challenger.fight_name}** and **{challenged.fight_name}** fought to a draw "
                      f"at {fight.outcome.winner_score:.1f}!")
        else:
            winner = users[fight.winner_id]
            loser = users[fight.loser_id]
            logger.info(f"Fight {fight.id} for challenge {challenge.id}: {fight.winner_id} beat {fight.loser_id}")
            public = (f"**{winner.fight_name}** defeated **{loser.fight_name}** "
                      f"({fight.outcome.winner_score:.1f} to {fight.outcome.loser_score:.1f})!")
        return ActionResult(True, "The fight is over!", public, challenge=challenge, fight=fight)

    async def resolve_fight(self, challenge_id: str, challenger_score: float,
                            challenged_score: float) -> ActionResult:
        """Resolve an accepted challenge and record every side effect at once.

        The fight record, both spiders' cooldown stamps and both users'
        counters go out in a single commit. Each write is guarded on the
        values read here, so a concurrent resolution of the same challenge
        or a concurrent fight by either spider or user fails the whole
        commit with Conflict and nothing is applied.
        """
        challenge = await self.challenges.require(challenge_id)
        if challenge.status is not ChallengeStatus.ACCEPTED:
            raise InvalidTransition("Only accepted challenges can be fought")
        if await self.fights.for_challenge(challenge_id) is not None:
            raise Conflict(f"Challenge {challenge_id} has already been fought")

        fight, writes, users = await self._fight_writes(challenge, challenger_score, challenged_score)
        writes.insert(1, Write.update(
            CHALLENGES,
            challenge.id,
            {"fightId": fight.id},
            expect={"status": ChallengeStatus.ACCEPTED, "fightId": None},
        ))
        await self.store.commit(writes)
        return self._fight_result(challenge, fight, users)

    async def fight_for_challenge(self, user_id: str, challenge_id: str, spider_id: str) -> ActionResult:
        """Accept a challenge and fight it straight away on deadliness.

        The acceptance is part of the fight commit: if either spider can no
        longer fight, the challenge stays pending and nothing is written.
        """
        await self._player(user_id)
        challenge = await self.challenges.require(challenge_id)
        if challenge.challenged_id != user_id:
            raise PermissionDenied("Only the challenged player can accept this challenge.")
        spider = await self.spiders.require(spider_id)
        challenger_spider = await self.spiders.require(challenge.challenger_spider_id)

        moment = self.clock()
        validate_spider_for(spider, user_id, moment)
        accepted = accept(challenge, spider_id, moment)

        fight, writes, users = await self._fight_writes(
            accepted, challenger_spider.deadliness_score, spider.deadliness_score
        )
        writes.insert(1, self.challenges.transition_write(accepted, fight_id=fight.id))
        await self.store.commit(writes)
        logger.info(f"Challenge {challenge_id} accepted by {user_id} with spider {spider_id}")
        return self._fight_result(accepted, fight, users)

    # Statistics

    async def leaderboard(self, limit: Optional[int] = None) -> List[LeaderboardEntry]:
        fights = await self.fights.all()
        if limit is None:
            return leaderboard(fights)
        return leaderboard(fights, limit=limit)

    async def user_stats(self, user_id: str) -> FightRecord:
        return user_stats(await self.fights.for_user(user_id), user_id)

    async def spider_stats(self, spider_id: str) -> FightRecord:
        return spider_stats(await self.fights.for_spider(spider_id), spider_id)

    async def outcome_stats(self, user_id: Optional[str] = None) -> OutcomeStats:
        fights = await self.fights.all() if user_id is None else await self.fights.for_user(user_id)
        return outcome_stats(fights)

    async def recent_fights(self, user_id: Optional[str] = None, limit: int = 10) -> List[Fight]:
        fights = await self.fights.all() if user_id is None else await self.fights.for_user(user_id)
        return recent_fights(fights, limit=limit, user_id=user_id)

    async def analyze(self, fight_id: str) -> FightAnalysis:
        return analyze_fight(await self.fights.require(fight_id))
