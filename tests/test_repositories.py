"""
Tests for the typed repositories.
"""

import datetime

import pytest

from league.challenges import accept
from league.errors import Conflict, NotFound
from league.models import ChallengeStatus, LocationData, SpiderUpdate, UserStatus, UserUpdate
from league.repositories import (
    ChallengeRepository, FightRepository, SettingsRepository, SpiderRepository, UserRepository,
)

from factories import NOW, make_challenge, make_fight, make_metadata, make_spider, make_user


class TestUserRepository:
    """Test user persistence."""

    @pytest.mark.asyncio
    async def test_round_trip(self, store):
        """Users come back exactly as stored."""
        users = UserRepository(store)
        user = make_user("u1", wins=2, losses=1)
        await users.create(user)
        assert await users.get("u1") == user

    @pytest.mark.asyncio
    async def test_stored_layout(self, store):
        """Documents use camelCase names and epoch timestamps."""
        await UserRepository(store).create(make_user("u1"))
        document = await store.get("users", "u1")
        assert document["fightName"] == "Fighter u1"
        assert document["status"] == "Ready to Fight"
        assert document["createdAt"] == NOW.timestamp()

    @pytest.mark.asyncio
    async def test_require_missing(self, store):
        """require raises NotFound for unknown users."""
        with pytest.raises(NotFound):
            await UserRepository(store).require("ghost")

    @pytest.mark.asyncio
    async def test_ready_users_by_town(self, store):
        """Ready users can be listed per town."""
        users = UserRepository(store)
        await users.create(make_user("u1", town="Austin"))
        await users.create(make_user("u2", town="Dallas"))
        await users.create(make_user("u3", town="Austin", status=UserStatus.NOT_READY))
        assert [u.id for u in await users.ready_users("Austin")] == ["u1"]
        assert {u.id for u in await users.ready_users()} == {"u1", "u2"}

    @pytest.mark.asyncio
    async def test_guarded_update(self, store):
        """Counter updates can be guarded on the values read."""
        users = UserRepository(store)
        await users.create(make_user("u1", wins=1))
        await users.update("u1", UserUpdate(wins=2), expect={"wins": 1})
        with pytest.raises(Conflict):
            await users.update("u1", UserUpdate(wins=2), expect={"wins": 1})
        assert (await users.get("u1")).wins == 2


class TestSpiderRepository:
    """Test spider persistence."""

    @pytest.mark.asyncio
    async def test_round_trip_with_location(self, store):
        """Nested image metadata survives storage."""
        spiders = SpiderRepository(store)
        spider = make_spider("s1", last_used=NOW)
        spider.image_metadata = make_metadata()
        spider.image_metadata.taken_at = NOW
        spider.image_metadata.location = LocationData(30.27, -97.74)
        await spiders.create(spider)
        assert await spiders.get("s1") == spider

    @pytest.mark.asyncio
    async def test_for_user(self, store):
        """Spiders are listed per owner, optionally active only."""
        spiders = SpiderRepository(store)
        await spiders.create(make_spider("s1", "u1"))
        await spiders.create(make_spider("s2", "u1", is_active=False))
        await spiders.create(make_spider("s3", "u2"))
        assert {s.id for s in await spiders.for_user("u1")} == {"s1", "s2"}
        assert [s.id for s in await spiders.for_user("u1", active_only=True)] == ["s1"]

    @pytest.mark.asyncio
    async def test_update(self, store):
        """Typed updates change only their fields."""
        spiders = SpiderRepository(store)
        await spiders.create(make_spider("s1"))
        await spiders.update("s1", SpiderUpdate(is_active=False))
        spider = await spiders.get("s1")
        assert not spider.is_active
        assert spider.deadliness_score == 50.0


class TestChallengeRepository:
    """Test challenge persistence."""

    @pytest.mark.asyncio
    async def test_transition_is_guarded(self, store):
        """A transition only lands on a still pending challenge."""
        challenges = ChallengeRepository(store)
        challenge = make_challenge()
        await challenges.create(challenge)

        accepted = accept(challenge, "s2", NOW)
        await challenges.save_transition(accepted)
        assert await challenges.get("c1") == accepted

        with pytest.raises(Conflict):
            await challenges.save_transition(accepted)

    @pytest.mark.asyncio
    async def test_sent_and_received(self, store):
        """Challenges are listed by direction and status."""
        challenges = ChallengeRepository(store)
        await challenges.create(make_challenge("c1", "u1", "u2"))
        await challenges.create(make_challenge("c2", "u2", "u1", created_at=NOW + datetime.timedelta(hours=1)))
        await challenges.create(make_challenge("c3", "u1", "u3", status=ChallengeStatus.DECLINED))

        assert {c.id for c in await challenges.sent("u1")} == {"c1", "c3"}
        assert [c.id for c in await challenges.sent("u1", ChallengeStatus.PENDING)] == ["c1"]
        assert [c.id for c in await challenges.received("u1")] == ["c2"]
        assert [c.id for c in await challenges.involving("u1")][0] == "c2"
        assert {c.id for c in await challenges.pending()} == {"c1", "c2"}

    @pytest.mark.asyncio
    async def test_delete_pending_only(self, store):
        """Only pending challenges can be deleted."""
        challenges = ChallengeRepository(store)
        await challenges.create(make_challenge("c1", status=ChallengeStatus.EXPIRED))
        with pytest.raises(Conflict):
            await challenges.delete_pending("c1")


class TestFightRepository:
    """Test fight persistence."""

    @pytest.mark.asyncio
    async def test_history_queries(self, store):
        """Fights are found by user, spider and challenge."""
        fights = FightRepository(store)
        older = make_fight("f1", "u1", "u2", completed_at=NOW - datetime.timedelta(days=1))
        newer = make_fight("f2", "u3", "u1", completed_at=NOW)
        other = make_fight("f3", "u3", "u4")
        await store.commit([fights.create_write(f) for f in (older, newer, other)])

        assert [f.id for f in await fights.for_user("u1")] == ["f2", "f1"]
        assert [f.id for f in await fights.for_spider("spider-u2")] == ["f1"]
        assert await fights.for_challenge("challenge-f3") == other
        assert len(await fights.all()) == 3
        assert await fights.require("f1") == older

    def test_no_update_api(self):
        """Fights cannot be updated through the repository."""
        assert not hasattr(FightRepository, "update")


class TestSettingsRepository:
    """Test per-guild settings."""

    @pytest.mark.asyncio
    async def test_channel(self, store):
        """The announcement channel can be set and changed."""
        settings = SettingsRepository(store)
        assert await settings.get_channel("g1") is None
        await settings.set_channel("g1", 42)
        await settings.set_channel("g1", 43)
        assert await settings.get_channel("g1") == 43
