"""
Tests for league orchestration against a real document store.
"""

import datetime

import pytest

from league.errors import (
    Conflict, InvalidData, InvalidTransition, NotFound, PermissionDenied, Unauthenticated, Unavailable,
)
from league.models import ChallengeStatus, UserStatus

from factories import NOW, make_metadata, make_spider


async def setup_players(league):
    await league.register_user("u1", "Venom", "Austin", "venom@example.com")
    await league.register_user("u2", "Fang", "Austin", "fang@example.com")
    await league.set_ready("u1", True)
    await league.set_ready("u2", True)
    await league.spiders.create(make_spider("s1", "u1", deadliness=80.0))
    await league.spiders.create(make_spider("s2", "u2", deadliness=60.0))


class TestUsers:
    """Test registration and profile changes."""

    @pytest.mark.asyncio
    async def test_register(self, league):
        """New users start not ready with zero counters."""
        result = await league.register_user("u1", "  Venom ", "Austin")
        assert result.success
        user = await league.users.require("u1")
        assert user.fight_name == "Venom"
        assert user.status is UserStatus.NOT_READY
        assert (user.wins, user.losses) == (0, 0)

    @pytest.mark.asyncio
    async def test_register_twice(self, league):
        """A user can only register once."""
        await league.register_user("u1", "Venom", "Austin")
        with pytest.raises(InvalidData):
            await league.register_user("u1", "Venom", "Austin")

    @pytest.mark.asyncio
    async def test_register_blank_name(self, league):
        """Blank fight names are refused."""
        with pytest.raises(InvalidData):
            await league.register_user("u1", " ", "Austin")

    @pytest.mark.asyncio
    async def test_unregistered_user(self, league):
        """Unregistered users must sign up first."""
        with pytest.raises(Unauthenticated):
            await league.set_ready("ghost", True)

    @pytest.mark.asyncio
    async def test_update_profile(self, league):
        """Profile edits change only the given fields."""
        await league.register_user("u1", "Venom", "Austin")
        await league.update_profile("u1", town="Dallas")
        user = await league.users.require("u1")
        assert (user.fight_name, user.town) == ("Venom", "Dallas")


class TestSpiders:
    """Test spider registration and retirement."""

    @pytest.mark.asyncio
    async def test_register_spider(self, league, blobs):
        """The photo is uploaded and the spider stored."""
        await league.register_user("u1", "Venom", "Austin")
        result = await league.register_spider("u1", b"jpeg-bytes", make_metadata(), "Wolf Spider", 0.8, 42.0)
        spider = await league.spiders.require(result.spider.id)
        assert spider.species == "Wolf Spider"
        assert spider.image_url.startswith(f"https://cdn.test/league/spiders/{spider.id}/")
        assert blobs.path_for(spider.image_url).read_bytes() == b"jpeg-bytes"

    @pytest.mark.asyncio
    async def test_invalid_photo_not_uploaded(self, league, blobs):
        """Oversized photos are rejected before upload."""
        await league.register_user("u1", "Venom", "Austin")
        with pytest.raises(InvalidData):
            await league.register_spider("u1", b"x", make_metadata(file_size=20 * 1024 * 1024), "Wolf", 0.8, 42.0)
        assert not blobs.root.exists()

    @pytest.mark.asyncio
    async def test_photo_removed_when_create_fails(self, league, blobs):
        """A failed spider create deletes the uploaded photo."""
        await league.register_user("u1", "Venom", "Austin")

        async def failing_create(spider):
            raise Unavailable("database is locked")

        league.spiders.create = failing_create
        with pytest.raises(Unavailable):
            await league.register_spider("u1", b"jpeg-bytes", make_metadata(), "Wolf", 0.8, 42.0)
        assert list(blobs.root.rglob("*.jpg")) == []

    @pytest.mark.asyncio
    async def test_deactivate(self, league):
        """Only the owner or an admin can retire a spider."""
        await setup_players(league)
        with pytest.raises(PermissionDenied):
            await league.deactivate_spider("u2", "s1")
        await league.deactivate_spider("u1", "s1")
        assert not (await league.spiders.require("s1")).is_active
        await league.deactivate_spider("admin", "s2", as_admin=True)
        assert not (await league.spiders.require("s2")).is_active


class TestChallenges:
    """Test the challenge lifecycle through the store."""

    @pytest.mark.asyncio
    async def test_send(self, league):
        """A challenge is stored pending with a 24 hour expiry."""
        await setup_players(league)
        result = await league.send_challenge("u1", "u2", "s1", "prepare yourself")
        stored = await league.challenges.require(result.challenge.id)
        assert stored.status is ChallengeStatus.PENDING
        assert stored.expires_at == NOW + datetime.timedelta(hours=24)
        assert stored.message == "prepare yourself"

    @pytest.mark.asyncio
    async def test_duplicate_pending(self, league):
        """A second challenge to the same user is refused while the first is pending."""
        await setup_players(league)
        await league.send_challenge("u1", "u2", "s1")
        with pytest.raises(InvalidData, match="pending challenge exists"):
            await league.send_challenge("u1", "u2", "s1")

    @pytest.mark.asyncio
    async def test_self_challenge(self, league):
        """Users cannot challenge themselves."""
        await setup_players(league)
        with pytest.raises(InvalidData, match="cannot challenge yourself"):
            await league.send_challenge("u1", "u1", "s1")

    @pytest.mark.asyncio
    async def test_unknown_opponent(self, league):
        """Challenging an unknown user raises NotFound."""
        await setup_players(league)
        with pytest.raises(NotFound):
            await league.send_challenge("u1", "ghost", "s1")

    @pytest.mark.asyncio
    async def test_accept_within_window(self, league, clock):
        """Accepting 23 hours later succeeds."""
        await setup_players(league)
        challenge = (await league.send_challenge("u1", "u2", "s1")).challenge
        clock.advance(hours=23)
        result = await league.accept_challenge("u2", challenge.id, "s2")
        stored = await league.challenges.require(challenge.id)
        assert stored.status is ChallengeStatus.ACCEPTED
        assert stored.accepted_at == NOW + datetime.timedelta(hours=23)
        assert result.challenge == stored

    @pytest.mark.asyncio
    async def test_accept_after_expiry(self, league, clock):
        """Accepting 25 hours later fails and leaves the challenge pending."""
        await setup_players(league)
        challenge = (await league.send_challenge("u1", "u2", "s1")).challenge
        clock.advance(hours=25)
        with pytest.raises(InvalidTransition):
            await league.accept_challenge("u2", challenge.id, "s2")
        assert (await league.challenges.require(challenge.id)).status is ChallengeStatus.PENDING

    @pytest.mark.asyncio
    async def test_only_challenged_user_responds(self, league):
        """The challenger cannot accept or decline their own challenge."""
        await setup_players(league)
        challenge = (await league.send_challenge("u1", "u2", "s1")).challenge
        with pytest.raises(PermissionDenied):
            await league.accept_challenge("u1", challenge.id, "s1")
        with pytest.raises(PermissionDenied):
            await league.decline_challenge("u1", challenge.id)

    @pytest.mark.asyncio
    async def test_decline_is_terminal(self, league):
        """A declined challenge cannot be accepted."""
        await setup_players(league)
        challenge = (await league.send_challenge("u1", "u2", "s1")).challenge
        await league.decline_challenge("u2", challenge.id)
        with pytest.raises(InvalidTransition):
            await league.accept_challenge("u2", challenge.id, "s2")
        stored = await league.challenges.require(challenge.id)
        assert stored.status is ChallengeStatus.DECLINED
        assert stored.declined_at == NOW

    @pytest.mark.asyncio
    async def test_cancel(self, league):
        """The challenger can withdraw a pending challenge."""
        await setup_players(league)
        challenge = (await league.send_challenge("u1", "u2", "s1")).challenge
        with pytest.raises(PermissionDenied):
            await league.cancel_challenge("u2", challenge.id)
        await league.cancel_challenge("u1", challenge.id)
        assert await league.challenges.get(challenge.id) is None

    @pytest.mark.asyncio
    async def test_cancel_after_accept(self, league):
        """Accepted challenges cannot be withdrawn."""
        await setup_players(league)
        challenge = (await league.send_challenge("u1", "u2", "s1")).challenge
        await league.accept_challenge("u2", challenge.id, "s2")
        with pytest.raises(InvalidTransition):
            await league.cancel_challenge("u1", challenge.id)


class TestExpirySweep:
    """Test the batch expiry sweep."""

    @pytest.mark.asyncio
    async def test_sweep_is_idempotent(self, league, clock):
        """Due challenges expire once; a second sweep changes nothing."""
        await setup_players(league)
        old = (await league.send_challenge("u1", "u2", "s1")).challenge
        clock.advance(hours=25)
        fresh = (await league.send_challenge("u1", "u2", "s1")).challenge

        first = await league.expire_challenges()
        second = await league.expire_challenges()
        assert (first.count, second.count) == (1, 0)
        assert (await league.challenges.require(old.id)).status is ChallengeStatus.EXPIRED
        assert (await league.challenges.require(fresh.id)).status is ChallengeStatus.PENDING

    @pytest.mark.asyncio
    async def test_sweep_skips_concurrently_decided(self, league, clock, store):
        """A challenge decided after the sweep read it is left alone."""
        await setup_players(league)
        challenge = (await league.send_challenge("u1", "u2", "s1")).challenge
        clock.advance(hours=25)

        original = league.challenges.pending

        async def racing_pending():
            pending = await original()
            await store.update_fields("challenges", challenge.id, {"status": "Declined", "declinedAt": 1.0})
            return pending

        league.challenges.pending = racing_pending
        result = await league.expire_challenges()
        assert result.count == 0
        assert (await league.challenges.require(challenge.id)).status is ChallengeStatus.DECLINED


class TestFights:
    """Test fight resolution and its side effects."""

    @pytest.mark.asyncio
    async def test_fight_for_challenge(self, league, store):
        """Accepting and fighting records the result everywhere."""
        await setup_players(league)
        challenge = (await league.send_challenge("u1", "u2", "s1")).challenge
        result = await league.fight_for_challenge("u2", challenge.id, "s2")
        fight = result.fight

        assert fight.winner_id == "u1" and fight.loser_id == "u2"
        assert fight.outcome.winner_score == 80.0 and fight.outcome.loser_score == 60.0
        assert await league.fights.require(fight.id) == fight
        assert (await store.get("challenges", challenge.id))["fightId"] == fight.id

        winner = await league.users.require("u1")
        loser = await league.users.require("u2")
        assert (winner.wins, winner.losses) == (1, 0)
        assert (loser.wins, loser.losses) == (0, 1)

        for spider_id in ("s1", "s2"):
            spider = await league.spiders.require(spider_id)
            assert spider.last_used_in_fight == NOW
            assert not spider.can_be_used_in_fight(NOW)

    @pytest.mark.asyncio
    async def test_cooldown_after_fight(self, league, clock):
        """A spider that fought is unavailable until 24 hours have passed."""
        await setup_players(league)
        challenge = (await league.send_challenge("u1", "u2", "s1")).challenge
        await league.fight_for_challenge("u2", challenge.id, "s2")

        clock.advance(hours=23)
        with pytest.raises(InvalidData, match="cooldown"):
            await league.send_challenge("u1", "u2", "s1")
        status = await league.cooldown_status("u1")
        assert not status.can_use_spider
        assert status.time_remaining == datetime.timedelta(hours=1)

        clock.advance(hours=1)
        assert (await league.send_challenge("u1", "u2", "s1")).success

    @pytest.mark.asyncio
    async def test_failed_fight_leaves_challenge_open(self, league, store):
        """If the challenger's spider fought elsewhere, accepting writes nothing."""
        await setup_players(league)
        await league.register_user("u3", "Widow", "Austin")
        await league.set_ready("u3", True)
        await league.spiders.create(make_spider("s3", "u3", deadliness=70.0))
        first = (await league.send_challenge("u1", "u2", "s1")).challenge
        second = (await league.send_challenge("u1", "u3", "s1")).challenge
        await league.fight_for_challenge("u2", first.id, "s2")

        with pytest.raises(InvalidData, match="cooldown"):
            await league.fight_for_challenge("u3", second.id, "s3")

        stored = await league.challenges.require(second.id)
        assert stored.status is ChallengeStatus.PENDING
        assert stored.challenged_spider_id is None
        assert "fightId" not in await store.get("challenges", second.id)
        assert (await league.spiders.require("s3")).last_used_in_fight is None
        assert len(await league.fights.all()) == 1

        await league.decline_challenge("u3", second.id)
        assert (await league.challenges.require(second.id)).status is ChallengeStatus.DECLINED

    @pytest.mark.asyncio
    async def test_retired_challenger_spider(self, league):
        """A challenge whose spider was retired stays pending when accepted."""
        await setup_players(league)
        challenge = (await league.send_challenge("u1", "u2", "s1")).challenge
        await league.deactivate_spider("u1", "s1")
        with pytest.raises(InvalidData, match="not active"):
            await league.fight_for_challenge("u2", challenge.id, "s2")
        assert (await league.challenges.require(challenge.id)).status is ChallengeStatus.PENDING
        await league.cancel_challenge("u1", challenge.id)

    @pytest.mark.asyncio
    async def test_draw(self, league):
        """A draw stamps both spiders and leaves the counters alone."""
        await setup_players(league)
        challenge = (await league.send_challenge("u1", "u2", "s1")).challenge
        await league.accept_challenge("u2", challenge.id, "s2")
        fight = (await league.resolve_fight(challenge.id, 55.0, 55.0)).fight

        assert fight.is_draw and fight.winner_id == ""
        assert (await league.users.require("u1")).wins == 0
        assert (await league.users.require("u2")).losses == 0
        assert (await league.spiders.require("s2")).last_used_in_fight == NOW

    @pytest.mark.asyncio
    async def test_pending_challenge_cannot_be_fought(self, league):
        """Only accepted challenges resolve."""
        await setup_players(league)
        challenge = (await league.send_challenge("u1", "u2", "s1")).challenge
        with pytest.raises(InvalidTransition):
            await league.resolve_fight(challenge.id, 10, 5)

    @pytest.mark.asyncio
    async def test_lost_race_applies_nothing(self, league, store):
        """If another write lands first, no part of the fight is recorded."""
        await setup_players(league)
        challenge = (await league.send_challenge("u1", "u2", "s1")).challenge
        await league.accept_challenge("u2", challenge.id, "s2")

        original = store.commit

        async def racing_commit(writes):
            store.commit = original
            await store.update_fields("users", "u2", {"losses": 7})
            await original(writes)

        store.commit = racing_commit
        with pytest.raises(Conflict):
            await league.resolve_fight(challenge.id, 80.0, 60.0)

        assert await league.fights.all() == []
        assert (await league.users.require("u1")).wins == 0
        assert (await league.users.require("u2")).losses == 7
        assert (await league.spiders.require("s1")).last_used_in_fight is None
        assert "fightId" not in await store.get("challenges", challenge.id)

    @pytest.mark.asyncio
    async def test_challenge_fought_once(self, league, store):
        """A challenge whose fight is recorded cannot be fought again."""
        await setup_players(league)
        challenge = (await league.send_challenge("u1", "u2", "s1")).challenge
        await league.fight_for_challenge("u2", challenge.id, "s2")
        await store.update_fields("spiders", "s1", {"lastUsedInFight": None})
        await store.update_fields("spiders", "s2", {"lastUsedInFight": None})

        with pytest.raises(Conflict):
            await league.resolve_fight(challenge.id, 10.0, 90.0)
        assert len(await league.fights.all()) == 1


class TestStatistics:
    """Test read-side wrappers over stored fights."""

    @pytest.mark.asyncio
    async def test_empty(self, league):
        """Nothing fought yet means empty and zero results."""
        assert await league.leaderboard() == []
        assert (await league.user_stats("u1")).total_fights == 0
        assert (await league.challenge_stats("u1")).total == 0

    @pytest.mark.asyncio
    async def test_after_three_fights(self, league, clock):
        """Three decided fights qualify both players for the leaderboard."""
        await setup_players(league)
        for _ in range(3):
            challenge = (await league.send_challenge("u1", "u2", "s1")).challenge
            await league.fight_for_challenge("u2", challenge.id, "s2")
            clock.advance(hours=24)

        entries = await league.leaderboard()
        assert [(e.user_id, e.wins, e.losses) for e in entries] == [("u1", 3, 0), ("u2", 0, 3)]
        assert (await league.user_stats("u2")).losses == 3
        assert (await league.spider_stats("s1")).wins == 3
        assert (await league.challenge_stats("u1")).success_rate == 1.0
        assert len(await league.recent_fights("u1", limit=2)) == 2

        fight = (await league.recent_fights())[0]
        analysis = await league.analyze(fight.id)
        assert analysis.was_expected

    @pytest.mark.asyncio
    async def test_outcomes_and_history(self, league, clock):
        """Outcome totals and fight history cover a user's fights, newest first."""
        await setup_players(league)
        fight_ids = []
        for _ in range(2):
            challenge = (await league.send_challenge("u1", "u2", "s1")).challenge
            fight_ids.append((await league.fight_for_challenge("u2", challenge.id, "s2")).fight.id)
            clock.advance(hours=24)

        outcomes = await league.outcome_stats("u2")
        assert (outcomes.total_fights, outcomes.draws) == (2, 0)
        assert outcomes.average_score_difference == 20.0
        assert [f.id for f in await league.recent_fights("u2")] == fight_ids[::-1]
        assert await league.recent_fights("u3") == []

    @pytest.mark.asyncio
    async def test_ready_opponents(self, league):
        """Ready players other than the caller are listed, optionally by town."""
        await setup_players(league)
        await league.register_user("u3", "Widow", "Dallas")
        await league.set_ready("u3", True)
        assert [u.id for u in await league.ready_opponents("u1")] == ["u2", "u3"]
        assert [u.id for u in await league.ready_opponents("u1", "Dallas")] == ["u3"]
        await league.set_ready("u2", False)
        assert [u.id for u in await league.ready_opponents("u3", "Austin")] == ["u1"]
