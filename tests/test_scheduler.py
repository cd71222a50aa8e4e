"""
Tests for challenge change handling and error reporting helpers.
"""

from discord import app_commands

from error_handler import should_notify_owner, unwrap, user_message
from league.challenges import accept, expire
from league.errors import Conflict, InvalidData, LeagueError, Unavailable
from league.events import Change
from league.repositories import challenge_to_document
from league.scheduler import ChallengeScheduler

from factories import NOW, make_challenge


def change_for(challenge):
    return Change("challenges", challenge.id, challenge_to_document(challenge))


class TestHandleChange:
    """Test which challenge changes reach the challenger."""

    def test_new_status_notified_once(self):
        """Each status change is reported a single time."""
        scheduler = ChallengeScheduler(None, None, None)
        accepted = accept(make_challenge(), "s2", NOW)
        assert scheduler.handle_change(change_for(accepted)) == accepted
        assert scheduler.handle_change(change_for(accepted)) is None

    def test_pending_and_deleted_ignored(self):
        """Pending challenges and deletions are not reported."""
        scheduler = ChallengeScheduler(None, None, None)
        assert scheduler.handle_change(change_for(make_challenge())) is None
        assert scheduler.handle_change(Change("challenges", "c1", None)) is None

    def test_expiry(self):
        """An expired challenge is reported with its status."""
        scheduler = ChallengeScheduler(None, None, None)
        challenge = make_challenge()
        expired = expire(challenge, challenge.expires_at)
        assert scheduler.handle_change(change_for(expired)).status is expired.status


class TestErrorMessages:
    """Test how failures are shown and escalated."""

    def test_rule_violation_shown_verbatim(self):
        """Invalid input is explained to the user as raised."""
        error = InvalidData("pending challenge exists")
        assert user_message(error) == "pending challenge exists"
        assert not should_notify_owner(error)

    def test_conflict_shown_politely(self):
        """Conflicts get the friendly message, not the internals."""
        error = Conflict("guard failed on challenges/c1")
        assert "guard failed" not in user_message(error)
        assert not should_notify_owner(error)

    def test_transient_errors_escalated(self):
        """Unavailable storage is reported to the owner."""
        assert should_notify_owner(Unavailable("database is locked"))
        assert should_notify_owner(LeagueError("unexpected"))

    def test_unexpected_errors_escalated(self):
        """Anything outside the league hierarchy is reported."""
        error = RuntimeError("boom")
        assert should_notify_owner(error)
        assert "notified" in user_message(error)

    def test_check_failures_not_escalated(self):
        """Permission checks are the user's problem."""
        assert not should_notify_owner(app_commands.CheckFailure())

    def test_unwrap_passes_plain_errors(self):
        """Errors that were not wrapped come back unchanged."""
        error = ValueError("x")
        assert unwrap(error) is error
