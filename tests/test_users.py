from unittest.mock import AsyncMock, MagicMock

import pytest

from rewardsync.core.errors import RemoteServiceError
from rewardsync.rewards.models import Permission
from rewardsync.users.directory import UserDirectory
from rewardsync.users.subscribers import SubscriberTracker, SubscriptionNotice
from tests.conftest import make_user


class TestUserDirectory:
    """Tests for tier resolution and role refresh."""

    def test_permission_for(self, directory):
        directory.moderators.add("mod")
        directory.subscribers.update({"sub", "mod"})
        directory.followers.add("fan")

        assert directory.permission_for(make_user("owner")) is Permission.BROADCASTER
        assert directory.permission_for(make_user("mod")) is Permission.MODERATOR
        assert directory.permission_for(make_user("sub")) is Permission.SUBSCRIBER
        assert directory.permission_for(make_user("fan")) is Permission.FOLLOWER
        assert directory.permission_for(make_user("stranger")) is Permission.EVERYONE

    def test_user_permission_is_a_floor(self, directory):
        """A tier already carried by the user is never lowered."""
        user = make_user("stranger", permission=Permission.SUBSCRIBER)

        assert directory.permission_for(user) is Permission.SUBSCRIBER

    def test_unsubscribe(self, directory):
        directory.mark_subscribed("sub")
        directory.mark_unsubscribed("sub")
        directory.mark_unsubscribed("never")

        assert not directory.is_subscribed("sub")

    @pytest.mark.asyncio
    async def test_refresh(self, directory):
        api = MagicMock()
        api.get_moderator_ids = AsyncMock(return_value=["m1"])
        api.get_subscriber_ids = AsyncMock(return_value=["s1", "s2"])
        api.get_follower_ids = AsyncMock(return_value=["f1"])

        await directory.refresh(api)

        assert directory.moderators == {"m1"}
        assert directory.subscribers == {"s1", "s2"}
        assert directory.followers == {"f1"}

    @pytest.mark.asyncio
    async def test_refresh_keeps_previous_on_error(self, directory):
        """A failed list leaves the known set untouched and the others still load."""
        directory.subscribers.add("old")
        api = MagicMock()
        api.get_moderator_ids = AsyncMock(return_value=["m1"])
        api.get_subscriber_ids = AsyncMock(side_effect=RemoteServiceError(401, "Missing scope"))
        api.get_follower_ids = AsyncMock(return_value=[])

        await directory.refresh(api)

        assert directory.subscribers == {"old"}
        assert directory.moderators == {"m1"}


class TestSubscriberTracker:
    """Tests for subscription notifications."""

    @pytest.mark.asyncio
    async def test_paid_and_gift_hooks(self, directory):
        tracker = SubscriberTracker(directory)
        paid, gifted = MagicMock(), AsyncMock()
        tracker.on_subscription(paid)
        tracker.on_gift_subscription(gifted)

        await tracker.handle(SubscriptionNotice(user_id="u1", user_login="one"))
        await tracker.handle(SubscriptionNotice(user_id="u2", user_login="two", is_gift=True))

        paid.assert_called_once()
        assert paid.call_args.args[0].user_id == "u1"
        gifted.assert_awaited_once()
        assert gifted.call_args.args[0].user_id == "u2"
        assert tracker.is_subscribed("u1") and tracker.is_subscribed("u2")

    @pytest.mark.asyncio
    async def test_decorator_registration(self, directory):
        tracker = SubscriberTracker(directory)
        seen = []

        @tracker.on_subscription
        def remember(notice):
            seen.append(notice.user_login)

        await tracker.handle(SubscriptionNotice(user_id="u1", user_login="one"))

        assert seen == ["one"]
        assert remember in tracker.subscription_hooks

    @pytest.mark.asyncio
    async def test_failing_hook_is_isolated(self, directory):
        """A listener error does not stop later listeners or the tier update."""
        tracker = SubscriberTracker(directory)
        after = MagicMock()
        tracker.on_subscription(MagicMock(side_effect=RuntimeError("boom")))
        tracker.on_subscription(after)

        await tracker.handle(SubscriptionNotice(user_id="u1", user_login="one"))

        after.assert_called_once()
        assert directory.permission_for(make_user("u1")) is Permission.SUBSCRIBER
