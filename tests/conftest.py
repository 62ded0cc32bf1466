from collections.abc import AsyncIterator
from datetime import datetime, timezone
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from rewardsync.core.dispatcher import EventDispatcher
from rewardsync.core.errors import RemoteServiceError
from rewardsync.rewards.manager import ChannelPointManager
from rewardsync.rewards.models import (
    Permission,
    RedeemingUser,
    RedemptionAdded,
    RedemptionDescriptor,
    RedemptionStatus,
    RewardDescriptor,
)
from rewardsync.users.directory import UserDirectory


class FakeChannelService:
    """
    In-memory stand-in for the Twitch Helix API.

    Every method is an AsyncMock so tests can assert on call counts, while the
    side effects keep the remote reward list consistent.
    """

    def __init__(self) -> None:
        self.rewards: dict[str, RewardDescriptor] = {}
        self.redemptions: dict[str, RedemptionDescriptor] = {}
        self._next_id = 1

        self.list_rewards = AsyncMock(side_effect=self._list_rewards)
        self.create_reward = AsyncMock(side_effect=self._create_reward)
        self.update_reward = AsyncMock(side_effect=self._update_reward)
        self.update_redemption_status = AsyncMock(side_effect=self._update_redemption_status)
        self.fetch_redemption = AsyncMock(side_effect=self._fetch_redemption)

    def add_remote(self, title: str, cost: int = 100, **fields: Any) -> RewardDescriptor:
        reward_id = f"remote-{self._next_id}"
        self._next_id += 1
        descriptor = RewardDescriptor(title=title, id=reward_id, cost=cost, **fields)
        self.rewards[reward_id] = descriptor
        return descriptor

    async def _list_rewards(self) -> list[RewardDescriptor]:
        return list(self.rewards.values())

    async def _create_reward(self, descriptor: RewardDescriptor) -> str:
        if any(r.title == descriptor.title for r in self.rewards.values()):
            raise RemoteServiceError(400, "CREATE_CUSTOM_REWARD_DUPLICATE_REWARD")
        created = self.add_remote(
            descriptor.title,
            descriptor.cost,
            enabled=descriptor.enabled,
            permission=descriptor.permission,
            auto_fulfills=descriptor.auto_fulfills,
            requires_input=descriptor.requires_input,
        )
        assert created.id is not None
        return created.id

    async def _update_reward(self, reward_id: str, fields: dict[str, Any]) -> RewardDescriptor:
        if reward_id not in self.rewards:
            raise RemoteServiceError(404, "Not Found")
        descriptor = self.rewards[reward_id]
        for name, value in fields.items():
            setattr(descriptor, name, value)
        return descriptor

    async def _update_redemption_status(
        self, reward_id: str, redemption_id: str, status: RedemptionStatus
    ) -> RedemptionStatus:
        return status

    async def _fetch_redemption(self, reward_id: str, redemption_id: str) -> RedemptionDescriptor:
        if redemption_id not in self.redemptions:
            raise RemoteServiceError(404, "Not Found")
        return self.redemptions[redemption_id]


def make_user(user_id: str = "u1", name: str = "Viewer", permission: Permission = Permission.EVERYONE) -> RedeemingUser:
    """Build a redeeming user."""
    return RedeemingUser(id=user_id, login=name.lower(), display_name=name, permission=permission)


def make_added(
    reward_title: str,
    reward_id: str,
    redemption_id: str = "r1",
    status: str = "unfulfilled",
    user_input: str = "",
    user: RedeemingUser | None = None,
) -> RedemptionAdded:
    """Build a RedemptionAdded notification."""
    return RedemptionAdded(
        reward_title=reward_title,
        reward_id=reward_id,
        redemption_id=redemption_id,
        user=user or make_user(),
        user_input=user_input,
        status=status,
        redeemed_at=datetime(2024, 5, 1, 18, 0, tzinfo=timezone.utc),
    )


class DummyEvent:
    """Mimics the TwitchIO EventSub notification wrapper for reward redemptions."""

    def __init__(
        self,
        reward_name: str,
        username: str,
        user_id: str,
        input_val: str = "",
        reward_id: str = "reward-1",
        redemption_id: str = "redemption-1",
        status: str = "unfulfilled",
    ):
        self.data = MagicMock()
        self.data.id = redemption_id
        self.data.reward.id = reward_id
        self.data.reward.title = reward_name
        self.data.user.id = user_id
        self.data.user.name = username
        self.data.broadcaster.name = "testbroadcaster"
        self.data.input = input_val
        self.data.status = status
        self.data.redeemed_at = datetime(2024, 5, 1, 18, 0, tzinfo=timezone.utc)


@pytest.fixture
def service() -> FakeChannelService:
    """Fake remote channel service."""
    return FakeChannelService()


@pytest.fixture
def directory() -> UserDirectory:
    """User directory for a channel owned by user 'owner'."""
    return UserDirectory(broadcaster_id="owner")


@pytest_asyncio.fixture
async def dispatcher() -> AsyncIterator[EventDispatcher]:
    """Dispatcher that is shut down after the test."""
    d = EventDispatcher()
    yield d
    await d.close()


@pytest_asyncio.fixture
async def manager(
    service: FakeChannelService, dispatcher: EventDispatcher, directory: UserDirectory
) -> AsyncIterator[ChannelPointManager]:
    """Channel point manager wired to the fake service."""
    yield ChannelPointManager(service, dispatcher=dispatcher, directory=directory)
