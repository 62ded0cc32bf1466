from typing import Any, Protocol

from rewardsync.rewards.models import RedemptionDescriptor, RedemptionStatus, RewardDescriptor


class RemoteChannelService(Protocol):
    """
    Source of truth for reward definitions and redemption status.

    Every method raises RemoteServiceError when the request fails.
    """

    async def list_rewards(self) -> list[RewardDescriptor]: ...

    async def create_reward(self, descriptor: RewardDescriptor) -> str: ...

    async def update_reward(self, reward_id: str, fields: dict[str, Any]) -> RewardDescriptor: ...

    async def update_redemption_status(
        self, reward_id: str, redemption_id: str, status: RedemptionStatus
    ) -> RedemptionStatus: ...

    async def fetch_redemption(self, reward_id: str, redemption_id: str) -> RedemptionDescriptor: ...
