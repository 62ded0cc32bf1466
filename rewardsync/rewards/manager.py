import logging
from typing import Any

from rewardsync.api.service import RemoteChannelService
from rewardsync.core.dispatcher import EventDispatcher
from rewardsync.rewards.models import (
    ManagedReward,
    ManagedRewardGroup,
    Permission,
    Redemption,
    RedemptionAdded,
    RedemptionStatus,
    RedemptionUpdated,
    RewardCallback,
    UnmanagedReward,
)
from rewardsync.rewards.reconciler import Reconciler
from rewardsync.rewards.registry import RewardRegistry
from rewardsync.rewards.router import RedemptionRouter
from rewardsync.users.directory import UserDirectory

logger = logging.getLogger(__name__)


class ChannelPointManager:
    """
    Entry point for declaring channel point rewards and reacting to redemptions.

    Declarations happen before the transport is ready. Once on_ready() is called
    the declared rewards are reconciled with the channel, and every redemption
    notification is routed through a single dispatcher queue.
    """

    def __init__(
        self,
        service: RemoteChannelService,
        registry: RewardRegistry | None = None,
        dispatcher: EventDispatcher | None = None,
        directory: UserDirectory | None = None,
    ) -> None:
        """
        Initialize the manager.

        Args:
            service: Remote channel service used for reward and redemption commands.
            registry: Reward registry. A new one is created when omitted.
            dispatcher: Job queue all state changes run on. A new one is created when omitted.
            directory: User directory used to resolve permission tiers.
        """
        self.service = service
        self.registry = registry or RewardRegistry()
        self.dispatcher = dispatcher or EventDispatcher()
        self.directory = directory
        self.reconciler = Reconciler(self.registry, service, self.dispatcher)
        self.router = RedemptionRouter(self.registry, service, self.dispatcher, directory)
        self._ready = False

    # Declarations

    def register_reward(self, reward: ManagedReward, callback: RewardCallback | None = None) -> ManagedReward:
        """Register a managed reward with the callback invoked for its redemptions."""
        return self.registry.declare(reward, callback)

    def declare_managed_reward(
        self,
        title: str,
        cost: int,
        callback: RewardCallback | None = None,
        permission: Permission = Permission.EVERYONE,
        enabled: bool = True,
        group: ManagedRewardGroup | str | None = None,
        **options: Any,
    ) -> ManagedReward:
        """
        Build and register a managed reward.

        Args:
            title: Unique reward title.
            cost: Channel point cost.
            callback: Called with (redemption, status).
            permission: Minimum tier needed to redeem.
            enabled: Initial enabled state.
            group: Group object or group name to add the reward to.
            **options: Extra ManagedReward fields (auto_fulfills, requires_input, valid_inputs).

        Returns:
            The registered reward.
        """
        if isinstance(group, str):
            group = self.registry.group(group)
        reward = ManagedReward(title=title, cost=cost, permission=permission, enabled=enabled, group=group, **options)
        return self.registry.declare(reward, callback)

    def declare_unmanaged_reward(self, title: str, callback: RewardCallback) -> UnmanagedReward:
        """Respond to a reward created elsewhere. Such rewards are never changed remotely."""
        return self.registry.declare_unmanaged(title, callback)

    def unmanaged_redemptions(self, title: str) -> list[Redemption]:
        """Fulfilled redemptions seen this session for an unmanaged reward."""
        entry = self.registry.unmanaged(title)
        return list(entry.fulfilled) if entry else []

    # Reward updates

    def enable_reward(self, reward: ManagedReward) -> bool:
        """
        Enable a managed reward if it is currently disabled.

        Returns:
            True if an update was sent to Twitch.
        """
        return self._update_reward(reward, "enabled", True)

    def disable_reward(self, reward: ManagedReward) -> bool:
        """
        Disable a managed reward if it is currently enabled.

        Returns:
            True if an update was sent to Twitch.
        """
        return self._update_reward(reward, "enabled", False)

    def update_reward_cost(self, reward: ManagedReward, new_cost: int) -> bool:
        """
        Change the cost of a managed reward.

        Raises:
            ValueError: If the new cost is negative.

        Returns:
            True if an update was sent to Twitch.
        """
        if new_cost < 0:
            raise ValueError(f"Reward cost must not be negative: {new_cost}")
        return self._update_reward(reward, "cost", new_cost)

    def enable_group(self, group: ManagedRewardGroup) -> int:
        """Enable every reward in a group. Returns the number of updates sent."""
        return sum(self.enable_reward(reward) for reward in group.rewards)

    def disable_group(self, group: ManagedRewardGroup) -> int:
        """Disable every reward in a group. Returns the number of updates sent."""
        return sum(self.disable_reward(reward) for reward in group.rewards)

    def _update_reward(self, reward: ManagedReward, field: str, value: Any) -> bool:
        if getattr(reward, field) == value:
            logger.warning(f"Reward '{reward.title}' already has {field}={value}; nothing to update")
            return False
        if reward.remote_id is None:
            logger.warning(f"Reward '{reward.title}' is not reconciled yet; cannot update {field}")
            return False

        def applied(_: Any) -> None:
            setattr(reward, field, value)
            logger.info(f"Updated {field} of reward '{reward.title}' to {value}")

        self.dispatcher.run_remote(
            self.service.update_reward(reward.remote_id, {field: value}),
            on_success=applied,
            on_error=lambda e: logger.error(f"Could not update {field} of reward '{reward.title}': {e}"),
        )
        return True

    # Redemption commands

    def fulfill_redemption(self, redemption: Redemption) -> None:
        """Mark an unfulfilled redemption as fulfilled."""
        self.router.send_status(redemption, RedemptionStatus.FULFILLED)

    def cancel_redemption(self, redemption: Redemption) -> None:
        """Cancel an unfulfilled redemption, refunding the viewer's points."""
        self.router.send_status(redemption, RedemptionStatus.CANCELED)

    # Transport entry points

    def on_ready(self) -> None:
        """Reconcile declared rewards. Only the first call has an effect."""
        if self._ready:
            logger.debug("Ready signal received again; reconciliation already ran")
            return
        self._ready = True
        self.dispatcher.enqueue(self.reconciler.run)

    def on_redemption_added(self, notification: RedemptionAdded) -> None:
        self.dispatcher.enqueue(lambda: self.router.route_added(notification))

    def on_redemption_updated(self, notification: RedemptionUpdated) -> None:
        self.dispatcher.enqueue(lambda: self.router.route_updated(notification))

    async def close(self) -> None:
        await self.dispatcher.close()
