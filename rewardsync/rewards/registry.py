import logging

from rewardsync.rewards.models import ManagedReward, ManagedRewardGroup, RewardCallback, UnmanagedReward

logger = logging.getLogger(__name__)


class RewardRegistry:
    """
    In-memory store of declared rewards.

    Managed rewards are keyed by title and, once reconciled, by Twitch reward ID.
    Unmanaged rewards are keyed by title only. Only the dispatcher job that is
    currently running may mutate the registry.
    """

    def __init__(self) -> None:
        self._by_title: dict[str, ManagedReward] = {}
        self._by_id: dict[str, ManagedReward] = {}
        self._unmanaged: dict[str, UnmanagedReward] = {}
        self._groups: dict[str, ManagedRewardGroup] = {}

    def declare(self, reward: ManagedReward, callback: RewardCallback | None = None) -> ManagedReward:
        """
        Register a managed reward.

        Re-declaring a title only swaps the callback. Remote state already known
        for that title (ID, cost, enabled) is kept.

        Args:
            reward: The reward to manage.
            callback: Called with (redemption, status) for routed redemptions.

        Returns:
            The registered reward instance.
        """
        existing = self._by_title.get(reward.title)
        if existing is not None and existing is not reward:
            logger.info(f"Reward '{reward.title}' declared again; replacing callback only")
            existing.callback = callback if callback is not None else reward.callback
            return existing

        if callback is not None:
            reward.callback = callback
        self._by_title[reward.title] = reward
        if reward.remote_id is not None:
            self._by_id[reward.remote_id] = reward
        if reward.group is not None:
            # A group object with an already registered name joins the registered group.
            self._groups.setdefault(reward.group.name, reward.group).add(reward)
        return reward

    def declare_unmanaged(self, title: str, callback: RewardCallback) -> UnmanagedReward:
        """Register a reward created elsewhere, keeping any log gathered so far."""
        entry = self._unmanaged.get(title)
        if entry is None:
            entry = UnmanagedReward(title=title, callback=callback)
            self._unmanaged[title] = entry
        else:
            entry.callback = callback
        return entry

    def bind_id(self, reward: ManagedReward, remote_id: str) -> None:
        """Record the Twitch ID of a managed reward and index it."""
        reward.bind(remote_id)
        self._by_id[remote_id] = reward

    def group(self, name: str) -> ManagedRewardGroup:
        """Return the named group, creating it on first use."""
        if name not in self._groups:
            self._groups[name] = ManagedRewardGroup(name=name)
        return self._groups[name]

    def by_title(self, title: str) -> ManagedReward | None:
        return self._by_title.get(title)

    def by_id(self, remote_id: str) -> ManagedReward | None:
        return self._by_id.get(remote_id)

    def unmanaged(self, title: str) -> UnmanagedReward | None:
        return self._unmanaged.get(title)

    def managed_rewards(self) -> list[ManagedReward]:
        return list(self._by_title.values())

    def groups(self) -> list[ManagedRewardGroup]:
        return list(self._groups.values())

    def __len__(self) -> int:
        return len(self._by_title)
