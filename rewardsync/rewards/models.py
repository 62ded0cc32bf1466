from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum
from typing import Any, Optional

from rewardsync.core.errors import ConfigError, InvalidTransitionError


class Permission(IntEnum):
    """Who may redeem a managed reward. Higher values are more privileged."""

    EVERYONE = 0
    FOLLOWER = 1
    SUBSCRIBER = 2
    MODERATOR = 3
    BROADCASTER = 4

    @classmethod
    def parse(cls, value: str) -> "Permission":
        """
        Parse a permission name as written in the settings file.

        Args:
            value: Permission name, case-insensitive (e.g. "subscriber").

        Raises:
            ConfigError: If the name is not a known tier.

        Returns:
            The matching Permission.
        """
        name = value.strip().upper()
        if name.endswith("S"):
            name = name[:-1]
        try:
            return cls[name]
        except KeyError:
            raise ConfigError(f"Unknown permission: {value!r}") from None


class RedemptionStatus(str, Enum):
    """Status of a redemption. UNFULFILLED may move to either terminal status."""

    UNFULFILLED = "UNFULFILLED"
    FULFILLED = "FULFILLED"
    CANCELED = "CANCELED"

    @property
    def is_terminal(self) -> bool:
        return self is not RedemptionStatus.UNFULFILLED

    @classmethod
    def parse(cls, value: str | None) -> "RedemptionStatus":
        """Map a status string from EventSub or Helix onto a RedemptionStatus."""
        normalized = (value or "").strip().lower()
        if normalized in ("canceled", "cancelled"):
            return cls.CANCELED
        if normalized == "fulfilled":
            return cls.FULFILLED
        return cls.UNFULFILLED


RewardCallback = Callable[["Redemption", RedemptionStatus], Optional[Awaitable[Any]]]


@dataclass
class RedeemingUser:
    """
    Twitch user who spent channel points.

    Attributes:
        id: Twitch user ID.
        login: Login name (lowercase).
        display_name: Display name as shown in chat.
        permission: Highest permission tier the user holds in the channel.
    """

    id: str
    login: str
    display_name: str
    permission: Permission = Permission.EVERYONE

    def is_permitted(self, required: Permission) -> bool:
        return self.permission >= required


@dataclass
class ManagedRewardGroup:
    """Named set of managed rewards that are enabled and disabled together."""

    name: str
    rewards: list["ManagedReward"] = field(default_factory=list)

    def add(self, reward: "ManagedReward") -> None:
        if not any(member is reward for member in self.rewards):
            self.rewards.append(reward)
        reward.group = self


@dataclass(eq=False)
class ManagedReward:
    """
    Channel point reward whose definition is owned by this process.

    Attributes:
        title: Unique, case-sensitive reward title.
        cost: Channel point cost.
        enabled: Whether viewers can currently redeem the reward.
        permission: Minimum tier a viewer needs for the redemption to stand.
        auto_fulfills: Mark unfulfilled redemptions fulfilled without calling back.
        requires_input: Whether the viewer must type text when redeeming.
        valid_inputs: Accepted inputs (case-insensitive). Empty accepts anything.
        remote_id: Twitch reward ID, set once the reward is reconciled.
    """

    title: str
    cost: int
    enabled: bool = True
    permission: Permission = Permission.EVERYONE
    auto_fulfills: bool = False
    requires_input: bool = False
    valid_inputs: list[str] = field(default_factory=list)
    remote_id: str | None = None
    group: ManagedRewardGroup | None = field(default=None, repr=False)
    callback: RewardCallback | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if self.cost < 0:
            raise ValueError(f"Reward cost must not be negative: {self.title} ({self.cost})")

    def bind(self, remote_id: str) -> None:
        """
        Attach the Twitch reward ID.

        Raises:
            ValueError: If a different ID was already bound.
        """
        if self.remote_id is not None and self.remote_id != remote_id:
            raise ValueError(f"Reward '{self.title}' is already bound to {self.remote_id}")
        self.remote_id = remote_id

    def accepts_input(self, user_input: str | None) -> bool:
        """Check the viewer's input against valid_inputs, ignoring case."""
        if not self.requires_input or not self.valid_inputs:
            return True
        lowered = {value.lower() for value in self.valid_inputs}
        return (user_input or "").lower() in lowered

    @property
    def skips_request_queue(self) -> bool:
        """
        Whether Twitch may mark redemptions fulfilled on arrival.

        Only true when there is nothing to check first. Rewards with a permission
        tier or a list of valid inputs stay in the queue so that a failed check
        can still be cancelled and refunded.
        """
        return (
            self.auto_fulfills
            and self.permission is Permission.EVERYONE
            and not (self.requires_input and self.valid_inputs)
        )

    def descriptor(self) -> "RewardDescriptor":
        return RewardDescriptor(
            title=self.title,
            id=self.remote_id,
            cost=self.cost,
            enabled=self.enabled,
            permission=self.permission,
            auto_fulfills=self.skips_request_queue,
            requires_input=self.requires_input,
        )


@dataclass
class Redemption:
    """
    Single spend of channel points on a reward.

    The status only moves forward: UNFULFILLED to FULFILLED or CANCELED.
    """

    id: str
    user: RedeemingUser
    user_input: str = ""
    redeemed_at: datetime | None = None
    reward: ManagedReward | None = None
    status: RedemptionStatus = RedemptionStatus.UNFULFILLED

    def transition(self, new_status: RedemptionStatus) -> None:
        """
        Advance the redemption to a new status.

        Raises:
            InvalidTransitionError: If the redemption already reached a different terminal status.
        """
        if new_status == self.status:
            return
        if self.status.is_terminal:
            raise InvalidTransitionError(f"Redemption {self.id} is {self.status.value}, cannot become {new_status.value}")
        self.status = new_status


@dataclass
class UnmanagedReward:
    """Reward created elsewhere. Redemptions are observed, never changed."""

    title: str
    callback: RewardCallback
    fulfilled: list[Redemption] = field(default_factory=list)


@dataclass
class RewardDescriptor:
    """
    Reward definition as the remote channel service sees it.

    auto_fulfills is the remote skip-queue flag, see ManagedReward.skips_request_queue.
    """

    title: str
    id: str | None
    cost: int
    enabled: bool = True
    permission: Permission = Permission.EVERYONE
    auto_fulfills: bool = False
    requires_input: bool = False


@dataclass
class RedemptionDescriptor:
    """Authoritative redemption record fetched from the remote channel service."""

    id: str
    reward_id: str
    reward_title: str
    user_id: str
    user_login: str
    user_name: str
    user_input: str
    status: str
    redeemed_at: datetime | None = None


@dataclass
class RedemptionAdded:
    """Notification that a viewer redeemed a reward."""

    reward_title: str
    reward_id: str
    redemption_id: str
    user: RedeemingUser
    user_input: str
    status: str
    redeemed_at: datetime | None = None


@dataclass
class RedemptionUpdated:
    """Notification that a redemption's status changed. Carries identifiers only."""

    reward_id: str
    redemption_id: str
