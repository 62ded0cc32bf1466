import inspect
import logging
from dataclasses import dataclass
from enum import Enum

from rewardsync.api.service import RemoteChannelService
from rewardsync.core.dispatcher import EventDispatcher
from rewardsync.core.errors import InvalidTransitionError
from rewardsync.rewards.models import (
    ManagedReward,
    RedeemingUser,
    Redemption,
    RedemptionAdded,
    RedemptionDescriptor,
    RedemptionStatus,
    RedemptionUpdated,
    RewardCallback,
)
from rewardsync.rewards.registry import RewardRegistry
from rewardsync.users.directory import UserDirectory

logger = logging.getLogger(__name__)


class RouteOutcome(str, Enum):
    """Where a single notification ended up."""

    UNMANAGED = "unmanaged"
    DROPPED_UNKNOWN = "dropped_unknown"
    CANCELLED_PERMISSION = "cancelled_permission"
    CANCELLED_INPUT = "cancelled_input"
    DISPATCHED = "dispatched"


@dataclass
class RouteResult:
    """
    Effect of routing one notification.

    Attributes:
        outcome: Terminal routing state.
        status: Status handed to the callback, if one was called or scheduled.
        command: Status sent back to Twitch, if a fulfill or cancel was issued.
    """

    outcome: RouteOutcome
    status: RedemptionStatus | None = None
    command: RedemptionStatus | None = None


async def invoke_callback(callback: RewardCallback | None, redemption: Redemption, status: RedemptionStatus) -> bool:
    """
    Call a user callback, isolating any error it raises.

    Returns:
        True if the callback ran without raising.
    """
    if callback is None:
        return False
    try:
        result = callback(redemption, status)
        if inspect.isawaitable(result):
            await result
        return True
    except Exception as e:
        logger.error(f"Reward callback failed for redemption {redemption.id}: {e}", exc_info=True)
        return False


class RedemptionRouter:
    """
    Classifies redemption notifications and routes them.

    Order of checks for new redemptions: unmanaged title, unknown reward,
    permission tier, input validation, then status dispatch. The first match
    decides the outcome.
    """

    def __init__(
        self,
        registry: RewardRegistry,
        service: RemoteChannelService,
        dispatcher: EventDispatcher,
        directory: UserDirectory | None = None,
    ) -> None:
        self.registry = registry
        self.service = service
        self.dispatcher = dispatcher
        self.directory = directory
        # Open redemptions only; entries are dropped once they reach a terminal status.
        self.redemptions: dict[str, Redemption] = {}

    async def route_added(self, notification: RedemptionAdded) -> RouteResult:
        """
        Route a newly redeemed reward.

        Args:
            notification: The redemption as delivered by the transport.

        Returns:
            RouteResult describing what happened.
        """
        status = RedemptionStatus.parse(notification.status)
        redemption = Redemption(
            id=notification.redemption_id,
            user=notification.user,
            user_input=notification.user_input or "",
            redeemed_at=notification.redeemed_at,
            status=status,
        )

        unmanaged = self.registry.unmanaged(notification.reward_title)
        if unmanaged is not None:
            await invoke_callback(unmanaged.callback, redemption, status)
            if status is RedemptionStatus.FULFILLED:
                unmanaged.fulfilled.append(redemption)
            return RouteResult(RouteOutcome.UNMANAGED, status=status)

        reward = self.registry.by_id(notification.reward_id)
        if reward is None:
            self._log_unknown(notification.reward_title, notification.reward_id)
            return RouteResult(RouteOutcome.DROPPED_UNKNOWN)

        redemption.reward = reward
        self.redemptions[redemption.id] = redemption

        if not self._is_permitted(notification.user, reward):
            logger.info(f"{notification.user.login} is not permitted to redeem '{reward.title}'; cancelling")
            self.send_status(redemption, RedemptionStatus.CANCELED)
            return RouteResult(RouteOutcome.CANCELLED_PERMISSION, command=RedemptionStatus.CANCELED)

        if not reward.accepts_input(redemption.user_input):
            logger.info(f"Invalid input for '{reward.title}': {redemption.user_input!r}; cancelling")
            self.send_status(redemption, RedemptionStatus.CANCELED)
            return RouteResult(RouteOutcome.CANCELLED_INPUT, command=RedemptionStatus.CANCELED)

        normalized = (notification.status or "").strip().lower()
        if status is RedemptionStatus.CANCELED:
            await invoke_callback(reward.callback, redemption, RedemptionStatus.CANCELED)
            self._forget(redemption)
            return RouteResult(RouteOutcome.DISPATCHED, status=RedemptionStatus.CANCELED)

        if normalized == "unfulfilled":
            if reward.auto_fulfills:
                self.send_status(redemption, RedemptionStatus.FULFILLED)
                return RouteResult(RouteOutcome.DISPATCHED, command=RedemptionStatus.FULFILLED)
            await invoke_callback(reward.callback, redemption, RedemptionStatus.UNFULFILLED)
            return RouteResult(RouteOutcome.DISPATCHED, status=RedemptionStatus.UNFULFILLED)

        redemption.status = RedemptionStatus.FULFILLED
        await invoke_callback(reward.callback, redemption, RedemptionStatus.FULFILLED)
        self._forget(redemption)
        return RouteResult(RouteOutcome.DISPATCHED, status=RedemptionStatus.FULFILLED)

    def route_updated(self, notification: RedemptionUpdated) -> RouteResult:
        """
        Re-fetch a redemption whose status changed and report it to the callback.

        Permission and input are not checked again. The callback runs once the
        authoritative record arrives.
        """
        reward = self.registry.by_id(notification.reward_id)
        if reward is None:
            self._log_unknown(None, notification.reward_id)
            return RouteResult(RouteOutcome.DROPPED_UNKNOWN)

        self.dispatcher.run_remote(
            self.service.fetch_redemption(notification.reward_id, notification.redemption_id),
            on_success=lambda descriptor: self._resolved(reward, descriptor),
            on_error=lambda e: logger.error(f"Could not fetch redemption {notification.redemption_id}: {e}"),
        )
        return RouteResult(RouteOutcome.DISPATCHED)

    def send_status(self, redemption: Redemption, status: RedemptionStatus) -> None:
        """
        Ask Twitch to fulfill or cancel a redemption.

        The local status changes only after Twitch acknowledges the update.
        """
        reward = redemption.reward
        if reward is None or reward.remote_id is None:
            logger.warning(f"Cannot update redemption {redemption.id}: reward is not reconciled")
            return

        def acknowledged(remote_status: RedemptionStatus) -> None:
            try:
                redemption.transition(remote_status)
            except InvalidTransitionError as e:
                logger.warning(str(e))
            else:
                logger.info(f"Redemption {redemption.id} of '{reward.title}' updated to {remote_status.value}")
            self._forget(redemption)

        self.dispatcher.run_remote(
            self.service.update_redemption_status(reward.remote_id, redemption.id, status),
            on_success=acknowledged,
            on_error=lambda e: logger.error(f"Could not set redemption {redemption.id} to {status.value}: {e}"),
        )

    async def _resolved(self, reward: ManagedReward, descriptor: RedemptionDescriptor) -> None:
        status = RedemptionStatus.parse(descriptor.status)
        redemption = self.redemptions.get(descriptor.id)
        if redemption is None:
            user = RedeemingUser(id=descriptor.user_id, login=descriptor.user_login, display_name=descriptor.user_name)
            if self.directory is not None:
                user.permission = self.directory.permission_for(user)
            redemption = Redemption(
                id=descriptor.id,
                user=user,
                user_input=descriptor.user_input,
                redeemed_at=descriptor.redeemed_at,
                reward=reward,
                status=status,
            )
            self.redemptions[redemption.id] = redemption
        else:
            try:
                redemption.transition(status)
            except InvalidTransitionError as e:
                logger.warning(f"Remote status disagrees with local record: {e}")

        await invoke_callback(reward.callback, redemption, status)
        self._forget(redemption)

    def _forget(self, redemption: Redemption) -> None:
        if redemption.status.is_terminal:
            self.redemptions.pop(redemption.id, None)

    def _is_permitted(self, user: RedeemingUser, reward: ManagedReward) -> bool:
        permission = self.directory.permission_for(user) if self.directory else user.permission
        return permission >= reward.permission

    def _log_unknown(self, title: str | None, reward_id: str) -> None:
        declared = self.registry.by_title(title) if title else None
        if declared is not None and declared.remote_id is None:
            logger.warning(f"Redemption for '{title}' arrived before the reward was reconciled; dropping")
        else:
            logger.debug(f"Ignored redemption for unmanaged reward {reward_id}")
