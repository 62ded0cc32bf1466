import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Optional

from rewardsync.users.directory import UserDirectory

logger = logging.getLogger(__name__)


@dataclass
class SubscriptionNotice:
    """
    A viewer started a subscription, either paid or gifted.

    Attributes:
        user_id: Twitch user ID of the subscriber (the recipient for gifts).
        user_login: Login name of the subscriber.
        tier: Twitch tier string ("1000", "2000", "3000").
        is_gift: Whether somebody else paid for the subscription.
    """

    user_id: str
    user_login: str
    tier: str = "1000"
    is_gift: bool = False


SubscriptionHook = Callable[[SubscriptionNotice], Optional[Awaitable[Any]]]


class SubscriberTracker:
    """Keeps the subscriber set current and notifies listeners about new subscriptions."""

    def __init__(self, directory: UserDirectory) -> None:
        self.directory = directory
        self.subscription_hooks: list[SubscriptionHook] = []
        self.gift_hooks: list[SubscriptionHook] = []

    def on_subscription(self, hook: SubscriptionHook) -> SubscriptionHook:
        """Register a listener for paid subscriptions. Usable as a decorator."""
        self.subscription_hooks.append(hook)
        return hook

    def on_gift_subscription(self, hook: SubscriptionHook) -> SubscriptionHook:
        """Register a listener for gifted subscriptions. Usable as a decorator."""
        self.gift_hooks.append(hook)
        return hook

    async def handle(self, notice: SubscriptionNotice) -> None:
        """
        Record a subscription and call the matching listeners.

        The recipient is marked as subscribed before listeners run, so a reward
        redeemed right after a subscription already sees the new tier.
        """
        self.directory.mark_subscribed(notice.user_id)
        hooks = self.gift_hooks if notice.is_gift else self.subscription_hooks
        kind = "gift subscription" if notice.is_gift else "subscription"
        logger.info(f"{notice.user_login} received a {kind} (tier {notice.tier})")

        for hook in hooks:
            try:
                result = hook(notice)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Subscription listener failed: {e}", exc_info=True)

    def is_subscribed(self, user_id: str) -> bool:
        return self.directory.is_subscribed(user_id)
