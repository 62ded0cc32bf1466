import logging
from typing import Any

from rewardsync.core.errors import RemoteServiceError
from rewardsync.rewards.models import Permission, RedeemingUser

logger = logging.getLogger(__name__)


class UserDirectory:
    """
    Knows which channel roles viewers hold.

    Moderators, subscribers and followers are loaded from Helix when the bot is
    ready and kept current from EventSub notifications afterwards.
    """

    def __init__(self, broadcaster_id: str | None = None) -> None:
        """
        Initialize the directory.

        Args:
            broadcaster_id: Twitch user ID of the channel owner.
        """
        self.broadcaster_id: str | None = broadcaster_id
        self.moderators: set[str] = set()
        self.subscribers: set[str] = set()
        self.followers: set[str] = set()

    def permission_for(self, user: RedeemingUser) -> Permission:
        """
        Resolve the highest tier a user holds.

        Args:
            user: The redeeming user. Its own permission is used as a floor.

        Returns:
            The user's effective Permission.
        """
        if self.broadcaster_id and user.id == self.broadcaster_id:
            found = Permission.BROADCASTER
        elif user.id in self.moderators:
            found = Permission.MODERATOR
        elif user.id in self.subscribers:
            found = Permission.SUBSCRIBER
        elif user.id in self.followers:
            found = Permission.FOLLOWER
        else:
            found = Permission.EVERYONE
        return max(found, user.permission)

    def mark_subscribed(self, user_id: str) -> None:
        self.subscribers.add(user_id)

    def mark_unsubscribed(self, user_id: str) -> None:
        self.subscribers.discard(user_id)

    def mark_followed(self, user_id: str) -> None:
        self.followers.add(user_id)

    def is_subscribed(self, user_id: str) -> bool:
        return user_id in self.subscribers

    async def refresh(self, api: Any) -> None:
        """
        Reload moderator, subscriber and follower lists.

        A failed list is logged and the previously known set is kept.

        Args:
            api: TwitchAPI-like client exposing get_moderator_ids, get_subscriber_ids
                and get_follower_ids.
        """
        for attr, fetch in (
            ("moderators", api.get_moderator_ids),
            ("subscribers", api.get_subscriber_ids),
            ("followers", api.get_follower_ids),
        ):
            try:
                ids = await fetch()
            except RemoteServiceError as e:
                logger.warning(f"Could not load {attr}: {e}")
                continue
            setattr(self, attr, set(ids))
            logger.info(f"Loaded {len(ids)} {attr}")
