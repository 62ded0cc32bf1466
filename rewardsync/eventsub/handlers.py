import logging
from typing import Any

from rewardsync.rewards.models import RedeemingUser, RedemptionAdded, RedemptionUpdated
from rewardsync.users.subscribers import SubscriptionNotice

logger = logging.getLogger(__name__)


def redemption_added_from_event(event: Any) -> RedemptionAdded:
    """
    Convert a TwitchIO redemption notification into a RedemptionAdded.

    Args:
        event: EventSub notification whose data is a custom reward redemption.

    Returns:
        RedemptionAdded with the redeeming user at the Everyone tier; the router
        resolves the real tier.
    """
    data = event.data
    user = RedeemingUser(id=str(data.user.id), login=data.user.name.lower(), display_name=data.user.name)
    return RedemptionAdded(
        reward_title=data.reward.title,
        reward_id=str(data.reward.id),
        redemption_id=str(data.id),
        user=user,
        user_input=data.input or "",
        status=data.status,
        redeemed_at=getattr(data, "redeemed_at", None),
    )


def redemption_updated_from_event(event: Any) -> RedemptionUpdated:
    data = event.data
    return RedemptionUpdated(reward_id=str(data.reward.id), redemption_id=str(data.id))


async def handle_eventsub_reward(event: Any, bot: Any) -> None:
    """
    Hand a redemption notification to the channel point manager.

    Args:
        event: EventSub reward event object.
        bot: TwitchBot instance.
    """
    try:
        notification = redemption_added_from_event(event)
        logger.info(f"Reward '{notification.reward_title}' redeemed by {notification.user.display_name}")
        bot.rewards.on_redemption_added(notification)
    except Exception as e:
        logger.error(f"EventSub processing error: {e}", exc_info=True)


async def handle_eventsub_reward_update(event: Any, bot: Any) -> None:
    """
    Hand a redemption status update to the channel point manager.

    Args:
        event: EventSub reward update event object.
        bot: TwitchBot instance.
    """
    try:
        bot.rewards.on_redemption_updated(redemption_updated_from_event(event))
    except Exception as e:
        logger.error(f"EventSub processing error: {e}", exc_info=True)


async def handle_eventsub_subscription(event: Any, bot: Any) -> None:
    """Record a new subscriber so reward permissions see the new tier."""
    try:
        data = event.data
        notice = SubscriptionNotice(
            user_id=str(data.user.id),
            user_login=data.user.name.lower(),
            tier=str(data.tier),
            is_gift=bool(data.is_gift),
        )
        await bot.subscribers.handle(notice)
    except Exception as e:
        logger.error(f"EventSub processing error: {e}", exc_info=True)


async def handle_eventsub_follow(event: Any, bot: Any) -> None:
    """Record a new follower."""
    try:
        user = event.data.user
        bot.directory.mark_followed(str(user.id))
        logger.info(f"New follower: {user.name}")
    except Exception as e:
        logger.error(f"EventSub processing error: {e}", exc_info=True)
