import logging
from typing import Any

from rewardsync.core.errors import ConfigError
from rewardsync.rewards.manager import ChannelPointManager
from rewardsync.rewards.models import Redemption, RedemptionStatus, RewardCallback

logger = logging.getLogger(__name__)


def _title(redemption: Redemption, fallback: str) -> str:
    return redemption.reward.title if redemption.reward else fallback


def build_reward_handlers(bot: Any, title: str) -> dict[str, RewardCallback]:
    """
    Build the callbacks a configured reward can use, bound to one reward title.

    Args:
        bot: TwitchBot instance. Provides the channel point manager and chat channels.
        title: Title of the reward the handlers are built for.

    Returns:
        Handler name to callback.
    """

    async def log_handler(redemption: Redemption, status: RedemptionStatus) -> None:
        """Log every redemption."""
        suffix = f" with input {redemption.user_input!r}" if redemption.user_input else ""
        logger.info(f"'{_title(redemption, title)}' redeemed by {redemption.user.display_name}{suffix}: {status.value}")

    async def announce_handler(redemption: Redemption, status: RedemptionStatus) -> None:
        """Thank the viewer in chat. Cancelled redemptions are not announced."""
        await log_handler(redemption, status)
        if status is RedemptionStatus.CANCELED:
            return
        channels: list[str] = bot.config.get("channels") or []
        if not channels:
            return
        channel = bot.get_channel(channels[0])
        if channel is None:
            logger.warning(f"Not connected to channel {channels[0]}; cannot announce")
            return
        await channel.send(f"{redemption.user.display_name} redeemed {_title(redemption, title)}!")

    async def fulfill_handler(redemption: Redemption, status: RedemptionStatus) -> None:
        """Fulfill pending redemptions once they have been logged."""
        await log_handler(redemption, status)
        if status is RedemptionStatus.UNFULFILLED:
            bot.rewards.fulfill_redemption(redemption)

    async def cancel_handler(redemption: Redemption, status: RedemptionStatus) -> None:
        """Refund pending redemptions."""
        await log_handler(redemption, status)
        if status is RedemptionStatus.UNFULFILLED:
            bot.rewards.cancel_redemption(redemption)

    return {
        "log": log_handler,
        "announce": announce_handler,
        "fulfill": fulfill_handler,
        "cancel": cancel_handler,
    }


def resolve_handler(bot: Any, title: str, name: str) -> RewardCallback:
    """
    Look up a handler by the name used in the settings file.

    Raises:
        ConfigError: If no handler has that name.
    """
    handlers = build_reward_handlers(bot, title)
    handler = handlers.get(name)
    if handler is None:
        raise ConfigError(f"Unknown handler '{name}' for reward '{title}'. Known: {sorted(handlers)}")
    return handler


def declare_configured_rewards(bot: Any, manager: ChannelPointManager, settings: dict[str, Any]) -> None:
    """
    Declare every reward listed in the settings file.

    Args:
        bot: TwitchBot instance the handlers talk to.
        manager: Channel point manager to declare the rewards on.
        settings: Output of load_settings().
    """
    for entry in settings.get("rewards", []):
        options = {key: entry[key] for key in ("auto_fulfills", "requires_input", "valid_inputs")}
        manager.declare_managed_reward(
            entry["title"],
            entry["cost"],
            resolve_handler(bot, entry["title"], entry["handler"]),
            permission=entry["permission"],
            enabled=entry["enabled"],
            group=entry["group"],
            **options,
        )
        logger.info(f"Declared managed reward '{entry['title']}' ({entry['cost']} points)")

    for entry in settings.get("unmanaged", []):
        manager.declare_unmanaged_reward(entry["title"], resolve_handler(bot, entry["title"], entry["handler"]))
        logger.info(f"Declared unmanaged reward '{entry['title']}'")
