import logging
from typing import Any

from twitchio.ext import commands

from rewardsync.api.twitch_api import TwitchAPI
from rewardsync.eventsub.handlers import (
    handle_eventsub_follow,
    handle_eventsub_reward,
    handle_eventsub_reward_update,
    handle_eventsub_subscription,
)
from rewardsync.eventsub.manager import EventSubManager
from rewardsync.eventsub.reward_handlers import declare_configured_rewards
from rewardsync.rewards.manager import ChannelPointManager
from rewardsync.users.directory import UserDirectory
from rewardsync.users.subscribers import SubscriberTracker

logger = logging.getLogger(__name__)


def is_privileged(author: Any) -> bool:
    """Moderators and the broadcaster may control reward groups from chat."""
    return bool(getattr(author, "is_mod", False) or getattr(author, "is_broadcaster", False))


class TwitchBot(commands.Bot):  # type: ignore[misc]
    """Twitch bot that owns the channel point manager and feeds it EventSub notifications."""

    config: dict[str, Any]
    api: TwitchAPI
    directory: UserDirectory
    subscribers: SubscriberTracker
    rewards: ChannelPointManager
    eventsub: EventSubManager

    def __init__(self, settings: dict[str, Any]) -> None:
        """
        Initialize the Twitch bot.

        Args:
            settings: Output of load_settings(). Managed and unmanaged rewards listed
                there are declared immediately.
        """
        self.config = settings
        credentials = settings["credentials"]

        super().__init__(
            token=credentials["bot_token"],
            client_id=credentials["client_id"],
            client_secret=credentials["client_secret"],
            prefix="!",
            initial_channels=settings["channels"],
        )

        self.api = TwitchAPI(credentials["streamer_token"] or credentials["bot_token"], credentials["client_id"])
        self.directory = UserDirectory()
        self.subscribers = SubscriberTracker(self.directory)
        self.rewards = ChannelPointManager(self.api, directory=self.directory)
        self.eventsub = EventSubManager(self)

        declare_configured_rewards(self, self.rewards, settings)

    async def event_ready(self) -> None:
        """Resolve the broadcaster, load channel roles, subscribe to EventSub and reconcile rewards."""
        logger.info("Bot ready")

        channels: list[str] = self.config.get("channels") or []
        if not channels:
            logger.warning("No channels configured; rewards will not be reconciled.")
            return

        try:
            broadcaster_id = await self.api.get_user_id(channels[0])
        except Exception as e:
            logger.error(f"Could not resolve broadcaster {channels[0]}: {e}", exc_info=True)
            return
        if not broadcaster_id:
            logger.error("Streamer not found: %s", channels[0])
            return

        self.api.broadcaster_id = broadcaster_id
        self.directory.broadcaster_id = broadcaster_id

        await self.directory.refresh(self.api)
        await self.eventsub.setup(broadcaster_id)
        self.rewards.on_ready()

    async def event_eventsub_notification_channel_reward_redeem(self, event: Any) -> None:
        """Handle EventSub channel point redemption events."""
        await handle_eventsub_reward(event, self)

    async def event_eventsub_notification_channel_reward_redeem_updated(self, event: Any) -> None:
        """Handle EventSub channel point redemption status updates."""
        await handle_eventsub_reward_update(event, self)

    async def event_eventsub_notification_subscription(self, event: Any) -> None:
        """Handle EventSub channel subscription events."""
        await handle_eventsub_subscription(event, self)

    async def event_eventsub_notification_followV2(self, event: Any) -> None:
        """Handle EventSub follow events."""
        await handle_eventsub_follow(event, self)

    @commands.command(name="enablegroup")  # type: ignore[misc]
    async def enable_group(self, ctx: commands.Context, name: str = "") -> None:
        """Enable every reward in a group (moderators only)."""
        await self._toggle_group(ctx, name, enable=True)

    @commands.command(name="disablegroup")  # type: ignore[misc]
    async def disable_group(self, ctx: commands.Context, name: str = "") -> None:
        """Disable every reward in a group (moderators only)."""
        await self._toggle_group(ctx, name, enable=False)

    async def _toggle_group(self, ctx: commands.Context, name: str, enable: bool) -> None:
        if not is_privileged(ctx.author):
            return
        group = next((g for g in self.rewards.registry.groups() if g.name.lower() == name.lower()), None)
        if group is None:
            await ctx.send(f"Unknown reward group: {name}")
            return
        sent = self.rewards.enable_group(group) if enable else self.rewards.disable_group(group)
        state = "enabled" if enable else "disabled"
        await ctx.send(f"Group {group.name}: {sent} rewards {state}")

    async def close(self) -> None:
        """Clean up resources and close the bot gracefully."""
        logger.info("Shutdown...")
        await self.rewards.close()
        await self.eventsub.close()
        await self.api.close()
        await super().close()
