import asyncio
import logging
from typing import TYPE_CHECKING, Any, Optional

from twitchio.errors import Unauthorized
from twitchio.ext import eventsub

if TYPE_CHECKING:
    from rewardsync.bot.twitch_bot import TwitchBot

logger = logging.getLogger(__name__)


class EventSubManager:
    """
    Manager for Twitch EventSub WebSocket subscriptions.

    Subscribes to channel point redemption adds and updates, subscriptions and
    follows, and monitors the underlying WebSocket connection health.
    """

    def __init__(self, bot: "TwitchBot") -> None:
        """
        Initialize the EventSub manager.

        Args:
            bot: The parent TwitchBot instance. Provides settings and the streamer token.
        """
        self.bot: "TwitchBot" = bot
        self.client: Optional[eventsub.EventSubWSClient] = None
        self.broadcaster_id: Optional[str] = None
        self.subscribed: bool = False
        self._reconnect_lock: asyncio.Lock = asyncio.Lock()

    def _streamer_token(self) -> str:
        token: str = self.bot.config["credentials"].get("streamer_token") or ""
        return token

    async def setup(self, broadcaster_id: str | None) -> None:
        """
        Perform initial setup for EventSub.

        Args:
            broadcaster_id: Twitch user ID of the channel to listen to.
        """
        if not self._streamer_token():
            logger.info("No streamer token available; EventSub is disabled.")
            return

        if not broadcaster_id:
            logger.warning("Broadcaster ID is unknown; EventSub setup skipped.")
            return

        self.broadcaster_id = broadcaster_id
        try:
            await self._subscribe_once()
        except Exception as exc:
            logger.error("EventSub setup failed: %s", exc, exc_info=True)

    async def ensure_alive(self) -> None:
        """
        Check the health of the EventSub WebSocket connection and recover if needed.

        Intended to be called periodically by the watchdog.
        """
        if not self.subscribed or not self.client:
            logger.warning("EventSub is not subscribed; attempting to subscribe.")
            await self._subscribe_once()
            return

        if self.is_healthy():
            return

        logger.warning("EventSub socket for broadcaster %s is down; resubscribing.", self.broadcaster_id)
        await self._cleanup()
        await self._subscribe_once()

    def is_healthy(self) -> bool:
        """Return True if at least one EventSub socket is connected."""
        if not self.client:
            return False
        sockets = getattr(self.client, "_sockets", [])
        return any(getattr(socket, "is_connected", False) for socket in sockets)

    async def close(self) -> None:
        """Shut down the EventSub manager and clean up all resources."""
        await self._cleanup()
        logger.info("EventSub manager closed.")

    def _subscriptions(self, token: str) -> list[tuple[str, str, tuple[Any, ...], bool]]:
        broadcaster = self.broadcaster_id
        return [
            ("channel point redemptions", "subscribe_channel_points_redeemed", (broadcaster, token), True),
            ("redemption updates", "subscribe_channel_points_redeemed_updated", (broadcaster, token), True),
            ("subscriptions", "subscribe_channel_subscriptions", (broadcaster, token), False),
            ("follows", "subscribe_channel_follows_v2", (broadcaster, broadcaster, token), False),
        ]

    async def _subscribe_once(self) -> None:
        """
        Create the EventSub subscriptions.

        Uses a lock to prevent concurrent subscription attempts. Redemption topics
        are required; subscription and follow topics are optional and only logged
        when they fail.
        """
        async with self._reconnect_lock:
            if self.subscribed and self.client:
                logger.debug("EventSub is already subscribed.")
                return

            token = self._streamer_token()
            if not token or not self.broadcaster_id:
                logger.warning("Unable to subscribe to EventSub due to missing credentials.")
                return

            try:
                self.client = eventsub.EventSubWSClient(self.bot)
                for topic, method, args, required in self._subscriptions(token):
                    try:
                        await getattr(self.client, method)(*args)
                    except Unauthorized:
                        if required:
                            raise
                        logger.warning("Not authorized for %s; continuing without them.", topic)
                self.subscribed = True
                logger.info("EventSub subscriptions successfully registered.")

            except Unauthorized:
                logger.warning(
                    "EventSub subscription failed: broadcaster is not an Affiliate or Partner, "
                    "or the token is invalid."
                )
                await self._cleanup()

            except Exception as exc:
                logger.warning("Failed to register EventSub subscription: %s", exc)
                await self._cleanup()

    async def _cleanup(self) -> None:
        """
        Reset the manager's state.

        The brief sleep lets pending asynchronous operations settle before a
        potential re-subscription.
        """
        self.client = None
        self.subscribed = False
        await asyncio.sleep(0.5)
        logger.debug("EventSub internal state has been cleared.")
