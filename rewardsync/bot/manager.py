import asyncio
import logging
from typing import Any

from aiohttp import web

from rewardsync.bot.twitch_bot import TwitchBot

logger = logging.getLogger(__name__)

TaskType = asyncio.Task[None]


class BotManager:
    """Manage TwitchBot lifecycle, EventSub watchdog and healthcheck."""

    settings: dict[str, Any]
    bot: TwitchBot | None
    _running: bool

    watchdog_task: TaskType | None
    bot_task: TaskType | None

    health_app: web.Application | None
    health_runner: web.AppRunner | None

    def __init__(self, settings: dict[str, Any]) -> None:
        """
        Initialize BotManager.

        Args:
            settings: Output of load_settings().
        """
        self.settings = settings
        self.bot = None
        self._running = False
        self.watchdog_task = None
        self.bot_task = None
        self.health_app = None
        self.health_runner = None

    async def start_health_server(self, host: str = "127.0.0.1", port: int = 8081) -> None:
        """
        Start an internal HTTP server for health checking.

        Args:
            host: Host to bind the health server to.
            port: Port to listen for health requests.
        """
        self.health_app = web.Application()
        self.health_app.add_routes([web.get("/health", self._handle_health)])
        self.health_runner = web.AppRunner(self.health_app, access_log=None)
        await self.health_runner.setup()
        site = web.TCPSite(self.health_runner, host, port)
        await site.start()
        logger.info(f"Health server running on {host}:{port}")

    async def stop_health_server(self) -> None:
        """Stop the internal health HTTP server."""
        if self.health_runner:
            await self.health_runner.cleanup()
            logger.info("Health server stopped")

    async def _handle_health(self, _: web.Request) -> web.Response:
        """
        Handle /health HTTP requests.

        Returns:
            HTTP 200 with reward counts if the bot is connected, HTTP 500 otherwise.
        """
        if not (self._running and self.bot and getattr(self.bot, "is_connected", False)):
            return web.json_response({"status": "UNHEALTHY"}, status=500)

        registry = self.bot.rewards.registry
        managed = registry.managed_rewards()
        return web.json_response(
            {
                "status": "OK",
                "eventsub": self.bot.eventsub.is_healthy(),
                "managed_rewards": len(managed),
                "reconciled_rewards": sum(1 for reward in managed if reward.remote_id),
            }
        )

    async def start(self) -> None:
        """Start the bot, the watchdog and the health server. Restarts the bot after a crash."""
        self._running = True
        await self.start_health_server(host="0.0.0.0", port=self.settings.get("health_port", 8081))

        self.watchdog_task = asyncio.create_task(self._watchdog_loop())

        while self._running:
            try:
                self.bot = TwitchBot(self.settings)
                self.bot_task = asyncio.create_task(self.bot.start())

                logger.info("Bot started")
                await self.bot_task

            except asyncio.CancelledError:
                logger.info("Bot task cancelled")
                break

            except Exception as e:
                logger.exception(f"Bot crashed: {e}")
                await asyncio.sleep(10)

    async def stop(self) -> None:
        """Stop bot and all background tasks, including health server."""
        self._running = False
        await self.stop_health_server()

        tasks: list[TaskType] = []

        for t in (self.watchdog_task, self.bot_task):
            if t and not t.done():
                t.cancel()
                tasks.append(t)

        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        if self.bot:
            await self.bot.close()

        logger.info("BotManager stopped")

    async def _watchdog_loop(self) -> None:
        """Periodically make sure the EventSub subscriptions are alive."""
        interval = self.settings.get("watchdog_interval", 120)
        while self._running:
            try:
                await asyncio.sleep(interval)
                if not self.bot or not getattr(self.bot, "is_connected", False):
                    logger.debug("Bot not connected; skipping EventSub check")
                    continue
                await self.bot.eventsub.ensure_alive()

            except asyncio.CancelledError:
                return
            except Exception as e:
                logger.exception(f"Error in watchdog loop: {e}")
                await asyncio.sleep(60)
