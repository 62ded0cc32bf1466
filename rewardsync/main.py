import asyncio
import logging
import os
import sys

from rewardsync.bot.manager import BotManager
from rewardsync.core.config_loader import load_settings

CONFIG_PATH = os.getenv("REWARDSYNC_CONFIG", "/app/settings.ini")

logger = logging.getLogger("main")


async def main() -> None:
    """Main entry point: loads settings and runs the bot until it stops."""
    manager = None
    try:
        settings = load_settings(CONFIG_PATH)
        logging.basicConfig(level=settings["log_level"], format="%(asctime)s - %(levelname)s - %(message)s")
        logger.info("Starting bot...")
        manager = BotManager(settings)

        await manager.start()
    except Exception as e:
        logger.exception(f"Bot crashed!: {e}")
    finally:
        if manager:
            await manager.stop()


def run() -> None:
    if sys.platform == "win32":
        asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

    asyncio.run(main())


if __name__ == "__main__":
    run()
