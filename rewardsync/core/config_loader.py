import configparser
import os
import pathlib
from typing import Any

from rewardsync.core.errors import ConfigError
from rewardsync.rewards.models import Permission
from rewardsync.utils.helpers import split_list

REWARD_PREFIX = "REWARD:"
UNMANAGED_PREFIX = "UNMANAGED:"


def _write_defaults(config_path: str) -> None:
    config = configparser.ConfigParser()
    config["SETTINGS"] = {
        "log_level": "INFO",
        "watchdog_interval": "120",
        "health_port": "8081",
    }
    config["INITIAL_CHANNELS"] = {"channels": ""}
    config["CREDENTIALS"] = {
        "bot_token": "",
        "streamer_token": "",
        "client_id": "",
        "client_secret": "",
    }
    with pathlib.Path(config_path).open("w") as configfile:
        config.write(configfile)


def _load_reward(config: configparser.ConfigParser, section: str) -> dict[str, Any]:
    title = section[len(REWARD_PREFIX) :].strip()
    if not title:
        raise ConfigError(f"Section [{section}] has no reward title")

    try:
        cost = config.getint(section, "cost")
        enabled = config.getboolean(section, "enabled", fallback=True)
        auto_fulfills = config.getboolean(section, "auto_fulfills", fallback=False)
        requires_input = config.getboolean(section, "requires_input", fallback=False)
    except configparser.NoOptionError as e:
        raise ConfigError(f"Reward '{title}' is missing option '{e.option}'") from e
    except ValueError as e:
        raise ConfigError(f"Reward '{title}' has an invalid value: {e}") from e

    if cost < 0:
        raise ConfigError(f"Reward '{title}' has a negative cost: {cost}")

    return {
        "title": title,
        "cost": cost,
        "enabled": enabled,
        "permission": Permission.parse(config.get(section, "permission", fallback="everyone")),
        "auto_fulfills": auto_fulfills,
        "requires_input": requires_input,
        "valid_inputs": split_list(config.get(section, "valid_inputs", fallback="")),
        "group": config.get(section, "group", fallback="").strip() or None,
        "handler": config.get(section, "handler", fallback="log").strip().lower(),
    }


def load_settings(config_path: str = "settings.ini") -> dict[str, Any]:
    """
    Load configuration settings from INI file.

    Creates a default configuration file if it doesn't exist. Rewards are
    declared one per section: [REWARD:<title>] for managed rewards and
    [UNMANAGED:<title>] for rewards created elsewhere.

    Args:
        config_path: Path to the configuration file

    Raises:
        ConfigError: If a value cannot be parsed.

    Returns:
        Dictionary containing all settings with proper typing
    """
    if not pathlib.Path(config_path).exists():
        _write_defaults(config_path)

    config = configparser.ConfigParser()
    try:
        config.read(config_path)
    except configparser.Error as e:
        raise ConfigError(f"Cannot parse {config_path}: {e}") from e

    try:
        watchdog_interval = int(config.get("SETTINGS", "watchdog_interval", fallback=120))
        health_port = int(config.get("SETTINGS", "health_port", fallback=8081))
    except ValueError as e:
        raise ConfigError(f"Invalid [SETTINGS] value: {e}") from e

    rewards = [_load_reward(config, section) for section in config.sections() if section.startswith(REWARD_PREFIX)]
    titles = [reward["title"] for reward in rewards]
    duplicates = {title for title in titles if titles.count(title) > 1}
    if duplicates:
        raise ConfigError(f"Duplicate reward titles: {sorted(duplicates)}")

    unmanaged = [
        {
            "title": section[len(UNMANAGED_PREFIX) :].strip(),
            "handler": config.get(section, "handler", fallback="log").strip().lower(),
        }
        for section in config.sections()
        if section.startswith(UNMANAGED_PREFIX)
    ]

    settings = {
        "log_level": config.get("SETTINGS", "log_level", fallback="INFO").upper(),
        "watchdog_interval": watchdog_interval,
        "health_port": health_port,
        "channels": split_list(config.get("INITIAL_CHANNELS", "channels", fallback="")),
        "credentials": {
            "bot_token": os.getenv("BOT_TOKEN") or config.get("CREDENTIALS", "bot_token", fallback=""),
            "streamer_token": os.getenv("STREAMER_TOKEN") or config.get("CREDENTIALS", "streamer_token", fallback=""),
            "client_id": config.get("CREDENTIALS", "client_id", fallback=""),
            "client_secret": config.get("CREDENTIALS", "client_secret", fallback=""),
        },
        "rewards": rewards,
        "unmanaged": unmanaged,
    }

    return settings
