#!/usr/bin/env python3
"""
Quick Math Duel launcher.

Reads the JSON configuration, sets up logging and starts the Discord bot.
The token comes from DISCORD_BOT_TOKEN when set, otherwise from the
"bot.token" entry of the configuration file.

Usage:
    python main.py                       # run with ./config.json
    python main.py --config other.json   # run with another file
    python main.py --check               # report configuration health and exit
"""

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path

from quick_math.config_manager import ConfigManager
from quick_math.data_manager import DataManager

TOKEN_PLACEHOLDER = "YOUR_DISCORD_BOT_TOKEN_HERE"
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class StartupError(Exception):
    """Raised when the bot cannot be launched with the given configuration."""


def read_config_file(config_path: Path) -> dict:
    """Parse the configuration file into a dictionary."""
    if not config_path.exists():
        raise StartupError(
            f"{config_path} not found. Copy config.example.json to {config_path} and fill in your bot token."
        )
    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            config = json.load(f)
    except json.JSONDecodeError as e:
        raise StartupError(f"{config_path} is not valid JSON: {e}") from e
    except OSError as e:
        raise StartupError(f"Could not read {config_path}: {e}") from e

    if not isinstance(config, dict):
        raise StartupError(f"{config_path} must contain a JSON object")
    return config


def resolve_token(config: dict) -> str:
    token = os.getenv('DISCORD_BOT_TOKEN') or config.get('bot', {}).get('token')
    if not token or token == TOKEN_PLACEHOLDER:
        raise StartupError(
            "No Discord bot token configured. Set DISCORD_BOT_TOKEN or the 'bot.token' entry of the config file."
        )
    return token


def configure_logging(config: dict) -> None:
    """Log to the console and to <log_directory>/bot.log."""
    section = config.get('logging', {})
    level = getattr(logging, str(section.get('level', 'INFO')).upper(), logging.INFO)
    log_directory = Path(section.get('log_directory', './logs/'))
    log_directory.mkdir(parents=True, exist_ok=True)

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler(log_directory / "bot.log", encoding='utf-8')
        ]
    )
    # discord.py logs every gateway event at INFO
    logging.getLogger('discord').setLevel(logging.WARNING)


def report_health(config: dict) -> bool:
    """
    Print the effective game settings and anything wrong with them.

    Returns:
        True if nothing blocks the bot from running
    """
    config_manager = ConfigManager()
    rejected = config_manager.apply_config(config)
    health = config_manager.get_configuration_health_check()
    loading = DataManager(config_manager.get_store_path()).get_loading_summary()

    print(config_manager.get_settings_summary())
    print(f"• Stored values: {loading['total_values']}")
    for error in rejected:
        print(f"⚠️ Ignored setting: {error}")
    for line in health['errors'] + health['warnings'] + loading['errors']:
        print(line)
    for line in health['recommendations']:
        print(f"💡 {line}")

    ok = health['healthy'] and not loading['has_errors']
    print("✅ Configuration looks good" if ok else "❌ Configuration needs attention")
    return ok


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the Quick Math Duel Discord bot.")
    parser.add_argument('--config', default='config.json', type=Path, help="path to the JSON configuration")
    parser.add_argument('--check', action='store_true', help="report configuration health and exit")
    return parser.parse_args(argv)


async def launch(config: dict) -> None:
    from quick_math.bot import run_bot
    await run_bot(resolve_token(config), config)


def main(argv=None) -> int:
    args = parse_args(argv)
    try:
        config = read_config_file(args.config)
        if args.check:
            return 0 if report_health(config) else 1

        configure_logging(config)
        print("🧮 Quick Math Duel is starting...")
        asyncio.run(launch(config))
    except StartupError as e:
        print(f"❌ {e}")
        return 1
    except KeyboardInterrupt:
        print("\n👋 Stopped")
    return 0


if __name__ == "__main__":
    sys.exit(main())
