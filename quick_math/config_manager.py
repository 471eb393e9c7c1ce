"""
Configuration manager for Quick Math Duel settings and parameters.
"""
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .models import HostSettings, RoundSettings


class ConfigManager:
    """Manages host configuration settings and round parameters."""

    # Default configuration values
    DEFAULT_TICK_INTERVAL = 0.1
    DEFAULT_DISPLAY_REFRESH = 1.0
    DEFAULT_PACK_SIZE = 10
    DEFAULT_STORE_PATH = "./data/store.json"

    # Validation limits
    MIN_TICK_INTERVAL = 0.05
    MAX_TICK_INTERVAL = 1.0
    MIN_DISPLAY_REFRESH = 0.5
    MAX_DISPLAY_REFRESH = 10.0
    MIN_PACK_SIZE = 1
    MAX_PACK_SIZE = 100

    def __init__(self):
        """Initialize ConfigManager with default settings."""
        self.logger = logging.getLogger(__name__)
        self._settings = HostSettings()

    def get_host_settings(self) -> HostSettings:
        """
        Get a copy of the current host settings.

        Returns:
            HostSettings object with current configuration
        """
        return HostSettings(
            tick_interval=self._settings.tick_interval,
            display_refresh=self._settings.display_refresh,
            hint_pack_size=self._settings.hint_pack_size,
            slow_timer_pack_size=self._settings.slow_timer_pack_size,
            store_path=self._settings.store_path
        )

    def get_round_settings(self) -> RoundSettings:
        """
        Build round settings reflecting the configured tick interval.

        Returns:
            RoundSettings for new engines
        """
        return RoundSettings(tick_interval=self._settings.tick_interval)

    def _check_number(
        self,
        value: Any,
        name: str,
        minimum: Union[int, float],
        maximum: Union[int, float],
        integer: bool = False
    ) -> Optional[Dict[str, Any]]:
        """Return a failure result if ``value`` is not a number within limits."""
        expected = (int,) if integer else (int, float)
        if isinstance(value, bool) or not isinstance(value, expected):
            error_msg = f"{name} must be {'an integer' if integer else 'a number'}, got {type(value).__name__}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Invalid input: Expected a number, got {type(value).__name__}"
            }
        if value < minimum or value > maximum:
            error_msg = f"{name} must be between {minimum} and {maximum}, got {value}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ {name} must be between {minimum} and {maximum}"
            }
        return None

    def set_tick_interval(self, interval: float) -> Dict[str, Any]:
        """
        Set the clock tick interval in seconds.

        Args:
            interval: Seconds between ticks

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        failure = self._check_number(interval, "Tick interval", self.MIN_TICK_INTERVAL, self.MAX_TICK_INTERVAL)
        if failure:
            return failure

        self._settings.tick_interval = float(interval)
        self.logger.info(f"Tick interval set to {interval}s")
        return {
            'success': True,
            'message': f"Tick interval set to {interval}s",
            'user_message': f"✅ Clock ticks every {interval} seconds"
        }

    def get_tick_interval(self) -> float:
        return self._settings.tick_interval

    def set_display_refresh(self, seconds: float) -> Dict[str, Any]:
        """
        Set how often a running question message is refreshed.

        Args:
            seconds: Minimum seconds between message edits

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        failure = self._check_number(seconds, "Display refresh", self.MIN_DISPLAY_REFRESH, self.MAX_DISPLAY_REFRESH)
        if failure:
            return failure

        self._settings.display_refresh = float(seconds)
        self.logger.info(f"Display refresh set to {seconds}s")
        return {
            'success': True,
            'message': f"Display refresh set to {seconds}s",
            'user_message': f"✅ Question display refreshes every {seconds} seconds"
        }

    def get_display_refresh(self) -> float:
        return self._settings.display_refresh

    def set_hint_pack_size(self, size: int) -> Dict[str, Any]:
        """
        Set how many hints one purchase grants.

        Args:
            size: Hints per pack

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        failure = self._check_number(size, "Hint pack size", self.MIN_PACK_SIZE, self.MAX_PACK_SIZE, integer=True)
        if failure:
            return failure

        self._settings.hint_pack_size = size
        self.logger.info(f"Hint pack size set to {size}")
        return {
            'success': True,
            'message': f"Hint pack size set to {size}",
            'user_message': f"✅ Hint packs now contain {size} hints"
        }

    def get_hint_pack_size(self) -> int:
        return self._settings.hint_pack_size

    def set_slow_timer_pack_size(self, size: int) -> Dict[str, Any]:
        """
        Set how many slow timers one purchase grants.

        Args:
            size: Slow timers per pack

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        failure = self._check_number(
            size, "Slow timer pack size", self.MIN_PACK_SIZE, self.MAX_PACK_SIZE, integer=True
        )
        if failure:
            return failure

        self._settings.slow_timer_pack_size = size
        self.logger.info(f"Slow timer pack size set to {size}")
        return {
            'success': True,
            'message': f"Slow timer pack size set to {size}",
            'user_message': f"✅ Slow timer packs now contain {size} slow timers"
        }

    def get_slow_timer_pack_size(self) -> int:
        return self._settings.slow_timer_pack_size

    def set_store_path(self, path: str) -> Dict[str, Any]:
        """
        Set the JSON store file path.

        Args:
            path: Path of the store file

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if not isinstance(path, str) or not path.strip():
            error_msg = "Store path must be a non-empty string"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': "❌ Invalid store path: Path cannot be empty"
            }

        store_path = Path(path.strip())
        if store_path.exists() and store_path.is_dir():
            error_msg = f"Store path is a directory: {path}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Store path points to a directory: {path}"
            }

        self._settings.store_path = str(store_path)
        self.logger.info(f"Store path set to {store_path}")
        return {
            'success': True,
            'message': f"Store path set to {store_path}",
            'user_message': f"✅ Progress will be saved to {store_path}"
        }

    def get_store_path(self) -> str:
        return self._settings.store_path

    def apply_config(self, config: Dict[str, Any]) -> List[str]:
        """
        Apply the ``game`` section of a loaded config file.

        Invalid values are logged and the defaults kept.

        Args:
            config: Parsed config.json contents

        Returns:
            List of error messages for values that were rejected
        """
        game_config = (config or {}).get('game', {}) or {}
        setters = {
            'tick_interval': self.set_tick_interval,
            'display_refresh': self.set_display_refresh,
            'hint_pack_size': self.set_hint_pack_size,
            'slow_timer_pack_size': self.set_slow_timer_pack_size,
            'store_path': self.set_store_path,
        }

        errors = []
        for key, setter in setters.items():
            if key not in game_config:
                continue
            result = setter(game_config[key])
            if not result['success']:
                errors.append(f"{key}: {result['error']}")

        if errors:
            self.logger.warning(f"Configuration applied with {len(errors)} rejected values")
        else:
            self.logger.info("Configuration applied successfully")
        return errors

    def reset_to_defaults(self) -> None:
        """Reset all settings to their default values."""
        self._settings = HostSettings()
        self.logger.info("Configuration reset to defaults")

    def validate_settings(self) -> Dict[str, Any]:
        """
        Validate current settings.

        Returns:
            Dictionary with 'valid' flag and list of 'issues'
        """
        issues = []
        settings = self._settings

        if not self.MIN_TICK_INTERVAL <= settings.tick_interval <= self.MAX_TICK_INTERVAL:
            issues.append(f"Tick interval {settings.tick_interval} is out of range")
        if not self.MIN_DISPLAY_REFRESH <= settings.display_refresh <= self.MAX_DISPLAY_REFRESH:
            issues.append(f"Display refresh {settings.display_refresh} is out of range")
        if not self.MIN_PACK_SIZE <= settings.hint_pack_size <= self.MAX_PACK_SIZE:
            issues.append(f"Hint pack size {settings.hint_pack_size} is out of range")
        if not self.MIN_PACK_SIZE <= settings.slow_timer_pack_size <= self.MAX_PACK_SIZE:
            issues.append(f"Slow timer pack size {settings.slow_timer_pack_size} is out of range")
        if not settings.store_path:
            issues.append("Store path is empty")

        return {
            'valid': len(issues) == 0,
            'issues': issues
        }

    def get_settings_summary(self) -> str:
        """
        Get a formatted summary of current settings.

        Returns:
            Human-readable string describing current settings
        """
        return (
            f"Game Settings:\n"
            f"• Tick interval: {self._settings.tick_interval} seconds\n"
            f"• Display refresh: {self._settings.display_refresh} seconds\n"
            f"• Hint pack: {self._settings.hint_pack_size}\n"
            f"• Slow timer pack: {self._settings.slow_timer_pack_size}\n"
            f"• Store: {self._settings.store_path}"
        )

    def get_configuration_health_check(self) -> Dict[str, Any]:
        """
        Perform a health check of the configuration.

        Returns:
            Dictionary with health status and recommendations
        """
        health_check = {
            'healthy': True,
            'warnings': [],
            'errors': [],
            'recommendations': []
        }

        validation_result = self.validate_settings()
        if not validation_result['valid']:
            health_check['healthy'] = False
            health_check['errors'].extend(f"❌ {issue}" for issue in validation_result['issues'])

        store_dir = Path(self._settings.store_path).parent
        if not store_dir.exists():
            health_check['warnings'].append(f"⚠️ Store directory does not exist: {store_dir}")
            health_check['recommendations'].append(
                "The store directory will be created automatically on the first save."
            )
        elif not os.access(store_dir, os.W_OK):
            health_check['healthy'] = False
            health_check['errors'].append(f"❌ Cannot write to store directory: {store_dir}")
            health_check['recommendations'].append("Check file permissions for the store directory.")

        if self._settings.display_refresh < 1.0:
            health_check['warnings'].append(
                f"⚠️ Display refresh of {self._settings.display_refresh}s may hit Discord rate limits"
            )
            health_check['recommendations'].append("Consider refreshing at most once per second.")

        return health_check
