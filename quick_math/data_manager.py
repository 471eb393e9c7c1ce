"""
Data manager for persisting player progress as JSON.
Provides the key-value stores the round engine and its collaborators use.
"""
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional

BEST_SCORE_KEY = "BestScore"
HINTS_AVAILABLE_KEY = "HintsAvailable"
SLOW_TIMERS_AVAILABLE_KEY = "SlowTimersAvailable"
ADS_REMOVED_KEY = "AdsRemoved"
LAST_PLAY_DATE_KEY = "LastPlayDate"
WEEKLY_STREAK_KEY = "WeeklyStreak"
WEEKS_PLAYED_KEY = "WeeksPlayed"


class InMemoryStore:
    """Dictionary backed store, used for tests and ephemeral sessions."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._values: Dict[str, Any] = dict(initial or {})

    def get(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._values[key] = value

    def keys(self) -> List[str]:
        return list(self._values.keys())


class ScopedStore:
    """Wraps a store and prefixes every key with a scope such as a player id."""

    def __init__(self, store: Any, scope: str):
        self.store = store
        self.scope = str(scope)

    def _key(self, key: str) -> str:
        return f"{self.scope}:{key}"

    def get(self, key: str, default: Any = None) -> Any:
        return self.store.get(self._key(key), default)

    def set(self, key: str, value: Any) -> None:
        self.store.set(self._key(key), value)


class DataManager:
    """Manages loading and saving of the JSON store file."""

    def __init__(self, store_path: str = "./data/store.json"):
        """
        Initialize DataManager and load any existing store file.

        Args:
            store_path: Path to the JSON file holding persisted values
        """
        self.store_path = Path(store_path)
        self.logger = logging.getLogger(__name__)
        self.load_errors: List[str] = []  # Track loading errors for user feedback
        self._values: Dict[str, Any] = {}
        self.load()

    def load(self) -> Dict[str, Any]:
        """
        Load the store file with comprehensive error handling.

        A missing file is a normal first run. An unreadable or invalid file
        is recorded as a load error and the store starts empty.

        Returns:
            Dictionary of loaded values
        """
        self._values = {}
        self.load_errors.clear()

        if not self.store_path.exists():
            self.logger.info(f"No store file at {self.store_path}, starting with empty progress")
            return self._values

        try:
            with open(self.store_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            error_msg = f"Invalid JSON in {self.store_path}: {e}"
            self.logger.error(error_msg)
            self.load_errors.append(error_msg)
            return self._values
        except OSError as e:
            error_msg = f"Failed to read store file {self.store_path}: {e}"
            self.logger.error(error_msg)
            self.load_errors.append(error_msg)
            return self._values

        if not self.validate_store_structure(data):
            error_msg = f"Invalid store structure in {self.store_path}: expected a JSON object"
            self.logger.error(error_msg)
            self.load_errors.append(error_msg)
            return self._values

        self._values = data
        self.logger.info(f"Loaded {len(self._values)} stored values from {self.store_path}")
        return self._values

    def validate_store_structure(self, data: Any) -> bool:
        """
        Validate the structure of loaded store data.

        Args:
            data: Parsed JSON data

        Returns:
            True if the data is an object with string keys
        """
        if not isinstance(data, dict):
            return False
        return all(isinstance(key, str) for key in data)

    def get(self, key: str, default: Any = None) -> Any:
        """Get a stored value."""
        return self._values.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """
        Set a value and write the store file through.

        Raises:
            OSError: If the store file cannot be written
        """
        self._values[key] = value
        self.save()

    def save(self) -> None:
        """
        Atomically write all values to the store file.

        Raises:
            OSError: If the directory cannot be created or the file written
        """
        try:
            self.store_path.parent.mkdir(parents=True, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(
                dir=str(self.store_path.parent), prefix=".store-", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, 'w', encoding='utf-8') as f:
                    json.dump(self._values, f, indent=2, sort_keys=True, default=str)
                os.replace(temp_path, self.store_path)
            except BaseException:
                if os.path.exists(temp_path):
                    os.unlink(temp_path)
                raise
        except OSError as e:
            self.logger.error(f"Failed to write store file {self.store_path}: {e}")
            raise

    def get_load_errors(self) -> List[str]:
        """
        Get list of loading errors from the last load.

        Returns:
            List of error messages
        """
        return self.load_errors.copy()

    def has_load_errors(self) -> bool:
        """
        Check if there were any loading errors.

        Returns:
            True if there were loading errors
        """
        return len(self.load_errors) > 0

    def get_loading_summary(self) -> Dict[str, Any]:
        """
        Get a summary of the loading process.

        Returns:
            Dictionary with loading statistics and status
        """
        return {
            'store_path': str(self.store_path),
            'total_values': len(self._values),
            'has_errors': self.has_load_errors(),
            'error_count': len(self.load_errors),
            'errors': self.get_load_errors()
        }
