"""
Weekly play streak tracking.
"""
import logging
from datetime import date
from typing import Any, Callable, Optional

from .data_manager import LAST_PLAY_DATE_KEY, WEEKLY_STREAK_KEY, WEEKS_PLAYED_KEY

logger = logging.getLogger(__name__)

STREAK_WINDOW_DAYS = 7
STREAK_RESET_DAYS = 14


class StreakTracker:
    """
    Keeps a weekly streak in a key-value store.

    A play within a week of the previous one, in a different calendar week,
    extends the streak. Staying away for more than two weeks resets it.
    """

    def __init__(self, store: Any, today: Optional[Callable[[], date]] = None):
        self.store = store
        self._today = today or date.today

    @property
    def weekly_streak(self) -> int:
        return int(self.store.get(WEEKLY_STREAK_KEY, 0) or 0)

    @property
    def weeks_played(self) -> int:
        return int(self.store.get(WEEKS_PLAYED_KEY, 0) or 0)

    @property
    def last_play_date(self) -> Optional[date]:
        raw = self.store.get(LAST_PLAY_DATE_KEY)
        if not raw:
            return None
        try:
            return date.fromisoformat(str(raw)[:10])
        except ValueError:
            logger.warning(f"Ignoring unreadable last play date: {raw!r}")
            return None

    def record_play_session(self) -> int:
        """
        Update the streak for a play session today.

        Returns:
            The weekly streak after the update
        """
        today = self._today()
        last_play = self.last_play_date
        streak = self.weekly_streak

        if last_play is None:
            streak = 0
        else:
            days_since = (today - last_play).days
            if days_since < 0:
                logger.warning(f"Last play date {last_play.isoformat()} is after today, streak left at {streak}")
            elif days_since <= STREAK_WINDOW_DAYS:
                if today.isocalendar()[:2] != last_play.isocalendar()[:2]:
                    streak += 1
                    self.store.set(WEEKS_PLAYED_KEY, self.weeks_played + 1)
            elif days_since > STREAK_RESET_DAYS:
                streak = 0

        self.store.set(WEEKLY_STREAK_KEY, streak)
        self.store.set(LAST_PLAY_DATE_KEY, today.isoformat())
        logger.debug(f"Play session recorded on {today.isoformat()}, weekly streak {streak}")
        return streak
