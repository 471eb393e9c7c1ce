"""
Unit tests for StreakTracker.
"""
import unittest
from datetime import date

from quick_math.data_manager import LAST_PLAY_DATE_KEY, WEEKLY_STREAK_KEY, WEEKS_PLAYED_KEY, InMemoryStore
from quick_math.streak import StreakTracker


class TestStreakTracker(unittest.TestCase):
    """Test cases for weekly streak bookkeeping."""

    def setUp(self):
        """Set up test fixtures."""
        self.store = InMemoryStore()
        self.today = date(2024, 3, 13)  # Wednesday, ISO week 11
        self.tracker = StreakTracker(self.store, today=lambda: self.today)

    def _played_on(self, day, streak=0, weeks=0):
        self.store.set(LAST_PLAY_DATE_KEY, day.isoformat())
        self.store.set(WEEKLY_STREAK_KEY, streak)
        self.store.set(WEEKS_PLAYED_KEY, weeks)

    def test_first_play_starts_at_zero(self):
        """Test the first recorded play stores the date with a zero streak."""
        self.assertEqual(self.tracker.record_play_session(), 0)

        self.assertEqual(self.store.get(LAST_PLAY_DATE_KEY), "2024-03-13")
        self.assertEqual(self.tracker.weekly_streak, 0)
        self.assertEqual(self.tracker.last_play_date, self.today)

    def test_same_week_keeps_streak(self):
        """Test another play in the same week changes nothing."""
        self._played_on(date(2024, 3, 11), streak=2, weeks=5)

        self.assertEqual(self.tracker.record_play_session(), 2)
        self.assertEqual(self.tracker.weeks_played, 5)

    def test_next_week_within_window_extends_streak(self):
        """Test a play in the following week within seven days extends the streak."""
        self._played_on(date(2024, 3, 8), streak=2, weeks=5)

        self.assertEqual(self.tracker.record_play_session(), 3)
        self.assertEqual(self.tracker.weeks_played, 6)
        self.assertEqual(self.store.get(LAST_PLAY_DATE_KEY), "2024-03-13")

    def test_gap_between_one_and_two_weeks_keeps_streak(self):
        """Test a gap of eight to fourteen days neither extends nor resets."""
        self._played_on(date(2024, 3, 2), streak=4, weeks=4)

        self.assertEqual(self.tracker.record_play_session(), 4)
        self.assertEqual(self.tracker.weeks_played, 4)

    def test_long_gap_resets_streak(self):
        """Test more than two weeks away resets the streak."""
        self._played_on(date(2024, 2, 20), streak=6, weeks=9)

        self.assertEqual(self.tracker.record_play_session(), 0)
        self.assertEqual(self.tracker.weeks_played, 9)

    def test_last_play_after_today_keeps_streak(self):
        """Test a stored date in the future neither extends nor resets the streak."""
        self._played_on(date(2024, 3, 20), streak=3, weeks=4)

        with self.assertLogs('quick_math.streak', level='WARNING'):
            self.assertEqual(self.tracker.record_play_session(), 3)

        self.assertEqual(self.tracker.weeks_played, 4)
        self.assertEqual(self.store.get(LAST_PLAY_DATE_KEY), "2024-03-13")

    def test_unreadable_date_treated_as_first_play(self):
        """Test a corrupt stored date is ignored with a warning."""
        self.store.set(LAST_PLAY_DATE_KEY, "last tuesday")
        self.store.set(WEEKLY_STREAK_KEY, 3)

        with self.assertLogs('quick_math.streak', level='WARNING'):
            self.assertEqual(self.tracker.record_play_session(), 0)

    def test_datetime_strings_accepted(self):
        """Test stored timestamps with a time part are read as dates."""
        self.store.set(LAST_PLAY_DATE_KEY, "2024-03-08T21:15:00")

        self.assertEqual(self.tracker.last_play_date, date(2024, 3, 8))

    def test_consecutive_weeks_accumulate(self):
        """Test weekly plays over a month build up the streak."""
        days = [date(2024, 3, 4), date(2024, 3, 11), date(2024, 3, 18), date(2024, 3, 25)]
        results = []
        for day in days:
            self.today = day
            results.append(self.tracker.record_play_session())

        self.assertEqual(results, [0, 1, 2, 3])
        self.assertEqual(self.tracker.weeks_played, 3)


if __name__ == '__main__':
    unittest.main()
