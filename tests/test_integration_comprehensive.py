"""
Integration tests for the Quick Math Duel components working together.
"""
import asyncio
import os
import random
import shutil
import tempfile
import unittest
from unittest.mock import AsyncMock, Mock

from quick_math.config_manager import ConfigManager
from quick_math.data_manager import DataManager
from quick_math.models import GamePhase, RoundEvent
from quick_math.round_clock import RoundClock
from quick_math.session_controller import PRODUCT_HINTS, SessionController
from tests.test_fixtures import FakeClock


class TestCompleteDuelFlow(unittest.IsolatedAsyncioTestCase):
    """Test complete duel flows against a file-backed store."""

    def setUp(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.mkdtemp()
        self.store_path = os.path.join(self.temp_dir, "store.json")
        self.config_manager = ConfigManager()
        self.config_manager.set_store_path(self.store_path)
        self.leaderboard = Mock()
        self.channel_id = 100
        self.player_id = 200

    def tearDown(self):
        """Clean up test fixtures."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def create_controller(self, clock_factory=FakeClock, monetization=None):
        return SessionController(
            DataManager(self.store_path),
            config_manager=self.config_manager,
            leaderboard=self.leaderboard,
            monetization=monetization,
            rng_factory=lambda: random.Random(2024),
            clock_factory=clock_factory
        )

    def play(self, controller, correct=0, wrong=0):
        engine = controller.get_session(self.channel_id).engine
        for _ in range(correct):
            controller.answer(self.channel_id, self.player_id, engine.current_question.correct_answer)
        for _ in range(wrong):
            controller.answer(self.channel_id, self.player_id, engine.current_question.correct_answer + 1000)

    async def test_complete_session_flow(self):
        """Test play, game over, continue, second game over and restart."""
        monetization = Mock()
        monetization.ads_removed = False
        monetization.show_rewarded_ad = AsyncMock(return_value=True)
        monetization.show_interstitial_ad = AsyncMock()
        controller = self.create_controller(monetization=monetization)
        events = []
        controller.add_event_handler(lambda channel, event, state: events.append(event))

        await controller.start_round(self.channel_id, self.player_id)
        self.play(controller, correct=6)
        engine = controller.get_session(self.channel_id).engine
        self.assertEqual(engine.difficulty_level, 1)
        self.assertEqual(engine.time_remaining, 4.7)

        self.play(controller, wrong=3)
        self.assertEqual(engine.phase, GamePhase.GAME_OVER)
        self.leaderboard.submit_score.assert_not_called()

        result = await controller.continue_with_extra_life(self.channel_id, self.player_id)
        self.assertTrue(result['success'])
        self.play(controller, correct=1, wrong=1)

        self.leaderboard.submit_score.assert_called_once_with(7)
        self.assertEqual(events.count(RoundEvent.GAME_OVER), 2)
        self.assertEqual(events.count(RoundEvent.CONTINUED), 1)

        result = await controller.start_round(self.channel_id, self.player_id)
        self.assertTrue(result['success'])
        self.assertEqual(result['session_info']['best_score'], 7)
        self.assertEqual(self.leaderboard.submit_score.call_count, 1)
        monetization.show_interstitial_ad.assert_awaited_once()

    async def test_progress_persists_across_restarts(self):
        """Test best score and inventory survive a new controller and store."""
        controller = self.create_controller()
        controller.complete_purchase(self.player_id, PRODUCT_HINTS)
        await controller.start_round(self.channel_id, self.player_id)
        self.play(controller, correct=5)
        controller.shutdown()

        restarted = self.create_controller()
        stats = restarted.get_player_stats(self.player_id)

        self.assertEqual(stats['best_score'], 5)
        self.assertEqual(stats['hints_available'], 10)
        self.assertEqual(stats['weekly_streak'], 0)

    async def test_hints_consumed_and_persisted(self):
        """Test an automatic hint during a round is saved to the file."""
        controller = self.create_controller()
        controller.complete_purchase(self.player_id, PRODUCT_HINTS)
        await controller.start_round(self.channel_id, self.player_id)
        clock = controller.get_session(self.channel_id).clock

        for _ in range(30):
            clock.fire(0.1)

        info = controller.get_session_info(self.channel_id)
        self.assertTrue(info['hint_used_this_question'])
        self.assertEqual(len(info['options']), 2)
        self.assertEqual(DataManager(self.store_path).get(f"{self.player_id}:HintsAvailable"), 9)

    async def test_players_in_separate_channels(self):
        """Test concurrent sessions keep separate scores and stores."""
        controller = self.create_controller()
        await controller.start_round(1, 10)
        await controller.start_round(2, 20)

        first = controller.get_session(1).engine
        second = controller.get_session(2).engine
        controller.answer(1, 10, first.current_question.correct_answer)
        controller.answer(2, 20, second.current_question.correct_answer + 1000)

        self.assertEqual(first.score, 1)
        self.assertEqual(first.lives, 3)
        self.assertEqual(second.score, 0)
        self.assertEqual(second.lives, 2)
        self.assertEqual(controller.get_player_stats(10)['best_score'], 1)
        self.assertEqual(controller.get_player_stats(20)['best_score'], 0)

    async def test_real_clock_times_out_question(self):
        """Test a real clock expires a question and keeps running for the next one."""
        self.config_manager.set_tick_interval(0.05)
        controller = self.create_controller(clock_factory=RoundClock)
        await controller.start_round(self.channel_id, self.player_id)
        engine = controller.get_session(self.channel_id).engine
        clock = controller.get_session(self.channel_id).clock
        lives_seen = []
        controller.add_event_handler(
            lambda channel, event, state: lives_seen.append(state.lives) if event == RoundEvent.TIME_UP else None
        )

        engine._state.time_remaining = 0.1
        await asyncio.sleep(0.3)

        self.assertEqual(lives_seen[:1], [3])
        self.assertEqual(engine.lives, 2)
        self.assertTrue(clock.is_running)

        controller.shutdown()
        await asyncio.sleep(0)
        self.assertFalse(clock.is_running)


class TestConfigurationIntegration(unittest.TestCase):
    """Test configuration flowing into sessions."""

    def test_config_file_values_reach_sessions(self):
        """Test the game section shapes clock interval and pack sizes."""
        config_manager = ConfigManager()
        config_manager.apply_config({'game': {'tick_interval': 0.25, 'slow_timer_pack_size': 4}})
        controller = SessionController(
            Mock(get=Mock(return_value=None), set=Mock()),
            config_manager=config_manager,
            clock_factory=FakeClock
        )

        asyncio.run(controller.start_round(1, 2))

        self.assertEqual(controller.get_session(1).clock.interval, 0.25)
        self.assertEqual(controller.get_session(1).engine.settings.tick_interval, 0.25)
        controller.complete_purchase(2, "slow_timers_pack")
        self.assertEqual(controller.get_session(1).engine.slow_timers_available, 4)


if __name__ == '__main__':
    unittest.main()
