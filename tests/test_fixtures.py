"""
Test fixtures and sample data for Quick Math Duel tests.
"""
import random
from typing import Any, Callable, Dict, List, Optional
from unittest.mock import AsyncMock, Mock

import discord

from quick_math.data_manager import InMemoryStore
from quick_math.models import Question, RoundSettings
from quick_math.question_generator import QuestionGenerator
from quick_math.round_engine import RoundEngine


class ScriptedRandom:
    """Random source returning scripted values, for exact-output tests."""

    def __init__(self, ints: Optional[List[int]] = None, choices: Optional[List[Any]] = None, default: int = None):
        self.ints = list(ints or [])
        self.choices = list(choices or [])
        self.default = default
        self.shuffled: List[List[Any]] = []

    def randint(self, a: int, b: int) -> int:
        if self.ints:
            value = self.ints.pop(0)
        elif self.default is not None:
            value = self.default
        else:
            value = a
        if not a <= value <= b:
            raise AssertionError(f"Scripted value {value} outside [{a}, {b}]")
        return value

    def choice(self, seq):
        if self.choices:
            value = self.choices.pop(0)
            if value not in seq:
                raise AssertionError(f"Scripted choice {value!r} not in {seq!r}")
            return value
        return seq[0]

    def shuffle(self, seq: List[Any]) -> None:
        self.shuffled.append(list(seq))


class FakeClock:
    """Clock stand-in whose ticks are fired manually."""

    def __init__(self, channel_id: str = None, interval: float = 0.1):
        self.channel_id = channel_id
        self.interval = interval
        self.tick_callback: Optional[Callable] = None
        self.stamp_source: Optional[Callable[[], int]] = None
        self.start_count = 0
        self.stop_count = 0
        self.running = False

    def start(self, tick_callback, stamp_source=None):
        self.tick_callback = tick_callback
        self.stamp_source = stamp_source
        self.start_count += 1
        self.running = True

    def stop(self):
        self.stop_count += 1
        self.running = False

    def fire(self, dt: float = None):
        if not self.running:
            return None
        stamp = self.stamp_source() if self.stamp_source else None
        return self.tick_callback(self.interval if dt is None else dt, stamp)


class TestFixtures:
    """Centralized test fixtures for all test modules."""

    @staticmethod
    def create_sample_question() -> Question:
        """Create a three-option question whose first wrong option is 7."""
        return Question("2 + 3", 5, (7, 5, 9), "+", (2, 3))

    @staticmethod
    def create_store(best_score: int = 0, hints: int = 0, slow_timers: int = 0) -> InMemoryStore:
        """Create an in-memory store seeded with progress values."""
        return InMemoryStore({
            "BestScore": best_score,
            "HintsAvailable": hints,
            "SlowTimersAvailable": slow_timers
        })

    @staticmethod
    def create_engine(store=None, seed: int = 1234, settings: RoundSettings = None, **kwargs) -> RoundEngine:
        """Create an engine with a seeded question generator."""
        settings = settings or RoundSettings()
        generator = QuestionGenerator(rng=random.Random(seed), settings=settings)
        return RoundEngine(store=store, generator=generator, settings=settings, **kwargs)

    @staticmethod
    def wrong_answer(engine: RoundEngine) -> int:
        """A value that is never the correct answer."""
        return engine.current_question.correct_answer + 1000

    @staticmethod
    def create_session_info(phase: str = "playing", **overrides) -> Dict[str, Any]:
        """Create session info as returned by SessionController.get_session_info."""
        info = {
            'channel_id': 12345,
            'player_id': 67890,
            'phase': phase,
            'score': 4,
            'lives': 2,
            'time_remaining': 3.4,
            'difficulty_level': 0,
            'question_number': 7,
            'question_text': "12 + 7",
            'options': [19, 15, 23],
            'hints_available': 2,
            'slow_timers_available': 1,
            'slow_timer_active': False,
            'slow_timer_questions_remaining': 0,
            'hint_used_this_question': False,
            'has_used_extra_life': False,
            'best_score': 9,
            'achieved_new_best_this_session': False,
            'score_submitted': False,
            'rounds_played': 1
        }
        info.update(overrides)
        return info


class MockDiscordObjects:
    """Mock Discord objects for testing bot functionality."""

    @staticmethod
    def create_mock_interaction(channel_id: int = 12345, user_id: int = 67890) -> Mock:
        """Create mock Discord interaction."""
        interaction = Mock(spec=discord.Interaction)
        interaction.channel_id = channel_id
        interaction.user.id = user_id
        interaction.response = Mock()
        interaction.response.is_done.return_value = False
        interaction.response.send_message = AsyncMock()
        interaction.response.edit_message = AsyncMock()
        interaction.response.defer = AsyncMock()
        interaction.followup = Mock()
        interaction.followup.send = AsyncMock(return_value=MockDiscordObjects.create_mock_message())
        interaction.original_response = AsyncMock(return_value=MockDiscordObjects.create_mock_message())
        return interaction

    @staticmethod
    def create_mock_message(message_id: int = 11111, content: str = "Test message") -> Mock:
        """Create mock Discord message."""
        message = Mock(spec=discord.Message)
        message.id = message_id
        message.content = content
        message.edit = AsyncMock()
        message.delete = AsyncMock()
        return message


class TestDataValidation:
    """Validation helpers for test assertions."""

    @staticmethod
    def validate_question(question: Question) -> bool:
        """Validate a generated question's option invariants."""
        options = list(question.options)
        distractors = [option for option in options if option != question.correct_answer]
        return (
            isinstance(question.text, str) and
            len(question.text) > 0 and
            2 <= len(options) <= 3 and
            options.count(question.correct_answer) == 1 and
            len(set(options)) == len(options) and
            all(isinstance(option, int) and option > 0 for option in distractors)
        )
