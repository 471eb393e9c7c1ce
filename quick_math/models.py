"""
Core data models for the Quick Math Duel engine.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Tuple


class GamePhase(Enum):
    """Phases a round can be in."""
    IDLE = "idle"
    PLAYING = "playing"
    GAME_OVER = "game_over"


class RoundEvent(Enum):
    """Signals emitted by the round engine to its listeners."""
    STARTED = "started"
    QUESTION = "question"
    CORRECT = "correct"
    WRONG = "wrong"
    TIME_UP = "time_up"
    GAME_OVER = "game_over"
    HINT_USED = "hint_used"
    SLOW_TIMER_ACTIVATED = "slow_timer_activated"
    SLOW_TIMER_EXPIRED = "slow_timer_expired"
    NEW_BEST = "new_best"
    CONTINUED = "continued"
    INVENTORY_CHANGED = "inventory_changed"


@dataclass(frozen=True)
class Question:
    """A single arithmetic question. Replaced, never mutated."""
    text: str
    correct_answer: int
    options: Tuple[int, ...] = ()
    operation: str = "+"
    operands: Tuple[int, int] = (0, 0)

    def without_option(self, value: int) -> "Question":
        """Return a copy of this question with one option value removed."""
        options = list(self.options)
        options.remove(value)
        return Question(
            text=self.text,
            correct_answer=self.correct_answer,
            options=tuple(options),
            operation=self.operation,
            operands=self.operands
        )


@dataclass(frozen=True)
class RoundSettings:
    """Tuning constants for a round."""
    starting_lives: int = 3
    initial_time: float = 5.0
    min_question_time: float = 3.0
    time_step_per_level: float = 0.3
    points_per_level: int = 5
    max_difficulty_level: int = 4
    hint_threshold: float = 2.0
    slow_timer_questions: int = 3
    slow_timer_rate: float = 0.8
    tick_interval: float = 0.1
    max_distractor_attempts: int = 100


@dataclass
class HostSettings:
    """Configuration of the host that drives rounds."""
    tick_interval: float = 0.1
    display_refresh: float = 1.0
    hint_pack_size: int = 10
    slow_timer_pack_size: int = 10
    store_path: str = "./data/store.json"


@dataclass
class DuelSession:
    """A player's round running in a Discord channel."""
    channel_id: int
    player_id: int
    engine: Any
    clock: Any
    start_time: datetime
    last_activity: datetime
    score_submitted: bool = False
    rounds_played: int = 0


@dataclass
class RoundState:
    """Mutable state of one round, owned by the engine."""
    phase: GamePhase = GamePhase.IDLE
    score: int = 0
    lives: int = 3
    time_remaining: float = 5.0
    current_question: Optional[Question] = None
    difficulty_level: int = 0
    hints_available: int = 0
    slow_timers_available: int = 0
    slow_timer_active: bool = False
    slow_timer_questions_remaining: int = 0
    hint_used_this_question: bool = False
    has_used_extra_life: bool = False
    best_score: int = 0
    achieved_new_best_this_session: bool = False
    question_number: int = 0
    started_at: Optional[float] = field(default=None, compare=False)
