"""
Round engine core logic for the Quick Math Duel.
Owns score, lives, countdown, difficulty and power-up policy for one round.
"""
import dataclasses
import logging
import threading
import time
from typing import Any, Callable, List, Optional

from .data_manager import BEST_SCORE_KEY, HINTS_AVAILABLE_KEY, SLOW_TIMERS_AVAILABLE_KEY
from .models import GamePhase, Question, RoundEvent, RoundSettings, RoundState
from .question_generator import QuestionGenerator

# Set up logger for round operations
logger = logging.getLogger(__name__)

RoundListener = Callable[[RoundEvent, RoundState], Any]


def difficulty_level(score: int, settings: Optional[RoundSettings] = None) -> int:
    """Difficulty level for a score: one level per 5 points, capped at 4."""
    settings = settings or RoundSettings()
    return min(max(score, 0) // settings.points_per_level, settings.max_difficulty_level)


def question_time_budget(level: int, settings: Optional[RoundSettings] = None) -> float:
    """Seconds allowed for a question at a difficulty level."""
    settings = settings or RoundSettings()
    budget = settings.initial_time - settings.time_step_per_level * level
    return round(max(budget, settings.min_question_time), 6)


class RoundLifecycleLogger:
    """Structured logging for round lifecycle events."""

    @staticmethod
    def log_round_start(channel_id: str, best_score: int, hints: int, slow_timers: int) -> None:
        """Log the start of a new round."""
        logger.info(
            f"Round lifecycle: STARTED - Channel {channel_id}, best {best_score}, "
            f"hints {hints}, slow timers {slow_timers}",
            extra={
                'event_type': 'round_started',
                'channel_id': channel_id,
                'best_score': best_score,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_state_transition(channel_id: str, from_phase: GamePhase, to_phase: GamePhase, reason: str = None) -> None:
        """Log a phase transition."""
        reason_text = f" - {reason}" if reason else ""
        logger.info(
            f"Round lifecycle: TRANSITION - Channel {channel_id}: {from_phase.value} -> {to_phase.value}{reason_text}",
            extra={
                'event_type': 'round_state_transition',
                'channel_id': channel_id,
                'from_state': from_phase.value,
                'to_state': to_phase.value,
                'reason': reason,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_answer(channel_id: str, question: Question, value: int, correct: bool, score: int, lives: int) -> None:
        """Log an answer outcome."""
        logger.debug(
            f"Round lifecycle: ANSWER - Channel {channel_id}, '{question.text}' answered {value} "
            f"({'correct' if correct else 'wrong'}), score {score}, lives {lives}",
            extra={
                'event_type': 'round_answer',
                'channel_id': channel_id,
                'correct': correct,
                'score': score,
                'lives': lives,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_power_up(channel_id: str, power_up: str, remaining: int) -> None:
        """Log consumption of a power-up."""
        logger.info(
            f"Round lifecycle: POWER_UP - Channel {channel_id}, used {power_up}, {remaining} left",
            extra={
                'event_type': 'round_power_up',
                'channel_id': channel_id,
                'power_up': power_up,
                'remaining': remaining,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_stale_tick(channel_id: str, tick_generation: int, current_generation: int) -> None:
        """Log a tick delivered by a timer generation that is no longer current."""
        logger.debug(
            f"Round lifecycle: STALE_TICK - Channel {channel_id}, generation {tick_generation} "
            f"(current {current_generation})",
            extra={
                'event_type': 'round_stale_tick',
                'channel_id': channel_id,
                'tick_generation': tick_generation,
                'current_generation': current_generation,
                'timestamp': time.time()
            }
        )


class RoundEngine:
    """
    Timed arithmetic quiz state machine.

    The engine is driven entirely from outside: the host calls ``start``,
    ``tick`` and the player commands, and listens for ``RoundEvent`` signals.
    Invalid calls are no-ops that return False. Every public operation is
    serialized by a single re-entrant lock.
    """

    def __init__(
        self,
        store: Any = None,
        generator: Optional[QuestionGenerator] = None,
        settings: Optional[RoundSettings] = None,
        streak_recorder: Any = None,
        channel_id: Optional[str] = None
    ):
        """
        Initialize the engine and seed persisted values from the store.

        Args:
            store: Key-value store with ``get(key, default)`` and ``set(key, value)``
            generator: Question generator, defaults to an unseeded one
            settings: Round tuning constants
            streak_recorder: Collaborator notified via ``record_play_session()`` on start
            channel_id: Identifier used in log records
        """
        self.settings = settings or RoundSettings()
        self.generator = generator or QuestionGenerator(settings=self.settings)
        self.store = store
        self.streak_recorder = streak_recorder
        self.channel_id = str(channel_id) if channel_id is not None else "local"

        self._lock = threading.RLock()
        self._listeners: List[RoundListener] = []
        self._timer_generation = 0

        self._state = RoundState(
            lives=self.settings.starting_lives,
            time_remaining=self.settings.initial_time,
            best_score=self._load_int(BEST_SCORE_KEY),
            hints_available=self._load_int(HINTS_AVAILABLE_KEY),
            slow_timers_available=self._load_int(SLOW_TIMERS_AVAILABLE_KEY)
        )

    # Listeners

    def add_listener(self, listener: RoundListener) -> None:
        """Register a callback receiving ``(event, state_snapshot)``."""
        with self._lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

    def remove_listener(self, listener: RoundListener) -> None:
        """Unregister a previously added callback."""
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    # Read access

    def get_state(self) -> RoundState:
        """Return a snapshot copy of the round state."""
        with self._lock:
            return dataclasses.replace(self._state)

    @property
    def phase(self) -> GamePhase:
        return self._state.phase

    @property
    def score(self) -> int:
        return self._state.score

    @property
    def lives(self) -> int:
        return self._state.lives

    @property
    def time_remaining(self) -> float:
        return self._state.time_remaining

    @property
    def current_question(self) -> Optional[Question]:
        return self._state.current_question

    @property
    def difficulty_level(self) -> int:
        return self._state.difficulty_level

    @property
    def hints_available(self) -> int:
        return self._state.hints_available

    @property
    def slow_timers_available(self) -> int:
        return self._state.slow_timers_available

    @property
    def slow_timer_active(self) -> bool:
        return self._state.slow_timer_active

    @property
    def slow_timer_questions_remaining(self) -> int:
        return self._state.slow_timer_questions_remaining

    @property
    def hint_used_this_question(self) -> bool:
        return self._state.hint_used_this_question

    @property
    def has_used_extra_life(self) -> bool:
        return self._state.has_used_extra_life

    @property
    def best_score(self) -> int:
        return self._state.best_score

    @property
    def achieved_new_best_this_session(self) -> bool:
        return self._state.achieved_new_best_this_session

    @property
    def timer_generation(self) -> int:
        """Current countdown generation; ticks stamped with another value are ignored."""
        return self._timer_generation

    @property
    def time_rate(self) -> float:
        """Game seconds consumed per real second."""
        return self.settings.slow_timer_rate if self._state.slow_timer_active else 1.0

    # Commands

    def start(self) -> bool:
        """
        Start a fresh round from any phase.

        Returns:
            Always True
        """
        with self._lock:
            state = self._state
            previous_phase = state.phase

            state.score = 0
            state.lives = self.settings.starting_lives
            state.time_remaining = self.settings.initial_time
            state.slow_timer_active = False
            state.slow_timer_questions_remaining = 0
            state.hint_used_this_question = False
            state.has_used_extra_life = False
            state.achieved_new_best_this_session = False
            state.difficulty_level = 0
            state.question_number = 1
            state.started_at = time.time()
            state.current_question = self.generator.generate(0, 0)
            state.phase = GamePhase.PLAYING
            self._timer_generation += 1

            RoundLifecycleLogger.log_round_start(
                self.channel_id, state.best_score, state.hints_available, state.slow_timers_available
            )
            RoundLifecycleLogger.log_state_transition(self.channel_id, previous_phase, GamePhase.PLAYING, "start")

            self._record_play_session()
            self._emit(RoundEvent.STARTED)
            self._emit(RoundEvent.QUESTION)
            return True

    def tick(self, dt: float, generation: Optional[int] = None) -> bool:
        """
        Advance the countdown by ``dt`` real seconds.

        Args:
            dt: Elapsed real time in seconds
            generation: Timer generation that produced this tick, if known

        Returns:
            True if the tick was applied, False if it was ignored
        """
        with self._lock:
            state = self._state
            if state.phase != GamePhase.PLAYING:
                return False
            if generation is not None and generation != self._timer_generation:
                RoundLifecycleLogger.log_stale_tick(self.channel_id, generation, self._timer_generation)
                return False
            if dt <= 0:
                return False

            state.time_remaining = round(state.time_remaining - dt * self.time_rate, 6)

            # Auto-hint re-checks every tick below the threshold; the used flag limits it to once
            if state.time_remaining <= self.settings.hint_threshold:
                self._apply_hint()

            if state.time_remaining <= 0:
                state.time_remaining = 0.0
                logger.debug(f"Time up on '{state.current_question.text}' in channel {self.channel_id}")
                self._emit(RoundEvent.TIME_UP)
                self._lose_life("time up")
            return True

    def answer(self, value: int) -> bool:
        """
        Submit an answer for the current question.

        Args:
            value: The chosen option

        Returns:
            True if the answer was processed, False if not playing
        """
        with self._lock:
            state = self._state
            if state.phase != GamePhase.PLAYING or state.current_question is None:
                return False

            question = state.current_question
            correct = value == question.correct_answer

            if correct:
                state.score += 1
                if state.score > state.best_score:
                    state.best_score = state.score
                    state.achieved_new_best_this_session = True
                    self._persist(BEST_SCORE_KEY, state.best_score)
                    self._emit(RoundEvent.NEW_BEST)
                RoundLifecycleLogger.log_answer(self.channel_id, question, value, True, state.score, state.lives)
                self._emit(RoundEvent.CORRECT)
                self._advance()
            else:
                RoundLifecycleLogger.log_answer(self.channel_id, question, value, False, state.score, state.lives - 1)
                self._emit(RoundEvent.WRONG)
                self._lose_life("wrong answer")
            return True

    def activate_slow_timer(self) -> bool:
        """
        Consume one slow timer and slow the countdown for the next questions.

        Returns:
            True if activated, False if not playing, none left, or already active
        """
        with self._lock:
            state = self._state
            if state.phase != GamePhase.PLAYING:
                return False
            if state.slow_timers_available <= 0 or state.slow_timer_active:
                return False

            state.slow_timers_available -= 1
            state.slow_timer_active = True
            state.slow_timer_questions_remaining = self.settings.slow_timer_questions
            self._persist(SLOW_TIMERS_AVAILABLE_KEY, state.slow_timers_available)

            RoundLifecycleLogger.log_power_up(self.channel_id, "slow_timer", state.slow_timers_available)
            self._emit(RoundEvent.SLOW_TIMER_ACTIVATED)
            self._emit(RoundEvent.INVENTORY_CHANGED)
            return True

    def continue_with_extra_life(self) -> bool:
        """
        Revive a finished round once per session with a single life.

        Returns:
            True if the round continues, False otherwise
        """
        with self._lock:
            state = self._state
            if state.phase != GamePhase.GAME_OVER or state.has_used_extra_life:
                return False

            state.lives = 1
            state.has_used_extra_life = True
            state.phase = GamePhase.PLAYING
            RoundLifecycleLogger.log_state_transition(
                self.channel_id, GamePhase.GAME_OVER, GamePhase.PLAYING, "extra life"
            )
            self._emit(RoundEvent.CONTINUED)
            self._advance()
            return True

    def return_to_menu(self) -> bool:
        """
        Leave the round. Final values stay readable until the next start.

        Returns:
            True if the phase changed
        """
        with self._lock:
            previous_phase = self._state.phase
            if previous_phase == GamePhase.IDLE:
                return False
            self._state.phase = GamePhase.IDLE
            self._timer_generation += 1
            RoundLifecycleLogger.log_state_transition(self.channel_id, previous_phase, GamePhase.IDLE, "menu")
            return True

    def add_hints(self, count: int) -> bool:
        """Add hints to the inventory, e.g. after a purchase."""
        with self._lock:
            if count <= 0:
                return False
            self._state.hints_available += count
            self._persist(HINTS_AVAILABLE_KEY, self._state.hints_available)
            logger.info(f"Added {count} hints in channel {self.channel_id}, now {self._state.hints_available}")
            self._emit(RoundEvent.INVENTORY_CHANGED)
            return True

    def add_slow_timers(self, count: int) -> bool:
        """Add slow timers to the inventory, e.g. after a purchase."""
        with self._lock:
            if count <= 0:
                return False
            self._state.slow_timers_available += count
            self._persist(SLOW_TIMERS_AVAILABLE_KEY, self._state.slow_timers_available)
            logger.info(
                f"Added {count} slow timers in channel {self.channel_id}, now {self._state.slow_timers_available}"
            )
            self._emit(RoundEvent.INVENTORY_CHANGED)
            return True

    # Internals

    def _apply_hint(self) -> bool:
        state = self._state
        question = state.current_question
        if state.hint_used_this_question or state.hints_available <= 0:
            return False
        if question is None or len(question.options) <= 2:
            return False

        wrong_option = next(option for option in question.options if option != question.correct_answer)
        state.hints_available -= 1
        state.hint_used_this_question = True
        state.current_question = question.without_option(wrong_option)
        self._persist(HINTS_AVAILABLE_KEY, state.hints_available)

        RoundLifecycleLogger.log_power_up(self.channel_id, "hint", state.hints_available)
        self._emit(RoundEvent.HINT_USED)
        self._emit(RoundEvent.INVENTORY_CHANGED)
        return True

    def _lose_life(self, reason: str) -> None:
        state = self._state
        state.lives -= 1
        if state.lives <= 0:
            state.lives = 0
            state.phase = GamePhase.GAME_OVER
            self._timer_generation += 1
            RoundLifecycleLogger.log_state_transition(self.channel_id, GamePhase.PLAYING, GamePhase.GAME_OVER, reason)
            self._emit(RoundEvent.GAME_OVER)
        else:
            self._advance()

    def _advance(self) -> None:
        state = self._state
        level = difficulty_level(state.score, self.settings)

        state.difficulty_level = level
        state.current_question = self.generator.generate(level, state.score)
        state.hint_used_this_question = False
        state.question_number += 1

        if state.slow_timer_active:
            state.slow_timer_questions_remaining -= 1
            if state.slow_timer_questions_remaining <= 0:
                state.slow_timer_active = False
                state.slow_timer_questions_remaining = 0
                self._emit(RoundEvent.SLOW_TIMER_EXPIRED)

        state.time_remaining = question_time_budget(level, self.settings)
        self._timer_generation += 1
        self._emit(RoundEvent.QUESTION)

    def _record_play_session(self) -> None:
        if self.streak_recorder is None:
            return
        try:
            self.streak_recorder.record_play_session()
        except Exception as e:
            logger.error(f"Streak recorder failed in channel {self.channel_id}: {e}")

    def _emit(self, event: RoundEvent) -> None:
        if not self._listeners:
            return
        snapshot = dataclasses.replace(self._state)
        for listener in list(self._listeners):
            try:
                listener(event, snapshot)
            except Exception as e:
                logger.error(f"Round listener failed on {event.value} in channel {self.channel_id}: {e}", exc_info=True)

    def _load_int(self, key: str) -> int:
        if self.store is None:
            return 0
        try:
            return max(int(self.store.get(key, 0) or 0), 0)
        except (TypeError, ValueError):
            logger.warning(f"Ignoring non-integer stored value for {key}")
            return 0

    def _persist(self, key: str, value: int) -> None:
        if self.store is None:
            return
        try:
            self.store.set(key, value)
        except OSError as e:
            logger.error(f"Failed to persist {key} for channel {self.channel_id}: {e}")
