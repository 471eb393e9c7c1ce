"""
Duel session controller for the Quick Math Duel bot.
Runs one round engine per Discord channel and applies the policies that sit
between the engine and its collaborators: clocks, leaderboard submission,
rewarded continues, interstitials and purchases.
"""
import asyncio
import logging
import random
from datetime import datetime, timedelta
from functools import partial
from typing import Any, Callable, Dict, List, Optional

from .config_manager import ConfigManager
from .data_manager import (
    ADS_REMOVED_KEY,
    BEST_SCORE_KEY,
    HINTS_AVAILABLE_KEY,
    SLOW_TIMERS_AVAILABLE_KEY,
    ScopedStore,
)
from .models import DuelSession, GamePhase, RoundEvent, RoundState
from .question_generator import QuestionGenerator
from .round_clock import RoundClock
from .round_engine import RoundEngine
from .streak import StreakTracker

PRODUCT_HINTS = "hints_pack"
PRODUCT_SLOW_TIMERS = "slow_timers_pack"
PRODUCT_REMOVE_ADS = "remove_ads"

SessionEventHandler = Callable[[int, RoundEvent, RoundState], Any]


class SessionControllerError(Exception):
    """Base exception for session controller errors."""
    pass


class SessionNotFoundError(SessionControllerError):
    """Raised when attempting to operate on a non-existent session."""
    pass


class SessionConflictError(SessionControllerError):
    """Raised when another player's round is running in the channel."""
    pass


class SessionController:
    """
    Orchestrates duel sessions across Discord channels.

    Each channel holds at most one session, owned by the player who started
    it. The controller starts and stops the session clock on every phase
    change and submits each completed session's score exactly once.
    """

    def __init__(
        self,
        store: Any,
        config_manager: Optional[ConfigManager] = None,
        leaderboard: Any = None,
        monetization: Any = None,
        rng_factory: Optional[Callable[[], random.Random]] = None,
        clock_factory: Optional[Callable[[str, float], RoundClock]] = None
    ):
        """
        Initialize the session controller.

        Args:
            store: Shared key-value store; each player gets a scoped view
            config_manager: Configuration source, defaults to ConfigManager()
            leaderboard: Collaborator with ``submit_score(score)``
            monetization: Collaborator with awaitable ``show_rewarded_ad()`` and ``show_interstitial_ad()``
            rng_factory: Builds the random source for each new engine
            clock_factory: Builds the clock for each new session
        """
        self.logger = logging.getLogger(__name__)
        self.store = store
        self.config_manager = config_manager or ConfigManager()
        self.leaderboard = leaderboard
        self.monetization = monetization
        self._rng_factory = rng_factory or random.Random
        self._clock_factory = clock_factory or (lambda channel, interval: RoundClock(channel, interval))

        # Sessions mapped by channel ID
        self._sessions: Dict[int, DuelSession] = {}
        self._event_handlers: List[SessionEventHandler] = []
        self._session_errors: Dict[int, List[str]] = {}
        self._idle_timeout = timedelta(hours=1)

        self.logger.info("SessionController initialized")

    # Event fan-out

    def add_event_handler(self, handler: SessionEventHandler) -> None:
        """Register a handler receiving ``(channel_id, event, state)`` for every engine event."""
        self._event_handlers.append(handler)

    def _on_engine_event(self, channel_id: int, event: RoundEvent, state: RoundState) -> None:
        session = self._sessions.get(channel_id)
        if session is not None:
            session.last_activity = datetime.now()
            if event == RoundEvent.GAME_OVER:
                session.clock.stop()
                # Second death after a continue ends the session for good
                if state.has_used_extra_life:
                    self._submit_pending_score(session, state.score)

        for handler in list(self._event_handlers):
            try:
                handler(channel_id, event, state)
            except Exception as e:
                self.logger.error(f"Session event handler failed on {event.value} in channel {channel_id}: {e}")

    # Session lookup

    def get_session(self, channel_id: int) -> Optional[DuelSession]:
        """
        Get the session for a channel.

        Args:
            channel_id: Discord channel identifier

        Returns:
            DuelSession if one exists, None otherwise
        """
        return self._sessions.get(channel_id)

    def has_active_session(self, channel_id: int) -> bool:
        """
        Check if a round is being played in the channel.

        Args:
            channel_id: Discord channel identifier

        Returns:
            True if the channel's engine is in the PLAYING phase
        """
        session = self._sessions.get(channel_id)
        return session is not None and session.engine.phase == GamePhase.PLAYING

    def _require_session(self, channel_id: int, player_id: int) -> DuelSession:
        session = self._sessions.get(channel_id)
        if session is None:
            raise SessionNotFoundError(f"No duel session in channel {channel_id}")
        if session.player_id != player_id:
            raise SessionConflictError(
                f"Channel {channel_id} belongs to player {session.player_id}, not {player_id}"
            )
        return session

    def _find_player_session(self, player_id: int) -> Optional[DuelSession]:
        for session in self._sessions.values():
            if session.player_id == player_id:
                return session
        return None

    def player_store(self, player_id: int) -> ScopedStore:
        """Get the store view holding one player's progress."""
        return ScopedStore(self.store, player_id)

    def _create_session(self, channel_id: int, player_id: int) -> DuelSession:
        player_store = self.player_store(player_id)
        settings = self.config_manager.get_round_settings()
        engine = RoundEngine(
            store=player_store,
            generator=QuestionGenerator(rng=self._rng_factory(), settings=settings),
            settings=settings,
            streak_recorder=StreakTracker(player_store),
            channel_id=str(channel_id)
        )
        engine.add_listener(partial(self._on_engine_event, channel_id))

        now = datetime.now()
        session = DuelSession(
            channel_id=channel_id,
            player_id=player_id,
            engine=engine,
            clock=self._clock_factory(str(channel_id), settings.tick_interval),
            start_time=now,
            last_activity=now
        )
        self._sessions[channel_id] = session
        self.logger.info(f"Created duel session for channel {channel_id}, player {player_id}")
        return session

    def _start_clock(self, session: DuelSession) -> None:
        engine = session.engine
        session.clock.start(
            lambda dt, stamp: engine.tick(dt, generation=stamp),
            stamp_source=lambda: engine.timer_generation
        )

    # Commands

    async def start_round(self, channel_id: int, player_id: int) -> Dict[str, Any]:
        """
        Start or restart a round for a player in a channel.

        Restarting from game over submits the pending score and shows an
        interstitial first unless the player removed ads. A session the
        player still holds in another channel is closed.

        Args:
            channel_id: Discord channel identifier
            player_id: Discord user identifier

        Returns:
            Dictionary with success status and session info or error details
        """
        try:
            session = self._sessions.get(channel_id)
            if session is not None and session.player_id != player_id:
                if session.engine.phase == GamePhase.PLAYING:
                    raise SessionConflictError(f"A round is already running in channel {channel_id}")
                self._close_session(session)
                session = None

            # One engine per player, so progress is never cached twice
            for other in [s for s in self._sessions.values() if s.player_id == player_id and s is not session]:
                self.logger.info(
                    f"Player {player_id} moved to channel {channel_id}, closing channel {other.channel_id}"
                )
                self._close_session(other)

            if session is None:
                session = self._create_session(channel_id, player_id)
            else:
                session.clock.stop()
                if session.engine.phase == GamePhase.GAME_OVER:
                    self._submit_pending_score(session, session.engine.score)
                    if not self.is_ads_removed(player_id):
                        await self._show_interstitial(channel_id)

            session.engine.start()
            session.score_submitted = False
            session.rounds_played += 1
            session.last_activity = datetime.now()
            self._start_clock(session)

            return {
                'success': True,
                'message': f"Round started in channel {channel_id}",
                'session_info': self.get_session_info(channel_id)
            }

        except Exception as e:
            return self._handle_session_error(channel_id, e, "start_round")

    def answer(self, channel_id: int, player_id: int, value: int) -> Dict[str, Any]:
        """
        Submit an answer on behalf of the session owner.

        Args:
            channel_id: Discord channel identifier
            player_id: Discord user identifier
            value: Chosen option

        Returns:
            Dictionary with success status, correctness and session info
        """
        try:
            session = self._require_session(channel_id, player_id)
            engine = session.engine
            question = engine.current_question
            if not engine.answer(value):
                return {
                    'success': False,
                    'error': "Round is not being played",
                    'user_message': "❌ This round is over. Use `/duel` to play again."
                }

            session.last_activity = datetime.now()
            return {
                'success': True,
                'correct': question is not None and value == question.correct_answer,
                'session_info': self.get_session_info(channel_id)
            }

        except Exception as e:
            return self._handle_session_error(channel_id, e, "answer")

    def activate_slow_timer(self, channel_id: int, player_id: int) -> Dict[str, Any]:
        """
        Activate a slow timer for the session owner.

        Returns:
            Dictionary with success status and user-friendly message
        """
        try:
            session = self._require_session(channel_id, player_id)
            engine = session.engine
            if not engine.activate_slow_timer():
                if engine.phase != GamePhase.PLAYING:
                    user_message = "❌ Slow timers can only be used during a round."
                elif engine.slow_timer_active:
                    user_message = "⏳ A slow timer is already running."
                else:
                    user_message = "❌ No slow timers left. Get more with `/shop`."
                return {'success': False, 'error': "Slow timer not activated", 'user_message': user_message}

            return {
                'success': True,
                'message': "Slow timer activated",
                'user_message': (
                    f"🐢 Time slowed for the next {engine.slow_timer_questions_remaining} questions "
                    f"({engine.slow_timers_available} left)"
                ),
                'session_info': self.get_session_info(channel_id)
            }

        except Exception as e:
            return self._handle_session_error(channel_id, e, "activate_slow_timer")

    async def continue_with_extra_life(self, channel_id: int, player_id: int) -> Dict[str, Any]:
        """
        Revive a finished round after a rewarded ad, once per session.

        Players who removed ads continue without watching one.

        Returns:
            Dictionary with success status and user-friendly message
        """
        try:
            session = self._require_session(channel_id, player_id)
            engine = session.engine
            if engine.phase != GamePhase.GAME_OVER or engine.has_used_extra_life:
                return {
                    'success': False,
                    'error': "Extra life not available",
                    'user_message': "⚠️ Continuation used: one extra life per game."
                }

            if not self.is_ads_removed(player_id) and not await self._show_rewarded_ad(channel_id):
                return {
                    'success': False,
                    'error': "Rewarded ad not completed",
                    'user_message': "📺 The ad did not finish, so no extra life was granted."
                }

            if not engine.continue_with_extra_life():
                return {
                    'success': False,
                    'error': "Extra life not available",
                    'user_message': "⚠️ Continuation used: one extra life per game."
                }

            session.last_activity = datetime.now()
            self._start_clock(session)
            return {
                'success': True,
                'message': "Continued with extra life",
                'user_message': "❤️ Back in the game with one life!",
                'session_info': self.get_session_info(channel_id)
            }

        except Exception as e:
            return self._handle_session_error(channel_id, e, "continue_with_extra_life")

    def return_to_menu(self, channel_id: int, player_id: int) -> Dict[str, Any]:
        """
        Leave the round and free the channel.

        Returns:
            Dictionary with success status and the final session info
        """
        try:
            session = self._require_session(channel_id, player_id)
            session_info = self.get_session_info(channel_id)
            self._close_session(session)
            return {
                'success': True,
                'message': f"Session closed in channel {channel_id}",
                'session_info': session_info
            }

        except Exception as e:
            return self._handle_session_error(channel_id, e, "return_to_menu")

    def complete_purchase(self, player_id: int, product_id: str) -> Dict[str, Any]:
        """
        Apply a completed purchase to a player's inventory.

        Args:
            player_id: Discord user identifier
            product_id: One of the PRODUCT_* identifiers

        Returns:
            Dictionary with success status and user-friendly message
        """
        settings = self.config_manager.get_host_settings()
        session = self._find_player_session(player_id)
        player_store = self.player_store(player_id)

        if product_id == PRODUCT_HINTS:
            count = settings.hint_pack_size
            if session is not None:
                session.engine.add_hints(count)
            else:
                player_store.set(HINTS_AVAILABLE_KEY, int(player_store.get(HINTS_AVAILABLE_KEY, 0) or 0) + count)
            user_message = f"💡 +{count} hints added!"
        elif product_id == PRODUCT_SLOW_TIMERS:
            count = settings.slow_timer_pack_size
            if session is not None:
                session.engine.add_slow_timers(count)
            else:
                player_store.set(
                    SLOW_TIMERS_AVAILABLE_KEY, int(player_store.get(SLOW_TIMERS_AVAILABLE_KEY, 0) or 0) + count
                )
            user_message = f"🐢 +{count} slow timers added!"
        elif product_id == PRODUCT_REMOVE_ADS:
            player_store.set(ADS_REMOVED_KEY, True)
            user_message = "🚫 Ads removed. Thanks for your support!"
        else:
            self.logger.warning(f"Unknown product {product_id!r} for player {player_id}")
            return {
                'success': False,
                'error': f"Unknown product: {product_id}",
                'user_message': "❌ That item is not available."
            }

        self.logger.info(f"Purchase {product_id} completed for player {player_id}")
        return {'success': True, 'message': f"Purchased {product_id}", 'user_message': user_message}

    # Queries

    def is_ads_removed(self, player_id: int) -> bool:
        """Check whether a player bought ad removal."""
        if bool(self.player_store(player_id).get(ADS_REMOVED_KEY, False)):
            return True
        return bool(getattr(self.monetization, 'ads_removed', False))

    def get_player_stats(self, player_id: int) -> Dict[str, Any]:
        """
        Get a player's persisted progress.

        Returns:
            Dictionary with best score, inventory, streak and ad status
        """
        session = self._find_player_session(player_id)
        player_store = self.player_store(player_id)
        streak = StreakTracker(player_store)

        if session is not None:
            engine = session.engine
            best_score = engine.best_score
            hints = engine.hints_available
            slow_timers = engine.slow_timers_available
        else:
            best_score = int(player_store.get(BEST_SCORE_KEY, 0) or 0)
            hints = int(player_store.get(HINTS_AVAILABLE_KEY, 0) or 0)
            slow_timers = int(player_store.get(SLOW_TIMERS_AVAILABLE_KEY, 0) or 0)

        return {
            'best_score': best_score,
            'hints_available': hints,
            'slow_timers_available': slow_timers,
            'weekly_streak': streak.weekly_streak,
            'weeks_played': streak.weeks_played,
            'ads_removed': self.is_ads_removed(player_id)
        }

    def get_session_info(self, channel_id: int) -> Optional[Dict[str, Any]]:
        """
        Get a rendering-friendly description of a channel's session.

        Args:
            channel_id: Discord channel identifier

        Returns:
            Dictionary describing the round, or None if there is no session
        """
        session = self._sessions.get(channel_id)
        if session is None:
            return None

        state = session.engine.get_state()
        question = state.current_question
        return {
            'channel_id': channel_id,
            'player_id': session.player_id,
            'phase': state.phase.value,
            'score': state.score,
            'lives': state.lives,
            'time_remaining': state.time_remaining,
            'difficulty_level': state.difficulty_level,
            'question_number': state.question_number,
            'question_text': question.text if question else None,
            'options': list(question.options) if question else [],
            'hints_available': state.hints_available,
            'slow_timers_available': state.slow_timers_available,
            'slow_timer_active': state.slow_timer_active,
            'slow_timer_questions_remaining': state.slow_timer_questions_remaining,
            'hint_used_this_question': state.hint_used_this_question,
            'has_used_extra_life': state.has_used_extra_life,
            'best_score': state.best_score,
            'achieved_new_best_this_session': state.achieved_new_best_this_session,
            'score_submitted': session.score_submitted,
            'rounds_played': session.rounds_played
        }

    def get_all_sessions(self) -> Dict[int, Dict[str, Any]]:
        """Get info for every session keyed by channel."""
        return {channel_id: self.get_session_info(channel_id) for channel_id in list(self._sessions)}

    # Lifecycle

    def cleanup_inactive_sessions(self) -> int:
        """
        Close sessions that are not being played and have been idle too long.

        Returns:
            Number of sessions closed
        """
        cutoff = datetime.now() - self._idle_timeout
        stale = [
            session for session in self._sessions.values()
            if session.engine.phase != GamePhase.PLAYING and session.last_activity < cutoff
        ]
        for session in stale:
            self._close_session(session)

        if stale:
            self.logger.info(f"Cleaned up {len(stale)} inactive sessions")
        return len(stale)

    def shutdown(self) -> None:
        """Stop every clock and close all sessions."""
        for session in list(self._sessions.values()):
            self._close_session(session)
        self.logger.info("SessionController shut down")

    def _close_session(self, session: DuelSession) -> None:
        session.clock.stop()
        if session.engine.phase == GamePhase.GAME_OVER:
            self._submit_pending_score(session, session.engine.score)
        session.engine.return_to_menu()
        self._sessions.pop(session.channel_id, None)
        self._session_errors.pop(session.channel_id, None)
        self.logger.info(f"Closed duel session in channel {session.channel_id}")

    # Collaborators

    def _submit_pending_score(self, session: DuelSession, score: int) -> None:
        if session.score_submitted:
            return
        session.score_submitted = True

        if self.leaderboard is None:
            self.logger.info(f"Final score {score} for player {session.player_id} (no leaderboard configured)")
            return

        self.logger.info(f"Submitting final score {score} for player {session.player_id}")
        try:
            result = self.leaderboard.submit_score(score)
            if asyncio.iscoroutine(result):
                try:
                    asyncio.get_running_loop().create_task(result)
                except RuntimeError:
                    result.close()
                    self.logger.warning("No running event loop for asynchronous score submission")
        except Exception as e:
            self.logger.error(f"Leaderboard submission failed for player {session.player_id}: {e}")

    async def _show_rewarded_ad(self, channel_id: int) -> bool:
        if self.monetization is None:
            return True
        try:
            return bool(await self.monetization.show_rewarded_ad())
        except Exception as e:
            self.logger.error(f"Rewarded ad failed in channel {channel_id}: {e}")
            return False

    async def _show_interstitial(self, channel_id: int) -> None:
        if self.monetization is None:
            return
        try:
            await self.monetization.show_interstitial_ad()
        except Exception as e:
            self.logger.error(f"Interstitial ad failed in channel {channel_id}: {e}")

    # Errors

    def _handle_session_error(self, channel_id: int, error: Exception, operation: str) -> Dict[str, Any]:
        """
        Log a session error and build a failure result.

        Args:
            channel_id: Discord channel identifier
            error: The exception that occurred
            operation: Description of the operation that failed

        Returns:
            Dictionary with error details and a user-friendly message
        """
        if isinstance(error, SessionControllerError):
            self.logger.warning(f"{operation} rejected for channel {channel_id}: {error}")
        else:
            self.logger.error(f"Error in {operation} for channel {channel_id}: {error}", exc_info=True)

        self._session_errors.setdefault(channel_id, []).append(f"{operation}: {error}")
        return {
            'success': False,
            'error': str(error),
            'operation': operation,
            'user_message': self._get_user_friendly_error_message(error, operation)
        }

    def _get_user_friendly_error_message(self, error: Exception, operation: str) -> str:
        if isinstance(error, SessionConflictError):
            return "❌ Someone else is playing in this channel. Wait for their round to finish."
        if isinstance(error, SessionNotFoundError):
            return "❌ No duel in this channel. Start one with `/duel`."
        if isinstance(error, OSError):
            return "❌ Could not save your progress. Please try again."
        return f"❌ An unexpected error occurred during {operation.replace('_', ' ')}. Please try again."

    def get_error_summary(self, channel_id: int) -> Dict[str, Any]:
        """Get the errors recorded for a channel."""
        errors = self._session_errors.get(channel_id, [])
        return {
            'channel_id': channel_id,
            'error_count': len(errors),
            'errors': errors.copy()
        }
