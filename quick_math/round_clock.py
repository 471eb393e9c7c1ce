"""
Periodic tick source for driving a round engine from an asyncio loop.
"""
import asyncio
import logging
import time
from typing import Any, Callable, Optional

# Set up logger for clock operations
logger = logging.getLogger(__name__)

TickCallback = Callable[[float, Optional[int]], Any]


class ClockLifecycleLogger:
    """Structured logging for clock lifecycle events."""

    @staticmethod
    def log_clock_start(channel_id: str, generation: int, interval: float) -> None:
        """Log the start of a tick loop."""
        logger.debug(
            f"Clock lifecycle: START - Channel {channel_id}, generation {generation}, interval {interval}s",
            extra={
                'event_type': 'clock_start',
                'channel_id': channel_id,
                'generation': generation,
                'interval': interval,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_clock_completion(channel_id: str, generation: int, completion_type: str, ticks: int) -> None:
        """Log the end of a tick loop."""
        logger.debug(
            f"Clock lifecycle: COMPLETED - Channel {channel_id}, generation {generation}, "
            f"type {completion_type}, {ticks} ticks",
            extra={
                'event_type': 'clock_completed',
                'channel_id': channel_id,
                'generation': generation,
                'completion_type': completion_type,
                'ticks': ticks,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_clock_state_transition(channel_id: str, from_state: str, to_state: str, reason: str = None) -> None:
        """Log clock state transitions."""
        logger.debug(
            f"Clock lifecycle: STATE_TRANSITION - Channel {channel_id}: {from_state} -> {to_state}"
            + (f" ({reason})" if reason else ""),
            extra={
                'event_type': 'clock_state_transition',
                'channel_id': channel_id,
                'from_state': from_state,
                'to_state': to_state,
                'reason': reason,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_clock_error(channel_id: str, error_message: str) -> None:
        """Log a failure inside the tick loop."""
        logger.error(
            f"Clock lifecycle: ERROR - Channel {channel_id}: {error_message}",
            extra={
                'event_type': 'clock_error',
                'channel_id': channel_id,
                'error_message': error_message,
                'timestamp': time.time()
            }
        )


class RoundClock:
    """
    Delivers ``tick(dt, stamp)`` callbacks at a fixed interval.

    Every ``start`` begins a new generation and cancels the previous loop,
    so a loop from an earlier generation never delivers another tick.
    """

    def __init__(self, channel_id: str = None, interval: float = 0.1):
        """Initialize the clock."""
        self._task: Optional[asyncio.Task] = None
        self._channel_id = channel_id
        self._interval = interval
        self._generation = 0
        self._is_cancelled = True
        self._tick_count = 0

    def start(
        self,
        tick_callback: TickCallback,
        stamp_source: Optional[Callable[[], int]] = None
    ) -> asyncio.Task:
        """
        Start a new tick loop, stopping any previous one.

        Must be called from a running event loop.

        Args:
            tick_callback: Called with ``(interval, stamp)`` each period; may be a coroutine function
            stamp_source: Read before each sleep; its value is passed as ``stamp``
                so the receiver can discard ticks that straddled a state change

        Returns:
            The asyncio task running the loop
        """
        self.stop()
        self._generation += 1
        self._is_cancelled = False
        self._tick_count = 0
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._run(self._generation, tick_callback, stamp_source))
        ClockLifecycleLogger.log_clock_start(self._channel_id, self._generation, self._interval)
        return self._task

    async def _run(
        self,
        generation: int,
        tick_callback: TickCallback,
        stamp_source: Optional[Callable[[], int]]
    ) -> None:
        completion_type = "stopped"
        try:
            while self._is_current(generation):
                stamp = stamp_source() if stamp_source else None
                await asyncio.sleep(self._interval)
                if not self._is_current(generation):
                    break
                self._tick_count += 1
                result = tick_callback(self._interval, stamp)
                if asyncio.iscoroutine(result):
                    await result
        except asyncio.CancelledError:
            completion_type = "asyncio_cancelled"
            raise
        except Exception as e:
            completion_type = "error"
            ClockLifecycleLogger.log_clock_error(self._channel_id, str(e))
            raise
        finally:
            ClockLifecycleLogger.log_clock_completion(
                self._channel_id, generation, completion_type, self._tick_count
            )

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation and not self._is_cancelled

    def stop(self) -> None:
        """Stop the current loop. Safe to call from inside a tick callback."""
        if self._is_cancelled and (self._task is None or self._task.done()):
            return
        ClockLifecycleLogger.log_clock_state_transition(self._channel_id, "running", "stopped", "stop requested")
        self._is_cancelled = True
        task = self._task
        if task is None or task.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        # A loop stopping itself exits on its next generation check
        if task is not current:
            task.cancel()

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def is_running(self) -> bool:
        return not self._is_cancelled and self._task is not None and not self._task.done()

    @property
    def is_cancelled(self) -> bool:
        return self._is_cancelled

    @property
    def tick_count(self) -> int:
        return self._tick_count
