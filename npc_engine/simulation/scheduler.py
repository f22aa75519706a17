"""Per-agent activity timers and background tasks.

Each agent gets one asyncio task that sleeps for a jittered delay and then
awaits the engine's tick callback for that agent. Because the task awaits the
tick before drawing the next delay, one agent's ticks never overlap. Ticks of
different agents interleave freely while they wait on collaborator calls.

Besides agent timers the scheduler owns:
- one-shot delayed callbacks (respawns)
- the periodic population reporter
- fire-and-forget background work (broadcasts)

Usage:
    scheduler = ActivityScheduler(config.engine, on_tick=engine.tick)
    agent.timer = scheduler.arm(agent.id, pacing=1.0, initial_delay=scheduler.startup_offset())
    ...
    await scheduler.shutdown()
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Coroutine

if TYPE_CHECKING:
    from ..config_schema import EngineConfig

logger = logging.getLogger(__name__)

TickCallback = Callable[[str], Awaitable[Any]]


class TimerState(str, Enum):
    """State of an agent's activity timer."""

    WAITING = "waiting"
    TICKING = "ticking"
    STOPPED = "stopped"


@dataclass
class AgentTimer:
    """Handle for one agent's reschedulable timer.

    Attributes:
        agent_id: Agent this timer drives
        pacing: Personality pacing multiplier
        tick_count: Ticks completed since arming
    """

    agent_id: str
    pacing: float = 1.0
    tick_count: int = 0

    _state: TimerState = field(default=TimerState.WAITING, init=False)
    _task: asyncio.Task[None] | None = field(default=None, init=False)
    _cancel_requested: bool = field(default=False, init=False)

    @property
    def state(self) -> TimerState:
        return self._state

    @property
    def active(self) -> bool:
        return self._state != TimerState.STOPPED and not self._cancel_requested


class ActivityScheduler:
    """Drives independent per-agent timers.

    Args:
        settings: Validated engine section of the config
        on_tick: Async callback invoked with the agent id on every tick
        rng: Random source for delays and startup offsets
    """

    def __init__(
        self,
        settings: EngineConfig,
        on_tick: TickCallback,
        rng: random.Random | None = None,
    ) -> None:
        self.settings = settings
        self.on_tick = on_tick
        self.rng = rng or random.Random()
        self._timers: dict[str, AgentTimer] = {}
        self._delayed: dict[str, asyncio.Task[None]] = {}
        self._background: set[asyncio.Task[Any]] = set()
        self._reporter: asyncio.Task[None] | None = None

    # =========================================================================
    # Delays
    # =========================================================================

    def next_delay(self, pacing: float) -> float:
        """pacing * base_interval * U(jitter_low, jitter_high), floored."""
        s = self.settings
        jitter = self.rng.uniform(s.jitter_low, s.jitter_high)
        return max(s.min_interval_seconds, pacing * s.base_interval_seconds * jitter)

    def startup_offset(self) -> float:
        """One-off delay before an agent's first tick."""
        return self.rng.uniform(0, self.settings.startup_offset_max_seconds)

    # =========================================================================
    # Agent timers
    # =========================================================================

    def arm(self, agent_id: str, pacing: float = 1.0, initial_delay: float | None = None) -> AgentTimer:
        """Start the agent's timer. An already active timer is returned as is."""
        existing = self._timers.get(agent_id)
        if existing is not None and existing.active:
            logger.debug(f"Timer for {agent_id} already armed")
            return existing

        timer = AgentTimer(agent_id=agent_id, pacing=pacing)
        first_delay = self.next_delay(pacing) if initial_delay is None else max(0.0, initial_delay)
        timer._task = asyncio.create_task(self._run(timer, first_delay), name=f"agent-{agent_id}")
        self._timers[agent_id] = timer
        logger.debug(f"{agent_id} first tick in {first_delay:.1f}s")
        return timer

    def cancel(self, agent_id: str) -> bool:
        """Stop the agent's timer. Returns False if none was active.

        Called from inside the agent's own tick (death), the timer only
        flags itself so the tick can finish; the loop exits afterwards.
        """
        timer = self._timers.get(agent_id)
        if timer is None or not timer.active:
            return False
        timer._cancel_requested = True
        task = timer._task
        if task is not None and task is not asyncio.current_task() and timer.state == TimerState.WAITING:
            # a task cancelled before its first step never reaches _run's finally
            task.cancel()
            timer._state = TimerState.STOPPED
            if self._timers.get(agent_id) is timer:
                del self._timers[agent_id]
        logger.debug(f"Timer for {agent_id} cancelled")
        return True

    def is_armed(self, agent_id: str) -> bool:
        timer = self._timers.get(agent_id)
        return timer is not None and timer.active

    def timer(self, agent_id: str) -> AgentTimer | None:
        return self._timers.get(agent_id)

    @property
    def armed_count(self) -> int:
        return sum(1 for t in self._timers.values() if t.active)

    async def _run(self, timer: AgentTimer, delay: float) -> None:
        try:
            while not timer._cancel_requested:
                timer._state = TimerState.WAITING
                await asyncio.sleep(delay)
                if timer._cancel_requested:
                    break

                timer._state = TimerState.TICKING
                try:
                    await self.on_tick(timer.agent_id)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.exception(f"Tick for {timer.agent_id} raised: {e}")
                timer.tick_count += 1

                delay = self.next_delay(timer.pacing)
                logger.debug(f"{timer.agent_id} next tick in {delay:.1f}s")
        except asyncio.CancelledError:
            logger.debug(f"Timer for {timer.agent_id} task cancelled")
        finally:
            timer._state = TimerState.STOPPED
            if self._timers.get(timer.agent_id) is timer:
                del self._timers[timer.agent_id]

    # =========================================================================
    # Delayed callbacks, reporter, background work
    # =========================================================================

    def call_later(self, key: str, delay: float, callback: Callable[[], Awaitable[Any]]) -> None:
        """Run callback once after delay. A pending call with the same key is replaced."""
        previous = self._delayed.pop(key, None)
        if previous is not None:
            previous.cancel()

        async def _delayed() -> None:
            try:
                await asyncio.sleep(delay)
                await callback()
            except asyncio.CancelledError:
                logger.debug(f"Delayed call {key} cancelled")
            except Exception as e:
                logger.exception(f"Delayed call {key} failed: {e}")
            finally:
                if self._delayed.get(key) is task:
                    del self._delayed[key]

        task = asyncio.create_task(_delayed(), name=f"delayed-{key}")
        self._delayed[key] = task

    def has_pending(self, key: str) -> bool:
        return key in self._delayed

    def start_reporter(self, interval: float, report: Callable[[], Any]) -> None:
        """Call report() every interval seconds until shutdown."""
        if self._reporter is not None and not self._reporter.done():
            return

        async def _report_loop() -> None:
            try:
                while True:
                    await asyncio.sleep(interval)
                    try:
                        result = report()
                        if asyncio.iscoroutine(result):
                            await result
                    except Exception as e:
                        logger.exception(f"Population report failed: {e}")
            except asyncio.CancelledError:
                logger.debug("Population reporter stopped")

        self._reporter = asyncio.create_task(_report_loop(), name="population-reporter")

    def background(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task[Any]:
        """Fire-and-forget work; failures are logged, never raised."""
        task = asyncio.create_task(coro, name=name)
        self._background.add(task)
        task.add_done_callback(self._background_done)
        return task

    def _background_done(self, task: asyncio.Task[Any]) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning(f"Background task {task.get_name()} failed: {exc}")

    # =========================================================================
    # Shutdown
    # =========================================================================

    async def shutdown(self, timeout: float = 5.0) -> None:
        """Cancel every timer, delayed call, reporter and background task.

        Ticks already in flight are given up to timeout seconds to return
        before their tasks are cancelled.
        """
        timer_tasks = [t._task for t in self._timers.values() if t._task is not None]
        for agent_id in list(self._timers):
            self.cancel(agent_id)

        others: list[asyncio.Task[Any]] = list(self._delayed.values()) + list(self._background)
        if self._reporter is not None:
            others.append(self._reporter)
        for task in others:
            task.cancel()

        pending = [t for t in timer_tasks + others if not t.done()]
        if pending:
            _, still_running = await asyncio.wait(pending, timeout=timeout)
            for task in still_running:
                logger.warning(f"Task {task.get_name()} did not stop gracefully, cancelling")
                task.cancel()
            if still_running:
                await asyncio.gather(*still_running, return_exceptions=True)

        self._timers.clear()
        self._delayed.clear()
        self._background.clear()
        self._reporter = None
        logger.info("Scheduler stopped")
