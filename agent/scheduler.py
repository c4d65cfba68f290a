"""
Agent Scheduler
===============
Runs one agent on a fixed interval.

Each AgentLoop is a background task that sleeps for its interval, then
launches the agent's tick as a separate task. Rules:
- A tick never overlaps the previous tick of the same agent. If the last
  one is still running when the timer fires, this round is skipped.
- A tick that raises sets the agent to "error" with the message attached.
  The loop keeps going and the next tick runs as normal.
- stop() cancels the timer only. A tick already in flight finishes on its
  own (drain() waits for it); the agent's code checks the swarm's running
  flag before starting new work.
"""

import asyncio
from typing import Awaitable, Callable

from agent.activity import ActivityFeed, AgentBoard
from utils.logger import get_logger

logger = get_logger(__name__)

TickFn = Callable[[], Awaitable[str | None]]


class AgentLoop:
    """
    Usage:
        loop = AgentLoop("hunter", hunter.run, interval=60, board=board, feed=feed)
        await loop.run_once()   # immediate pass, awaited
        loop.start()            # then every 60s
        loop.stop()
        await loop.drain()
    """

    def __init__(
        self,
        agent_id: str,
        tick: TickFn,
        interval: float,
        board: AgentBoard,
        feed: ActivityFeed,
        is_live: Callable[[], bool] | None = None,
    ):
        self.agent_id = agent_id
        self.tick = tick
        self.interval = interval
        self.board = board
        self.feed = feed
        self._is_live = is_live or (lambda: True)
        self._timer: asyncio.Task | None = None
        self._in_flight: asyncio.Task | None = None
        self.skipped_ticks = 0

    @property
    def running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    @property
    def busy(self) -> bool:
        return self._in_flight is not None and not self._in_flight.done()

    async def run_once(self) -> None:
        """Run one tick now (sharing the in-flight guard) and wait for it."""
        task = self.trigger()
        if task is not None:
            await task

    def trigger(self) -> asyncio.Task | None:
        """Launch a tick unless one is already in flight. Returns its task."""
        if self.busy:
            self.skipped_ticks += 1
            logger.debug("tick_skipped_in_flight", agent=self.agent_id)
            return None
        self._in_flight = asyncio.create_task(self._guarded_tick(), name=f"tick:{self.agent_id}")
        return self._in_flight

    async def _guarded_tick(self) -> None:
        if not self._is_live():
            return
        self.board.set_status(self.agent_id, "running")
        try:
            result = await self.tick()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            message = str(e) or type(e).__name__
            self.feed.emit(self.agent_id, "error", "agent_tick_failed", f"{self.agent_id} failed: {message}",
                           error_type=type(e).__name__)
            if self._is_live():
                self.board.set_status(self.agent_id, "error", message)
            return
        # after stop() the board stays idle
        if self._is_live():
            self.board.set_status(self.agent_id, "running", result)

    async def _timer_loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            self.trigger()

    def start(self) -> None:
        if self.running:
            return
        self._timer = asyncio.create_task(self._timer_loop(), name=f"loop:{self.agent_id}")
        logger.info("agent_loop_started", agent=self.agent_id, interval_seconds=self.interval)

    def stop(self) -> None:
        """Cancel the timer. An in-flight tick is left to finish."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def drain(self) -> None:
        """Wait for the in-flight tick, if any, to finish."""
        task = self._in_flight
        if task is not None and not task.done():
            await asyncio.gather(task, return_exceptions=True)
