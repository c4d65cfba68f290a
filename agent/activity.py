"""
Activity Feed
=============
What the swarm is doing, for humans.

Two pieces:
- ActivityFeed: every agent message goes through emit(). It's written to
  the structlog logger, kept in a ring of the last 500 entries (GET /api/logs),
  and pushed to every connected dashboard (/ws).
- AgentBoard: the status row of each agent (idle / running / error / waiting),
  with the time of its last tick and a one-line result.

Push events look like:
    {"type": "log" | "status" | "trade", "data": {...}, "timestamp": 1700000000000}

Subscribers get their own asyncio.Queue. A slow dashboard can't stall the
agents: when its queue is full the oldest event is dropped.
"""

import asyncio
from collections import deque
from dataclasses import dataclass, asdict
from typing import Any

from utils.logger import get_logger, log_at_severity
from utils.timeutil import now_ms

logger = get_logger("swarm")

SEVERITIES = ("info", "success", "warn", "error", "cmd", "trade")
AGENT_STATES = ("idle", "running", "error", "waiting")

# (id, display name) for every agent on the board. whale and backtest are
# placeholders: they show up on the dashboard but have no loop.
AGENT_DEFINITIONS = [
    ("narrative", "Narrative Scanner"),
    ("hunter", "Coin Hunter"),
    ("whale", "Whale Tracker"),
    ("risk", "Risk Manager"),
    ("executor", "Executor"),
    ("backtest", "Backtester"),
]


@dataclass
class SwarmLog:
    timestamp: int
    agent: str
    type: str
    message: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class AgentStatus:
    id: str
    name: str
    status: str = "idle"
    last_run: int | None = None
    last_result: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


class ActivityFeed:
    """
    Log ring + push channel.

    Usage:
        feed = ActivityFeed()
        feed.emit("hunter", "success", "token_scored", "PEPE -> Score: 88", score=88)
        queue = feed.subscribe()
        event = await queue.get()
        feed.unsubscribe(queue)
    """

    def __init__(self, max_logs: int = 500, queue_size: int = 1000):
        self._logs: deque[SwarmLog] = deque(maxlen=max_logs)
        self._subscribers: set[asyncio.Queue] = set()
        self._queue_size = queue_size

    def emit(self, agent: str, severity: str, event: str, message: str, **fields: Any) -> SwarmLog:
        """
        Record one agent message.

        Args:
            agent: agent id ("hunter", "risk", "orchestrator", ...)
            severity: info, success, warn, error, cmd or trade
            event: snake_case structlog event name
            message: the human line shown on the dashboard
            fields: extra structured context for the log line only
        """
        if severity not in SEVERITIES:
            severity = "info"
        log_at_severity(logger, severity, event, agent=agent, message=message, **fields)

        entry = SwarmLog(timestamp=now_ms(), agent=agent, type=severity, message=message)
        self._logs.append(entry)
        self.publish("log", entry.to_dict())
        return entry

    def publish(self, event_type: str, data: Any) -> None:
        """Push an event to every subscriber without waiting."""
        event = {"type": event_type, "data": data, "timestamp": now_ms()}
        for queue in list(self._subscribers):
            if queue.full():
                try:
                    queue.get_nowait()
                except asyncio.QueueEmpty:
                    pass
            queue.put_nowait(event)

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)
        self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        self._subscribers.discard(queue)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def recent(self, limit: int | None = None) -> list[dict]:
        """Logged entries, oldest first (the last `limit` if given)."""
        logs = list(self._logs)
        if limit is not None:
            logs = logs[-limit:]
        return [entry.to_dict() for entry in logs]


class AgentBoard:
    """
    In-memory status of every agent. Nothing here is persisted.

    Usage:
        board = AgentBoard()
        board.set_status("hunter", "running")
        board.set_status("hunter", "running", "Scored 12 tokens")
        board.reset()  # everything back to idle
    """

    def __init__(self):
        self._agents: dict[str, AgentStatus] = {
            agent_id: AgentStatus(id=agent_id, name=name)
            for agent_id, name in AGENT_DEFINITIONS
        }

    def set_status(self, agent_id: str, status: str, last_result: str | None = None) -> None:
        agent = self._agents.get(agent_id)
        if agent is None:
            return
        if status not in AGENT_STATES:
            raise ValueError(f"unknown agent status: {status}")
        agent.status = status
        agent.last_run = now_ms()
        if last_result is not None:
            agent.last_result = last_result

    def get(self, agent_id: str) -> AgentStatus | None:
        return self._agents.get(agent_id)

    def set_all(self, status: str) -> None:
        for agent_id in self._agents:
            self.set_status(agent_id, status)

    def reset(self) -> None:
        """Every agent back to idle."""
        self.set_all("idle")

    def snapshot(self) -> list[dict]:
        return [agent.to_dict() for agent in self._agents.values()]
