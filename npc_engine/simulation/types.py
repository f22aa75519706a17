"""Result and statistics types shared by the scheduler and the engine."""

from __future__ import annotations

from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, TypedDict


@dataclass
class ErrorRecord:
    """One failed collaborator call or unexpected tick error."""

    timestamp: datetime
    error_type: str
    agent_id: str
    action: str | None
    message: str


@dataclass
class ErrorStats:
    """Error counts for the running engine.

    Counted by error code, by agent and by action; only the last
    max_recent records are kept in full.
    """

    max_recent: int = 10
    total_errors: int = 0
    by_type: Counter[str] = field(default_factory=Counter)
    by_agent: Counter[str] = field(default_factory=Counter)
    by_action: Counter[str] = field(default_factory=Counter)
    recent_errors: deque[ErrorRecord] = field(init=False)

    def __post_init__(self) -> None:
        self.recent_errors = deque(maxlen=self.max_recent)

    def record_error(
        self,
        error_type: str,
        agent_id: str,
        message: str,
        action: str | None = None,
    ) -> None:
        self.total_errors += 1
        self.by_type[error_type] += 1
        self.by_agent[agent_id] += 1
        if action is not None:
            self.by_action[action] += 1
        self.recent_errors.append(
            ErrorRecord(datetime.now(), error_type, agent_id, action, message)
        )

    def summary(self) -> dict[str, Any]:
        return {
            "total_errors": self.total_errors,
            "by_type": dict(self.by_type),
            "by_agent": dict(self.by_agent),
            "by_action": dict(self.by_action),
            "recent": [
                {"agent_id": r.agent_id, "error_type": r.error_type, "message": r.message}
                for r in self.recent_errors
            ],
        }


class PopulationStats(TypedDict):
    """Registry-wide counts reported by the population reporter.

    "active" means alive with energy at or above the rest threshold.
    """

    total: int
    alive: int
    dead: int
    active: int
    resting: int


@dataclass
class TickOutcome:
    """What happened during one agent tick (for logs and tests)."""

    agent_id: str
    action: str | None = None
    success: bool = True
    detail: str | None = None
    experience: int = 0
    died: bool = False
    skipped: bool = False
