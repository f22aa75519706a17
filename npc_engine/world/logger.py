"""JSONL activity log for the NPC population.

Two outputs:
- events.jsonl: one line per action, death, respawn, XP grant, exchange
  and population report, each stamped with a UTC timestamp and a
  sequence number
- summary.jsonl: one line per population report (per-run mode only)

Per-run mode writes under logs_dir/<run_id>/ and points logs_dir/latest at
the newest run. Single-file mode truncates one file at startup.
"""

from __future__ import annotations

import json
import shutil
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

DEFAULT_OUTPUT_FILE = "npc_events.jsonl"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _append_line(path: Path, record: dict[str, Any]) -> None:
    with open(path, "a") as f:
        f.write(json.dumps(record, default=str) + "\n")


class SummaryLogger:
    """Appends one population summary per reporting period."""

    def __init__(self, path: Path) -> None:
        self.output_path = path
        path.parent.mkdir(parents=True, exist_ok=True)

    def log_summary(self, summary: dict[str, Any]) -> None:
        _append_line(self.output_path, {"timestamp": _now(), **summary})


@dataclass
class _Period:
    actions_executed: int = 0
    skipped: int = 0
    errors: int = 0
    experience_granted: int = 0
    exchange_volume: int = 0
    actions_by_type: dict[str, int] = field(default_factory=dict)
    highlights: list[str] = field(default_factory=list)
    per_agent: dict[str, dict[str, int]] = field(default_factory=dict)


class SummaryCollector:
    """Activity counters for the current reporting period.

    The engine feeds it every action (skipped ones separately), XP grant and
    exchange; the population reporter calls finalize() which returns the
    period and starts a new one.
    """

    def __init__(self) -> None:
        self._period = _Period()

    def record_action(self, action_type: str, success: bool = True, agent_id: str | None = None) -> None:
        """Count one executed action.

        Args:
            action_type: Action label (e.g., "HARVEST", "EMERGENCY_HEAL")
            success: False when the action failed on a collaborator call
            agent_id: Agent to attribute the action to
        """
        period = self._period
        period.actions_executed += 1
        period.actions_by_type[action_type] = period.actions_by_type.get(action_type, 0) + 1
        if not success:
            period.errors += 1
        if agent_id is not None:
            counts = self._agent_counts(agent_id)
            counts["actions"] += 1
            counts["successes" if success else "failures"] += 1

    def record_skip(self, action_type: str, agent_id: str | None = None) -> None:
        """Count a chosen action that had nothing to act on.

        Skips are kept out of actions_executed and the error rate.
        """
        self._period.skipped += 1
        if agent_id is not None:
            self._agent_counts(agent_id)["skipped"] += 1

    def _agent_counts(self, agent_id: str) -> dict[str, int]:
        counts = self._period.per_agent.get(agent_id)
        if counts is None:
            counts = self._period.per_agent[agent_id] = {
                "actions": 0, "successes": 0, "failures": 0, "skipped": 0,
            }
        return counts

    def record_experience(self, amount: int) -> None:
        self._period.experience_granted += amount

    def record_exchange(self, amount: int) -> None:
        self._period.exchange_volume += amount

    def add_highlight(self, text: str) -> None:
        """Notable event for the period (death, level-up)."""
        self._period.highlights.append(text)

    @property
    def actions_executed(self) -> int:
        return self._period.actions_executed

    @property
    def skipped(self) -> int:
        return self._period.skipped

    @property
    def errors(self) -> int:
        return self._period.errors

    def error_rate(self) -> float:
        return self._period.errors / max(self._period.actions_executed, 1)

    def finalize(self) -> dict[str, Any]:
        """Summary of the current period; counters start over."""
        period, self._period = self._period, _Period()
        return {
            "actions_executed": period.actions_executed,
            "actions_by_type": period.actions_by_type,
            "skipped": period.skipped,
            "errors": period.errors,
            "error_rate": round(period.errors / max(period.actions_executed, 1), 4),
            "experience_granted": period.experience_granted,
            "exchange_volume": period.exchange_volume,
            "highlights": period.highlights,
            "per_agent": period.per_agent,
        }


class EventLogger:
    """Append-only JSONL log of world activity.

    Args:
        output_file: Single-file mode path (default: npc_events.jsonl)
        logs_dir: Per-run mode base directory
        run_id: Per-run mode directory name (e.g., run_20260115_120000)

    Per-run mode is used when both logs_dir and run_id are given.
    """

    def __init__(
        self,
        output_file: str | None = None,
        logs_dir: str | None = None,
        run_id: str | None = None,
    ) -> None:
        self._logs_dir = Path(logs_dir) if logs_dir else None
        self._run_id = run_id
        self._sequence = 0
        self.summary_logger: SummaryLogger | None = None

        if self._logs_dir is not None and run_id:
            run_dir = self._logs_dir / run_id
            run_dir.mkdir(parents=True, exist_ok=True)
            self.output_path = run_dir / "events.jsonl"
            self.summary_logger = SummaryLogger(run_dir / "summary.jsonl")
            self._point_latest(self._logs_dir, run_id)
        else:
            self.output_path = Path(output_file or DEFAULT_OUTPUT_FILE)
            self.output_path.parent.mkdir(parents=True, exist_ok=True)
        self.output_path.write_text("")

    @staticmethod
    def _point_latest(logs_dir: Path, run_id: str) -> None:
        link = logs_dir / "latest"
        if link.is_symlink() or link.is_file():
            link.unlink()
        elif link.is_dir():
            shutil.rmtree(link)
        # relative target
        link.symlink_to(run_id)

    @property
    def run_id(self) -> str | None:
        return self._run_id

    @property
    def logs_dir(self) -> Path | None:
        return self._logs_dir

    def log(self, event_type: str, data: dict[str, Any]) -> None:
        self._sequence += 1
        _append_line(self.output_path, {
            "timestamp": _now(),
            "sequence": self._sequence,
            "event_type": event_type,
            **data,
        })

    # =========================================================================
    # Event helpers
    # =========================================================================

    def log_action(
        self,
        agent_id: str,
        action: str,
        success: bool,
        status: str,
        detail: str | None = None,
        skipped: bool = False,
    ) -> None:
        """One executed action.

        Args:
            status: Agent stats afterwards, e.g. "80E/95H/120C L2"
            detail: Narrative text, or the skip/failure reason
            skipped: The action had nothing to act on
        """
        data: dict[str, Any] = {"agent_id": agent_id, "action": action, "success": success, "status": status}
        if detail:
            data["detail"] = detail
        if skipped:
            data["skipped"] = True
        self.log("action", data)

    def log_death(self, agent_id: str, reason: str, respawn_in: float | None) -> None:
        self.log("death", {"agent_id": agent_id, "reason": reason, "respawn_in_seconds": respawn_in})

    def log_respawn(self, agent_id: str, location_id: str | None, health: int, energy: int) -> None:
        self.log("respawn", {
            "agent_id": agent_id,
            "location_id": location_id,
            "health": health,
            "energy": energy,
        })

    def log_experience(
        self,
        agent_id: str,
        amount: int,
        source: str,
        total_experience: int,
        level: int,
        leveled_up: bool,
    ) -> None:
        self.log("experience", {
            "agent_id": agent_id,
            "amount": amount,
            "source": source,
            "total_experience": total_experience,
            "level": level,
            "leveled_up": leveled_up,
        })

    def log_exchange(
        self,
        agent_id: str,
        direction: str,
        amount: int,
        reason: str,
        priority: int,
        success: bool,
    ) -> None:
        self.log("exchange", {
            "agent_id": agent_id,
            "direction": direction,
            "amount": amount,
            "reason": reason,
            "priority": priority,
            "success": success,
        })

    def log_population(self, stats: dict[str, int], summary: dict[str, Any]) -> None:
        """Population report; mirrored to summary.jsonl in per-run mode."""
        record = {**stats, **summary}
        self.log("population", record)
        if self.summary_logger is not None:
            self.summary_logger.log_summary(record)

    def read_recent(self, n: int = 50) -> list[dict[str, Any]]:
        """Last n events, oldest first."""
        if not self.output_path.exists():
            return []
        lines = [line for line in self.output_path.read_text().splitlines() if line]
        return [json.loads(line) for line in lines[-n:]]
