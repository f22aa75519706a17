"""NPC Engine source package.

This package contains the autonomous NPC simulation components:
- config: Configuration loading and management
- agents: Per-agent decision making (selection, lifecycle, economy, experience)
- world: Collaborator client, wire models, errors and the event log
- simulation: Scheduling and the engine orchestrator
"""

from __future__ import annotations

__version__ = "0.3.0"

__all__: list[str] = []
