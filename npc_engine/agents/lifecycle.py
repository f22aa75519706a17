"""Health-driven lifecycle state machine.

States:
    ALIVE_NORMAL    health above the critical threshold
    ALIVE_CRITICAL  0 < health <= critical threshold; only emergency heals
    DEAD            health <= 0 or marked dead; no ticks
    RESPAWNING      the respawn delay has elapsed and the return is in progress

The phase is derived from AgentState on every evaluation, so the engine never
has to keep a second copy of it. The controller decides; the engine performs
the collaborator calls and applies the results.

Usage:
    lifecycle = LifecycleController(config.lifecycle)
    phase = lifecycle.phase(agent)
    if phase is LifecyclePhase.ALIVE_CRITICAL:
        item = lifecycle.best_healing_item(agent.inventory)
"""

from __future__ import annotations

import logging
import random
import time
from enum import Enum
from typing import TYPE_CHECKING, Iterable, Sequence

if TYPE_CHECKING:
    from ..config_schema import LifecycleConfig
    from ..world.models import Location
    from .state import AgentState, InventoryItem

logger = logging.getLogger(__name__)


class LifecyclePhase(str, Enum):
    """Lifecycle states of one agent."""

    ALIVE_NORMAL = "alive_normal"
    ALIVE_CRITICAL = "alive_critical"
    DEAD = "dead"
    RESPAWNING = "respawning"


P = LifecyclePhase

# (from, to) pairs the controller accepts. Death is reachable from any phase.
TRANSITIONS: frozenset[tuple[LifecyclePhase, LifecyclePhase]] = frozenset({
    (P.ALIVE_NORMAL, P.ALIVE_CRITICAL),
    (P.ALIVE_CRITICAL, P.ALIVE_NORMAL),
    (P.ALIVE_NORMAL, P.DEAD),
    (P.ALIVE_CRITICAL, P.DEAD),
    (P.RESPAWNING, P.DEAD),
    (P.DEAD, P.RESPAWNING),
    (P.RESPAWNING, P.ALIVE_NORMAL),
})


class InvalidTransition(ValueError):
    """Raised when a lifecycle change skips a required phase."""


class LifecycleController:
    """Evaluates and applies lifecycle transitions.

    Args:
        settings: Validated lifecycle section of the config
        rng: Random source for respawn location choice
    """

    def __init__(self, settings: LifecycleConfig, rng: random.Random | None = None) -> None:
        self.settings = settings
        self.rng = rng or random.Random()
        self._respawning: set[str] = set()

    @property
    def critical_health(self) -> int:
        return self.settings.critical_health

    @property
    def respawn_enabled(self) -> bool:
        return self.settings.respawn_enabled

    @property
    def respawn_delay(self) -> float:
        return self.settings.respawn_delay_seconds

    # =========================================================================
    # Evaluation
    # =========================================================================

    def phase(self, agent: AgentState) -> LifecyclePhase:
        """Current phase, derived from the agent's state."""
        if agent.is_dead:
            return P.RESPAWNING if agent.id in self._respawning else P.DEAD
        if agent.health <= 0:
            return P.DEAD
        if agent.health <= self.settings.critical_health:
            return P.ALIVE_CRITICAL
        return P.ALIVE_NORMAL

    def needs_death_handling(self, agent: AgentState) -> bool:
        """True when health has reached zero but death side effects have not run."""
        return agent.health <= 0 and not agent.is_dead

    def _check(self, current: LifecyclePhase, target: LifecyclePhase) -> None:
        if (current, target) not in TRANSITIONS:
            raise InvalidTransition(f"Cannot move from {current.value} to {target.value}")

    # =========================================================================
    # Death
    # =========================================================================

    def mark_dead(self, agent: AgentState, now: float | None = None) -> float | None:
        """Apply death to the agent record.

        The caller is responsible for cancelling the agent's timer before
        calling this, and for persisting and announcing the death afterwards.

        Returns:
            Seconds until respawn, or None when respawn is disabled.
        """
        if agent.is_dead:
            return None
        agent.health = 0
        agent.is_dead = True
        agent.death_time = now if now is not None else time.time()
        agent.timer = None
        self._respawning.discard(agent.id)
        logger.warning(f"{agent.name} has died")
        return self.settings.respawn_delay_seconds if self.settings.respawn_enabled else None

    # =========================================================================
    # Critical health
    # =========================================================================

    @staticmethod
    def best_healing_item(inventory: Iterable[InventoryItem]) -> InventoryItem | None:
        """Held consumable with the largest positive health effect.

        Ties keep the first item in inventory order.
        """
        best: InventoryItem | None = None
        for item in inventory:
            if not item.is_consumable or item.quantity <= 0 or item.health_effect <= 0:
                continue
            if best is None or item.health_effect > best.health_effect:
                best = item
        return best

    def record_heal_success(self, agent: AgentState) -> LifecyclePhase:
        """Reset the failure counter; returns the phase after healing."""
        agent.failed_healing_attempts = 0
        return self.phase(agent)

    def record_heal_failure(self, agent: AgentState) -> bool:
        """Count one failed emergency heal.

        At max_healing_attempts the agent dies from desperation: health is
        forced to 0 and the next evaluation runs death handling.

        Returns:
            True when this failure was fatal.
        """
        agent.failed_healing_attempts += 1
        attempts = agent.failed_healing_attempts
        if attempts >= self.settings.max_healing_attempts:
            agent.health = 0
            logger.error(f"{agent.name} died from desperation after {attempts} failed heals")
            return True
        logger.warning(
            f"{agent.name} failed to heal ({attempts}/{self.settings.max_healing_attempts})"
        )
        return False

    # =========================================================================
    # Respawn
    # =========================================================================

    def begin_respawn(self, agent: AgentState) -> None:
        """Move a dead agent into RESPAWNING once its delay has elapsed."""
        self._check(self.phase(agent), P.RESPAWNING)
        self._respawning.add(agent.id)

    def abort_respawn(self, agent: AgentState) -> None:
        """Return a RESPAWNING agent to DEAD (e.g. no locations known)."""
        self._respawning.discard(agent.id)

    def is_starting_location(self, location: Location) -> bool:
        min_level = location.min_level
        return (
            location.difficulty <= self.settings.starting_max_difficulty
            and not location.is_private
            and (min_level is None or min_level <= 1)
        )

    def choose_respawn_location(self, locations: Sequence[Location]) -> Location | None:
        """Pick a starting location, or any known location if none qualify."""
        starting = [loc for loc in locations if self.is_starting_location(loc)]
        if starting:
            return self.rng.choice(starting)
        if locations:
            logger.debug("No starting location qualifies, falling back to first known location")
            return locations[0]
        return None

    def apply_respawn(self, agent: AgentState, location: Location | None) -> None:
        """Bring the agent back with penalized stats."""
        self._check(self.phase(agent), P.ALIVE_NORMAL)
        agent.health = self.settings.respawn_health
        agent.energy = self.settings.respawn_energy
        agent.is_dead = False
        agent.death_time = None
        agent.failed_healing_attempts = 0
        if location is not None:
            agent.location_id = location.id
            agent.visited_locations.add(location.id)
        self._respawning.discard(agent.id)
