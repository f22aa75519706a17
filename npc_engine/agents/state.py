"""Mutable per-agent runtime record.

AgentState instances live in the engine's registry and are only written by the
engine while it processes that agent's own tick. Other components receive the
instance for reading (or get a snapshot) and return decisions instead of
mutating it.

Invariants enforced on every assignment:
- health and energy are clamped to [0, 100]
- coins are integers and never negative
- failed_healing_attempts is never negative
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ..world.models import AgentSnapshot, InventoryEntry
    from .personality import PersonalityProfile


STAT_MIN = 0
STAT_MAX = 100

CATEGORY_CONSUMABLE = "CONSUMABLE"
CATEGORY_MATERIAL = "MATERIAL"


def clamp_stat(value: float) -> int:
    """Clamp a health/energy value into [0, 100]."""
    return int(max(STAT_MIN, min(STAT_MAX, round(value))))


@dataclass
class InventoryItem:
    """One inventory stack held by an agent."""

    id: str
    name: str
    category: str = ""
    quantity: int = 0
    is_equipped: bool = False
    health_effect: int = 0
    energy_effect: int = 0

    @property
    def is_consumable(self) -> bool:
        return self.category == CATEGORY_CONSUMABLE

    @property
    def is_material(self) -> bool:
        return self.category == CATEGORY_MATERIAL

    @classmethod
    def from_entry(cls, entry: InventoryEntry) -> InventoryItem:
        return cls(
            id=entry.id,
            name=entry.item.name,
            category=entry.item.category,
            quantity=entry.quantity,
            is_equipped=entry.is_equipped,
            health_effect=entry.item.health_effect or 0,
            energy_effect=entry.item.energy_effect or 0,
        )


@dataclass
class AgentState:
    """Runtime record for one NPC.

    Attributes:
        id: Character id in the persistent store
        wallet_address: External ledger identity
        name: Display name
        personality: Reference to the shared immutable profile
        health: 0-100
        energy: 0-100
        coins: In-game currency (int, >= 0)
        ledger_balance: Last read external-ledger balance (refreshed per decision)
        level: >= 1
        experience: >= 0
        location_id: Current location id
        last_action: Label of the last completed action
        is_dead: Dead agents have no timer and take no ticks
        failed_healing_attempts: Consecutive failed emergency heals
        death_time: Unix timestamp of death, None while alive
        timer: Active scheduling handle, None when not scheduled
        visited_locations: Location ids visited (first visit earns a bonus)
        inventory: Last inventory read from the snapshot collaborator
    """

    id: str
    wallet_address: str
    personality: PersonalityProfile
    name: str = ""
    health: int = STAT_MAX
    energy: int = STAT_MAX
    coins: int = 100
    ledger_balance: float = 0.0
    level: int = 1
    experience: int = 0
    location_id: str | None = None
    last_action: str | None = None
    is_dead: bool = False
    failed_healing_attempts: int = 0
    death_time: float | None = None
    timer: Any = None
    visited_locations: set[str] = field(default_factory=set)
    inventory: list[InventoryItem] = field(default_factory=list)

    def __setattr__(self, name: str, value: Any) -> None:
        if name in ("health", "energy"):
            value = clamp_stat(value)
        elif name == "coins":
            value = max(0, int(value))
        elif name == "level":
            value = max(1, int(value))
        elif name in ("experience", "failed_healing_attempts"):
            value = max(0, int(value))
        object.__setattr__(self, name, value)

    def __post_init__(self) -> None:
        if not self.name:
            self.name = self.id
        if self.location_id:
            self.visited_locations.add(self.location_id)

    def apply_snapshot(self, snapshot: AgentSnapshot) -> None:
        """Overwrite cached fields from an authoritative snapshot."""
        self.health = snapshot.health
        self.energy = snapshot.energy
        self.coins = snapshot.coins
        self.level = snapshot.level
        self.experience = snapshot.experience
        if snapshot.location_id:
            self.location_id = snapshot.location_id
            self.visited_locations.add(snapshot.location_id)
        self.inventory = [InventoryItem.from_entry(e) for e in snapshot.inventory]

    def copy(self) -> AgentState:
        """Detached snapshot for read-only consumers."""
        clone = copy.copy(self)
        object.__setattr__(clone, "timer", None)
        object.__setattr__(clone, "visited_locations", set(self.visited_locations))
        object.__setattr__(clone, "inventory", [copy.copy(i) for i in self.inventory])
        return clone

    def status_line(self) -> str:
        return f"{self.energy}E/{self.health}H/{self.coins}C L{self.level}"
