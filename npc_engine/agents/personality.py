"""Personality profiles: static per-archetype action weights and pacing.

Profiles are immutable and loaded once at startup. The declared order of the
weights mapping matters: the action selector walks it when drawing an action.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Mapping

from .actions import ActionLabel

if TYPE_CHECKING:
    from ..config_schema import PersonalityConfig


MERCHANT = "merchant"


@dataclass(frozen=True)
class PersonalityProfile:
    """Preference weights and pacing for one NPC archetype.

    Attributes:
        id: Profile identifier (e.g. "merchant")
        weights: Ordered action label -> base weight (need not sum to 1)
        pacing: Multiplier applied to the base tick interval
    """

    id: str
    weights: Mapping[ActionLabel, float] = field(default_factory=dict)
    pacing: float = 1.0

    def __post_init__(self) -> None:
        """Validate weights and freeze the mapping."""
        if self.pacing <= 0:
            raise ValueError(f"pacing must be positive: {self.pacing}")
        if not self.weights:
            raise ValueError(f"Personality '{self.id}' declares no weights")
        for label, weight in self.weights.items():
            if weight < 0:
                raise ValueError(
                    f"Personality '{self.id}' has negative weight for {label}: {weight}"
                )
        # Keep declared order, forbid mutation
        object.__setattr__(self, "weights", MappingProxyType(dict(self.weights)))

    @property
    def is_merchant(self) -> bool:
        return self.id == MERCHANT

    @classmethod
    def from_dict(cls, profile_id: str, data: dict[str, Any]) -> PersonalityProfile:
        """Build a profile from a plain dict ({"weights": {...}, "pacing": x})."""
        weights = {ActionLabel(label): float(w) for label, w in data.get("weights", {}).items()}
        return cls(id=profile_id, weights=weights, pacing=float(data.get("pacing", 1.0)))


def profiles_from_config(
    personalities: Mapping[str, PersonalityConfig],
) -> dict[str, PersonalityProfile]:
    """Build immutable profiles from the validated personalities section."""
    return {
        profile_id: PersonalityProfile(
            id=profile_id,
            weights={ActionLabel(label): w for label, w in cfg.weights.items()},
            pacing=cfg.pacing,
        )
        for profile_id, cfg in personalities.items()
    }
