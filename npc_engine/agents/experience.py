"""Experience grants.

The engine decides how much XP an outcome is worth (base plus bonuses) and
hands the total to ExperienceFeedback, which forwards it to the experience
collaborator and copies the authoritative totals back onto the agent.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

from ..world.errors import CollaboratorError

if TYPE_CHECKING:
    from ..world.models import ExperienceResult
    from .state import AgentState

logger = logging.getLogger(__name__)


class ExperienceService(Protocol):
    """The part of the world client this component needs."""

    async def grant_experience(
        self,
        wallet_address: str,
        amount: int,
        source: str,
        details: dict[str, Any] | None = None,
    ) -> ExperienceResult:
        ...


@dataclass(frozen=True)
class GrantResult:
    """Authoritative totals after a grant."""

    total_experience: int
    new_level: int
    leveled_up: bool


class ExperienceFeedback:
    """Converts action outcomes into experience and level updates."""

    def __init__(self, service: ExperienceService) -> None:
        self.service = service

    async def grant(
        self,
        agent: AgentState,
        base_amount: int,
        source: str,
        details: dict[str, Any] | None = None,
    ) -> GrantResult | None:
        """Grant XP and overwrite the agent's level and experience.

        Args:
            agent: Agent receiving the XP
            base_amount: Total XP including any bonuses
            source: Action label or event that earned it
            details: Free-form context forwarded to the collaborator

        Returns:
            The new totals, or None when nothing was granted. A collaborator
            failure leaves the agent unchanged.
        """
        if base_amount <= 0:
            return None

        try:
            response = await self.service.grant_experience(
                agent.wallet_address, base_amount, source, details
            )
        except CollaboratorError as e:
            logger.warning(f"XP grant for {agent.name} ({source}, {base_amount}) failed: {e}")
            return None

        agent.experience = response.total_experience
        agent.level = response.new_level
        if response.leveled_up:
            logger.info(f"{agent.name} reached level {response.new_level}")
        else:
            logger.debug(f"{agent.name} +{base_amount} XP from {source}")

        return GrantResult(
            total_experience=response.total_experience,
            new_level=response.new_level,
            leveled_up=response.leveled_up,
        )
