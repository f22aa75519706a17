"""XP amounts for action outcomes.

The engine computes base plus bonus here and passes the total to
ExperienceFeedback.grant().
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from ..agents.actions import ActionLabel

if TYPE_CHECKING:
    from ..agents.economy import ExchangeStrategy
    from ..config_schema import ExperienceConfig


class ExperienceTable:
    """Lookup of base XP per action plus outcome bonuses."""

    def __init__(self, settings: ExperienceConfig) -> None:
        self.settings = settings

    def base(self, action: ActionLabel) -> int:
        return self.settings.base.get(action.value, 0)

    def rarity_bonus(self, rarity: str | None) -> int:
        if not rarity:
            return 0
        return self.settings.rarity_bonus.get(rarity.upper(), 0)

    def harvest(self, rarity: str | None = None) -> int:
        return self.base(ActionLabel.HARVEST) + self.rarity_bonus(rarity)

    def travel(self, first_visit: bool) -> int:
        bonus = self.settings.discovery_bonus if first_visit else 0
        return self.base(ActionLabel.TRAVEL) + bonus

    def acquire(self, price: int) -> int:
        bonus = self.settings.high_value_bonus if price >= self.settings.high_value_trade_threshold else 0
        return self.base(ActionLabel.ACQUIRE_ITEM) + bonus

    def consume(self, was_critical: bool) -> int:
        bonus = self.settings.critical_heal_bonus if was_critical else 0
        return self.base(ActionLabel.CONSUME_ITEM) + bonus

    def exchange(self, strategy: ExchangeStrategy) -> int:
        s = self.settings
        bonus = s.high_value_bonus if strategy.amount >= s.high_value_exchange_threshold else 0
        bonus += round(strategy.efficiency * s.efficiency_weight)
        return self.base(ActionLabel.EXCHANGE_CURRENCY) + bonus
