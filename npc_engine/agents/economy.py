"""Currency-exchange strategy selection.

Each decision evaluates four independent candidates and keeps the one with
the highest priority (ties go to evaluation order):

    necessity    10  external balance below the operational floor
    liquidity     8  low on coins while holding external value
    portfolio     6  merchants keep the external share inside a band
    opportunity   2  occasional small random trade

All amounts are whole currency units, floor-rounded, and checked against the
agent's balances before a strategy is returned.
"""

from __future__ import annotations

import logging
import math
import random
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Callable

if TYPE_CHECKING:
    from ..config_schema import ExchangeConfig
    from .state import AgentState

logger = logging.getLogger(__name__)


class ExchangeDirection(str, Enum):
    ACQUIRE = "ACQUIRE"
    LIQUIDATE = "LIQUIDATE"


@dataclass(frozen=True)
class ExchangeStrategy:
    """One candidate exchange.

    Attributes:
        direction: Acquire or liquidate the external asset
        amount: Currency-equivalent amount (whole units, > 0)
        reason: Strategy tag ("necessity", "liquidity", ...)
        priority: Higher wins
        efficiency: 0-1 score, only used for the XP bonus
    """

    direction: ExchangeDirection
    amount: int
    reason: str
    priority: int
    efficiency: float = 0.0

    def __post_init__(self) -> None:
        if self.amount <= 0:
            raise ValueError(f"Exchange amount must be positive: {self.amount}")


NECESSITY = "necessity"
LIQUIDITY = "liquidity"
PORTFOLIO = "portfolio"
OPPORTUNITY = "opportunity"

PRIORITIES: dict[str, int] = {
    NECESSITY: 10,
    LIQUIDITY: 8,
    PORTFOLIO: 6,
    OPPORTUNITY: 2,
}


class EconomicStrategyEngine:
    """Chooses at most one exchange per decision.

    Args:
        settings: Validated exchange section of the config
        rng: Random source for the opportunity candidate
    """

    def __init__(self, settings: ExchangeConfig, rng: random.Random | None = None) -> None:
        self.settings = settings
        self.rng = rng or random.Random()
        self._evaluators: tuple[Callable[[AgentState, float, float], ExchangeStrategy | None], ...] = (
            self._necessity,
            self._liquidity,
            self._portfolio,
            self._opportunity,
        )

    def decide(
        self,
        agent: AgentState,
        external_balance: float,
        rate: float,
        market_liquid: bool,
    ) -> ExchangeStrategy | None:
        """Pick the exchange for this tick.

        Args:
            agent: Current state (read only)
            external_balance: External-ledger balance in asset units
            rate: Currency units per asset unit
            market_liquid: False closes the market; nothing is returned

        Returns:
            The highest-priority feasible strategy, or None
        """
        if not market_liquid:
            logger.debug(f"{agent.name} skipping exchange, market closed")
            return None

        candidates = self.candidates(agent, external_balance, rate)
        if not candidates:
            return None
        # max() keeps the first of equal priorities
        return max(candidates, key=lambda s: s.priority)

    def candidates(
        self, agent: AgentState, external_balance: float, rate: float
    ) -> list[ExchangeStrategy]:
        """All feasible candidates in evaluation order."""
        results = []
        for evaluate in self._evaluators:
            strategy = evaluate(agent, max(0.0, external_balance), max(0.0, rate))
            if strategy is not None:
                results.append(strategy)
        return results

    # =========================================================================
    # Candidates
    # =========================================================================

    def _necessity(self, agent: AgentState, balance: float, rate: float) -> ExchangeStrategy | None:
        s = self.settings
        if balance >= s.operational_floor or agent.coins < s.necessity_min_coins:
            return None
        amount = math.floor(min(s.necessity_cap, s.necessity_fraction * agent.coins))
        if amount <= 0:
            return None
        return ExchangeStrategy(
            ExchangeDirection.ACQUIRE, amount, NECESSITY, PRIORITIES[NECESSITY], 1.0
        )

    def _liquidity(self, agent: AgentState, balance: float, rate: float) -> ExchangeStrategy | None:
        s = self.settings
        if agent.coins >= s.liquidity_coin_ceiling or balance <= s.liquidity_min_balance:
            return None
        value = balance * rate
        amount = math.floor(min(s.liquidity_cap, s.liquidity_fraction * value))
        if amount < s.min_transaction:
            return None
        shortfall = s.liquidity_coin_ceiling - agent.coins
        efficiency = min(1.0, amount / shortfall)
        return ExchangeStrategy(
            ExchangeDirection.LIQUIDATE, amount, LIQUIDITY, PRIORITIES[LIQUIDITY], efficiency
        )

    def _portfolio(self, agent: AgentState, balance: float, rate: float) -> ExchangeStrategy | None:
        s = self.settings
        if not agent.personality.is_merchant or agent.coins <= s.portfolio_min_coins:
            return None

        value = balance * rate
        total = agent.coins + value
        share = value / total

        if share < s.portfolio_low and agent.coins >= s.portfolio_buy_min_coins:
            amount = math.floor(min(s.portfolio_buy_cap, s.portfolio_buy_fraction * agent.coins))
            gap = s.portfolio_low * total - value
            direction = ExchangeDirection.ACQUIRE
        elif share > s.portfolio_high:
            amount = math.floor(min(s.portfolio_sell_cap, s.portfolio_sell_fraction * value))
            gap = value - s.portfolio_high * total
            direction = ExchangeDirection.LIQUIDATE
        else:
            return None

        if amount <= 0:
            return None
        efficiency = min(1.0, amount / gap) if gap > 0 else 0.0
        return ExchangeStrategy(direction, amount, PORTFOLIO, PRIORITIES[PORTFOLIO], efficiency)

    def _opportunity(self, agent: AgentState, balance: float, rate: float) -> ExchangeStrategy | None:
        s = self.settings
        if agent.coins < s.opportunity_min_coins:
            return None
        if self.rng.random() >= s.opportunity_probability:
            return None

        amount = self.rng.randint(s.opportunity_min_amount, s.opportunity_max_amount)
        direction = self.rng.choice([ExchangeDirection.ACQUIRE, ExchangeDirection.LIQUIDATE])

        # Never propose more than the agent holds on the spending side
        if direction is ExchangeDirection.ACQUIRE and amount > agent.coins:
            return None
        if direction is ExchangeDirection.LIQUIDATE and amount > balance * rate:
            return None
        return ExchangeStrategy(direction, amount, OPPORTUNITY, PRIORITIES[OPPORTUNITY], 0.5)
