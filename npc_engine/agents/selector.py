"""Weighted, context-adjusted action selection.

The selector starts from a personality's base weights, runs them through an
ordered list of rule groups, normalizes, and draws one action with a single
uniform random value. Rule groups are applied in order; inside a group only
the first rule whose predicate matches applies its multipliers.

Usage:
    selector = ActionSelector(rng=random.Random(7))
    action = selector.select(agent, agent.personality, override_action=None)
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Mapping, Sequence

from .actions import TRADE_OVERRIDE, ActionLabel

if TYPE_CHECKING:
    from .personality import PersonalityProfile
    from .state import AgentState

logger = logging.getLogger(__name__)

CRITICAL_HEALTH = 5

Predicate = Callable[["AgentState", "PersonalityProfile"], bool]


@dataclass(frozen=True)
class WeightRule:
    """One (predicate, multipliers) pair."""

    name: str
    predicate: Predicate
    multipliers: Mapping[ActionLabel, float]


@dataclass(frozen=True)
class RuleGroup:
    """Ordered rules with first-match semantics."""

    name: str
    rules: tuple[WeightRule, ...]

    def match(self, agent: AgentState, personality: PersonalityProfile) -> WeightRule | None:
        for rule in self.rules:
            if rule.predicate(agent, personality):
                return rule
        return None


A = ActionLabel

ECONOMIC_RULES = RuleGroup(
    name="economic",
    rules=(
        WeightRule(
            "merchant_wealthy",
            lambda a, p: p.is_merchant and a.coins > 500,
            {A.EXCHANGE_CURRENCY: 3.0},
        ),
        WeightRule("comfortable", lambda a, p: a.coins > 100, {A.EXCHANGE_CURRENCY: 1.5}),
        WeightRule("poor", lambda a, p: a.coins < 50, {A.EXCHANGE_CURRENCY: 0.2}),
    ),
)

HEALTH_RULES = RuleGroup(
    name="health",
    rules=(
        WeightRule(
            "severely_injured",
            lambda a, p: a.health < 15,
            {
                A.HARVEST: 0.05,
                A.TRAVEL: 0.1,
                A.CONSUME_ITEM: 20.0,
                A.ACQUIRE_ITEM: 3.0,
                A.SOCIALIZE: 3.0,
                A.EXCHANGE_CURRENCY: 0.1,
            },
        ),
        WeightRule(
            "injured",
            lambda a, p: a.health < 30,
            {
                A.HARVEST: 0.3,
                A.TRAVEL: 0.4,
                A.CONSUME_ITEM: 5.0,
                A.ACQUIRE_ITEM: 2.0,
                A.SOCIALIZE: 2.0,
            },
        ),
    ),
)

# Economic adjustments come before health adjustments; the order changes the
# final distribution when both apply.
DEFAULT_RULE_GROUPS: tuple[RuleGroup, ...] = (ECONOMIC_RULES, HEALTH_RULES)


def adjust_weights(
    agent: AgentState,
    personality: PersonalityProfile,
    groups: Sequence[RuleGroup] = DEFAULT_RULE_GROUPS,
) -> dict[ActionLabel, float]:
    """Apply rule groups to the base weights.

    Returns a new dict in the personality's declared key order. Labels a
    personality does not declare stay absent.
    """
    weights = dict(personality.weights)
    for group in groups:
        rule = group.match(agent, personality)
        if rule is None:
            continue
        for label, factor in rule.multipliers.items():
            if label in weights:
                weights[label] *= factor
    return weights


def normalize(weights: Mapping[ActionLabel, float]) -> dict[ActionLabel, float]:
    total = sum(weights.values())
    if total <= 0:
        return {label: 0.0 for label in weights}
    return {label: w / total for label, w in weights.items()}


class ActionSelector:
    """Chooses one action per tick.

    The result is a pure function of the agent snapshot, the personality,
    the override and the random draw. Pass a seeded ``random.Random`` for
    deterministic behaviour.
    """

    def __init__(
        self,
        rng: random.Random | None = None,
        rule_groups: Sequence[RuleGroup] = DEFAULT_RULE_GROUPS,
        critical_health: int = CRITICAL_HEALTH,
    ) -> None:
        self.rng = rng or random.Random()
        self.rule_groups = tuple(rule_groups)
        self.critical_health = critical_health

    def select(
        self,
        agent: AgentState,
        personality: PersonalityProfile,
        override_action: str | None = None,
    ) -> ActionLabel:
        """Pick the action for this tick.

        Args:
            agent: Current state (read only)
            personality: Profile providing base weights
            override_action: Operator pin; "TRADE" resolves to a coin flip
                between ACQUIRE_ITEM and SELL_ITEM

        Returns:
            The chosen action label
        """
        if override_action:
            if override_action == TRADE_OVERRIDE:
                if self.rng.random() < 0.5:
                    return ActionLabel.ACQUIRE_ITEM
                return ActionLabel.SELL_ITEM
            return ActionLabel(override_action)

        if agent.health <= self.critical_health:
            return ActionLabel.CONSUME_ITEM

        probabilities = self.probabilities(agent, personality)
        r = self.rng.random()
        cumulative = 0.0
        for label, p in probabilities.items():
            if p <= 0:
                continue
            cumulative += p
            if cumulative >= r:
                return label

        logger.debug(
            f"Agent {agent.id} fell through weighted draw (r={r:.6f}), defaulting"
        )
        return ActionLabel.CONSUME_ITEM

    def probabilities(
        self, agent: AgentState, personality: PersonalityProfile
    ) -> dict[ActionLabel, float]:
        """Normalized, context-adjusted distribution in declared order."""
        return normalize(adjust_weights(agent, personality, self.rule_groups))
