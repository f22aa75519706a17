"""Context-aware chat lines for SOCIALIZE and lifecycle announcements."""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .actions import ActionLabel

if TYPE_CHECKING:
    from .state import AgentState

DEFAULT_CONTEXT = "default"
LOW_ENERGY_CONTEXT = "low_energy"

MESSAGE_POOLS: dict[str, tuple[str, ...]] = {
    "default": (
        "Nice place here", "Exploring around", "Good to be here",
        "Interesting spot", "What's next?", "Time to move on",
        "Decisions to make", "Life is good",
    ),
    "low_energy": (
        "Running low on energy", "Need to rest soon", "Getting tired",
        "Energy depleted", "Time for a break", "Running on fumes",
    ),
    "after_harvest": (
        "Good mining session", "Pickaxe worked hard", "Found some materials",
        "Productive digging", "Ore veins are rich", "Hard work done",
    ),
    "after_travel": (
        "Long journey here", "New place to explore", "Good to arrive",
        "Roads were dusty", "Finally made it", "Adventure continues",
    ),
    "after_acquire_item": (
        "Good purchase today", "Money well spent", "Needed this gear",
        "Quality items here", "Upgrade complete", "Ready for action",
    ),
    "after_sell_item": (
        "Sold a few things", "Clearing out my pack", "Fair price today",
        "Coins in the pocket",
    ),
    "after_equip": (
        "Just upgraded my gear", "New equipment looks good", "Gear check complete",
        "Fresh loadout ready",
    ),
    "after_consume_item": (
        "Feeling refreshed now", "That hit the spot", "Much better",
        "Needed that boost", "Good as new",
    ),
    "after_exchange_currency": (
        "Just made a trade on the market", "Good exchange rates today",
        "Converted some assets", "Balanced my portfolio", "Caught a good rate",
    ),
    "merchant_exchange": (
        "Buy low, sell high", "Markets are moving", "Portfolio rebalancing time",
        "Coins flowing nicely", "Liquidity is strong",
    ),
}

DEATH_MESSAGES: tuple[str, ...] = (
    "has fallen",
    "collapsed and did not get up",
    "ran out of luck",
)

RESPAWN_MESSAGES: tuple[str, ...] = (
    "is back on their feet",
    "returns, a little worse for wear",
    "has recovered",
)


@dataclass(frozen=True)
class Tone:
    """Personality flavour wrapped around a chat line."""

    prefixes: tuple[str, ...]
    suffixes: tuple[str, ...]


TONES: dict[str, Tone] = {
    "casual": Tone(("Well, ", "So, ", "You know, "), (" I guess", " maybe", " probably")),
    "merchant": Tone(("Listen, ", "Trust me, ", "From experience, "), (" for profit", " market-wise")),
    "social": Tone(("Hey! ", "Oh, ", "By the way, "), (" you know?", " right?")),
    "adventurer": Tone(("On my travels, ", "I've seen that "), (" on the road", " while exploring")),
}


def context_for(agent: AgentState, rest_threshold: int) -> str:
    """Pick the message pool for this agent's situation."""
    if agent.energy < rest_threshold:
        return LOW_ENERGY_CONTEXT
    if agent.last_action:
        if agent.last_action == ActionLabel.EXCHANGE_CURRENCY.value and agent.personality.is_merchant:
            return "merchant_exchange"
        key = f"after_{agent.last_action.lower()}"
        if key in MESSAGE_POOLS:
            return key
    return DEFAULT_CONTEXT


class ChatComposer:
    """Draws chat lines and announcements.

    Args:
        rng: Random source
        tone_chance: Probability a line gets its personality's prefix or suffix
    """

    def __init__(self, rng: random.Random | None = None, tone_chance: float = 0.3) -> None:
        self.rng = rng or random.Random()
        self.tone_chance = tone_chance

    def compose(self, agent: AgentState, rest_threshold: int) -> tuple[str, str]:
        """Return (message, context) for a SOCIALIZE action."""
        context = context_for(agent, rest_threshold)
        message = self.rng.choice(MESSAGE_POOLS[context])
        return self._decorate(message, agent.personality.id), context

    def _decorate(self, message: str, personality_id: str) -> str:
        tone = TONES.get(personality_id)
        if tone is None or self.rng.random() >= self.tone_chance:
            return message
        if self.rng.random() < 0.5:
            prefix = self.rng.choice(tone.prefixes)
            return prefix + message[0].lower() + message[1:]
        return message.rstrip("?!.") + self.rng.choice(tone.suffixes)

    def death_announcement(self, agent: AgentState) -> str:
        return f"{agent.name} {self.rng.choice(DEATH_MESSAGES)}"

    def respawn_announcement(self, agent: AgentState) -> str:
        return f"{agent.name} {self.rng.choice(RESPAWN_MESSAGES)}"
