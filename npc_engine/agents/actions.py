"""Action vocabulary shared by the selector, the engine and the config schema."""

from __future__ import annotations

from enum import Enum


class ActionLabel(str, Enum):
    """The closed set of actions an NPC can take in one tick."""

    REST = "REST"
    HARVEST = "HARVEST"
    TRAVEL = "TRAVEL"
    ACQUIRE_ITEM = "ACQUIRE_ITEM"
    SELL_ITEM = "SELL_ITEM"
    SOCIALIZE = "SOCIALIZE"
    EQUIP = "EQUIP"
    CONSUME_ITEM = "CONSUME_ITEM"
    EXCHANGE_CURRENCY = "EXCHANGE_CURRENCY"


# Composite override: resolves to ACQUIRE_ITEM or SELL_ITEM with equal odds
TRADE_OVERRIDE = "TRADE"

ACTION_LABELS: frozenset[str] = frozenset(label.value for label in ActionLabel)
OVERRIDE_CHOICES: frozenset[str] = ACTION_LABELS | {TRADE_OVERRIDE}

# Operator-facing mode names (CLI) -> override value
MODE_OVERRIDES: dict[str, str | None] = {
    "normal": None,
    "exchange": ActionLabel.EXCHANGE_CURRENCY.value,
    "harvest": ActionLabel.HARVEST.value,
    "travel": ActionLabel.TRAVEL.value,
    "trade": TRADE_OVERRIDE,
    "socialize": ActionLabel.SOCIALIZE.value,
    "equip": ActionLabel.EQUIP.value,
    "consume": ActionLabel.CONSUME_ITEM.value,
}
