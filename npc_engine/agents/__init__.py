# Agents package: per-NPC decision components
from .actions import ACTION_LABELS, MODE_OVERRIDES, OVERRIDE_CHOICES, TRADE_OVERRIDE, ActionLabel
from .personality import PersonalityProfile, profiles_from_config
from .state import AgentState, InventoryItem, clamp_stat
from .selector import ActionSelector, RuleGroup, WeightRule, adjust_weights, normalize
from .lifecycle import LifecycleController, LifecyclePhase
from .economy import EconomicStrategyEngine, ExchangeDirection, ExchangeStrategy
from .experience import ExperienceFeedback, GrantResult
from .chat import ChatComposer

__all__: list[str] = [
    "ACTION_LABELS",
    "MODE_OVERRIDES",
    "OVERRIDE_CHOICES",
    "TRADE_OVERRIDE",
    "ActionLabel",
    "PersonalityProfile",
    "profiles_from_config",
    "AgentState",
    "InventoryItem",
    "clamp_stat",
    "ActionSelector",
    "RuleGroup",
    "WeightRule",
    "adjust_weights",
    "normalize",
    "LifecycleController",
    "LifecyclePhase",
    "EconomicStrategyEngine",
    "ExchangeDirection",
    "ExchangeStrategy",
    "ExperienceFeedback",
    "GrantResult",
    "ChatComposer",
]
