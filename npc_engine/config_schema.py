"""Pydantic schema for configuration validation.

All config values are validated at startup. Typos and invalid values
fail fast with clear error messages.

Usage:
    from npc_engine.config_schema import load_validated_config, AppConfig
    config = load_validated_config("config/config.yaml")
    # config is now a validated AppConfig instance
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .agents.actions import ACTION_LABELS, OVERRIDE_CHOICES


# =============================================================================
# BASE MODEL WITH STRICT VALIDATION
# =============================================================================

class StrictModel(BaseModel):
    """Base model that rejects unknown fields (catches typos)."""

    model_config = ConfigDict(extra="forbid")


# =============================================================================
# ENGINE MODEL
# =============================================================================

class EngineConfig(StrictModel):
    """Population and pacing configuration."""

    npc_count: int = Field(default=8, ge=0, description="Target NPC population")
    base_interval_seconds: float = Field(
        default=45.0,
        gt=0,
        description="Base delay between ticks, scaled by personality pacing and jitter"
    )
    min_interval_seconds: float = Field(
        default=5.0,
        ge=0,
        description="Floor for any computed tick delay"
    )
    jitter_low: float = Field(default=0.5, gt=0, description="Lower bound of U(low, high) jitter")
    jitter_high: float = Field(default=1.5, gt=0, description="Upper bound of U(low, high) jitter")
    startup_offset_max_seconds: float = Field(
        default=120.0,
        ge=0,
        description="Each living agent waits U(0, max) before its first tick"
    )
    spawn_delay_seconds: float = Field(
        default=2.0,
        ge=0,
        description="Pause between consecutive spawns"
    )
    resume_existing: bool = Field(
        default=True,
        description="Resume persisted NPCs before spawning new ones"
    )
    available_personalities: list[str] = Field(
        default_factory=list,
        description="Personalities to cycle through when spawning (empty = all)"
    )
    override_action: str | None = Field(
        default=None,
        description="Pin every selection to one action (or TRADE) for the whole run"
    )

    @field_validator("override_action")
    @classmethod
    def override_is_known(cls, v: str | None) -> str | None:
        """Only known labels (or TRADE) may be pinned."""
        if v is not None and v not in OVERRIDE_CHOICES:
            raise ValueError(
                f"override_action must be one of {sorted(OVERRIDE_CHOICES)}, got '{v}'"
            )
        return v

    @model_validator(mode="after")
    def jitter_ordered(self) -> "EngineConfig":
        """Jitter bounds must be ordered."""
        if self.jitter_low > self.jitter_high:
            raise ValueError(
                f"jitter_low ({self.jitter_low}) must be <= jitter_high ({self.jitter_high})"
            )
        return self


# =============================================================================
# LIFECYCLE MODEL
# =============================================================================

class LifecycleConfig(StrictModel):
    """Death, critical health and respawn configuration."""

    critical_health: int = Field(
        default=5,
        ge=0,
        le=100,
        description="At or below this health the agent only attempts emergency heals"
    )
    max_healing_attempts: int = Field(
        default=3,
        ge=1,
        description="Failed emergency heals before the agent dies from desperation"
    )
    respawn_enabled: bool = Field(default=True, description="Dead agents come back after a delay")
    respawn_delay_seconds: float = Field(default=300.0, ge=0, description="Delay before respawn")
    respawn_health: int = Field(default=50, ge=1, le=100, description="Health after respawn")
    respawn_energy: int = Field(default=75, ge=0, le=100, description="Energy after respawn")
    starting_max_difficulty: int = Field(
        default=2,
        ge=0,
        description="Respawn locations prefer difficulty at or below this"
    )
    announce_deaths: bool = Field(default=True, description="Broadcast a death message")
    announce_respawns: bool = Field(default=True, description="Broadcast a return message")


# =============================================================================
# MECHANICS MODEL
# =============================================================================

class MechanicsConfig(StrictModel):
    """Resting and resource mechanics."""

    rest_threshold: int = Field(
        default=30,
        ge=0,
        le=100,
        description="Below this energy the agent rests; at or above it counts as active"
    )
    rest_energy_gain: int = Field(default=25, gt=0, description="Energy restored by one rest")
    starting_coins: int = Field(default=100, ge=0, description="Coins assumed when unknown")
    sell_keep_threshold: int = Field(
        default=50,
        ge=0,
        description="Keep restorative items while the matching stat is below this"
    )
    poor_coins: int = Field(
        default=50,
        ge=0,
        description="Below this many coins any unneeded item is sold"
    )
    material_surplus: int = Field(
        default=3,
        ge=0,
        description="Materials held beyond this count are sold"
    )
    sell_chance: float = Field(default=0.3, ge=0, le=1, description="Chance to sell other items")
    equip_chance: float = Field(default=0.7, ge=0, le=1, description="Chance to equip when possible")


# =============================================================================
# EXCHANGE MODEL
# =============================================================================

class ExchangeConfig(StrictModel):
    """Economic strategy constants (all tunable)."""

    operational_floor: float = Field(
        default=0.01,
        ge=0,
        description="External balance below this triggers the necessity strategy"
    )
    necessity_min_coins: int = Field(default=5, ge=0)
    necessity_fraction: float = Field(default=0.2, gt=0, le=1)
    necessity_cap: int = Field(default=10, gt=0)

    liquidity_coin_ceiling: int = Field(
        default=50,
        gt=0,
        description="Below this many coins the agent seeks liquidity"
    )
    liquidity_min_balance: float = Field(
        default=0.05,
        ge=0,
        description="External balance must exceed this to liquidate"
    )
    liquidity_fraction: float = Field(default=0.3, gt=0, le=1)
    liquidity_cap: int = Field(default=20, gt=0)
    min_transaction: int = Field(default=5, ge=1, description="Smallest liquidation sent upstream")

    portfolio_min_coins: int = Field(default=200, ge=0)
    portfolio_low: float = Field(default=0.15, ge=0, le=1)
    portfolio_high: float = Field(default=0.40, ge=0, le=1)
    portfolio_buy_min_coins: int = Field(default=30, ge=0)
    portfolio_buy_fraction: float = Field(default=0.15, gt=0, le=1)
    portfolio_buy_cap: int = Field(default=30, gt=0)
    portfolio_sell_fraction: float = Field(default=0.2, gt=0, le=1)
    portfolio_sell_cap: int = Field(default=25, gt=0)

    opportunity_probability: float = Field(default=0.2, ge=0, le=1)
    opportunity_min_coins: int = Field(default=20, ge=0)
    opportunity_min_amount: int = Field(default=5, ge=1)
    opportunity_max_amount: int = Field(default=20, ge=1)

    @model_validator(mode="after")
    def bands_ordered(self) -> "ExchangeConfig":
        """Band edges and opportunity range must be ordered."""
        if self.portfolio_low >= self.portfolio_high:
            raise ValueError(
                f"portfolio_low ({self.portfolio_low}) must be less than "
                f"portfolio_high ({self.portfolio_high})"
            )
        if self.opportunity_min_amount > self.opportunity_max_amount:
            raise ValueError(
                f"opportunity_min_amount ({self.opportunity_min_amount}) must be <= "
                f"opportunity_max_amount ({self.opportunity_max_amount})"
            )
        return self


# =============================================================================
# EXPERIENCE MODEL
# =============================================================================

def _default_base_xp() -> dict[str, int]:
    return {
        "REST": 0,
        "HARVEST": 10,
        "TRAVEL": 8,
        "ACQUIRE_ITEM": 5,
        "SELL_ITEM": 5,
        "SOCIALIZE": 2,
        "EQUIP": 3,
        "CONSUME_ITEM": 2,
        "EXCHANGE_CURRENCY": 6,
    }


def _default_rarity_bonus() -> dict[str, int]:
    return {
        "COMMON": 0,
        "UNCOMMON": 5,
        "RARE": 15,
        "EPIC": 30,
        "LEGENDARY": 50,
    }


class ExperienceConfig(StrictModel):
    """XP amounts granted per action and outcome bonuses."""

    base: dict[str, int] = Field(default_factory=_default_base_xp)
    critical_heal_bonus: int = Field(default=10, ge=0)
    high_value_trade_threshold: int = Field(
        default=50,
        ge=0,
        description="Item price or exchange amount at or above this earns a bonus"
    )
    high_value_exchange_threshold: int = Field(default=15, ge=0)
    high_value_bonus: int = Field(default=5, ge=0)
    discovery_bonus: int = Field(default=15, ge=0, description="First visit to a location")
    rarity_bonus: dict[str, int] = Field(default_factory=_default_rarity_bonus)
    efficiency_weight: float = Field(
        default=5.0,
        ge=0,
        description="Exchange XP bonus = round(efficiency * weight)"
    )

    @field_validator("base")
    @classmethod
    def labels_known(cls, v: dict[str, int]) -> dict[str, int]:
        unknown = set(v) - ACTION_LABELS
        if unknown:
            raise ValueError(f"Unknown action labels in experience.base: {sorted(unknown)}")
        return v


# =============================================================================
# PERSONALITY MODEL
# =============================================================================

class PersonalityConfig(StrictModel):
    """One personality profile: ordered weights and a pacing multiplier."""

    weights: dict[str, float]
    pacing: float = Field(default=1.0, gt=0)

    @field_validator("weights")
    @classmethod
    def weights_valid(cls, v: dict[str, float]) -> dict[str, float]:
        unknown = set(v) - ACTION_LABELS
        if unknown:
            raise ValueError(f"Unknown action labels in weights: {sorted(unknown)}")
        if any(w < 0 for w in v.values()):
            raise ValueError("Weights must be non-negative")
        if sum(v.values()) <= 0:
            raise ValueError("At least one weight must be positive")
        return v


def _default_personalities() -> dict[str, PersonalityConfig]:
    def profile(weights: list[float], pacing: float) -> PersonalityConfig:
        labels = [
            "HARVEST", "TRAVEL", "ACQUIRE_ITEM", "SELL_ITEM",
            "SOCIALIZE", "EQUIP", "CONSUME_ITEM", "EXCHANGE_CURRENCY",
        ]
        return PersonalityConfig(weights=dict(zip(labels, weights)), pacing=pacing)

    return {
        "casual": profile([1.0, 1.0, 1.0, 1.0, 1.0, 1.0, 1.0, 1.0], 1.0),
        "merchant": profile([0.5, 1.2, 2.0, 2.0, 0.8, 0.7, 0.6, 1.5], 0.8),
        "adventurer": profile([1.5, 2.0, 0.8, 0.8, 0.6, 1.2, 1.0, 0.5], 0.9),
        "social": profile([0.7, 1.0, 1.0, 1.0, 2.0, 0.8, 0.8, 0.7], 1.1),
    }


# =============================================================================
# REPORTING / API / LOGGING / CHAT MODELS
# =============================================================================

class ReportingConfig(StrictModel):
    """Population reporter configuration."""

    population_interval_seconds: float = Field(default=300.0, gt=0)
    debug_population_interval_seconds: float = Field(default=60.0, gt=0)


class ApiConfig(StrictModel):
    """Collaborator service configuration."""

    base_url_env: str = Field(
        default="NPC_ENGINE_API_URL",
        description="Environment variable holding the collaborator base URL"
    )
    api_key_env: str = Field(
        default="NPC_ENGINE_API_KEY",
        description="Environment variable holding the bearer token"
    )
    timeout_seconds: float | None = Field(
        default=None,
        gt=0,
        description="Per-request timeout (None = no timeout)"
    )


class LoggingConfig(StrictModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")
    output_file: str = Field(
        default="npc_events.jsonl",
        description="JSONL file for world activity events"
    )
    logs_dir: str | None = Field(
        default=None,
        description="Per-run logs directory (e.g., logs/run_20260115_120000/)"
    )
    max_recent_errors: int = Field(default=10, gt=0)


class ChatConfig(StrictModel):
    """SOCIALIZE behaviour."""

    enabled: bool = Field(default=True)
    show_context: bool = Field(default=False, description="Log which message pool was used")


# =============================================================================
# ROOT MODEL
# =============================================================================

class AppConfig(StrictModel):
    """Root configuration model for the NPC engine.

    All fields have sensible defaults, so an empty config file is valid.
    """

    engine: EngineConfig = Field(default_factory=EngineConfig)
    lifecycle: LifecycleConfig = Field(default_factory=LifecycleConfig)
    mechanics: MechanicsConfig = Field(default_factory=MechanicsConfig)
    exchange: ExchangeConfig = Field(default_factory=ExchangeConfig)
    experience: ExperienceConfig = Field(default_factory=ExperienceConfig)
    personalities: dict[str, PersonalityConfig] = Field(default_factory=_default_personalities)
    reporting: ReportingConfig = Field(default_factory=ReportingConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    chat: ChatConfig = Field(default_factory=ChatConfig)

    @model_validator(mode="after")
    def personalities_exist(self) -> "AppConfig":
        """Spawnable personalities must be defined."""
        if not self.personalities:
            raise ValueError("At least one personality must be configured")
        missing = [p for p in self.engine.available_personalities if p not in self.personalities]
        if missing:
            raise ValueError(f"available_personalities references unknown profiles: {missing}")
        return self

    def spawn_personalities(self) -> list[str]:
        """Personalities to cycle through when spawning."""
        return list(self.engine.available_personalities or self.personalities.keys())


# =============================================================================
# LOADING FUNCTIONS
# =============================================================================

def load_validated_config(config_path: str | Path = "config/config.yaml") -> AppConfig:
    """Load and validate configuration from YAML file.

    Args:
        config_path: Path to config YAML file.

    Returns:
        Validated AppConfig instance.

    Raises:
        FileNotFoundError: If config file doesn't exist.
        pydantic.ValidationError: If config is invalid (with detailed error message).
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path) as f:
        raw_config = yaml.safe_load(f) or {}

    return AppConfig.model_validate(raw_config)


def validate_config_dict(config_dict: dict[str, Any]) -> AppConfig:
    """Validate a configuration dictionary.

    Args:
        config_dict: Configuration as a dictionary.

    Returns:
        Validated AppConfig instance.

    Raises:
        pydantic.ValidationError: If config is invalid.
    """
    return AppConfig.model_validate(config_dict)


# =============================================================================
# EXPORTS
# =============================================================================

__all__ = [
    "AppConfig",
    "EngineConfig",
    "LifecycleConfig",
    "MechanicsConfig",
    "ExchangeConfig",
    "ExperienceConfig",
    "PersonalityConfig",
    "ReportingConfig",
    "ApiConfig",
    "LoggingConfig",
    "ChatConfig",
    "StrictModel",
    "load_validated_config",
    "validate_config_dict",
]
