"""Pydantic models for collaborator responses.

The world services mix camelCase and snake_case keys. Fields use Python names
with the wire key as alias; unknown keys are ignored so that services can add
fields without breaking the engine.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class WireModel(BaseModel):
    """Base for response bodies: accept aliases or field names, ignore extras."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# =============================================================================
# CHARACTERS AND INVENTORY
# =============================================================================

class ItemInfo(WireModel):
    """Catalog data for an item."""

    name: str = ""
    category: str = ""
    rarity: str | None = None
    health_effect: int | None = None
    energy_effect: int | None = None


class InventoryEntry(WireModel):
    """One inventory stack."""

    id: str
    quantity: int = 0
    is_equipped: bool = False
    item: ItemInfo = Field(default_factory=ItemInfo)


class AgentSnapshot(WireModel):
    """Authoritative character state from the persistent store."""

    id: str | None = None
    name: str | None = None
    health: int = 100
    energy: int = 100
    coins: int = 0
    level: int = 1
    experience: int = 0
    location_id: str | None = Field(default=None, alias="current_location_id")
    inventory: list[InventoryEntry] = Field(default_factory=list)


class CharacterResponse(WireModel):
    has_character: bool = Field(default=False, alias="hasCharacter")
    character: AgentSnapshot | None = None


class PersistedNpc(WireModel):
    """An NPC record that can be resumed."""

    id: str
    wallet_address: str
    personality: str = "casual"


class NpcListResponse(WireModel):
    npcs: list[PersistedNpc] = Field(default_factory=list)


class SpawnResult(WireModel):
    """A freshly created NPC character."""

    character: AgentSnapshot
    wallet_address: str


# =============================================================================
# WORLD DATA
# =============================================================================

class Location(WireModel):
    """A location in the world catalog."""

    id: str
    name: str = ""
    difficulty: int = 1
    has_market: bool = False
    has_mining: bool = False
    is_private: bool = False
    min_level: int | None = None
    entry_cost: int | None = None


class LocationsResponse(WireModel):
    locations: list[Location] = Field(default_factory=list)


class MarketListing(WireModel):
    """An item for sale at a location's market."""

    id: str
    price: int
    quantity: int = 0
    item: ItemInfo = Field(default_factory=ItemInfo)


class MarketResponse(WireModel):
    items: list[MarketListing] = Field(default_factory=list)


class ExchangeInfo(WireModel):
    """Current exchange market status."""

    is_active: bool = Field(default=False, alias="isActive")
    rate: float = 0.0


class BalanceResponse(WireModel):
    balance: float = 0.0


# =============================================================================
# ACTION OUTCOMES
# =============================================================================

class FoundItem(WireModel):
    name: str
    rarity: str = "COMMON"


class HarvestResult(WireModel):
    new_energy: int = Field(alias="newEnergyLevel")
    new_health: int | None = Field(default=None, alias="newHealthLevel")
    found_item: FoundItem | None = Field(default=None, alias="foundItem")


class TravelResult(WireModel):
    success: bool = True
    updated_location: str | None = Field(default=None, alias="updatedLocation")


class TradeResult(WireModel):
    """Outcome of a market purchase or sale."""

    success: bool = False
    price: int = 0
    updated_quantity: int | None = Field(default=None, alias="updatedQuantity")


class EquipResult(WireModel):
    success: bool = False


class ConsumeResult(WireModel):
    energy_delta: int = Field(default=0, alias="energyDelta")
    health_delta: int = Field(default=0, alias="healthDelta")


class ExchangeResult(WireModel):
    success: bool = False
    amount_transferred: float = Field(default=0.0, alias="amountTransferred")
    new_coin_balance: int | None = Field(default=None, alias="newCoinBalance")


class ExperienceResult(WireModel):
    total_experience: int = Field(alias="totalExperience")
    new_level: int = Field(alias="newLevel")
    leveled_up: bool = Field(default=False, alias="leveledUp")
