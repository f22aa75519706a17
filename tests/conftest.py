"""Pytest fixtures for npc_engine tests.

Common fixtures for testing the NPC engine, plus FakeWorld: an in-memory
stand-in for WorldClient that keeps authoritative character records and
remembers every call made against it.
"""

from __future__ import annotations

# Load environment variables from .env before any tests run
from dotenv import load_dotenv

load_dotenv()

import random
from typing import Any, Callable

import pytest

from npc_engine.agents.personality import PersonalityProfile, profiles_from_config
from npc_engine.agents.state import AgentState
from npc_engine.config_schema import AppConfig, validate_config_dict
from npc_engine.world.errors import CollaboratorError
from npc_engine.world.models import (
    AgentSnapshot,
    ConsumeResult,
    EquipResult,
    ExchangeInfo,
    ExchangeResult,
    ExperienceResult,
    HarvestResult,
    Location,
    MarketListing,
    PersistedNpc,
    SpawnResult,
    TradeResult,
    TravelResult,
)


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "external: mark test as requiring external services (real API calls)"
    )


def pytest_addoption(parser: pytest.Parser) -> None:
    """Add custom command-line options."""
    parser.addoption(
        "--run-external",
        action="store_true",
        default=False,
        help="Run tests marked as external (real collaborator services)",
    )


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    """Skip external tests unless --run-external is given."""
    if config.getoption("--run-external"):
        return
    skip_external = pytest.mark.skip(reason="need --run-external option to run")
    for item in items:
        if "external" in item.keywords:
            item.add_marker(skip_external)


# =============================================================================
# Fake world
# =============================================================================


DEFAULT_LOCATIONS = [
    Location(id="town", name="Town Square", difficulty=1, has_market=True),
    Location(id="mine", name="Deep Mine", difficulty=4, has_mining=True),
]


class FakeWorld:
    """In-memory world services with the WorldClient call surface.

    Character snapshots are kept per wallet and updated by actions, so the
    engine's refreshes see the results of its own calls. Put a
    CollaboratorError into ``failures`` keyed by endpoint name to make that
    endpoint fail.
    """

    def __init__(self, locations: list[Location] | None = None) -> None:
        self.locations = list(DEFAULT_LOCATIONS if locations is None else locations)
        self.characters: dict[str, AgentSnapshot] = {}
        self.npcs: list[PersistedNpc] = []
        self.market: dict[str, list[MarketListing]] = {}
        self.exchange_info = ExchangeInfo(is_active=True, rate=100.0)
        self.ledger_balances: dict[str, float] = {}
        self.harvest_result = HarvestResult(new_energy=80)
        self.failures: dict[str, CollaboratorError] = {}

        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.updates: list[tuple[str, dict[str, Any]]] = []
        self.messages: list[tuple[str, str | None, str, str]] = []
        self.exchanges: list[tuple[str, str, str, int]] = []
        self.experience: dict[str, int] = {}
        self._spawned = 0

    def _call(self, endpoint: str, *args: Any) -> None:
        self.calls.append((endpoint, args))
        if endpoint in self.failures:
            raise self.failures[endpoint]

    def called(self, endpoint: str) -> int:
        return sum(1 for name, _ in self.calls if name == endpoint)

    def add_character(self, wallet_address: str, **fields: Any) -> AgentSnapshot:
        snapshot = AgentSnapshot(**fields)
        self.characters[wallet_address] = snapshot
        return snapshot

    def _character(self, endpoint: str, wallet_address: str) -> AgentSnapshot:
        if wallet_address not in self.characters:
            raise CollaboratorError(endpoint, f"no character for {wallet_address}")
        return self.characters[wallet_address]

    # ----- reads -----

    async def get_locations(self) -> list[Location]:
        self._call("get-locations")
        return list(self.locations)

    async def list_npcs(self) -> list[PersistedNpc]:
        self._call("get-npcs")
        return list(self.npcs)

    async def get_character(self, wallet_address: str) -> AgentSnapshot:
        self._call("get-player-character", wallet_address)
        return self._character("get-player-character", wallet_address).model_copy(deep=True)

    async def get_market(self, location_id: str) -> list[MarketListing]:
        self._call("get-market", location_id)
        return list(self.market.get(location_id, []))

    async def get_exchange_info(self) -> ExchangeInfo:
        self._call("get-exchange-info")
        return self.exchange_info

    async def get_ledger_balance(self, wallet_address: str) -> float:
        self._call("get-sol-balance", wallet_address)
        return self.ledger_balances.get(wallet_address, 0.0)

    # ----- writes -----

    async def spawn_npc(self, personality: str) -> SpawnResult:
        self._call("spawn-npc", personality)
        self._spawned += 1
        wallet = f"wallet-spawned-{self._spawned}"
        snapshot = self.add_character(
            wallet,
            id=f"npc-spawned-{self._spawned}",
            name=f"Spawned {self._spawned}",
            coins=100,
            current_location_id=self.locations[0].id if self.locations else None,
        )
        return SpawnResult(character=snapshot.model_copy(deep=True), wallet_address=wallet)

    async def update_character(self, character_id: str, updates: dict[str, Any]) -> None:
        self._call("update-character", character_id, updates)
        self.updates.append((character_id, dict(updates)))

    async def send_message(
        self, wallet_address: str, location_id: str | None, text: str, kind: str = "CHAT"
    ) -> None:
        self._call("send-message", wallet_address, location_id, text, kind)
        self.messages.append((wallet_address, location_id, text, kind))

    async def grant_experience(
        self,
        wallet_address: str,
        amount: int,
        source: str,
        details: dict[str, Any] | None = None,
    ) -> ExperienceResult:
        self._call("grant-experience", wallet_address, amount, source)
        before = self.experience.get(wallet_address, 0)
        total = before + amount
        self.experience[wallet_address] = total
        level = 1 + total // 100
        return ExperienceResult(
            total_experience=total,
            new_level=level,
            leveled_up=level > 1 + before // 100,
        )

    async def harvest(self, wallet_address: str, character_id: str) -> HarvestResult:
        self._call("mine-action", wallet_address, character_id)
        character = self._character("mine-action", wallet_address)
        character.energy = self.harvest_result.new_energy
        return self.harvest_result

    async def travel(self, wallet_address: str, destination_id: str) -> TravelResult:
        self._call("travel-action", wallet_address, destination_id)
        self._character("travel-action", wallet_address).location_id = destination_id
        return TravelResult(success=True, updated_location=destination_id)

    async def buy(self, wallet_address: str, listing_id: str, quantity: int = 1) -> TradeResult:
        self._call("buy-item", wallet_address, listing_id, quantity)
        character = self._character("buy-item", wallet_address)
        for listings in self.market.values():
            for listing in listings:
                if listing.id == listing_id:
                    character.coins -= listing.price * quantity
                    return TradeResult(success=True, price=listing.price * quantity)
        return TradeResult(success=False)

    async def sell(self, wallet_address: str, inventory_id: str, quantity: int) -> TradeResult:
        self._call("sell-item", wallet_address, inventory_id, quantity)
        character = self._character("sell-item", wallet_address)
        character.coins += 10 * quantity
        return TradeResult(success=True, price=10 * quantity)

    async def equip(self, wallet_address: str, inventory_id: str, equip: bool = True) -> EquipResult:
        self._call("equip-item", wallet_address, inventory_id, equip)
        for entry in self._character("equip-item", wallet_address).inventory:
            if entry.id == inventory_id:
                entry.is_equipped = equip
                return EquipResult(success=True)
        return EquipResult(success=False)

    async def consume(self, wallet_address: str, inventory_id: str) -> ConsumeResult:
        self._call("use-item", wallet_address, inventory_id)
        character = self._character("use-item", wallet_address)
        for entry in character.inventory:
            if entry.id == inventory_id and entry.quantity > 0:
                health = entry.item.health_effect or 0
                energy = entry.item.energy_effect or 0
                character.health = min(100, character.health + health)
                character.energy = min(100, character.energy + energy)
                entry.quantity -= 1
                if entry.quantity == 0:
                    character.inventory.remove(entry)
                return ConsumeResult(health_delta=health, energy_delta=energy)
        raise CollaboratorError("use-item", "item not held", status=400)

    async def exchange(
        self, wallet_address: str, character_id: str, direction: str, amount: int
    ) -> ExchangeResult:
        self._call("npc-exchange", wallet_address, character_id, direction, amount)
        self.exchanges.append((wallet_address, character_id, direction, amount))
        character = self._character("npc-exchange", wallet_address)
        character.coins += -amount if direction == "ACQUIRE" else amount
        return ExchangeResult(success=True, amount_transferred=amount, new_coin_balance=character.coins)


# =============================================================================
# Shared fixtures
# =============================================================================


@pytest.fixture
def app_config() -> AppConfig:
    """Config with default behaviour and default personalities."""
    return validate_config_dict({})


@pytest.fixture
def profiles(app_config: AppConfig) -> dict[str, PersonalityProfile]:
    """The four default personality profiles."""
    return profiles_from_config(app_config.personalities)


@pytest.fixture
def make_agent(profiles: dict[str, PersonalityProfile]) -> Callable[..., AgentState]:
    """Factory for agent records with a given personality."""

    def _make(personality: str = "casual", agent_id: str = "npc-1", **fields: Any) -> AgentState:
        fields.setdefault("wallet_address", f"wallet-{agent_id.split('-')[-1]}")
        return AgentState(id=agent_id, personality=profiles[personality], **fields)

    return _make


@pytest.fixture
def rng() -> random.Random:
    """Seeded random source for deterministic draws."""
    return random.Random(1234)


@pytest.fixture
def fake_world() -> FakeWorld:
    return FakeWorld()
