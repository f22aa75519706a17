"""Integration tests for NpcEngine against an in-memory world.

Tests the full tick path (lifecycle, selection, handlers, XP, commit),
death and respawn, startup population and shutdown.

Most tests use a very long tick interval and drive ticks by hand with
engine.tick(), so timers armed by the engine never fire on their own.
"""

from __future__ import annotations

import asyncio
import random
from pathlib import Path
from typing import Any, Callable
from unittest.mock import MagicMock

import pytest

from npc_engine.agents.lifecycle import LifecyclePhase
from npc_engine.agents.state import AgentState, InventoryItem
from npc_engine.config_schema import validate_config_dict
from npc_engine.simulation import NpcEngine
from npc_engine.world.errors import CollaboratorError
from npc_engine.world.logger import EventLogger
from npc_engine.world.models import (
    ExchangeInfo,
    FoundItem,
    HarvestResult,
    InventoryEntry,
    ItemInfo,
    Location,
    MarketListing,
    PersistedNpc,
)


async def wait_until(condition: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll until condition() is true or fail after timeout."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not condition():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


# =============================================================================
# Test Fixtures
# =============================================================================


@pytest.fixture
def make_engine(fake_world: Any, tmp_path: Path) -> Callable[..., NpcEngine]:
    """Build an engine over fake_world; keyword args override config sections."""

    def _make(**sections: dict[str, Any]) -> NpcEngine:
        raw: dict[str, Any] = {
            "engine": {
                "npc_count": 0,
                "resume_existing": False,
                "base_interval_seconds": 3600,
                "min_interval_seconds": 0,
                "startup_offset_max_seconds": 0,
                "spawn_delay_seconds": 0,
            },
            "lifecycle": {"respawn_delay_seconds": 3600},
        }
        for section, values in sections.items():
            raw.setdefault(section, {}).update(values)
        return NpcEngine(
            validate_config_dict(raw),
            fake_world,
            event_logger=EventLogger(output_file=str(tmp_path / "events.jsonl")),
            rng=random.Random(21),
        )

    return _make


def add_npc(
    engine: NpcEngine,
    world: Any,
    agent_id: str = "npc-1",
    personality: str = "casual",
    **fields: Any,
) -> AgentState:
    """Create the character in the world and register a matching agent."""
    wallet = f"wallet-{agent_id}"
    fields.setdefault("current_location_id", "town")
    snapshot = world.add_character(wallet, id=agent_id, name=agent_id.title(), **fields)
    agent = AgentState(
        id=agent_id,
        wallet_address=wallet,
        personality=engine.profile_for(personality),
        name=agent_id.title(),
    )
    agent.apply_snapshot(snapshot)
    engine.register(agent)
    return agent


def stub_rng(draw: float = 0.5, roll: int = 1) -> MagicMock:
    """Random source with fixed draws; choice() takes the first option."""
    rng = MagicMock(spec=random.Random)
    rng.random.return_value = draw
    rng.randint.return_value = roll
    rng.choice.side_effect = lambda options: options[0]
    return rng


def consumable(entry_id: str, name: str, health: int = 0, energy: int = 0, quantity: int = 1) -> InventoryEntry:
    return InventoryEntry(
        id=entry_id,
        quantity=quantity,
        item=ItemInfo(name=name, category="CONSUMABLE", health_effect=health, energy_effect=energy),
    )


def held(name: str, category: str, quantity: int = 1, health: int = 0, energy: int = 0) -> InventoryItem:
    """Agent-side inventory stack, id derived from the name."""
    return InventoryItem(
        id=name.lower(), name=name, category=category,
        quantity=quantity, health_effect=health, energy_effect=energy,
    )


# =============================================================================
# Death and respawn
# =============================================================================


class TestDeath:
    """Critical health, desperation and death handling."""

    @pytest.mark.asyncio
    async def test_three_failed_heals_kill_agent(
        self, make_engine: Callable[..., NpcEngine], fake_world: Any
    ) -> None:
        engine = make_engine()
        await engine.start()
        agent = add_npc(engine, fake_world, health=3)

        for attempt in (1, 2):
            outcome = await engine.tick("npc-1")
            assert outcome.action == "EMERGENCY_HEAL"
            assert not outcome.success
            assert agent.failed_healing_attempts == attempt
            assert engine.lifecycle.phase(agent) is LifecyclePhase.ALIVE_CRITICAL

        outcome = await engine.tick("npc-1")
        assert outcome.died
        assert agent.health == 0
        assert engine.lifecycle.phase(agent) is LifecyclePhase.DEAD

        outcome = await engine.tick("npc-1")
        assert outcome.died
        assert outcome.detail == "desperation"
        assert agent.is_dead
        assert agent.timer is None
        assert not engine.scheduler.is_armed("npc-1")
        assert engine.scheduler.has_pending("respawn-npc-1")
        assert ("npc-1", {"status": "DEAD", "health": 0}) in fake_world.updates
        assert fake_world.called("use-item") == 0

        outcome = await engine.tick("npc-1")
        assert outcome.detail == "not eligible"
        await engine.stop()

    @pytest.mark.asyncio
    async def test_zero_health_dies_and_announces(
        self, make_engine: Callable[..., NpcEngine], fake_world: Any
    ) -> None:
        engine = make_engine()
        await engine.start()
        agent = add_npc(engine, fake_world, health=0)
        assert engine.scheduler.is_armed("npc-1")

        outcome = await engine.tick("npc-1")
        await wait_until(lambda: len(fake_world.messages) == 1)

        assert outcome.detail == "injuries"
        assert agent.is_dead
        assert agent.death_time is not None
        assert not engine.scheduler.is_armed("npc-1")
        assert fake_world.messages[0][3] == "DEATH"
        assert fake_world.messages[0][2].startswith("Npc-1 ")
        events = engine.event_logger.read_recent()
        assert events[-1]["event_type"] == "death"
        assert events[-1]["respawn_in_seconds"] == 3600
        await engine.stop()

    @pytest.mark.asyncio
    async def test_successful_emergency_heal(
        self, make_engine: Callable[..., NpcEngine], fake_world: Any
    ) -> None:
        engine = make_engine()
        await engine.start()
        agent = add_npc(
            engine, fake_world, health=3,
            inventory=[consumable("inv-bandage", "Bandage", health=10), consumable("inv-elixir", "Elixir", health=40)],
        )
        agent.failed_healing_attempts = 2

        outcome = await engine.tick("npc-1")

        assert outcome.success
        assert ("use-item", ("wallet-npc-1", "inv-elixir")) in fake_world.calls
        assert agent.health == 43
        assert agent.failed_healing_attempts == 0
        assert outcome.experience == 12
        assert engine.lifecycle.phase(agent) is LifecyclePhase.ALIVE_NORMAL
        await engine.stop()

    @pytest.mark.asyncio
    async def test_unreadable_snapshot_counts_as_failed_heal(
        self, make_engine: Callable[..., NpcEngine], fake_world: Any
    ) -> None:
        engine = make_engine()
        await engine.start()
        agent = add_npc(engine, fake_world, health=4, inventory=[consumable("inv-1", "Elixir", health=40)])
        fake_world.failures["get-player-character"] = CollaboratorError(
            "get-player-character", "unavailable", status=502
        )

        outcome = await engine.tick("npc-1")

        assert not outcome.success
        assert agent.failed_healing_attempts == 1
        assert engine.error_stats.by_type == {"bad_status": 1}
        await engine.stop()

    @pytest.mark.asyncio
    async def test_recovered_in_store_is_not_a_failed_heal(
        self, make_engine: Callable[..., NpcEngine], fake_world: Any
    ) -> None:
        engine = make_engine()
        await engine.start()
        agent = add_npc(engine, fake_world, health=60)
        agent.health = 3
        agent.failed_healing_attempts = 2

        outcome = await engine.tick("npc-1")

        assert outcome.action == "EMERGENCY_HEAL"
        assert outcome.success
        assert not outcome.died
        assert outcome.detail == "recovered to 60 health"
        assert agent.health == 60
        assert agent.failed_healing_attempts == 0
        assert engine.lifecycle.phase(agent) is LifecyclePhase.ALIVE_NORMAL
        assert fake_world.called("use-item") == 0
        assert fake_world.called("grant-experience") == 0
        await engine.stop()

    @pytest.mark.asyncio
    async def test_failed_heal_count_resets_once_out_of_danger(
        self, make_engine: Callable[..., NpcEngine], fake_world: Any
    ) -> None:
        engine = make_engine(engine={"override_action": "SOCIALIZE"})
        await engine.start()
        agent = add_npc(engine, fake_world, health=40)
        agent.failed_healing_attempts = 2

        outcome = await engine.tick("npc-1")

        assert outcome.action == "SOCIALIZE"
        assert agent.failed_healing_attempts == 0
        await engine.stop()


class TestRespawn:
    """Respawn penalties, location choice and scheduling."""

    @pytest.mark.asyncio
    async def test_respawn_at_starting_location(
        self, make_engine: Callable[..., NpcEngine], fake_world: Any
    ) -> None:
        fake_world.locations = [
            Location(id="peak", difficulty=5),
            Location(id="vault", difficulty=1, is_private=True),
            Location(id="town", name="Town Square", difficulty=1),
        ]
        engine = make_engine()
        await engine.start()
        agent = add_npc(engine, fake_world, health=0, energy=90, current_location_id="peak")
        await engine.tick("npc-1")

        assert await engine.respawn("npc-1")
        await wait_until(lambda: any(m[3] == "RESPAWN" for m in fake_world.messages))

        assert not agent.is_dead
        assert agent.health == 50
        assert agent.energy == 75
        assert agent.location_id == "town"
        assert agent.death_time is None
        assert agent.failed_healing_attempts == 0
        assert engine.lifecycle.phase(agent) is LifecyclePhase.ALIVE_NORMAL
        assert engine.scheduler.is_armed("npc-1")
        assert agent.timer is engine.scheduler.timer("npc-1")
        assert fake_world.updates[-1] == (
            "npc-1",
            {"status": "ACTIVE", "health": 50, "energy": 75, "current_location_id": "town"},
        )
        await engine.stop()

    @pytest.mark.asyncio
    async def test_respawn_falls_back_to_first_location(
        self, make_engine: Callable[..., NpcEngine], fake_world: Any
    ) -> None:
        fake_world.locations = [Location(id="peak", difficulty=5), Location(id="abyss", difficulty=9)]
        engine = make_engine()
        await engine.start()
        agent = add_npc(engine, fake_world, health=0, current_location_id="abyss")
        await engine.tick("npc-1")

        assert await engine.respawn("npc-1")
        assert agent.location_id == "peak"
        await engine.stop()

    @pytest.mark.asyncio
    async def test_respawn_after_delay(
        self, make_engine: Callable[..., NpcEngine], fake_world: Any
    ) -> None:
        engine = make_engine(lifecycle={"respawn_delay_seconds": 0.01})
        await engine.start()
        agent = add_npc(engine, fake_world, health=0)
        await engine.tick("npc-1")
        assert agent.is_dead

        await wait_until(lambda: not agent.is_dead)
        assert agent.health == 50
        assert engine.scheduler.is_armed("npc-1")
        await engine.stop()

    @pytest.mark.asyncio
    async def test_respawn_disabled(
        self, make_engine: Callable[..., NpcEngine], fake_world: Any
    ) -> None:
        engine = make_engine(lifecycle={"respawn_enabled": False})
        await engine.start()
        agent = add_npc(engine, fake_world, health=0)
        await engine.tick("npc-1")

        assert agent.is_dead
        assert not engine.scheduler.has_pending("respawn-npc-1")
        await engine.stop()

    @pytest.mark.asyncio
    async def test_stop_during_respawn_leaves_agent_dead(
        self, make_engine: Callable[..., NpcEngine], fake_world: Any
    ) -> None:
        persisting = asyncio.Event()
        update_character = fake_world.update_character

        async def hanging_revival(character_id: str, updates: dict[str, Any]) -> None:
            if updates.get("status") == "ACTIVE" and not persisting.is_set():
                persisting.set()
                await asyncio.Event().wait()
            await update_character(character_id, updates)

        fake_world.update_character = hanging_revival
        engine = make_engine(lifecycle={"respawn_delay_seconds": 0.01})
        await engine.start()
        agent = add_npc(engine, fake_world, health=0)
        await engine.tick("npc-1")

        await asyncio.wait_for(persisting.wait(), timeout=2.0)
        assert engine.lifecycle.phase(agent) is LifecyclePhase.RESPAWNING
        await engine.stop()

        assert agent.is_dead
        assert engine.lifecycle.phase(agent) is LifecyclePhase.DEAD

        # a later start owes the agent its respawn
        await engine.start()
        await wait_until(lambda: not agent.is_dead)
        assert agent.health == 50
        assert engine.lifecycle.phase(agent) is LifecyclePhase.ALIVE_NORMAL
        assert engine.scheduler.is_armed("npc-1")
        await engine.stop()

    @pytest.mark.asyncio
    async def test_restart_reschedules_pending_respawn(
        self, make_engine: Callable[..., NpcEngine], fake_world: Any
    ) -> None:
        engine = make_engine()
        await engine.start()
        agent = add_npc(engine, fake_world, health=0)
        await engine.tick("npc-1")
        await engine.stop()
        assert not engine.scheduler.has_pending("respawn-npc-1")

        await engine.start()

        assert agent.is_dead
        assert engine.scheduler.has_pending("respawn-npc-1")
        assert not engine.scheduler.is_armed("npc-1")
        await engine.stop()

    @pytest.mark.asyncio
    async def test_restart_without_respawn_keeps_dead_agent_idle(
        self, make_engine: Callable[..., NpcEngine], fake_world: Any
    ) -> None:
        engine = make_engine(lifecycle={"respawn_enabled": False})
        await engine.start()
        add_npc(engine, fake_world, health=0)
        await engine.tick("npc-1")
        await engine.stop()

        await engine.start()

        assert not engine.scheduler.has_pending("respawn-npc-1")
        assert not engine.scheduler.is_armed("npc-1")
        await engine.stop()

    @pytest.mark.asyncio
    async def test_living_agent_is_not_respawned(
        self, make_engine: Callable[..., NpcEngine], fake_world: Any
    ) -> None:
        engine = make_engine()
        await engine.start()
        add_npc(engine, fake_world)
        assert not await engine.respawn("npc-1")
        assert not await engine.respawn("ghost")
        await engine.stop()


# =============================================================================
# Actions
# =============================================================================


class TestActions:
    """One tick per action through the handlers."""

    @pytest.mark.asyncio
    async def test_tired_agent_rests(
        self, make_engine: Callable[..., NpcEngine], fake_world: Any
    ) -> None:
        engine = make_engine(engine={"override_action": "HARVEST"})
        await engine.start()
        agent = add_npc(engine, fake_world, energy=10)

        outcome = await engine.tick("npc-1")

        assert outcome.action == "REST"
        assert agent.energy == 35
        assert agent.last_action == "REST"
        assert ("npc-1", {"energy": 35}) in fake_world.updates
        assert fake_world.called("mine-action") == 0
        assert fake_world.called("grant-experience") == 0
        await engine.stop()

    @pytest.mark.asyncio
    async def test_harvest_grants_experience(
        self, make_engine: Callable[..., NpcEngine], fake_world: Any
    ) -> None:
        fake_world.harvest_result = HarvestResult(
            new_energy=70, found_item=FoundItem(name="Ruby", rarity="RARE")
        )
        engine = make_engine(engine={"override_action": "HARVEST"})
        await engine.start()
        agent = add_npc(engine, fake_world)

        outcome = await engine.tick("npc-1")

        assert outcome.success
        assert outcome.experience == 25
        assert agent.energy == 70
        assert agent.experience == 25
        assert agent.last_action == "HARVEST"
        assert fake_world.experience["wallet-npc-1"] == 25
        assert engine.collector.actions_executed == 1
        await engine.stop()

    @pytest.mark.asyncio
    async def test_collaborator_failure_forfeits_tick(
        self, make_engine: Callable[..., NpcEngine], fake_world: Any
    ) -> None:
        fake_world.failures["mine-action"] = CollaboratorError("mine-action", "cave-in", status=500)
        engine = make_engine(engine={"override_action": "HARVEST"})
        await engine.start()
        agent = add_npc(engine, fake_world, energy=90)

        outcome = await engine.tick("npc-1")

        assert not outcome.success
        assert agent.energy == 90
        assert agent.last_action is None
        assert engine.error_stats.total_errors == 1
        assert engine.error_stats.by_type == {"bad_status": 1}
        assert engine.scheduler.is_armed("npc-1")
        assert fake_world.called("grant-experience") == 0
        await engine.stop()

    @pytest.mark.asyncio
    async def test_travel_first_visit_bonus(
        self, make_engine: Callable[..., NpcEngine], fake_world: Any
    ) -> None:
        engine = make_engine(engine={"override_action": "TRAVEL"})
        await engine.start()
        agent = add_npc(engine, fake_world)

        outcome = await engine.tick("npc-1")

        assert agent.location_id == "mine"
        assert agent.visited_locations == {"town", "mine"}
        assert outcome.experience == 23
        await engine.stop()

    @pytest.mark.asyncio
    async def test_acquire_item(
        self, make_engine: Callable[..., NpcEngine], fake_world: Any
    ) -> None:
        fake_world.market["town"] = [
            MarketListing(id="listing-1", price=60, quantity=1, item=ItemInfo(name="Steel Sword")),
            MarketListing(id="listing-2", price=500, quantity=1, item=ItemInfo(name="Crown")),
        ]
        engine = make_engine(engine={"override_action": "ACQUIRE_ITEM"})
        await engine.start()
        agent = add_npc(engine, fake_world, coins=100)

        outcome = await engine.tick("npc-1")

        assert ("buy-item", ("wallet-npc-1", "listing-1", 1)) in fake_world.calls
        assert agent.coins == 40
        assert outcome.experience == 10
        await engine.stop()

    @pytest.mark.asyncio
    async def test_nothing_to_sell_is_not_an_error(
        self, make_engine: Callable[..., NpcEngine], fake_world: Any
    ) -> None:
        engine = make_engine(engine={"override_action": "SELL_ITEM"})
        await engine.start()
        add_npc(engine, fake_world)

        outcome = await engine.tick("npc-1")

        assert outcome.success
        assert outcome.skipped
        assert outcome.detail == "nothing to sell"
        assert engine.error_stats.total_errors == 0
        assert engine.collector.skipped == 1
        assert engine.collector.actions_executed == 0
        assert engine.event_logger.read_recent(1)[0]["skipped"] is True
        summary = engine.collector.finalize()
        assert summary["actions_by_type"] == {}
        assert summary["per_agent"]["npc-1"]["skipped"] == 1
        await engine.stop()

    @pytest.mark.asyncio
    async def test_sell_picks_surplus_material(
        self, make_engine: Callable[..., NpcEngine], fake_world: Any
    ) -> None:
        engine = make_engine(engine={"override_action": "SELL_ITEM"}, mechanics={"sell_chance": 0.0})
        await engine.start()
        agent = add_npc(
            engine, fake_world, health=40, coins=500,
            inventory=[
                InventoryEntry(id="inv-sword", quantity=1, is_equipped=True, item=ItemInfo(name="Sword")),
                consumable("inv-potion", "Potion", health=30),
                InventoryEntry(id="inv-ruby", quantity=5, item=ItemInfo(name="Ruby", category="MATERIAL")),
            ],
        )
        engine.rng = stub_rng(roll=2)

        outcome = await engine.tick("npc-1")

        assert outcome.success
        assert not outcome.skipped
        assert [args for name, args in fake_world.calls if name == "sell-item"] == [
            ("wallet-npc-1", "inv-ruby", 2)
        ]
        assert agent.coins == 520
        assert outcome.detail == "sold 2x Ruby"
        assert outcome.experience == 5
        assert agent.last_action == "SELL_ITEM"
        assert engine.collector.actions_executed == 1
        await engine.stop()

    @pytest.mark.asyncio
    async def test_equip_skips_materials_and_consumables(
        self, make_engine: Callable[..., NpcEngine], fake_world: Any
    ) -> None:
        engine = make_engine(engine={"override_action": "EQUIP"}, mechanics={"equip_chance": 1.0})
        await engine.start()
        agent = add_npc(
            engine, fake_world,
            inventory=[
                InventoryEntry(id="inv-ore", quantity=4, item=ItemInfo(name="Iron Ore", category="MATERIAL")),
                consumable("inv-potion", "Potion", health=30),
                InventoryEntry(id="inv-shield", quantity=1, item=ItemInfo(name="Shield", category="ARMOR")),
            ],
        )

        outcome = await engine.tick("npc-1")

        assert outcome.success
        assert outcome.detail == "equipped Shield"
        assert [args for name, args in fake_world.calls if name == "equip-item"] == [
            ("wallet-npc-1", "inv-shield", True)
        ]
        assert [item.id for item in agent.inventory if item.is_equipped] == ["inv-shield"]
        assert outcome.experience == 3
        await engine.stop()

    @pytest.mark.asyncio
    async def test_equip_chance_threshold(
        self, make_engine: Callable[..., NpcEngine], fake_world: Any
    ) -> None:
        engine = make_engine(engine={"override_action": "EQUIP"})
        await engine.start()
        add_npc(
            engine, fake_world,
            inventory=[InventoryEntry(id="inv-shield", quantity=1, item=ItemInfo(name="Shield", category="ARMOR"))],
        )

        engine.rng = stub_rng(draw=0.7)
        outcome = await engine.tick("npc-1")
        assert outcome.skipped
        assert outcome.detail == "kept current gear"
        assert fake_world.called("equip-item") == 0

        engine.rng = stub_rng(draw=0.69)
        outcome = await engine.tick("npc-1")
        assert outcome.detail == "equipped Shield"
        assert fake_world.called("equip-item") == 1
        await engine.stop()

    @pytest.mark.asyncio
    async def test_nothing_to_equip(
        self, make_engine: Callable[..., NpcEngine], fake_world: Any
    ) -> None:
        engine = make_engine(engine={"override_action": "EQUIP"}, mechanics={"equip_chance": 1.0})
        await engine.start()
        add_npc(
            engine, fake_world,
            inventory=[
                InventoryEntry(id="inv-ore", quantity=4, item=ItemInfo(name="Iron Ore", category="MATERIAL")),
                InventoryEntry(id="inv-axe", quantity=1, is_equipped=True, item=ItemInfo(name="Axe", category="WEAPON")),
            ],
        )

        outcome = await engine.tick("npc-1")

        assert outcome.skipped
        assert outcome.detail == "nothing to equip"
        assert fake_world.called("equip-item") == 0
        await engine.stop()

    @pytest.mark.asyncio
    async def test_consume_clamps_overshooting_effects(
        self, make_engine: Callable[..., NpcEngine], fake_world: Any
    ) -> None:
        engine = make_engine(engine={"override_action": "CONSUME_ITEM"})
        await engine.start()
        agent = add_npc(
            engine, fake_world, health=95, energy=40,
            inventory=[consumable("inv-feast", "Feast", health=30, energy=80)],
        )
        consume = fake_world.consume

        async def consume_then_lose_reads(wallet_address: str, inventory_id: str) -> Any:
            result = await consume(wallet_address, inventory_id)
            fake_world.failures["get-player-character"] = CollaboratorError(
                "get-player-character", "unavailable", status=502
            )
            return result

        fake_world.consume = consume_then_lose_reads

        outcome = await engine.tick("npc-1")

        assert outcome.success
        assert outcome.detail == "used Feast (routine use)"
        assert agent.health == 100
        assert agent.energy == 100
        assert outcome.experience == 2
        await engine.stop()

    @pytest.mark.asyncio
    async def test_consume_clamps_harmful_effects_at_zero(
        self, make_engine: Callable[..., NpcEngine], fake_world: Any
    ) -> None:
        engine = make_engine(engine={"override_action": "CONSUME_ITEM"})
        await engine.start()
        agent = add_npc(
            engine, fake_world, health=20, energy=40,
            inventory=[consumable("inv-nightshade", "Nightshade", health=-50, energy=-60)],
        )
        consume = fake_world.consume

        async def consume_then_lose_reads(wallet_address: str, inventory_id: str) -> Any:
            result = await consume(wallet_address, inventory_id)
            fake_world.failures["get-player-character"] = CollaboratorError(
                "get-player-character", "unavailable", status=502
            )
            return result

        fake_world.consume = consume_then_lose_reads

        await engine.tick("npc-1")

        assert agent.health == 0
        assert agent.energy == 0
        assert engine.lifecycle.needs_death_handling(agent)
        await engine.stop()

    @pytest.mark.asyncio
    async def test_consume_by_need(
        self, make_engine: Callable[..., NpcEngine], fake_world: Any
    ) -> None:
        engine = make_engine(engine={"override_action": "CONSUME_ITEM"})
        await engine.start()
        agent = add_npc(
            engine, fake_world, health=15, energy=90,
            inventory=[
                consumable("inv-coffee", "Coffee", energy=20),
                consumable("inv-salve", "Salve", health=25),
            ],
        )

        outcome = await engine.tick("npc-1")

        assert ("use-item", ("wallet-npc-1", "inv-salve")) in fake_world.calls
        assert outcome.detail == "used Salve (critical health)"
        assert agent.health == 40
        assert [item.id for item in agent.inventory] == ["inv-coffee"]
        await engine.stop()

    @pytest.mark.asyncio
    async def test_no_consumables(
        self, make_engine: Callable[..., NpcEngine], fake_world: Any
    ) -> None:
        engine = make_engine(engine={"override_action": "CONSUME_ITEM"})
        await engine.start()
        add_npc(engine, fake_world)

        outcome = await engine.tick("npc-1")

        assert outcome.skipped
        assert outcome.detail == "no consumables"
        assert fake_world.called("use-item") == 0
        await engine.stop()

    @pytest.mark.asyncio
    async def test_socialize(
        self, make_engine: Callable[..., NpcEngine], fake_world: Any
    ) -> None:
        engine = make_engine(engine={"override_action": "SOCIALIZE"})
        await engine.start()
        agent = add_npc(engine, fake_world)
        agent.last_action = "HARVEST"

        outcome = await engine.tick("npc-1")

        assert fake_world.messages[-1][3] == "CHAT"
        assert fake_world.messages[-1][1] == "town"
        assert agent.last_action is None
        assert outcome.experience == 2
        await engine.stop()

    @pytest.mark.asyncio
    async def test_necessity_exchange(
        self, make_engine: Callable[..., NpcEngine], fake_world: Any
    ) -> None:
        engine = make_engine(engine={"override_action": "EXCHANGE_CURRENCY"})
        await engine.start()
        agent = add_npc(engine, fake_world, coins=10)

        outcome = await engine.tick("npc-1")

        assert fake_world.exchanges == [("wallet-npc-1", "npc-1", "ACQUIRE", 2)]
        assert agent.coins == 8
        assert agent.ledger_balance == 0.0
        assert outcome.experience == 11
        exchange_events = [e for e in engine.event_logger.read_recent() if e["event_type"] == "exchange"]
        assert exchange_events[0]["reason"] == "necessity"
        await engine.stop()

    @pytest.mark.asyncio
    async def test_exchange_market_closed(
        self, make_engine: Callable[..., NpcEngine], fake_world: Any
    ) -> None:
        fake_world.exchange_info = ExchangeInfo(is_active=False, rate=0.0)
        engine = make_engine(engine={"override_action": "EXCHANGE_CURRENCY"})
        await engine.start()
        add_npc(engine, fake_world, coins=10)

        outcome = await engine.tick("npc-1")

        assert outcome.success
        assert outcome.detail == "market closed"
        assert fake_world.called("npc-exchange") == 0
        await engine.stop()


class TestSellRules:
    """Which unequipped items an agent is willing to sell."""

    @pytest.fixture
    def engine(self, make_engine: Callable[..., NpcEngine]) -> NpcEngine:
        return make_engine(mechanics={"sell_chance": 0.0})

    @pytest.fixture
    def agent(self, engine: NpcEngine) -> AgentState:
        return AgentState(
            id="npc-1", wallet_address="wallet-npc-1", personality=engine.profile_for("merchant"), name="Npc-1"
        )

    def test_keeps_healing_items_while_hurt(self, engine: NpcEngine, agent: AgentState) -> None:
        potion = held("Potion", "CONSUMABLE", health=30)
        agent.coins = 10
        agent.health = 40
        assert not engine.should_sell(potion, agent)
        agent.health = 50
        assert engine.should_sell(potion, agent)

    def test_keeps_energy_items_while_tired(self, engine: NpcEngine, agent: AgentState) -> None:
        agent.coins = 10
        agent.energy = 40
        assert not engine.should_sell(held("Coffee", "CONSUMABLE", energy=20), agent)

    def test_poor_agent_sells_anything_unneeded(self, engine: NpcEngine, agent: AgentState) -> None:
        sword = held("Sword", "WEAPON")
        agent.coins = 49
        assert engine.should_sell(sword, agent)
        agent.coins = 50
        assert not engine.should_sell(sword, agent)

    def test_material_surplus(self, engine: NpcEngine, agent: AgentState) -> None:
        agent.coins = 500
        assert engine.should_sell(held("Ruby", "MATERIAL", quantity=4), agent)
        assert not engine.should_sell(held("Ruby", "MATERIAL", quantity=3), agent)

    def test_other_items_sold_by_chance(self, make_engine: Callable[..., NpcEngine], agent: AgentState) -> None:
        engine = make_engine()
        sword = held("Sword", "WEAPON")
        agent.coins = 500
        engine.rng = stub_rng(draw=0.29)
        assert engine.should_sell(sword, agent)
        engine.rng = stub_rng(draw=0.3)
        assert not engine.should_sell(sword, agent)


class TestChooseConsumable:
    """Need-based consumable priority."""

    @pytest.fixture
    def engine(self, make_engine: Callable[..., NpcEngine]) -> NpcEngine:
        return make_engine()

    @pytest.fixture
    def agent(self, engine: NpcEngine) -> AgentState:
        return AgentState(
            id="npc-1", wallet_address="wallet-npc-1", personality=engine.profile_for("casual"), name="Npc-1"
        )

    @pytest.fixture
    def items(self) -> list[InventoryItem]:
        return [
            held("Bread", "CONSUMABLE"),
            held("Coffee", "CONSUMABLE", energy=20),
            held("Salve", "CONSUMABLE", health=25),
        ]

    def test_critical_health_first(self, engine: NpcEngine, agent: AgentState, items: list[InventoryItem]) -> None:
        agent.health = 19
        agent.energy = 10
        item, reason = engine.choose_consumable(agent, items)
        assert (item.id, reason) == ("salve", "critical health")

    def test_low_energy_before_maintenance(
        self, engine: NpcEngine, agent: AgentState, items: list[InventoryItem]
    ) -> None:
        agent.health = 40
        agent.energy = 29
        item, reason = engine.choose_consumable(agent, items)
        assert (item.id, reason) == ("coffee", "low energy")

    def test_health_maintenance(self, engine: NpcEngine, agent: AgentState, items: list[InventoryItem]) -> None:
        agent.health = 59
        agent.energy = 30
        item, reason = engine.choose_consumable(agent, items)
        assert (item.id, reason) == ("salve", "health maintenance")

    def test_routine_use_when_healthy(self, engine: NpcEngine, agent: AgentState, items: list[InventoryItem]) -> None:
        engine.rng = stub_rng()
        agent.health = 60
        item, reason = engine.choose_consumable(agent, items)
        assert (item.id, reason) == ("bread", "routine use")

    def test_routine_use_when_need_unmet(self, engine: NpcEngine, agent: AgentState) -> None:
        engine.rng = stub_rng()
        agent.health = 10
        item, reason = engine.choose_consumable(agent, [held("Coffee", "CONSUMABLE", energy=20)])
        assert (item.id, reason) == ("coffee", "routine use")


# =============================================================================
# Startup, shutdown and reporting
# =============================================================================


class TestStartStop:
    """Population management and shutdown."""

    @pytest.mark.asyncio
    async def test_start_resumes_then_spawns(
        self,
        make_engine: Callable[..., NpcEngine],
        fake_world: Any,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        fake_world.npcs = [
            PersistedNpc(id="npc-a", wallet_address="wallet-a", personality="merchant"),
            PersistedNpc(id="npc-b", wallet_address="wallet-b", personality="social"),
        ]
        fake_world.add_character("wallet-a", id="npc-a", name="Aldo", coins=250, current_location_id="town")
        engine = make_engine(engine={"npc_count": 3, "resume_existing": True})
        monkeypatch.setattr(engine.scheduler, "startup_offset", lambda: 3600.0)

        await engine.start()

        assert engine.running
        assert len(engine.agents) == 3
        assert engine.agents["npc-a"].personality.id == "merchant"
        assert engine.agents["npc-a"].coins == 250
        assert "npc-b" not in engine.agents
        assert [args for name, args in fake_world.calls if name == "spawn-npc"] == [
            ("casual",), ("merchant",)
        ]
        assert engine.scheduler.armed_count == 3

        await engine.stop()
        assert not engine.running
        assert engine.scheduler.armed_count == 0
        assert all(agent.timer is None for agent in engine.agents.values())

    @pytest.mark.asyncio
    async def test_start_fails_without_locations(
        self, make_engine: Callable[..., NpcEngine], fake_world: Any
    ) -> None:
        fake_world.failures["get-locations"] = CollaboratorError("get-locations", "down", status=503)
        engine = make_engine(engine={"npc_count": 2})
        with pytest.raises(CollaboratorError):
            await engine.start()
        assert not engine.running
        assert fake_world.called("spawn-npc") == 0

    @pytest.mark.asyncio
    async def test_spawn_failures_are_counted(
        self, make_engine: Callable[..., NpcEngine], fake_world: Any
    ) -> None:
        fake_world.failures["spawn-npc"] = CollaboratorError("spawn-npc", "quota", status=429)
        engine = make_engine(engine={"npc_count": 2})
        await engine.start()
        assert len(engine.agents) == 0
        assert engine.error_stats.total_errors == 2
        await engine.stop()

    @pytest.mark.asyncio
    async def test_stop_discards_late_results(
        self, make_engine: Callable[..., NpcEngine], fake_world: Any
    ) -> None:
        started = asyncio.Event()
        release = asyncio.Event()
        harvest = fake_world.harvest

        async def slow_harvest(wallet_address: str, character_id: str) -> HarvestResult:
            started.set()
            await release.wait()
            return await harvest(wallet_address, character_id)

        fake_world.harvest = slow_harvest
        engine = make_engine(engine={"override_action": "HARVEST"})
        await engine.start()
        agent = add_npc(engine, fake_world, energy=100)

        tick = asyncio.create_task(engine.tick("npc-1"))
        await started.wait()
        await engine.stop()
        release.set()
        outcome = await tick

        assert outcome.action == "HARVEST"
        assert fake_world.characters["wallet-npc-1"].energy == 80
        assert agent.energy == 100
        assert agent.experience == 0
        assert agent.last_action is None

    @pytest.mark.asyncio
    async def test_scheduled_ticks_run(
        self, make_engine: Callable[..., NpcEngine], fake_world: Any
    ) -> None:
        engine = make_engine(engine={
            "npc_count": 2,
            "base_interval_seconds": 0.01,
            "override_action": "SOCIALIZE",
        })
        await engine.start()
        await wait_until(lambda: len(fake_world.messages) >= 4)
        await engine.stop()

        speakers = {wallet for wallet, _, _, kind in fake_world.messages if kind == "CHAT"}
        assert speakers == {"wallet-spawned-1", "wallet-spawned-2"}

    def test_register_duplicate(self, make_engine: Callable[..., NpcEngine], fake_world: Any) -> None:
        engine = make_engine()
        add_npc(engine, fake_world)
        with pytest.raises(ValueError):
            add_npc(engine, fake_world)

    def test_unknown_personality_falls_back(self, make_engine: Callable[..., NpcEngine]) -> None:
        engine = make_engine()
        assert engine.profile_for("pirate").id == "casual"
        assert engine.profile_for("social").id == "social"

    def test_population_report(self, make_engine: Callable[..., NpcEngine], fake_world: Any) -> None:
        engine = make_engine()
        add_npc(engine, fake_world, "npc-1", energy=80)
        add_npc(engine, fake_world, "npc-2", energy=10)
        dead = add_npc(engine, fake_world, "npc-3")
        dead.is_dead = True

        stats = engine.report_population()

        assert stats == {"total": 3, "alive": 2, "dead": 1, "active": 1, "resting": 1}
        event = engine.event_logger.read_recent(1)[0]
        assert event["event_type"] == "population"
        assert event["dead"] == 1
