"""NPC engine orchestrator.

Owns the agent registry and is the only component that writes AgentState.
Every tick works on a detached copy of the agent; the copy is committed back
to the registry when the tick finishes, and only while the engine is still
running. Results that arrive after stop() are therefore discarded.

Per tick:
    1. dead-but-unhandled agents get death handling (timer cancelled,
       status persisted, death announced, respawn scheduled)
    2. critical agents only attempt an emergency heal
    3. tired agents rest
    4. everyone else acts on the selector's choice
    5. XP is granted for completed actions

Usage:
    async with WorldClient(url, key) as client:
        engine = NpcEngine(config, client, event_logger=EventLogger())
        await engine.start()
        ...
        await engine.stop()
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Mapping

from ..agents.actions import ActionLabel
from ..agents.chat import ChatComposer
from ..agents.economy import EconomicStrategyEngine
from ..agents.experience import ExperienceFeedback
from ..agents.lifecycle import LifecycleController, LifecyclePhase
from ..agents.personality import PersonalityProfile, profiles_from_config
from ..agents.selector import ActionSelector
from ..agents.state import AgentState, InventoryItem
from ..world.errors import ActionSkipped, CollaboratorError
from ..world.logger import SummaryCollector
from .rewards import ExperienceTable
from .scheduler import ActivityScheduler
from .types import ErrorStats, PopulationStats, TickOutcome

if TYPE_CHECKING:
    from ..config_schema import AppConfig
    from ..world.client import WorldClient
    from ..world.logger import EventLogger
    from ..world.models import AgentSnapshot, ConsumeResult, Location

logger = logging.getLogger(__name__)

# (xp, narrative detail) returned by every action handler
HandlerResult = tuple[int, str]
Handler = Callable[[AgentState], Awaitable[HandlerResult]]

# Fields copied from a tick's working copy back onto the registry record
_COMMIT_FIELDS = (
    "name",
    "health",
    "energy",
    "coins",
    "ledger_balance",
    "level",
    "experience",
    "location_id",
    "last_action",
    "failed_healing_attempts",
)


class NpcEngine:
    """Runs a population of autonomous NPCs against the world services.

    Args:
        config: Validated application config
        client: World collaborator client
        event_logger: Optional JSONL activity log
        rng: Random source shared by every decision component
    """

    def __init__(
        self,
        config: AppConfig,
        client: WorldClient,
        event_logger: EventLogger | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.config = config
        self.client = client
        self.event_logger = event_logger
        self.rng = rng or random.Random()

        self.profiles: dict[str, PersonalityProfile] = profiles_from_config(config.personalities)
        self.selector = ActionSelector(rng=self.rng, critical_health=config.lifecycle.critical_health)
        self.lifecycle = LifecycleController(config.lifecycle, rng=self.rng)
        self.economy = EconomicStrategyEngine(config.exchange, rng=self.rng)
        self.experience = ExperienceFeedback(client)
        self.rewards = ExperienceTable(config.experience)
        self.chat = ChatComposer(rng=self.rng)
        self.scheduler = ActivityScheduler(config.engine, on_tick=self.tick, rng=self.rng)

        self.error_stats = ErrorStats(max_recent=config.logging.max_recent_errors)
        self.collector = SummaryCollector()
        self.locations: list[Location] = []

        self._agents: dict[str, AgentState] = {}
        self._running = False
        self._spawned = 0
        self._handlers: dict[ActionLabel, Handler] = {
            ActionLabel.REST: self._rest,
            ActionLabel.HARVEST: self._harvest,
            ActionLabel.TRAVEL: self._travel,
            ActionLabel.ACQUIRE_ITEM: self._acquire,
            ActionLabel.SELL_ITEM: self._sell,
            ActionLabel.SOCIALIZE: self._socialize,
            ActionLabel.EQUIP: self._equip,
            ActionLabel.CONSUME_ITEM: self._consume,
            ActionLabel.EXCHANGE_CURRENCY: self._exchange,
        }

    # =========================================================================
    # Registry
    # =========================================================================

    @property
    def running(self) -> bool:
        return self._running

    @property
    def agents(self) -> Mapping[str, AgentState]:
        """Read-only view of the registry."""
        return MappingProxyType(self._agents)

    def get_agent(self, agent_id: str) -> AgentState | None:
        return self._agents.get(agent_id)

    def snapshot(self, agent_id: str) -> AgentState:
        """Detached copy of one agent for read-only consumers."""
        return self._agents[agent_id].copy()

    def register(self, agent: AgentState) -> None:
        """Add an agent to the registry, arming it if the engine is running."""
        if agent.id in self._agents:
            raise ValueError(f"Agent {agent.id} already registered")
        self._agents[agent.id] = agent
        if self._running and not agent.is_dead:
            self._arm(agent)

    def profile_for(self, personality_id: str | None) -> PersonalityProfile:
        """Profile by id; unknown ids fall back to the first configured profile."""
        if personality_id and personality_id in self.profiles:
            return self.profiles[personality_id]
        fallback = next(iter(self.profiles.values()))
        if personality_id:
            logger.warning(f"Unknown personality '{personality_id}', using '{fallback.id}'")
        return fallback

    def population_stats(self) -> PopulationStats:
        threshold = self.config.mechanics.rest_threshold
        total = len(self._agents)
        dead = sum(1 for a in self._agents.values() if a.is_dead)
        alive = total - dead
        active = sum(
            1 for a in self._agents.values() if not a.is_dead and a.energy >= threshold
        )
        return {
            "total": total,
            "alive": alive,
            "dead": dead,
            "active": active,
            "resting": alive - active,
        }

    # =========================================================================
    # Startup and shutdown
    # =========================================================================

    async def start(self) -> None:
        """Load the world, populate the registry and start scheduling.

        Raises:
            CollaboratorError: If the location catalog cannot be loaded
        """
        if self._running:
            logger.warning("Engine already running")
            return

        engine_cfg = self.config.engine
        logger.info(
            f"Starting NPC engine: target {engine_cfg.npc_count} NPCs, "
            f"base interval {engine_cfg.base_interval_seconds}s, "
            f"respawn {'enabled' if self.lifecycle.respawn_enabled else 'disabled'}"
        )
        if engine_cfg.override_action:
            logger.info(f"Action override active: {engine_cfg.override_action}")

        self.locations = await self.client.get_locations()
        logger.info(f"Loaded {len(self.locations)} locations")

        if engine_cfg.resume_existing:
            resumed = await self.resume_existing()
            logger.info(f"Resumed {resumed} existing NPCs")

        needed = engine_cfg.npc_count - len(self._agents)
        if needed > 0:
            logger.info(f"Spawning {needed} new NPCs")
            await self.spawn(needed)

        self._running = True
        for agent in self._agents.values():
            if not agent.is_dead:
                self._arm(agent, initial_delay=self.scheduler.startup_offset())
            elif self.lifecycle.respawn_enabled:
                self._schedule_respawn(agent, self._remaining_respawn_delay(agent))

        self.scheduler.start_reporter(self._report_interval(), self.report_population)
        logger.info(f"NPC engine started with {len(self._agents)} NPCs")

    async def stop(self) -> None:
        """Cancel every timer, pending respawn and background task."""
        if not self._running:
            return
        self._running = False
        await self.scheduler.shutdown()
        for agent in self._agents.values():
            agent.timer = None
        summary = self.error_stats.summary()
        logger.info(f"NPC engine stopped ({summary['total_errors']} errors this run)")

    def _report_interval(self) -> float:
        reporting = self.config.reporting
        if self.config.logging.level == "DEBUG":
            return reporting.debug_population_interval_seconds
        return reporting.population_interval_seconds

    def _arm(self, agent: AgentState, initial_delay: float | None = None) -> None:
        agent.timer = self.scheduler.arm(
            agent.id, pacing=agent.personality.pacing, initial_delay=initial_delay
        )

    async def resume_existing(self) -> int:
        """Load persisted NPCs (up to npc_count) into the registry."""
        try:
            records = await self.client.list_npcs()
        except CollaboratorError as e:
            logger.error(f"Could not list existing NPCs: {e}")
            return 0

        resumed = 0
        for record in records[: self.config.engine.npc_count]:
            if record.id in self._agents:
                continue
            try:
                snapshot = await self.client.get_character(record.wallet_address)
            except CollaboratorError as e:
                logger.warning(f"Skipping NPC {record.id}: {e}")
                continue
            agent = self._build_agent(record.id, record.wallet_address, record.personality, snapshot)
            self._agents[agent.id] = agent
            resumed += 1
            logger.info(f"Resumed {agent.name} ({agent.status_line()})")
        return resumed

    async def spawn(self, count: int) -> list[AgentState]:
        """Create count new NPCs, cycling through the spawnable personalities."""
        personalities = self.config.spawn_personalities()
        spawned: list[AgentState] = []
        for i in range(count):
            personality_id = personalities[i % len(personalities)]
            try:
                spawned.append(await self.spawn_npc(personality_id))
            except CollaboratorError as e:
                logger.error(f"Failed to spawn {personality_id} NPC: {e}")
                self.error_stats.record_error(e.code.value, f"spawn:{personality_id}", str(e))
            if i < count - 1:
                await asyncio.sleep(self.config.engine.spawn_delay_seconds)
        return spawned

    async def spawn_npc(self, personality_id: str) -> AgentState:
        result = await self.client.spawn_npc(personality_id)
        self._spawned += 1
        agent_id = result.character.id or f"npc_{int(time.time())}_{self._spawned}"
        agent = self._build_agent(agent_id, result.wallet_address, personality_id, result.character)
        self.register(agent)
        logger.info(f"Spawned {agent.name} ({personality_id}) at {self._location_name(agent.location_id)}")
        return agent

    def _build_agent(
        self,
        agent_id: str,
        wallet_address: str,
        personality_id: str | None,
        snapshot: AgentSnapshot,
    ) -> AgentState:
        agent = AgentState(
            id=agent_id,
            wallet_address=wallet_address,
            personality=self.profile_for(personality_id),
            name=snapshot.name or agent_id,
        )
        agent.apply_snapshot(snapshot)
        return agent

    # =========================================================================
    # Tick
    # =========================================================================

    async def tick(self, agent_id: str) -> TickOutcome:
        """Run one decide-then-execute cycle for one agent."""
        outcome = TickOutcome(agent_id=agent_id)
        agent = self._agents.get(agent_id)
        if agent is None or agent.is_dead or not self._running:
            outcome.success = False
            outcome.detail = "not eligible"
            return outcome

        if self.lifecycle.needs_death_handling(agent):
            reason = (
                "desperation"
                if agent.failed_healing_attempts >= self.config.lifecycle.max_healing_attempts
                else "injuries"
            )
            await self._handle_death(agent, reason)
            outcome.died = True
            outcome.detail = reason
            return outcome

        work = agent.copy()
        if self.lifecycle.phase(work) is LifecyclePhase.ALIVE_CRITICAL:
            await self._emergency_heal(work, outcome)
        else:
            # failed heals only count while consecutive
            if work.failed_healing_attempts:
                self.lifecycle.record_heal_success(work)
            if work.energy < self.config.mechanics.rest_threshold:
                action = ActionLabel.REST
            else:
                action = self.selector.select(
                    work, work.personality, self.config.engine.override_action
                )
            await self._execute(work, action, outcome)

        self._commit(agent, work)
        return outcome

    def _commit(self, agent: AgentState, work: AgentState) -> bool:
        if not self._running:
            logger.debug(f"Discarding late result for {agent.id}")
            return False
        for name in _COMMIT_FIELDS:
            setattr(agent, name, getattr(work, name))
        agent.visited_locations = set(work.visited_locations)
        agent.inventory = list(work.inventory)
        return True

    async def _execute(self, work: AgentState, action: ActionLabel, outcome: TickOutcome) -> None:
        outcome.action = action.value
        forced = " [FORCED]" if self.config.engine.override_action else ""
        stats = self.population_stats()
        logger.info(
            f"({stats['active']}/{stats['alive']}/{stats['dead']}) {work.name} "
            f"({work.personality.id}) {work.energy}E/{work.health}H -> {action.value}{forced}"
        )

        xp = 0
        try:
            xp, detail = await self._handlers[action](work)
            outcome.detail = detail
            work.last_action = None if action is ActionLabel.SOCIALIZE else action.value
        except ActionSkipped as e:
            outcome.skipped = True
            outcome.detail = e.reason
            logger.debug(f"{work.name} skipped {action.value}: {e.reason}")
        except CollaboratorError as e:
            outcome.success = False
            outcome.detail = str(e)
            logger.error(f"{work.name} {action.value} failed: {e}")
            self.error_stats.record_error(e.code.value, work.id, str(e), action.value)
        except Exception as e:
            outcome.success = False
            outcome.detail = str(e)
            logger.exception(f"{work.name} {action.value} raised unexpectedly: {e}")
            self.error_stats.record_error("unexpected", work.id, str(e), action.value)

        if xp > 0:
            outcome.experience = await self._grant(work, xp, action.value, {"detail": outcome.detail})

        if outcome.skipped:
            self.collector.record_skip(action.value, work.id)
        else:
            self.collector.record_action(action.value, outcome.success, work.id)
        if self.event_logger is not None:
            self.event_logger.log_action(
                work.id, action.value, outcome.success, work.status_line(), outcome.detail,
                skipped=outcome.skipped,
            )

    async def _grant(self, work: AgentState, amount: int, source: str, details: dict[str, Any]) -> int:
        result = await self.experience.grant(work, amount, source, details)
        if result is None:
            return 0
        self.collector.record_experience(amount)
        if result.leveled_up:
            self.collector.add_highlight(f"{work.name} reached level {result.new_level}")
        if self.event_logger is not None:
            self.event_logger.log_experience(
                work.id, amount, source, result.total_experience, result.new_level, result.leveled_up
            )
        return amount

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def _handle_death(self, agent: AgentState, reason: str) -> None:
        self.scheduler.cancel(agent.id)
        respawn_in = self.lifecycle.mark_dead(agent)
        self.collector.add_highlight(f"{agent.name} died ({reason})")
        if self.event_logger is not None:
            self.event_logger.log_death(agent.id, reason, respawn_in)

        await self._persist(agent.id, {"status": "DEAD", "health": 0})
        if self.config.lifecycle.announce_deaths:
            self._broadcast(agent, self.chat.death_announcement(agent), kind="DEATH")

        if respawn_in is not None and self._running:
            self._schedule_respawn(agent, respawn_in)

    def _schedule_respawn(self, agent: AgentState, delay: float) -> None:
        logger.info(f"{agent.name} will respawn in {delay:.0f}s")
        agent_id = agent.id
        self.scheduler.call_later(f"respawn-{agent_id}", delay, lambda: self.respawn(agent_id))

    def _remaining_respawn_delay(self, agent: AgentState) -> float:
        """Respawn delay still owed by an agent that died before a restart."""
        if agent.death_time is None:
            return self.lifecycle.respawn_delay
        elapsed = time.time() - agent.death_time
        return max(0.0, self.lifecycle.respawn_delay - elapsed)

    async def respawn(self, agent_id: str) -> bool:
        """Return a dead agent to the world with penalized stats.

        A stop (or cancellation) while the new status is being persisted
        leaves the agent DEAD.
        """
        agent = self._agents.get(agent_id)
        if agent is None or not agent.is_dead or not self._running:
            return False

        self.lifecycle.begin_respawn(agent)
        location = self.lifecycle.choose_respawn_location(self.locations)
        settings = self.config.lifecycle
        updates: dict[str, Any] = {
            "status": "ACTIVE",
            "health": settings.respawn_health,
            "energy": settings.respawn_energy,
        }
        if location is not None:
            updates["current_location_id"] = location.id
        try:
            await self._persist(agent.id, updates)
        except asyncio.CancelledError:
            self.lifecycle.abort_respawn(agent)
            logger.info(f"Respawn of {agent.name} cancelled")
            raise

        if not self._running:
            self.lifecycle.abort_respawn(agent)
            return False

        self.lifecycle.apply_respawn(agent, location)
        logger.info(f"{agent.name} respawned at {self._location_name(agent.location_id)}")
        if self.event_logger is not None:
            self.event_logger.log_respawn(agent.id, agent.location_id, agent.health, agent.energy)
        if settings.announce_respawns:
            self._broadcast(agent, self.chat.respawn_announcement(agent), kind="RESPAWN")
        self._arm(agent)
        return True

    async def _emergency_heal(self, work: AgentState, outcome: TickOutcome) -> None:
        outcome.action = "EMERGENCY_HEAL"
        logger.warning(f"{work.name} critically injured ({work.health} health)")

        item: InventoryItem | None = None
        try:
            await self._refresh(work, strict=True)
            if self.lifecycle.phase(work) is LifecyclePhase.ALIVE_NORMAL:
                self.lifecycle.record_heal_success(work)
                outcome.detail = f"recovered to {work.health} health"
                logger.info(f"{work.name} is no longer critical ({work.health} health)")
                self.collector.record_action("EMERGENCY_HEAL", True, work.id)
                return
            item = self.lifecycle.best_healing_item(work.inventory)
            if item is not None:
                result = await self.client.consume(work.wallet_address, item.id)
                self._apply_consume(work, result)
                await self._refresh(work)
        except CollaboratorError as e:
            logger.error(f"{work.name} emergency heal failed: {e}")
            self.error_stats.record_error(e.code.value, work.id, str(e), "EMERGENCY_HEAL")
            item = None

        if item is None:
            outcome.success = False
            outcome.detail = "no healing item"
            died = self.lifecycle.record_heal_failure(work)
            outcome.died = died
        else:
            self.lifecycle.record_heal_success(work)
            outcome.detail = f"used {item.name} to survive"
            logger.info(f"{work.name} used {item.name} to survive")
            outcome.experience = await self._grant(
                work, self.rewards.consume(was_critical=True),
                ActionLabel.CONSUME_ITEM.value, {"emergency": True, "item": item.name},
            )

        self.collector.record_action("EMERGENCY_HEAL", outcome.success, work.id)

    # =========================================================================
    # Action handlers
    # =========================================================================

    async def _rest(self, work: AgentState) -> HandlerResult:
        work.energy += self.config.mechanics.rest_energy_gain
        await self._persist(work.id, {"energy": work.energy})
        return 0, f"rested to {work.energy} energy"

    async def _harvest(self, work: AgentState) -> HandlerResult:
        result = await self.client.harvest(work.wallet_address, work.id)
        work.energy = result.new_energy
        if result.new_health is not None:
            work.health = result.new_health

        found = result.found_item
        if found is None:
            return self.rewards.harvest(), "found nothing"
        logger.info(f"{work.name} found {found.name} ({found.rarity})")
        return self.rewards.harvest(found.rarity), f"found {found.name} ({found.rarity})"

    def available_destinations(self, agent: AgentState) -> list[Location]:
        return [
            loc for loc in self.locations
            if loc.id != agent.location_id
            and (loc.min_level is None or agent.level >= loc.min_level)
            and (loc.entry_cost is None or agent.coins >= loc.entry_cost)
            and not loc.is_private
        ]

    async def _travel(self, work: AgentState) -> HandlerResult:
        destinations = self.available_destinations(work)
        if not destinations:
            raise ActionSkipped("no available destinations")

        destination = self.rng.choice(destinations)
        result = await self.client.travel(work.wallet_address, destination.id)
        if not result.success:
            raise ActionSkipped(f"travel to {destination.name or destination.id} rejected")

        arrived = result.updated_location or destination.id
        first_visit = arrived not in work.visited_locations
        work.location_id = arrived
        work.visited_locations.add(arrived)
        await self._refresh(work)

        name = self._location_name(arrived)
        logger.info(f"{work.name} traveled to {name}")
        return self.rewards.travel(first_visit), f"traveled to {name}" + (" (new)" if first_visit else "")

    async def _acquire(self, work: AgentState) -> HandlerResult:
        if work.location_id is None:
            raise ActionSkipped("no current location")
        listings = await self.client.get_market(work.location_id)
        affordable = [l for l in listings if l.price <= work.coins and l.quantity > 0]
        if not affordable:
            raise ActionSkipped("nothing affordable")

        listing = self.rng.choice(affordable)
        result = await self.client.buy(work.wallet_address, listing.id, 1)
        if not result.success:
            raise ActionSkipped(f"purchase of {listing.item.name} rejected")

        price = result.price or listing.price
        work.coins -= price
        await self._refresh(work)
        logger.info(f"{work.name} bought {listing.item.name} for {price} coins")
        return self.rewards.acquire(price), f"bought {listing.item.name} for {price}"

    def should_sell(self, item: InventoryItem, agent: AgentState) -> bool:
        """Whether an unequipped item is worth selling right now."""
        m = self.config.mechanics
        if agent.health < m.sell_keep_threshold and item.health_effect > 0:
            return False
        if agent.energy < m.sell_keep_threshold and item.energy_effect > 0:
            return False
        if agent.coins < m.poor_coins:
            return True
        if item.is_material and item.quantity > m.material_surplus:
            return True
        return self.rng.random() < m.sell_chance

    async def _sell(self, work: AgentState) -> HandlerResult:
        await self._refresh(work, strict=True)
        sellable = [
            item for item in work.inventory
            if not item.is_equipped and item.quantity > 0 and self.should_sell(item, work)
        ]
        if not sellable:
            raise ActionSkipped("nothing to sell")

        item = self.rng.choice(sellable)
        quantity = min(item.quantity, self.rng.randint(1, 3))
        result = await self.client.sell(work.wallet_address, item.id, quantity)
        if not result.success:
            raise ActionSkipped(f"sale of {item.name} rejected")

        work.coins += result.price
        await self._refresh(work)
        logger.info(f"{work.name} sold {quantity}x {item.name} for {result.price} coins")
        return self.rewards.base(ActionLabel.SELL_ITEM), f"sold {quantity}x {item.name}"

    async def _socialize(self, work: AgentState) -> HandlerResult:
        if not self.config.chat.enabled:
            raise ActionSkipped("chat disabled")

        message, context = self.chat.compose(work, self.config.mechanics.rest_threshold)
        await self.client.send_message(work.wallet_address, work.location_id, message, "CHAT")
        if self.config.chat.show_context:
            logger.info(f'{work.name}: "{message}" ({context})')
        else:
            logger.info(f'{work.name}: "{message}"')
        return self.rewards.base(ActionLabel.SOCIALIZE), message

    async def _equip(self, work: AgentState) -> HandlerResult:
        await self._refresh(work, strict=True)
        candidates = [
            item for item in work.inventory
            if not item.is_equipped and not item.is_material
            and not item.is_consumable and item.quantity > 0
        ]
        if not candidates:
            raise ActionSkipped("nothing to equip")
        if self.rng.random() >= self.config.mechanics.equip_chance:
            raise ActionSkipped("kept current gear")

        item = self.rng.choice(candidates)
        result = await self.client.equip(work.wallet_address, item.id, True)
        if not result.success:
            raise ActionSkipped(f"could not equip {item.name}")
        item.is_equipped = True
        logger.info(f"{work.name} equipped {item.name}")
        return self.rewards.base(ActionLabel.EQUIP), f"equipped {item.name}"

    def choose_consumable(self, agent: AgentState, consumables: list[InventoryItem]) -> tuple[InventoryItem, str]:
        """Pick a consumable by need: critical health, low energy, then maintenance."""
        def first(pred: Callable[[InventoryItem], bool]) -> InventoryItem | None:
            return next((i for i in consumables if pred(i)), None)

        target: InventoryItem | None = None
        reason = "routine use"
        if agent.health < 20:
            target, reason = first(lambda i: i.health_effect > 0), "critical health"
        elif agent.energy < self.config.mechanics.rest_threshold:
            target, reason = first(lambda i: i.energy_effect > 0), "low energy"
        elif agent.health < 60:
            target, reason = first(lambda i: i.health_effect > 0), "health maintenance"

        if target is None:
            return self.rng.choice(consumables), "routine use"
        return target, reason

    async def _consume(self, work: AgentState) -> HandlerResult:
        await self._refresh(work, strict=True)
        consumables = [i for i in work.inventory if i.is_consumable and i.quantity > 0]
        if not consumables:
            raise ActionSkipped("no consumables")

        item, reason = self.choose_consumable(work, consumables)
        was_critical = work.health <= self.lifecycle.critical_health
        result = await self.client.consume(work.wallet_address, item.id)
        self._apply_consume(work, result)
        await self._refresh(work)
        logger.info(f"{work.name} used {item.name} [{reason}]")
        return self.rewards.consume(was_critical), f"used {item.name} ({reason})"

    async def _exchange(self, work: AgentState) -> HandlerResult:
        info = await self.client.get_exchange_info()
        if not info.is_active:
            raise ActionSkipped("market closed")
        balance = await self.client.get_ledger_balance(work.wallet_address)
        work.ledger_balance = balance

        strategy = self.economy.decide(work, balance, info.rate, info.is_active)
        if strategy is None:
            raise ActionSkipped("no exchange opportunity")

        logger.info(
            f"{work.name} attempting {strategy.direction.value} for {strategy.amount} "
            f"[{strategy.reason}] at {info.rate}"
        )
        result = await self.client.exchange(
            work.wallet_address, work.id, strategy.direction.value, strategy.amount
        )
        if self.event_logger is not None:
            self.event_logger.log_exchange(
                work.id, strategy.direction.value, strategy.amount,
                strategy.reason, strategy.priority, result.success,
            )
        if not result.success:
            raise ActionSkipped(f"{strategy.reason} exchange rejected")

        if result.new_coin_balance is not None:
            work.coins = result.new_coin_balance
        await self._refresh(work)
        self.collector.record_exchange(strategy.amount)
        return self.rewards.exchange(strategy), f"{strategy.reason} {strategy.direction.value} {strategy.amount}"

    # =========================================================================
    # Collaborator helpers
    # =========================================================================

    def _apply_consume(self, work: AgentState, result: ConsumeResult) -> None:
        work.health += result.health_delta
        work.energy += result.energy_delta

    async def _refresh(self, work: AgentState, strict: bool = False) -> None:
        """Re-read the authoritative snapshot.

        Args:
            strict: Propagate collaborator errors instead of logging them
        """
        try:
            snapshot = await self.client.get_character(work.wallet_address)
        except CollaboratorError as e:
            if strict:
                raise
            logger.warning(f"Failed to refresh {work.name}: {e}")
            return
        work.apply_snapshot(snapshot)

    async def _persist(self, agent_id: str, updates: dict[str, Any]) -> None:
        try:
            await self.client.update_character(agent_id, updates)
        except CollaboratorError as e:
            logger.warning(f"Failed to persist {agent_id} {updates}: {e}")
            self.error_stats.record_error(e.code.value, agent_id, str(e), "persist")

    def _broadcast(self, agent: AgentState, text: str, kind: str) -> None:
        self.scheduler.background(
            self.client.send_message(agent.wallet_address, agent.location_id, text, kind),
            name=f"broadcast-{kind.lower()}-{agent.id}",
        )

    def _location_name(self, location_id: str | None) -> str:
        for loc in self.locations:
            if loc.id == location_id:
                return loc.name or loc.id
        return "Unknown"

    # =========================================================================
    # Reporting
    # =========================================================================

    def report_population(self) -> PopulationStats:
        stats = self.population_stats()
        activities = self.collector.actions_executed
        skipped = self.collector.skipped
        error_rate = round(self.collector.error_rate() * 100)
        efficiency = round(stats["active"] / stats["total"] * 100) if stats["total"] else 0
        summary = self.collector.finalize()
        logger.info(
            f"[STATS] Pop: {stats['active']}/{stats['alive']}/{stats['total']} | "
            f"Efficiency: {efficiency}% | Errors: {error_rate}% | Activities: {activities} ({skipped} skipped)"
        )
        if self.event_logger is not None:
            self.event_logger.log_population(dict(stats), summary)
        return stats
