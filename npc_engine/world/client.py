"""Async client for the world collaborator services.

Every operation is one HTTP request. Non-success statuses, transport errors
and bodies that do not match the expected shape all raise CollaboratorError;
callers decide whether that forfeits a tick or aborts startup.

Usage:
    async with WorldClient(base_url, api_key) as client:
        snapshot = await client.get_character(wallet_address)
"""

from __future__ import annotations

import logging
from typing import Any, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from .errors import CollaboratorError, ErrorCode
from .models import (
    AgentSnapshot,
    BalanceResponse,
    CharacterResponse,
    ConsumeResult,
    EquipResult,
    ExchangeInfo,
    ExchangeResult,
    ExperienceResult,
    HarvestResult,
    Location,
    LocationsResponse,
    MarketListing,
    MarketResponse,
    NpcListResponse,
    PersistedNpc,
    SpawnResult,
    TradeResult,
    TravelResult,
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class WorldClient:
    """Thin typed wrapper over the collaborator HTTP endpoints.

    Args:
        base_url: Collaborator base URL (endpoint names are appended)
        api_key: Bearer token sent on every request
        timeout: Per-request timeout in seconds, None for no timeout
        transport: Optional httpx transport (tests use httpx.MockTransport)
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url + "/",
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> WorldClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    # =========================================================================
    # Transport
    # =========================================================================

    async def _request(
        self,
        method: str,
        endpoint: str,
        payload: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        try:
            response = await self._client.request(
                method, endpoint, json=payload, params=params
            )
        except httpx.TimeoutException as e:
            raise CollaboratorError(endpoint, str(e) or "timed out", code=ErrorCode.TIMEOUT) from e
        except httpx.HTTPError as e:
            raise CollaboratorError(endpoint, str(e) or type(e).__name__, code=ErrorCode.CONNECTION) from e

        try:
            body = response.json() if response.content else {}
        except ValueError:
            body = None

        if response.status_code >= 400:
            message = f"{endpoint} failed"
            if isinstance(body, dict):
                message = str(body.get("message") or body.get("error") or message)
            raise CollaboratorError(endpoint, message, status=response.status_code)

        if body is None:
            raise CollaboratorError(
                endpoint, "response body is not JSON", code=ErrorCode.BAD_RESPONSE
            )
        logger.debug(f"{method} {endpoint} -> {response.status_code}")
        return body

    async def _post(self, endpoint: str, payload: dict[str, Any]) -> Any:
        return await self._request("POST", endpoint, payload=payload)

    async def _get(self, endpoint: str, **params: Any) -> Any:
        return await self._request("GET", endpoint, params=params or None)

    @staticmethod
    def _parse(endpoint: str, model: type[ModelT], body: Any) -> ModelT:
        try:
            return model.model_validate(body)
        except ValidationError as e:
            raise CollaboratorError(
                endpoint, f"unexpected response shape: {e.error_count()} errors",
                code=ErrorCode.BAD_RESPONSE,
            ) from e

    # =========================================================================
    # Actions
    # =========================================================================

    async def harvest(self, wallet_address: str, character_id: str) -> HarvestResult:
        body = await self._post(
            "mine-action",
            {"wallet_address": wallet_address, "character_id": character_id},
        )
        return self._parse("mine-action", HarvestResult, body)

    async def travel(self, wallet_address: str, destination_id: str) -> TravelResult:
        body = await self._post(
            "travel-action",
            {"wallet_address": wallet_address, "destinationId": destination_id},
        )
        return self._parse("travel-action", TravelResult, body)

    async def buy(self, wallet_address: str, listing_id: str, quantity: int = 1) -> TradeResult:
        body = await self._post(
            "buy-item",
            {"wallet_address": wallet_address, "marketListingId": listing_id, "quantity": quantity},
        )
        return self._parse("buy-item", TradeResult, body)

    async def sell(self, wallet_address: str, inventory_id: str, quantity: int) -> TradeResult:
        body = await self._post(
            "sell-item",
            {"wallet_address": wallet_address, "inventoryId": inventory_id, "quantity": quantity},
        )
        return self._parse("sell-item", TradeResult, body)

    async def equip(self, wallet_address: str, inventory_id: str, equip: bool = True) -> EquipResult:
        body = await self._post(
            "equip-item",
            {"wallet_address": wallet_address, "inventoryId": inventory_id, "equip": equip},
        )
        return self._parse("equip-item", EquipResult, body)

    async def consume(self, wallet_address: str, inventory_id: str) -> ConsumeResult:
        body = await self._post(
            "use-item",
            {"wallet_address": wallet_address, "inventoryId": inventory_id},
        )
        return self._parse("use-item", ConsumeResult, body)

    async def exchange(
        self,
        wallet_address: str,
        character_id: str,
        direction: str,
        amount: int,
    ) -> ExchangeResult:
        body = await self._post(
            "npc-exchange",
            {
                "wallet_address": wallet_address,
                "character_id": character_id,
                "direction": direction,
                "amount": amount,
            },
        )
        return self._parse("npc-exchange", ExchangeResult, body)

    async def grant_experience(
        self,
        wallet_address: str,
        amount: int,
        source: str,
        details: dict[str, Any] | None = None,
    ) -> ExperienceResult:
        body = await self._post(
            "grant-experience",
            {
                "wallet_address": wallet_address,
                "experience": amount,
                "source": source,
                "details": details or {},
            },
        )
        return self._parse("grant-experience", ExperienceResult, body)

    async def send_message(
        self,
        wallet_address: str,
        location_id: str | None,
        text: str,
        kind: str = "CHAT",
    ) -> None:
        await self._post(
            "send-message",
            {
                "wallet_address": wallet_address,
                "location_id": location_id,
                "message": text,
                "message_type": kind,
            },
        )

    async def update_character(self, character_id: str, updates: dict[str, Any]) -> None:
        await self._post(
            "update-character",
            {"character_id": character_id, "updates": updates},
        )

    async def spawn_npc(self, personality: str) -> SpawnResult:
        body = await self._post("spawn-npc", {"personality": personality})
        return self._parse("spawn-npc", SpawnResult, body)

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_character(self, wallet_address: str) -> AgentSnapshot:
        """Read the authoritative snapshot for one character.

        Raises:
            CollaboratorError: If the request fails or the wallet has no character
        """
        body = await self._get("get-player-character", wallet_address=wallet_address)
        result = self._parse("get-player-character", CharacterResponse, body)
        if not result.has_character or result.character is None:
            raise CollaboratorError(
                "get-player-character", f"no character for {wallet_address}",
                code=ErrorCode.BAD_RESPONSE,
            )
        return result.character

    async def get_locations(self) -> list[Location]:
        body = await self._get("get-locations")
        return self._parse("get-locations", LocationsResponse, body).locations

    async def get_market(self, location_id: str) -> list[MarketListing]:
        body = await self._get("get-market", location_id=location_id)
        return self._parse("get-market", MarketResponse, body).items

    async def get_exchange_info(self) -> ExchangeInfo:
        body = await self._get("get-exchange-info")
        return self._parse("get-exchange-info", ExchangeInfo, body)

    async def get_ledger_balance(self, wallet_address: str) -> float:
        body = await self._get("get-sol-balance", wallet_address=wallet_address)
        return self._parse("get-sol-balance", BalanceResponse, body).balance

    async def list_npcs(self) -> list[PersistedNpc]:
        body = await self._get("get-npcs")
        return self._parse("get-npcs", NpcListResponse, body).npcs
