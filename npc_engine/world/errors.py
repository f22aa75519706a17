"""Error types and classification for collaborator calls and engine startup.

Every external call can fail softly: the failing agent forfeits that tick and
is rescheduled normally. Errors carry a code and category so the engine can
count them (see ErrorStats) without string matching.

Usage:
    from npc_engine.world.errors import CollaboratorError, ErrorCode

    try:
        await client.mine(agent_id)
    except CollaboratorError as e:
        logger.warning(f"Harvest failed: {e}")
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Categories for error classification.

    - VALIDATION: Nothing valid to act on (no sellable item, no destination)
    - COLLABORATOR: An external service returned an error or bad body
    - TRANSPORT: The request never completed (connection, timeout)
    - CONFIGURATION: Missing secrets or invalid config at startup
    """

    VALIDATION = "validation"
    COLLABORATOR = "collaborator"
    TRANSPORT = "transport"
    CONFIGURATION = "configuration"


class ErrorCode(str, Enum):
    """Specific error codes for programmatic handling."""

    # Validation
    NOTHING_TO_DO = "nothing_to_do"
    INSUFFICIENT_FUNDS = "insufficient_funds"

    # Collaborator
    BAD_STATUS = "bad_status"
    BAD_RESPONSE = "bad_response"

    # Transport
    TIMEOUT = "timeout"
    CONNECTION = "connection"

    # Configuration
    NOT_CONFIGURED = "not_configured"


class EngineError(Exception):
    """Base class for engine errors."""

    code: ErrorCode = ErrorCode.BAD_RESPONSE
    category: ErrorCategory = ErrorCategory.COLLABORATOR
    retriable: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for event logging."""
        return {
            "error": str(self),
            "code": self.code.value,
            "category": self.category.value,
            "retriable": self.retriable,
        }


class CollaboratorError(EngineError):
    """An external service call failed.

    Attributes:
        endpoint: Collaborator endpoint name (e.g. "mine-action")
        status: HTTP status code, None when the request never completed
        message: Error text from the response body or transport
    """

    def __init__(
        self,
        endpoint: str,
        message: str,
        status: int | None = None,
        code: ErrorCode | None = None,
    ) -> None:
        self.endpoint = endpoint
        self.status = status
        self.message = message
        if code is not None:
            self.code = code
        elif status is not None:
            self.code = ErrorCode.BAD_STATUS
        self.category = (
            ErrorCategory.TRANSPORT
            if self.code in (ErrorCode.TIMEOUT, ErrorCode.CONNECTION)
            else ErrorCategory.COLLABORATOR
        )
        # Server-side and transport failures may clear up by the next tick
        self.retriable = self.category == ErrorCategory.TRANSPORT or (
            status is not None and status >= 500
        )
        status_text = f" ({status})" if status is not None else ""
        super().__init__(f"{endpoint}{status_text}: {message}")

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["endpoint"] = self.endpoint
        if self.status is not None:
            result["status"] = self.status
        return result


class ActionSkipped(EngineError):
    """Validation failure: the chosen action has nothing valid to act on."""

    code = ErrorCode.NOTHING_TO_DO
    category = ErrorCategory.VALIDATION

    def __init__(self, reason: str, code: ErrorCode = ErrorCode.NOTHING_TO_DO) -> None:
        self.reason = reason
        self.code = code
        super().__init__(reason)


class ConfigurationError(EngineError):
    """Fatal startup error: missing secrets or invalid configuration."""

    code = ErrorCode.NOT_CONFIGURED
    category = ErrorCategory.CONFIGURATION
