# World package: collaborator boundary and activity log
from .errors import (
    ActionSkipped,
    CollaboratorError,
    ConfigurationError,
    EngineError,
    ErrorCategory,
    ErrorCode,
)
from .client import WorldClient
from .logger import EventLogger, SummaryCollector, SummaryLogger
from .models import AgentSnapshot, InventoryEntry, Location, MarketListing

__all__ = [
    "ActionSkipped",
    "CollaboratorError",
    "ConfigurationError",
    "EngineError",
    "ErrorCategory",
    "ErrorCode",
    "WorldClient",
    "EventLogger",
    "SummaryCollector",
    "SummaryLogger",
    "AgentSnapshot",
    "InventoryEntry",
    "Location",
    "MarketListing",
]
