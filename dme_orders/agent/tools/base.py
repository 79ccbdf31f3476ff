"""
Extraction strategy contract.

A strategy turns note text into a DeviceOrder:
1. name: identifier reported in results ("agentic", "llm", "deterministic")
2. description: how it extracts
3. execute(): async, returns a ToolResult with the order or an error
4. run(): execute() with timing, exceptions folded into a failed result

The orchestrator tries strategies in order and keeps the first success, so
a strategy reports failure through ToolResult.fail rather than raising.
"""
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class ToolResult:
    """
    Outcome of one strategy execution.

    Attributes:
        success: Whether the strategy produced an order
        data: The DeviceOrder on success
        error: Why the strategy gave up
        metadata: Strategy details (confidence, agentic_result, llm_model,
            tokens_used, duration_ms, timestamp)
    """
    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.metadata.setdefault("timestamp", datetime.now(timezone.utc).isoformat())

    @classmethod
    def ok(cls, data: Any, **metadata) -> "ToolResult":
        return cls(success=True, data=data, metadata=metadata)

    @classmethod
    def fail(cls, error: str, **metadata) -> "ToolResult":
        return cls(success=False, error=error, metadata=metadata)


class Tool(ABC):
    """Base class for extraction strategies."""

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @property
    @abstractmethod
    def description(self) -> str:
        pass

    @abstractmethod
    async def execute(self, input_data: str) -> ToolResult:
        """Extract an order from note text."""
        pass

    async def run(self, input_data: str) -> ToolResult:
        """
        Execute and time the strategy.

        An exception from execute() is logged and returned as a failed
        result carrying its error_type, so callers can move on to the next
        strategy.
        """
        started = time.perf_counter()
        try:
            result = await self.execute(input_data)
        except Exception as e:
            logger.exception("Extraction strategy %s raised", self.name)
            result = ToolResult.fail(str(e) or type(e).__name__, error_type=type(e).__name__)
        result.metadata["duration_ms"] = (time.perf_counter() - started) * 1000
        return result

    def __repr__(self) -> str:
        return f"<Strategy: {self.name}>"
