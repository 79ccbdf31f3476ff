"""
Extraction strategy contract.

Each strategy follows a standardized interface:
- Defined by abstract Tool base class
- Returns ToolResult with success/failure status
- Independently testable
"""
from .base import Tool, ToolResult

__all__ = [
    "Tool",
    "ToolResult",
]
