from pydantic import BaseModel, Field
from typing import Any, List, Optional

from dme_orders.extraction.models import DeviceOrder, ExtractionMode

# Health check schema
class HealthResponse(BaseModel):
    """Health check response"""
    status: str
    llm_configured: bool = False
    agentic_mode: bool = False

# Extraction schemas
class ExtractRequest(BaseModel):
    """Request schema for device order extraction"""
    text: str = Field(..., min_length=1)
    filename: Optional[str] = Field(None, description="Original file name; .json notes are unwrapped")

class ExtractResponse(BaseModel):
    """Extracted order plus the strategy that produced it"""
    order: DeviceOrder
    strategy: str
    confidence: Optional[float] = None
    attempted: List[str] = Field(default_factory=list)

class AgenticExtractRequest(ExtractRequest):
    """Request schema for the multi-agent pipeline"""
    mode: Optional[ExtractionMode] = None
    require_validation: Optional[bool] = None

# Order submission schemas
class OrderSubmitResponse(BaseModel):
    """Extraction and downstream submission outcome"""
    order: DeviceOrder
    strategy: str
    submitted: bool
    skipped: bool = False
    status_code: Optional[int] = None
    response: Any = None
