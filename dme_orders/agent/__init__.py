"""
Agentic Device Order Extraction

A four-stage reasoning pipeline for extracting DME orders from physician notes.

Components:
- AgenticExtractor: runs the stages, validation and self-correction
  (import from dme_orders.agent.pipeline)
- Agents: stage definitions and prompt assembly
- OrderValidator: validation and self-correction loop
- Tools: strategy contract used by the extraction orchestrator
- Trajectory: execution audit trail logging

Usage:
    from dme_orders.agent.pipeline import AgenticExtractor

    extractor = AgenticExtractor(settings)
    result = await extractor.extract_with_agents(note_text)

    if result.confidence_score < 0.7:
        route_for_review(result)
"""
from dme_orders.agent.agents import AGENTS, AgentDefinition, build_agent_prompt
from dme_orders.agent.tools.base import Tool, ToolResult
from dme_orders.agent.trajectory import StepStatus, Trajectory, TrajectoryLogger, TrajectoryStep
from dme_orders.agent.validation import CorrectionOutcome, OrderValidator, basic_validation

__all__ = [
    # Agents
    "AGENTS",
    "AgentDefinition",
    "build_agent_prompt",

    # Validation
    "OrderValidator",
    "CorrectionOutcome",
    "basic_validation",

    # Strategy contract
    "Tool",
    "ToolResult",

    # Trajectory
    "StepStatus",
    "Trajectory",
    "TrajectoryStep",
    "TrajectoryLogger",
]
