"""
Trajectory Logger - Execution audit trail for the agentic pipeline.

Records each reasoning stage, validation pass and correction attempt with
timing and outcome. A stage that fell back to its no-AI default is recorded
as DEGRADED: the pipeline carried on and still produced a step.

The trajectory belongs to a single extraction call and is never shared.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def _now() -> datetime:
    return datetime.now(timezone.utc)


class StepStatus(str, Enum):
    """Status of an execution step."""
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    DEGRADED = "degraded"
    SKIPPED = "skipped"


@dataclass
class TrajectoryStep:
    """
    A single step in the execution trajectory.

    Captures the stage or pass that ran, how long it took and how it ended.
    """
    step_number: int
    step_name: str
    component: str
    status: StepStatus = StepStatus.PENDING

    # Timing
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_ms: Optional[float] = None

    input_summary: Optional[str] = None
    output_summary: Optional[str] = None

    # Error information
    error: Optional[str] = None

    metadata: Dict[str, Any] = field(default_factory=dict)

    def start(self):
        """Mark step as started."""
        self.status = StepStatus.RUNNING
        self.started_at = _now()

    def complete(self, output_summary: str = None, **metadata):
        """Mark step as successfully completed."""
        self._finish(StepStatus.SUCCESS, output_summary, metadata)

    def degrade(self, reason: str, output_summary: str = None, **metadata):
        """Mark step as finished on its fallback path."""
        self.error = reason
        self._finish(StepStatus.DEGRADED, output_summary, metadata)

    def skip(self, reason: str = None):
        """Mark step as skipped."""
        self.status = StepStatus.SKIPPED
        self.completed_at = _now()
        if reason:
            self.metadata["skip_reason"] = reason

    def _finish(self, status: StepStatus, output_summary: Optional[str], metadata: Dict[str, Any]):
        self.status = status
        self.completed_at = _now()
        self.output_summary = output_summary
        self.metadata.update(metadata)
        if self.started_at:
            delta = self.completed_at - self.started_at
            self.duration_ms = delta.total_seconds() * 1000

    def to_dict(self) -> dict:
        """Convert step to dictionary for serialization."""
        result = {
            "step_number": self.step_number,
            "step_name": self.step_name,
            "component": self.component,
            "status": self.status.value,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_ms": self.duration_ms,
            "input_summary": self.input_summary,
            "output_summary": self.output_summary,
        }

        if self.error:
            result["error"] = self.error

        if self.metadata:
            result["metadata"] = self.metadata

        return result


@dataclass
class Trajectory:
    """Complete execution trajectory for one extraction call."""
    agent_name: str
    started_at: datetime = field(default_factory=_now)
    completed_at: Optional[datetime] = None

    steps: List[TrajectoryStep] = field(default_factory=list)

    success: bool = False
    final_error: Optional[str] = None

    input_summary: Optional[str] = None
    output_summary: Optional[str] = None

    def add_step(self, step_name: str, component: str, input_summary: str = None) -> TrajectoryStep:
        step = TrajectoryStep(
            step_number=len(self.steps) + 1,
            step_name=step_name,
            component=component,
            input_summary=input_summary,
        )
        self.steps.append(step)
        return step

    def complete(self, success: bool = True, error: str = None, output_summary: str = None):
        self.completed_at = _now()
        self.success = success
        self.final_error = error
        self.output_summary = output_summary

    @property
    def total_duration_ms(self) -> Optional[float]:
        """Total execution time in milliseconds."""
        if self.started_at and self.completed_at:
            delta = self.completed_at - self.started_at
            return delta.total_seconds() * 1000
        return None

    @property
    def step_count(self) -> int:
        return len(self.steps)

    def count(self, status: StepStatus) -> int:
        """Number of steps that ended with the given status."""
        return sum(1 for s in self.steps if s.status == status)

    def get_statistics(self) -> dict:
        """Get aggregate statistics about the trajectory."""
        step_durations = [s.duration_ms for s in self.steps if s.duration_ms is not None]

        return {
            "total_steps": self.step_count,
            "successful_steps": self.count(StepStatus.SUCCESS),
            "degraded_steps": self.count(StepStatus.DEGRADED),
            "skipped_steps": self.count(StepStatus.SKIPPED),
            "total_duration_ms": self.total_duration_ms,
            "avg_step_duration_ms": sum(step_durations) / len(step_durations) if step_durations else None,
        }

    def to_dict(self) -> dict:
        return {
            "agent_name": self.agent_name,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "success": self.success,
            "final_error": self.final_error,
            "input_summary": self.input_summary,
            "output_summary": self.output_summary,
            "statistics": self.get_statistics(),
            "steps": [step.to_dict() for step in self.steps],
        }

    def __repr__(self) -> str:
        status = "SUCCESS" if self.success else "FAILED"
        return f"<Trajectory: {self.agent_name} [{status}] {self.step_count} steps>"


class TrajectoryLogger:
    """
    Helper class for managing trajectory logging throughout a pipeline run.

    Usage:
        trajectory = TrajectoryLogger("AgenticExtractor")

        step = trajectory.start_step("Primary Extraction", "primary_extractor")
        if stage_ok:
            trajectory.complete_step(step, "device_order returned")
        else:
            trajectory.degrade_step(step, "LLM call timed out")

        data = trajectory.get_trajectory().to_dict()
    """

    def __init__(self, agent_name: str, input_summary: str = None):
        self.trajectory = Trajectory(agent_name=agent_name, input_summary=input_summary)

    def start_step(self, step_name: str, component: str, input_summary: str = None) -> TrajectoryStep:
        """Start a new step and return the step object."""
        step = self.trajectory.add_step(step_name, component, input_summary)
        step.start()
        return step

    def complete_step(self, step: TrajectoryStep, output_summary: str = None, **metadata):
        step.complete(output_summary, **metadata)

    def degrade_step(self, step: TrajectoryStep, reason: str, output_summary: str = None, **metadata):
        step.degrade(reason, output_summary, **metadata)

    def skip_step(self, step_name: str, component: str, reason: str = None):
        """Record a step that did not run."""
        step = self.trajectory.add_step(step_name, component)
        step.skip(reason)

    def complete(self, success: bool = True, error: str = None, output_summary: str = None):
        self.trajectory.complete(success, error, output_summary)

    def get_trajectory(self) -> Trajectory:
        return self.trajectory
