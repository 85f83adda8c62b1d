"""
Workflow data models.

Defines the in-memory shape of a loaded workflow definition, the run
history record, and the outcome of a step's shell command.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

import humancron_config


class AutomationType(str, Enum):
    N8N = "n8n"
    ZAPIER = "zapier"
    WEBHOOK = "webhook"


class Automation(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: AutomationType
    webhook: Optional[str] = None
    parameters: Optional[dict[str, str]] = None


class WorkflowStep(BaseModel):
    model_config = ConfigDict(frozen=True)

    # Fresh on every parse, never serialized
    id: uuid.UUID = Field(default_factory=uuid.uuid4, exclude=True)
    name: str
    description: str
    link: Optional[str] = None  # URL, absolute path or app shortcut
    command: Optional[str] = None  # shell command, run with SHELL -c
    duration: Optional[float] = None  # seconds
    automations: Optional[list[Automation]] = None
    is_finish_step: bool = False

    @classmethod
    def finish_step(cls) -> WorkflowStep:
        """The synthetic step appended to every loaded workflow."""
        return cls(
            name=humancron_config.FINISH_STEP_NAME,
            description=humancron_config.FINISH_STEP_DESCRIPTION,
            is_finish_step=True,
        )


class Workflow(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: uuid.UUID = Field(default_factory=uuid.uuid4, exclude=True)
    name: str
    description: str
    hotkey: Optional[str] = None
    steps: list[WorkflowStep] = Field(default_factory=list)
    file_path: Optional[str] = None  # source file, for re-editing

    @property
    def total_duration(self) -> Optional[float]:
        """Sum of the step durations that are set, None if no step has one."""
        durations = [s.duration for s in self.steps if s.duration is not None]
        if not durations:
            return None
        return sum(durations)


class WorkflowRun(BaseModel):
    """History record for one run of a workflow."""

    model_config = ConfigDict(frozen=True)

    workflow_id: str
    workflow_name: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    steps_completed: int = 0
    total_steps: int


class CommandExecutionState(str, Enum):
    READY = "ready"
    RUNNING = "running"
    SUCCESS = "success"
    FAILURE = "failure"


class CommandResult(BaseModel):
    """Captured outcome of running a step's shell command."""

    model_config = ConfigDict(frozen=True)

    command: str
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration: float = 0.0  # wall clock seconds, spawn to exit
    environment: dict[str, str] = Field(default_factory=dict)

    @property
    def is_success(self) -> bool:
        return self.exit_code == 0

    @property
    def display_summary(self) -> str:
        if self.is_success:
            return "Command executed successfully"
        return f"Command failed with exit code {self.exit_code}"

    @property
    def duration_string(self) -> str:
        return f"{self.duration:.1f}s"

    @property
    def combined_output(self) -> str:
        """stdout followed by stderr, for display."""
        output = self.stdout
        if self.stderr:
            if output:
                output += "\n\n--- Error Output ---\n"
            output += self.stderr
        return output or "No output"
