"""
Workflow execution session.

Drives one workflow run at a time through its steps: current step
pointer, completed steps, opened links, a single paused snapshot that
can be resumed by starting the same workflow again, and run history
records. Step commands are handed to a CommandRunner and their outcome
lands in a CommandResultStore.

All transitions are synchronous and run to completion. Calls made with
no active workflow, or with an out-of-range step, are ignored rather
than raising.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
import webbrowser
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, FrozenSet, Optional

from command_runner import CommandRunner
from link_opener import open_link
from persistence.command_results import CommandResultStore
from persistence.run_history import RunHistorySink
from workflow_models import (
    CommandExecutionState,
    CommandResult,
    Workflow,
    WorkflowRun,
    WorkflowStep,
)

logger = logging.getLogger(__name__)


class SessionEvent(str, Enum):
    STARTED = "started"
    RESUMED = "resumed"
    STEP_CHANGED = "step_changed"
    LINK_OPENED = "link_opened"
    PAUSED = "paused"
    COMPLETED = "completed"
    RESET = "reset"
    IGNORED = "ignored"


@dataclass(frozen=True)
class ExecutionState:
    """Read-only view of the active run."""

    workflow: Workflow
    current_step: int
    completed_steps: FrozenSet[int]
    opened_links: FrozenSet[int]

    @property
    def step(self) -> WorkflowStep:
        return self.workflow.steps[self.current_step]

    @property
    def is_last_step(self) -> bool:
        return self.current_step == len(self.workflow.steps) - 1


@dataclass(frozen=True)
class PausedSnapshot:
    workflow_id: uuid.UUID
    current_step: int
    completed_steps: FrozenSet[int]
    opened_links: FrozenSet[int]
    started_at: datetime


class WorkflowSession:
    """
    Execution state machine for a single user.

    Every mutating method returns the SessionEvent it produced and passes
    it to on_change, if given.
    """

    def __init__(
        self,
        history: Optional[RunHistorySink] = None,
        command_store: Optional[CommandResultStore] = None,
        command_runner: Optional[CommandRunner] = None,
        link_opener: Callable[[str], bool] = webbrowser.open,
        on_change: Optional[Callable[[SessionEvent], None]] = None,
    ):
        self.history = history
        self.command_store = command_store if command_store is not None else CommandResultStore()
        self.command_runner = command_runner if command_runner is not None else CommandRunner()
        self.link_opener = link_opener
        self.on_change = on_change

        self.workflow: Optional[Workflow] = None
        self.current_step = 0
        self.completed_steps: set[int] = set()
        self.opened_links: set[int] = set()
        self.last_run: Optional[WorkflowRun] = None

        self._run: Optional[WorkflowRun] = None
        self._paused: Optional[PausedSnapshot] = None

    # --- Queries ---

    @property
    def is_active(self) -> bool:
        return self.workflow is not None

    @property
    def state(self) -> Optional[ExecutionState]:
        if self.workflow is None:
            return None
        return ExecutionState(
            workflow=self.workflow,
            current_step=self.current_step,
            completed_steps=frozenset(self.completed_steps),
            opened_links=frozenset(self.opened_links),
        )

    @property
    def paused(self) -> Optional[PausedSnapshot]:
        return self._paused

    def _step_index(self, step: Optional[int]) -> Optional[int]:
        """Resolve an optional step argument against the active run."""
        if self.workflow is None:
            return None
        index = self.current_step if step is None else step
        if not 0 <= index < len(self.workflow.steps):
            return None
        return index

    # --- Transitions ---

    def start(self, workflow: Workflow) -> SessionEvent:
        """Start a workflow, or resume it if it is the paused one."""
        if not workflow.steps:
            logger.warning(f"Refusing to start workflow with no steps: {workflow.name}")
            return SessionEvent.IGNORED

        paused = self._paused
        if paused is not None and paused.workflow_id == workflow.id:
            self._paused = None
            self.workflow = workflow
            self.current_step = paused.current_step
            self.completed_steps = set(paused.completed_steps)
            self.opened_links = set(paused.opened_links)
            self._run = self._new_run(workflow, paused.started_at)
            logger.info(f"Resumed workflow {workflow.name} at step {self.current_step}")
            return self._emit(SessionEvent.RESUMED)

        if paused is not None:
            logger.info("Discarding paused workflow snapshot")
            self._paused = None

        self.workflow = workflow
        self.current_step = 0
        self.completed_steps = set()
        self.opened_links = set()
        self._run = self._new_run(workflow, datetime.now(timezone.utc))
        self._record(self._run)
        logger.info(f"Started workflow {workflow.name}")
        return self._emit(SessionEvent.STARTED)

    def toggle_completion(self, step: Optional[int] = None) -> SessionEvent:
        """
        Mark a step (default: the current one) done, or undo it.

        Completing the last open step completes the run. Otherwise the
        pointer moves to the next open step after the current one,
        wrapping around to the start.
        """
        index = self._step_index(step)
        if index is None:
            return SessionEvent.IGNORED

        if index in self.completed_steps:
            self.completed_steps.remove(index)
        else:
            self.completed_steps.add(index)
            if len(self.completed_steps) == len(self.workflow.steps):
                return self.complete()

        self.current_step = self._next_open_step()
        return self._emit(SessionEvent.STEP_CHANGED)

    def _next_open_step(self) -> int:
        count = len(self.workflow.steps)
        for offset in range(1, count + 1):
            candidate = (self.current_step + offset) % count
            if candidate not in self.completed_steps:
                return candidate
        return self.current_step

    def next_step(self) -> SessionEvent:
        """Move forward one step; moving past the last step completes the run."""
        if self.workflow is None:
            return SessionEvent.IGNORED
        if self.current_step < len(self.workflow.steps) - 1:
            self.current_step += 1
            return self._emit(SessionEvent.STEP_CHANGED)
        return self.complete()

    def previous_step(self) -> SessionEvent:
        if self.workflow is None or self.current_step == 0:
            return SessionEvent.IGNORED
        self.current_step -= 1
        return self._emit(SessionEvent.STEP_CHANGED)

    def mark_link_opened(self, step: Optional[int] = None) -> SessionEvent:
        index = self._step_index(step)
        if index is None:
            return SessionEvent.IGNORED
        self.opened_links.add(index)
        return self._emit(SessionEvent.LINK_OPENED)

    def open_step_link(self, step: Optional[int] = None) -> SessionEvent:
        """Open a step's link with the configured opener and mark it opened."""
        index = self._step_index(step)
        if index is None:
            return SessionEvent.IGNORED
        link = self.workflow.steps[index].link
        if not link or not open_link(link, opener=self.link_opener):
            return SessionEvent.IGNORED
        return self.mark_link_opened(index)

    def pause(self) -> SessionEvent:
        """Set the run aside. Starting the same workflow again resumes it."""
        if self.workflow is None:
            return SessionEvent.IGNORED
        self._paused = PausedSnapshot(
            workflow_id=self.workflow.id,
            current_step=self.current_step,
            completed_steps=frozenset(self.completed_steps),
            opened_links=frozenset(self.opened_links),
            started_at=self._run.started_at,
        )
        logger.info(f"Paused workflow {self.workflow.name} at step {self.current_step}")
        self._clear_active()
        return self._emit(SessionEvent.PAUSED)

    def complete(self) -> SessionEvent:
        """Finish the run and record it in history."""
        if self.workflow is None:
            return SessionEvent.IGNORED

        workflow = self.workflow
        self._record(self._run.model_copy(update={
            "completed_at": datetime.now(timezone.utc),
            "steps_completed": self.current_step + 1,
        }))
        if self._paused is not None and self._paused.workflow_id == workflow.id:
            self._paused = None

        logger.info(f"Completed workflow {workflow.name}")
        self._clear_active()
        return self._emit(SessionEvent.COMPLETED)

    def reset(self) -> SessionEvent:
        """Start the active run over from the first step."""
        if self.workflow is None:
            return SessionEvent.IGNORED
        self.completed_steps.clear()
        self.opened_links.clear()
        self.current_step = 0
        return self._emit(SessionEvent.RESET)

    # --- Step commands ---

    def command_state(self, step: Optional[int] = None) -> CommandExecutionState:
        index = self._step_index(step)
        if index is None:
            return CommandExecutionState.READY
        return self.command_store.get_state(self.workflow.id, self.workflow.steps[index].id)

    def command_result(self, step: Optional[int] = None) -> Optional[CommandResult]:
        index = self._step_index(step)
        if index is None:
            return None
        return self.command_store.get_result(self.workflow.id, self.workflow.steps[index].id)

    def _claim_command(self, step: Optional[int]) -> Optional[tuple[Workflow, WorkflowStep]]:
        """Mark a step's command RUNNING, unless it has none or is already running."""
        index = self._step_index(step)
        if index is None:
            return None
        workflow = self.workflow
        target = workflow.steps[index]
        if not target.command:
            return None
        if self.command_store.get_state(workflow.id, target.id) is CommandExecutionState.RUNNING:
            logger.info(f"Command for step {target.name} is already running")
            return None
        self.command_store.set_state(CommandExecutionState.RUNNING, workflow.id, target.id)
        return workflow, target

    async def _execute(
        self,
        workflow: Workflow,
        step: WorkflowStep,
        extra_env: Optional[dict[str, str]],
    ) -> CommandResult:
        result = await self.command_runner.execute(
            step.command, workflow.name, step.name, extra_env,
        )
        # Keyed by the run that launched it, even if the session has moved on
        state = self.command_store.record_outcome(result, workflow.id, step.id)
        logger.info(f"Step {step.name} command finished: {state.value}")
        return result

    async def run_step_command(
        self,
        step: Optional[int] = None,
        extra_env: Optional[dict[str, str]] = None,
    ) -> Optional[CommandResult]:
        """
        Run a step's command and wait for the result.

        Returns None without running anything if the step has no command
        or its command is already running.
        """
        target = self._claim_command(step)
        if target is None:
            return None
        return await self._execute(*target, extra_env)

    def start_step_command(
        self,
        step: Optional[int] = None,
        extra_env: Optional[dict[str, str]] = None,
    ) -> Optional[asyncio.Task]:
        """
        Launch a step's command in the background on the running loop.

        The step is RUNNING in the store before this returns.
        """
        target = self._claim_command(step)
        if target is None:
            return None
        return asyncio.create_task(self._execute(*target, extra_env))

    def clear_command_results(self, workflow_id: Optional[uuid.UUID] = None) -> None:
        if workflow_id is None:
            self.command_store.clear_all()
        else:
            self.command_store.clear_workflow(workflow_id)

    # --- Helpers ---

    @staticmethod
    def _new_run(workflow: Workflow, started_at: datetime) -> WorkflowRun:
        return WorkflowRun(
            workflow_id=str(workflow.id),
            workflow_name=workflow.name,
            started_at=started_at,
            total_steps=len(workflow.steps),
        )

    def _record(self, run: WorkflowRun) -> None:
        self.last_run = run
        if self.history is not None:
            self.history.record_run(run)

    def _clear_active(self) -> None:
        self.workflow = None
        self.current_step = 0
        self.completed_steps = set()
        self.opened_links = set()
        self._run = None

    def _emit(self, event: SessionEvent) -> SessionEvent:
        logger.debug(f"Session event: {event.value}")
        if self.on_change is not None:
            self.on_change(event)
        return event
