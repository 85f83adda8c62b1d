"""
Latest command execution state and result per workflow step.

Entries are keyed by (workflow id, step id) and held in memory only.
A new execution of a step overwrites the previous entry.
"""

from typing import Dict, Optional, Tuple
import uuid

from workflow_models import CommandExecutionState, CommandResult

StepKey = Tuple[uuid.UUID, uuid.UUID]


class CommandResultStore:
    """
    In-memory map of (workflow id, step id) -> state and result.

    Not thread-safe; all mutations happen on the session's event loop.
    The store does not stop a second execution of a running step,
    callers check for RUNNING first.
    """

    def __init__(self):
        self.states: Dict[StepKey, CommandExecutionState] = {}
        self.results: Dict[StepKey, CommandResult] = {}

    def get_state(self, workflow_id: uuid.UUID, step_id: uuid.UUID) -> CommandExecutionState:
        """State for a step, READY if it has never run."""
        return self.states.get((workflow_id, step_id), CommandExecutionState.READY)

    def get_result(self, workflow_id: uuid.UUID, step_id: uuid.UUID) -> Optional[CommandResult]:
        return self.results.get((workflow_id, step_id))

    def set_state(self, state: CommandExecutionState,
                  workflow_id: uuid.UUID, step_id: uuid.UUID) -> None:
        self.states[(workflow_id, step_id)] = state

    def set_result(self, result: CommandResult,
                   workflow_id: uuid.UUID, step_id: uuid.UUID) -> None:
        self.results[(workflow_id, step_id)] = result

    def record_outcome(self, result: CommandResult,
                       workflow_id: uuid.UUID, step_id: uuid.UUID) -> CommandExecutionState:
        """
        Store a finished result together with its SUCCESS/FAILURE state.

        Returns:
            The state that was recorded
        """
        state = CommandExecutionState.SUCCESS if result.is_success else CommandExecutionState.FAILURE
        key = (workflow_id, step_id)
        self.results[key] = result
        self.states[key] = state
        return state

    def clear_workflow(self, workflow_id: uuid.UUID) -> None:
        """Remove every entry belonging to one workflow."""
        self.states = {k: v for k, v in self.states.items() if k[0] != workflow_id}
        self.results = {k: v for k, v in self.results.items() if k[0] != workflow_id}

    def clear_all(self) -> None:
        self.states.clear()
        self.results.clear()

    def __len__(self) -> int:
        return len(self.states.keys() | self.results.keys())
