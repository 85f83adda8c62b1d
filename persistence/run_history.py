"""
Run history for workflows.

Keeps the latest WorkflowRun per workflow id and persists the set as a
JSON list, newest first.
"""

from typing import Protocol, Dict, List, Optional, Union
from pathlib import Path
from datetime import datetime, timezone
import json
import logging

from pydantic import TypeAdapter, ValidationError

from workflow_models import WorkflowRun

logger = logging.getLogger(__name__)

_RUNS_ADAPTER = TypeAdapter(List[WorkflowRun])


class RunHistorySink(Protocol):
    """
    Receives run-started and run-completed records from a WorkflowSession.
    """

    def record_run(self, run: WorkflowRun) -> None:
        """Store a run record, replacing the previous one for its workflow."""
        ...


class JSONRunHistory:
    """
    JSON-file implementation of RunHistorySink.

    Every record_run() rewrites the file.
    """

    def __init__(self, history_file: Union[str, Path]):
        """
        Initialize the history store.

        Args:
            history_file: JSON file holding the run list
        """
        self.history_file = Path(history_file)
        self.history_file.parent.mkdir(parents=True, exist_ok=True)

        # workflow id -> last run
        self.history: Dict[str, WorkflowRun] = {}

        self._load_history()

    def _load_history(self) -> None:
        """Load existing history from disk, keeping the most recent run per workflow."""
        if not self.history_file.exists():
            return

        try:
            with open(self.history_file, 'r', encoding='utf-8') as f:
                runs = _RUNS_ADAPTER.validate_python(json.load(f))
        except (OSError, ValueError, ValidationError) as e:
            logger.warning(f"Could not load history from {self.history_file}: {e}")
            return

        for run in runs:
            existing = self.history.get(run.workflow_id)
            if existing is None or run.started_at > existing.started_at:
                self.history[run.workflow_id] = run

    def record_run(self, run: WorkflowRun) -> None:
        self.history[run.workflow_id] = run
        self.save()

    def get_last_run(self, workflow_id: str) -> Optional[WorkflowRun]:
        return self.history.get(workflow_id)

    def runs(self) -> List[WorkflowRun]:
        """All runs, newest first."""
        return sorted(self.history.values(), key=lambda r: r.started_at, reverse=True)

    def save(self) -> None:
        """Persist history to disk."""
        with open(self.history_file, 'wb') as f:
            f.write(_RUNS_ADAPTER.dump_json(self.runs(), indent=2))

    def clear(self) -> None:
        self.history.clear()
        if self.history_file.exists():
            self.history_file.unlink()


def format_last_run(started_at: datetime, now: Optional[datetime] = None) -> str:
    """
    Short relative time for a run: "just now", "5m ago", "3h ago", "2d ago",
    or the date ("Mar 4") for anything older than a week.
    """
    now = now or datetime.now(timezone.utc)
    seconds = (now - started_at).total_seconds()

    if seconds < 60:
        return "just now"
    if seconds < 3600:
        return f"{int(seconds // 60)}m ago"
    if seconds < 86400:
        return f"{int(seconds // 3600)}h ago"
    if seconds < 604800:
        return f"{int(seconds // 86400)}d ago"
    return f"{started_at.strftime('%b')} {started_at.day}"
