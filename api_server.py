"""
humancron API Server

FastAPI server that loads the workflow definitions from a directory and
exposes one execution session over HTTP: start/pause/resume workflows,
step through them, open links, and run step commands in the background.

Usage:
    python -m uvicorn api_server:create_app --factory --host 127.0.0.1 --port 8080
    # or
    python api_server.py
"""

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

import humancron_config
from command_runner import CommandRunner
from persistence.command_results import CommandResultStore
from persistence.run_history import JSONRunHistory, format_last_run
from workflow_loader import (
    WorkflowParseError,
    dump_workflow,
    ensure_workflows_directory,
    load_workflow_file,
    load_workflows,
    validate_workflow,
    workflow_filename,
)
from workflow_models import Automation, CommandExecutionState, Workflow, WorkflowStep
from workflow_session import SessionEvent, WorkflowSession

logger = logging.getLogger(__name__)


# --- Request/Response models ---


class StartRequest(BaseModel):
    workflow_id: uuid.UUID


class ToggleRequest(BaseModel):
    step: Optional[int] = None


class CommandRequest(BaseModel):
    env: dict[str, str] = Field(default_factory=dict)


class StepCreate(BaseModel):
    name: str
    description: str
    link: Optional[str] = None
    command: Optional[str] = None
    duration: Optional[float] = None
    automations: Optional[list[Automation]] = None


class WorkflowCreate(BaseModel):
    name: str
    description: str
    hotkey: Optional[str] = None
    steps: list[StepCreate]


class SessionInfo(BaseModel):
    active: bool
    workflow_id: Optional[str] = None
    workflow_name: Optional[str] = None
    current_step: Optional[int] = None
    total_steps: Optional[int] = None
    completed_steps: list[int] = Field(default_factory=list)
    opened_links: list[int] = Field(default_factory=list)
    paused_workflow_id: Optional[str] = None


class SessionResponse(BaseModel):
    event: SessionEvent
    session: SessionInfo


# --- Helpers ---


def _step_info(step: WorkflowStep, index: int) -> dict:
    return {"index": index, "id": str(step.id), **step.model_dump(mode="json")}


def _workflow_summary(workflow: Workflow, history: JSONRunHistory) -> dict:
    last_run = history.get_last_run(str(workflow.id))
    return {
        "id": str(workflow.id),
        "name": workflow.name,
        "description": workflow.description,
        "hotkey": workflow.hotkey,
        "total_steps": len(workflow.steps),
        "total_duration": workflow.total_duration,
        "file_path": workflow.file_path,
        "last_run": format_last_run(last_run.started_at) if last_run else None,
    }


def _session_info(session: WorkflowSession) -> SessionInfo:
    paused = session.paused
    info = SessionInfo(
        active=session.is_active,
        paused_workflow_id=str(paused.workflow_id) if paused else None,
    )
    state = session.state
    if state is None:
        return info
    return info.model_copy(update={
        "workflow_id": str(state.workflow.id),
        "workflow_name": state.workflow.name,
        "current_step": state.current_step,
        "total_steps": len(state.workflow.steps),
        "completed_steps": sorted(state.completed_steps),
        "opened_links": sorted(state.opened_links),
    })


def create_app(
    workflows_dir: Optional[Path] = None,
    history_file: Optional[Path] = None,
    runner: Optional[CommandRunner] = None,
    link_opener: Optional[Callable[[str], bool]] = None,
) -> FastAPI:
    """
    Build the app with its own session, result store and history.

    Args:
        workflows_dir: Directory of definition files (default from config)
        history_file: Run history JSON file (default from config)
        runner: Command runner (default: one rooted at workflows_dir)
        link_opener: Callable that opens a resolved link (default: webbrowser)
    """
    workflows_dir = Path(workflows_dir or humancron_config.WORKFLOWS_DIR)
    history = JSONRunHistory(history_file or humancron_config.HISTORY_FILE)
    store = CommandResultStore()
    session_kwargs = {}
    if link_opener is not None:
        session_kwargs["link_opener"] = link_opener
    session = WorkflowSession(
        history=history,
        command_store=store,
        command_runner=runner or CommandRunner(workflows_dir=workflows_dir),
        **session_kwargs,
    )

    workflows: dict[str, Workflow] = {}
    # Keeps references to background command tasks until they finish
    command_tasks: set[asyncio.Task] = set()

    def reload_workflows() -> int:
        workflows.clear()
        if not workflows_dir.is_dir():
            logger.warning(f"Workflows directory does not exist: {workflows_dir}")
            return 0
        for workflow in load_workflows(workflows_dir):
            workflows[str(workflow.id)] = workflow
        return len(workflows)

    def get_workflow(workflow_id: str) -> Workflow:
        if workflow_id not in workflows:
            raise HTTPException(status_code=404, detail="Workflow not found")
        return workflows[workflow_id]

    def respond(event: SessionEvent) -> SessionResponse:
        return SessionResponse(event=event, session=_session_info(session))

    reload_workflows()

    app = FastAPI(
        title="humancron API",
        description="HTTP control surface for running personal workflows step by step",
        version="1.0.0",
    )
    app.state.session = session
    app.state.history = history
    app.state.workflows = workflows

    # --- Endpoints ---

    @app.get("/health")
    async def health():
        return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}

    # --- Workflows ---

    @app.get("/api/workflows")
    async def list_workflows():
        """List loaded workflows, sorted by name."""
        ordered = sorted(workflows.values(), key=lambda w: w.name)
        return [_workflow_summary(w, history) for w in ordered]

    @app.post("/api/workflows/reload")
    async def reload():
        """Rescan the workflows directory. Every workflow gets a new id."""
        count = reload_workflows()
        return {"status": "reloaded", "count": count}

    @app.get("/api/workflows/{workflow_id}")
    async def get_workflow_detail(workflow_id: str):
        workflow = get_workflow(workflow_id)
        return {
            **_workflow_summary(workflow, history),
            "steps": [_step_info(s, i) for i, s in enumerate(workflow.steps)],
        }

    @app.post("/api/workflows", status_code=201)
    async def create_workflow(req: WorkflowCreate):
        """Validate a workflow from structured fields and write it as a definition file."""
        workflow = Workflow(
            name=req.name,
            description=req.description,
            hotkey=req.hotkey,
            steps=[WorkflowStep(**s.model_dump()) for s in req.steps],
        )
        try:
            validate_workflow(workflow)
            file_path = workflows_dir / workflow_filename(req.name)
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e))
        if file_path.exists():
            raise HTTPException(status_code=409, detail="Workflow file already exists")

        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_path.write_text(dump_workflow(workflow), encoding="utf-8")

        try:
            loaded = load_workflow_file(file_path)
        except WorkflowParseError as e:
            file_path.unlink()
            raise HTTPException(status_code=422, detail=str(e))
        workflows[str(loaded.id)] = loaded
        return {"status": "created", "id": str(loaded.id), "path": file_path.name}

    # --- Session ---

    @app.get("/api/session", response_model=SessionInfo)
    async def get_session():
        return _session_info(session)

    @app.post("/api/session/start", response_model=SessionResponse)
    async def start(req: StartRequest):
        """Start a workflow, resuming it if it is the paused one."""
        return respond(session.start(get_workflow(str(req.workflow_id))))

    @app.post("/api/session/toggle", response_model=SessionResponse)
    async def toggle(req: ToggleRequest):
        return respond(session.toggle_completion(req.step))

    @app.post("/api/session/next", response_model=SessionResponse)
    async def next_step():
        return respond(session.next_step())

    @app.post("/api/session/previous", response_model=SessionResponse)
    async def previous_step():
        return respond(session.previous_step())

    @app.post("/api/session/pause", response_model=SessionResponse)
    async def pause():
        return respond(session.pause())

    @app.post("/api/session/reset", response_model=SessionResponse)
    async def reset():
        return respond(session.reset())

    @app.post("/api/session/complete", response_model=SessionResponse)
    async def complete():
        return respond(session.complete())

    @app.post("/api/session/steps/{index}/open-link", response_model=SessionResponse)
    async def open_step_link(index: int):
        return respond(session.open_step_link(index))

    @app.post("/api/session/steps/{index}/command")
    async def run_step_command(index: int, req: Optional[CommandRequest] = None):
        """Start a step's command in the background; poll /api/commands for the result."""
        state = session.state
        if state is None:
            raise HTTPException(status_code=409, detail="No active workflow")
        if not 0 <= index < len(state.workflow.steps):
            raise HTTPException(status_code=404, detail="Step not found")
        step = state.workflow.steps[index]
        if not step.command:
            raise HTTPException(status_code=404, detail="Step has no command")
        if session.command_state(index) is CommandExecutionState.RUNNING:
            raise HTTPException(status_code=409, detail="Command already running")

        task = session.start_step_command(index, req.env if req else None)
        command_tasks.add(task)
        task.add_done_callback(command_tasks.discard)
        return {
            "status": CommandExecutionState.RUNNING.value,
            "workflow_id": str(state.workflow.id),
            "step_id": str(step.id),
        }

    # --- Command results ---

    @app.get("/api/commands/{workflow_id}/{step_id}")
    async def get_command(workflow_id: uuid.UUID, step_id: uuid.UUID):
        result = store.get_result(workflow_id, step_id)
        return {
            "state": store.get_state(workflow_id, step_id).value,
            "result": None if result is None else {
                **result.model_dump(mode="json", exclude={"environment"}),
                "summary": result.display_summary,
                "duration_fmt": result.duration_string,
            },
        }

    @app.delete("/api/commands/{workflow_id}")
    async def clear_workflow_commands(workflow_id: uuid.UUID):
        session.clear_command_results(workflow_id)
        return {"status": "cleared", "workflow_id": str(workflow_id)}

    @app.delete("/api/commands")
    async def clear_all_commands():
        session.clear_command_results()
        return {"status": "cleared"}

    # --- History ---

    @app.get("/api/history")
    async def list_history():
        return [
            {**run.model_dump(mode="json"), "last_run": format_last_run(run.started_at)}
            for run in history.runs()
        ]

    return app


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )
    ensure_workflows_directory(humancron_config.WORKFLOWS_DIR)
    uvicorn.run(create_app(), host=humancron_config.API_HOST, port=humancron_config.API_PORT)
