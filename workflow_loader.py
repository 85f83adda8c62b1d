"""
Workflow definition loader.

Parses the restricted, indentation-sensitive definition format into
Workflow models, validates them, and loads whole directories of
definition files.

The format is a fixed three-level schema, not general YAML:

    name: "Daily Planning"
    description: "Review calendar and plan the day"
    hotkey: "cmd+1"
    steps:
      - name: "Check Calendar"
        description: "Review today's meetings"
        link: "https://calendar.example.com"
        duration: 180
        command: "echo hi"
        automations:
          - type: "n8n"
            webhook: "https://n8n.example.com/webhook/x"
            parameters:
              key: "value"
"""

from __future__ import annotations

import json
import logging
import math
import re
import textwrap
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Union

import yaml

import humancron_config
from workflow_models import Automation, AutomationType, Workflow, WorkflowStep

logger = logging.getLogger(__name__)

# A "#" starts a comment at the beginning of a value or after whitespace
_COMMENT_RE = re.compile(r"(^|\s)#")


class WorkflowParseError(ValueError):
    """Base class for errors raised while loading a definition."""


class InvalidFormatError(WorkflowParseError):
    """The text did not yield the minimum workflow structure."""

    def __init__(self, reason: str = "definition has no steps"):
        super().__init__(f"Invalid workflow format: {reason}")
        self.reason = reason


class WorkflowValidationError(WorkflowParseError):
    """A parsed workflow failed validation. `field` is a path like steps[0].link."""

    def __init__(self, message: str, field: str):
        super().__init__(message)
        self.field = field


class MissingRequiredFieldError(WorkflowValidationError):
    def __init__(self, path: str):
        super().__init__(f"Missing required field: {path}", path)
        self.path = path


class InvalidFieldTypeError(WorkflowValidationError):
    def __init__(self, field: str, expected: str):
        super().__init__(f"Invalid value for {field}: expected {expected}", field)
        self.expected = expected


# --- Line tokenizer ---


@dataclass
class _Line:
    indent: int  # column of the first character, "-" included
    is_item: bool  # starts with a "-" list marker
    key: Optional[str]
    value: Optional[str]
    key_indent: int = 0  # column of the key itself


def _quoted_end(text: str) -> int:
    """Index just past the quoted scalar opening `text`, or -1 if unterminated."""
    quote = text[0]
    i = 1
    while i < len(text):
        char = text[i]
        if quote == '"' and char == "\\":
            i += 2
            continue
        if char == quote:
            # '' is an escaped quote inside a single-quoted scalar
            if quote == "'" and text[i + 1:i + 2] == "'":
                i += 2
                continue
            return i + 1
        i += 1
    return -1


def _strip_comment(raw: str) -> str:
    text = raw.strip()
    start = 0
    # Skip over a leading quoted scalar so "#" inside it survives
    if text[:1] in ("'", '"'):
        start = max(_quoted_end(text), 0)
    match = _COMMENT_RE.search(text, start)
    if match:
        return text[:match.start()]
    return text


def _unquote(value: str) -> str:
    """Resolve a quoted scalar, escapes included."""
    try:
        loaded = yaml.safe_load(value)
    except yaml.YAMLError:
        loaded = None
    if isinstance(loaded, str):
        return loaded
    return value[1:-1]


def _clean_value(raw: str) -> Optional[str]:
    """Strip comment, whitespace and one surrounding pair of quotes. Empty -> None."""
    value = _strip_comment(raw).strip()
    if len(value) >= 2 and value[0] in ("'", '"') and _quoted_end(value) == len(value):
        value = _unquote(value)
    elif len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        value = value[1:-1]
    return value or None


def _tokenize(raw_line: str) -> Optional[_Line]:
    stripped = raw_line.strip()
    if not stripped or stripped.startswith("#"):
        return None

    indent = len(raw_line) - len(raw_line.lstrip(" "))
    is_item = stripped == "-" or stripped.startswith("- ")
    body = stripped[1:].lstrip() if is_item else stripped
    key_indent = indent + len(stripped) - len(body)

    if ":" in body:
        key, _, value = body.partition(":")
        return _Line(indent, is_item, key.strip(), _clean_value(value), key_indent)
    if is_item:
        return _Line(indent, True, None, None, key_indent)
    # Not a key/value pair
    return None


def _parse_duration(value: Optional[str]) -> Optional[float]:
    if value is None:
        return None
    try:
        seconds = float(value)
    except ValueError:
        logger.warning(f"Ignoring non-numeric duration: {value!r}")
        return None
    if not math.isfinite(seconds):
        logger.warning(f"Ignoring non-finite duration: {value!r}")
        return None
    return seconds


# --- Per-level builders ---


@dataclass
class _AutomationBuilder:
    indent: int
    body_indent: Optional[int] = None
    type: Optional[str] = None
    webhook: Optional[str] = None
    parameters: Dict[str, str] = field(default_factory=dict)

    def set(self, key: str, value: Optional[str]) -> None:
        if key == "type":
            self.type = value
        elif key == "webhook":
            self.webhook = value

    def build(self) -> Optional[Automation]:
        try:
            automation_type = AutomationType(self.type)
        except ValueError:
            logger.warning(f"Dropping automation with unknown type: {self.type!r}")
            return None
        return Automation(
            type=automation_type,
            webhook=self.webhook,
            parameters=dict(self.parameters) or None,
        )


@dataclass
class _StepBuilder:
    indent: int = 0
    body_indent: Optional[int] = None
    name: Optional[str] = None
    description: Optional[str] = None
    link: Optional[str] = None
    command: Optional[str] = None
    duration: Optional[float] = None
    automations: List[Automation] = field(default_factory=list)

    def set(self, key: str, value: Optional[str]) -> None:
        if key == "duration":
            self.duration = _parse_duration(value)
        elif key in ("name", "description", "link", "command"):
            setattr(self, key, value)

    def add_automation(self, builder: _AutomationBuilder) -> None:
        automation = builder.build()
        if automation is not None:
            self.automations.append(automation)

    def build(self) -> WorkflowStep:
        # Missing name/description are left empty for validate_workflow to report
        return WorkflowStep(
            name=self.name or "",
            description=self.description or "",
            link=self.link,
            command=self.command,
            duration=self.duration,
            automations=list(self.automations) or None,
        )


@dataclass
class _WorkflowBuilder:
    name: Optional[str] = None
    description: Optional[str] = None
    hotkey: Optional[str] = None
    steps: List[WorkflowStep] = field(default_factory=list)

    def set(self, key: str, value: Optional[str]) -> None:
        if key in ("name", "description", "hotkey"):
            setattr(self, key, value)

    def build(self) -> Workflow:
        if not self.steps:
            raise InvalidFormatError()
        return Workflow(
            name=self.name or "",
            description=self.description or "",
            hotkey=self.hotkey,
            steps=self.steps,
        )


# --- Line state machine ---


class _Context(Enum):
    TOP = "top"
    STEPS = "steps"
    AUTOMATIONS = "automations"
    PARAMETERS = "parameters"


def _is_body_line(builder: Union[_StepBuilder, _AutomationBuilder], line: _Line) -> bool:
    """True if `line` is a direct key of the builder's item rather than nested deeper."""
    if builder.body_indent is None:
        builder.body_indent = line.indent
    return line.indent <= builder.body_indent


class _DefinitionParser:
    """
    Single pass over tokenized lines.

    TOP --steps:--> STEPS --automations:--> AUTOMATIONS --parameters:--> PARAMETERS

    A line that does not belong to the innermost context closes it and is
    handed to the enclosing one. A builder is flushed into its parent when
    a sibling "-" marker arrives or its context closes. Any key at indent 0
    closes the steps context.

    Step and automation keys live at the column of their first key. Anything
    deeper sits under an unknown key and is skipped.
    """

    def __init__(self):
        self.context = _Context.TOP
        self.workflow = _WorkflowBuilder()
        self.step: Optional[_StepBuilder] = None
        self.automation: Optional[_AutomationBuilder] = None
        self.automations_indent = 0
        self.parameters_indent = 0
        self.parameters_body_indent: Optional[int] = None

    def feed(self, line: _Line) -> None:
        if line.indent == 0 and not line.is_item:
            self._close_steps()
            if line.key == "steps":
                self.context = _Context.STEPS
            else:
                self.workflow.set(line.key, line.value)
            return

        if self.context is _Context.PARAMETERS and self._feed_parameters(line):
            return
        if self.context is _Context.AUTOMATIONS and self._feed_automations(line):
            return
        if self.context is _Context.STEPS:
            self._feed_steps(line)
        # Nested content under an unknown top-level key is ignored

    def finish(self) -> Workflow:
        self._close_steps()
        return self.workflow.build()

    def _feed_parameters(self, line: _Line) -> bool:
        if line.indent <= self.parameters_indent:
            self.context = _Context.AUTOMATIONS
            return False
        if self.parameters_body_indent is None:
            self.parameters_body_indent = line.indent
        if not line.is_item and line.indent <= self.parameters_body_indent:
            self.automation.parameters[line.key] = line.value or ""
        return True

    def _feed_automations(self, line: _Line) -> bool:
        if self.automation is not None and line.indent > self.automation.indent:
            if line.is_item or not _is_body_line(self.automation, line):
                return True
            if line.key == "parameters":
                self.context = _Context.PARAMETERS
                self.parameters_indent = line.indent
                self.parameters_body_indent = None
            else:
                self.automation.set(line.key, line.value)
            return True

        if line.is_item and line.indent >= self.automations_indent:
            self._flush_automation()
            self.automation = _AutomationBuilder(indent=line.indent)
            if line.key:
                self.automation.body_indent = line.key_indent
                self.automation.set(line.key, line.value)
            return True

        self._flush_automation()
        self.context = _Context.STEPS
        return False

    def _feed_steps(self, line: _Line) -> None:
        if line.is_item:
            if self.step is not None and line.indent > self.step.indent:
                return
            self._flush_step()
            self.step = _StepBuilder(indent=line.indent)
            if line.key:
                self.step.body_indent = line.key_indent
                self.step.set(line.key, line.value)
            return

        if self.step is None or not _is_body_line(self.step, line):
            return
        if line.key == "automations":
            self.context = _Context.AUTOMATIONS
            self.automations_indent = line.indent
        else:
            self.step.set(line.key, line.value)

    def _flush_automation(self) -> None:
        if self.automation is not None and self.step is not None:
            self.step.add_automation(self.automation)
        self.automation = None

    def _flush_step(self) -> None:
        self._flush_automation()
        if self.step is not None:
            self.workflow.steps.append(self.step.build())
        self.step = None

    def _close_steps(self) -> None:
        self._flush_step()
        self.context = _Context.TOP


def parse_workflow(text: str) -> Workflow:
    """
    Parse definition text into a Workflow.

    Raises:
        InvalidFormatError: If no steps could be read from the text
    """
    parser = _DefinitionParser()
    for raw_line in text.splitlines():
        line = _tokenize(raw_line)
        if line is not None:
            parser.feed(line)
    return parser.finish()


def validate_workflow(workflow: Workflow) -> None:
    """
    Check required fields and link formats.

    Runs on the workflow as parsed, before the finish step is appended.

    Raises:
        MissingRequiredFieldError: If a required field is empty
        InvalidFieldTypeError: If a step link is neither a URL nor a path
    """
    if not workflow.name:
        raise MissingRequiredFieldError("name")
    if not workflow.description:
        raise MissingRequiredFieldError("description")
    if not workflow.steps:
        raise MissingRequiredFieldError("steps")

    for index, step in enumerate(workflow.steps):
        if not step.name:
            raise MissingRequiredFieldError(f"steps[{index}].name")
        if not step.description:
            raise MissingRequiredFieldError(f"steps[{index}].description")
        if step.link and "://" not in step.link and not step.link.startswith("/"):
            raise InvalidFieldTypeError(f"steps[{index}].link", "valid URL or path")


def workflow_warnings(workflow: Workflow) -> List[str]:
    """
    Return non-fatal warnings for a workflow (empty if none).
    """
    warnings = []
    seen_names = set()

    for index, step in enumerate(workflow.steps):
        if step.is_finish_step:
            continue

        if step.name in seen_names:
            warnings.append(f"Duplicate step name: {step.name}")
        seen_names.add(step.name)

        if step.duration is not None:
            if step.duration <= 0:
                warnings.append(f"steps[{index}].duration is not positive: {step.duration:g}")
            elif step.duration > humancron_config.MAX_REASONABLE_DURATION:
                warnings.append(f"steps[{index}].duration is very long: {step.duration:g}s")

        for a_index, automation in enumerate(step.automations or []):
            path = f"steps[{index}].automations[{a_index}]"
            if not automation.webhook:
                warnings.append(f"{path} has no webhook URL - it will never fire")
            elif not automation.webhook.startswith(("http://", "https://")):
                warnings.append(f"{path}.webhook may be invalid (missing http/https): {automation.webhook}")

    return warnings


def load_workflow(text: str, source_path: Union[str, Path, None] = None) -> Workflow:
    """
    Parse and validate definition text, then append the finish step.

    Args:
        text: Definition file contents
        source_path: File the text came from, kept for re-editing

    Returns:
        Workflow ending in the synthetic finish step

    Raises:
        WorkflowParseError: If the text is malformed or fails validation
    """
    workflow = parse_workflow(text)
    validate_workflow(workflow)
    return workflow.model_copy(update={
        "steps": [*workflow.steps, WorkflowStep.finish_step()],
        "file_path": str(source_path) if source_path is not None else None,
    })


def load_workflow_file(file_path: Union[str, Path]) -> Workflow:
    """
    Load a workflow from a definition file.

    Raises:
        FileNotFoundError: If file doesn't exist
        WorkflowParseError: If the definition is invalid
    """
    path = Path(file_path)

    if not path.exists():
        raise FileNotFoundError(f"Workflow file not found: {file_path}")

    with open(path, 'r', encoding='utf-8') as f:
        text = f.read()

    return load_workflow(text, path)


def load_workflows(directory: Union[str, Path]) -> List[Workflow]:
    """
    Load every .yaml/.yml definition in a directory, sorted by name.

    Files that fail to load are logged and skipped.
    """
    directory = Path(directory)
    workflows = []

    for path in sorted(directory.iterdir()):
        if not path.is_file() or path.suffix.lower() not in humancron_config.WORKFLOW_EXTENSIONS:
            continue
        try:
            workflows.append(load_workflow_file(path))
        except (OSError, UnicodeDecodeError, WorkflowParseError) as e:
            logger.warning(f"Failed to load workflow from {path.name}: {e}")

    logger.info(f"Loaded {len(workflows)} workflow(s) from {directory}")
    return sorted(workflows, key=lambda w: w.name)


# --- Writing definitions ---


class _DefinitionDumper(yaml.SafeDumper):
    """Indents block sequences under their key, as the parser expects."""

    def increase_indent(self, flow=False, indentless=False):
        return super().increase_indent(flow, False)


def _represent_str(dumper: yaml.SafeDumper, data: str) -> yaml.ScalarNode:
    # The parser reads one line per key, so line breaks must stay escaped
    style = '"' if "\n" in data or "\r" in data else None
    return dumper.represent_scalar("tag:yaml.org,2002:str", data, style=style)


_DefinitionDumper.add_representer(str, _represent_str)


def _step_to_dict(step: WorkflowStep) -> dict:
    data = step.model_dump(mode="json", exclude_none=True, exclude={"is_finish_step"})
    if step.duration is not None and step.duration.is_integer():
        data["duration"] = int(step.duration)
    return data


def dump_workflow(workflow: Workflow) -> str:
    """Serialise a workflow to definition text. The finish step is left out."""
    data: dict = {
        "name": workflow.name,
        "description": workflow.description,
    }
    if workflow.hotkey:
        data["hotkey"] = workflow.hotkey
    data["steps"] = [_step_to_dict(s) for s in workflow.steps if not s.is_finish_step]

    return yaml.dump(
        data,
        Dumper=_DefinitionDumper,
        default_flow_style=False,
        sort_keys=False,
        allow_unicode=True,
        width=float("inf"),
    )


def generate_sample_yaml() -> str:
    return textwrap.dedent("""\
        name: "Daily Planning"
        description: "Review calendar and plan the day"
        hotkey: "cmd+1"
        steps:
          - name: "Check Calendar"
            description: "Review today's meetings and events"
            link: "notion-calendar://"
            duration: 180

          - name: "Review Tasks"
            description: "Check Linear for today's priorities"
            link: "https://linear.app/team/inbox"
            automations:
              - type: "n8n"
                webhook: "https://n8n.example.com/webhook/daily-tasks"

          - name: "Update Status"
            description: "Post daily plan to Slack"
            link: "slack://channel?team=T123&id=C456"
        """)


def generate_workflow_template(name: str = "Workflow Name") -> str:
    return textwrap.dedent("""\
        # Workflow Template
        # Replace the values below with your workflow details

        name: {name}
        description: "Brief description of what this workflow does"
        hotkey: "cmd+1"  # Optional: keyboard shortcut for this specific workflow
        steps:
          - name: "Step 1"
            description: "What to do in this step"
            link: "app://path"  # Optional: URL or app scheme to open
            duration: 300  # Optional: expected duration in seconds

          - name: "Step 2"
            description: "Next action to take"
            link: "https://example.com"
            command: "echo done"  # Optional: shell command to run
            automations:  # Optional: automations to trigger
              - type: "n8n"
                webhook: "https://your-n8n-instance.com/webhook/xyz"
                parameters:
                  key: "value"
        """).replace("{name}", json.dumps(name, ensure_ascii=False))


_SAMPLE_WORKFLOWS = {
    "inbox-cleanse.yaml": textwrap.dedent("""\
        name: "Inbox Cleanse"
        description: "Process all inboxes and messages"
        hotkey: "cmd+2"
        steps:
          - name: "Email Triage"
            description: "Clean email inbox, archive or respond"
            link: "https://mail.google.com"
            duration: 300

          - name: "Slack Messages"
            description: "Review and respond to Slack messages"
            link: "slack://"
            duration: 300

          - name: "GitHub PRs"
            description: "Review pull requests"
            link: "https://github.com/pulls"
            duration: 600
        """),
    "weekly-review.yaml": textwrap.dedent("""\
        name: "Weekly Review"
        description: "Reflect on the week and plan ahead"
        hotkey: "cmd+3"
        steps:
          - name: "Journal"
            description: "Write weekly reflection"
            duration: 600

          - name: "Goals Review"
            description: "Check progress on goals"
            link: "notion://goals"
            duration: 300

          - name: "Next Week Planning"
            description: "Plan upcoming week"
            link: "https://calendar.google.com"
            duration: 300
        """),
}


def ensure_workflows_directory(directory: Union[str, Path]) -> Path:
    """Create the workflows directory, seeding sample workflows if it is empty."""
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)

    if not any(directory.iterdir()):
        logger.info(f"Creating sample workflows in {directory}")
        samples = {"daily-planning.yaml": generate_sample_yaml(), **_SAMPLE_WORKFLOWS}
        for filename, text in samples.items():
            (directory / filename).write_text(text, encoding='utf-8')

    return directory


def workflow_filename(name: str) -> str:
    """'Morning Routine!' -> 'morning-routine.yaml'"""
    slug = re.sub(r"[^a-z0-9-]", "", name.lower().replace(" ", "-"))
    if not slug:
        raise ValueError(f"Cannot derive a file name from workflow name: {name!r}")
    return f"{slug}.yaml"


def create_workflow_file(directory: Union[str, Path], name: str) -> Path:
    """
    Write a new definition from the template.

    Raises:
        ValueError: If no file name can be derived from the name
        FileExistsError: If the file is already there
    """
    path = Path(directory) / workflow_filename(name)
    if path.exists():
        raise FileExistsError(f"Workflow file already exists: {path}")

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(generate_workflow_template(name), encoding='utf-8')
    logger.info(f"Created workflow file {path}")
    return path
