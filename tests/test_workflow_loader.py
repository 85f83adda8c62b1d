"""
Unit tests for the workflow definition loader.

Covers the line parser, validation, and directory loading without
touching anything outside a temporary directory.
"""

import tempfile
import textwrap
import unittest
from pathlib import Path

from workflow_loader import (
    InvalidFieldTypeError,
    InvalidFormatError,
    MissingRequiredFieldError,
    WorkflowParseError,
    create_workflow_file,
    dump_workflow,
    ensure_workflows_directory,
    generate_sample_yaml,
    generate_workflow_template,
    load_workflow,
    load_workflow_file,
    load_workflows,
    parse_workflow,
    validate_workflow,
    workflow_filename,
    workflow_warnings,
)
from workflow_models import AutomationType, Workflow, WorkflowStep

FIXTURES = Path(__file__).parent / "fixtures"


def _text(source: str) -> str:
    return textwrap.dedent(source).lstrip("\n")


class TestLoadExample(unittest.TestCase):
    """The documented example file."""

    def setUp(self):
        self.path = FIXTURES / "daily-planning.yaml"
        self.workflow = load_workflow_file(self.path)

    def test_top_level_fields(self):
        self.assertEqual(self.workflow.name, "Daily Planning")
        self.assertEqual(self.workflow.description, "Review calendar and plan the day")
        self.assertEqual(self.workflow.hotkey, "cmd+1")
        self.assertEqual(self.workflow.file_path, str(self.path))

    def test_finish_step_appended(self):
        """One declared step plus the synthetic finish step."""
        self.assertEqual(len(self.workflow.steps), 2)
        self.assertFalse(self.workflow.steps[0].is_finish_step)
        finish = self.workflow.steps[-1]
        self.assertTrue(finish.is_finish_step)
        self.assertEqual(finish.name, "Finish Workflow")
        self.assertIsNone(finish.link)
        self.assertIsNone(finish.command)

    def test_step_fields(self):
        step = self.workflow.steps[0]
        self.assertEqual(step.name, "Check Calendar")
        self.assertEqual(step.description, "Review today's meetings")
        self.assertEqual(step.link, "https://calendar.example.com")
        self.assertEqual(step.duration, 180)
        self.assertEqual(step.command, "echo hi")

    def test_automation(self):
        automations = self.workflow.steps[0].automations
        self.assertEqual(len(automations), 1)
        self.assertEqual(automations[0].type, AutomationType.N8N)
        self.assertEqual(automations[0].webhook, "https://n8n.example.com/webhook/x")
        self.assertEqual(automations[0].parameters, {"key": "value"})


class TestParseWorkflow(unittest.TestCase):
    """Line-level parsing rules."""

    def test_quotes_and_whitespace_stripped(self):
        workflow = parse_workflow(_text("""
            name:    'Single Quoted'
            description: "  keeps inner spaces  "
            steps:
              - name: Plain
                description: text
            """))
        self.assertEqual(workflow.name, "Single Quoted")
        self.assertEqual(workflow.description, "  keeps inner spaces  ")
        self.assertEqual(workflow.steps[0].name, "Plain")

    def test_blank_lines_and_comments_ignored(self):
        workflow = parse_workflow(_text("""
            # A comment
            name: Morning

            description: Wake up
            steps:
              # steps follow

              - name: Stretch
                description: Five minutes
            """))
        self.assertEqual(workflow.name, "Morning")
        self.assertEqual(len(workflow.steps), 1)

    def test_hash_inside_values_kept(self):
        workflow = parse_workflow(_text("""
            name: "Issue #42"
            description: Check it
            steps:
              - name: Open
                description: Go
                link: https://example.com/page#section
            """))
        self.assertEqual(workflow.name, "Issue #42")
        self.assertEqual(workflow.steps[0].link, "https://example.com/page#section")

    def test_bare_marker_then_keys(self):
        workflow = parse_workflow(_text("""
            name: W
            description: D
            steps:
              -
                name: First
                description: One
              - name: Second
                description: Two
            """))
        self.assertEqual([s.name for s in workflow.steps], ["First", "Second"])

    def test_unknown_keys_ignored(self):
        workflow = parse_workflow(_text("""
            name: W
            description: D
            author: someone
            tags:
              nested: value
            steps:
              - name: S
                description: D
                color: blue
            """))
        self.assertEqual(workflow.name, "W")
        self.assertEqual(len(workflow.steps), 1)

    def test_nested_unknown_keys_under_step_ignored(self):
        """Keys nested under an unknown step key never reach the step."""
        workflow = parse_workflow(_text("""
            name: W
            description: D
            steps:
              - name: Real
                description: Kept
                meta:
                  name: hijacked
                  link: https://evil.example.com
                  tags:
                    - name: not a step
                command: echo real
              - name: Second
                description: Two
            """))
        first, second = workflow.steps
        self.assertEqual(first.name, "Real")
        self.assertEqual(first.description, "Kept")
        self.assertIsNone(first.link)
        self.assertEqual(first.command, "echo real")
        self.assertEqual(second.name, "Second")
        self.assertEqual(len(workflow.steps), 2)

    def test_nested_unknown_keys_under_automation_ignored(self):
        workflow = parse_workflow(_text("""
            name: W
            description: D
            steps:
              - name: S
                description: D
                automations:
                  - type: n8n
                    webhook: https://n8n.example.com/real
                    extra:
                      type: zapier
                      webhook: https://evil.example.com
                      - ignored
                    parameters:
                      mode: fast
                      nested:
                        mode: slow
                link: https://example.com
            """))
        step = workflow.steps[0]
        self.assertEqual(len(step.automations), 1)
        automation = step.automations[0]
        self.assertEqual(automation.type, AutomationType.N8N)
        self.assertEqual(automation.webhook, "https://n8n.example.com/real")
        self.assertEqual(automation.parameters, {"mode": "fast", "nested": ""})
        self.assertEqual(step.link, "https://example.com")

    def test_quoted_escapes_resolved(self):
        workflow = parse_workflow(_text("""
            name: 'Bob''s #1 review'  # trailing comment
            description: "Say \\"hi\\" \\\\ twice"
            steps:
              - name: S
                description: D
            """))
        self.assertEqual(workflow.name, "Bob's #1 review")
        self.assertEqual(workflow.description, 'Say "hi" \\ twice')

    def test_decimal_duration(self):
        workflow = parse_workflow(_text("""
            name: W
            description: D
            steps:
              - name: S
                description: D
                duration: 90.5
            """))
        self.assertEqual(workflow.steps[0].duration, 90.5)

    def test_non_numeric_duration_is_absent(self):
        workflow = parse_workflow(_text("""
            name: W
            description: D
            steps:
              - name: S
                description: D
                duration: soon
            """))
        self.assertIsNone(workflow.steps[0].duration)

    def test_automations_close_back_to_step(self):
        """Keys after an automations block belong to the step again."""
        workflow = parse_workflow(_text("""
            name: W
            description: D
            steps:
              - name: First
                description: One
                automations:
                  - type: zapier
                    webhook: https://hooks.zapier.com/a
                  - type: webhook
                    webhook: https://example.com/hook
                    parameters:
                      mode: fast
                      team: core
                command: echo after
              - name: Second
                description: Two
            """))
        first, second = workflow.steps
        self.assertEqual(first.command, "echo after")
        self.assertEqual([a.type for a in first.automations],
                         [AutomationType.ZAPIER, AutomationType.WEBHOOK])
        self.assertEqual(first.automations[1].parameters, {"mode": "fast", "team": "core"})
        self.assertIsNone(first.automations[0].parameters)
        self.assertIsNone(second.automations)

    def test_automation_markers_level_with_key(self):
        """Automation markers may sit at the same indent as 'automations:'."""
        workflow = parse_workflow(_text("""
            name: W
            description: D
            steps:
              - name: S
                description: D
                automations:
                - type: n8n
                  webhook: https://n8n.example.com/x
                link: https://example.com
            """))
        step = workflow.steps[0]
        self.assertEqual(step.automations[0].webhook, "https://n8n.example.com/x")
        self.assertEqual(step.link, "https://example.com")

    def test_unknown_automation_type_dropped(self):
        workflow = parse_workflow(_text("""
            name: W
            description: D
            steps:
              - name: S
                description: D
                automations:
                  - type: ifttt
                    webhook: https://example.com
            """))
        self.assertIsNone(workflow.steps[0].automations)

    def test_top_level_key_closes_steps(self):
        workflow = parse_workflow(_text("""
            steps:
              - name: S
                description: D
            name: Late Name
            description: Late Description
            """))
        self.assertEqual(workflow.name, "Late Name")
        self.assertEqual(len(workflow.steps), 1)

    def test_no_steps_is_invalid_format(self):
        with self.assertRaises(InvalidFormatError):
            parse_workflow("name: W\ndescription: D\n")

    def test_empty_text_is_invalid_format(self):
        with self.assertRaises(InvalidFormatError):
            parse_workflow("")

    def test_ids_are_unique_per_parse(self):
        text = (FIXTURES / "daily-planning.yaml").read_text()
        first = parse_workflow(text)
        second = parse_workflow(text)
        self.assertNotEqual(first.id, second.id)
        self.assertNotEqual(first.steps[0].id, second.steps[0].id)

    def test_parse_does_not_append_finish_step(self):
        workflow = parse_workflow((FIXTURES / "daily-planning.yaml").read_text())
        self.assertEqual(len(workflow.steps), 1)


class TestValidateWorkflow(unittest.TestCase):
    """Validation of parsed workflows."""

    def test_missing_description(self):
        with self.assertRaises(MissingRequiredFieldError) as ctx:
            load_workflow_file(FIXTURES / "missing-description.yaml")
        self.assertEqual(ctx.exception.path, "description")

    def test_bad_link(self):
        with self.assertRaises(InvalidFieldTypeError) as ctx:
            load_workflow_file(FIXTURES / "bad-link.yaml")
        self.assertEqual(ctx.exception.field, "steps[0].link")
        self.assertIn("steps[0].link", str(ctx.exception))

    def test_path_link_is_valid(self):
        workflow = Workflow(name="W", description="D", steps=[
            WorkflowStep(name="S", description="D", link="/Applications/Notes.app"),
        ])
        validate_workflow(workflow)

    def test_missing_step_name(self):
        with self.assertRaises(MissingRequiredFieldError) as ctx:
            load_workflow(_text("""
                name: W
                description: D
                steps:
                  - name: Good
                    description: Fine
                  - description: Nameless
                """))
        self.assertEqual(ctx.exception.path, "steps[1].name")

    def test_empty_steps(self):
        with self.assertRaises(MissingRequiredFieldError) as ctx:
            validate_workflow(Workflow(name="W", description="D", steps=[]))
        self.assertEqual(ctx.exception.path, "steps")

    def test_errors_are_value_errors(self):
        """Callers that catch ValueError also catch definition errors."""
        self.assertTrue(issubclass(WorkflowParseError, ValueError))
        self.assertTrue(issubclass(MissingRequiredFieldError, WorkflowParseError))
        self.assertTrue(issubclass(InvalidFormatError, WorkflowParseError))

    def test_warnings(self):
        workflow = load_workflow(_text("""
            name: W
            description: D
            steps:
              - name: S
                description: D
                duration: 86400
                automations:
                  - type: n8n
            """))
        warnings = workflow_warnings(workflow)
        self.assertEqual(len(warnings), 2)
        self.assertTrue(any("no webhook" in w for w in warnings))
        self.assertTrue(any("very long" in w for w in warnings))

    def test_total_duration(self):
        workflow = load_workflow(generate_sample_yaml())
        self.assertEqual(workflow.total_duration, 180)


class TestLoadDirectory(unittest.TestCase):
    """Loading, seeding and writing definition files."""

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.dir = Path(self._tmp.name)

    def tearDown(self):
        self._tmp.cleanup()

    def test_bad_files_skipped(self):
        for name in ("daily-planning.yaml", "missing-description.yaml", "bad-link.yaml"):
            (self.dir / name).write_text((FIXTURES / name).read_text())
        (self.dir / "notes.txt").write_text("name: Not a workflow\n")
        (self.dir / "weekly.yml").write_text(_text("""
            name: Another
            description: D
            steps:
              - name: S
                description: D
            """))

        workflows = load_workflows(self.dir)

        self.assertEqual([w.name for w in workflows], ["Another", "Daily Planning"])

    def test_missing_file(self):
        with self.assertRaises(FileNotFoundError):
            load_workflow_file(self.dir / "nope.yaml")

    def test_seed_samples(self):
        ensure_workflows_directory(self.dir)
        workflows = load_workflows(self.dir)
        self.assertEqual([w.name for w in workflows],
                         ["Daily Planning", "Inbox Cleanse", "Weekly Review"])

    def test_no_seed_when_not_empty(self):
        (self.dir / "mine.yaml").write_text((FIXTURES / "daily-planning.yaml").read_text())
        ensure_workflows_directory(self.dir)
        self.assertEqual([p.name for p in self.dir.iterdir()], ["mine.yaml"])

    def test_create_workflow_file(self):
        path = create_workflow_file(self.dir, "Morning Routine!")
        self.assertEqual(path.name, "morning-routine.yaml")
        workflow = load_workflow_file(path)
        self.assertEqual(workflow.name, "Morning Routine!")
        self.assertEqual(workflow.steps[1].automations[0].parameters, {"key": "value"})

        with self.assertRaises(FileExistsError):
            create_workflow_file(self.dir, "morning routine")

    def test_filename_needs_usable_characters(self):
        with self.assertRaises(ValueError):
            workflow_filename("!!!")

    def test_dump_reparses(self):
        original = load_workflow_file(FIXTURES / "daily-planning.yaml")
        text = dump_workflow(original)
        reloaded = load_workflow(text)

        self.assertNotIn("Finish Workflow", text)
        self.assertEqual(reloaded.name, original.name)
        self.assertEqual(reloaded.hotkey, original.hotkey)
        self.assertEqual(len(reloaded.steps), len(original.steps))
        self.assertEqual(
            reloaded.steps[0].model_dump(exclude={"id"}),
            original.steps[0].model_dump(exclude={"id"}),
        )

    def test_dump_reparses_awkward_strings(self):
        names = ["Bob's: review", "Issue #42", 'Say "hi"', "it's #1 # really",
                 "two\nlines", "123", "yes", "- dash", "back\\slash"]
        for name in names:
            with self.subTest(name=name):
                workflow = Workflow(name=name, description=name, steps=[
                    WorkflowStep(name=name, description="d", command=f"echo '{name}'"),
                ])
                reloaded = load_workflow(dump_workflow(workflow))
                self.assertEqual(reloaded.name, name)
                self.assertEqual(reloaded.description, name)
                self.assertEqual(reloaded.steps[0].name, name)
                self.assertEqual(reloaded.steps[0].command, f"echo '{name}'")

    def test_template_keeps_name(self):
        for name in ['Say "hi"', "Bob's # list", "a\\b"]:
            with self.subTest(name=name):
                self.assertEqual(load_workflow(generate_workflow_template(name)).name, name)


if __name__ == '__main__':
    unittest.main()
