"""
Tests for running step commands out of process.

These spawn real processes through /bin/sh.
"""

import asyncio
import tempfile
import unittest
from pathlib import Path

from command_runner import CommandRunner
from workflow_loader import load_workflow
from workflow_models import CommandExecutionState
from workflow_session import WorkflowSession


def command_workflow(*commands: str):
    lines = ["name: Commands", "description: Runs things", "steps:"]
    for i, command in enumerate(commands):
        lines.append(f"  - name: Step {i}")
        lines.append(f"    description: Run {i}")
        if command:
            lines.append(f"    command: '{command}'")
    return load_workflow("\n".join(lines) + "\n")


class TestCommandRunner(unittest.IsolatedAsyncioTestCase):
    """CommandRunner.execute"""

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.workflows_dir = Path(self._tmp.name)
        self.runner = CommandRunner(workflows_dir=self.workflows_dir, shell="/bin/sh")

    def tearDown(self):
        self._tmp.cleanup()

    async def test_true(self):
        result = await self.runner.execute("true", "W", "S")
        self.assertEqual(result.exit_code, 0)
        self.assertTrue(result.is_success)
        self.assertEqual(result.command, "true")
        self.assertGreaterEqual(result.duration, 0)

    async def test_false(self):
        result = await self.runner.execute("false", "W", "S")
        self.assertNotEqual(result.exit_code, 0)
        self.assertEqual(result.display_summary, f"Command failed with exit code {result.exit_code}")

    async def test_captures_both_streams(self):
        result = await self.runner.execute("echo out; echo err 1>&2; exit 3", "W", "S")
        self.assertEqual(result.exit_code, 3)
        self.assertEqual(result.stdout, "out\n")
        self.assertEqual(result.stderr, "err\n")
        self.assertEqual(result.combined_output, "out\n\n\n--- Error Output ---\nerr\n")

    async def test_unspawnable(self):
        runner = CommandRunner(workflows_dir=self.workflows_dir, shell="/nonexistent/shell")
        result = await runner.execute("true", "W", "S")
        self.assertEqual(result.exit_code, -1)
        self.assertEqual(result.stdout, "")
        self.assertTrue(result.stderr.startswith("Failed to execute command"))

    async def test_killed_by_signal(self):
        """A signal death reads as 128 + signal, never as the spawn failure code."""
        result = await self.runner.execute("kill -HUP $$", "W", "S")
        self.assertEqual(result.exit_code, 129)
        self.assertFalse(result.is_success)

    async def test_environment(self):
        result = await self.runner.execute(
            'printf "%s|%s|%s|%s" "$HUMANCRON_WORKFLOW_DIR" "$HUMANCRON_SCRIPTS_DIR" '
            '"$HUMANCRON_WORKFLOW_NAME" "$HUMANCRON_STEP_NAME"',
            "Daily Planning", "Check Calendar",
        )
        self.assertEqual(result.stdout, "|".join([
            str(self.workflows_dir),
            str(self.workflows_dir / "scripts"),
            "Daily Planning",
            "Check Calendar",
        ]))
        self.assertEqual(result.environment["HUMANCRON_STEP_NAME"], "Check Calendar")
        self.assertIn("PATH", result.environment)

    async def test_extra_env_wins(self):
        result = await self.runner.execute(
            'printf "%s %s" "$HUMANCRON_STEP_NAME" "$GREETING"', "W", "S",
            extra_env={"HUMANCRON_STEP_NAME": "override", "GREETING": "hello"},
        )
        self.assertEqual(result.stdout, "override hello")


class TestSessionCommands(unittest.IsolatedAsyncioTestCase):
    """Step commands driven through a WorkflowSession."""

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.session = WorkflowSession(
            command_runner=CommandRunner(workflows_dir=self._tmp.name, shell="/bin/sh"),
        )

    def tearDown(self):
        self._tmp.cleanup()

    async def test_success_and_failure_states(self):
        workflow = command_workflow("true", "false")
        self.session.start(workflow)

        ok = await self.session.run_step_command(0)
        failed = await self.session.run_step_command(1)

        self.assertEqual(ok.exit_code, 0)
        self.assertEqual(self.session.command_state(0), CommandExecutionState.SUCCESS)
        self.assertNotEqual(failed.exit_code, 0)
        self.assertEqual(self.session.command_state(1), CommandExecutionState.FAILURE)
        self.assertEqual(self.session.command_result(1), failed)

    async def test_unspawnable_is_failure(self):
        session = WorkflowSession(command_runner=CommandRunner(shell="/nonexistent/shell"))
        session.start(command_workflow("true"))
        result = await session.run_step_command()
        self.assertEqual(result.exit_code, -1)
        self.assertTrue(result.stderr)
        self.assertEqual(session.command_state(), CommandExecutionState.FAILURE)

    async def test_running_before_first_await(self):
        self.session.start(command_workflow("sleep 0.2"))
        task = self.session.start_step_command()

        self.assertEqual(self.session.command_state(), CommandExecutionState.RUNNING)
        self.assertIsNone(self.session.command_result())

        await task
        self.assertEqual(self.session.command_state(), CommandExecutionState.SUCCESS)

    async def test_second_start_while_running_refused(self):
        self.session.start(command_workflow("sleep 0.2"))
        task = self.session.start_step_command()
        self.assertIsNone(self.session.start_step_command())
        self.assertIsNone(await self.session.run_step_command())
        await task

    async def test_step_without_command(self):
        self.session.start(command_workflow(""))
        self.assertIsNone(self.session.start_step_command())
        self.assertEqual(self.session.command_state(), CommandExecutionState.READY)

    async def test_navigation_while_running(self):
        """The session keeps working while a command is in flight."""
        workflow = command_workflow("sleep 0.2; echo done", "true")
        self.session.start(workflow)
        task = self.session.start_step_command(0)

        self.session.next_step()
        self.session.pause()
        self.assertFalse(self.session.is_active)

        result = await task
        step_id = workflow.steps[0].id
        self.assertEqual(result.stdout, "done\n")
        self.assertEqual(self.session.command_store.get_state(workflow.id, step_id),
                         CommandExecutionState.SUCCESS)
        self.assertEqual(self.session.command_store.get_result(workflow.id, step_id), result)

    async def test_rerun_overwrites(self):
        workflow = command_workflow("true")
        self.session.start(workflow)
        first = await self.session.run_step_command()
        second = await self.session.run_step_command()
        self.assertIs(self.session.command_result(), second)
        self.assertIsNot(first, second)

    async def test_concurrent_steps(self):
        self.session.start(command_workflow("sleep 0.1", "sleep 0.1"))
        tasks = [self.session.start_step_command(0), self.session.start_step_command(1)]
        await asyncio.gather(*tasks)
        self.assertEqual(self.session.command_state(0), CommandExecutionState.SUCCESS)
        self.assertEqual(self.session.command_state(1), CommandExecutionState.SUCCESS)

    async def test_clear_command_results(self):
        workflow = command_workflow("true")
        self.session.start(workflow)
        await self.session.run_step_command()
        self.session.clear_command_results(workflow.id)
        self.assertEqual(self.session.command_state(), CommandExecutionState.READY)
        self.assertIsNone(self.session.command_result())


if __name__ == '__main__':
    unittest.main()
