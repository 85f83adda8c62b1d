"""
Command runner: runs a step's shell command out of process.

The command goes through SHELL -c with the host environment plus the
HUMANCRON_* variables. Output is captured in full before the result is
returned. execute() never raises: a command that cannot be spawned comes
back as a CommandResult with exit_code -1.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from pathlib import Path
from typing import Optional

import humancron_config
from workflow_models import CommandResult

logger = logging.getLogger(__name__)


class CommandRunner:
    """Spawns step commands on the running event loop."""

    def __init__(
        self,
        workflows_dir: Path | str | None = None,
        shell: str | None = None,
    ):
        self.workflows_dir = Path(workflows_dir) if workflows_dir else humancron_config.WORKFLOWS_DIR
        self.shell = shell or humancron_config.SHELL

    def base_environment(self) -> dict[str, str]:
        """Host environment plus the workflow and scripts directories."""
        env = dict(os.environ)
        env[humancron_config.ENV_WORKFLOW_DIR] = str(self.workflows_dir)
        env[humancron_config.ENV_SCRIPTS_DIR] = str(self.workflows_dir / humancron_config.SCRIPTS_SUBDIR)
        return env

    def build_environment(
        self,
        workflow_name: str,
        step_name: str,
        extra_env: Optional[dict[str, str]] = None,
    ) -> dict[str, str]:
        env = self.base_environment()
        env[humancron_config.ENV_WORKFLOW_NAME] = workflow_name
        env[humancron_config.ENV_STEP_NAME] = step_name
        # Caller-supplied keys win
        env.update(extra_env or {})
        return env

    async def execute(
        self,
        command: str,
        workflow_name: str,
        step_name: str,
        extra_env: Optional[dict[str, str]] = None,
    ) -> CommandResult:
        """
        Run a command and wait for it to exit.

        Args:
            command: Shell command string
            workflow_name: Exported as HUMANCRON_WORKFLOW_NAME
            step_name: Exported as HUMANCRON_STEP_NAME
            extra_env: Additional variables, override everything else

        Returns:
            CommandResult (exit_code -1 if the process could not be spawned)
        """
        env = self.build_environment(workflow_name, step_name, extra_env)
        start = time.monotonic()
        logger.debug(f"Running command for {workflow_name}/{step_name}: {command}")

        try:
            proc = await asyncio.create_subprocess_exec(
                self.shell, "-c", command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except (OSError, ValueError) as e:
            logger.error(f"Failed to execute command {command!r}: {e}")
            return CommandResult(
                command=command,
                exit_code=-1,
                stdout="",
                stderr=f"Failed to execute command: {e}",
                duration=time.monotonic() - start,
                environment=env,
            )

        stdout, stderr = await proc.communicate()
        duration = time.monotonic() - start

        exit_code = proc.returncode
        if exit_code < 0:
            # Killed by a signal: report it as the shell does, keeping -1 for spawn failures
            exit_code = 128 - exit_code

        result = CommandResult(
            command=command,
            exit_code=exit_code,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
            duration=duration,
            environment=env,
        )
        logger.info(f"Command for {workflow_name}/{step_name} exited {result.exit_code} "
                    f"in {result.duration_string}")
        return result
