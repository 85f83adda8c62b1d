"""
Configuration settings for humancron.

Every value can be overridden with a HUMANCRON_* environment variable.
"""

import os
from pathlib import Path

# Base directory for user data (workflows, history)
HUMANCRON_HOME = Path(os.environ.get("HUMANCRON_HOME", str(Path.home() / ".humancron")))

# Directory scanned for workflow definition files
WORKFLOWS_DIR = Path(os.environ.get("HUMANCRON_WORKFLOWS_DIR", str(HUMANCRON_HOME / "workflows")))

# Helper scripts live in this subdirectory of the workflows directory
SCRIPTS_SUBDIR = "scripts"

# Only files with these extensions are loaded as workflows
WORKFLOW_EXTENSIONS = (".yaml", ".yml")

# Run history (latest run per workflow)
HISTORY_FILE = Path(os.environ.get("HUMANCRON_HISTORY_FILE", str(HUMANCRON_HOME / "history.json")))

# Shell used to run step commands: SHELL -c "<command>"
SHELL = os.environ.get("HUMANCRON_SHELL", "/bin/bash")

# Environment variables exported to every step command
ENV_WORKFLOW_DIR = "HUMANCRON_WORKFLOW_DIR"
ENV_SCRIPTS_DIR = "HUMANCRON_SCRIPTS_DIR"
ENV_WORKFLOW_NAME = "HUMANCRON_WORKFLOW_NAME"
ENV_STEP_NAME = "HUMANCRON_STEP_NAME"

# Synthetic last step appended to every loaded workflow
FINISH_STEP_NAME = "Finish Workflow"
FINISH_STEP_DESCRIPTION = "All tasks completed"

# Durations above this (seconds) are reported as warnings by the validator
MAX_REASONABLE_DURATION = 4 * 60 * 60

# HTTP control surface
API_HOST = os.environ.get("HUMANCRON_API_HOST", "127.0.0.1")
API_PORT = int(os.environ.get("HUMANCRON_API_PORT", "8080"))
