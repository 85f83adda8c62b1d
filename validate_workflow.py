"""
Simple script to validate a workflow definition file.

Usage:
    python validate_workflow.py workflows/daily-planning.yaml
"""

import sys
import logging

from workflow_loader import load_workflow_file, workflow_warnings, WorkflowParseError

logging.basicConfig(level=logging.INFO, format='%(levelname)s: %(message)s')
logger = logging.getLogger(__name__)


def main():
    if len(sys.argv) < 2:
        print("Usage: python validate_workflow.py <workflow_file>")
        sys.exit(1)

    workflow_file = sys.argv[1]

    try:
        logger.info(f"Loading workflow: {workflow_file}")
        workflow = load_workflow_file(workflow_file)

        logger.info("✓ Workflow loaded successfully")
        logger.info(f"  Name: {workflow.name}")
        logger.info(f"  Description: {workflow.description}")
        if workflow.hotkey:
            logger.info(f"  Hotkey: {workflow.hotkey}")

        steps = [s for s in workflow.steps if not s.is_finish_step]
        logger.info(f"  Steps: {len(steps)}")
        for index, step in enumerate(steps):
            logger.info(f"    {index + 1}. {step.name}")
            if step.link:
                logger.info(f"       Link: {step.link}")
            if step.command:
                logger.info(f"       Command: {step.command}")
            if step.duration is not None:
                logger.info(f"       Duration: {step.duration:g}s")
            for automation in step.automations or []:
                logger.info(f"       Automation: {automation.type.value} -> {automation.webhook}")

        if workflow.total_duration is not None:
            logger.info(f"  Total duration: {workflow.total_duration / 60:.1f} min")

        warnings = workflow_warnings(workflow)
        if warnings:
            logger.warning("Validation warnings:")
            for warning in warnings:
                logger.warning(f"  - {warning}")
        else:
            logger.info("✓ No validation warnings")

    except FileNotFoundError as e:
        logger.error(f"File not found: {e}")
        sys.exit(1)
    except WorkflowParseError as e:
        logger.error(f"Invalid workflow: {e}")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Error: {e}")
        sys.exit(1)


if __name__ == '__main__':
    main()
