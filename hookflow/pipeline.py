"""
Pipeline runner: executes a workflow's steps sequentially or in parallel.
"""

import asyncio
import logging
import time
from typing import List

from .events import ExecutionContext
from .executor import StepExecutor
from .models import Workflow, WorkflowResult, StepResult

logger = logging.getLogger(__name__)


class PipelineRunner:
    """Run all steps of a workflow and fold them into one WorkflowResult."""

    def __init__(self, step_executor: StepExecutor):
        self.step_executor = step_executor

    async def run(self, workflow: Workflow, context: ExecutionContext) -> WorkflowResult:
        """Execute a workflow.

        Args:
            workflow: Workflow to run.
            context: Execution context of the dispatch.

        Returns:
            WorkflowResult. Failures are reported in the result, never raised.
        """
        start = time.monotonic()
        result = WorkflowResult(workflow_id=workflow.id, workflow_name=workflow.name)
        settings = workflow.settings

        try:
            if settings.parallel:
                result.step_results = await self.run_parallel(workflow, context)
            else:
                result.step_results = await self.run_sequential(
                    workflow, context, settings.stop_on_error
                )

            result.success = all(not sr.blocking for sr in result.step_results)

            if not result.success and settings.stop_on_error:
                failed = next(sr for sr in result.step_results if sr.blocking)
                result.error = f'Step "{failed.step_name}" failed: {failed.error}'

        except Exception as e:
            logger.error(f"Workflow {workflow.name} crashed: {e}", exc_info=True)
            result.success = False
            result.error = str(e)

        result.execution_time = int((time.monotonic() - start) * 1000)
        return result

    async def run_sequential(self, workflow: Workflow, context: ExecutionContext,
                             stop_on_error: bool) -> List[StepResult]:
        """Run steps in order, skipping the rest after a blocking failure."""
        step_results = []
        steps = workflow.steps

        for index, step in enumerate(steps):
            step_result = await self.step_executor.execute(step, context, index + 1)
            step_results.append(step_result)

            if not step_result.success and stop_on_error and not step.continue_on_error:
                for skipped_index in range(index + 1, len(steps)):
                    step_results.append(
                        StepResult.skipped_for(steps[skipped_index], skipped_index + 1)
                    )
                logger.info(
                    f"Workflow {workflow.name} stopped at {step_result.step_name}, "
                    f"{len(steps) - index - 1} step(s) skipped"
                )
                break

        return step_results

    async def run_parallel(self, workflow: Workflow, context: ExecutionContext) -> List[StepResult]:
        """Run every step concurrently and wait for all of them."""
        return list(await asyncio.gather(*[
            self.step_executor.execute(step, context, index + 1)
            for index, step in enumerate(workflow.steps)
        ]))
