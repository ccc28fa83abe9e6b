"""
Execution Governor - wall-clock budget and per-run reset around the evaluator
"""

import asyncio
import logging
import time

from .config import SandboxConfig
from .evaluator import RunStatus, SandboxEvaluator, SandboxRun
from .exceptions import SandboxBusyError, TimeoutError

logger = logging.getLogger(__name__)

# Time a cancelled script gets to unwind before it is abandoned
ABANDON_GRACE_SECONDS = 1.0


def _log_late_outcome(task: asyncio.Future) -> None:
    """Collect the outcome of a script task that finished after its timeout"""
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.debug(f"Timed-out script ended late with {type(error).__name__}: {error}")


class ExecutionGovernor:
    """
    Execution Governor

    Runs a script through the evaluator under a fixed time budget.

    The script runs in its own task. When the budget expires the run is
    marked timed out and the task is cancelled. Cancellation reaches every
    capability call the script is awaiting and every task it spawned, so
    cooperative capabilities stop early. A script that keeps running after
    cancellation (a ``finally`` block that loops, work in a worker thread)
    gets a short grace period and is then abandoned. The timeout is raised
    either way: it is terminal and nothing is retried.

    Usage:
        governor = ExecutionGovernor(SandboxEvaluator(registry))
        run = await governor.run(script)
    """

    def __init__(
        self,
        evaluator: SandboxEvaluator,
        config: SandboxConfig | None = None
    ):
        self.evaluator = evaluator
        self.config = config or evaluator.config

    @property
    def timeout_seconds(self) -> float:
        return self.config.timeout_seconds

    async def run(self, script: str) -> SandboxRun:
        """
        Execute ``script`` within the budget.

        Raises:
            TimeoutError: the budget expired; ``error.run`` holds the partial run
            ScriptError: the script failed to compile or raised
            SandboxBusyError: the evaluator is already running a script
        """
        if self.evaluator.is_running:
            raise SandboxBusyError("Evaluator is already running a script")

        run = SandboxRun(script=script)
        task = asyncio.ensure_future(self.evaluator.execute(script, run=run))
        try:
            done, _ = await asyncio.wait({task}, timeout=self.timeout_seconds)
            if task in done:
                return task.result()
            raise await self._expire(run, task)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            if self.evaluator.active_run is run:
                self.evaluator.reset()

    async def _expire(self, run: SandboxRun, task: asyncio.Future) -> TimeoutError:
        error = TimeoutError(self.timeout_seconds, "Script execution", run=run)
        run.status = RunStatus.TIMED_OUT
        run.error = error

        task.add_done_callback(_log_late_outcome)
        task.cancel()
        _, pending = await asyncio.wait({task}, timeout=ABANDON_GRACE_SECONDS)
        if pending:
            run.trace = list(self.evaluator.trace)
            run.ended_at = time.time()
            logger.warning(
                f"Run {run.id}: script did not stop after cancellation, abandoned"
            )

        logger.warning(
            f"Run {run.id}: timed out after {self.timeout_seconds}s "
            f"with {len(run.trace)} completed calls"
        )
        return error
