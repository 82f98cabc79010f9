"""Executor that runs a chain's steps in order against the scenario runner."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from ..clock import Clock
from ..errors import EngineError, NotFoundError
from .schema import Chain, ChainExecution, ExecutionStatus, duration_from_config
from .store import ChainStore

if TYPE_CHECKING:
    from ..scenarios.runner import ScenarioRunner
    from ..scenarios.schema import ScenarioInstance

logger = logging.getLogger(__name__)


@dataclass
class ChainRun:
    """Live state of one in-flight execution."""

    chain: Chain
    execution: ChainExecution
    task: Optional[asyncio.Task] = None
    # Instance of the current step while its duration bound is being waited out
    waiting_on: Optional[ScenarioInstance] = None


class ChainExecutor:
    """Drives chain executions through ``pending -> running -> terminal``.

    Every execution runs in its own asyncio task; delays and duration bounds
    are ``Clock.sleep`` calls, so ``stop`` interrupts them by cancelling the
    task.
    """

    def __init__(self, store: ChainStore, runner: ScenarioRunner, clock: Clock):
        self.store = store
        self.runner = runner
        self.clock = clock
        self._runs: dict[str, ChainRun] = {}

    def start(self, chain_id: str) -> ChainExecution:
        """Start a chain. Fails if the chain is unknown or already running."""
        loop = asyncio.get_running_loop()
        chain = self.store.get(chain_id)
        execution = self.store.begin_execution(chain_id)

        run = ChainRun(chain=chain, execution=execution)
        self._transition(run, "running")
        run.task = loop.create_task(self._execute(run), name=f"chain:{chain_id}:{execution.id}")
        self._runs[execution.id] = run
        run.task.add_done_callback(lambda _, key=execution.id: self._runs.pop(key, None))

        logger.info("Started chain %s '%s' as execution %s (%d steps)", chain.id, chain.name, execution.id, len(chain.steps))
        return execution.model_copy(deep=True)

    def stop(self, execution_id: str) -> ChainExecution:
        """Stop an in-flight execution, interrupting whatever it is waiting on."""
        run = self._runs.get(execution_id)
        if run is None or not run.execution.in_flight:
            raise NotFoundError(f"No running chain execution: {execution_id}")

        self._halt(run, "Stopped by request")
        if run.task is not None:
            run.task.cancel()
        logger.info("Stopped chain execution %s", execution_id)
        return run.execution.model_copy(deep=True)

    def active(self) -> list[ChainExecution]:
        runs = sorted(self._runs.values(), key=lambda r: r.execution.started)
        return [r.execution.model_copy(deep=True) for r in runs if r.execution.in_flight]

    async def shutdown(self) -> None:
        runs = list(self._runs.values())
        for run in runs:
            if run.execution.in_flight:
                self._halt(run, "Engine shutdown")
            if run.task is not None:
                run.task.cancel()
        tasks = [run.task for run in runs if run.task is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # --- Step sequencing ---

    async def _execute(self, run: ChainRun) -> None:
        chain, execution = run.chain, run.execution
        total = len(chain.steps)
        try:
            for index, step in enumerate(chain.steps):
                execution.current_step_index = index
                record = execution.steps[index]
                record.status = "running"
                record.started_at = self.clock.now()
                self._save(run)
                logger.info("Execution %s: step %d/%d '%s' (%s)", execution.id, index + 1, total, step.name, step.scenario_type)

                if step.delay_before > 0:
                    await self.clock.sleep(step.delay_before)

                config = chain.step_config(index)
                try:
                    instance = self.runner.start(step.scenario_type, config)
                except EngineError as exc:
                    self._fail(run, index, exc.message)
                    return
                record.instance_id = instance.id

                duration = duration_from_config(config)
                if duration is not None:
                    run.waiting_on = instance
                    self._save(run)
                    await self.clock.sleep(duration)
                    run.waiting_on = None
                    self._stop_instance(instance)

                record.status = "completed"
                record.completed_at = self.clock.now()
                self._save(run)

            execution.current_step_index = total
            self._transition(run, "completed")
            logger.info("Execution %s of chain %s completed", execution.id, chain.id)
        except asyncio.CancelledError:
            if execution.in_flight:
                self._halt(run, "Cancelled")
            raise
        except Exception as exc:
            logger.exception("Execution %s of chain %s crashed", execution.id, chain.id)
            self._fail(run, execution.current_step_index, str(exc))

    def _fail(self, run: ChainRun, index: int, message: str) -> None:
        execution = run.execution
        step = run.chain.steps[index]
        record = execution.steps[index]
        record.status = "failed"
        record.error = message
        record.completed_at = self.clock.now()
        for later in execution.steps[index + 1:]:
            later.status = "skipped"
        execution.failed_step_index = index
        execution.error = f"Step {index + 1} ({step.scenario_type}) failed: {message}"
        self._transition(run, "failed")
        logger.warning("Execution %s of chain %s failed: %s", execution.id, run.chain.id, execution.error)

    def _halt(self, run: ChainRun, reason: str) -> None:
        if run.waiting_on is not None:
            self._stop_instance(run.waiting_on)
            run.waiting_on = None
        execution = run.execution
        for record in execution.steps:
            if record.status in ("pending", "running"):
                record.status = "skipped"
        execution.error = reason
        self._transition(run, "stopped")

    def _stop_instance(self, instance: ScenarioInstance) -> None:
        try:
            self.runner.stop(instance.type, instance.id)
        except NotFoundError:
            logger.debug("Scenario instance %s already finished", instance.id)

    def _transition(self, run: ChainRun, status: ExecutionStatus) -> None:
        run.execution.transition(status, self.clock.now())
        self._save(run)

    def _save(self, run: ChainRun) -> None:
        self.store.save_execution(run.execution)
