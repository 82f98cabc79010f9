"""Tick loop that fires due schedules."""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Optional

from ..clock import Clock
from ..errors import EngineError
from .schema import ChainSchedule, Schedule, ScheduleExecution
from .store import ScheduleStore

if TYPE_CHECKING:
    from ..chains.executor import ChainExecutor
    from ..scenarios.runner import ScenarioRunner

logger = logging.getLogger(__name__)


class Scheduler:
    """Periodically checks both schedule tables and dispatches due entries.

    A schedule's ``next_run`` is advanced before its target is started, so a
    slow or failing dispatch can never fire the same slot twice.
    """

    def __init__(
        self,
        store: ScheduleStore,
        runner: ScenarioRunner,
        executor: ChainExecutor,
        clock: Clock,
        tick_interval: float = 1.0,
    ):
        self.store = store
        self.runner = runner
        self.executor = executor
        self.clock = clock
        self.tick_interval = tick_interval
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return
        self.store.resync(self.clock.now())
        self._task = asyncio.get_running_loop().create_task(self._loop(), name="scheduler")
        logger.info("Scheduler started (tick every %.1fs)", self.tick_interval)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Scheduler stopped")

    def tick(self, now: Optional[datetime] = None) -> list[ScheduleExecution]:
        """Fire every schedule due at ``now``. Returns the resulting executions."""
        now = now or self.clock.now()
        scenario_due, chain_due = self.store.due(now)
        fired: list[ScheduleExecution] = []
        for schedule in scenario_due:
            execution = self._fire_scenario(schedule, now)
            if execution is not None:
                fired.append(execution)
        for chain_schedule in chain_due:
            execution = self._fire_chain(chain_schedule, now)
            if execution is not None:
                fired.append(execution)
        return fired

    async def _loop(self) -> None:
        while True:
            try:
                self.tick()
            except Exception:
                logger.exception("Scheduler tick failed")
            await self.clock.sleep(self.tick_interval)

    def _fire_scenario(self, schedule: Schedule, now: datetime) -> Optional[ScheduleExecution]:
        if self.store.scenarios.mark_fired(schedule.id, now) is None:
            return None

        execution = ScheduleExecution(
            id=uuid.uuid4().hex[:12],
            schedule_id=schedule.id,
            kind="scenario",
            target=schedule.scenario_type,
            status="dispatched",
            fired_at=now,
        )
        try:
            instance = self.runner.start(schedule.scenario_type, schedule.config)
            execution.reference_id = instance.id
            logger.info("Schedule %s '%s' started scenario %s", schedule.id, schedule.name, schedule.scenario_type)
        except EngineError as exc:
            execution.status = "failed"
            execution.error = exc.message
            logger.warning("Schedule %s '%s' could not start %s: %s", schedule.id, schedule.name, schedule.scenario_type, exc.message)
        self.store.scenarios.record_execution(execution)
        return execution

    def _fire_chain(self, schedule: ChainSchedule, now: datetime) -> Optional[ScheduleExecution]:
        if self.store.chains.mark_fired(schedule.id, now) is None:
            return None

        execution = ScheduleExecution(
            id=uuid.uuid4().hex[:12],
            schedule_id=schedule.id,
            kind="chain",
            target=schedule.chain_id,
            status="dispatched",
            fired_at=now,
        )
        try:
            chain_execution = self.executor.start(schedule.chain_id)
            execution.reference_id = chain_execution.id
            logger.info("Chain schedule %s '%s' started chain %s", schedule.id, schedule.name, schedule.chain_id)
        except EngineError as exc:
            execution.status = "failed"
            execution.error = exc.message
            logger.warning("Chain schedule %s '%s' could not start chain %s: %s", schedule.id, schedule.name, schedule.chain_id, exc.message)
        self.store.chains.record_execution(execution)
        return execution
