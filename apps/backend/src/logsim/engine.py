"""Composition root wiring every engine component together."""

from __future__ import annotations

import logging
from datetime import timezone, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo

from .chains.executor import ChainExecutor
from .chains.store import ChainStore
from .clock import Clock, SystemClock
from .config import Settings
from .generator import LogGenerator
from .scenarios.registry import ScenarioRegistry
from .scenarios.runner import ScenarioRunner
from .scheduling.scheduler import Scheduler
from .scheduling.store import ScheduleStore

logger = logging.getLogger(__name__)


def resolve_timezone(name: str) -> tzinfo:
    if name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)


class Engine:
    """Builds each store and service once and hands them out explicitly."""

    def __init__(
        self,
        settings: Settings,
        clock: Optional[Clock] = None,
        registry: Optional[ScenarioRegistry] = None,
        generator: Optional[LogGenerator] = None,
    ):
        self.settings = settings
        self.clock = clock or SystemClock(resolve_timezone(settings.timezone))
        self.registry = registry or ScenarioRegistry()
        self.generator = generator or LogGenerator(
            buffer_size=settings.log_buffer_size,
            pace_ms=settings.log_pace_ms,
        )

        data_dir = settings.data_dir
        if data_dir is not None:
            data_dir.mkdir(parents=True, exist_ok=True)

        self.runner = ScenarioRunner(
            self.registry,
            self.generator,
            self.clock,
            batch_interval_seconds=settings.batch_interval_seconds,
            history_size=settings.scenario_history_size,
        )
        self.chain_store = ChainStore(
            self.registry,
            self.clock,
            data_dir=data_dir,
            history_limit=settings.schedule_history_size,
        )
        self.chain_store.seed(self.registry.chains())
        self.schedule_store = ScheduleStore(
            self.registry,
            self.chain_store,
            self.clock,
            data_dir=data_dir,
            history_size=settings.schedule_history_size,
        )
        self.executor = ChainExecutor(self.chain_store, self.runner, self.clock)
        self.scheduler = Scheduler(
            self.schedule_store,
            self.runner,
            self.executor,
            self.clock,
            tick_interval=settings.tick_interval_seconds,
        )

    async def start(self) -> None:
        await self.scheduler.start()
        logger.info(
            "Engine started: %d scenario types, %d chains, timezone %s",
            len(self.registry.list()),
            len(self.chain_store.list()),
            self.settings.timezone,
        )

    async def shutdown(self) -> None:
        await self.scheduler.stop()
        await self.executor.shutdown()
        await self.runner.shutdown()
        logger.info("Engine stopped")
