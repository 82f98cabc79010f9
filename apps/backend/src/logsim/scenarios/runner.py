"""Lifecycle management for running scenario instances."""

from __future__ import annotations

import asyncio
import logging
import math
import threading
import uuid
from collections import deque
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Optional

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from ..chains.schema import duration_from_config
from ..clock import Clock
from ..errors import ConflictError, NotFoundError, ValidationError
from .schema import ScenarioInstance, ScenarioListing

if TYPE_CHECKING:
    from ..generator import LogGenerator
    from .registry import ScenarioRegistry

logger = logging.getLogger(__name__)

_datetime_adapter = TypeAdapter(datetime)

INTERVAL_KEYS = (("interval_seconds", 1), ("interval_minutes", 60))


def _interval_from_config(config: dict[str, Any]) -> Optional[float]:
    for key, factor in INTERVAL_KEYS:
        value = config.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0:
            return float(value) * factor
    return None


class ScenarioRunner:
    """Owns the set of active scenario instances, at most one per type.

    Each instance is driven by its own asyncio task calling the log
    generator. ``stop`` cancels that task, which interrupts any wait the
    instance is suspended in.
    """

    def __init__(
        self,
        registry: ScenarioRegistry,
        generator: LogGenerator,
        clock: Clock,
        batch_interval_seconds: float = 10.0,
        history_size: int = 200,
    ):
        self.registry = registry
        self.generator = generator
        self.clock = clock
        self.batch_interval_seconds = batch_interval_seconds
        self._lock = threading.RLock()
        self._active: dict[str, ScenarioInstance] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._history: deque[ScenarioInstance] = deque(maxlen=history_size)

    # --- Public API ---

    def start(self, scenario_type: str, config: Optional[dict[str, Any]] = None) -> ScenarioInstance:
        """Start a scenario; fails with ``ConflictError`` if one of this type is active."""
        scenario = self.registry.require(scenario_type)
        config = dict(config or {})
        merged = {**scenario.default_config(), **config}
        if isinstance(config.get("labels"), dict):
            merged["labels"] = {**scenario.labels, **config["labels"]}
        for key in ("start_date", "end_date"):
            if merged.get(key) is not None:
                merged[key] = self._parse_datetime(merged[key], key).isoformat()

        with self._lock:
            current = self._active.get(scenario_type)
            if current is not None:
                raise ConflictError(f"Scenario '{scenario_type}' is already running (instance {current.id})")

            instance = ScenarioInstance(
                id=uuid.uuid4().hex[:12],
                type=scenario_type,
                name=scenario.name,
                config=merged,
                started=self.clock.now(),
            )
            task = asyncio.get_running_loop().create_task(
                self._drive(instance), name=f"scenario:{scenario_type}:{instance.id}"
            )
            self._active[scenario_type] = instance
            self._tasks[instance.id] = task
            task.add_done_callback(lambda _, key=instance.id: self._forget_task(key))

        logger.info("Started scenario %s (instance %s)", scenario_type, instance.id)
        return instance.model_copy(deep=True)

    def stop(self, scenario_type: str, instance_id: Optional[str] = None) -> ScenarioInstance:
        """Stop the active instance of a type.

        With ``instance_id`` the call only stops that particular instance,
        so a stale caller cannot stop a newer run of the same type.
        """
        with self._lock:
            instance = self._active.get(scenario_type)
            if instance is None or (instance_id is not None and instance.id != instance_id):
                raise NotFoundError(f"Scenario '{scenario_type}' is not active")
            self._finish(instance, "stopped")
            task = self._tasks.get(instance.id)
            snapshot = instance.model_copy(deep=True)

        if task is not None:
            task.cancel()
        logger.info("Stopped scenario %s (instance %s)", scenario_type, instance.id)
        return snapshot

    def list(self) -> ScenarioListing:
        with self._lock:
            active = [self._active[key].model_copy(deep=True) for key in sorted(self._active)]
        return ScenarioListing(available=self.registry.list(), active=active)

    def get_active(self, scenario_type: str) -> Optional[ScenarioInstance]:
        with self._lock:
            instance = self._active.get(scenario_type)
            return instance.model_copy(deep=True) if instance else None

    def history(self, limit: Optional[int] = None) -> list[ScenarioInstance]:
        """Finished instances, most recent first."""
        with self._lock:
            items = list(self._history)
        return items[:limit] if limit is not None else items

    async def shutdown(self) -> None:
        """Stop every active instance and wait for their tasks to unwind."""
        with self._lock:
            for instance in list(self._active.values()):
                self._finish(instance, "stopped")
            tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # --- Internals ---

    def _finish(self, instance: ScenarioInstance, outcome: str, error: Optional[str] = None) -> bool:
        with self._lock:
            if not instance.active:
                return False
            instance.active = False
            instance.finished = self.clock.now()
            instance.outcome = outcome
            instance.error = error
            if self._active.get(instance.type) is instance:
                del self._active[instance.type]
            self._history.appendleft(instance.model_copy(deep=True))
            return True

    async def _drive(self, instance: ScenarioInstance) -> None:
        try:
            await self._execute(instance)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("Scenario %s (instance %s) failed", instance.type, instance.id)
            self._finish(instance, "failed", str(exc))
        else:
            if self._finish(instance, "completed"):
                logger.info(
                    "Scenario %s (instance %s) completed, %d logs generated",
                    instance.type,
                    instance.id,
                    instance.generated,
                )

    def _forget_task(self, instance_id: str) -> None:
        with self._lock:
            self._tasks.pop(instance_id, None)

    async def _execute(self, instance: ScenarioInstance) -> None:
        config = instance.config
        log_count = int(config.get("log_count", 0))

        start_at = self._parse_datetime(config["start_date"], "start_date") if config.get("start_date") else None
        if start_at is not None:
            wait = (start_at - self.clock.now()).total_seconds()
            if wait > 0:
                logger.info("Scenario %s waits %.0fs for its start date", instance.type, wait)
                await self.clock.sleep(wait)

        deadline = self._deadline(instance)
        interval = _interval_from_config(config)
        if interval is not None:
            await self._run_periodic(instance, log_count, interval, deadline)
        elif deadline is not None:
            await self._run_timed(instance, log_count, deadline)
        else:
            await self._burst(instance, log_count)

    def _deadline(self, instance: ScenarioInstance) -> Optional[datetime]:
        config = instance.config
        candidates = []
        duration = duration_from_config(config)
        if duration is not None:
            candidates.append(self.clock.now() + timedelta(seconds=duration))
        if config.get("end_date"):
            candidates.append(self._parse_datetime(config["end_date"], "end_date"))
        return min(candidates) if candidates else None

    async def _burst(self, instance: ScenarioInstance, count: int) -> None:
        result = await self.generator.run(instance.type, {**instance.config, "log_count": count})
        instance.generated += result.generated

    async def _run_periodic(
        self,
        instance: ScenarioInstance,
        log_count: int,
        interval: float,
        deadline: Optional[datetime],
    ) -> None:
        while deadline is None or self.clock.now() < deadline:
            await self._burst(instance, log_count)
            await self.clock.sleep(interval)

    async def _run_timed(self, instance: ScenarioInstance, log_count: int, deadline: datetime) -> None:
        remaining_logs = log_count
        while True:
            remaining = (deadline - self.clock.now()).total_seconds()
            if remaining <= 0:
                return
            batches_left = max(1, math.ceil(remaining / self.batch_interval_seconds))
            size = max(1, remaining_logs // batches_left)
            await self._burst(instance, size)
            remaining_logs = max(0, remaining_logs - size)
            await self.clock.sleep(min(self.batch_interval_seconds, remaining))

    def _parse_datetime(self, value: Any, field: str) -> datetime:
        try:
            parsed = _datetime_adapter.validate_python(value)
        except PydanticValidationError as exc:
            raise ValidationError(f"Invalid {field}: {value!r}") from exc
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=self.clock.now().tzinfo)
        return parsed
