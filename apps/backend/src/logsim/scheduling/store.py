"""Storage for scenario and chain schedules."""

from __future__ import annotations

import logging
import threading
import uuid
from collections import defaultdict, deque
from datetime import datetime, timedelta
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Generic, Optional, TypeVar

from ..clock import Clock
from ..errors import NotFoundError, ValidationError
from ..persistence import JsonSnapshot
from .cron import CronExpression
from .schema import ChainSchedule, Schedule, ScheduleBase, ScheduleExecution

if TYPE_CHECKING:
    from ..chains.store import ChainStore
    from ..scenarios.registry import ScenarioRegistry

logger = logging.getLogger(__name__)

ScheduleT = TypeVar("ScheduleT", bound=ScheduleBase)

UPDATABLE_FIELDS = frozenset({"name", "cron_expr", "enabled", "config", "start_date", "end_date"})


class ScheduleTable(Generic[ScheduleT]):
    """One collection of schedules plus the fire history of each entry.

    Every mutation recomputes ``next_run`` so that it is ``None`` iff the
    entry is disabled and otherwise the next fire time after the instant of
    the mutation (never before ``start_date``). A recompute landing after
    ``end_date`` disables the entry.
    """

    def __init__(
        self,
        kind: str,
        model: type[ScheduleT],
        clock: Clock,
        lock: threading.RLock,
        check_target: Callable[[ScheduleT], None],
        data_file: Optional[Path] = None,
        history_size: int = 100,
    ):
        self.kind = kind
        self.model = model
        self.clock = clock
        self._lock = lock
        self._check_target = check_target
        self._records: dict[str, ScheduleT] = {}
        self._history: dict[str, deque[ScheduleExecution]] = defaultdict(lambda: deque(maxlen=history_size))
        self._snapshot = JsonSnapshot(data_file, model)
        for record in self._snapshot.load():
            self._records[record.id] = record

    # --- CRUD ---

    def create(self, **fields: Any) -> ScheduleT:
        """Validate and store a new schedule."""
        now = self.clock.now()
        record = self.model(id=uuid.uuid4().hex[:12], created_at=now, **fields)
        cron = self._validate(record)
        self._refresh(record, cron, now)
        with self._lock:
            self._records[record.id] = record
            self._persist()
        logger.info(
            "Created %s schedule %s '%s' (%s), next run %s",
            self.kind,
            record.id,
            record.name,
            record.cron_expr,
            record.next_run,
        )
        return record.model_copy(deep=True)

    def get(self, schedule_id: str) -> ScheduleT:
        with self._lock:
            return self._require(schedule_id).model_copy(deep=True)

    def list(self) -> list[ScheduleT]:
        with self._lock:
            records = sorted(self._records.values(), key=lambda r: (r.created_at, r.id))
            return [r.model_copy(deep=True) for r in records]

    def update(self, schedule_id: str, **changes: Any) -> ScheduleT:
        """Apply a partial update and recompute ``next_run`` from now."""
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update field(s): {', '.join(sorted(unknown))}")
        now = self.clock.now()
        with self._lock:
            current = self._require(schedule_id)
            updated = current.model_copy(update=changes, deep=True)
            updated = self.model.model_validate(updated.model_dump())
            cron = self._validate(updated)
            self._refresh(updated, cron, now)
            self._records[schedule_id] = updated
            self._persist()
        logger.info("Updated %s schedule %s, next run %s", self.kind, schedule_id, updated.next_run)
        return updated.model_copy(deep=True)

    def delete(self, schedule_id: str) -> None:
        with self._lock:
            self._require(schedule_id)
            del self._records[schedule_id]
            self._history.pop(schedule_id, None)
            self._persist()
        logger.info("Deleted %s schedule %s", self.kind, schedule_id)

    def enable(self, schedule_id: str) -> ScheduleT:
        now = self.clock.now()
        with self._lock:
            record = self._require(schedule_id)
            record.enabled = True
            self._refresh(record, CronExpression.parse(record.cron_expr), now)
            self._persist()
            logger.info("Enabled %s schedule %s, next run %s", self.kind, schedule_id, record.next_run)
            return record.model_copy(deep=True)

    def disable(self, schedule_id: str) -> ScheduleT:
        with self._lock:
            record = self._require(schedule_id)
            record.enabled = False
            record.next_run = None
            self._persist()
            logger.info("Disabled %s schedule %s", self.kind, schedule_id)
            return record.model_copy(deep=True)

    # --- Scheduler support ---

    def due(self, now: datetime) -> list[ScheduleT]:
        """Enabled entries whose ``next_run`` is at or before ``now``."""
        with self._lock:
            found = [
                r for r in self._records.values()
                if r.enabled and r.next_run is not None and r.next_run <= now
            ]
            found.sort(key=lambda r: (r.next_run, r.id))
            return [r.model_copy(deep=True) for r in found]

    def mark_fired(self, schedule_id: str, now: datetime) -> Optional[ScheduleT]:
        """Record a fire at ``now`` and move ``next_run`` past it.

        Returns ``None`` if the entry vanished or was disabled meanwhile.
        """
        with self._lock:
            record = self._records.get(schedule_id)
            if record is None or not record.enabled:
                return None
            record.last_run = now
            self._refresh(record, CronExpression.parse(record.cron_expr), now)
            self._persist()
            return record.model_copy(deep=True)

    def resync(self, now: datetime) -> int:
        """Skip fires missed while the process was down. Returns how many moved."""
        moved = 0
        with self._lock:
            for record in self._records.values():
                if not record.enabled:
                    record.next_run = None
                    continue
                if record.next_run is None or record.next_run < now:
                    self._refresh(record, CronExpression.parse(record.cron_expr), now)
                    moved += 1
            if moved:
                self._persist()
        if moved:
            logger.info("Rescheduled %d %s schedule(s) without backfilling missed runs", moved, self.kind)
        return moved

    def record_execution(self, execution: ScheduleExecution) -> None:
        with self._lock:
            if execution.schedule_id in self._records:
                self._history[execution.schedule_id].appendleft(execution)

    def executions(self, schedule_id: str, limit: Optional[int] = None) -> list[ScheduleExecution]:
        """Fire history of a schedule, most recent first."""
        with self._lock:
            self._require(schedule_id)
            items = list(self._history.get(schedule_id, ()))
        return items[:limit] if limit is not None else items

    # --- Internals ---

    def _require(self, schedule_id: str) -> ScheduleT:
        record = self._records.get(schedule_id)
        if record is None:
            raise NotFoundError(f"{self.kind.capitalize()} schedule not found: {schedule_id}")
        return record

    def _validate(self, record: ScheduleT) -> CronExpression:
        cron = CronExpression.parse(record.cron_expr)
        tz = self.clock.now().tzinfo
        if record.start_date is not None and record.start_date.tzinfo is None:
            record.start_date = record.start_date.replace(tzinfo=tz)
        if record.end_date is not None and record.end_date.tzinfo is None:
            record.end_date = record.end_date.replace(tzinfo=tz)
        if record.start_date and record.end_date and record.end_date < record.start_date:
            raise ValidationError("end_date cannot be earlier than start_date")
        self._check_target(record)
        return cron

    def _refresh(self, record: ScheduleT, cron: CronExpression, now: datetime) -> None:
        if not record.enabled:
            record.next_run = None
            return

        base = now
        if record.start_date is not None and record.start_date > now:
            base = record.start_date - timedelta(microseconds=1)
        next_run = cron.next_after(base)

        if record.end_date is not None and next_run > record.end_date:
            record.enabled = False
            record.next_run = None
            logger.info("%s schedule %s passed its end date and was disabled", self.kind.capitalize(), record.id)
            return
        record.next_run = next_run

    def _persist(self) -> None:
        self._snapshot.save(list(self._records.values()))


class ScheduleStore:
    """Owns scenario schedules and chain schedules."""

    def __init__(
        self,
        registry: ScenarioRegistry,
        chain_store: ChainStore,
        clock: Clock,
        data_dir: Optional[Path] = None,
        history_size: int = 100,
    ):
        self.registry = registry
        self.chain_store = chain_store
        self._lock = threading.RLock()
        self.scenarios: ScheduleTable[Schedule] = ScheduleTable(
            "scenario",
            Schedule,
            clock,
            self._lock,
            self._check_scenario,
            data_dir / "schedules.json" if data_dir else None,
            history_size,
        )
        self.chains: ScheduleTable[ChainSchedule] = ScheduleTable(
            "chain",
            ChainSchedule,
            clock,
            self._lock,
            self._check_chain,
            data_dir / "chain_schedules.json" if data_dir else None,
            history_size,
        )

    def _check_scenario(self, schedule: Schedule) -> None:
        self.registry.require(schedule.scenario_type)

    def _check_chain(self, schedule: ChainSchedule) -> None:
        if not self.chain_store.exists(schedule.chain_id):
            raise ValidationError(f"Unknown chain: {schedule.chain_id}")

    def due(self, now: datetime) -> tuple[list[Schedule], list[ChainSchedule]]:
        with self._lock:
            return self.scenarios.due(now), self.chains.due(now)

    def resync(self, now: datetime) -> int:
        return self.scenarios.resync(now) + self.chains.resync(now)
