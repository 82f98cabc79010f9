"""In-memory chain storage with optional JSON snapshots."""

from __future__ import annotations

import logging
import threading
import uuid
from pathlib import Path
from typing import TYPE_CHECKING, Any, Iterable, Optional

from ..clock import Clock
from ..errors import ConflictError, NotFoundError, ValidationError
from ..persistence import JsonSnapshot
from .schema import Chain, ChainExecution, ChainExecutionStep, ChainStep

if TYPE_CHECKING:
    from ..scenarios.registry import ScenarioRegistry

logger = logging.getLogger(__name__)


class ChainStore:
    """Owns chain definitions and the records of their executions."""

    def __init__(
        self,
        registry: ScenarioRegistry,
        clock: Clock,
        data_dir: Optional[Path] = None,
        history_limit: int = 100,
    ):
        self.registry = registry
        self.clock = clock
        self.history_limit = history_limit
        self._lock = threading.RLock()
        self._chains: dict[str, Chain] = {}
        self._executions: dict[str, ChainExecution] = {}
        self._chain_file = JsonSnapshot(data_dir / "chains.json" if data_dir else None, Chain)
        self._execution_file = JsonSnapshot(
            data_dir / "chain_executions.json" if data_dir else None, ChainExecution
        )
        self._restore()

    def _restore(self) -> None:
        for chain in self._chain_file.load():
            self._chains[chain.id] = chain
        now = self.clock.now()
        for execution in self._execution_file.load():
            if execution.in_flight:
                execution.error = "Interrupted by restart"
                execution.transition("failed", now)
                logger.warning("Execution %s of chain %s was interrupted", execution.id, execution.chain_id)
            self._executions[execution.id] = execution

    def _persist(self) -> None:
        self._chain_file.save(list(self._chains.values()))
        self._execution_file.save(list(self._executions.values()))

    # --- Chains ---

    def create(
        self,
        name: str,
        steps: list[ChainStep],
        description: str = "",
        config: Optional[dict[str, Any]] = None,
    ) -> Chain:
        """Validate and store a new chain. Returns a copy of the stored chain."""
        if not steps:
            raise ValidationError("A chain must contain at least one step")
        for index, step in enumerate(steps, 1):
            if not step.scenario_type:
                raise ValidationError(f"Step {index}: scenario type is required")
            if step.scenario_type not in self.registry:
                raise ValidationError(f"Step {index}: unknown scenario type '{step.scenario_type}'")
            if step.delay_before < 0:
                raise ValidationError(f"Step {index}: delay_before must be >= 0")

        chain = Chain(
            id=uuid.uuid4().hex[:12],
            name=name,
            description=description,
            config=dict(config or {}),
            steps=[
                step.model_copy(update={"name": step.name or step.scenario_type}, deep=True)
                for step in steps
            ],
            created_at=self.clock.now(),
        )
        with self._lock:
            self._chains[chain.id] = chain
            self._persist()
        logger.info("Created chain %s '%s' (%d steps)", chain.id, chain.name, len(chain.steps))
        return chain.model_copy(deep=True)

    def seed(self, chains: Iterable[Chain]) -> None:
        """Insert predefined chains that are not stored yet."""
        with self._lock:
            for chain in chains:
                if chain.id not in self._chains:
                    self._chains[chain.id] = chain.model_copy(
                        update={"created_at": self.clock.now()}, deep=True
                    )
            self._persist()

    def get(self, chain_id: str) -> Chain:
        with self._lock:
            chain = self._chains.get(chain_id)
            if chain is None:
                raise NotFoundError(f"Chain not found: {chain_id}")
            return chain.model_copy(deep=True)

    def exists(self, chain_id: str) -> bool:
        with self._lock:
            return chain_id in self._chains

    def list(self) -> list[Chain]:
        with self._lock:
            chains = sorted(self._chains.values(), key=lambda c: (c.created_at, c.id))
            return [chain.model_copy(deep=True) for chain in chains]

    def delete(self, chain_id: str) -> None:
        """Delete a chain and its execution history."""
        with self._lock:
            if chain_id not in self._chains:
                raise NotFoundError(f"Chain not found: {chain_id}")
            if any(e.in_flight for e in self._executions.values() if e.chain_id == chain_id):
                raise ConflictError(f"Chain {chain_id} has a running execution and cannot be deleted")
            del self._chains[chain_id]
            for execution_id in [e.id for e in self._executions.values() if e.chain_id == chain_id]:
                del self._executions[execution_id]
            self._persist()
        logger.info("Deleted chain %s", chain_id)

    # --- Executions ---

    def begin_execution(self, chain_id: str) -> ChainExecution:
        """Atomically create a ``pending`` execution for a chain with none in flight."""
        with self._lock:
            chain = self._chains.get(chain_id)
            if chain is None:
                raise NotFoundError(f"Chain not found: {chain_id}")
            running = self._in_flight(chain_id)
            if running is not None:
                raise ConflictError(f"Chain {chain_id} is already running (execution {running.id})")

            execution = ChainExecution(
                id=uuid.uuid4().hex[:12],
                chain_id=chain_id,
                started=self.clock.now(),
                steps=[
                    ChainExecutionStep(step_index=i, scenario_type=step.scenario_type)
                    for i, step in enumerate(chain.steps)
                ],
            )
            self._executions[execution.id] = execution
            self._trim(chain_id)
            self._persist()
            return execution.model_copy(deep=True)

    def save_execution(self, execution: ChainExecution) -> None:
        with self._lock:
            self._executions[execution.id] = execution.model_copy(deep=True)
            self._persist()

    def get_execution(self, execution_id: str) -> ChainExecution:
        with self._lock:
            execution = self._executions.get(execution_id)
            if execution is None:
                raise NotFoundError(f"Chain execution not found: {execution_id}")
            return execution.model_copy(deep=True)

    def executions(self, chain_id: str, limit: Optional[int] = None) -> list[ChainExecution]:
        """List executions of a chain, most recent first."""
        with self._lock:
            if chain_id not in self._chains:
                raise NotFoundError(f"Chain not found: {chain_id}")
            found = [e for e in self._executions.values() if e.chain_id == chain_id]
            found.sort(key=lambda e: e.started, reverse=True)
            if limit is not None:
                found = found[:limit]
            return [e.model_copy(deep=True) for e in found]

    def in_flight(self, chain_id: str) -> Optional[ChainExecution]:
        with self._lock:
            execution = self._in_flight(chain_id)
            return execution.model_copy(deep=True) if execution else None

    def _in_flight(self, chain_id: str) -> Optional[ChainExecution]:
        for execution in self._executions.values():
            if execution.chain_id == chain_id and execution.in_flight:
                return execution
        return None

    def _trim(self, chain_id: str) -> None:
        finished = [e for e in self._executions.values() if e.chain_id == chain_id and not e.in_flight]
        finished.sort(key=lambda e: e.started, reverse=True)
        for execution in finished[self.history_limit:]:
            del self._executions[execution.id]
