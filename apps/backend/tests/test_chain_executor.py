import random
import sys
import unittest
from datetime import timedelta
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1] / "src"))

from logsim.chains.executor import ChainExecutor
from logsim.chains.schema import ChainExecution, ChainStep
from logsim.chains.store import ChainStore
from logsim.clock import ManualClock, settle
from logsim.errors import ConflictError, NotFoundError, ValidationError
from logsim.generator import LogGenerator
from logsim.scenarios.registry import ScenarioRegistry
from logsim.scenarios.runner import ScenarioRunner


class ChainExecutorTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.clock = ManualClock()
        self.registry = ScenarioRegistry()
        self.generator = LogGenerator(rng=random.Random(11))
        self.runner = ScenarioRunner(self.registry, self.generator, self.clock)
        self.store = ChainStore(self.registry, self.clock)
        self.store.seed(self.registry.chains())
        self.executor = ChainExecutor(self.store, self.runner, self.clock)

    async def asyncTearDown(self) -> None:
        await self.executor.shutdown()
        await self.runner.shutdown()

    def _chain(self, *steps: ChainStep, config=None):
        return self.store.create(name="test chain", steps=list(steps), config=config)

    def _execution(self, execution_id: str) -> ChainExecution:
        return self.store.get_execution(execution_id)

    async def test_second_step_waits_for_its_delay(self):
        chain = self._chain(
            ChainStep(scenario_type="continuous_load", config={"log_count": 5}),
            ChainStep(scenario_type="error_spike", delay_before=5, config={"log_count": 5}),
        )
        t0 = self.clock.now()
        execution = self.executor.start(chain.id)
        self.assertEqual(execution.status, "running")

        await settle()
        self.assertIsNotNone(self.runner.get_active("continuous_load"))
        self.assertEqual(self._execution(execution.id).current_step_index, 1)

        await self.clock.advance(4)
        self.assertIsNone(self.runner.get_active("error_spike"))
        self.assertFalse(any(i.type == "error_spike" for i in self.runner.history()))
        self.assertEqual(self._execution(execution.id).status, "running")

        await self.clock.advance(1)
        spike = next(i for i in self.runner.history() if i.type == "error_spike")
        self.assertEqual(spike.started, t0 + timedelta(seconds=5))

        done = self._execution(execution.id)
        self.assertEqual(done.status, "completed")
        self.assertEqual(done.current_step_index, 2)
        self.assertEqual([s.status for s in done.steps], ["completed", "completed"])
        self.assertEqual(done.finished, t0 + timedelta(seconds=5))
        self.assertEqual(self.executor.active(), [])

    async def test_step_config_inherits_chain_defaults(self):
        chain = self._chain(
            ChainStep(scenario_type="error_spike"),
            ChainStep(scenario_type="slow_responses", config={"log_count": 2}),
            config={"log_count": 7},
        )
        self.executor.start(chain.id)
        await settle()

        generated = {i.type: i.generated for i in self.runner.history()}
        self.assertEqual(generated, {"error_spike": 7, "slow_responses": 2})

    async def test_duration_bound_stops_step_instance(self):
        chain = self._chain(
            ChainStep(scenario_type="continuous_load", config={"log_count": 1, "duration_seconds": 10}),
            ChainStep(scenario_type="error_spike", config={"log_count": 1}),
        )
        execution = self.executor.start(chain.id)
        await settle()
        self.assertIsNotNone(self.runner.get_active("continuous_load"))
        self.assertIsNone(self.runner.get_active("error_spike"))

        await self.clock.advance(10)

        self.assertIsNone(self.runner.get_active("continuous_load"))
        done = self._execution(execution.id)
        self.assertEqual(done.status, "completed")
        self.assertIsNotNone(done.steps[1].instance_id)

    async def test_starting_a_running_chain_conflicts(self):
        chain = self._chain(
            ChainStep(scenario_type="error_spike", config={"log_count": 1}),
            ChainStep(scenario_type="normal_operation", delay_before=60, config={"log_count": 1}),
        )
        first = self.executor.start(chain.id)

        with self.assertRaises(ConflictError):
            self.executor.start(chain.id)
        self.assertEqual([e.id for e in self.executor.active()], [first.id])

    async def test_unknown_chain_is_not_found(self):
        with self.assertRaises(NotFoundError):
            self.executor.start("missing")

    async def test_delete_is_refused_while_execution_in_flight(self):
        chain = self._chain(
            ChainStep(scenario_type="error_spike", config={"log_count": 1}),
            ChainStep(scenario_type="normal_operation", delay_before=30, config={"log_count": 1}),
        )
        execution = self.executor.start(chain.id)
        await settle()

        with self.assertRaises(ConflictError):
            self.store.delete(chain.id)

        self.executor.stop(execution.id)
        await settle()
        self.store.delete(chain.id)
        with self.assertRaises(NotFoundError):
            self.store.get(chain.id)

    async def test_failed_start_fails_execution_and_skips_rest(self):
        self.runner.start("continuous_load")
        chain = self._chain(
            ChainStep(scenario_type="error_spike", config={"log_count": 1}),
            ChainStep(scenario_type="continuous_load"),
            ChainStep(scenario_type="slow_responses", config={"log_count": 1}),
        )
        execution = self.executor.start(chain.id)
        await settle()

        failed = self._execution(execution.id)
        self.assertEqual(failed.status, "failed")
        self.assertEqual(failed.failed_step_index, 1)
        self.assertIn("already running", failed.error)
        self.assertEqual([s.status for s in failed.steps], ["completed", "failed", "skipped"])
        self.assertIsNone(self.runner.get_active("slow_responses"))

    async def test_stop_interrupts_bound_instance(self):
        chain = self._chain(
            ChainStep(scenario_type="continuous_load", config={"duration_minutes": 5}),
            ChainStep(scenario_type="error_spike", config={"log_count": 1}),
        )
        execution = self.executor.start(chain.id)
        await settle()
        self.assertIsNotNone(self.runner.get_active("continuous_load"))

        stopped = self.executor.stop(execution.id)
        await settle()

        self.assertEqual(stopped.status, "stopped")
        self.assertIsNone(self.runner.get_active("continuous_load"))
        self.assertEqual(self.clock.pending_sleepers, 0)

        record = self._execution(execution.id)
        self.assertEqual(record.status, "stopped")
        self.assertEqual([s.status for s in record.steps], ["skipped", "skipped"])
        self.assertEqual(self.executor.active(), [])

        with self.assertRaises(NotFoundError):
            self.executor.stop(execution.id)

    async def test_stop_during_step_delay_never_starts_later_step(self):
        chain = self._chain(
            ChainStep(scenario_type="error_spike", config={"log_count": 1}),
            ChainStep(scenario_type="normal_operation", delay_before=30, config={"log_count": 1}),
        )
        execution = self.executor.start(chain.id)
        await settle()
        self.assertEqual(self.clock.pending_sleepers, 1)

        self.executor.stop(execution.id)
        await settle()
        self.assertEqual(self.clock.pending_sleepers, 0)

        await self.clock.advance(60)
        self.assertIsNone(self.runner.get_active("normal_operation"))
        self.assertEqual([i.type for i in self.runner.history()], ["error_spike"])

        record = self._execution(execution.id)
        self.assertEqual(record.status, "stopped")
        self.assertEqual([s.status for s in record.steps], ["completed", "skipped"])
        self.assertIsNone(record.steps[1].instance_id)

    async def test_chain_can_be_deleted_after_completed_or_failed_execution(self):
        completed = self._chain(ChainStep(scenario_type="error_spike", config={"log_count": 1}))
        done = self.executor.start(completed.id)
        await settle()
        self.assertEqual(self._execution(done.id).status, "completed")

        self.runner.start("continuous_load")
        failing = self._chain(ChainStep(scenario_type="continuous_load"))
        failed = self.executor.start(failing.id)
        await settle()
        self.assertEqual(self._execution(failed.id).status, "failed")

        for chain, execution in ((completed, done), (failing, failed)):
            with self.subTest(status=self._execution(execution.id).status):
                self.store.delete(chain.id)
                with self.assertRaises(NotFoundError):
                    self.store.get(chain.id)
                with self.assertRaises(NotFoundError):
                    self.store.get_execution(execution.id)
                with self.assertRaises(NotFoundError):
                    self.executor.start(chain.id)

    async def test_predefined_chain_runs_all_steps(self):
        execution = self.executor.start("black_friday_rush")
        await settle()
        self.assertEqual(self._execution(execution.id).status, "running")

        await self.clock.advance(2)

        done = self._execution(execution.id)
        self.assertEqual(done.status, "completed")
        self.assertEqual({i.type for i in self.runner.history()}, {"load_test", "error_spike"})

    async def test_executions_listed_most_recent_first(self):
        chain = self._chain(ChainStep(scenario_type="error_spike", config={"log_count": 1}))
        first = self.executor.start(chain.id)
        await settle()
        await self.clock.advance(1)
        second = self.executor.start(chain.id)
        await settle()

        ids = [e.id for e in self.store.executions(chain.id)]
        self.assertEqual(ids, [second.id, first.id])
        self.assertEqual([e.id for e in self.store.executions(chain.id, limit=1)], [second.id])


class ChainStoreValidationTests(unittest.TestCase):
    def setUp(self) -> None:
        self.registry = ScenarioRegistry()
        self.store = ChainStore(self.registry, ManualClock())

    def test_rejects_empty_chain(self):
        with self.assertRaises(ValidationError):
            self.store.create(name="empty", steps=[])

    def test_rejects_unknown_scenario_type(self):
        with self.assertRaises(ValidationError):
            self.store.create(name="bad", steps=[ChainStep(scenario_type="nope")])
        self.assertEqual(self.store.list(), [])

    def test_step_name_defaults_to_scenario_type(self):
        chain = self.store.create(name="ok", steps=[ChainStep(scenario_type="error_spike")])
        self.assertEqual(chain.steps[0].name, "error_spike")
        self.assertFalse(chain.predefined)

    def test_unknown_chain_lookups(self):
        with self.assertRaises(NotFoundError):
            self.store.get("missing")
        with self.assertRaises(NotFoundError):
            self.store.delete("missing")
        with self.assertRaises(NotFoundError):
            self.store.executions("missing")


if __name__ == "__main__":
    unittest.main()
