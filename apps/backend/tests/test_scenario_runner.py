import random
import sys
import unittest
from datetime import timedelta
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1] / "src"))

from logsim.clock import ManualClock, settle
from logsim.errors import ConflictError, NotFoundError, ValidationError
from logsim.generator import LogGenerator
from logsim.scenarios.registry import ScenarioRegistry
from logsim.scenarios.runner import ScenarioRunner


class ExplodingGenerator(LogGenerator):
    async def run(self, scenario_type, config):
        raise RuntimeError("generator exploded")


class StopOnFinishGenerator(LogGenerator):
    """Stops its own instance just as the burst completes."""

    runner = None

    async def run(self, scenario_type, config):
        result = await super().run(scenario_type, config)
        self.runner.stop(scenario_type)
        return result


class ScenarioRunnerTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.clock = ManualClock()
        self.registry = ScenarioRegistry()
        self.generator = LogGenerator(rng=random.Random(7))
        self.runner = ScenarioRunner(self.registry, self.generator, self.clock, batch_interval_seconds=10)

    async def asyncTearDown(self) -> None:
        await self.runner.shutdown()

    async def test_single_burst_runs_to_completion(self):
        instance = self.runner.start("error_spike", {"log_count": 20})

        self.assertTrue(instance.active)
        self.assertEqual([i.id for i in self.runner.list().active], [instance.id])
        self.assertEqual(instance.config["error_rate"], 0.5)

        await settle()

        self.assertIsNone(self.runner.get_active("error_spike"))
        finished = self.runner.history()[0]
        self.assertEqual(finished.id, instance.id)
        self.assertEqual(finished.outcome, "completed")
        self.assertEqual(finished.generated, 20)
        self.assertEqual(self.generator.statistics()["total_logs"], 20)

    async def test_config_overrides_merge_over_defaults(self):
        instance = self.runner.start("load_test", {"log_count": 3, "labels": {"team": "sre"}})

        self.assertEqual(instance.config["log_count"], 3)
        self.assertEqual(instance.config["interval_ms"], 10)
        self.assertEqual(instance.config["labels"], {"test_type": "load", "environment": "testing", "team": "sre"})

    async def test_at_most_one_active_instance_per_type(self):
        first = self.runner.start("continuous_load")

        with self.assertRaises(ConflictError):
            self.runner.start("continuous_load")

        active = self.runner.list().active
        self.assertEqual(len(active), 1)
        self.assertEqual(active[0].id, first.id)

        # A different type is unaffected
        self.runner.start("error_spike", {"log_count": 1})

    async def test_unknown_type_is_rejected(self):
        with self.assertRaises(ValidationError):
            self.runner.start("does_not_exist")
        self.assertEqual(self.runner.list().active, [])

    async def test_stop_interrupts_periodic_wait(self):
        instance = self.runner.start("continuous_load", {"log_count": 10})
        await settle()
        self.assertEqual(self.clock.pending_sleepers, 1)

        stopped = self.runner.stop("continuous_load")
        await settle()

        self.assertFalse(stopped.active)
        self.assertEqual(stopped.outcome, "stopped")
        self.assertEqual(self.clock.pending_sleepers, 0)
        self.assertIsNone(self.runner.get_active("continuous_load"))
        self.assertEqual(self.runner.history()[0].id, instance.id)

        restarted = self.runner.start("continuous_load", {"log_count": 10})
        self.assertNotEqual(restarted.id, instance.id)

    async def test_stop_without_active_instance_raises_not_found(self):
        with self.assertRaises(NotFoundError):
            self.runner.stop("error_spike")

        self.runner.start("error_spike", {"log_count": 1})
        await settle()
        with self.assertRaises(NotFoundError):
            self.runner.stop("error_spike")
        self.assertEqual(len(self.runner.history()), 1)

    async def test_stop_with_stale_instance_id_is_refused(self):
        current = self.runner.start("continuous_load")

        with self.assertRaises(NotFoundError):
            self.runner.stop("continuous_load", instance_id="stale")
        self.assertEqual(self.runner.get_active("continuous_load").id, current.id)

        self.runner.stop("continuous_load", instance_id=current.id)

    async def test_periodic_mode_bursts_every_interval(self):
        self.runner.start("continuous_load", {"log_count": 10, "interval_seconds": 5})
        await settle()
        self.assertEqual(self.generator.statistics()["total_logs"], 10)

        await self.clock.advance(5)
        self.assertEqual(self.generator.statistics()["total_logs"], 20)

        await self.clock.advance(10)
        self.assertEqual(self.generator.statistics()["total_logs"], 40)

    async def test_timed_mode_spreads_logs_over_duration(self):
        self.runner.start("normal_operation", {"log_count": 60, "duration_seconds": 30})
        await settle()
        self.assertEqual(self.generator.statistics()["total_logs"], 20)
        self.assertIsNotNone(self.runner.get_active("normal_operation"))

        await self.clock.advance(30)

        self.assertIsNone(self.runner.get_active("normal_operation"))
        finished = self.runner.history()[0]
        self.assertEqual(finished.outcome, "completed")
        self.assertEqual(finished.generated, 60)

    async def test_start_date_delays_generation(self):
        start_at = self.clock.now() + timedelta(minutes=1)
        self.runner.start("error_spike", {"log_count": 5, "start_date": start_at.isoformat()})
        await settle()
        self.assertEqual(self.generator.statistics()["total_logs"], 0)

        await self.clock.advance(59)
        self.assertEqual(self.generator.statistics()["total_logs"], 0)

        await self.clock.advance(1)
        self.assertEqual(self.generator.statistics()["total_logs"], 5)

    async def test_invalid_start_date_is_rejected(self):
        with self.assertRaises(ValidationError):
            self.runner.start("error_spike", {"start_date": "not a date"})

    async def test_generator_failure_marks_instance_failed(self):
        runner = ScenarioRunner(self.registry, ExplodingGenerator(), self.clock)
        with self.assertLogs("logsim.scenarios.runner", level="ERROR"):
            runner.start("error_spike")
            await settle()

        finished = runner.history()[0]
        self.assertEqual(finished.outcome, "failed")
        self.assertEqual(finished.error, "generator exploded")
        self.assertIsNone(runner.get_active("error_spike"))

    async def test_stop_racing_completion_records_one_outcome(self):
        generator = StopOnFinishGenerator(rng=random.Random(1))
        runner = ScenarioRunner(self.registry, generator, self.clock)
        generator.runner = runner

        instance = runner.start("error_spike", {"log_count": 3})
        await settle()

        history = runner.history()
        self.assertEqual([i.id for i in history], [instance.id])
        self.assertEqual(history[0].outcome, "stopped")
        self.assertIsNone(runner.get_active("error_spike"))
        self.assertEqual(runner.list().active, [])

        with self.assertRaises(NotFoundError):
            runner.stop("error_spike")

    async def test_stop_after_natural_completion_is_not_found(self):
        instance = self.runner.start("error_spike", {"log_count": 3})
        await settle()

        with self.assertRaises(NotFoundError):
            self.runner.stop("error_spike", instance.id)
        self.assertEqual([i.id for i in self.runner.history()], [instance.id])
        self.assertEqual(self.runner.history()[0].outcome, "completed")

    async def test_listing_is_stable_without_mutation(self):
        self.runner.start("continuous_load")
        self.runner.start("slow_responses", {"log_count": 1})
        self.assertEqual(self.runner.list(), self.runner.list())
        self.assertEqual([i.type for i in self.runner.list().active], ["continuous_load", "slow_responses"])


if __name__ == "__main__":
    unittest.main()
