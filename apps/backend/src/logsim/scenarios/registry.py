"""Static catalog of scenario types and predefined chains."""

from __future__ import annotations

from typing import Iterable, Optional

from ..chains.schema import Chain, ChainStep
from ..errors import ValidationError
from .schema import ScenarioType

DEFAULT_SCENARIOS = [
    ScenarioType(
        type="load_test",
        name="Load Test",
        description="High request volume against every service",
        default_log_count=1000,
        labels={"test_type": "load", "environment": "testing"},
        parameters={"interval_ms": 10},
    ),
    ScenarioType(
        type="error_spike",
        name="Error Spike",
        description="Sudden burst of errors across the system",
        default_log_count=200,
        labels={"test_type": "errors", "environment": "testing"},
        parameters={"error_rate": 0.5},
    ),
    ScenarioType(
        type="slow_responses",
        name="Slow Responses",
        description="Requests with inflated response times",
        default_log_count=500,
        labels={"test_type": "performance", "environment": "testing"},
        parameters={"response_delay": 2000},
    ),
    ScenarioType(
        type="normal_operation",
        name="Normal Operation",
        description="Baseline traffic with a low error rate",
        default_log_count=300,
        labels={"environment": "production"},
        parameters={"error_rate": 0.05},
    ),
    ScenarioType(
        type="continuous_load",
        name="Continuous Load",
        description="Steady background load",
        default_log_count=100,
        labels={"test_type": "continuous", "environment": "testing"},
        parameters={"interval_seconds": 5},
    ),
]

PREDEFINED_CHAINS = [
    Chain(
        id="black_friday_rush",
        name="black_friday_rush",
        description="High load followed by an error spike",
        predefined=True,
        steps=[
            ChainStep(name="load", scenario_type="load_test"),
            ChainStep(name="errors", scenario_type="error_spike", delay_before=2),
        ],
    ),
    Chain(
        id="slow_and_steady",
        name="slow_and_steady",
        description="Slow responses under normal load",
        predefined=True,
        steps=[
            ChainStep(name="baseline", scenario_type="normal_operation"),
            ChainStep(name="slowdown", scenario_type="slow_responses", delay_before=2),
        ],
    ),
]


class ScenarioRegistry:
    """Immutable lookup of the scenario types known to the engine."""

    def __init__(
        self,
        scenarios: Iterable[ScenarioType] = DEFAULT_SCENARIOS,
        chains: Iterable[Chain] = PREDEFINED_CHAINS,
    ):
        self._scenarios = {s.type: s for s in scenarios}
        self._chains = list(chains)

    def get(self, scenario_type: str) -> Optional[ScenarioType]:
        return self._scenarios.get(scenario_type)

    def require(self, scenario_type: str) -> ScenarioType:
        """Return the scenario type or raise ``ValidationError``."""
        scenario = self._scenarios.get(scenario_type)
        if scenario is None:
            raise ValidationError(f"Unknown scenario type: {scenario_type}")
        return scenario

    def __contains__(self, scenario_type: str) -> bool:
        return scenario_type in self._scenarios

    def list(self) -> list[ScenarioType]:
        return [self._scenarios[key] for key in sorted(self._scenarios)]

    def chains(self) -> list[Chain]:
        return [chain.model_copy(deep=True) for chain in self._chains]
