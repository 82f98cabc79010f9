"""In-memory log generator used as the engine's generation collaborator."""

from __future__ import annotations

import asyncio
import logging
import random
import threading
import uuid
from collections import Counter, deque
from datetime import datetime
from typing import Any, Optional

from .metrics import GenerationMetrics
from .state import GenerationResult, LogEntry

logger = logging.getLogger(__name__)

SERVICES = [
    "api-gateway", "auth-service", "user-service", "product-service",
    "cart-service", "order-service", "payment-service", "inventory-service",
    "notification-service", "search-service", "recommendation-service",
    "analytics-service", "shipping-service", "review-service",
]

HTTP_METHODS = ["GET", "POST", "PUT", "DELETE", "PATCH"]
HTTP_PATHS = [
    "/api/v1/auth/login",
    "/api/v1/users/profile",
    "/api/v1/products",
    "/api/v1/cart/items",
    "/api/v1/orders",
    "/api/v1/payments",
    "/api/v1/search",
    "/api/v1/inventory",
]

BASE_ERROR_RATE = 0.05
WARN_RATE = 0.15
DEBUG_RATE = 0.05


class LogGenerator:
    """Produces synthetic request logs and keeps the most recent ones in memory."""

    def __init__(
        self,
        buffer_size: int = 50_000,
        pace_ms: int = 0,
        rng: Optional[random.Random] = None,
    ):
        self.pace_ms = pace_ms
        self.metrics = GenerationMetrics()
        self._logs: deque[LogEntry] = deque(maxlen=buffer_size)
        self._lock = threading.Lock()
        self._rng = rng or random.Random()

    async def run(self, scenario_type: str, config: dict[str, Any]) -> GenerationResult:
        """Generate ``config['log_count']`` entries for a scenario."""
        count = max(int(config.get("log_count", 0)), 0)
        if self.pace_ms > 0:
            entries = []
            for _ in range(count):
                entries.extend(self.generate(1, scenario_type, config))
                await asyncio.sleep(self.pace_ms / 1000)
        else:
            entries = self.generate(count, scenario_type, config)
            await asyncio.sleep(0)

        return GenerationResult(
            scenario=scenario_type,
            generated=len(entries),
            sample_log=entries[0] if entries else None,
        )

    def generate(
        self,
        count: int,
        scenario: Optional[str] = None,
        config: Optional[dict[str, Any]] = None,
    ) -> list[LogEntry]:
        """Generate ``count`` entries synchronously and record them."""
        config = config or {}
        entries = [self._make_entry(scenario, config) for _ in range(count)]
        with self._lock:
            self._logs.extend(entries)
            buffered = len(self._logs)
        self.metrics.observe(entries, buffered=buffered)
        logger.debug("Generated %d log entries for scenario=%s (buffered=%d)", len(entries), scenario, buffered)
        return entries

    def _make_entry(self, scenario: Optional[str], config: dict[str, Any]) -> LogEntry:
        rng = self._rng
        service = rng.choice(SERVICES)
        method = rng.choice(HTTP_METHODS)
        path = rng.choice(HTTP_PATHS)

        error_rate = float(config.get("error_rate", BASE_ERROR_RATE))
        roll = rng.random()
        if roll < error_rate:
            level, status = "ERROR", rng.choice([500, 502, 503, 504])
        elif roll < error_rate + WARN_RATE:
            level, status = "WARN", rng.choice([400, 401, 404, 429])
        elif roll < error_rate + WARN_RATE + DEBUG_RATE:
            level, status = "DEBUG", 200
        else:
            level, status = "INFO", rng.choice([200, 200, 200, 201, 204])

        duration = rng.randint(5, 300)
        delay = config.get("response_delay")
        if isinstance(delay, (int, float)) and delay > 0:
            duration += int(delay * rng.uniform(0.5, 1.5))

        return LogEntry(
            timestamp=datetime.now(),
            level=level,
            service=service,
            message=f"{method} {path} -> {status} in {duration}ms",
            trace_id=uuid.uuid4().hex[:16],
            method=method,
            path=path,
            status=status,
            duration=duration,
            scenario=scenario,
        )

    def recent(
        self,
        limit: int = 100,
        service: Optional[str] = None,
        level: Optional[str] = None,
    ) -> list[LogEntry]:
        """Most recent entries matching the filters, oldest first."""
        with self._lock:
            snapshot = list(self._logs)

        matched: list[LogEntry] = []
        for entry in reversed(snapshot):
            if service and entry.service != service:
                continue
            if level and entry.level.lower() != level.lower():
                continue
            matched.append(entry)
            if len(matched) >= limit:
                break
        matched.reverse()
        return matched

    def statistics(self) -> dict[str, Any]:
        with self._lock:
            snapshot = list(self._logs)
        levels = Counter(entry.level for entry in snapshot)
        services = Counter(entry.service for entry in snapshot)
        return {
            "total_logs": len(snapshot),
            "levels": dict(levels),
            "services": dict(services),
        }
