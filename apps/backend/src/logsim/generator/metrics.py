"""Prometheus metrics describing the generated traffic."""

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest

from .state import LogEntry


class GenerationMetrics:
    """Metric families kept in a private registry per generator."""

    def __init__(self) -> None:
        self.registry = CollectorRegistry()

        self.logs_generated = Counter(
            "logsim_logs_generated",
            "Total number of generated log entries",
            labelnames=["service", "level"],
            registry=self.registry,
        )
        self.http_requests = Counter(
            "logsim_http_requests",
            "Simulated HTTP requests by outcome",
            labelnames=["service", "method", "status"],
            registry=self.registry,
        )
        self.http_request_duration = Histogram(
            "logsim_http_request_duration_seconds",
            "Simulated HTTP request latency in seconds",
            labelnames=["service"],
            buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
            registry=self.registry,
        )
        self.buffered_logs = Gauge(
            "logsim_buffered_logs",
            "Number of log entries currently held in memory",
            registry=self.registry,
        )

    def observe(self, entries: list[LogEntry], buffered: int) -> None:
        for entry in entries:
            self.logs_generated.labels(service=entry.service, level=entry.level).inc()
            self.http_requests.labels(
                service=entry.service, method=entry.method, status=str(entry.status)
            ).inc()
            self.http_request_duration.labels(service=entry.service).observe(entry.duration / 1000)
        self.buffered_logs.set(buffered)

    def snapshot(self) -> list[dict]:
        """Flatten every sample into ``{name, value, type, labels}`` records."""
        samples = []
        for family in self.registry.collect():
            for sample in family.samples:
                if sample.name.endswith("_created"):
                    continue
                samples.append(
                    {
                        "name": sample.name,
                        "value": sample.value,
                        "type": family.type,
                        "labels": dict(sample.labels),
                    }
                )
        return samples

    def exposition(self) -> str:
        return generate_latest(self.registry).decode("utf-8")
