"""Prometheus metrics for the GitHub Actions exporter."""

import logging
import time
from typing import Dict, Iterable, NamedTuple, Optional, Sequence, Tuple

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, Histogram

from .fields import ORGANIZATION_RUNNER_LABELS, RUNNER_LABELS, USAGE_LABELS


logger = logging.getLogger(__name__)

RUN_STATUS = "github_workflow_run_status"
RUN_DURATION = "github_workflow_run_duration_ms"
RUNNER_STATUS = "github_runner_status"
ORGANIZATION_RUNNER_STATUS = "github_runner_organization_status"
WORKFLOW_USAGE = "github_workflow_usage_seconds"


class Sample(NamedTuple):
    metric: str
    labels: Tuple[str, ...]
    value: float


class GaugePublisher:
    """Reset-then-set publication for a group of gauges owned by one collector.

    Every previously published label combination is removed before this
    cycle's samples are written, so combinations that vanished upstream do not
    linger.
    """

    def __init__(self, gauges: Dict[str, Gauge]):
        self.gauges = gauges

    def publish(self, samples: Iterable[Sample]) -> int:
        samples = list(samples)
        for gauge in self.gauges.values():
            gauge.clear()

        written = 0
        for sample in samples:
            gauge = self.gauges.get(sample.metric)
            if gauge is None:
                logger.warning(f"Dropping sample for unowned metric {sample.metric}")
                continue
            gauge.labels(*sample.labels).set(sample.value)
            written += 1
        return written


class ExporterMetrics:
    """Every metric the exporter registers, bound to one registry."""

    def __init__(
        self,
        workflow_fields: Sequence[str],
        fetch_workflow_run_usage: bool = True,
        registry: Optional[CollectorRegistry] = None,
    ):
        registry = registry if registry is not None else REGISTRY
        self.registry = registry

        self.run_status = Gauge(
            RUN_STATUS,
            "Status of GitHub Actions workflow runs created within the lookback "
            "window. Labels are defined by EXPORT_FIELDS_WORKFLOW_RUN.",
            list(workflow_fields),
            registry=registry,
        )
        self.run_duration = None
        if fetch_workflow_run_usage:
            self.run_duration = Gauge(
                RUN_DURATION,
                "Duration of GitHub Actions workflow runs in milliseconds, "
                "-1 when it cannot be computed.",
                list(workflow_fields),
                registry=registry,
            )
        self.runner_status = Gauge(
            RUNNER_STATUS,
            "Repository runner status (1 for online, 0 for offline).",
            RUNNER_LABELS,
            registry=registry,
        )
        self.organization_runner_status = Gauge(
            ORGANIZATION_RUNNER_STATUS,
            "Organization runner status (1 for online, 0 for offline).",
            ORGANIZATION_RUNNER_LABELS,
            registry=registry,
        )
        self.workflow_usage = Gauge(
            WORKFLOW_USAGE,
            "Billable seconds used by a workflow per operating system during "
            "the current billing cycle.",
            USAGE_LABELS,
            registry=registry,
        )

        # Exporter health
        self.cycle_total = Counter(
            "github_exporter_cycle_total",
            "Collection cycles by outcome",
            ["collector", "status"],
            registry=registry,
        )
        self.cycle_duration_seconds = Histogram(
            "github_exporter_cycle_duration_seconds",
            "Collection cycle duration",
            ["collector"],
            registry=registry,
        )
        self.last_success_timestamp_seconds = Gauge(
            "github_exporter_last_success_timestamp_seconds",
            "Timestamp of the last fully successful cycle",
            ["collector"],
            registry=registry,
        )
        self.rate_limit_remaining = Gauge(
            "github_exporter_rate_limit_remaining",
            "Requests left in the current GitHub rate limit window",
            registry=registry,
        )
        self.monitored_repositories = Gauge(
            "github_exporter_monitored_repositories",
            "Repositories in the current monitored set",
            registry=registry,
        )
        self.cached_workflows = Gauge(
            "github_exporter_cached_workflows",
            "Workflow definitions in the current cache snapshot",
            registry=registry,
        )

    def run_publisher(self) -> GaugePublisher:
        gauges = {RUN_STATUS: self.run_status}
        if self.run_duration is not None:
            gauges[RUN_DURATION] = self.run_duration
        return GaugePublisher(gauges)

    def runner_publisher(self) -> GaugePublisher:
        return GaugePublisher({RUNNER_STATUS: self.runner_status})

    def organization_runner_publisher(self) -> GaugePublisher:
        return GaugePublisher(
            {ORGANIZATION_RUNNER_STATUS: self.organization_runner_status}
        )

    def usage_publisher(self) -> GaugePublisher:
        return GaugePublisher({WORKFLOW_USAGE: self.workflow_usage})

    def track_rate_limit(self, client):
        self.rate_limit_remaining.set_function(
            lambda: (
                client.rate_limit_remaining
                if client.rate_limit_remaining is not None
                else float("nan")
            )
        )

    def record_cycle(self, collector: str, status: str, duration: float):
        self.cycle_total.labels(collector=collector, status=status).inc()
        self.cycle_duration_seconds.labels(collector=collector).observe(duration)
        if status == "ok":
            self.last_success_timestamp_seconds.labels(collector=collector).set(
                time.time()
            )
