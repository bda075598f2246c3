"""GitHub Actions exporter main async loop."""

import asyncio
import logging
import sys
from typing import List, Optional

from prometheus_client import start_http_server

from actions_core.utils.logging import setup_logging

from .client import GitHubClient
from .collectors import (
    PeriodicCollector,
    WorkflowRunSource,
    WorkflowUsageSource,
    organization_runner_source,
    repository_runner_source,
)
from .config import ConfigurationError, ExporterConfig
from .errors import GitHubAPIError
from .metrics import ExporterMetrics
from .paginator import BackoffPolicy
from .state import SharedState
from .workflow_cache import WorkflowCacheRefresher


logger = logging.getLogger(__name__)

SERVICE_NAME = "github-actions-exporter"


class Exporter:
    """Wires the refresher and the collectors around one client and one state."""

    def __init__(
        self,
        config: ExporterConfig,
        client: Optional[GitHubClient] = None,
        metrics: Optional[ExporterMetrics] = None,
        policy: Optional[BackoffPolicy] = None,
    ):
        self.config = config
        self.client = client if client is not None else GitHubClient(config)
        self.metrics = (
            metrics
            if metrics is not None
            else ExporterMetrics(config.workflow_fields, config.fetch_workflow_run_usage)
        )
        self.policy = (
            policy
            if policy is not None
            else BackoffPolicy(transient_attempts=config.transient_retry_attempts)
        )
        self.state = SharedState()
        self.metrics.track_rate_limit(self.client)

        self.refresher = WorkflowCacheRefresher(
            self.client, self.policy, self.state, config, metrics=self.metrics
        )
        self.collectors = self._build_collectors()

    def _build_collectors(self) -> List[PeriodicCollector]:
        config = self.config
        collectors = [
            PeriodicCollector(
                "workflow_runs",
                config.refresh_seconds,
                WorkflowRunSource(self.client, self.policy, self.state, config),
                self.metrics.run_publisher(),
                metrics=self.metrics,
            ),
            PeriodicCollector(
                "repository_runners",
                config.refresh_seconds,
                repository_runner_source(self.client, self.policy, self.state),
                self.metrics.runner_publisher(),
                metrics=self.metrics,
            ),
            PeriodicCollector(
                "workflow_usage",
                config.billing_refresh_seconds,
                WorkflowUsageSource(self.client, self.policy, self.state),
                self.metrics.usage_publisher(),
                metrics=self.metrics,
            ),
        ]
        if config.organizations:
            collectors.append(
                PeriodicCollector(
                    "organization_runners",
                    config.refresh_seconds,
                    organization_runner_source(
                        self.client, self.policy, config.organizations
                    ),
                    self.metrics.organization_runner_publisher(),
                    metrics=self.metrics,
                )
            )
        else:
            logger.info("No organizations configured, organization runners disabled")
        return collectors

    async def run(self):
        """Start the metrics server, the refresher, then every collector."""
        # Metrics server first so it stays up even if GitHub is unreachable
        start_http_server(self.config.port)
        logger.info(f"Prometheus metrics server started on port {self.config.port}")

        tasks = [asyncio.create_task(self.refresher.run(), name="workflow_cache")]
        try:
            logger.info(
                f"Waiting {self.config.startup_grace_seconds}s for the initial "
                "repository and workflow definition fetch"
            )
            await asyncio.sleep(self.config.startup_grace_seconds)

            for collector in self.collectors:
                tasks.append(asyncio.create_task(collector.run(), name=collector.name))
            logger.info("GitHub Actions exporter started")

            await asyncio.gather(*tasks)
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            await self.client.close()
            logger.info("Exporter shutdown complete")


async def main(config: Optional[ExporterConfig] = None):
    """Entry point."""
    if config is None:
        config = ExporterConfig.from_env()
    setup_logging(SERVICE_NAME, config.log_level, config.log_format)

    try:
        exporter = Exporter(config)
    except GitHubAPIError as e:
        raise ConfigurationError(f"GitHub client creation failed: {e}") from e
    await exporter.run()


def run():
    try:
        config = ExporterConfig.from_env()
    except ConfigurationError as e:
        setup_logging(SERVICE_NAME)
        logger.critical(f"Invalid configuration: {e}")
        sys.exit(1)

    try:
        asyncio.run(main(config))
    except ConfigurationError as e:
        logger.critical(str(e))
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Shutting down...")
        sys.exit(0)


if __name__ == "__main__":
    run()
