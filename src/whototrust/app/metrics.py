"""
Metrics Abstraction Layer for whototrust

This module provides a vendor-agnostic metrics interface so the request engine
and the identity synchronizer can report timings and counters without knowing
which backend is configured.

Key Components:
- MetricsClient: Abstract interface for all metrics operations
- TelegrafCompatibilityClient: Wrapper for aio-statsd's TelegrafStatsdClient
- NoOpMetricsClient: No-operation client for disabled metrics
- create_metrics_client: Factory function for backend selection

Metric types:
- Counters: Monotonic values that only increase (e.g., retry counts)
- Gauges: Point-in-time values that can increase/decrease
- Timers: Durations in seconds (e.g., request time)
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, Any, Optional, Union

from aio_statsd import TelegrafStatsdClient

logger = logging.getLogger(__name__)


class MetricsClient(ABC):
    """
    Abstract metrics client interface.

    Tag handling follows StatsD-style tag dictionaries.
    """

    @abstractmethod
    def increment(
        self,
        name: str,
        value: Union[int, float] = 1,
        tag_dict: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Increment a counter metric by the specified value.

        Args:
            name: Metric name (e.g., 'whototrust.esi.request.retry')
            value: Amount to increment by (default: 1)
            tag_dict: Optional tags for metric dimensions
        """
        pass

    @abstractmethod
    def gauge(
        self,
        name: str,
        value: Union[int, float],
        tag_dict: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Set a gauge metric to the specified value.

        Args:
            name: Metric name (e.g., 'whototrust.sync.identity.total')
            value: Current value to set
            tag_dict: Optional tags for metric dimensions
        """
        pass

    @abstractmethod
    def timer(
        self,
        name: str,
        value: Union[int, float],
        tag_dict: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Record a timing/duration measurement in seconds.

        Args:
            name: Metric name (e.g., 'whototrust.esi.request.time')
            value: Duration in seconds
            tag_dict: Optional tags for metric dimensions
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close the metrics client and flush any pending metrics."""
        pass


class TelegrafCompatibilityClient(MetricsClient):
    """
    MetricsClient backed by a TelegrafStatsdClient.

    The wrapped client must be connected (``await client.connect()``) before
    metrics are sent.
    """

    def __init__(self, telegraf_client: TelegrafStatsdClient):
        self.client = telegraf_client

    def increment(
        self,
        name: str,
        value: Union[int, float] = 1,
        tag_dict: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.client.increment(name, value, tag_dict=tag_dict or {})

    def gauge(
        self,
        name: str,
        value: Union[int, float],
        tag_dict: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.client.gauge(name, value, tag_dict=tag_dict or {})

    def timer(
        self,
        name: str,
        value: Union[int, float],
        tag_dict: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.client.timer(name, value, tag_dict=tag_dict or {})

    async def close(self) -> None:
        try:
            await self.client.close()
        except Exception as e:
            logger.warning(f"Error closing Telegraf client: {e}")


class NoOpMetricsClient(MetricsClient):
    """
    No-operation metrics client.

    Used when metrics are disabled and as the default collaborator in tests.
    """

    def increment(
        self,
        name: str,
        value: Union[int, float] = 1,
        tag_dict: Optional[Dict[str, Any]] = None,
    ) -> None:
        pass

    def gauge(
        self,
        name: str,
        value: Union[int, float],
        tag_dict: Optional[Dict[str, Any]] = None,
    ) -> None:
        pass

    def timer(
        self,
        name: str,
        value: Union[int, float],
        tag_dict: Optional[Dict[str, Any]] = None,
    ) -> None:
        pass

    async def close(self) -> None:
        pass


def create_metrics_client(
    backend: str,
    host: str = "localhost",
    port: int = 8125,
    telegraf_client: Optional[TelegrafStatsdClient] = None,
    debug: bool = False,
) -> MetricsClient:
    """
    Create the metrics client for the configured backend.

    Args:
        backend: Backend type ('telegraf' or 'none')
        host: Telegraf/StatsD host
        port: Telegraf/StatsD port
        telegraf_client: Pre-configured TelegrafStatsdClient instance
        debug: Enable debug logging

    Returns:
        MetricsClient: Configured metrics client instance

    Raises:
        ValueError: If backend type is invalid
    """
    backend = backend.lower()

    if debug:
        logger.debug(f"Creating metrics client with backend: {backend}")

    if backend == "telegraf":
        if telegraf_client is None:
            telegraf_client = TelegrafStatsdClient(host=host, port=port, debug=debug)
        return TelegrafCompatibilityClient(telegraf_client)

    elif backend == "none":
        logger.info("Metrics collection disabled (no-op client)")
        return NoOpMetricsClient()

    raise ValueError(
        f"Invalid metrics backend: {backend}. Supported backends: 'telegraf', 'none'"
    )
