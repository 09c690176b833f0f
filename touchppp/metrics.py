"""Prometheus metrics for modem sessions."""

import logging
import threading

from prometheus_client import CollectorRegistry, Counter, Histogram, push_to_gateway
from prometheus_client.exposition import basic_auth_handler

logger = logging.getLogger(__name__)


class Metrics:
    """Prometheus metrics with periodic push to a push gateway (e.g. Grafana Cloud)."""

    def __init__(self, url="", user="", api_key="", push_interval=60):
        self.url = url
        self.user = user
        self.api_key = api_key
        self.registry = CollectorRegistry()

        self.sessions_total = Counter(
            "touchppp_sessions_total", "Device connections accepted",
            registry=self.registry,
        )
        self.dials_total = Counter(
            "touchppp_dials_total", "Dial attempts",
            labelnames=["result"],
            registry=self.registry,
        )
        self.disconnects_total = Counter(
            "touchppp_disconnects_total", "Online sessions ended",
            labelnames=["reason"],
            registry=self.registry,
        )
        self.bytes_relayed = Counter(
            "touchppp_bytes_relayed_total", "Bytes relayed while online",
            labelnames=["direction"],
            registry=self.registry,
        )
        self.online_duration = Histogram(
            "touchppp_online_duration_seconds", "Time spent online per call",
            buckets=[30, 60, 120, 300, 600, 1800, 3600, 7200],
            registry=self.registry,
        )

        self.push_enabled = bool(url and user and api_key)
        self._stop_event = threading.Event()
        if not self.push_enabled:
            if url:
                logger.warning("Metrics URL set without credentials, push disabled")
            else:
                logger.info("Metrics push gateway not configured, push disabled")
            return

        self._push_thread = threading.Thread(
            target=self._push_loop, args=(push_interval,), daemon=True
        )
        self._push_thread.start()
        logger.info(f"Metrics push enabled (push every {push_interval}s)")

    def record_session(self):
        """Record an accepted device connection."""
        self.sessions_total.inc()

    def record_dial(self, result):
        """Record a dial attempt: 'connected', 'refused', 'timeout', 'other' or 'aborted'."""
        self.dials_total.labels(result=result).inc()

    def record_call_end(self, reason, duration_secs, to_backend, to_device):
        """Record the end of an online call with its byte counts."""
        self.disconnects_total.labels(reason=reason).inc()
        self.online_duration.observe(duration_secs)
        self.bytes_relayed.labels(direction="to_backend").inc(to_backend)
        self.bytes_relayed.labels(direction="to_device").inc(to_device)

    def _push_loop(self, interval):
        """Periodically push metrics to the gateway."""
        while not self._stop_event.wait(interval):
            self._push()

    def _push(self):
        """Push metrics to the gateway."""
        def auth_handler(url, method, timeout, headers, data):
            return basic_auth_handler(url, method, timeout, headers, data,
                                      self.user, self.api_key)

        try:
            push_to_gateway(
                self.url, job="touchppp",
                registry=self.registry, handler=auth_handler,
            )
            logger.debug("Metrics pushed")
        except OSError as e:
            logger.warning(f"Failed to push metrics: {e}")

    def stop(self):
        """Stop the push thread and do a final push."""
        if not self.push_enabled:
            return
        self._stop_event.set()
        self._push()
