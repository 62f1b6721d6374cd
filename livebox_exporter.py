#!/usr/bin/env python3
"""
Prometheus exporter for Orange Livebox metrics.

This module scrapes the Livebox sysbus API and exports device, ONT and WAN
metrics in Prometheus format. Scrapes are either triggered by each Prometheus
pull (default mode) or run on a timer (periodic mode).
"""

from __future__ import annotations

import argparse
import logging
import os
import random
import signal
import threading
from typing import Callable, Optional
from wsgiref.simple_server import WSGIRequestHandler, make_server

from prometheus_client import CollectorRegistry, Counter, Histogram, make_wsgi_app
from prometheus_client.exposition import ThreadingWSGIServer

from livebox_aggregator import MetricsAggregator
from livebox_client import LiveboxClient, LiveboxClientFactory
from livebox_client_exceptions import ScrapeCancelledException
from livebox_discovery import discover_livebox
from livebox_metrics import LiveboxMetrics
from livebox_models import DeviceInfo, QueryResult, ScrapeStatus
from livebox_session import DEFAULT_USERNAME

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

DEVICE_INFO_REFRESH_PROBABILITY = 0.5
DEFAULT_TIMER_INTERVAL = 10.0

MODE_DEFAULT = "default"
MODE_PERIODIC = "periodic"

# Metrics Registry
registry = CollectorRegistry()

scrape_duration_seconds = Histogram(
    "livebox_exporter_scrape_duration_seconds",
    "Time spent scraping Livebox metrics",
    registry=registry
)

scrape_errors_total = Counter(
    "livebox_exporter_scrape_errors_total",
    "Total number of scrape errors",
    registry=registry
)


class LiveboxMetricsExporter:
    """Collects metrics from the Livebox and updates the published values."""

    def __init__(self,
                 client: LiveboxClient,
                 metrics: LiveboxMetrics,
                 aggregator: Optional[MetricsAggregator] = None,
                 refresh_probability: float = DEVICE_INFO_REFRESH_PROBABILITY,
                 random_source: Callable[[], float] = random.random):
        self.client = client
        self.metrics = metrics
        self.auth_disabled = client.session_manager.auth_disabled
        self.aggregator = aggregator or MetricsAggregator(self.auth_disabled)
        self.refresh_probability = refresh_probability
        self._random = random_source
        # timer and pull triggers share the session, the device info cache and the rate baseline
        self._lock = threading.Lock()
        self.last_device_info: Optional[DeviceInfo] = None

    def scrape(self, cancel_event: Optional[threading.Event] = None) -> ScrapeStatus:
        """Run one scrape, retried once with a new session context if the current one was rejected."""
        with self._lock, scrape_duration_seconds.time():
            status = self._scrape(False, cancel_event)
            if status == ScrapeStatus.REAUTH_REQUIRED:
                logger.info("Auth context seems invalid or expired. Retry with new auth...")
                status = self._scrape(True, cancel_event)
                if status == ScrapeStatus.REAUTH_REQUIRED:
                    logger.error("Unable to scrape metrics due to authentication issue "
                                 "(maybe due to unexpected responses from livebox).")
            if status != ScrapeStatus.SUCCESS:
                scrape_errors_total.inc()
            return status

    def scrape_on_demand(self, cancel_event: Optional[threading.Event] = None) -> Optional[ScrapeStatus]:
        try:
            return self.scrape(cancel_event)
        except ScrapeCancelledException:
            logger.debug("On-demand scrape cancelled")
            return None

    def _should_refresh_device_info(self, force_reauth: bool) -> bool:
        # device info is the cheapest way to notice an expired session, no need to get it every time
        return (force_reauth
                or self.last_device_info is None
                or self.last_device_info.device_status != "Up"
                or self._random() < self.refresh_probability)

    def _scrape(self, force_reauth: bool, cancel_event: Optional[threading.Event]) -> ScrapeStatus:
        device_info = None
        device = None
        wan = None
        net_dev_stats = None
        try:
            if self._should_refresh_device_info(force_reauth):
                result = self.client.get_device_info(force_reauth, cancel_event)
                device_info = result.payload if result is not None else None
                # incomplete when the session context is invalid or expired: cache only a full state
                if device_info is not None and device_info.device_status is not None:
                    self.last_device_info = device_info
            else:
                device_info = self.last_device_info

            backing_off = self.client.session_manager.is_backing_off()
            if backing_off and not self.auth_disabled:
                logger.debug("Login suppressed by Livebox, device status and ONT stats skipped")

            if device_info is not None and not self.auth_disabled and not backing_off:
                # both only available with a valid session context
                if device_info.base_mac:
                    result = self.client.get_device_status(device_info, cancel_event)
                    if result is not None:
                        if self._should_reauth(result, force_reauth):
                            return ScrapeStatus.REAUTH_REQUIRED
                        device = result.payload
                else:
                    logger.warning("Device info has no base MAC, device status skipped")

                result = self.client.get_net_dev_stats(cancel_event=cancel_event)
                if result is not None:
                    if self._should_reauth(result, force_reauth):
                        return ScrapeStatus.REAUTH_REQUIRED
                    net_dev_stats = result.payload

            # available even when the session context is invalid or expired
            result = self.client.get_wan_status(cancel_event)
            wan = result.payload if result is not None else None
        except ScrapeCancelledException:
            raise
        except Exception as e:
            logger.exception(f"Exception occurred while scraping metrics: {e}")
            self.metrics.update(self.aggregator.update(device_info, device, wan, net_dev_stats))
            return ScrapeStatus.ERROR

        self.metrics.update(self.aggregator.update(device_info, device, wan, net_dev_stats))
        return ScrapeStatus.SUCCESS

    @staticmethod
    def _should_reauth(result: QueryResult, already_reauth: bool) -> bool:
        if not result.errors:
            return False
        if not result.has_permission_error:
            logger.error("\n".join(f"{e.code}: {e.description}" for e in result.errors))
            return False
        return not already_reauth


def run_periodic(exporter: LiveboxMetricsExporter, interval: float, stop_event: threading.Event):
    logger.info(f"Timer started ({interval}s)")
    while not stop_event.wait(interval):
        try:
            status = exporter.scrape(stop_event)
            logger.debug(f"Scrape finished: {status.value}")
        except ScrapeCancelledException:
            break
        except Exception as e:
            logger.exception(f"Failed to collect Livebox metrics: {e}")
    logger.info("Timer stopped")


HOMEPAGE = b"Livebox Exporter is up. See /metrics endpoint"


def make_exporter_wsgi_app(metrics_registry: CollectorRegistry):
    """Homepage on /, Prometheus exposition everywhere else."""
    metrics_app = make_wsgi_app(metrics_registry)

    def app(environ, start_response):
        if environ.get("PATH_INFO", "/") == "/":
            start_response("200 OK", [("Content-Type", "text/plain; charset=utf-8")])
            return [HOMEPAGE]
        return metrics_app(environ, start_response)

    return app


class _QuietRequestHandler(WSGIRequestHandler):

    def log_message(self, format, *args):
        logger.debug(f"{self.address_string()} - {format % args}")


def start_exporter_server(port: int, metrics_registry: CollectorRegistry):
    httpd = make_server("", port, make_exporter_wsgi_app(metrics_registry),
                        ThreadingWSGIServer, handler_class=_QuietRequestHandler)
    thread = threading.Thread(target=httpd.serve_forever, name="http", daemon=True)
    thread.start()
    return httpd


def load_password(password: Optional[str], password_file: Optional[str]) -> Optional[str]:
    if password_file:
        if not os.path.isfile(password_file):
            raise FileNotFoundError(f"File not found or not accessible: '{password_file}'.")
        with open(password_file, encoding="utf-8") as f:
            return f.read().rstrip("\r\n") or None
    return password or None


def create_app(livebox_host: str,
               password: Optional[str],
               username: str = DEFAULT_USERNAME,
               metrics_port: int = 8000,
               mode: str = MODE_DEFAULT,
               timer_interval: float = DEFAULT_TIMER_INTERVAL):
    """
    Create and configure the Prometheus metrics exporter.

    Args:
        livebox_host: Livebox host/IP address
        password: Livebox admin password, None to run without authentication
        username: Livebox admin user name
        metrics_port: Port to expose metrics on (default: 8000)
        mode: "default" to scrape on every Prometheus pull, "periodic" to scrape on a timer
        timer_interval: Seconds between two scrapes in periodic mode

    Returns:
        Callable that starts the exporter
    """

    def app():
        logger.info(f"Starting Prometheus exporter on port {metrics_port} ({mode} mode)")
        logger.info(f"Connecting to Livebox at {livebox_host}")

        stop_event = threading.Event()

        def _stop(signum, frame):
            logger.info(f"Received signal {signum}, shutting down...")
            stop_event.set()

        signal.signal(signal.SIGTERM, _stop)
        signal.signal(signal.SIGINT, _stop)

        factory = LiveboxClientFactory(livebox_host)
        client = factory.create(password, username)

        metrics = LiveboxMetrics()
        registry.register(metrics)
        exporter = LiveboxMetricsExporter(client, metrics)

        poller = None
        if mode == MODE_PERIODIC:
            poller = threading.Thread(target=run_periodic,
                                      args=(exporter, timer_interval, stop_event),
                                      name="poller")
        else:
            metrics.before_collect = lambda: exporter.scrape_on_demand(stop_event)
            # warm-up: initializes the session context before the first pull
            exporter.scrape_on_demand(stop_event)

        httpd = start_exporter_server(metrics_port, registry)
        logger.info(f"Metrics available at http://localhost:{metrics_port}/metrics")

        if poller is not None:
            poller.start()
        while not stop_event.wait(0.5):
            pass

        if poller is not None:
            poller.join(timeout=timer_interval * 2)
            if poller.is_alive():
                logger.warning("Poller thread did not finish in time")
        httpd.shutdown()
        httpd.server_close()
        logger.info("Exporter shutdown complete")

    return app


def main():
    """Main entry point for the Prometheus exporter."""
    # Read defaults from environment variables
    default_livebox_host = os.getenv("LIVEBOX_HOST")
    default_username = os.getenv("LIVEBOX_USERNAME", DEFAULT_USERNAME)
    default_password = os.getenv("LIVEBOX_PASSWORD")
    default_password_file = os.getenv("LIVEBOX_PASSWORD_FILE")
    default_metrics_port = int(os.getenv("LIVEBOX_METRICS_PORT", "8000"))
    default_mode = os.getenv("LIVEBOX_MODE", MODE_DEFAULT)
    default_timer_interval = float(os.getenv("LIVEBOX_TIMER_INTERVAL", str(DEFAULT_TIMER_INTERVAL)))
    default_log_level = os.getenv("LIVEBOX_LOG_LEVEL", "INFO")

    parser = argparse.ArgumentParser(
        description="Prometheus exporter for Orange Livebox metrics",
        epilog="Environment variables can be used as defaults: "
               "LIVEBOX_HOST, LIVEBOX_USERNAME, LIVEBOX_PASSWORD, LIVEBOX_PASSWORD_FILE, "
               "LIVEBOX_METRICS_PORT, LIVEBOX_MODE, LIVEBOX_TIMER_INTERVAL, LIVEBOX_LOG_LEVEL"
    )

    parser.add_argument(
        "--livebox-host",
        default=default_livebox_host,
        help="Livebox host or IP address (e.g., 192.168.1.1); discovered when omitted "
             "[env: LIVEBOX_HOST]"
    )
    parser.add_argument(
        "--livebox-username",
        default=default_username,
        help=f"Livebox admin user (default: {DEFAULT_USERNAME}) [env: LIVEBOX_USERNAME]"
    )
    parser.add_argument(
        "--livebox-password",
        default=default_password,
        help="Livebox admin password; without it, some metrics are missing [env: LIVEBOX_PASSWORD]"
    )
    parser.add_argument(
        "--livebox-password-file",
        default=default_password_file,
        help="File containing the Livebox admin password, takes precedence over --livebox-password "
             "[env: LIVEBOX_PASSWORD_FILE]"
    )
    parser.add_argument(
        "--metrics-port",
        type=int,
        default=default_metrics_port,
        help="Port to expose Prometheus metrics on (default: 8000) [env: LIVEBOX_METRICS_PORT]"
    )
    parser.add_argument(
        "--mode",
        default=default_mode,
        choices=[MODE_DEFAULT, MODE_PERIODIC],
        help="default: scrape on each Prometheus pull, periodic: scrape on a timer [env: LIVEBOX_MODE]"
    )
    parser.add_argument(
        "--timer-interval",
        type=float,
        default=default_timer_interval,
        help="Seconds between scrapes in periodic mode (default: 10) [env: LIVEBOX_TIMER_INTERVAL]"
    )
    parser.add_argument(
        "--log-level",
        default=default_log_level,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO) [env: LIVEBOX_LOG_LEVEL]"
    )

    args = parser.parse_args()

    if args.timer_interval <= 0:
        parser.error("--timer-interval must be positive")

    # Set logging level
    logging.getLogger().setLevel(getattr(logging, args.log_level))

    password = load_password(args.livebox_password, args.livebox_password_file)

    livebox_host = args.livebox_host
    if not livebox_host:
        result = discover_livebox()
        if result is None:
            parser.error("Could not discover Livebox address, set --livebox-host or LIVEBOX_HOST")
        livebox_host = result.address

    # Create and run app
    app = create_app(livebox_host, password, args.livebox_username, args.metrics_port,
                     args.mode, args.timer_interval)
    app()


if __name__ == "__main__":
    main()
