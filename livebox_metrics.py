from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, Mapping, Optional

from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily
from prometheus_client.registry import Collector

logger = logging.getLogger(__name__)

EXPORTER_UP = "livebox_exporter_up"
EXPORTER_METRICS_UP = "livebox_exporter_metrics_up"

DEVICE_INFO_UPTIME = "livebox_device_info_uptime"
DEVICE_INFO_STATUS = "livebox_device_info_status"
DEVICE_INFO_REBOOTS_TOTAL = "livebox_device_info_reboots_total"

DEVICE_ACTIVE = "livebox_device_active"
DEVICE_LINK_STATE = "livebox_device_link_state"
DEVICE_CONNECTION_STATE = "livebox_device_connection_state"
DEVICE_INTERNET = "livebox_device_internet"
DEVICE_IPTV = "livebox_device_iptv"
DEVICE_TELEPHONY = "livebox_device_telephony"
DEVICE_DOWNSTREAM_CURR_RATE = "livebox_device_downstream_curr_rate"
DEVICE_UPSTREAM_CURR_RATE = "livebox_device_upstream_curr_rate"
DEVICE_DOWNSTREAM_MAX_BIT_RATE = "livebox_device_downstream_max_bit_rate"
DEVICE_UPSTREAM_MAX_BIT_RATE = "livebox_device_upstream_max_bit_rate"

ONT_RX_BIT_RATE = "livebox_ont_rx_bit_rate"
ONT_TX_BIT_RATE = "livebox_ont_tx_bit_rate"

NMC_WAN_STATE = "livebox_nmc_wan_state"
NMC_LINK_STATE = "livebox_nmc_link_state"
NMC_GPON_STATE = "livebox_nmc_gpon_state"
NMC_CONNECTION_STATE = "livebox_nmc_connection_state"

# NetDevStats attribute → (metric name, description)
ONT_COUNTERS = {
    "rx_packets": ("livebox_ont_rx_packets", "VEIP0 stats (RX packets)"),
    "tx_packets": ("livebox_ont_tx_packets", "VEIP0 stats (TX packets)"),
    "rx_bytes": ("livebox_ont_rx_bytes", "VEIP0 stats (RX bytes)"),
    "tx_bytes": ("livebox_ont_tx_bytes", "VEIP0 stats (TX bytes)"),
    "rx_errors": ("livebox_ont_rx_errors", "VEIP0 stats (RX errors)"),
    "tx_errors": ("livebox_ont_tx_errors", "VEIP0 stats (TX errors)"),
    "rx_dropped": ("livebox_ont_rx_dropped", "VEIP0 stats (RX dropped)"),
    "tx_dropped": ("livebox_ont_tx_dropped", "VEIP0 stats (TX dropped)"),
    "multicast": ("livebox_ont_multicast", "VEIP0 stats (multicast)"),
    "collisions": ("livebox_ont_collisions", "VEIP0 stats (collisions)"),
    "rx_length_errors": ("livebox_ont_rx_length_errors", "VEIP0 stats (RX length errors)"),
    "rx_over_errors": ("livebox_ont_rx_over_errors", "VEIP0 stats (RX over errors)"),
    "rx_crc_errors": ("livebox_ont_rx_crc_errors", "VEIP0 stats (RX CRC errors)"),
    "rx_frame_errors": ("livebox_ont_rx_frame_errors", "VEIP0 stats (RX frame errors)"),
    "rx_fifo_errors": ("livebox_ont_rx_fifo_errors", "VEIP0 stats (RX FIFO errors)"),
    "rx_missed_errors": ("livebox_ont_rx_missed_errors", "VEIP0 stats (RX missed errors)"),
    "tx_aborted_errors": ("livebox_ont_tx_aborted_errors", "VEIP0 stats (TX aborted errors)"),
    "tx_carrier_errors": ("livebox_ont_tx_carrier_errors", "VEIP0 stats (TX carrier errors)"),
    "tx_fifo_errors": ("livebox_ont_tx_fifo_errors", "VEIP0 stats (TX FIFO errors)"),
    "tx_heartbeat_errors": ("livebox_ont_tx_heartbeat_errors", "VEIP0 stats (TX heartbeat errors)"),
    "tx_window_errors": ("livebox_ont_tx_window_errors", "VEIP0 stats (TX window errors)"),
}

# only available with a valid session context
DEVICE_STATUS_METRICS = (
    DEVICE_DOWNSTREAM_CURR_RATE,
    DEVICE_UPSTREAM_CURR_RATE,
    DEVICE_DOWNSTREAM_MAX_BIT_RATE,
    DEVICE_UPSTREAM_MAX_BIT_RATE,
    DEVICE_ACTIVE,
    DEVICE_LINK_STATE,
    DEVICE_CONNECTION_STATE,
    DEVICE_INTERNET,
    DEVICE_TELEPHONY,
    DEVICE_IPTV,
)

ONT_METRICS = tuple(name for name, _ in ONT_COUNTERS.values()) + (ONT_RX_BIT_RATE, ONT_TX_BIT_RATE)

NMC_METRICS = (
    NMC_GPON_STATE,
    NMC_CONNECTION_STATE,
    NMC_LINK_STATE,
    NMC_WAN_STATE,
)


class MetricType(Enum):
    GAUGE = "gauge"
    COUNTER = "counter"


@dataclass(frozen=True)
class MetricDescriptor:
    name: str
    type: MetricType
    description: str


METRIC_DESCRIPTORS: tuple[MetricDescriptor, ...] = (
    MetricDescriptor(EXPORTER_UP, MetricType.GAUGE, "Connectivity with Livebox is up"),
    MetricDescriptor(EXPORTER_METRICS_UP, MetricType.GAUGE, "All exporter metrics are up to date"),
    MetricDescriptor(DEVICE_INFO_UPTIME, MetricType.GAUGE, "Up Time"),
    MetricDescriptor(DEVICE_INFO_STATUS, MetricType.GAUGE, "Device Status"),
    MetricDescriptor(DEVICE_INFO_REBOOTS_TOTAL, MetricType.COUNTER, "Number of Reboots"),
    MetricDescriptor(DEVICE_ACTIVE, MetricType.GAUGE, "Device Active"),
    MetricDescriptor(DEVICE_LINK_STATE, MetricType.GAUGE, "Device Link State"),
    MetricDescriptor(DEVICE_CONNECTION_STATE, MetricType.GAUGE, "Device Connection State"),
    MetricDescriptor(DEVICE_INTERNET, MetricType.GAUGE, "Internet enabled"),
    MetricDescriptor(DEVICE_IPTV, MetricType.GAUGE, "IPTV enabled"),
    MetricDescriptor(DEVICE_TELEPHONY, MetricType.GAUGE, "Telephony enabled"),
    MetricDescriptor(DEVICE_DOWNSTREAM_CURR_RATE, MetricType.GAUGE, "Downstream current rate"),
    MetricDescriptor(DEVICE_UPSTREAM_CURR_RATE, MetricType.GAUGE, "Upstream current rate"),
    MetricDescriptor(DEVICE_DOWNSTREAM_MAX_BIT_RATE, MetricType.GAUGE, "Downstream max bit rate"),
    MetricDescriptor(DEVICE_UPSTREAM_MAX_BIT_RATE, MetricType.GAUGE, "Upstream max bit rate"),
    *(MetricDescriptor(name, MetricType.GAUGE, desc) for name, desc in ONT_COUNTERS.values()),
    MetricDescriptor(ONT_RX_BIT_RATE, MetricType.GAUGE, "VEIP0 stats (RX computed bit rate)"),
    MetricDescriptor(ONT_TX_BIT_RATE, MetricType.GAUGE, "VEIP0 stats (TX computed bit rate)"),
    MetricDescriptor(NMC_WAN_STATE, MetricType.GAUGE, "NMC WAN state"),
    MetricDescriptor(NMC_LINK_STATE, MetricType.GAUGE, "NMC Link state"),
    MetricDescriptor(NMC_GPON_STATE, MetricType.GAUGE, "NMC GPON state"),
    MetricDescriptor(NMC_CONNECTION_STATE, MetricType.GAUGE, "NMC Connection state"),
)


class LiveboxMetrics(Collector):
    """
    Holds the last published value of every catalog metric and exposes them
    to a prometheus_client registry.

    Metrics that were never set are not exposed. Gauges are overwritten,
    counters only move up (a lower value is ignored).
    """

    def __init__(self,
                 descriptors: Iterable[MetricDescriptor] = METRIC_DESCRIPTORS,
                 before_collect: Optional[Callable[[], object]] = None):
        self._descriptors: dict[str, MetricDescriptor] = {}
        for descriptor in descriptors:
            if descriptor.name in self._descriptors:
                raise ValueError(f"Name '{descriptor.name}' is duplicated.")
            self._descriptors[descriptor.name] = descriptor
        self._values: dict[str, float] = {}
        self.before_collect = before_collect

    def __contains__(self, name: str) -> bool:
        return name in self._descriptors

    def get(self, name: str) -> Optional[float]:
        return self._values.get(name)

    def update(self, values: Mapping[str, int]):
        for name, value in values.items():
            descriptor = self._descriptors.get(name)
            if descriptor is None:
                logger.warning(f"Metric '{name}' is not in the catalog, value dropped")
                continue
            if descriptor.type == MetricType.COUNTER:
                current = self._values.get(name, 0)
                if value > current:
                    self._values[name] = value
                else:
                    self._values.setdefault(name, current)
            else:
                self._values[name] = value

    def _family(self, descriptor: MetricDescriptor):
        if descriptor.type == MetricType.COUNTER:
            return CounterMetricFamily(descriptor.name, descriptor.description)
        return GaugeMetricFamily(descriptor.name, descriptor.description)

    def describe(self):
        for descriptor in self._descriptors.values():
            yield self._family(descriptor)

    def collect(self):
        if self.before_collect is not None:
            try:
                self.before_collect()
            except Exception as e:
                logger.error(f"On-demand scrape failed: {e}")
        values = dict(self._values)
        for name, descriptor in self._descriptors.items():
            if name not in values:
                continue
            family = self._family(descriptor)
            family.add_metric([], values[name])
            yield family
