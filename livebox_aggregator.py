from __future__ import annotations

import logging
from typing import Optional

from livebox_metrics import *
from livebox_models import CounterSample, DeviceInfo, DeviceStatus, NetDevStats, WanStatus
from livebox_utils import b, up_or_bound

logger = logging.getLogger(__name__)

MIN_RATE_INTERVAL_SECONDS = 1.0


class RateDeriver:
    """Derives bit rates (bit/s) from two successive byte counter samples."""

    def __init__(self):
        self._baseline: Optional[CounterSample] = None

    @property
    def baseline(self) -> Optional[CounterSample]:
        return self._baseline

    def reset(self):
        self._baseline = None

    def update(self, sample: CounterSample) -> Optional[tuple[int, int]]:
        """
        Returns (rx_bit_rate, tx_bit_rate), or None when no rate can be derived yet.

        A sample taken too soon after the baseline is dropped so the next one is
        measured against a baseline old enough to give a meaningful rate.
        A counter going backwards (reset, reboot) restarts from the new sample.
        """
        previous = self._baseline
        if previous is None:
            self._baseline = sample
            return None

        if sample.rx_bytes < previous.rx_bytes or sample.tx_bytes < previous.tx_bytes:
            logger.debug("ONT counters went backwards, restarting rate baseline")
            self._baseline = sample
            return None

        elapsed = sample.captured_at - previous.captured_at
        if elapsed <= MIN_RATE_INTERVAL_SECONDS:
            return None

        rx_rate = round((sample.rx_bytes - previous.rx_bytes) * 8 / elapsed)
        tx_rate = round((sample.tx_bytes - previous.tx_bytes) * 8 / elapsed)
        self._baseline = sample
        return rx_rate, tx_rate


class MetricsAggregator:
    """Maps the (possibly partial) results of a scrape to metric values."""

    def __init__(self, auth_disabled: bool, rate_deriver: Optional[RateDeriver] = None):
        self.auth_disabled = auth_disabled
        self.rate_deriver = rate_deriver or RateDeriver()

    def update(self,
               device_info: Optional[DeviceInfo],
               device: Optional[DeviceStatus],
               wan: Optional[WanStatus],
               net_dev_stats: Optional[NetDevStats]) -> dict[str, int]:
        values: dict[str, int] = {}
        try:
            wan_available = wan is not None and wan.is_available
            any_connectivity = wan is not None or device is not None or device_info is not None
            all_good = (wan_available
                        and (device is not None or self.auth_disabled)
                        and device_info is not None)

            values[EXPORTER_UP] = b(any_connectivity)

            self._device_info_values(values, device_info)
            self._device_values(values, device, any_connectivity)
            self._ont_values(values, net_dev_stats, any_connectivity)
            self._nmc_values(values, wan, any_connectivity)

            values[EXPORTER_METRICS_UP] = b(all_good)
        except Exception as e:
            logger.exception(f"Exception occurred while updating metric values: {e}")
            values[EXPORTER_UP] = 0
            values[EXPORTER_METRICS_UP] = 0
        return values

    def _device_info_values(self, values: dict[str, int], device_info: Optional[DeviceInfo]):
        if device_info is not None:
            if device_info.uptime is not None:
                values[DEVICE_INFO_UPTIME] = device_info.uptime
            if device_info.number_of_reboots is not None:
                values[DEVICE_INFO_REBOOTS_TOTAL] = device_info.number_of_reboots
            # None when not authenticated
            if device_info.device_status is not None:
                values[DEVICE_INFO_STATUS] = up_or_bound(device_info.device_status)
        elif not self.auth_disabled:
            values[DEVICE_INFO_STATUS] = 0

    def _device_values(self, values: dict[str, int], device: Optional[DeviceStatus], any_connectivity: bool):
        if device is not None:
            values[DEVICE_DOWNSTREAM_CURR_RATE] = device.downstream_curr_rate
            values[DEVICE_UPSTREAM_CURR_RATE] = device.upstream_curr_rate
            values[DEVICE_DOWNSTREAM_MAX_BIT_RATE] = device.downstream_max_bit_rate
            values[DEVICE_UPSTREAM_MAX_BIT_RATE] = device.upstream_max_bit_rate
            values[DEVICE_ACTIVE] = b(device.active)
            values[DEVICE_LINK_STATE] = up_or_bound(device.link_state)
            values[DEVICE_CONNECTION_STATE] = up_or_bound(device.connection_state)
            values[DEVICE_INTERNET] = b(device.internet)
            values[DEVICE_TELEPHONY] = b(device.telephony)
            values[DEVICE_IPTV] = b(device.iptv)
        elif any_connectivity and not self.auth_disabled:
            for name in DEVICE_STATUS_METRICS:
                values[name] = 0

    def _ont_values(self, values: dict[str, int], stats: Optional[NetDevStats], any_connectivity: bool):
        if stats is not None:
            for attr, (name, _) in ONT_COUNTERS.items():
                values[name] = getattr(stats, attr)
            rates = self.rate_deriver.update(stats.to_sample())
            if rates is not None:
                values[ONT_RX_BIT_RATE], values[ONT_TX_BIT_RATE] = rates
        elif any_connectivity and not self.auth_disabled:
            self.rate_deriver.reset()
            for name in ONT_METRICS:
                values[name] = 0

    @staticmethod
    def _nmc_values(values: dict[str, int], wan: Optional[WanStatus], any_connectivity: bool):
        if wan is not None and wan.is_available:
            # available even without a session context
            data = wan.data
            values[NMC_GPON_STATE] = b(data.gpon_operational)
            values[NMC_CONNECTION_STATE] = up_or_bound(data.connection_state)
            values[NMC_LINK_STATE] = up_or_bound(data.link_state)
            values[NMC_WAN_STATE] = up_or_bound(data.wan_state)
        elif any_connectivity:
            for name in NMC_METRICS:
                values[name] = 0
