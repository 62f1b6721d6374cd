from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Generic, Optional, TypeVar

T = TypeVar("T")

PERMISSION_DENIED = 13
GPON_OPERATIONAL_STATE = "O5_Operation"


class ScrapeStatus(Enum):
    SUCCESS = "success"
    REAUTH_REQUIRED = "reauth_required"
    ERROR = "error"


@dataclass
class AuthSession:
    token: Optional[str] = None
    disabled_until: Optional[float] = None
    """
    Monotonic instant until which login attempts are suppressed.
    """


@dataclass
class ResultError:
    code: int
    description: str

    @property
    def is_permission_denied(self) -> bool:
        return self.code == PERMISSION_DENIED


@dataclass
class QueryResult(Generic[T]):
    """Payload of a sysbus call along with the errors it reported."""
    payload: Optional[T]
    errors: list[ResultError] = field(default_factory=list)

    @property
    def has_permission_error(self) -> bool:
        return any(e.is_permission_denied for e in self.errors)


@dataclass
class DeviceInfo:
    uptime: Optional[int]
    number_of_reboots: Optional[int]
    device_status: Optional[str]
    """
    Only sent back when the session context is valid.
    """
    base_mac: Optional[str]


@dataclass
class DeviceStatus:
    active: bool
    link_state: Optional[str]
    connection_state: Optional[str]
    internet: bool
    iptv: bool
    telephony: bool
    downstream_curr_rate: int
    upstream_curr_rate: int
    downstream_max_bit_rate: int
    upstream_max_bit_rate: int


@dataclass
class WanStatusData:
    wan_state: Optional[str]
    link_state: Optional[str]
    gpon_state: Optional[str]
    connection_state: Optional[str]

    @property
    def gpon_operational(self) -> bool:
        return self.gpon_state == GPON_OPERATIONAL_STATE


@dataclass
class WanStatus:
    status: bool
    data: Optional[WanStatusData] = None

    @property
    def is_available(self) -> bool:
        return self.status and self.data is not None


@dataclass(frozen=True)
class CounterSample:
    rx_bytes: int
    tx_bytes: int
    captured_at: float
    """
    time.monotonic() when the counters were read.
    """


@dataclass
class NetDevStats:
    """Interface statistics of the ONT uplink (veip0)."""
    captured_at: float
    rx_packets: int = 0
    tx_packets: int = 0
    rx_bytes: int = 0
    tx_bytes: int = 0
    rx_errors: int = 0
    tx_errors: int = 0
    rx_dropped: int = 0
    tx_dropped: int = 0
    multicast: int = 0
    collisions: int = 0
    rx_length_errors: int = 0
    rx_over_errors: int = 0
    rx_crc_errors: int = 0
    rx_frame_errors: int = 0
    rx_fifo_errors: int = 0
    rx_missed_errors: int = 0
    tx_aborted_errors: int = 0
    tx_carrier_errors: int = 0
    tx_fifo_errors: int = 0
    tx_heartbeat_errors: int = 0
    tx_window_errors: int = 0

    def to_sample(self) -> CounterSample:
        return CounterSample(rx_bytes=self.rx_bytes, tx_bytes=self.tx_bytes, captured_at=self.captured_at)


@dataclass
class DiscoveryResult:
    address: str
    product_class: Optional[str] = None
    serial_number: Optional[str] = None
    software_version: Optional[str] = None
    base_mac: Optional[str] = None
    other: dict[str, str] = field(default_factory=dict)
