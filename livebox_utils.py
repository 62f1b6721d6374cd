from ipaddress import ip_address, ip_network

PRIVATE_NETWORKS = (
    ip_network("10.0.0.0/8"),
    ip_network("172.16.0.0/12"),
    ip_network("192.168.0.0/16"),
)


def get_ci(data, key: str, default=None):
    """dict.get(), falling back to a case-insensitive key match."""
    if not isinstance(data, dict):
        return default
    if key in data:
        return data[key]
    lowered = key.lower()
    for k, v in data.items():
        if isinstance(k, str) and k.lower() == lowered:
            return v
    return default


def safe_int(value, default: int = 0) -> int:
    try:
        return int(value)
    except (ValueError, TypeError):
        return default


def optional_int(value):
    if value is None:
        return None
    try:
        return int(value)
    except (ValueError, TypeError):
        return None


def to_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true")
    return bool(value)


def up_or_bound(value) -> int:
    return 1 if value in ("Up", "up", "Bound") else 0


def b(value) -> int:
    """bool → 0/1"""
    return 1 if bool(value) else 0


def is_private_address(address: str) -> bool:
    try:
        ip = ip_address(address)
    except ValueError:
        return False
    if ip.version != 4:
        return False
    return any(ip in net for net in PRIVATE_NETWORKS)
