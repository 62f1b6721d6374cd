class LiveboxClientException(Exception):
    pass


class ConnectivityException(LiveboxClientException):
    """Livebox is unreachable (connection refused, DNS failure, timeout)."""
    pass


class AuthenticationException(LiveboxClientException):
    """Session context could not be created."""
    pass


class ScrapeCancelledException(LiveboxClientException):
    pass
