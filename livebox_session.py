from __future__ import annotations

import json
import logging
import threading
import time
from typing import Callable, Optional

import requests

from livebox_client_exceptions import *
from livebox_models import AuthSession
from livebox_utils import get_ci, safe_int

SAH_CONTENT_TYPE = "application/x-sah-ws-4-call+json"
WS_PATH = "/ws"
LOGIN_AUTHORIZATION = "X-Sah-Login"
DEFAULT_USERNAME = "admin"

DEFAULT_TIMEOUT = 10

logger = logging.getLogger(__name__)


def normalize_host(host: str) -> str:
    if not host.startswith(("http://", "https://")):
        host = f"http://{host}"
    return host.rstrip("/")


def sah_request(service: str, method: str, parameters: Optional[dict] = None) -> str:
    return json.dumps({
        "service": service,
        "method": method,
        "parameters": parameters or {}
    })


def is_json_response(response: requests.Response) -> bool:
    content_type = response.headers.get("Content-Type", "")
    return content_type.split(";")[0].strip().lower().endswith("json")


def check_cancelled(cancel_event: Optional[threading.Event]):
    if cancel_event is not None and cancel_event.is_set():
        raise ScrapeCancelledException()


class SessionManager:
    """
    Owns the Livebox session context (``contextID``).

    The context is created lazily by the first call that needs it, replaced on
    every successful login and forgotten on connectivity failures: a rebooted
    Livebox does not recognize contexts created before the reboot.
    """

    def __init__(self,
                 session: requests.Session,
                 password: Optional[str],
                 username: str = DEFAULT_USERNAME,
                 clock: Callable[[], float] = time.monotonic):
        self.session = session
        self._password = password
        self._username = username
        self._clock = clock
        self.state = AuthSession()
        if password is None:
            logger.warning("Livebox admin password was not provided: some metrics will be missing.")

    @property
    def auth_disabled(self) -> bool:
        return self._password is None

    @property
    def token(self) -> Optional[str]:
        return self.state.token

    def is_backing_off(self) -> bool:
        disabled_until = self.state.disabled_until
        return disabled_until is not None and self._clock() < disabled_until

    def acquire(self,
                base_address: str,
                force_refresh: bool = False,
                cancel_event: Optional[threading.Event] = None) -> Optional[str]:
        """
        Return the session token to attach to the next call.

        ``None`` means the call must go out unauthenticated, either because auth
        is disabled or because the Livebox asked us to wait before logging in again.
        """
        if self.auth_disabled:
            return None
        if self.is_backing_off():
            logger.debug(f"Authentication suppressed for another "
                         f"{self.state.disabled_until - self._clock():.0f}s")
            return None
        if self.state.token is not None and not force_refresh:
            return self.state.token
        return self._login(base_address, cancel_event)

    def invalidate(self):
        if self.state.token is not None:
            self.state.token = None
            logger.warning("Authentication context cleared because of connectivity issue with Livebox.")

    def _login(self, base_address: str, cancel_event: Optional[threading.Event]) -> Optional[str]:
        check_cancelled(cancel_event)
        payload = sah_request("sah.Device.Information", "createContext", {
            "applicationName": "webui",
            "username": self._username,
            "password": self._password
        })
        headers = {
            "Content-Type": SAH_CONTENT_TYPE,
            "Authorization": LOGIN_AUTHORIZATION
        }
        try:
            response = self.session.post(f"{normalize_host(base_address)}{WS_PATH}",
                                         data=payload,
                                         headers=headers,
                                         timeout=DEFAULT_TIMEOUT)
        except (requests.ConnectionError, requests.Timeout) as e:
            self.invalidate()
            raise ConnectivityException(f"Livebox unreachable while creating session context: {e}") from e
        check_cancelled(cancel_event)

        data = None
        if is_json_response(response):
            try:
                data = response.json()
            except ValueError:
                data = None

        if response.status_code == 200 and isinstance(data, dict):
            context_id = get_ci(get_ci(data, "data"), "contextID")
            if context_id:
                self.state.token = context_id
                self.state.disabled_until = None
                logger.info("New authentication context created.")
                return context_id

        if response.status_code == 401:
            wait_time = self._wait_time(data)
            if wait_time is not None:
                self.state.token = None
                self.state.disabled_until = self._clock() + wait_time + 1
                logger.warning(f"Authentication rejected by Livebox, next attempt in {wait_time + 1}s.")
                return None

        raise AuthenticationException(
            f"Failed to create session context (authentication). Response: {response.status_code} - "
            f"{response.headers.get('Content-Type')} {response.text}")

    @staticmethod
    def _wait_time(data) -> Optional[int]:
        errors = get_ci(data, "errors")
        if not isinstance(errors, list):
            return None
        for error in errors:
            wait_time = get_ci(error, "waittime")
            if wait_time is not None:
                return max(0, safe_int(wait_time))
        return None
