from __future__ import annotations

import json
from typing import Any

import pytest


class FakeResponse:
    def __init__(self, status_code: int = 200, body: Any = None,
                 content_type: str = "application/x-sah-ws-4-call+json; charset=UTF-8") -> None:
        self.status_code = status_code
        self.headers = {"Content-Type": content_type} if content_type else {}
        if body is None:
            self.text = ""
        elif isinstance(body, str):
            self.text = body
        else:
            self.text = json.dumps(body)

    def json(self) -> Any:
        return json.loads(self.text)


class FakeSession:
    """Stands in for requests.Session: replies are queued per sysbus service."""

    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []
        self._replies: dict[str, list[Any]] = {}

    def reply(self, service: str, *replies: Any) -> None:
        self._replies.setdefault(service, []).extend(replies)

    def post(self, url: str, data: str = "", headers: dict | None = None, timeout: float | None = None):
        body = json.loads(data)
        self.calls.append({"url": url, "body": body, "headers": dict(headers or {}), "timeout": timeout})
        queue = self._replies.get(body["service"], [])
        if not queue:
            return FakeResponse(404, None, content_type="text/html")
        reply = queue[0] if len(queue) == 1 else queue.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        return reply

    def services(self) -> list[str]:
        return [c["body"]["service"] for c in self.calls]


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_response():
    return FakeResponse
