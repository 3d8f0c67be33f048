"""Test doubles for webhook endpoints and backoff sleeps."""

from __future__ import annotations

from collections.abc import Awaitable, Callable

import httpx

Step = int | BaseException | Callable[[httpx.Request], Awaitable[httpx.Response]]


class ScriptedReceiver:
    """Webhook endpoint double that replays a script of responses.

    Each step is a status code, an exception to raise, or an async
    callable producing the response. The last step repeats once the
    script runs out.
    """

    def __init__(self, *steps: Step) -> None:
        self._steps = list(steps) or [200]
        self.requests: list[httpx.Request] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        step = self._steps.pop(0) if len(self._steps) > 1 else self._steps[0]
        if isinstance(step, BaseException):
            raise step
        if isinstance(step, int):
            return httpx.Response(step, text="OK" if step < 400 else "Server says no")
        return await step(request)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


class RoutedReceiver:
    """Endpoint double that answers per host, for fan-out tests."""

    def __init__(self, routes: dict[str, Step]) -> None:
        self._routes = routes
        self.hosts: list[str] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        host = request.url.host
        self.hosts.append(host)
        step = self._routes.get(host, 200)
        if isinstance(step, BaseException):
            raise step
        if isinstance(step, int):
            return httpx.Response(step, text="OK" if step < 400 else "Server says no")
        return await step(request)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


class SleepRecorder:
    """Backoff sleep that records the requested delay and returns at once."""

    def __init__(self, on_sleep: Callable[[], None] | None = None) -> None:
        self.delays: list[float] = []
        self._on_sleep = on_sleep

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        if self._on_sleep is not None:
            self._on_sleep()
