"""
Test helpers for the Execution Gateway.

Fake clocks, a recording sleep and scripted provider operations shared by
unit and integration tests (importable as ``fixtures`` via pytest's
pythonpath setting).
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Iterable

import httpx


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeWallClock:
    """UTC wall clock advanced by hand."""

    def __init__(self, start: datetime = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class SleepRecorder:
    """Async sleep replacement that records delays and advances a fake clock."""

    def __init__(self, clock: FakeClock | None = None):
        self.delays: list[float] = []
        self.clock = clock

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        if self.clock is not None:
            self.clock.advance(delay)


class ScriptedOperation:
    """Zero-argument coroutine function that raises scripted errors, then succeeds.

    Example:
        op = ScriptedOperation([error_503, error_503], result="ok")
        await op()  # raises error_503
    """

    def __init__(self, errors: Iterable[BaseException] = (), result: Any = "ok"):
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    async def __call__(self) -> Any:
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


class AlwaysFailing:
    """Zero-argument coroutine function that always raises the same error."""

    def __init__(self, error: BaseException):
        self.error = error
        self.calls = 0

    async def __call__(self) -> Any:
        self.calls += 1
        raise self.error



def provider_call(client: httpx.AsyncClient, path: str = "/v1/generate"):
    """Build a gateway operation posting to ``path`` and returning the JSON body."""
    async def _call():
        response = await client.post(path, json={"prompt": "hello"})
        response.raise_for_status()
        return response.json()

    return _call
