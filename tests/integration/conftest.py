"""Integration test fixtures.

Provider calls go through real httpx clients backed by
``httpx.MockTransport``, so genuine httpx responses and transport errors
flow through the classifier, retry loop, breaker and fallback chain.
"""

from typing import Any, Iterable, Optional, Union

import httpx
import pytest
import pytest_asyncio

Step = Union[Exception, tuple]


class ScriptedTransport:
    """Mock transport handler replaying one scripted step per request.

    Steps are exceptions (raised as transport errors) or
    ``(status, json_body[, headers])`` tuples. The last step repeats.
    """

    def __init__(self, script: Iterable[Step]):
        self.script = list(script)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        step = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(step, Exception):
            raise step
        status, body, *rest = step
        headers: Optional[dict[str, Any]] = rest[0] if rest else None
        return httpx.Response(status, json=body, headers=headers)


@pytest_asyncio.fixture
async def make_client():
    """Factory fixture returning (client, transport) pairs; clients are closed after the test."""
    clients: list[httpx.AsyncClient] = []

    def _create(script: Iterable[Step], base_url: str = "https://provider.test"):
        transport = ScriptedTransport(script)
        client = httpx.AsyncClient(base_url=base_url, transport=httpx.MockTransport(transport))
        clients.append(client)
        return client, transport

    yield _create

    for client in clients:
        await client.aclose()
