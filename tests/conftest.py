from __future__ import annotations

import json
from collections.abc import AsyncIterator, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

import httpx
import pytest


@dataclass
class ScriptedEndpoint:
    """Serve a scripted response body, one chunk per transport read."""

    chunks: Sequence[bytes | Exception] = ()
    status_code: int = 200
    json_body: Any = None
    pulled: list[bytes | Exception] = field(default_factory=list)
    requests: list[dict[str, Any]] = field(default_factory=list)

    async def _body(self) -> AsyncIterator[bytes]:
        for chunk in self.chunks:
            self.pulled.append(chunk)
            if isinstance(chunk, Exception):
                raise chunk
            yield chunk

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(json.loads(request.content))
        if self.json_body is not None:
            return httpx.Response(self.status_code, json=self.json_body)
        return httpx.Response(self.status_code, content=self._body())

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def scripted_endpoint() -> Callable[..., ScriptedEndpoint]:
    return ScriptedEndpoint


def frame_bytes(**fields: Any) -> bytes:
    return json.dumps(fields).encode("utf-8")


@pytest.fixture
def frame() -> Callable[..., bytes]:
    return frame_bytes
