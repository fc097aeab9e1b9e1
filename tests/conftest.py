"""Pytest configuration and fixtures."""
from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import Any, AsyncIterator, Mapping

import pytest

from notebridge.cancellation import CancellationToken
from notebridge.exceptions import RequestCancelledError
from notebridge.gateway import GatewayConfig, ModelGateway
from notebridge.providers import LocalProvider, ProviderIdentity, ProviderRegistry
from notebridge.transport import Transport
from notebridge.vector_store import VectorStore


@dataclass
class RecordedRequest:
    method: str
    url: str
    headers: dict[str, str]
    body: Any
    streamed: bool


class FakeTransport(Transport):
    """
    Scripted transport: responses are registered per (method, URL suffix).

    A registered value that is an exception is raised instead of returned.
    With several responses for one route they are used in order and the
    last one repeats.
    """

    name = "fake"

    def __init__(self) -> None:
        self.requests: list[RecordedRequest] = []
        self._responses: list[tuple[str, str, list[Any]]] = []
        self._streams: list[tuple[str, str, list[str], BaseException | None]] = []
        self.closed = False

    def on_request(self, method: str, url_suffix: str, *responses: Any) -> None:
        self._responses.append((method.upper(), url_suffix, list(responses)))

    def on_stream(
        self,
        method: str,
        url_suffix: str,
        fragments: list[str],
        error: BaseException | None = None,
    ) -> None:
        self._streams.append((method.upper(), url_suffix, list(fragments), error))

    def calls_to(self, url_suffix: str) -> list[RecordedRequest]:
        return [r for r in self.requests if r.url.endswith(url_suffix)]

    async def request(
        self,
        url: str,
        method: str = "GET",
        headers: Mapping[str, str] | None = None,
        body: Any = None,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> Any:
        self.requests.append(RecordedRequest(method.upper(), url, dict(headers or {}), body, streamed=False))
        for route_method, suffix, responses in self._responses:
            if route_method == method.upper() and url.endswith(suffix):
                response = responses.pop(0) if len(responses) > 1 else responses[0]
                if isinstance(response, BaseException):
                    raise response
                return copy.deepcopy(response)
        raise AssertionError(f"Unexpected request: {method} {url}")

    async def stream_request(
        self,
        url: str,
        method: str = "POST",
        headers: Mapping[str, str] | None = None,
        body: Any = None,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> AsyncIterator[str]:
        self.requests.append(RecordedRequest(method.upper(), url, dict(headers or {}), body, streamed=True))
        for route_method, suffix, fragments, error in self._streams:
            if route_method == method.upper() and url.endswith(suffix):
                break
        else:
            raise AssertionError(f"Unexpected stream: {method} {url}")

        for fragment in fragments:
            if cancel_token is not None and cancel_token.cancelled:
                raise RequestCancelledError()
            yield fragment
        if error is not None:
            raise error

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def local_provider(fake_transport: FakeTransport) -> LocalProvider:
    return LocalProvider(
        ProviderIdentity("local", "Local", "http://localhost:1234/v1", "lm-studio"),
        fake_transport,
    )


@pytest.fixture
def registry(local_provider: LocalProvider) -> ProviderRegistry:
    registry = ProviderRegistry()
    registry.register(local_provider)
    return registry


@pytest.fixture
def gateway_config() -> GatewayConfig:
    return GatewayConfig(
        chat_model="llama3:8b",
        embedding_model="nomic-embed-text",
        temperature=0.7,
        enable_smart_memory=False,
        auto_unload_on_switch=False,
    )


@pytest.fixture
def gateway(registry: ProviderRegistry, gateway_config: GatewayConfig) -> ModelGateway:
    return ModelGateway(registry, gateway_config)


@pytest.fixture
def store(tmp_path) -> VectorStore:
    return VectorStore(tmp_path / "vector_store.json")


def sse(*payloads: str) -> str:
    """Render payload strings as `data:` lines."""
    return "".join(f"data: {p}\n\n" for p in payloads)


@pytest.fixture
def sse_lines():
    return sse
