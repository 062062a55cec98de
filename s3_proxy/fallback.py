"""Handlers that receive requests the S3 proxy declines to serve."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import httpx
from litestar import Request
from litestar.response import Response, Stream

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Mapping

    from litestar.types import Receive, Scope, Send

LOG = logging.getLogger("s3_proxy.fallback")

HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailers",
        "transfer-encoding",
        "upgrade",
    }
)


class NotFoundHandler:
    """Answer every request with a plain 404."""

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        request: Request = Request(scope=scope, receive=receive)
        response = Response(
            content="Not Found", status_code=404, media_type="text/plain"
        )
        await response.to_asgi_response(None, request)(scope, receive, send)

    async def startup(self) -> None:
        return None

    async def shutdown(self) -> None:
        return None


class UpstreamHandler:
    """Forward requests unchanged to an HTTP origin and stream its answer back."""

    def __init__(
        self,
        base_url: str,
        timeout: httpx.Timeout | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._base_url = base_url
        self._timeout = timeout or httpx.Timeout(60.0, read=300.0)
        self._transport = transport
        self._http_client: httpx.AsyncClient | None = None

    async def startup(self) -> None:
        self._http_client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            transport=self._transport,
            trust_env=False,
        )
        LOG.info("fallback upstream ready (%s)", self._base_url)

    async def shutdown(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if self._http_client is None:
            message = "fallback upstream not initialised"
            raise RuntimeError(message)

        request: Request = Request(scope=scope, receive=receive)
        upstream_request = await self._build_httpx_request(request, scope)
        LOG.debug("forwarding %s %s upstream", request.method, upstream_request.url)
        upstream_response = await self._http_client.send(upstream_request, stream=True)
        response = self._to_streaming_response(upstream_response)
        await response.to_asgi_response(None, request)(scope, receive, send)

    async def _build_httpx_request(
        self, request: Request, scope: Scope
    ) -> httpx.Request:
        assert self._http_client is not None
        raw_path = scope.get("raw_path")
        if raw_path:
            url = raw_path.partition(b"?")[0].decode("latin-1")
        else:
            url = scope.get("path", "/")
        if scope.get("query_string"):
            url = f"{url}?{scope['query_string'].decode('latin-1')}"

        content = None
        if request.method not in {"GET", "HEAD", "OPTIONS"}:
            content = await self._read_body(receive=request.receive)

        return self._http_client.build_request(
            method=request.method,
            url=url,
            headers=prepare_outgoing_headers(request.headers),
            content=content,
        )

    @staticmethod
    async def _read_body(receive: Receive) -> bytes:
        body_parts = []
        while True:
            message = await receive()
            if message["type"] == "http.request":
                body = message.get("body", b"")
                if body:
                    body_parts.append(body)
                if not message.get("more_body", False):
                    break
            elif message["type"] == "http.disconnect":
                break
        return b"".join(body_parts)

    @staticmethod
    def _to_streaming_response(response: httpx.Response) -> Response:
        headers = prepare_response_headers(response.headers.raw)

        async def iterator() -> AsyncIterator[bytes]:
            try:
                async for chunk in response.aiter_raw():
                    yield chunk
            finally:
                await response.aclose()

        return Stream(
            content=iterator(), status_code=response.status_code, headers=headers
        )


def prepare_outgoing_headers(headers: Mapping[str, str]) -> dict[str, str]:
    prepared: dict[str, str] = {}
    for key, value in headers.items():
        lowered = key.lower()
        if lowered in HOP_BY_HOP_HEADERS or lowered == "host":
            continue
        prepared[key] = value
    return prepared


def prepare_response_headers(headers: list[tuple[bytes, bytes]]) -> dict[str, str]:
    prepared: dict[str, str] = {}
    for key_bytes, value_bytes in headers:
        key = key_bytes.decode("latin-1")
        value = value_bytes.decode("latin-1")
        if key.lower() in HOP_BY_HOP_HEADERS:
            continue
        prepared[key] = value
    return prepared
