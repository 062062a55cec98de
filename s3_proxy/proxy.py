from __future__ import annotations

import logging
from typing import TYPE_CHECKING
from urllib.parse import unquote

from litestar import Request
from litestar.response import Response

from .conditionals import translate
from .fallback import NotFoundHandler, UpstreamHandler
from .fetcher import Failure, Hit, Miss, NotModified, ObjectFetcher
from .keys import build_key
from .placeholders import PlaceholderResolver
from .response import StreamingError, reconstruct
from .settings import load_settings_from_env
from .storage import build_s3_client

if TYPE_CHECKING:
    from botocore.client import BaseClient
    from litestar.types import ASGIApp, Receive, Scope, Send

    from .placeholders import Resolver
    from .settings import ProxySettings

LOG = logging.getLogger("s3_proxy.proxy")


def request_path(scope: Scope) -> str:
    """Return the decoded request path with any trailing slash kept."""
    raw_path = scope.get("raw_path")
    if raw_path:
        # some servers leave the query on raw_path
        path = unquote(raw_path.partition(b"?")[0].decode("latin-1"))
    else:
        path = scope.get("path", "/")
    if not path.startswith("/"):
        path = f"/{path}"
    return path


def request_query(scope: Scope) -> str:
    """Return the undecoded query string; bytes survive via surrogateescape."""
    query_string = scope.get("query_string") or b""
    return query_string.decode("utf-8", "surrogateescape")


class S3Proxy:
    """Serve GET requests from an S3 bucket, handing everything else on.

    Any request that is not a GET, or whose object is missing or cannot be
    read, goes to ``next_handler`` untouched.
    """

    def __init__(
        self,
        settings: ProxySettings,
        client: BaseClient | None = None,
        resolver: Resolver | None = None,
        next_handler: ASGIApp | None = None,
    ):
        self._settings = settings
        self._client = client if client is not None else build_s3_client(settings)
        self._fetcher = ObjectFetcher(self._client)
        self._resolver = resolver or PlaceholderResolver(settings.vars)
        self._next_handler = next_handler or self._default_next_handler(settings)

    @property
    def settings(self) -> ProxySettings:
        return self._settings

    @property
    def next_handler(self) -> ASGIApp:
        return self._next_handler

    async def startup(self) -> None:
        startup = getattr(self._next_handler, "startup", None)
        if startup is not None:
            await startup()
        LOG.info(
            "S3 proxy ready (bucket=%s, root=%s, endpoint=%s)",
            self._settings.bucket,
            self._settings.root,
            self._settings.endpoint or "aws",
        )

    async def shutdown(self) -> None:
        shutdown = getattr(self._next_handler, "shutdown", None)
        if shutdown is not None:
            await shutdown()

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        request: Request = Request(scope=scope, receive=receive)
        response = await self.handle(request)
        if response is None:
            await self._next_handler(scope, receive, send)
            return
        asgi_response = response.to_asgi_response(None, request)
        await asgi_response(scope, receive, send)

    async def handle(self, request: Request) -> Response | None:
        """Serve ``request`` from the bucket.

        Returns:
            The response to send, or ``None`` when the request should go to
            the next handler.
        """
        path = request_path(request.scope)
        raw_query = request_query(request.scope)
        LOG.debug(
            "incoming request method=%s path=%s query=%s",
            request.method,
            path,
            raw_query,
        )

        if request.method != "GET":
            LOG.debug(
                "cache:miss method=%s path=%s message=method not allowed",
                request.method,
                path,
            )
            return None

        root = self._resolver(self._settings.root, request)
        key = build_key(root, path, raw_query, self._settings.index_document)
        conditionals = translate(request.headers)

        outcome = await self._fetcher.fetch(self._settings.bucket, key, conditionals)

        if isinstance(outcome, NotModified):
            return Response(content=b"", status_code=304)

        if isinstance(outcome, Hit):
            try:
                return await reconstruct(outcome, self._settings.stream_chunk_size)
            except StreamingError:
                LOG.debug("delegating after body read failure key=%s", key)
                return None

        if isinstance(outcome, Miss):
            LOG.debug("delegating after miss key=%s", key)
        elif isinstance(outcome, Failure):
            LOG.debug(
                "delegating after failure key=%s code=%s", key, outcome.code
            )
        return None

    @staticmethod
    def _default_next_handler(settings: ProxySettings) -> ASGIApp:
        if settings.fallback_url:
            return UpstreamHandler(settings.fallback_url)
        return NotFoundHandler()

    @classmethod
    def from_env(cls) -> S3Proxy:
        """Create an S3Proxy instance from environment variables.

        Returns:
            S3Proxy configured from environment variables.
        """
        return cls(settings=load_settings_from_env())
