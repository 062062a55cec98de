from __future__ import annotations

from functools import cache
from typing import TYPE_CHECKING

from litestar import Litestar, get
from litestar.config.cors import CORSConfig
from litestar.handlers import asgi
from litestar.plugins.prometheus import PrometheusConfig, PrometheusController

from .proxy import S3Proxy

if TYPE_CHECKING:
    from litestar.types import Receive, Scope, Send


prometheus_config = PrometheusConfig(app_name="s3_proxy", prefix="s3_proxy")


def create_app(proxy: S3Proxy | None = None) -> Litestar:
    """Create the S3 proxy ASGI application."""
    if proxy is None:
        proxy = S3Proxy.from_env()

    @get("/health", include_in_schema=False)
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @asgi(path="/", is_mount=True, copy_scope=True)
    async def proxy_handler(scope: Scope, receive: Receive, send: Send) -> None:
        await proxy(scope, receive, send)

    async def startup(app: Litestar) -> None:
        await proxy.startup()

    async def shutdown(app: Litestar) -> None:
        await proxy.shutdown()

    cors_config = CORSConfig(
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["ETag", "X-Cache-S3"],
    )

    return Litestar(
        route_handlers=[health, proxy_handler, PrometheusController],
        on_startup=[startup],
        on_shutdown=[shutdown],
        cors_config=cors_config,
        middleware=[prometheus_config.middleware],
    )


@cache
def _default_app() -> Litestar:
    return create_app()


def __getattr__(name: str) -> Litestar:
    # built lazily so importing the module does not require S3_PROXY_BUCKET
    if name == "app":
        return _default_app()
    raise AttributeError(name)
