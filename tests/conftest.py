from __future__ import annotations

import io
import os
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, cast
from unittest.mock import MagicMock

import anyio
import pytest
from botocore.exceptions import ClientError
from botocore.response import StreamingBody
from litestar import Request
from litestar.types import HTTPScope
from s3_proxy import ProxySettings, S3Proxy

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable, Generator

    from botocore.client import BaseClient
    from pytest_databases._service import DockerService


def pytest_collection_modifyitems(config, items):
    if os.getenv("S3_PROXY_INTEGRATION", "").lower() in {"1", "true", "yes", "on"}:
        return
    skip = pytest.mark.skip(reason="set S3_PROXY_INTEGRATION=1 to run MinIO tests")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip)


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def client_error(code: str, status: int, message: str = "") -> ClientError:
    return ClientError(
        {
            "Error": {"Code": code, "Message": message or code},
            "ResponseMetadata": {"HTTPStatusCode": status},
        },
        "GetObject",
    )


def streaming_body(data: bytes) -> StreamingBody:
    return StreamingBody(io.BytesIO(data), len(data))


def get_object_result(data: bytes, **metadata: Any) -> dict[str, Any]:
    result: dict[str, Any] = {
        "ContentLength": len(data),
        "Metadata": {},
        "Body": streaming_body(data),
        "ResponseMetadata": {"HTTPStatusCode": 200},
    }
    result.update(metadata)
    return result


def make_request(
    path: str = "/",
    *,
    method: str = "GET",
    query: bytes = b"",
    headers: dict[str, str] | None = None,
    state: dict[str, Any] | None = None,
) -> Request:
    scope = cast(
        HTTPScope,
        {
            "type": "http",
            "method": method,
            "path": path,
            "raw_path": path.encode("utf-8"),
            "query_string": query,
            "headers": [
                (name.lower().encode("latin-1"), value.encode("latin-1"))
                for name, value in (headers or {}).items()
            ],
            "state": state if state is not None else {},
        },
    )

    async def receive():
        return {"type": "http.request", "body": b""}

    return Request(scope=scope, receive=receive)


def asgi_channel() -> tuple[list[dict[str, Any]], Any, Any]:
    """Return (messages, receive, send) behaving like a server connection.

    ``receive`` yields the empty request body once, then reports a
    disconnect only after the response has been sent completely.
    """
    messages: list[dict[str, Any]] = []
    finished = anyio.Event()
    request_sent = False

    async def receive():
        nonlocal request_sent
        if not request_sent:
            request_sent = True
            return {"type": "http.request", "body": b"", "more_body": False}
        await finished.wait()
        return {"type": "http.disconnect"}

    async def send(message):
        messages.append(message)
        if message["type"] == "http.response.body" and not message.get(
            "more_body", False
        ):
            finished.set()

    return messages, receive, send


async def read_body(response: Any) -> bytes:
    chunks = []
    iterator_attr = getattr(response, "iterator", None)
    if callable(iterator_attr):
        iterator_func = cast("Callable[[], AsyncIterator[bytes]]", iterator_attr)
        async for chunk in iterator_func():
            chunks.append(chunk)
    elif hasattr(response, "content"):
        chunks.append(response.content or b"")
    return b"".join(chunks)


@pytest.fixture
def s3_helpers():
    return {
        "client_error": client_error,
        "streaming_body": streaming_body,
        "get_object_result": get_object_result,
        "make_request": make_request,
        "read_body": read_body,
        "asgi_channel": asgi_channel,
        "last_modified": datetime(2024, 5, 1, 12, 30, 0, tzinfo=UTC),
    }


@pytest.fixture
def settings() -> ProxySettings:
    return ProxySettings(bucket="site-bucket", root="/site")


@pytest.fixture
def s3_client() -> MagicMock:
    """A stand-in for the boto3 S3 client."""
    return MagicMock()


class RecordingHandler:
    """Next handler that records delegated requests instead of answering them."""

    def __init__(self) -> None:
        self.calls: list[Any] = []
        self.started = False

    async def __call__(self, scope, receive, send) -> None:
        self.calls.append(scope)

    async def startup(self) -> None:
        self.started = True

    async def shutdown(self) -> None:
        self.started = False


@pytest.fixture
def next_handler() -> RecordingHandler:
    return RecordingHandler()


@pytest.fixture
def proxy(settings, s3_client, next_handler) -> S3Proxy:
    return S3Proxy(settings, client=s3_client, next_handler=next_handler)


# MinIO integration fixtures


@dataclass
class MinioService:
    endpoint: str
    access_key: str
    secret_key: str
    secure: bool


@pytest.fixture(scope="session")
def minio_access_key() -> str:
    return os.getenv("MINIO_ACCESS_KEY", "minio")


@pytest.fixture(scope="session")
def minio_secret_key() -> str:
    return os.getenv("MINIO_SECRET_KEY", "minio123")


@pytest.fixture(scope="session")
def minio_secure() -> bool:
    return os.getenv("MINIO_SECURE", "false").lower() in {
        "true",
        "1",
        "yes",
        "y",
        "t",
        "on",
    }


@pytest.fixture(scope="session")
def minio_service(
    docker_service: DockerService,
    minio_access_key: str,
    minio_secret_key: str,
    minio_secure: bool,
) -> Generator[MinioService]:
    from urllib.error import URLError
    from urllib.request import Request as UrlRequest
    from urllib.request import urlopen

    from pytest_databases.types import ServiceContainer

    def check(_service: ServiceContainer) -> bool:
        scheme = "https" if minio_secure else "http"
        url = f"{scheme}://{_service.host}:{_service.port}/minio/health/ready"
        if not url.startswith(("http:", "https:")):
            msg = "URL must start with 'http:' or 'https:'"
            raise ValueError(msg)
        try:
            with urlopen(url=UrlRequest(url, method="GET"), timeout=10) as response:
                return response.status == 200
        except (URLError, ConnectionError):
            return False

    with docker_service.run(
        image="quay.io/minio/minio",
        name="minio-s3-proxy",
        command="server /data",
        container_port=9000,
        timeout=20,
        pause=0.5,
        env={
            "MINIO_ROOT_USER": minio_access_key,
            "MINIO_ROOT_PASSWORD": minio_secret_key,
        },
        check=check,
    ) as service:
        yield MinioService(
            endpoint=f"{service.host}:{service.port}",
            access_key=minio_access_key,
            secret_key=minio_secret_key,
            secure=minio_secure,
        )


@pytest.fixture
def minio_client(minio_service: MinioService) -> BaseClient:
    import boto3
    from botocore.config import Config

    scheme = "https" if minio_service.secure else "http"
    return boto3.client(
        "s3",
        endpoint_url=f"{scheme}://{minio_service.endpoint}",
        aws_access_key_id=minio_service.access_key,
        aws_secret_access_key=minio_service.secret_key,
        region_name="us-east-1",
        config=Config(s3={"addressing_style": "path"}),
    )


@pytest.fixture
def minio_settings(minio_service: MinioService) -> ProxySettings:
    scheme = "https" if minio_service.secure else "http"
    return ProxySettings(
        bucket="s3-proxy-it",
        root="site",
        endpoint=f"{scheme}://{minio_service.endpoint}",
        access_key=minio_service.access_key,
        secret_key=minio_service.secret_key,
        region="us-east-1",
        addressing_style="path",
    )
