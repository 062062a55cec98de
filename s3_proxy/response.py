"""Build outgoing HTTP responses from GetObject results."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from email.utils import format_datetime
from typing import TYPE_CHECKING, Any

from botocore.exceptions import BotoCoreError
from litestar.response import Response, Stream

from .storage import run_sync

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Mapping

    from .fetcher import Hit

LOG = logging.getLogger("s3_proxy.response")

CACHE_MARKER_HEADER = "X-Cache-S3"

# Object metadata copied into the response, in this order, when non-empty.
OBJECT_HEADER_FIELDS = (
    ("Cache-Control", "CacheControl"),
    ("Content-Disposition", "ContentDisposition"),
    ("Content-Encoding", "ContentEncoding"),
    ("Content-Language", "ContentLanguage"),
    ("Content-Range", "ContentRange"),
    ("Content-Type", "ContentType"),
    ("ETag", "ETag"),
    ("Expires", "Expires"),
)

_ZERO_TIME = datetime.min.replace(tzinfo=UTC)


class StreamingError(Exception):
    """Reading the object body failed before the response was committed."""


def format_http_date(value: datetime) -> str:
    aware = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    return format_datetime(aware.astimezone(UTC), usegmt=True)


def _format_header_value(value: Any) -> str:
    if isinstance(value, datetime):
        return format_http_date(value)
    return str(value)


def _is_zero_time(value: datetime) -> bool:
    aware = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    return aware == _ZERO_TIME


def set_header(headers: dict[str, str], name: str, value: str) -> None:
    """Set ``name`` replacing any existing header that differs only in case."""
    remove_header(headers, name)
    headers[name] = value


def remove_header(headers: dict[str, str], name: str) -> None:
    lowered = name.lower()
    for existing in [key for key in headers if key.lower() == lowered]:
        del headers[existing]


def object_headers(metadata: Mapping[str, Any]) -> dict[str, str]:
    """Map GetObject metadata onto response headers.

    Well-known fields come from a fixed allow-list; every user-defined
    metadata entry is passed through under its own name.
    """
    headers: dict[str, str] = {}
    for header, field in OBJECT_HEADER_FIELDS:
        value = metadata.get(field)
        # botocore keeps the unparsed Expires value next to the parsed one
        if field == "Expires" and metadata.get("ExpiresString"):
            value = metadata["ExpiresString"]
        if value is None or value == "":
            continue
        set_header(headers, header, _format_header_value(value))

    last_modified = metadata.get("LastModified")
    if isinstance(last_modified, datetime) and not _is_zero_time(last_modified):
        set_header(headers, "Last-Modified", format_http_date(last_modified))

    user_metadata = metadata.get("Metadata") or {}
    for meta_key, meta_value in user_metadata.items():
        if meta_value:
            set_header(headers, meta_key, meta_value)

    headers[CACHE_MARKER_HEADER] = "hit"
    return headers


async def reconstruct(outcome: Hit, chunk_size: int = 64 * 1024) -> Response:
    """Turn a successful fetch into a streaming response.

    The first chunk is read eagerly so that a body that cannot be read at
    all raises ``StreamingError`` while the request can still be handed on.
    Errors after that point abort the transfer.

    Raises:
        StreamingError: The first read from the object body failed.
    """
    headers = object_headers(outcome.metadata)
    status_code = 206 if outcome.metadata.get("ContentRange") else 200
    media_type = headers.get("Content-Type")

    body = outcome.body
    if body is None:
        return Response(content=b"", status_code=status_code, headers=headers)

    # the streamed copy decides the transferred length
    remove_header(headers, "Content-Length")

    try:
        first_chunk = await run_sync(body.read, chunk_size)
    except (BotoCoreError, OSError) as error:
        LOG.error("cache:fail reading body error=%s", error)
        await run_sync(body.close)
        raise StreamingError(str(error)) from error

    async def iterator() -> AsyncIterator[bytes]:
        try:
            chunk = first_chunk
            while chunk:
                yield chunk
                chunk = await run_sync(body.read, chunk_size)
        except (BotoCoreError, OSError):
            LOG.exception("body stream aborted after response start")
            raise
        finally:
            await run_sync(body.close)

    return Stream(
        content=iterator,
        status_code=status_code,
        headers=headers,
        media_type=media_type or "application/octet-stream",
    )
