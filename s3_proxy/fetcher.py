from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import partial
from typing import TYPE_CHECKING, Any

from botocore.exceptions import BotoCoreError, ClientError

from .storage import run_sync

if TYPE_CHECKING:
    from collections.abc import Mapping

    from botocore.client import BaseClient

    from .conditionals import ConditionalParams

LOG = logging.getLogger("s3_proxy.fetcher")

NOT_MODIFIED_CODES = frozenset({"304", "NotModified"})
MISSING_KEY_CODES = frozenset({"404", "NoSuchKey", "NotFound"})
EMPTY_BODY_CODE = "EmptyBody"


@dataclass(frozen=True, slots=True)
class Hit:
    """The object was retrieved; ``body`` is an open boto ``StreamingBody``."""

    metadata: Mapping[str, Any]
    body: Any = field(repr=False)


@dataclass(frozen=True, slots=True)
class NotModified:
    """The store reported that the client's validators still match."""


@dataclass(frozen=True, slots=True)
class Miss:
    reason: str


@dataclass(frozen=True, slots=True)
class Failure:
    code: str
    message: str


FetchOutcome = Hit | NotModified | Miss | Failure


def _client_error_details(error: ClientError) -> tuple[str, str]:
    details = error.response.get("Error", {})
    code = str(details.get("Code", "") or "")
    message = str(details.get("Message", "") or error)
    if not code:
        status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        code = str(status or "")
    return code, message


class ObjectFetcher:
    """Issue a single GetObject call and classify what came back."""

    def __init__(self, client: BaseClient):
        self._client = client

    async def fetch(
        self, bucket: str, key: str, conditionals: ConditionalParams
    ) -> FetchOutcome:
        get_kwargs = {"Bucket": bucket, "Key": key}
        get_kwargs.update(conditionals.as_get_object_kwargs())
        LOG.debug("cache:attempt bucket=%s key=%s", bucket, key)

        try:
            result = await run_sync(partial(self._client.get_object, **get_kwargs))
        except ClientError as error:
            return self._classify_error(bucket, key, error)
        except BotoCoreError as error:
            LOG.error("cache:fail bucket=%s key=%s error=%s", bucket, key, error)
            return Failure(code=type(error).__name__, message=str(error))

        if result.get("ContentLength") == 0:
            LOG.error(
                "cache:fail bucket=%s key=%s error=%s",
                bucket,
                key,
                "ContentLength is empty",
            )
            body = result.get("Body")
            if body is not None:
                await run_sync(body.close)
            return Failure(code=EMPTY_BODY_CODE, message="ContentLength is empty")

        LOG.debug("cache:hit bucket=%s key=%s", bucket, key)
        return Hit(metadata=result, body=result.get("Body"))

    @staticmethod
    def _classify_error(bucket: str, key: str, error: ClientError) -> FetchOutcome:
        code, message = _client_error_details(error)
        if code in NOT_MODIFIED_CODES:
            LOG.debug("cache:hit bucket=%s key=%s code=%s", bucket, key, code)
            return NotModified()
        if code in MISSING_KEY_CODES:
            LOG.debug(
                "cache:miss bucket=%s key=%s code=%s error=%s",
                bucket,
                key,
                code,
                message,
            )
            return Miss(reason=message)
        LOG.error(
            "cache:fail bucket=%s key=%s code=%s error=%s",
            bucket,
            key,
            code,
            message,
        )
        return Failure(code=code, message=message)
