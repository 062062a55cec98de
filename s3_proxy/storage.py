from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from anyio import to_thread
from boto3.session import Session
from botocore.config import Config as BotoConfig

if TYPE_CHECKING:
    from collections.abc import Callable

    from botocore.client import BaseClient

    from .settings import ProxySettings

LOG = logging.getLogger("s3_proxy.storage")


async def run_sync(func: Callable[..., Any], /, *args: Any) -> Any:
    """Run a blocking boto call in a worker thread."""
    return await to_thread.run_sync(func, *args)


def build_s3_client(settings: ProxySettings) -> BaseClient:
    """Create the S3 client shared by every request of one proxy instance.

    Region and credentials fall back to the usual boto3 lookup chain when
    they are not configured.
    """
    session = Session(
        aws_access_key_id=settings.access_key,
        aws_secret_access_key=settings.secret_key,
        aws_session_token=settings.session_token,
        region_name=settings.region,
    )
    s3_config: dict[str, Any] = {"addressing_style": settings.addressing_style}
    if settings.use_accelerate:
        s3_config["use_accelerate_endpoint"] = True
    client = session.client(
        "s3",
        endpoint_url=settings.endpoint,
        config=BotoConfig(signature_version="s3v4", s3=s3_config),
    )
    LOG.info("S3 proxy initialised for bucket: %s", settings.bucket)
    LOG.debug(
        "config values endpoint=%s region=%s use_accelerate=%s",
        settings.endpoint,
        settings.region,
        settings.use_accelerate,
    )
    return client
