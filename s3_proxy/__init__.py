"""Serve GET requests straight from an S3 bucket."""

from .app import create_app
from .proxy import S3Proxy
from .settings import ProxySettings

__all__ = ["ProxySettings", "S3Proxy", "create_app"]
