"""Translate HTTP validators into GetObject parameters."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Mapping

LOG = logging.getLogger("s3_proxy.conditionals")

_IMF_FIXDATE = re.compile(
    r"[A-Z][a-z]{2}, \d{2} [A-Z][a-z]{2} \d{4} \d{2}:\d{2}:\d{2} GMT"
)


@dataclass(frozen=True, slots=True)
class ConditionalParams:
    """Validators forwarded to the object store; ``None`` means absent."""

    range: str | None = None
    if_match: str | None = None
    if_none_match: str | None = None
    if_modified_since: datetime | None = None
    if_unmodified_since: datetime | None = None

    def as_get_object_kwargs(self) -> dict[str, Any]:
        """Return the present fields keyed by their GetObject parameter name."""
        fields = {
            "Range": self.range,
            "IfMatch": self.if_match,
            "IfNoneMatch": self.if_none_match,
            "IfModifiedSince": self.if_modified_since,
            "IfUnmodifiedSince": self.if_unmodified_since,
        }
        return {name: value for name, value in fields.items() if value is not None}


def parse_http_date(value: str) -> datetime | None:
    """Parse an IMF-fixdate (``Sun, 06 Nov 1994 08:49:37 GMT``) into UTC.

    Returns ``None`` for anything else.
    """
    value = value.strip()
    if not _IMF_FIXDATE.fullmatch(value):
        return None
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    return parsed.astimezone(UTC)


def _date_header(headers: Mapping[str, str], name: str) -> datetime | None:
    value = headers.get(name)
    if not value:
        return None
    parsed = parse_http_date(value)
    if parsed is None:
        LOG.debug("ignoring unparseable %s header %r", name, value)
    return parsed


def translate(headers: Mapping[str, str]) -> ConditionalParams:
    """Copy the request's range and cache validators into ``ConditionalParams``.

    ``headers`` must support lowercase lookups (Litestar's ``Headers`` does
    so case-insensitively). Empty values count as absent and malformed
    dates are dropped, so the request continues unconditionally.
    """
    return ConditionalParams(
        range=headers.get("range") or None,
        if_match=headers.get("if-match") or None,
        if_none_match=headers.get("if-none-match") or None,
        if_modified_since=_date_header(headers, "if-modified-since"),
        if_unmodified_since=_date_header(headers, "if-unmodified-since"),
    )
