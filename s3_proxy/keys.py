"""Map request paths and query strings onto object keys."""

from __future__ import annotations

import hashlib
import posixpath

DEFAULT_INDEX_DOCUMENT = "index.html"


def clean_path(path: str) -> str:
    """Lexically normalise ``path``, collapsing ``.``/``..`` and repeated slashes."""
    if not path:
        return "."
    cleaned = posixpath.normpath(path)
    # normpath keeps a POSIX double leading slash; object keys never want it
    if cleaned.startswith("//"):
        cleaned = "/" + cleaned.lstrip("/")
    return cleaned


def join_segments(*segments: str) -> str:
    """Join non-empty segments with ``/`` and normalise the result.

    Returns an empty string when every segment is empty.
    """
    parts = [segment for segment in segments if segment]
    if not parts:
        return ""
    return clean_path("/".join(parts))


def join_path(root: str, url_path: str) -> str:
    """Join ``root`` and ``url_path`` keeping a trailing slash on directory paths.

    Normalisation strips trailing slashes, so it is added back when the
    request path had one. A result of exactly ``/`` is returned as is.
    """
    is_dir = url_path.endswith("/")
    joined = join_segments(root, url_path)
    if is_dir and joined != "/":
        return f"{joined}/"
    return joined


def query_digest(raw_query: str) -> str:
    """Return the lowercase hex SHA-1 digest of the raw query string."""
    data = raw_query.encode("utf-8", "surrogateescape")
    return hashlib.sha1(data, usedforsecurity=False).hexdigest()


def build_key(
    root: str,
    url_path: str,
    raw_query: str = "",
    index_document: str = DEFAULT_INDEX_DOCUMENT,
) -> str:
    """Build the object key for a request.

    Directory paths (trailing slash) resolve to ``index_document``. A
    non-empty query string adds one more segment holding its SHA-1 digest,
    so every distinct query addresses its own object. Queries are hashed
    byte for byte; ``a=1&b=2`` and ``b=2&a=1`` map to different keys.

    Args:
        root: Resolved root prefix, may be empty.
        url_path: Decoded request path.
        raw_query: Undecoded query string without the leading ``?``.
        index_document: Object name used for directory paths.

    Returns:
        The object key.
    """
    key = join_path(root, url_path)
    if key.endswith("/"):
        key = join_segments(key, index_document)
    if raw_query:
        key = join_segments(key, "/", query_digest(raw_query))
    return key
