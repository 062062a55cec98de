from __future__ import annotations

import os
import re
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from litestar import Request

    Resolver = Callable[[str, Request], str]

_PLACEHOLDER = re.compile(r"\{([^{}]+)\}")


class PlaceholderResolver:
    """Expand ``{...}`` placeholders in the configured root path.

    Supported placeholders are ``{http.vars.NAME}``, ``{http.request.host}``
    and ``{env.NAME}``. Anything unknown expands to an empty string.
    """

    def __init__(self, static_vars: Mapping[str, str] | None = None):
        self._static_vars = dict(static_vars or {})

    def __call__(self, template: str, request: Request) -> str:
        if "{" not in template:
            return template
        return _PLACEHOLDER.sub(
            lambda match: self._lookup(match.group(1).strip(), request), template
        )

    def _lookup(self, name: str, request: Request) -> str:
        if name.startswith("http.vars."):
            return self._request_var(name.removeprefix("http.vars."), request)
        if name.startswith("env."):
            return os.environ.get(name.removeprefix("env."), "")
        if name == "http.request.host":
            host = request.headers.get("host") or ""
            return host.rsplit(":", 1)[0] if not host.endswith("]") else host
        return ""

    def _request_var(self, var: str, request: Request) -> str:
        state: Any = request.scope.get("state") or {}
        request_vars = state.get("vars") if isinstance(state, dict) else None
        if isinstance(request_vars, dict) and var in request_vars:
            return str(request_vars[var])
        return self._static_vars.get(var, "")
