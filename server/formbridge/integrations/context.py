"""
Request-scoped collaborators passed to integrations at call time.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Mapping, Optional
from urllib.parse import urlencode


@dataclass
class RequestContext:
    """Metadata about the incoming browser request an integration acts on."""
    site_url: str
    origin: Optional[str] = None
    client_ip: Optional[str] = None
    user_agent: Optional[str] = None
    accept: Optional[str] = None
    language: str = "en-GB"

    @classmethod
    def from_request(cls, request: Any, site_url: str) -> "RequestContext":
        """Build a context from a Starlette/FastAPI request."""
        headers = request.headers
        client = getattr(request, "client", None)

        return cls(
            site_url=site_url,
            origin=headers.get("origin") or site_url,
            client_ip=headers.get("x-forwarded-for", "").split(",")[0].strip() or (client.host if client else None),
            user_agent=headers.get("user-agent"),
            accept=headers.get("accept"),
            language=(headers.get("accept-language") or "en-GB").split(",")[0].strip() or "en-GB",
        )

    def url_for(self, path: str, **params: Any) -> str:
        """Build an absolute site URL for ``path`` with optional query parameters."""
        url = f"{self.site_url.rstrip('/')}/{path.lstrip('/')}"
        if params:
            url = f"{url}?{urlencode(params)}"
        return url


class SecretResolver:
    """
    Resolve configuration values that reference environment variables.

    A value written as ``$NAME`` is looked up in the environment; anything
    else is returned unchanged.
    """

    TRUE_VALUES = {"1", "true", "yes", "on"}

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        self.environ = environ if environ is not None else os.environ

    def resolve(self, value: Any) -> Any:
        if isinstance(value, str) and value.startswith("$") and len(value) > 1:
            return self.environ.get(value[1:])
        return value

    def resolve_bool(self, value: Any) -> bool:
        resolved = self.resolve(value)
        if isinstance(resolved, str):
            return resolved.strip().lower() in self.TRUE_VALUES
        return bool(resolved)
