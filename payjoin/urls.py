"""URL parsing for network endpoints that must carry a host."""

from __future__ import annotations

import re
from urllib.parse import SplitResult, urljoin, urlsplit

__all__ = ["UrlError", "BadSchemeError", "into_url", "join_url"]

_SCHEME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9+.\-]*:")
_SPECIAL_SCHEMES = frozenset({"http", "https", "ws", "wss", "ftp"})


class UrlError(ValueError):
    """A URL could not be parsed or used for a network request."""


class BadSchemeError(UrlError):
    """The URL parsed, but it has no host to send a request to."""

    def __init__(self) -> None:
        super().__init__("URL scheme is not allowed")


def _parse(text: str) -> SplitResult:
    if not _SCHEME_RE.match(text):
        raise UrlError("relative URL without a base")
    try:
        parts = urlsplit(text)
        parts.port  # noqa: B018 - validates the port
    except ValueError as exc:
        raise UrlError("invalid port number") from exc
    if parts.scheme in _SPECIAL_SCHEMES and not parts.path:
        parts = parts._replace(path="/")
    return parts


def into_url(value: str | SplitResult) -> SplitResult:
    """Parse ``value`` into a URL usable for a network request.

    Raises :class:`BadSchemeError` when the URL has no host, and
    :class:`UrlError` when it cannot be parsed at all.
    """
    if isinstance(value, SplitResult):
        parts = value
    elif isinstance(value, str):
        parts = _parse(value)
    else:
        raise TypeError(f"cannot convert {type(value).__name__} into a URL")

    host = parts.hostname
    if parts.scheme == "file" and host == "localhost":
        host = None
    if not host:
        if parts.scheme in _SPECIAL_SCHEMES:
            raise UrlError("empty host")
        raise BadSchemeError()
    return parts


def join_url(base: str | SplitResult, path: str) -> SplitResult:
    """Resolve ``path`` against ``base`` and return the resulting URL."""
    base_url = into_url(base)
    return into_url(urljoin(base_url.geturl(), path))