"""
Shared web security helpers (FastAPI-agnostic utilities for routes).

Contains the same-origin check for state-changing form posts (callback relay,
onboarding refresh) and the browser-facing base URL used to build the OAuth
callback address. Proxy headers are trusted only with PDS_TRUST_PROXY=true.
"""
from __future__ import annotations

from urllib.parse import urlparse
import os

from fastapi import Request


def _trust_proxy() -> bool:
    return (os.getenv("PDS_TRUST_PROXY", "false") or "").lower() == "true"


def _default_port(scheme: str) -> int:
    return 443 if scheme == "https" else 80


def _first(value: str) -> str:
    return value.split(",")[0].strip()


def _parse_origin(url: str) -> tuple[str, str, int]:
    p = urlparse(url)
    if not p.scheme or not p.hostname:
        raise ValueError("invalid_origin")
    scheme = p.scheme.lower()
    port = p.port if p.port is not None else _default_port(scheme)
    return scheme, p.hostname.lower(), int(port)


def _server_origin(request: Request) -> tuple[str, str, int]:
    scheme = (request.url.scheme or "http").lower()
    host = (request.url.hostname or "").lower()
    port = int(request.url.port) if request.url.port else _default_port(scheme)
    if not _trust_proxy():
        return scheme, host, port

    scheme = (_first(request.headers.get("x-forwarded-proto") or "") or scheme).lower()
    xf_host = _first(request.headers.get("x-forwarded-host") or request.headers.get("host") or "")
    if ":" in xf_host:
        host_only, port_str = xf_host.rsplit(":", 1)
        host = host_only.lower()
        port = int(port_str) if port_str.isdigit() else _default_port(scheme)
    elif xf_host:
        host = xf_host.lower()
        port = _default_port(scheme)
    xf_port = _first(request.headers.get("x-forwarded-port") or "")
    if xf_port:
        port = int(xf_port) if xf_port.isdigit() else _default_port(scheme)
    return scheme, host, port


def is_same_origin(request: Request) -> bool:
    """Verify same-origin using Origin, else Referer.

    No header at all is allowed so non-browser clients keep working; a header
    that cannot be parsed is a mismatch.
    """
    header = request.headers.get("origin") or request.headers.get("referer")
    if not header:
        return True
    try:
        return _parse_origin(header) == _server_origin(request)
    except ValueError:
        return False


def request_app_base(request: Request) -> str:
    """Browser-facing `scheme://host[:port]` of the incoming request."""
    scheme, host, port = _server_origin(request)
    if port == _default_port(scheme):
        return f"{scheme}://{host}"
    return f"{scheme}://{host}:{port}"


def hostport_from_url(url: str) -> str:
    """Lowercased host[:port] of `url`, or "" when it has no host."""
    try:
        p = urlparse(url)
        if p.hostname:
            return f"{p.hostname.lower()}:{p.port}" if p.port else p.hostname.lower()
    except ValueError:
        pass
    return ""
