from typing import Optional
from urllib.parse import urlencode

from fastapi import Request

from senditfast.core.config import settings


def _from_forwarded(header: str) -> Optional[str]:
    values = {}
    for part in header.split(",")[0].split(";"):
        if "=" in part:
            k, v = part.split("=", 1)
            values[k.strip().lower()] = v.strip().strip('"')
    if values.get("proto") and values.get("host"):
        return f"{values['proto']}://{values['host']}"
    return None


def external_base_url(request: Request) -> str:
    """Origin the recipient's browser should use to reach this service."""
    if settings.PUBLIC_BASE_URL:
        return settings.PUBLIC_BASE_URL.rstrip("/")

    fwd = request.headers.get("forwarded")
    base = _from_forwarded(fwd) if fwd else None
    if base:
        return base.rstrip("/")

    proto = request.headers.get("x-forwarded-proto")
    host = request.headers.get("x-forwarded-host") or request.headers.get("host")
    if proto and host:
        return f"{proto}://{host}".rstrip("/")

    return str(request.base_url).rstrip("/")


def join_url(base: str, path: str, **query: str) -> str:
    if not path.startswith("/"):
        path = "/" + path
    url = base.rstrip("/") + path
    if query:
        url += "?" + urlencode(query)
    return url


def share_url(base: str, slug: str, token: Optional[str] = None) -> str:
    if token:
        return join_url(base, f"/share/{slug}", r=token)
    return join_url(base, f"/share/{slug}")


def open_pixel_url(base: str, token: str) -> str:
    return join_url(base, f"/email/track/open/{token}")
