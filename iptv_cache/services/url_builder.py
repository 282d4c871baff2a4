"""Credential normalization and playback URL construction."""
from __future__ import annotations

from typing import Optional
from urllib.parse import quote, urlsplit

from iptv_cache.errors import InvalidInput
from iptv_cache.models.provider import Authentication, Credentials
from iptv_cache.models.xtream import (
    ABSENT_CONTAINER_TOKENS,
    DEFAULT_CONTAINER,
    LIVE_CONTAINER_PRIORITY,
    VOD_CONTAINER_PRIORITY,
    MediaKind,
)
from iptv_cache.services.flexible import as_clean_string, as_flexible_int

_DEFAULT_PORTS = {"http": 80, "https": 443}

# Reserved URL characters plus '%' so already-encoded sources are left alone
_URL_SAFE = ":/?#[]@!$&'()*+,;=%~"


def normalized_base_url(raw: str) -> str:
    return (raw or "").strip().strip("/")


def make_credentials(base_url: str, username: str, password: str) -> Credentials:
    """Validate and normalize a login before any network call."""
    base = normalized_base_url(base_url)
    parts = urlsplit(base)
    if parts.scheme.lower() not in _DEFAULT_PORTS or not parts.hostname:
        raise InvalidInput(f"Invalid server URL: {base_url!r}")
    username = (username or "").strip()
    password = (password or "").strip()
    if not username:
        raise InvalidInput("Username is required")
    if not password:
        raise InvalidInput("Password is required")
    return Credentials(base_url=base, username=username, password=password)


def normalize_container_extension(raw) -> Optional[str]:
    text = as_clean_string(raw)
    if text is None:
        return None
    text = text.lower().lstrip(".")
    if text in ABSENT_CONTAINER_TOKENS:
        return None
    return text


def resolve_playback_base_url(auth: Authentication) -> Optional[str]:
    """Absolute streaming base URL advertised in ``server_info``, if any."""
    info = auth.server_info
    host = as_clean_string(info.url)
    if host is None:
        return None
    if "://" in host:
        host = host.split("://", 1)[1]
    host = host.strip("/")
    if not host:
        return None

    scheme = "https" if (info.server_protocol or "").strip().lower() == "https" else "http"
    http_port = as_flexible_int(info.port)
    https_port = as_flexible_int(info.https_port)
    if scheme == "https":
        port = https_port or http_port
    else:
        port = http_port or https_port

    try:
        has_port = urlsplit(f"//{host}").port is not None
    except ValueError:
        has_port = True
    if port and not has_port and port != _DEFAULT_PORTS[scheme]:
        return f"{scheme}://{host}:{port}"
    return f"{scheme}://{host}"


def _encode_direct_source(source: str, base_url: str) -> str:
    if source.startswith("//"):
        scheme = urlsplit(base_url).scheme or "http"
        source = f"{scheme}:{source}"
    return quote(source, safe=_URL_SAFE)


def build_playback_url(
    credentials: Credentials,
    kind: MediaKind,
    stream_id: str,
    container_extension: Optional[str] = None,
    direct_source: Optional[str] = None,
) -> str:
    direct = (direct_source or "").strip()
    if direct:
        return _encode_direct_source(direct, credentials.base_url)
    ext = normalize_container_extension(container_extension) or DEFAULT_CONTAINER
    return (
        f"{normalized_base_url(credentials.base_url)}/{kind.path_segment}/"
        f"{credentials.username}/{credentials.password}/{stream_id}.{ext}"
    )


def select_preferred_container(output_formats: list[str], kind: MediaKind) -> Optional[str]:
    formats = [f for f in (normalize_container_extension(x) for x in output_formats or []) if f]
    if not formats:
        return None
    priority = LIVE_CONTAINER_PRIORITY if kind == MediaKind.LIVE else VOD_CONTAINER_PRIORITY
    for candidate in priority:
        if candidate in formats:
            return candidate
    if kind == MediaKind.LIVE:
        # rtmp and friends cannot be expressed as a file extension
        return None
    return formats[0]


def playback_credentials(api_credentials: Credentials, auth: Authentication) -> Credentials:
    """Credentials for stream URLs: advertised server, else the configured one."""
    base = resolve_playback_base_url(auth) or api_credentials.base_url
    return Credentials(
        base_url=base,
        username=api_credentials.username,
        password=api_credentials.password,
    )
