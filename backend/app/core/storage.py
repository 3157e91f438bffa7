"""Media store adapter: turns stored media references into fetchable URLs.

Messages only ever carry a reference (a path relative to the media root or an
absolute URL); bytes are served by a separate service.
"""

from __future__ import annotations

from typing import TYPE_CHECKING
from urllib.parse import quote

from app.config import get_settings

if TYPE_CHECKING:  # pragma: no cover - typing helpers only
    from app.models import User

settings = get_settings()

_ABSOLUTE_PREFIXES = ("http://", "https://", "//")


def _join(base: str, reference: str) -> str:
    return f"{base.rstrip('/')}/{quote(reference.lstrip('/'), safe='/')}"


def resolve_media_url(reference: str | None) -> str | None:
    """Return a URL clients can fetch for a stored media reference."""

    if not reference:
        return None
    if reference.startswith(_ABSOLUTE_PREFIXES):
        return reference
    return _join(settings.media_base_url, reference)


def resolve_avatar_url(user: "User") -> str | None:
    if not user.avatar_path:
        return None
    if user.avatar_path.startswith(_ABSOLUTE_PREFIXES):
        return user.avatar_path
    return _join(settings.avatar_base_url, user.avatar_path)
