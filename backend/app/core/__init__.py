"""Core utilities for the Parley backend."""

from .storage import resolve_avatar_url, resolve_media_url

__all__ = ["resolve_media_url", "resolve_avatar_url"]
