"""Helpers for fixture file paths and server routes."""

from __future__ import annotations

import mimetypes
import os
import posixpath
from urllib.parse import urlparse

from hls_fixture_server.constants import (
    DEFAULT_CONTENT_TYPE,
    DEFAULT_SEGMENT_EXTENSION,
    HLS_CONTENT_TYPES,
    MEDIA_PLAYLIST_NAME,
    STREAM_PLAYLIST_NAME,
)


def to_posix(path: str) -> str:
    """Normalize a (relative) filesystem path to forward slashes."""
    return path.replace(os.sep, "/")


def relative_posix_path(path: str, start: str) -> str:
    """Return `path` relative to `start`, using forward slashes."""
    return to_posix(os.path.relpath(path, start))


def route_from_path(rel_path: str) -> str:
    """Return the server route for a path, rooting it with a slash if needed."""
    rel_path = to_posix(rel_path)
    if rel_path.startswith("/"):
        return rel_path
    return f"/{rel_path}"


def replace_leading_component(rel_path: str, new_name: str) -> str:
    """Replace the leading directory component of a relative path.

    `live/720p/0.ts` with new name `clone` becomes `clone/720p/0.ts`.
    """
    parts = to_posix(rel_path).lstrip("/").split("/")
    return posixpath.join(new_name, *parts[1:])


def is_absolute_url(value: str) -> bool:
    """Return True if the value is an absolute URL with a scheme and a host.

    Scheme-only values such as `mailto:a@b` or `localhost:3000/x` are treated as
    paths, a redirect to them is rooted like any other relative location.
    """
    try:
        parsed = urlparse(value)
    except ValueError:
        return False
    return bool(parsed.scheme and parsed.netloc)


def fixture_manifest_path(stream_name: str) -> str:
    """Return the relative path of the multivariant playlist of a stream."""
    return posixpath.join(stream_name, STREAM_PLAYLIST_NAME)


def fixture_media_playlist_path(stream_name: str, variant_name: str) -> str:
    """Return the relative path of a variant's media playlist."""
    return posixpath.join(stream_name, variant_name, MEDIA_PLAYLIST_NAME)


def fixture_segment_path(
    stream_name: str,
    variant_name: str,
    segment_number: int,
    file_extension: str = DEFAULT_SEGMENT_EXTENSION,
) -> str:
    """Return the relative path of a numbered media segment of a variant."""
    return posixpath.join(stream_name, variant_name, f"{segment_number}.{file_extension}")


def content_type_for_path(path: str) -> str:
    """Return the Content-Type for a file, based on its extension."""
    extension = os.path.splitext(path)[1].lower()
    if content_type := HLS_CONTENT_TYPES.get(extension):
        return content_type
    content_type, _ = mimetypes.guess_type(path, strict=False)
    return content_type or DEFAULT_CONTENT_TYPE
