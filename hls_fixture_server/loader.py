"""Load fixture streams (multivariant playlist, media playlists, segments) from disk."""

from __future__ import annotations

import asyncio
import logging
import os

import aiofiles

from hls_fixture_server.constants import LOGGER_NAME, STREAM_PLAYLIST_NAME
from hls_fixture_server.errors import FileReadError, ParseError
from hls_fixture_server.helpers.hls import (
    HLSMediaPlaylist,
    HLSMultivariantPlaylist,
    parse_playlist,
)
from hls_fixture_server.helpers.paths import is_absolute_url, relative_posix_path
from hls_fixture_server.models.fixtures import (
    FixtureFile,
    FixtureMediaPlaylist,
    FixtureSegment,
    FixtureStream,
)

LOGGER = logging.getLogger(f"{LOGGER_NAME}.loader")


async def _read_playlist(filename: str) -> str:
    try:
        async with aiofiles.open(filename, encoding="utf-8") as _file:
            return await _file.read()
    except UnicodeDecodeError as err:
        msg = f"File at {filename} is not a text playlist"
        raise ParseError(msg) from err
    except OSError as err:
        msg = f"Unable to read playlist at {filename}: {err}"
        raise FileReadError(msg) from err


def _resolve(directory: str, uri: str) -> str:
    if is_absolute_url(uri) or os.path.isabs(uri):
        msg = f"URI {uri} must be relative to be loaded as a fixture"
        raise ParseError(msg)
    return os.path.normpath(os.path.join(directory, uri))


async def load_stream(base_dir: str, stream_name: str) -> FixtureStream:
    """
    Load the fixture stream `{base_dir}/{stream_name}/stream.m3u8` with all its variants.

    :param base_dir: Base directory of the fixture files (the server's root).
    :param stream_name: Name of the stream (directory) to load.
    :raises ParseError: If the stream playlist is not a multivariant playlist
        or one of its variants is not a media playlist.
    :raises FileReadError: If one of the playlists can not be read.
    """
    base_dir = os.path.abspath(base_dir)
    stream_dir = os.path.join(base_dir, stream_name)
    stream_path = os.path.join(stream_dir, STREAM_PLAYLIST_NAME)
    playlist = parse_playlist(await _read_playlist(stream_path))
    if not isinstance(playlist, HLSMultivariantPlaylist):
        msg = f"File at {stream_path} was not a multivariant playlist"
        raise ParseError(msg)
    LOGGER.debug(
        "Loading stream %s with %s variant(s)", stream_name, len(playlist.variants)
    )
    variants = await asyncio.gather(
        *(load_media_playlist(base_dir, stream_name, variant.uri) for variant in playlist.variants)
    )
    return FixtureStream(
        stream_name=stream_name,
        playlist_file=FixtureFile(relative_posix_path(stream_path, base_dir)),
        master_playlist=playlist,
        variants=list(variants),
    )


async def load_media_playlist(
    base_dir: str, stream_name: str, uri: str
) -> FixtureMediaPlaylist:
    """
    Load a media playlist of a stream, `uri` being relative to the stream's directory.

    :param base_dir: Base directory of the fixture files (the server's root).
    :param stream_name: Name of the stream (directory) the playlist belongs to.
    :param uri: URI of the media playlist, as listed in the multivariant playlist.
    :raises ParseError: If the file is not a media playlist.
    :raises FileReadError: If the playlist can not be read.
    """
    base_dir = os.path.abspath(base_dir)
    playlist_path = _resolve(os.path.join(base_dir, stream_name), uri)
    playlist = parse_playlist(await _read_playlist(playlist_path))
    if not isinstance(playlist, HLSMediaPlaylist):
        msg = f"File at {uri} was not a media playlist"
        raise ParseError(msg)
    playlist_dir = os.path.dirname(playlist_path)
    segments = [
        FixtureSegment(
            segment_file=FixtureFile(
                relative_posix_path(_resolve(playlist_dir, segment.segment_url), base_dir)
            ),
            media_segment=segment,
        )
        for segment in playlist.segments
    ]
    return FixtureMediaPlaylist(
        playlist_file=FixtureFile(relative_posix_path(playlist_path, base_dir)),
        media_playlist=playlist,
        segments=segments,
    )
