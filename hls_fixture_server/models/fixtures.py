"""In-memory model of a fixture stream: multivariant playlist -> media playlists -> segments."""

from __future__ import annotations

import math
from dataclasses import dataclass

from hls_fixture_server.helpers.hls import (
    HLSMediaPlaylist,
    HLSMediaSegment,
    HLSMultivariantPlaylist,
)


@dataclass(frozen=True)
class FixtureFile:
    """A file relative to the base directory of the server, and its route (once registered)."""

    relative_path: str
    route: str | None = None


@dataclass(frozen=True)
class FixtureSegment:
    """A single media segment of a media playlist."""

    segment_file: FixtureFile
    media_segment: HLSMediaSegment

    @property
    def duration(self) -> float:
        """Return the duration of this segment in seconds."""
        return self.media_segment.duration


@dataclass(frozen=True)
class FixtureMediaPlaylist:
    """A single rendition: its media playlist file and its ordered segments."""

    playlist_file: FixtureFile
    media_playlist: HLSMediaPlaylist
    segments: list[FixtureSegment]

    @property
    def start_offset(self) -> float:
        """Return the playlist's start offset in seconds (0 if not set)."""
        return self.media_playlist.start_offset or 0.0

    @property
    def total_duration(self) -> float:
        """Return the sum of all segment durations in seconds."""
        return sum(segment.duration for segment in self.segments)

    def segment_index(self, seconds: float) -> int | None:
        """Return the index of the segment playing at the given time.

        Time is counted from the start offset of the playlist.
        A time exactly on a segment boundary belongs to the segment starting there.
        Returns None if the time lies beyond the last segment.
        """
        cur_time = self.start_offset
        for index, segment in enumerate(self.segments):
            duration = segment.duration
            if seconds < cur_time + duration:
                return index
            cur_time += duration
        return None

    def segment_at_time(self, seconds: float) -> FixtureSegment | None:
        """Return the segment playing at the given time, if any."""
        index = self.segment_index(seconds)
        if index is None:
            return None
        return self.segments[index]

    def segments_in_time_range(
        self, start_sec: float, end_sec: float = math.inf
    ) -> list[FixtureSegment] | None:
        """Return the segments from the one playing at `start_sec` up to the one at `end_sec`.

        The segment playing at `end_sec` itself is excluded. If `end_sec` lies beyond the
        end of the playlist, all segments up to and including the last one are returned.
        Returns None if `start_sec` lies beyond the end of the playlist.
        """
        start_index = self.segment_index(start_sec)
        if start_index is None:
            return None
        end_index = self.segment_index(end_sec)
        if end_index is None:
            return self.segments[start_index:]
        return self.segments[start_index:end_index]


@dataclass(frozen=True)
class FixtureStream:
    """A parsed fixture stream: its multivariant playlist and all variants."""

    stream_name: str
    playlist_file: FixtureFile
    master_playlist: HLSMultivariantPlaylist
    variants: list[FixtureMediaPlaylist]

    def __post_init__(self) -> None:
        """Validate the variants match the multivariant playlist."""
        if len(self.variants) != len(self.master_playlist.variants):
            msg = (
                f"Stream {self.stream_name} has {len(self.variants)} variants, "
                f"but its playlist lists {len(self.master_playlist.variants)}"
            )
            raise ValueError(msg)
