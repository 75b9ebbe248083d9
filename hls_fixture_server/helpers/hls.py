"""
RFC 8216-based HLS utilities.

Parses multivariant (master) playlists and media playlists into structured data
while keeping the original tag lines around.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from hls_fixture_server.errors import ParseError

ATTRIBUTE_PATTERN = re.compile(r'([A-Z0-9-]+)=("[^"]*"|[^,]*)')


def parse_attribute_list(value: str) -> dict[str, str]:
    """Parse an attribute list (e.g. `BANDWIDTH=1280000,CODECS="a,b"`) into a dict.

    Quoted values are returned without their surrounding quotes.
    """
    attributes: dict[str, str] = {}
    for key, raw_value in ATTRIBUTE_PATTERN.findall(value):
        attributes[key] = raw_value.strip('"')
    return attributes


@dataclass
class HLSMediaSegment:
    """Single HLS media segment entry with associated metadata."""

    extinf_line: str = ""
    segment_url: str = ""
    key_line: str | None = None
    byterange_line: str | None = None
    discontinuity: bool = False
    map_line: str | None = None
    program_date_time: str | None = None

    @property
    def duration(self) -> float:
        """Extract duration in seconds from #EXTINF line."""
        try:
            duration_part = self.extinf_line.split("#EXTINF:")[1].split(",", 1)[0]
            return float(duration_part.strip())
        except (IndexError, ValueError):
            return 0.0

    @property
    def title(self) -> str | None:
        """Extract optional title from #EXTINF line."""
        try:
            parts = self.extinf_line.split("#EXTINF:")[1].split(",", 1)
            if len(parts) == 2:
                title = parts[1].strip()
                return title if title else None
            return None
        except IndexError:
            return None


@dataclass
class HLSMediaPlaylist:
    """
    HLS media playlist structure with headers, segments, and footers preserved.

    Note: header_lines excludes EXT-X-KEY and EXT-X-MAP tags. Per RFC 8216, these
    tags apply to subsequent segments until overridden, so they're stored per-segment
    for easier manipulation.
    """

    header_lines: list[str] = field(default_factory=list)
    segments: list[HLSMediaSegment] = field(default_factory=list)
    footer_lines: list[str] = field(default_factory=list)
    start_offset: float | None = None
    start_precise: bool = False

    @property
    def total_duration(self) -> float:
        """Return the sum of all segment durations (in seconds)."""
        return sum(segment.duration for segment in self.segments)

    @property
    def target_duration(self) -> float | None:
        """Return the value of the #EXT-X-TARGETDURATION tag, if present."""
        for line in self.header_lines:
            if line.startswith("#EXT-X-TARGETDURATION:"):
                try:
                    return float(line.split(":", 1)[1])
                except ValueError:
                    return None
        return None


@dataclass
class HLSVariantStream:
    """Single variant (rendition) entry of a multivariant playlist."""

    stream_inf_line: str = ""
    uri: str = ""

    @property
    def attributes(self) -> dict[str, str]:
        """Return the parsed attribute list of the #EXT-X-STREAM-INF tag."""
        return parse_attribute_list(self.stream_inf_line.split(":", 1)[-1])

    @property
    def bandwidth(self) -> int:
        """Return the peak bandwidth (bits per second) of this variant."""
        try:
            return int(self.attributes["BANDWIDTH"])
        except (KeyError, ValueError):
            return 0

    @property
    def resolution(self) -> str | None:
        """Return the resolution (e.g. 1280x720) of this variant, if specified."""
        return self.attributes.get("RESOLUTION")

    @property
    def codecs(self) -> str | None:
        """Return the codecs string of this variant, if specified."""
        return self.attributes.get("CODECS")


@dataclass
class HLSMultivariantPlaylist:
    """HLS multivariant (master) playlist with its variants in manifest order."""

    header_lines: list[str] = field(default_factory=list)
    variants: list[HLSVariantStream] = field(default_factory=list)
    media_lines: list[str] = field(default_factory=list)


def is_multivariant_playlist(hls_playlist_text: str) -> bool:
    """Return True if the given playlist text looks like a multivariant playlist."""
    return any(
        line.strip().startswith("#EXT-X-STREAM-INF:") for line in hls_playlist_text.split("\n")
    )


def _playlist_lines(hls_playlist_text: str) -> list[str]:
    lines = [line.strip() for line in hls_playlist_text.split("\n") if line.strip()]
    if not lines or not lines[0].startswith("#EXTM3U"):
        msg = "Invalid HLS playlist: must start with #EXTM3U"
        raise ParseError(msg)
    return lines


class HLSMediaPlaylistParser:
    """RFC 8216-based HLS media playlist parser."""

    def __init__(self, hls_playlist_text: str) -> None:
        """Initialize parser with playlist text."""
        self.hls_playlist_text = hls_playlist_text
        self.result = HLSMediaPlaylist()
        self.working_segment = HLSMediaSegment()
        self.segments_started = False

    def parse(self) -> HLSMediaPlaylist:
        """Parse HLS media playlist text into structured data.

        Returns:
            HLSMediaPlaylist object with extracted structure

        Raises:
            ParseError: If playlist doesn't start with #EXTM3U, is a multivariant
                playlist or has invalid format
        """
        lines = _playlist_lines(self.hls_playlist_text)

        for line in lines:
            self.process_line(line)

        if not self.result.segments:
            msg = "Invalid HLS playlist: no segments found"
            raise ParseError(msg)

        return self.result

    def process_line(self, line: str) -> None:
        """Process a single line from the playlist."""
        if line.startswith("#EXTINF:"):
            self._on_extinf(line)
        elif line.startswith("#EXT-X-STREAM-INF:"):
            msg = "Invalid HLS media playlist: found #EXT-X-STREAM-INF of a multivariant playlist"
            raise ParseError(msg)
        elif line.startswith("#EXT-X-KEY:"):
            self._on_key_line(line)
        elif line.startswith("#EXT-X-MAP:"):
            self._on_map_line(line)
        elif line.startswith("#EXT-X-PROGRAM-DATE-TIME:"):
            self._on_program_date_time(line)
        elif line.startswith("#EXT-X-BYTERANGE:"):
            self._on_byterange(line)
        elif line.startswith("#EXT-X-DISCONTINUITY"):
            self._on_discontinuity()
        elif line.startswith("#EXT-X-START:"):
            self._on_start(line)
        elif line.startswith("#EXT"):
            self._on_ext_tag(line)
        elif line.startswith("#"):
            pass
        elif self.working_segment.extinf_line:
            self._on_segment_url(line)

    def _on_extinf(self, line: str) -> None:
        """Handle #EXTINF tag."""
        if self.working_segment.extinf_line:
            msg = (
                f"Malformed HLS playlist: #EXTINF '{line}' found without "
                f"preceding segment URL for '{self.working_segment.extinf_line}'"
            )
            raise ParseError(msg)
        self.segments_started = True
        self.working_segment.extinf_line = line

    def _on_key_line(self, line: str) -> None:
        """Handle #EXT-X-KEY tag."""
        self.working_segment.key_line = line

    def _on_map_line(self, line: str) -> None:
        """Handle #EXT-X-MAP tag."""
        self.working_segment.map_line = line

    def _on_program_date_time(self, line: str) -> None:
        """Handle #EXT-X-PROGRAM-DATE-TIME tag."""
        self.working_segment.program_date_time = line

    def _on_byterange(self, line: str) -> None:
        """Handle #EXT-X-BYTERANGE tag."""
        self.working_segment.byterange_line = line

    def _on_discontinuity(self) -> None:
        """Handle #EXT-X-DISCONTINUITY tag."""
        self.working_segment.discontinuity = True

    def _on_start(self, line: str) -> None:
        """Handle #EXT-X-START tag (preferred playback start offset)."""
        attributes = parse_attribute_list(line.split(":", 1)[1])
        try:
            self.result.start_offset = float(attributes["TIME-OFFSET"])
        except (KeyError, ValueError) as err:
            msg = f"Malformed HLS playlist: invalid #EXT-X-START tag '{line}'"
            raise ParseError(msg) from err
        self.result.start_precise = attributes.get("PRECISE") == "YES"
        self._on_ext_tag(line)

    def _on_ext_tag(self, line: str) -> None:
        """Handle other #EXT tags."""
        if self.segments_started:
            self.result.footer_lines.append(line)
        else:
            self.result.header_lines.append(line)

    def _on_segment_url(self, line: str) -> None:
        """Handle segment URL following #EXTINF."""
        self.working_segment.segment_url = line
        self.result.segments.append(self.working_segment)

        self.working_segment = HLSMediaSegment(
            key_line=self.working_segment.key_line,
            map_line=self.working_segment.map_line,
        )


class HLSMultivariantPlaylistParser:
    """RFC 8216-based HLS multivariant playlist parser."""

    def __init__(self, hls_playlist_text: str) -> None:
        """Initialize parser with playlist text."""
        self.hls_playlist_text = hls_playlist_text
        self.result = HLSMultivariantPlaylist()
        self.working_stream_inf: str | None = None

    def parse(self) -> HLSMultivariantPlaylist:
        """Parse HLS multivariant playlist text into structured data.

        :raises ParseError: If the text is not a multivariant playlist.
        """
        lines = _playlist_lines(self.hls_playlist_text)

        for line in lines:
            self.process_line(line)

        if self.working_stream_inf is not None:
            msg = f"Malformed HLS playlist: '{self.working_stream_inf}' has no variant URI"
            raise ParseError(msg)
        if not self.result.variants:
            msg = "Invalid HLS multivariant playlist: no variant streams found"
            raise ParseError(msg)

        return self.result

    def process_line(self, line: str) -> None:
        """Process a single line from the playlist."""
        if line.startswith("#EXTINF:"):
            msg = "Invalid HLS multivariant playlist: found #EXTINF of a media playlist"
            raise ParseError(msg)
        if line.startswith("#EXT-X-STREAM-INF:"):
            if self.working_stream_inf is not None:
                msg = f"Malformed HLS playlist: '{line}' found without preceding variant URI"
                raise ParseError(msg)
            self.working_stream_inf = line
        elif line.startswith("#EXT-X-MEDIA:"):
            self.result.media_lines.append(line)
        elif line.startswith("#EXT"):
            self.result.header_lines.append(line)
        elif line.startswith("#"):
            pass
        elif self.working_stream_inf is not None:
            self.result.variants.append(
                HLSVariantStream(stream_inf_line=self.working_stream_inf, uri=line)
            )
            self.working_stream_inf = None


def parse_playlist(hls_playlist_text: str) -> HLSMultivariantPlaylist | HLSMediaPlaylist:
    """Parse playlist text into either a multivariant or a media playlist."""
    if is_multivariant_playlist(hls_playlist_text):
        return HLSMultivariantPlaylistParser(hls_playlist_text).parse()
    return HLSMediaPlaylistParser(hls_playlist_text).parse()
