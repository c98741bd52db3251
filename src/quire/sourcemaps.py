"""Source Map v3 support for chained asset processors.

Processors that rewrite assets produce a map from their output back to their
input. :meth:`SourceMap.compose` folds that map through the inbound map of
the previous processor, so the map stored on the page always points at the
original sources no matter how many transforms ran.

Segments are stored decoded and absolute::

    (generated_column,)                                   # unmapped
    (generated_column, source, line, column)              # mapped
    (generated_column, source, line, column, name)        # mapped + name
"""

from __future__ import annotations

import json
import logging
import posixpath
from bisect import bisect_right
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from quire.site import Site
    from quire.types import Page

__all__ = [
    "AssetInput",
    "Segment",
    "SourceMap",
    "decode_vlq",
    "encode_vlq",
    "prepare_asset",
    "save_asset",
    "source_mapping_comment",
]

logger = logging.getLogger(__name__)

Segment = tuple[int, ...]

_B64 = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789+/"
_B64_INDEX = {ch: i for i, ch in enumerate(_B64)}

_VLQ_SHIFT = 5
_VLQ_CONTINUATION = 1 << _VLQ_SHIFT
_VLQ_MASK = _VLQ_CONTINUATION - 1


def encode_vlq(value: int) -> str:
    """Encode one signed integer as Base64 VLQ."""
    vlq = ((-value) << 1) | 1 if value < 0 else value << 1
    out: list[str] = []
    while True:
        digit = vlq & _VLQ_MASK
        vlq >>= _VLQ_SHIFT
        if vlq:
            digit |= _VLQ_CONTINUATION
        out.append(_B64[digit])
        if not vlq:
            return "".join(out)


def decode_vlq(segment: str) -> list[int]:
    """Decode a Base64 VLQ segment into its signed integers.

    Raises:
        ValueError: On characters outside the Base64 alphabet or a
            truncated value.
    """
    values: list[int] = []
    value = 0
    shift = 0
    for ch in segment:
        try:
            digit = _B64_INDEX[ch]
        except KeyError:
            raise ValueError(f"Invalid VLQ character {ch!r}") from None
        value += (digit & _VLQ_MASK) << shift
        if digit & _VLQ_CONTINUATION:
            shift += _VLQ_SHIFT
            continue
        values.append(-(value >> 1) if value & 1 else value >> 1)
        value = 0
        shift = 0
    if shift:
        raise ValueError(f"Truncated VLQ segment {segment!r}")
    return values


@dataclass
class SourceMap:
    """A decoded Source Map v3."""

    sources: list[str] = field(default_factory=list)
    lines: list[list[Segment]] = field(default_factory=list)
    names: list[str] = field(default_factory=list)
    sources_content: list[str | None] = field(default_factory=list)
    file: str | None = None

    # -- construction ------------------------------------------------------

    @classmethod
    def identity(cls, source: str, content: str) -> SourceMap:
        """Map every line of ``content`` onto itself in ``source``."""
        smap = cls(sources=[source], sources_content=[content])
        for line in range(content.count("\n") + 1):
            smap.add_mapping(line, 0, source, line, 0)
        return smap

    def source_index(self, source: str, content: str | None = None) -> int:
        if source in self.sources:
            return self.sources.index(source)
        self.sources.append(source)
        self.sources_content.append(content)
        return len(self.sources) - 1

    def add_mapping(
        self,
        generated_line: int,
        generated_column: int,
        source: str,
        line: int,
        column: int,
        name: str | None = None,
    ) -> None:
        """Append one mapping; segments within a line are kept sorted."""
        while len(self.lines) <= generated_line:
            self.lines.append([])
        src = self.source_index(source)
        segment: Segment = (generated_column, src, line, column)
        if name is not None:
            if name not in self.names:
                self.names.append(name)
            segment = (*segment, self.names.index(name))
        row = self.lines[generated_line]
        row.insert(bisect_right([s[0] for s in row], generated_column), segment)

    # -- (de)serialization -------------------------------------------------

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SourceMap:
        if data.get("version") != 3:
            raise ValueError(f"Unsupported source map version: {data.get('version')!r}")

        smap = cls(
            sources=list(data.get("sources", [])),
            names=list(data.get("names", [])),
            file=data.get("file"),
        )
        contents = data.get("sourcesContent") or []
        smap.sources_content = [
            contents[i] if i < len(contents) else None for i in range(len(smap.sources))
        ]

        src = line = column = name = 0
        for row in str(data.get("mappings", "")).split(";"):
            generated = 0
            segments: list[Segment] = []
            for raw in row.split(","):
                if not raw:
                    continue
                values = decode_vlq(raw)
                generated += values[0]
                if len(values) == 1:
                    segments.append((generated,))
                    continue
                src += values[1]
                line += values[2]
                column += values[3]
                if len(values) >= 5:
                    name += values[4]
                    segments.append((generated, src, line, column, name))
                else:
                    segments.append((generated, src, line, column))
            smap.lines.append(segments)
        return smap

    @classmethod
    def from_json(cls, text: str) -> SourceMap:
        return cls.from_dict(json.loads(text))

    def encode_mappings(self) -> str:
        rows: list[str] = []
        src = line = column = name = 0
        for segments in self.lines:
            generated = 0
            encoded: list[str] = []
            for seg in segments:
                parts = [encode_vlq(seg[0] - generated)]
                generated = seg[0]
                if len(seg) >= 4:
                    parts.append(encode_vlq(seg[1] - src))
                    parts.append(encode_vlq(seg[2] - line))
                    parts.append(encode_vlq(seg[3] - column))
                    src, line, column = seg[1], seg[2], seg[3]
                if len(seg) >= 5:
                    parts.append(encode_vlq(seg[4] - name))
                    name = seg[4]
                encoded.append("".join(parts))
            rows.append(",".join(encoded))
        return ";".join(rows)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "version": 3,
            "sources": list(self.sources),
            "names": list(self.names),
            "mappings": self.encode_mappings(),
        }
        if self.file:
            data["file"] = self.file
        if any(content is not None for content in self.sources_content):
            data["sourcesContent"] = list(self.sources_content)
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))

    # -- queries -----------------------------------------------------------

    def lookup(self, line: int, column: int) -> Segment | None:
        """The segment covering a generated position, or ``None``."""
        if line < 0 or line >= len(self.lines):
            return None
        row = self.lines[line]
        idx = bisect_right([s[0] for s in row], column) - 1
        return row[idx] if idx >= 0 else None

    def compose(self, inner: SourceMap) -> SourceMap:
        """Return a map from this map's output to ``inner``'s sources.

        ``self`` must describe a transform whose input was ``inner``'s
        output. Positions ``inner`` cannot resolve become unmapped.
        """
        result = SourceMap(file=self.file)
        for gen_line, segments in enumerate(self.lines):
            row: list[Segment] = []
            for seg in segments:
                if len(seg) < 4:
                    row.append((seg[0],))
                    continue
                original = inner.lookup(seg[2], seg[3])
                if original is None or len(original) < 4:
                    row.append((seg[0],))
                    continue

                source = inner.sources[original[1]]
                content = (
                    inner.sources_content[original[1]]
                    if original[1] < len(inner.sources_content)
                    else None
                )
                src = result.source_index(source, content)
                name = None
                if len(original) >= 5:
                    name = inner.names[original[4]]
                elif len(seg) >= 5:
                    name = self.names[seg[4]]
                if name is None:
                    row.append((seg[0], src, original[2], original[3]))
                else:
                    if name not in result.names:
                        result.names.append(name)
                    row.append((seg[0], src, original[2], original[3], result.names.index(name)))
            result.lines.append(row)
        return result


# ---------------------------------------------------------------------------
# Processor helpers
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AssetInput:
    """What a source-mapping processor needs from a page."""

    content: str
    filename: str
    source_map: SourceMap | None
    enabled: bool


def prepare_asset(site: Site, page: Page) -> AssetInput:
    """Collect content, filename and inbound map for a transform."""
    content = page.content.decode("utf-8") if isinstance(page.content, bytes) else page.content
    return AssetInput(
        content=content,
        filename=page.src,
        source_map=page.source_map,
        enabled=site.config.build.source_maps,
    )


def save_asset(
    site: Site,
    page: Page,
    content: str,
    source_map: SourceMap | None = None,
) -> None:
    """Store transformed content and the map composed with the inbound one."""
    page.content = content
    if not site.config.build.source_maps:
        return

    if source_map is None:
        if page.source_map is not None:
            logger.debug("Dropping stale source map of %s", page.src)
        page.source_map = None
        return

    if page.source_map is not None:
        source_map = source_map.compose(page.source_map)
    source_map.file = posixpath.basename(page.dest or page.src)
    page.source_map = source_map


def source_mapping_comment(output_ext: str, map_name: str) -> str | None:
    """The trailing comment linking an asset to its map, by output type."""
    if output_ext == ".css":
        return f"\n/*# sourceMappingURL={map_name} */\n"
    if output_ext in (".js", ".mjs"):
        return f"\n//# sourceMappingURL={map_name}\n"
    return None
