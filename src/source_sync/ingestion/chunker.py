"""Heading- and table-aware markdown splitter."""

import re
from dataclasses import dataclass, field

from source_sync.config import get_settings
from source_sync.errors import ChunkSizeError

HEADING_RE = re.compile(r"^(#+)")
TABLE_SEPARATOR_RE = re.compile(r"^[|\-:\s]+$")


def get_chunk_size(lines: list[str]) -> int:
    """Characters of the lines joined by newlines."""
    if not lines:
        return 0
    return sum(len(line) for line in lines) + len(lines) - 1


def split_long_line(line: str, size: int) -> list[str]:
    """Split a line into fixed-width pieces; only the last may be shorter."""
    if size <= 0:
        raise ChunkSizeError("lines are too long")
    if len(line) <= size:
        return [line]
    return [line[i : i + size] for i in range(0, len(line), size)]


def is_table_line(line: str) -> bool:
    stripped = line.strip()
    return len(stripped) > 1 and stripped.startswith("|") and stripped.endswith("|")


def is_table_separator(line: str) -> bool:
    return is_table_line(line) and TABLE_SEPARATOR_RE.match(line.strip()) is not None


@dataclass
class MarkdownChunk:
    """A chunk of markdown with the context lines carried into it."""

    context: list[str] = field(default_factory=list)
    lines: list[str] = field(default_factory=list)
    # Whether each content line completes a source line
    line_ends: list[bool] = field(default_factory=list)

    @property
    def all_lines(self) -> list[str]:
        return self.context + self.lines

    @property
    def size(self) -> int:
        return get_chunk_size(self.all_lines)

    @property
    def text(self) -> str:
        return "\n".join(self.all_lines)

    def fits(self, line: str, size: int) -> bool:
        return get_chunk_size(self.all_lines + [line]) <= size

    def append(self, line: str, line_end: bool = True) -> None:
        self.lines.append(line)
        self.line_ends.append(line_end)


class MarkdownSplitter:
    """
    Split markdown into size-bounded chunks.

    Each chunk starts with the heading breadcrumb of the text it continues
    and, inside a table, with the table's header and separator rows.
    An optional context string is prefixed to every chunk.
    """

    def __init__(self, size: int | None = None, context: str | None = None):
        self.size = size if size is not None else get_settings().chunk_max_chars
        if self.size <= 0:
            raise ChunkSizeError(f"Chunk size must be positive, got {self.size}")
        self.context = context
        self._headings: list[tuple[int, str]] = []
        self._table_header: str | None = None
        self._table_separator: str | None = None

    def split(self, markdown: str) -> list[str]:
        return [chunk.text for chunk in self.split_chunks(markdown)]

    def split_chunks(self, markdown: str) -> list[MarkdownChunk]:
        self._headings = []
        self._table_header = None
        self._table_separator = None

        if not markdown.strip():
            return []

        chunks: list[MarkdownChunk] = []
        current: MarkdownChunk | None = None

        for line in markdown.split("\n"):
            if current is not None and current.fits(line, self.size):
                current.append(line)
            else:
                context = self._carried_context(line)
                current = MarkdownChunk(context=list(context))
                chunks.append(current)

                if current.fits(line, self.size):
                    current.append(line)
                else:
                    room = self.size - get_chunk_size(context) - (1 if context else 0)
                    pieces = split_long_line(line, room)
                    for index, piece in enumerate(pieces):
                        if index > 0:
                            current = MarkdownChunk(context=list(context))
                            chunks.append(current)
                        current.append(piece, line_end=index == len(pieces) - 1)

            self._track_structure(line)

        for index, chunk in enumerate(chunks):
            if chunk.size > self.size:
                raise ChunkSizeError(
                    f"Chunk {index} is too large - {chunk.size} (max: {self.size})"
                )

        return chunks

    def _preface(self) -> list[str]:
        if not self.context:
            return []
        return [f"Context: {self.context}", "---"]

    def _carried_context(self, line: str) -> list[str]:
        """Context lines for a chunk that starts with the given line."""
        headings = list(self._headings)
        level = heading_level(line)
        if level:
            while headings and headings[-1][0] >= level:
                headings.pop()

        lines = self._preface() + [text for _, text in headings]

        if (
            self._table_header is not None
            and self._table_separator is not None
            and is_table_line(line)
        ):
            lines += [self._table_header, self._table_separator]

        return lines

    def _track_structure(self, line: str) -> None:
        if is_table_line(line):
            if self._table_header is None:
                self._table_header = line
            elif self._table_separator is None:
                if is_table_separator(line):
                    self._table_separator = line
                else:
                    self._table_header = line
        else:
            self._table_header = None
            self._table_separator = None

        level = heading_level(line)
        if level:
            while self._headings and self._headings[-1][0] >= level:
                self._headings.pop()
            self._headings.append((level, line))


def heading_level(line: str) -> int:
    match = HEADING_RE.match(line)
    return len(match.group(1)) if match else 0


def split_markdown(markdown: str, size: int | None = None, context: str | None = None) -> list[str]:
    """Split markdown into chunk texts of at most ``size`` characters."""
    return MarkdownSplitter(size=size, context=context).split(markdown)


def join_chunks(chunks: list[MarkdownChunk]) -> str:
    """Rebuild the source markdown from the content lines of chunks."""
    source_lines = []
    pending = ""
    for chunk in chunks:
        for line, line_end in zip(chunk.lines, chunk.line_ends):
            pending += line
            if line_end:
                source_lines.append(pending)
                pending = ""
    if pending:
        source_lines.append(pending)
    return "\n".join(source_lines)
