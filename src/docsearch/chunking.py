"""Markdown-aware text chunking for semantic search.

Splits a markdown document into sections at headings, then packs each section's
paragraphs into size-bounded chunks that share a short overlap with their
predecessor. All chunking is deterministic: same input + config -> same chunks.
Sizes are measured in characters.
"""

import re
from dataclasses import dataclass
from typing import Protocol

DEFAULT_MAX_CHUNK_SIZE = 1500
DEFAULT_OVERLAP_SIZE = 150
DEFAULT_MIN_CHUNK_SIZE = 20

HEADING_PATTERN = re.compile(r"^(#{1,6})\s+(.+)$")
PARAGRAPH_BREAK = re.compile(r"\n\s*\n")


@dataclass(frozen=True)
class ChunkingConfig:
    """Configuration for text chunking.

    Attributes:
        max_chunk_size: Maximum chunk length in characters
        overlap_size: Characters carried over from the previous chunk
        min_chunk_size: Chunks (and sections) shorter than this are dropped
    """

    max_chunk_size: int = DEFAULT_MAX_CHUNK_SIZE
    overlap_size: int = DEFAULT_OVERLAP_SIZE
    min_chunk_size: int = DEFAULT_MIN_CHUNK_SIZE

    def __post_init__(self) -> None:
        """Validate configuration parameters."""
        if self.max_chunk_size <= 0:
            raise ValueError(f"max_chunk_size must be positive, got {self.max_chunk_size}")
        if self.overlap_size < 0:
            raise ValueError(f"overlap_size must be non-negative, got {self.overlap_size}")
        if self.overlap_size >= self.max_chunk_size:
            raise ValueError(
                f"overlap_size ({self.overlap_size}) must be less than "
                f"max_chunk_size ({self.max_chunk_size})"
            )
        if self.min_chunk_size < 0:
            raise ValueError(f"min_chunk_size must be non-negative, got {self.min_chunk_size}")


@dataclass(frozen=True)
class Chunk:
    """A single text chunk with its section and position information.

    Attributes:
        index: 0-indexed position in the document's chunk sequence
        text: Chunk text content
        section_title: Heading text of the originating section ("" if untitled)
        start_offset: Approximate starting character offset in the source
        end_offset: Approximate ending character offset in the source
    """

    index: int
    text: str
    section_title: str
    start_offset: int
    end_offset: int

    def __post_init__(self) -> None:
        """Validate chunk properties."""
        if not self.text:
            raise ValueError("Chunk text cannot be empty")
        if self.index < 0:
            raise ValueError(f"index must be non-negative, got {self.index}")
        if self.start_offset < 0 or self.end_offset < self.start_offset:
            raise ValueError(
                f"Invalid offsets: start={self.start_offset}, end={self.end_offset}"
            )


class Chunker(Protocol):
    """Protocol for text chunking implementations."""

    def chunk(self, text: str) -> list[Chunk]:
        """Split text into ordered chunks.

        Args:
            text: Input text to chunk

        Returns:
            List of Chunk objects in order
        """
        ...


def split_paragraphs(text: str) -> list[str]:
    """Split text on blank lines, dropping empty paragraphs."""
    parts = (part.strip() for part in PARAGRAPH_BREAK.split(text))
    return [part for part in parts if part]


def overlap_tail(text: str, size: int) -> str:
    """Return at most the last ``size`` characters of ``text``.

    The tail is moved forward to just after the first space when that space
    lies in its first half, so the overlap starts on a word boundary. Text no
    longer than ``size`` is returned whole.

    Example:
        >>> overlap_tail("alpha beta gamma", 8)
        'gamma'
    """
    if len(text) <= size:
        return text

    tail = text[len(text) - size :]
    space = tail.find(" ")
    if space != -1 and space < len(tail) / 2:
        return tail[space + 1 :]
    return tail


def split_oversized_paragraph(paragraph: str, limit: int) -> list[str]:
    """Break a paragraph into pieces of at most ``limit`` characters.

    Pieces end on the last space that fits; a run without spaces is cut hard.
    """
    pieces: list[str] = []
    rest = paragraph
    while len(rest) > limit:
        cut = rest.rfind(" ", 0, limit + 1)
        if cut <= 0:
            cut = limit
        pieces.append(rest[:cut].rstrip())
        rest = rest[cut:].lstrip()
    if rest:
        pieces.append(rest)
    return pieces


class MarkdownChunker:
    """Heading-aware chunker with paragraph packing and overlap.

    Each markdown heading (``#`` to ``######``) starts a new section titled by
    the heading text; content before the first heading forms an untitled
    section. Sections that fit in ``max_chunk_size`` become one chunk,
    larger ones are packed paragraph by paragraph, each new chunk seeded with
    the tail of the one before it.
    """

    def __init__(self, config: ChunkingConfig | None = None):
        """Initialize chunker with configuration.

        Args:
            config: Chunking configuration (defaults if None)
        """
        self.config = config or ChunkingConfig()

    def chunk(self, text: str) -> list[Chunk]:
        """Split markdown text into section-tagged chunks.

        Args:
            text: Markdown document content

        Returns:
            List of Chunk objects with dense, zero-based indices. Empty or
            whitespace-only input yields an empty list.
        """
        chunks: list[Chunk] = []
        body: list[str] = []
        title = ""
        section_start = 0
        offset = 0

        def flush() -> None:
            raw = "\n".join(body)
            section = raw.strip()
            if not section or len(section) < self.config.min_chunk_size:
                return
            leading = len(raw) - len(raw.lstrip())
            chunks.extend(
                self._split_section(section, title, len(chunks), section_start + leading)
            )

        for line in text.split("\n"):
            heading = HEADING_PATTERN.match(line)
            if heading:
                flush()
                body = []
                title = heading.group(2).strip()
                section_start = offset + len(line) + 1
            else:
                body.append(line)
            offset += len(line) + 1

        flush()

        # Heading-less (or all-tiny-sections) documents are chunked as a whole
        stripped = text.strip()
        if not chunks and stripped and len(stripped) >= self.config.min_chunk_size:
            chunks = self._split_section(text, "", 0, 0)

        return chunks

    def _split_section(
        self, text: str, title: str, start_index: int, start_offset: int
    ) -> list[Chunk]:
        """Split one section into chunks no longer than max_chunk_size.

        Args:
            text: Section body
            title: Section title attached to every produced chunk
            start_index: Index assigned to the first produced chunk
            start_offset: Source offset of the section body

        Returns:
            Chunks for this section, indexed from ``start_index``
        """
        text = text.strip()
        max_size = self.config.max_chunk_size
        overlap = self.config.overlap_size
        min_size = self.config.min_chunk_size

        if len(text) <= max_size:
            return [
                Chunk(
                    index=start_index,
                    text=text,
                    section_title=title,
                    start_offset=start_offset,
                    end_offset=start_offset + len(text),
                )
            ]

        # A seeded buffer holds the overlap, a blank line, then the paragraph
        piece_limit = max(max_size - overlap - 2, 1) if overlap else max_size
        paragraphs: list[str] = []
        for paragraph in split_paragraphs(text):
            if len(paragraph) > piece_limit:
                paragraphs.extend(split_oversized_paragraph(paragraph, piece_limit))
            else:
                paragraphs.append(paragraph)

        chunks: list[Chunk] = []
        index = start_index
        offset = start_offset
        chunk_start = start_offset
        buffer = ""

        for paragraph in paragraphs:
            if buffer and len(buffer) + len(paragraph) + 2 > max_size:
                closed = buffer.strip()
                if closed and len(closed) >= min_size:
                    chunks.append(
                        Chunk(
                            index=index,
                            text=closed,
                            section_title=title,
                            start_offset=chunk_start,
                            end_offset=offset,
                        )
                    )
                    index += 1

                seed = overlap_tail(closed, overlap) if overlap else ""
                chunk_start = max(start_offset, offset - len(seed))
                buffer = f"{seed}\n\n" if seed else ""

            buffer += f"{paragraph}\n\n"
            offset += len(paragraph) + 2

        closed = buffer.strip()
        if closed and len(closed) >= min_size:
            chunks.append(
                Chunk(
                    index=index,
                    text=closed,
                    section_title=title,
                    start_offset=chunk_start,
                    end_offset=offset,
                )
            )

        return chunks


def chunk_markdown(
    text: str,
    max_chunk_size: int = DEFAULT_MAX_CHUNK_SIZE,
    overlap_size: int = DEFAULT_OVERLAP_SIZE,
    min_chunk_size: int = DEFAULT_MIN_CHUNK_SIZE,
) -> list[Chunk]:
    """Convenience function to chunk markdown with explicit sizes.

    Args:
        text: Markdown content
        max_chunk_size: Maximum chunk length in characters
        overlap_size: Overlap carried between adjacent chunks
        min_chunk_size: Minimum length for a chunk to be kept

    Returns:
        List of Chunk objects

    Example:
        >>> chunks = chunk_markdown("# Intro\\n\\n" + "Some words. " * 400)
        >>> chunks[0].section_title
        'Intro'
    """
    config = ChunkingConfig(
        max_chunk_size=max_chunk_size,
        overlap_size=overlap_size,
        min_chunk_size=min_chunk_size,
    )
    return MarkdownChunker(config).chunk(text)


def estimate_tokens(text: str) -> int:
    """Rough token estimate (~4 characters per token for English)."""
    return len(text) // 4
