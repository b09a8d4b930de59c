"""Recursive text chunking with overlap for the RAG pipeline.

Text is cut on an ordered list of boundary strategies (paragraph, line, word,
character), small pieces are merged back up to the size budget, and the tail
of each chunk is repeated at the head of the next one. Every chunk is a slice
of the source, so ``source_offset`` always points back into the input.
"""
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Iterable, Iterator, List, Optional, Sequence, Tuple, Union
import structlog

from ragdemo import config
from ragdemo.errors import InvalidConfig

logger = structlog.get_logger()

Boundary = Callable[[str], List[str]]
LengthFunction = Callable[[str], int]

DEFAULT_BOUNDARIES = ("\n\n", "\n", " ", "")


@dataclass(frozen=True)
class Chunk:
    """A contiguous slice of the source text."""

    text: str
    sequence_index: int
    source_offset: int

    @property
    def source_end(self) -> int:
        return self.source_offset + len(self.text)


def boundary(separator: str) -> Boundary:
    """Build a boundary strategy that splits on ``separator``.

    The separator stays attached to the end of the piece before it, so the
    pieces always concatenate back to the input. An empty separator splits
    into single characters.
    """
    if separator == "":
        return list

    def split_on_separator(text: str) -> List[str]:
        pieces = []
        start = 0
        while True:
            found = text.find(separator, start)
            if found == -1:
                break
            end = found + len(separator)
            pieces.append(text[start:end])
            start = end
        if start < len(text):
            pieces.append(text[start:])
        return pieces

    return split_on_separator


def word_length(text: str) -> int:
    """Count whitespace-separated words, for word-budgeted chunking."""
    return len(text.split())


def _resolve_boundaries(hints: Iterable[Union[str, Boundary]]) -> List[Boundary]:
    strategies = []
    for hint in hints:
        if isinstance(hint, str):
            strategies.append(boundary(hint))
        elif callable(hint):
            strategies.append(hint)
        else:
            raise InvalidConfig(f"Boundary hint must be a string or callable, got {hint!r}")
    return strategies


def _split_pieces(
    text: str,
    offset: int,
    strategies: Sequence[Boundary],
    chunk_size: int,
    length_function: LengthFunction,
) -> List[Tuple[int, str]]:
    """Recursively split text into (offset, piece) pairs within chunk_size."""
    if length_function(text) <= chunk_size:
        return [(offset, text)]

    for position, strategy in enumerate(strategies):
        parts = [part for part in strategy(text) if part]
        if "".join(parts) != text:
            raise InvalidConfig("Boundary strategy must return pieces that rebuild its input")
        if len(parts) > 1:
            remaining = strategies[position + 1:]
            break
    else:
        # No strategy divides this piece; it becomes an oversized chunk.
        return [(offset, text)]

    pieces = []
    for part in parts:
        if length_function(part) <= chunk_size:
            pieces.append((offset, part))
        else:
            pieces.extend(
                _split_pieces(part, offset, remaining, chunk_size, length_function)
            )
        offset += len(part)
    return pieces


def _merge_pieces(
    pieces: Iterable[Tuple[int, str]],
    chunk_size: int,
    chunk_overlap: int,
    length_function: LengthFunction,
) -> Iterator[Tuple[int, int]]:
    """Merge adjacent pieces into (start, end) spans, carrying overlap forward."""
    window: Deque[Tuple[int, str]] = deque()
    total = 0

    for offset, piece in pieces:
        size = length_function(piece)

        if window and total + size > chunk_size:
            yield window[0][0], window[-1][0] + len(window[-1][1])

            # Keep the tail that fits in the overlap and leaves room for this piece
            while window and (
                total > chunk_overlap or (total + size > chunk_size and total > 0)
            ):
                total -= length_function(window.popleft()[1])

        window.append((offset, piece))
        total += size

    if window:
        yield window[0][0], window[-1][0] + len(window[-1][1])


class ChunkSequence:
    """Lazy, restartable sequence of chunks for one input text.

    Nothing is split until the sequence is iterated; each iteration runs one
    full pass and yields equal chunks.
    """

    def __init__(
        self,
        text: str,
        chunk_size: int,
        chunk_overlap: int,
        strategies: Sequence[Boundary],
        length_function: LengthFunction,
        strip_whitespace: bool,
    ):
        self.text = text
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.strategies = strategies
        self.length_function = length_function
        self.strip_whitespace = strip_whitespace

    def __iter__(self) -> Iterator[Chunk]:
        if not self.text:
            return

        if self.length_function(self.text) <= self.chunk_size:
            yield Chunk(text=self.text, sequence_index=0, source_offset=0)
            return

        pieces = _split_pieces(
            self.text, 0, self.strategies, self.chunk_size, self.length_function
        )
        spans = _merge_pieces(
            pieces, self.chunk_size, self.chunk_overlap, self.length_function
        )

        index = 0
        for start, end in spans:
            content = self.text[start:end]
            if self.strip_whitespace:
                stripped = content.strip()
                if not stripped:
                    continue
                start += len(content) - len(content.lstrip())
                content = stripped
            yield Chunk(text=content, sequence_index=index, source_offset=start)
            index += 1


def split(
    text: str,
    chunk_size: int,
    chunk_overlap: int,
    boundary_hints: Optional[Sequence[Union[str, Boundary]]] = None,
    length_function: LengthFunction = len,
    strip_whitespace: bool = True,
) -> ChunkSequence:
    """Split text into overlapping chunks.

    Args:
        text: Source text
        chunk_size: Maximum chunk size, measured with length_function
        chunk_overlap: Size of the tail repeated at the start of the next chunk
        boundary_hints: Separators or boundary strategies in priority order
            (default: paragraph, line, space, character)
        length_function: Size measure (default: characters)
        strip_whitespace: Trim whitespace around each chunk

    Returns:
        A lazy ChunkSequence

    Raises:
        InvalidConfig: If chunk_size <= 0, chunk_overlap < 0 or
            chunk_overlap >= chunk_size
    """
    if chunk_size <= 0:
        raise InvalidConfig(f"Chunk size must be positive, got {chunk_size}")
    if chunk_overlap < 0:
        raise InvalidConfig(f"Chunk overlap must not be negative, got {chunk_overlap}")
    if chunk_overlap >= chunk_size:
        raise InvalidConfig(
            f"Overlap ({chunk_overlap}) must be less than chunk size ({chunk_size})"
        )

    hints = DEFAULT_BOUNDARIES if boundary_hints is None else boundary_hints
    return ChunkSequence(
        text,
        chunk_size,
        chunk_overlap,
        _resolve_boundaries(hints),
        length_function,
        strip_whitespace,
    )


def join_chunks(chunks: Iterable[Chunk]) -> str:
    """Rejoin chunks into text, dropping the head each chunk shares with the last."""
    parts = []
    end = None
    for chunk in chunks:
        if end is None or chunk.source_offset >= end:
            parts.append(chunk.text)
        else:
            parts.append(chunk.text[end - chunk.source_offset:])
        end = chunk.source_end if end is None else max(end, chunk.source_end)
    return "".join(parts)


class TextChunker:
    """Chunker bound to one size/overlap/boundary policy."""

    def __init__(
        self,
        chunk_size: int = None,
        chunk_overlap: int = None,
        boundary_hints: Optional[Sequence[Union[str, Boundary]]] = None,
        length_function: LengthFunction = len,
        strip_whitespace: bool = True,
    ):
        """Initialize the text chunker.

        Args:
            chunk_size: Size of each chunk (default from config)
            chunk_overlap: Overlap between chunks (default from config)
            boundary_hints: Separators in priority order (default: DEFAULT_BOUNDARIES)
            length_function: Size measure (default: characters)
            strip_whitespace: Trim whitespace around each chunk

        Raises:
            InvalidConfig: If overlap is not smaller than chunk size
        """
        self.chunk_size = config.CHUNK_SIZE if chunk_size is None else chunk_size
        self.chunk_overlap = config.CHUNK_OVERLAP if chunk_overlap is None else chunk_overlap
        self.boundary_hints = boundary_hints
        self.length_function = length_function
        self.strip_whitespace = strip_whitespace

        # Validate parameters up front
        split("", self.chunk_size, self.chunk_overlap, self.boundary_hints)

        logger.info(
            "chunker_initialized",
            chunk_size=self.chunk_size,
            chunk_overlap=self.chunk_overlap,
        )

    def split(self, text: str) -> ChunkSequence:
        return split(
            text,
            self.chunk_size,
            self.chunk_overlap,
            self.boundary_hints,
            self.length_function,
            self.strip_whitespace,
        )

    def chunk_text(self, text: str) -> List[Chunk]:
        """Split text into a list of overlapping chunks.

        Args:
            text: Text to chunk

        Returns:
            List of Chunk objects in source order
        """
        chunks = list(self.split(text))

        if chunks:
            logger.info(
                "text_chunked",
                text_length=len(text),
                chunk_count=len(chunks),
                avg_chunk_size=sum(len(c.text) for c in chunks) // len(chunks),
            )
        else:
            logger.debug("no_chunks_for_empty_text")

        return chunks

    def get_chunk_stats(self, chunks: List[Chunk]) -> dict:
        """Get statistics about a set of chunks.

        Args:
            chunks: List of Chunk objects

        Returns:
            Dictionary with chunk statistics
        """
        if not chunks:
            return {
                "chunk_count": 0,
                "total_chars": 0,
                "avg_chunk_size": 0,
                "min_chunk_size": 0,
                "max_chunk_size": 0,
            }

        chunk_sizes = [len(c.text) for c in chunks]

        return {
            "chunk_count": len(chunks),
            "total_chars": sum(chunk_sizes),
            "avg_chunk_size": sum(chunk_sizes) // len(chunks),
            "min_chunk_size": min(chunk_sizes),
            "max_chunk_size": max(chunk_sizes),
            "overlap": self.chunk_overlap,
        }
