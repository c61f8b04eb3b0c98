"""Fixed-window text chunker with overlap."""

from __future__ import annotations

from quarry.db.models import Chunk


class TextChunker:
    """Split content text into fixed-size windows with overlap.

    Token counting uses a 4-chars-per-token approximation; no external
    tokenizer dependency is required. Identical windows within one content
    item collapse to one chunk (chunk ids are content-addressed).
    """

    def __init__(self, chunk_size: int = 512, overlap: float = 0.10) -> None:
        if chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")
        if not 0.0 <= overlap < 1.0:
            raise ValueError("overlap must be in [0.0, 1.0)")
        self.chunk_size = chunk_size
        self.overlap = overlap

    def chunk(self, content_id: str, text: str) -> list[Chunk]:
        seen: set[str] = set()
        chunks: list[Chunk] = []
        for segment in self._split_fixed_window(text):
            chunk = Chunk(text=segment, content_id=content_id)
            if chunk.chunk_id not in seen:
                seen.add(chunk.chunk_id)
                chunks.append(chunk)
        return chunks

    def _split_fixed_window(self, text: str) -> list[str]:
        """Window size = ``chunk_size * 4`` characters; empty segments are omitted."""
        if not text.strip():
            return []

        char_size = self.chunk_size * 4
        overlap_chars = int(char_size * self.overlap)
        step = max(1, char_size - overlap_chars)

        segments: list[str] = []
        pos = 0
        length = len(text)

        while pos < length:
            end = min(pos + char_size, length)
            segment = text[pos:end].strip()
            if segment:
                segments.append(segment)
            if end >= length:
                break
            pos += step

        return segments
