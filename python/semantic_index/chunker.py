"""
Chunker - Split extracted text into bounded, boundary-aligned segments.

Text is broken at the coarsest boundary that fits (paragraph, then
sentence, then word, then a hard cut) and the pieces are packed greedily
into chunks of at most max_chunk_chars. Chunks below min_chunk_chars are
merged into their predecessor when the result still fits.
"""

import logging
import re
from typing import List, Tuple

from .config import IndexerConfig, get_config


logger = logging.getLogger(__name__)

_PARAGRAPH_RE = re.compile(r"\n\s*\n")
_SENTENCE_RE = re.compile(r"(?<=[.!?።፧፨])\s+")
_WORD_RE = re.compile(r"\s+")

# (piece, separator that joins it to the previous piece)
_Piece = Tuple[str, str]


class Chunker:
    """Pure text splitter. Same input always yields the same chunks."""

    def __init__(self, config: IndexerConfig | None = None):
        config = config or get_config()
        self.min_chars = config.min_chunk_chars
        self.max_chars = config.max_chunk_chars
        self.max_chunks = config.max_chunks

    def chunk(self, text: str) -> List[str]:
        text = text.strip()
        if not text:
            return []

        pieces: List[_Piece] = []
        for paragraph in _PARAGRAPH_RE.split(text):
            paragraph = paragraph.strip()
            if paragraph:
                pieces.extend(self._split(paragraph, "\n\n"))

        chunks = self._merge_small(self._pack(pieces))

        if len(chunks) > self.max_chunks:
            logger.info(
                f"Text produced {len(chunks)} chunks, keeping the first {self.max_chunks}"
            )
            chunks = chunks[: self.max_chunks]
        return chunks

    def _split(self, paragraph: str, joiner: str) -> List[_Piece]:
        """Break a paragraph into pieces no longer than max_chars."""
        if len(paragraph) <= self.max_chars:
            return [(paragraph, joiner)]

        pieces: List[_Piece] = []
        for i, sentence in enumerate(_SENTENCE_RE.split(paragraph)):
            sep = joiner if i == 0 else " "
            if len(sentence) <= self.max_chars:
                pieces.append((sentence, sep))
                continue
            for j, word in enumerate(_WORD_RE.split(sentence)):
                word_sep = sep if j == 0 else " "
                if len(word) <= self.max_chars:
                    pieces.append((word, word_sep))
                    continue
                # No usable boundary left
                for k in range(0, len(word), self.max_chars):
                    pieces.append((word[k:k + self.max_chars], word_sep if k == 0 else ""))
        return [(p, s) for p, s in pieces if p]

    def _pack(self, pieces: List[_Piece]) -> List[str]:
        chunks: List[str] = []
        current = ""
        for piece, sep in pieces:
            if not current:
                current = piece
            elif len(current) + len(sep) + len(piece) <= self.max_chars:
                current = f"{current}{sep}{piece}"
            else:
                chunks.append(current)
                current = piece
        if current:
            chunks.append(current)
        return chunks

    def _merge_small(self, chunks: List[str]) -> List[str]:
        merged: List[str] = []
        for chunk in chunks:
            if (
                merged
                and len(chunk) < self.min_chars
                and len(merged[-1]) + 1 + len(chunk) <= self.max_chars
            ):
                merged[-1] = f"{merged[-1]}\n{chunk}"
            else:
                merged.append(chunk)
        return merged
