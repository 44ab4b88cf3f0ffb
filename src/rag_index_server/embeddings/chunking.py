"""
Text splitting for document ingestion.
"""

from __future__ import annotations

from typing import List, Optional

from langchain_text_splitters import RecursiveCharacterTextSplitter

from ..config import settings

SEPARATORS = ["\n\n", "\n", ".", " ", ""]


class TextChunker:
    """
    Recursive character splitter with a stable identifier.

    The identifier is stored on each entry as its ``chunker`` so a worker can
    rebuild the same splitter later.
    """

    def __init__(
        self,
        chunk_size: Optional[int] = None,
        chunk_overlap: Optional[int] = None,
    ) -> None:
        self.chunk_size = chunk_size or settings.chunk_size
        self.chunk_overlap = settings.chunk_overlap if chunk_overlap is None else chunk_overlap
        self._splitter = RecursiveCharacterTextSplitter(
            chunk_size=self.chunk_size,
            chunk_overlap=self.chunk_overlap,
            length_function=len,
            separators=SEPARATORS,
        )

    @property
    def chunker_id(self) -> str:
        return f"recursive-character:{self.chunk_size}:{self.chunk_overlap}"

    def split(self, text: str) -> List[str]:
        return [piece for piece in self._splitter.split_text(text) if piece.strip()]

    @classmethod
    def from_id(cls, chunker_id: Optional[str]) -> "TextChunker":
        """
        Rebuild a chunker from its identifier, falling back to the configured
        defaults for a missing or unrecognised id.
        """
        if chunker_id:
            parts = chunker_id.split(":")
            if (
                len(parts) == 3
                and parts[0] == "recursive-character"
                and parts[1].isdigit()
                and parts[2].isdigit()
            ):
                return cls(chunk_size=int(parts[1]), chunk_overlap=int(parts[2]))
        return cls()
