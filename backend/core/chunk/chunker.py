from typing import List, Optional
from models.chunk import TextChunk
from config.settings import settings

class Chunker:
    """
    Splits extracted document text into overlapping character windows.
    - Windows are `chunk_size` characters long and start `chunk_overlap`
      characters before the previous window ended.
    - A window that does not reach the end of the text is pulled back to the
      last sentence terminator in its back half, so sentences stay whole when
      possible. Without one the window is cut hard.
    - Whitespace-only windows are dropped.
    """

    def __init__(self,
                 chunk_size: Optional[int] = None,
                 chunk_overlap: Optional[int] = None,
                 terminators: Optional[str] = None):
        config = settings.chunking
        self.chunk_size = chunk_size if chunk_size is not None else config.chunk_size
        self.chunk_overlap = chunk_overlap if chunk_overlap is not None else config.chunk_overlap
        self.terminators = terminators if terminators is not None else config.sentence_terminators

        if self.chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if not 0 <= self.chunk_overlap < self.chunk_size:
            raise ValueError("chunk_overlap must be >= 0 and smaller than chunk_size")

    def chunk(self, text: str) -> List[TextChunk]:
        chunks = []
        if not text:
            return chunks

        n = len(text)
        start = 0
        while start < n:
            end = min(start + self.chunk_size, n)
            if end < n:
                end = self._sentence_boundary(text, start, end)

            piece = text[start:end]
            if piece.strip():
                chunks.append(TextChunk(
                    text=piece,
                    index=len(chunks),
                    char_start=start,
                    char_end=end
                ))

            if end >= n:
                break
            start = end - self.chunk_overlap

        return chunks

    def split(self, text: str) -> List[str]:
        return [c.text for c in self.chunk(text)]

    def _sentence_boundary(self, text: str, start: int, end: int) -> int:
        # Only the back half of the window is searched, and the break must land
        # past the overlap so the next window always advances.
        min_break = start + max(self.chunk_overlap + 1, self.chunk_size // 2)
        for i in range(end - 1, min_break - 2, -1):
            if text[i] in self.terminators and (i + 1 >= len(text) or text[i + 1].isspace()):
                return i + 1
        return end
