import re
from typing import List

_WORD = re.compile(r"\s*\S+\s+")


class WordChunker:
    """Coalesce token deltas into word-sized chunks (a word plus trailing whitespace)."""

    def __init__(self) -> None:
        self._buffer = ""

    def feed(self, delta: str) -> List[str]:
        self._buffer += delta
        chunks: List[str] = []
        end = 0
        for match in _WORD.finditer(self._buffer):
            if match.start() != end:
                break
            chunks.append(match.group())
            end = match.end()
        self._buffer = self._buffer[end:]
        return chunks

    def flush(self) -> List[str]:
        if not self._buffer:
            return []
        rest, self._buffer = self._buffer, ""
        return [rest]
