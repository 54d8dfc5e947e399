"""In-process knowledge base used for agent context injection."""
from __future__ import annotations
import hashlib
import math
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import openai
from loguru import logger

from .errors import ConfigError, RuntimeGentError

DEFAULT_EXTENSIONS = (".md", ".txt", ".rs", ".py", ".js", ".ts")

_WORD_RE = re.compile(r"[\w']+", re.UNICODE)
_HEADER_RE = re.compile(r"^#{1,6}\s")


@dataclass(frozen=True)
class Chunk:
    content: str
    source: str
    start_line: int
    end_line: int


@dataclass(frozen=True)
class SearchHit:
    text: str
    score: float
    source: str
    start_line: int
    end_line: int

    def to_value(self) -> Dict[str, Any]:
        return {
            "content": self.text,
            "score": self.score,
            "source": self.source,
            "startLine": self.start_line,
            "endLine": self.end_line,
        }


class HashEmbeddings:
    """Deterministic hashed bag-of-words vectors; no network access."""

    def __init__(self, dimensions: int = 256):
        self.dimensions = dimensions

    async def embed(self, text: str) -> List[float]:
        vec = [0.0] * self.dimensions
        for word in _WORD_RE.findall(text.lower()):
            digest = hashlib.md5(word.encode("utf-8")).digest()
            vec[int.from_bytes(digest[:4], "little") % self.dimensions] += 1.0
        return _normalize(vec)


class OpenAIEmbeddings:
    def __init__(self, api_key: Optional[str], model: str = "text-embedding-3-small"):
        if not api_key:
            raise ConfigError("OPENAI_API_KEY is required for OpenAI embeddings")
        self._client = openai.AsyncOpenAI(api_key=api_key, max_retries=0)
        self.model = model

    async def embed(self, text: str) -> List[float]:
        resp = await self._client.embeddings.create(model=self.model, input=text)
        return _normalize(list(resp.data[0].embedding))


def _normalize(vec: List[float]) -> List[float]:
    norm = math.sqrt(sum(v * v for v in vec))
    if norm == 0:
        return vec
    return [v / norm for v in vec]


def _cosine(a: Sequence[float], b: Sequence[float]) -> float:
    return sum(x * y for x, y in zip(a, b))


# ---------- chunking ----------
def _sections(lines: List[str], markdown: bool) -> List[tuple]:
    """Split into (start, end) line spans on headers (markdown) or blank lines."""
    spans = []
    start = None
    for i, line in enumerate(lines):
        if markdown and _HEADER_RE.match(line):
            if start is not None:
                spans.append((start, i - 1))
            start = i
        elif not line.strip():
            if start is not None and not markdown:
                spans.append((start, i - 1))
                start = None
        elif start is None:
            start = i
    if start is not None:
        spans.append((start, len(lines) - 1))
    return spans


def chunk_semantic(text: str, source: str, chunk_size: int, chunk_overlap: int) -> List[Chunk]:
    """Merge header or paragraph sections up to `chunk_size` characters.

    Each new chunk also repeats the trailing lines of the previous one, up
    to `chunk_overlap` characters.
    """
    lines = text.splitlines()
    markdown = source.endswith(".md")
    chunks: List[Chunk] = []
    cur_start: Optional[int] = None
    cur_end = 0
    for start, end in _sections(lines, markdown):
        if cur_start is None:
            cur_start, cur_end = start, end
            continue
        size = sum(len(line) + 1 for line in lines[cur_start:end + 1])
        if size <= chunk_size:
            cur_end = end
            continue
        chunks.append(_make_chunk(lines, source, cur_start, cur_end))
        cur_start, cur_end = _overlap_start(lines, cur_start, start, chunk_overlap), end
    if cur_start is not None:
        chunks.append(_make_chunk(lines, source, cur_start, cur_end))
    return [c for c in chunks if c.content.strip()]


def _overlap_start(lines: List[str], prev_start: int, start: int, chunk_overlap: int) -> int:
    used = 0
    begin = start
    while begin - 1 > prev_start:
        size = len(lines[begin - 1]) + 1
        if used + size > chunk_overlap:
            break
        used += size
        begin -= 1
    return begin


def chunk_fixed(text: str, source: str, chunk_size: int, chunk_overlap: int) -> List[Chunk]:
    """Fixed windows of `chunk_size` lines overlapping by `chunk_overlap` lines."""
    lines = text.splitlines()
    size = max(1, chunk_size)
    step = max(1, size - max(0, chunk_overlap))
    chunks = []
    for start in range(0, len(lines), step):
        end = min(len(lines), start + size) - 1
        chunk = _make_chunk(lines, source, start, end)
        if chunk.content.strip():
            chunks.append(chunk)
        if end >= len(lines) - 1:
            break
    return chunks


def _make_chunk(lines: List[str], source: str, start: int, end: int) -> Chunk:
    return Chunk("\n".join(lines[start:end + 1]).strip(), source, start + 1, end + 1)


class KnowledgeBase:
    def __init__(self, path: str | Path, embeddings: Any = None):
        self.path = Path(path)
        self.embeddings = embeddings or HashEmbeddings()
        self._chunks: List[Chunk] = []
        self._vectors: List[List[float]] = []
        self._indexed = False

    def is_indexed(self) -> bool:
        return self._indexed

    @property
    def chunk_count(self) -> int:
        return len(self._chunks)

    def _collect_files(self, extensions: Sequence[str], recursive: bool) -> List[Path]:
        if not self.path.is_dir():
            raise RuntimeGentError(f"Directory not found: {self.path}")
        exts = {e if e.startswith(".") else f".{e}" for e in extensions}
        files: List[Path] = []

        def walk(directory: Path) -> None:
            for entry in sorted(directory.iterdir()):
                if entry.is_dir():
                    if recursive and not entry.name.startswith("."):
                        walk(entry)
                elif entry.suffix in exts:
                    files.append(entry)

        walk(self.path)
        return files

    async def index(self, extensions: Optional[Sequence[str]] = None, recursive: bool = True,
                    chunk_size: int = 500, chunk_overlap: int = 50, strategy: str = "semantic") -> int:
        """Rebuild the index from files under the base path; returns the chunk count."""
        chunker = chunk_fixed if strategy == "fixed" else chunk_semantic
        chunks: List[Chunk] = []
        for file_path in self._collect_files(extensions or DEFAULT_EXTENSIONS, recursive):
            try:
                text = file_path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                raise RuntimeGentError(f"Failed to read {file_path}: {e}") from e
            rel = file_path.relative_to(self.path).as_posix()
            chunks.extend(chunker(text, rel, int(chunk_size), int(chunk_overlap)))
        vectors = [await self.embeddings.embed(c.content) for c in chunks]
        self._chunks, self._vectors = chunks, vectors
        self._indexed = True
        logger.info("Indexed {} chunks from {}", len(chunks), self.path)
        return len(chunks)

    async def search(self, query: str, limit: int = 5, threshold: float = 0.0) -> List[SearchHit]:
        """Chunks scoring at least `threshold`, best first, ties in chunk order."""
        if not self._indexed:
            raise RuntimeGentError("KnowledgeBase not indexed. Call .index() first.")
        if limit <= 0:
            return []
        qv = await self.embeddings.embed(query)
        scored = []
        for order, (chunk, vec) in enumerate(zip(self._chunks, self._vectors)):
            score = _cosine(qv, vec)
            if score >= threshold:
                scored.append((-score, order, chunk, score))
        scored.sort(key=lambda t: (t[0], t[1]))
        return [
            SearchHit(c.content, round(s, 6), c.source, c.start_line, c.end_line)
            for _, _, c, s in scored[:limit]
        ]
