"""Sliding-window document chunker with section detection.

Splits raw document text into overlapping chunks whose boundaries prefer
sentence ends and paragraph breaks. Output is fully determined by the
content and the chunking config.
"""

import logging
import re
from dataclasses import dataclass
from typing import Iterable, Optional

from lab_assistant.knowledge.errors import ChunkingConfigError
from lab_assistant.knowledge.models import ChunkingConfig, ChunkSpan

logger = logging.getLogger(__name__)

DEFAULT_SECTION = "Main Content"

# Boundary markers and the number of characters each one occupies
SENTENCE_BOUNDARIES: tuple[tuple[str, int], ...] = (
    (".", 1),
    ("?", 1),
    ("!", 1),
    ("\n\n", 2),
)


@dataclass(frozen=True)
class SectionPattern:
    """Single header convention. ``match`` returns the header label or None."""

    name: str
    regex: re.Pattern[str]

    def match(self, line: str) -> Optional[str]:
        found = self.regex.match(line)
        if not found:
            return None
        label = found.group(1).strip()
        return label or None


DEFAULT_SECTION_PATTERNS: tuple[SectionPattern, ...] = (
    SectionPattern("markdown", re.compile(r"^\s{0,3}#{1,6}\s+(.+?)\s*#*\s*$")),
    SectionPattern("html", re.compile(r"^\s*<h[1-6][^>]*>(.*?)</h[1-6]>\s*$", re.IGNORECASE)),
    SectionPattern(
        "chapter",
        re.compile(r"^\s*((?:chapter|section|part)\s+[0-9IVXLC]+\b.*)$", re.IGNORECASE),
    ),
    SectionPattern("numbered", re.compile(r"^\s*(\d+(?:\.\d+)*\.?\s+[A-Z][^.!?]{0,80})$")),
    SectionPattern("all_caps", re.compile(r"^\s*([A-Z][A-Z0-9 ,:&/'()\-]{2,79})\s*$")),
)


def validate_chunking_config(config: ChunkingConfig) -> None:
    """Raise ChunkingConfigError for a window that cannot make progress."""
    if config.chunk_size <= 0:
        raise ChunkingConfigError(f"chunk_size must be positive, got {config.chunk_size}")
    if config.overlap < 0:
        raise ChunkingConfigError(f"overlap must not be negative, got {config.overlap}")
    if config.overlap >= config.chunk_size:
        raise ChunkingConfigError(
            f"overlap ({config.overlap}) must be smaller than chunk_size ({config.chunk_size})"
        )
    if config.min_chunk_size < 0:
        raise ChunkingConfigError(
            f"min_chunk_size must not be negative, got {config.min_chunk_size}"
        )
    if config.min_chunk_size > config.chunk_size:
        raise ChunkingConfigError(
            f"min_chunk_size ({config.min_chunk_size}) must not exceed chunk_size ({config.chunk_size})"
        )


class DocumentChunker:
    """Split document content into overlapping chunks."""

    def __init__(self, section_patterns: Iterable[SectionPattern] | None = None) -> None:
        self.section_patterns: list[SectionPattern] = list(
            DEFAULT_SECTION_PATTERNS if section_patterns is None else section_patterns
        )

    def chunk(self, content: str, config: ChunkingConfig) -> list[ChunkSpan]:
        """Chunk ``content`` using a sliding window.

        Args:
            content: Full document text.
            config: Window size, overlap and minimum chunk size.

        Returns:
            Chunks ordered by start offset with a gap-free ``sequence``.

        Raises:
            ChunkingConfigError: If the config is invalid.
        """
        validate_chunking_config(config)

        if not content or not content.strip():
            return []

        windows = self._windows(content, config.chunk_size, config.overlap)
        headers = self.find_headers(content)

        spans: list[ChunkSpan] = []
        last = len(windows) - 1
        for position, (start, end) in enumerate(windows):
            # Offsets stay on the window; only the stored text is stripped
            text = content[start:end].strip()
            # The trailing window is kept so the whole document stays covered
            if len(text) < config.min_chunk_size and position != last:
                logger.debug(
                    "Dropping short chunk [%d, %d) (%d chars)", start, end, len(text)
                )
                continue
            if not text:
                continue
            spans.append(
                ChunkSpan(
                    content=text,
                    start_index=start,
                    end_index=end,
                    sequence=len(spans),
                    section=self._section_for(headers, start, end),
                )
            )

        return spans

    def find_headers(self, content: str) -> list[tuple[int, str]]:
        """Return ``(offset, label)`` for each header line, in document order."""
        headers: list[tuple[int, str]] = []
        offset = 0
        for line in content.splitlines(keepends=True):
            stripped = line.rstrip("\r\n")
            if stripped.strip():
                for pattern in self.section_patterns:
                    label = pattern.match(stripped)
                    if label:
                        headers.append((offset, label))
                        break
            offset += len(line)
        return headers

    @staticmethod
    def _windows(content: str, chunk_size: int, overlap: int) -> list[tuple[int, int]]:
        length = len(content)
        windows: list[tuple[int, int]] = []
        start = 0
        while start < length:
            end = min(start + chunk_size, length)
            if end < length:
                end = _snap_to_boundary(content, start, end, overlap)
            windows.append((start, end))
            if end >= length:
                break
            start = end - overlap
        return windows

    @staticmethod
    def _section_for(headers: list[tuple[int, str]], start: int, end: int) -> str:
        current: Optional[str] = None
        for offset, label in headers:
            if offset <= start:
                current = label
            elif offset < end:
                return current or label
            else:
                break
        return current or DEFAULT_SECTION


def _snap_to_boundary(content: str, start: int, end: int, overlap: int) -> int:
    """Move ``end`` back to just after the last boundary in the overlap region.

    The snapped end must stay beyond ``start + overlap`` so the next window
    starts after this one.
    """
    region_start = max(start, end - overlap)
    region = content[region_start:end]

    best = -1
    for marker, width in SENTENCE_BOUNDARIES:
        idx = region.rfind(marker)
        if idx != -1:
            best = max(best, region_start + idx + width)

    if best == -1 or best - overlap <= start:
        return end
    return best
