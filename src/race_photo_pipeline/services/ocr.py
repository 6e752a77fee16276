"""Bib-number recognition: engine interface and shared candidate filtering."""

import re
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Protocol

from race_photo_pipeline.domain.pipeline import BibDetection, OcrEngine

_BIB_NUMBER_PATTERN = re.compile(r"\b\d{1,5}\b")
_MIN_BIB = 1
_MAX_BIB = 99999
_YEAR_RANGE = range(1900, 2101)


class BibReader(Protocol):
    """Interface for an OCR engine that finds bib numbers."""

    async def detect_bibs(
        self, image_bytes: bytes, hints: frozenset[str] | None = None
    ) -> BibDetection:
        """Return bib numbers found in an image."""


def extract_bib_numbers(
    texts: Iterable[str], hints: frozenset[str] | None = None
) -> list[str]:
    """Pick plausible bib numbers out of recognized text lines.

    Tokens of 1-5 digits within 1..99999 are kept, years (1900-2100) are
    dropped. When a start list is given and at least one candidate is on it,
    only start-list candidates survive; otherwise all are kept for review.
    """
    candidates: list[str] = []
    for match in _BIB_NUMBER_PATTERN.findall(" ".join(texts)):
        value = int(match)
        if value < _MIN_BIB or value > _MAX_BIB or value in _YEAR_RANGE:
            continue
        if match not in candidates:
            candidates.append(match)
    if hints:
        validated = [number for number in candidates if number in hints]
        if validated:
            candidates = validated
    return sorted(candidates, key=int)


def average_confidence(confidences: Iterable[float]) -> float:
    """Mean of confidences, 0 when empty."""
    values = list(confidences)
    if not values:
        return 0.0
    return sum(values) / len(values)


@dataclass
class BibReaderRegistry:
    """Maps the engine requested at upload to a concrete reader."""

    cloud: BibReader
    local: BibReader | None = None

    def for_engine(self, engine: OcrEngine) -> BibReader:
        """Return the reader for an engine, falling back to the cloud one."""
        if engine == OcrEngine.LOCAL and self.local is not None:
            return self.local
        return self.cloud
