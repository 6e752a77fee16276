"""Local bib reader backed by EasyOCR."""

import asyncio
import threading
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from race_photo_pipeline.domain.pipeline import BibDetection
from race_photo_pipeline.services import imaging
from race_photo_pipeline.services.ocr import (
    BibReader,
    average_confidence,
    extract_bib_numbers,
)

PROVIDER = "easyocr"


@dataclass
class EasyOcrBibReader(BibReader):
    """Runs EasyOCR in a worker thread; the model is not thread safe."""

    reader: Any
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    @classmethod
    def create(cls, languages: list[str]) -> "EasyOcrBibReader":
        """Load the EasyOCR model; slow, so done once at startup."""
        import easyocr

        return cls(reader=easyocr.Reader(languages, gpu=False, verbose=False))

    async def detect_bibs(
        self, image_bytes: bytes, hints: frozenset[str] | None = None
    ) -> BibDetection:
        """Read digit text and keep bib-like numbers."""
        results = await asyncio.to_thread(self._read, image_bytes)
        texts = [text for _box, text, _score in results]
        numbers = extract_bib_numbers(texts, hints)
        confidence = average_confidence(
            float(score) * 100
            for _box, text, score in results
            if any(number in text for number in numbers)
        )
        return BibDetection(numbers=numbers, confidence=confidence, provider=PROVIDER)

    def _read(self, image_bytes: bytes) -> list[tuple[object, str, float]]:
        pixels = np.asarray(imaging.open_rgb(image_bytes))
        with self._lock:
            return self.reader.readtext(pixels, allowlist="0123456789", detail=1)
