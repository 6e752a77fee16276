"""Domain models describing a photo's trip through the analysis stages."""

from dataclasses import dataclass, field
from enum import StrEnum
from uuid import UUID


class ProcessingTier(StrEnum):
    """Processing plan requested at upload."""

    LITE = "lite"
    PREMIUM = "premium"


class OcrEngine(StrEnum):
    """Bib recognition engine requested at upload."""

    CLOUD = "cloud"
    LOCAL = "local"


class StageName(StrEnum):
    """Pipeline stages in execution order."""

    QUALITY = "quality"
    RETOUCH = "retouch"
    WATERMARK = "watermark"
    OCR = "ocr"
    FACES = "faces"
    FACE_LINK = "face_link"
    LABELS = "labels"


class StageStatus(StrEnum):
    """Result status of a single stage."""

    OK = "ok"
    SKIPPED = "skipped"
    FAILED = "failed"


NON_CRITICAL_STAGES: frozenset[StageName] = frozenset(
    {
        StageName.QUALITY,
        StageName.RETOUCH,
        StageName.WATERMARK,
        StageName.FACES,
        StageName.FACE_LINK,
        StageName.LABELS,
    }
)


@dataclass(frozen=True)
class ProcessingOptions:
    """Per-batch optional processing switches."""

    auto_retouch: bool = True
    smart_crop: bool = False


@dataclass(frozen=True)
class QualityReport:
    """Sharpness score (0-100) and blur flag."""

    score: int
    is_blurry: bool


DEFAULT_QUALITY = QualityReport(score=50, is_blurry=False)


@dataclass(frozen=True)
class WatermarkOutput:
    """Storage keys of the rendered watermark thumbnails."""

    thumbnail_key: str
    micro_thumbnail_key: str


@dataclass(frozen=True)
class BibDetection:
    """Bib numbers found in one image."""

    numbers: list[str]
    confidence: float
    provider: str


@dataclass(frozen=True)
class StageResult:
    """Outcome of one stage; failures carry the error message."""

    stage: StageName
    status: StageStatus
    value: object | None = None
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.status == StageStatus.FAILED


@dataclass(frozen=True)
class PhotoTask:
    """Everything the pipeline needs to process one photo."""

    photo_id: UUID
    event_id: UUID
    user_id: UUID
    jpeg: bytes
    filename: str
    original_name: str
    web_key: str | None
    tier: ProcessingTier
    ocr_engine: OcrEngine
    credits_per_photo: int = 0
    credit_deducted: bool = False
    bib_hints: frozenset[str] | None = None
    options: ProcessingOptions = field(default_factory=ProcessingOptions)

    @property
    def is_premium(self) -> bool:
        return self.tier == ProcessingTier.PREMIUM


@dataclass
class PipelineOutcome:
    """Aggregated stage results for one photo."""

    photo_id: UUID
    results: list[StageResult] = field(default_factory=list)
    bib_numbers: list[str] = field(default_factory=list)
    refunded: bool = False

    def result_for(self, stage: StageName) -> StageResult | None:
        """Return the result recorded for a stage, if it ran."""
        for result in self.results:
            if result.stage == stage:
                return result
        return None

    @property
    def failed_stages(self) -> list[StageName]:
        return [result.stage for result in self.results if result.failed]
