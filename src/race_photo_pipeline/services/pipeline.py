"""Per-photo analysis pipeline.

Stages run in a fixed order. Each stage yields a ``StageResult``; only the
stages in ``NON_CRITICAL_STAGES`` may fail without aborting the photo.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Protocol
from uuid import UUID

from race_photo_pipeline.domain.photos import (
    DetectedFace,
    EventRecord,
    FaceMatch,
    PhotoFaceRecord,
    PhotoRecord,
    PhotoUpdate,
)
from race_photo_pipeline.domain.pipeline import (
    DEFAULT_QUALITY,
    NON_CRITICAL_STAGES,
    BibDetection,
    PhotoTask,
    PipelineOutcome,
    QualityReport,
    StageName,
    StageResult,
    StageStatus,
    WatermarkOutput,
)
from race_photo_pipeline.errors import CriticalStageError
from race_photo_pipeline.services import imaging
from race_photo_pipeline.services.credits import CreditLedgerService
from race_photo_pipeline.services.ocr import BibReaderRegistry
from race_photo_pipeline.services.recognition import (
    FaceIndexClient,
    LabelClient,
    parse_external_id,
)
from race_photo_pipeline.services.storage import StorageClient, face_crop_key
from race_photo_pipeline.services.watermark import WatermarkRenderer

_logger = logging.getLogger(__name__)

FACE_SEARCH_MAX_FACES = 10
FACE_LINK_CONFIDENCE = 95.0
FACE_LINK_SOURCE = "face_recognition"


class PhotoRepository(Protocol):
    """Persistence interface for photos and their analysis rows."""

    def create_photo(  # noqa: PLR0913
        self,
        event_id: UUID,
        filename: str,
        original_name: str,
        storage_key: str,
        web_key: str | None,
        credit_deducted: bool,
    ) -> PhotoRecord:
        """Create a photo row with empty analysis fields."""

    def get_photo(self, photo_id: UUID) -> PhotoRecord | None:
        """Return a photo by id, if present."""

    def update_photo(self, photo_id: UUID, fields: dict[str, object]) -> None:
        """Write analysis fields of a photo."""

    def delete_photo(self, photo_id: UUID) -> None:
        """Remove a photo row that never reached processing."""

    def list_bib_numbers(self, photo_ids: list[UUID]) -> list[str]:
        """Return the distinct bib numbers attached to any of the photos."""

    def replace_bib_numbers(
        self, photo_id: UUID, numbers: list[str], confidence: float, source: str
    ) -> None:
        """Delete existing bib rows of a photo and insert the new ones."""

    def create_faces(
        self, photo_id: UUID, faces: list[DetectedFace]
    ) -> list[PhotoFaceRecord]:
        """Insert one face row per detected face."""

    def set_face_crop(self, face_row_id: UUID, crop_key: str) -> None:
        """Attach a crop image to a face row."""


class EventRepository(Protocol):
    """Read access to events and their start lists."""

    def get_event(self, event_id: UUID) -> EventRecord | None:
        """Return an event by id, if present."""

    def list_start_list_bibs(self, event_id: UUID) -> set[str]:
        """Return the bib numbers registered for an event."""

    def mark_upload_started(self, event_id: UUID) -> None:
        """Record the first upload time of an event, once."""

    def mark_upload_completed(self, event_id: UUID) -> None:
        """Record the time the latest batch finished processing."""


@dataclass
class PhotoPipeline:  # noqa: PLR0902
    """Runs the analysis stages for a single photo."""

    photo_repository: PhotoRepository
    storage: StorageClient
    watermark_renderer: WatermarkRenderer
    bib_readers: BibReaderRegistry
    ledger: CreditLedgerService
    face_client: FaceIndexClient | None = None
    label_client: LabelClient | None = None
    quality_threshold: int = 30
    auto_edit_enabled: bool = True
    face_index_enabled: bool = True
    face_match_threshold: float = 85.0
    label_detection_enabled: bool = True
    label_max_labels: int = 15
    label_min_confidence: float = 60.0

    async def run(self, task: PhotoTask) -> PipelineOutcome:
        """Process a photo; raises ``CriticalStageError`` if OCR fails."""
        outcome = PipelineOutcome(photo_id=task.photo_id)
        update = PhotoUpdate()

        quality = await self._quality(task, outcome, update)
        await self._retouch(task, outcome, update, quality)
        await self._watermark(task, outcome, update)

        ocr = await self._run_stage(
            task, outcome, StageName.OCR, lambda: self._recognize(task, update)
        )
        detection: BibDetection = ocr.value
        outcome.bib_numbers = list(detection.numbers)

        faces_found = await self._faces(task, outcome)
        await self._link_by_face(task, outcome, faces_found)

        if not outcome.bib_numbers and task.credit_deducted:
            receipt = self.ledger.refund_no_bib(
                task.user_id, task.photo_id, task.event_id, task.credits_per_photo
            )
            outcome.refunded = receipt is not None

        await self._labels(task, outcome)

        _logger.info(
            "Photo %s processed: bibs=%s refunded=%s failed=%s",
            task.photo_id,
            outcome.bib_numbers,
            outcome.refunded,
            [stage.value for stage in outcome.failed_stages],
        )
        return outcome

    async def _quality(
        self, task: PhotoTask, outcome: PipelineOutcome, update: PhotoUpdate
    ) -> QualityReport | None:
        if not task.is_premium:
            _skip(outcome, StageName.QUALITY, "lite tier")
            return None
        result = await self._run_stage(
            task,
            outcome,
            StageName.QUALITY,
            lambda: asyncio.to_thread(
                imaging.analyze_quality, task.jpeg, self.quality_threshold
            ),
        )
        quality = DEFAULT_QUALITY if result.failed else result.value
        update.quality_score = quality.score
        update.is_blurry = quality.is_blurry
        return quality

    async def _retouch(
        self,
        task: PhotoTask,
        outcome: PipelineOutcome,
        update: PhotoUpdate,
        quality: QualityReport | None,
    ) -> None:
        reason = None
        if not task.is_premium:
            reason = "lite tier"
        elif quality is not None and quality.is_blurry:
            reason = "blurry"
        elif not self.auto_edit_enabled or not task.options.auto_retouch:
            reason = "disabled"
        elif not task.web_key:
            reason = "no web copy"
        if reason:
            _skip(outcome, StageName.RETOUCH, reason)
            return
        result = await self._run_stage(
            task, outcome, StageName.RETOUCH, lambda: self._retouch_web_copy(task)
        )
        if not result.failed:
            update.auto_edited = True

    async def _retouch_web_copy(self, task: PhotoTask) -> str:
        source = await asyncio.to_thread(self.storage.get, task.web_key)
        retouched = await asyncio.to_thread(imaging.auto_retouch, source)
        await asyncio.to_thread(self.storage.put, retouched, task.web_key, "image/webp")
        return task.web_key

    async def _watermark(
        self, task: PhotoTask, outcome: PipelineOutcome, update: PhotoUpdate
    ) -> None:
        if not task.is_premium:
            _skip(outcome, StageName.WATERMARK, "lite tier")
            return
        result = await self._run_stage(
            task,
            outcome,
            StageName.WATERMARK,
            lambda: self.watermark_renderer.render(
                task.event_id, task.jpeg, task.filename
            ),
        )
        if not result.failed:
            output: WatermarkOutput = result.value
            update.thumbnail_key = output.thumbnail_key
            update.micro_thumbnail_key = output.micro_thumbnail_key

    async def _recognize(self, task: PhotoTask, update: PhotoUpdate) -> BibDetection:
        reader = self.bib_readers.for_engine(task.ocr_engine)
        detection = await reader.detect_bibs(task.jpeg, task.bib_hints)
        self.photo_repository.replace_bib_numbers(
            task.photo_id, detection.numbers, detection.confidence, detection.provider
        )
        update.ocr_provider = detection.provider
        update.processed_at = datetime.now(tz=UTC)
        self.photo_repository.update_photo(task.photo_id, update.as_fields())
        return detection

    async def _faces(self, task: PhotoTask, outcome: PipelineOutcome) -> int:
        if not task.is_premium:
            _skip(outcome, StageName.FACES, "lite tier")
            return 0
        if not self.face_index_enabled or self.face_client is None:
            _skip(outcome, StageName.FACES, "disabled")
            return 0
        result = await self._run_stage(
            task, outcome, StageName.FACES, lambda: self._index_faces(task)
        )
        return 0 if result.failed else result.value

    async def _index_faces(self, task: PhotoTask) -> int:
        faces = await self.face_client.index_faces(
            task.jpeg, f"{task.event_id}:{task.photo_id}"
        )
        if not faces:
            return 0
        rows = self.photo_repository.create_faces(task.photo_id, faces)
        self.photo_repository.update_photo(task.photo_id, {"face_indexed": True})
        if task.options.smart_crop:
            for index, row in enumerate(rows):
                await self._crop_face(task, index, row)
        return len(faces)

    async def _crop_face(self, task: PhotoTask, index: int, row: PhotoFaceRecord) -> None:
        try:
            crop = await asyncio.to_thread(imaging.crop_face, task.jpeg, row.bounding_box)
            if crop is None:
                return
            key = face_crop_key(task.event_id, task.photo_id, index)
            await asyncio.to_thread(self.storage.put, crop, key, "image/webp")
            self.photo_repository.set_face_crop(row.id, key)
        except Exception:
            _logger.exception(
                "Smart crop failed for face %s", index, extra={"photo_id": str(task.photo_id)}
            )

    async def _link_by_face(
        self, task: PhotoTask, outcome: PipelineOutcome, faces_found: int
    ) -> None:
        reason = None
        if not task.is_premium:
            reason = "lite tier"
        elif outcome.bib_numbers:
            reason = "bibs found"
        elif not faces_found:
            reason = "no faces"
        if reason:
            _skip(outcome, StageName.FACE_LINK, reason)
            return
        result = await self._run_stage(
            task, outcome, StageName.FACE_LINK, lambda: self._copy_matched_bibs(task)
        )
        if not result.failed:
            outcome.bib_numbers = list(result.value)

    async def _copy_matched_bibs(self, task: PhotoTask) -> list[str]:
        matches = await self.face_client.search_faces(
            task.jpeg, FACE_SEARCH_MAX_FACES, self.face_match_threshold
        )
        photo_ids = _matched_photo_ids(task, matches)
        numbers = self.photo_repository.list_bib_numbers(photo_ids)
        if numbers:
            self.photo_repository.replace_bib_numbers(
                task.photo_id, numbers, FACE_LINK_CONFIDENCE, FACE_LINK_SOURCE
            )
            _logger.info(
                "Linked %d bib(s) to photo %s from %d matching photo(s)",
                len(numbers),
                task.photo_id,
                len(photo_ids),
            )
        return numbers

    async def _labels(self, task: PhotoTask, outcome: PipelineOutcome) -> None:
        if not task.is_premium:
            _skip(outcome, StageName.LABELS, "lite tier")
            return
        if not self.label_detection_enabled or self.label_client is None:
            _skip(outcome, StageName.LABELS, "disabled")
            return
        await self._run_stage(
            task, outcome, StageName.LABELS, lambda: self._detect_labels(task)
        )

    async def _detect_labels(self, task: PhotoTask) -> list[dict[str, object]]:
        labels = await self.label_client.detect_labels(
            task.jpeg, self.label_max_labels, self.label_min_confidence
        )
        payload = [
            {"name": label.name, "confidence": round(label.confidence)}
            for label in labels
        ]
        if payload:
            self.photo_repository.update_photo(task.photo_id, {"labels": payload})
        return payload

    async def _run_stage(
        self,
        task: PhotoTask,
        outcome: PipelineOutcome,
        stage: StageName,
        func: Callable[[], Awaitable[object]],
    ) -> StageResult:
        try:
            value = await func()
        except Exception as exc:
            if stage not in NON_CRITICAL_STAGES:
                raise CriticalStageError(stage.value, task.photo_id, exc) from exc
            _logger.exception(
                "Stage %s failed, continuing", stage.value,
                extra={"photo_id": str(task.photo_id)},
            )
            result = StageResult(stage=stage, status=StageStatus.FAILED, error=str(exc))
        else:
            result = StageResult(stage=stage, status=StageStatus.OK, value=value)
        outcome.results.append(result)
        return result


def _skip(outcome: PipelineOutcome, stage: StageName, reason: str) -> None:
    outcome.results.append(
        StageResult(stage=stage, status=StageStatus.SKIPPED, error=reason)
    )


def _matched_photo_ids(task: PhotoTask, matches: list[FaceMatch]) -> list[UUID]:
    """Photos of the same event whose faces matched, excluding the photo itself."""
    photo_ids: list[UUID] = []
    for match in matches:
        parsed = parse_external_id(match.external_image_id)
        if parsed is None or parsed[0] != str(task.event_id):
            continue
        try:
            photo_id = UUID(parsed[1])
        except ValueError:
            continue
        if photo_id != task.photo_id and photo_id not in photo_ids:
            photo_ids.append(photo_id)
    return photo_ids
