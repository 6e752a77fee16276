"""Batch and live upload intake.

Files are decoded and stored before credits are charged and photo rows are
created, so a rejected batch leaves no photos and no ledger entries behind.
A batch whose photo rows cannot all be created is rolled back: its rows and
objects are removed and the deduction is returned.
Analysis happens in the background on the processing queue.
"""

import asyncio
import logging
from dataclasses import dataclass
from functools import partial
from pathlib import PurePosixPath
from uuid import UUID, uuid4

from PIL import Image

from race_photo_pipeline.domain.credits import DeductionReceipt
from race_photo_pipeline.domain.photos import (
    EventRecord,
    PhotoRecord,
    PreparedImage,
    UploadedFile,
)
from race_photo_pipeline.domain.pipeline import (
    OcrEngine,
    PhotoTask,
    ProcessingOptions,
    ProcessingTier,
)
from race_photo_pipeline.errors import EventNotFoundError, NoValidFilesError
from race_photo_pipeline.services import imaging
from race_photo_pipeline.services.clustering import AutoClusterScheduler
from race_photo_pipeline.services.credits import CreditLedgerService
from race_photo_pipeline.services.pipeline import (
    EventRepository,
    PhotoPipeline,
    PhotoRepository,
)
from race_photo_pipeline.services.progress import ProgressTracker
from race_photo_pipeline.services.queue import ProcessingQueue
from race_photo_pipeline.services.storage import StorageClient, original_key, web_key

_logger = logging.getLogger(__name__)

_DECODE_ERRORS = (OSError, ValueError, Image.DecompressionBombError)


@dataclass(frozen=True)
class BatchSubmission:
    """Receipt returned once a batch is stored and queued."""

    session_id: UUID
    total_photos: int
    credits_deducted: int
    credits_remaining: int
    failed_files: list[str]


@dataclass(frozen=True)
class LivePhotoReceipt:
    """Receipt returned for a single live-mode upload."""

    photo_id: UUID
    filename: str
    stats: dict[str, object]


@dataclass(frozen=True)
class _StoredUpload:
    upload: UploadedFile
    image: PreparedImage
    filename: str
    storage_key: str
    web_key: str


@dataclass
class UploadService:  # noqa: PLR0902
    """Stores uploads, charges credits and queues pipeline tasks."""

    event_repository: EventRepository
    photo_repository: PhotoRepository
    storage: StorageClient
    ledger: CreditLedgerService
    pipeline: PhotoPipeline
    queue: ProcessingQueue
    tracker: ProgressTracker
    scheduler: AutoClusterScheduler

    async def submit_batch(
        self,
        event_id: UUID,
        files: list[UploadedFile],
        tier: ProcessingTier,
        ocr_engine: OcrEngine,
        options: ProcessingOptions | None = None,
    ) -> BatchSubmission:
        """Accept a batch: store each photo, charge once and queue it."""
        if not files:
            raise NoValidFilesError([])
        event = self._require_event(event_id)
        options = options or ProcessingOptions()

        failed_files: list[str] = []
        stored: list[_StoredUpload] = []
        for upload in files:
            try:
                image = await asyncio.to_thread(imaging.prepare_upload, upload.content)
            except _DECODE_ERRORS:
                _logger.warning("Could not decode %s", upload.filename)
                failed_files.append(upload.filename)
                continue
            try:
                stored.append(await self._store_objects(event, upload, image))
            except Exception:
                _logger.exception("Failed to store %s", upload.filename)
                failed_files.append(upload.filename)
        if not stored:
            raise NoValidFilesError(failed_files)

        try:
            receipt = self.ledger.deduct_for_batch(event, len(stored), tier)
        except Exception:
            await self._discard_objects(stored)
            raise
        credit_deducted = receipt.amount > 0
        photos: list[PhotoRecord] = []
        try:
            for item in stored:
                photos.append(self._create_photo(event, item, credit_deducted))
        except Exception:
            await self._roll_back_batch(event, receipt, photos, stored)
            raise

        session = self.tracker.create_session(event.user_id, event.id, len(photos))
        self.event_repository.mark_upload_started(event.id)
        hints = self._start_list(event.id)
        per_photo = self.ledger.credits_per_photo(tier) if credit_deducted else 0
        for photo, item in zip(photos, stored, strict=True):
            task = PhotoTask(
                photo_id=photo.id,
                event_id=event.id,
                user_id=event.user_id,
                jpeg=item.image.jpeg,
                filename=photo.filename,
                original_name=photo.original_name,
                web_key=photo.web_key,
                tier=tier,
                ocr_engine=ocr_engine,
                credits_per_photo=per_photo,
                credit_deducted=credit_deducted,
                bib_hints=hints,
                options=options,
            )
            self.queue.enqueue(partial(self._process_batch_photo, session.id, task))

        _logger.info(
            "Queued %s photos for event %s in session %s (%s failed)",
            len(photos),
            event.id,
            session.id,
            len(failed_files),
        )
        return BatchSubmission(
            session_id=session.id,
            total_photos=len(photos),
            credits_deducted=receipt.amount,
            credits_remaining=receipt.balance_after,
            failed_files=failed_files,
        )

    async def submit_live(self, event_id: UUID, upload: UploadedFile) -> LivePhotoReceipt:
        """Accept one photo in live mode; no credits are charged."""
        event = self._require_event(event_id)
        try:
            image = await asyncio.to_thread(imaging.prepare_upload, upload.content)
        except _DECODE_ERRORS as exc:
            raise NoValidFilesError([upload.filename]) from exc
        item = await self._store_objects(event, upload, image)
        photo = self._create_photo(event, item, credit_deducted=False)
        status = self.tracker.record_live_received(event.id, photo.id, upload.filename)
        self.event_repository.mark_upload_started(event.id)
        task = PhotoTask(
            photo_id=photo.id,
            event_id=event.id,
            user_id=event.user_id,
            jpeg=image.jpeg,
            filename=photo.filename,
            original_name=photo.original_name,
            web_key=photo.web_key,
            tier=ProcessingTier.PREMIUM,
            ocr_engine=OcrEngine.CLOUD,
            bib_hints=self._start_list(event.id),
        )
        self.queue.enqueue(partial(self._process_live_photo, task))
        return LivePhotoReceipt(
            photo_id=photo.id, filename=upload.filename, stats=status.stats()
        )

    async def _process_batch_photo(self, session_id: UUID, task: PhotoTask) -> None:
        try:
            self.tracker.set_step(session_id, f"Processing {task.original_name}")
            outcome = await self.pipeline.run(task)
            if outcome.refunded:
                self.tracker.record_refund(session_id)
        except Exception as exc:
            _logger.exception(
                "Processing failed for photo %s", task.photo_id,
                extra={"photo_id": str(task.photo_id)},
            )
            self.tracker.record_error(session_id, task.photo_id, str(exc))
        finally:
            session = self.tracker.complete_task(session_id)
            if session is not None and session.complete:
                self._finish_event(task.event_id)

    async def _process_live_photo(self, task: PhotoTask) -> None:
        try:
            outcome = await self.pipeline.run(task)
        except Exception as exc:
            _logger.exception(
                "Live processing failed for photo %s", task.photo_id,
                extra={"photo_id": str(task.photo_id)},
            )
            self.tracker.record_live_error(task.event_id, task.photo_id, str(exc))
        else:
            self.tracker.record_live_processed(
                task.event_id, task.photo_id, task.original_name, outcome.bib_numbers
            )
        finally:
            self.scheduler.schedule_auto_clustering(task.event_id)

    def _finish_event(self, event_id: UUID) -> None:
        self.scheduler.schedule_auto_clustering(event_id)
        self.event_repository.mark_upload_completed(event_id)

    async def _store_objects(
        self, event: EventRecord, upload: UploadedFile, image: PreparedImage
    ) -> _StoredUpload:
        suffix = PurePosixPath(upload.filename).suffix.lower() or ".jpg"
        filename = f"{uuid4().hex}{suffix}"
        storage_key = original_key(event.id, filename)
        web = web_key(event.id, filename)
        await asyncio.to_thread(
            self.storage.put,
            upload.content,
            storage_key,
            upload.content_type or "image/jpeg",
        )
        await asyncio.to_thread(self.storage.put, image.web, web, "image/webp")
        return _StoredUpload(
            upload=upload,
            image=image,
            filename=filename,
            storage_key=storage_key,
            web_key=web,
        )

    async def _roll_back_batch(
        self,
        event: EventRecord,
        receipt: DeductionReceipt,
        photos: list[PhotoRecord],
        stored: list[_StoredUpload],
    ) -> None:
        _logger.error(
            "Photo creation failed for event %s after %s of %s photos, rolling back",
            event.id,
            len(photos),
            len(stored),
        )
        for photo in photos:
            try:
                self.photo_repository.delete_photo(photo.id)
            except Exception:
                _logger.exception("Failed to remove photo %s", photo.id)
        self.ledger.refund_batch(event, receipt)
        await self._discard_objects(stored)

    async def _discard_objects(self, stored: list[_StoredUpload]) -> None:
        for item in stored:
            for key in (item.storage_key, item.web_key):
                try:
                    await asyncio.to_thread(self.storage.delete, key)
                except Exception:
                    _logger.exception("Failed to remove %s", key)

    def _create_photo(
        self, event: EventRecord, item: _StoredUpload, credit_deducted: bool
    ) -> PhotoRecord:
        return self.photo_repository.create_photo(
            event.id,
            item.filename,
            item.upload.filename,
            item.storage_key,
            item.web_key,
            credit_deducted,
        )

    def _require_event(self, event_id: UUID) -> EventRecord:
        event = self.event_repository.get_event(event_id)
        if event is None:
            raise EventNotFoundError(event_id)
        return event

    def _start_list(self, event_id: UUID) -> frozenset[str] | None:
        bibs = self.event_repository.list_start_list_bibs(event_id)
        return frozenset(bibs) if bibs else None
