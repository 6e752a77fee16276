"""Upload and progress-stream endpoints."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING
from uuid import UUID  # noqa: TC003

from fastapi import APIRouter, File, Form, HTTPException, Request, UploadFile, status
from fastapi.responses import JSONResponse, StreamingResponse

from race_photo_pipeline.api.sse import SSE_HEADERS, is_complete, stream_events
from race_photo_pipeline.domain.photos import UploadedFile
from race_photo_pipeline.domain.pipeline import (
    OcrEngine,
    ProcessingOptions,
    ProcessingTier,
)
from race_photo_pipeline.errors import (
    EventNotFoundError,
    InsufficientCreditsError,
    NoValidFilesError,
    SessionNotFoundError,
    UserNotFoundError,
)

if TYPE_CHECKING:
    from race_photo_pipeline.containers import AppContainer

logger = logging.getLogger(__name__)

router = APIRouter(tags=["uploads"])


async def _read_files(files: list[UploadFile]) -> list[UploadedFile]:
    uploads = []
    for upload in files:
        content = await upload.read()
        uploads.append(
            UploadedFile(
                filename=upload.filename or "upload.jpg",
                content=content,
                content_type=upload.content_type,
            )
        )
    return uploads


@router.post("/photos/batch-upload", response_model=None)
async def batch_upload(  # noqa: PLR0913
    request: Request,
    event_id: UUID = Form(...),
    files: list[UploadFile] = File(default=[]),
    processing_mode: ProcessingTier = Form(ProcessingTier.LITE),
    ocr_engine: OcrEngine = Form(OcrEngine.CLOUD),
    auto_retouch: bool = Form(True),
    smart_crop: bool = Form(False),
) -> dict[str, object] | JSONResponse:
    """Store a batch, charge credits and start background processing."""
    container: AppContainer = request.app.state.container
    if not files:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No files provided")
    uploads = await _read_files(files)
    try:
        submission = await container.upload_service.submit_batch(
            event_id,
            uploads,
            tier=processing_mode,
            ocr_engine=ocr_engine,
            options=ProcessingOptions(auto_retouch=auto_retouch, smart_crop=smart_crop),
        )
    except InsufficientCreditsError as exc:
        return JSONResponse(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            content={
                "error": str(exc),
                "code": "INSUFFICIENT_CREDITS",
                "required": exc.required,
                "available": exc.available,
            },
        )
    except (EventNotFoundError, UserNotFoundError) as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except NoValidFilesError as exc:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "No valid files", "failed_files": exc.failed_files},
        )
    return {
        "session_id": str(submission.session_id),
        "total_photos": submission.total_photos,
        "credits_deducted": submission.credits_deducted,
        "credits_remaining": submission.credits_remaining,
        "failed_files": submission.failed_files,
    }


@router.get("/photos/upload-progress/{session_id}")
async def upload_progress(session_id: UUID, request: Request) -> StreamingResponse:
    """Stream batch progress until the session completes."""
    container: AppContainer = request.app.state.container
    try:
        snapshot, subscription = container.tracker.attach_session(session_id)
    except SessionNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return StreamingResponse(
        stream_events(
            request,
            snapshot,
            subscription,
            on_close=container.tracker.detach,
            heartbeat_seconds=container.settings.sse_heartbeat_seconds,
            stop_when=is_complete,
        ),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.post("/events/{event_id}/live-upload")
async def live_upload(
    event_id: UUID, request: Request, file: UploadFile = File(...)
) -> dict[str, object]:
    """Accept one photo in live mode."""
    container: AppContainer = request.app.state.container
    (upload,) = await _read_files([file])
    try:
        receipt = await container.upload_service.submit_live(event_id, upload)
    except EventNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except NoValidFilesError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid image"
        ) from exc
    return {
        "photo_id": str(receipt.photo_id),
        "filename": receipt.filename,
        "stats": receipt.stats,
    }


@router.get("/events/{event_id}/live-upload")
async def live_status_stream(event_id: UUID, request: Request) -> StreamingResponse:
    """Stream live-mode activity for an event."""
    container: AppContainer = request.app.state.container
    if container.event_repository.get_event(event_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Event not found")
    snapshot, subscription = container.tracker.attach_live(event_id)
    return StreamingResponse(
        stream_events(
            request,
            snapshot,
            subscription,
            on_close=container.tracker.detach,
            heartbeat_seconds=container.settings.sse_heartbeat_seconds,
        ),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
