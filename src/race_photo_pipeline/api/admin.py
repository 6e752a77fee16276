"""Admin API endpoints with simple token auth."""

from __future__ import annotations

import asyncio
from io import BytesIO
from typing import TYPE_CHECKING
from uuid import UUID  # noqa: TC003

from fastapi import (
    APIRouter,
    Depends,
    File,
    Form,
    Header,
    HTTPException,
    Request,
    UploadFile,
    status,
)
from PIL import Image, UnidentifiedImageError
from pydantic import BaseModel, Field

from race_photo_pipeline.errors import UserNotFoundError
from race_photo_pipeline.services.storage import WATERMARK_IMAGE_KEY

if TYPE_CHECKING:
    from race_photo_pipeline.containers import AppContainer
    from race_photo_pipeline.domain.credits import CreditTransaction
    from race_photo_pipeline.domain.photos import WatermarkSettings

router = APIRouter(prefix="/admin", tags=["admin"])

MIN_OPACITY = 0.05
MAX_OPACITY = 1.0


class CreditGrant(BaseModel):
    """Request body for an admin credit grant."""

    amount: int = Field(gt=0)
    reason: str = "Admin grant"


def _get_admin_token(request: Request) -> str:
    container: AppContainer = request.app.state.container
    return container.settings.admin_token


async def require_admin(
    x_admin_token: str | None = Header(default=None),
    admin_token: str = Depends(_get_admin_token),
) -> None:
    """Ensure requests include a valid admin token."""
    if not x_admin_token or x_admin_token != admin_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)


@router.get("/health", dependencies=[Depends(require_admin)])
async def admin_health() -> dict[str, str]:
    """Admin health check endpoint."""
    return {"status": "ok"}


@router.get("/queue", dependencies=[Depends(require_admin)])
async def queue_stats(request: Request) -> dict[str, object]:
    """Return processing queue and stream connection counts."""
    container: AppContainer = request.app.state.container
    stats = container.queue.stats
    return {
        "queue": {
            "running": stats.running,
            "queued": stats.queued,
            "max_concurrent": stats.max_concurrent,
        },
        "streams": container.hub.stats(),
        "pending_clustering": [
            str(event_id) for event_id in container.scheduler.pending_events()
        ],
    }


@router.get("/users/{user_id}/credits", dependencies=[Depends(require_admin)])
async def user_credits(
    user_id: UUID, request: Request, limit: int = 50
) -> dict[str, object]:
    """Return a user's balance and latest ledger entries."""
    container: AppContainer = request.app.state.container
    try:
        balance = container.ledger.balance(user_id)
    except UserNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    transactions = container.ledger.list_transactions(user_id, limit)
    return {
        "user_id": str(user_id),
        "balance": balance,
        "transactions": [_format_transaction(entry) for entry in transactions],
    }


@router.post("/users/{user_id}/credits", dependencies=[Depends(require_admin)])
async def grant_credits(
    user_id: UUID, grant: CreditGrant, request: Request
) -> dict[str, object]:
    """Grant credits to a user."""
    container: AppContainer = request.app.state.container
    try:
        transaction = container.ledger.grant(user_id, grant.amount, grant.reason)
    except UserNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return _format_transaction(transaction)


@router.get("/settings/watermark", dependencies=[Depends(require_admin)])
async def get_watermark(request: Request) -> dict[str, object]:
    """Return the operator watermark settings."""
    container: AppContainer = request.app.state.container
    return _format_watermark(container.settings_repository.get_settings())


@router.put("/settings/watermark", dependencies=[Depends(require_admin)])
async def update_watermark(
    request: Request,
    file: UploadFile | None = File(default=None),
    opacity: float | None = Form(default=None),
) -> dict[str, object]:
    """Upload a watermark image and/or change its opacity."""
    container: AppContainer = request.app.state.container
    current = container.settings_repository.get_settings()
    resolved_opacity = current.opacity if opacity is None else opacity
    if not MIN_OPACITY <= resolved_opacity <= MAX_OPACITY:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Opacity must be between {MIN_OPACITY} and {MAX_OPACITY}",
        )
    image_key = current.image_key
    if file is not None:
        content = await file.read()
        if not await asyncio.to_thread(_is_image, content):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid image"
            )
        image_key = await asyncio.to_thread(
            container.storage.put, content, WATERMARK_IMAGE_KEY, "image/png"
        )
    saved = container.settings_repository.save_settings(image_key, resolved_opacity)
    container.watermark_renderer.invalidate_custom_watermark()
    return _format_watermark(saved)


@router.delete("/settings/watermark", dependencies=[Depends(require_admin)])
async def delete_watermark(request: Request) -> dict[str, object]:
    """Remove the operator watermark and fall back to the text watermark."""
    container: AppContainer = request.app.state.container
    current = container.settings_repository.get_settings()
    if current.image_key:
        await asyncio.to_thread(container.storage.delete, current.image_key)
    saved = container.settings_repository.save_settings(None, current.opacity)
    container.watermark_renderer.invalidate_custom_watermark()
    return _format_watermark(saved)


def _is_image(content: bytes) -> bool:
    try:
        with Image.open(BytesIO(content)) as image:
            image.verify()
    except (UnidentifiedImageError, OSError, ValueError):
        return False
    return True


def _format_watermark(settings: WatermarkSettings) -> dict[str, object]:
    return {
        "image_key": settings.image_key,
        "opacity": settings.opacity,
        "custom": settings.image_key is not None,
    }


def _format_transaction(entry: CreditTransaction) -> dict[str, object]:
    return {
        "id": str(entry.id),
        "type": entry.type.value,
        "amount": entry.amount,
        "balance_before": entry.balance_before,
        "balance_after": entry.balance_after,
        "reason": entry.reason,
        "photo_id": str(entry.photo_id) if entry.photo_id else None,
        "event_id": str(entry.event_id) if entry.event_id else None,
        "created_at": entry.created_at.isoformat(),
    }
