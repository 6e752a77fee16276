"""Watermarked preview rendering with small in-process caches."""

import asyncio
import logging
import math
import threading
from collections import OrderedDict
from dataclasses import dataclass, field
from io import BytesIO
from typing import Protocol
from uuid import UUID

from PIL import Image, ImageDraw, ImageFont

from race_photo_pipeline.domain.photos import WatermarkSettings
from race_photo_pipeline.domain.pipeline import WatermarkOutput
from race_photo_pipeline.errors import StorageObjectNotFoundError
from race_photo_pipeline.services import imaging
from race_photo_pipeline.services.storage import (
    StorageClient,
    micro_thumbnail_key,
    thumbnail_key,
)

_logger = logging.getLogger(__name__)

TEXT_OPACITY = 0.3
CUSTOM_WIDTH_RATIO = 0.4


class WatermarkSettingsRepository(Protocol):
    """Persistence interface for the operator watermark settings."""

    def get_settings(self) -> WatermarkSettings:
        """Return the current watermark settings."""

    def save_settings(self, image_key: str | None, opacity: float) -> WatermarkSettings:
        """Persist watermark settings and return them."""


@dataclass
class WatermarkRenderer:
    """Renders watermarked thumbnails and micro thumbnails into storage."""

    storage: StorageClient
    settings_repository: WatermarkSettingsRepository
    text: str = "PREVIEW"
    max_side: int = 1200
    micro_side: int = 400
    overlay_cache_size: int = 20
    _overlays: OrderedDict[tuple[int, int], Image.Image] = field(
        default_factory=OrderedDict, init=False, repr=False
    )
    _custom: tuple[Image.Image, float] | None = field(default=None, init=False, repr=False)
    _custom_loaded: bool = field(default=False, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    async def render(
        self, event_id: UUID, jpeg: bytes, filename: str
    ) -> WatermarkOutput:
        """Render both previews for a photo and store them."""
        thumb, micro = await asyncio.to_thread(self.render_bytes, jpeg)
        thumb_key = thumbnail_key(event_id, filename)
        micro_key = micro_thumbnail_key(event_id, filename)
        await asyncio.to_thread(self.storage.put, thumb, thumb_key, "image/jpeg")
        await asyncio.to_thread(self.storage.put, micro, micro_key, "image/jpeg")
        return WatermarkOutput(thumbnail_key=thumb_key, micro_thumbnail_key=micro_key)

    def render_bytes(self, jpeg: bytes) -> tuple[bytes, bytes]:
        """Return the watermarked thumbnail and micro thumbnail as JPEG bytes."""
        image = imaging.open_rgb(jpeg)
        image.thumbnail((self.max_side, self.max_side))
        custom = self._custom_watermark()
        if custom is not None:
            overlay = _custom_overlay(image.size, *custom)
        else:
            overlay = self._text_overlay(image.size)
        composed = Image.alpha_composite(image.convert("RGBA"), overlay).convert("RGB")
        thumb = imaging.encode(composed, "JPEG", 80)
        micro_image = composed.copy()
        micro_image.thumbnail((self.micro_side, self.micro_side))
        micro = imaging.encode(micro_image, "JPEG", 70)
        return thumb, micro

    def invalidate_custom_watermark(self) -> None:
        """Forget the cached operator watermark so the next render reloads it."""
        with self._lock:
            self._custom = None
            self._custom_loaded = False

    @property
    def cached_overlay_sizes(self) -> list[tuple[int, int]]:
        with self._lock:
            return list(self._overlays)

    def _custom_watermark(self) -> tuple[Image.Image, float] | None:
        with self._lock:
            if self._custom_loaded:
                return self._custom
        settings = self.settings_repository.get_settings()
        custom = None
        if settings.image_key:
            try:
                raw = self.storage.get(settings.image_key)
                custom = (Image.open(BytesIO(raw)).convert("RGBA"), settings.opacity)
            except StorageObjectNotFoundError:
                _logger.warning(
                    "Custom watermark %s missing, using text watermark",
                    settings.image_key,
                )
        with self._lock:
            self._custom = custom
            self._custom_loaded = True
        return custom

    def _text_overlay(self, size: tuple[int, int]) -> Image.Image:
        with self._lock:
            cached = self._overlays.get(size)
            if cached is not None:
                self._overlays.move_to_end(size)
                return cached
        overlay = _tiled_text_overlay(size, self.text)
        with self._lock:
            self._overlays[size] = overlay
            self._overlays.move_to_end(size)
            while len(self._overlays) > self.overlay_cache_size:
                self._overlays.popitem(last=False)
        return overlay


def _tiled_text_overlay(size: tuple[int, int], text: str) -> Image.Image:
    """Diagonal repeated text over a transparent layer of ``size``."""
    width, height = size
    font_size = max(round(width / 20), 16)
    font = ImageFont.load_default(size=font_size)
    side = math.ceil(math.hypot(width, height)) + font_size * 2
    canvas = Image.new("RGBA", (side, side), (0, 0, 0, 0))
    draw = ImageDraw.Draw(canvas)
    fill = (255, 255, 255, round(255 * TEXT_OPACITY))
    for y in range(0, side, font_size * 3):
        for x in range(0, side, font_size * 8):
            draw.text((x, y), text, font=font, fill=fill)
    rotated = canvas.rotate(30, resample=Image.Resampling.BICUBIC)
    left = (side - width) // 2
    top = (side - height) // 2
    return rotated.crop((left, top, left + width, top + height))


def _custom_overlay(
    size: tuple[int, int], watermark: Image.Image, opacity: float
) -> Image.Image:
    """Centre the operator watermark at a fixed share of the width."""
    width, height = size
    target_w = max(1, round(width * CUSTOM_WIDTH_RATIO))
    target_h = max(1, round(watermark.height * target_w / watermark.width))
    scaled = watermark.resize((target_w, target_h), Image.Resampling.LANCZOS)
    alpha = scaled.getchannel("A").point(lambda value: round(value * opacity))
    scaled.putalpha(alpha)
    overlay = Image.new("RGBA", size, (0, 0, 0, 0))
    overlay.paste(scaled, ((width - target_w) // 2, (height - target_h) // 2))
    return overlay
