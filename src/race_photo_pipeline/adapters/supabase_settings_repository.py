"""Supabase-backed platform settings."""

from dataclasses import dataclass

from supabase import Client

from race_photo_pipeline.domain.photos import WatermarkSettings
from race_photo_pipeline.services.watermark import WatermarkSettingsRepository

_SETTINGS_ID = "default"


@dataclass
class SupabaseSettingsRepository(WatermarkSettingsRepository):
    """Supabase implementation for the single platform settings row."""

    client: Client

    def get_settings(self) -> WatermarkSettings:
        """Return watermark settings, defaults when the row is missing."""
        response = (
            self.client.table("platform_settings")
            .select("watermark_image_key, watermark_opacity")
            .eq("id", _SETTINGS_ID)
            .limit(1)
            .execute()
        )
        if not response.data:
            return WatermarkSettings()
        row = response.data[0]
        opacity = row.get("watermark_opacity")
        return WatermarkSettings(
            image_key=row.get("watermark_image_key"),
            opacity=float(opacity) if opacity is not None else WatermarkSettings.opacity,
        )

    def save_settings(self, image_key: str | None, opacity: float) -> WatermarkSettings:
        """Upsert the watermark settings."""
        response = (
            self.client.table("platform_settings")
            .upsert(
                {
                    "id": _SETTINGS_ID,
                    "watermark_image_key": image_key,
                    "watermark_opacity": opacity,
                }
            )
            .execute()
        )
        if not response.data:
            raise RuntimeError("Failed to save platform settings")
        return WatermarkSettings(image_key=image_key, opacity=opacity)
