"""Dependency container wiring for the application."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from supabase import create_client

from race_photo_pipeline.adapters.clustering_client import HttpxClusteringClient
from race_photo_pipeline.adapters.easyocr_bib_reader import EasyOcrBibReader
from race_photo_pipeline.adapters.openai_bib_reader import OpenAIBibReader
from race_photo_pipeline.adapters.rekognition_client import (
    RekognitionBibReader,
    RekognitionFaceIndex,
    RekognitionLabelClient,
    create_rekognition,
)
from race_photo_pipeline.adapters.supabase_credit_repository import (
    SupabaseCreditRepository,
)
from race_photo_pipeline.adapters.supabase_event_repository import (
    SupabaseEventRepository,
)
from race_photo_pipeline.adapters.supabase_photo_repository import SupabasePhotoRepository
from race_photo_pipeline.adapters.supabase_settings_repository import (
    SupabaseSettingsRepository,
)
from race_photo_pipeline.adapters.supabase_storage_client import SupabaseStorageClient
from race_photo_pipeline.config import Settings, parse_languages
from race_photo_pipeline.services.clustering import AutoClusterScheduler
from race_photo_pipeline.services.credits import CreditLedgerService
from race_photo_pipeline.services.notifications import NotificationHub
from race_photo_pipeline.services.ocr import BibReader, BibReaderRegistry
from race_photo_pipeline.services.pipeline import EventRepository, PhotoPipeline
from race_photo_pipeline.services.progress import ProgressTracker
from race_photo_pipeline.services.queue import ProcessingQueue
from race_photo_pipeline.services.storage import StorageClient
from race_photo_pipeline.services.uploads import UploadService
from race_photo_pipeline.services.watermark import (
    WatermarkRenderer,
    WatermarkSettingsRepository,
)


@dataclass
class AppContainer:
    """Holds application-wide dependencies."""

    settings: Settings
    storage: StorageClient
    event_repository: EventRepository
    settings_repository: WatermarkSettingsRepository
    ledger: CreditLedgerService
    hub: NotificationHub
    tracker: ProgressTracker
    queue: ProcessingQueue
    scheduler: AutoClusterScheduler
    watermark_renderer: WatermarkRenderer
    upload_service: UploadService
    close_resources: Callable[[], Awaitable[None]]


def build_container(settings: Settings | None = None) -> AppContainer:
    """Create the default dependency container."""
    resolved_settings = settings or Settings()
    supabase_client = create_client(
        resolved_settings.supabase_url, resolved_settings.supabase_service_key
    )
    storage = SupabaseStorageClient(supabase_client, resolved_settings.storage_bucket)
    event_repository = SupabaseEventRepository(supabase_client)
    photo_repository = SupabasePhotoRepository(supabase_client)
    settings_repository = SupabaseSettingsRepository(supabase_client)
    ledger = CreditLedgerService(
        SupabaseCreditRepository(supabase_client),
        credits_per_photo_lite=resolved_settings.credits_per_photo_lite,
        credits_per_photo_premium=resolved_settings.credits_per_photo_premium,
    )

    rekognition = create_rekognition(resolved_settings.aws_region)
    openai_reader = None
    cloud_reader: BibReader
    if resolved_settings.cloud_ocr_provider == "openai":
        if not resolved_settings.openai_api_key:
            raise ValueError("OPENAI_API_KEY is required for the openai OCR provider")
        openai_reader = OpenAIBibReader.create(
            resolved_settings.openai_api_key, resolved_settings.openai_model
        )
        cloud_reader = openai_reader
    else:
        cloud_reader = RekognitionBibReader(client=rekognition)
    local_reader = None
    if resolved_settings.local_ocr_enabled:
        local_reader = EasyOcrBibReader.create(
            parse_languages(resolved_settings.easyocr_languages)
        )

    hub = NotificationHub()
    tracker = ProgressTracker(
        hub, retention_seconds=resolved_settings.session_retention_seconds
    )
    queue = ProcessingQueue(max_concurrent=resolved_settings.processing_max_concurrent)
    clustering_client = None
    if resolved_settings.clustering_webhook_url:
        clustering_client = HttpxClusteringClient.create(
            resolved_settings.clustering_webhook_url
        )
    scheduler = AutoClusterScheduler(
        queue=queue,
        client=clustering_client,
        delay_seconds=resolved_settings.clustering_delay_seconds,
        enabled=resolved_settings.face_index_enabled,
    )
    watermark_renderer = WatermarkRenderer(
        storage=storage,
        settings_repository=settings_repository,
        text=resolved_settings.watermark_text,
    )
    pipeline = PhotoPipeline(
        photo_repository=photo_repository,
        storage=storage,
        watermark_renderer=watermark_renderer,
        bib_readers=BibReaderRegistry(cloud=cloud_reader, local=local_reader),
        ledger=ledger,
        face_client=RekognitionFaceIndex(
            client=rekognition,
            collection_id=resolved_settings.rekognition_collection_id,
        ),
        label_client=RekognitionLabelClient(client=rekognition),
        quality_threshold=resolved_settings.quality_threshold,
        auto_edit_enabled=resolved_settings.auto_edit_enabled,
        face_index_enabled=resolved_settings.face_index_enabled,
        face_match_threshold=resolved_settings.face_match_threshold,
        label_detection_enabled=resolved_settings.label_detection_enabled,
        label_max_labels=resolved_settings.label_max_labels,
        label_min_confidence=resolved_settings.label_min_confidence,
    )
    upload_service = UploadService(
        event_repository=event_repository,
        photo_repository=photo_repository,
        storage=storage,
        ledger=ledger,
        pipeline=pipeline,
        queue=queue,
        tracker=tracker,
        scheduler=scheduler,
    )

    async def close_resources() -> None:
        scheduler.cancel_all()
        if clustering_client is not None:
            await clustering_client.close()
        if openai_reader is not None:
            await openai_reader.close()

    return AppContainer(
        settings=resolved_settings,
        storage=storage,
        event_repository=event_repository,
        settings_repository=settings_repository,
        ledger=ledger,
        hub=hub,
        tracker=tracker,
        queue=queue,
        scheduler=scheduler,
        watermark_renderer=watermark_renderer,
        upload_service=upload_service,
        close_resources=close_resources,
    )
