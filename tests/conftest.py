"""Shared test fixtures."""

import asyncio
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from io import BytesIO
from uuid import UUID, uuid4

import pytest
from PIL import Image, ImageDraw

from race_photo_pipeline.config import Settings
from race_photo_pipeline.containers import AppContainer
from race_photo_pipeline.domain.credits import CreditTransaction, TransactionType
from race_photo_pipeline.domain.photos import (
    BibNumberRecord,
    DetectedFace,
    DetectedLabel,
    EventRecord,
    FaceMatch,
    PhotoFaceRecord,
    PhotoRecord,
    WatermarkSettings,
)
from race_photo_pipeline.domain.pipeline import BibDetection, WatermarkOutput
from race_photo_pipeline.errors import (
    InsufficientCreditsError,
    StorageObjectNotFoundError,
    UserNotFoundError,
)
from race_photo_pipeline.services.clustering import (
    AutoClusterScheduler,
    ClusteringClient,
)
from race_photo_pipeline.services.credits import (
    CreditLedgerRepository,
    CreditLedgerService,
)
from race_photo_pipeline.services.notifications import NotificationHub
from race_photo_pipeline.services.ocr import BibReader, BibReaderRegistry
from race_photo_pipeline.services.pipeline import (
    EventRepository,
    PhotoPipeline,
    PhotoRepository,
)
from race_photo_pipeline.services.progress import ProgressTracker
from race_photo_pipeline.services.queue import ProcessingQueue
from race_photo_pipeline.services.recognition import FaceIndexClient, LabelClient
from race_photo_pipeline.services.storage import StorageClient
from race_photo_pipeline.services.uploads import UploadService
from race_photo_pipeline.services.watermark import (
    WatermarkRenderer,
    WatermarkSettingsRepository,
)


def make_jpeg(
    size: tuple[int, int] = (320, 240),
    color: tuple[int, int, int] = (120, 140, 160),
    *,
    pattern: bool = True,
) -> bytes:
    """Build a small JPEG; the checkerboard keeps it sharp."""
    image = Image.new("RGB", size, color)
    if pattern:
        draw = ImageDraw.Draw(image)
        step = 8
        for y in range(0, size[1], step):
            for x in range(0, size[0], step):
                if (x // step + y // step) % 2 == 0:
                    draw.rectangle((x, y, x + step - 1, y + step - 1), fill=(0, 0, 0))
    buffer = BytesIO()
    image.save(buffer, format="JPEG", quality=90)
    return buffer.getvalue()


def make_png(size: tuple[int, int] = (100, 40)) -> bytes:
    image = Image.new("RGBA", size, (255, 0, 0, 200))
    buffer = BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


@dataclass
class InMemoryStorage(StorageClient):
    """In-memory object storage for tests."""

    objects: dict[str, bytes] = field(default_factory=dict)
    fail_put_containing: set[str] = field(default_factory=set)
    deleted: list[str] = field(default_factory=list)

    def put(self, data: bytes, key: str, content_type: str) -> str:
        if any(marker in key for marker in self.fail_put_containing):
            raise ConnectionError(f"storage unavailable for {key}")
        self.objects[key] = data
        return key

    def get(self, key: str) -> bytes:
        if key not in self.objects:
            raise StorageObjectNotFoundError(key)
        return self.objects[key]

    def delete(self, key: str) -> None:
        self.deleted.append(key)
        self.objects.pop(key, None)


@dataclass
class InMemoryEventRepository(EventRepository):
    """In-memory event repository for tests."""

    events: dict[UUID, EventRecord] = field(default_factory=dict)
    start_lists: dict[UUID, set[str]] = field(default_factory=dict)
    started: list[UUID] = field(default_factory=list)
    completed: list[UUID] = field(default_factory=list)

    def add_event(self, user_id: UUID, name: str = "City Marathon") -> EventRecord:
        event = EventRecord(id=uuid4(), user_id=user_id, name=name)
        self.events[event.id] = event
        return event

    def get_event(self, event_id: UUID) -> EventRecord | None:
        return self.events.get(event_id)

    def list_start_list_bibs(self, event_id: UUID) -> set[str]:
        return set(self.start_lists.get(event_id, set()))

    def mark_upload_started(self, event_id: UUID) -> None:
        if event_id not in self.started:
            self.started.append(event_id)

    def mark_upload_completed(self, event_id: UUID) -> None:
        self.completed.append(event_id)


@dataclass
class InMemoryPhotoRepository(PhotoRepository):
    """In-memory photo repository for tests."""

    photos: dict[UUID, PhotoRecord] = field(default_factory=dict)
    bib_numbers: dict[UUID, list[BibNumberRecord]] = field(default_factory=dict)
    faces: dict[UUID, list[PhotoFaceRecord]] = field(default_factory=dict)
    fail_updates: bool = False
    fail_create_after: int | None = None
    created: int = 0

    def create_photo(  # noqa: PLR0913
        self,
        event_id: UUID,
        filename: str,
        original_name: str,
        storage_key: str,
        web_key: str | None,
        credit_deducted: bool,
    ) -> PhotoRecord:
        if self.fail_create_after is not None and self.created >= self.fail_create_after:
            raise ConnectionError("database unavailable")
        self.created += 1
        photo = PhotoRecord(
            id=uuid4(),
            event_id=event_id,
            filename=filename,
            original_name=original_name,
            storage_key=storage_key,
            web_key=web_key,
            credit_deducted=credit_deducted,
        )
        self.photos[photo.id] = photo
        return photo

    def get_photo(self, photo_id: UUID) -> PhotoRecord | None:
        return self.photos.get(photo_id)

    def update_photo(self, photo_id: UUID, fields: dict[str, object]) -> None:
        if self.fail_updates:
            raise ConnectionError("database unavailable")
        self.photos[photo_id] = replace(self.photos[photo_id], **fields)

    def delete_photo(self, photo_id: UUID) -> None:
        self.photos.pop(photo_id, None)
        self.bib_numbers.pop(photo_id, None)

    def list_bib_numbers(self, photo_ids: list[UUID]) -> list[str]:
        numbers: list[str] = []
        for photo_id in photo_ids:
            for row in self.bib_numbers.get(photo_id, []):
                if row.number not in numbers:
                    numbers.append(row.number)
        return numbers

    def replace_bib_numbers(
        self, photo_id: UUID, numbers: list[str], confidence: float, source: str
    ) -> None:
        self.bib_numbers[photo_id] = [
            BibNumberRecord(photo_id, number, confidence, source) for number in numbers
        ]

    def create_faces(
        self, photo_id: UUID, faces: list[DetectedFace]
    ) -> list[PhotoFaceRecord]:
        rows = [
            PhotoFaceRecord(
                id=uuid4(),
                photo_id=photo_id,
                face_id=face.face_id,
                confidence=face.confidence,
                bounding_box=face.bounding_box,
            )
            for face in faces
        ]
        self.faces.setdefault(photo_id, []).extend(rows)
        return rows

    def set_face_crop(self, face_row_id: UUID, crop_key: str) -> None:
        for photo_id, rows in self.faces.items():
            self.faces[photo_id] = [
                replace(row, crop_key=crop_key) if row.id == face_row_id else row
                for row in rows
            ]


@dataclass
class InMemoryCreditRepository(CreditLedgerRepository):
    """In-memory ledger; refunds flip the photo flag like the database does."""

    photos: InMemoryPhotoRepository
    balances: dict[UUID, int] = field(default_factory=dict)
    transactions: list[CreditTransaction] = field(default_factory=list)

    def get_balance(self, user_id: UUID) -> int:
        if user_id not in self.balances:
            raise UserNotFoundError(user_id)
        return self.balances[user_id]

    def deduct(
        self, user_id: UUID, amount: int, reason: str, event_id: UUID | None
    ) -> CreditTransaction:
        balance = self.get_balance(user_id)
        if balance < amount:
            raise InsufficientCreditsError(amount, balance)
        return self._post(
            user_id, TransactionType.DEDUCTION, -amount, reason, None, event_id
        )

    def refund_photo(
        self,
        user_id: UUID,
        photo_id: UUID,
        event_id: UUID,
        amount: int,
        reason: str,
    ) -> CreditTransaction | None:
        photo = self.photos.photos.get(photo_id)
        if photo is None or not photo.credit_deducted or photo.credit_refunded:
            return None
        self.photos.photos[photo_id] = replace(photo, credit_refunded=True)
        return self._post(
            user_id, TransactionType.REFUND, amount, reason, photo_id, event_id
        )

    def refund(
        self, user_id: UUID, amount: int, reason: str, event_id: UUID | None
    ) -> CreditTransaction:
        return self._post(user_id, TransactionType.REFUND, amount, reason, None, event_id)

    def grant(self, user_id: UUID, amount: int, reason: str) -> CreditTransaction:
        return self._post(user_id, TransactionType.ADMIN_GRANT, amount, reason, None, None)

    def list_transactions(self, user_id: UUID, limit: int) -> list[CreditTransaction]:
        entries = [entry for entry in self.transactions if entry.user_id == user_id]
        return list(reversed(entries))[:limit]

    def _post(  # noqa: PLR0913
        self,
        user_id: UUID,
        kind: TransactionType,
        amount: int,
        reason: str,
        photo_id: UUID | None,
        event_id: UUID | None,
    ) -> CreditTransaction:
        before = self.get_balance(user_id)
        after = before + amount
        self.balances[user_id] = after
        entry = CreditTransaction(
            id=uuid4(),
            user_id=user_id,
            type=kind,
            amount=amount,
            balance_before=before,
            balance_after=after,
            reason=reason,
            photo_id=photo_id,
            event_id=event_id,
            created_at=datetime.now(tz=UTC),
        )
        self.transactions.append(entry)
        return entry


@dataclass
class InMemorySettingsRepository(WatermarkSettingsRepository):
    """In-memory watermark settings for tests."""

    current: WatermarkSettings = field(default_factory=WatermarkSettings)
    reads: int = 0

    def get_settings(self) -> WatermarkSettings:
        self.reads += 1
        return self.current

    def save_settings(self, image_key: str | None, opacity: float) -> WatermarkSettings:
        self.current = WatermarkSettings(image_key=image_key, opacity=opacity)
        return self.current


@dataclass
class FakeBibReader(BibReader):
    """Returns scripted bib numbers in call order, then ``default``."""

    script: list[list[str]] = field(default_factory=list)
    default: list[str] = field(default_factory=lambda: ["123"])
    provider: str = "fake-ocr"
    delay: float = 0.0
    fail: bool = False
    calls: int = 0

    async def detect_bibs(
        self, image_bytes: bytes, hints: frozenset[str] | None = None
    ) -> BibDetection:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ConnectionError("ocr unavailable")
        numbers = self.script.pop(0) if self.script else list(self.default)
        return BibDetection(
            numbers=numbers, confidence=90.0 if numbers else 0.0, provider=self.provider
        )


@dataclass
class FakeFaceClient(FaceIndexClient):
    faces: list[DetectedFace] = field(default_factory=list)
    matches: list[FaceMatch] = field(default_factory=list)
    fail: bool = False
    calls: list[str] = field(default_factory=list)
    searches: int = 0

    async def index_faces(
        self, image_bytes: bytes, external_id: str
    ) -> list[DetectedFace]:
        self.calls.append(external_id)
        if self.fail:
            raise ConnectionError("face service unavailable")
        return list(self.faces)

    async def search_faces(
        self, image_bytes: bytes, max_faces: int, threshold: float
    ) -> list[FaceMatch]:
        self.searches += 1
        return [match for match in self.matches if match.similarity >= threshold][
            :max_faces
        ]


@dataclass
class FakeLabelClient(LabelClient):
    labels: list[DetectedLabel] = field(default_factory=list)
    fail: bool = False

    async def detect_labels(
        self, image_bytes: bytes, max_labels: int, min_confidence: float
    ) -> list[DetectedLabel]:
        if self.fail:
            raise ConnectionError("label service unavailable")
        return [label for label in self.labels if label.confidence >= min_confidence][
            :max_labels
        ]


@dataclass
class FlakyWatermarkRenderer(WatermarkRenderer):
    """Fails the watermark stage on the given call numbers (1-based)."""

    fail_calls: set[int] = field(default_factory=set)
    render_calls: int = 0

    async def render(
        self, event_id: UUID, jpeg: bytes, filename: str
    ) -> WatermarkOutput:
        self.render_calls += 1
        if self.render_calls in self.fail_calls:
            raise OSError("watermark rendering failed")
        return await super().render(event_id, jpeg, filename)


@dataclass
class FakeClusteringClient(ClusteringClient):
    needs: bool = True
    delay: float = 0.0
    checks: list[UUID] = field(default_factory=list)
    runs: list[UUID] = field(default_factory=list)

    async def needs_clustering(self, event_id: UUID) -> bool:
        self.checks.append(event_id)
        return self.needs

    async def cluster(self, event_id: UUID) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        self.runs.append(event_id)


@dataclass
class Harness:
    """Fully wired services over in-memory fakes."""

    user_id: UUID
    event: EventRecord
    storage: InMemoryStorage
    events: InMemoryEventRepository
    photos: InMemoryPhotoRepository
    credits: InMemoryCreditRepository
    settings_repository: InMemorySettingsRepository
    ledger: CreditLedgerService
    hub: NotificationHub
    tracker: ProgressTracker
    queue: ProcessingQueue
    scheduler: AutoClusterScheduler
    renderer: WatermarkRenderer
    reader: FakeBibReader
    faces: FakeFaceClient
    labels: FakeLabelClient
    clustering: FakeClusteringClient
    pipeline: PhotoPipeline
    uploads: UploadService


def build_harness(  # noqa: PLR0913
    *,
    balance: int = 100,
    credits_per_photo_lite: int = 1,
    credits_per_photo_premium: int = 2,
    reader: FakeBibReader | None = None,
    renderer_fail_calls: set[int] | None = None,
    max_concurrent: int = 4,
    clustering_delay: float = 30.0,
    retention_seconds: float = 300.0,
) -> Harness:
    user_id = uuid4()
    storage = InMemoryStorage()
    events = InMemoryEventRepository()
    event = events.add_event(user_id)
    photos = InMemoryPhotoRepository()
    credits = InMemoryCreditRepository(photos=photos, balances={user_id: balance})
    settings_repository = InMemorySettingsRepository()
    ledger = CreditLedgerService(
        credits,
        credits_per_photo_lite=credits_per_photo_lite,
        credits_per_photo_premium=credits_per_photo_premium,
    )
    hub = NotificationHub()
    tracker = ProgressTracker(hub, retention_seconds=retention_seconds)
    queue = ProcessingQueue(max_concurrent=max_concurrent)
    clustering = FakeClusteringClient()
    scheduler = AutoClusterScheduler(
        queue=queue, client=clustering, delay_seconds=clustering_delay
    )
    renderer = FlakyWatermarkRenderer(
        storage=storage,
        settings_repository=settings_repository,
        fail_calls=renderer_fail_calls or set(),
    )
    bib_reader = reader or FakeBibReader()
    faces = FakeFaceClient()
    labels = FakeLabelClient()
    pipeline = PhotoPipeline(
        photo_repository=photos,
        storage=storage,
        watermark_renderer=renderer,
        bib_readers=BibReaderRegistry(cloud=bib_reader),
        ledger=ledger,
        face_client=faces,
        label_client=labels,
    )
    uploads = UploadService(
        event_repository=events,
        photo_repository=photos,
        storage=storage,
        ledger=ledger,
        pipeline=pipeline,
        queue=queue,
        tracker=tracker,
        scheduler=scheduler,
    )
    return Harness(
        user_id=user_id,
        event=event,
        storage=storage,
        events=events,
        photos=photos,
        credits=credits,
        settings_repository=settings_repository,
        ledger=ledger,
        hub=hub,
        tracker=tracker,
        queue=queue,
        scheduler=scheduler,
        renderer=renderer,
        reader=bib_reader,
        faces=faces,
        labels=labels,
        clustering=clustering,
        pipeline=pipeline,
        uploads=uploads,
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(
        supabase_url="https://example.supabase.co",
        supabase_service_key="service-key",
        admin_token="admin-token",
        openai_api_key="openai-key",
        local_ocr_enabled=False,
        clustering_webhook_url="https://clustering.example.com",
    )


@pytest.fixture
def harness() -> Harness:
    return build_harness()


@pytest.fixture
def container(settings: Settings, harness: Harness) -> AppContainer:
    async def close_resources() -> None:
        harness.scheduler.cancel_all()

    return AppContainer(
        settings=settings,
        storage=harness.storage,
        event_repository=harness.events,
        settings_repository=harness.settings_repository,
        ledger=harness.ledger,
        hub=harness.hub,
        tracker=harness.tracker,
        queue=harness.queue,
        scheduler=harness.scheduler,
        watermark_renderer=harness.renderer,
        upload_service=harness.uploads,
        close_resources=close_resources,
    )
