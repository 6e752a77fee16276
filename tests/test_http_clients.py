"""Tests for remote vision and HTTP adapters."""

import asyncio
import json
from types import SimpleNamespace
from uuid import uuid4

import httpx
import pytest

from race_photo_pipeline.adapters.clustering_client import HttpxClusteringClient
from race_photo_pipeline.adapters.easyocr_bib_reader import EasyOcrBibReader
from race_photo_pipeline.adapters.openai_bib_reader import OpenAIBibReader
from race_photo_pipeline.adapters.rekognition_client import (
    RekognitionBibReader,
    RekognitionFaceIndex,
    RekognitionLabelClient,
)
from race_photo_pipeline.domain.photos import BoundingBox, FaceMatch
from tests.conftest import make_jpeg


class _FakeResponses:
    def __init__(self, output: dict[str, object]) -> None:
        self.output = output
        self.last_payload: dict[str, object] | None = None

    async def create(self, **kwargs):  # type: ignore[no-untyped-def]
        self.last_payload = kwargs
        return type("Resp", (), {"output_text": json.dumps(self.output)})()


class _FakeOpenAI:
    def __init__(self, output: dict[str, object]) -> None:
        self.responses = _FakeResponses(output)


class _ResourceNotFoundError(Exception):
    pass


class _InvalidParameterError(Exception):
    pass


class _FakeRekognition:
    exceptions = SimpleNamespace(
        ResourceNotFoundException=_ResourceNotFoundError,
        InvalidParameterException=_InvalidParameterError,
    )

    def __init__(self, collections: set[str] | None = None) -> None:
        self.collections = collections if collections is not None else set()
        self.face_in_image = True
        self.calls: list[tuple[str, dict[str, object]]] = []

    def detect_text(self, **kwargs):  # type: ignore[no-untyped-def]
        self.calls.append(("detect_text", kwargs))
        return {
            "TextDetections": [
                {"Type": "LINE", "DetectedText": "1234", "Confidence": 96.0},
                {"Type": "LINE", "DetectedText": "BERLIN 2025", "Confidence": 99.0},
                {"Type": "WORD", "DetectedText": "1234", "Confidence": 96.0},
                {"Type": "LINE", "DetectedText": "88", "Confidence": 80.0},
            ]
        }

    def describe_collection(self, **kwargs):  # type: ignore[no-untyped-def]
        self.calls.append(("describe_collection", kwargs))
        if kwargs["CollectionId"] not in self.collections:
            raise _ResourceNotFoundError(kwargs["CollectionId"])
        return {}

    def create_collection(self, **kwargs):  # type: ignore[no-untyped-def]
        self.calls.append(("create_collection", kwargs))
        self.collections.add(kwargs["CollectionId"])
        return {}

    def index_faces(self, **kwargs):  # type: ignore[no-untyped-def]
        self.calls.append(("index_faces", kwargs))
        return {
            "FaceRecords": [
                {
                    "Face": {
                        "FaceId": "face-1",
                        "Confidence": 99.5,
                        "BoundingBox": {"Left": 0.1, "Top": 0.2, "Width": 0.3, "Height": 0.4},
                    }
                }
            ]
        }

    def search_faces_by_image(self, **kwargs):  # type: ignore[no-untyped-def]
        self.calls.append(("search_faces_by_image", kwargs))
        if not self.face_in_image:
            raise _InvalidParameterError("There are no faces in the image")
        return {
            "FaceMatches": [
                {
                    "Similarity": 97.5,
                    "Face": {"FaceId": "face-9", "ExternalImageId": "event:other"},
                }
            ]
        }

    def detect_labels(self, **kwargs):  # type: ignore[no-untyped-def]
        self.calls.append(("detect_labels", kwargs))
        return {"Labels": [{"Name": "Person", "Confidence": 97.2}]}


class _FakeEasyOcr:
    def __init__(self) -> None:
        self.kwargs: dict[str, object] | None = None

    def readtext(self, pixels, **kwargs):  # type: ignore[no-untyped-def]
        self.kwargs = kwargs
        assert pixels.shape[2] == 3
        return [
            ([[0, 0], [1, 0], [1, 1], [0, 1]], "512", 0.9),
            ([[0, 0], [1, 0], [1, 1], [0, 1]], "2024", 0.99),
        ]


def test_openai_bib_reader_filters_output() -> None:
    fake = _FakeOpenAI({"numbers": ["42", "2025", "abc 17"], "confidence": 87})
    reader = OpenAIBibReader(client=fake, model="gpt-5.2")  # type: ignore[arg-type]

    detection = asyncio.run(reader.detect_bibs(b"jpeg-bytes"))

    assert detection.numbers == ["17", "42"]
    assert detection.confidence == 87.0
    assert detection.provider == "openai"
    payload = fake.responses.last_payload
    assert payload is not None
    assert payload["store"] is False
    assert payload["text"]["format"]["type"] == "json_schema"


def test_openai_bib_reader_uses_start_list() -> None:
    fake = _FakeOpenAI({"numbers": ["42", "43"], "confidence": 70})
    reader = OpenAIBibReader(client=fake, model="gpt-5.2")  # type: ignore[arg-type]

    detection = asyncio.run(reader.detect_bibs(b"jpeg-bytes", frozenset({"43"})))

    assert detection.numbers == ["43"]


def test_openai_bib_reader_no_numbers_means_no_confidence() -> None:
    fake = _FakeOpenAI({"numbers": [], "confidence": 55})
    reader = OpenAIBibReader(client=fake, model="gpt-5.2")  # type: ignore[arg-type]

    detection = asyncio.run(reader.detect_bibs(b"jpeg-bytes"))

    assert detection.numbers == []
    assert detection.confidence == 0.0


def test_rekognition_bib_reader_reads_lines() -> None:
    reader = RekognitionBibReader(client=_FakeRekognition())

    detection = asyncio.run(reader.detect_bibs(b"jpeg-bytes"))

    assert detection.numbers == ["88", "1234"]
    assert detection.confidence == pytest.approx(88.0)
    assert detection.provider == "aws-rekognition"


def test_rekognition_face_index_creates_collection_once() -> None:
    client = _FakeRekognition()
    index = RekognitionFaceIndex(client=client, collection_id="race-faces")

    async def scenario():  # type: ignore[no-untyped-def]
        first = await index.index_faces(b"jpeg-bytes", "event:photo")
        await index.index_faces(b"jpeg-bytes", "event:photo")
        return first

    faces = asyncio.run(scenario())

    names = [name for name, _kwargs in client.calls]
    assert names == ["describe_collection", "create_collection", "index_faces", "index_faces"]
    assert client.calls[2][1]["ExternalImageId"] == "event:photo"
    assert client.calls[2][1]["MaxFaces"] == 10
    assert faces[0].face_id == "face-1"
    assert faces[0].bounding_box == BoundingBox(0.1, 0.2, 0.3, 0.4)


def test_rekognition_label_client() -> None:
    client = _FakeRekognition()
    labels = RekognitionLabelClient(client=client)

    detected = asyncio.run(labels.detect_labels(b"jpeg-bytes", 15, 60.0))

    assert detected[0].name == "Person"
    assert client.calls[0][1]["MaxLabels"] == 15
    assert client.calls[0][1]["MinConfidence"] == 60.0


def test_easyocr_bib_reader_drops_years() -> None:
    fake = _FakeEasyOcr()
    reader = EasyOcrBibReader(reader=fake)

    detection = asyncio.run(reader.detect_bibs(make_jpeg()))

    assert detection.numbers == ["512"]
    assert detection.confidence == pytest.approx(90.0)
    assert detection.provider == "easyocr"
    assert fake.kwargs == {"allowlist": "0123456789", "detail": 1}


def test_clustering_client_posts_event() -> None:
    seen: list[tuple[str, dict[str, object]]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.url.path, json.loads(request.content.decode())))
        if request.url.path.endswith("/needs-clustering"):
            return httpx.Response(200, json={"needs_clustering": True})
        return httpx.Response(200, json={"clusters": 3})

    transport = httpx.MockTransport(handler)
    async_client = httpx.AsyncClient(transport=transport)
    client = HttpxClusteringClient(base_url="https://faces.test", http_client=async_client)
    event_id = uuid4()

    needs = asyncio.run(client.needs_clustering(event_id))
    asyncio.run(client.cluster(event_id))

    assert needs is True
    assert seen == [
        ("/needs-clustering", {"event_id": str(event_id)}),
        ("/cluster", {"event_id": str(event_id)}),
    ]


def test_clustering_client_raises_on_error_status() -> None:
    transport = httpx.MockTransport(lambda _request: httpx.Response(500))
    async_client = httpx.AsyncClient(transport=transport)
    client = HttpxClusteringClient(base_url="https://faces.test", http_client=async_client)

    with pytest.raises(httpx.HTTPStatusError):
        asyncio.run(client.cluster(uuid4()))


def test_rekognition_face_search_maps_matches() -> None:
    client = _FakeRekognition(collections={"race-faces"})
    index = RekognitionFaceIndex(client=client, collection_id="race-faces")

    matches = asyncio.run(index.search_faces(b"jpeg-bytes", 10, 85.0))

    assert matches == [FaceMatch("face-9", "event:other", 97.5)]
    name, kwargs = client.calls[-1]
    assert name == "search_faces_by_image"
    assert kwargs["MaxFaces"] == 10
    assert kwargs["FaceMatchThreshold"] == 85.0


def test_rekognition_face_search_without_face_returns_nothing() -> None:
    client = _FakeRekognition(collections={"race-faces"})
    client.face_in_image = False
    index = RekognitionFaceIndex(client=client, collection_id="race-faces")

    assert asyncio.run(index.search_faces(b"jpeg-bytes", 10, 85.0)) == []
