"""
Shared fixtures: a scripted face client, in-memory stores and small PNG captures.
"""
import base64
import io
import os
import sys
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pytest
from PIL import Image

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

os.environ.setdefault("ENABLE_TOKEN_SWEEPER", "false")

from sevispass.services.aws.base_face_client import BaseFaceClient  # noqa: E402
from sevispass.services.identity.errors import ExternalServiceError, ServiceTimeoutError  # noqa: E402
from sevispass.services.identity.models import FaceDetection, SearchMatch  # noqa: E402
from sevispass.services.identity.pipeline import IdentityVerificationPipeline  # noqa: E402
from sevispass.services.identity.policy import PolicyThresholds  # noqa: E402
from sevispass.services.identity.quality_gate import QualityBars  # noqa: E402
from sevispass.services.storage.memory import (  # noqa: E402
    InMemoryImageStorage,
    InMemoryRecordStore,
    InMemoryTokenStore,
)

GOOD_FACE = FaceDetection(confidence=99.5, brightness=55.0, sharpness=60.0)
DARK_FACE = FaceDetection(confidence=99.5, brightness=5.0, sharpness=60.0)

CLAIMED = {
    "full_name": "Mary Kila",
    "date_of_birth": "1990-04-12",
    "document_number": "NID12345678",
}


def make_png(color: Tuple[int, int, int], size: Tuple[int, int] = (120, 120)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


def to_base64(image_bytes: bytes) -> str:
    return base64.b64encode(image_bytes).decode("ascii")


class FakeFaceClient(BaseFaceClient):
    """
    Scripted face service.

    Detections are looked up by image bytes (default: one good face).
    Compare returns the scripted similarity; search returns enrolled faces
    that were scripted to match the submitted image.
    """

    def __init__(self):
        self.detections: Dict[bytes, List[FaceDetection]] = {}
        self.similarity: Optional[float] = 90.0
        self.search_results: Dict[bytes, List[Tuple[str, float]]] = {}
        self.search_ignores_threshold = False
        self.indexable = True
        self.text_lines: List[str] = []
        self.fail_operations = set()
        self.timeout_operations = set()
        self.indexed: Dict[str, str] = {}
        self.deleted: List[str] = []
        self.collections = set()
        self.calls: List[str] = []

    def _call(self, operation: str):
        self.calls.append(operation)
        if operation in self.timeout_operations:
            raise ServiceTimeoutError("rekognition", operation)
        if operation in self.fail_operations:
            raise ExternalServiceError("rekognition", operation)

    def detect_faces(self, image_bytes):
        self._call("detect_faces")
        return list(self.detections.get(image_bytes, [GOOD_FACE]))

    def compare_faces(self, source_bytes, target_bytes, similarity_threshold):
        self._call("compare_faces")
        if self.similarity is None or self.similarity < similarity_threshold:
            return []
        return [(self.similarity, 99.0)]

    def search_faces(self, image_bytes, collection_id, threshold, max_faces):
        self._call("search_faces")
        scripted = self.search_results.get(image_bytes, [])
        return [
            SearchMatch(external_id=ext_id, similarity=score, face_id=f"face-{ext_id}")
            for ext_id, score in scripted
            if self.search_ignores_threshold or score >= threshold
        ][:max_faces]

    def index_face(self, image_bytes, external_id, collection_id):
        self._call("index_face")
        if not self.indexable:
            return None
        face_id = f"face-{len(self.calls)}-{external_id}"
        self.indexed[face_id] = external_id
        return face_id

    def ensure_collection(self, collection_id):
        self._call("ensure_collection")
        if collection_id in self.collections:
            return False
        self.collections.add(collection_id)
        return True

    def delete_faces(self, collection_id, face_ids):
        self._call("delete_faces")
        for face_id in face_ids:
            self.indexed.pop(face_id, None)
            self.deleted.append(face_id)

    def detect_text(self, image_bytes):
        self._call("detect_text")
        return list(self.text_lines)


@pytest.fixture
def face_client():
    return FakeFaceClient()


@pytest.fixture
def record_store():
    return InMemoryRecordStore()


@pytest.fixture
def token_store():
    return InMemoryTokenStore()


@pytest.fixture
def image_storage():
    return InMemoryImageStorage()


@pytest.fixture
def pipeline(face_client, record_store, token_store, image_storage):
    return IdentityVerificationPipeline(
        face_client=face_client,
        record_store=record_store,
        token_store=token_store,
        image_storage=image_storage,
        thresholds=PolicyThresholds(auto_approve=70, manual_review=50, login=60, compare_floor=50),
        quality_bars=QualityBars(),
        collection_id="test-faces",
    )


@pytest.fixture
def document_png():
    return make_png((200, 180, 160))


@pytest.fixture
def selfie_png():
    return make_png((90, 120, 150))


@pytest.fixture
def register(pipeline, document_png, selfie_png):
    """Register a user with scripted similarity and return the result."""

    def _register(user_id="user-1", similarity=90.0, claimed=None):
        pipeline.face_client.similarity = similarity
        return pipeline.submit_application(
            user_id=user_id,
            document_image=document_png,
            selfie_image=selfie_png,
            claimed_fields=dict(claimed or CLAIMED),
            document_type="nid",
        )

    return _register


@pytest.fixture
def client(pipeline):
    from fastapi.testclient import TestClient

    from sevispass.main import app
    from sevispass.services.identity.pipeline import get_pipeline

    app.dependency_overrides[get_pipeline] = lambda: pipeline
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
