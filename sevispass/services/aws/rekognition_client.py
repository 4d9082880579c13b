"""
AWS Rekognition face client.
Wraps DetectFaces, CompareFaces, SearchFacesByImage, IndexFaces and DetectText.
"""
import logging
from typing import Callable, Dict, List, Optional, Tuple

import boto3
from botocore.config import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectTimeoutError,
    ReadTimeoutError,
)

from sevispass.config import AWS_CONFIG
from sevispass.services.aws.base_face_client import BaseFaceClient
from sevispass.services.identity.errors import (
    ExternalServiceError,
    InputValidationError,
    ServiceTimeoutError,
)
from sevispass.services.identity.models import FaceDetection, SearchMatch

logger = logging.getLogger(__name__)

SERVICE = "rekognition"

# Rekognition answers these when the submitted image holds no usable face
NO_FACE_ERRORS = {"InvalidParameterException"}
BAD_IMAGE_ERRORS = {"ImageTooLargeException", "InvalidImageFormatException"}


def client_config() -> Config:
    """Bounded timeouts, no SDK retries (retry policy belongs to the caller)."""
    return Config(
        region_name=AWS_CONFIG["region"],
        connect_timeout=AWS_CONFIG["connect_timeout"],
        read_timeout=AWS_CONFIG["read_timeout"],
        retries={"max_attempts": 1, "mode": "standard"},
    )


def call_aws(service: str, operation: str, fn: Callable, **kwargs) -> Dict:
    """
    Invoke a boto3 operation and translate transport failures.

    Raises:
        ServiceTimeoutError: connect or read timeout
        ExternalServiceError: any other botocore / service failure
        ClientError: re-raised for the caller to inspect when the
            error code is one the caller handles itself
    """
    try:
        return fn(**kwargs)
    except (ConnectTimeoutError, ReadTimeoutError) as e:
        logger.error(f"{service} {operation} timed out: {e}")
        raise ServiceTimeoutError(service, operation) from e
    except ClientError:
        raise
    except BotoCoreError as e:
        logger.error(f"{service} {operation} failed: {e}", exc_info=True)
        raise ExternalServiceError(service, operation, str(e)) from e


class RekognitionFaceClient(BaseFaceClient):
    """Face service backed by Amazon Rekognition."""

    def __init__(self, client=None):
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = boto3.client("rekognition", config=client_config())
        return self._client

    def _send(self, operation: str, tolerate: frozenset = frozenset(), **kwargs) -> Optional[Dict]:
        """Returns None when the service answered with a tolerated error code."""
        try:
            return call_aws(SERVICE, operation, getattr(self.client, operation), **kwargs)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            if code in tolerate:
                logger.info(f"rekognition {operation} returned {code}")
                return None
            if code in BAD_IMAGE_ERRORS:
                raise InputValidationError("image", "Image is too large or not a supported format") from e
            logger.error(f"rekognition {operation} failed with {code}: {e}")
            raise ExternalServiceError(SERVICE, operation, code or str(e)) from e

    def detect_faces(self, image_bytes: bytes) -> List[FaceDetection]:
        response = self._send("detect_faces", Image={"Bytes": image_bytes}, Attributes=["ALL"])
        faces = []
        for detail in response.get("FaceDetails", []):
            quality = detail.get("Quality", {})
            faces.append(
                FaceDetection(
                    confidence=float(detail.get("Confidence", 0.0)),
                    brightness=float(quality.get("Brightness", 0.0)),
                    sharpness=float(quality.get("Sharpness", 0.0)),
                )
            )
        return faces

    def compare_faces(
        self,
        source_bytes: bytes,
        target_bytes: bytes,
        similarity_threshold: float,
    ) -> List[Tuple[float, float]]:
        response = self._send(
            "compare_faces",
            tolerate=frozenset(NO_FACE_ERRORS),
            SourceImage={"Bytes": source_bytes},
            TargetImage={"Bytes": target_bytes},
            SimilarityThreshold=similarity_threshold,
        )
        if response is None:
            return []
        matches = [
            (float(m.get("Similarity", 0.0)), float(m.get("Face", {}).get("Confidence", 0.0)))
            for m in response.get("FaceMatches", [])
        ]
        return sorted(matches, key=lambda m: m[0], reverse=True)

    def search_faces(
        self,
        image_bytes: bytes,
        collection_id: str,
        threshold: float,
        max_faces: int,
    ) -> List[SearchMatch]:
        response = self._send(
            "search_faces_by_image",
            tolerate=frozenset(NO_FACE_ERRORS),
            CollectionId=collection_id,
            Image={"Bytes": image_bytes},
            FaceMatchThreshold=threshold,
            MaxFaces=max_faces,
        )
        if response is None:
            return []
        matches = []
        for m in response.get("FaceMatches", []):
            face = m.get("Face", {})
            external_id = face.get("ExternalImageId")
            if not external_id:
                continue
            matches.append(
                SearchMatch(
                    external_id=external_id,
                    similarity=float(m.get("Similarity", 0.0)),
                    face_id=face.get("FaceId"),
                )
            )
        return sorted(matches, key=lambda m: m.similarity, reverse=True)

    def index_face(self, image_bytes: bytes, external_id: str, collection_id: str) -> Optional[str]:
        response = self._send(
            "index_faces",
            CollectionId=collection_id,
            Image={"Bytes": image_bytes},
            ExternalImageId=external_id,
            MaxFaces=1,
            QualityFilter="AUTO",
            DetectionAttributes=["DEFAULT"],
        )
        records = response.get("FaceRecords", [])
        if not records:
            return None
        return records[0].get("Face", {}).get("FaceId")

    def ensure_collection(self, collection_id: str) -> bool:
        existing: List[str] = []
        kwargs: Dict = {}
        while True:
            page = self._send("list_collections", **kwargs)
            existing.extend(page.get("CollectionIds", []))
            if not page.get("NextToken"):
                break
            kwargs = {"NextToken": page["NextToken"]}

        if collection_id in existing:
            logger.info(f"Face collection {collection_id} already exists")
            return False
        self._send("create_collection", CollectionId=collection_id)
        logger.info(f"Face collection {collection_id} created")
        return True

    def delete_faces(self, collection_id: str, face_ids: List[str]) -> None:
        if not face_ids:
            return
        self._send("delete_faces", CollectionId=collection_id, FaceIds=face_ids)

    def detect_text(self, image_bytes: bytes) -> List[str]:
        response = self._send("detect_text", Image={"Bytes": image_bytes})
        lines = [
            d for d in response.get("TextDetections", [])
            if d.get("Type") == "LINE" and d.get("DetectedText")
        ]
        # Top-to-bottom reading order
        lines.sort(key=lambda d: d.get("Geometry", {}).get("BoundingBox", {}).get("Top", 0.0))
        return [d["DetectedText"] for d in lines]
