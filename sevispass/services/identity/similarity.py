"""
Similarity Scorer
Normalizes compare / search / enroll calls against the face service.
"""
import logging
from dataclasses import dataclass
from typing import List, Optional

from sevispass.config import AWS_CONFIG, POLICY_CONFIG
from sevispass.services.aws.base_face_client import BaseFaceClient
from sevispass.services.identity.errors import EnrollmentError
from sevispass.services.identity.models import SearchMatch, VerificationResult

logger = logging.getLogger(__name__)

NO_FACE_MATCH = "No face match found"
NO_MATCHING_FACE = "No matching face found"
NO_INDEXABLE_FACE = "No suitable face found for indexing"


@dataclass
class SearchResult:
    matches: List[SearchMatch]
    error: Optional[str] = None

    @property
    def best_match(self) -> Optional[SearchMatch]:
        return self.matches[0] if self.matches else None


class SimilarityScorer:
    """
    Thin layer over BaseFaceClient.

    External failures are not caught here: ExternalServiceError and
    ServiceTimeoutError reach the caller unchanged.
    """

    def __init__(
        self,
        face_client: BaseFaceClient,
        collection_id: Optional[str] = None,
        compare_floor: Optional[float] = None,
        max_faces: Optional[int] = None,
    ):
        self.face_client = face_client
        self.collection_id = collection_id or AWS_CONFIG["face_collection_id"]
        self.compare_floor = (
            compare_floor if compare_floor is not None else POLICY_CONFIG["compare_similarity_floor"]
        )
        self.max_faces = max_faces or POLICY_CONFIG["search_max_faces"]

    def compare(self, source_bytes: bytes, target_bytes: bytes) -> VerificationResult:
        """
        Compare a captured face against one reference image.

        Returns:
            VerificationResult; matched=False with an error when the
            service found no face above the comparison floor
        """
        matches = self.face_client.compare_faces(source_bytes, target_bytes, self.compare_floor)
        if not matches:
            logger.info("Face comparison returned no match above floor")
            return VerificationResult(similarity=0.0, matched=False, error=NO_FACE_MATCH)

        similarity, face_confidence = matches[0]
        return VerificationResult(
            similarity=similarity,
            matched=similarity >= self.compare_floor,
            face_confidence=face_confidence,
        )

    def search(self, image_bytes: bytes, match_threshold: float, collection_id: Optional[str] = None) -> SearchResult:
        """Search the enrollment collection; best match first."""
        matches = self.face_client.search_faces(
            image_bytes,
            collection_id or self.collection_id,
            match_threshold,
            self.max_faces,
        )
        if not matches:
            return SearchResult(matches=[], error=NO_MATCHING_FACE)
        ranked = sorted(matches, key=lambda m: m.similarity, reverse=True)
        return SearchResult(matches=ranked)

    def enroll(self, image_bytes: bytes, external_id: str, collection_id: Optional[str] = None) -> str:
        """
        Index a face under external_id.

        Returns:
            Face reference for the enrolled face

        Raises:
            EnrollmentError: no indexable face even though the gate passed
        """
        face_id = self.face_client.index_face(image_bytes, external_id, collection_id or self.collection_id)
        if not face_id:
            logger.warning(f"Enrollment found no indexable face for {external_id}")
            raise EnrollmentError(NO_INDEXABLE_FACE)
        logger.info(f"Enrolled face {face_id} for {external_id}")
        return face_id

    def remove(self, face_id: str, collection_id: Optional[str] = None) -> None:
        self.face_client.delete_faces(collection_id or self.collection_id, [face_id])

    def ensure_collection(self) -> bool:
        return self.face_client.ensure_collection(self.collection_id)
