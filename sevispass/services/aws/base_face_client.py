"""
Base Face Client Interface
Abstract contract for the managed face-recognition service.
"""
from abc import ABC, abstractmethod
from typing import List, Optional, Tuple

from sevispass.services.identity.models import FaceDetection, SearchMatch


class BaseFaceClient(ABC):
    """
    Abstract base class for face services.
    Every method is a single round trip; implementations must not retry.
    Transport failures raise ExternalServiceError (ServiceTimeoutError on timeout).
    """

    @abstractmethod
    def detect_faces(self, image_bytes: bytes) -> List[FaceDetection]:
        """Detect all faces with quality attributes."""
        pass

    @abstractmethod
    def compare_faces(
        self,
        source_bytes: bytes,
        target_bytes: bytes,
        similarity_threshold: float,
    ) -> List[Tuple[float, float]]:
        """
        Compare the largest face in source with faces in target.

        Returns:
            List of (similarity, face_confidence) above the threshold,
            best first. Empty when nothing matched.
        """
        pass

    @abstractmethod
    def search_faces(
        self,
        image_bytes: bytes,
        collection_id: str,
        threshold: float,
        max_faces: int,
    ) -> List[SearchMatch]:
        """Search a collection by image. Ranked best first."""
        pass

    @abstractmethod
    def index_face(self, image_bytes: bytes, external_id: str, collection_id: str) -> Optional[str]:
        """
        Index one face under external_id.

        Returns:
            Face reference, or None when no indexable face was found
        """
        pass

    @abstractmethod
    def ensure_collection(self, collection_id: str) -> bool:
        """Create the collection if missing. Returns True if it was created."""
        pass

    @abstractmethod
    def delete_faces(self, collection_id: str, face_ids: List[str]) -> None:
        pass

    @abstractmethod
    def detect_text(self, image_bytes: bytes) -> List[str]:
        """Lines of text found in the image, top to bottom."""
        pass
