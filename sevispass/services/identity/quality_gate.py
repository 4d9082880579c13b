"""
Quality Gate for face images.

Every compare, search or enrollment call is preceded by this check so that
unusable captures are turned away before a paid external call is made.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from sevispass.config import QUALITY_CONFIG
from sevispass.services.identity.models import QualityReport

logger = logging.getLogger(__name__)

NO_FACE = "No face detected in image"
MULTIPLE_FACES = "Multiple faces detected. Please ensure only one person is in the image"
POOR_QUALITY = "Image quality is too poor, check lighting"


@dataclass(frozen=True)
class QualityBars:
    min_brightness: float = 20.0
    max_brightness: float = 80.0
    min_sharpness: float = 20.0
    min_face_confidence: float = 90.0

    @classmethod
    def from_config(cls) -> "QualityBars":
        return cls(
            min_brightness=QUALITY_CONFIG["min_brightness"],
            max_brightness=QUALITY_CONFIG["max_brightness"],
            min_sharpness=QUALITY_CONFIG["min_sharpness"],
            min_face_confidence=QUALITY_CONFIG["min_face_confidence"],
        )


class QualityGate:
    """
    Checks that an image holds exactly one face of usable quality.

    Checks run in order: face present, single face, then brightness,
    sharpness and detector confidence together. The last three share one
    generic failure reason.
    """

    def __init__(self, face_client, bars: Optional[QualityBars] = None):
        self.face_client = face_client
        self.bars = bars or QualityBars.from_config()

    def check(self, image_bytes: bytes, label: str = "image") -> QualityReport:
        """
        Run the gate on raw image bytes.

        Args:
            image_bytes: Encoded image (JPEG/PNG)
            label: Name used in log lines ("selfie", "document", ...)

        Returns:
            QualityReport; passed=False carries a display reason

        Raises:
            ExternalServiceError: detection service unavailable
        """
        faces = self.face_client.detect_faces(image_bytes)

        if not faces:
            logger.warning(f"Quality gate failed for {label}: no face")
            return QualityReport(passed=False, reason=NO_FACE, face_count=0)

        if len(faces) > 1:
            logger.warning(f"Quality gate failed for {label}: {len(faces)} faces")
            return QualityReport(passed=False, reason=MULTIPLE_FACES, face_count=len(faces))

        face = faces[0]
        bars = self.bars
        good = (
            bars.min_brightness <= face.brightness <= bars.max_brightness
            and face.sharpness >= bars.min_sharpness
            and face.confidence >= bars.min_face_confidence
        )

        report = QualityReport(
            passed=good,
            reason=None if good else POOR_QUALITY,
            face_count=1,
            brightness=face.brightness,
            sharpness=face.sharpness,
            confidence=face.confidence,
        )
        if not good:
            logger.warning(
                f"Quality gate failed for {label}: brightness={face.brightness:.1f}, "
                f"sharpness={face.sharpness:.1f}, confidence={face.confidence:.1f}"
            )
        return report
