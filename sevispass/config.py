"""
Configuration settings for the SevisPass verification pipeline.
"""
import os
import logging
from typing import Dict, Any

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# Try multiple .env file locations
# 1. project root
env_path1 = os.path.join(os.path.dirname(__file__), '..', '.env')
if os.path.exists(env_path1):
    load_dotenv(env_path1)
    logger.info(f"Loaded .env from: {env_path1}")

# 2. Current working directory
load_dotenv(override=False)  # Don't override if already loaded


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


# Decision policy thresholds (0-100 similarity scale)
POLICY_CONFIG: Dict[str, Any] = {
    "auto_approve_threshold": float(os.getenv("AUTO_APPROVE_THRESHOLD", "70")),
    "manual_review_threshold": float(os.getenv("MANUAL_REVIEW_THRESHOLD", "50")),
    "login_threshold": float(os.getenv("LOGIN_THRESHOLD", "60")),

    # Minimum similarity passed to the comparison call itself
    "compare_similarity_floor": float(os.getenv("COMPARE_SIMILARITY_FLOOR", "50")),
    "search_max_faces": int(os.getenv("SEARCH_MAX_FACES", "5")),
}

# Quality gate bars (Rekognition reports brightness/sharpness on 0-100)
QUALITY_CONFIG: Dict[str, Any] = {
    "min_brightness": float(os.getenv("MIN_BRIGHTNESS", "20")),
    "max_brightness": float(os.getenv("MAX_BRIGHTNESS", "80")),
    "min_sharpness": float(os.getenv("MIN_SHARPNESS", "20")),
    "min_face_confidence": float(os.getenv("MIN_FACE_CONFIDENCE", "90")),
}

# Uploaded image validation
IMAGE_CONFIG: Dict[str, Any] = {
    "max_image_width": int(os.getenv("MAX_IMAGE_WIDTH", "4000")),
    "max_image_height": int(os.getenv("MAX_IMAGE_HEIGHT", "4000")),
    "min_image_width": int(os.getenv("MIN_IMAGE_WIDTH", "100")),
    "min_image_height": int(os.getenv("MIN_IMAGE_HEIGHT", "100")),
    # Rekognition rejects inline images above 5 MB
    "max_image_bytes": int(os.getenv("MAX_IMAGE_BYTES", str(5 * 1024 * 1024))),
    "allowed_formats": {"JPEG", "PNG"},
}

# AWS managed services
AWS_CONFIG: Dict[str, Any] = {
    "region": os.getenv("AWS_REGION", "ap-southeast-2"),
    "face_collection_id": os.getenv("FACE_COLLECTION_ID", "sevispass-faces"),
    "s3_bucket": os.getenv("S3_BUCKET", ""),
    "s3_presign_expiry": int(os.getenv("S3_PRESIGN_EXP", "3600")),

    # Processing timeouts (seconds)
    "connect_timeout": int(os.getenv("AWS_CONNECT_TIMEOUT", "5")),
    "read_timeout": int(os.getenv("AWS_READ_TIMEOUT", "20")),
}

# One-time login tokens
TOKEN_CONFIG: Dict[str, Any] = {
    "ttl_seconds": int(os.getenv("LOGIN_TOKEN_TTL", "600")),
    "sweep_interval_seconds": int(os.getenv("TOKEN_SWEEP_INTERVAL", "300")),
    "enable_sweeper": _env_bool("ENABLE_TOKEN_SWEEPER", "true"),
}

# Validity period of issued credentials
CREDENTIAL_CONFIG: Dict[str, Any] = {
    "sevispass_validity_years": int(os.getenv("SEVISPASS_VALIDITY_YEARS", "10")),
    "citypass_validity_years": int(os.getenv("CITYPASS_VALIDITY_YEARS", "2")),
}

# Persistence
DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_TIMEOUT = int(os.getenv("DATABASE_TIMEOUT", "10"))

# Admin endpoints
ADMIN_API_KEY = (os.getenv("ADMIN_API_KEY") or "").strip()

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def get_config(key: str, default: Any = None) -> Any:
    """Get configuration value."""
    for section in (POLICY_CONFIG, QUALITY_CONFIG, IMAGE_CONFIG, AWS_CONFIG, TOKEN_CONFIG, CREDENTIAL_CONFIG):
        if key in section:
            return section[key]
    return default
