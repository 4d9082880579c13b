"""
Storage backends.
"""
import logging

from sevispass.config import AWS_CONFIG, DATABASE_URL
from sevispass.services.storage.base import ImageStorage, RecordStore, TokenStore
from sevispass.services.storage.memory import (
    InMemoryImageStorage,
    InMemoryRecordStore,
    InMemoryTokenStore,
)

logger = logging.getLogger(__name__)


def get_record_store() -> RecordStore:
    if DATABASE_URL:
        from sevispass.services.storage.postgres import PostgresRecordStore
        store = PostgresRecordStore()
        store.ensure_schema()
        return store
    logger.warning("DATABASE_URL not set, using in-memory record store")
    return InMemoryRecordStore()


def get_token_store() -> TokenStore:
    if DATABASE_URL:
        from sevispass.services.storage.postgres import PostgresTokenStore
        return PostgresTokenStore()
    return InMemoryTokenStore()


def get_image_storage() -> ImageStorage:
    if AWS_CONFIG["s3_bucket"]:
        from sevispass.services.aws.s3_storage import S3ImageStorage
        return S3ImageStorage()
    logger.warning("S3_BUCKET not set, keeping images in memory")
    return InMemoryImageStorage()


__all__ = [
    "RecordStore",
    "TokenStore",
    "ImageStorage",
    "InMemoryRecordStore",
    "InMemoryTokenStore",
    "InMemoryImageStorage",
    "get_record_store",
    "get_token_store",
    "get_image_storage",
]
