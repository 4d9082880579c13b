"""
In-process storage backends.

Used when DATABASE_URL / S3_BUCKET are not configured, and by the tests.
Safe for concurrent requests within one process only.
"""
import logging
import threading
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sevispass.services.identity.errors import DuplicateRecordError, IdentifierTakenError
from sevispass.services.identity.models import (
    Application,
    ApplicationStatus,
    CredentialType,
    Holder,
    HolderStatus,
    LoginGrant,
)
from sevispass.services.storage.base import ImageStorage, RecordStore, TokenStore

logger = logging.getLogger(__name__)


class InMemoryRecordStore(RecordStore):

    def __init__(self):
        self._lock = threading.Lock()
        self._applications: Dict[str, Application] = {}
        self._holders: Dict[str, Holder] = {}

    def put_application(self, application: Application, expected_status: Optional[ApplicationStatus] = None) -> bool:
        with self._lock:
            current = self._applications.get(application.application_id)
            if expected_status is None:
                if current is not None:
                    return False
            elif current is None or current.status != expected_status:
                return False
            if application.status != ApplicationStatus.REJECTED and self._has_open_application(application):
                return False
            self._applications[application.application_id] = replace(application)
            return True

    def _has_open_application(self, application: Application) -> bool:
        # One non-rejected application per user and credential type
        return any(
            other.application_id != application.application_id
            and other.user_id == application.user_id
            and other.credential_type == application.credential_type
            and other.status != ApplicationStatus.REJECTED
            for other in self._applications.values()
        )

    def update_application(
        self,
        application_id: str,
        expected_status: ApplicationStatus,
        changes: Dict[str, Any],
    ) -> Optional[Application]:
        with self._lock:
            current = self._applications.get(application_id)
            if current is None or current.status != expected_status:
                return None
            updated = replace(current, **changes)
            self._applications[application_id] = updated
            return replace(updated)

    def get_application(self, application_id: str) -> Optional[Application]:
        with self._lock:
            app = self._applications.get(application_id)
            return replace(app) if app else None

    def latest_application(self, user_id: str, credential_type: CredentialType) -> Optional[Application]:
        with self._lock:
            candidates = [
                a for a in self._applications.values()
                if a.user_id == user_id and a.credential_type == credential_type
            ]
        if not candidates:
            return None
        return replace(max(candidates, key=lambda a: a.submitted_at))

    def list_applications(
        self,
        statuses: Optional[Iterable[ApplicationStatus]] = None,
        credential_type: Optional[CredentialType] = None,
    ) -> List[Application]:
        wanted = set(statuses) if statuses else None
        with self._lock:
            apps = [
                replace(a) for a in self._applications.values()
                if (wanted is None or a.status in wanted)
                and (credential_type is None or a.credential_type == credential_type)
            ]
        return sorted(apps, key=lambda a: a.submitted_at)

    def create_holder(self, holder: Holder) -> Holder:
        with self._lock:
            existing = self._holders.get(holder.issued_id)
            if existing is not None:
                if existing.application_id == holder.application_id:
                    return replace(existing)
                raise IdentifierTakenError(holder.issued_id)
            for other in self._holders.values():
                if (
                    other.user_id == holder.user_id
                    and other.credential_type == holder.credential_type
                    and other.status == HolderStatus.ACTIVE
                ):
                    raise DuplicateRecordError(
                        f"User {holder.user_id} already holds an active {holder.credential_type.value}"
                    )
            self._holders[holder.issued_id] = replace(holder)
            return replace(holder)

    def get_holder(self, issued_id: str) -> Optional[Holder]:
        with self._lock:
            holder = self._holders.get(issued_id)
            return replace(holder) if holder else None

    def find_active_holder(self, user_id: str, credential_type: CredentialType) -> Optional[Holder]:
        with self._lock:
            for holder in self._holders.values():
                if (
                    holder.user_id == user_id
                    and holder.credential_type == credential_type
                    and holder.status == HolderStatus.ACTIVE
                ):
                    return replace(holder)
        return None

    def update_holder_status(self, issued_id: str, status: HolderStatus) -> Optional[Holder]:
        with self._lock:
            holder = self._holders.get(issued_id)
            if holder is None:
                return None
            updated = replace(holder, status=status)
            self._holders[issued_id] = updated
            return replace(updated)


class InMemoryTokenStore(TokenStore):

    def __init__(self):
        self._lock = threading.Lock()
        self._grants: Dict[str, LoginGrant] = {}

    def put(self, key: str, grant: LoginGrant) -> None:
        with self._lock:
            self._grants[key] = grant

    def take(self, key: str) -> Optional[LoginGrant]:
        with self._lock:
            return self._grants.pop(key, None)

    def purge_expired(self, now: datetime) -> int:
        with self._lock:
            expired = [k for k, g in self._grants.items() if g.expires_at <= now]
            for key in expired:
                del self._grants[key]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._grants)


class InMemoryImageStorage(ImageStorage):

    def __init__(self):
        self._lock = threading.Lock()
        self._objects: Dict[str, bytes] = {}

    def put_image(self, key: str, data: bytes, content_type: str = "image/jpeg") -> str:
        with self._lock:
            self._objects[key] = data
        return key

    def get_image(self, key: str) -> bytes:
        with self._lock:
            if key not in self._objects:
                raise KeyError(key)
            return self._objects[key]

    def presigned_url(self, key: str, expires_in: Optional[int] = None) -> Optional[str]:
        with self._lock:
            if key not in self._objects:
                return None
        return f"memory://{key}"
