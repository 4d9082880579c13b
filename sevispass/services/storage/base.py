"""
Storage interfaces shared by the in-memory and Postgres backends.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sevispass.services.identity.models import (
    Application,
    ApplicationStatus,
    CredentialType,
    Holder,
    HolderStatus,
    LoginGrant,
)


class RecordStore(ABC):
    """
    Durable Application / Holder records.

    Status changes go through conditional writes so that two concurrent
    requests can never both move the same application.
    """

    @abstractmethod
    def put_application(self, application: Application, expected_status: Optional[ApplicationStatus] = None) -> bool:
        """
        Write a whole application record.

        Args:
            application: Record to write
            expected_status: None to create (must not exist yet); otherwise
                the stored record must currently have this status

        A user may hold at most one non-rejected application per credential
        type; a write that would break this is refused atomically.

        Returns:
            True if written, False on a conflict
        """
        pass

    @abstractmethod
    def update_application(
        self,
        application_id: str,
        expected_status: ApplicationStatus,
        changes: Dict[str, Any],
    ) -> Optional[Application]:
        """
        Atomically apply changes if the stored status equals expected_status.

        Returns:
            Updated application, or None when missing or the status moved
        """
        pass

    @abstractmethod
    def get_application(self, application_id: str) -> Optional[Application]:
        pass

    @abstractmethod
    def latest_application(self, user_id: str, credential_type: CredentialType) -> Optional[Application]:
        pass

    @abstractmethod
    def list_applications(
        self,
        statuses: Optional[Iterable[ApplicationStatus]] = None,
        credential_type: Optional[CredentialType] = None,
    ) -> List[Application]:
        """Oldest submission first."""
        pass

    @abstractmethod
    def create_holder(self, holder: Holder) -> Holder:
        """
        Insert a holder. Repeating the insert for the same issued_id and
        application_id returns the existing record.

        Raises:
            IdentifierTakenError: issued_id taken by another application
            DuplicateRecordError: the user already holds an active credential
                of this type
        """
        pass

    @abstractmethod
    def get_holder(self, issued_id: str) -> Optional[Holder]:
        pass

    @abstractmethod
    def find_active_holder(self, user_id: str, credential_type: CredentialType) -> Optional[Holder]:
        pass

    @abstractmethod
    def update_holder_status(self, issued_id: str, status: HolderStatus) -> Optional[Holder]:
        pass


class TokenStore(ABC):
    """Keyed store with atomic take-and-delete."""

    @abstractmethod
    def put(self, key: str, grant: LoginGrant) -> None:
        pass

    @abstractmethod
    def take(self, key: str) -> Optional[LoginGrant]:
        """Remove and return the entry in one atomic step."""
        pass

    @abstractmethod
    def purge_expired(self, now: datetime) -> int:
        """Delete entries with expires_at <= now. Returns the count removed."""
        pass


class ImageStorage(ABC):
    """Object storage for document and selfie images."""

    @abstractmethod
    def put_image(self, key: str, data: bytes, content_type: str = "image/jpeg") -> str:
        pass

    @abstractmethod
    def get_image(self, key: str) -> bytes:
        pass

    @abstractmethod
    def presigned_url(self, key: str, expires_in: Optional[int] = None) -> Optional[str]:
        pass


def document_image_key(user_id: str, application_id: str) -> str:
    return f"sevispass/documents/{user_id}/{application_id}/document.jpg"


def selfie_image_key(user_id: str, application_id: str) -> str:
    return f"sevispass/faces/{user_id}/{application_id}/selfie.jpg"


def supporting_document_key(user_id: str, application_id: str, index: int) -> str:
    return f"citypass/documents/{user_id}/{application_id}/supporting-{index}.jpg"
