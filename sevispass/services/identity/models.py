"""
Typed records for the identity verification pipeline.
"""
from dataclasses import dataclass, field, fields, asdict
from datetime import datetime, timezone, date
from enum import Enum
from typing import Any, Dict, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CredentialType(str, Enum):
    SEVISPASS = "sevispass"
    CITYPASS = "citypass"


class ApplicationStatus(str, Enum):
    PENDING = "pending"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self in (ApplicationStatus.APPROVED, ApplicationStatus.REJECTED)


class HolderStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    SUSPENDED = "suspended"


class Outcome(str, Enum):
    """Decision policy outcome, ordered from least to most approved."""
    REJECT = "reject"
    MANUAL_REVIEW = "manual_review"
    AUTO_APPROVE = "auto_approve"

    @property
    def rank(self) -> int:
        return _OUTCOME_RANK[self]


_OUTCOME_RANK = {
    Outcome.REJECT: 0,
    Outcome.MANUAL_REVIEW: 1,
    Outcome.AUTO_APPROVE: 2,
}


class CityPassCategory(str, Enum):
    EMPLOYED = "employed"
    STUDENT = "student"
    PROPERTY_OWNER = "property_owner"
    BUSINESS_OWNER = "business_owner"
    DEPENDENT = "dependent"
    VOUCHED = "vouched"


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def _serialize(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, list):
        return [_serialize(v) for v in value]
    if isinstance(value, dict):
        return {k: _serialize(v) for k, v in value.items()}
    return value


@dataclass
class ClaimedIdentity:
    """Identity fields read from the document (or supplied by the applicant)."""
    full_name: str
    date_of_birth: Optional[str]
    document_number: Optional[str]
    nationality: Optional[str] = None
    document_type: str = "unknown"

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class QualityReport:
    """Quality gate verdict for a single image"""
    passed: bool
    reason: Optional[str] = None
    face_count: int = 0
    brightness: float = 0.0
    sharpness: float = 0.0
    confidence: float = 0.0

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class FaceDetection:
    """One face as reported by the detection service"""
    confidence: float
    brightness: float
    sharpness: float


@dataclass
class VerificationResult:
    """Outcome of a single compare call. Never persisted."""
    similarity: float
    matched: bool
    face_confidence: float = 0.0
    error: Optional[str] = None

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class SearchMatch:
    external_id: str
    similarity: float
    face_id: Optional[str] = None


@dataclass
class Application:
    """One credential submission and its decision trail."""
    application_id: str
    user_id: str
    credential_type: CredentialType
    status: ApplicationStatus
    submitted_at: datetime
    document_type: Optional[str] = None

    # Claimed identity
    full_name: Optional[str] = None
    date_of_birth: Optional[str] = None
    document_number: Optional[str] = None
    nationality: Optional[str] = None

    # Verification data
    confidence: Optional[float] = None
    requires_manual_review: bool = False
    face_id: Optional[str] = None
    document_image_key: Optional[str] = None
    selfie_image_key: Optional[str] = None

    # Outcome
    issued_id: Optional[str] = None
    issued_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    review_notes: Optional[str] = None

    # CityPass
    category: Optional[str] = None
    sevispass_uin: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return {k: _serialize(v) for k, v in asdict(self).items()}

    @classmethod
    def from_dict(cls, data: Dict) -> "Application":
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        values["credential_type"] = CredentialType(values["credential_type"])
        values["status"] = ApplicationStatus(values["status"])
        for key in ("submitted_at", "issued_at", "reviewed_at"):
            values[key] = _parse_datetime(values.get(key))
        return cls(**values)


@dataclass
class Holder:
    """An issued credential. Created only when an application is approved."""
    issued_id: str
    user_id: str
    credential_type: CredentialType
    status: HolderStatus
    issued_at: datetime
    expiry_date: datetime
    full_name: str
    application_id: Optional[str] = None
    date_of_birth: Optional[str] = None
    document_number: Optional[str] = None
    nationality: Optional[str] = None
    face_id: Optional[str] = None
    photo_image_key: Optional[str] = None
    document_image_key: Optional[str] = None
    category: Optional[str] = None
    sevispass_uin: Optional[str] = None

    def effective_status(self, now: Optional[datetime] = None) -> HolderStatus:
        """Stored status, except that a passed expiry date always wins."""
        now = now or utcnow()
        if self.expiry_date <= now:
            return HolderStatus.EXPIRED
        return self.status

    def to_dict(self) -> Dict:
        data = {k: _serialize(v) for k, v in asdict(self).items()}
        data["effective_status"] = self.effective_status().value
        return data

    @classmethod
    def from_dict(cls, data: Dict) -> "Holder":
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        values["credential_type"] = CredentialType(values["credential_type"])
        values["status"] = HolderStatus(values["status"])
        values["issued_at"] = _parse_datetime(values["issued_at"])
        values["expiry_date"] = _parse_datetime(values["expiry_date"])
        return cls(**values)


@dataclass
class LoginGrant:
    """Data bound to a one-time login token."""
    token: str
    user_id: str
    claimed_id: str
    expires_at: datetime

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) >= self.expires_at


@dataclass
class RegistrationResult:
    status: ApplicationStatus
    application_id: str
    confidence: float = 0.0
    issued_id: Optional[str] = None
    face_id: Optional[str] = None
    reason: Optional[str] = None
    claimed_identity: Optional[ClaimedIdentity] = None

    def to_dict(self) -> Dict:
        return {
            "status": self.status.value,
            "applicationId": self.application_id,
            "confidence": self.confidence,
            "uin": self.issued_id,
            "reason": self.reason,
            "extractedInfo": self.claimed_identity.to_dict() if self.claimed_identity else None,
        }


@dataclass
class LoginResult:
    authenticated: bool
    confidence: float = 0.0
    matched_id: Optional[str] = None
    token: Optional[str] = None
    expires_at: Optional[datetime] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            "authenticated": self.authenticated,
            "confidence": self.confidence,
            "uin": self.matched_id,
            "loginToken": self.token,
            "expiresAt": self.expires_at.isoformat() if self.expires_at else None,
            "error": self.error,
        }


@dataclass
class CredentialVerification:
    valid: bool
    credential_type: Optional[CredentialType] = None
    error: Optional[str] = None
    holder: Optional[Holder] = None
    photo_url: Optional[str] = None

    def to_dict(self) -> Dict:
        data: Dict[str, Any] = {"valid": self.valid}
        if self.error:
            data["error"] = self.error
        if self.holder is not None:
            h = self.holder
            data["data"] = {
                "id": h.issued_id,
                "uin": h.sevispass_uin or h.issued_id,
                "name": h.full_name,
                "dateOfBirth": h.date_of_birth,
                "documentNumber": h.document_number,
                "nationality": h.nationality,
                "category": h.category,
                "status": h.effective_status().value,
                "issued": h.issued_at.isoformat(),
                "expires": h.expiry_date.isoformat(),
                "photoUrl": self.photo_url,
                "type": h.credential_type.value,
                "version": "1.0",
            }
        return data
