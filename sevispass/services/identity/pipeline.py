"""
Identity Verification Pipeline
==============================
Orchestrates registration, manual review, face login and credential checks.
This module coordinates the quality gate, similarity scorer, decision policy,
application lifecycle and login token broker.
"""

import json
import logging
from dataclasses import replace
from typing import Any, Dict, List, Optional

from sevispass.services.aws.base_face_client import BaseFaceClient
from sevispass.services.identity import document_text
from sevispass.services.identity.errors import (
    ApplicationNotFoundError,
    ConsistencyError,
    EnrollmentError,
    ExternalServiceError,
    HolderNotFoundError,
    IdentifierTakenError,
    InputValidationError,
    InvalidTransitionError,
    ResubmissionBlockedError,
)
from sevispass.services.identity.identifiers import (
    generate_citypass_id,
    generate_uin,
    normalize_uin,
    validate_citypass_id,
    validate_uin,
)
from sevispass.services.identity.lifecycle import ApplicationLifecycle
from sevispass.services.identity.models import (
    Application,
    ApplicationStatus,
    CityPassCategory,
    ClaimedIdentity,
    CredentialType,
    CredentialVerification,
    Holder,
    HolderStatus,
    LoginGrant,
    LoginResult,
    Outcome,
    RegistrationResult,
    utcnow,
)
from sevispass.services.identity.policy import DecisionPolicy, PolicyThresholds
from sevispass.services.identity.quality_gate import QualityBars, QualityGate
from sevispass.services.identity.similarity import NO_INDEXABLE_FACE, SimilarityScorer
from sevispass.services.identity.token_broker import LoginTokenBroker
from sevispass.services.storage import (
    ImageStorage,
    RecordStore,
    TokenStore,
    get_image_storage,
    get_record_store,
    get_token_store,
)
from sevispass.services.storage.base import (
    document_image_key,
    selfie_image_key,
    supporting_document_key,
)
from sevispass.utils.image_utils import content_type_for

logger = logging.getLogger(__name__)

FACE_MISMATCH_DOCUMENT = "Face does not match document photo"
FACE_MISMATCH_IDENTIFIER = "Face does not match the provided identifier"
LOGIN_CONFIDENCE_TOO_LOW = "Face verification confidence too low for authentication"
LOW_SIMILARITY = "Face similarity too low to verify identity"
MANUAL_REVIEW_REQUIRED = "Application requires manual review"
CREDENTIAL_NOT_ACTIVE = "SevisPass is not active"
REVIEWER_REJECTED = "Rejected during manual review"

# Fresh UINs drawn when a generated one is already issued
UIN_ATTEMPTS = 3

_CREDENTIAL_LABELS = {
    CredentialType.SEVISPASS: "SevisPass",
    CredentialType.CITYPASS: "CityPass",
}

# Extra fields each CityPass category must supply
CATEGORY_REQUIREMENTS = {
    CityPassCategory.EMPLOYED: ("employer_name",),
    CityPassCategory.STUDENT: ("school_name",),
    CityPassCategory.PROPERTY_OWNER: ("property_address",),
    CityPassCategory.BUSINESS_OWNER: ("business_name",),
    CityPassCategory.DEPENDENT: ("voucher_uin", "relationship_to_voucher"),
    CityPassCategory.VOUCHED: ("voucher_uin",),
}

CITYPASS_DETAIL_FIELDS = (
    "phone_number",
    "email",
    "employer_name",
    "school_name",
    "property_address",
    "business_name",
    "voucher_uin",
    "relationship_to_voucher",
)


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


class IdentityVerificationPipeline:
    """
    Orchestrates the complete identity verification workflow.

    Quality failures and policy decisions come back as typed results.
    External failures (ExternalServiceError, ServiceTimeoutError) and
    ConsistencyError propagate to the caller unchanged.
    """

    def __init__(
        self,
        face_client: Optional[BaseFaceClient] = None,
        record_store: Optional[RecordStore] = None,
        token_store: Optional[TokenStore] = None,
        image_storage: Optional[ImageStorage] = None,
        thresholds: Optional[PolicyThresholds] = None,
        quality_bars: Optional[QualityBars] = None,
        collection_id: Optional[str] = None,
    ):
        if face_client is None:
            from sevispass.services.aws.rekognition_client import RekognitionFaceClient
            face_client = RekognitionFaceClient()

        self.face_client = face_client
        self.store = record_store or get_record_store()
        self.images = image_storage or get_image_storage()
        self.policy = DecisionPolicy(thresholds)
        self.gate = QualityGate(face_client, quality_bars)
        self.scorer = SimilarityScorer(
            face_client,
            collection_id=collection_id,
            compare_floor=self.policy.thresholds.compare_floor,
        )
        self.lifecycle = ApplicationLifecycle(self.store)
        self.tokens = LoginTokenBroker(token_store or get_token_store())

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def submit_application(
        self,
        user_id: str,
        document_image: bytes,
        selfie_image: bytes,
        claimed_fields: Optional[Dict[str, Any]] = None,
        document_type: Optional[str] = None,
    ) -> RegistrationResult:
        """
        Run a SevisPass registration end to end.

        Args:
            user_id: Account submitting the application
            document_image: Identity document photo (bytes)
            selfie_image: Live selfie (bytes)
            claimed_fields: Identity fields typed or confirmed by the applicant
            document_type: nid / drivers_license / png_passport / ...

        Returns:
            RegistrationResult with the recorded status and a reason for
            every rejection or manual review

        Raises:
            InputValidationError: missing user, images or identity fields
            ResubmissionBlockedError: an application is already in flight or approved
            ExternalServiceError: a managed service failed or timed out
            ConsistencyError: the credential could not be recorded after approval
        """
        if not user_id or not user_id.strip():
            raise InputValidationError("userId", "userId is required")
        if not document_image:
            raise InputValidationError("documentImage", "Document image is required")
        if not selfie_image:
            raise InputValidationError("selfieImage", "Selfie image is required")

        application_id, previous_status = self.lifecycle.begin_submission(user_id, CredentialType.SEVISPASS)
        claimed = self._resolve_identity(document_image, claimed_fields, document_type)

        doc_key = self.images.put_image(
            document_image_key(user_id, application_id), document_image, content_type_for(document_image)
        )
        selfie_key = self.images.put_image(
            selfie_image_key(user_id, application_id), selfie_image, content_type_for(selfie_image)
        )

        application = Application(
            application_id=application_id,
            user_id=user_id,
            credential_type=CredentialType.SEVISPASS,
            status=ApplicationStatus.PENDING,
            submitted_at=utcnow(),
            document_type=claimed.document_type,
            full_name=claimed.full_name,
            date_of_birth=claimed.date_of_birth,
            document_number=claimed.document_number,
            nationality=claimed.nationality,
            document_image_key=doc_key,
            selfie_image_key=selfie_key,
        )

        # 1. Quality gate on both images
        for label, image in (("document", document_image), ("selfie", selfie_image)):
            report = self.gate.check(image, label=label)
            if not report.passed:
                return self._finish_rejected(application, previous_status, report.reason, 0.0, claimed)

        # 2. Face comparison
        comparison = self.scorer.compare(selfie_image, document_image)
        application.confidence = comparison.similarity
        if not comparison.matched:
            return self._finish_rejected(
                application, previous_status, FACE_MISMATCH_DOCUMENT, comparison.similarity, claimed
            )

        # 3. Decision policy
        outcome = self.policy.registration_outcome(comparison.similarity)
        logger.info(
            f"Application {application_id}: similarity={comparison.similarity:.1f}, outcome={outcome.value}"
        )

        if outcome == Outcome.REJECT:
            return self._finish_rejected(
                application, previous_status, LOW_SIMILARITY, comparison.similarity, claimed
            )
        if outcome == Outcome.MANUAL_REVIEW:
            return self._finish_review(application, previous_status, MANUAL_REVIEW_REQUIRED, claimed)

        # 4. Auto-approve: enroll, store pending, write holder, flip to approved
        uin = generate_uin()
        try:
            face_id = self.scorer.enroll(selfie_image, uin)
        except EnrollmentError as e:
            return self._finish_review(application, previous_status, str(e), claimed)

        application.face_id = face_id
        try:
            pending = self.lifecycle.record_pending(application, previous_status)
        except ResubmissionBlockedError:
            self._discard_face(face_id)
            raise

        try:
            holder = self._issue_sevispass(pending, selfie_image, uin)
            approved = self.lifecycle.complete_auto_approval(pending, holder)
        except EnrollmentError as e:
            return self._review_pending(pending, str(e), claimed)
        except ConsistencyError:
            self._discard_face(pending.face_id)
            raise
        except ExternalServiceError as e:
            self.lifecycle.park(application_id, str(e))
            raise

        return RegistrationResult(
            status=approved.status,
            application_id=application_id,
            confidence=comparison.similarity,
            issued_id=holder.issued_id,
            face_id=holder.face_id,
            claimed_identity=claimed,
        )

    def _resolve_identity(
        self,
        document_image: bytes,
        claimed_fields: Optional[Dict[str, Any]],
        document_type: Optional[str],
    ) -> ClaimedIdentity:
        claimed_fields = dict(claimed_fields or {})
        if document_type and not claimed_fields.get("document_type"):
            claimed_fields["document_type"] = document_type

        required = ("full_name", "date_of_birth", "document_number")
        if all(claimed_fields.get(key) for key in required):
            return document_text.merge_claimed_identity(None, claimed_fields)

        extracted = document_text.extract_text(self.face_client, document_image, document_type)
        return document_text.merge_claimed_identity(extracted, claimed_fields)

    def _finish_rejected(
        self,
        application: Application,
        previous_status: Optional[ApplicationStatus],
        reason: str,
        confidence: float,
        claimed: ClaimedIdentity,
    ) -> RegistrationResult:
        rejected = replace(
            application,
            status=ApplicationStatus.REJECTED,
            rejection_reason=reason,
            confidence=confidence,
        )
        self.lifecycle.record_submission(rejected, previous_status)
        logger.info(f"Application {application.application_id} rejected: {reason}")
        return RegistrationResult(
            status=ApplicationStatus.REJECTED,
            application_id=application.application_id,
            confidence=confidence,
            reason=reason,
            claimed_identity=claimed,
        )

    def _finish_review(
        self,
        application: Application,
        previous_status: Optional[ApplicationStatus],
        reason: str,
        claimed: ClaimedIdentity,
    ) -> RegistrationResult:
        queued = replace(
            application,
            status=ApplicationStatus.UNDER_REVIEW,
            requires_manual_review=True,
            review_notes=reason,
        )
        self.lifecycle.record_submission(queued, previous_status)
        return RegistrationResult(
            status=ApplicationStatus.UNDER_REVIEW,
            application_id=application.application_id,
            confidence=application.confidence or 0.0,
            reason=reason,
            claimed_identity=claimed,
        )

    def _issue_sevispass(self, pending: Application, selfie_image: bytes, uin: str) -> Holder:
        """
        Write the Holder, drawing a fresh UIN while the generated one is taken.

        Raises:
            EnrollmentError: the selfie could not be enrolled under a fresh UIN
            ConsistencyError: Holder write failed, or every UIN drawn was taken
        """
        for attempt in range(1, UIN_ATTEMPTS + 1):
            try:
                return self.lifecycle.issue_holder(pending, uin)
            except IdentifierTakenError as e:
                self._discard_face(pending.face_id)
                pending.face_id = None
                if attempt == UIN_ATTEMPTS:
                    self.lifecycle.park(pending.application_id, str(e))
                    raise ConsistencyError(pending.application_id, "No free UIN could be issued") from e
                logger.warning(f"UIN {uin} already issued, drawing another ({attempt}/{UIN_ATTEMPTS})")

            uin = generate_uin()
            pending.face_id = self.scorer.enroll(selfie_image, uin)

    def _review_pending(self, pending: Application, reason: str, claimed: ClaimedIdentity) -> RegistrationResult:
        queued = self.lifecycle.transition(
            pending.application_id,
            ApplicationStatus.UNDER_REVIEW,
            {"requires_manual_review": True, "review_notes": reason, "face_id": None},
            expected_status=ApplicationStatus.PENDING,
        )
        return RegistrationResult(
            status=ApplicationStatus.UNDER_REVIEW,
            application_id=queued.application_id,
            confidence=queued.confidence or 0.0,
            reason=reason,
            claimed_identity=claimed,
        )

    def _discard_face(self, face_id: Optional[str]) -> None:
        if not face_id:
            return
        try:
            self.scorer.remove(face_id)
        except ExternalServiceError as e:
            logger.error(f"Could not remove enrolled face {face_id}: {str(e)}", exc_info=True)

    # ------------------------------------------------------------------
    # Manual review
    # ------------------------------------------------------------------

    def review_application(
        self,
        application_id: str,
        decision: str,
        reviewer_id: str,
        notes: Optional[str] = None,
    ) -> Application:
        """
        Apply a reviewer decision.

        Args:
            application_id: Application to decide
            decision: "approved" or "rejected"
            reviewer_id: Reviewer identity (required)
            notes: Optional review note; used as the rejection reason

        Returns:
            Updated Application

        Raises:
            InputValidationError: bad decision or missing reviewer
            ApplicationNotFoundError: unknown application
            InvalidTransitionError: application already decided
            EnrollmentError: stored selfie cannot be enrolled
            ConsistencyError: credential record could not be created
        """
        if decision not in (ApplicationStatus.APPROVED.value, ApplicationStatus.REJECTED.value):
            raise InputValidationError("decision", "Decision must be 'approved' or 'rejected'")
        if not reviewer_id or not reviewer_id.strip():
            raise InputValidationError("reviewedBy", "Reviewer is required for manual decisions")

        application = self.lifecycle.get(application_id)
        logger.info(f"Reviewer {reviewer_id} deciding {application_id}: {decision}")

        if decision == ApplicationStatus.REJECTED.value:
            reason = (notes or "").strip() or REVIEWER_REJECTED
            return self.lifecycle.reject(application_id, reason, reviewed_by=reviewer_id, notes=notes)

        if application.status.is_terminal:
            raise InvalidTransitionError(application_id, application.status.value, decision)

        # Retry of an approval whose holder was already written
        existing = self.lifecycle.issued_holder_for(application)
        if existing is not None:
            approved, _ = self.lifecycle.approve(
                application, existing.issued_id, reviewed_by=reviewer_id, notes=notes, face_id=existing.face_id
            )
            return approved

        if application.credential_type == CredentialType.CITYPASS:
            approved, _ = self.lifecycle.approve(
                application, generate_citypass_id(), reviewed_by=reviewer_id, notes=notes
            )
            return approved

        uin = generate_uin()
        face_id = self._enroll_stored_selfie(application, uin)
        try:
            approved, _ = self.lifecycle.approve(
                application, uin, reviewed_by=reviewer_id, notes=notes, face_id=face_id
            )
        except (ConsistencyError, InvalidTransitionError):
            self._discard_face(face_id)
            raise
        return approved

    def _enroll_stored_selfie(self, application: Application, uin: str) -> str:
        if not application.selfie_image_key:
            raise EnrollmentError("No selfie stored for this application")
        try:
            selfie = self.images.get_image(application.selfie_image_key)
        except KeyError:
            raise EnrollmentError("Stored selfie image not found")

        report = self.gate.check(selfie, label="stored selfie")
        if not report.passed:
            raise EnrollmentError(report.reason or NO_INDEXABLE_FACE)

        # A parked auto-approval may still have a face in the collection
        if application.face_id:
            self._discard_face(application.face_id)
        return self.scorer.enroll(selfie, uin)

    # ------------------------------------------------------------------
    # Login handshake
    # ------------------------------------------------------------------

    def login(self, selfie_image: bytes, expected_id: Optional[str] = None) -> LoginResult:
        """
        Face login against the enrollment collection.

        Args:
            selfie_image: Live selfie (bytes)
            expected_id: UIN the user claims to be, if supplied

        Returns:
            LoginResult; authenticated results carry a one-time token
        """
        if not selfie_image:
            raise InputValidationError("selfieImage", "Selfie image is required")
        if expected_id:
            if not validate_uin(expected_id):
                raise InputValidationError("uin", "Invalid UIN format")
            expected_id = normalize_uin(expected_id)

        report = self.gate.check(selfie_image, label="login selfie")
        if not report.passed:
            return LoginResult(authenticated=False, error=report.reason)

        search = self.scorer.search(selfie_image, self.policy.thresholds.login)
        best = search.best_match
        if best is None:
            return LoginResult(authenticated=False, error=search.error)

        matched_id = normalize_uin(best.external_id)
        if expected_id and matched_id != expected_id:
            logger.warning(f"Login identity mismatch: expected {expected_id}, matched {matched_id}")
            return LoginResult(
                authenticated=False, confidence=best.similarity, error=FACE_MISMATCH_IDENTIFIER
            )

        if not self.policy.login_succeeds(best.similarity):
            return LoginResult(
                authenticated=False,
                confidence=best.similarity,
                matched_id=matched_id,
                error=LOGIN_CONFIDENCE_TOO_LOW,
            )

        holder = self.store.get_holder(matched_id)
        if holder is None or holder.effective_status() != HolderStatus.ACTIVE:
            logger.warning(f"Login matched {matched_id} without an active credential")
            return LoginResult(
                authenticated=False, confidence=best.similarity, error=CREDENTIAL_NOT_ACTIVE
            )

        grant = self.tokens.issue(holder.user_id, matched_id)
        logger.info(f"Login authenticated {matched_id} with confidence {best.similarity:.1f}")
        return LoginResult(
            authenticated=True,
            confidence=best.similarity,
            matched_id=matched_id,
            token=grant.token,
            expires_at=grant.expires_at,
        )

    def complete_login(self, token: str) -> Optional[LoginGrant]:
        """Redeem a login token. None means invalid, used or expired."""
        return self.tokens.redeem(token)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_application(
        self, user_id: str, credential_type: CredentialType = CredentialType.SEVISPASS
    ) -> Optional[Application]:
        if not user_id:
            raise InputValidationError("userId", "userId is required")
        return self.store.latest_application(user_id, credential_type)

    def get_holder(
        self, user_id: str, credential_type: CredentialType = CredentialType.SEVISPASS
    ) -> Optional[Holder]:
        if not user_id:
            raise InputValidationError("userId", "userId is required")
        return self.store.find_active_holder(user_id, credential_type)

    def list_applications(
        self,
        status: Optional[str] = None,
        credential_type: Optional[str] = None,
    ) -> List[Application]:
        try:
            statuses = [ApplicationStatus(status)] if status else None
        except ValueError:
            raise InputValidationError("status", f"Unknown status: {status}")
        try:
            kind = CredentialType(credential_type) if credential_type else None
        except ValueError:
            raise InputValidationError("credentialType", f"Unknown credential type: {credential_type}")
        return self.store.list_applications(statuses=statuses, credential_type=kind)

    def application_image_urls(self, application: Application) -> Dict[str, Optional[str]]:
        """Time-limited links to the document and selfie a reviewer needs to see."""
        return {
            "documentImageUrl": self._image_url(application.document_image_key),
            "selfieImageUrl": self._image_url(application.selfie_image_key),
        }

    def application_documents(self, application_id: str) -> List[Dict[str, Any]]:
        """
        Time-limited links to the supporting documents of a CityPass application.

        Returns:
            One entry per stored document: key, url, filename and index. A
            document whose link cannot be made has url None and an error.

        Raises:
            ApplicationNotFoundError: unknown id, or not a CityPass application
        """
        application = self.store.get_application(application_id)
        if application is None or application.credential_type != CredentialType.CITYPASS:
            raise ApplicationNotFoundError(f"Application {application_id} not found")

        documents = []
        for index, key in enumerate(application.extra.get("supporting_document_keys") or []):
            entry = {"key": key, "url": None, "filename": key.rsplit("/", 1)[-1], "index": index}
            try:
                entry["url"] = self.images.presigned_url(key)
            except ExternalServiceError as e:
                logger.warning(f"Could not link document {key}: {str(e)}")
                entry["error"] = "Failed to generate URL"
            if entry["url"] is None and "error" not in entry:
                entry["error"] = "Document not found"
            documents.append(entry)
        return documents

    def _image_url(self, key: Optional[str]) -> Optional[str]:
        if not key:
            return None
        try:
            return self.images.presigned_url(key)
        except ExternalServiceError as e:
            logger.warning(f"Could not link image {key}: {str(e)}")
            return None

    def set_holder_status(self, issued_id: str, status: str) -> Holder:
        """Suspend or reactivate an issued credential."""
        allowed = (HolderStatus.ACTIVE.value, HolderStatus.SUSPENDED.value)
        if status not in allowed:
            raise InputValidationError("status", "Status must be 'active' or 'suspended'")
        holder = self.store.update_holder_status(issued_id, HolderStatus(status))
        if holder is None:
            raise HolderNotFoundError(f"Credential {issued_id} not found")
        logger.info(f"Credential {issued_id} set to {status}")
        return holder

    # ------------------------------------------------------------------
    # Credential verification
    # ------------------------------------------------------------------

    def verify_credential(
        self,
        uin: Optional[str] = None,
        citypass_id: Optional[str] = None,
        qr_data: Optional[str] = None,
    ) -> CredentialVerification:
        """
        Check an identifier (or scanned QR payload) against the holder records.

        Returns:
            CredentialVerification; valid=False carries the reason
        """
        if qr_data:
            uin, citypass_id = self._parse_qr(qr_data)

        if citypass_id:
            credential_type = CredentialType.CITYPASS
            issued_id = citypass_id.strip().upper()
            if not validate_citypass_id(issued_id):
                raise InputValidationError("citypassId", "Invalid CityPass ID format")
        elif uin:
            credential_type = CredentialType.SEVISPASS
            if not validate_uin(uin):
                raise InputValidationError("uin", "Invalid UIN format")
            issued_id = normalize_uin(uin)
        else:
            raise InputValidationError("uin", "UIN, CityPass ID or QR data is required")

        label = _CREDENTIAL_LABELS[credential_type]
        holder = self.store.get_holder(issued_id)
        if holder is None or holder.credential_type != credential_type:
            return CredentialVerification(valid=False, credential_type=credential_type, error=f"{label} not found")

        status = holder.effective_status()
        if status == HolderStatus.SUSPENDED:
            return CredentialVerification(
                valid=False, credential_type=credential_type, error=f"{label} is suspended", holder=holder
            )
        if status == HolderStatus.EXPIRED:
            return CredentialVerification(
                valid=False, credential_type=credential_type, error=f"{label} has expired", holder=holder
            )

        photo_url = None
        if holder.photo_image_key:
            photo_url = self.images.presigned_url(holder.photo_image_key)
        return CredentialVerification(
            valid=True, credential_type=credential_type, holder=holder, photo_url=photo_url
        )

    @staticmethod
    def _parse_qr(qr_data: str):
        """Returns (uin, citypass_id) from a QR payload."""
        try:
            payload = json.loads(qr_data)
        except ValueError:
            value = qr_data.strip()
            if value.upper().startswith("CP"):
                return None, value
            return value, None

        if not isinstance(payload, dict):
            raise InputValidationError("qrData", "Unrecognized QR payload")
        if payload.get("type") == CredentialType.CITYPASS.value:
            return None, payload.get("citypassId") or payload.get("id")
        return payload.get("uin") or payload.get("id"), None

    # ------------------------------------------------------------------
    # CityPass
    # ------------------------------------------------------------------

    def submit_citypass_application(
        self,
        user_id: str,
        category: str,
        full_name: str,
        sevispass_uin: str,
        details: Optional[Dict[str, Any]] = None,
        supporting_documents: Optional[List[bytes]] = None,
    ) -> Application:
        """
        Record a CityPass application for manual review.

        The applicant must already hold an active SevisPass under the given UIN.
        """
        details = details or {}
        if not user_id:
            raise InputValidationError("userId", "userId is required")
        if not full_name or not full_name.strip():
            raise InputValidationError("fullName", "fullName is required")
        try:
            kind = CityPassCategory(category)
        except ValueError:
            raise InputValidationError("category", f"Unknown category: {category}")
        if not sevispass_uin or not validate_uin(sevispass_uin):
            raise InputValidationError("sevispassUin", "Invalid UIN format")
        sevispass_uin = normalize_uin(sevispass_uin)

        for key in CATEGORY_REQUIREMENTS[kind]:
            if not (details.get(key) or "").strip():
                raise InputValidationError(_camel(key), f"{_camel(key)} is required for {kind.value}")

        voucher = details.get("voucher_uin")
        if voucher:
            if not validate_uin(voucher):
                raise InputValidationError("voucherUin", "Invalid voucher UIN format")
            voucher_holder = self.store.get_holder(normalize_uin(voucher))
            if voucher_holder is None or voucher_holder.effective_status() != HolderStatus.ACTIVE:
                raise InputValidationError("voucherUin", "Voucher does not hold an active SevisPass")

        sevispass = self.store.get_holder(sevispass_uin)
        if (
            sevispass is None
            or sevispass.user_id != user_id
            or sevispass.credential_type != CredentialType.SEVISPASS
            or sevispass.effective_status() != HolderStatus.ACTIVE
        ):
            raise InputValidationError("sevispassUin", "No active SevisPass found for this UIN")

        application_id, previous_status = self.lifecycle.begin_submission(user_id, CredentialType.CITYPASS)

        document_keys = [
            self.images.put_image(
                supporting_document_key(user_id, application_id, index), data, content_type_for(data)
            )
            for index, data in enumerate(supporting_documents or [])
        ]
        extra = {key: details[key] for key in CITYPASS_DETAIL_FIELDS if details.get(key)}
        if document_keys:
            extra["supporting_document_keys"] = document_keys

        application = Application(
            application_id=application_id,
            user_id=user_id,
            credential_type=CredentialType.CITYPASS,
            status=ApplicationStatus.PENDING,
            submitted_at=utcnow(),
            document_type="sevispass",
            full_name=full_name.strip(),
            date_of_birth=sevispass.date_of_birth,
            document_number=sevispass.document_number,
            nationality=sevispass.nationality,
            requires_manual_review=True,
            selfie_image_key=sevispass.photo_image_key,
            category=kind.value,
            sevispass_uin=sevispass_uin,
            extra=extra,
        )
        return self.lifecycle.record_submission(application, previous_status)

    # ------------------------------------------------------------------
    # Setup and document text
    # ------------------------------------------------------------------

    def initialize_collection(self) -> Dict[str, Any]:
        created = self.scorer.ensure_collection()
        return {"collectionId": self.scorer.collection_id, "created": created}

    def extract_document_fields(self, document_image: bytes, document_type: Optional[str] = None) -> Dict:
        if not document_image:
            raise InputValidationError("documentImage", "Document image is required")
        return document_text.extract_text(self.face_client, document_image, document_type)


# Singleton instance
_pipeline: Optional[IdentityVerificationPipeline] = None


def get_pipeline() -> IdentityVerificationPipeline:
    """Get singleton pipeline instance"""
    global _pipeline
    if _pipeline is None:
        _pipeline = IdentityVerificationPipeline()
    return _pipeline
