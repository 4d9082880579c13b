"""
Application Record Lifecycle
State machine for credential applications and the Holder side effect of approval.
"""
import logging
from dataclasses import replace
from datetime import datetime
from typing import Dict, Optional, Set, Tuple

from sevispass.config import CREDENTIAL_CONFIG
from sevispass.services.identity.errors import (
    ApplicationNotFoundError,
    ConsistencyError,
    DuplicateRecordError,
    ExternalServiceError,
    IdentifierTakenError,
    InputValidationError,
    InvalidTransitionError,
    ResubmissionBlockedError,
)
from sevispass.services.identity.identifiers import generate_application_id
from sevispass.services.identity.models import (
    Application,
    ApplicationStatus,
    CredentialType,
    Holder,
    HolderStatus,
    utcnow,
)
from sevispass.services.storage.base import RecordStore

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: Dict[ApplicationStatus, Set[ApplicationStatus]] = {
    ApplicationStatus.PENDING: {
        ApplicationStatus.UNDER_REVIEW,
        ApplicationStatus.APPROVED,
        ApplicationStatus.REJECTED,
    },
    ApplicationStatus.UNDER_REVIEW: {
        ApplicationStatus.APPROVED,
        ApplicationStatus.REJECTED,
    },
    ApplicationStatus.APPROVED: set(),
    ApplicationStatus.REJECTED: set(),
}


def can_transition(current: ApplicationStatus, requested: ApplicationStatus) -> bool:
    return requested in ALLOWED_TRANSITIONS[current]


def add_years(moment: datetime, years: int) -> datetime:
    try:
        return moment.replace(year=moment.year + years)
    except ValueError:
        # 29 February in a non-leap target year
        return moment.replace(year=moment.year + years, day=28)


class ApplicationLifecycle:
    """
    Owns every status change of an Application.

    Approval always writes the Holder before the Application is flipped, so
    no reader can see status=approved without the Holder existing.
    """

    def __init__(self, store: RecordStore, validity_years: Optional[Dict[CredentialType, int]] = None):
        self.store = store
        self.validity_years = validity_years or {
            CredentialType.SEVISPASS: CREDENTIAL_CONFIG["sevispass_validity_years"],
            CredentialType.CITYPASS: CREDENTIAL_CONFIG["citypass_validity_years"],
        }

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def begin_submission(
        self, user_id: str, credential_type: CredentialType
    ) -> Tuple[str, Optional[ApplicationStatus]]:
        """
        Apply the resubmission rule for a user.

        Returns:
            (application_id, previous_status). previous_status is REJECTED
            when the id of a rejected application is reused, None for a
            brand new id.

        Raises:
            ResubmissionBlockedError: latest application is pending,
                under review or approved
        """
        latest = self.store.latest_application(user_id, credential_type)
        if latest is None:
            return generate_application_id(), None
        if latest.status == ApplicationStatus.REJECTED:
            logger.info(f"Reusing rejected application {latest.application_id} for {user_id}")
            return latest.application_id, ApplicationStatus.REJECTED
        raise ResubmissionBlockedError(latest.application_id, latest.status.value)

    def record_submission(
        self, application: Application, previous_status: Optional[ApplicationStatus]
    ) -> Application:
        """
        Persist a freshly decided application (pending, under review or rejected).

        Raises:
            ResubmissionBlockedError: another submission for the same id won the race
        """
        if application.status == ApplicationStatus.REJECTED and not application.rejection_reason:
            raise InputValidationError("rejectionReason", "A rejection must carry a reason")
        if application.status == ApplicationStatus.APPROVED:
            raise InvalidTransitionError(application.application_id, "new", "approved without holder")

        if not self.store.put_application(application, expected_status=previous_status):
            current = self.store.get_application(application.application_id)
            if current is None or current.status == previous_status:
                # Lost to a concurrent submission under another id
                current = self.store.latest_application(application.user_id, application.credential_type)
            if current is None:
                raise ResubmissionBlockedError(application.application_id, "in progress")
            raise ResubmissionBlockedError(current.application_id, current.status.value)
        logger.info(
            f"Application {application.application_id} recorded as {application.status.value}"
        )
        return application

    def record_auto_approval(
        self,
        application: Application,
        previous_status: Optional[ApplicationStatus],
        issued_id: str,
    ) -> Tuple[Application, Holder]:
        """
        Persist a new submission that the decision policy auto-approved.

        The application is stored as pending first, then the Holder is
        written, then the application is flipped to approved. If the Holder
        write fails the application stays pending and is flagged for manual
        review.

        Raises:
            ResubmissionBlockedError: another submission for the same user won the race
            ConsistencyError: Holder could not be written, or the application
                moved while the Holder was issued
        """
        pending = self.record_pending(application, previous_status)
        try:
            holder = self.issue_holder(pending, issued_id)
        except IdentifierTakenError as e:
            self.park(pending.application_id, str(e))
            raise ConsistencyError(
                application.application_id, "Credential record could not be created"
            ) from e
        return self.complete_auto_approval(pending, holder), holder

    def record_pending(
        self, application: Application, previous_status: Optional[ApplicationStatus]
    ) -> Application:
        """Store an auto-approved submission as pending, before any Holder exists."""
        pending = replace(
            application,
            status=ApplicationStatus.PENDING,
            issued_id=None,
            issued_at=None,
            rejection_reason=None,
        )
        return self.record_submission(pending, previous_status)

    def issue_holder(self, pending: Application, issued_id: str) -> Holder:
        """
        Write the Holder for a pending auto-approval.

        Raises:
            IdentifierTakenError: issued_id belongs to another application;
                the application is untouched so the caller may retry
            ConsistencyError: any other Holder write failure; the
                application is parked for manual review
        """
        holder = self.build_holder(pending, issued_id, utcnow())
        try:
            return self.store.create_holder(holder)
        except IdentifierTakenError:
            raise
        except (DuplicateRecordError, ExternalServiceError) as e:
            self.park(pending.application_id, str(e))
            raise ConsistencyError(
                pending.application_id, "Credential record could not be created"
            ) from e

    def park(self, application_id: str, cause: str) -> None:
        """Leave a pending application flagged for manual review."""
        logger.critical(f"Holder creation failed for application {application_id}: {cause}")
        flagged = self.store.update_application(
            application_id,
            ApplicationStatus.PENDING,
            {"requires_manual_review": True},
        )
        if flagged is None:
            logger.critical(f"Application {application_id} could not be flagged for review")

    def complete_auto_approval(self, pending: Application, holder: Holder) -> Application:
        """
        Flip a pending application to approved once its Holder exists.

        Raises:
            ConsistencyError: the application moved while the Holder was issued
        """
        approved = self.store.update_application(
            pending.application_id,
            ApplicationStatus.PENDING,
            {
                "status": ApplicationStatus.APPROVED,
                "issued_id": holder.issued_id,
                "issued_at": holder.issued_at,
                "face_id": holder.face_id,
            },
        )
        if approved is None:
            logger.critical(
                f"Application {pending.application_id} changed while holder {holder.issued_id} was issued"
            )
            raise ConsistencyError(pending.application_id, "Application changed during approval")

        logger.info(f"Application {pending.application_id} approved, issued {holder.issued_id}")
        return approved

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def get(self, application_id: str) -> Application:
        application = self.store.get_application(application_id)
        if application is None:
            raise ApplicationNotFoundError(f"Application {application_id} not found")
        return application

    def transition(
        self,
        application_id: str,
        requested: ApplicationStatus,
        changes: Optional[Dict] = None,
        expected_status: Optional[ApplicationStatus] = None,
    ) -> Application:
        """
        Move an application along an allowed edge with a conditional write.

        Raises:
            ApplicationNotFoundError: unknown id
            InvalidTransitionError: edge not allowed, or the stored status
                moved between the read and the write
        """
        current = self.get(application_id)
        if expected_status is not None and current.status != expected_status:
            raise InvalidTransitionError(application_id, current.status.value, requested.value)
        if not can_transition(current.status, requested):
            raise InvalidTransitionError(application_id, current.status.value, requested.value)

        updated = self.store.update_application(
            application_id,
            current.status,
            {**(changes or {}), "status": requested},
        )
        if updated is None:
            latest = self.store.get_application(application_id)
            now_status = latest.status.value if latest else "missing"
            raise InvalidTransitionError(application_id, now_status, requested.value)
        return updated

    def mark_under_review(self, application_id: str) -> Application:
        return self.transition(
            application_id,
            ApplicationStatus.UNDER_REVIEW,
            {"requires_manual_review": True},
        )

    def reject(
        self,
        application_id: str,
        reason: str,
        reviewed_by: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Application:
        if not reason or not reason.strip():
            raise InputValidationError("reason", "A rejection must carry a reason")

        changes = {
            "rejection_reason": reason.strip(),
            "issued_id": None,
            "issued_at": None,
        }
        changes.update(self._review_fields(reviewed_by, notes))
        application = self.transition(application_id, ApplicationStatus.REJECTED, changes)
        logger.info(f"Application {application_id} rejected: {reason}")
        return application

    def approve(
        self,
        application: Application,
        issued_id: str,
        reviewed_by: Optional[str] = None,
        notes: Optional[str] = None,
        face_id: Optional[str] = None,
    ) -> Tuple[Application, Holder]:
        """
        Approve an application already stored as pending or under review.

        Raises:
            InvalidTransitionError: application is not in an approvable state
            ConsistencyError: Holder could not be written; the application
                keeps its prior status and can be approved again
        """
        if not can_transition(application.status, ApplicationStatus.APPROVED):
            raise InvalidTransitionError(
                application.application_id, application.status.value, ApplicationStatus.APPROVED.value
            )

        issued_at = utcnow()
        candidate = replace(application, face_id=face_id or application.face_id)
        holder = self.build_holder(candidate, issued_id, issued_at)
        try:
            holder = self.store.create_holder(holder)
        except (DuplicateRecordError, ExternalServiceError) as e:
            logger.critical(
                f"Holder creation failed for application {application.application_id}: {str(e)}"
            )
            raise ConsistencyError(
                application.application_id, "Credential record could not be created"
            ) from e

        changes = {
            "issued_id": holder.issued_id,
            "issued_at": holder.issued_at,
            "rejection_reason": None,
            "face_id": holder.face_id,
        }
        changes.update(self._review_fields(reviewed_by, notes))
        approved = self.transition(
            application.application_id,
            ApplicationStatus.APPROVED,
            changes,
            expected_status=application.status,
        )
        logger.info(f"Application {application.application_id} approved, issued {holder.issued_id}")
        return approved, holder

    def issued_holder_for(self, application: Application) -> Optional[Holder]:
        """Active holder already issued for this exact application, if any."""
        holder = self.store.find_active_holder(application.user_id, application.credential_type)
        if holder is not None and holder.application_id == application.application_id:
            return holder
        return None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def build_holder(self, application: Application, issued_id: str, issued_at: datetime) -> Holder:
        years = self.validity_years[application.credential_type]
        return Holder(
            issued_id=issued_id,
            user_id=application.user_id,
            credential_type=application.credential_type,
            status=HolderStatus.ACTIVE,
            issued_at=issued_at,
            expiry_date=add_years(issued_at, years),
            full_name=application.full_name or "",
            application_id=application.application_id,
            date_of_birth=application.date_of_birth,
            document_number=application.document_number,
            nationality=application.nationality,
            face_id=application.face_id,
            photo_image_key=application.selfie_image_key,
            document_image_key=application.document_image_key,
            category=application.category,
            sevispass_uin=application.sevispass_uin,
        )

    @staticmethod
    def _review_fields(reviewed_by: Optional[str], notes: Optional[str]) -> Dict:
        if reviewed_by is None:
            return {}
        if not reviewed_by.strip():
            raise InputValidationError("reviewedBy", "Reviewer is required for manual decisions")
        return {
            "reviewed_by": reviewed_by.strip(),
            "reviewed_at": utcnow(),
            "review_notes": notes,
        }
