"""
Admin endpoints for the application review queue and credential status.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field

from sevispass import config
from sevispass.api.v1.errors import to_http_exception
from sevispass.services.identity.errors import SevisPassError
from sevispass.services.identity.pipeline import IdentityVerificationPipeline, get_pipeline

logger = logging.getLogger(__name__)


def require_admin_key(x_admin_key: Optional[str] = Header(None, alias="X-Admin-Key")) -> None:
    """Open in development when ADMIN_API_KEY is unset."""
    if not config.ADMIN_API_KEY:
        return
    if x_admin_key != config.ADMIN_API_KEY:
        raise HTTPException(status_code=401, detail={"error": "unauthorized"})


router = APIRouter(prefix="/admin", tags=["Admin"], dependencies=[Depends(require_admin_key)])


class ReviewRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    decision: str
    reviewed_by: str = Field(..., alias="reviewedBy")
    review_note: Optional[str] = Field(None, alias="reviewNote")


class HolderStatusRequest(BaseModel):
    status: str


@router.get("/applications")
def list_applications(
    status: Optional[str] = Query(None),
    credential_type: Optional[str] = Query(None, alias="credentialType"),
    pipeline: IdentityVerificationPipeline = Depends(get_pipeline),
):
    """Review queue, oldest submission first."""
    try:
        applications = pipeline.list_applications(status=status, credential_type=credential_type)
        return {
            "applications": [
                {**a.to_dict(), **pipeline.application_image_urls(a)} for a in applications
            ],
            "count": len(applications),
        }
    except SevisPassError as e:
        raise to_http_exception(e)


@router.put("/applications/{application_id}")
def review_application(
    application_id: str,
    request: ReviewRequest,
    pipeline: IdentityVerificationPipeline = Depends(get_pipeline),
):
    """
    Approve or reject an application.
    Approving a SevisPass application enrolls the stored selfie under a new UIN.
    """
    try:
        application = pipeline.review_application(
            application_id,
            decision=request.decision,
            reviewer_id=request.reviewed_by,
            notes=request.review_note,
        )
        return {"success": True, "application": application.to_dict()}

    except HTTPException:
        raise
    except SevisPassError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Review of {application_id} failed: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Review failed: {str(e)}")


@router.put("/holders/{issued_id}/status")
def set_holder_status(
    issued_id: str,
    request: HolderStatusRequest,
    pipeline: IdentityVerificationPipeline = Depends(get_pipeline),
):
    """Suspend or reactivate an issued credential."""
    try:
        holder = pipeline.set_holder_status(issued_id, request.status)
        return {"success": True, "holder": holder.to_dict()}
    except SevisPassError as e:
        raise to_http_exception(e)
