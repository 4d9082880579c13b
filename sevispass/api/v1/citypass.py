"""
CityPass API endpoints for resident-credential applications.
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field

from sevispass.api.v1.admin import require_admin_key
from sevispass.api.v1.errors import to_http_exception
from sevispass.services.identity.errors import SevisPassError
from sevispass.services.identity.models import CredentialType
from sevispass.services.identity.pipeline import IdentityVerificationPipeline, get_pipeline
from sevispass.utils.image_utils import decode_base64_image

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/citypass", tags=["CityPass"])


class CityPassApplyRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="userId")
    category: str
    full_name: str = Field(..., alias="fullName")
    sevispass_uin: str = Field(..., alias="sevispassUin")
    phone_number: Optional[str] = Field(None, alias="phoneNumber")
    email: Optional[str] = None
    supporting_documents: List[str] = Field(default_factory=list, alias="supportingDocuments")
    employer_name: Optional[str] = Field(None, alias="employerName")
    school_name: Optional[str] = Field(None, alias="schoolName")
    property_address: Optional[str] = Field(None, alias="propertyAddress")
    business_name: Optional[str] = Field(None, alias="businessName")
    voucher_uin: Optional[str] = Field(None, alias="voucherUin")
    relationship_to_voucher: Optional[str] = Field(None, alias="relationshipToVoucher")


@router.post("/apply")
def apply(request: CityPassApplyRequest, pipeline: IdentityVerificationPipeline = Depends(get_pipeline)):
    """
    Submit a CityPass application. Applications are queued for manual review.
    """
    try:
        documents = [
            decode_base64_image(data, f"supportingDocuments[{index}]")
            for index, data in enumerate(request.supporting_documents)
        ]
        details = request.model_dump(
            exclude={"user_id", "category", "full_name", "sevispass_uin", "supporting_documents"}
        )

        logger.info(f"Processing CityPass application for user {request.user_id}")
        application = pipeline.submit_citypass_application(
            user_id=request.user_id,
            category=request.category,
            full_name=request.full_name,
            sevispass_uin=request.sevispass_uin,
            details=details,
            supporting_documents=documents,
        )
        return {
            "success": True,
            "applicationId": application.application_id,
            "status": application.status.value,
            "message": "CityPass application submitted successfully",
        }

    except HTTPException:
        raise
    except SevisPassError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"CityPass application failed: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"CityPass application failed: {str(e)}")


@router.get("/status")
def status(
    user_id: str = Query(..., alias="userId"),
    pipeline: IdentityVerificationPipeline = Depends(get_pipeline),
):
    """Latest CityPass application of a user, with the issued card when approved."""
    try:
        application = pipeline.get_application(user_id, CredentialType.CITYPASS)
        holder = pipeline.get_holder(user_id, CredentialType.CITYPASS)
    except SevisPassError as e:
        raise to_http_exception(e)

    return {
        "application": application.to_dict() if application else None,
        "citypass": holder.to_dict() if holder else None,
    }


@router.get("/documents", dependencies=[Depends(require_admin_key)])
def documents(
    application_id: Optional[str] = Query(None, alias="applicationId"),
    pipeline: IdentityVerificationPipeline = Depends(get_pipeline),
):
    """Time-limited links to the supporting documents of an application."""
    if not application_id:
        raise HTTPException(status_code=400, detail={"error": "Application ID is required"})
    try:
        documents = pipeline.application_documents(application_id)
    except SevisPassError as e:
        raise to_http_exception(e)

    if not documents:
        return {"documents": [], "message": "No supporting documents found"}
    return {"documents": documents}
