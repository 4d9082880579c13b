"""
SevisPass API endpoints for registration, face login, session completion and verification.
"""
import logging
from typing import Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from sevispass.api.v1.admin import require_admin_key
from sevispass.api.v1.errors import to_http_exception
from sevispass.services.identity.errors import SevisPassError
from sevispass.services.identity.models import CredentialType
from sevispass.services.identity.pipeline import IdentityVerificationPipeline, get_pipeline
from sevispass.services.identity.token_broker import INVALID_TOKEN
from sevispass.utils.image_utils import decode_base64_image

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sevispass", tags=["SevisPass"])


class ExtractedInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    full_name: Optional[str] = Field(None, alias="fullName")
    date_of_birth: Optional[str] = Field(None, alias="dateOfBirth")
    document_number: Optional[str] = Field(None, alias="documentNumber")
    nationality: Optional[str] = None


class RegisterRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="userId")
    document_image: str = Field(..., alias="documentImage")
    selfie_image: str = Field(..., alias="selfieImage")
    document_type: Optional[str] = Field(None, alias="documentType")
    extracted_info: Optional[ExtractedInfo] = Field(None, alias="extractedInfo")


class LoginRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    selfie_image: str = Field(..., alias="selfieImage")
    uin: Optional[str] = None


class CompleteAuthRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    login_token: Optional[str] = Field(None, alias="loginToken")


class VerifyRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    uin: Optional[str] = None
    citypass_id: Optional[str] = Field(None, alias="citypassId")
    qr_data: Optional[str] = Field(None, alias="qrData")


class ExtractTextRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    document_image: str = Field(..., alias="documentImage")
    document_type: Optional[str] = Field(None, alias="documentType")


def _extracted_info(fields: Dict) -> Dict:
    return {
        "fullName": fields.get("full_name"),
        "dateOfBirth": fields.get("date_of_birth"),
        "documentNumber": fields.get("document_number"),
        "nationality": fields.get("nationality"),
        "expirationDate": fields.get("expiration_date"),
        "documentType": fields.get("document_type"),
    }


@router.post("/register")
def register(request: RegisterRequest, pipeline: IdentityVerificationPipeline = Depends(get_pipeline)):
    """
    Submit a SevisPass application.
    Returns status (approved / under_review / rejected), applicationId, confidence and the UIN when issued.
    """
    try:
        document_image = decode_base64_image(request.document_image, "documentImage")
        selfie_image = decode_base64_image(request.selfie_image, "selfieImage")
        claimed = request.extracted_info.model_dump() if request.extracted_info else None

        logger.info(f"Processing SevisPass registration for user {request.user_id}")
        result = pipeline.submit_application(
            user_id=request.user_id,
            document_image=document_image,
            selfie_image=selfie_image,
            claimed_fields=claimed,
            document_type=request.document_type,
        )
        return {"success": True, **result.to_dict()}

    except HTTPException:
        raise
    except SevisPassError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Registration failed: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Registration failed: {str(e)}")


@router.post("/login")
def login(request: LoginRequest, pipeline: IdentityVerificationPipeline = Depends(get_pipeline)):
    """
    Face login. On success returns a one-time loginToken valid for 10 minutes.
    """
    try:
        selfie_image = decode_base64_image(request.selfie_image, "selfieImage")
        result = pipeline.login(selfie_image, expected_id=request.uin)
        if not result.authenticated:
            return JSONResponse(status_code=401, content={"success": False, **result.to_dict()})
        return {"success": True, **result.to_dict()}

    except HTTPException:
        raise
    except SevisPassError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Login failed: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Login failed: {str(e)}")


@router.post("/complete-auth")
def complete_auth(request: CompleteAuthRequest, pipeline: IdentityVerificationPipeline = Depends(get_pipeline)):
    """Redeem a login token exactly once."""
    if not request.login_token:
        raise HTTPException(status_code=400, detail={"error": "Login token is required", "field": "loginToken"})

    try:
        grant = pipeline.complete_login(request.login_token)
    except SevisPassError as e:
        raise to_http_exception(e)

    if grant is None:
        return JSONResponse(status_code=401, content={"success": False, "error": INVALID_TOKEN})
    return {"success": True, "userId": grant.user_id, "uin": grant.claimed_id}


@router.get("/application")
def get_application(
    user_id: str = Query(..., alias="userId"),
    pipeline: IdentityVerificationPipeline = Depends(get_pipeline),
):
    """Latest SevisPass application of a user."""
    try:
        application = pipeline.get_application(user_id, CredentialType.SEVISPASS)
        return {"application": application.to_dict() if application else None}
    except SevisPassError as e:
        raise to_http_exception(e)


@router.get("/check-user")
def check_user(
    user_id: str = Query(..., alias="userId"),
    pipeline: IdentityVerificationPipeline = Depends(get_pipeline),
):
    """Whether the user already holds an active SevisPass."""
    try:
        holder = pipeline.get_holder(user_id, CredentialType.SEVISPASS)
    except SevisPassError as e:
        raise to_http_exception(e)

    if holder is None:
        return {"hasSevisPass": False, "uin": None, "status": None}
    return {
        "hasSevisPass": True,
        "uin": holder.issued_id,
        "status": holder.effective_status().value,
        "fullName": holder.full_name,
        "expiryDate": holder.expiry_date.isoformat(),
    }


@router.post("/verify")
def verify(request: VerifyRequest, pipeline: IdentityVerificationPipeline = Depends(get_pipeline)):
    """Verify a SevisPass UIN, a CityPass ID or a scanned QR payload."""
    try:
        result = pipeline.verify_credential(
            uin=request.uin, citypass_id=request.citypass_id, qr_data=request.qr_data
        )
        return result.to_dict()
    except HTTPException:
        raise
    except SevisPassError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Verification failed: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Verification failed: {str(e)}")


@router.post("/extract-text")
def extract_text(request: ExtractTextRequest, pipeline: IdentityVerificationPipeline = Depends(get_pipeline)):
    """
    Read identity fields from a document photo.
    Fields that could not be read are returned as null; nothing is filled in.
    """
    try:
        document_image = decode_base64_image(request.document_image, "documentImage")
        fields = pipeline.extract_document_fields(document_image, request.document_type)
        return {
            "success": True,
            "extractedInfo": _extracted_info(fields),
            "mrzText": fields.get("mrz_text"),
        }
    except HTTPException:
        raise
    except SevisPassError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Text extraction failed: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Text extraction failed: {str(e)}")


@router.post("/initialize", dependencies=[Depends(require_admin_key)])
def initialize(pipeline: IdentityVerificationPipeline = Depends(get_pipeline)):
    """Create the face collection if it does not exist yet."""
    try:
        result = pipeline.initialize_collection()
        return {"success": True, **result}
    except SevisPassError as e:
        raise to_http_exception(e)
