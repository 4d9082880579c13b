"""
In-memory record store rules and the S3 / Rekognition adapters (stubbed with botocore).
"""
import io
from datetime import timedelta

import boto3
import pytest
from botocore.exceptions import ConnectTimeoutError, ReadTimeoutError
from botocore.response import StreamingBody
from botocore.stub import Stubber

from sevispass.services.aws.rekognition_client import RekognitionFaceClient, client_config
from sevispass.services.aws.s3_storage import S3ImageStorage, s3_client_config
from sevispass.services.identity.errors import (
    DuplicateRecordError,
    ExternalServiceError,
    IdentifierTakenError,
    ServiceTimeoutError,
)
from sevispass.services.identity.models import (
    Application,
    ApplicationStatus,
    CredentialType,
    Holder,
    HolderStatus,
    utcnow,
)
from sevispass.services.storage.base import document_image_key, selfie_image_key, supporting_document_key


def make_holder(issued_id="PNG1234567890", user_id="user-1", application_id="APP12345678ABC", **kwargs):
    now = utcnow()
    return Holder(
        issued_id=issued_id,
        user_id=user_id,
        credential_type=kwargs.pop("credential_type", CredentialType.SEVISPASS),
        status=kwargs.pop("status", HolderStatus.ACTIVE),
        issued_at=now,
        expiry_date=now + timedelta(days=3650),
        full_name="Mary Kila",
        application_id=application_id,
        **kwargs,
    )


def aws_client(service, config=None):
    return boto3.client(
        service,
        region_name="ap-southeast-2",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
        config=config,
    )


# ----------------------------------------------------------------------
# Record store
# ----------------------------------------------------------------------

def test_create_holder_is_idempotent_per_application(record_store):
    first = record_store.create_holder(make_holder())
    again = record_store.create_holder(make_holder())
    assert again.issued_id == first.issued_id


def test_issued_id_taken_by_other_application(record_store):
    record_store.create_holder(make_holder())
    with pytest.raises(IdentifierTakenError):
        record_store.create_holder(make_holder(user_id="user-2", application_id="APP99999999XYZ"))


def test_one_active_holder_per_user_and_type(record_store):
    record_store.create_holder(make_holder())
    with pytest.raises(DuplicateRecordError):
        record_store.create_holder(make_holder(issued_id="PNG0000000001", application_id="APP99999999XYZ"))

    citypass = make_holder(
        issued_id="CP1700000000000AB12",
        application_id="APP99999999XYZ",
        credential_type=CredentialType.CITYPASS,
    )
    assert record_store.create_holder(citypass).credential_type == CredentialType.CITYPASS


def test_returned_records_are_copies(record_store):
    record_store.create_holder(make_holder())
    holder = record_store.get_holder("PNG1234567890")
    holder.status = HolderStatus.SUSPENDED
    assert record_store.get_holder("PNG1234567890").status == HolderStatus.ACTIVE


def test_update_application_is_conditional(record_store):
    application = Application(
        application_id="APP12345678ABC",
        user_id="user-1",
        credential_type=CredentialType.SEVISPASS,
        status=ApplicationStatus.PENDING,
        submitted_at=utcnow(),
    )
    assert record_store.put_application(application)
    assert not record_store.put_application(application)

    assert record_store.update_application(
        "APP12345678ABC", ApplicationStatus.UNDER_REVIEW, {"status": ApplicationStatus.APPROVED}
    ) is None
    updated = record_store.update_application(
        "APP12345678ABC", ApplicationStatus.PENDING, {"status": ApplicationStatus.UNDER_REVIEW}
    )
    assert updated.status == ApplicationStatus.UNDER_REVIEW


def test_one_open_application_per_user_and_type(record_store):
    def application(application_id, status=ApplicationStatus.PENDING, credential_type=CredentialType.SEVISPASS):
        return Application(
            application_id=application_id,
            user_id="user-1",
            credential_type=credential_type,
            status=status,
            submitted_at=utcnow(),
        )

    assert record_store.put_application(application("APP00000001AAA"))
    assert not record_store.put_application(application("APP00000002AAA"))
    assert record_store.put_application(application("APP00000003AAA", credential_type=CredentialType.CITYPASS))
    assert record_store.put_application(
        application("APP00000004AAA", status=ApplicationStatus.REJECTED)
    )

    record_store.update_application(
        "APP00000001AAA", ApplicationStatus.PENDING, {"status": ApplicationStatus.REJECTED}
    )
    assert record_store.put_application(application("APP00000002AAA"))


def test_application_round_trips_through_dict():
    application = Application(
        application_id="APP12345678ABC",
        user_id="user-1",
        credential_type=CredentialType.CITYPASS,
        status=ApplicationStatus.UNDER_REVIEW,
        submitted_at=utcnow(),
        extra={"employer_name": "Ok Tedi"},
    )
    restored = Application.from_dict(application.to_dict())
    assert restored == application


def test_holder_effective_status_expires():
    holder = make_holder()
    assert holder.effective_status() == HolderStatus.ACTIVE
    assert holder.effective_status(holder.expiry_date) == HolderStatus.EXPIRED


def test_image_keys():
    assert document_image_key("u1", "APP1") == "sevispass/documents/u1/APP1/document.jpg"
    assert selfie_image_key("u1", "APP1") == "sevispass/faces/u1/APP1/selfie.jpg"
    assert supporting_document_key("u1", "APP1", 2) == "citypass/documents/u1/APP1/supporting-2.jpg"


def test_memory_image_storage(image_storage):
    image_storage.put_image("a/b.jpg", b"bytes")
    assert image_storage.get_image("a/b.jpg") == b"bytes"
    assert image_storage.presigned_url("a/b.jpg") == "memory://a/b.jpg"
    assert image_storage.presigned_url("missing.jpg") is None
    with pytest.raises(KeyError):
        image_storage.get_image("missing.jpg")


# ----------------------------------------------------------------------
# S3
# ----------------------------------------------------------------------

@pytest.fixture
def s3():
    client = aws_client("s3", config=s3_client_config())
    with Stubber(client) as stubber:
        yield S3ImageStorage(bucket="sevispass-test", client=client), stubber


def test_s3_put_and_get(s3):
    storage, stubber = s3
    stubber.add_response(
        "put_object",
        {},
        {"Bucket": "sevispass-test", "Key": "k.jpg", "Body": b"data", "ContentType": "image/png"},
    )
    stubber.add_response(
        "get_object",
        {"Body": StreamingBody(io.BytesIO(b"data"), 4)},
        {"Bucket": "sevispass-test", "Key": "k.jpg"},
    )
    assert storage.put_image("k.jpg", b"data", content_type="image/png") == "k.jpg"
    assert storage.get_image("k.jpg") == b"data"
    stubber.assert_no_pending_responses()


def test_s3_missing_object(s3):
    storage, stubber = s3
    stubber.add_client_error("get_object", service_error_code="NoSuchKey", http_status_code=404)
    stubber.add_client_error("head_object", service_error_code="404", http_status_code=404)
    with pytest.raises(KeyError):
        storage.get_image("missing.jpg")
    assert storage.presigned_url("missing.jpg") is None


@pytest.mark.parametrize(
    "expires_in, expected",
    [(None, "X-Amz-Expires=3600"), (0, "X-Amz-Expires=3600"), (900, "X-Amz-Expires=900"), (10 ** 7, "X-Amz-Expires=604800")],
)
def test_s3_presigned_url(s3, expires_in, expected):
    storage, stubber = s3
    stubber.add_response("head_object", {}, {"Bucket": "sevispass-test", "Key": "photo.jpg"})
    url = storage.presigned_url("photo.jpg", expires_in=expires_in)
    assert "photo.jpg" in url
    assert "X-Amz-Algorithm=AWS4-HMAC-SHA256" in url
    assert expected in url


def test_s3_failure_is_external_error(s3):
    storage, stubber = s3
    stubber.add_client_error("put_object", service_error_code="AccessDenied", http_status_code=403)
    with pytest.raises(ExternalServiceError):
        storage.put_image("k.jpg", b"data")


def test_s3_requires_bucket():
    with pytest.raises(ValueError):
        S3ImageStorage(bucket=" ", client=object())


# ----------------------------------------------------------------------
# Rekognition
# ----------------------------------------------------------------------

@pytest.fixture
def rekognition():
    client = aws_client("rekognition")
    with Stubber(client) as stubber:
        yield RekognitionFaceClient(client=client), stubber


def test_detect_faces_maps_quality(rekognition):
    face_client, stubber = rekognition
    stubber.add_response(
        "detect_faces",
        {"FaceDetails": [{"Confidence": 99.1, "Quality": {"Brightness": 61.0, "Sharpness": 72.5}}]},
    )
    faces = face_client.detect_faces(b"img")
    assert len(faces) == 1
    assert faces[0].brightness == 61.0
    assert faces[0].sharpness == 72.5


def test_compare_without_face_returns_no_match(rekognition):
    face_client, stubber = rekognition
    stubber.add_client_error("compare_faces", service_error_code="InvalidParameterException", http_status_code=400)
    assert face_client.compare_faces(b"a", b"b", 50.0) == []


def test_search_ranks_matches(rekognition):
    face_client, stubber = rekognition
    stubber.add_response(
        "search_faces_by_image",
        {
            "FaceMatches": [
                {"Similarity": 71.0, "Face": {"FaceId": "f2", "ExternalImageId": "PNG0000000002"}},
                {"Similarity": 98.0, "Face": {"FaceId": "f1", "ExternalImageId": "PNG0000000001"}},
            ]
        },
    )
    matches = face_client.search_faces(b"img", "faces", 60.0, 5)
    assert [m.external_id for m in matches] == ["PNG0000000001", "PNG0000000002"]


def test_index_face_without_records(rekognition):
    face_client, stubber = rekognition
    stubber.add_response("index_faces", {"FaceRecords": []})
    assert face_client.index_face(b"img", "PNG0000000001", "faces") is None


def test_ensure_collection_creates_once(rekognition):
    face_client, stubber = rekognition
    stubber.add_response("list_collections", {"CollectionIds": ["other"]})
    stubber.add_response("create_collection", {"StatusCode": 200}, {"CollectionId": "faces"})
    stubber.add_response("list_collections", {"CollectionIds": ["faces"]})
    assert face_client.ensure_collection("faces") is True
    assert face_client.ensure_collection("faces") is False


def test_detect_text_orders_lines(rekognition):
    face_client, stubber = rekognition
    stubber.add_response(
        "detect_text",
        {
            "TextDetections": [
                {"DetectedText": "SECOND", "Type": "LINE", "Geometry": {"BoundingBox": {"Top": 0.6}}},
                {"DetectedText": "FIRST", "Type": "LINE", "Geometry": {"BoundingBox": {"Top": 0.1}}},
                {"DetectedText": "FIRST", "Type": "WORD", "Geometry": {"BoundingBox": {"Top": 0.1}}},
            ]
        },
    )
    assert face_client.detect_text(b"img") == ["FIRST", "SECOND"]


def test_service_error_is_external(rekognition):
    face_client, stubber = rekognition
    stubber.add_client_error("detect_faces", service_error_code="ThrottlingException", http_status_code=400)
    with pytest.raises(ExternalServiceError):
        face_client.detect_faces(b"img")


@pytest.mark.parametrize(
    "error",
    [
        ReadTimeoutError(endpoint_url="https://rekognition.ap-southeast-2.amazonaws.com"),
        ConnectTimeoutError(endpoint_url="https://rekognition.ap-southeast-2.amazonaws.com"),
    ],
)
def test_timeouts_are_distinguishable(error):
    client = aws_client("rekognition", config=client_config())

    def fail(**kwargs):
        raise error

    client.meta.events.register("before-send.rekognition.SearchFacesByImage", fail)
    with pytest.raises(ServiceTimeoutError) as exc:
        RekognitionFaceClient(client=client).search_faces(b"img", "faces", 60.0, 5)
    assert exc.value.operation == "search_faces_by_image"
