"""
HTTP surface: request validation, status codes and the login handshake.
"""
import pytest

from sevispass import config
from sevispass.services.identity.token_broker import INVALID_TOKEN

from conftest import make_png, to_base64


@pytest.fixture
def images(document_png, selfie_png):
    return {"documentImage": to_base64(document_png), "selfieImage": to_base64(selfie_png)}


@pytest.fixture
def register_body(images):
    return {
        "userId": "user-1",
        "documentType": "nid",
        "extractedInfo": {
            "fullName": "Mary Kila",
            "dateOfBirth": "12/04/1990",
            "documentNumber": "NID12345678",
        },
        **images,
    }


def test_root_and_health(client):
    assert client.get("/").json()["msg"] == "SevisPass API"
    assert client.get("/health").json() == {"status": "ok"}


def test_register_auto_approves(client, register_body):
    response = client.post("/api/v1/sevispass/register", json=register_body)
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["status"] == "approved"
    assert body["uin"].startswith("PNG")
    assert body["extractedInfo"]["date_of_birth"] == "1990-04-12"


def test_register_accepts_data_url(client, register_body):
    register_body["selfieImage"] = "data:image/png;base64," + register_body["selfieImage"]
    assert client.post("/api/v1/sevispass/register", json=register_body).status_code == 200


def test_register_rejection_is_not_an_error(client, register_body, face_client):
    face_client.similarity = 10.0
    response = client.post("/api/v1/sevispass/register", json=register_body)
    assert response.status_code == 200
    assert response.json()["status"] == "rejected"
    assert response.json()["reason"]


def test_missing_field_is_400(client, register_body):
    del register_body["userId"]
    response = client.post("/api/v1/sevispass/register", json=register_body)
    assert response.status_code == 400
    assert response.json()["field"] == "userId"


@pytest.mark.parametrize("bad_image", ["not-base64!!", to_base64(b"plain text"), to_base64(make_png((1, 2, 3), (40, 40)))])
def test_bad_image_is_400(client, register_body, bad_image):
    register_body["documentImage"] = bad_image
    response = client.post("/api/v1/sevispass/register", json=register_body)
    assert response.status_code == 400
    assert response.json()["field"] == "documentImage"


def test_missing_identity_field_is_400(client, register_body):
    del register_body["extractedInfo"]["documentNumber"]
    response = client.post("/api/v1/sevispass/register", json=register_body)
    assert response.status_code == 400
    assert response.json()["field"] == "documentNumber"


def test_external_failure_is_503(client, register_body, face_client):
    face_client.fail_operations.add("compare_faces")
    response = client.post("/api/v1/sevispass/register", json=register_body)
    assert response.status_code == 503
    assert response.json() == {"error": "Service unavailable, please try again"}


def test_duplicate_registration_is_409(client, register_body):
    assert client.post("/api/v1/sevispass/register", json=register_body).status_code == 200
    response = client.post("/api/v1/sevispass/register", json=register_body)
    assert response.status_code == 409


def test_application_and_check_user(client, register_body):
    assert client.get("/api/v1/sevispass/check-user", params={"userId": "user-1"}).json()["hasSevisPass"] is False
    uin = client.post("/api/v1/sevispass/register", json=register_body).json()["uin"]

    application = client.get("/api/v1/sevispass/application", params={"userId": "user-1"}).json()["application"]
    assert application["status"] == "approved"
    assert application["issued_id"] == uin

    check = client.get("/api/v1/sevispass/check-user", params={"userId": "user-1"}).json()
    assert check["hasSevisPass"] is True
    assert check["uin"] == uin
    assert check["status"] == "active"


def test_login_handshake(client, register_body, images, face_client, selfie_png):
    uin = client.post("/api/v1/sevispass/register", json=register_body).json()["uin"]
    face_client.search_results[selfie_png] = [(uin, 96.0)]

    login = client.post("/api/v1/sevispass/login", json={"selfieImage": images["selfieImage"], "uin": uin})
    assert login.status_code == 200
    token = login.json()["loginToken"]
    assert login.json()["authenticated"] is True

    first = client.post("/api/v1/sevispass/complete-auth", json={"loginToken": token})
    assert first.status_code == 200
    assert first.json() == {"success": True, "userId": "user-1", "uin": uin}

    second = client.post("/api/v1/sevispass/complete-auth", json={"loginToken": token})
    assert second.status_code == 401
    assert second.json()["error"] == INVALID_TOKEN


def test_login_failure_is_401(client, images):
    response = client.post("/api/v1/sevispass/login", json={"selfieImage": images["selfieImage"]})
    assert response.status_code == 401
    assert response.json()["authenticated"] is False
    assert response.json()["loginToken"] is None


def test_complete_auth_requires_token(client):
    response = client.post("/api/v1/sevispass/complete-auth", json={})
    assert response.status_code == 400
    assert response.json()["field"] == "loginToken"


def test_verify(client, register_body):
    uin = client.post("/api/v1/sevispass/register", json=register_body).json()["uin"]
    body = client.post("/api/v1/sevispass/verify", json={"uin": uin}).json()
    assert body["valid"] is True
    assert body["data"]["uin"] == uin

    missing = client.post("/api/v1/sevispass/verify", json={"uin": "PNG0000000000"}).json()
    assert missing == {"valid": False, "error": "SevisPass not found"}

    assert client.post("/api/v1/sevispass/verify", json={}).status_code == 400


def test_extract_text(client, images, face_client):
    face_client.text_lines = ["NATIONAL IDENTITY CARD", "NAME: JOHN WAGI", "DOB: 03/07/1985"]
    response = client.post("/api/v1/sevispass/extract-text", json={"documentImage": images["documentImage"]})
    assert response.status_code == 200
    info = response.json()["extractedInfo"]
    assert info["fullName"] == "John Wagi"
    assert info["dateOfBirth"] == "1985-07-03"
    assert info["documentNumber"] is None


def test_initialize(client):
    body = client.post("/api/v1/sevispass/initialize").json()
    assert body == {"success": True, "collectionId": "test-faces", "created": True}


def test_initialize_requires_admin_key_when_configured(client, monkeypatch):
    monkeypatch.setattr(config, "ADMIN_API_KEY", "s3cret")
    assert client.post("/api/v1/sevispass/initialize").status_code == 401
    ok = client.post("/api/v1/sevispass/initialize", headers={"X-Admin-Key": "s3cret"})
    assert ok.json()["collectionId"] == "test-faces"


# ----------------------------------------------------------------------
# Admin
# ----------------------------------------------------------------------

def test_admin_review_flow(client, register_body, face_client):
    face_client.similarity = 60.0
    application_id = client.post("/api/v1/sevispass/register", json=register_body).json()["applicationId"]

    queue = client.get("/api/v1/admin/applications", params={"status": "under_review"}).json()
    assert queue["count"] == 1

    response = client.put(
        f"/api/v1/admin/applications/{application_id}",
        json={"decision": "approved", "reviewedBy": "reviewer-1", "reviewNote": "ok"},
    )
    assert response.status_code == 200
    application = response.json()["application"]
    assert application["status"] == "approved"

    again = client.put(
        f"/api/v1/admin/applications/{application_id}",
        json={"decision": "rejected", "reviewedBy": "reviewer-1"},
    )
    assert again.status_code == 409

    suspended = client.put(f"/api/v1/admin/holders/{application['issued_id']}/status", json={"status": "suspended"})
    assert suspended.json()["holder"]["status"] == "suspended"


def test_admin_unknown_application_is_404(client):
    response = client.put(
        "/api/v1/admin/applications/APP00000000XXX",
        json={"decision": "approved", "reviewedBy": "reviewer-1"},
    )
    assert response.status_code == 404


def test_admin_bad_filter_is_400(client):
    assert client.get("/api/v1/admin/applications", params={"status": "lost"}).status_code == 400


def test_admin_key_required_when_configured(client, monkeypatch):
    monkeypatch.setattr(config, "ADMIN_API_KEY", "s3cret")
    assert client.get("/api/v1/admin/applications").status_code == 401
    ok = client.get("/api/v1/admin/applications", headers={"X-Admin-Key": "s3cret"})
    assert ok.status_code == 200


def test_admin_queue_links_images(client, register_body, face_client):
    face_client.similarity = 60.0
    client.post("/api/v1/sevispass/register", json=register_body)

    entry = client.get("/api/v1/admin/applications").json()["applications"][0]
    assert entry["documentImageUrl"] == f"memory://{entry['document_image_key']}"
    assert entry["selfieImageUrl"] == f"memory://{entry['selfie_image_key']}"


def test_face_service_timeout_is_503(client, register_body, face_client):
    face_client.timeout_operations.add("compare_faces")
    response = client.post("/api/v1/sevispass/register", json=register_body)
    assert response.status_code == 503
    assert response.json() == {"error": "Service unavailable, please try again"}
