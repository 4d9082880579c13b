"""
Document text parsing: MRZ, printed labels, dates and the claimed-identity merge.
"""
import pytest

from sevispass.services.identity import document_text
from sevispass.services.identity.errors import InputValidationError

MRZ_LINE_1 = "P<PNGWAGI<<JOHN<PETER".ljust(44, "<")
MRZ_LINE_2 = "PA1234567" + "0" + "PNG" + "850703" + "1" + "M" + "300101" + "2" + "<" * 14 + "0" + "4"


def test_mrz_lines_are_full_length():
    assert len(MRZ_LINE_1) == 44
    assert len(MRZ_LINE_2) == 44


def test_parse_mrz():
    parsed = document_text.parse_mrz(f"{MRZ_LINE_1}\n{MRZ_LINE_2}")
    assert parsed["full_name"] == "John Peter Wagi"
    assert parsed["document_number"] == "PA1234567"
    assert parsed["nationality"] == "Papua New Guinea"
    assert parsed["date_of_birth"] == "1985-07-03"
    assert parsed["expiration_date"] == "2030-01-01"
    assert parsed["sex"] == "M"


def test_passport_lines_use_mrz_values():
    lines = [
        "INDEPENDENT STATE OF PAPUA NEW GUINEA",
        "PASSPORT",
        "Surname: SOMEONE ELSE",
        MRZ_LINE_1,
        MRZ_LINE_2,
    ]
    fields = document_text.parse_document_fields(lines)
    assert fields["document_type"] == "png_passport"
    assert fields["full_name"] == "John Peter Wagi"
    assert fields["document_number"] == "PA1234567"
    assert fields["mrz_text"] == f"{MRZ_LINE_1}\n{MRZ_LINE_2}"


def test_extract_mrz_needs_two_lines():
    assert document_text.extract_mrz([MRZ_LINE_1]) is None
    assert document_text.extract_mrz(["NO MRZ HERE"]) is None


def test_drivers_license_labels():
    lines = [
        "PAPUA NEW GUINEA",
        "DRIVERS LICENCE",
        "SURNAME: KILA",
        "GIVEN NAMES: MARY ANNE",
        "DATE OF BIRTH: 12 MAR 1990",
        "LICENCE NO: DL1234567",
        "EXPIRY: 01/02/2028",
    ]
    fields = document_text.parse_document_fields(lines)
    assert fields["document_type"] == "drivers_license"
    assert fields["full_name"] == "Mary Anne Kila"
    assert fields["date_of_birth"] == "1990-03-12"
    assert fields["document_number"] == "DL1234567"
    assert fields["expiration_date"] == "2028-02-01"
    assert fields["nationality"] == "Papua New Guinea"


def test_unreadable_fields_stay_empty():
    fields = document_text.parse_document_fields(["SOMETHING", "ELSE"])
    assert fields["full_name"] is None
    assert fields["date_of_birth"] is None
    assert fields["document_number"] is None
    assert fields["document_type"] == "unknown"


def test_declared_type_wins_over_detected():
    fields = document_text.parse_document_fields(["DRIVERS LICENCE"], "national-id")
    assert fields["document_type"] == "nid"


@pytest.mark.parametrize(
    "value, expected",
    [
        ("1990-04-12", "1990-04-12"),
        ("12/04/1990", "1990-04-12"),
        ("03-07-85", "1985-07-03"),
        ("12 MAR 1990", "1990-03-12"),
        ("5 September 2001", "2001-09-05"),
        ("31/02/1990", None),
        ("yesterday", None),
        ("", None),
    ],
)
def test_normalize_date(value, expected):
    assert document_text.normalize_date(value) == expected


@pytest.mark.parametrize(
    "value, expected",
    [
        ("passport", "png_passport"),
        ("NID", "nid"),
        ("drivers-license", "drivers_license"),
        ("library card", "unknown"),
        (None, "unknown"),
    ],
)
def test_normalize_document_type(value, expected):
    assert document_text.normalize_document_type(value) == expected


def test_merge_prefers_document_values():
    extracted = {
        "full_name": "John Wagi",
        "date_of_birth": "1985-07-03",
        "document_number": "pa1234567",
        "document_type": "png_passport",
    }
    applicant = {"full_name": "Johnny Wagi", "date_of_birth": "1986-01-01", "document_number": "X"}
    claimed = document_text.merge_claimed_identity(extracted, applicant)
    assert claimed.full_name == "John Wagi"
    assert claimed.date_of_birth == "1985-07-03"
    assert claimed.document_number == "PA1234567"
    assert claimed.nationality is None
    assert claimed.document_type == "png_passport"


def test_merge_fills_gaps_from_applicant():
    extracted = {"full_name": None, "date_of_birth": "12/04/1990", "document_type": "unknown"}
    applicant = {"full_name": "Mary  Kila", "document_number": "NID123456", "document_type": "nid"}
    claimed = document_text.merge_claimed_identity(extracted, applicant)
    assert claimed.full_name == "Mary Kila"
    assert claimed.date_of_birth == "1990-04-12"
    assert claimed.document_type == "nid"

def test_foreign_passport_without_nationality_is_not_guessed():
    fields = document_text.parse_document_fields(
        ["PASSPORT", "NAME: ANNA SMITH", "DOB: 01/02/1980", "PASSPORT NO: X1234567"]
    )
    assert fields["document_type"] == "international_passport"
    assert fields["nationality"] is None

    claimed = document_text.merge_claimed_identity(fields, {})
    assert claimed.document_number == "X1234567"
    assert claimed.nationality is None


def test_applicant_nationality_is_kept():
    applicant = dict(full_name="Anna Smith", date_of_birth="1980-02-01", document_number="X1234567")
    applicant["nationality"] = "Australia"
    assert document_text.merge_claimed_identity(None, applicant).nationality == "Australia"



@pytest.mark.parametrize(
    "applicant, field",
    [
        ({"date_of_birth": "1990-01-01", "document_number": "N1"}, "fullName"),
        ({"full_name": "A B", "document_number": "N1"}, "dateOfBirth"),
        ({"full_name": "A B", "date_of_birth": "1990-01-01"}, "documentNumber"),
        ({"full_name": "A B", "date_of_birth": "2999-01-01", "document_number": "N1"}, "dateOfBirth"),
        ({"full_name": "A B", "date_of_birth": "not a date", "document_number": "N1"}, "dateOfBirth"),
    ],
)
def test_merge_rejects_missing_or_bad_fields(applicant, field):
    with pytest.raises(InputValidationError) as exc:
        document_text.merge_claimed_identity(None, applicant)
    assert exc.value.field == field


def test_extract_text_uses_face_client(face_client):
    face_client.text_lines = [MRZ_LINE_1, MRZ_LINE_2]
    fields = document_text.extract_text(face_client, b"doc")
    assert face_client.calls == ["detect_text"]
    assert fields["document_number"] == "PA1234567"
