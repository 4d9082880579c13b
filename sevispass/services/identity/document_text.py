"""
Document text service for identity documents.
Uses the managed text-detection API for line extraction and includes MRZ
parsing for passports (ICAO TD3).
"""
import re
from datetime import date
from logging import getLogger
from typing import Dict, List, Optional

from sevispass.services.aws.base_face_client import BaseFaceClient
from sevispass.services.identity.errors import InputValidationError
from sevispass.services.identity.models import ClaimedIdentity

logger = getLogger(__name__)

DEFAULT_NATIONALITY = "Papua New Guinea"

DOCUMENT_TYPES = ("nid", "drivers_license", "png_passport", "international_passport", "unknown")

# Names the web client has used for the same document types
_DOCUMENT_TYPE_ALIASES = {
    "passport": "png_passport",
    "national-id": "nid",
    "national_id": "nid",
    "drivers-license": "drivers_license",
    "drivers_licence": "drivers_license",
}

_COUNTRY_NAMES = {
    "PNG": "Papua New Guinea",
    "AUS": "Australia",
    "NZL": "New Zealand",
    "SLB": "Solomon Islands",
    "FJI": "Fiji",
    "VUT": "Vanuatu",
    "IDN": "Indonesia",
    "PHL": "Philippines",
}

# Words that show up in capitals on documents but are never names
_NON_NAME_WORDS = {
    "PAPUA", "NEW", "GUINEA", "PNG", "REPUBLIC", "INDEPENDENT", "STATE", "PASSPORT",
    "DOCUMENT", "TYPE", "NATIONAL", "IDENTITY", "CARD", "DRIVER", "DRIVERS", "LICENCE",
    "LICENSE", "DATE", "BIRTH", "EXPIRY", "ISSUE", "PLACE", "SEX", "NATIONALITY", "OF",
    "THE", "AND", "AUTHORITY", "SIGNATURE", "CLASS",
}

_MONTHS = {
    "JAN": 1, "FEB": 2, "MAR": 3, "APR": 4, "MAY": 5, "JUN": 6,
    "JUL": 7, "AUG": 8, "SEP": 9, "OCT": 10, "NOV": 11, "DEC": 12,
}

MRZ_LINE = re.compile(r"^[A-Z0-9<]{30,44}$")


def normalize_document_type(document_type: Optional[str]) -> str:
    if not document_type:
        return "unknown"
    value = document_type.strip().lower()
    value = _DOCUMENT_TYPE_ALIASES.get(value, value)
    return value if value in DOCUMENT_TYPES else "unknown"


def extract_text(face_client: BaseFaceClient, image_bytes: bytes, document_type: Optional[str] = None) -> Dict:
    """
    Extract text from an ID document and parse the identity fields.

    Args:
        face_client: Client exposing detect_text
        image_bytes: Encoded document image
        document_type: Declared document type, if the applicant chose one

    Returns:
        Dictionary with parsed fields, the detected document type, MRZ and raw lines.
        Fields that could not be read are None.
    """
    lines = face_client.detect_text(image_bytes)
    logger.info(f"Text detection returned {len(lines)} lines")
    return parse_document_fields(lines, document_type)


def parse_document_fields(lines: List[str], document_type: Optional[str] = None) -> Dict:
    """Parse detected lines into identity fields."""
    cleaned = [line.strip() for line in lines if line and len(line.strip()) > 1]
    raw_text = "\n".join(cleaned)

    mrz_text = extract_mrz(cleaned)
    declared = normalize_document_type(document_type)
    detected = detect_document_type(raw_text, mrz_text)
    resolved = detected if declared == "unknown" else declared

    structured = extract_structured_data(cleaned, resolved, mrz_text)
    return {
        "full_name": structured.get("full_name"),
        "date_of_birth": structured.get("date_of_birth"),
        "document_number": structured.get("document_number"),
        "nationality": structured.get("nationality"),
        "expiration_date": structured.get("expiration_date"),
        "document_type": resolved,
        "mrz_text": mrz_text,
        "raw_text": raw_text,
    }


def detect_document_type(raw_text: str, mrz_text: Optional[str] = None) -> str:
    upper = raw_text.upper()
    if mrz_text and mrz_text.startswith("P"):
        return "png_passport" if mrz_text[2:5] == "PNG" else "international_passport"
    if "DRIVER" in upper or "LICENCE" in upper or "LICENSE" in upper:
        return "drivers_license"
    if "NATIONAL ID" in upper or "NATIONAL IDENTITY" in upper or re.search(r"\bNID\b", upper):
        return "nid"
    if "PASSPORT" in upper:
        return "png_passport" if "PAPUA NEW GUINEA" in upper else "international_passport"
    return "unknown"


def extract_mrz(lines: List[str]) -> Optional[str]:
    """
    Find the two-line MRZ at the bottom of a passport.

    Returns:
        Both lines joined by a newline, or None
    """
    candidates = []
    for line in lines:
        compact = line.replace(" ", "").upper()
        if "<" in compact and MRZ_LINE.match(compact):
            candidates.append(compact)

    for first, second in zip(candidates, candidates[1:]):
        if first.startswith("P"):
            mrz_text = f"{first}\n{second}"
            logger.info("MRZ found in document text")
            return mrz_text
    return None


def _mrz_date(value: str, future: bool = False) -> Optional[str]:
    if not re.match(r"^\d{6}$", value):
        return None
    yy, mm, dd = int(value[:2]), int(value[2:4]), int(value[4:6])
    current = date.today().year % 100
    if future:
        century = 2000
    else:
        # Birth dates cannot be in the future
        century = 1900 if yy > current else 2000
    try:
        return date(century + yy, mm, dd).isoformat()
    except ValueError:
        return None


def parse_mrz(mrz_text: str) -> Dict:
    """
    Parse a TD3 MRZ.

    Args:
        mrz_text: Two MRZ lines separated by a newline

    Returns:
        Dictionary with full_name, document_number, nationality, date_of_birth,
        expiration_date and sex for the fields that could be read
    """
    result: Dict = {}
    lines = mrz_text.split("\n")
    if len(lines) < 2:
        return result

    first = lines[0].ljust(44, "<")
    second = lines[1].ljust(44, "<")

    # Line 1: P<ISSSURNAME<<GIVEN<NAMES<<<
    names = first[5:].strip("<")
    if "<<" in names:
        surname, given = names.split("<<", 1)
    else:
        surname, given = names, ""
    surname = surname.replace("<", " ").strip()
    given = " ".join(part for part in given.split("<") if part)
    full_name = " ".join(part for part in (given, surname) if part)
    if full_name:
        result["full_name"] = full_name.title()

    document_number = second[0:9].replace("<", "")
    if document_number:
        result["document_number"] = document_number

    nationality = second[10:13].replace("<", "")
    if re.match(r"^[A-Z]{3}$", nationality):
        result["nationality"] = _COUNTRY_NAMES.get(nationality, nationality)

    dob = _mrz_date(second[13:19])
    if dob:
        result["date_of_birth"] = dob

    if second[20] in ("M", "F"):
        result["sex"] = second[20]

    expiry = _mrz_date(second[21:27], future=True)
    if expiry:
        result["expiration_date"] = expiry

    return result


def normalize_date(value: str) -> Optional[str]:
    """
    Normalize a printed date to YYYY-MM-DD.

    Numeric dates are read day first (DD/MM/YYYY), as printed on PNG documents.
    """
    if not value:
        return None
    text = value.strip().upper()

    iso = re.match(r"^(\d{4})-(\d{1,2})-(\d{1,2})$", text)
    if iso:
        year, month, day = (int(p) for p in iso.groups())
    else:
        numeric = re.match(r"^(\d{1,2})[/.\-](\d{1,2})[/.\-](\d{2,4})$", text)
        named = re.match(r"^(\d{1,2})[\s\-]+([A-Z]{3})[A-Z]*[\s\-]+(\d{2,4})$", text)
        if numeric:
            day, month, year = (int(p) for p in numeric.groups())
        elif named and named.group(2) in _MONTHS:
            day, month, year = int(named.group(1)), _MONTHS[named.group(2)], int(named.group(3))
        else:
            return None
        if year < 100:
            year += 1900 if year > date.today().year % 100 else 2000

    try:
        return date(year, month, day).isoformat()
    except ValueError:
        return None


def _looks_like_name(line: str) -> bool:
    if not re.match(r"^[A-Za-z][A-Za-z'\-]*(\s+[A-Za-z][A-Za-z'\-]*)+$", line):
        return False
    if not 5 < len(line) < 50:
        return False
    words = line.upper().split()
    return not any(word in _NON_NAME_WORDS for word in words)


def extract_structured_data(lines: List[str], document_type: str, mrz_text: Optional[str] = None) -> Dict:
    """
    Extract structured data (name, DOB, document number) from document lines.

    MRZ values win; printed labels and patterns fill the gaps.
    """
    result: Dict = {}
    raw_text = "\n".join(lines)

    if mrz_text:
        result.update(parse_mrz(mrz_text))

    # Labelled name fields
    if "full_name" not in result:
        surname = re.search(r"SURNAME[:\s]+([A-Z][A-Z\s'\-]+?)\s*$", raw_text, re.IGNORECASE | re.MULTILINE)
        given = re.search(r"GIVEN\s*NAMES?[:\s]+([A-Z][A-Z\s'\-]+?)\s*$", raw_text, re.IGNORECASE | re.MULTILINE)
        full = re.search(r"\b(?:FULL\s*)?NAME[:\s]+([A-Z][A-Z\s'\-]+?)\s*$", raw_text, re.IGNORECASE | re.MULTILINE)
        if surname and given:
            result["full_name"] = f"{given.group(1).strip()} {surname.group(1).strip()}".title()
        elif full and not full.group(1).strip().upper().startswith("SURNAME"):
            result["full_name"] = re.sub(r"\s+", " ", full.group(1)).strip().title()

    if "full_name" not in result:
        for line in lines:
            if _looks_like_name(line):
                result["full_name"] = re.sub(r"\s+", " ", line).strip().title()
                break

    # Document number
    if "document_number" not in result:
        id_patterns = [
            r"DOCUMENT[ \t]+No\.?[: \t]*([A-Z]{1,2}[0-9]{5,8})",
            r"\b(?:LIC(?:EN[CS]E)?|ID|NID)[ \t]*(?:NO|NUMBER|#)?[.: \t]+((?=[A-Z\-]*\d)[A-Z0-9\-]{6,12})",
            r"PASSPORT[ \t]*(?:NO|NUMBER)?[.: \t]+([A-Z]{1,2}[0-9]{5,8})",
        ]
        for pattern in id_patterns:
            match = re.search(pattern, raw_text, re.IGNORECASE)
            if match:
                result["document_number"] = match.group(1).strip().upper()
                break

    if "document_number" not in result:
        for line in lines:
            compact = line.replace(" ", "")
            if _is_document_number(compact, document_type):
                result["document_number"] = compact
                break

    # Date of birth
    if "date_of_birth" not in result:
        labelled = re.search(
            r"(?:DOB|DATE\s+OF\s+BIRTH|BORN)[:\s]+([0-9A-Za-z/.\-\s]{6,20}?)\s*$",
            raw_text,
            re.IGNORECASE | re.MULTILINE,
        )
        dob = normalize_date(labelled.group(1)) if labelled else None
        if dob is None:
            for line in lines:
                dob = normalize_date(line)
                if dob:
                    break
        if dob:
            result["date_of_birth"] = dob

    # Expiration date
    if "expiration_date" not in result:
        match = re.search(
            r"(?:EXP(?:IRY|IRES)?|VALID\s+UNTIL)[:\s]+([0-9A-Za-z/.\-\s]{6,20}?)\s*$",
            raw_text,
            re.IGNORECASE | re.MULTILINE,
        )
        if match:
            expiry = normalize_date(match.group(1))
            if expiry:
                result["expiration_date"] = expiry

    if "nationality" not in result:
        match = re.search(r"NATIONALITY[:\s]+([A-Z][A-Z ]+?)\s*$", raw_text, re.IGNORECASE | re.MULTILINE)
        if match:
            value = match.group(1).strip().upper()
            result["nationality"] = _COUNTRY_NAMES.get(value, value.title())
        elif document_type in ("nid", "drivers_license", "png_passport"):
            result["nationality"] = DEFAULT_NATIONALITY

    return result


def _is_document_number(text: str, document_type: str) -> bool:
    if document_type in ("png_passport", "international_passport"):
        return bool(re.match(r"^[A-Z]{1,2}\d{5,8}$", text))
    if document_type == "nid":
        return bool(re.match(r"^\d{8,12}$", text) or re.match(r"^NID\d{6,8}$", text))
    if document_type == "drivers_license":
        return bool(re.match(r"^[A-Z]{1,2}\d{6,8}$", text) or re.match(r"^DL\d{6,8}$", text))
    return bool(re.match(r"^(?=.*\d)[A-Z0-9]{6,12}$", text))


def merge_claimed_identity(extracted: Optional[Dict], applicant_info: Optional[Dict] = None) -> ClaimedIdentity:
    """
    Combine document fields with what the applicant typed in.

    Values read from the document win. Nothing is ever invented: a required
    field missing from both sources is an input error.

    Raises:
        InputValidationError: full name, date of birth or document number missing
    """
    extracted = extracted or {}
    applicant_info = applicant_info or {}

    def pick(key: str) -> Optional[str]:
        value = extracted.get(key) or applicant_info.get(key)
        if isinstance(value, str):
            value = value.strip()
        return value or None

    full_name = pick("full_name")
    if not full_name:
        raise InputValidationError("fullName", "Full name could not be read from the document")

    date_of_birth = pick("date_of_birth")
    if not date_of_birth:
        raise InputValidationError("dateOfBirth", "Date of birth could not be read from the document")
    normalized_dob = normalize_date(date_of_birth)
    if normalized_dob is None:
        raise InputValidationError("dateOfBirth", f"Unrecognized date of birth: {date_of_birth}")
    if normalized_dob > date.today().isoformat():
        raise InputValidationError("dateOfBirth", "Date of birth is in the future")

    document_number = pick("document_number")
    if not document_number:
        raise InputValidationError("documentNumber", "Document number could not be read from the document")

    document_type = normalize_document_type(extracted.get("document_type"))
    if document_type == "unknown":
        document_type = normalize_document_type(applicant_info.get("document_type"))

    return ClaimedIdentity(
        full_name=re.sub(r"\s+", " ", full_name),
        date_of_birth=normalized_dob,
        document_number=document_number.upper(),
        nationality=pick("nationality"),
        document_type=document_type,
    )
