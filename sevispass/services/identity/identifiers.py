"""
Identifier generation and validation for SevisPass and CityPass.
"""
import re
import secrets
import string
import time

UIN_PATTERN = re.compile(r"^PNG\d{10}$")
APPLICATION_ID_PATTERN = re.compile(r"^APP\d{8}[A-Z0-9]{3}$")
CITYPASS_ID_PATTERN = re.compile(r"^CP\d{13}[A-Z0-9]{4}$")

_ALNUM = string.ascii_uppercase + string.digits


def _random_alnum(length: int) -> str:
    return "".join(secrets.choice(_ALNUM) for _ in range(length))


def generate_uin() -> str:
    """PNG + 10 digits (8 from the clock, 2 random)."""
    timestamp = str(int(time.time() * 1000))[-8:]
    return f"PNG{timestamp}{secrets.randbelow(100):02d}"


def generate_application_id() -> str:
    """APP + 8 digits + 3 alphanumerics."""
    timestamp = str(int(time.time() * 1000))[-8:]
    return f"APP{timestamp}{_random_alnum(3)}"


def generate_citypass_id() -> str:
    return f"CP{int(time.time() * 1000):013d}{_random_alnum(4)}"


def validate_uin(uin: str) -> bool:
    return bool(uin) and bool(UIN_PATTERN.match(uin.strip().upper()))


def validate_application_id(application_id: str) -> bool:
    return bool(application_id) and bool(APPLICATION_ID_PATTERN.match(application_id.strip().upper()))


def validate_citypass_id(citypass_id: str) -> bool:
    return bool(citypass_id) and bool(CITYPASS_ID_PATTERN.match(citypass_id.strip().upper()))


def normalize_uin(uin: str) -> str:
    return uin.strip().upper()


def format_uin_for_display(uin: str) -> str:
    """PNG 1234 567 890"""
    if not validate_uin(uin):
        return uin
    uin = normalize_uin(uin)
    return f"{uin[:3]} {uin[3:7]} {uin[7:10]} {uin[10:]}"
