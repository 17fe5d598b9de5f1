"""
Pure formatting rules for document identities: revision letters, category
serial numbers and monthly transmittal numbers. Nothing here performs I/O.
"""
import re
from datetime import datetime
from typing import Dict, Optional

from app.document_control.domain.models import ParsedSerialNumber, SerialNumberConfig

DEFAULT_SERIAL_PREFIX = "IEMS"

# category -> zero padding of the sequence part
CATEGORY_PADDING = {
    "DWG": 4,
    "RFI": 3,
    "SUB": 3,
    "CNT": 3,
    "RPT": 4,
    "SPC": 3,
    "TRN": 4,
    "NCR": 4,
    "DOC": 4,
}


def default_serial_configs(prefix: str = DEFAULT_SERIAL_PREFIX) -> Dict[str, SerialNumberConfig]:
    return {
        category: SerialNumberConfig(category=category, prefix=prefix, padding_length=padding)
        for category, padding in CATEGORY_PADDING.items()
    }


def next_revision_letter(current: str) -> str:
    """
    Increment a revision letter like a spreadsheet column name.

    "" -> "A", "A" -> "B", "Z" -> "AA", "AZ" -> "BA", "ZZ" -> "AAA"
    """
    if not current:
        return "A"

    letters = list(current.upper())
    for index in range(len(letters) - 1, -1, -1):
        if letters[index] == "Z":
            letters[index] = "A"
            continue
        letters[index] = chr(ord(letters[index]) + 1)
        return "".join(letters)

    return "A" + "".join(letters)


def format_serial_number(
    config: SerialNumberConfig,
    number: int,
    project_code: Optional[str] = None,
) -> str:
    serial = (
        config.format.replace("{PREFIX}", config.prefix)
        .replace("{CATEGORY}", config.category)
        .replace("{NUMBER}", str(number).zfill(config.padding_length))
    )
    if project_code:
        serial = f"{project_code}-{serial}"
    return serial


def serial_number_pattern(config: SerialNumberConfig) -> "re.Pattern[str]":
    body = (
        re.escape(config.format)
        .replace(re.escape("{PREFIX}"), re.escape(config.prefix))
        .replace(re.escape("{CATEGORY}"), re.escape(config.category))
        .replace(re.escape("{NUMBER}"), rf"\d{{{config.padding_length},}}")
    )
    return re.compile(rf"^(?:[A-Za-z0-9_]+-)?{body}$")


def validate_serial_number(serial: str, config: SerialNumberConfig) -> bool:
    return bool(serial_number_pattern(config).match(serial))


def parse_serial_number(serial: str) -> Optional[ParsedSerialNumber]:
    """Split PREFIX-CATEGORY-NUMBER, optionally preceded by a project code."""
    parts = serial.split("-")
    if len(parts) == 3:
        project_code = None
        prefix, category, number = parts
    elif len(parts) == 4:
        project_code, prefix, category, number = parts
    else:
        return None

    if not number.isdigit():
        return None

    return ParsedSerialNumber(
        prefix=prefix,
        category=category,
        number=int(number),
        project_code=project_code,
    )


def transmittal_counter_scope(prefix: str, issued_on: datetime) -> str:
    return f"TRN:{prefix}:{issued_on:%y%m}"


def format_transmittal_number(prefix: str, issued_on: datetime, sequence: int) -> str:
    return f"{prefix}-TRN-{issued_on:%y%m}-{sequence:03d}"
