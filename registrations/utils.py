"""
Utility functions for the registrations app.
"""
import re

from .exceptions import InvalidFormat, MissingField


# Unit slugs (from the registration form) and display names both resolve to the same code
UNIT_CODES_BY_SLUG = {
    'diaspora-unit': 'DSP',
    'cambridge-unit': 'CAM',
    'moi-unit': 'MI',
}

UNIT_CODES_BY_NAME = {
    'Diaspora Unit': 'DSP',
    'Cambridge Unit': 'CAM',
    'Moi Unit': 'MI',
}

UNKNOWN_UNIT_CODE = 'UNK'

# Canonical registration ID format: ORG/{unit}/{year}/NNN (e.g. ORG/CAM/2025/003)
# Sequence is zero-padded to at least 3 digits: 001, 002, ..., 999, 1000
REGISTRATION_ID_FORMAT = "{prefix}/{unit}/{year}/{seq:03d}"

CONFIRMATION_CODE_PATTERN = re.compile(r'^[A-Z0-9]{8,12}$')


def resolve_unit_code(unit):
    """
    Return the fixed code for a unit slug or display name, or None if the unit is unknown.
    """
    if not unit or not isinstance(unit, str):
        return None
    value = unit.strip()
    return UNIT_CODES_BY_SLUG.get(value) or UNIT_CODES_BY_NAME.get(value)


def registration_id_prefix(prefix, unit_code, year):
    """Prefix shared by every registration ID of one unit and year, e.g. ORG/CAM/2025/."""
    return f"{prefix}/{unit_code}/{int(year)}/"


def format_registration_id(prefix, unit_code, year, sequence):
    """
    Return a registration ID in canonical form: ORG/CAM/2025/003.
    unit_code is uppercased; sequence is zero-padded to 3 digits.
    """
    return REGISTRATION_ID_FORMAT.format(
        prefix=str(prefix).strip().upper(),
        unit=str(unit_code).strip().upper(),
        year=int(year),
        seq=int(sequence),
    )


def parse_registration_sequence(registration_id):
    """
    Return the numeric sequence of a registration ID (ORG/CAM/2025/003 -> 3),
    or None if the last segment is not a number.
    """
    if not registration_id or not isinstance(registration_id, str):
        return None
    part = registration_id.strip().split('/')[-1]
    if part.isdigit():
        return int(part)
    return None


def max_sequence(registration_ids):
    """Highest sequence among the given registration IDs (0 when there are none)."""
    highest = 0
    for registration_id in registration_ids:
        seq = parse_registration_sequence(registration_id)
        if seq is not None:
            highest = max(highest, seq)
    return highest


def normalize_confirmation_code(code):
    """
    Validate an M-Pesa confirmation code and return it uppercased.
    Codes are 8-12 characters, letters and digits only, case-insensitive.
    """
    if code is None or not str(code).strip():
        raise MissingField('mpesaCode')
    normalized = str(code).strip().upper()
    if not CONFIRMATION_CODE_PATTERN.match(normalized):
        raise InvalidFormat(
            'Invalid M-Pesa code format. Must be 8-12 characters (letters and numbers)',
            field='mpesaCode',
        )
    return normalized


def normalize_phone_number(phone_number):
    """
    Format a Kenyan phone number for M-Pesa as 254XXXXXXXXX.
    Accepts +254..., 254..., 07... and 7... forms.
    """
    if phone_number is None or not str(phone_number).strip():
        raise MissingField('phoneNumber')
    digits = re.sub(r'[\s\-()]', '', str(phone_number).strip())
    if digits.startswith('+'):
        digits = digits[1:]
    if digits.startswith('0'):
        digits = '254' + digits[1:]
    if not digits.startswith('254'):
        digits = '254' + digits
    if not digits.isdigit() or len(digits) != 12:
        raise InvalidFormat('Invalid phone number', field='phoneNumber')
    return digits
